from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Votes accepted by the ledger
votes_recorded_total = Counter(
    "votes_recorded_total", "Total votes recorded"
)

# Quota rejects when a role limit is hit (projects or images)
quota_reject_total = Counter(
    "quota_reject_total", "Number of quota rejected requests", ["resource"]
)

# Cascading deletes committed in the relational store
cascade_delete_total = Counter(
    "cascade_delete_total", "Committed cascading deletes", ["target"]
)

# Blob reclamation
blob_delete_total = Counter(
    "blob_delete_total", "Blob deletions attempted"
)

blob_delete_fail_total = Counter(
    "blob_delete_fail_total", "Blob deletions that failed or timed out"
)

# per-object latency, the timeout bounds the last bucket
_blob_buckets = (
    0.05,
    0.1,
    0.5,
    1.0,
    2.0,
    5.0,
    10.0,
)

blob_delete_seconds = Histogram(
    "blob_delete_seconds", "Blob delete latency", buckets=_blob_buckets
)

# Blobs removed by the out-of-band orphan sweep
orphan_blobs_deleted_total = Counter(
    "orphan_blobs_deleted_total", "Orphaned blobs deleted by the sweep"
)

__all__ = [
    "votes_recorded_total",
    "quota_reject_total",
    "cascade_delete_total",
    "blob_delete_total",
    "blob_delete_fail_total",
    "blob_delete_seconds",
    "orphan_blobs_deleted_total",
]
