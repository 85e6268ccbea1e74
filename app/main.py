from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import Settings
from app.db import init_db
from app.services import reclamation
from app.services.storage import init_storage, close_client
from app.logger import request_context, setup_logging
from app.controllers import v1

settings = Settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_storage(settings)
    await asyncio.to_thread(init_db, settings)
    yield
    # let in-flight blob deletions finish before the S3 client goes away
    await reclamation.drain(timeout=settings.blob_delete_timeout_s)
    await close_client()


app = FastAPI(
    title="PicVote API",
    version="1.0.0",
    lifespan=lifespan,
)

app.middleware("http")(request_context)
app.include_router(v1.router)

Instrumentator().instrument(app).expose(app)
