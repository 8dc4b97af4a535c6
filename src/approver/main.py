"""
FastAPI 应用入口点。
"""

import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.approver.approval.router import router as approval_router
from src.approver.config import config
from src.approver.index.router import router as index_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.remove()
    logger.add(sys.stderr, level=config.log_level)
    logger.info(f"config: {config.model_dump_json(indent=4)}")
    yield
    logger.info("应用关闭")


app = FastAPI(title="Webhook Serving CSR Approver", lifespan=lifespan)

app.include_router(approval_router, prefix="/v1")
app.include_router(index_router, prefix="/v1")


@app.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}
