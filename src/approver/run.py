#!/usr/bin/env python
import uvicorn
import os
from dotenv import load_dotenv
from pathlib import Path

from loguru import logger

if __name__ == "__main__":
    logger.info("Webhook Serving CSR Approver, start running!")
    load_dotenv(Path.cwd() / ".env")

    # 在 load_dotenv 之后导入，确保 .env 中的配置生效
    from src.approver.config import config

    logger.info(f"当前应用环境：{os.getenv('APP_ENV')}")

    uvicorn.run(
        "src.approver.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
