"""
Service entrypoint.
Configures logging and starts the FastAPI app, which on startup creates the
database tables.
"""

import sys

import uvicorn
from loguru import logger

from .config import settings


def configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )


def main() -> None:
    configure_logging()
    logger.info(f"Starting DevPulse on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "devpulse.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
