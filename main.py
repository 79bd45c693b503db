"""
Terraform Dashboard - Main Entry Point

Deployment orchestration backend: workspace jobs, audit trail and live
notifications.
"""

import logging
import sys

import structlog
import uvicorn

from src.config import get_settings


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging for the whole process."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().log_level)

from src.api.main import app  # noqa: E402

logger = structlog.get_logger(__name__)

__all__ = ["app", "main"]


def main():
    """Main entry point for running the application."""
    settings = get_settings()

    logger.info(
        "starting_server",
        host=settings.api_host,
        port=settings.api_port,
        environment=settings.app_env,
    )

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
