"""
Logging configuration using loguru.
"""
import sys
from loguru import logger
from app.config import settings
from app.middleware.correlation import correlation_id_filter


def setup_logger():
    """Configure loguru logger with correlation ID support."""
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <dim>{extra[correlation_id]}</dim> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level="DEBUG" if settings.debug else "INFO",
        colorize=True,
        filter=correlation_id_filter,
    )

    # File handler under the data dir (a mounted volume in Docker)
    log_dir = settings.data_dir / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Cannot create log directory {log_dir}, file logging disabled: {e}")
    else:
        logger.add(
            log_dir / "streamrelay.log",
            rotation="10 MB",
            retention="7 days",
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[correlation_id]} | {name}:{function}:{line} - {message}",
            filter=correlation_id_filter,
        )

    logger.info("Logger initialized with correlation ID support")
