"""
Loguru setup shared by the API, the realtime core and the seed script.
Modules import `logger` from here; sinks are configured nowhere else.
"""
import sys
from loguru import logger
from config.settings import settings

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[env]} | "
    "{name}:{function}:{line} - {message}"
)

logger.remove()
logger.configure(extra={"env": settings.env})

logger.add(
    sys.stderr,
    level=settings.log_level,
    format=LOG_FORMAT,
    colorize=True,
    backtrace=False,
    diagnose=settings.env == "development",
)

# Test runs log to stderr only.
if settings.env != "test":
    logger.add(
        f"{settings.log_dir}/academic_insight_{{time:YYYY-MM-DD}}.log",
        format=LOG_FORMAT,
        rotation="00:00",
        retention=f"{settings.log_retention_days} days",
        compression="zip",
        level="DEBUG",
        enqueue=True,
    )

__all__ = ["logger"]
