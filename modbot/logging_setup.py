import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", audit_file: str | None = None) -> None:
    """Replace loguru's default sink with one at the configured level.

    Audit records (bound with ``audit=True``) can additionally be routed to
    their own file.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if audit_file:
        logger.add(
            audit_file,
            level="INFO",
            filter=lambda record: record["extra"].get("audit", False),
            rotation="10 MB",
        )
