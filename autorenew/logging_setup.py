import sys

from loguru import logger

from autorenew.config import get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | trace={extra[trace_id]} | {message}"
)


def setup_logging() -> None:
    """Install stderr (and optional file) sinks.

    Sinks are added with ``catch=True`` so a failing sink is reported by loguru
    itself instead of raising into the scheduler loops.
    """
    settings = get_settings()

    logger.remove()
    logger.configure(extra={"trace_id": "-"})
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        catch=True,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level.upper(),
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=False,
            catch=True,
        )
