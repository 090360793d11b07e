"""
Logging configuration (LOG_LEVEL).

Pipeline loggers live under `app.*`: app.services.vision (model calls),
app.services.crop_analysis (per image), app.services.batch_orchestrator
(per batch). Unexpected errors go through logger.exception.
"""
import logging
import sys

# Third-party loggers that log every request or statement at INFO
_NOISY_LOGGERS = ("httpx", "openai", "sqlalchemy.engine")


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "greeneye", "app"):
        logging.getLogger(name).setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
