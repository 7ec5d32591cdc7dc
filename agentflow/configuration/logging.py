"""Logging setup for host processes embedding the engine."""

import logging

import structlog

from agentflow.configuration.config import Settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Log records longer than this are cut when payloads (chains, tool results)
# are included in a message.
MAX_LOGGED_PAYLOAD = 1000


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering each stdlib record as one JSON object per line."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from settings."""
    if settings.log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(json_formatter())
        logging.basicConfig(level=settings.log_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(level=settings.log_level, format=TEXT_FORMAT, force=True)


def truncate_for_log(text: str, limit: int = MAX_LOGGED_PAYLOAD) -> str:
    """Shorten a payload included in a log message."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
