"""Process-wide logging setup."""

import logging

from dialogue_engine.configuration.config import Settings


def configure_logging(settings: Settings) -> None:
    """Apply the configured level and format once at startup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=settings.log_format,
    )
    # litellm logs every request at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
