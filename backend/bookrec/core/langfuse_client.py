"""Langfuse client for observability and tracing."""

import logging
from typing import Optional

from langfuse import Langfuse

from bookrec.config import Settings, get_settings

logger = logging.getLogger(__name__)


def init_langfuse(settings: Optional[Settings] = None) -> Optional[Langfuse]:
    """Register the Langfuse client picked up by @observe.

    Returns None when no keys are configured; observed functions still run,
    their spans are simply not exported.
    """
    settings = settings or get_settings()
    if not (settings.langfuse_public_key and settings.langfuse_secret_key):
        logger.info("Langfuse keys not configured; traces will not be exported")
        return None

    return Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_host,
    )
