"""Langfuse client for observability and tracing."""

from langfuse import Langfuse

from folio.config import get_settings

settings = get_settings()

# Initialize Langfuse client. With empty keys the client stays disabled and
# @observe() spans become no-ops.
langfuse = Langfuse(
    public_key=settings.langfuse_public_key,
    secret_key=settings.langfuse_secret_key,
    host=settings.langfuse_host,
)
