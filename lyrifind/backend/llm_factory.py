from __future__ import annotations

"""Factory helpers for constructing LLM clients."""

from typing import List, Optional, Tuple
import json
import os

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_client import LlmClient, StaticLlmClient
from lyrifind.backend.llm_gemini import GeminiRestClient
from lyrifind.backend.secret_manager import read_secret
from lyrifind.mcp.logging_utils import get_logger


DEFAULT_STATIC_RESPONSE = {
    "tool_calls": [],
    "final_message": "Static mode is active, so no songs were looked up.",
}

logger = get_logger(__name__)


def _static_script(raw: Optional[str]) -> Tuple[str, List[str]]:
    """Split LLM_STATIC_RESPONSE into a single reply or a list of per-step replies."""
    if not raw:
        return json.dumps(DEFAULT_STATIC_RESPONSE), []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        # Kept verbatim; the static client reports unparseable steps as turn errors.
        logger.warning("llm_static_response_not_json chars=%s", len(raw))
        return raw, []
    if isinstance(parsed, list):
        steps = [entry if isinstance(entry, str) else json.dumps(entry) for entry in parsed]
        return (steps[-1] if steps else raw), steps
    return json.dumps(parsed), []


def create_llm_client(settings: Settings) -> Optional[LlmClient]:
    """Create an LLM client based on settings, or None if disabled."""
    provider = settings.llm_provider
    if provider in {"", "none", "disabled"}:
        return None
    if provider == "static":
        response_text, responses = _static_script(os.getenv("LLM_STATIC_RESPONSE"))
        loop = os.getenv("LLM_STATIC_LOOP", "").strip().lower() in {"1", "true", "yes"}
        return StaticLlmClient(response_text=response_text, responses=responses, loop=loop)
    if provider == "gemini":
        api_key = settings.gemini_api_key
        if not api_key and not settings.is_dev:
            api_key = read_secret(
                settings,
                settings.gemini_api_key_secret,
                settings.gemini_api_key_secret_version,
            )
        if not api_key:
            logger.warning("llm_disabled provider=gemini reason=missing_api_key")
            return None
        return GeminiRestClient(settings, api_key=api_key)
    raise ValueError(f"Unsupported LLM provider: {provider}")
