"""
Chat completion client for the AI commentary.

Uses the OpenAI SDK, either against api.openai.com (OPENAI_API_KEY) or against
an Azure OpenAI-compatible endpoint authenticated with a managed identity.

Endpoint pattern (Azure):
    https://<resource>.openai.azure.com/openai/v1/

Auth (Azure):
    ManagedIdentityCredential → token used as api_key
    Scope: https://cognitiveservices.azure.com/.default
"""

import json
import logging

from azure.identity import ManagedIdentityCredential
from openai import OpenAI

from coinlens.config import settings
from coinlens.errors import UpstreamError

logger = logging.getLogger(__name__)

AZURE_AUTH_SCOPE = "https://cognitiveservices.azure.com/.default"

_client = None


def _get_token() -> str:
    """Fetch an Azure token via User-Assigned Managed Identity."""
    if not settings.managed_identity_client_id:
        raise ValueError("MANAGED_IDENTITY_CLIENT_ID environment variable is required")
    credential = ManagedIdentityCredential(client_id=settings.managed_identity_client_id)
    return credential.get_token(AZURE_AUTH_SCOPE).token


def _get_client() -> OpenAI:
    """Return cached OpenAI client, creating on first call.

    Azure MSI tokens last ~24h; for long-running processes a restart
    or token-refresh wrapper would be needed.
    """
    global _client
    if _client is None:
        if settings.openai_api_key:
            _client = OpenAI(api_key=settings.openai_api_key, base_url=settings.llm_endpoint)
        else:
            if not settings.llm_endpoint:
                raise ValueError("LLM_ENDPOINT environment variable is required without OPENAI_API_KEY")
            _client = OpenAI(base_url=settings.llm_endpoint, api_key=_get_token())
    return _client


def complete(
    messages: list[dict],
    temperature: float = 0.7,
    max_tokens: int = 1000,
) -> str:
    """
    Call the model with chat messages, return assistant response text.

    Blocking; call through ``asyncio.to_thread`` from request handlers.
    """
    client = _get_client()

    try:
        completion = client.chat.completions.create(
            model=settings.llm_model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except Exception as e:
        logger.error("Model call failed: %s", e)
        raise UpstreamError(f"AI model call failed: {e}") from e

    content = completion.choices[0].message.content
    if content is None:
        raise UpstreamError("Model returned empty response (no content)")
    return content


def parse_json_reply(text: str) -> dict | None:
    """Parse a JSON object reply, stripping markdown fences if present."""
    clean = text.strip()
    try:
        if clean.startswith("```"):
            clean = clean.split("\n", 1)[1].rsplit("```", 1)[0].strip()
        parsed = json.loads(clean)
    except (json.JSONDecodeError, IndexError):
        return None
    return parsed if isinstance(parsed, dict) else None
