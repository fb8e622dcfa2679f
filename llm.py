"""
=============================================================================
LLM.PY — Talking to the language model
=============================================================================
One function: complete_json(system_prompt, user_prompt) → dict.

Every way the call can go wrong (no key, timeout, auth error, rate limit,
empty answer, broken JSON, JSON that is not an object) comes out as LLMError.
Callers catch LLMError and fall back; they never see openai exceptions.

The SDK's own retries are disabled: nothing in this app retries.
"""

import os
import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

logger = logging.getLogger("greenstreak.llm")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_CELEBRATION_MODEL = os.getenv("OPENAI_CELEBRATION_MODEL", "gpt-4o-mini")
DEFAULT_TIMEOUT_SECONDS = 30.0

_client: Optional[OpenAI] = None


class LLMError(Exception):
    """The model could not give us a usable JSON object."""


def get_client() -> OpenAI:
    global _client
    if not OPENAI_API_KEY:
        raise LLMError("OPENAI_API_KEY is not configured")
    if _client is None:
        _client = OpenAI(api_key=OPENAI_API_KEY, max_retries=0)
    return _client


def complete_json(
    system_prompt: str,
    user_prompt: str,
    model: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    temperature: float = 0.7,
) -> dict:
    """Asks for a JSON object and returns it parsed."""
    client = get_client()
    try:
        response = client.chat.completions.create(
            model=model or OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=temperature,
            timeout=timeout,
        )
    except OpenAIError as e:
        logger.error(f"❌ LLM call failed ({type(e).__name__}): {e}")
        raise LLMError(str(e)) from e

    if not response.choices or not response.choices[0].message.content:
        raise LLMError("Empty response from the model")

    content = response.choices[0].message.content
    try:
        result = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"❌ LLM returned invalid JSON: {content[:200]}")
        raise LLMError(f"Invalid JSON: {e}") from e

    if not isinstance(result, dict):
        raise LLMError(f"Expected a JSON object, got {type(result).__name__}")
    return result
