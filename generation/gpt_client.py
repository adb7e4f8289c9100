"""
Shared OpenAI GPT helper for the generation pipeline.

Used by:
  - question_generator.py   (paper questions, chunked)
  - explanations.py         (per-question / whole-paper explanations)

Model: gpt-4o-mini  (override with GPT_MODEL env var, e.g. "gpt-4o")

The provider is a long-lived, stateless service object. Components receive it
as a constructor argument; get_provider() returns the process-wide default
and set_provider() swaps it (tests install a scripted fake here).
"""

import asyncio
import json
import logging
import os
import random
import re
from typing import Awaitable, Callable, Optional, TypeVar

from openai import AsyncOpenAI

from services.errors import GenerationFailed

log = logging.getLogger("generation.pipeline")

T = TypeVar("T")

# ── Config ────────────────────────────────────────────────────────────────────
GPT_MODEL = os.getenv("GPT_MODEL", "gpt-4o-mini")
PROVIDER_MAX_ATTEMPTS = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "3"))
PROVIDER_BASE_DELAY_SECONDS = float(os.getenv("PROVIDER_BASE_DELAY_SECONDS", "1.0"))
PROVIDER_MAX_DELAY_SECONDS = float(os.getenv("PROVIDER_MAX_DELAY_SECONDS", "10.0"))

DEFAULT_SYSTEM_PROMPT = "You are a helpful academic assistant. Output only what is asked."


class ProviderNotConfigured(RuntimeError):
    pass


class ContentProvider:
    """Anything that turns a prompt into text."""

    async def complete(
        self,
        prompt: str,
        system: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float = 0.4,
        max_tokens: int = 2048,
    ) -> str:
        raise NotImplementedError


class OpenAIContentProvider(ContentProvider):
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = GPT_MODEL):
        self._client = client
        self.model = model

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ProviderNotConfigured(
                    "OPENAI_API_KEY is not set. Add it to your .env file."
                )
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        system: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float = 0.4,
        max_tokens: int = 2048,
    ) -> str:
        """
        Call OpenAI Chat Completions and return the assistant message text.

        Args:
            prompt:      User-turn message (the actual instruction/question)
            system:      System prompt
            temperature: Sampling temperature (lower = more deterministic)
            max_tokens:  Max response tokens

        Returns:
            Raw string content of the model response
        """
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""


# Lazy process-wide default
_provider: Optional[ContentProvider] = None


def get_provider() -> ContentProvider:
    global _provider
    if _provider is None:
        _provider = OpenAIContentProvider()
    return _provider


def set_provider(provider: Optional[ContentProvider]) -> None:
    global _provider
    _provider = provider


# ── Timeout + retry ────────────────────────────────────────────────────────────

def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number `attempt` (1-based): base, 2*base, 4*base... capped."""
    delay = base_delay * (2 ** (attempt - 1))
    if jitter and base_delay > 0:
        delay += random.uniform(0, base_delay)
    return min(delay, max_delay)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    attempts: int = PROVIDER_MAX_ATTEMPTS,
    base_delay: float = PROVIDER_BASE_DELAY_SECONDS,
    max_delay: float = PROVIDER_MAX_DELAY_SECONDS,
    jitter: bool = True,
    label: str = "provider call",
) -> T:
    """
    Run `operation` under a timeout, retrying any failure with exponential
    backoff. Raises GenerationFailed carrying the last error once the attempts
    are used up.

    wait_for cancels the timed-out call, so a late provider answer is dropped
    and never applied twice.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except ProviderNotConfigured as e:
            raise GenerationFailed(str(e), cause=e)
        except asyncio.TimeoutError as e:
            last_error = e
            log.warning(f"[RETRY] {label}: attempt {attempt}/{attempts} timed out after {timeout}s")
        except Exception as e:
            last_error = e
            log.warning(f"[RETRY] {label}: attempt {attempt}/{attempts} failed - {e}")

        if attempt < attempts:
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            log.info(f"[RETRY] {label}: waiting {delay:.2f}s before retry")
            await asyncio.sleep(delay)

    log.error(f"[RETRY] {label}: giving up after {attempts} attempts")
    raise GenerationFailed(
        f"{label} failed after {attempts} attempts: {last_error or 'timeout'}",
        cause=last_error,
    )


# ── JSON extraction ───────────────────────────────────────────────────────────

def _strip_fences(raw: str) -> str:
    raw = raw.strip()
    raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    raw = re.sub(r"\s*```$", "", raw, flags=re.MULTILINE)
    return raw


def extract_json_array(raw: str) -> list:
    raw = _strip_fences(raw)
    start = raw.find("[")
    end = raw.rfind("]") + 1
    if start == -1 or end == 0:
        raise ValueError(f"No JSON array found: {raw[:200]}")
    data = json.loads(raw[start:end])
    if not isinstance(data, list):
        raise ValueError(f"Expected JSON array, got {type(data).__name__}")
    return data


def extract_json_obj(raw: str) -> dict:
    raw = _strip_fences(raw)
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError(f"No JSON object found: {raw[:200]}")
    data = json.loads(raw[start:end])
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data
