"""
Gemini client used for interview scoring and interviewer replies.

Every call is bounded by a timeout and retried once before giving up.
"""
import asyncio
import logging
import os
from typing import Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-lite"


class ProviderUnavailableError(Exception):
    """The language model could not be reached or refused the request."""


class ProviderTimeoutError(ProviderUnavailableError):
    """The language model did not answer within the configured timeout."""


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        client=None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY")
        self.timeout = timeout if timeout is not None else _env_float("LLM_TIMEOUT_SECONDS", 30.0)
        self.retries = max(0, retries if retries is not None else _env_int("LLM_RETRIES", 1))
        self.scoring_model = os.getenv("SCORING_MODEL", DEFAULT_MODEL)
        self.chat_model = os.getenv("CHAT_MODEL", DEFAULT_MODEL)
        self._client = client

    def _models(self):
        if self._client is None:
            if not self.api_key:
                raise ProviderUnavailableError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client.aio.models

    async def generate(
        self,
        model: str,
        contents,
        system_instruction: str,
        temperature: float,
        max_output_tokens: Optional[int] = None,
        json_output: bool = False,
    ) -> str:
        """Return the text of one completion, retrying once on timeout or transport error."""
        models = self._models()
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json" if json_output else None,
        )

        attempts = 1 + self.retries
        last_error: Optional[ProviderUnavailableError] = None
        cause: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                response = await asyncio.wait_for(
                    models.generate_content(model=model, contents=contents, config=config),
                    timeout=self.timeout,
                )
                return (response.text or "").strip()
            except asyncio.TimeoutError as e:
                cause = e
                last_error = ProviderTimeoutError(
                    f"{model} did not answer within {self.timeout:g}s"
                )
            except (genai_errors.APIError, httpx.HTTPError) as e:
                cause = e
                last_error = ProviderUnavailableError(f"{model} request failed: {e}")
            logger.warning("[LLM] Attempt %d/%d failed: %s", attempt, attempts, last_error)

        raise last_error from cause


def get_llm_client() -> GeminiClient:
    """FastAPI dependency: one client per request, configured from the environment."""
    return GeminiClient()
