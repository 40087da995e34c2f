"""
Mistral Chat Client for PedsQuery

Async HTTP client for the Mistral chat-completions API with:
- Blocking completion
- Server-sent-event streaming ("data: " frames, "[DONE]" sentinel)
- Health check

Failures raise GenerationError. There are no retries; the pipeline turns a
generation failure into an error answer.
"""

import json
import logging
import os
from collections.abc import AsyncIterator

import httpx

from pedsquery.errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.environ.get("MISTRAL_URL", "https://api.mistral.ai/v1")
DEFAULT_MODEL = os.environ.get("MISTRAL_MODEL", "mistral-large-latest")
DEFAULT_TIMEOUT = int(os.environ.get("MISTRAL_TIMEOUT_SECONDS", "120"))
MISTRAL_API_KEY = os.environ.get("MISTRAL_API_KEY", "")

# LLM generation parameters
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = int(os.environ.get("MAX_RESPONSE_TOKENS", "2048"))
DEFAULT_TOP_P = 0.9

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


class MistralClient:
    """Async client for Mistral chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
        top_p: float = DEFAULT_TOP_P,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else MISTRAL_API_KEY
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.top_p = top_p
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), transport=self._transport
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> dict:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": self.top_p,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        """Send messages and return the completion text.

        Raises:
            GenerationError: On transport failure, a non-2xx status, or an
                empty completion.
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, temperature, max_tokens, stream=False),
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Mistral API error: HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationError(f"Mistral API request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = ""
        if not content:
            raise GenerationError("No response content from Mistral API")
        return content

    async def chat_stream(
        self,
        messages: list[dict[str, str]],
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> AsyncIterator[str]:
        """Yield completion fragments as they arrive.

        Malformed frames are skipped. The response is closed when the
        consumer stops iterating.

        Raises:
            GenerationError: On transport failure or a non-2xx status.
        """
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=self._payload(messages, temperature, max_tokens, stream=True),
                    headers=self._headers(),
                ) as response:
                    if response.status_code >= 400:
                        raise GenerationError(
                            f"Mistral API error: HTTP {response.status_code}"
                        )
                    async for line in response.aiter_lines():
                        fragment = parse_sse_line(line)
                        if fragment == SSE_DONE:
                            return
                        if fragment:
                            yield fragment
        except httpx.HTTPError as e:
            raise GenerationError(f"Mistral streaming failed: {e}") from e

    async def health_check(self) -> bool:
        """Return True if the models endpoint answers with 200."""
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(10), transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/models", headers=self._headers()
                )
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Mistral health check failed: %s", e)
            return False


def parse_sse_line(line: str) -> str | None:
    """Extract the content delta from one SSE line.

    Returns SSE_DONE for the end sentinel, the delta text for a content
    frame, and None for anything else (blank lines, comments, malformed
    JSON, frames without content).
    """
    line = line.strip()
    if not line.startswith(SSE_PREFIX):
        return None
    data = line[len(SSE_PREFIX):].strip()
    if data == SSE_DONE:
        return SSE_DONE
    try:
        parsed = json.loads(data)
        return parsed["choices"][0]["delta"].get("content") or None
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logger.debug("Skipping malformed stream frame: %s", data[:80])
        return None
