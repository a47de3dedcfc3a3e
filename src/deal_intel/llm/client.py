"""Language-model client for the extraction pipeline and Smart Pass.

One request/response contract over two wire formats:
- ollama: POST {base_url}/api/chat
- openai: POST {base_url}/v1/chat/completions (OpenAI-compatible, e.g. Together.ai)

Every transport problem (timeout, connection error, non-2xx) surfaces as
TransientProviderError; an unusable response body surfaces as ParseError.

Privacy Constraints:
- Never log prompts or raw document content above DEBUG
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from deal_intel.errors import ParseError, TransientProviderError

if TYPE_CHECKING:
    from deal_intel.config import LLMConfig

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Completion returned by the model provider."""

    content: str
    tokens_used: int
    model: str


class LLMConcurrencyLimiter:
    """Semaphore-based concurrency limiter for LLM requests.

    Prevents overwhelming a shared model server with concurrent requests.
    Thread-safe for synchronous usage.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active_count = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot for an LLM request.

        Args:
            timeout: Maximum time to wait (None = blocking)

        Returns:
            True if acquired, False if timeout
        """
        acquired = self._semaphore.acquire(blocking=True, timeout=timeout)
        if acquired:
            with self._lock:
                self._active_count += 1
        return acquired

    def release(self) -> None:
        """Release a slot after request completes."""
        with self._lock:
            self._active_count -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        with self._lock:
            return self._active_count


def _auth_headers(llm_config: LLMConfig) -> dict[str, str]:
    headers = {}
    if llm_config.auth_header:
        # Support formats: "Bearer token" or "Custom-Header: value"
        if ":" in llm_config.auth_header:
            key, value = llm_config.auth_header.split(":", 1)
            headers[key.strip()] = value.strip()
        else:
            headers["Authorization"] = llm_config.auth_header
    elif llm_config.api_key:
        headers["Authorization"] = f"Bearer {llm_config.api_key}"
    return headers


class LLMClient:
    """Synchronous chat-completion client with concurrency limiting."""

    def __init__(self, llm_config: LLMConfig) -> None:
        self.llm_config = llm_config
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(llm_config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=_auth_headers(llm_config),
        )
        self._limiter = LLMConcurrencyLimiter(max_concurrent=llm_config.max_concurrent)

    @property
    def active_requests(self) -> int:
        return self._limiter.active_requests

    def _endpoint(self) -> str:
        base = self.llm_config.base_url.rstrip("/")
        if self.llm_config.provider == "openai":
            if base.endswith("/v1"):
                return f"{base}/chat/completions"
            return f"{base}/v1/chat/completions"
        return f"{base}/api/chat"

    def _build_payload(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if self.llm_config.provider == "openai":
            payload: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            if json_mode:
                payload["response_format"] = {"type": "json_object"}
            return payload

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if json_mode:
            payload["format"] = "json"
        return payload

    def _read_response(self, data: dict[str, Any]) -> tuple[str, int]:
        """Pull (content, tokens_used) out of a provider response body."""
        try:
            if self.llm_config.provider == "openai":
                content = data["choices"][0]["message"]["content"]
                tokens = (data.get("usage") or {}).get("total_tokens", 0)
            else:
                content = data["message"]["content"]
                tokens = data.get("prompt_eval_count", 0) + data.get("eval_count", 0)
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError(f"unexpected provider response shape ({e})") from e
        return content or "", int(tokens or 0)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
        json_mode: bool = True,
        model: str | None = None,
    ) -> LLMResponse:
        """Run one chat completion.

        Raises:
            TransientProviderError: Timeout, connection failure or non-2xx status.
            ParseError: Provider body is not the expected JSON shape.
        """
        model = model or self.llm_config.model
        if not self._limiter.acquire(timeout=self.llm_config.timeout_seconds):
            raise TransientProviderError(
                f"Timed out waiting for an LLM slot (max={self.llm_config.max_concurrent})"
            )

        try:
            payload = self._build_payload(
                model, system_prompt, user_prompt, temperature, max_tokens, json_mode
            )
            logger.debug("Calling %s model %s at %s", self.llm_config.provider, model, self._endpoint())

            try:
                response = self._client.post(self._endpoint(), json=payload)
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise TransientProviderError(
                    f"LLM request timed out after {self.llm_config.timeout_seconds}s"
                ) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                raise TransientProviderError(
                    f"LLM API error {status} for model '{model}'", status_code=status
                ) from e
            except httpx.RequestError as e:
                raise TransientProviderError(f"LLM request failed: {e}") from e

            try:
                data = response.json()
            except ValueError as e:
                raise ParseError("provider returned a non-JSON body") from e

            content, tokens = self._read_response(data)
            logger.debug("Model %s returned %d chars (%d tokens)", model, len(content), tokens)
            return LLMResponse(content=content, tokens_used=tokens, model=model)
        finally:
            self._limiter.release()

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> LLMClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def parse_json_response(content: str) -> Any:
    """Parse JSON from model output with tolerance for common damage.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Prose around the JSON body
    - Trailing commas and stray control characters

    Raises:
        ParseError: If no JSON object or array can be recovered.
    """
    if not content or not content.strip():
        raise ParseError("empty response", raw_content=content)

    content = content.strip()

    # Remove markdown code blocks
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # Outermost object or array embedded in prose
    candidates = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start = content.find(opener)
        end = content.rfind(closer)
        if start != -1 and end > start:
            candidates.append((start, content[start : end + 1]))

    for _, candidate in sorted(candidates):
        for text in (candidate, _clean_json(candidate)):
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                continue

    try:
        return json.loads(_clean_json(content))
    except json.JSONDecodeError:
        raise ParseError(
            f"could not parse JSON from response: {content[:200]}", raw_content=content
        ) from None


def _clean_json(text: str) -> str:
    cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
    # Trailing commas before } or ]
    return re.sub(r",\s*([}\]])", r"\1", cleaned)
