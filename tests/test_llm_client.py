"""Tests for the language-model client and JSON recovery."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from deal_intel.config import LLMConfig
from deal_intel.errors import ParseError, TransientProviderError
from deal_intel.llm.client import LLMClient, LLMConcurrencyLimiter, parse_json_response


def _http_response(body: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = body
    return response


@pytest.fixture
def ollama_config() -> LLMConfig:
    return LLMConfig(provider="ollama", base_url="http://ollama.test:11434", model="qwen-test")


@pytest.fixture
def openai_config() -> LLMConfig:
    return LLMConfig(
        provider="openai",
        base_url="https://api.together.test/v1",
        api_key="sk-test",
        model="meta-llama/test",
    )


class TestLLMClient:
    """Wire formats and error mapping."""

    @patch("deal_intel.llm.client.httpx.Client")
    def test_ollama_completion(self, mock_client_class: MagicMock, ollama_config: LLMConfig) -> None:
        mock_client = MagicMock()
        mock_client.post.return_value = _http_response(
            {
                "message": {"content": json.dumps({"costs": []})},
                "prompt_eval_count": 120,
                "eval_count": 30,
            }
        )
        mock_client_class.return_value = mock_client

        response = LLMClient(ollama_config).complete("system", "user", temperature=0.1, max_tokens=500)

        assert response.content == '{"costs": []}'
        assert response.tokens_used == 150
        assert response.model == "qwen-test"

        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url == "http://ollama.test:11434/api/chat"
        assert payload["format"] == "json"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.1, "num_predict": 500}
        assert payload["messages"][0] == {"role": "system", "content": "system"}

    @patch("deal_intel.llm.client.httpx.Client")
    def test_openai_completion(self, mock_client_class: MagicMock, openai_config: LLMConfig) -> None:
        mock_client = MagicMock()
        mock_client.post.return_value = _http_response(
            {
                "choices": [{"message": {"content": '{"suggestions": []}'}}],
                "usage": {"total_tokens": 812},
            }
        )
        mock_client_class.return_value = mock_client

        client = LLMClient(openai_config)
        response = client.complete("system", "user", model="override-model")

        assert response.tokens_used == 812
        assert response.model == "override-model"
        url = mock_client.post.call_args.args[0]
        payload = mock_client.post.call_args.kwargs["json"]
        assert url == "https://api.together.test/v1/chat/completions"
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["model"] == "override-model"

        headers = mock_client_class.call_args.kwargs["headers"]
        assert headers == {"Authorization": "Bearer sk-test"}

    @patch("deal_intel.llm.client.httpx.Client")
    def test_custom_auth_header(self, mock_client_class: MagicMock) -> None:
        config = LLMConfig(auth_header="X-Api-Key: secret")

        LLMClient(config)

        assert mock_client_class.call_args.kwargs["headers"] == {"X-Api-Key": "secret"}

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ReadTimeout("read timed out"),
            httpx.ConnectError("connection refused"),
        ],
    )
    @patch("deal_intel.llm.client.httpx.Client")
    def test_transport_errors_are_transient(
        self, mock_client_class: MagicMock, error: Exception, ollama_config: LLMConfig
    ) -> None:
        mock_client = MagicMock()
        mock_client.post.side_effect = error
        mock_client_class.return_value = mock_client

        with pytest.raises(TransientProviderError):
            LLMClient(ollama_config).complete("system", "user")

    @patch("deal_intel.llm.client.httpx.Client")
    def test_http_status_error_carries_status(
        self, mock_client_class: MagicMock, ollama_config: LLMConfig
    ) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "Service Unavailable", request=MagicMock(), response=MagicMock(status_code=503)
        )
        mock_client = MagicMock()
        mock_client.post.return_value = response
        mock_client_class.return_value = mock_client

        with pytest.raises(TransientProviderError) as exc_info:
            LLMClient(ollama_config).complete("system", "user")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @patch("deal_intel.llm.client.httpx.Client")
    def test_unexpected_body_is_parse_error(
        self, mock_client_class: MagicMock, openai_config: LLMConfig
    ) -> None:
        mock_client = MagicMock()
        mock_client.post.return_value = _http_response({"choices": []})
        mock_client_class.return_value = mock_client

        with pytest.raises(ParseError):
            LLMClient(openai_config).complete("system", "user")

    @patch("deal_intel.llm.client.httpx.Client")
    def test_non_json_body_is_parse_error(
        self, mock_client_class: MagicMock, ollama_config: LLMConfig
    ) -> None:
        response = MagicMock()
        response.json.side_effect = ValueError("Expecting value")
        mock_client = MagicMock()
        mock_client.post.return_value = response
        mock_client_class.return_value = mock_client

        with pytest.raises(ParseError):
            LLMClient(ollama_config).complete("system", "user")

    @patch("deal_intel.llm.client.httpx.Client")
    def test_limiter_released_after_error(
        self, mock_client_class: MagicMock, ollama_config: LLMConfig
    ) -> None:
        mock_client = MagicMock()
        mock_client.post.side_effect = httpx.ConnectError("refused")
        mock_client_class.return_value = mock_client

        client = LLMClient(ollama_config)
        with pytest.raises(TransientProviderError):
            client.complete("system", "user")

        assert client.active_requests == 0

    @patch("deal_intel.llm.client.httpx.Client")
    def test_context_manager(self, mock_client_class: MagicMock, ollama_config: LLMConfig) -> None:
        mock_client = MagicMock()
        mock_client_class.return_value = mock_client

        with LLMClient(ollama_config):
            pass

        mock_client.close.assert_called_once()


class TestConcurrencyLimiter:
    def test_acquire_times_out_when_full(self) -> None:
        limiter = LLMConcurrencyLimiter(max_concurrent=1)

        assert limiter.acquire() is True
        assert limiter.acquire(timeout=0.01) is False
        assert limiter.active_requests == 1

        limiter.release()
        assert limiter.active_requests == 0


class TestParseJsonResponse:
    """Recovery of JSON from model text."""

    def test_plain(self) -> None:
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_code_block(self) -> None:
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_prose_around_object(self) -> None:
        content = 'Here is the data:\n{"costs": [{"type": "SDLT"}]}\nLet me know.'
        assert parse_json_response(content) == {"costs": [{"type": "SDLT"}]}

    def test_array(self) -> None:
        assert parse_json_response('Result: [{"itemIndex": 1}]') == [{"itemIndex": 1}]

    def test_trailing_comma(self) -> None:
        assert parse_json_response('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    @pytest.mark.parametrize("content", ["", "   ", "no json here"])
    def test_unrecoverable(self, content: str) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_json_response(content)

        assert str(exc_info.value).startswith("parse error")
