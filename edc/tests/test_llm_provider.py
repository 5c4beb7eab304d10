"""
Tests for the extraction chat model factory.
"""

import httpx
import pytest

from edc.ingestion.llm_provider import LLMSettings, get_llm, is_truthy, request_as_curl


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EDC_LLM_API_ENDPOINT", "https://llm.example/v1/chat/completions")
        monkeypatch.setenv("EDC_LLM_API_KEY", "secret")
        monkeypatch.setenv("EDC_LLM_MODEL_NAME", "claude")
        monkeypatch.setenv("LLM_SSL_VERIFY", "false")
        monkeypatch.delenv("LOG_LLM_CURL", raising=False)

        settings = LLMSettings.from_env()
        assert settings.model_name == "claude"
        assert settings.ssl_verify is False
        assert settings.log_requests is False
        assert settings.base_url == "https://llm.example/v1"

    def test_base_url_without_suffix(self):
        assert LLMSettings(endpoint="http://localhost:11434/v1/").base_url == "http://localhost:11434/v1"

    @pytest.mark.parametrize("value,expected", [("1", True), ("Yes", True), ("off", False), (None, False)])
    def test_is_truthy(self, value, expected):
        assert is_truthy(value) is expected


class TestRequestAsCurl:
    def test_redacts_credentials(self):
        request = httpx.Request(
            "POST",
            "https://llm.example/v1/chat/completions",
            headers={"Authorization": "Bearer secret", "X-Trace": "t1"},
            content=b'{"model": "m"}',
        )
        curl = request_as_curl(request)
        assert curl.startswith("curl -X POST 'https://llm.example/v1/chat/completions'")
        assert "secret" not in curl
        assert "[REDACTED]" in curl
        assert "x-trace: t1" in curl
        assert "-d '{\"model\": \"m\"}'" in curl

    def test_truncates_long_bodies(self):
        request = httpx.Request("POST", "https://llm.example", content=b"x" * 5000)
        assert request_as_curl(request).endswith("... [TRUNCATED]'")


class TestGetLlm:
    def test_missing_endpoint(self):
        with pytest.raises(ValueError, match="EDC_LLM_API_ENDPOINT"):
            get_llm(LLMSettings())

    def test_builds_model(self):
        llm = get_llm(LLMSettings(endpoint="http://localhost:8000/v1/chat/completions", api_key="k"))
        assert llm.openai_api_base == "http://localhost:8000/v1"
        assert llm.max_tokens == 8000
