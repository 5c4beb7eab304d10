"""
Chat model factory for study-data extraction.

Protocol documents are read by any OpenAI-compatible chat completions
endpoint (a hosted Claude gateway, Ollama, a self-hosted platform).
Connection settings come from the environment; set LOG_LLM_CURL to
log each outgoing request as a curl command with credentials redacted.
"""

import logging
import os

import httpx
from dotenv import load_dotenv
from langchain_core.language_models import BaseChatModel
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "api-key"})
MAX_LOGGED_BODY_CHARS = 2000


def is_truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class LLMSettings(BaseModel):
    """Connection settings for the extraction model."""

    endpoint: str | None = None
    api_key: str | None = None
    model_name: str = "default"
    ssl_verify: bool = True
    log_requests: bool = False
    temperature: float = 0
    # Extraction replies are large JSON objects
    max_tokens: int = 8000
    request_timeout: int = 300

    @classmethod
    def from_env(cls) -> "LLMSettings":
        return cls(
            endpoint=os.getenv("EDC_LLM_API_ENDPOINT"),
            api_key=os.getenv("EDC_LLM_API_KEY"),
            model_name=os.getenv("EDC_LLM_MODEL_NAME", "default"),
            ssl_verify=is_truthy(os.getenv("LLM_SSL_VERIFY"), default=True),
            log_requests=is_truthy(os.getenv("LOG_LLM_CURL")),
        )

    @property
    def base_url(self) -> str:
        """Endpoint without the completions path, which ChatOpenAI appends itself."""
        url = (self.endpoint or "").rstrip("/")
        for suffix in ("/chat/completions", "/completions"):
            if url.endswith(suffix):
                return url[: -len(suffix)]
        return url


def request_as_curl(request: httpx.Request) -> str:
    """Render a request as a curl command, redacting credential headers."""
    parts = [f"curl -X {request.method} '{request.url}'"]
    for name, value in request.headers.items():
        shown = "[REDACTED]" if name.lower() in SENSITIVE_HEADERS else value
        parts.append(f"-H '{name}: {shown}'")

    if request.content:
        body = request.content.decode(errors="ignore")
        if len(body) > MAX_LOGGED_BODY_CHARS:
            body = body[:MAX_LOGGED_BODY_CHARS] + "... [TRUNCATED]"
        parts.append(f"-d '{body}'")
    return " ".join(parts)


def _log_request(request: httpx.Request) -> None:
    logger.debug("LLM request: %s", request_as_curl(request))


async def _log_request_async(request: httpx.Request) -> None:
    _log_request(request)


def build_http_clients(settings: LLMSettings) -> tuple[httpx.Client, httpx.AsyncClient]:
    """Sync and async HTTP clients sharing the TLS and logging settings."""
    sync_hooks = {"request": [_log_request]} if settings.log_requests else {}
    async_hooks = {"request": [_log_request_async]} if settings.log_requests else {}
    return (
        httpx.Client(verify=settings.ssl_verify, event_hooks=sync_hooks),
        httpx.AsyncClient(verify=settings.ssl_verify, event_hooks=async_hooks),
    )


def get_llm(settings: LLMSettings | None = None, **kwargs) -> BaseChatModel:
    """Create the chat model used for extraction.

    Args:
        settings: Connection settings; read from the environment if omitted.
        **kwargs: Passed to ChatOpenAI, overriding the settings' defaults.

    Raises:
        ValueError: If no endpoint is configured.
    """
    from langchain_openai import ChatOpenAI

    settings = settings or LLMSettings.from_env()
    if not settings.endpoint:
        raise ValueError(
            "EDC_LLM_API_ENDPOINT is required. "
            "Set it to your OpenAI-compatible chat completions URL."
        )

    http_client, http_async_client = build_http_clients(settings)
    options = {
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "request_timeout": settings.request_timeout,
        **kwargs,
    }
    return ChatOpenAI(
        api_key=settings.api_key,
        model=settings.model_name,
        base_url=settings.base_url,
        http_client=http_client,
        http_async_client=http_async_client,
        **options,
    )
