"""OpenRouter API client for image generation with error classification."""

from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from pixorly.services.exceptions import (
    ProviderPermanentError,
    ProviderTransientError,
    ServiceError,
)
from pixorly.services.image_generation.byte_sources import ByteSource, parse_image_reference

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

TRANSIENT_MESSAGE_PATTERNS = (
    "network",
    "timeout",
    "econnreset",
    "enotfound",
    "rate limit",
    "temporarily unavailable",
)


@dataclass(frozen=True)
class ProviderRequest:
    """Provider-ready request: catalog lookups already applied."""

    model_id: str
    prompt: str
    width: int
    height: int
    num_images: int = 1
    negative_prompt: Optional[str] = None
    seed: Optional[int] = None


def classify_status(status_code: int, detail: str = "") -> ServiceError:
    """Map a non-2xx OpenRouter response to a classified error.

    Classification rules:
        - 5xx → ProviderTransientError ("temporarily unavailable")
        - 429 → ProviderTransientError (rate limit)
        - 401/403 → ProviderPermanentError (credentials)
        - 400/404/422 and other 4xx → ProviderPermanentError
    """
    suffix = f": {detail}" if detail else ""

    if status_code >= 500:
        return ProviderTransientError(
            f"OpenRouter service temporarily unavailable ({status_code}){suffix}",
            status_code=status_code,
        )
    if status_code == 429:
        return ProviderTransientError(
            f"Rate limit exceeded ({status_code}){suffix}", status_code=status_code
        )
    if status_code == 401:
        return ProviderPermanentError(f"Invalid API key ({status_code})", status_code=status_code)
    if status_code == 403:
        return ProviderPermanentError(
            f"Access denied ({status_code}){suffix}", status_code=status_code
        )
    if status_code == 404:
        return ProviderPermanentError(
            f"Model not found ({status_code}){suffix}", status_code=status_code
        )
    if status_code in (400, 422):
        return ProviderPermanentError(
            f"Invalid request ({status_code}){suffix}", status_code=status_code
        )
    return ProviderPermanentError(
        f"OpenRouter API error ({status_code}){suffix}", status_code=status_code
    )


def classify_error(exception: Exception) -> ServiceError:
    """Classify an exception raised while talking to the provider.

    Args:
        exception: Original exception from httpx or response handling

    Returns:
        Classified ServiceError (already classified errors pass through)
    """
    if isinstance(exception, ServiceError):
        return exception

    if isinstance(exception, httpx.TimeoutException):
        return ProviderTransientError(f"Request timeout: {exception}")

    if isinstance(exception, httpx.HTTPStatusError):
        return classify_status(exception.response.status_code, exception.response.text[:200])

    if isinstance(exception, (httpx.TransportError, ConnectionError)):
        return ProviderTransientError(f"Network error: {exception}")

    message = str(exception)
    if any(pattern in message.lower() for pattern in TRANSIENT_MESSAGE_PATTERNS):
        return ProviderTransientError(message)

    return ProviderPermanentError(f"Unexpected provider error: {message}")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text[:200]


def extract_image_references(payload: dict[str, Any]) -> list[str]:
    """Collect image references from a chat completion response.

    Reads `choices[].message.images[].image_url.url`, falling back to the
    older `choices[].message.image_url` string per choice.
    """
    references: list[str] = []
    for choice in payload.get("choices") or []:
        message = (choice or {}).get("message") or {}
        images = message.get("images") or []
        if images:
            for image in images:
                url = ((image or {}).get("image_url") or {}).get("url")
                if url:
                    references.append(url)
        elif isinstance(message.get("image_url"), str):
            references.append(message["image_url"])
    return references


class OpenRouterClient:
    """Image generation client for the OpenRouter chat completions API.

    Performs exactly one HTTP call per `generate`. Retries are the caller's
    responsibility; every failure surfaces as a classified ServiceError.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        app_url: str = "https://pixorly.com",
        app_title: str = "Pixorly",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize OpenRouter client.

        Args:
            api_key: OpenRouter API key (from OPENROUTER_API_KEY env var)
            base_url: API base URL
            timeout_seconds: Bound on the whole request
            app_url: Sent as HTTP-Referer for OpenRouter attribution
            app_title: Sent as X-Title
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": app_url,
            "X-Title": app_title,
        }

    def build_request_body(self, request: ProviderRequest) -> dict[str, Any]:
        content = request.prompt
        if request.negative_prompt:
            content += f"\n\nNegative prompt: {request.negative_prompt}"

        body: dict[str, Any] = {
            "model": request.model_id,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": 1000,
            "image_size": f"{request.width}x{request.height}",
            "n": request.num_images,
        }
        if request.seed is not None:
            body["seed"] = request.seed
        return body

    async def generate(self, request: ProviderRequest) -> list[ByteSource]:
        """Submit a generation request.

        Args:
            request: Provider-ready request

        Returns:
            Parsed image byte sources, possibly empty

        Raises:
            ProviderTransientError: Timeout, network error, 429 or 5xx
            ProviderPermanentError: Credentials, bad request, malformed response
        """
        if not self.api_key:
            raise ProviderPermanentError("OPENROUTER_API_KEY not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json=self.build_request_body(request),
                )

            if response.status_code >= 400:
                raise classify_status(response.status_code, _error_detail(response))

            payload = response.json()

        except ServiceError:
            raise
        except ValueError as e:
            raise ProviderPermanentError(f"Invalid JSON in OpenRouter response: {e}") from e
        except httpx.HTTPError as e:
            raise classify_error(e) from e

        references = extract_image_references(payload)
        logger.debug(
            "openrouter.response",
            model=request.model_id,
            image_count=len(references),
            response_id=payload.get("id"),
        )
        return [parse_image_reference(reference) for reference in references]
