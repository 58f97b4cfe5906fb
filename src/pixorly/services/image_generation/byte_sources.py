"""Image byte sources returned by providers and their resolution to bytes.

Providers hand back images either inline (base64 `data:` URLs) or as remote
URLs. Both are parsed into a tagged `ByteSource`. The orchestrator resolves
each one to `ImageBytes` just before uploading it, so a failed download only
costs that image.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Union

import httpx

from pixorly.services.exceptions import ImageDownloadError, ProviderPermanentError

DEFAULT_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class InlineImage:
    """Image bytes embedded in the provider response."""

    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class RemoteImage:
    """Image hosted by the provider, to be downloaded."""

    url: str


ByteSource = Union[InlineImage, RemoteImage]


@dataclass(frozen=True)
class ImageBytes:
    """Resolved image payload ready for upload."""

    data: bytes
    content_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def parse_image_reference(reference: str) -> ByteSource:
    """Parse a provider image reference into a ByteSource.

    Args:
        reference: `data:<mime>;base64,<payload>` or an http(s) URL

    Returns:
        InlineImage for data URLs, RemoteImage otherwise

    Raises:
        ProviderPermanentError: Malformed data URL or unsupported scheme
    """
    if reference.startswith("data:"):
        header, sep, payload = reference.partition(",")
        if not sep or ";base64" not in header:
            raise ProviderPermanentError("Provider returned a malformed data URL")
        content_type = header[len("data:") :].split(";", 1)[0] or DEFAULT_CONTENT_TYPE
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderPermanentError(f"Provider returned invalid base64 image data: {e}")
        return InlineImage(data=data, content_type=content_type)

    if reference.startswith(("http://", "https://")):
        return RemoteImage(url=reference)

    raise ProviderPermanentError(f"Unsupported image reference: {reference[:64]}")


async def resolve_byte_source(source: ByteSource, client: httpx.AsyncClient) -> ImageBytes:
    """Turn a ByteSource into bytes, downloading remote images.

    Args:
        source: Parsed image reference
        client: HTTP client whose timeout bounds the download

    Returns:
        ImageBytes with the payload and its content type

    Raises:
        ImageDownloadError: Download timed out, failed to connect, or got an HTTP error
    """
    if isinstance(source, InlineImage):
        return ImageBytes(data=source.data, content_type=source.content_type)

    try:
        response = await client.get(source.url)
        response.raise_for_status()
    except httpx.TimeoutException as e:
        raise ImageDownloadError(f"Image download timeout: {e}")
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        raise ImageDownloadError(f"Image download failed ({status_code})", status_code=status_code)
    except httpx.TransportError as e:
        raise ImageDownloadError(f"Image download network error: {e}")

    content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE)
    content_type = content_type.split(";", 1)[0].strip() or DEFAULT_CONTENT_TYPE
    return ImageBytes(data=response.content, content_type=content_type)
