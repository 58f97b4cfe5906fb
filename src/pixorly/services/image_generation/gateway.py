"""Provider gateway: the uniform image generation contract used by the orchestrator."""

import httpx
import structlog

from pixorly.core.config import Settings
from pixorly.services.exceptions import NoImagesProducedError
from pixorly.services.image_generation.byte_sources import (
    ByteSource,
    ImageBytes,
    RemoteImage,
    resolve_byte_source,
)
from pixorly.services.image_generation.model_catalog import ModelCatalog
from pixorly.services.image_generation.openrouter_client import OpenRouterClient, ProviderRequest
from pixorly.services.image_generation.request_validator import (
    GenerationRequest,
    validate_request,
)

logger = structlog.get_logger(__name__)


class ProviderGateway:
    """Cost estimation, validation and generation behind one object.

    `generate` returns parsed image sources and `resolve` turns one into
    bytes, so callers never deal with provider response shapes.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        client: OpenRouterClient,
        download_timeout_seconds: float = 30.0,
        download_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.catalog = catalog
        self.client = client
        self.download_timeout_seconds = download_timeout_seconds
        self.download_transport = download_transport

    @classmethod
    def from_settings(cls, settings: Settings, catalog: ModelCatalog) -> "ProviderGateway":
        client = OpenRouterClient(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout_seconds=settings.openrouter_timeout_seconds,
            app_url=settings.app_url,
            app_title=settings.app_title,
        )
        return cls(
            catalog=catalog,
            client=client,
            download_timeout_seconds=settings.image_download_timeout_seconds,
        )

    def estimate_cost(self, model: str, width: int, height: int, num_images: int = 1) -> int:
        return self.catalog.estimate_cost(model, width, height, num_images)

    def validate(self, **fields) -> GenerationRequest:
        """Validate raw request fields against the catalog. See validate_request."""
        return validate_request(self.catalog, **fields)

    def to_provider_request(self, request: GenerationRequest) -> ProviderRequest:
        spec = self.catalog.resolve(request.model)
        supports_negative_prompt = spec.supports_negative_prompt if spec else False
        supports_seed = spec.supports_seed if spec else False

        return ProviderRequest(
            model_id=self.catalog.provider_model_id(request.model),
            prompt=request.prompt,
            width=request.width,
            height=request.height,
            num_images=request.num_images,
            negative_prompt=request.negative_prompt if supports_negative_prompt else None,
            seed=request.seed if supports_seed else None,
        )

    async def generate(self, request: GenerationRequest) -> list[ByteSource]:
        """Run one provider call and return the produced image sources.

        Sources are left unresolved; see `resolve`.

        Args:
            request: Validated generation request

        Returns:
            At most `request.num_images` sources (at least one)

        Raises:
            NoImagesProducedError: Provider succeeded but returned no images
            ProviderTransientError: Retryable provider failure
            ProviderPermanentError: Terminal provider failure
        """
        provider_request = self.to_provider_request(request)
        sources = await self.client.generate(provider_request)

        if not sources:
            logger.warning("provider.no_images", model=provider_request.model_id)
            raise NoImagesProducedError()

        if len(sources) > request.num_images:
            logger.info(
                "provider.extra_images_dropped",
                model=provider_request.model_id,
                requested=request.num_images,
                returned=len(sources),
            )
            sources = sources[: request.num_images]

        logger.info(
            "provider.images_produced",
            model=provider_request.model_id,
            image_count=len(sources),
            remote_count=sum(isinstance(source, RemoteImage) for source in sources),
        )
        return sources

    async def resolve(self, source: ByteSource) -> ImageBytes:
        """Fetch one image's bytes, downloading it when the provider hosts it.

        Raises:
            ImageDownloadError: Remote image could not be fetched
        """
        async with httpx.AsyncClient(
            timeout=self.download_timeout_seconds,
            transport=self.download_transport,
            follow_redirects=True,
        ) as client:
            return await resolve_byte_source(source, client)
