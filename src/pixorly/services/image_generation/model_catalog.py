"""Versioned catalog of image models with pricing and limits.

The catalog is configuration, not code: the default below can be replaced by
a JSON file (MODEL_CATALOG_PATH) without touching the orchestrator.
"""

import json
import math
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

BASE_PIXELS = 1024 * 1024


class ModelSpec(BaseModel):
    """Pricing, limits and defaults for one model."""

    key: str
    provider_model_id: str
    display_name: str
    cost_per_image: int = Field(ge=0)
    max_width: int = 2048
    max_height: int = 2048
    supports_negative_prompt: bool = True
    supports_seed: bool = True
    default_steps: int = 30
    default_guidance: float = 7.5


class ModelCatalog(BaseModel):
    """Injected model table used for cost estimation and request limits.

    Lookups accept either the short key (`flux-klein`) or the provider's raw
    model id (`black-forest-labs/flux.2-klein-4b`). Unknown models are not an
    error: they cost `default_cost` and are forwarded to the provider as-is.
    """

    version: str
    default_cost: int = Field(default=50, ge=0)
    base_pixels: int = Field(default=BASE_PIXELS, gt=0)
    models: list[ModelSpec] = Field(default_factory=list)

    def resolve(self, model: str) -> ModelSpec | None:
        for spec in self.models:
            if model in (spec.key, spec.provider_model_id):
                return spec
        return None

    def provider_model_id(self, model: str) -> str:
        spec = self.resolve(model)
        return spec.provider_model_id if spec else model

    def base_cost(self, model: str) -> int:
        spec = self.resolve(model)
        return spec.cost_per_image if spec else self.default_cost

    def estimate_cost(self, model: str, width: int, height: int, num_images: int = 1) -> int:
        """Credits charged for a request.

        Per-image cost is the model's base cost, scaled linearly by pixel
        count above the base resolution and rounded up. The rounded per-image
        cost is multiplied by the number of images.

        Args:
            model: Catalog key or provider model id
            width: Output width in pixels
            height: Output height in pixels
            num_images: Number of images requested

        Returns:
            Total credits for the request
        """
        per_image = self.base_cost(model)
        pixels = width * height
        if pixels > self.base_pixels:
            per_image = math.ceil(per_image * pixels / self.base_pixels)
        return per_image * num_images

    @classmethod
    def from_json_file(cls, path: str | Path) -> "ModelCatalog":
        """Load a catalog from a JSON document with the same shape as this model."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(data)


def default_catalog() -> ModelCatalog:
    """Built-in catalog of the OpenRouter image models offered by Pixorly."""
    return ModelCatalog(
        version="2025-01",
        models=[
            ModelSpec(
                key="flux-pro",
                provider_model_id="black-forest-labs/flux.2-pro",
                display_name="FLUX.2 Pro",
                cost_per_image=100,
            ),
            ModelSpec(
                key="flux-max",
                provider_model_id="black-forest-labs/flux.2-max",
                display_name="FLUX.2 Max",
                cost_per_image=120,
                default_steps=35,
                default_guidance=8.0,
            ),
            ModelSpec(
                key="flux-flex",
                provider_model_id="black-forest-labs/flux.2-flex",
                display_name="FLUX.2 Flex",
                cost_per_image=80,
                default_steps=25,
                default_guidance=7.0,
            ),
            ModelSpec(
                key="flux-klein",
                provider_model_id="black-forest-labs/flux.2-klein-4b",
                display_name="FLUX.2 Klein 4B",
                cost_per_image=40,
                default_steps=20,
                default_guidance=7.0,
            ),
            ModelSpec(
                key="riverflow-fast",
                provider_model_id="sourceful/riverflow-v2-fast-preview",
                display_name="Riverflow V2 Fast",
                cost_per_image=30,
                max_width=1024,
                max_height=1024,
                default_steps=20,
                default_guidance=7.0,
            ),
            ModelSpec(
                key="riverflow-standard",
                provider_model_id="sourceful/riverflow-v2-standard-preview",
                display_name="Riverflow V2 Standard",
                cost_per_image=50,
                max_width=1024,
                max_height=1024,
                default_steps=25,
            ),
            ModelSpec(
                key="riverflow-max",
                provider_model_id="sourceful/riverflow-v2-max-preview",
                display_name="Riverflow V2 Max",
                cost_per_image=90,
                max_width=1024,
                max_height=1024,
                default_guidance=8.0,
            ),
            ModelSpec(
                key="seedream",
                provider_model_id="bytedance-seed/seedream-4.5",
                display_name="Seedream 4.5",
                cost_per_image=25,
                max_width=1024,
                max_height=1024,
                default_steps=20,
                default_guidance=7.0,
            ),
        ],
    )


def load_catalog(path: str | None) -> ModelCatalog:
    """Load the catalog from `path` when configured, else the built-in one."""
    if not path:
        return default_catalog()

    catalog = ModelCatalog.from_json_file(path)
    logger.info(
        "model_catalog.loaded",
        path=path,
        version=catalog.version,
        model_count=len(catalog.models),
    )
    return catalog
