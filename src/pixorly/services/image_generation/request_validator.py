"""Validation and normalisation of generation requests."""

from dataclasses import dataclass
from typing import Optional

from pixorly.services.exceptions import GenerationValidationError
from pixorly.services.image_generation.model_catalog import ModelCatalog

MAX_PROMPT_LENGTH = 2000
MIN_DIMENSION = 256
MAX_DIMENSION = 2048
MIN_IMAGES = 1
MAX_IMAGES = 4

DEFAULT_DIMENSION = 1024
DEFAULT_STEPS = 30
DEFAULT_GUIDANCE = 7.5


@dataclass(frozen=True)
class GenerationRequest:
    """A validated request with every default filled in."""

    prompt: str
    model: str
    negative_prompt: Optional[str] = None
    width: int = DEFAULT_DIMENSION
    height: int = DEFAULT_DIMENSION
    steps: int = DEFAULT_STEPS
    guidance: float = DEFAULT_GUIDANCE
    seed: Optional[int] = None
    num_images: int = 1


def validate_request(
    catalog: ModelCatalog,
    prompt: str,
    model: str,
    negative_prompt: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    steps: Optional[int] = None,
    guidance: Optional[float] = None,
    seed: Optional[int] = None,
    num_images: Optional[int] = None,
) -> GenerationRequest:
    """Validate raw request fields and apply defaults.

    Args:
        catalog: Model catalog (supplies per-model limits and defaults)
        prompt: User prompt, trimmed before checks
        model: Catalog key or provider model id
        negative_prompt: Optional negative prompt, trimmed; blank becomes None
        width: Output width, default 1024
        height: Output height, default 1024
        steps: Inference steps, default from the model (30 for unknown models)
        guidance: Guidance scale, default from the model (7.5 for unknown models)
        seed: Optional seed
        num_images: Number of images, default 1

    Returns:
        Normalised GenerationRequest

    Raises:
        GenerationValidationError: On the first violated rule
    """
    prompt = (prompt or "").strip()
    if not prompt:
        raise GenerationValidationError("Prompt cannot be empty")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise GenerationValidationError(
            f"Prompt must be {MAX_PROMPT_LENGTH} characters or less (got {len(prompt)})"
        )

    model = (model or "").strip()
    if not model:
        raise GenerationValidationError("Model is required")

    if negative_prompt is not None:
        negative_prompt = negative_prompt.strip() or None
    if negative_prompt is not None and len(negative_prompt) > MAX_PROMPT_LENGTH:
        raise GenerationValidationError(
            f"Negative prompt must be {MAX_PROMPT_LENGTH} characters or less"
        )

    width = DEFAULT_DIMENSION if width is None else width
    height = DEFAULT_DIMENSION if height is None else height
    for name, value in (("Width", width), ("Height", height)):
        if value < MIN_DIMENSION or value > MAX_DIMENSION:
            raise GenerationValidationError(
                f"{name} must be between {MIN_DIMENSION} and {MAX_DIMENSION} pixels (got {value})"
            )

    spec = catalog.resolve(model)
    if spec is not None and (width > spec.max_width or height > spec.max_height):
        raise GenerationValidationError(
            f"{spec.display_name} supports up to {spec.max_width}x{spec.max_height} pixels "
            f"(got {width}x{height})"
        )

    num_images = 1 if num_images is None else num_images
    if num_images < MIN_IMAGES or num_images > MAX_IMAGES:
        raise GenerationValidationError(
            f"Number of images must be between {MIN_IMAGES} and {MAX_IMAGES} (got {num_images})"
        )

    if steps is None:
        steps = spec.default_steps if spec else DEFAULT_STEPS
    if steps < 1:
        raise GenerationValidationError("Steps must be a positive integer")

    if guidance is None:
        guidance = spec.default_guidance if spec else DEFAULT_GUIDANCE
    if guidance < 0:
        raise GenerationValidationError("Guidance must not be negative")

    return GenerationRequest(
        prompt=prompt,
        model=model,
        negative_prompt=negative_prompt,
        width=width,
        height=height,
        steps=steps,
        guidance=guidance,
        seed=seed,
        num_images=num_images,
    )
