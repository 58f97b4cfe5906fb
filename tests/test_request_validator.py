"""Generation request validation tests."""

import pytest

from pixorly.services.exceptions import GenerationValidationError
from pixorly.services.image_generation.model_catalog import default_catalog
from pixorly.services.image_generation.request_validator import validate_request

catalog = default_catalog()


def test_defaults_applied():
    request = validate_request(catalog, prompt="  sunset  ", model="flux-klein")

    assert request.prompt == "sunset"
    assert (request.width, request.height) == (1024, 1024)
    assert request.steps == 20
    assert request.guidance == 7.0
    assert request.num_images == 1
    assert request.negative_prompt is None


@pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
def test_empty_prompt_rejected(prompt):
    with pytest.raises(GenerationValidationError, match="Prompt cannot be empty"):
        validate_request(catalog, prompt=prompt, model="flux-klein")


def test_prompt_length_limit():
    validate_request(catalog, prompt="a" * 2000, model="flux-klein")
    with pytest.raises(GenerationValidationError, match="2000 characters"):
        validate_request(catalog, prompt="a" * 2001, model="flux-klein")


@pytest.mark.parametrize("width,height", [(255, 1024), (1024, 255), (2049, 1024), (1024, 4096)])
def test_dimension_bounds(width, height):
    with pytest.raises(GenerationValidationError, match="between 256 and 2048"):
        validate_request(catalog, prompt="x", model="flux-pro", width=width, height=height)


def test_dimension_bounds_inclusive():
    validate_request(catalog, prompt="x", model="flux-pro", width=256, height=2048)


def test_model_specific_maximum():
    with pytest.raises(GenerationValidationError, match="1024x1024"):
        validate_request(catalog, prompt="x", model="seedream", width=2048, height=1024)


@pytest.mark.parametrize("num_images", [0, 5, -1])
def test_image_count_bounds(num_images):
    with pytest.raises(GenerationValidationError, match="between 1 and 4"):
        validate_request(catalog, prompt="x", model="flux-klein", num_images=num_images)


def test_blank_negative_prompt_becomes_none():
    request = validate_request(catalog, prompt="x", model="flux-klein", negative_prompt="   ")
    assert request.negative_prompt is None


def test_steps_and_guidance_checked():
    with pytest.raises(GenerationValidationError, match="Steps"):
        validate_request(catalog, prompt="x", model="flux-klein", steps=0)
    with pytest.raises(GenerationValidationError, match="Guidance"):
        validate_request(catalog, prompt="x", model="flux-klein", guidance=-0.5)


def test_unknown_model_accepted():
    request = validate_request(catalog, prompt="x", model="acme/new-model", width=2048, height=2048)
    assert request.model == "acme/new-model"


def test_step_and_guidance_defaults_follow_model():
    flux_max = validate_request(catalog, prompt="x", model="flux-max")
    assert (flux_max.steps, flux_max.guidance) == (35, 8.0)

    by_id = validate_request(catalog, prompt="x", model="black-forest-labs/flux.2-klein-4b")
    assert (by_id.steps, by_id.guidance) == (20, 7.0)

    unknown = validate_request(catalog, prompt="x", model="acme/new-model")
    assert (unknown.steps, unknown.guidance) == (30, 7.5)

    explicit = validate_request(catalog, prompt="x", model="flux-max", steps=12, guidance=3.5)
    assert (explicit.steps, explicit.guidance) == (12, 3.5)
