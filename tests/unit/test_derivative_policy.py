import pytest

from src.core.exceptions import MalformedInputError
from src.engines.derivative.policy import decide


def test_image_inside_threshold_is_left_alone():
    decision = decide(800, 600, 1024)
    assert decision.needs_downscale is False
    assert (decision.target_width, decision.target_height) == (800, 600)


def test_image_exactly_at_threshold_is_left_alone():
    decision = decide(1024, 1024, 1024)
    assert decision.needs_downscale is False
    assert (decision.target_width, decision.target_height) == (1024, 1024)


def test_wide_image_is_fitted_to_threshold():
    decision = decide(4000, 2000, 1024)
    assert decision.needs_downscale is True
    assert (decision.target_width, decision.target_height) == (1024, 512)


def test_tall_image_is_fitted_to_threshold():
    decision = decide(1500, 3000, 1024)
    assert decision.needs_downscale is True
    assert (decision.target_width, decision.target_height) == (512, 1024)


def test_rounding_is_half_up():
    # 513 * (1024/1025) = 512.4995... -> 512
    assert decide(1025, 513, 1024).target_height == 512
    # 2048 x 1025 * 0.5 = 512.5 -> 513
    decision = decide(2048, 1025, 1024)
    assert (decision.target_width, decision.target_height) == (1024, 513)


def test_extreme_aspect_ratio_keeps_one_pixel():
    decision = decide(100000, 10, 1024)
    assert decision.target_width == 1024
    assert decision.target_height == 1


@pytest.mark.parametrize("width,height", [(5000, 3333), (1025, 1025), (3000, 1024), (1024, 4096), (7, 9000)])
def test_downscale_preserves_aspect_ratio_within_rounding(width, height):
    threshold = 1024
    decision = decide(width, height, threshold)
    assert decision.needs_downscale is True
    assert max(decision.target_width, decision.target_height) <= threshold
    scale = min(threshold / width, threshold / height)
    assert abs(decision.target_width - width * scale) <= 0.5 or decision.target_width == 1
    assert abs(decision.target_height - height * scale) <= 0.5 or decision.target_height == 1


def test_custom_threshold():
    decision = decide(600, 300, 300)
    assert (decision.target_width, decision.target_height, decision.needs_downscale) == (300, 150, True)


@pytest.mark.parametrize("width,height,threshold", [(0, 10, 1024), (10, -1, 1024), (10, 10, 0)])
def test_invalid_dimensions_are_rejected(width, height, threshold):
    with pytest.raises(MalformedInputError):
        decide(width, height, threshold)
