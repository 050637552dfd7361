"""
Derivative Policy

Decides whether an image needs a scaled-down viewing copy and computes the
target size. Pure and deterministic: no I/O.
"""

import math

from src.core.exceptions import MalformedInputError
from src.engines.derivative.schemas import DerivativeDecision

DEFAULT_DOWNSCALE_THRESHOLD_PX = 1024


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decide(width: int, height: int, threshold: int = DEFAULT_DOWNSCALE_THRESHOLD_PX) -> DerivativeDecision:
    """
    Fit (width, height) inside a threshold x threshold box, keeping the aspect ratio.

    Images already inside the box are left alone. Otherwise both sides are
    multiplied by min(threshold/width, threshold/height) and rounded half up;
    a side that would round to zero (extreme aspect ratios) is kept at 1px.

    Raises:
        MalformedInputError: for a non-positive dimension or threshold
    """
    if width <= 0 or height <= 0:
        raise MalformedInputError(
            f"Image dimensions must be positive, got {width}x{height}",
            stage="policy"
        )
    if threshold <= 0:
        raise MalformedInputError(f"Downscale threshold must be positive, got {threshold}", stage="policy")

    if width <= threshold and height <= threshold:
        return DerivativeDecision(target_width=width, target_height=height, needs_downscale=False)

    scale = min(threshold / width, threshold / height)
    return DerivativeDecision(
        target_width=max(1, _round_half_up(width * scale)),
        target_height=max(1, _round_half_up(height * scale)),
        needs_downscale=True,
    )
