"""Ink (credit) pricing.

Cost scales with the number of generated pixels relative to a 512x512 image,
times a per-provider base rate. The same function sizes both the reservation
made at submission and the settlement made at finalization.
"""

import math
from fractions import Fraction
from typing import Optional

from mist.models.generation_request import GenerationParameters

BASE_PIXELS = 512 * 512

BASE_INK_RATES: dict[str, int] = {
    "dalle": 40,
    "stable_horde": 10,
    "mist": 10,
}

DEFAULT_INK_RATE = 10


def base_rate(provider: str) -> int:
    return BASE_INK_RATES.get(provider, DEFAULT_INK_RATE)


def calculate_ink_cost(parameters: GenerationParameters, produced_count: Optional[int] = None) -> int:
    """Ink charged for ``produced_count`` images (or the requested count).

    ``produced_count`` is clamped to ``[0, parameters.count]`` so a provider
    returning extra images never raises the price above the reservation.
    Rounding is half away from zero on exact arithmetic.

    Args:
        parameters: Request parameters
        produced_count: Number of images actually produced, or None at submission

    Returns:
        Non-negative integer cost
    """
    count = parameters.count if produced_count is None else max(0, min(produced_count, parameters.count))
    pixels = count * parameters.width * parameters.height
    exact = Fraction(pixels * base_rate(parameters.provider), BASE_PIXELS)
    return math.floor(exact + Fraction(1, 2))
