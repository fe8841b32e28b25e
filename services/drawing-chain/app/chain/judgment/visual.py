"""
Before/after canvas comparison.

Pixels are compared in RGBA space; the spatial spread of the changes is
measured on a grid of fixed-size blocks so that a tidy local addition can
be told apart from a canvas that was scribbled over everywhere.
"""
from typing import Optional, Tuple
import logging

import numpy as np
from pydantic import BaseModel

from ...config import ScoringSettings, get_settings
from ...utils import as_rgba
from ..errors import InputError

logger = logging.getLogger("chain.visual")

CHAOS_PERCENT = 40.0
CHAOS_PENALTY = 0.5
DENSITY_WEIGHT = 0.3
SWEET_SPOT = (5.0, 30.0)  # percent, inclusive
SWEET_SPOT_BONUS = 0.2


class VisualComparison(BaseModel):
    pixels_modified: int
    total_pixels: int
    modification_percent: float
    density: float


def _pair(before, after) -> Tuple[np.ndarray, np.ndarray]:
    before = as_rgba(before)
    after = as_rgba(after)
    if before.shape != after.shape:
        raise InputError(
            f"before/after rasters differ in size: {before.shape[1]}x{before.shape[0]} "
            f"vs {after.shape[1]}x{after.shape[0]}"
        )
    return before, after


def pixel_difference(before, after) -> np.ndarray:
    """Per-pixel Euclidean distance over the R, G, B and A channels."""
    before, after = _pair(before, after)
    delta = after.astype(np.float64) - before.astype(np.float64)
    return np.sqrt(np.sum(delta * delta, axis=2))


def modified_mask(before, after, settings: Optional[ScoringSettings] = None) -> np.ndarray:
    settings = settings or get_settings()
    return pixel_difference(before, after) > settings.difference_threshold


def block_density(mask: np.ndarray, settings: Optional[ScoringSettings] = None) -> float:
    """
    Mean share of modified pixels over the blocks that contain any change.
    Edge blocks are measured against their in-bounds area.
    """
    settings = settings or get_settings()
    size = settings.block_size
    h, w = mask.shape
    rows = np.arange(0, h, size)
    cols = np.arange(0, w, size)

    counts = np.add.reduceat(np.add.reduceat(mask.astype(np.int64), rows, axis=0), cols, axis=1)
    heights = np.minimum(size, h - rows)
    widths = np.minimum(size, w - cols)
    areas = np.outer(heights, widths)

    active = counts > 0
    if not active.any():
        return 0.0
    return float(np.mean(counts[active] / areas[active]))


def compare_rasters(before, after, settings: Optional[ScoringSettings] = None) -> VisualComparison:
    settings = settings or get_settings()
    mask = modified_mask(before, after, settings)
    total = int(mask.size)
    modified = int(np.count_nonzero(mask))
    comparison = VisualComparison(
        pixels_modified=modified,
        total_pixels=total,
        modification_percent=modified / total * 100.0,
        density=block_density(mask, settings),
    )
    logger.debug(
        "compare: %d/%d px modified (%.2f%%), density=%.3f",
        modified, total, comparison.modification_percent, comparison.density,
    )
    return comparison


def detect_destruction(comparison: VisualComparison, settings: Optional[ScoringSettings] = None) -> bool:
    """True when the previous drawing was most likely erased or painted over."""
    settings = settings or get_settings()
    percent = comparison.modification_percent
    if percent > settings.destruction_percent:
        return True
    # Widespread but diffuse change: the canvas was covered rather than extended
    return comparison.density < settings.diffuse_density and percent > settings.diffuse_percent


def coherence_score(comparison: VisualComparison, destruction: bool) -> float:
    if destruction:
        return 0.0
    percent = comparison.modification_percent
    score = 1.0
    if percent > CHAOS_PERCENT:
        score -= CHAOS_PENALTY
    score += comparison.density * DENSITY_WEIGHT
    if SWEET_SPOT[0] <= percent <= SWEET_SPOT[1]:
        score += SWEET_SPOT_BONUS
    return max(0.0, min(1.0, score))
