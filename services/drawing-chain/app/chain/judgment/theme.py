"""
Theme fidelity heuristic.

There is no object recognition here: a drawing is matched against its
prompt through a couple of cheap canvas features (how much ink, how much
of it is colored) and its dominant colors, using the keyword rules held in
a ThemeRuleRegistry. Unknown words keep the neutral base score.
"""
from functools import lru_cache
from typing import List, Optional
import logging

import numpy as np

from ...config import ScoringSettings, get_settings
from ...utils import as_rgba
from .rules import DEFAULT_THEME_RULES, DominantColor, ImageFeatures, ThemeRuleRegistry

logger = logging.getLogger("chain.theme")

BASE_SCORE = 0.5
KEYWORD_BONUS = 0.15
COLOR_BONUS = 0.2
VISIBLE_ALPHA = 128
NEAR_WHITE = 240
NEAR_BLACK = 50
COLOR_BUCKET = 50


def extract_keywords(theme: Optional[str]) -> List[str]:
    if not theme:
        return []
    return theme.lower().split()


def _ink_mask(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3]
    visible = rgba[..., 3] > VISIBLE_ALPHA
    near_white = np.all(rgb >= NEAR_WHITE, axis=2)
    return visible & ~near_white


def image_features(image) -> ImageFeatures:
    rgba = as_rgba(image)
    total = rgba.shape[0] * rgba.shape[1]
    ink = _ink_mask(rgba)
    near_black = np.all(rgba[..., :3] < NEAR_BLACK, axis=2)
    return ImageFeatures(
        ink_density=np.count_nonzero(ink) / total,
        color_density=np.count_nonzero(ink & ~near_black) / total,
    )


def dominant_colors(image, limit: int = 3) -> List[DominantColor]:
    """
    Most frequent quantized colors among the inked pixels.
    Equal counts are ordered by ascending packed RGB value.
    """
    rgba = as_rgba(image)
    pixels = rgba[_ink_mask(rgba)][:, :3].astype(np.int64)
    if pixels.size == 0:
        return []
    quantized = (pixels // COLOR_BUCKET) * COLOR_BUCKET
    keys = (quantized[:, 0] << 16) | (quantized[:, 1] << 8) | quantized[:, 2]
    unique, counts = np.unique(keys, return_counts=True)
    order = np.argsort(-counts, kind="stable")[:limit]
    return [
        DominantColor(
            r=int(unique[i] >> 16) & 0xFF,
            g=int(unique[i] >> 8) & 0xFF,
            b=int(unique[i]) & 0xFF,
            count=int(counts[i]),
        )
        for i in order
    ]


@lru_cache(maxsize=8)
def _registry_for_path(path: str) -> ThemeRuleRegistry:
    return ThemeRuleRegistry.from_json(path, base=DEFAULT_THEME_RULES)


def default_registry(settings: Optional[ScoringSettings] = None) -> ThemeRuleRegistry:
    settings = settings or get_settings()
    if settings.theme_rules_path:
        return _registry_for_path(settings.theme_rules_path)
    return DEFAULT_THEME_RULES


def colors_match_theme(colors: List[DominantColor], theme: str, registry: ThemeRuleRegistry) -> bool:
    theme_lower = theme.lower()
    # The first registered keyword found in the theme decides
    for rule in registry.color_rules():
        if rule.keyword.lower() in theme_lower:
            return any(rule.matches(c) for c in colors)
    return False


def theme_fidelity(
    image,
    theme: Optional[str],
    registry: Optional[ThemeRuleRegistry] = None,
    settings: Optional[ScoringSettings] = None,
) -> float:
    registry = registry or default_registry(settings)
    tokens = extract_keywords(theme)
    if not tokens:
        return BASE_SCORE

    score = BASE_SCORE
    features = image_features(image)
    for token in tokens:
        rule = registry.keyword_rule(token)
        if rule is not None and rule.matches(features):
            score += KEYWORD_BONUS

    colors = dominant_colors(image)
    if colors_match_theme(colors, theme, registry):
        score += COLOR_BONUS

    logger.debug("theme %r: ink=%.3f color=%.3f -> %.2f",
                 theme, features.ink_density, features.color_density, score)
    return max(0.0, min(1.0, score))
