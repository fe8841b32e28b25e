import json
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ValidationError

from ..errors import InputError

logger = logging.getLogger("chain.rules")


class ImageFeatures(BaseModel):
    ink_density: float  # visible, non near-white pixels / all pixels
    color_density: float  # ink that is not near-black / all pixels


class DominantColor(BaseModel):
    r: int
    g: int
    b: int
    count: int


class ChannelRange(BaseModel):
    """Open interval on one 0-255 channel; a missing bound is unbounded."""
    above: Optional[int] = None
    below: Optional[int] = None

    def contains(self, value: int) -> bool:
        if self.above is not None and not value > self.above:
            return False
        if self.below is not None and not value < self.below:
            return False
        return True


class KeywordRule(BaseModel):
    keyword: str
    min_ink_density: Optional[float] = None
    min_color_density: Optional[float] = None
    description: str = ""

    def matches(self, features: ImageFeatures) -> bool:
        if self.min_ink_density is not None and not features.ink_density > self.min_ink_density:
            return False
        if self.min_color_density is not None and not features.color_density > self.min_color_density:
            return False
        return True


class ColorRule(BaseModel):
    keyword: str
    red: ChannelRange = ChannelRange()
    green: ChannelRange = ChannelRange()
    blue: ChannelRange = ChannelRange()
    description: str = ""

    def matches(self, color: DominantColor) -> bool:
        return self.red.contains(color.r) and self.green.contains(color.g) and self.blue.contains(color.b)


class RuleSet(BaseModel):
    keyword_rules: List[KeywordRule] = []
    color_rules: List[ColorRule] = []


class ThemeRuleRegistry:
    """Mutable registry of theme keyword and color-affinity rules."""

    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self._keyword_rules: Dict[str, KeywordRule] = {}
        self._color_rules: Dict[str, ColorRule] = {}
        if rules is not None:
            self.extend(rules)

    def register_keyword(self, rule: KeywordRule, *, replace: bool = False) -> None:
        key = rule.keyword.lower()
        if not replace and key in self._keyword_rules:
            raise ValueError(f"Keyword rule '{key}' is already registered")
        self._keyword_rules[key] = rule

    def register_color(self, rule: ColorRule, *, replace: bool = False) -> None:
        key = rule.keyword.lower()
        if not replace and key in self._color_rules:
            raise ValueError(f"Color rule '{key}' is already registered")
        self._color_rules[key] = rule

    def extend(self, rules: RuleSet, *, replace: bool = False) -> None:
        for rule in rules.keyword_rules:
            self.register_keyword(rule, replace=replace)
        for rule in rules.color_rules:
            self.register_color(rule, replace=replace)

    def keyword_rule(self, token: str) -> Optional[KeywordRule]:
        return self._keyword_rules.get(token.lower())

    def color_rules(self) -> List[ColorRule]:
        """Color rules in registration order."""
        return list(self._color_rules.values())

    def keywords(self) -> List[str]:
        return list(self._keyword_rules)

    def copy(self) -> "ThemeRuleRegistry":
        clone = ThemeRuleRegistry()
        clone._keyword_rules = dict(self._keyword_rules)
        clone._color_rules = dict(self._color_rules)
        return clone

    @classmethod
    def from_json(cls, path: str, *, base: Optional["ThemeRuleRegistry"] = None) -> "ThemeRuleRegistry":
        """
        Loads a RuleSet JSON file. Rules from the file override same-keyword
        rules of ``base`` when one is given.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            rules = RuleSet.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise InputError(f"could not load theme rules from {path}: {exc}") from exc
        registry = base.copy() if base is not None else cls()
        registry.extend(rules, replace=True)
        logger.info("Loaded %d keyword and %d color rules from %s",
                    len(rules.keyword_rules), len(rules.color_rules), path)
        return registry


DEFAULT_RULES = RuleSet(
    keyword_rules=[
        KeywordRule(keyword="chat", min_ink_density=0.1, description="A cat needs a visible silhouette"),
        KeywordRule(keyword="soleil", min_color_density=0.05, description="A sun is drawn in color"),
        KeywordRule(keyword="maison", min_ink_density=0.15, description="A house fills part of the canvas"),
        KeywordRule(keyword="arbre", min_ink_density=0.2, description="A tree has a dense crown"),
        KeywordRule(keyword="cat", min_ink_density=0.1),
        KeywordRule(keyword="sun", min_color_density=0.05),
        KeywordRule(keyword="house", min_ink_density=0.15),
        KeywordRule(keyword="tree", min_ink_density=0.2),
    ],
    color_rules=[
        ColorRule(keyword="soleil", red=ChannelRange(above=200), green=ChannelRange(above=150),
                  blue=ChannelRange(below=100), description="yellow / orange"),
        ColorRule(keyword="ciel", red=ChannelRange(below=100), green=ChannelRange(above=100),
                  blue=ChannelRange(above=200), description="blue"),
        ColorRule(keyword="arbre", red=ChannelRange(below=150), green=ChannelRange(above=100),
                  blue=ChannelRange(below=150), description="green"),
        ColorRule(keyword="nuit", red=ChannelRange(below=50), green=ChannelRange(below=50),
                  blue=ChannelRange(below=100), description="dark"),
        ColorRule(keyword="sun", red=ChannelRange(above=200), green=ChannelRange(above=150),
                  blue=ChannelRange(below=100)),
        ColorRule(keyword="sky", red=ChannelRange(below=100), green=ChannelRange(above=100),
                  blue=ChannelRange(above=200)),
        ColorRule(keyword="tree", red=ChannelRange(below=150), green=ChannelRange(above=100),
                  blue=ChannelRange(below=150)),
        ColorRule(keyword="night", red=ChannelRange(below=50), green=ChannelRange(below=50),
                  blue=ChannelRange(below=100)),
    ],
)

DEFAULT_THEME_RULES = ThemeRuleRegistry(DEFAULT_RULES)
