import json

import numpy as np
import pytest

from app.chain.errors import InputError
from app.chain.judgment.rules import (
    DEFAULT_THEME_RULES,
    ChannelRange,
    ColorRule,
    KeywordRule,
    ThemeRuleRegistry,
)
from app.chain.judgment.theme import (
    default_registry,
    dominant_colors,
    extract_keywords,
    image_features,
    theme_fidelity,
)
from app.config import ScoringSettings


def test_keywords_are_case_folded_whitespace_tokens():
    assert extract_keywords("Un  Chat dans l'espace") == ["un", "chat", "dans", "l'espace"]
    assert extract_keywords("") == []
    assert extract_keywords(None) == []


def test_image_features(blank_canvas):
    canvas = blank_canvas(10, 10)
    canvas.reshape(-1, 4)[:20] = (0, 0, 0, 255)
    canvas.reshape(-1, 4)[20:30] = (200, 30, 30, 255)
    canvas.reshape(-1, 4)[30:40] = (0, 0, 0, 0)  # invisible ink is ignored
    features = image_features(canvas)
    assert features.ink_density == pytest.approx(0.3)
    assert features.color_density == pytest.approx(0.1)


def test_dominant_colors_are_quantized_and_ranked(blank_canvas):
    canvas = blank_canvas(10, 10)
    flat = canvas.reshape(-1, 4)
    flat[:30] = (255, 220, 10, 255)
    flat[30:50] = (12, 12, 12, 255)
    flat[50:55] = (30, 160, 250, 255)
    flat[55:57] = (120, 120, 120, 255)
    colors = dominant_colors(canvas)
    assert [(c.r, c.g, c.b, c.count) for c in colors] == [
        (250, 200, 0, 30),
        (0, 0, 0, 20),
        (0, 150, 250, 5),
    ]


def test_dominant_colors_of_blank_canvas(blank_canvas):
    assert dominant_colors(blank_canvas(10, 10)) == []


def test_unmatched_theme_keeps_neutral_score(block_drawing):
    canvas = block_drawing(0, 20, 0, 20)
    assert theme_fidelity(canvas, "Un dessin abstrait", DEFAULT_THEME_RULES) == 0.5
    assert theme_fidelity(canvas, "", DEFAULT_THEME_RULES) == 0.5
    assert theme_fidelity(canvas, None, DEFAULT_THEME_RULES) == 0.5


def test_keyword_rule_needs_its_predicate(blank_canvas, block_drawing):
    assert theme_fidelity(blank_canvas(), "Un chat", DEFAULT_THEME_RULES) == 0.5
    # 20% ink satisfies "chat" (> 10%) and "maison" (> 15%)
    canvas = block_drawing(0, 20, 0, 100)
    assert theme_fidelity(canvas, "Un chat", DEFAULT_THEME_RULES) == pytest.approx(0.65)
    assert theme_fidelity(canvas, "chat maison", DEFAULT_THEME_RULES) == pytest.approx(0.8)


def test_color_affinity_bonus(block_drawing):
    sun = block_drawing(0, 10, 0, 100, color=(255, 220, 0, 255))
    # color density 10% > 5% and a yellow dominant color
    assert theme_fidelity(sun, "Un soleil", DEFAULT_THEME_RULES) == pytest.approx(0.85)

    sky = block_drawing(0, 10, 0, 100, color=(30, 160, 250, 255))
    assert theme_fidelity(sky, "Le ciel bleu", DEFAULT_THEME_RULES) == pytest.approx(0.7)
    assert theme_fidelity(sky, "Un soleil", DEFAULT_THEME_RULES) == pytest.approx(0.65)


def test_score_is_clamped(block_drawing):
    canvas = block_drawing(0, 40, 0, 100, color=(40, 160, 40, 255))
    score = theme_fidelity(canvas, "arbre arbre arbre chat maison", DEFAULT_THEME_RULES)
    assert score == 1.0


def test_registry_rejects_duplicates():
    registry = ThemeRuleRegistry()
    registry.register_keyword(KeywordRule(keyword="robot", min_ink_density=0.05))
    with pytest.raises(ValueError):
        registry.register_keyword(KeywordRule(keyword="Robot", min_ink_density=0.5))
    registry.register_keyword(KeywordRule(keyword="robot", min_ink_density=0.5), replace=True)
    assert registry.keyword_rule("ROBOT").min_ink_density == 0.5


def test_custom_registry_extends_scoring(block_drawing):
    registry = DEFAULT_THEME_RULES.copy()
    registry.register_keyword(KeywordRule(keyword="robot", min_ink_density=0.03))
    registry.register_color(ColorRule(keyword="robot", red=ChannelRange(below=60), green=ChannelRange(below=60),
                                      blue=ChannelRange(below=60)))
    canvas = block_drawing(0, 20, 0, 20)
    assert theme_fidelity(canvas, "Un robot qui danse", registry) == pytest.approx(0.85)
    assert "robot" not in DEFAULT_THEME_RULES.keywords()


def test_rules_load_from_json(tmp_path, block_drawing):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({
        "keyword_rules": [{"keyword": "dragon", "min_color_density": 0.01}],
        "color_rules": [{"keyword": "dragon", "red": {"above": 150}}],
    }))
    registry = ThemeRuleRegistry.from_json(str(path), base=DEFAULT_THEME_RULES)
    assert registry.keyword_rule("dragon") is not None
    assert registry.keyword_rule("chat") is not None
    canvas = block_drawing(0, 20, 0, 20, color=(220, 20, 20, 255))
    assert theme_fidelity(canvas, "Un dragon endormi", registry) == pytest.approx(0.85)


def test_invalid_rules_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text("{not json")
    with pytest.raises(InputError):
        ThemeRuleRegistry.from_json(str(path))


def test_settings_select_rules_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"keyword_rules": [{"keyword": "pirate", "min_ink_density": 0.0}]}))
    registry = default_registry(ScoringSettings(theme_rules_path=str(path)))
    assert registry.keyword_rule("pirate") is not None
    assert default_registry(ScoringSettings()) is DEFAULT_THEME_RULES
