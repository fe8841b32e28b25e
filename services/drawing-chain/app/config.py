import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class ScoringSettings(BaseModel):
    """Tunable thresholds shared by the analyzers and the match session."""

    pause_threshold_ms: float = Field(150.0, gt=0)  # gap between samples counted as a pause
    difference_threshold: float = Field(30.0, ge=0)  # RGBA distance for a "modified" pixel
    block_size: int = Field(20, gt=0)  # density grid, in pixels
    destruction_percent: float = 70.0
    diffuse_density: float = 0.3
    diffuse_percent: float = 50.0
    max_rounds: int = Field(3, gt=0)
    theme_rules_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ScoringSettings":
        env = os.environ
        values = {
            "pause_threshold_ms": env.get("CHAIN_PAUSE_THRESHOLD_MS"),
            "difference_threshold": env.get("CHAIN_DIFFERENCE_THRESHOLD"),
            "block_size": env.get("CHAIN_BLOCK_SIZE"),
            "destruction_percent": env.get("CHAIN_DESTRUCTION_PERCENT"),
            "diffuse_density": env.get("CHAIN_DIFFUSE_DENSITY"),
            "diffuse_percent": env.get("CHAIN_DIFFUSE_PERCENT"),
            "max_rounds": env.get("CHAIN_MAX_ROUNDS"),
            "theme_rules_path": env.get("THEME_RULES_PATH"),
        }
        # Unset variables fall back to the field defaults
        return cls(**{k: v for k, v in values.items() if v not in (None, "")})


@lru_cache(maxsize=1)
def get_settings() -> ScoringSettings:
    return ScoringSettings.from_env()
