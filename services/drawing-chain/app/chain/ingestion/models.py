import time
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ...utils import as_rgba
from ..errors import InputError

IdFactory = Callable[[], str]
Clock = Callable[[], float]


class TracePoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    x: float
    y: float
    timestamp: float = Field(alias="timestampMs")  # ms
    pressure: float = 1.0

    @field_validator("pressure", mode="before")
    @classmethod
    def _default_pressure(cls, value):
        return 1.0 if value is None else value


class Trace(BaseModel):
    points: List[TracePoint] = []
    average_speed: float = 0.0  # px/s
    max_speed: float = 0.0
    total_length: float = 0.0  # px
    pause_count: int = 0
    duration: float = 0.0  # s
    fluidity: float = 0.0
    variability: float = 0.0


class ContributionAnalysis(BaseModel):
    pixels_modified: int = 0
    modification_percent: float = 0.0
    destruction: bool = False
    add_density: float = 0.0
    chaos: str = "normal"  # normal, amusant, destructeur


class CategoryScores(BaseModel):
    fluidity: float = 0.0
    coherence: float = 0.0
    theme: float = 0.0
    creativity: float = 0.0

    @computed_field
    @property
    def total(self) -> float:
        return self.fluidity + self.coherence + self.theme + self.creativity


class Contribution(BaseModel):
    """One player's drawing for one round, with its trace and scores."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    player_id: str
    round_number: int
    theme: str = ""
    created_at: float  # ms since epoch
    before_image: Optional[np.ndarray] = Field(default=None, exclude=True, repr=False)
    after_image: Optional[np.ndarray] = Field(default=None, exclude=True, repr=False)
    trace: Trace = Field(default_factory=Trace)
    analysis: ContributionAnalysis = Field(default_factory=ContributionAnalysis)
    scores: CategoryScores = Field(default_factory=CategoryScores)
    scored: bool = False


class CategoryAverages(BaseModel):
    fluidity: float = 0.0
    coherence: float = 0.0
    theme: float = 0.0
    creativity: float = 0.0


class PlayerAggregate(BaseModel):
    score_total: float = 0.0
    averages: CategoryAverages = Field(default_factory=CategoryAverages)


def recompute_aggregate(contributions: Sequence[Contribution]) -> PlayerAggregate:
    """Fold a player's contributions into their running total and averages."""
    if not contributions:
        return PlayerAggregate()
    count = len(contributions)
    scores = [c.scores for c in contributions]
    return PlayerAggregate(
        score_total=sum(s.total for s in scores),
        averages=CategoryAverages(
            fluidity=sum(s.fluidity for s in scores) / count,
            coherence=sum(s.coherence for s in scores) / count,
            theme=sum(s.theme for s in scores) / count,
            creativity=sum(s.creativity for s in scores) / count,
        ),
    )


class Player(BaseModel):
    id: str
    name: str
    contributions: List[Contribution] = []
    aggregate: PlayerAggregate = Field(default_factory=PlayerAggregate)
    titles: List[str] = []

    @property
    def score_total(self) -> float:
        return self.aggregate.score_total

    @property
    def averages(self) -> CategoryAverages:
        return self.aggregate.averages

    @property
    def total_modification_percent(self) -> float:
        return sum(c.analysis.modification_percent for c in self.contributions)

    def add_contribution(self, contribution: Contribution) -> None:
        self.contributions.append(contribution)
        self.aggregate = recompute_aggregate(self.contributions)


class PlayerSnapshot(BaseModel):
    player_id: str
    name: str
    score_total: float
    category_averages: CategoryAverages
    contribution_count: int


class PlayerStanding(PlayerSnapshot):
    rank: int
    titles: List[str] = []


class MatchResult(BaseModel):
    winner: Optional[PlayerStanding] = None
    ranked_players: List[PlayerStanding] = []
    title_assignments: Dict[str, str] = {}  # title -> player id
    all_contributions: List[Contribution] = []


class MatchState(BaseModel):
    theme: str
    current_round: int = 1
    max_rounds: int = 3
    players: Dict[str, Player] = {}
    contributions: List[Contribution] = []
    finished: bool = False


def default_id_factory() -> str:
    return f"contrib_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def default_clock() -> float:
    return time.time() * 1000.0


def new_contribution(
    player_id: str,
    round_number: int,
    theme: Optional[str],
    events: Iterable,
    before_image=None,
    after_image=None,
    id_factory: IdFactory = default_id_factory,
    clock: Clock = default_clock,
) -> Contribution:
    """
    Creates an unscored Contribution from raw submission data.

    Events may be TracePoints or mappings shaped like
    ``{x, y, timestampMs, pressure?}``. Rasters are copied into read-only
    RGBA arrays so the contribution owns them exclusively.
    """
    points = [e if isinstance(e, TracePoint) else TracePoint.model_validate(e) for e in events]
    before = _owned_raster(before_image)
    after = _owned_raster(after_image)
    if before is not None and after is not None and before.shape != after.shape:
        raise InputError(
            f"before/after rasters differ in size: {before.shape[1]}x{before.shape[0]} "
            f"vs {after.shape[1]}x{after.shape[0]}"
        )
    return Contribution(
        id=id_factory(),
        player_id=player_id,
        round_number=round_number,
        theme=theme or "",
        created_at=clock(),
        before_image=before,
        after_image=after,
        trace=Trace(points=points),
    )


def _owned_raster(image) -> Optional[np.ndarray]:
    if image is None:
        return None
    arr = np.array(as_rgba(image), copy=True)
    arr.setflags(write=False)
    return arr
