import logging
from typing import Callable, Dict, List, Optional, Sequence

from ...config import ScoringSettings, get_settings
from ...utils import as_rgba
from ..errors import InputError, ScoringError
from ..ingestion.models import (
    CategoryScores,
    Contribution,
    ContributionAnalysis,
    MatchResult,
    Player,
    PlayerSnapshot,
    PlayerStanding,
)
from ..stroke_engine.kinematics import capture_trace
from .creativity import classify_chaos, creativity_score
from .rules import ThemeRuleRegistry
from .theme import theme_fidelity
from .visual import coherence_score, compare_rasters, detect_destruction

logger = logging.getLogger("chain.engine")

TRACE_FLUIDITY_WEIGHT = 0.7
VARIABILITY_WEIGHT = 0.3

TITLE_TOP_SCORER = "top-scorer"
TITLE_BEST_FLUIDITY = "best-fluidity"
TITLE_THEME_MASTER = "theme-master"
TITLE_CHAOS_LORD = "chaos-lord"

TITLE_METRICS: Dict[str, Callable[[Player], float]] = {
    TITLE_TOP_SCORER: lambda p: p.score_total,
    TITLE_BEST_FLUIDITY: lambda p: p.averages.fluidity,
    TITLE_THEME_MASTER: lambda p: p.averages.theme,
    TITLE_CHAOS_LORD: lambda p: p.total_modification_percent,
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def score_contribution(
    contribution: Contribution,
    before_image=None,
    after_image=None,
    player: Optional[Player] = None,
    history: Sequence[Contribution] = (),
    registry: Optional[ThemeRuleRegistry] = None,
    settings: Optional[ScoringSettings] = None,
) -> Contribution:
    """
    Scores one contribution on the four axes and folds it into its player.

    Rasters default to the ones stored on the contribution. Nothing is
    written to the contribution or the player until every score has been
    computed, so a failure leaves both exactly as they were.
    """
    settings = settings or get_settings()
    if contribution.scored:
        raise ScoringError(f"contribution {contribution.id} has already been scored")
    if player is not None and player.id != contribution.player_id:
        raise ScoringError(
            f"contribution {contribution.id} belongs to {contribution.player_id}, not {player.id}"
        )

    before = before_image if before_image is not None else contribution.before_image
    after = after_image if after_image is not None else contribution.after_image
    if before is None or after is None:
        raise InputError(f"contribution {contribution.id} is missing its before/after rasters")
    before = as_rgba(before)
    after = as_rgba(after)

    # 1. Stroke
    trace = capture_trace(contribution.trace.points, settings)
    fluidity = _clamp(trace.fluidity * TRACE_FLUIDITY_WEIGHT + trace.variability * VARIABILITY_WEIGHT)

    # 2. Canvas
    comparison = compare_rasters(before, after, settings)
    destruction = detect_destruction(comparison, settings)
    analysis = ContributionAnalysis(
        pixels_modified=comparison.pixels_modified,
        modification_percent=comparison.modification_percent,
        destruction=destruction,
        add_density=comparison.density,
    )
    coherence = _clamp(coherence_score(comparison, destruction))

    # 3. Theme
    theme = _clamp(theme_fidelity(after, contribution.theme, registry, settings))

    # 4. Creativity
    creativity = _clamp(creativity_score(analysis, coherence, history))
    analysis.chaos = classify_chaos(analysis)

    scores = CategoryScores(fluidity=fluidity, coherence=coherence, theme=theme, creativity=creativity)

    if contribution.before_image is None:
        before.setflags(write=False)
        contribution.before_image = before
    if contribution.after_image is None:
        after.setflags(write=False)
        contribution.after_image = after
    contribution.trace = trace
    contribution.analysis = analysis
    contribution.scores = scores
    contribution.scored = True
    if player is not None:
        player.add_contribution(contribution)

    logger.info(
        "Scored %s (player=%s round=%d): fluidity=%.2f coherence=%.2f theme=%.2f creativity=%.2f total=%.2f%s",
        contribution.id, contribution.player_id, contribution.round_number,
        fluidity, coherence, theme, creativity, scores.total,
        " [destruction]" if destruction else "",
    )
    return contribution


def player_snapshot(player: Player) -> PlayerSnapshot:
    return PlayerSnapshot(
        player_id=player.id,
        name=player.name,
        score_total=player.score_total,
        category_averages=player.averages.model_copy(),
        contribution_count=len(player.contributions),
    )


def best_player(players: Sequence[Player], metric: Callable[[Player], float]) -> Optional[Player]:
    """Highest ``metric``; on an exact tie the player registered first wins."""
    best = None
    for p in players:
        if best is None or metric(p) > metric(best):
            best = p
    return best


def rank_players(players: Sequence[Player]) -> List[Player]:
    """Orders by score total, descending; ties keep registration order."""
    order = sorted(range(len(players)), key=lambda i: (-players[i].score_total, i))
    return [players[i] for i in order]


def finalize_match(players: Sequence[Player], contributions: Sequence[Contribution] = ()) -> MatchResult:
    """
    Computes the leaderboard and title holders.

    Pure with respect to ``players``: titles are reported in the result and
    not written back, so the call can be repeated after late corrections.
    Each title has exactly one holder; a player may hold several titles.
    """
    players = list(players)
    if not players:
        return MatchResult(all_contributions=list(contributions))

    title_assignments: Dict[str, str] = {}
    for title, metric in TITLE_METRICS.items():
        title_assignments[title] = best_player(players, metric).id

    standings = []
    for rank, p in enumerate(rank_players(players), start=1):
        snap = player_snapshot(p)
        standings.append(PlayerStanding(
            **snap.model_dump(),
            rank=rank,
            titles=[t for t, holder in title_assignments.items() if holder == p.id],
        ))

    winner = standings[0]
    logger.info("Match finalized: winner=%s (%.2f), titles=%s",
                winner.player_id, winner.score_total, title_assignments)
    return MatchResult(
        winner=winner,
        ranked_players=standings,
        title_assignments=title_assignments,
        all_contributions=list(contributions),
    )
