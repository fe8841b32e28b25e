from typing import Sequence

from ..ingestion.models import Contribution, ContributionAnalysis

BASE_SCORE = 0.5
MEANINGFUL_CHANGE = (10.0, 40.0)  # percent, exclusive
MEANINGFUL_CHANGE_BONUS = 0.3
DETAIL_DENSITY = 0.6
DETAIL_BONUS = 0.2
TWIST_PERCENT = 25.0
TWIST_COHERENCE = 0.5
TWIST_BONUS = 0.3
DESTRUCTION_PENALTY = 0.5

CHAOS_FUN = "amusant"
CHAOS_DESTRUCTIVE = "destructeur"
CHAOS_NORMAL = "normal"


def detect_twist(analysis: ContributionAnalysis, coherence: float, history: Sequence[Contribution]) -> bool:
    """
    A twist reinterprets the previous drawing without wrecking it: a large,
    still coherent, non destructive change. Needs a previous drawing.
    """
    if not history:
        return False
    return (
        analysis.modification_percent > TWIST_PERCENT
        and not analysis.destruction
        and coherence > TWIST_COHERENCE
    )


def creativity_score(
    analysis: ContributionAnalysis,
    coherence: float,
    history: Sequence[Contribution] = (),
) -> float:
    score = BASE_SCORE
    low, high = MEANINGFUL_CHANGE
    if low < analysis.modification_percent < high:
        score += MEANINGFUL_CHANGE_BONUS
    if analysis.add_density > DETAIL_DENSITY:
        score += DETAIL_BONUS
    if detect_twist(analysis, coherence, history):
        score += TWIST_BONUS
    if analysis.destruction:
        score -= DESTRUCTION_PENALTY
    return max(0.0, min(1.0, score))


def classify_chaos(analysis: ContributionAnalysis) -> str:
    percent = analysis.modification_percent
    density = analysis.add_density
    if percent > 40 and density > 0.5:
        return CHAOS_FUN
    if percent > 60 and density < 0.3:
        return CHAOS_DESTRUCTIVE
    return CHAOS_NORMAL
