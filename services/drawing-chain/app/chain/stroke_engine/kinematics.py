from typing import Iterable, List, Optional
import logging
import math

import numpy as np

from ...config import ScoringSettings, get_settings
from ..ingestion.models import Trace, TracePoint

logger = logging.getLogger("chain.kinematics")

MAX_PAUSE_PENALTY = 0.3
PAUSE_PENALTY = 0.05
MAX_LENGTH_BONUS = 0.2
LENGTH_FOR_FULL_BONUS = 5000.0  # px
SPEED_RATIO_WEIGHT = 0.3


def euclidean_distance(p1: TracePoint, p2: TracePoint) -> float:
    return math.sqrt((p1.x - p2.x)**2 + (p1.y - p2.y)**2)


def capture_trace(events: Iterable, settings: Optional[ScoringSettings] = None) -> Trace:
    """
    Walks the pointer samples pairwise and derives the kinematic metrics.
    Fluidity and variability are filled in as well.
    """
    settings = settings or get_settings()
    points = [e if isinstance(e, TracePoint) else TracePoint.model_validate(e) for e in events]
    trace = Trace(points=points)

    for prev, cur in zip(points, points[1:]):
        distance = euclidean_distance(prev, cur)
        trace.total_length += distance

        dt_ms = cur.timestamp - prev.timestamp
        if dt_ms > 0:
            speed = distance / (dt_ms / 1000.0)
            trace.max_speed = max(trace.max_speed, speed)
            if dt_ms > settings.pause_threshold_ms:
                trace.pause_count += 1

    if len(points) > 1:
        trace.duration = (points[-1].timestamp - points[0].timestamp) / 1000.0
        if trace.duration > 0:
            trace.average_speed = trace.total_length / trace.duration

    trace.fluidity = fluidity_score(trace)
    trace.variability = variability_score(points)
    logger.debug(
        "trace: %d points, length=%.1f, pauses=%d, avg=%.1f, max=%.1f",
        len(points), trace.total_length, trace.pause_count, trace.average_speed, trace.max_speed,
    )
    return trace


def fluidity_score(trace: Trace) -> float:
    score = 1.0
    score -= min(MAX_PAUSE_PENALTY, trace.pause_count * PAUSE_PENALTY)
    # Engagement: longer strokes earn a small bonus
    score += min(MAX_LENGTH_BONUS, trace.total_length / LENGTH_FOR_FULL_BONUS)
    # Constant speed (ratio near 1) reads as fluid, spikes (ratio near 0) do not
    if trace.max_speed > 0 and trace.average_speed > 0:
        score += (trace.average_speed / trace.max_speed) * SPEED_RATIO_WEIGHT
    return max(0.0, min(1.0, score))


def turning_angles(points: List[TracePoint]) -> List[float]:
    """Heading change at every interior point, folded into [0, pi]."""
    angles = []
    for p1, p2, p3 in zip(points, points[1:], points[2:]):
        heading1 = math.atan2(p2.y - p1.y, p2.x - p1.x)
        heading2 = math.atan2(p3.y - p2.y, p3.x - p2.x)
        diff = abs(heading2 - heading1)
        if diff > math.pi:
            diff = 2 * math.pi - diff
        angles.append(diff)
    return angles


def variability_score(points: List[TracePoint]) -> float:
    """
    Low angular variance along the stroke means a smooth gesture.
    Fewer than three points are trivially smooth.
    """
    if len(points) < 3:
        return 1.0
    std_dev = float(np.std(turning_angles(points)))
    return max(0.0, 1.0 - std_dev / math.pi)
