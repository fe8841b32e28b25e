class ChainError(Exception):
    """Base class for drawing chain scoring errors."""


class InputError(ChainError, ValueError):
    """Raised when engine inputs are malformed (raster shapes, images, players)."""


class ScoringError(ChainError):
    """Raised when the scoring engine is misused, e.g. scoring twice."""


class MatchError(ChainError):
    """Raised when a match session operation is not allowed in its current state."""
