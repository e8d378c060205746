"""Lead Rotation - round-robin lead assignment with hit accounting."""

__version__ = "1.0.0"

from .core import (
    Lane,
    RotationTarget,
    HitKind,
    Period,
    RotationError,
    next_in_rotation,
    eligible_reps,
)
from .service import RotationService, ChangeNotifier

__all__ = [
    "Lane",
    "RotationTarget",
    "HitKind",
    "Period",
    "RotationError",
    "next_in_rotation",
    "eligible_reps",
    "RotationService",
    "ChangeNotifier",
]
