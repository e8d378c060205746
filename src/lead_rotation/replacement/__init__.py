"""Lead replacement workflow."""

from .marks import MarkState, ReplacementMark, ReplacementBook, DeletionCheck

__all__ = ["MarkState", "ReplacementMark", "ReplacementBook", "DeletionCheck"]
