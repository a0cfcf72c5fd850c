"""
Label models for temporally tracked detections.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


@dataclass
class TrackedLabel:
    """
    A label that persists across inference cycles.

    Owned and mutated only by the LabelTracker. Readers get LabelState
    snapshots instead.

    Attributes:
        key: Stable identity, never changes across updates.
        class_name: Class the label shows.
        confidence: Score of the most recent matching detection.
        last_seen_time: Time of the most recent match.
        target_position: Position the renderer should move the label to.
        hits: Number of detections merged into this label.
    """
    key: str
    class_name: str
    confidence: float
    last_seen_time: float
    target_position: Tuple[float, ...]
    hits: int = 1


@dataclass(frozen=True)
class LabelState:
    """Immutable snapshot of a tracked label (for renderers/serialization)."""
    key: str
    class_name: str
    confidence: float
    last_seen_time: float
    target_position: Tuple[float, ...]

    @classmethod
    def from_label(cls, label: TrackedLabel) -> "LabelState":
        return cls(
            key=label.key,
            class_name=label.class_name,
            confidence=label.confidence,
            last_seen_time=label.last_seen_time,
            target_position=tuple(label.target_position),
        )


class LabelEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class LabelEvent:
    """Incremental update for the presentation collaborator."""
    kind: LabelEventKind
    label: LabelState

    @property
    def key(self) -> str:
        return self.label.key
