"""
Label tracking across inference cycles.

Detections are matched to existing labels by class name and spatial
proximity so that a renderer can move an existing label instead of
recreating it. Labels that go unseen for longer than label_lifetime are
removed.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from models.detection import Detection
from models.label import LabelEvent, LabelEventKind, LabelState, TrackedLabel

PositionFn = Callable[[Detection], Tuple[float, ...]]


def viewport_position(detection: Detection) -> Tuple[float, float]:
    """Default position: box centre in normalized viewport coordinates."""
    return detection.box.center


class LabelTracker:
    """
    Tracks labels across cycles using class + distance matching.

    This tracker is responsible for:
    - Matching detections to existing labels of the same class
    - Creating labels with fresh, stable keys for unmatched detections
    - Removing labels not seen for label_lifetime seconds

    The caller supplies the clock (`now`) so behaviour is deterministic.
    """

    def __init__(
        self,
        position_tolerance: float = 0.3,
        label_lifetime: float = 3.0,
        position_fn: Optional[PositionFn] = None,
    ):
        """
        Initialize the label tracker.

        Args:
            position_tolerance: Labels of the same class closer than this are merged
                                (units of position_fn, e.g. meters for world positions)
            label_lifetime: Seconds a label survives without a matching detection
            position_fn: Maps a detection to the position used for matching
        """
        self.position_tolerance = position_tolerance
        self.label_lifetime = label_lifetime
        self.position_fn: PositionFn = position_fn or viewport_position

        self.active_labels: Dict[str, TrackedLabel] = {}
        self.next_label_id = 0

        logging.info("Label tracker initialized")

    def update(self, detections: Sequence[Detection], now: float) -> List[LabelEvent]:
        """
        Update tracker with the detections of one completed cycle.

        Args:
            detections: Final detections for the cycle
            now: Current time in seconds

        Returns:
            Events describing created, updated and removed labels
        """
        events: List[LabelEvent] = []

        for detection in detections:
            class_name = detection.class_name or str(detection.class_id)
            position = tuple(self.position_fn(detection))

            key = self._find_nearby_label(class_name, position)
            if key is not None:
                label = self.active_labels[key]
                label.last_seen_time = now
                label.target_position = position
                label.confidence = detection.score
                label.hits += 1
                events.append(LabelEvent(LabelEventKind.UPDATED, LabelState.from_label(label)))
            else:
                label = self._create_label(class_name, detection.score, position, now)
                events.append(LabelEvent(LabelEventKind.CREATED, LabelState.from_label(label)))

        events.extend(self.remove_expired(now))
        return events

    def remove_expired(self, now: float) -> List[LabelEvent]:
        """Remove labels not seen for longer than label_lifetime."""
        expired = [
            key for key, label in self.active_labels.items()
            if now - label.last_seen_time > self.label_lifetime
        ]

        events = []
        for key in expired:
            label = self.active_labels.pop(key)
            events.append(LabelEvent(LabelEventKind.REMOVED, LabelState.from_label(label)))
            logging.debug(f"[LABEL] Removed '{key}'")
        return events

    def _find_nearby_label(self, class_name: str, position: Tuple[float, ...]) -> Optional[str]:
        for key, label in self.active_labels.items():
            if label.class_name != class_name:
                continue
            if self._distance(label.target_position, position) < self.position_tolerance:
                return key
        return None

    def _create_label(
        self,
        class_name: str,
        confidence: float,
        position: Tuple[float, ...],
        now: float,
    ) -> TrackedLabel:
        key = f"{class_name}-{self.next_label_id}"
        self.next_label_id += 1

        label = TrackedLabel(
            key=key,
            class_name=class_name,
            confidence=confidence,
            last_seen_time=now,
            target_position=position,
        )
        self.active_labels[key] = label
        logging.debug(f"[LABEL] Created '{key}' at {position}")
        return label

    @staticmethod
    def _distance(a: Tuple[float, ...], b: Tuple[float, ...]) -> float:
        if len(a) != len(b):
            return math.inf
        return math.sqrt(sum((p - q) ** 2 for p, q in zip(a, b)))

    def get_active_labels(self) -> List[LabelState]:
        """Snapshots of all live labels, in creation order."""
        return [LabelState.from_label(label) for label in self.active_labels.values()]

    def snapshot(self) -> Dict[str, LabelState]:
        """Live labels keyed by label key."""
        return {key: LabelState.from_label(label) for key, label in self.active_labels.items()}

    def clear(self) -> List[LabelEvent]:
        """Drop every label, returning removal events."""
        events = [
            LabelEvent(LabelEventKind.REMOVED, LabelState.from_label(label))
            for label in self.active_labels.values()
        ]
        self.active_labels.clear()
        return events
