"""
Detection models for object detection results.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class NormalizedBox:
    """
    A bounding box in viewport-relative coordinates.

    Values are fractions of the image size, top-left origin.

    Attributes:
        x: Left edge.
        y: Top edge.
        width: Box width.
        height: Box height.
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        return not (self.width > 0 and self.height > 0)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x, y, width, height) tuple."""
        return (self.x, self.y, self.width, self.height)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x, self.y, self.x2, self.y2)

    @classmethod
    def from_center(cls, cx: float, cy: float, w: float, h: float) -> "NormalizedBox":
        """Create from centre/size format (the YOLO head layout)."""
        return cls(x=cx - w / 2, y=cy - h / 2, width=w, height=h)


@dataclass(frozen=True)
class Detection:
    """
    A single decoded detection.

    Attributes:
        class_id: Index into the ClassCatalog.
        score: Final composed confidence in (0, 1].
        box: Normalized bounding box.
        class_name: Resolved class name, filled in once the catalog is known.
    """
    class_id: int
    score: float
    box: NormalizedBox
    class_name: Optional[str] = None

    @property
    def center(self) -> Tuple[float, float]:
        return self.box.center

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "class_name": self.class_name,
            "score": self.score,
            "box": list(self.box.as_tuple()),
        }


class DetectionSource(str, Enum):
    """Where a published DetectionSet came from."""
    FRESH = "fresh"
    INTERPOLATED = "interpolated"
    HELD = "held"
    STALE = "stale"
    EMPTY = "empty"


@dataclass(frozen=True)
class DetectionSet:
    """
    Ordered detections published for one frame.

    Order is presentation order (score descending after NMS). A set is
    never mutated; the next cycle replaces it.

    Attributes:
        detections: The detections, best first.
        cycle: Inference cycle that produced the detections (0 = none yet).
        frame_index: Frame the set was published for.
        source: Whether this is a fresh result or a reused one.
    """
    detections: Tuple[Detection, ...] = field(default_factory=tuple)
    cycle: int = 0
    frame_index: int = 0
    source: DetectionSource = DetectionSource.EMPTY

    @classmethod
    def empty(cls, cycle: int = 0, frame_index: int = 0) -> "DetectionSet":
        return cls(detections=(), cycle=cycle, frame_index=frame_index, source=DetectionSource.EMPTY)

    @classmethod
    def fresh(
        cls,
        detections: Sequence[Detection],
        cycle: int,
        frame_index: int = 0,
    ) -> "DetectionSet":
        return cls(
            detections=tuple(detections),
            cycle=cycle,
            frame_index=frame_index,
            source=DetectionSource.FRESH if detections else DetectionSource.EMPTY,
        )

    @property
    def is_fresh(self) -> bool:
        return self.source == DetectionSource.FRESH

    def replace_source(self, source: DetectionSource, frame_index: Optional[int] = None) -> "DetectionSet":
        """Re-label a cached set when it is shown again on a later frame."""
        return replace(
            self,
            source=source,
            frame_index=self.frame_index if frame_index is None else frame_index,
        )

    def __len__(self) -> int:
        return len(self.detections)

    def __iter__(self) -> Iterator[Detection]:
        return iter(self.detections)

    def __getitem__(self, index: int) -> Detection:
        return self.detections[index]

    def __bool__(self) -> bool:
        return bool(self.detections)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.detections]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "frame_index": self.frame_index,
            "source": self.source.value,
            "detections": self.to_dicts(),
        }
