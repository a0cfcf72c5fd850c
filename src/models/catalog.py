"""
Class catalog: maps detector class ids to names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Sequence, Tuple, Union

from .config import ConfigError


# Custom 8-class assembly model
ASSEMBLY_CLASSES: Tuple[str, ...] = (
    "Tools", "Housing", "Big Screw", "Small Screw",
    "V-Lock Plate", "Plunger", "Helical Spring", "Cover",
)

COCO_CLASSES: Tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat",
    "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack",
    "umbrella", "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball",
    "kite", "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket",
    "bottle", "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple",
    "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair",
    "couch", "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear", "hair drier", "toothbrush",
)

PRESETS = {
    "assembly": ASSEMBLY_CLASSES,
    "coco": COCO_CLASSES,
}


@dataclass(frozen=True)
class ClassCatalog:
    """Ordered, fixed list of class names; a class id is an index into it."""
    names: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.names:
            raise ConfigError("Class catalog must contain at least one class")

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def name_for(self, class_id: int) -> str:
        if 0 <= class_id < len(self.names):
            return self.names[class_id]
        return str(class_id)

    def index_of(self, name: str) -> int:
        return self.names.index(name)

    @classmethod
    def from_names(cls, names: Sequence[str]) -> "ClassCatalog":
        return cls(names=tuple(str(n) for n in names))

    @classmethod
    def from_config(cls, value: Union[str, Sequence[Any], None]) -> "ClassCatalog":
        """
        Adapter: build from the `classes` config entry.

        Args:
            value: A preset name ("assembly", "coco") or an explicit list of names.
        """
        if value is None:
            raise ConfigError("Missing class catalog (classes)")
        if isinstance(value, str):
            preset = PRESETS.get(value.lower())
            if preset is None:
                raise ConfigError(
                    f"Unknown class preset '{value}', expected one of: {', '.join(PRESETS)}"
                )
            return cls(names=preset)
        return cls.from_names(value)
