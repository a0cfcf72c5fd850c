"""
Box geometry helpers.
"""

from __future__ import annotations

from models.detection import NormalizedBox


def iou(a: NormalizedBox, b: NormalizedBox) -> float:
    """
    Calculate Intersection over Union (IoU) between two boxes.

    Args:
        a: First box.
        b: Second box.

    Returns:
        IoU value between 0 and 1; 0 when the union is empty.
    """
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x2, b.x2)
    y2 = min(a.y2, b.y2)

    intersection = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    union = a.area + b.area - intersection

    if union <= 0:
        return 0.0

    return intersection / union
