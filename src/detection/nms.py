"""
Greedy per-class Non-Maximum Suppression.
"""

from __future__ import annotations

from typing import List, Sequence

from models.detection import Detection
from .geometry import iou


def non_max_suppression(
    candidates: Sequence[Detection],
    iou_threshold: float,
    max_detections: int,
) -> List[Detection]:
    """
    Reduce overlapping candidates to a ranked, capped list.

    The highest-scoring remaining candidate is kept and every remaining
    candidate of the same class overlapping it by more than iou_threshold
    is dropped; this repeats until max_detections are kept or nothing is
    left. Equal scores keep their input order.

    Args:
        candidates: Decoded detections, any order.
        iou_threshold: Same-class overlap above which a candidate is suppressed.
        max_detections: Maximum number of detections returned.

    Returns:
        Detections sorted by descending score.
    """
    if not candidates or max_detections < 1:
        return []

    # sorted() is stable, so ties stay in input order
    ranked = sorted(candidates, key=lambda d: -d.score)

    kept: List[Detection] = []
    for candidate in ranked:
        suppressed = False
        for selected in kept:
            if selected.class_id == candidate.class_id and iou(candidate.box, selected.box) > iou_threshold:
                suppressed = True
                break
        if suppressed:
            continue

        kept.append(candidate)
        if len(kept) >= max_detections:
            break

    return kept
