"""
Tests for IoU and per-class non-maximum suppression.
"""

import pytest

from detection.geometry import iou
from detection.nms import non_max_suppression
from models.detection import Detection, NormalizedBox


def det(class_id, score, x, y, w=0.2, h=0.2):
    return Detection(class_id=class_id, score=score, box=NormalizedBox(x, y, w, h))


class TestIoU:
    def test_identical_boxes(self):
        box = NormalizedBox(0.1, 0.1, 0.3, 0.3)
        assert iou(box, box) == pytest.approx(1.0)

    def test_disjoint_boxes(self):
        a = NormalizedBox(0.0, 0.0, 0.1, 0.1)
        b = NormalizedBox(0.5, 0.5, 0.1, 0.1)
        assert iou(a, b) == 0.0

    def test_touching_boxes(self):
        a = NormalizedBox(0.0, 0.0, 0.1, 0.1)
        b = NormalizedBox(0.1, 0.0, 0.1, 0.1)
        assert iou(a, b) == 0.0

    def test_partial_overlap(self):
        a = NormalizedBox(0.0, 0.0, 0.2, 0.2)
        b = NormalizedBox(0.1, 0.0, 0.2, 0.2)
        # intersection 0.02, union 0.06
        assert iou(a, b) == pytest.approx(1 / 3)

    def test_symmetric(self):
        a = NormalizedBox(0.05, 0.1, 0.3, 0.2)
        b = NormalizedBox(0.2, 0.15, 0.25, 0.4)
        assert iou(a, b) == pytest.approx(iou(b, a))

    def test_zero_area_boxes(self):
        a = NormalizedBox(0.1, 0.1, 0.0, 0.0)
        assert iou(a, a) == 0.0


class TestNonMaxSuppression:
    def test_same_class_overlap_suppressed(self):
        # IoU of these two boxes is 0.8
        a = Detection(0, 0.9, NormalizedBox(0.0, 0.0, 0.9, 0.2))
        b = Detection(0, 0.7, NormalizedBox(0.0, 0.0, 0.72, 0.2))
        assert iou(a.box, b.box) == pytest.approx(0.8)

        result = non_max_suppression([b, a], iou_threshold=0.5, max_detections=5)

        assert result == [a]

    def test_different_classes_not_suppressed(self):
        a = Detection(0, 0.9, NormalizedBox(0.0, 0.0, 1.0, 0.2))
        b = Detection(1, 0.8, NormalizedBox(0.0, 0.0, 0.9, 0.2))
        assert iou(a.box, b.box) == pytest.approx(0.9)

        result = non_max_suppression([a, b], iou_threshold=0.5, max_detections=5)

        assert result == [a, b]

    def test_empty_input(self):
        assert non_max_suppression([], iou_threshold=0.5, max_detections=5) == []

    def test_max_detections_keeps_top_scores(self):
        candidates = [det(0, s, x=0.18 * i, y=0.0, w=0.1, h=0.1) for i, s in enumerate([0.5, 0.9, 0.6, 0.8, 0.7])]

        result = non_max_suppression(candidates, iou_threshold=0.5, max_detections=2)

        assert [d.score for d in result] == [0.9, 0.8]

    def test_overlap_at_threshold_is_kept(self):
        a = Detection(0, 0.9, NormalizedBox(0.0, 0.0, 0.2, 0.2))
        b = Detection(0, 0.8, NormalizedBox(0.1, 0.0, 0.2, 0.2))

        result = non_max_suppression([a, b], iou_threshold=iou(a.box, b.box), max_detections=5)

        assert result == [a, b]

    def test_output_sorted_and_non_overlapping(self):
        candidates = [
            det(0, 0.6, 0.0, 0.0),
            det(0, 0.95, 0.02, 0.02),
            det(1, 0.7, 0.5, 0.5),
            det(0, 0.8, 0.6, 0.6),
            det(1, 0.65, 0.51, 0.5),
        ]

        result = non_max_suppression(candidates, iou_threshold=0.5, max_detections=10)

        scores = [d.score for d in result]
        assert scores == sorted(scores, reverse=True)
        for i, a in enumerate(result):
            for b in result[i + 1:]:
                if a.class_id == b.class_id:
                    assert iou(a.box, b.box) <= 0.5
        assert [d.score for d in result] == [0.95, 0.8, 0.7]

    def test_equal_scores_keep_input_order(self):
        first = det(0, 0.8, 0.0, 0.0)
        second = det(0, 0.8, 0.5, 0.5)
        third = det(1, 0.8, 0.0, 0.5)

        result = non_max_suppression([first, second, third], iou_threshold=0.5, max_detections=5)

        assert result == [first, second, third]

    def test_idempotent(self):
        candidates = [
            det(0, 0.9, 0.0, 0.0),
            det(0, 0.85, 0.05, 0.0),
            det(2, 0.7, 0.3, 0.3),
            det(2, 0.6, 0.7, 0.7),
        ]

        once = non_max_suppression(candidates, iou_threshold=0.5, max_detections=3)
        twice = non_max_suppression(once, iou_threshold=0.5, max_detections=3)

        assert once == twice

    def test_does_not_modify_input(self):
        candidates = [det(0, 0.5, 0.0, 0.0), det(0, 0.9, 0.0, 0.0)]
        copy = list(candidates)

        non_max_suppression(candidates, iou_threshold=0.5, max_detections=1)

        assert candidates == copy
