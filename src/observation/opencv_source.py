"""
OpenCV-based frame source.

Supports:
- Video files (path to a file readable by cv2.VideoCapture)
- Image directories (path to a folder; files read in name order)
- Explicit image lists
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from models.frame import FrameData
from .base import FrameSource, SourceConfig

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp")


def list_images(directory: str) -> List[str]:
    """Image files in a directory, sorted by name."""
    names = sorted(
        name for name in os.listdir(directory)
        if name.lower().endswith(IMAGE_EXTENSIONS)
    )
    return [os.path.join(directory, name) for name in names]


class OpenCVFileSource(FrameSource):
    """
    Reads frames from a video file or a sequence of still images.

    Timestamps advance by 1/fps per frame when a frame rate is known, so
    replays are deterministic; otherwise wall-clock time is used.

    Example:
        with OpenCVFileSource(SourceConfig(path="clips/bench.mp4")) as source:
            for frame_data in source:
                process(frame_data.frame)
    """

    def __init__(self, config: SourceConfig):
        super().__init__(config)
        self._cap: Optional[cv2.VideoCapture] = None
        self._images: List[str] = []
        self._image_pos = 0
        self._fps: Optional[float] = config.fps

    @property
    def fps(self) -> Optional[float]:
        return self._fps

    def open(self) -> None:
        if self._is_open:
            return

        cfg = self._config
        if cfg.images:
            self._images = list(cfg.images)
        elif cfg.path and os.path.isdir(cfg.path):
            self._images = list_images(cfg.path)
            if not self._images:
                raise RuntimeError(f"No images found in {cfg.path}")
        elif cfg.path and os.path.isfile(cfg.path):
            self._cap = cv2.VideoCapture(cfg.path)
            if not self._cap.isOpened():
                self._cap.release()
                self._cap = None
                raise RuntimeError(f"Failed to open video {cfg.path}")
            if self._fps is None:
                native_fps = self._cap.get(cv2.CAP_PROP_FPS)
                self._fps = native_fps if native_fps and native_fps > 0 else None
        else:
            raise RuntimeError(f"Source path not found: {cfg.path}")

        self._is_open = True
        self._exhausted = False
        self._frame_index = 0
        self._image_pos = 0

        logging.info(
            f"OpenCVFileSource opened: source_id={self.source_id}, "
            f"{'video=' + str(cfg.path) if self._cap is not None else f'images={len(self._images)}'}, "
            f"fps={self._fps}"
        )

    def read(self) -> Optional[FrameData]:
        if not self._is_open or self._exhausted:
            return None

        frame = self._read_video() if self._cap is not None else self._read_image()
        if frame is None:
            if self._config.loop and self._frame_index > 0:
                logging.info("End of input reached, looping")
                self._rewind()
                frame = self._read_video() if self._cap is not None else self._read_image()
            if frame is None:
                self._exhausted = True
                logging.info("End of input reached")
                return None

        self._frame_index += 1
        if self._fps:
            timestamp = (self._frame_index - 1) / self._fps
        else:
            timestamp = time.time()

        return FrameData.from_numpy(
            frame,
            timestamp=timestamp,
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def _read_video(self) -> Optional[np.ndarray]:
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    def _read_image(self) -> Optional[np.ndarray]:
        while self._image_pos < len(self._images):
            path = self._images[self._image_pos]
            self._image_pos += 1
            frame = cv2.imread(path, cv2.IMREAD_COLOR)
            if frame is not None:
                return frame
            logging.warning(f"Skipping unreadable image: {path}")
        return None

    def _rewind(self) -> None:
        if self._cap is not None:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self._image_pos = 0

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._is_open = False
        logging.info(f"OpenCVFileSource closed: source_id={self.source_id}")

    def get_video_info(self) -> Dict[str, Any]:
        """Information about an open video file (empty for image sources)."""
        if self._cap is None or not self._cap.isOpened():
            return {}

        return {
            "width": int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": self._cap.get(cv2.CAP_PROP_FPS),
            "frame_count": int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        }
