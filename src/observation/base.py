"""
FrameSource interface for pluggable frame inputs.

The pipeline only sees FrameData; where frames come from (a video file,
a folder of stills, a live camera) is decided here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from models.frame import FrameData


@dataclass
class SourceConfig:
    """
    Base configuration for frame sources.

    Attributes:
        source_id: Identifier carried on every FrameData.
        path: Video file or image directory.
        images: Explicit list of image files (overrides path).
        fps: Nominal frame rate used for timestamps of file sources (None = source default).
        loop: Restart from the beginning when exhausted.
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    path: Optional[str] = None
    images: List[str] = field(default_factory=list)
    fps: Optional[float] = None
    loop: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class FrameSource(ABC):
    """
    Abstract base class for frame sources.

    Lifecycle:
        1. Create instance with config
        2. Call open() to initialize the source
        3. Call read() repeatedly to get frames
        4. Call close() to release resources

    Can also be used as a context manager:
        with OpenCVFileSource(config) as source:
            for frame_data in source:
                process(frame_data)
    """

    def __init__(self, config: SourceConfig):
        self._config = config
        self._is_open = False
        self._frame_index = 0
        self._exhausted = False

    @property
    def source_id(self) -> str:
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Number of frames read since open."""
        return self._frame_index

    @property
    def exhausted(self) -> bool:
        """True once a finite source has no more frames; read() keeps returning None."""
        return self._exhausted

    @abstractmethod
    def open(self) -> None:
        """
        Open the source.

        Raises:
            RuntimeError: If the source cannot be opened.
        """

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """
        Read the next frame.

        Returns:
            FrameData, or None if no frame is available (end of input or read error).
        """

    @abstractmethod
    def close(self) -> None:
        """Release resources. Safe to call multiple times."""

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameData]:
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")

        while True:
            frame_data = self.read()
            if frame_data is None:
                break
            yield frame_data
