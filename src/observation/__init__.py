"""
Observation layer for pluggable frame sources.

Each source implements the FrameSource interface and returns FrameData
objects to the pipeline runner.
"""

from .base import FrameSource, SourceConfig
from .opencv_source import OpenCVFileSource, list_images

__all__ = [
    "FrameSource",
    "SourceConfig",
    "OpenCVFileSource",
    "list_images",
]
