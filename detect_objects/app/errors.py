"""Exceptions raised by the detection pipeline."""
from __future__ import annotations


class DetectionError(Exception):
    """Base class for failures reported by the command line harness."""


class UsageError(DetectionError):
    """The command line did not name a model, a label map and at least one image."""


class ModelLoadError(DetectionError):
    """The SavedModel directory, tag or signature could not be loaded."""


class LabelLoadError(DetectionError):
    """The label map file is unreadable or malformed."""


class ImageFormatError(DetectionError):
    """An image could not be decoded as 3-channel, 8-bit pixels."""

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"{reason} (file: {path})")
        self.path = path
        self.reason = reason


class InferenceError(DetectionError):
    """Model outputs are missing or do not have the expected type or shape."""


class ClassIndexError(DetectionError, IndexError):
    """A predicted class id has no entry in the label table."""

    def __init__(self, class_id: object, table_size: int) -> None:
        super().__init__(f"Class id {class_id} is outside the label table (size {table_size})")
        self.class_id = class_id
        self.table_size = table_size
