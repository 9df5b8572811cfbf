"""Shared data models for the detection harness."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence


@dataclass
class Detection:
    """Represents a single detected object."""

    bbox: Sequence[float]
    confidence: float
    class_id: int
    class_name: str


@dataclass(frozen=True)
class TensorBinding:
    """One named input or output of a model signature."""

    name: str
    node_name: str
    dtype: str


@dataclass
class ModelSignature:
    name: str
    inputs: List[TensorBinding] = field(default_factory=list)
    outputs: List[TensorBinding] = field(default_factory=list)
