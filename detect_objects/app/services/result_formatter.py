"""Human-readable rendering of model signatures and detections."""
from __future__ import annotations

import sys
from typing import Iterable, List, Optional, TextIO

from ..models import Detection, ModelSignature, TensorBinding

SEPARATOR = "-----------------------------------------------"
NOTHING_FOUND = "No objects detected with a high enough score."


def _binding_lines(bindings: List[TensorBinding]) -> List[str]:
    total = len(bindings)
    return [
        f"{index} of {total}: {binding.name:<20} (Node name in graph: {binding.node_name:<20}, type: {binding.dtype})"
        for index, binding in enumerate(bindings, start=1)
    ]


def format_signature(signature: ModelSignature) -> List[str]:
    return [
        "MODEL SIGNATURE",
        "Inputs:",
        *_binding_lines(signature.inputs),
        "Outputs:",
        *_binding_lines(signature.outputs),
        SEPARATOR,
    ]


def format_detections(image: str, detections: Iterable[Detection]) -> List[str]:
    """Render the report block for one image."""

    lines = [f"* {image}"]
    for detection in detections:
        lines.append(f"\tFound {detection.class_name:<20} (score: {detection.confidence:.4f})")
    if len(lines) == 1:
        lines.append(NOTHING_FOUND)
    return lines


def emit(lines: Iterable[str], stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stdout
    for line in lines:
        stream.write(line + "\n")
    stream.flush()
