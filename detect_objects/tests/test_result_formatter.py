from __future__ import annotations

import io

from detect_objects.app.models import Detection, ModelSignature, TensorBinding
from detect_objects.app.services.result_formatter import (
    NOTHING_FOUND,
    SEPARATOR,
    emit,
    format_detections,
    format_signature,
)


def test_format_signature_lists_bindings() -> None:
    signature = ModelSignature(
        name="serving_default",
        inputs=[TensorBinding(name="image_tensor", node_name="image_tensor:0", dtype="DT_UINT8")],
        outputs=[
            TensorBinding(name="detection_scores", node_name="detection_scores:0", dtype="DT_FLOAT"),
            TensorBinding(name="num_detections", node_name="num_detections:0", dtype="DT_FLOAT"),
        ],
    )

    lines = format_signature(signature)

    assert lines == [
        "MODEL SIGNATURE",
        "Inputs:",
        "1 of 1: image_tensor         (Node name in graph: image_tensor:0      , type: DT_UINT8)",
        "Outputs:",
        "1 of 2: detection_scores     (Node name in graph: detection_scores:0  , type: DT_FLOAT)",
        "2 of 2: num_detections       (Node name in graph: num_detections:0    , type: DT_FLOAT)",
        SEPARATOR,
    ]


def test_format_detections_pads_label_and_rounds_score() -> None:
    detections = [
        Detection(bbox=[0, 0, 1, 1], confidence=0.87654, class_id=1, class_name="dandelion"),
        Detection(bbox=[0, 0, 1, 1], confidence=0.5, class_id=2, class_name="roses"),
    ]

    lines = format_detections("flowers.jpg", detections)

    assert lines == [
        "* flowers.jpg",
        "\tFound dandelion            (score: 0.8765)",
        "\tFound roses                (score: 0.5000)",
    ]


def test_format_detections_without_matches() -> None:
    assert format_detections("empty.jpg", []) == ["* empty.jpg", NOTHING_FOUND]
    assert NOTHING_FOUND == "No objects detected with a high enough score."


def test_emit_writes_lines() -> None:
    stream = io.StringIO()
    emit(["a", "b"], stream)
    assert stream.getvalue() == "a\nb\n"
