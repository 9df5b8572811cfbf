from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np
import pytest

from detect_objects.app.models import ModelSignature, TensorBinding
from detect_objects.app.services.detector import InferenceRuntime, ModelHandle

SIGNATURE = ModelSignature(
    name="serving_default",
    inputs=[TensorBinding(name="input_tensor", node_name="serving_default_input_tensor:0", dtype="DT_UINT8")],
    outputs=[
        TensorBinding(name="detection_boxes", node_name="StatefulPartitionedCall:1", dtype="DT_FLOAT"),
        TensorBinding(name="detection_classes", node_name="StatefulPartitionedCall:2", dtype="DT_FLOAT"),
        TensorBinding(name="detection_scores", node_name="StatefulPartitionedCall:4", dtype="DT_FLOAT"),
    ],
)


def detection_outputs(
    scores: Sequence[float], classes: Sequence[float], boxes: Optional[Sequence[Sequence[float]]] = None
) -> Dict[str, np.ndarray]:
    if boxes is None:
        boxes = [[0.1, 0.2, 0.3, 0.4]] * len(scores)
    return {
        "detection_scores": np.array([scores], dtype=np.float32),
        "detection_classes": np.array([classes], dtype=np.float32),
        "detection_boxes": np.array([boxes], dtype=np.float32).reshape(1, len(scores), 4),
    }


class FakeModel(ModelHandle):
    def __init__(self, outputs: Dict[str, np.ndarray], signature: ModelSignature) -> None:
        self._outputs = outputs
        self._signature = signature
        self.calls: List[tuple] = []
        self.closed = False

    def signature(self, name: str = "serving_default") -> ModelSignature:
        return self._signature

    def run(self, input_name: str, tensor: np.ndarray, output_names: Sequence[str]) -> List[np.ndarray]:
        self.calls.append((input_name, tensor.shape, tensor.dtype, list(output_names)))
        return [self._outputs[name] for name in output_names]

    def close(self) -> None:
        self.closed = True


class FakeRuntime(InferenceRuntime):
    def __init__(self, outputs: Dict[str, np.ndarray], signature: ModelSignature = SIGNATURE) -> None:
        self.outputs = outputs
        self.signature = signature
        self.loads: List[tuple] = []
        self.models: List[FakeModel] = []

    def load_model(self, path, tag: str) -> ModelHandle:
        self.loads.append((str(path), tag))
        model = FakeModel(self.outputs, self.signature)
        self.models.append(model)
        return model


@pytest.fixture()
def make_runtime():
    def factory(scores, classes, boxes=None, signature: ModelSignature = SIGNATURE) -> FakeRuntime:
        return FakeRuntime(detection_outputs(scores, classes, boxes), signature=signature)

    return factory


@pytest.fixture()
def make_outputs():
    return detection_outputs


@pytest.fixture()
def image_file(tmp_path: Path) -> Path:
    image = np.zeros((3, 4, 3), dtype=np.uint8)
    image[..., 0] = 10
    image[..., 1] = 20
    image[..., 2] = 30
    path = tmp_path / "sample.png"
    assert cv2.imwrite(str(path), image)
    return path


@pytest.fixture()
def gray_image_file(tmp_path: Path) -> Path:
    path = tmp_path / "gray.png"
    assert cv2.imwrite(str(path), np.full((3, 4), 128, dtype=np.uint8))
    return path


@pytest.fixture()
def flower_labels(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("daisy\ndandelion\nroses\n", encoding="utf-8")
    return path
