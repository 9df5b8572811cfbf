"""Inference runtime abstraction and the TensorFlow SavedModel backend."""
from __future__ import annotations

import abc
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, List, Optional, Sequence, Union

import numpy as np

from ..errors import ClassIndexError, InferenceError, ModelLoadError
from ..models import Detection, ModelSignature, TensorBinding
from .label_map import LabelTable

LOGGER = logging.getLogger(__name__)

DEFAULT_SIGNATURE = "serving_default"
BOX_SIZE = 4


class ModelHandle(abc.ABC):
    """A loaded inference graph exposing its signature and a blocking run."""

    @abc.abstractmethod
    def signature(self, name: str = DEFAULT_SIGNATURE) -> ModelSignature:
        """Describe the named signature's inputs and outputs."""

    @abc.abstractmethod
    def run(self, input_name: str, tensor: np.ndarray, output_names: Sequence[str]) -> List[np.ndarray]:
        """Feed ``tensor`` as ``input_name`` and return ``output_names`` in order."""

    def close(self) -> None:
        """Release the underlying graph."""

    def __enter__(self) -> "ModelHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class InferenceRuntime(abc.ABC):
    """Capability for loading directory-packaged models under a tag."""

    @abc.abstractmethod
    def load_model(self, path: Union[str, Path], tag: str) -> ModelHandle:
        ...


def _dtype_name(dtype: object) -> str:
    from tensorflow.core.framework import types_pb2

    return types_pb2.DataType.Name(dtype.as_datatype_enum)


class TensorFlowModelHandle(ModelHandle):
    """Wraps a SavedModel loaded with ``tf.saved_model.load``."""

    def __init__(self, path: Path, loaded: object, signature_name: str = DEFAULT_SIGNATURE) -> None:
        self.path = path
        self.signature_name = signature_name
        self._loaded = loaded

    def _concrete_function(self, name: str):
        if self._loaded is None:
            raise InferenceError(f"Model {self.path} has been closed")
        signatures = getattr(self._loaded, "signatures", {})
        if name not in signatures:
            raise ModelLoadError(f"Signature '{name}' not found in {self.path}; available: {sorted(signatures)}")
        return signatures[name]

    def signature(self, name: str = DEFAULT_SIGNATURE) -> ModelSignature:
        function = self._concrete_function(name)
        placeholders = {tensor.name.split(":")[0]: tensor for tensor in function.inputs}
        _, input_specs = function.structured_input_signature
        inputs = []
        for key, spec in input_specs.items():
            tensor = placeholders.get(spec.name or key)
            node_name = tensor.name if tensor is not None else f"{spec.name or key}:0"
            inputs.append(TensorBinding(name=key, node_name=node_name, dtype=_dtype_name(spec.dtype)))
        outputs = [
            TensorBinding(name=key, node_name=getattr(tensor, "name", None) or key, dtype=_dtype_name(tensor.dtype))
            for key, tensor in function.structured_outputs.items()
        ]
        return ModelSignature(name=name, inputs=inputs, outputs=outputs)

    def run(self, input_name: str, tensor: np.ndarray, output_names: Sequence[str]) -> List[np.ndarray]:
        import tensorflow as tf

        function = self._concrete_function(self.signature_name)
        try:
            results = function(**{input_name: tf.convert_to_tensor(tensor)})
        except (TypeError, ValueError, tf.errors.OpError) as exc:
            raise InferenceError(f"Inference failed for input '{input_name}': {exc}") from exc
        missing = [name for name in output_names if name not in results]
        if missing:
            raise InferenceError(f"Model outputs {missing} not produced; available: {sorted(results)}")
        return [results[name].numpy() for name in output_names]

    def close(self) -> None:
        if self._loaded is not None:
            LOGGER.info("Releasing model %s", self.path)
            self._loaded = None


class TensorFlowRuntime(InferenceRuntime):
    """Loads TensorFlow SavedModel directories."""

    def __init__(self, signature_name: str = DEFAULT_SIGNATURE) -> None:
        self.signature_name = signature_name

    def load_model(self, path: Union[str, Path], tag: str) -> ModelHandle:
        try:  # pragma: no cover - import guarded for environments without tensorflow
            import tensorflow as tf
        except ImportError as exc:  # pragma: no cover
            raise ModelLoadError(
                "tensorflow package is required to load SavedModel directories. Install it with "
                "`pip install -e .` before running detect-objects."
            ) from exc

        path = Path(path).expanduser()
        if not path.is_dir():
            raise ModelLoadError(f"SavedModel directory not found: {path}")
        LOGGER.info("Loading SavedModel from %s (tag: %s)", path, tag)
        try:
            loaded = tf.saved_model.load(str(path), tags=[tag])
        except (OSError, ValueError, RuntimeError, tf.errors.OpError) as exc:
            raise ModelLoadError(f"Unable to load SavedModel {path} with tag '{tag}': {exc}") from exc
        return TensorFlowModelHandle(path, loaded, signature_name=self.signature_name)


@contextmanager
def managed_model(
    runtime: InferenceRuntime, path: Union[str, Path], tag: str
) -> Generator[ModelHandle, None, None]:
    """Context manager ensuring the model handle is released."""

    model = runtime.load_model(path, tag)
    try:
        yield model
    finally:
        model.close()


def resolve_input_name(signature: ModelSignature, configured: Optional[str] = None) -> str:
    """Return the input binding to feed, preferring an explicit setting."""

    if configured:
        return configured
    if not signature.inputs:
        raise ModelLoadError(f"Signature '{signature.name}' declares no inputs")
    if len(signature.inputs) > 1:
        LOGGER.warning(
            "Signature '%s' has %d inputs; feeding '%s'",
            signature.name,
            len(signature.inputs),
            signature.inputs[0].name,
        )
    return signature.inputs[0].name


@dataclass
class DetectionBatch:
    """Positionally correlated detection slots for one image."""

    scores: np.ndarray
    classes: np.ndarray
    boxes: np.ndarray

    @classmethod
    def from_outputs(cls, outputs: Sequence[np.ndarray]) -> "DetectionBatch":
        """Validate (scores, classes, boxes) model outputs and drop the batch dimension."""

        if len(outputs) != 3:
            raise InferenceError(f"Expected 3 model outputs, got {len(outputs)}")
        arrays = []
        for label, output in zip(("scores", "classes", "boxes"), outputs):
            array = np.asarray(output)
            if array.dtype != np.float32:
                raise InferenceError(f"Expected float32 {label} tensor, found {array.dtype}")
            if array.ndim == 0 or array.shape[0] != 1:
                raise InferenceError(f"Expected a batch of one for {label}, found shape {array.shape}")
            arrays.append(array[0])
        scores, classes, boxes = arrays
        max_objects = scores.shape[0] if scores.ndim == 1 else -1
        if scores.ndim != 1 or classes.shape != (max_objects,):
            raise InferenceError(f"Scores {scores.shape} and classes {classes.shape} must be matching vectors")
        if boxes.shape != (max_objects, BOX_SIZE):
            raise InferenceError(f"Expected boxes of shape {(max_objects, BOX_SIZE)}, found {boxes.shape}")
        return cls(scores=scores, classes=classes, boxes=boxes)

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def detections(self, labels: LabelTable, threshold: float) -> List[Detection]:
        """Return slots scoring at least ``threshold``, in model slot order."""

        found: List[Detection] = []
        for score, class_value, box in zip(self.scores, self.classes, self.boxes):
            # NaN scores never qualify.
            if not score >= threshold:
                continue
            if not np.isfinite(class_value):
                raise ClassIndexError(float(class_value), len(labels))
            # Class ids arrive as floats and are truncated.
            class_id = int(class_value)
            found.append(
                Detection(bbox=box.tolist(), confidence=float(score), class_id=class_id, class_name=labels[class_id])
            )
        LOGGER.debug("Detected %d objects", len(found))
        return found


class ObjectDetector:
    """Runs image tensors through a model handle and decodes the detection batch."""

    def __init__(self, model: ModelHandle, input_name: str, output_names: Sequence[str]) -> None:
        self.model = model
        self.input_name = input_name
        self.output_names = list(output_names)

    def predict(self, tensor: np.ndarray) -> DetectionBatch:
        outputs = self.model.run(self.input_name, tensor, self.output_names)
        return DetectionBatch.from_outputs(outputs)
