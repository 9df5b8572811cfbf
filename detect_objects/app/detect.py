"""Entry point for running a SavedModel object detector over image files."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from pydantic import ValidationError

from .config.settings import AppSettings, load_settings
from .errors import (
    ClassIndexError,
    DetectionError,
    ImageFormatError,
    InferenceError,
    UsageError,
)
from .services.detector import (
    InferenceRuntime,
    ObjectDetector,
    TensorFlowRuntime,
    managed_model,
    resolve_input_name,
)
from .services.label_map import LabelTable, load_labels
from .services.result_formatter import emit, format_detections, format_signature
from .utils.image import make_image_tensor

LOGGER = logging.getLogger(__name__)

USAGE = """\
USAGE: <model> <label_map> <image> [<image>] [<image>]

Where
<model> is the path to the SavedModel directory of the model to use.
        For example, the saved_model directory in tarballs from
        https://github.com/tensorflow/models/blob/master/research/object_detection/g3doc/tf2_detection_zoo.md

<label_map> is the path to a file containing information about the labels detected by the model.
            For example, one of the .pbtxt files from
            https://github.com/tensorflow/models/tree/master/research/object_detection/data

<image> is the path to an image file.
        Sample images can be found from the COCO, Kitti, or Open Images dataset.
"""

PER_IMAGE_ERRORS = (ImageFormatError, InferenceError, ClassIndexError)


class UsageArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports bad command lines as :class:`UsageError`."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = UsageArgumentParser(
        prog="detect-objects",
        description="Detect objects in images with a TensorFlow SavedModel",
        epilog=USAGE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("model", type=str, help="SavedModel directory")
    parser.add_argument("label_map", type=str, help="Label map file (.pbtxt, .yaml or one label per line)")
    parser.add_argument("images", type=str, nargs="+", help="Image files to run detection on")
    parser.add_argument("--threshold", type=float, default=None, help="Minimum score to report")
    parser.add_argument("--tag", type=str, default=None, help="SavedModel tag to load")
    parser.add_argument("--signature", type=str, default=None, help="Signature to run")
    parser.add_argument("--input-name", type=str, default=None, help="Input binding to feed the image to")
    parser.add_argument("--keep-going", action="store_true", help="Continue after a per-image failure")
    parser.add_argument("--placeholder-labels", action="store_true", help="Ignore the label map, use fixed labels")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    return parser


def setup_logging(settings: AppSettings) -> None:
    log_level = getattr(logging, settings.log_level)
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    # Standard output carries the detection report.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=[handler], force=True)


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    overrides = {}
    if args.threshold is not None:
        overrides["score_threshold"] = args.threshold
    if args.tag:
        overrides["serving_tag"] = args.tag
    if args.signature:
        overrides["signature_name"] = args.signature
    if args.input_name:
        overrides["input_name"] = args.input_name
    if args.keep_going:
        overrides["keep_going"] = True
    if args.placeholder_labels:
        overrides["placeholder_labels"] = True
    if args.log_format:
        overrides["log_format"] = args.log_format
    if args.log_level:
        overrides["log_level"] = args.log_level

    try:
        return load_settings(**overrides)
    except ValidationError as exc:
        raise UsageError(f"Invalid settings: {exc}") from exc


def process_image(image: str, detector: ObjectDetector, labels: LabelTable, settings: AppSettings) -> None:
    """Run detection on one image file and print its report block."""

    tensor = make_image_tensor(image)
    batch = detector.predict(tensor)
    detections = batch.detections(labels, settings.score_threshold)
    for detection in detections:
        LOGGER.debug("%s: %s %.4f box=%s", image, detection.class_name, detection.confidence, detection.bbox)
    emit(format_detections(image, detections))


def run_detection(args: argparse.Namespace, runtime: Optional[InferenceRuntime] = None) -> int:
    settings = resolve_settings(args)
    setup_logging(settings)

    LOGGER.info("Starting detection over %d image(s)", len(args.images))
    labels = load_labels(args.label_map, placeholder=settings.placeholder_labels)
    runtime = runtime or TensorFlowRuntime(signature_name=settings.signature_name)

    failures: List[str] = []
    with managed_model(runtime, args.model, settings.serving_tag) as model:
        signature = model.signature(settings.signature_name)
        emit(format_signature(signature))
        detector = ObjectDetector(
            model,
            resolve_input_name(signature, settings.input_name),
            settings.output_names,
        )
        for image in args.images:
            try:
                process_image(image, detector, labels, settings)
            except PER_IMAGE_ERRORS as exc:
                if not settings.keep_going:
                    raise
                LOGGER.error("Skipping %s: %s", image, exc)
                failures.append(image)

    if failures:
        LOGGER.error("%d of %d image(s) failed", len(failures), len(args.images))
        return 1
    LOGGER.info("Detection completed")
    return 0


def main(argv: Optional[Sequence[str]] = None, runtime: Optional[InferenceRuntime] = None) -> int:
    parser = build_arg_parser()
    try:
        args = parser.parse_args(argv)
        return run_detection(args, runtime=runtime)
    except UsageError as exc:
        sys.stderr.write(f"{exc}\n{USAGE}")
        return 1
    except DetectionError as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
