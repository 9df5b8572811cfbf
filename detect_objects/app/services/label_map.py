"""Label map loading for detection class ids."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Union

import yaml

from ..errors import ClassIndexError, LabelLoadError

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_LABELS = ["daisy", "dandelion", "roses", "sunflowers", "tulips"]

_PBTXT_TOKEN = re.compile(
    r"""\s*(?:
        (?P<comment>\#[^\n]*)
      | (?P<open>\{)
      | (?P<close>\})
      | (?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*:?\s*(?=\{)
      | (?P<field>[A-Za-z_][A-Za-z0-9_]*)\s*:\s*
        (?:"(?P<dq>(?:[^"\\]|\\.)*)"|'(?P<sq>(?:[^'\\]|\\.)*)'|(?P<bare>[^\s{}#]+))
    )""",
    re.VERBOSE,
)
_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPED_CHARS = {"n": "\n", "t": "\t", "r": "\r"}


def _unescape(value: str) -> str:
    return _ESCAPE.sub(lambda match: _ESCAPED_CHARS.get(match.group(1), match.group(1)), value)


class _UniqueKeyLoader(yaml.SafeLoader):
    """Safe loader that rejects repeated mapping keys."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark, f"found duplicate id {key!r}", key_node.start_mark
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class LabelTable:
    """Ordered mapping from integer class id to display name."""

    def __init__(self, names: Mapping[int, str]) -> None:
        self._names: Dict[int, str] = dict(sorted(names.items()))

    @classmethod
    def from_list(cls, names: List[str]) -> "LabelTable":
        return cls(dict(enumerate(names)))

    def __len__(self) -> int:
        return max(self._names) + 1 if self._names else 0

    def __getitem__(self, class_id: int) -> str:
        try:
            return self._names[class_id]
        except KeyError:
            raise ClassIndexError(class_id, len(self)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __contains__(self, class_id: object) -> bool:
        return class_id in self._names


def _parse_pbtxt(text: str) -> Dict[int, str]:
    items: List[Dict[str, str]] = []
    current: Dict[str, str] | None = None
    depth = 0
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _PBTXT_TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"Unexpected content at offset {pos}: {text[pos:pos + 20]!r}")
        pos = match.end()
        if match.group("comment"):
            continue
        if match.group("key"):
            if depth == 0 and match.group("key") == "item":
                current = {}
            continue
        if match.group("open"):
            depth += 1
            continue
        if match.group("close"):
            depth -= 1
            if depth < 0:
                raise ValueError("Unbalanced '}'")
            if depth == 0 and current is not None:
                items.append(current)
                current = None
            continue
        name = match.group("field")
        quoted = match.group("dq") if match.group("dq") is not None else match.group("sq")
        value = _unescape(quoted) if quoted is not None else match.group("bare")
        if depth == 1 and current is not None:
            current[name] = value
    if depth != 0:
        raise ValueError("Unterminated item block")

    labels: Dict[int, str] = {}
    for item in items:
        if "id" not in item:
            raise ValueError(f"Item without id: {item}")
        label = item.get("display_name") or item.get("name")
        if not label:
            raise ValueError(f"Item {item['id']} has no name")
        class_id = int(item["id"])
        if class_id in labels:
            raise ValueError(f"Duplicate id {class_id}")
        labels[class_id] = label
    return labels


def _parse_yaml(text: str) -> Dict[int, str]:
    payload = yaml.load(text, Loader=_UniqueKeyLoader)
    if isinstance(payload, dict):
        labels: Dict[int, str] = {}
        for key, value in payload.items():
            class_id = int(key)
            if class_id in labels:
                raise ValueError(f"Duplicate id {class_id}")
            labels[class_id] = str(value)
        return labels
    if isinstance(payload, list):
        return {index: str(value) for index, value in enumerate(payload)}
    raise ValueError("Expected a mapping of id to name or a list of names")


def _parse_lines(text: str) -> Dict[int, str]:
    names = [line.strip() for line in text.splitlines() if line.strip()]
    return dict(enumerate(names))


def load_labels(path: Union[str, Path], *, placeholder: bool = False) -> LabelTable:
    """Load the label table for a label map file.

    ``.pbtxt`` files follow the object detection ``StringIntLabelMap`` layout,
    ``.yaml``/``.yml`` hold either ``{id: name}`` or a list, and anything else is
    read as one label per line.
    """

    if placeholder:
        LOGGER.warning("Ignoring label map %s and using placeholder labels", path)
        return LabelTable.from_list(PLACEHOLDER_LABELS)

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise LabelLoadError(f"Unable to read label map {path}: {exc}") from exc

    suffix = path.suffix.lower()
    try:
        if suffix == ".pbtxt":
            names = _parse_pbtxt(text)
        elif suffix in {".yaml", ".yml"}:
            names = _parse_yaml(text)
        else:
            names = _parse_lines(text)
    except (TypeError, ValueError, yaml.YAMLError) as exc:
        raise LabelLoadError(f"Malformed label map {path}: {exc}") from exc

    if not names:
        raise LabelLoadError(f"Label map {path} defines no labels")
    LOGGER.info("Loaded %d labels from %s", len(names), path)
    return LabelTable(names)
