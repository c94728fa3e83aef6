"""superjson-compatible payload transformer.

Values travel as ``{"json": <plain JSON>, "meta": {"values": <annotations>}}``.
The annotations record, per dotted path, which plain JSON values stand for a
richer type so the receiving side can restore them:

- ``datetime`` -> ``["Date"]`` (ISO-8601, UTC, ``Z`` suffix)
- ``set`` / ``frozenset`` -> ``["set"]`` (JSON array)
- dict with non-string keys -> ``["map"]`` (array of ``[key, value]`` pairs)
- integers beyond +/-2**53 -> ``["bigint"]`` (decimal string)
- NaN / +-Infinity -> ``["number"]``
- registered custom types -> ``[["custom", name]]`` (``Decimal`` by default)

Annotations on children of a transformed container are nested inside the
container's own annotation, e.g. ``["map", {"0.1": ["Date"]}]``.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

_MAX_SAFE_INTEGER = 2**53 - 1

Annotation = list[Any]
AnnotationTree = dict[str, Any]


@dataclass(frozen=True)
class CustomType:
    name: str
    cls: type
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]


def _escape_key(key: str) -> str:
    return key.replace("\\", "\\\\").replace(".", "\\.")


def _split_path(path: str) -> list[str]:
    segments: list[str] = []
    current: list[str] = []
    chars = iter(path)
    for char in chars:
        if char == "\\":
            current.append(next(chars, ""))
        elif char == ".":
            segments.append("".join(current))
            current = []
        else:
            current.append(char)
    segments.append("".join(current))
    return segments


def _flatten(children: dict[str, Any]) -> AnnotationTree:
    """Merge nested plain-container subtrees into dotted paths."""
    flat: AnnotationTree = {}
    for key, annotation in children.items():
        if isinstance(annotation, dict):
            for sub_path, sub_annotation in annotation.items():
                flat[f"{key}.{sub_path}"] = sub_annotation
        else:
            flat[key] = annotation
    return flat


def _typed(type_name: Any, children: dict[str, Any]) -> Annotation:
    flat = _flatten(children)
    return [type_name, flat] if flat else [type_name]


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    return value.isoformat(timespec=timespec).replace("+00:00", "Z")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _canonical_order(walked: tuple[Any, Any]) -> str:
    return json.dumps(walked, sort_keys=True, separators=(",", ":"))


def _hashable(value: Any) -> Any:
    """Rebuild a decoded set member or map key: arrays become tuples, sets frozensets."""
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)
    if isinstance(value, set):
        return frozenset(_hashable(item) for item in value)
    return value


def _replace_at(container: Any, keys: list[str], fn: Callable[[Any], Any]) -> Any:
    if not keys:
        return fn(container)
    head, rest = keys[0], keys[1:]
    if isinstance(container, list):
        index = int(head)
        container[index] = _replace_at(container[index], rest, fn)
    elif isinstance(container, dict):
        container[head] = _replace_at(container[head], rest, fn)
    else:
        raise ValueError(f"Annotation path segment {head!r} does not address a container")
    return container


class PayloadTransformer:
    """Serializes rich Python values into superjson envelopes and back.

    Naive datetimes are treated as UTC; decoded datetimes are always
    UTC-aware. Tuples travel as plain arrays and decode as lists, except as
    set members and map keys, where they decode back to tuples.
    """

    def __init__(self) -> None:
        self._custom: dict[str, CustomType] = {}
        self.register(Decimal, "Decimal", str, Decimal)

    def register(
        self,
        cls: type,
        name: str,
        encode: Callable[[Any], Any],
        decode: Callable[[Any], Any],
    ) -> None:
        """Register a custom type, serialized as ``[["custom", name]]``."""
        self._custom[name] = CustomType(name=name, cls=cls, encode=encode, decode=decode)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize(self, value: Any) -> dict[str, Any]:
        json_value, annotation = self._walk(value)
        envelope: dict[str, Any] = {"json": json_value}
        if annotation:
            envelope["meta"] = {"values": annotation}
        return envelope

    def stringify(self, value: Any) -> str:
        return json.dumps(self.serialize(value), separators=(",", ":"))

    def _walk(self, value: Any) -> tuple[Any, Any]:
        if value is None or isinstance(value, (bool, str)):
            return value, None
        if isinstance(value, int):
            if abs(value) > _MAX_SAFE_INTEGER:
                return str(value), ["bigint"]
            return value, None
        if isinstance(value, float):
            if math.isfinite(value):
                return value, None
            if math.isnan(value):
                return "NaN", ["number"]
            return ("Infinity" if value > 0 else "-Infinity"), ["number"]
        for custom in self._custom.values():
            if isinstance(value, custom.cls):
                return custom.encode(value), [["custom", custom.name]]
        if isinstance(value, datetime):
            return _format_datetime(value), ["Date"]
        if isinstance(value, (set, frozenset)):
            # Canonical member order so equal sets serialize identically
            walked = sorted((self._walk(member) for member in value), key=_canonical_order)
            items = [json_item for json_item, _ in walked]
            children = {str(i): annotation for i, (_, annotation) in enumerate(walked) if annotation}
            return items, _typed("set", children)
        if isinstance(value, Mapping):
            if all(isinstance(key, str) for key in value):
                result: dict[str, Any] = {}
                children: dict[str, Any] = {}
                for key, item in value.items():
                    result[key], annotation = self._walk(item)
                    if annotation:
                        children[_escape_key(key)] = annotation
                return result, _flatten(children) or None
            pairs = [[key, item] for key, item in value.items()]
            items, children = self._walk_sequence(pairs)
            return items, _typed("map", children)
        if isinstance(value, (list, tuple)):
            items, children = self._walk_sequence(value)
            return items, _flatten(children) or None
        raise TypeError(f"Object of type {type(value).__name__} is not serializable")

    def _walk_sequence(self, values: Any) -> tuple[list[Any], dict[str, Any]]:
        items: list[Any] = []
        children: dict[str, Any] = {}
        for index, item in enumerate(values):
            json_item, annotation = self._walk(item)
            items.append(json_item)
            if annotation:
                children[str(index)] = annotation
        return items, children

    # ------------------------------------------------------------------
    # Deserialization
    # ------------------------------------------------------------------

    def deserialize(self, envelope: Any) -> Any:
        if not isinstance(envelope, dict):
            raise TypeError("Expected a serialized envelope object")
        json_value = envelope.get("json")
        meta = envelope.get("meta") or {}
        values = meta.get("values")
        if not values:
            return json_value
        return self._apply(deepcopy(json_value), values)

    def parse(self, raw: str | bytes) -> Any:
        return self.deserialize(json.loads(raw))

    def _apply(self, value: Any, tree: Any) -> Any:
        if isinstance(tree, list):
            return self._apply_typed(value, tree)
        for path, annotation in tree.items():
            value = _replace_at(
                value,
                _split_path(path),
                lambda current, annotation=annotation: self._apply(current, annotation),
            )
        return value

    def _apply_typed(self, value: Any, annotation: Annotation) -> Any:
        type_name = annotation[0]
        if len(annotation) > 1 and annotation[1]:
            value = self._apply(value, annotation[1])
        return self._restore(type_name, value)

    def _restore(self, type_name: Any, value: Any) -> Any:
        if isinstance(type_name, list):
            kind, name = type_name[0], type_name[1]
            if kind != "custom" or name not in self._custom:
                raise ValueError(f"Unsupported type annotation {type_name!r}")
            return self._custom[name].decode(value)
        if type_name == "Date":
            return _parse_datetime(value)
        if type_name == "set":
            return {_hashable(item) for item in value}
        if type_name == "map":
            return {_hashable(key): item for key, item in value}
        if type_name == "bigint":
            return int(value)
        if type_name == "number":
            return float(value.replace("Infinity", "inf"))
        if type_name == "undefined":
            return None
        raise ValueError(f"Unsupported type annotation {type_name!r}")


default_transformer = PayloadTransformer()
