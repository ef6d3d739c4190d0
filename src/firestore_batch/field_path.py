from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union
import re


SIMPLE_SEGMENT_PATTERN = re.compile(r"^[_a-zA-Z][_a-zA-Z0-9]*$")


class _Sentinel:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


DELETE_FIELD = _Sentinel("DELETE_FIELD")
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


@dataclass(frozen=True, order=True)
class FieldPath:
    """Path to a (possibly nested) field inside a document."""

    segments: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.segments) == 0:
            raise ValueError("Field path must have at least one segment.")
        for segment in self.segments:
            if not isinstance(segment, str) or segment == "":
                raise ValueError(f"Invalid field path segment: {segment!r}")

    @classmethod
    def parse(cls, value: FieldPathLike) -> FieldPath:
        """Build a field path from a dotted string, a sequence of segments or a FieldPath.

        In dotted strings, segments wrapped in backticks may contain dots, and
        ``\\`` escapes the next character inside them.
        """

        if isinstance(value, FieldPath):
            return value
        if isinstance(value, str):
            return cls(_split_dotted(value))
        return cls(tuple(str(segment) for segment in value))

    def is_prefix_of(self, other: FieldPath) -> bool:
        return other.segments[: len(self.segments)] == self.segments

    def child(self, segment: str) -> FieldPath:
        return FieldPath(self.segments + (segment,))

    def lookup(self, data: Mapping[str, Any]) -> Any:
        """Return the nested value, raising KeyError when any segment is missing."""

        current: Any = data
        for segment in self.segments:
            if not isinstance(current, Mapping):
                raise KeyError(str(self))
            current = current[segment]
        return current

    def __str__(self) -> str:
        return ".".join(_quote_segment(segment) for segment in self.segments)


FieldPathLike = Union[FieldPath, str, Iterable[str]]


def _quote_segment(segment: str) -> str:
    if SIMPLE_SEGMENT_PATTERN.match(segment):
        return segment
    escaped = segment.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def _split_dotted(value: str) -> tuple[str, ...]:
    segments: list[str] = []
    index = 0
    while True:
        if value.startswith("`", index):
            chars: list[str] = []
            index += 1
            while True:
                if index >= len(value):
                    raise ValueError(f"Unterminated backtick in field path: {value!r}")
                char = value[index]
                if char == "\\":
                    if index + 1 >= len(value):
                        raise ValueError(f"Dangling escape in field path: {value!r}")
                    chars.append(value[index + 1])
                    index += 2
                elif char == "`":
                    index += 1
                    break
                else:
                    chars.append(char)
                    index += 1
            segments.append("".join(chars))
        else:
            end = value.find(".", index)
            if end == -1:
                end = len(value)
            segment = value[index:end]
            if "`" in segment:
                raise ValueError(f"Invalid backtick in field path: {value!r}")
            segments.append(segment)
            index = end

        if index == len(value):
            return tuple(segments)
        if value[index] != ".":
            raise ValueError(f"Expected '.' after quoted segment in field path: {value!r}")
        index += 1


def leaf_paths(data: Mapping[str, Any], prefix: FieldPath | None = None) -> list[tuple[FieldPath, Any]]:
    """Flatten nested mappings into (field path, leaf value) pairs.

    Empty mappings count as leaves.
    """

    pairs: list[tuple[FieldPath, Any]] = []
    for key, value in data.items():
        path = prefix.child(str(key)) if prefix is not None else FieldPath((str(key),))
        if isinstance(value, Mapping) and len(value) > 0:
            pairs.extend(leaf_paths(value, path))
        else:
            pairs.append((path, value))
    return pairs


def set_nested(target: dict[str, Any], path: FieldPath, value: Any) -> None:
    current = target
    for segment in path.segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[path.segments[-1]] = value
