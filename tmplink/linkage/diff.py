"""
Diff classification shared by every entity family.

Each template entity is classified as insert, update or skip. An update
carries a dirty bitset (an ``IntFlag`` per family) naming the columns
that differ, so the writer only touches changed columns.
"""
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Any, Callable, Dict, Generic, Hashable, List, Mapping, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")
H = TypeVar("H")


class DiffKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"


@dataclass
class Diff(Generic[T]):
    kind: DiffKind
    template: T
    host_id: Optional[int] = None
    dirty: int = 0

    @classmethod
    def insert(cls, template: T) -> "Diff[T]":
        return cls(DiffKind.INSERT, template)

    @classmethod
    def update(cls, template: T, host_id: int, dirty: int = 0) -> "Diff[T]":
        return cls(DiffKind.UPDATE, template, host_id, dirty)

    @classmethod
    def skip(cls, template: T, host_id: int) -> "Diff[T]":
        return cls(DiffKind.SKIP, template, host_id)


def compare_columns(template: Mapping[str, Any], host: Mapping[str, Any], columns: Mapping[IntFlag, str]) -> int:
    """Return the bitset of columns whose values differ."""
    dirty = 0
    for flag, column in columns.items():
        if template[column] != host[column]:
            dirty |= flag
    return dirty


def dirty_values(dirty: int, columns: Mapping[IntFlag, str], source: Mapping[str, Any]) -> Dict[str, Any]:
    """Column values selected by ``dirty``, taken from ``source``."""
    return {column: source[column] for flag, column in columns.items() if dirty & flag}


@dataclass
class SubDiff(Generic[T, H]):
    """Outcome of comparing one template-side and one host-side collection."""

    to_add: List[T] = field(default_factory=list)
    to_update: List[Tuple[T, H]] = field(default_factory=list)
    unchanged: List[Tuple[T, H]] = field(default_factory=list)
    to_delete: List[H] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.to_add or self.to_update or self.to_delete)


def keyed_diff(
    template: Sequence[T],
    host: Sequence[H],
    template_key: Callable[[T], Hashable],
    host_key: Callable[[H], Hashable],
    changed: Callable[[T, H], bool],
) -> SubDiff[T, H]:
    """Match by identity key; unmatched template rows are added, unmatched host rows deleted."""
    result: SubDiff[T, H] = SubDiff()
    by_key: Dict[Hashable, H] = {}
    for row in host:
        by_key.setdefault(host_key(row), row)
    matched = set()
    for row in template:
        key = template_key(row)
        partner = by_key.get(key)
        if partner is None or key in matched:
            result.to_add.append(row)
            continue
        matched.add(key)
        if changed(row, partner):
            result.to_update.append((row, partner))
        else:
            result.unchanged.append((row, partner))
    result.to_delete = [row for row in host if host_key(row) not in matched]
    return result


def positional_diff(
    template: Sequence[T],
    host: Sequence[H],
    changed: Callable[[T, H], bool],
) -> SubDiff[T, H]:
    """Pair rows by position; trailing template rows are added, trailing host rows deleted."""
    result: SubDiff[T, H] = SubDiff()
    for row, partner in zip(template, host):
        if changed(row, partner):
            result.to_update.append((row, partner))
        else:
            result.unchanged.append((row, partner))
    result.to_add = list(template[len(host):])
    result.to_delete = list(host[len(template):])
    return result
