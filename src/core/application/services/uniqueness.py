from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from src.core.domain.bundle import UniqueIndexSet

log = logging.getLogger(__name__)

MAX_ATTEMPTS = 10


def build_unique_index_sets(
    indexes: Mapping[str, Sequence[str]],
    columns: Sequence[str],
) -> UniqueIndexSet:
    """Map each unique index onto row positions; unknown columns are skipped."""
    positions = {name: i for i, name in enumerate(columns)}
    out: UniqueIndexSet = {}
    for index_name, index_columns in indexes.items():
        members: List[Tuple[str, int]] = []
        for col in index_columns:
            if col not in positions:
                log.debug("unique index %s: column %s not in result, skipped", index_name, col)
                continue
            members.append((col, positions[col]))
        if members:
            out[index_name] = tuple(members)
    return out


def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


class UniquenessGuard:
    """Tracks accepted row signatures for one table."""

    def __init__(self, index_sets: UniqueIndexSet) -> None:
        self.index_sets = dict(index_sets)
        self._seen: Dict[str, Set[str]] = {name: set() for name in self.index_sets}

    def signatures(self, row: Sequence[Any]) -> Dict[str, str]:
        sigs = {}
        for index_name, members in self.index_sets.items():
            parts = []
            for col, pos in members:
                value = row[pos]
                if value is None:
                    # NULLs never collide
                    parts = None
                    break
                parts.append(f"{col}={_encode(value)}")
            if parts:
                sigs[index_name] = "_".join(parts)
        return sigs

    def check(self, index_name: str, signature: str) -> bool:
        return signature in self._seen.get(index_name, ())

    def first_collision(self, signatures: Mapping[str, str]) -> Optional[Tuple[str, str]]:
        for index_name, sig in signatures.items():
            if self.check(index_name, sig):
                return index_name, sig
        return None

    def commit(self, signatures: Mapping[str, str]) -> None:
        for index_name, sig in signatures.items():
            self._seen.setdefault(index_name, set()).add(sig)

    def accepted(self, index_name: str) -> Iterable[str]:
        return frozenset(self._seen.get(index_name, ()))
