"""
Philosophy index - the fixed catalogue of items manuscripts are analysed against.

Loaded once from YAML (data/philosophy_index.yaml). Items are immutable;
the index answers lookups, searches, filters and successor queries.
"""

from pathlib import Path
from typing import Optional

import yaml

from shared.logging import get_logger

from .models import PhilosophyItem, StructuredTerm

log = get_logger("analysis", "index")

FILTERS = ("all", "part-1", "part-2", "part-3", "part-4", "3-layer", "4-layer")


class UnknownItemError(LookupError):
    """No index entry carries the requested code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f'No index entry with code "{code}"')


def _search_text(item: PhilosophyItem) -> str:
    if isinstance(item.field_theory, StructuredTerm):
        field_theory = " ".join(item.field_theory.parts())
    else:
        field_theory = item.field_theory.text
    return " ".join([
        item.code, item.name, field_theory, item.ontology,
        item.epistemology, item.teleology, item.representative,
    ]).lower()


class PhilosophyIndex:
    """Ordered, read-only collection of PhilosophyItems keyed by code."""

    def __init__(self, items: list[PhilosophyItem]):
        self._items = list(items)
        self._by_code: dict[str, PhilosophyItem] = {}
        for item in self._items:
            if item.code in self._by_code:
                log.warning("index.duplicate_code", code=item.code)
                continue
            self._by_code[item.code] = item

    @classmethod
    def load(cls, path: Path) -> "PhilosophyIndex":
        """Load from a YAML file with a top-level `items` list."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        raw_items = data.get("items", []) if isinstance(data, dict) else data
        items = [PhilosophyItem.from_dict(raw) for raw in raw_items or []]
        log.info("index.loaded", path=str(path), items=len(items))
        return cls(items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __contains__(self, code: str) -> bool:
        return code in self._by_code

    @property
    def items(self) -> list[PhilosophyItem]:
        return list(self._items)

    def find(self, code: str) -> Optional[PhilosophyItem]:
        return self._by_code.get(code)

    def require(self, code: str) -> PhilosophyItem:
        item = self._by_code.get(code)
        if item is None:
            raise UnknownItemError(code)
        return item

    def search(self, term: str, filter_name: str = "all") -> list[PhilosophyItem]:
        """Case-insensitive substring search over code, name, terms and representative."""
        needle = (term or "").strip().lower()
        return [
            item for item in self.filter(filter_name)
            if not needle or needle in _search_text(item)
        ]

    def filter(self, filter_name: str = "all") -> list[PhilosophyItem]:
        """
        Items matching one of FILTERS.

        "part-N" selects codes under top-level part N; "3-layer" and
        "4-layer" select codes with that many segments.
        """
        if filter_name not in FILTERS:
            raise ValueError(f"Unknown filter {filter_name!r}; expected one of {', '.join(FILTERS)}")
        if filter_name == "all":
            return list(self._items)
        if filter_name.startswith("part-"):
            prefix = filter_name.split("-", 1)[1] + "-"
            return [item for item in self._items if item.code.startswith(prefix)]
        depth = int(filter_name.split("-", 1)[0])
        return [item for item in self._items if item.depth == depth]

    def stats(self) -> dict:
        by_part: dict[str, int] = {}
        by_depth: dict[int, int] = {}
        for item in self._items:
            part = item.segments[0] if item.segments else ""
            by_part[part] = by_part.get(part, 0) + 1
            by_depth[item.depth] = by_depth.get(item.depth, 0) + 1
        return {
            "total": len(self._items),
            "special": sum(1 for item in self._items if item.is_special),
            "by_part": dict(sorted(by_part.items())),
            "by_depth": dict(sorted(by_depth.items())),
        }

    def find_next(self, item: PhilosophyItem) -> Optional[PhilosophyItem]:
        """
        Successor of a transition item, or None.

        Only four-segment codes are transition nodes. Rules, first match wins:
            A-4-4-4 -> A+1
            A-B-4-4 -> A-(B+1)
            A-B-C-4 -> A-B-(C+1)
        """
        segments = item.segments
        if len(segments) != 4:
            return None
        try:
            a, b, c, d = (int(s) for s in segments)
        except ValueError:
            log.warning("index.non_numeric_code", code=item.code)
            return None

        if b == 4 and c == 4 and d == 4:
            next_code = f"{a + 1}"
        elif c == 4 and d == 4:
            next_code = f"{a}-{b + 1}"
        elif d == 4:
            next_code = f"{a}-{b}-{c + 1}"
        else:
            return None
        return self._by_code.get(next_code)
