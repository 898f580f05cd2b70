from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, NamedTuple, Tuple, Union

logger = logging.getLogger(__name__)


class IceCreamError(Exception):
    """Base error for the ice cream query engine."""

class SchemaError(IceCreamError):
    pass

class MalformedRowError(IceCreamError):
    pass


# One row of dbo.MakerFlavor. Still a plain 3-tuple, so it compares and
# hashes as (maker, flavor, base_flavor).
class Row(NamedTuple):
    maker: str
    flavor: str
    base_flavor: str


RowSet = FrozenSet[Row]
HEADER = ("Maker", "Flavor", "BaseFlavor")

# the 12 rows inserted into dbo.MakerFlavor
SAMPLE_ROWS: Tuple[Row, ...] = (
    Row("Haagen-Dazs", "Cherry Vanilla", "Vanilla"),
    Row("Cold Stone Creamery", "Coffee", "Misc"),
    Row("Cold Stone Creamery", "Mint", "Misc"),
    Row("Baskin-Robbins", "Vanilla", "Vanilla"),
    Row("Graeters", "Cinnamon", "Cinnamon"),
    Row("Haagen-Dazs", "Chocolate", "Chocolate"),
    Row("Marble Slab Creamery", "Cinnamon", "Cinnamon"),
    Row("Cold Stone Creamery", "French Vanilla", "Vanilla"),
    Row("Haagen-Dazs", "Pistachio", "Misc"),
    Row("Marble Slab Creamery", "Vanilla", "Vanilla"),
    Row("Haagen-Dazs", "Chocolate Sea Salt", "Chocolate"),
    Row("Baskin-Robbins", "Chocolate Almond", "Chocolate"),
)

def _assert(cond: bool, msg: str, err=IceCreamError):
    if not cond:
        raise err(msg)

def _to_row(row: Iterable[str]) -> Row:
    _assert(not isinstance(row, str), f"Row {row!r} must be a (Maker, Flavor, BaseFlavor) triple, not a string", SchemaError)
    values = tuple(row)
    _assert(len(values) == 3, f"Row {values!r} has {len(values)} values, expected 3 (Maker, Flavor, BaseFlavor)", SchemaError)
    _assert(all(isinstance(v, str) for v in values), f"Row {values!r} must hold strings only", SchemaError)
    return Row(*values)

def _as_keys(keys: Union[str, Iterable[str]]) -> FrozenSet[str]:
    # a bare string is one key, not an iterable of characters
    if isinstance(keys, str):
        return frozenset((keys,))
    return frozenset(keys)

########################
# Index Builder
########################

@dataclass(frozen=True)
class Indexes:
    """Read-only maps simulating the indexes on dbo.MakerFlavor.

    primary         PK_MakerFlavor: (Maker, Flavor) -> BaseFlavor
    by_flavor       IX_MakerFlavor_Flavor, covering: Flavor -> ((Maker, BaseFlavor), ...)
    by_base_flavor  IX_MakerFlavor_BaseFlavor: BaseFlavor -> ((Maker, Flavor), ...)
    """
    primary: Mapping[Tuple[str, str], str]
    by_flavor: Mapping[str, Tuple[Tuple[str, str], ...]]
    by_base_flavor: Mapping[str, Tuple[Tuple[str, str], ...]]


def _group(rows: Iterable[Row], key_of, value_of) -> Mapping[str, Tuple[Tuple[str, str], ...]]:
    grouped: Dict[str, List[Tuple[str, str]]] = {}
    for row in rows:
        grouped.setdefault(key_of(row), []).append(value_of(row))
    return MappingProxyType({k: tuple(v) for k, v in grouped.items()})

# Duplicate (Maker, Flavor) keys: the last row seen wins in the primary index.
# The grouped indexes keep every row.
def build_indexes(rows: Iterable[Row]) -> Indexes:
    rows = tuple(rows)
    primary: Dict[Tuple[str, str], str] = {}
    for row in rows:
        primary[(row.maker, row.flavor)] = row.base_flavor

    by_flavor = _group(rows, lambda r: r.flavor, lambda r: (r.maker, r.base_flavor))
    by_base_flavor = _group(rows, lambda r: r.base_flavor, lambda r: (r.maker, r.flavor))

    logger.debug(
        "Built indexes over %d rows: %d primary keys, %d flavors, %d base flavors",
        len(rows), len(primary), len(by_flavor), len(by_base_flavor),
    )
    return Indexes(MappingProxyType(primary), by_flavor, by_base_flavor)

########################
# Set Algebra
########################

def union_sets(left: Iterable[Row], right: Iterable[Row]) -> RowSet:
    return frozenset(left) | frozenset(right)

def intersect_sets(left: Iterable[Row], right: Iterable[Row]) -> RowSet:
    return frozenset(left) & frozenset(right)

# match on the last space-separated word of the maker name,
# i.e. Maker LIKE '% <suffix>'. Trailing spaces leave no empty last word.
def maker_like_match(maker: str, suffix: str) -> bool:
    return maker.rstrip(" ").split(" ")[-1] == suffix

#############################
# Query plan
#############################

@dataclass(frozen=True)
class QueryPlan:
    """Every named stage of the rewritten query.

    result = outer ∩ (maker_like ⋃ flavor_union)
    """
    outer: RowSet
    maker_like: RowSet
    flavor_union: RowSet
    inner: RowSet
    result: RowSet

#############################
# Engine
#############################

class IceCream:
    """Query engine over a snapshot of Maker/Flavor/BaseFlavor rows.

    The rows and the indexes derived from them are built once in the
    constructor and never change afterwards.
    """

    def __init__(self, rows: Iterable[Iterable[str]]):
        self._rows: Tuple[Row, ...] = tuple(_to_row(r) for r in rows)
        self._indexes = build_indexes(self._rows)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "IceCream":
        return cls(load_rows(path))

    @property
    def indexes(self) -> Indexes:
        return self._indexes

    def get_rows(self) -> Tuple[Row, ...]:
        return self._rows

    # index seek on IX_MakerFlavor_Flavor: one lookup per requested flavor,
    # unknown flavors contribute nothing
    def get_flavor_set(self, flavors: Union[str, Iterable[str]]) -> RowSet:
        keys = _as_keys(flavors)
        by_flavor = self._indexes.by_flavor
        result = frozenset(
            Row(maker, flavor, base_flavor)
            for flavor in keys
            for maker, base_flavor in by_flavor.get(flavor, ())
        )
        logger.debug("Flavor seek over %d flavors -> %d rows", len(keys), len(result))
        return result

    # '% Creamery' is not a SARG, so this scans every key of the primary index
    def get_maker_like_set(self, suffix: str) -> RowSet:
        matched: Dict[str, bool] = {}
        rows = set()
        for (maker, flavor), base_flavor in self._indexes.primary.items():
            if maker not in matched:
                matched[maker] = maker_like_match(maker, suffix)
            if matched[maker]:
                rows.add(Row(maker, flavor, base_flavor))
        logger.debug(
            "Maker scan %r over %d makers -> %d rows",
            suffix, len(matched), len(rows),
        )
        return frozenset(rows)

    def get_base_flavor_set(self, base_flavors: Union[str, Iterable[str]]) -> RowSet:
        """Rows whose BaseFlavor is one of ``base_flavors``.

        Deprecated. Restricting on the 'one' side of Flavor -> BaseFlavor
        returns more rows than the query needs (for 'Vanilla': 4 rows
        against 2 from ``get_flavor_set``), which the intersection later
        discards. Kept for comparison only; neither query strategy uses it.
        """
        warnings.warn(
            "get_base_flavor_set is inefficient for this query, use get_flavor_set",
            DeprecationWarning,
            stacklevel=2,
        )
        by_base_flavor = self._indexes.by_base_flavor
        return frozenset(
            Row(maker, flavor, base_flavor)
            for base_flavor in _as_keys(base_flavors)
            for maker, flavor in by_base_flavor.get(base_flavor, ())
        )

    def union_sets(self, left: Iterable[Row], right: Iterable[Row]) -> RowSet:
        return union_sets(left, right)

    def intersect_sets(self, left: Iterable[Row], right: Iterable[Row]) -> RowSet:
        return intersect_sets(left, right)

    def query_result(
        self,
        intersect_flavors: Union[str, Iterable[str]],
        union_maker_suffix: str,
        union_flavors: Union[str, Iterable[str]],
    ) -> RowSet:
        """(Maker LIKE '% <suffix>' OR Flavor IN union_flavors) AND Flavor IN intersect_flavors"""
        return intersect_sets(
            self.get_flavor_set(intersect_flavors),
            union_sets(
                self.get_maker_like_set(union_maker_suffix),
                self.get_flavor_set(union_flavors),
            ),
        )

    def query_result_stepwise(
        self,
        intersect_flavors: Union[str, Iterable[str]],
        union_maker_suffix: str,
        union_flavors: Union[str, Iterable[str]],
    ) -> QueryPlan:
        """Same query as ``query_result``, keeping each step of the execution plan."""
        outer = self.get_flavor_set(intersect_flavors)
        maker_like = self.get_maker_like_set(union_maker_suffix)
        flavor_union = self.get_flavor_set(union_flavors)
        inner = union_sets(maker_like, flavor_union)
        result = intersect_sets(outer, inner)
        logger.debug(
            "Plan: outer=%d maker_like=%d flavor_union=%d inner=%d result=%d",
            len(outer), len(maker_like), len(flavor_union), len(inner), len(result),
        )
        return QueryPlan(outer, maker_like, flavor_union, inner, result)

#############################
# Loading rows
#############################

def split_csv_like(line: str) -> List[str]:
    """Split a line on commas; a double-quoted field may contain commas."""
    out: List[str] = []
    cur: List[str] = []
    quoted = False
    i = 0
    while i < len(line):
        ch = line[i]
        if quoted:
            if ch == '"' and line[i+1:i+2] == '"':
                cur.append('"'); i += 2; continue
            if ch == '"':
                quoted = False; i += 1; continue
            cur.append(ch); i += 1; continue
        if ch == '"':
            quoted = True; i += 1; continue
        if ch == ",":
            out.append("".join(cur)); cur = []; i += 1; continue
        cur.append(ch); i += 1
    _assert(not quoted, f"Unclosed quote in line {line!r}", MalformedRowError)
    out.append("".join(cur))
    return out

def parse_rows(text: str) -> List[Row]:
    """Parse a header line followed by ``Maker,Flavor,BaseFlavor`` lines."""
    lines = [(n, line) for n, line in enumerate(text.splitlines(), start=1) if line.strip()]
    _assert(bool(lines), "Missing header line (Maker,Flavor,BaseFlavor)", MalformedRowError)

    rows: List[Row] = []
    for n, line in lines[1:]:
        parts = split_csv_like(line)
        if len(parts) != 3:
            raise MalformedRowError(f"Line {n}: {line!r} has {len(parts)} fields, expected 3")
        rows.append(Row(*parts))
    return rows

# OSError from the file system is left to the caller
def load_rows(path: Union[str, Path]) -> List[Row]:
    text = Path(path).read_text(encoding="utf-8")
    rows = parse_rows(text)
    logger.info("Loaded %d rows from %s", len(rows), path)
    return rows

#############################
# Rendering results
#############################

def sorted_rows(rows: Iterable[Row]) -> List[Row]:
    return sorted(rows)

def _quote(value: str) -> str:
    if "," in value or '"' in value:
        return '"' + value.replace('"', '""') + '"'
    return value

def to_csv(rows: Iterable[Row], delimiter: str = ",") -> str:
    out = [delimiter.join(HEADER)]
    for r in sorted_rows(rows):
        out.append(delimiter.join(_quote(v) for v in r))
    return "\n".join(out)

def pretty(rows: Iterable[Row], max_width: int = 24) -> str:
    data = [list(HEADER)] + [list(r) for r in sorted_rows(rows)]
    widths = [0] * len(HEADER)
    for row in data:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    widths = [min(w, max_width) for w in widths]

    def fmt(row):
        cells = []
        for i, cell in enumerate(row):
            if len(cell) > widths[i]:
                cell = cell[: max(0, widths[i] - 1)] + "…"
            cells.append(cell.ljust(widths[i]))
        return " | ".join(cells)

    lines = [fmt(data[0]), "-+-".join("-" * w for w in widths)]
    lines.extend(fmt(row) for row in data[1:])
    return "\n".join(lines)

def as_records(rows: Iterable[Row]) -> List[Dict[str, str]]:
    return [dict(zip(HEADER, r)) for r in sorted_rows(rows)]
