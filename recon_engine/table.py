"""
Table — the immutable-per-version dataset passed between steps.

A Table is a passive value type: ordered, uniquely-named columns plus an
ordered sequence of rows.  Data is stored column-wise as tuples so that a
new version produced by a step can *share* every column it did not touch
with its predecessor (copy-on-write with structural sharing).

Cell values are one of ``str``, ``Decimal``, ``datetime.date`` or ``None``.
Numbers are always ``Decimal``, never ``float``, so currency comparisons
are free of binary rounding artefacts.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

Value = Union[str, Decimal, date, None]
Row = Dict[str, Value]


def coerce_value(raw: Any) -> Value:
    """Convert an ingested cell into one of the supported value types.

    ``int`` and ``float`` become ``Decimal`` (floats via their shortest
    ``repr`` so ``0.1`` stays ``Decimal("0.1")``); ``bool`` becomes its
    lowercase string form.
    """
    if raw is None or isinstance(raw, (str, Decimal, date)):
        return raw
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        if raw != raw or raw in (float("inf"), float("-inf")):
            raise TypeError(f"Non-finite number cannot be stored: {raw!r}")
        return Decimal(repr(raw))
    raise TypeError(f"Unsupported cell value type: {type(raw).__name__}")


class Table:
    """Immutable columnar table.

    Construct through ``from_records`` / ``from_columns``; derive new
    versions through the ``with_*`` / ``without_*`` helpers, each of which
    returns a new ``Table`` and leaves ``self`` untouched.
    """

    __slots__ = ("_columns", "_data", "_length")

    def __init__(
        self,
        columns: Sequence[str],
        data: Mapping[str, Tuple[Value, ...]],
    ) -> None:
        names = tuple(columns)
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate column names: {dupes}")
        if set(names) != set(data):
            raise ValueError("Column list and column data disagree")

        lengths = {len(data[n]) for n in names}
        if len(lengths) > 1:
            raise ValueError(f"Columns have differing lengths: {sorted(lengths)}")

        self._columns: Tuple[str, ...] = names
        self._data: Mapping[str, Tuple[Value, ...]] = MappingProxyType(
            {n: tuple(data[n]) for n in names}
        )
        self._length: int = lengths.pop() if lengths else 0

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def from_records(
        cls,
        columns: Sequence[str],
        rows: Iterable[Union[Mapping[str, Any], Sequence[Any]]],
    ) -> "Table":
        """Build a Table from ordered column names and ordered rows.

        Rows may be mappings (missing keys become ``None``) or positional
        sequences the same length as ``columns``.
        """
        names = list(columns)
        buckets: Dict[str, List[Value]] = {n: [] for n in names}
        for i, row in enumerate(rows):
            if isinstance(row, Mapping):
                for n in names:
                    buckets[n].append(coerce_value(row.get(n)))
            else:
                if len(row) != len(names):
                    raise ValueError(
                        f"Row {i} has {len(row)} values, expected {len(names)}"
                    )
                for n, v in zip(names, row):
                    buckets[n].append(coerce_value(v))
        return cls(names, {n: tuple(vs) for n, vs in buckets.items()})

    @classmethod
    def from_columns(cls, data: Mapping[str, Sequence[Any]]) -> "Table":
        """Build a Table from ``{column: values}`` in mapping order."""
        return cls(
            list(data),
            {n: tuple(coerce_value(v) for v in vs) for n, vs in data.items()},
        )

    @classmethod
    def empty(cls, columns: Sequence[str] = ()) -> "Table":
        return cls(columns, {n: () for n in columns})

    # ------------------------------------------------------------------ #
    # Read access
    # ------------------------------------------------------------------ #

    @property
    def columns(self) -> Tuple[str, ...]:
        return self._columns

    def __len__(self) -> int:
        return self._length

    @property
    def row_count(self) -> int:
        return self._length

    def has_column(self, name: str) -> bool:
        return name in self._data

    def column(self, name: str) -> Tuple[Value, ...]:
        """Return the values of ``name``; raises ``KeyError`` if absent."""
        return self._data[name]

    def row(self, index: int) -> Row:
        if not -self._length <= index < self._length:
            raise IndexError(f"Row index {index} out of range for {self._length} rows")
        return {n: self._data[n][index] for n in self._columns}

    def rows(self) -> Iterator[Row]:
        for i in range(self._length):
            yield {n: self._data[n][i] for n in self._columns}

    def to_records(self) -> List[Row]:
        return list(self.rows())

    def head(self, n: int = 5) -> "Table":
        return self.take(range(min(n, self._length)))

    def shares_column(self, other: "Table", name: str) -> bool:
        """True when both versions hold the *same* storage for ``name``."""
        return (
            name in self._data
            and name in other._data
            and self._data[name] is other._data[name]
        )

    # ------------------------------------------------------------------ #
    # Derivation (each returns a new Table)
    # ------------------------------------------------------------------ #

    def with_column(
        self,
        name: str,
        values: Sequence[Value],
        position: Optional[int] = None,
    ) -> "Table":
        """Add or replace ``name``.  New columns go last unless ``position``."""
        if len(values) != self._length:
            raise ValueError(
                f"Column {name!r} has {len(values)} values, table has {self._length} rows"
            )
        data = dict(self._data)
        data[name] = tuple(values)
        if name in self._data:
            columns = list(self._columns)
        else:
            columns = list(self._columns)
            columns.insert(len(columns) if position is None else position, name)
        return Table(columns, data)

    def without_columns(self, names: Iterable[str]) -> "Table":
        drop = set(names)
        columns = [n for n in self._columns if n not in drop]
        return Table(columns, {n: self._data[n] for n in columns})

    def renamed(self, old: str, new: str) -> "Table":
        columns = [new if n == old else n for n in self._columns]
        data = {(new if n == old else n): self._data[n] for n in self._columns}
        return Table(columns, data)

    def select(self, names: Sequence[str]) -> "Table":
        return Table(names, {n: self._data[n] for n in names})

    def take(self, indices: Iterable[int]) -> "Table":
        """Return the rows at ``indices`` (in the given order)."""
        idx = list(indices)
        return Table(
            self._columns,
            {n: tuple(self._data[n][i] for i in idx) for n in self._columns},
        )

    # ------------------------------------------------------------------ #
    # Equality
    # ------------------------------------------------------------------ #

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Table):
            return NotImplemented
        return (
            self._columns == other._columns
            and self._length == other._length
            and all(self._data[n] == other._data[n] for n in self._columns)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Table(columns={list(self._columns)!r}, rows={self._length})"
