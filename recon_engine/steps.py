"""
Step definitions.

A closed set of transformation kinds.  Each kind is a frozen dataclass
whose fields are the kind's named configuration parameters; construction
validates the parameters so an invalid step can never reach the executor.

Every step implements ``apply(table, ctx) -> Table``.  ``apply`` is pure:
the same input Table and configuration always give an equal output Table.
Row-level loops walk the table in ``ctx.batches`` so the executor can stop
a long step between batches.

Use ``build_step`` to construct a step from a plain configuration mapping
such as ``{"kind": "rename-column", "from": "Amt", "to": "amount"}``.
"""

from __future__ import annotations

import operator
from dataclasses import MISSING, dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from recon_engine.errors import SchemaError, StepConfigError, ValueTypeError
from recon_engine.expressions import Expression, compile_expression
from recon_engine.fuzzy_matcher import FuzzyMatcher
from recon_engine.normalizer import AMOUNT_FORMATS, AmountNormalizer
from recon_engine.table import Table, Value

if TYPE_CHECKING:
    from recon_engine.executor import StepContext


FILTER_OPERATORS = ("eq", "ne", "gt", "lt", "ge", "le", "contains", "isEmpty", "notEmpty")

_ORDERING_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "gt": operator.gt,
    "lt": operator.lt,
    "ge": operator.ge,
    "le": operator.le,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _config_key(f: Any) -> str:
    return f.metadata.get("key", f.name)


def _text(value: Value) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _require_columns(table: Table, names: Sequence[str], kind: str) -> None:
    missing = [n for n in names if not table.has_column(n)]
    if missing:
        raise SchemaError(
            f"Column(s) {missing} not found; available: {list(table.columns)}",
            step_kind=kind,
        )


def _require_absent(table: Table, names: Sequence[str], kind: str) -> None:
    present = [n for n in names if table.has_column(n)]
    if present:
        raise SchemaError(f"Column(s) {present} already exist", step_kind=kind)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """Base class for every step kind."""

    kind: ClassVar[str] = ""

    def __post_init__(self) -> None:
        self.validate()

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def validate(self) -> None:
        """Reject malformed parameters with ``StepConfigError``."""

    def _fail(self, msg: str) -> StepConfigError:
        return StepConfigError(msg, step_kind=self.kind)

    def _name(self, attr: str) -> None:
        value = getattr(self, attr)
        if not isinstance(value, str) or not value.strip():
            raise self._fail(f"'{attr}' must be a non-empty string, got {value!r}")

    def _names(self, attr: str, minimum: int = 1) -> None:
        value = getattr(self, attr)
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise self._fail(f"'{attr}' must be a list of column names, got {value!r}")
        names = tuple(value)
        if len(names) < minimum:
            raise self._fail(f"'{attr}' needs at least {minimum} column name(s)")
        for n in names:
            if not isinstance(n, str) or not n.strip():
                raise self._fail(f"'{attr}' contains an invalid column name {n!r}")
        if len(set(names)) != len(names):
            raise self._fail(f"'{attr}' contains duplicate column names")
        object.__setattr__(self, attr, names)

    def _flag(self, attr: str) -> None:
        if not isinstance(getattr(self, attr), bool):
            raise self._fail(f"'{attr}' must be true or false")

    def to_config(self) -> Dict[str, Any]:
        """Return the plain-dict form accepted by ``build_step``."""
        config: Dict[str, Any] = {"kind": self.kind}
        for f in fields(self):
            if not f.init:
                continue
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                value = [list(v) if isinstance(v, tuple) else v for v in value]
            config[_config_key(f)] = value
        return config

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Step":
        params = {k: v for k, v in config.items() if k != "kind"}
        known = {_config_key(f): f.name for f in fields(cls) if f.init}

        unknown = sorted(set(params) - set(known))
        if unknown:
            raise StepConfigError(
                f"Unknown parameter(s) {unknown}; expected {sorted(known)}",
                step_kind=cls.kind,
            )

        missing = [
            key
            for key, name in known.items()
            if key not in params
            and cls.__dataclass_fields__[name].default is MISSING
            and cls.__dataclass_fields__[name].default_factory is MISSING
        ]
        if missing:
            raise StepConfigError(
                f"Missing required parameter(s) {missing}", step_kind=cls.kind
            )

        return cls(**{known[k]: v for k, v in params.items()})

    def describe(self) -> str:
        params = ", ".join(
            f"{k}={v!r}" for k, v in self.to_config().items() if k != "kind"
        )
        return f"{self.kind}({params})"

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# rename-column
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RenameColumn(Step):
    kind: ClassVar[str] = "rename-column"

    source: str = field(metadata={"key": "from"})
    target: str = field(metadata={"key": "to"})

    def validate(self) -> None:
        self._name("source")
        self._name("target")
        if self.source == self.target:
            raise self._fail("'from' and 'to' are the same column")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.source], self.kind)
        _require_absent(table, [self.target], self.kind)
        return table.renamed(self.source, self.target)


# ---------------------------------------------------------------------------
# filter-rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FilterRows(Step):
    kind: ClassVar[str] = "filter-rows"

    column: str
    operator: str
    value: Any = None
    amount_format: str = field(default="us", metadata={"key": "format"})
    case_sensitive: bool = False

    def validate(self) -> None:
        self._name("column")
        self._flag("case_sensitive")
        if self.operator not in FILTER_OPERATORS:
            raise self._fail(
                f"Unknown operator {self.operator!r}; expected one of {FILTER_OPERATORS}"
            )
        if self.amount_format not in AMOUNT_FORMATS:
            raise self._fail(f"Unknown format {self.amount_format!r}")
        if isinstance(self.value, float):
            object.__setattr__(self, "value", Decimal(repr(self.value)))
        if self.operator == "contains" and self.value is None:
            raise self._fail("'contains' needs a value")
        if self.operator in _ORDERING_OPS:
            if self._ordering_target(AmountNormalizer(scale=6)) is None:
                raise self._fail(
                    f"Operator {self.operator!r} needs a numeric or ISO date value, "
                    f"got {self.value!r}"
                )

    def _ordering_target(self, amounts: AmountNormalizer) -> Any:
        if isinstance(self.value, date):
            return self.value
        number, _ = amounts.normalize_value(self.value, self.amount_format)
        if number is not None:
            return number
        if isinstance(self.value, str):
            try:
                return date.fromisoformat(self.value.strip())
            except ValueError:
                return None
        return None

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.column], self.kind)
        values = table.column(self.column)

        if self.operator in _ORDERING_OPS:
            test = self._ordering_test(ctx)
        else:
            test = self._text_test(ctx)

        keep: List[int] = []
        dropped: List[int] = []
        for batch in ctx.batches(len(table)):
            for i in batch:
                verdict = test(values[i])
                if verdict is None:
                    dropped.append(i)
                elif verdict:
                    keep.append(i)

        if dropped:
            sample = ", ".join(str(i) for i in dropped[:10])
            ctx.diagnose(
                f"{len(dropped)} row(s) dropped: column {self.column!r} could not be "
                f"compared with {self.operator!r} (rows {sample}"
                f"{', ...' if len(dropped) > 10 else ''})"
            )
        ctx.diagnose(f"{len(keep)} of {len(table)} row(s) kept")
        return table.take(keep)

    def _ordering_test(self, ctx: "StepContext") -> Callable[[Value], Optional[bool]]:
        compare = _ORDERING_OPS[self.operator]
        target = self._ordering_target(ctx.amounts)

        def test(cell: Value) -> Optional[bool]:
            if isinstance(target, date):
                if isinstance(cell, date):
                    return compare(cell, target)
                if isinstance(cell, str):
                    try:
                        return compare(date.fromisoformat(cell.strip()), target)
                    except ValueError:
                        return None
                return None
            if isinstance(cell, date):
                return None
            number, _ = ctx.amounts.normalize_value(cell, self.amount_format)
            if number is None:
                return None
            return compare(number, target)

        return test

    def _text_test(self, ctx: "StepContext") -> Callable[[Value], Optional[bool]]:
        fold = (lambda s: s) if self.case_sensitive else str.casefold
        wanted = _text(self.value).strip()
        wanted_number, _ = ctx.amounts.normalize_value(self.value, self.amount_format)

        def is_empty(cell: Value) -> bool:
            return cell is None or (isinstance(cell, str) and not cell.strip())

        def equals(cell: Value) -> bool:
            if is_empty(cell):
                return not wanted
            if isinstance(cell, Decimal):
                return wanted_number is not None and cell == wanted_number
            return fold(_text(cell).strip()) == fold(wanted)

        if self.operator == "isEmpty":
            return is_empty
        if self.operator == "notEmpty":
            return lambda cell: not is_empty(cell)
        if self.operator == "eq":
            return equals
        if self.operator == "ne":
            return lambda cell: not equals(cell)
        return lambda cell: cell is not None and fold(wanted) in fold(_text(cell))


# ---------------------------------------------------------------------------
# normalize-amount
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizeAmount(Step):
    kind: ClassVar[str] = "normalize-amount"

    column: str
    format: str = "us"

    def validate(self) -> None:
        self._name("column")
        if self.format not in AMOUNT_FORMATS:
            raise self._fail(
                f"Unknown format {self.format!r}; expected one of {AMOUNT_FORMATS}"
            )

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.column], self.kind)
        values = table.column(self.column)
        out: List[Value] = []
        blanks = 0
        for batch in ctx.batches(len(table)):
            for i in batch:
                try:
                    parsed = ctx.amounts.parse(values[i], self.format)
                except ValueError as exc:
                    raise ValueTypeError(
                        f"Row {i}, column {self.column!r}: {exc}", step_kind=self.kind
                    ) from exc
                if parsed is None:
                    blanks += 1
                out.append(parsed)
        if blanks:
            ctx.diagnose(f"{blanks} blank value(s) in {self.column!r} left as null")
        return table.with_column(self.column, out)


# ---------------------------------------------------------------------------
# derive-column
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeriveColumn(Step):
    kind: ClassVar[str] = "derive-column"

    name: str
    expression: str
    overwrite: bool = False
    compiled: Expression = field(init=False, repr=False, compare=False)

    def validate(self) -> None:
        self._name("name")
        self._flag("overwrite")
        try:
            compiled = compile_expression(self.expression)
        except StepConfigError as exc:
            raise self._fail(exc.cause) from exc
        object.__setattr__(self, "compiled", compiled)

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        referenced = sorted(self.compiled.columns)
        missing = [c for c in referenced if not table.has_column(c)]
        if missing:
            raise StepConfigError(
                f"Expression {self.expression!r} references missing column(s) {missing}",
                step_kind=self.kind,
            )
        if not self.overwrite:
            _require_absent(table, [self.name], self.kind)

        sources = {c: table.column(c) for c in referenced}
        out: List[Value] = []
        div_zero: List[int] = []
        for batch in ctx.batches(len(table)):
            for i in batch:
                row = {c: vals[i] for c, vals in sources.items()}
                try:
                    out.append(self.compiled.evaluate(row))
                except ZeroDivisionError:
                    div_zero.append(i)
                    out.append(None)
                except ValueTypeError as exc:
                    raise ValueTypeError(
                        f"Row {i}: {exc.cause}", step_kind=self.kind
                    ) from exc

        if div_zero:
            ctx.diagnose(
                f"{len(div_zero)} row(s) divided by zero; {self.name!r} left as null"
            )
        return table.with_column(self.name, out)


# ---------------------------------------------------------------------------
# split-column / merge-columns
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SplitColumn(Step):
    kind: ClassVar[str] = "split-column"

    column: str
    separator: str
    into: Tuple[str, ...]
    keep_source: bool = True
    strip: bool = True

    def validate(self) -> None:
        self._name("column")
        self._names("into")
        self._flag("keep_source")
        self._flag("strip")
        if not isinstance(self.separator, str) or self.separator == "":
            raise self._fail("'separator' must be a non-empty string")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.column], self.kind)
        reusable = set() if self.keep_source else {self.column}
        _require_absent(table, [n for n in self.into if n not in reusable], self.kind)

        values = table.column(self.column)
        parts: List[List[Value]] = [[] for _ in self.into]
        short = 0
        for batch in ctx.batches(len(table)):
            for i in batch:
                cell = values[i]
                if cell is None:
                    pieces: List[str] = []
                else:
                    pieces = _text(cell).split(self.separator, len(self.into) - 1)
                    if len(pieces) < len(self.into):
                        short += 1
                for j in range(len(self.into)):
                    if j < len(pieces):
                        piece = pieces[j].strip() if self.strip else pieces[j]
                        parts[j].append(piece)
                    else:
                        parts[j].append(None)

        if short:
            ctx.diagnose(
                f"{short} value(s) in {self.column!r} had fewer than "
                f"{len(self.into)} parts; missing parts left as null"
            )

        at = table.columns.index(self.column)
        head = list(table.columns[:at + 1] if self.keep_source else table.columns[:at])
        columns = head + list(self.into) + list(table.columns[at + 1:])
        data = {c: table.column(c) for c in columns if table.has_column(c)}
        data.update(zip(self.into, parts))
        return Table(columns, data)


@dataclass(frozen=True)
class MergeColumns(Step):
    kind: ClassVar[str] = "merge-columns"

    columns: Tuple[str, ...]
    into: str
    separator: str = " "
    drop_sources: bool = False

    def validate(self) -> None:
        self._names("columns")
        self._name("into")
        self._flag("drop_sources")
        if not isinstance(self.separator, str):
            raise self._fail("'separator' must be a string")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, self.columns, self.kind)
        if self.into not in self.columns:
            _require_absent(table, [self.into], self.kind)

        sources = [table.column(c) for c in self.columns]
        out: List[Value] = []
        for batch in ctx.batches(len(table)):
            for i in batch:
                pieces = [_text(col[i]) for col in sources if col[i] is not None]
                out.append(self.separator.join(pieces) if pieces else None)

        if table.has_column(self.into):
            columns = list(table.columns)
        else:
            at = table.columns.index(self.columns[0])
            columns = list(table.columns[:at]) + [self.into] + list(table.columns[at:])
        if self.drop_sources:
            columns = [c for c in columns if c == self.into or c not in self.columns]
        data = {c: table.column(c) for c in columns if c != self.into}
        data[self.into] = out
        return Table(columns, data)


# ---------------------------------------------------------------------------
# select-columns / sort-rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectColumns(Step):
    kind: ClassVar[str] = "select-columns"

    columns: Tuple[str, ...]

    def validate(self) -> None:
        self._names("columns")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, self.columns, self.kind)
        return table.select(self.columns)


_TYPE_RANK = {Decimal: 0, date: 1, datetime: 1, str: 2}


@dataclass(frozen=True)
class SortRows(Step):
    kind: ClassVar[str] = "sort-rows"

    column: str
    descending: bool = False

    def validate(self) -> None:
        self._name("column")
        self._flag("descending")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.column], self.kind)
        values = table.column(self.column)
        present = [i for i in range(len(table)) if values[i] is not None]
        nulls = [i for i in range(len(table)) if values[i] is None]
        ctx.check_cancelled()
        # Nulls always sort last; sorted() is stable in both directions.
        ordered = sorted(
            present,
            key=lambda i: (_TYPE_RANK[type(values[i])], values[i]),
            reverse=self.descending,
        )
        return table.take(ordered + nulls)


# ---------------------------------------------------------------------------
# parse-date
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParseDate(Step):
    kind: ClassVar[str] = "parse-date"

    column: str
    formats: Tuple[str, ...] = field(default=("%Y-%m-%d",), metadata={"key": "format"})

    def validate(self) -> None:
        self._name("column")
        if isinstance(self.formats, str):
            object.__setattr__(self, "formats", (self.formats,))
        self._names("formats")

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        _require_columns(table, [self.column], self.kind)
        values = table.column(self.column)
        out: List[Value] = []
        for batch in ctx.batches(len(table)):
            for i in batch:
                out.append(self._parse(values[i], i))
        return table.with_column(self.column, out)

    def _parse(self, cell: Value, row: int) -> Value:
        if cell is None or isinstance(cell, date):
            return cell.date() if isinstance(cell, datetime) else cell
        text = _text(cell).strip()
        if not text:
            return None
        for fmt in self.formats:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise ValueTypeError(
            f"Row {row}, column {self.column!r}: {text!r} matches none of {list(self.formats)}",
            step_kind=self.kind,
        )


# ---------------------------------------------------------------------------
# resolve-columns
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolveColumns(Step):
    """Rename whichever header each canonical column goes by in this file.

    Resolution order per target: the canonical name itself, an alias
    (normalised comparison), the synonym dictionary, then fuzzy matching.
    """

    kind: ClassVar[str] = "resolve-columns"

    targets: Tuple[Tuple[str, Tuple[str, ...]], ...]
    required: bool = True

    def validate(self) -> None:
        self._flag("required")
        raw = self.targets
        if isinstance(raw, Mapping):
            raw = tuple(raw.items())
        if not isinstance(raw, (list, tuple)) or not raw:
            raise self._fail("'targets' must map canonical names to alias lists")
        normalised: List[Tuple[str, Tuple[str, ...]]] = []
        for item in raw:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise self._fail(f"Invalid target entry {item!r}")
            canonical, aliases = item
            if not isinstance(canonical, str) or not canonical.strip():
                raise self._fail(f"Invalid canonical name {canonical!r}")
            if isinstance(aliases, str) or not isinstance(aliases, (list, tuple)):
                raise self._fail(f"Aliases for {canonical!r} must be a list")
            if not all(isinstance(a, str) and a.strip() for a in aliases):
                raise self._fail(f"Aliases for {canonical!r} must be non-empty strings")
            normalised.append((canonical, tuple(aliases)))
        object.__setattr__(self, "targets", tuple(normalised))

    def to_config(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "targets": {c: list(a) for c, a in self.targets},
            "required": self.required,
        }

    def apply(self, table: Table, ctx: "StepContext") -> Table:
        wanted = {canonical for canonical, _ in self.targets}
        claimed = {c for c in table.columns if c in wanted}
        renames: Dict[str, str] = {}

        for canonical, aliases in self.targets:
            if table.has_column(canonical):
                continue
            available = [c for c in table.columns if c not in claimed]
            source = self._find(available, canonical, aliases, ctx)
            if source is None:
                if self.required:
                    raise SchemaError(
                        f"No column found for {canonical!r} (aliases {list(aliases)}); "
                        f"available: {list(table.columns)}",
                        step_kind=self.kind,
                    )
                ctx.diagnose(f"No column found for {canonical!r}; skipped")
                continue
            claimed.add(source)
            renames[source] = canonical
            ctx.diagnose(f"Resolved {source!r} → {canonical!r}")

        if not renames:
            return table
        columns = [renames.get(c, c) for c in table.columns]
        return Table(columns, {renames.get(c, c): table.column(c) for c in table.columns})

    @staticmethod
    def _find(
        available: Sequence[str],
        canonical: str,
        aliases: Sequence[str],
        ctx: "StepContext",
    ) -> Optional[str]:
        if not available:
            return None
        norm = ctx.labels.normalize_label
        by_label: Dict[str, str] = {}
        for header in available:
            by_label.setdefault(norm(header), header)

        for name in (canonical, *aliases):
            header = by_label.get(norm(name))
            if header is not None:
                return header

        for header in available:
            if ctx.synonyms.lookup(header) == canonical:
                return header

        matcher = FuzzyMatcher(ctx.matching, available, normalizer=ctx.labels)
        best = None
        for name in (canonical, *aliases):
            candidate = matcher.match(name)
            if candidate is not None and (best is None or candidate.score > best.score):
                best = candidate
        if best is None:
            return None
        if best.is_ambiguous:
            ctx.diagnose(
                f"Fuzzy match for {canonical!r} → {best.column!r} is ambiguous "
                f"(score={best.score:.1f})"
            )
        return best.column


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

STEP_KINDS: Dict[str, Type[Step]] = {
    cls.kind: cls
    for cls in (
        RenameColumn,
        FilterRows,
        NormalizeAmount,
        DeriveColumn,
        SplitColumn,
        MergeColumns,
        SelectColumns,
        SortRows,
        ParseDate,
        ResolveColumns,
    )
}


def build_step(config: Mapping[str, Any]) -> Step:
    """Construct a step from ``{"kind": ..., <parameters>}``.

    Raises
    ------
    StepConfigError
        Unknown kind, unknown or missing parameters, or invalid values.
    """
    if not isinstance(config, Mapping):
        raise StepConfigError(f"Step configuration must be a mapping, got {config!r}")
    kind = config.get("kind")
    cls = STEP_KINDS.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise StepConfigError(
            f"Unknown step kind {kind!r}; expected one of {sorted(STEP_KINDS)}"
        )
    return cls.from_config(config)
