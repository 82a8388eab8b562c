"""
Discrepancy Classifier.

Diffs the compare fields of every matched pair and labels each difference
with the first rule (in declared order) whose predicate accepts it.  A
difference no rule accepts is labelled ``unclassified_label``.

``delta`` is always ``right - left``: a settlement amount lower than the
ledger amount gives a negative delta.

Rules are usually declared as data::

    {"field": "amount", "label": "Processing Fee Error",
     "when": {"delta_lt": 0, "abs_delta_le": "10.00"}}

``field`` may be ``"*"`` to apply to every compare field.  Predicates are
``Condition`` objects, which never raise on a well-formed pair, so
classification is total.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from recon_engine.config import ClassificationConfig
from recon_engine.errors import RuleConfigError, SchemaError
from recon_engine.logging_setup import get_logger
from recon_engine.schema import Discrepancy, MatchedPair, MatchResult, Presence
from recon_engine.table import Value

logger = get_logger("classifier")

ANY_FIELD = "*"

FEE_ERROR = "Processing Fee Error"
RATE_DISCREPANCY = "Rate Discrepancy"


@dataclass(frozen=True)
class Difference:
    """What a rule predicate sees for one field of one matched pair."""

    field: str
    left: Value
    right: Value
    delta: Optional[Decimal]
    presence: str


_BOUNDS = ("delta_lt", "delta_le", "delta_gt", "delta_ge",
           "abs_delta_lt", "abs_delta_le", "abs_delta_gt", "abs_delta_ge")
_PRESENCES = (Presence.BOTH, Presence.LEFT_ONLY, Presence.RIGHT_ONLY)


def _decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise RuleConfigError(f"{key!r} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise RuleConfigError(f"{key!r} must be finite, got {value!r}")
    return result


@dataclass(frozen=True)
class Condition:
    """Declarative predicate over a ``Difference``.

    Every bound that is set must hold.  Bounds on the delta only hold when
    a numeric delta exists, so a bound never matches a text difference.
    """

    presence: Optional[str] = Presence.BOTH
    delta_lt: Optional[Decimal] = None
    delta_le: Optional[Decimal] = None
    delta_gt: Optional[Decimal] = None
    delta_ge: Optional[Decimal] = None
    abs_delta_lt: Optional[Decimal] = None
    abs_delta_le: Optional[Decimal] = None
    abs_delta_gt: Optional[Decimal] = None
    abs_delta_ge: Optional[Decimal] = None
    nonzero: bool = False

    @classmethod
    def from_dict(cls, when: Mapping[str, Any]) -> "Condition":
        unknown = sorted(set(when) - set(_BOUNDS) - {"presence", "nonzero"})
        if unknown:
            raise RuleConfigError(f"Unknown condition key(s) {unknown}")
        kwargs: Dict[str, Any] = {}
        for key, value in when.items():
            if key == "presence":
                if value is not None and value not in _PRESENCES:
                    raise RuleConfigError(
                        f"'presence' must be one of {_PRESENCES} or null, got {value!r}"
                    )
                kwargs[key] = value
            elif key == "nonzero":
                kwargs[key] = bool(value)
            else:
                kwargs[key] = _decimal(value, key)
        return cls(**kwargs)

    def _numeric(self) -> bool:
        return self.nonzero or any(getattr(self, b) is not None for b in _BOUNDS)

    def __call__(self, diff: Difference) -> bool:
        if self.presence is not None and diff.presence != self.presence:
            return False
        if not self._numeric():
            return True
        d = diff.delta
        if d is None:
            return False
        a = abs(d)
        checks = (
            (self.delta_lt, lambda b: d < b),
            (self.delta_le, lambda b: d <= b),
            (self.delta_gt, lambda b: d > b),
            (self.delta_ge, lambda b: d >= b),
            (self.abs_delta_lt, lambda b: a < b),
            (self.abs_delta_le, lambda b: a <= b),
            (self.abs_delta_gt, lambda b: a > b),
            (self.abs_delta_ge, lambda b: a >= b),
        )
        if self.nonzero and d == 0:
            return False
        return all(test(bound) for bound, test in checks if bound is not None)


Predicate = Callable[[Difference], bool]


@dataclass(frozen=True)
class ClassificationRule:
    field: str
    label: str
    predicate: Predicate

    @classmethod
    def from_dict(cls, spec: Mapping[str, Any]) -> "ClassificationRule":
        unknown = sorted(set(spec) - {"field", "label", "when"})
        if unknown:
            raise RuleConfigError(f"Unknown rule key(s) {unknown}")
        field_name = spec.get("field", ANY_FIELD)
        label = spec.get("label")
        if not isinstance(field_name, str) or not field_name:
            raise RuleConfigError(f"Rule 'field' must be a non-empty string, got {field_name!r}")
        if not isinstance(label, str) or not label.strip():
            raise RuleConfigError(f"Rule 'label' must be a non-empty string, got {label!r}")
        return cls(field=field_name, label=label, predicate=Condition.from_dict(spec.get("when", {})))

    def applies_to(self, field_name: str) -> bool:
        return self.field == ANY_FIELD or self.field == field_name


RuleLike = Union[ClassificationRule, Mapping[str, Any]]


def default_rules(fee_threshold: Decimal) -> List[ClassificationRule]:
    """Shortfall within the fee threshold is a fee error; anything larger is a rate issue."""
    return [
        ClassificationRule(
            field=ANY_FIELD,
            label=FEE_ERROR,
            predicate=Condition(delta_lt=Decimal("0"), abs_delta_le=fee_threshold),
        ),
        ClassificationRule(
            field=ANY_FIELD,
            label=RATE_DISCREPANCY,
            predicate=Condition(nonzero=True, abs_delta_gt=fee_threshold),
        ),
    ]


class DiscrepancyClassifier:
    """Ordered, first-match-wins rule evaluation.

    Parameters
    ----------
    config:
        Compare fields, fee threshold, and the fallback label.
    rules:
        Ordered rules (objects or dicts); ``default_rules`` when omitted.
    """

    def __init__(
        self,
        config: Optional[ClassificationConfig] = None,
        rules: Optional[Iterable[RuleLike]] = None,
    ) -> None:
        self._config = config or ClassificationConfig()
        if rules is None:
            self._rules = default_rules(self._config.fee_threshold)
        else:
            self._rules = [
                r if isinstance(r, ClassificationRule) else ClassificationRule.from_dict(r)
                for r in rules
            ]

    @property
    def rules(self) -> List[ClassificationRule]:
        return list(self._rules)

    def label_for(self, diff: Difference) -> str:
        for rule in self._rules:
            if rule.applies_to(diff.field) and rule.predicate(diff):
                return rule.label
        return self._config.unclassified_label

    def classify(
        self,
        result: MatchResult,
        fields: Optional[Sequence[str]] = None,
    ) -> List[Discrepancy]:
        """Return one ``Discrepancy`` per differing field per matched pair.

        Raises
        ------
        SchemaError
            A compare field is absent from either table.  Raised before any
            pair is examined.
        """
        compare = tuple(fields if fields is not None else self._config.compare_fields)
        for side, table in (("left", result.left), ("right", result.right)):
            missing = [f for f in compare if not table.has_column(f)]
            if missing:
                raise SchemaError(f"Compare field(s) {missing} missing from {side} table")

        left_cols = {f: result.left.column(f) for f in compare}
        right_cols = {f: result.right.column(f) for f in compare}

        out: List[Discrepancy] = []
        for pair in result.matched:
            for name in compare:
                diff = self._difference(
                    name, left_cols[name][pair.left_index], right_cols[name][pair.right_index]
                )
                if diff is None:
                    continue
                out.append(self._discrepancy(pair, diff))

        counts = Counter(d.classification for d in out)
        logger.info(
            "Classified %d discrepanc%s across %d matched pair(s): %s",
            len(out),
            "y" if len(out) == 1 else "ies",
            len(result.matched),
            dict(counts),
        )
        return out

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _discrepancy(self, pair: MatchedPair, diff: Difference) -> Discrepancy:
        return Discrepancy(
            pair=pair,
            field=diff.field,
            left_value=diff.left,
            right_value=diff.right,
            delta=diff.delta,
            presence=diff.presence,
            classification=self.label_for(diff),
        )

    @staticmethod
    def _difference(name: str, left: Value, right: Value) -> Optional[Difference]:
        """Describe how ``left`` and ``right`` differ, or ``None`` if they agree."""
        left_blank = left is None or (isinstance(left, str) and not left.strip())
        right_blank = right is None or (isinstance(right, str) and not right.strip())
        if left_blank and right_blank:
            return None
        if left_blank:
            return Difference(name, left, right, None, Presence.RIGHT_ONLY)
        if right_blank:
            return Difference(name, left, right, None, Presence.LEFT_ONLY)

        if isinstance(left, Decimal) and isinstance(right, Decimal):
            delta = right - left
            if delta == 0:
                return None
            return Difference(name, left, right, delta, Presence.BOTH)

        if type(left) is type(right) and (
            left == right
            or (isinstance(left, str) and left.strip() == right.strip())
        ):
            return None
        return Difference(name, left, right, None, Presence.BOTH)
