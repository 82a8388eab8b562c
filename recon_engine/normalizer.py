"""
Normalization Layer.

Two stateless normalisers used by the step executor:

``LabelNormalizer``
    Turns raw column headers into a uniform, comparable form so that
    column resolution can match ``"Txn ID"`` against ``"txn_id"``.

``AmountNormalizer``
    Parses heterogeneous currency text into fixed-point ``Decimal``.

Amount transformations applied (in order):
1. Strip leading / trailing whitespace
2. Remove currency symbols and ISO currency codes
3. Parenthetical or trailing-minus negatives → leading '-'
4. Remove thousands separators according to the declared format
5. Quantize to the configured scale (half-up rounding)
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from recon_engine.logging_setup import get_logger

logger = get_logger("normalizer")

AMOUNT_FORMATS = ("us", "eu", "plain")


class LabelNormalizer:
    """Stateless label normaliser.  All methods are pure functions."""

    # Characters to remove from labels (keep letters, digits, spaces, hyphens)
    _PUNCT_RE = re.compile(r"[^a-z0-9\s\-&#]")

    # Underscores and dots behave like spaces in exported headers
    _SEP_RE = re.compile(r"[_.]+")

    _MULTI_SPACE_RE = re.compile(r"\s+")

    def normalize_label(self, raw: str) -> str:
        """Return the canonical-comparable form of a raw column header."""
        text = raw.strip().lower()
        text = text.replace("–", "-").replace("—", "-")
        text = self._SEP_RE.sub(" ", text)
        text = self._PUNCT_RE.sub("", text)
        text = self._MULTI_SPACE_RE.sub(" ", text).strip()

        logger.debug("normalize_label: %r → %r", raw, text)
        return text


class AmountNormalizer:
    """Parse currency text into ``Decimal`` quantized to ``scale`` places.

    Parameters
    ----------
    scale:
        Number of decimal places kept after parsing.
    """

    _CURRENCY_RE = re.compile(r"[$€£¥₹¢]")

    # ``USD 10`` / ``10 EUR``; a code glued to a hyphen (``TXN-1``) is not money
    _ISO_CODE_RE = re.compile(r"^[A-Z]{3}(?=[\s\d.])\s*|(?<=[\s\d.])\s*[A-Z]{3}$")

    # ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    _NUMBER_RE = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)$")

    def __init__(self, scale: int = 2) -> None:
        self._quantum = Decimal(1).scaleb(-scale)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def parse(self, raw: Any, fmt: str = "us") -> Optional[Decimal]:
        """Return the amount in ``raw`` or ``None`` for null / blank input.

        Raises
        ------
        ValueError
            If ``raw`` is non-empty and cannot be read as an amount.
        """
        if fmt not in AMOUNT_FORMATS:
            raise ValueError(f"Unknown amount format {fmt!r}; expected one of {AMOUNT_FORMATS}")

        if raw is None:
            return None

        if isinstance(raw, Decimal):
            return self._quantize(raw, raw)

        if isinstance(raw, bool) or isinstance(raw, date):
            raise ValueError(f"Cannot parse amount from {type(raw).__name__} value {raw!r}")

        if isinstance(raw, int):
            return self._quantize(Decimal(raw), raw)

        if isinstance(raw, float):
            return self._quantize(Decimal(repr(raw)), raw)

        if not isinstance(raw, str):
            raise ValueError(f"Unexpected value type: {type(raw).__name__}")

        text = raw.strip()
        if not text:
            return None

        negative = False

        # Currency markers may sit inside or outside the parentheses:
        # ``($10)``, ``$(10)``, ``USD (10)``, ``(USD 10)``.
        text = self._strip_currency(text)
        m = self._PAREN_NEG_RE.match(text)
        if m:
            negative = True
            text = self._strip_currency(m.group(1))

        if text.endswith("-"):
            negative = not negative
            text = text[:-1].strip()
        if text.startswith("-"):
            negative = not negative
            text = text[1:].strip()
        elif text.startswith("+"):
            text = text[1:].strip()

        text = self._strip_separators(text, fmt)

        if not self._NUMBER_RE.match(text):
            raise ValueError(f"Cannot parse amount from: {raw!r}")

        try:
            value = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"Cannot parse amount from: {raw!r}") from exc

        if negative:
            value = -value

        return self._quantize(value, raw)

    def normalize_value(
        self, raw: Any, fmt: str = "us"
    ) -> Tuple[Optional[Decimal], list[str]]:
        """Lenient variant of ``parse``.

        Returns
        -------
        tuple[Decimal | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            warnings.append("Value is empty")
            return None, warnings
        try:
            return self.parse(raw, fmt), warnings
        except ValueError as exc:
            warnings.append(str(exc))
            return None, warnings

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _strip_currency(self, text: str) -> str:
        text = self._CURRENCY_RE.sub("", text).strip()
        return self._ISO_CODE_RE.sub("", text).strip()

    @staticmethod
    def _strip_separators(text: str, fmt: str) -> str:
        if fmt == "plain":
            return text
        # Spaces and apostrophes are used as grouping characters in several
        # locales regardless of decimal mark.
        text = text.replace(" ", "").replace(" ", "").replace("'", "")
        if fmt == "us":
            return text.replace(",", "")
        return text.replace(".", "").replace(",", ".")

    def _quantize(self, value: Decimal, raw: Any) -> Decimal:
        if not value.is_finite():
            raise ValueError(f"Non-finite amount: {raw!r}")
        result = value.quantize(self._quantum, rounding=ROUND_HALF_UP)
        logger.debug("parse amount: %r → %s", raw, result)
        return result
