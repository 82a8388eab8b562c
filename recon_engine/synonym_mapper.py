"""
Column Alias Dictionary.

A curated, configurable mapping from commonly-seen ledger and settlement
file headers to canonical column names.  The resolve-columns step consults it
after exact alias matches and before fuzzy matching.

Design decisions
----------------
* Keys are stored **normalised** (via ``LabelNormalizer``) so that a
  single normalisation pass on a header is sufficient for lookup.
* Canonical names are free-form: users may register aliases for any
  column name their pipelines use, not only the built-in ones.
* Users can extend at runtime via ``load_custom_synonyms`` (JSON file) or
  ``add_synonym`` / ``add_synonyms``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional

from recon_engine.logging_setup import get_logger
from recon_engine.normalizer import LabelNormalizer

logger = get_logger("synonym_mapper")


# ---------------------------------------------------------------------------
# Built-in alias dictionary
# ---------------------------------------------------------------------------
# Convention: key = header variant, value = canonical column name.

_BUILTIN_SYNONYMS: Dict[str, str] = {
    # --- Transaction identifier ---
    "transaction id": "transaction_id",
    "transaction_id": "transaction_id",
    "txn id": "transaction_id",
    "txn": "transaction_id",
    "trans id": "transaction_id",
    "reference": "transaction_id",
    "reference number": "transaction_id",
    "ref #": "transaction_id",
    "payment id": "transaction_id",
    "order id": "transaction_id",
    "invoice number": "transaction_id",

    # --- Amount ---
    "amount": "amount",
    "payment amount": "amount",
    "transaction amount": "amount",
    "gross amount": "amount",
    "gross": "amount",
    "total": "amount",
    "sale amount": "amount",
    "total transaction": "amount",

    # --- Net amount ---
    "net amount": "net_amount",
    "net": "net_amount",
    "net deposit": "net_amount",
    "settled amount": "net_amount",
    "payout amount": "net_amount",

    # --- Fee ---
    "fee": "fee",
    "fees": "fee",
    "processing fee": "fee",
    "total fee": "fee",
    "discount fee": "fee",
    "merchant fee": "fee",

    # --- Date ---
    "date": "date",
    "transaction date": "date",
    "settlement date": "date",
    "posted date": "date",
    "created": "date",

    # --- Card brand ---
    "card brand": "card_brand",
    "brand": "card_brand",
    "card type": "card_brand",
    "network": "card_brand",

    # --- Customer ---
    "customer": "customer",
    "customer name": "customer",
    "name": "customer",
    "cardholder": "customer",

    # --- Description ---
    "description": "description",
    "memo": "description",
    "notes": "description",
}


class SynonymMapper:
    """Dictionary-based header → canonical-column mapper.

    Look-ups are O(1) hash-table hits; no fuzzy logic is involved.

    Parameters
    ----------
    normalizer:
        Used to normalise both incoming headers and user-supplied aliases.
    extra_synonyms:
        Optional dict of additional aliases to merge in at construction time.
    """

    def __init__(
        self,
        normalizer: Optional[LabelNormalizer] = None,
        extra_synonyms: Optional[Dict[str, str]] = None,
    ) -> None:
        self._normalizer = normalizer or LabelNormalizer()
        self._dict: Dict[str, str] = {}
        for variant, canonical in _BUILTIN_SYNONYMS.items():
            self._dict[self._normalizer.normalize_label(variant)] = canonical

        if extra_synonyms:
            self.add_synonyms(extra_synonyms)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def lookup(self, header: str) -> Optional[str]:
        """Return the canonical column name for a raw header, if known."""
        result = self._dict.get(self._normalizer.normalize_label(header))
        if result:
            logger.debug("Synonym hit: %r → %r", header, result)
        return result

    # ------------------------------------------------------------------ #
    # Extension API
    # ------------------------------------------------------------------ #

    def add_synonym(self, variant: str, canonical: str) -> None:
        """Register a single new alias.

        Raises
        ------
        ValueError
            If ``canonical`` is blank.
        """
        if not canonical or not canonical.strip():
            raise ValueError(f"Canonical column name for {variant!r} must not be blank")

        nk = self._normalizer.normalize_label(variant)
        if nk in self._dict and self._dict[nk] != canonical:
            logger.warning(
                "Overwriting synonym %r: %r → %r",
                nk,
                self._dict[nk],
                canonical,
            )
        self._dict[nk] = canonical
        logger.debug("Added synonym: %r → %r", nk, canonical)

    def add_synonyms(self, mapping: Dict[str, str]) -> None:
        """Bulk-add aliases from a ``{variant: canonical}`` dict."""
        for variant, canonical in mapping.items():
            self.add_synonym(variant, canonical)

    def load_custom_synonyms(self, path: Path) -> int:
        """Load aliases from a JSON file (``{variant: canonical}``).

        Returns the number of entries added.
        """
        with open(path, encoding="utf-8") as fh:
            data: Dict[str, str] = json.load(fh)
        self.add_synonyms(data)
        logger.info("Loaded %d custom synonyms from %s", len(data), path)
        return len(data)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return len(self._dict)

    def all_synonyms(self) -> Dict[str, str]:
        """Return a *copy* of the internal dictionary."""
        return dict(self._dict)
