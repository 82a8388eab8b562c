"""
Unit tests for the SynonymMapper.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest

from recon_engine.normalizer import LabelNormalizer
from recon_engine.synonym_mapper import SynonymMapper


@pytest.fixture
def normalizer() -> LabelNormalizer:
    return LabelNormalizer()


@pytest.fixture
def mapper(normalizer: LabelNormalizer) -> SynonymMapper:
    return SynonymMapper(normalizer=normalizer)


# ======================================================================
# Core lookup
# ======================================================================

class TestLookup:
    def test_transaction_id_variants(self, mapper: SynonymMapper) -> None:
        for header in ("Transaction ID", "txn_id", "Ref #", "Order ID"):
            assert mapper.lookup(header) == "transaction_id", header

    def test_amount_variants(self, mapper: SynonymMapper) -> None:
        assert mapper.lookup("Gross Amount") == "amount"
        assert mapper.lookup("Total") == "amount"

    def test_net_and_fee_kept_apart(self, mapper: SynonymMapper) -> None:
        assert mapper.lookup("Net Deposit") == "net_amount"
        assert mapper.lookup("Processing Fee") == "fee"

    def test_card_brand(self, mapper: SynonymMapper) -> None:
        assert mapper.lookup("Card Type") == "card_brand"
        assert mapper.lookup("BRAND") == "card_brand"

    def test_miss_returns_none(self, mapper: SynonymMapper) -> None:
        assert mapper.lookup("completely unknown field") is None


# ======================================================================
# Extension API
# ======================================================================

class TestExtension:
    def test_add_single_synonym(self, mapper: SynonymMapper) -> None:
        mapper.add_synonym("Settle Amt", "amount")
        assert mapper.lookup("settle_amt") == "amount"

    def test_blank_canonical_raises(self, mapper: SynonymMapper) -> None:
        with pytest.raises(ValueError, match="must not be blank"):
            mapper.add_synonym("foo", "  ")

    def test_override_builtin(self, mapper: SynonymMapper) -> None:
        mapper.add_synonym("total", "net_amount")
        assert mapper.lookup("Total") == "net_amount"

    def test_extra_synonyms_at_construction(self) -> None:
        mapper = SynonymMapper(extra_synonyms={"Charge ID": "transaction_id"})
        assert mapper.lookup("charge id") == "transaction_id"

    def test_load_from_json_file(self, mapper: SynonymMapper) -> None:
        data = {"Payout Ref": "transaction_id", "Card Scheme": "card_brand"}
        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".json", delete=False, encoding="utf-8"
        ) as f:
            json.dump(data, f)
            f.flush()
            path = Path(f.name)

        try:
            assert mapper.load_custom_synonyms(path) == 2
            assert mapper.lookup("payout ref") == "transaction_id"
            assert mapper.lookup("Card-Scheme") is None  # hyphen is kept
            assert mapper.lookup("card scheme") == "card_brand"
        finally:
            path.unlink()


# ======================================================================
# Introspection
# ======================================================================

class TestIntrospection:
    def test_size_positive(self, mapper: SynonymMapper) -> None:
        assert mapper.size > 30

    def test_all_synonyms_returns_copy(self, mapper: SynonymMapper) -> None:
        d = mapper.all_synonyms()
        original_size = mapper.size
        d["injected"] = "amount"
        assert mapper.size == original_size
