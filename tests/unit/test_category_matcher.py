"""Unit tests for no-receipt category matching."""

from datetime import date

import pytest

from services.matching.category_matcher import (
    match_single_category,
    match_transaction_to_categories,
    should_auto_apply,
)
from services.matching.patterns import glob_match
from services.store.models import Category, CategoryPattern, Transaction


def _transaction(**overrides) -> Transaction:
    data = {
        "id": "txn-1",
        "owner_id": "owner-1",
        "date": date(2024, 3, 1),
        "amount": -1299,
        "name": "NETFLIX.COM",
        "partner": "Netflix International B.V.",
        "partner_id": "partner-netflix",
    }
    data.update(overrides)
    return Transaction(**data)


def _category(category_id: str = "cat-1", **overrides) -> Category:
    data = {"id": category_id, "owner_id": "owner-1", "name": "Subscriptions"}
    data.update(overrides)
    return Category(**data)


class TestGlobMatch:
    """Whole-text glob matching."""

    def test_wildcards(self) -> None:
        assert glob_match("*netflix*", "netflix.com amsterdam") is True
        assert glob_match("paypal*", "paypal europe") is True
        assert glob_match("paypal*", "via paypal") is False

    def test_umlauts_folded(self) -> None:
        """Should match transliterated umlauts in bank exports."""
        assert glob_match("häusler*", "HAEUSLER GMBH") is True

    def test_special_characters_escaped(self) -> None:
        assert glob_match("a.b*", "axb") is False

    def test_empty(self) -> None:
        assert glob_match("", "text") is False
        assert glob_match("*", None) is False


class TestMatchSingleCategory:
    """Scoring of one category."""

    def test_pattern_only(self) -> None:
        category = _category(learned_patterns=[CategoryPattern(pattern="*netflix*", confidence=80)])

        suggestion = match_single_category(_transaction(partner_id=None), category)

        assert suggestion.confidence == 80
        assert suggestion.source == "pattern"

    def test_partner_only(self) -> None:
        category = _category(matched_partner_ids=["partner-netflix"])

        suggestion = match_single_category(_transaction(), category)

        assert suggestion.confidence == 85
        assert suggestion.source == "partner"

    @pytest.mark.parametrize(("pattern_confidence", "expected"), [(80, 95), (95, 100)])
    def test_partner_and_pattern(self, pattern_confidence: int, expected: int) -> None:
        """Should add the combined bonus, capped at 100."""
        category = _category(
            matched_partner_ids=["partner-netflix"],
            learned_patterns=[CategoryPattern(pattern="*netflix*", confidence=pattern_confidence)],
        )

        suggestion = match_single_category(_transaction(), category)

        assert suggestion.confidence == expected
        assert suggestion.source == "partner+pattern"

    def test_best_pattern_wins(self) -> None:
        category = _category(
            learned_patterns=[
                CategoryPattern(pattern="*netflix*", confidence=70),
                CategoryPattern(pattern="netflix international*", confidence=88),
            ]
        )

        suggestion = match_single_category(_transaction(partner_id=None), category)

        assert suggestion.confidence == 88

    def test_below_threshold(self) -> None:
        category = _category(learned_patterns=[CategoryPattern(pattern="*netflix*", confidence=50)])

        assert match_single_category(_transaction(partner_id=None), category) is None

    def test_no_signal(self) -> None:
        category = _category(learned_patterns=[CategoryPattern(pattern="*spotify*", confidence=90)])

        assert match_single_category(_transaction(partner_id=None), category) is None


class TestMatchTransactionToCategories:
    """Filtering and ranking."""

    def test_skips_transactions_with_files(self) -> None:
        """Should not suggest categories for transactions that have a receipt."""
        category = _category(matched_partner_ids=["partner-netflix"])

        assert match_transaction_to_categories(_transaction(file_ids=["doc-1"]), [category]) == []

    def test_skips_transactions_with_category(self) -> None:
        category = _category(matched_partner_ids=["partner-netflix"])
        transaction = _transaction(no_receipt_category_id="cat-9")

        assert match_transaction_to_categories(transaction, [category]) == []

    def test_skips_receipt_lost_and_inactive(self) -> None:
        categories = [
            _category("lost", template_id="receipt-lost", matched_partner_ids=["partner-netflix"]),
            _category("off", is_active=False, matched_partner_ids=["partner-netflix"]),
        ]

        assert match_transaction_to_categories(_transaction(), categories) == []

    def test_manual_removals(self) -> None:
        """Should honour removals on the category and passed in explicitly."""
        categories = [
            _category("a", matched_partner_ids=["partner-netflix"], manual_removals=["txn-1"]),
            _category("b", matched_partner_ids=["partner-netflix"]),
        ]

        assert match_transaction_to_categories(_transaction(), categories[:1]) == []
        assert match_transaction_to_categories(_transaction(), categories, {"b": ["txn-1"]}) == []

    def test_sorted_and_capped(self) -> None:
        """Should return the three best suggestions, highest first."""
        categories = [
            _category(
                f"cat-{c}",
                learned_patterns=[CategoryPattern(pattern="*netflix*", confidence=c)],
            )
            for c in (70, 80, 90, 65)
        ]

        suggestions = match_transaction_to_categories(_transaction(partner_id=None), categories)

        assert [s.confidence for s in suggestions] == [90, 80, 70]

    def test_should_auto_apply(self) -> None:
        category = _category(
            matched_partner_ids=["partner-netflix"],
            learned_patterns=[CategoryPattern(pattern="*netflix*", confidence=80)],
        )
        suggestion = match_transaction_to_categories(_transaction(), [category])[0]

        assert should_auto_apply(suggestion) is True
