"""Unit tests for the in-process record store."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from services.store.memory import InMemoryStore, apply_update
from services.store.models import BankSource, Document, Partner, Transaction


def _transaction(transaction_id: str, **overrides) -> Transaction:
    data = {"id": transaction_id, "owner_id": "owner-1", "date": date(2024, 3, 1), "amount": -500}
    data.update(overrides)
    return Transaction(**data)


class TestApplyUpdate:
    """Validated partial updates."""

    def test_replaces_fields(self, document: Document) -> None:
        updated = apply_update(document, {"extracted_amount": 14999, "is_not_invoice": False})

        assert updated.extracted_amount == 14999
        assert updated.is_not_invoice is False
        assert document.extracted_amount is None

    def test_unknown_field(self, document: Document) -> None:
        """Should reject fields the model does not declare."""
        with pytest.raises(KeyError, match="extracted_amout"):
            apply_update(document, {"extracted_amout": 1})

    def test_invalid_value(self, document: Document) -> None:
        """Should validate replaced values against the model."""
        with pytest.raises(ValidationError):
            apply_update(document, {"invoice_direction": "sideways"})


class TestDocuments:
    """Document persistence."""

    def test_update_sets_updated_at(self, store: InMemoryStore, document: Document) -> None:
        stale = datetime(2020, 1, 1, tzinfo=timezone.utc)
        store.save_document(document.model_copy(update={"updated_at": stale}))

        store.update_document("doc-1", {"extraction_error": "boom"})

        saved = store.get_document("doc-1")
        assert saved.extraction_error == "boom"
        assert saved.updated_at > stale

    def test_update_missing_document(self, store: InMemoryStore) -> None:
        with pytest.raises(KeyError):
            store.update_document("missing", {"extraction_error": "boom"})

    def test_get_missing_document(self, store: InMemoryStore) -> None:
        assert store.get_document("missing") is None


class TestTransactions:
    """Transaction persistence and batch updates."""

    def test_batch_update_is_all_or_nothing(self, store: InMemoryStore) -> None:
        """Should write nothing when one record in the batch fails."""
        store.save_transaction(_transaction("txn-1"))
        store.save_transaction(_transaction("txn-2"))

        with pytest.raises(KeyError):
            store.update_transactions(
                {
                    "txn-1": {"partner_id": "p-1", "partner_type": "user"},
                    "txn-missing": {"partner_id": "p-1"},
                }
            )

        assert store.get_transaction("txn-1").partner_id is None

    def test_batch_update_applies_all(self, store: InMemoryStore) -> None:
        store.save_transaction(_transaction("txn-1"))
        store.save_transaction(_transaction("txn-2"))

        store.update_transactions(
            {"txn-1": {"partner_id": "p-1"}, "txn-2": {"partner_id": "p-2"}}
        )

        assert store.get_transaction("txn-1").partner_id == "p-1"
        assert store.get_transaction("txn-2").partner_id == "p-2"

    def test_list_recent_newest_first(self, store: InMemoryStore) -> None:
        """Should order by updated_at descending and apply the limit."""
        now = datetime.now(timezone.utc)
        for i in range(4):
            store.save_transaction(_transaction(f"txn-{i}", updated_at=now - timedelta(hours=i)))
        store.save_transaction(_transaction("txn-other", owner_id="owner-2", updated_at=now))

        recent = store.list_recent_transactions("owner-1", 2)

        assert [t.id for t in recent] == ["txn-0", "txn-1"]

    def test_list_by_partner_type(self, store: InMemoryStore) -> None:
        store.save_transaction(_transaction("txn-g", partner_id="g-1", partner_type="global"))
        store.save_transaction(_transaction("txn-u", partner_id="p-1", partner_type="user"))
        store.save_transaction(_transaction("txn-none"))

        result = store.list_transactions_by_partner_type("owner-1", "global")

        assert [t.id for t in result] == ["txn-g"]


class TestPartnersAndSources:
    """Partner creation and lookup."""

    def test_create_duplicate_partner(self, store: InMemoryStore) -> None:
        partner = Partner(id="p-1", owner_id="owner-1", name="Acme")
        store.create_partner(partner)

        with pytest.raises(ValueError, match="already exists"):
            store.create_partner(partner)

    def test_find_local_partner(self, store: InMemoryStore) -> None:
        """Should only return the owner's active copy of a global partner."""
        store.create_partner(
            Partner(
                id="old",
                owner_id="owner-1",
                name="Netflix",
                global_partner_id="g-1",
                is_active=False,
            )
        )
        store.create_partner(
            Partner(id="other", owner_id="owner-2", name="Netflix", global_partner_id="g-1")
        )
        assert store.find_local_partner("owner-1", "g-1") is None

        store.create_partner(
            Partner(id="new", owner_id="owner-1", name="Netflix", global_partner_id="g-1")
        )
        assert store.find_local_partner("owner-1", "g-1").id == "new"

    def test_active_sources(self, store: InMemoryStore) -> None:
        store.save_source(BankSource(id="s-1", owner_id="owner-1", iban="AT61"))
        store.save_source(BankSource(id="s-2", owner_id="owner-1", is_active=False))
        store.save_source(BankSource(id="s-3", owner_id="owner-2"))

        assert [s.id for s in store.list_active_sources("owner-1")] == ["s-1"]
