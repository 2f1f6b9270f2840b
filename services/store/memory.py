"""In-process record store.

Used for development, tests and single-process deployments. Records are kept
as pydantic models; partial updates are validated against the model so a bad
field name or value fails loudly.
"""

import logging
import threading
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from services.store.models import (
    BankSource,
    Category,
    Document,
    GlobalPartner,
    Partner,
    Transaction,
    UsageRecord,
    UserIdentity,
    utcnow,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def apply_update(record: ModelT, fields: Mapping[str, Any]) -> ModelT:
    """Return a validated copy of record with fields replaced.

    Raises:
        KeyError: If a field does not exist on the model
    """
    unknown = set(fields) - set(type(record).model_fields)
    if unknown:
        raise KeyError(f"Unknown fields for {type(record).__name__}: {sorted(unknown)}")
    data = record.model_dump()
    data.update(fields)
    return type(record).model_validate(data)


class InMemoryStore:
    """Dictionary-backed implementation of RecordStore."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.documents: dict[str, Document] = {}
        self.identities: dict[str, UserIdentity] = {}
        self.sources: dict[str, BankSource] = {}
        self.transactions: dict[str, Transaction] = {}
        self.partners: dict[str, Partner] = {}
        self.global_partners: dict[str, GlobalPartner] = {}
        self.categories: dict[str, Category] = {}
        self.usage: list[UsageRecord] = []

    # Documents

    def get_document(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    def save_document(self, document: Document) -> None:
        with self._lock:
            self.documents[document.id] = document

    def update_document(self, document_id: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            document = self.documents.get(document_id)
            if document is None:
                raise KeyError(f"Document not found: {document_id}")
            self.documents[document_id] = apply_update(
                document, {**fields, "updated_at": utcnow()}
            )

    # Owner identity

    def get_user_identity(self, owner_id: str) -> UserIdentity | None:
        return self.identities.get(owner_id)

    def save_user_identity(self, identity: UserIdentity) -> None:
        with self._lock:
            self.identities[identity.owner_id] = identity

    def list_active_sources(self, owner_id: str) -> list[BankSource]:
        return [s for s in self.sources.values() if s.owner_id == owner_id and s.is_active]

    def save_source(self, source: BankSource) -> None:
        with self._lock:
            self.sources[source.id] = source

    # Transactions

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.transactions.get(transaction_id)

    def save_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self.transactions[transaction.id] = transaction

    def list_transactions(self, owner_id: str) -> list[Transaction]:
        return [t for t in self.transactions.values() if t.owner_id == owner_id]

    def list_transactions_by_partner_type(
        self, owner_id: str, partner_type: str
    ) -> list[Transaction]:
        return [t for t in self.list_transactions(owner_id) if t.partner_type == partner_type]

    def list_recent_transactions(self, owner_id: str, limit: int) -> list[Transaction]:
        ordered = sorted(self.list_transactions(owner_id), key=lambda t: t.updated_at, reverse=True)
        return ordered[:limit]

    def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> None:
        self.update_transactions({transaction_id: fields})

    def update_transactions(self, updates: Mapping[str, Mapping[str, Any]]) -> None:
        with self._lock:
            staged: dict[str, Transaction] = {}
            now = utcnow()
            for transaction_id, fields in updates.items():
                transaction = self.transactions.get(transaction_id)
                if transaction is None:
                    raise KeyError(f"Transaction not found: {transaction_id}")
                staged[transaction_id] = apply_update(transaction, {**fields, "updated_at": now})
            # All-or-nothing: nothing is written if any record failed validation
            self.transactions.update(staged)

    # Partners

    def get_partner(self, partner_id: str) -> Partner | None:
        return self.partners.get(partner_id)

    def list_partners(self, owner_id: str) -> list[Partner]:
        return [p for p in self.partners.values() if p.owner_id == owner_id]

    def find_local_partner(self, owner_id: str, global_partner_id: str) -> Partner | None:
        for partner in self.partners.values():
            if (
                partner.owner_id == owner_id
                and partner.global_partner_id == global_partner_id
                and partner.is_active
            ):
                return partner
        return None

    def create_partner(self, partner: Partner) -> Partner:
        with self._lock:
            if partner.id in self.partners:
                raise ValueError(f"Partner already exists: {partner.id}")
            self.partners[partner.id] = partner
        logger.debug(f"Created partner {partner.id} for owner {partner.owner_id}")
        return partner

    def get_global_partner(self, global_partner_id: str) -> GlobalPartner | None:
        return self.global_partners.get(global_partner_id)

    def list_global_partners(self) -> list[GlobalPartner]:
        return list(self.global_partners.values())

    def save_global_partner(self, partner: GlobalPartner) -> None:
        with self._lock:
            self.global_partners[partner.id] = partner

    # Categories

    def list_categories(self, owner_id: str) -> list[Category]:
        return [c for c in self.categories.values() if c.owner_id == owner_id]

    def save_category(self, category: Category) -> None:
        with self._lock:
            self.categories[category.id] = category

    def update_category(self, category_id: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            category = self.categories.get(category_id)
            if category is None:
                raise KeyError(f"Category not found: {category_id}")
            self.categories[category_id] = apply_update(category, fields)

    # Usage ledger

    def append_usage(self, record: UsageRecord) -> None:
        with self._lock:
            self.usage.append(record)

    def list_usage(self, owner_id: str) -> list[UsageRecord]:
        return [r for r in self.usage if r.owner_id == owner_id]
