"""Record store interface.

The pipeline reads whole records and writes partial field updates. Update
methods take a mapping of field name to new value and never replace a record.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from services.store.models import (
    BankSource,
    Category,
    Document,
    GlobalPartner,
    Partner,
    Transaction,
    UsageRecord,
    UserIdentity,
)


class RecordStore(Protocol):
    """Storage operations used by the orchestrator, matchers and reconciliation job."""

    # Documents
    def get_document(self, document_id: str) -> Document | None: ...

    def save_document(self, document: Document) -> None: ...

    def update_document(self, document_id: str, fields: Mapping[str, Any]) -> None: ...

    # Owner identity (read-only)
    def get_user_identity(self, owner_id: str) -> UserIdentity | None: ...

    def list_active_sources(self, owner_id: str) -> list[BankSource]: ...

    # Transactions
    def get_transaction(self, transaction_id: str) -> Transaction | None: ...

    def save_transaction(self, transaction: Transaction) -> None: ...

    def list_transactions(self, owner_id: str) -> list[Transaction]: ...

    def list_transactions_by_partner_type(
        self, owner_id: str, partner_type: str
    ) -> list[Transaction]: ...

    def list_recent_transactions(self, owner_id: str, limit: int) -> list[Transaction]: ...

    def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> None: ...

    def update_transactions(self, updates: Mapping[str, Mapping[str, Any]]) -> None:
        """Apply several transaction updates as one write."""
        ...

    # Partners
    def get_partner(self, partner_id: str) -> Partner | None: ...

    def list_partners(self, owner_id: str) -> list[Partner]: ...

    def find_local_partner(self, owner_id: str, global_partner_id: str) -> Partner | None:
        """Active local partner of this owner that references the global partner."""
        ...

    def create_partner(self, partner: Partner) -> Partner: ...

    def get_global_partner(self, global_partner_id: str) -> GlobalPartner | None: ...

    def list_global_partners(self) -> list[GlobalPartner]: ...

    def save_global_partner(self, partner: GlobalPartner) -> None: ...

    # Categories
    def list_categories(self, owner_id: str) -> list[Category]: ...

    def save_category(self, category: Category) -> None: ...

    def update_category(self, category_id: str, fields: Mapping[str, Any]) -> None: ...

    # Identity/sources seeding
    def save_user_identity(self, identity: UserIdentity) -> None: ...

    def save_source(self, source: BankSource) -> None: ...

    # Usage ledger
    def append_usage(self, record: UsageRecord) -> None: ...

    def list_usage(self, owner_id: str) -> list[UsageRecord]: ...
