"""Global-to-local partner reconciliation.

Moves an owner's transactions off shared global partners and onto private
local copies. The job is idempotent: a second run finds nothing to move and
writes nothing.

Steps:
1. Group the owner's global-partner assignments by global partner id
2. For each group, reuse the local copy or create exactly one
3. Repoint the group's transactions at the local partner in one batch
4. Rewrite global partner suggestions on recently updated transactions

Groups are processed one after another under a per-owner lock, so the
lookup-then-create step never runs concurrently for the same owner.
"""

import logging
import threading
import uuid
from collections import defaultdict
from typing import Any

from pydantic import BaseModel

from services.shared import metrics
from services.shared.config import Settings
from services.shared.errors import GlobalPartnerNotFoundError
from services.store.base import RecordStore
from services.store.models import Partner, Transaction

logger = logging.getLogger(__name__)

_owner_locks: dict[str, threading.Lock] = {}
_owner_locks_guard = threading.Lock()


def owner_lock(owner_id: str) -> threading.Lock:
    """Process-wide lock serialising reconciliation runs of one owner."""
    with _owner_locks_guard:
        lock = _owner_locks.get(owner_id)
        if lock is None:
            lock = _owner_locks[owner_id] = threading.Lock()
        return lock


class LocalizationResult(BaseModel):
    """Outcome of one reconciliation run."""

    partners_created: int = 0
    transactions_updated: int = 0
    suggestions_updated: int = 0
    failed_groups: list[str] = []


class GlobalPartnerLocalizer:
    """Runs the reconciliation job for one owner at a time."""

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        self.store = store
        self.suggestion_window = settings.localize_suggestion_window

    def localize(self, owner_id: str) -> LocalizationResult:
        """Replace the owner's global partner assignments with local partners.

        Args:
            owner_id: Owner whose transactions are reconciled

        Returns:
            LocalizationResult with created and updated counts
        """
        with owner_lock(owner_id):
            return self._localize(owner_id)

    def _localize(self, owner_id: str) -> LocalizationResult:
        result = LocalizationResult()

        groups: dict[str, list[str]] = defaultdict(list)
        for transaction in self.store.list_transactions_by_partner_type(owner_id, "global"):
            if transaction.partner_id:
                groups[transaction.partner_id].append(transaction.id)

        for global_id, transaction_ids in groups.items():
            try:
                local_id, created = self._local_partner_for(owner_id, global_id)
                if created:
                    result.partners_created += 1
                    metrics.local_partners_created_total.inc()

                self.store.update_transactions(
                    {
                        transaction_id: {"partner_id": local_id, "partner_type": "user"}
                        for transaction_id in transaction_ids
                    }
                )
                result.transactions_updated += len(transaction_ids)
                metrics.transactions_localized_total.inc(len(transaction_ids))
                logger.info(
                    f"Moved {len(transaction_ids)} transactions of {owner_id} "
                    f"from global partner {global_id} to {local_id}"
                )
            except Exception as e:
                logger.error(f"Failed to localize global partner {global_id} for {owner_id}: {e}")
                result.failed_groups.append(global_id)

        result.suggestions_updated = self._localize_suggestions(owner_id)

        logger.info(
            f"Localization for {owner_id} complete: {result.partners_created} partners created, "
            f"{result.transactions_updated} transactions updated"
        )
        return result

    def _local_partner_for(self, owner_id: str, global_id: str) -> tuple[str, bool]:
        """Return (local partner id, created) for a global partner.

        Raises:
            GlobalPartnerNotFoundError: If no local copy exists and the global
                partner record is missing
        """
        existing = self.store.find_local_partner(owner_id, global_id)
        if existing is not None:
            return existing.id, False

        global_partner = self.store.get_global_partner(global_id)
        if global_partner is None:
            raise GlobalPartnerNotFoundError(global_id)

        partner = self.store.create_partner(
            Partner(
                id=uuid.uuid4().hex,
                owner_id=owner_id,
                name=global_partner.name,
                aliases=list(global_partner.aliases),
                address=global_partner.address,
                country=global_partner.country,
                vat_id=global_partner.vat_id,
                ibans=list(global_partner.ibans),
                website=global_partner.website,
                global_partner_id=global_id,
            )
        )
        logger.info(f"Created local partner {partner.id} from global partner {global_id}")
        return partner.id, True

    def _localize_suggestions(self, owner_id: str) -> int:
        """Point global partner suggestions at existing local copies.

        Only the most recently updated transactions are scanned.
        """
        local_ids = {
            p.global_partner_id: p.id
            for p in self.store.list_partners(owner_id)
            if p.global_partner_id and p.is_active
        }
        if not local_ids:
            return 0

        updates: dict[str, dict[str, Any]] = {}
        recent = self.store.list_recent_transactions(owner_id, self.suggestion_window)
        for transaction in recent:
            rewritten = _rewrite_suggestions(transaction, local_ids)
            if rewritten is not None:
                updates[transaction.id] = {"partner_suggestions": rewritten}

        if updates:
            self.store.update_transactions(updates)
            logger.info(f"Rewrote partner suggestions on {len(updates)} transactions of {owner_id}")
        return len(updates)


def _rewrite_suggestions(transaction: Transaction, local_ids: dict[str, str]) -> list | None:
    """New suggestion list, or None if nothing references a localized global."""
    changed = False
    rewritten = []
    for suggestion in transaction.partner_suggestions:
        local_id = local_ids.get(suggestion.partner_id)
        if suggestion.partner_type == "global" and local_id:
            suggestion = suggestion.model_copy(
                update={"partner_id": local_id, "partner_type": "user"}
            )
            changed = True
        rewritten.append(suggestion)
    return rewritten if changed else None
