"""Matching service.

Loads records from the store, runs the pure matchers and writes back
suggestions, completion flags and, for confident matches, the assignment
itself. Manual assignments are never overwritten.
"""

import logging
from typing import Any

from services.matching import category_matcher, partner_matcher, transaction_matcher
from services.matching.partner_matcher import CounterpartyData
from services.shared.errors import DocumentNotFoundError, TransactionNotFoundError
from services.store.base import RecordStore
from services.store.models import (
    CategorySuggestion,
    Document,
    PartnerSuggestion,
    TransactionSuggestion,
    utcnow,
)

logger = logging.getLogger(__name__)


class MatchingService:
    """Partner, transaction and category matching against the record store."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _get_document(self, document_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def match_document_partner(self, document_id: str) -> list[PartnerSuggestion]:
        """Suggest partners for a document's counterparty.

        The top suggestion is assigned when it reaches the auto-apply
        threshold, unless the document's partner was set by hand.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self._get_document(document_id)
        data = CounterpartyData(
            name=document.extracted_partner,
            vat_id=document.extracted_vat_id,
            iban=document.extracted_iban,
            website=document.extracted_website,
        )
        suggestions = partner_matcher.match_partners(
            data,
            self.store.list_partners(document.owner_id),
            self.store.list_global_partners(),
        )

        fields: dict[str, Any] = {
            "partner_suggestions": suggestions,
            "partner_match_complete": True,
            "partner_matched_at": utcnow(),
        }
        if (
            suggestions
            and partner_matcher.should_auto_apply(suggestions[0])
            and document.partner_matched_by != "manual"
        ):
            top = suggestions[0]
            fields.update(
                partner_id=top.partner_id,
                partner_type=top.partner_type,
                partner_matched_by="auto",
                partner_match_confidence=top.confidence,
            )
            logger.info(
                f"Auto-assigned {top.partner_type} partner {top.partner_id} to {document_id} "
                f"({top.confidence}%, {top.source})"
            )

        self.store.update_document(document_id, fields)
        logger.info(f"Partner matching for {document_id}: {len(suggestions)} suggestions")
        return suggestions

    def _partner_aliases(self, document: Document) -> list[str]:
        if not document.partner_id:
            return []
        partner = (
            self.store.get_global_partner(document.partner_id)
            if document.partner_type == "global"
            else self.store.get_partner(document.partner_id)
        )
        if partner is None:
            return []
        return [partner.name, *partner.aliases]

    def match_document_transactions(self, document_id: str) -> list[TransactionSuggestion]:
        """Suggest bank transactions for an extracted invoice.

        A suggestion at or above the auto-match threshold connects the
        transaction to the document, unless the document's transactions were
        assigned by hand.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self._get_document(document_id)
        candidates = [
            t
            for t in self.store.list_transactions(document.owner_id)
            if document_id not in t.file_ids
        ]
        suggestions = transaction_matcher.match_transactions(
            document, candidates, self._partner_aliases(document)
        )

        fields: dict[str, Any] = {
            "transaction_suggestions": suggestions,
            "transaction_match_complete": True,
            "transaction_matched_at": utcnow(),
        }
        if (
            suggestions
            and transaction_matcher.should_auto_match(suggestions[0])
            and document.transaction_matched_by != "manual"
            and not document.transaction_ids
        ):
            top = suggestions[0]
            transaction = self.store.get_transaction(top.transaction_id)
            if transaction is not None:
                self.store.update_transaction(
                    transaction.id, {"file_ids": [*transaction.file_ids, document_id]}
                )
                fields.update(transaction_ids=[transaction.id], transaction_matched_by="auto")
                logger.info(
                    f"Auto-connected transaction {transaction.id} to {document_id} "
                    f"({top.confidence}%)"
                )

        self.store.update_document(document_id, fields)
        logger.info(f"Transaction matching for {document_id}: {len(suggestions)} suggestions")
        return suggestions

    def match_transaction_categories(self, transaction_id: str) -> list[CategorySuggestion]:
        """Suggest no-receipt categories for a transaction.

        Raises:
            TransactionNotFoundError: If the transaction does not exist
        """
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)

        suggestions = category_matcher.match_transaction_to_categories(
            transaction, self.store.list_categories(transaction.owner_id)
        )

        fields: dict[str, Any] = {"category_suggestions": suggestions}
        if (
            suggestions
            and category_matcher.should_auto_apply(suggestions[0])
            and transaction.no_receipt_category_matched_by != "manual"
        ):
            fields.update(
                no_receipt_category_id=suggestions[0].category_id,
                no_receipt_category_matched_by="auto",
            )
            logger.info(
                f"Auto-assigned category {suggestions[0].category_id} to {transaction_id} "
                f"({suggestions[0].confidence}%)"
            )

        self.store.update_transaction(transaction_id, fields)
        new_category = fields.get("no_receipt_category_id")
        if new_category and new_category != transaction.no_receipt_category_id:
            self._move_category_count(
                transaction.owner_id, transaction.no_receipt_category_id, new_category
            )
        return suggestions

    def _move_category_count(self, owner_id: str, old_id: str | None, new_id: str) -> None:
        for category in self.store.list_categories(owner_id):
            if category.id == new_id:
                self.store.update_category(
                    category.id, {"transaction_count": category.transaction_count + 1}
                )
            elif category.id == old_id:
                self.store.update_category(
                    category.id, {"transaction_count": max(0, category.transaction_count - 1)}
                )
