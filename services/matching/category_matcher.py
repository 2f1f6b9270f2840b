"""No-receipt category matching for bank transactions.

A category can claim a transaction through its matched partners, through its
learned glob patterns, or both. Only transactions without a receipt and
without a category are considered.
"""

from collections.abc import Iterable, Mapping

from services.matching.patterns import glob_match, transaction_text
from services.store.models import Category, CategorySuggestion, Transaction

SUGGESTION_THRESHOLD = 60
AUTO_APPLY_THRESHOLD = 89
MAX_SUGGESTIONS = 3
PARTNER_ONLY_CONFIDENCE = 85
COMBINED_MATCH_BONUS = 15
# Template that is only ever assigned by hand
RECEIPT_LOST_TEMPLATE = "receipt-lost"


def is_matchable(transaction: Transaction) -> bool:
    """Transactions that already carry a category or a receipt are skipped."""
    return not transaction.no_receipt_category_id and not transaction.file_ids


def best_pattern_confidence(transaction: Transaction, category: Category) -> int | None:
    """Highest confidence among the category's patterns matching the transaction."""
    text = transaction_text(transaction.partner, transaction.name, transaction.reference)
    if not text:
        return None
    matches = [p.confidence for p in category.learned_patterns if glob_match(p.pattern, text)]
    return max(matches) if matches else None


def match_single_category(
    transaction: Transaction, category: Category
) -> CategorySuggestion | None:
    """Score one category, None if it does not reach the suggestion threshold."""
    partner_match = bool(
        transaction.partner_id and transaction.partner_id in category.matched_partner_ids
    )
    pattern_confidence = best_pattern_confidence(transaction, category)

    if partner_match and pattern_confidence is not None:
        confidence = min(100, pattern_confidence + COMBINED_MATCH_BONUS)
        source = "partner+pattern"
    elif partner_match:
        confidence = PARTNER_ONLY_CONFIDENCE
        source = "partner"
    elif pattern_confidence is not None:
        confidence = pattern_confidence
        source = "pattern"
    else:
        return None

    if confidence < SUGGESTION_THRESHOLD:
        return None
    return CategorySuggestion(category_id=category.id, confidence=confidence, source=source)


def match_transaction_to_categories(
    transaction: Transaction,
    categories: Iterable[Category],
    manual_removals: Mapping[str, Iterable[str]] | None = None,
) -> list[CategorySuggestion]:
    """Suggest no-receipt categories for a transaction.

    Args:
        transaction: Transaction to match
        categories: The owner's categories
        manual_removals: Extra category id to removed transaction ids mapping,
            merged with each category's own removal list

    Returns:
        Up to three suggestions, highest confidence first
    """
    if not is_matchable(transaction):
        return []

    suggestions: list[CategorySuggestion] = []
    for category in categories:
        if category.template_id == RECEIPT_LOST_TEMPLATE or not category.is_active:
            continue
        removed = set(category.manual_removals)
        if manual_removals:
            removed.update(manual_removals.get(category.id, ()))
        if transaction.id in removed:
            continue

        suggestion = match_single_category(transaction, category)
        if suggestion:
            suggestions.append(suggestion)

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:MAX_SUGGESTIONS]


def should_auto_apply(suggestion: CategorySuggestion) -> bool:
    return suggestion.confidence >= AUTO_APPLY_THRESHOLD
