"""Decide which extracted entity is the owner and which is the counterparty.

Each entity is compared with the owner's identity data through a cascade of
signals, strongest first:

1. VAT ID exact match (uppercase, non-alphanumerics stripped)
2. Manually declared IBAN exact match (uppercase, whitespace stripped)
3. Connected bank source IBAN exact match
4. Case-insensitive containment against company name, personal name or alias

Decision table:

    issuer  recipient  counterparty  matched account  direction
    yes     no         recipient     issuer           outgoing
    no      yes        issuer        recipient        incoming
    yes     yes        recipient     issuer           outgoing
    no      no         issuer        None             unknown

When both entities match, the document is treated as a self-issued outgoing
invoice. This is a policy choice kept for compatibility with existing data;
it does not distinguish self-billing from a misread recipient.
"""

import logging
from collections.abc import Iterable

from pydantic import BaseModel

from services.extraction.schema import ExtractedEntity
from services.shared.normalize import normalize_iban, normalize_vat_id
from services.store.models import InvoiceDirection, MatchedUserAccount, UserIdentity

logger = logging.getLogger(__name__)


class CounterpartyResolution(BaseModel):
    """Resolver output.

    Attributes:
        counterparty: Which extracted entity is the other party
        matched_user_account: Which entity is the owner, if any
        invoice_direction: incoming, outgoing or unknown
        match_signal: Signal that identified the owner (for logs)
    """

    counterparty: MatchedUserAccount
    matched_user_account: MatchedUserAccount | None
    invoice_direction: InvoiceDirection
    match_signal: str | None = None


def entity_matches_user(
    entity: ExtractedEntity | None,
    user: UserIdentity,
    source_ibans: Iterable[str] = (),
) -> str | None:
    """Check an entity against the owner's identity.

    Args:
        entity: Extracted issuer or recipient
        user: Owner identity data
        source_ibans: IBANs of the owner's active bank accounts

    Returns:
        Name of the matching signal ("vat_id", "iban", "source_iban", "name"),
        or None if the entity does not belong to the owner
    """
    if entity is None:
        return None

    entity_vat = normalize_vat_id(entity.vat_id)
    if entity_vat and any(normalize_vat_id(v) == entity_vat for v in user.vat_ids):
        return "vat_id"

    entity_iban = normalize_iban(entity.iban)
    if entity_iban:
        if any(normalize_iban(i) == entity_iban for i in user.ibans):
            return "iban"
        if any(normalize_iban(i) == entity_iban for i in source_ibans):
            return "source_iban"

    entity_name = (entity.name or "").strip().lower()
    if entity_name:
        candidates = [user.company_name, user.name, *user.aliases]
        for candidate in candidates:
            value = (candidate or "").strip().lower()
            if value and (value in entity_name or entity_name in value):
                return "name"

    return None


def resolve_counterparty(
    issuer: ExtractedEntity | None,
    recipient: ExtractedEntity | None,
    user: UserIdentity | None,
    source_ibans: Iterable[str] = (),
) -> CounterpartyResolution:
    """Apply the decision table.

    Args:
        issuer: Entity that issued the document
        recipient: Entity the document is addressed to
        user: Owner identity data, None if not configured
        source_ibans: IBANs of the owner's active bank accounts

    Returns:
        CounterpartyResolution
    """
    if user is None:
        return CounterpartyResolution(
            counterparty="issuer", matched_user_account=None, invoice_direction="unknown"
        )

    ibans = list(source_ibans)
    issuer_signal = entity_matches_user(issuer, user, ibans)
    recipient_signal = entity_matches_user(recipient, user, ibans)

    if issuer_signal:
        # Covers both "issuer only" and "both match"
        resolution = CounterpartyResolution(
            counterparty="recipient",
            matched_user_account="issuer",
            invoice_direction="outgoing",
            match_signal=issuer_signal,
        )
    elif recipient_signal:
        resolution = CounterpartyResolution(
            counterparty="issuer",
            matched_user_account="recipient",
            invoice_direction="incoming",
            match_signal=recipient_signal,
        )
    else:
        resolution = CounterpartyResolution(
            counterparty="issuer", matched_user_account=None, invoice_direction="unknown"
        )

    if issuer_signal and recipient_signal:
        logger.info(
            f"Both issuer ({issuer_signal}) and recipient ({recipient_signal}) match the owner, "
            f"treating as outgoing"
        )
    return resolution
