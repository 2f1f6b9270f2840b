"""Match a document's counterparty against the owner's and the global partners.

Signals, strongest first:

1. IBAN exact match (100)
2. VAT ID exact match (95)
3. Website domain match: 92 with a reasonable name match, otherwise 75
4. Glob alias such as "*amazon*" matching the extracted name (90)
5. Company name similarity of 60 or more, scaled to 60-90
"""

from collections.abc import Iterable

from pydantic import BaseModel

from services.matching.patterns import glob_match, is_glob
from services.matching.similarity import domains_match, name_similarity
from services.shared.normalize import normalize_iban, normalize_vat_id
from services.store.models import GlobalPartner, Partner, PartnerSuggestion, PartnerType

AUTO_APPLY_THRESHOLD = 89
MAX_SUGGESTIONS = 3
NAME_SIMILARITY_THRESHOLD = 60
WEBSITE_NAME_THRESHOLD = 50


class CounterpartyData(BaseModel):
    """Denormalised counterparty fields taken from a document."""

    name: str | None = None
    vat_id: str | None = None
    iban: str | None = None
    website: str | None = None


def _names(partner: Partner | GlobalPartner) -> list[str]:
    return [partner.name, *(a for a in partner.aliases if not is_glob(a))]


def _best_name_similarity(name: str | None, partner: Partner | GlobalPartner) -> int:
    if not name:
        return 0
    return max((name_similarity(name, candidate) for candidate in _names(partner)), default=0)


def match_partner(
    data: CounterpartyData,
    partner: Partner | GlobalPartner,
    partner_type: PartnerType,
) -> PartnerSuggestion | None:
    """Score a single partner, None if no signal fires."""

    def suggestion(confidence: int, source: str) -> PartnerSuggestion:
        return PartnerSuggestion(
            partner_id=partner.id, partner_type=partner_type, confidence=confidence, source=source
        )

    iban = normalize_iban(data.iban)
    if iban and any(normalize_iban(i) == iban for i in partner.ibans):
        return suggestion(100, "iban")

    vat_id = normalize_vat_id(data.vat_id)
    if vat_id and normalize_vat_id(partner.vat_id) == vat_id:
        return suggestion(95, "vat_id")

    if data.website and domains_match(data.website, partner.website):
        similarity = _best_name_similarity(data.name, partner)
        return suggestion(92 if similarity >= WEBSITE_NAME_THRESHOLD else 75, "website")

    if data.name:
        if any(glob_match(a, data.name) for a in partner.aliases if is_glob(a)):
            return suggestion(90, "name")

        similarity = _best_name_similarity(data.name, partner)
        if similarity >= NAME_SIMILARITY_THRESHOLD:
            confidence = min(90, 60 + (similarity - 60) * 30 / 40)
            return suggestion(round(confidence), "name")

    return None


def match_partners(
    data: CounterpartyData,
    local_partners: Iterable[Partner],
    global_partners: Iterable[GlobalPartner],
) -> list[PartnerSuggestion]:
    """Match against local partners first, then globals without a local copy.

    Returns:
        Suggestions sorted by confidence; a local partner wins a tie
    """
    local_partners = list(local_partners)
    localized = {p.global_partner_id for p in local_partners if p.global_partner_id}

    results: list[PartnerSuggestion] = []
    for partner in local_partners:
        if partner.is_active:
            match = match_partner(data, partner, "user")
            if match:
                results.append(match)

    for partner in global_partners:
        if partner.id in localized or not partner.is_active:
            continue
        match = match_partner(data, partner, "global")
        if match:
            results.append(match)

    results.sort(key=lambda s: (-s.confidence, s.partner_type != "user"))
    return results[:MAX_SUGGESTIONS]


def should_auto_apply(suggestion: PartnerSuggestion) -> bool:
    return suggestion.confidence >= AUTO_APPLY_THRESHOLD
