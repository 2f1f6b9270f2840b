"""Map extracted field values onto OCR text blocks.

Best-effort: a field whose raw text cannot be found still yields a location
record, just without a bounding box.
"""

import re

from services.extraction.schema import FieldLocation, LayoutBlock

MAPPED_FIELDS = ("date", "amount", "vat_percent", "partner")
FUZZY_THRESHOLD = 0.5
UNLOCATED_CONFIDENCE = 0.5


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower()).strip()


def _trigrams(text: str) -> set[str]:
    return {text[i : i + 3] for i in range(len(text) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of character trigrams."""
    if not a or not b:
        return 0.0
    grams_a, grams_b = _trigrams(a), _trigrams(b)
    union = grams_a | grams_b
    if not union:
        return 0.0
    return len(grams_a & grams_b) / len(union)


def _best_block(value: str, blocks: list[LayoutBlock]) -> LayoutBlock | None:
    needle = _normalize(value)
    if not needle:
        return None

    best: tuple[float, LayoutBlock] | None = None
    for block in blocks:
        if needle in _normalize(block.text):
            # Tighter blocks score higher
            score = len(value) / max(len(block.text), 1)
            if best is None or score > best[0]:
                best = (score, block)
    if best is not None:
        return best[1]

    for block in blocks:
        similarity = trigram_similarity(needle, _normalize(block.text))
        if similarity > FUZZY_THRESHOLD and (best is None or similarity > best[0]):
            best = (similarity, block)
    return best[1] if best else None


def map_fields_to_blocks(
    raw_values: dict[str, str | None], blocks: list[LayoutBlock]
) -> list[FieldLocation]:
    """Locate raw field values in OCR blocks.

    Args:
        raw_values: Field name to literal document text
        blocks: OCR blocks of all pages

    Returns:
        One FieldLocation per field that has a raw value
    """
    locations: list[FieldLocation] = []
    for field in MAPPED_FIELDS:
        value = raw_values.get(field)
        if not value:
            continue
        block = _best_block(value, blocks)
        if block is None:
            locations.append(
                FieldLocation(field=field, value=value, confidence=UNLOCATED_CONFIDENCE)
            )
            continue
        locations.append(
            FieldLocation(
                field=field,
                value=value,
                bounding_box=block.bounding_box,
                confidence=block.confidence,
            )
        )
    return locations
