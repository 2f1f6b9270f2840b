"""Prompt templates for classification and extraction.

Both providers share the same JSON envelope so a single parser handles
their output. Input documents are mostly German; the prompt tells the model
which conventions to expect and which to emit.
"""

SYSTEM_PROMPT = "You are an invoice data extraction assistant. You answer in JSON only."

CLASSIFICATION_PROMPT = """Is this a financial document (invoice, receipt, or payment record)?

Answer in JSON only:
{"isInvoice": true/false, "reason": "brief reason if not invoice", "confidence": 0.0-1.0}

VALID = invoices, receipts, tickets with prices, flight confirmations with amounts,
payment confirmations, booking confirmations with prices, any document showing a paid amount.

NOT VALID = tax forms (W-8BEN, Steuererklärung), contracts without amounts,
annual reports (Jahresabschluss), bank statements, spam, legal documents,
letters without payment amounts."""

EXTRACTION_RULES = """Extract invoice/receipt data. Return JSON only.

CRITICAL RULES:
1. ONLY extract data that is ACTUALLY VISIBLE in the document
2. If a field is not found, use null - NEVER make up values
3. For each field, also return the EXACT text as it appears in the document

Input format: German (dates DD.MM.YYYY, amounts with comma like 123,45)
Output: date as YYYY-MM-DD, amount in cents (123,45 -> 12345), vatPercent as integer

ENTITIES:
1. ISSUER (who created/sent this document): letterhead, logo, sender, company stamp.
   Usually carries VAT ID, address and bank details.
2. RECIPIENT (who receives this document): "Bill to:", "To:", "Kunde:", "Empfänger:", "An:".

"website" (issuer): domain only, e.g. "company.de" not "https://www.company.de/contact".
If only an e-mail address is found (invoice@amazon.de), use its domain (amazon.de).

Raw text: for each field add a "_raw" variant with the EXACT text from the document,
e.g. amount=12345, amount_raw="123,45 €".

JSON structure:
{
  "rawText": "<all text from the document>",
  "extracted": {
    "date": "2024-12-15", "date_raw": "15.12.2024",
    "amount": 12345, "amount_raw": "123,45 €",
    "currency": "EUR",
    "vatPercent": 19, "vatPercent_raw": "19%",
    "confidence": 0.85,
    "issuer": {"name": "...", "vatId": "...", "address": "...", "iban": "...", "website": "..."},
    "issuer_raw": {"name": "...", "vatId": "...", "address": "...", "iban": "...", "website": "..."},
    "recipient": {"name": "...", "vatId": "...", "address": "..."},
    "recipient_raw": {"name": "...", "vatId": "...", "address": "..."}
  },
  "additionalFields": [
    {"label": "Invoice Number", "value": "INV-2024-001", "rawValue": "INV-2024-001"},
    {"label": "Due Date", "value": "2025-01-15", "rawValue": "15.01.2025"}
  ]
}

Additional fields: invoice/reference/PO number, due date, payment terms,
customer number, order or delivery note number."""

VISION_EXTRACTION_PROMPT = EXTRACTION_RULES + """

Optionally add "fieldBoxes": [{"field": "date"|"amount"|"vatPercent"|"partner",
"value": "<raw text>", "page": 0, "box": [x_min, y_min, x_max, y_max]}] with
coordinates normalised to 0..1, only for values you can locate precisely."""


def build_text_extraction_prompt(ocr_text: str) -> str:
    """Build the parse prompt for OCR output.

    Args:
        ocr_text: Text recognised on all pages

    Returns:
        Prompt string with the document text appended
    """
    return f"""{EXTRACTION_RULES}

The document text was produced by OCR and may contain recognition errors.
Use it verbatim for "rawText".

Document text:
{ocr_text}"""
