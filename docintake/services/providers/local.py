"""
Local providers that need no model weights.

LocalOCRProvider uses a document's text layer when it has one (plain text or
JSON uploads) and integrity-checks images with Pillow. KeywordAnalysisProvider
classifies by keyword scoring and pulls fields out with per-type regexes.
"""
import asyncio
import io
import logging
import re
from typing import Dict, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from docintake.core.exceptions import ProviderError
from docintake.services.providers.base import AnalysisOutput, AnalysisProvider, DocumentRef, OCROutput
from docintake.utils.file_handling import read_stored_file

logger = logging.getLogger(__name__)

TEXT_MIME_TYPES = {"text/plain", "application/json", "text/csv"}


class LocalOCRProvider:
    """Text-layer extraction for uploads that carry one; images are validated only."""

    name = "local"

    async def extract_text(self, document: DocumentRef) -> OCROutput:
        data = await read_stored_file(document.storage_url)

        if has_text_layer(document):
            text = data.decode("utf-8", errors="replace")
            return OCROutput(text=text, confidence=1.0, metadata={"source": "text_layer"})

        if document.mime_type.startswith("image/"):
            info = await asyncio.to_thread(_inspect_image, data)
            info["reason"] = "no_text_layer"
            return OCROutput(text="", confidence=0.0, metadata=info)

        if document.mime_type == "application/pdf":
            if not data.startswith(b"%PDF"):
                raise ProviderError(f"File {document.name} is not a readable PDF")
            return OCROutput(text="", confidence=0.0, metadata={"reason": "pdf_requires_vision_backend"})

        raise ProviderError(f"Unsupported file type for OCR: {document.mime_type}")


def _inspect_image(data: bytes) -> Dict:
    """Verify image bytes decode. Raises ProviderError for corrupt files."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt, size, mode = image.format, image.size, image.mode
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ProviderError(f"Image unreadable: {e}")
    return {"format": fmt, "width": size[0], "height": size[1], "mode": mode}


# ============================================================================
# KEYWORD CLASSIFICATION
# ============================================================================

# (keyword, weight). Form identifiers weigh more than generic vocabulary.
KEYWORDS: Dict[str, List[Tuple[str, int]]] = {
    "W-2": [
        ("w-2", 3), ("wage and tax statement", 3), ("wages, tips", 2),
        ("social security wages", 1), ("medicare wages", 1), ("employer identification", 1),
        ("federal income tax withheld", 1), ("employer", 1),
    ],
    "1099-NEC": [
        ("1099-nec", 3), ("1099-misc", 3), ("nonemployee compensation", 2),
        ("payer", 1), ("recipient", 1),
    ],
    "1099-INT": [
        ("1099-int", 3), ("interest income", 2), ("early withdrawal penalty", 1),
        ("payer", 1), ("recipient", 1),
    ],
    "1099-DIV": [
        ("1099-div", 3), ("ordinary dividends", 2), ("qualified dividends", 1),
        ("capital gain distr", 1), ("payer", 1),
    ],
    "receipt": [
        ("receipt", 2), ("subtotal", 1), ("total", 1), ("merchant", 1), ("payment", 1),
        ("paid", 1), ("cash", 1), ("change", 1), ("invoice", 1),
    ],
    "id": [
        ("driver", 1), ("license", 1), ("licence", 1), ("date of birth", 2), ("dob", 1),
        ("identification", 1), ("id number", 1), ("expires", 1), ("passport", 2),
    ],
    "bank_statement": [
        ("statement period", 2), ("beginning balance", 2), ("ending balance", 2),
        ("account number", 1), ("deposits", 1), ("withdrawals", 1),
    ],
}

AMOUNT = r"[^\n\d\-]*?\$?\s*(-?[\d,]+(?:\.\d{2})?)"
LINE_VALUE = r"\s*[:#]?\s*([^\n]+)"


def _find_amount(text: str, label: str) -> Optional[str]:
    match = re.search(label + AMOUNT, text, re.IGNORECASE)
    return match.group(1) if match else None


def _find_value(text: str, label: str) -> Optional[str]:
    match = re.search(r"^\s*" + label + LINE_VALUE, text, re.IGNORECASE | re.MULTILINE)
    return match.group(1).strip() if match else None


def _find_pattern(text: str, pattern: str) -> Optional[str]:
    match = re.search(pattern, text, re.IGNORECASE)
    return match.group(1) if match else None


def _tax_year(text: str) -> Optional[str]:
    return _find_pattern(text, r"tax year\s*:?\s*(20\d{2})") or _find_pattern(text, r"\b(20\d{2})\b")


def _extract_w2(text: str) -> Dict[str, Optional[str]]:
    return {
        "employer_name": _find_value(text, r"employer(?:'s)?(?: name)?"),
        "employer_ein": _find_pattern(text, r"\b(\d{2}-\d{7})\b"),
        "employee_name": _find_value(text, r"employee(?:'s)?(?: name)?"),
        "employee_ssn": _find_pattern(text, r"\b(\d{3}-\d{2}-\d{4})\b"),
        "wages": _find_amount(text, r"(?<!security )(?<!medicare )wages(?:, tips,? (?:and )?other compensation)?"),
        "federal_tax_withheld": _find_amount(text, r"federal (?:income )?tax withheld"),
        "social_security_wages": _find_amount(text, r"social security wages"),
        "social_security_tax_withheld": _find_amount(text, r"social security tax withheld"),
        "medicare_wages": _find_amount(text, r"medicare wages(?: and tips)?"),
        "medicare_tax_withheld": _find_amount(text, r"medicare tax withheld"),
        "tax_year": _tax_year(text),
    }


def _extract_1099_parties(text: str) -> Dict[str, Optional[str]]:
    return {
        "payer_name": _find_value(text, r"payer(?:'s)?(?: name)?"),
        "recipient_name": _find_value(text, r"recipient(?:'s)?(?: name)?"),
        "recipient_tin": _find_pattern(text, r"\b(\d{3}-\d{2}-\d{4})\b"),
        "federal_tax_withheld": _find_amount(text, r"federal (?:income )?tax withheld"),
        "tax_year": _tax_year(text),
    }


def _extract_1099_nec(text: str) -> Dict[str, Optional[str]]:
    fields = _extract_1099_parties(text)
    fields["payer_tin"] = _find_pattern(text, r"\b(\d{2}-\d{7})\b")
    fields["nonemployee_compensation"] = _find_amount(text, r"nonemployee compensation")
    return fields


def _extract_1099_int(text: str) -> Dict[str, Optional[str]]:
    fields = _extract_1099_parties(text)
    fields["interest_income"] = _find_amount(text, r"interest income")
    return fields


def _extract_1099_div(text: str) -> Dict[str, Optional[str]]:
    fields = _extract_1099_parties(text)
    fields["ordinary_dividends"] = _find_amount(text, r"(?:total )?ordinary dividends")
    fields["qualified_dividends"] = _find_amount(text, r"qualified dividends")
    return fields


def _extract_receipt(text: str) -> Dict[str, Optional[str]]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    merchant = next((line for line in lines if line.lower() not in ("receipt", "invoice")), None)
    return {
        "merchant_name": _find_value(text, r"merchant") or merchant,
        "total_amount": _find_amount(text, r"grand total") or _find_amount(text, r"(?<!sub)total"),
        "tax_amount": _find_amount(text, r"(?<![\w-])tax(?! withheld)"),
        "date": _find_pattern(text, r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{2,4})\b"),
        "invoice_number": _find_pattern(text, r"(?:invoice|receipt)\s*(?:no\.?|number|#)\s*:?\s*([\w-]+)"),
    }


def _extract_id(text: str) -> Dict[str, Optional[str]]:
    return {
        "full_name": _find_value(text, r"(?:full )?name"),
        "date_of_birth": _find_pattern(text, r"(?:date of birth|dob)\s*:?\s*([\w/\-. ]+?)\s*$"),
        "id_number": _find_pattern(text, r"(?:id|license|licence|dl)\s*(?:no\.?|number|#)\s*:?\s*([\w-]+)"),
        "expiry_date": _find_pattern(text, r"(?:expires|exp)\s*:?\s*([\w/\-. ]+?)\s*$"),
        "address": _find_value(text, r"address"),
    }


def _extract_bank_statement(text: str) -> Dict[str, Optional[str]]:
    return {
        "account_number": _find_pattern(text, r"account (?:number|no\.?|#)\s*:?\s*([\w*-]+)"),
        "statement_period": _find_value(text, r"statement period"),
        "beginning_balance": _find_amount(text, r"beginning balance"),
        "ending_balance": _find_amount(text, r"ending balance"),
    }


EXTRACTORS = {
    "W-2": _extract_w2,
    "1099-NEC": _extract_1099_nec,
    "1099-INT": _extract_1099_int,
    "1099-DIV": _extract_1099_div,
    "receipt": _extract_receipt,
    "id": _extract_id,
    "bank_statement": _extract_bank_statement,
}


def classify_text(text: str) -> Tuple[str, float]:
    """
    Classify document text by weighted keyword score.

    Returns:
        Tuple of (document_type, confidence_score). "unknown" when no type
        reaches a score of 2.
    """
    text_lower = text.lower()
    scores = {
        doc_type: sum(weight for keyword, weight in keywords if keyword in text_lower)
        for doc_type, keywords in KEYWORDS.items()
    }
    best_type, best_score = max(scores.items(), key=lambda item: item[1])
    if best_score < 2:
        return "unknown", 0.3 if best_score else 0.0
    confidence = min(0.95, 0.5 + best_score * 0.05)
    return best_type, confidence


class KeywordAnalysisProvider:
    """Keyword classification with regex field extraction."""

    name = "keyword"

    async def analyze(self, document: DocumentRef, text: str) -> AnalysisOutput:
        doc_type, confidence = classify_text(text)
        extractor = EXTRACTORS.get(doc_type)
        fields = {}
        if extractor is not None:
            fields = {k: v for k, v in extractor(text).items() if v is not None}
        logger.debug("Classified %s as %s (%.2f) with %d fields", document.id, doc_type, confidence, len(fields))
        return AnalysisOutput(document_type=doc_type, confidence=confidence, fields=fields, provider=self.name)


def has_text_layer(document: DocumentRef) -> bool:
    return document.mime_type in TEXT_MIME_TYPES or document.name.lower().endswith((".txt", ".json", ".csv"))


class TextLayerRoutingAnalysisProvider:
    """
    Sends documents with a text layer to keyword analysis and everything else
    to the wrapped provider. Vision models only read images and PDFs.
    """

    def __init__(self, vision: AnalysisProvider, text: Optional[AnalysisProvider] = None):
        self.vision = vision
        self.text = text or KeywordAnalysisProvider()
        self.name = vision.name

    async def analyze(self, document: DocumentRef, text: str) -> AnalysisOutput:
        if has_text_layer(document):
            return await self.text.analyze(document, text)
        return await self.vision.analyze(document, text)
