"""Local providers, payload validation and provider selection."""

import io

import pytest
from PIL import Image

from docintake.core.exceptions import ProviderError
from docintake.schemas.analysis import normalize_document_type, validate_payload
from docintake.services.providers.base import AnalysisOutput, DocumentRef
from docintake.services.providers.factory import build_providers
from docintake.services.providers.local import (
    KeywordAnalysisProvider,
    LocalOCRProvider,
    TextLayerRoutingAnalysisProvider,
    classify_text,
)
from helpers import INT_TEXT, RECEIPT_TEXT, UNKNOWN_TEXT, W2_TEXT


def _ref(path, mime_type):
    return DocumentRef(id="doc-1", client_id="client-1", name=path.name, mime_type=mime_type, storage_url=str(path))


@pytest.mark.asyncio
async def test_text_upload_uses_text_layer(tmp_path):
    path = tmp_path / "w2.txt"
    path.write_text(W2_TEXT)

    output = await LocalOCRProvider().extract_text(_ref(path, "text/plain"))

    assert output.text == W2_TEXT
    assert output.confidence == 1.0
    assert output.metadata == {"source": "text_layer"}


@pytest.mark.asyncio
async def test_image_is_verified_but_has_no_text(tmp_path):
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    path = tmp_path / "scan.png"
    path.write_bytes(buffer.getvalue())

    output = await LocalOCRProvider().extract_text(_ref(path, "image/png"))

    assert output.text == ""
    assert output.confidence == 0.0
    assert output.metadata["reason"] == "no_text_layer"
    assert (output.metadata["width"], output.metadata["height"]) == (40, 20)


@pytest.mark.asyncio
async def test_corrupt_image_is_a_provider_error(tmp_path):
    path = tmp_path / "scan.jpg"
    path.write_bytes(b"definitely not a jpeg")

    with pytest.raises(ProviderError, match="Image unreadable"):
        await LocalOCRProvider().extract_text(_ref(path, "image/jpeg"))


@pytest.mark.asyncio
async def test_invalid_pdf_is_a_provider_error(tmp_path):
    path = tmp_path / "statement.pdf"
    path.write_bytes(b"hello")

    with pytest.raises(ProviderError, match="not a readable PDF"):
        await LocalOCRProvider().extract_text(_ref(path, "application/pdf"))


@pytest.mark.asyncio
async def test_missing_file_is_a_provider_error(tmp_path):
    with pytest.raises(ProviderError, match="not found"):
        await LocalOCRProvider().extract_text(_ref(tmp_path / "gone.txt", "text/plain"))


@pytest.mark.parametrize("text,expected", [
    (W2_TEXT, "W-2"),
    (INT_TEXT, "1099-INT"),
    (RECEIPT_TEXT, "receipt"),
    ("Driver License\nDate of Birth: 01/02/1980\nLicense No: D1234567", "id"),
    ("Statement period: Jan 2024\nBeginning balance: $100.00\nEnding balance: $90.00", "bank_statement"),
    (UNKNOWN_TEXT, "unknown"),
])
def test_classify_text(text, expected):
    doc_type, confidence = classify_text(text)
    assert doc_type == expected
    assert 0.0 <= confidence <= 0.95


def test_unknown_text_has_low_confidence():
    assert classify_text(UNKNOWN_TEXT) == ("unknown", 0.0)
    assert classify_text("please pay the payer") == ("unknown", 0.3)


@pytest.mark.asyncio
async def test_keyword_analysis_extracts_w2_fields():
    ref = DocumentRef(id="doc-1", client_id="c", name="w2.txt", mime_type="text/plain", storage_url="x")

    output = await KeywordAnalysisProvider().analyze(ref, W2_TEXT)

    assert output.document_type == "W-2"
    assert output.provider == "keyword"
    assert output.fields["employer_name"] == "Acme Corporation"
    assert output.fields["employee_name"] == "Jane Doe"
    assert output.fields["wages"] == "65,000.00"
    assert output.fields["federal_tax_withheld"] == "8,500.00"
    assert output.fields["social_security_wages"] == "65,000.00"
    assert output.fields["tax_year"] == "2024"


@pytest.mark.asyncio
async def test_keyword_analysis_extracts_receipt_fields():
    ref = DocumentRef(id="doc-1", client_id="c", name="r.txt", mime_type="text/plain", storage_url="x")

    output = await KeywordAnalysisProvider().analyze(ref, RECEIPT_TEXT)

    assert output.fields["merchant_name"] == "Office Depot"
    assert output.fields["total_amount"] == "43.20"
    assert output.fields["tax_amount"] == "3.20"
    assert output.fields["date"] == "2024-03-15"


# ============================================================================
# PAYLOAD VALIDATION
# ============================================================================

@pytest.mark.parametrize("raw,expected", [
    ("W2", "W-2"), ("Form W-2", "W-2"), ("1099-MISC", "1099-NEC"), ("1099_int", "1099-INT"),
    ("Invoice", "receipt"), ("passport", "id"), ("bank statement", "bank_statement"),
    ("tax return", "unknown"), (None, "unknown"),
])
def test_normalize_document_type(raw, expected):
    assert normalize_document_type(raw) == expected


def test_validate_payload_reports_missing_critical_fields():
    doc_type, fields, missing = validate_payload("w2", {"employer_name": "Acme", "wages": 65000, "box_12": "D"})

    assert doc_type == "W-2"
    assert fields == {"employer_name": "Acme", "wages": "65000", "box_12": "D"}
    assert missing == ["federal_tax_withheld"]


def test_validate_payload_passes_unknown_types_through():
    assert validate_payload("tax return", {"anything": 1}) == ("unknown", {"anything": 1}, [])


def test_validate_payload_rejects_wrong_shapes():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        validate_payload("W-2", {"wages": ["not", "a", "string"]})


def test_build_providers():
    ocr, analysis = build_providers("local")
    assert ocr.name == "local"
    assert analysis.name == "keyword"
    with pytest.raises(ValueError):
        build_providers("mystery")


class _VisionAnalysis:
    name = "vision"

    def __init__(self):
        self.seen = []

    async def analyze(self, document, text):
        self.seen.append(document.id)
        return AnalysisOutput(document_type="id", confidence=0.9, provider=self.name)


@pytest.mark.asyncio
async def test_text_uploads_bypass_the_vision_model(tmp_path):
    vision = _VisionAnalysis()
    analysis = TextLayerRoutingAnalysisProvider(vision)
    text_doc = _ref(tmp_path / "w2.txt", "text/plain")
    scan = DocumentRef(id="doc-2", client_id="client-1", name="license.png", mime_type="image/png",
                       storage_url=str(tmp_path / "license.png"))

    from_text = await analysis.analyze(text_doc, W2_TEXT)
    from_scan = await analysis.analyze(scan, "")

    assert from_text.document_type == "W-2"
    assert from_text.provider == "keyword"
    assert from_scan.document_type == "id"
    assert vision.seen == ["doc-2"]
    assert analysis.name == "vision"
