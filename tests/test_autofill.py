"""Tax form auto-fill."""

from decimal import Decimal

import pytest

from docintake.models import TaxFormStatus
from docintake.services import autofill_service
from docintake.services.autofill_service import parse_amount, resolve_tax_year
from docintake.services.providers.base import AnalysisOutput, DocumentRef


def _ref(document_id, client_id="client-1", name="w2.pdf"):
    return DocumentRef(id=document_id, client_id=client_id, name=name,
                       mime_type="application/pdf", storage_url="/tmp/x.pdf")


def _w2(wages, withheld="1,000.00", confidence=0.9, **extra):
    fields = {"employer_name": "Acme", "wages": wages, "federal_tax_withheld": withheld, "tax_year": "2024"}
    fields.update(extra)
    return AnalysisOutput(document_type="W-2", confidence=confidence, fields=fields)


@pytest.mark.parametrize("raw,expected", [
    ("$65,000.00", Decimal("65000.00")),
    ("1 234.5", Decimal("1234.5")),
    ("(12.00)", Decimal("-12.00")),
    (42, Decimal("42")),
    (3.5, Decimal("3.5")),
    ("N/A", None),
    ("", None),
    (None, None),
    (True, None),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_resolve_tax_year(monkeypatch):
    assert resolve_tax_year({"tax_year": "2023"}) == 2023
    assert resolve_tax_year({"tax_year": 2022}) == 2022
    monkeypatch.setattr(autofill_service.settings, "DEFAULT_TAX_YEAR", 2021)
    assert resolve_tax_year({"tax_year": "unknown"}) == 2021
    assert resolve_tax_year({}) == 2021


@pytest.mark.asyncio
async def test_w2_fills_form_1040(db):
    output = await autofill_service.autofill_document(db, _ref("doc-1"), _w2("$65,000.00", "$8,500.00"))

    assert sorted(output.fields_updated) == ["Form-1040.line_1a_wages", "Form-1040.line_25a_w2_withholding"]
    assert output.warnings == []
    forms = await autofill_service.list_forms(db, "client-1")
    assert len(forms) == 1
    form = forms[0]
    assert form.id in output.form_ids
    assert form.form_type == "Form-1040"
    assert form.tax_year == 2024
    assert form.status == TaxFormStatus.IN_PROGRESS
    assert form.fields["line_1a_wages"]["value"] == 65000.0
    assert form.fields["line_25a_w2_withholding"]["value"] == 8500.0
    assert form.source_documents == ["doc-1"]
    assert form.confidence == 0.9
    assert not form.requires_review


@pytest.mark.asyncio
async def test_two_documents_sum_into_one_line(db):
    await autofill_service.autofill_document(db, _ref("doc-1"), _w2("50,000.00", confidence=0.95))
    await autofill_service.autofill_document(db, _ref("doc-2"), _w2("15,000.00", confidence=0.8))

    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.fields["line_1a_wages"]["value"] == 65000.0
    assert set(form.fields["line_1a_wages"]["contributions"]) == {"doc-1", "doc-2"}
    assert form.source_documents == ["doc-1", "doc-2"]
    assert form.confidence == 0.8


@pytest.mark.asyncio
async def test_refilling_replaces_the_documents_contribution(db):
    await autofill_service.autofill_document(db, _ref("doc-1"), _w2("50,000.00"))
    await autofill_service.autofill_document(db, _ref("doc-1"), _w2("52,000.00"))

    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.fields["line_1a_wages"]["value"] == 52000.0


@pytest.mark.asyncio
async def test_unparseable_amount_flags_review(db):
    output = await autofill_service.autofill_document(db, _ref("doc-1"), _w2("sixty thousand"))

    assert output.fields_updated == ["Form-1040.line_25a_w2_withholding"]
    assert len(output.warnings) == 1 and "wages" in output.warnings[0]
    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.requires_review
    assert "line_1a_wages" not in form.fields


@pytest.mark.asyncio
async def test_incomplete_analysis_flags_review(db):
    analysis = _w2("10.00")
    analysis.missing_fields = ["employer_ein"]

    await autofill_service.autofill_document(db, _ref("doc-1"), analysis)

    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.requires_review


@pytest.mark.asyncio
async def test_unmapped_document_type_only_warns(db):
    output = await autofill_service.autofill_document(
        db, _ref("doc-1"), AnalysisOutput(document_type="id", confidence=0.9, fields={"full_name": "Jane"})
    )

    assert output.form_ids == []
    assert output.warnings == ["No tax form mapping for document type 'id'"]
    assert await autofill_service.list_forms(db, "client-1") == []


@pytest.mark.asyncio
async def test_receipts_go_to_schedule_c(db, monkeypatch):
    monkeypatch.setattr(autofill_service.settings, "DEFAULT_TAX_YEAR", 2024)
    analysis = AnalysisOutput(document_type="receipt", confidence=0.7,
                              fields={"merchant_name": "Office Depot", "total_amount": "$43.20"})

    await autofill_service.autofill_document(db, _ref("doc-1", name="receipt.txt"), analysis)

    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.form_type == "Schedule-C"
    assert form.tax_year == 2024
    assert form.fields["line_27a_other_expenses"]["value"] == 43.2


@pytest.mark.asyncio
async def test_withdraw_document_empties_the_form(db):
    await autofill_service.autofill_document(db, _ref("doc-1"), _w2("50,000.00"))

    await autofill_service.withdraw_document(db, "client-1", "doc-1")

    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.fields == {}
    assert form.source_documents == []
    assert form.status == TaxFormStatus.DRAFT


@pytest.mark.asyncio
async def test_reclassified_document_loses_its_old_lines(db):
    await autofill_service.autofill_document(db, _ref("doc-1"), _w2("65,000.00", "8,500.00"))
    await autofill_service.autofill_document(db, _ref("doc-2", name="w2-b.pdf"), _w2("1,000.00", "100.00"))

    output = await autofill_service.autofill_document(
        db, _ref("doc-1"), AnalysisOutput(document_type="unknown", confidence=0.2)
    )

    assert output.form_ids == []
    form = (await autofill_service.list_forms(db, "client-1"))[0]
    assert form.source_documents == ["doc-2"]
    assert form.fields["line_1a_wages"]["value"] == 1000.0
    assert form.fields["line_25a_w2_withholding"]["value"] == 100.0
