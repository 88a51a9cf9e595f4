"""
Tax form auto-fill from analysed documents.

Each source document contributes to form lines through FIELD_MAPPINGS. A
line's value is the sum of its contributions, and a document's contributions
are withdrawn before it fills again, so reprocessing never double counts.
"""
import copy
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.config import settings
from docintake.models.enums import TaxFormStatus
from docintake.models.tax_form import TaxForm
from docintake.services.providers.base import AnalysisOutput, AutoFillOutput, DocumentRef
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)

FORM_1040 = "Form-1040"
SCHEDULE_C = "Schedule-C"

# document type -> [(form type, form line, analysis field)]
FIELD_MAPPINGS: Dict[str, List[Tuple[str, str, str]]] = {
    "W-2": [
        (FORM_1040, "line_1a_wages", "wages"),
        (FORM_1040, "line_25a_w2_withholding", "federal_tax_withheld"),
    ],
    "1099-NEC": [
        (SCHEDULE_C, "line_1_gross_receipts", "nonemployee_compensation"),
        (FORM_1040, "line_25b_1099_withholding", "federal_tax_withheld"),
    ],
    "1099-INT": [
        (FORM_1040, "line_2b_taxable_interest", "interest_income"),
        (FORM_1040, "line_25b_1099_withholding", "federal_tax_withheld"),
    ],
    "1099-DIV": [
        (FORM_1040, "line_3b_ordinary_dividends", "ordinary_dividends"),
        (FORM_1040, "line_3a_qualified_dividends", "qualified_dividends"),
        (FORM_1040, "line_25b_1099_withholding", "federal_tax_withheld"),
    ],
    "receipt": [
        (SCHEDULE_C, "line_27a_other_expenses", "total_amount"),
    ],
}


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse "$65,000.00", "1 234.5" or "(12.00)" into a Decimal. None if unparseable."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    if not isinstance(value, str):
        return None
    text = value.strip().replace("$", "").replace(",", "").replace(" ", "")
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def resolve_tax_year(fields: Dict[str, Any]) -> int:
    """Tax year from the document, then DEFAULT_TAX_YEAR, then last calendar year."""
    raw = fields.get("tax_year")
    if raw is not None:
        try:
            year = int(str(raw).strip()[:4])
        except ValueError:
            year = None
        if year and 1900 < year < 2200:
            return year
    if settings.DEFAULT_TAX_YEAR:
        return settings.DEFAULT_TAX_YEAR
    return utcnow().year - 1


async def list_forms(db: AsyncSession, client_id: str) -> List[TaxForm]:
    result = await db.execute(
        select(TaxForm).where(TaxForm.client_id == client_id).order_by(TaxForm.tax_year.desc(), TaxForm.form_type)
    )
    return list(result.scalars().all())


async def _get_or_create_form(db: AsyncSession, client_id: str, form_type: str, tax_year: int) -> TaxForm:
    query = select(TaxForm).where(
        TaxForm.client_id == client_id, TaxForm.form_type == form_type, TaxForm.tax_year == tax_year
    )
    result = await db.execute(query)
    form = result.scalar_one_or_none()
    if form is not None:
        return form
    try:
        async with db.begin_nested():
            form = TaxForm(client_id=client_id, form_type=form_type, tax_year=tax_year,
                           fields={}, source_documents=[], warnings=[])
            db.add(form)
    except IntegrityError:
        # Another run created it first
        result = await db.execute(query)
        form = result.scalar_one()
    return form


def _total(contributions: Dict[str, Dict[str, Any]]) -> float:
    return float(sum((Decimal(str(entry["value"])) for entry in contributions.values()), Decimal("0")))


def _refresh_form(form: TaxForm, fields: Dict[str, Any]) -> None:
    """Recompute line totals, sources and confidence after contributions change."""
    sources = set()
    confidences = []
    for line in list(fields):
        contributions = fields[line]["contributions"]
        if not contributions:
            del fields[line]
            continue
        fields[line]["value"] = round(_total(contributions), 2)
        for doc_id, entry in contributions.items():
            sources.add(doc_id)
            if entry.get("confidence") is not None:
                confidences.append(entry["confidence"])
    form.fields = fields
    form.source_documents = sorted(sources)
    form.confidence = min(confidences) if confidences else None
    form.status = TaxFormStatus.IN_PROGRESS if fields else TaxFormStatus.DRAFT


async def withdraw_document(db: AsyncSession, client_id: str, document_id: str) -> None:
    """Remove a document's contributions from all of the client's forms."""
    for form in await list_forms(db, client_id):
        if document_id not in (form.source_documents or []):
            continue
        fields = copy.deepcopy(form.fields or {})
        for entry in fields.values():
            entry["contributions"].pop(document_id, None)
        _refresh_form(form, fields)


async def autofill_document(db: AsyncSession, document: DocumentRef, analysis: AnalysisOutput) -> AutoFillOutput:
    """Fill tax form lines from one document's analysis."""
    output = AutoFillOutput()
    # A re-run may classify the document differently; its old lines go either way
    await withdraw_document(db, document.client_id, document.id)

    mappings = FIELD_MAPPINGS.get(analysis.document_type)
    if not mappings:
        output.warnings.append(f"No tax form mapping for document type '{analysis.document_type}'")
        await db.flush()
        return output

    tax_year = resolve_tax_year(analysis.fields)
    forms: Dict[str, TaxForm] = {}
    pending: Dict[str, Dict[str, Any]] = {}

    for form_type, line, source_field in mappings:
        raw = analysis.fields.get(source_field)
        if raw in (None, ""):
            continue
        if form_type not in forms:
            forms[form_type] = await _get_or_create_form(db, document.client_id, form_type, tax_year)
            pending[form_type] = copy.deepcopy(forms[form_type].fields or {})
        form = forms[form_type]

        amount = parse_amount(raw)
        if amount is None:
            warning = f"{document.name}: could not parse {source_field} value {raw!r}"
            output.warnings.append(warning)
            form.requires_review = True
            form.warnings = list(form.warnings or []) + [warning]
            continue

        entry = pending[form_type].setdefault(line, {"value": 0.0, "contributions": {}})
        entry["contributions"][document.id] = {
            "value": float(amount),
            "confidence": analysis.confidence,
            "source_field": source_field,
        }
        output.fields_updated.append(f"{form_type}.{line}")

    for form_type, form in forms.items():
        _refresh_form(form, pending[form_type])
        if analysis.is_incomplete:
            form.requires_review = True
        output.form_ids.append(form.id)

    await db.flush()
    logger.info("Auto-filled %d line(s) on %d form(s) from document %s",
                len(output.fields_updated), len(forms), document.id)
    return output
