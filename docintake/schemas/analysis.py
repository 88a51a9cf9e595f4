"""
Analysis payload schemas.

The structured fields an analysis produces depend on the document type, so the
payload is an open map validated at the boundary against a per-type schema.
Each schema names its critical fields: a payload missing any of them is
structurally incomplete and is flagged for a quality review.
"""

from typing import Optional, Dict, Any, List, Tuple, Type, ClassVar
from pydantic import BaseModel, ConfigDict, Field


class AnalysisFields(BaseModel):
    """Base for per-type field schemas. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    CRITICAL_FIELDS: ClassVar[Tuple[str, ...]] = ()

    tax_year: Optional[str] = Field(None, description="Tax year shown on the document")

    def get_critical_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name, None) for name in self.CRITICAL_FIELDS}

    def missing_critical_fields(self) -> List[str]:
        return [name for name, value in self.get_critical_fields().items() if value in (None, "")]


# ============================================================================
# WAGE AND INFORMATION RETURNS
# ============================================================================

class W2Fields(AnalysisFields):
    """W-2 Wage and Tax Statement."""
    CRITICAL_FIELDS = ("employer_name", "wages", "federal_tax_withheld")

    employer_name: Optional[str] = Field(None, description="Employer's legal name")
    employer_ein: Optional[str] = Field(None, description="Employer identification number")
    employee_name: Optional[str] = Field(None, description="Employee's full name")
    employee_ssn: Optional[str] = Field(None, description="Employee's SSN (as shown)")
    wages: Optional[str] = Field(None, description="Box 1 wages, tips, other compensation")
    federal_tax_withheld: Optional[str] = Field(None, description="Box 2 federal income tax withheld")
    social_security_wages: Optional[str] = Field(None, description="Box 3")
    social_security_tax_withheld: Optional[str] = Field(None, description="Box 4")
    medicare_wages: Optional[str] = Field(None, description="Box 5")
    medicare_tax_withheld: Optional[str] = Field(None, description="Box 6")


class Form1099NECFields(AnalysisFields):
    """1099-NEC / 1099-MISC nonemployee compensation."""
    CRITICAL_FIELDS = ("payer_name", "nonemployee_compensation")

    payer_name: Optional[str] = None
    payer_tin: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_tin: Optional[str] = None
    nonemployee_compensation: Optional[str] = None
    federal_tax_withheld: Optional[str] = None


class Form1099INTFields(AnalysisFields):
    """1099-INT interest income."""
    CRITICAL_FIELDS = ("payer_name", "interest_income")

    payer_name: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_tin: Optional[str] = None
    interest_income: Optional[str] = None
    federal_tax_withheld: Optional[str] = None


class Form1099DIVFields(AnalysisFields):
    """1099-DIV dividends and distributions."""
    CRITICAL_FIELDS = ("payer_name", "ordinary_dividends")

    payer_name: Optional[str] = None
    recipient_name: Optional[str] = None
    ordinary_dividends: Optional[str] = None
    qualified_dividends: Optional[str] = None
    federal_tax_withheld: Optional[str] = None


# ============================================================================
# SUPPORTING DOCUMENTS
# ============================================================================

class ReceiptFields(AnalysisFields):
    """Purchase receipt or invoice."""
    CRITICAL_FIELDS = ("merchant_name", "total_amount")

    merchant_name: Optional[str] = Field(None, description="Merchant/business name")
    total_amount: Optional[str] = Field(None, description="Total amount (currency symbol and decimals preserved)")
    tax_amount: Optional[str] = None
    date: Optional[str] = Field(None, description="Transaction date")
    invoice_number: Optional[str] = None


class IDFields(AnalysisFields):
    """Driver's license / government ID."""
    CRITICAL_FIELDS = ("full_name", "date_of_birth", "id_number")

    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    id_number: Optional[str] = None
    id_type: Optional[str] = None
    address: Optional[str] = None
    expiry_date: Optional[str] = None


class BankStatementFields(AnalysisFields):
    CRITICAL_FIELDS = ("account_number", "statement_period")

    institution_name: Optional[str] = None
    account_number: Optional[str] = None
    statement_period: Optional[str] = None
    beginning_balance: Optional[str] = None
    ending_balance: Optional[str] = None


PAYLOAD_SCHEMAS: Dict[str, Type[AnalysisFields]] = {
    "W-2": W2Fields,
    "1099-NEC": Form1099NECFields,
    "1099-INT": Form1099INTFields,
    "1099-DIV": Form1099DIVFields,
    "receipt": ReceiptFields,
    "id": IDFields,
    "bank_statement": BankStatementFields,
}

UNKNOWN_DOCUMENT_TYPE = "unknown"


def normalize_document_type(document_type: Optional[str]) -> str:
    """Map provider spellings ("w2", "Form W-2", "1099-MISC", "Receipt") onto registry keys."""
    if not document_type:
        return UNKNOWN_DOCUMENT_TYPE
    key = document_type.strip().lower().replace("form ", "").replace("_", "-")
    aliases = {
        "w-2": "W-2", "w2": "W-2",
        "1099-nec": "1099-NEC", "1099-misc": "1099-NEC", "1099": "1099-NEC",
        "1099-int": "1099-INT",
        "1099-div": "1099-DIV",
        "receipt": "receipt", "invoice": "receipt",
        "id": "id", "drivers-license": "id", "driver's license": "id", "passport": "id",
        "bank-statement": "bank_statement", "bank statement": "bank_statement",
    }
    return aliases.get(key, UNKNOWN_DOCUMENT_TYPE)


def validate_payload(document_type: Optional[str], fields: Dict[str, Any]) -> Tuple[str, Dict[str, Any], List[str]]:
    """
    Validate raw analysis fields against the schema for their document type.

    Returns:
        Tuple of (normalized document type, cleaned fields, missing critical fields).
        Unknown document types pass through unchanged with no critical fields.
    """
    doc_type = normalize_document_type(document_type)
    schema = PAYLOAD_SCHEMAS.get(doc_type)
    if schema is None:
        return doc_type, dict(fields or {}), []

    coerced = {k: (str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v)
               for k, v in (fields or {}).items()}
    model = schema.model_validate(coerced)
    cleaned = model.model_dump(mode="json", exclude_none=True)
    return doc_type, cleaned, model.missing_critical_fields()
