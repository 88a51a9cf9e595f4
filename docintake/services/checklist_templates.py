"""Built-in checklist templates."""

from dataclasses import dataclass
from typing import Dict, List, Optional

from docintake.models.enums import ChecklistPriority


@dataclass(frozen=True)
class TemplateItem:
    document_type: str
    category: str
    description: str
    priority: ChecklistPriority = ChecklistPriority.MEDIUM
    is_required: bool = True
    requires_client_action: bool = False
    due_in_days: Optional[int] = None  # relative to the day the checklist is established
    instructions: Optional[str] = None


_IDENTITY = TemplateItem(
    "id", "identity", "Government-issued photo ID",
    priority=ChecklistPriority.HIGH, due_in_days=14,
    instructions="Upload a clear photo of a driver's license or passport, both sides if applicable.",
)
_ENGAGEMENT = TemplateItem(
    "engagement_letter", "engagement", "Signed engagement letter",
    priority=ChecklistPriority.HIGH, requires_client_action=True, due_in_days=7,
    instructions="Sign and return the engagement letter before we start preparing the return.",
)
_BANK = TemplateItem(
    "bank_statement", "banking", "Year-end bank statements",
    priority=ChecklistPriority.LOW, is_required=False, due_in_days=30,
)

TEMPLATES: Dict[str, List[TemplateItem]] = {
    "individual": [
        _ENGAGEMENT,
        _IDENTITY,
        TemplateItem("W-2", "income", "W-2 from each employer", priority=ChecklistPriority.HIGH, due_in_days=21,
                     instructions="One W-2 per employer you worked for during the year."),
        TemplateItem("1099-INT", "income", "1099-INT for interest income", due_in_days=30),
        TemplateItem("1099-DIV", "income", "1099-DIV for dividends", is_required=False, due_in_days=30),
        _BANK,
    ],
    "self_employed": [
        _ENGAGEMENT,
        _IDENTITY,
        TemplateItem("1099-NEC", "income", "1099-NEC from each payer", priority=ChecklistPriority.HIGH,
                     due_in_days=21),
        TemplateItem("receipt", "expenses", "Business expense receipts", due_in_days=30,
                     instructions="Receipts for deductible business expenses, grouped by month if possible."),
        TemplateItem("1099-INT", "income", "1099-INT for interest income", is_required=False, due_in_days=30),
        _BANK,
    ],
    "business": [
        _ENGAGEMENT,
        TemplateItem("bank_statement", "banking", "Business bank statements (all months)",
                     priority=ChecklistPriority.HIGH, due_in_days=21),
        TemplateItem("1099-NEC", "income", "1099-NEC issued to the business", due_in_days=30),
        TemplateItem("receipt", "expenses", "Expense receipts and invoices", due_in_days=30),
        TemplateItem("W-2", "payroll", "W-2 copies issued to employees", is_required=False, due_in_days=30),
    ],
}


def get_template(name: str) -> Optional[List[TemplateItem]]:
    return TEMPLATES.get(name)
