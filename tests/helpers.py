"""Sample document texts and provider fakes shared by the tests."""

import asyncio
from pathlib import Path

from docintake.services.providers.base import OCROutput


W2_TEXT = """W-2 Wage and Tax Statement
Tax Year: 2024
Employer: Acme Corporation
Employee: Jane Doe
Wages, tips, other compensation: $65,000.00
Federal income tax withheld: $8,500.00
Social security wages: $65,000.00
Medicare wages and tips: $65,000.00
"""

INT_TEXT = """Form 1099-INT Interest Income
Tax Year: 2024
Payer: First National Bank
Recipient: Jane Doe
Interest income: $1,250.50
"""

RECEIPT_TEXT = """Receipt
Office Depot
Date: 2024-03-15
Subtotal: $40.00
Tax: $3.20
Total: $43.20
Payment: VISA
"""

UNKNOWN_TEXT = "Hello, this note has nothing to do with taxes.\n"


async def no_sleep(delay):
    return None


class ScriptedOCRProvider:
    """
    OCR fake that replays a script of outcomes, one per call.

    Each entry is an exception instance (raised) or a string (returned as text).
    Once the script runs out, the stored file's text is returned.
    """

    name = "scripted"

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0

    async def extract_text(self, document):
        self.calls += 1
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return OCROutput(text=outcome, confidence=0.9)
        return OCROutput(text=Path(document.storage_url).read_text(), confidence=0.99)


class GatedOCRProvider:
    """OCR fake that blocks until released, so a run can be held mid-flight."""

    name = "gated"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def extract_text(self, document):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return OCROutput(text=Path(document.storage_url).read_text(), confidence=0.99)


class SlowOCRProvider:
    name = "slow"

    async def extract_text(self, document):
        await asyncio.sleep(5)
        return OCROutput(text="", confidence=0.0)
