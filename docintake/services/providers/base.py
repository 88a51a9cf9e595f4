"""Provider protocols and stage output types."""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class DocumentRef:
    """Detached snapshot of the document fields a provider may read."""

    id: str
    client_id: str
    name: str
    mime_type: str
    storage_url: str
    category: Optional[str] = None


@dataclass
class OCROutput:
    """Raw text extraction result."""

    text: str
    confidence: float
    page_count: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisOutput:
    """Structured field extraction result, validated per document type."""

    document_type: str
    confidence: float
    fields: Dict[str, Any] = field(default_factory=dict)
    missing_fields: List[str] = field(default_factory=list)
    quality_issues: List[str] = field(default_factory=list)
    provider: Optional[str] = None

    @property
    def is_incomplete(self) -> bool:
        return bool(self.missing_fields or self.quality_issues)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AutoFillOutput:
    """Tax forms touched by the auto-fill stage."""

    form_ids: List[str] = field(default_factory=list)
    fields_updated: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OCRProvider(Protocol):
    name: str

    async def extract_text(self, document: DocumentRef) -> OCROutput:
        """Extract raw text. Raise TransientProviderError for retryable failures."""
        ...


class AnalysisProvider(Protocol):
    name: str

    async def analyze(self, document: DocumentRef, text: str) -> AnalysisOutput:
        """Classify the document and extract raw fields from text (and/or the file)."""
        ...
