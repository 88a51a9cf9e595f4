"""Provider selection by configured backend."""

import logging
from typing import Tuple

from docintake.core.config import settings
from docintake.services.providers.base import AnalysisProvider, OCRProvider
from docintake.services.providers.local import (
    KeywordAnalysisProvider,
    LocalOCRProvider,
    TextLayerRoutingAnalysisProvider,
)

logger = logging.getLogger(__name__)


def build_providers(backend: str = None) -> Tuple[OCRProvider, AnalysisProvider]:
    """
    Return (ocr_provider, analysis_provider) for a backend name.

    The qwen3vl backend is imported lazily so torch/transformers are only
    needed when it is selected.
    """
    backend = (backend or settings.PROVIDER_BACKEND).lower()
    if backend == "local":
        return LocalOCRProvider(), KeywordAnalysisProvider()
    if backend == "qwen3vl":
        from docintake.services.providers.qwen3vl import Qwen3VLAnalysisProvider, Qwen3VLOCRProvider
        logger.info("Using Qwen3-VL provider backend")
        return Qwen3VLOCRProvider(), TextLayerRoutingAnalysisProvider(Qwen3VLAnalysisProvider())
    raise ValueError(f"Unknown provider backend: {backend}")
