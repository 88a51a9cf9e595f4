"""Qwen3-VL providers for document transcription, classification and extraction."""

import asyncio
import io
import json
import logging
import warnings
from typing import Any, Dict, List, Optional

import torch
from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_bytes
from transformers import Qwen3VLForConditionalGeneration, AutoProcessor

from docintake.core.config import settings
from docintake.core.exceptions import ProviderError, TransientProviderError
from docintake.schemas.analysis import PAYLOAD_SCHEMAS, UNKNOWN_DOCUMENT_TYPE
from docintake.services.providers.base import AnalysisOutput, DocumentRef, OCROutput
from docintake.services.providers.local import has_text_layer
from docintake.utils.file_handling import read_stored_file

logger = logging.getLogger(__name__)

MAX_IMAGE_SIDE = 1536  # longest side; larger pages OOM on a T4


class Qwen3VLModel:
    """Singleton holder for the Qwen3-VL model and processor."""

    _instance = None
    _model = None
    _processor = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._model is None:
            self._load_model()

    def _load_model(self):
        """Load Qwen3-VL model and processor (called once)."""
        logger.info("Loading %s", settings.QWEN3VL_MODEL_ID)
        type(self)._model = Qwen3VLForConditionalGeneration.from_pretrained(
            settings.QWEN3VL_MODEL_ID, dtype="auto", device_map="auto"
        )
        type(self)._processor = AutoProcessor.from_pretrained(settings.QWEN3VL_MODEL_ID)
        logger.info("Model loaded on %s", self._model.device)

    def generate(self, image: Image.Image, prompt: str, max_new_tokens: int = 4096, temperature: float = 0.7) -> str:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image", "image": image},
                    {"type": "text", "text": prompt},
                ],
            }
        ]
        inputs = self._processor.apply_chat_template(
            messages, tokenize=True, add_generation_prompt=True,
            return_dict=True, return_tensors="pt"
        )
        inputs = inputs.to(self._model.device)
        logger.debug("Input tokens: %d", inputs.input_ids.shape[1])

        try:
            with torch.no_grad():
                generated_ids = self._model.generate(
                    **inputs, max_new_tokens=max_new_tokens, top_p=0.8, top_k=20,
                    temperature=temperature, repetition_penalty=1.0
                )
        except torch.cuda.OutOfMemoryError as e:
            torch.cuda.empty_cache()
            raise TransientProviderError(f"GPU out of memory: {e}")

        generated_ids_trimmed = [
            out_ids[len(in_ids):]
            for in_ids, out_ids in zip(inputs.input_ids, generated_ids)
        ]
        return self._processor.batch_decode(
            generated_ids_trimmed, skip_special_tokens=True,
            clean_up_tokenization_spaces=False
        )[0].strip()


def load_page_image(data: bytes, mime_type: str) -> Image.Image:
    """Decode the first page of an image or PDF, resized and converted to RGB."""
    warnings.filterwarnings('ignore', category=UserWarning, module='PIL.Image')

    if mime_type == "application/pdf":
        images = convert_from_bytes(data, dpi=200, first_page=1, last_page=1)
        if not images:
            raise ProviderError("Failed to convert PDF to image")
        image = images[0]
    else:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ProviderError(f"Image unreadable: {e}")

    # Convert palette images to RGBA first
    if image.mode == 'P':
        image = image.convert('RGBA')

    if max(image.size) > MAX_IMAGE_SIDE:
        ratio = MAX_IMAGE_SIDE / max(image.size)
        new_size = tuple(int(dim * ratio) for dim in image.size)
        image = image.resize(new_size, Image.Resampling.LANCZOS)

    if image.mode != 'RGB':
        image = image.convert('RGB')
    return image


def strip_code_fences(output_text: str) -> str:
    if output_text.startswith("```json"):
        return output_text.split("```json")[1].split("```")[0].strip()
    if output_text.startswith("```"):
        return output_text.split("```")[1].split("```")[0].strip()
    return output_text


TRANSCRIBE_PROMPT = """Transcribe all text in this document image.

CRITICAL INSTRUCTIONS:
- Raw transcription only - NO modification, NO summarization, NO interpretation
- Preserve numbers, decimals and line breaks exactly as they appear
- Return only the transcribed text. No additional explanation."""


def _classify_prompt(types: List[str]) -> str:
    options = "\n".join(f"- {t}" for t in types)
    return f"""Classify this document into ONE of these categories:
{options}
- unknown: None of the above

Return ONLY the category name. No explanation."""


def _extract_prompt(document_type: str, field_names: List[str]) -> str:
    schema = json.dumps({name: "string" for name in field_names}, indent=4)
    return f"""Extract all visible fields from this {document_type} document image.

CRITICAL INSTRUCTIONS:
- Raw extraction only - NO modification, NO summarization
- Extract exact values as they appear - preserve all numbers and decimals
- If a field is empty or not visible, use null
- Return data in the exact JSON schema provided below

SCHEMA:
{schema}

Extract ALL fields and return ONLY valid JSON matching this schema. No additional text or explanation."""


def _match_type(output_text: str) -> str:
    lowered = output_text.lower()
    # Longest names first so "1099-nec" wins over a bare "1099"
    for doc_type in sorted(PAYLOAD_SCHEMAS, key=len, reverse=True):
        if doc_type.lower() in lowered:
            return doc_type
    return UNKNOWN_DOCUMENT_TYPE


class Qwen3VLOCRProvider:
    """Vision-language transcription of the first page."""

    name = "qwen3vl"

    def __init__(self, model: Optional[Qwen3VLModel] = None):
        self._model = model

    @property
    def model(self) -> Qwen3VLModel:
        if self._model is None:
            self._model = Qwen3VLModel()
        return self._model

    async def extract_text(self, document: DocumentRef) -> OCROutput:
        data = await read_stored_file(document.storage_url)
        if has_text_layer(document):
            return OCROutput(text=data.decode("utf-8", errors="replace"), confidence=1.0,
                             metadata={"source": "text_layer"})
        text = await asyncio.to_thread(self._transcribe, data, document.mime_type)
        return OCROutput(text=text, confidence=0.85 if text else 0.0, metadata={"model": settings.QWEN3VL_MODEL_ID})

    def _transcribe(self, data: bytes, mime_type: str) -> str:
        image = load_page_image(data, mime_type)
        return self.model.generate(image, TRANSCRIBE_PROMPT)


class Qwen3VLAnalysisProvider:
    """
    Classify from the page image, then extract the fields of the detected type as JSON.

    Images and PDFs only; build_providers routes text uploads to keyword analysis.
    """

    name = "qwen3vl"

    def __init__(self, model: Optional[Qwen3VLModel] = None):
        self._model = model

    @property
    def model(self) -> Qwen3VLModel:
        if self._model is None:
            self._model = Qwen3VLModel()
        return self._model

    async def analyze(self, document: DocumentRef, text: str) -> AnalysisOutput:
        if not document.mime_type.startswith("image/") and document.mime_type != "application/pdf":
            raise ProviderError(f"Vision analysis needs an image or PDF, got {document.mime_type}")
        data = await read_stored_file(document.storage_url)
        return await asyncio.to_thread(self._analyze, data, document.mime_type)

    def _analyze(self, data: bytes, mime_type: str) -> AnalysisOutput:
        image = load_page_image(data, mime_type)
        label = self.model.generate(image, _classify_prompt(list(PAYLOAD_SCHEMAS)), max_new_tokens=50, temperature=0.3)
        doc_type = _match_type(label)
        if doc_type == UNKNOWN_DOCUMENT_TYPE:
            return AnalysisOutput(document_type=doc_type, confidence=0.3, provider=self.name)

        schema = PAYLOAD_SCHEMAS[doc_type]
        output_text = self.model.generate(image, _extract_prompt(doc_type, list(schema.model_fields)))
        try:
            fields: Dict[str, Any] = json.loads(strip_code_fences(output_text))
        except json.JSONDecodeError as e:
            raise ProviderError(f"Model returned invalid JSON for {doc_type}: {e}")
        if not isinstance(fields, dict):
            raise ProviderError(f"Model returned {type(fields).__name__} instead of an object for {doc_type}")
        return AnalysisOutput(document_type=doc_type, confidence=0.85, fields=fields, provider=self.name)
