"""
OCR Providers
=============
Extraction strategies that need an external service or binary:

    MistralOcrProvider    upload -> signed URL -> OCR -> delete (stateful)
    GeminiVisionProvider  single generateContent call, document inline
    TesseractProvider     local rasterization + tesseract

Every HTTP call goes through ``call_with_retry``; the extraction chain adds
the per-attempt time-box on top.
"""

from __future__ import annotations

import base64
import io
import logging
import shutil
from typing import Iterable, Optional, Sequence

import fitz  # PyMuPDF
import pytesseract
import requests
from PIL import Image

from .errors import ProviderError
from .extractor import FITZ_LOCK, ExtractionStrategy, is_pdf
from .models import ExtractionMethod
from .retry import TRANSIENT_STATUS, call_with_retry

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Extract all text from this PDF exam question paper. Return ONLY the "
    "extracted text, preserving line breaks, question numbers, and formatting. "
    "Do not add any explanations, notes, or analysis."
)


class HttpProvider(ExtractionStrategy):
    """Shared request plumbing for hosted OCR services."""

    def __init__(
        self,
        api_key: Optional[str],
        timeout: Optional[float] = 120.0,
        request_timeout: float = 60.0,
        retries: int = 2,
        backoff: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.request_timeout = request_timeout
        self.retries = retries
        self.backoff = backoff
        self.session = session or requests.Session()

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        return call_with_retry(
            self._send,
            method,
            url,
            attempts=self.retries,
            backoff=self.backoff,
            description=f"{self.name} {method} {url.split('?', 1)[0]}",
            **kwargs,
        )

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            resp = self.session.request(
                method, url, headers=headers, timeout=self.request_timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ProviderError(f"{method} {url}: {e}") from e

        if resp.status_code >= 400:
            raise ProviderError(
                f"{method} {url} -> HTTP {resp.status_code}: {resp.text[:200]}",
                permanent=resp.status_code not in TRANSIENT_STATUS,
            )
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> dict:
        try:
            payload = resp.json()
        except ValueError as e:
            raise ProviderError(f"invalid JSON from {resp.url}: {e}", permanent=True) from e
        if not isinstance(payload, dict):
            raise ProviderError(f"unexpected payload from {resp.url}", permanent=True)
        return payload


# ─── Provider A: Mistral OCR ──────────────────────────────────────────────────


class MistralOcrProvider(HttpProvider):
    """
    Mistral document OCR.

    The document is uploaded with purpose ``ocr``, read back through a
    signed URL, and deleted afterwards whether or not OCR succeeded.
    """

    method = ExtractionMethod.MISTRAL_OCR
    BASE_URL = "https://api.mistral.ai/v1"
    MODEL = "mistral-ocr-latest"

    def __init__(self, api_key: Optional[str], model: str = MODEL, base_url: str = BASE_URL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def extract_text(self, data: bytes) -> str:
        if not is_pdf(data):
            raise ProviderError("Mistral OCR only accepts PDF documents", permanent=True)

        file_id = self._upload(data)
        try:
            signed_url = self._signed_url(file_id)
            return self._ocr(signed_url)
        finally:
            self._delete(file_id)

    def _upload(self, data: bytes) -> str:
        resp = self._request(
            "POST",
            f"{self.base_url}/files",
            files={"file": ("document.pdf", data, "application/pdf")},
            data={"purpose": "ocr"},
        )
        file_id = self._json(resp).get("id")
        if not file_id:
            raise ProviderError("upload response has no file id", permanent=True)
        logger.debug(f"Uploaded document to Mistral as {file_id}")
        return file_id

    def _signed_url(self, file_id: str) -> str:
        resp = self._request(
            "GET", f"{self.base_url}/files/{file_id}/url", params={"expiry": 1}
        )
        payload = self._json(resp)
        url = payload.get("url") or payload.get("signed_url")
        if not url:
            raise ProviderError(f"no signed URL for file {file_id}", permanent=True)
        return url

    def _ocr(self, signed_url: str) -> str:
        resp = self._request(
            "POST",
            f"{self.base_url}/ocr",
            json={
                "model": self.model,
                "document": {"type": "document_url", "document_url": signed_url},
                "include_image_base64": False,
            },
        )
        pages = self._json(resp).get("pages") or []
        return "\n\n".join(
            page.get("markdown") or page.get("text") or ""
            for page in pages
            if isinstance(page, dict)
        ).strip()

    def _delete(self, file_id: str):
        try:
            self._send("DELETE", f"{self.base_url}/files/{file_id}")
        except ProviderError as e:
            logger.warning(f"Could not delete Mistral file {file_id}: {e}")


# ─── Provider B: Gemini Vision ────────────────────────────────────────────────


class GeminiVisionProvider(HttpProvider):
    """
    Gemini multimodal extraction with the document sent inline.

    Models are tried in order; a model that is unavailable (404) or
    rejects the request moves on to the next one.
    """

    method = ExtractionMethod.GEMINI_VISION
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    MODELS = ("gemini-1.5-pro", "gemini-1.5-flash")

    def __init__(
        self,
        api_key: Optional[str],
        models: Sequence[str] = MODELS,
        base_url: str = BASE_URL,
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.models = list(models)
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key or ""}

    def extract_text(self, data: bytes) -> str:
        if not is_pdf(data):
            raise ProviderError("Gemini vision is only used for PDF documents", permanent=True)

        body = {
            "contents": [{
                "parts": [
                    {"text": OCR_PROMPT},
                    {"inline_data": {
                        "mime_type": "application/pdf",
                        "data": base64.b64encode(data).decode("ascii"),
                    }},
                ],
            }],
            "generationConfig": {"temperature": 0.1, "maxOutputTokens": 8192},
        }

        last_error: Optional[ProviderError] = None
        for model in self.models:
            try:
                resp = self._request(
                    "POST", f"{self.base_url}/models/{model}:generateContent", json=body
                )
            except ProviderError as e:
                logger.info(f"Gemini model {model} failed: {e}")
                last_error = e
                continue
            return self._candidate_text(self._json(resp))

        raise last_error or ProviderError("no Gemini models configured", permanent=True)

    @staticmethod
    def _candidate_text(payload: dict) -> str:
        for candidate in payload.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
            if text.strip():
                return text.strip()
        return ""


# ─── Provider C: Tesseract ────────────────────────────────────────────────────

# Profile language (ISO 639-1) to tesseract traineddata name.
TESSERACT_LANGS = {
    "en": "eng",
    "hi": "hin",
    "ta": "tam",
    "te": "tel",
    "kn": "kan",
    "ml": "mal",
    "mr": "mar",
    "bn": "ben",
    "gu": "guj",
    "pa": "pan",
    "or": "ori",
    "as": "asm",
    "ur": "urd",
}


def tesseract_lang(language: Optional[str]) -> str:
    """
    Tesseract ``lang`` argument for a profile language.

    State papers are usually bilingual, so English is always read as well.
    Unknown languages fall back to English alone.
    """
    code = TESSERACT_LANGS.get((language or "en").strip().lower())
    if not code or code == "eng":
        return "eng"
    return f"{code}+eng"


class TesseractProvider(ExtractionStrategy):
    """Local OCR: PyMuPDF renders each page, tesseract reads it."""

    method = ExtractionMethod.TESSERACT

    def __init__(
        self,
        tesseract_cmd: Optional[str] = None,
        lang: str = "eng",
        dpi: int = 200,
        max_pages: int = 40,
        timeout: Optional[float] = 300.0,
    ):
        super().__init__(timeout=timeout)
        self.tesseract_cmd = tesseract_cmd
        self.lang = lang
        self.dpi = dpi
        self.max_pages = max_pages
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        return bool(shutil.which(self.tesseract_cmd or "tesseract"))

    def extract_text(self, data: bytes) -> str:
        if not is_pdf(data):
            raise ProviderError("Tesseract provider only rasterizes PDF documents", permanent=True)

        pages = []
        for index, png in enumerate(self._render(data)):
            image = Image.open(io.BytesIO(png))
            try:
                pages.append(pytesseract.image_to_string(image, lang=self.lang))
            except pytesseract.TesseractError as e:
                raise ProviderError(f"tesseract failed on page {index + 1}: {e}", permanent=True) from e
        return "\n".join(pages)

    def _render(self, data: bytes) -> list[bytes]:
        """PNG bytes for each page, up to ``max_pages``."""
        images = []
        with FITZ_LOCK, fitz.open(stream=data, filetype="pdf") as doc:
            for index, page in enumerate(doc):
                if index >= self.max_pages:
                    logger.info(f"Tesseract stopped after {self.max_pages} pages")
                    break
                images.append(page.get_pixmap(dpi=self.dpi).tobytes("png"))
        return images


# ─── Registry ─────────────────────────────────────────────────────────────────

PROVIDER_NAMES = ("mistral", "gemini", "tesseract")


def build_providers(
    names: Iterable[str],
    *,
    mistral_api_key: Optional[str] = None,
    gemini_api_key: Optional[str] = None,
    gemini_models: Sequence[str] = GeminiVisionProvider.MODELS,
    tesseract_cmd: Optional[str] = None,
    language: str = "en",
    timeout: Optional[float] = 120.0,
    retries: int = 2,
    session: Optional[requests.Session] = None,
) -> list[ExtractionStrategy]:
    """
    Instantiate providers in the configured order.

    Unknown names and providers whose credentials or binaries are missing
    are left out with a warning.
    """
    providers: list[ExtractionStrategy] = []
    for raw in names:
        name = raw.strip().lower()
        if not name:
            continue
        if name == "mistral":
            provider = MistralOcrProvider(
                mistral_api_key, timeout=timeout, retries=retries, session=session
            )
        elif name == "gemini":
            provider = GeminiVisionProvider(
                gemini_api_key, models=gemini_models, timeout=timeout,
                retries=retries, session=session,
            )
        elif name == "tesseract":
            provider = TesseractProvider(
                tesseract_cmd=tesseract_cmd, lang=tesseract_lang(language), timeout=timeout
            )
        else:
            logger.warning(f"Unknown OCR provider '{raw}' ignored (known: {', '.join(PROVIDER_NAMES)})")
            continue

        if not provider.is_available():
            logger.warning(f"OCR provider '{name}' unavailable (missing credentials or binary); skipping")
            continue
        providers.append(provider)
    return providers
