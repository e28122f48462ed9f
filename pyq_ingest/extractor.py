"""
Text Extraction Chain
=====================
Ordered waterfall of extraction strategies. The native text layer is tried
first; OCR providers are only called when it yields too little plausible
text, and strictly one at a time.

Usage:
    chain = ExtractionChain([NativeStrategy(), *providers])
    extracted = chain.extract(pdf_bytes)
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Optional, Sequence

import fitz  # PyMuPDF
from bs4 import BeautifulSoup

from .errors import ConfigurationError, IngestError
from .models import ExtractedText, ExtractionAttempt, ExtractionMethod
from .retry import run_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_MIN_CHARS = 100
DEFAULT_MAX_OCR_BYTES = 20 * 1024 * 1024

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HTML_SNIFF = re.compile(rb"^\s*(?:<!doctype\s+html|<html|<head|<body)", re.IGNORECASE)

# PyMuPDF is not thread-safe: every fitz call in the package holds this lock.
FITZ_LOCK = threading.Lock()


def plausible_text(text: Optional[str]) -> str:
    """Text with control characters removed and whitespace collapsed."""
    if not text:
        return ""
    return " ".join(_CONTROL_CHARS.sub(" ", text).split())


def is_adequate(text: Optional[str], min_chars: int = DEFAULT_MIN_CHARS) -> bool:
    return len(plausible_text(text)) >= min_chars


def is_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(b"%PDF")


def is_html(data: bytes) -> bool:
    return bool(_HTML_SNIFF.match(data[:1024]))


class ExtractionStrategy:
    """
    One way of turning document bytes into text.

    Subclasses implement ``extract_text``; ``attempt`` wraps it with the
    adequacy check. ``is_ocr`` strategies are skipped for oversized documents.
    """

    method: ExtractionMethod = ExtractionMethod.NONE
    is_ocr: bool = True

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.method.value

    def is_available(self) -> bool:
        """Whether credentials or binaries needed by this strategy exist."""
        return True

    def extract_text(self, data: bytes) -> str:
        raise NotImplementedError

    def attempt(self, data: bytes, min_chars: int = DEFAULT_MIN_CHARS) -> tuple[str, bool]:
        text = self.extract_text(data) or ""
        return text, is_adequate(text, min_chars)


class NativeStrategy(ExtractionStrategy):
    """PDF text layer via PyMuPDF, HTML via BeautifulSoup, anything else as UTF-8."""

    method = ExtractionMethod.NATIVE
    is_ocr = False

    def __init__(self, timeout: Optional[float] = 60.0):
        super().__init__(timeout=timeout)

    def extract_text(self, data: bytes) -> str:
        if is_pdf(data):
            return self._pdf_text(data)
        if is_html(data):
            return self._html_text(data)
        return data.decode("utf-8", errors="replace")

    def _pdf_text(self, data: bytes) -> str:
        pages = []
        with FITZ_LOCK, fitz.open(stream=data, filetype="pdf") as doc:
            for page in doc:
                pages.append(page.get_text("text"))
        return "\n".join(pages)

    def _html_text(self, data: bytes) -> str:
        soup = BeautifulSoup(data, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return soup.get_text("\n")


class ExtractionChain:
    """
    Sequential waterfall with early exit on the first adequate result.

    Attempt failures (provider errors, timeouts, inadequate text) are
    recorded and the next strategy is tried. Exhaustion yields an empty
    ``ExtractedText`` with method ``none``.
    """

    def __init__(
        self,
        strategies: Sequence[ExtractionStrategy],
        min_chars: int = DEFAULT_MIN_CHARS,
        max_ocr_bytes: int = DEFAULT_MAX_OCR_BYTES,
    ):
        if not strategies:
            raise ConfigurationError("extraction chain has no strategies")
        self.strategies = list(strategies)
        self.min_chars = min_chars
        self.max_ocr_bytes = max_ocr_bytes

    @property
    def methods(self) -> list[ExtractionMethod]:
        return [s.method for s in self.strategies]

    def extract(self, data: bytes, label: str = "") -> ExtractedText:
        label = label or f"{len(data)} bytes"
        oversized = len(data) > self.max_ocr_bytes
        attempts: list[ExtractionAttempt] = []
        ocr_skipped = False

        for strategy in self.strategies:
            if strategy.is_ocr and oversized:
                if not ocr_skipped:
                    logger.info(
                        f"Skipping OCR for {label}: {len(data)} bytes exceeds "
                        f"{self.max_ocr_bytes} byte ceiling"
                    )
                ocr_skipped = True
                continue

            start = time.monotonic()
            try:
                text, adequate = run_with_timeout(
                    strategy.attempt,
                    data,
                    self.min_chars,
                    timeout=strategy.timeout,
                    description=f"{strategy.name} on {label}",
                )
            except IngestError as e:
                logger.warning(f"{strategy.name} failed on {label}: {e}")
                attempts.append(ExtractionAttempt(
                    method=strategy.method,
                    elapsed=time.monotonic() - start,
                    error=str(e),
                ))
                continue
            except Exception as e:
                # Corrupt documents make PyMuPDF / PIL raise their own errors
                logger.warning(f"{strategy.name} crashed on {label}: {e!r}")
                attempts.append(ExtractionAttempt(
                    method=strategy.method,
                    elapsed=time.monotonic() - start,
                    error=repr(e),
                ))
                continue

            chars = len(plausible_text(text))
            attempts.append(ExtractionAttempt(
                method=strategy.method,
                chars=chars,
                adequate=adequate,
                elapsed=time.monotonic() - start,
                error=None if adequate else f"inadequate: {chars} < {self.min_chars} chars",
            ))

            if adequate:
                logger.info(f"Extracted {chars} chars from {label} via {strategy.name}")
                return ExtractedText(
                    text=text,
                    extraction_method=strategy.method,
                    adequate=True,
                    ocr_skipped=ocr_skipped,
                    attempts=attempts,
                )
            logger.info(f"{strategy.name} produced only {chars} chars for {label}")

        logger.warning(
            f"Extraction exhausted for {label} "
            f"(tried: {', '.join(a.method.value for a in attempts) or 'nothing'})"
        )
        return ExtractedText(
            text="",
            extraction_method=ExtractionMethod.NONE,
            adequate=False,
            ocr_skipped=ocr_skipped,
            attempts=attempts,
        )
