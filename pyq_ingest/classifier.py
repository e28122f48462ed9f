"""
Metadata Classifier
===================
Infers year, paper, theme and source trust for a question. Year and paper
belong to the document (filename, then its text); the theme belongs to the
question. Every rule lives in ``rules.py``; this module only decides which
texts are consulted and in what order.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional
from urllib.parse import urlparse

from .models import CandidateDocument, Classification, Level
from .rules import (
    DEFAULT_PAPER,
    PAPER_RULES,
    first_match,
    is_government_host,
    theme_rules_for,
)

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")
MIN_YEAR = 1950

# Only the head of a document is searched for a paper label (cover page).
PAPER_HEAD_CHARS = 1000


class MetadataClassifier:
    """
    Rule-driven classifier.

    Overrides passed to the constructor beat every inferred value. The
    ``year_fallback`` is used only when no plausible year is found.
    """

    def __init__(
        self,
        paper_override: Optional[str] = None,
        theme_override: Optional[str] = None,
        year_fallback: Optional[int] = None,
    ):
        self.paper_override = paper_override
        self.theme_override = theme_override
        self.year_fallback = year_fallback

    def classify(
        self,
        question: str,
        document: CandidateDocument,
        level: Level,
        document_text: str = "",
        year: Optional[int] = None,
    ) -> Classification:
        """
        Classify one question taken from ``document``.

        ``year`` is the document year when the caller has already computed
        it; otherwise it is derived from the filename and ``document_text``.
        Years mentioned inside the question itself are never used.
        """
        paper = self.classify_paper(document, level, document_text)
        if year is None:
            year = self.document_year(document, document_text)
        return Classification(
            year=year,
            paper=paper,
            theme=self.infer_theme(question, paper, level),
            verified=self.is_verified(document.url),
        )

    # ─── Year ────────────────────────────────────────────────────────────

    def document_year(self, document: CandidateDocument, document_text: str = "") -> Optional[int]:
        """Paper year: filename first, then the document text, then the fallback."""
        return self.extract_year(document.filename, document_text)

    def extract_year(self, *texts: Optional[str]) -> Optional[int]:
        """First plausible 4-digit year across ``texts``, in order."""
        current = date.today().year
        for text in texts:
            if not text:
                continue
            for match in YEAR_PATTERN.finditer(text):
                year = int(match.group(1))
                if MIN_YEAR <= year <= current:
                    return year
        return self.year_fallback

    # ─── Paper ───────────────────────────────────────────────────────────

    def classify_paper(
        self,
        document: CandidateDocument,
        level: Level,
        document_text: str = "",
    ) -> Optional[str]:
        if self.paper_override:
            return self.paper_override

        rules = PAPER_RULES.get(level, [])
        paper = first_match(rules, [document.filename, document_text[:PAPER_HEAD_CHARS]])
        if paper:
            return paper
        if document.paper_hint:
            return document.paper_hint
        return DEFAULT_PAPER.get(level)

    # ─── Theme ───────────────────────────────────────────────────────────

    def infer_theme(
        self,
        question: str,
        paper: Optional[str],
        level: Optional[Level],
    ) -> Optional[str]:
        if self.theme_override:
            return self.theme_override
        return first_match(theme_rules_for(paper, level), [question])

    # ─── Source Trust ────────────────────────────────────────────────────

    @staticmethod
    def is_verified(source_link: str) -> bool:
        return is_government_host(urlparse(source_link or "").hostname)
