"""
Data Models
===========
Pydantic models shared by every pipeline stage.
Only QuestionRecord is persisted; the rest live for a single run.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

MIN_QUESTION_LENGTH = 15
MAX_QUESTION_LENGTH = 500
MATCH_PREFIX_LENGTH = 50

# Leading "1.", "12)", "Q.3", "Q 4", "(a)" markers
_LEADING_MARKER = re.compile(
    r"^\s*(?:Q\.?\s*\d+[.):]?|\d+[.)]|\([a-z]\))\s*", re.IGNORECASE
)
_NON_WORD = re.compile(r"[^\w]+", re.UNICODE)


# ─── Enums ────────────────────────────────────────────────────────────────────


class Level(str, Enum):
    """Examination stage a paper belongs to."""
    PRELIMS = "Prelims"
    MAINS = "Mains"


class ExtractionMethod(str, Enum):
    """Provenance of extracted document text."""
    NATIVE = "native"
    MISTRAL_OCR = "mistral-ocr"
    GEMINI_VISION = "gemini-vision"
    TESSERACT = "tesseract"
    NONE = "none"


class SkipReason(str, Enum):
    """Why a document contributed no records."""
    NOT_FOUND = "not found"
    FETCH_FAILED = "fetch failed"
    EXTRACTION_FAILED = "extraction failed"
    TOO_LARGE_FOR_OCR = "too large for OCR"
    NO_QUESTIONS = "no questions found"
    NOT_IN_EXAM_FAMILY = "not in exam family"


class OutcomeStatus(str, Enum):
    """Final state of one document attempt."""
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERRORED = "errored"


class UpsertResult(str, Enum):
    """Effect of a store upsert."""
    INSERTED = "inserted"
    MERGED = "merged"


# ─── Discovery / Extraction Models ───────────────────────────────────────────


class CandidateDocument(BaseModel):
    """A document link found on a listing page. Never persisted."""
    url: str
    source_page: Optional[str] = None
    level_hint: Level = Level.MAINS
    paper_hint: Optional[str] = None
    link_text: str = ""

    @computed_field
    @property
    def filename(self) -> str:
        path = self.url.split("?", 1)[0].split("#", 1)[0]
        return path.rstrip("/").rsplit("/", 1)[-1]


class ExtractionAttempt(BaseModel):
    """One strategy attempt inside the extraction waterfall."""
    method: ExtractionMethod
    chars: int = 0
    adequate: bool = False
    elapsed: float = 0.0
    error: Optional[str] = None


class ExtractedText(BaseModel):
    """Output of the extraction chain for one document."""
    text: str = ""
    extraction_method: ExtractionMethod = ExtractionMethod.NONE
    adequate: bool = False
    ocr_skipped: bool = False
    attempts: list[ExtractionAttempt] = Field(default_factory=list)

    @computed_field
    @property
    def attempted_methods(self) -> list[str]:
        return [a.method.value for a in self.attempts]


class Classification(BaseModel):
    """Metadata inferred for a single question."""
    year: Optional[int] = None
    paper: Optional[str] = None
    theme: Optional[str] = None
    verified: bool = False


# ─── Persisted Record ─────────────────────────────────────────────────────────


def normalize_question(text: str) -> str:
    """Collapse whitespace the way every stored question is written."""
    return " ".join(text.split())


def question_prefix(text: str, length: int = MATCH_PREFIX_LENGTH) -> str:
    """
    Loose, case-insensitive prefix used to spot re-discovered questions.

    Numbering markers differ between papers that reprint the same question,
    so they are dropped before punctuation is folded away.
    """
    body = _LEADING_MARKER.sub("", normalize_question(text))
    folded = _NON_WORD.sub(" ", body.casefold())
    return " ".join(folded.split())[:length].strip()


def make_match_key(exam: str, year: Optional[int], question: str) -> str:
    return f"{exam.strip().upper()}|{year if year is not None else ''}|{question_prefix(question)}"


class QuestionRecord(BaseModel):
    """A previous-year question as stored."""
    id: Optional[int] = None
    exam: str
    level: Optional[Level] = None
    paper: Optional[str] = None
    year: Optional[int] = None
    question: str
    topic_tags: list[str] = Field(default_factory=list)
    theme: Optional[str] = None
    source_link: str = ""
    verified: bool = False
    extraction_method: Optional[ExtractionMethod] = None
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: Optional[str] = None

    @field_validator("exam")
    @classmethod
    def _exam_upper(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("exam must not be empty")
        return v

    @field_validator("question")
    @classmethod
    def _question_shape(cls, v: str) -> str:
        v = normalize_question(v)
        if not MIN_QUESTION_LENGTH <= len(v) <= MAX_QUESTION_LENGTH:
            raise ValueError(
                f"question length {len(v)} outside "
                f"[{MIN_QUESTION_LENGTH}, {MAX_QUESTION_LENGTH}]"
            )
        if "?" not in v:
            raise ValueError("question must contain '?'")
        return v

    @field_validator("topic_tags")
    @classmethod
    def _tags_as_set(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in v:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @computed_field
    @property
    def match_key(self) -> str:
        return make_match_key(self.exam, self.year, self.question)


# ─── Run Reporting ────────────────────────────────────────────────────────────


class DocumentOutcome(BaseModel):
    """Result of pushing one candidate document through the pipeline."""
    url: str
    status: OutcomeStatus
    reason: Optional[SkipReason] = None
    error: Optional[str] = None
    extraction_method: ExtractionMethod = ExtractionMethod.NONE
    questions_found: int = 0
    inserted: int = 0
    merged: int = 0
    unclassified: int = 0


class RunSummary(BaseModel):
    """End-of-run report: totals plus skip-reason histogram."""
    exam: str = ""
    started_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    finished_at: Optional[str] = None
    documents_total: int = 0
    documents_processed: int = 0
    documents_skipped: int = 0
    documents_errored: int = 0
    questions_inserted: int = 0
    questions_merged: int = 0
    questions_unclassified: int = 0
    listing_failures: list[str] = Field(default_factory=list)
    skip_reasons: dict[str, int] = Field(default_factory=dict)
    extraction_methods: dict[str, int] = Field(default_factory=dict)
    outcomes: list[DocumentOutcome] = Field(default_factory=list)

    def record(self, outcome: DocumentOutcome):
        """Fold one document outcome into the totals."""
        self.outcomes.append(outcome)
        self.documents_total += 1

        if outcome.status == OutcomeStatus.PROCESSED:
            self.documents_processed += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.documents_skipped += 1
        else:
            self.documents_errored += 1

        if outcome.reason is not None:
            key = outcome.reason.value
            self.skip_reasons[key] = self.skip_reasons.get(key, 0) + 1

        if outcome.extraction_method != ExtractionMethod.NONE:
            key = outcome.extraction_method.value
            self.extraction_methods[key] = self.extraction_methods.get(key, 0) + 1

        self.questions_inserted += outcome.inserted
        self.questions_merged += outcome.merged
        self.questions_unclassified += outcome.unclassified

    @computed_field
    @property
    def questions_persisted(self) -> int:
        return self.questions_inserted + self.questions_merged
