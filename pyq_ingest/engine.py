"""
PYQ Ingest Engine
=================
Main orchestrator that wires discovery, fetching, extraction, segmentation,
classification and persistence into one batch run.

Usage:
    engine = IngestEngine(IngestConfig(exam="UPSC"))
    summary = engine.run(["https://upsc.gov.in/examinations/previous-question-papers"])

Architecture:
    Listing pages → LinkDiscoverer → CandidateDocuments → DocumentFetcher →
    ExtractionChain → QuestionSegmenter → MetadataClassifier →
    upsert_question → RunSummary
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

from pydantic import ValidationError

from .classifier import MetadataClassifier
from .database import get_db_path, init_db, upsert_question
from .discovery import DOCUMENT_EXTENSIONS, DiscoveryResult, LinkDiscoverer, is_document_url
from .errors import (
    ConfigurationError,
    ExtractionFailed,
    FetchError,
    FetchNotFound,
    IngestError,
    NoQuestionsFound,
    NotInExamFamily,
)
from .exams import ExamProfile, get_profile
from .extractor import DEFAULT_MAX_OCR_BYTES, DEFAULT_MIN_CHARS, ExtractionChain, NativeStrategy
from .fetcher import DocumentFetcher, FetchStatus
from .models import (
    MAX_QUESTION_LENGTH,
    MIN_QUESTION_LENGTH,
    CandidateDocument,
    DocumentOutcome,
    Level,
    OutcomeStatus,
    QuestionRecord,
    RunSummary,
    SkipReason,
    UpsertResult,
)
from .providers import build_providers
from .segmenter import QuestionSegmenter

logger = logging.getLogger(__name__)

DEFAULT_OCR_PROVIDERS = ["mistral", "gemini", "tesseract"]


def _split_env_list(value: Optional[str]) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


@dataclass
class IngestConfig:
    """Configuration for the ingest engine."""

    # Exam and user overrides
    exam: str = ""
    level: Optional[Level] = None
    paper: Optional[str] = None
    theme: Optional[str] = None
    year_fallback: Optional[int] = None

    # Storage
    db_path: Optional[str] = None

    # Fetching
    timeout: float = 30.0
    max_redirects: int = 5
    retries: int = 3
    backoff: float = 1.0
    allow_insecure: bool = False
    insecure_hosts: list[str] = field(default_factory=list)

    # Extraction
    min_chars: int = DEFAULT_MIN_CHARS
    max_ocr_bytes: int = DEFAULT_MAX_OCR_BYTES
    ocr_providers: list[str] = field(default_factory=lambda: list(DEFAULT_OCR_PROVIDERS))
    ocr_timeout: float = 120.0
    mistral_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    tesseract_cmd: Optional[str] = None

    # Segmentation
    min_question_length: int = MIN_QUESTION_LENGTH
    max_question_length: int = MAX_QUESTION_LENGTH

    # Discovery
    extensions: list[str] = field(default_factory=lambda: list(DOCUMENT_EXTENSIONS))
    max_depth: int = 2
    max_pages: int = 60

    # Processing
    workers: int = 1
    delay: float = 0.5
    site_delay: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "IngestConfig":
        """Build a config from environment variables, then apply overrides."""
        values: dict = {
            "db_path": os.environ.get("PYQ_DB_PATH") or None,
            "mistral_api_key": os.environ.get("MISTRAL_API_KEY") or None,
            "gemini_api_key": os.environ.get("GEMINI_API_KEY") or None,
            "tesseract_cmd": os.environ.get("TESSERACT_CMD") or None,
            "insecure_hosts": _split_env_list(os.environ.get("PYQ_INSECURE_HOSTS")),
        }
        providers = _split_env_list(os.environ.get("PYQ_OCR_PROVIDERS"))
        if providers:
            values["ocr_providers"] = providers
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the package logger: console handler plus optional file handler."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure the package logger
    pkg_logger = logging.getLogger("pyq_ingest")
    pkg_logger.setLevel(level)

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler
    if not pkg_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        pkg_logger.addHandler(console)

    # File handler
    if log_file:
        log_path = Path(log_file).resolve()
        already = any(
            isinstance(h, logging.FileHandler)
            and Path(h.baseFilename) == log_path
            for h in pkg_logger.handlers
        )
        if not already:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            pkg_logger.addHandler(file_handler)


def build_chain(config: IngestConfig, profile: Optional[ExamProfile] = None) -> ExtractionChain:
    """
    Native extraction followed by the configured, available OCR providers.
    Local OCR reads the profile's language alongside English.
    """
    providers = build_providers(
        config.ocr_providers,
        language=profile.language if profile else "en",
        mistral_api_key=config.mistral_api_key,
        gemini_api_key=config.gemini_api_key,
        tesseract_cmd=config.tesseract_cmd,
        timeout=config.ocr_timeout,
        retries=config.retries,
    )
    if not providers:
        logger.warning("No OCR provider available; scanned documents will be skipped")
    return ExtractionChain(
        [NativeStrategy(), *providers],
        min_chars=config.min_chars,
        max_ocr_bytes=config.max_ocr_bytes,
    )


class IngestEngine:
    """
    Batch ingest pipeline for one exam.

    Per-document failures never escape a run: each becomes a
    ``DocumentOutcome`` in the ``RunSummary``. Only ``ConfigurationError``
    (no exam, nothing to ingest) escapes.
    """

    def __init__(
        self,
        config: Optional[IngestConfig] = None,
        fetcher: Optional[DocumentFetcher] = None,
        chain: Optional[ExtractionChain] = None,
        profile: Optional[ExamProfile] = None,
    ):
        self.config = config or IngestConfig()
        self._setup_logging()

        if not self.config.exam or not self.config.exam.strip():
            raise ConfigurationError("an exam code is required (e.g. --exam UPSC)")
        if self.config.workers < 1:
            raise ConfigurationError("workers must be at least 1")

        self.profile: ExamProfile = profile or get_profile(self.config.exam)
        self.db_path = self.config.db_path or get_db_path()

        self.fetcher = fetcher or DocumentFetcher(
            timeout=self.config.timeout,
            max_redirects=self.config.max_redirects,
            retries=self.config.retries,
            backoff=self.config.backoff,
            allow_insecure=self.config.allow_insecure,
            insecure_hosts=self.config.insecure_hosts,
        )
        self._shared_chain = chain
        self.chain = chain or build_chain(self.config, self.profile)
        self.segmenter_args = (self.config.min_question_length, self.config.max_question_length)
        self.classifier = MetadataClassifier(
            paper_override=self.config.paper,
            theme_override=self.config.theme,
            year_fallback=self.config.year_fallback,
        )
        self.discoverer = LinkDiscoverer(
            self.fetcher,
            self.profile,
            extensions=self.config.extensions,
            level_override=self.config.level,
        )
        self._lock = threading.Lock()

        init_db(self.db_path)

    def _setup_logging(self):
        """Configure logging based on config."""
        setup_logging(self.config.log_level, self.config.log_file)

    # ─── Entry Points ────────────────────────────────────────────────────

    def run(self, urls: Sequence[str] = ()) -> RunSummary:
        """
        Ingest ``urls``: document links are processed directly, anything
        else is scanned as a listing page. With no URLs, the exam
        profile's official listing pages are used.

        Returns:
            RunSummary with per-document outcomes and totals.
        """
        urls = list(urls) or list(self.profile.listing_pages)
        if not urls:
            raise ConfigurationError(
                f"no URLs given and exam {self.profile.code} has no known listing pages"
            )

        summary = self._new_summary()
        documents = [u for u in urls if is_document_url(u, self.config.extensions)]
        listings = [u for u in urls if u not in documents]

        candidates = [self.direct_candidate(u) for u in documents]
        if listings:
            discovered = self.discoverer.discover(listings)
            candidates.extend(self._absorb_discovery(discovered, summary, candidates))

        return self._finish(self._process_all(candidates, summary))

    def crawl(self, root: Optional[str] = None) -> RunSummary:
        """Crawl mode: breadth-first over ``root`` (or every listing page)."""
        roots = [root] if root else list(self.profile.listing_pages)
        if not roots:
            raise ConfigurationError(f"no crawl root given for exam {self.profile.code}")

        summary = self._new_summary()
        discovered = DiscoveryResult()
        for i, site in enumerate(roots):
            if i and self.config.site_delay:
                time.sleep(self.config.site_delay)
            discovered.merge(self.discoverer.crawl(
                site,
                max_depth=self.config.max_depth,
                max_pages=self.config.max_pages,
            ))

        candidates = self._absorb_discovery(discovered, summary, [])
        return self._finish(self._process_all(candidates, summary))

    def sweep(self, profiles: Iterable[ExamProfile]) -> list[RunSummary]:
        """
        Crawl every profile's official listing sites, one exam at a time.
        The fetcher is shared; each exam builds a chain for its own OCR
        language unless a chain was injected.
        """
        summaries = []
        for i, profile in enumerate(profiles):
            if not profile.listing_pages:
                logger.info(f"Skipping {profile.code}: no listing pages registered")
                continue
            if i and self.config.site_delay:
                time.sleep(self.config.site_delay)

            logger.info(f"Sweeping {profile.code} ({len(profile.listing_pages)} sites)")
            engine = IngestEngine(
                replace(self.config, exam=profile.code),
                fetcher=self.fetcher,
                chain=self._shared_chain,
                profile=profile,
            )
            summaries.append(engine.crawl())
        return summaries

    # ─── Per Document ────────────────────────────────────────────────────

    def direct_candidate(self, url: str) -> CandidateDocument:
        """Candidate for a document URL given on the command line."""
        return self.discoverer.build_candidate(url)

    def process_document(self, document: CandidateDocument) -> DocumentOutcome:
        """
        Push one document through fetch, extract, segment, classify and
        upsert. Never raises.
        """
        try:
            return self._process(document)
        except IngestError as e:
            reason = e.reason or SkipReason.EXTRACTION_FAILED
            logger.info(f"Skipped {document.url}: {reason.value} ({e})")
            return DocumentOutcome(
                url=document.url,
                status=OutcomeStatus.SKIPPED,
                reason=reason,
                error=str(e) or None,
            )
        except Exception as e:
            logger.exception(f"Unexpected error processing {document.url}")
            return DocumentOutcome(
                url=document.url,
                status=OutcomeStatus.ERRORED,
                error=repr(e),
            )

    def _process(self, document: CandidateDocument) -> DocumentOutcome:
        # ── Step 1: Exam family ───────────────────────────────────────
        if self.profile.excludes([document.filename, document.link_text]):
            raise NotInExamFamily(f"{document.filename} belongs to another exam")

        # ── Step 2: Fetch ─────────────────────────────────────────────
        fetched = self.fetcher.fetch(document.url)
        if fetched.status == FetchStatus.NOT_FOUND:
            raise FetchNotFound(fetched.error or "not found", status_code=fetched.status_code)
        if fetched.status == FetchStatus.FAILED:
            raise FetchError(fetched.error or "fetch failed", status_code=fetched.status_code)

        # ── Step 3: Extract ───────────────────────────────────────────
        extracted = self.chain.extract(fetched.content, label=document.filename or document.url)
        if not extracted.adequate:
            reason = (
                SkipReason.TOO_LARGE_FOR_OCR if extracted.ocr_skipped
                else SkipReason.EXTRACTION_FAILED
            )
            tried = ", ".join(extracted.attempted_methods) or "nothing"
            raise ExtractionFailed(f"no adequate text (tried: {tried})", reason=reason)

        # ── Step 4: Segment ───────────────────────────────────────────
        questions = QuestionSegmenter(*self.segmenter_args).segment(extracted.text)
        if not questions:
            raise NoQuestionsFound(
                f"{len(extracted.text)} chars via {extracted.extraction_method.value}, no questions"
            )

        # ── Step 5: Classify + persist ────────────────────────────────
        level = self.config.level or document.level_hint
        outcome = DocumentOutcome(
            url=document.url,
            status=OutcomeStatus.PROCESSED,
            extraction_method=extracted.extraction_method,
            questions_found=len(questions),
        )

        year = self.classifier.document_year(document, extracted.text)
        for question in questions:
            meta = self.classifier.classify(question, document, level, extracted.text, year=year)
            try:
                record = QuestionRecord(
                    exam=self.profile.code,
                    level=level,
                    paper=meta.paper,
                    year=meta.year,
                    question=question,
                    topic_tags=[meta.theme] if meta.theme else [],
                    theme=meta.theme,
                    source_link=document.url,
                    verified=meta.verified,
                    extraction_method=extracted.extraction_method,
                )
            except ValidationError as e:
                logger.debug(f"Dropped candidate from {document.url}: {e.errors()[0]['msg']}")
                continue

            if record.paper is None or record.theme is None:
                outcome.unclassified += 1

            if upsert_question(record, self.db_path) == UpsertResult.INSERTED:
                outcome.inserted += 1
            else:
                outcome.merged += 1

        logger.info(
            f"Processed {document.filename or document.url}: "
            f"{outcome.questions_found} questions, {outcome.inserted} new, "
            f"{outcome.merged} merged via {extracted.extraction_method.value}"
        )
        return outcome

    # ─── Internals ───────────────────────────────────────────────────────

    def _new_summary(self) -> RunSummary:
        return RunSummary(exam=self.profile.code)

    def _absorb_discovery(
        self,
        discovered: DiscoveryResult,
        summary: RunSummary,
        known: Sequence[CandidateDocument],
    ) -> list[CandidateDocument]:
        """Record excluded links and failed pages; return new candidates."""
        summary.listing_failures.extend(discovered.failed_pages)
        for url in discovered.excluded:
            summary.record(DocumentOutcome(
                url=url,
                status=OutcomeStatus.SKIPPED,
                reason=SkipReason.NOT_IN_EXAM_FAMILY,
            ))
        known_urls = {c.url for c in known}
        return [c for c in discovered.candidates if c.url not in known_urls]

    def _process_all(
        self, candidates: Sequence[CandidateDocument], summary: RunSummary
    ) -> RunSummary:
        logger.info(
            f"Processing {len(candidates)} documents for {self.profile.code} "
            f"with {self.config.workers} worker(s)"
        )

        if self.config.workers == 1:
            for i, document in enumerate(candidates):
                if i and self.config.delay:
                    time.sleep(self.config.delay)
                self._record(summary, self.process_document(document))
            return summary

        with ThreadPoolExecutor(
            max_workers=self.config.workers, thread_name_prefix="pyq-doc"
        ) as pool:
            for outcome in pool.map(self.process_document, candidates):
                self._record(summary, outcome)
        return summary

    def _record(self, summary: RunSummary, outcome: DocumentOutcome):
        with self._lock:
            summary.record(outcome)

    def _finish(self, summary: RunSummary) -> RunSummary:
        summary.finished_at = datetime.now(timezone.utc).isoformat()
        logger.info(
            f"Run complete for {summary.exam}: {summary.documents_processed}/"
            f"{summary.documents_total} documents processed, "
            f"{summary.questions_inserted} inserted, {summary.questions_merged} merged"
        )
        return summary
