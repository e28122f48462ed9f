"""
Question Segmenter
==================
Line-oriented state machine that turns extracted document text into
candidate question strings.

A question opens on a numbering marker ("1.", "2)", "Q.3", "(a)") or on
any unmarked line, accumulates continuation lines, and closes when the
buffer ends with "?" or when the next marker arrives.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from .models import MAX_QUESTION_LENGTH, MIN_QUESTION_LENGTH, normalize_question

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# "1.", "12)", "Q.3", "Q 4:", "(a)", "(iv)" at start of line
MARKER_PATTERN = re.compile(
    r"^(?:Q\.?\s*\d+[.):]?|\d+[.)]|\((?:[a-z]|[ivx]+)\))(?:\s|$)", re.IGNORECASE
)

# Split a line before a marker that follows a "?": "1. A? 2. B?"
INLINE_SPLIT = re.compile(
    r"(?<=\?)\s+(?=(?:Q\.?\s*\d+[.):]?|\d+[.)]|\((?:[a-z]|[ivx]+)\))\s)",
    re.IGNORECASE,
)

# Lines that never belong to a question (headers, footers, page counters)
IGNORE_PATTERNS = [
    re.compile(r"^(Page\s*)?\d+\s*(/|of)\s*\d+$", re.IGNORECASE),  # "8/28", "Page 8 of 28"
    re.compile(r"^(Page\s*)?\d+$", re.IGNORECASE),                  # bare page number
    re.compile(r"^-+\s*\d+\s*-+$"),                                  # "- 3 -"
    re.compile(r"^https?://\S+$"),                                   # lone URLs
    re.compile(r"^P\.?\s*T\.?\s*O\.?$", re.IGNORECASE),
    re.compile(r"^\(?\s*turn\s+over\s*\)?$", re.IGNORECASE),
    re.compile(r"^\*+$"),
]

# Candidates that are navigation or instructions rather than questions
BOILERPLATE_PATTERN = re.compile(r"^(?:page\b|continued\b|see\b|refer)", re.IGNORECASE)


class SegmenterState(Enum):
    SEEKING = "SEEKING"
    BUFFERING = "BUFFERING"


class QuestionSegmenter:
    """
    Buffering state machine over text lines.

    ``split_candidates`` returns everything the machine closes, while
    ``segment`` additionally applies the length/boilerplate filter and drops
    exact duplicates.
    """

    def __init__(
        self,
        min_length: int = MIN_QUESTION_LENGTH,
        max_length: int = MAX_QUESTION_LENGTH,
    ):
        self.min_length = min_length
        self.max_length = max_length
        self.state = SegmenterState.SEEKING
        self.buffer = ""
        self.candidates: list[str] = []

    def reset(self):
        """Reset the state machine for a fresh document."""
        self.state = SegmenterState.SEEKING
        self.buffer = ""
        self.candidates = []

    def split_candidates(self, text: str) -> list[str]:
        """Run the state machine over ``text`` and return raw candidates."""
        self.reset()
        if not text:
            return []

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if any(p.match(line) for p in IGNORE_PATTERNS):
                continue
            for piece in INLINE_SPLIT.split(line):
                piece = piece.strip()
                if piece:
                    self._process_line(piece)

        self.finalize()
        return self.candidates

    def segment(self, text: str) -> list[str]:
        """Candidates that look like real questions, in document order."""
        seen: set[str] = set()
        questions: list[str] = []
        for candidate in self.split_candidates(text):
            if not self.is_plausible(candidate):
                continue
            if candidate in seen:
                continue
            seen.add(candidate)
            questions.append(candidate)

        logger.debug(f"Segmented {len(questions)} questions from {len(self.candidates)} candidates")
        return questions

    def is_plausible(self, candidate: str) -> bool:
        if not self.min_length <= len(candidate) <= self.max_length:
            return False
        if "?" not in candidate:
            return False
        body = MARKER_PATTERN.sub("", candidate, count=1).strip()
        return not BOILERPLATE_PATTERN.match(body)

    def finalize(self):
        """Flush a pending buffer at end of input."""
        if self.state == SegmenterState.BUFFERING and "?" in self.buffer:
            self._emit(self.buffer)
        self.buffer = ""
        self.state = SegmenterState.SEEKING

    def _process_line(self, line: str):
        if MARKER_PATTERN.match(line):
            # A new marker force-closes whatever came before it.
            if self.state == SegmenterState.BUFFERING and "?" in self.buffer:
                self._emit(self.buffer)
            self.buffer = line
        elif self.state == SegmenterState.BUFFERING:
            self.buffer = f"{self.buffer} {line}"
        else:
            self.buffer = line
        self.state = SegmenterState.BUFFERING

        if self.buffer.rstrip().endswith("?"):
            self._emit(self.buffer)
            self.buffer = ""
            self.state = SegmenterState.SEEKING
        elif len(self.buffer) > self.max_length and "?" in self.buffer:
            self._split_oversized()

    def _split_oversized(self):
        """Emit every "?"-terminated piece of an oversized buffer."""
        parts = self.buffer.split("?")
        for part in parts[:-1]:
            self._emit(part + "?")
        self.buffer = parts[-1].strip()
        if not self.buffer:
            self.state = SegmenterState.SEEKING

    def _emit(self, text: str):
        question = normalize_question(text)
        if question:
            self.candidates.append(question)
