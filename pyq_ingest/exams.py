"""
Exam Registry
=============
Known examining bodies with their official listing pages and the keywords
that separate their papers from unrelated exams on shared listing pages.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .rules import keyword_pattern


class ExamProfile(BaseModel):
    """Exam family definition used by discovery and sweeps."""
    code: str
    name: str = ""
    language: str = "en"
    listing_pages: list[str] = Field(default_factory=list)
    include_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)

    def includes(self, texts: Iterable[Optional[str]]) -> bool:
        """Any include keyword in any text; no include keywords means all."""
        if not self.include_keywords:
            return True
        patterns = [keyword_pattern(k) for k in self.include_keywords]
        return any(p.search(t) for t in texts if t for p in patterns)

    def excludes(self, texts: Iterable[Optional[str]]) -> bool:
        patterns = [keyword_pattern(k) for k in self.exclude_keywords]
        return any(p.search(t) for t in texts if t for p in patterns)


UPSC_EXCLUDE = ["cdse", "cds", "nda", "na", "ifs", "ies", "iss", "cisf", "capf", "cms", "geo scientist"]

UPSC = ExamProfile(
    code="UPSC",
    name="Union Public Service Commission - Civil Services",
    listing_pages=[
        "https://upsc.gov.in/examinations/previous-question-papers/civil-services-examination",
        "https://upsc.gov.in/examinations/previous-question-papers",
    ],
    include_keywords=["cse", "civil services", "gs", "general studies", "essay", "csat"],
    exclude_keywords=UPSC_EXCLUDE,
)


def _psc(code: str, name: str, language: str, *sites: str) -> ExamProfile:
    return ExamProfile(code=code, name=name, language=language, listing_pages=list(sites))


STATE_PSCS = [
    _psc(
        "TNPSC", "Tamil Nadu Public Service Commission", "ta",
        "https://tnpsc.gov.in/english/AISO-questions.html",
        "https://www.tnpsc.gov.in/Previous_Question_Papers.html",
    ),
    _psc(
        "MPSC", "Maharashtra Public Service Commission", "mr",
        "https://mpsc.gov.in/prev_que_papers/9",
        "https://mpsc.gov.in/QuestionPapers/PreviousYearQuestionPapers",
    ),
    _psc(
        "BPSC", "Bihar Public Service Commission", "hi",
        "https://bpsc.bih.nic.in/PreviousQuestionPaper.aspx",
        "https://bpsc.bih.nic.in/QPaper.aspx",
    ),
    _psc(
        "WBPSC", "West Bengal Public Service Commission", "bn",
        "https://psc.wb.gov.in/previous_year_question_paper.jsp",
        "https://wbpsc.gov.in/previous_year_question_papers",
    ),
    _psc(
        "PPSC", "Punjab Public Service Commission", "pa",
        "https://ppsc.gov.in/PreviousYearPapers.aspx",
        "https://ppsc.gov.in/QuestionPapers",
    ),
    _psc(
        "GPSC", "Gujarat Public Service Commission", "gu",
        "https://gpsc.gujarat.gov.in/PreviousYearQuestionPapers",
        "https://gpsc-ojas.gujarat.gov.in/PreviousYearPapers",
    ),
    _psc(
        "KPSC", "Karnataka Public Service Commission", "kn",
        "https://kpsc.kar.nic.in/PreviousYearQuestionPapers",
        "https://kpsc.kar.nic.in/QuestionPapers",
    ),
    _psc(
        "KERALA PSC", "Kerala Public Service Commission", "ml",
        "https://www.keralapsc.gov.in/previous-question-papers",
        "https://www.keralapsc.gov.in/question-papers",
    ),
    _psc(
        "TSPSC", "Telangana State Public Service Commission", "te",
        "https://www.tspsc.gov.in/PreviousYearQuestionPapers",
        "https://www.tspsc.gov.in/QuestionPapers",
    ),
    _psc(
        "APPSC", "Andhra Pradesh Public Service Commission", "te",
        "https://psc.ap.gov.in/PreviousYearQuestionPapers",
        "https://psc.ap.gov.in/QuestionPapers",
    ),
    _psc(
        "RPSC", "Rajasthan Public Service Commission", "hi",
        "https://rpsc.rajasthan.gov.in/previousquestionpapers.aspx",
        "https://rpsc.rajasthan.gov.in/PreviousYearQuestionPapers",
    ),
    _psc(
        "UPPSC", "Uttar Pradesh Public Service Commission", "hi",
        "https://uppsc.gov.in/PreviousYearQuestionPapers",
        "https://uppsc.gov.in/QuestionPapers",
    ),
    _psc(
        "MPPSC", "Madhya Pradesh Public Service Commission", "hi",
        "https://mppsc.nic.in/PreviousYearQuestionPapers",
        "https://mppsc.nic.in/QuestionPapers",
    ),
    _psc(
        "HPSC", "Haryana Public Service Commission", "hi",
        "https://hpsc.gov.in/PreviousYearQuestionPapers",
        "https://hpsc.gov.in/QuestionPapers",
    ),
]

EXAM_PROFILES: dict[str, ExamProfile] = {
    p.code: p for p in [UPSC, *STATE_PSCS]
}


def get_profile(code: str) -> ExamProfile:
    """
    Look up an exam profile by code (case-insensitive).

    Unknown codes get a permissive profile: no listing pages and no
    keyword filtering.
    """
    key = " ".join(code.split()).upper()
    if not key:
        raise ValueError("exam code must not be empty")
    return EXAM_PROFILES.get(key) or ExamProfile(code=key, name=key)


def list_profiles() -> list[ExamProfile]:
    return list(EXAM_PROFILES.values())
