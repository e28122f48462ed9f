"""
Classification Rules
====================
Ordered (pattern -> label) tables consumed by ``first_match``. Order matters:
the first rule that matches wins, so more specific patterns come first.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Pattern, Sequence

from .models import Level

Rule = tuple[Pattern[str], str]


def _rx(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def keyword_pattern(keyword: str) -> Pattern[str]:
    """Word-bounded keyword ("art" must not match "part", "cse" not "cdse")."""
    body = r"[\s_\-]*".join(re.escape(part) for part in re.split(r"[\s_\-]+", keyword.strip()))
    return re.compile(rf"(?<![a-z]){body}(?![a-z])", re.IGNORECASE)


def first_match(rules: Sequence[Rule], texts: Iterable[Optional[str]]) -> Optional[str]:
    """
    Return the label of the first rule matching any text.

    Texts are checked in the given order and each text is scanned with the
    whole table before moving to the next one, so an earlier text (e.g. the
    filename) always wins over a later one (e.g. body text).
    """
    for text in texts:
        if not text:
            continue
        for pattern, label in rules:
            if pattern.search(text):
                return label
    return None


# ─── Paper Tables ─────────────────────────────────────────────────────────────

# Separators seen in filenames and link text: "gs-1", "gs_1", "gs 1", "gs1"
_SEP = r"[\s_\-():.]*"

PRELIMS_PAPER_RULES: list[Rule] = [
    (_rx(r"csat"), "CSAT"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}paper{_SEP}(?:ii|2)(?![a-z\d])"), "CSAT"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:ii|2)(?![a-z\d])"), "CSAT"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}(?:paper{_SEP})?(?:i|1)(?![a-z\d])"), "GS Paper I"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:i|1)(?![a-z\d])"), "GS Paper I"),
]

MAINS_PAPER_RULES: list[Rule] = [
    (_rx(r"essay"), "Essay"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}(?:paper{_SEP})?(?:1|i)(?![a-z\d])"), "GS-1"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}(?:paper{_SEP})?(?:2|ii)(?![a-z\d])"), "GS-2"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}(?:paper{_SEP})?(?:3|iii)(?![a-z\d])"), "GS-3"),
    (_rx(rf"(?<![a-z])(?:gs|general{_SEP}studies){_SEP}(?:paper{_SEP})?(?:4|iv)(?![a-z\d])"), "GS-4"),
    (_rx(r"ethics"), "GS-4"),
    (_rx(r"public\s*administration|pub[\s_\-]*admn?"), "Public Administration"),
    (_rx(r"sociology"), "Sociology"),
    (_rx(r"anthropology"), "Anthropology"),
    (_rx(r"philosophy"), "Philosophy"),
    (_rx(r"political\s*science|pol[\s_\-]*sc"), "Political Science"),
    (_rx(rf"geography{_SEP}(?:paper|optional)"), "Geography"),
    (_rx(rf"history{_SEP}(?:paper|optional)"), "History"),
    (_rx(r"literature"), "Literature"),
    # Numbered papers without a GS label: UPSC numbers Essay as Paper I.
    (_rx(rf"(?<![a-z])paper{_SEP}(?:v|5)(?![a-z\d])"), "GS-4"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:iv|4)(?![a-z\d])"), "GS-3"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:iii|3)(?![a-z\d])"), "GS-2"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:ii|2)(?![a-z\d])"), "GS-1"),
    (_rx(rf"(?<![a-z])paper{_SEP}(?:i|1)(?![a-z\d])"), "Essay"),
]

PAPER_RULES: dict[Level, list[Rule]] = {
    Level.PRELIMS: PRELIMS_PAPER_RULES,
    Level.MAINS: MAINS_PAPER_RULES,
}

DEFAULT_PAPER: dict[Level, Optional[str]] = {
    Level.PRELIMS: "GS Paper I",
    Level.MAINS: None,
}

PRELIMS_TOKEN = _rx(r"prelim")


# ─── Theme Tables ─────────────────────────────────────────────────────────────


def _themes(pairs: Sequence[tuple[str, str]]) -> list[Rule]:
    return [(keyword_pattern(keyword), theme) for keyword, theme in pairs]


GS1_THEMES = _themes([
    ("role of women", "Role of Women in History"),
    ("freedom struggle", "Freedom Struggle"),
    ("indian national movement", "Indian National Movement"),
    ("national movement", "Indian National Movement"),
    ("gandhi", "Gandhian Phase"),
    ("social reform", "Social Reform Movement"),
    ("british", "British Rule in India"),
    ("ancient", "Ancient India"),
    ("medieval", "Medieval India"),
    ("modern", "Modern India"),
    ("women", "Role of Women in History"),
    ("climate", "Climate and Geography"),
    ("monsoon", "Climate and Geography"),
    ("geography", "Geography"),
    ("urbanization", "Indian Society"),
    ("globalization", "Indian Society"),
    ("culture", "Indian Culture and Heritage"),
    ("architecture", "Art and Architecture"),
    ("art", "Art and Architecture"),
    ("literature", "Literature"),
    ("heritage", "Indian Heritage"),
])

GS2_THEMES = _themes([
    ("directive principles", "Directive Principles"),
    ("fundamental rights", "Fundamental Rights"),
    ("international relations", "International Relations"),
    ("foreign policy", "Foreign Policy"),
    ("social justice", "Social Justice"),
    ("panchayati raj", "Local Governance"),
    ("constitution", "Constitution"),
    ("federalism", "Federalism"),
    ("judiciary", "Judiciary"),
    ("parliament", "Parliament"),
    ("executive", "Executive"),
    ("governance", "Governance"),
    ("polity", "Indian Polity"),
    ("rights", "Fundamental Rights"),
    ("welfare", "Welfare Schemes"),
    ("election", "Electoral System"),
])

GS3_THEMES = _themes([
    ("monetary policy", "Monetary Policy"),
    ("fiscal policy", "Fiscal Policy"),
    ("disaster", "Disaster Management"),
    ("biodiversity", "Biodiversity"),
    ("environment", "Environment and Ecology"),
    ("security", "Internal Security"),
    ("agriculture", "Agriculture"),
    ("banking", "Banking and Finance"),
    ("infrastructure", "Infrastructure"),
    ("industry", "Industry"),
    ("economy", "Indian Economy"),
    ("economic", "Indian Economy"),
    ("technology", "Science and Technology"),
    ("science", "Science and Technology"),
])

GS4_THEMES = _themes([
    ("emotional intelligence", "Emotional Intelligence"),
    ("case study", "Case Studies"),
    ("public service", "Public Service"),
    ("integrity", "Integrity"),
    ("aptitude", "Aptitude"),
    ("attitude", "Attitude"),
    ("values", "Values"),
    ("moral", "Moral Philosophy"),
    ("ethics", "Ethics"),
])

PRELIMS_THEMES = _themes([
    ("current affairs", "Current Affairs"),
    ("comprehension", "Reading Comprehension"),
    ("reasoning", "Logical Reasoning"),
    ("csat", "CSAT"),
    ("history", "History"),
    ("geography", "Geography"),
    ("polity", "Polity"),
    ("economy", "Economy"),
    ("science", "Science and Technology"),
    ("environment", "Environment"),
    ("aptitude", "Aptitude"),
])

# Unknown paper: every GS table in order, then the prelims table.
MERGED_THEMES = GS1_THEMES + GS2_THEMES + GS3_THEMES + PRELIMS_THEMES

_PAPER_GROUP = [
    (_rx(r"gs[\s\-]*1(?!\d)"), GS1_THEMES),
    (_rx(r"gs[\s\-]*2(?!\d)"), GS2_THEMES),
    (_rx(r"gs[\s\-]*3(?!\d)"), GS3_THEMES),
    (_rx(r"gs[\s\-]*4(?!\d)"), GS4_THEMES),
]


def theme_rules_for(paper: Optional[str], level: Optional[Level]) -> list[Rule]:
    """Pick the theme table for a paper group."""
    if paper:
        for pattern, table in _PAPER_GROUP:
            if pattern.search(paper):
                return table
    if level == Level.PRELIMS:
        return PRELIMS_THEMES
    return MERGED_THEMES


# ─── Source Trust ─────────────────────────────────────────────────────────────

GOVERNMENT_DOMAINS = (
    "upsc.gov.in",
    "tnpsc.gov.in",
    "bpsc.bih.nic.in",
    "uppsc.gov.in",
    "uppsc.up.nic.in",
    "mpsc.gov.in",
    "wbpsc.gov.in",
    "psc.wb.gov.in",
    "gpsc.gujarat.gov.in",
    "ppsc.gov.in",
    "rpsc.rajasthan.gov.in",
    "mppsc.nic.in",
    "mppsc.mp.gov.in",
    "hpsc.gov.in",
    "kpsc.kar.nic.in",
    "keralapsc.gov.in",
    "tspsc.gov.in",
    "psc.ap.gov.in",
)

GOVERNMENT_HOST_PATTERNS = [
    _rx(r"(?:^|\.)gov\.(?:in|uk|au|us|ca)$"),
    _rx(r"(?:^|\.)nic\.in$"),
    _rx(r"(?:^|\.)gov$"),
]


def is_government_host(host: Optional[str]) -> bool:
    host = (host or "").strip().lower().rstrip(".")
    if not host:
        return False
    if any(host == d or host.endswith("." + d) for d in GOVERNMENT_DOMAINS):
        return True
    return any(p.search(host) for p in GOVERNMENT_HOST_PATTERNS)
