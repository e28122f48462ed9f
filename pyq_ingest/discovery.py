"""
Link Discoverer
===============
Finds candidate question-paper documents on listing pages.

Anchors are resolved against the page URL, filtered to document extensions
and to the exam family, and annotated with level/paper hints taken from the
filename and the surrounding link text.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from .exams import ExamProfile
from .fetcher import DocumentFetcher, FetchResult
from .models import CandidateDocument, Level
from .rules import PAPER_RULES, PRELIMS_TOKEN, first_match

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = (".pdf",)

# Links a crawl never follows
SKIP_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".zip", ".rar",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".mp4", ".mp3",
)

# Context taken from the anchor's parent element
PARENT_TEXT_CHARS = 300


def canonical_url(url: str) -> str:
    """Absolute URL without fragment, with lowercased scheme and host."""
    url, _ = urldefrag(url.strip())
    p = urlparse(url)
    return urlunparse((p.scheme.lower(), p.netloc.lower(), p.path or "/", p.params, p.query, ""))


def url_filename(url: str) -> str:
    return urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]


def is_document_url(url: str, extensions: Sequence[str] = DOCUMENT_EXTENSIONS) -> bool:
    return urlparse(url).path.lower().endswith(tuple(extensions))


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


@dataclass
class DiscoveryResult:
    """Candidates plus what was filtered out or could not be read."""
    candidates: list[CandidateDocument] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    failed_pages: list[str] = field(default_factory=list)
    pages_visited: int = 0

    def merge(self, other: "DiscoveryResult"):
        known = {c.url for c in self.candidates}
        for candidate in other.candidates:
            if candidate.url not in known:
                known.add(candidate.url)
                self.candidates.append(candidate)
        self.excluded.extend(u for u in other.excluded if u not in self.excluded)
        self.failed_pages.extend(other.failed_pages)
        self.pages_visited += other.pages_visited


class LinkDiscoverer:
    """
    Listing-page scanner for one exam family.

    A listing page that cannot be fetched is logged and reported in
    ``failed_pages``; it never aborts discovery of the remaining pages.
    """

    def __init__(
        self,
        fetcher: DocumentFetcher,
        profile: ExamProfile,
        extensions: Sequence[str] = DOCUMENT_EXTENSIONS,
        level_override: Optional[Level] = None,
    ):
        self.fetcher = fetcher
        self.profile = profile
        self.extensions = tuple(e.lower() for e in extensions)
        self.level_override = level_override

    def discover(self, listing_urls: Iterable[str]) -> DiscoveryResult:
        """Scan each listing page once and collect candidate documents."""
        result = DiscoveryResult()
        for url in listing_urls:
            page = self._fetch_page(url, result)
            if page is None:
                continue
            candidates, excluded, _ = self.parse_listing(page.text, page.final_url or url)
            result.merge(DiscoveryResult(candidates=candidates, excluded=excluded))

        logger.info(
            f"Discovered {len(result.candidates)} candidate documents "
            f"({len(result.excluded)} excluded, {len(result.failed_pages)} pages failed)"
        )
        return result

    def crawl(self, root: str, max_depth: int = 2, max_pages: int = 60) -> DiscoveryResult:
        """
        Breadth-first crawl from ``root`` restricted to its host.

        Every visited page contributes its document links; non-document
        links on the same host are queued until ``max_depth`` or
        ``max_pages`` is reached.
        """
        result = DiscoveryResult()
        root = canonical_url(root)
        host = _host(root)
        queue: deque[tuple[str, int]] = deque([(root, 0)])
        seen = {root}
        fetched = 0

        while queue and fetched < max_pages:
            url, depth = queue.popleft()
            fetched += 1
            page = self._fetch_page(url, result)
            if page is None:
                continue

            candidates, excluded, pages = self.parse_listing(page.text, page.final_url or url)
            result.merge(DiscoveryResult(candidates=candidates, excluded=excluded))

            if depth >= max_depth:
                continue
            for link in pages:
                if link not in seen and _host(link) == host:
                    seen.add(link)
                    queue.append((link, depth + 1))

        logger.info(
            f"Crawl of {root} visited {result.pages_visited} pages, "
            f"found {len(result.candidates)} candidate documents"
        )
        return result

    def parse_listing(
        self, html: str, page_url: str
    ) -> tuple[list[CandidateDocument], list[str], list[str]]:
        """
        Split a listing page's anchors into documents and follow-up pages.

        Returns:
            (candidates, excluded document URLs, same-site page URLs)
        """
        soup = BeautifulSoup(html, "html.parser")
        candidates: list[CandidateDocument] = []
        excluded: list[str] = []
        pages: list[str] = []
        seen: set[str] = set()

        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith(("#", "mailto:", "javascript:", "tel:")):
                continue

            url = canonical_url(urljoin(page_url, href))
            if urlparse(url).scheme not in ("http", "https") or url in seen:
                continue
            seen.add(url)

            if not is_document_url(url, self.extensions):
                if not urlparse(url).path.lower().endswith(SKIP_EXTENSIONS):
                    pages.append(url)
                continue

            link_text = anchor.get_text(" ", strip=True)
            parent_text = ""
            if anchor.parent is not None:
                parent_text = anchor.parent.get_text(" ", strip=True)[:PARENT_TEXT_CHARS]

            candidate = self.make_candidate(url, page_url, link_text, parent_text)
            if candidate is None:
                excluded.append(url)
            else:
                candidates.append(candidate)

        return candidates, excluded, pages

    def make_candidate(
        self,
        url: str,
        source_page: Optional[str] = None,
        link_text: str = "",
        parent_text: str = "",
    ) -> Optional[CandidateDocument]:
        """Apply the exam-family filter and attach hints; None when filtered."""
        filename = url_filename(url)

        if self.profile.excludes([filename, link_text]):
            logger.debug(f"Excluded (other exam): {filename}")
            return None
        if not self.profile.includes([filename, link_text, parent_text]):
            logger.debug(f"Excluded (not in {self.profile.code} family): {filename}")
            return None
        return self.build_candidate(url, source_page, link_text, parent_text)

    def build_candidate(
        self,
        url: str,
        source_page: Optional[str] = None,
        link_text: str = "",
        parent_text: str = "",
    ) -> CandidateDocument:
        """Candidate with level/paper hints, without the exam-family filter."""
        filename = url_filename(url)
        level = self.level_override or self.level_hint(filename, link_text, parent_text)
        return CandidateDocument(
            url=url,
            source_page=source_page,
            level_hint=level,
            paper_hint=first_match(PAPER_RULES[level], [filename, link_text, parent_text]),
            link_text=link_text,
        )

    @staticmethod
    def level_hint(*texts: Optional[str]) -> Level:
        if any(t and PRELIMS_TOKEN.search(t) for t in texts):
            return Level.PRELIMS
        return Level.MAINS

    def _fetch_page(self, url: str, result: DiscoveryResult) -> Optional[FetchResult]:
        page = self.fetcher.fetch(url)
        if not page.ok:
            logger.warning(f"Listing page unavailable: {url} ({page.status.value}: {page.error})")
            result.failed_pages.append(url)
            return None
        result.pages_visited += 1
        return page
