"""
Test Suite for Fetching and Discovery
=====================================
Retry policy, the document fetcher (against a mocked requests session) and
listing-page discovery (against a scripted fetcher).
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from pyq_ingest.discovery import (
    DiscoveryResult,
    LinkDiscoverer,
    canonical_url,
    is_document_url,
)
from pyq_ingest.errors import AttemptTimeout, FetchError, FetchNotFound, ProviderError
from pyq_ingest.exams import UPSC, get_profile
from pyq_ingest.fetcher import DocumentFetcher, FetchResult, FetchStatus
from pyq_ingest.models import Level
from pyq_ingest.retry import MAX_TIMEBOX_THREADS, call_with_retry, is_transient, run_with_timeout


class FakeFetcher:
    """Serves canned pages by URL; anything else is a 404."""

    def __init__(self, pages: dict):
        self.pages = pages
        self.requested: list[str] = []

    def fetch(self, url: str) -> FetchResult:
        self.requested.append(url)
        body = self.pages.get(url)
        if body is None:
            return FetchResult(url=url, status=FetchStatus.NOT_FOUND, status_code=404, error="HTTP 404")
        if isinstance(body, str):
            body = body.encode("utf-8")
        return FetchResult(url=url, status=FetchStatus.OK, content=body, final_url=url, status_code=200)


# ═══════════════════════════════════════════════════════════════════════════════
# RETRY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestRetry:
    """Test bounded retries and time-boxes."""

    def test_transient_failure_retried(self):
        func = MagicMock(side_effect=[FetchError("reset"), "ok"])
        assert call_with_retry(func, "a", attempts=3, backoff=0) == "ok"
        assert func.call_count == 2

    def test_permanent_failure_not_retried(self):
        func = MagicMock(side_effect=FetchNotFound("HTTP 404", status_code=404))
        with pytest.raises(FetchNotFound):
            call_with_retry(func, attempts=3, backoff=0)
        assert func.call_count == 1

    def test_attempts_exhausted(self):
        func = MagicMock(side_effect=FetchError("HTTP 503", status_code=503))
        with pytest.raises(FetchError):
            call_with_retry(func, attempts=3, backoff=0)
        assert func.call_count == 3

    def test_classification(self):
        assert is_transient(FetchError("x"))
        assert not is_transient(FetchError("x", permanent=True))
        assert not is_transient(ProviderError("x", permanent=True))
        assert is_transient(requests.ConnectionError())
        assert not is_transient(ValueError())

    def test_timeout(self):
        with pytest.raises(AttemptTimeout):
            run_with_timeout(time.sleep, 1.0, timeout=0.05, description="sleep")

    def test_no_timeout_runs_inline(self):
        assert run_with_timeout(lambda x: x * 2, 21) == 42

    def test_abandoned_threads_bounded(self):
        release = threading.Event()
        try:
            for _ in range(MAX_TIMEBOX_THREADS + 4):
                with pytest.raises(AttemptTimeout):
                    run_with_timeout(release.wait, 5, timeout=0.01)
            live = [t for t in threading.enumerate() if t.name.startswith("pyq-timebox")]
            assert len(live) <= MAX_TIMEBOX_THREADS
        finally:
            release.set()


# ═══════════════════════════════════════════════════════════════════════════════
# FETCHER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocumentFetcher:
    """Test the tri-state fetcher."""

    def _make_resp(self, status=200, body=b"", headers=None, url=None):
        resp = MagicMock()
        resp.status_code = status
        resp.iter_content.return_value = [body]
        resp.headers = headers or {}
        resp.url = url
        return resp

    def _make_fetcher(self, responses, **kwargs):
        session = MagicMock()
        session.get.side_effect = responses
        return DocumentFetcher(session=session, backoff=0, **kwargs), session

    def test_ok(self):
        resp = self._make_resp(
            body=b"%PDF-1.4 data",
            headers={"Content-Type": "application/pdf"},
            url="https://upsc.gov.in/final.pdf",
        )
        fetcher, session = self._make_fetcher([resp])
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.ok
        assert result.content == b"%PDF-1.4 data"
        assert result.content_type == "application/pdf"
        assert result.final_url == "https://upsc.gov.in/final.pdf"
        resp.close.assert_called_once()
        assert session.get.call_args.kwargs["verify"] is True

    def test_not_found_not_retried(self):
        fetcher, session = self._make_fetcher([self._make_resp(404)] * 3)
        result = fetcher.fetch("https://upsc.gov.in/missing.pdf")

        assert result.status == FetchStatus.NOT_FOUND
        assert result.status_code == 404
        assert session.get.call_count == 1

    def test_server_error_retried(self):
        fetcher, session = self._make_fetcher([
            self._make_resp(503),
            self._make_resp(body=b"hello"),
        ])
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.ok
        assert session.get.call_count == 2

    def test_retries_bounded(self):
        fetcher, session = self._make_fetcher([self._make_resp(500)] * 5, retries=3)
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.status == FetchStatus.FAILED
        assert result.status_code == 500
        assert session.get.call_count == 3

    def test_forbidden_is_permanent(self):
        fetcher, session = self._make_fetcher([self._make_resp(403)] * 3)
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.status == FetchStatus.FAILED
        assert session.get.call_count == 1

    def test_connection_error(self):
        fetcher, session = self._make_fetcher(requests.ConnectionError("refused"), retries=2)
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.status == FetchStatus.FAILED
        assert "refused" in result.error
        assert session.get.call_count == 2

    def test_too_many_redirects(self):
        fetcher, session = self._make_fetcher(requests.TooManyRedirects("loop"))
        result = fetcher.fetch("https://upsc.gov.in/a.pdf")

        assert result.status == FetchStatus.FAILED
        assert session.get.call_count == 1

    def test_size_cap(self):
        resp = self._make_resp(body=b"x" * 20)
        fetcher, session = self._make_fetcher([resp] * 3, max_bytes=10)
        result = fetcher.fetch("https://upsc.gov.in/big.pdf")

        assert result.status == FetchStatus.FAILED
        assert "exceeds" in result.error
        assert session.get.call_count == 1
        resp.close.assert_called()

    def test_slow_drip_cut_off(self):
        def drip(chunk_size=None):
            for _ in range(20):
                time.sleep(0.1)
                yield b"%PDF"

        resp = self._make_resp()
        resp.iter_content.side_effect = drip
        fetcher, session = self._make_fetcher([resp], timeout=0.3, retries=1)

        start = time.monotonic()
        result = fetcher.fetch("https://upsc.gov.in/slow.pdf")

        assert time.monotonic() - start < 1.0
        assert result.status == FetchStatus.FAILED
        assert "exceeded" in result.error
        assert session.get.call_count == 1

    def test_stalled_read_abandoned(self):
        def stall(chunk_size=None):
            time.sleep(1.5)
            yield b"%PDF"

        resp = self._make_resp()
        resp.iter_content.side_effect = stall
        fetcher, _ = self._make_fetcher([resp], timeout=0.2, retries=1)

        start = time.monotonic()
        result = fetcher.fetch("https://upsc.gov.in/stalled.pdf")

        assert time.monotonic() - start < 1.0
        assert result.status == FetchStatus.FAILED
        assert "exceeded" in result.error

    def test_insecure_hosts(self):
        fetcher, session = self._make_fetcher(
            [self._make_resp(body=b"a"), self._make_resp(body=b"b")],
            insecure_hosts=["bpsc.bih.nic.in"],
        )
        fetcher.fetch("https://www.bpsc.bih.nic.in/a.pdf")
        assert session.get.call_args.kwargs["verify"] is False
        fetcher.fetch("https://upsc.gov.in/a.pdf")
        assert session.get.call_args.kwargs["verify"] is True

    def test_allow_insecure(self):
        fetcher, _ = self._make_fetcher([], allow_insecure=True)
        assert fetcher.is_insecure_host("https://anything.example/")


# ═══════════════════════════════════════════════════════════════════════════════
# DISCOVERY TESTS
# ═══════════════════════════════════════════════════════════════════════════════

LISTING_URL = "https://upsc.gov.in/examinations/previous-question-papers"

LISTING_HTML = """
<html><body>
<ul>
  <li><a href="/papers/CSE-GS-1-2023.pdf">General Studies Paper I</a></li>
  <li><a href="papers/CSE-GS-2-2023.pdf#page=2">General Studies Paper II</a></li>
  <li>Civil Services (Preliminary)
      <a href="https://upsc.gov.in/papers/QP-CSP-23-GS1.pdf">Download</a></li>
  <li><a href="/papers/NDA-NA-II-2023.pdf">NDA &amp; NA Examination</a></li>
  <li><a href="/papers/CSE-GS-1-2023.pdf">duplicate</a></li>
  <li><a href="/examinations/archive">Archive</a></li>
  <li><a href="/images/logo.png">logo</a></li>
  <li><a href="mailto:webmaster@upsc.gov.in">mail</a></li>
  <li><a href="#top">top</a></li>
  <li><a href="https://other.example.org/page">elsewhere</a></li>
</ul>
</body></html>
"""


class TestUrlHelpers:
    """Test URL helpers."""

    def test_canonical_url(self):
        assert canonical_url("HTTPS://UPSC.gov.in/Papers/A.pdf#page=3") == "https://upsc.gov.in/Papers/A.pdf"
        assert canonical_url("https://upsc.gov.in") == "https://upsc.gov.in/"

    def test_is_document_url(self):
        assert is_document_url("https://upsc.gov.in/a.PDF?download=1")
        assert not is_document_url("https://upsc.gov.in/a.html")
        assert is_document_url("https://upsc.gov.in/a.docx", extensions=(".pdf", ".docx"))


class TestLinkDiscoverer:
    """Test listing-page parsing, filtering and crawling."""

    def _make_discoverer(self, pages=None, profile=UPSC, **kwargs):
        fetcher = FakeFetcher(pages or {})
        return LinkDiscoverer(fetcher, profile, **kwargs), fetcher

    def test_parse_listing(self):
        discoverer, _ = self._make_discoverer()
        candidates, excluded, pages = discoverer.parse_listing(LISTING_HTML, LISTING_URL)

        urls = [c.url for c in candidates]
        assert urls == [
            "https://upsc.gov.in/papers/CSE-GS-1-2023.pdf",
            "https://upsc.gov.in/examinations/papers/CSE-GS-2-2023.pdf",
            "https://upsc.gov.in/papers/QP-CSP-23-GS1.pdf",
        ]
        assert excluded == ["https://upsc.gov.in/papers/NDA-NA-II-2023.pdf"]
        assert pages == [
            "https://upsc.gov.in/examinations/archive",
            "https://other.example.org/page",
        ]

    def test_hints(self):
        discoverer, _ = self._make_discoverer()
        candidates, _, _ = discoverer.parse_listing(LISTING_HTML, LISTING_URL)
        gs1, gs2, prelims = candidates

        assert gs1.level_hint == Level.MAINS
        assert gs1.paper_hint == "GS-1"
        assert gs1.source_page == LISTING_URL
        assert gs1.link_text == "General Studies Paper I"
        assert gs2.paper_hint == "GS-2"
        assert prelims.level_hint == Level.PRELIMS
        assert prelims.paper_hint == "GS Paper I"

    def test_level_override(self):
        discoverer, _ = self._make_discoverer(level_override=Level.PRELIMS)
        candidate = discoverer.build_candidate("https://upsc.gov.in/papers/CSE-GS-1-2023.pdf")
        assert candidate.level_hint == Level.PRELIMS

    def test_permissive_profile_keeps_everything(self):
        discoverer, _ = self._make_discoverer(profile=get_profile("XYZ PSC"))
        candidates, excluded, _ = discoverer.parse_listing(LISTING_HTML, LISTING_URL)
        assert len(candidates) == 4
        assert excluded == []

    def test_discover_survives_failed_page(self):
        discoverer, fetcher = self._make_discoverer({LISTING_URL: LISTING_HTML})
        result = discoverer.discover(["https://upsc.gov.in/broken", LISTING_URL])

        assert result.failed_pages == ["https://upsc.gov.in/broken"]
        assert result.pages_visited == 1
        assert len(result.candidates) == 3
        assert fetcher.requested == ["https://upsc.gov.in/broken", LISTING_URL]

    def test_discover_dedups_across_pages(self):
        second = "https://upsc.gov.in/examinations/mirror"
        discoverer, _ = self._make_discoverer({LISTING_URL: LISTING_HTML, second: LISTING_HTML})
        result = discoverer.discover([LISTING_URL, second])
        assert len(result.candidates) == 3
        assert result.pages_visited == 2

    def test_crawl_depth_and_host(self):
        pages = {
            "https://upsc.gov.in/": (
                '<a href="/a">A</a><a href="/b">B</a>'
                '<a href="https://other.example.org/x">X</a>'
                '<a href="/root-GS-2-2021.pdf">GS 2</a>'
            ),
            "https://upsc.gov.in/a": '<a href="/c">C</a><a href="/a-GS-3-2022.pdf">GS 3</a>',
            "https://upsc.gov.in/c": '<a href="/c-GS-4-2020.pdf">GS 4</a>',
        }
        discoverer, fetcher = self._make_discoverer(pages)
        result = discoverer.crawl("https://upsc.gov.in", max_depth=1)

        assert fetcher.requested == [
            "https://upsc.gov.in/",
            "https://upsc.gov.in/a",
            "https://upsc.gov.in/b",
        ]
        assert [c.url for c in result.candidates] == [
            "https://upsc.gov.in/root-GS-2-2021.pdf",
            "https://upsc.gov.in/a-GS-3-2022.pdf",
        ]
        assert result.failed_pages == ["https://upsc.gov.in/b"]
        assert result.pages_visited == 2

    def test_crawl_page_cap(self):
        pages = {"https://upsc.gov.in/": '<a href="/a">A</a><a href="/b">B</a>'}
        discoverer, fetcher = self._make_discoverer(pages)
        discoverer.crawl("https://upsc.gov.in/", max_pages=2)
        assert len(fetcher.requested) == 2

    def test_result_merge(self):
        a = DiscoveryResult(excluded=["x"], pages_visited=1)
        b = DiscoveryResult(excluded=["x", "y"], failed_pages=["p"], pages_visited=2)
        a.merge(b)
        assert a.excluded == ["x", "y"]
        assert a.failed_pages == ["p"]
        assert a.pages_visited == 3
