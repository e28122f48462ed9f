"""
Document Fetcher
================
Downloads listing pages and documents with a bounded timeout, bounded
redirects and a small retry budget. 404s are reported as NOT_FOUND and are
never retried; everything else that fails ends up as FAILED.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlparse

import requests
import urllib3
from urllib3.exceptions import InsecureRequestWarning

from .errors import AttemptTimeout, FetchError, FetchNotFound
from .retry import TRANSIENT_STATUS, call_with_retry, run_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "pyq-ingest/1.0 (+previous-year question archive)"
NOT_FOUND_STATUS = {404, 410}


class FetchStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class FetchResult:
    """Tri-state fetch outcome."""
    url: str
    status: FetchStatus
    content: bytes = b""
    content_type: str = ""
    final_url: str = ""
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class DocumentFetcher:
    """
    HTTP client for listing pages and documents.

    ``timeout`` bounds one whole attempt (connect, headers and body), so a
    server trickling bytes cannot hold a download open indefinitely.

    Insecure TLS is opt-in: either globally via ``allow_insecure`` or for a
    named set of hosts (government portals with broken certificate chains).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        max_redirects: int = 5,
        retries: int = 3,
        backoff: float = 1.0,
        max_bytes: int = 100 * 1024 * 1024,
        allow_insecure: bool = False,
        insecure_hosts: Iterable[str] = (),
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.retries = retries
        self.backoff = backoff
        self.max_bytes = max_bytes
        self.allow_insecure = allow_insecure
        self.insecure_hosts = {h.strip().lower() for h in insecure_hosts if h.strip()}

        self.session = session or requests.Session()
        self.session.max_redirects = max_redirects
        self.session.headers.update({"User-Agent": user_agent})

        if allow_insecure or self.insecure_hosts:
            urllib3.disable_warnings(InsecureRequestWarning)

    def fetch(self, url: str) -> FetchResult:
        """
        Fetch ``url`` and classify the outcome.

        Returns:
            FetchResult with status OK (content populated), NOT_FOUND, or
            FAILED (error populated). Never raises for network problems.
        """
        try:
            return call_with_retry(
                self._timed_get,
                url,
                attempts=self.retries,
                backoff=self.backoff,
                description=f"GET {url}",
            )
        except FetchNotFound as e:
            logger.info(f"Not found: {url}")
            return FetchResult(
                url=url,
                status=FetchStatus.NOT_FOUND,
                status_code=e.status_code,
                error=str(e),
            )
        except FetchError as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            return FetchResult(
                url=url,
                status=FetchStatus.FAILED,
                status_code=e.status_code,
                error=str(e),
            )

    def is_insecure_host(self, url: str) -> bool:
        if self.allow_insecure:
            return True
        host = (urlparse(url).hostname or "").lower()
        return any(
            host == h or host.endswith("." + h) for h in self.insecure_hosts
        )

    def _timed_get(self, url: str) -> FetchResult:
        """One attempt, abandoned once ``timeout`` has passed."""
        try:
            return run_with_timeout(self._get, url, timeout=self.timeout, description=f"GET {url}")
        except AttemptTimeout as e:
            raise FetchError(f"download exceeded {self.timeout:g}s") from e

    def _get(self, url: str) -> FetchResult:
        verify = not self.is_insecure_host(url)
        deadline = time.monotonic() + self.timeout
        try:
            resp = self.session.get(
                url,
                timeout=(self.connect_timeout, self.timeout),
                allow_redirects=True,
                stream=True,
                verify=verify,
            )
        except requests.TooManyRedirects as e:
            raise FetchError(f"too many redirects: {e}", permanent=True) from e
        except requests.exceptions.InvalidURL as e:
            raise FetchError(f"invalid url: {e}", permanent=True) from e
        except requests.exceptions.MissingSchema as e:
            raise FetchError(f"invalid url: {e}", permanent=True) from e
        except requests.RequestException as e:
            raise FetchError(str(e)) from e

        try:
            status = resp.status_code
            if status in NOT_FOUND_STATUS:
                raise FetchNotFound(f"HTTP {status}", status_code=status)
            if status >= 400:
                raise FetchError(
                    f"HTTP {status}",
                    status_code=status,
                    permanent=status not in TRANSIENT_STATUS,
                )

            content = bytearray()
            try:
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if not chunk:
                        continue
                    content.extend(chunk)
                    if time.monotonic() > deadline:
                        raise FetchError(
                            f"download exceeded {self.timeout:g}s",
                            status_code=status,
                        )
                    if len(content) > self.max_bytes:
                        raise FetchError(
                            f"response exceeds {self.max_bytes} bytes",
                            status_code=status,
                            permanent=True,
                        )
            except requests.RequestException as e:
                raise FetchError(f"read failed: {e}", status_code=status) from e

            return FetchResult(
                url=url,
                status=FetchStatus.OK,
                content=bytes(content),
                content_type=(resp.headers or {}).get("Content-Type", ""),
                final_url=resp.url or url,
                status_code=status,
            )
        finally:
            resp.close()
