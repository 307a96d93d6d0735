"""
HTTP access to the EvaluationKit portal.

Holds the session credential (the cookie header copied out of a logged-in
browser), wraps every request in a bounded retry policy, and keeps the
session warm with a background heartbeat.
"""

import logging
import os
import threading
import time
from queue import Queue, Empty
from typing import Callable, Dict, Optional, Tuple

import requests

from crawl_config import RetryConfig

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'

# Statuses that mean the cookie is no longer accepted
SESSION_EXPIRED_STATUSES = (401, 403)


class SessionExpiredError(Exception):
    """The portal rejected the session credential (HTTP 401/403)."""

    def __init__(self, status_code: int, version: Optional[int] = None):
        super().__init__(f"Session expired (HTTP {status_code})")
        self.status_code = status_code
        self.version = version


def build_headers(cookie: str) -> Dict[str, str]:
    """Outbound headers for a request made with the given cookie string"""
    return {
        'Cookie': cookie,
        'User-Agent': USER_AGENT,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
    }


class SessionCredential:
    """Swappable holder for the cookie string shared by all workers.

    Readers take a ``(value, version)`` snapshot per request. When a request
    fails with an expired session, the worker calls ``refresh`` with the
    version it used; only the first caller for that version asks the provider
    for a new cookie, the rest wait for it and pick up the new value.
    """

    def __init__(self, value: str):
        self._value = value
        self._version = 0
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def snapshot(self) -> Tuple[str, int]:
        with self._lock:
            return self._value, self._version

    def headers(self) -> Dict[str, str]:
        value, _ = self.snapshot()
        return build_headers(value)

    def swap(self, value: str) -> int:
        """Replace the credential and return the new version"""
        with self._lock:
            self._value = value
            self._version += 1
            return self._version

    def refresh(self, stale_version: int, provider: Callable[[], Optional[str]]) -> bool:
        """Replace a credential that failed at ``stale_version``.

        Returns True once the cell holds a newer credential than
        ``stale_version``, False if the provider could not supply one.
        """
        with self._refresh_lock:
            if self.version != stale_version:
                # Another worker already refreshed while we were waiting
                return True

            new_value = provider()
            if not new_value:
                return False

            version = self.swap(new_value.strip())
            logger.info(f"🔑 Session credential refreshed (version {version})")
            return True


def acquire_session_credential(prompt: bool = True) -> Optional[str]:
    """Get a cookie string from EVALKIT_COOKIE, or ask the operator to paste one."""
    cookie = os.getenv('EVALKIT_COOKIE', '').strip()
    if cookie:
        logger.info(f"Using session cookie from EVALKIT_COOKIE ({len(cookie.split(';'))} cookies)")
        return cookie

    if not prompt:
        return None
    return prompt_for_credential()


def prompt_for_credential() -> Optional[str]:
    """Block until the operator pastes a fresh cookie header from a logged-in browser"""
    print("\n" + "=" * 60)
    print("Log in to EvaluationKit in your browser, open the Student Reporting")
    print("search page, then paste the Cookie request header below.")
    print("=" * 60)
    try:
        cookie = input("Cookie: ").strip()
    except EOFError:
        return None
    return cookie or None


class RetryPolicy:
    """Bounded retries with exponential backoff for a single HTTP call."""

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep):
        self.config = config or RetryConfig()
        self.sleep = sleep

    def delays(self):
        """Backoff schedule, one delay per retry"""
        delay = self.config.base_delay
        for _ in range(self.config.max_retries):
            yield min(delay, self.config.max_delay)
            delay *= self.config.backoff_factor

    def call(self, send: Callable[[], requests.Response], label: str = "") -> Optional[requests.Response]:
        """
        Run ``send`` until it succeeds or retries run out.

        Returns the response on success and None on a terminal failure.
        Raises SessionExpiredError on 401/403 without retrying.
        """
        schedule = self.delays()
        attempt = 0

        while True:
            attempt += 1
            try:
                response = send()
            except requests.RequestException as e:
                reason = str(e)
            else:
                status = response.status_code
                if status in SESSION_EXPIRED_STATUSES:
                    raise SessionExpiredError(status)
                if status < 400:
                    return response
                if status < 500:
                    logger.warning(f"  HTTP {status} for {label} (not retrying)")
                    return None
                reason = f"HTTP {status}"

            delay = next(schedule, None)
            if delay is None:
                logger.warning(f"  {label}: {reason} after {attempt} attempts, giving up")
                return None

            logger.debug(f"  {label}: {reason} (attempt {attempt}), retrying in {delay:.1f}s")
            self.sleep(delay)


class EvalKitClient:
    """Shared HTTP client for all workers, backed by a pool of requests sessions."""

    def __init__(self,
                 base_url: str,
                 credential: SessionCredential,
                 pool_size: int = 10,
                 timeout: float = 30.0):
        self.base_url = base_url.rstrip('/')
        self.credential = credential
        self.timeout = timeout

        self.search_url = f"{self.base_url}/Report/Public/Results"
        self.search_api_url = f"{self.base_url}/AppApi/Report/PublicReport"
        # The report popup lives under /Reports/ (with an s), not /Report/Public/
        self.report_url = f"{self.base_url}/Reports/StudentReport.aspx"
        self.keep_alive_url = f"{self.base_url}/Report/Public"

        self.session_pool = Queue()
        self.init_session_pool(pool_size)

    def init_session_pool(self, pool_size: int):
        """Initialize a pool of session objects for reuse"""
        for _ in range(pool_size):
            self.session_pool.put(requests.Session())

    def get_session(self) -> requests.Session:
        """Get a session from the pool"""
        try:
            return self.session_pool.get_nowait()
        except Empty:
            return requests.Session()

    def return_session(self, session: requests.Session):
        """Return a session to the pool"""
        self.session_pool.put_nowait(session)

    def close(self):
        while True:
            try:
                self.session_pool.get_nowait().close()
            except Empty:
                break

    def get(self, url: str, policy: RetryPolicy, params: Optional[Dict] = None,
            extra_headers: Optional[Dict[str, str]] = None, label: str = "") -> Optional[requests.Response]:
        """GET through the retry policy, reading the current credential on every attempt"""
        used_version = [self.credential.version]

        def send():
            cookie, version = self.credential.snapshot()
            used_version[0] = version
            headers = build_headers(cookie)
            if extra_headers:
                headers.update(extra_headers)

            session = self.get_session()
            try:
                return session.get(url, params=params, headers=headers, timeout=self.timeout)
            finally:
                self.return_session(session)

        try:
            return policy.call(send, label or url)
        except SessionExpiredError as e:
            e.version = used_version[0]
            raise

    def get_search_page(self, query: str, instructor: str, policy: RetryPolicy) -> Optional[requests.Response]:
        """First page of a search: a full HTML document"""
        params = {'Course': query, 'Instructor': instructor, 'Search': 'true'}
        return self.get(self.search_url, policy, params=params, label=f"search '{query}' page 1")

    def get_search_api_page(self, query: str, instructor: str, page: int,
                            policy: RetryPolicy) -> Optional[requests.Response]:
        """Page 2+ of a search, fetched the way the 'Show More' button does"""
        params = {
            'Course': query,
            'Instructor': instructor,
            'Search': 'true',
            'page': page,
            '_': int(time.time() * 1000),
        }
        headers = {'X-Requested-With': 'XMLHttpRequest', 'Accept': '*/*'}
        return self.get(self.search_api_url, policy, params=params, extra_headers=headers,
                        label=f"search '{query}' page {page}")

    def get_report(self, report_id: str, policy: RetryPolicy) -> Optional[requests.Response]:
        # Ids are comma-joined and must not be percent-encoded
        return self.get(f"{self.report_url}?id={report_id}", policy, label=f"report {report_id}")

    def ping(self) -> int:
        """Single keep-alive request, no retries"""
        session = self.get_session()
        try:
            response = session.get(self.keep_alive_url, headers=self.credential.headers(), timeout=self.timeout)
            return response.status_code
        finally:
            self.return_session(session)


class Heartbeat:
    """Background thread that pings the portal so the session does not idle out."""

    def __init__(self, client: EvalKitClient, interval: float = 180.0):
        self.client = client
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.pings = 0

    def start(self):
        self._thread = threading.Thread(target=self._run, name='evalkit-heartbeat', daemon=True)
        self._thread.start()
        logger.info(f"💓 Session keep-alive started (ping every {self.interval:.0f}s)")

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                status = self.client.ping()
                self.pings += 1
                logger.debug(f"Keep-alive ping: HTTP {status}")
            except requests.RequestException as e:
                # Best effort only; active scraping keeps the session alive too
                logger.debug(f"Keep-alive ping failed: {e}")

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
