"""
Concurrent crawl scheduling.

Search jobs (one per term, or one per missing course) sit on a shared
queue. Worker threads take jobs one at a time, run the search to
completion, pick the results worth extracting, and extract them in
fixed-width batches on a shared thread pool. Each finished batch goes to
the ProgressWriter, which applies and saves it before the worker moves on.
"""

import concurrent.futures
import logging
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from queue import Queue, Empty
from typing import Callable, Iterable, List, Optional, Tuple

from course_matcher import CourseMatcher
from crawl_config import CrawlConfig
from eval_models import BatchResult, CatalogCourse, CrawlStats, SearchResult, Term
from progress_store import ProgressWriter
from report_extractor import ReportExtractor
from search_paginator import SearchPaginator
from session_client import Heartbeat, SessionCredential, SessionExpiredError, prompt_for_credential

logger = logging.getLogger(__name__)


class CrawlCancelled(Exception):
    """Raised at a suspension point once the crawl has been cancelled."""


class CancelToken:
    """Cooperative cancellation shared by every thread of a crawl"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def check(self):
        if self._event.is_set():
            raise CrawlCancelled()

    def sleep(self, seconds: float):
        """Sleep that wakes up and raises as soon as the crawl is cancelled"""
        if self._event.wait(seconds):
            raise CrawlCancelled()


@dataclass
class SearchJob:
    """One search to run: a whole term, or a single course"""
    label: str
    query: str
    term_code: Optional[str] = None
    expected_key: Optional[str] = None
    description: str = ""


def term_jobs(terms: Iterable[Term], course: Optional[str] = None) -> List[SearchJob]:
    """One job per term; with ``course`` ('CS 106A') each search is narrowed to that course"""
    jobs = []
    for term in terms:
        if course:
            subject, _, number = course.strip().partition(' ')
            query = f"{term.code}-{subject}-{''.join(number.split())}"
        else:
            query = term.code
        jobs.append(SearchJob(
            label=term.code,
            query=query,
            term_code=term.code,
            description=f"{term.label} ({term.code})",
        ))
    return jobs


def missing_course_jobs(courses: Iterable[CatalogCourse]) -> List[SearchJob]:
    """One job per course, searched by code across all terms"""
    jobs = []
    for course in courses:
        subject, number = course.lookup_key.split('-', 1)
        jobs.append(SearchJob(
            label=course.key,
            query=f"{subject} {number}",
            term_code=None,
            expected_key=course.key,
            description=course.key,
        ))
    return jobs


class CrawlScheduler:
    """Runs search jobs on a pool of workers and extracts matches in batches"""

    def __init__(self,
                 paginator: SearchPaginator,
                 extractor: ReportExtractor,
                 matcher: CourseMatcher,
                 writer: ProgressWriter,
                 credential: SessionCredential,
                 config: CrawlConfig,
                 cancel: Optional[CancelToken] = None,
                 heartbeat: Optional[Heartbeat] = None,
                 credential_provider: Callable[[], Optional[str]] = prompt_for_credential):
        self.paginator = paginator
        self.extractor = extractor
        self.matcher = matcher
        self.writer = writer
        self.credential = credential
        self.config = config
        self.cancel = cancel or CancelToken()
        self.heartbeat = heartbeat
        self.credential_provider = credential_provider

        self.stats = CrawlStats()
        self.stats_lock = threading.Lock()
        self._extract_pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        # Extractions reserved against --limit: saved successes plus batches in flight
        self._budget_used = 0

    def _count(self, name: str, amount: int = 1):
        with self.stats_lock:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def remaining_budget(self) -> Optional[int]:
        """Extractions left under --limit, or None when unlimited"""
        if self.config.limit is None:
            return None
        with self.stats_lock:
            return max(0, self.config.limit - self._budget_used)

    def reserve_budget(self, wanted: int) -> int:
        """Claim up to ``wanted`` extractions; returns how many were granted"""
        if self.config.limit is None:
            return wanted
        with self.stats_lock:
            granted = max(0, min(wanted, self.config.limit - self._budget_used))
            self._budget_used += granted
            return granted

    def release_budget(self, unused: int):
        """Hand back reserved extractions that did not succeed"""
        if self.config.limit is None or unused <= 0:
            return
        with self.stats_lock:
            self._budget_used -= unused

    def run(self, jobs: List[SearchJob]) -> CrawlStats:
        """Process every job and return the crawl statistics"""
        self.stats = CrawlStats(jobs_total=len(jobs), start_time=datetime.now())
        self._budget_used = 0
        starting_version = self.credential.version

        job_queue = Queue()
        for job in jobs:
            job_queue.put(job)

        workers = max(1, min(self.config.workers, len(jobs) or 1))
        logger.info(f"Extraction concurrency: {self.config.concurrency} parallel HTTP requests")
        logger.info(f"Workers: {workers} parallel searches over {len(jobs)} jobs")

        self.writer.start()
        if self.heartbeat:
            self.heartbeat.start()

        try:
            with concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.config.concurrency * workers,
                    thread_name_prefix='report') as extract_pool:
                self._extract_pool = extract_pool
                with concurrent.futures.ThreadPoolExecutor(
                        max_workers=workers,
                        thread_name_prefix='worker') as worker_pool:
                    futures = [worker_pool.submit(self._worker, i, job_queue) for i in range(workers)]
                    for future in concurrent.futures.as_completed(futures):
                        future.result()
        finally:
            self._extract_pool = None
            if self.heartbeat:
                self.heartbeat.stop()

        self.stats.extracted = self.writer.extracted
        self.stats.skipped = self.writer.skipped
        self.stats.session_refreshes = self.credential.version - starting_version
        self.stats.cancelled = self.cancel.is_set()
        self.stats.end_time = datetime.now()
        return self.stats

    def _worker(self, worker_id: int, job_queue: Queue):
        """Pull jobs off the shared queue until it is empty, cancelled or over the limit"""
        while not self.cancel.is_set():
            if self.remaining_budget() == 0:
                logger.info(f"Worker {worker_id + 1}: extraction limit reached")
                break

            try:
                job = job_queue.get_nowait()
            except Empty:
                break

            logger.info(f"=== {job.description or job.label} [Worker {worker_id + 1}] ===")
            try:
                self.run_job(job)
                self.cancel.sleep(self.config.term_delay)
            except CrawlCancelled:
                logger.info(f"Worker {worker_id + 1}: cancelled during {job.label}")
                break
            except Exception as e:
                self._count('errors')
                logger.error(f"  [{job.label}] Error: {e}")
                logger.debug(traceback.format_exc())

    def run_job(self, job: SearchJob):
        """Process one job, refreshing the session credential when it expires"""
        refreshes = 0
        while True:
            try:
                self.process_job(job)
                return
            except SessionExpiredError as e:
                logger.warning(f"  [{job.label}] Session expired (HTTP {e.status_code})")
                if refreshes >= self.config.max_session_refreshes:
                    logger.error(f"  [{job.label}] Giving up after {refreshes} session refreshes")
                    self._count('errors')
                    return

                self.cancel.check()
                stale_version = e.version if e.version is not None else self.credential.version
                if not self.credential.refresh(stale_version, self.credential_provider):
                    logger.error(f"  [{job.label}] No new session credential, skipping job")
                    self._count('errors')
                    return
                refreshes += 1
                logger.info(f"  [{job.label}] Retrying with refreshed session")

    def process_job(self, job: SearchJob):
        """Search, match and extract one job"""
        prefix = f"[{job.label}]"
        logger.info(f"  {prefix} Searching: \"{job.query}\"")

        results = self.paginator.search(job.query)
        self._count('jobs_searched')
        self._count('results_found', len(results))
        logger.info(f"  {prefix} Found {len(results)} total results")
        if not results:
            return

        matched = self.matcher.select(results, job.term_code, self.writer.completed, job.expected_key)
        if not matched:
            logger.info(f"  {prefix} No new evaluations to extract")
            return

        self._count('matched', len(matched))
        width = max(1, self.config.concurrency)
        logger.info(f"  {prefix} Extracting {len(matched)} evaluations ({width} at a time)...")

        for start in range(0, len(matched), width):
            batch = matched[start:start + width]
            granted = self.reserve_budget(len(batch))
            if granted == 0:
                break
            self.extract_batch(job, batch[:granted])

            if start + width < len(matched):
                self.cancel.sleep(self.config.batch_delay)

        logger.info(f"  {prefix} Done: {len(matched)} matched "
                    f"[{len(self.writer.completed)} total, {self.writer.extracted} extracted]")

    def extract_batch(self, job: SearchJob, batch: List[Tuple[SearchResult, str]]):
        """
        Extract a batch concurrently, then hand it to the writer as one unit.

        Successes are persisted even when another report in the batch hit an
        expired session or a cancellation; that error is re-raised afterwards.
        The batch's --limit reservation is released for everything that did
        not succeed.
        """
        pool = self._extract_pool
        if pool is None:
            raise RuntimeError("extract_batch called outside of run()")

        outcome = BatchResult(job_label=job.label)
        interrupt: Optional[Exception] = None

        try:
            futures = [(pool.submit(self._extract_one, result), result, course_key)
                       for result, course_key in batch]

            for future, result, course_key in futures:
                try:
                    evaluation = future.result()
                except (SessionExpiredError, CrawlCancelled) as e:
                    interrupt = interrupt or e
                    continue

                if evaluation is None:
                    outcome.failed.append(result)
                else:
                    outcome.succeeded.append((result, course_key, evaluation))

            self.writer.submit(outcome)
        finally:
            self.release_budget(len(batch) - len(outcome.succeeded))

        if interrupt is not None:
            raise interrupt

    def _extract_one(self, result: SearchResult):
        self.cancel.check()
        try:
            return self.extractor.extract(result)
        except (SessionExpiredError, CrawlCancelled):
            raise
        except Exception as e:
            logger.warning(f"  Failed to extract {result.course_code}: {e}")
            logger.debug(traceback.format_exc())
            return None
