#!/usr/bin/env python3
"""
EvaluationKit Course Evaluation Scraper
Resumable, concurrent crawler for published course evaluation reports

Login happens out of band: paste the Cookie header of a logged-in browser
session (or set EVALKIT_COOKIE). Everything else is plain HTTP: term
searches run on parallel workers and reports are extracted in parallel
batches, with progress saved after every batch.
"""

import argparse
import logging
import signal
import sys
import traceback
from typing import Callable, List, Optional

import pandas as pd

from course_matcher import (
    CourseMatcher,
    build_course_lookup,
    find_missing_courses,
    load_catalog,
    single_course_catalog,
)
from crawl_config import CrawlConfig
from crawl_scheduler import CancelToken, CrawlScheduler, missing_course_jobs, term_jobs
from eval_models import RECENT_TERMS, CatalogCourse, CrawlStats, ProgressState, Term
from progress_store import ProgressStore, ProgressWriter
from report_extractor import ReportExtractor
from search_paginator import SearchPaginator
from session_client import (
    EvalKitClient,
    Heartbeat,
    RetryPolicy,
    SessionCredential,
    acquire_session_credential,
    prompt_for_credential,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_FILE = 'evalkit_scraper.log'


def setup_logging(debug: bool = False, log_file: Optional[str] = DEFAULT_LOG_FILE):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w'))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


class EvaluationScraper:
    """Wires the crawler components together for each operating mode"""

    def __init__(self,
                 config: CrawlConfig,
                 credential: Optional[SessionCredential] = None,
                 cancel: Optional[CancelToken] = None,
                 credential_provider: Callable[[], Optional[str]] = prompt_for_credential):
        self.config = config
        self.credential = credential
        self.cancel = cancel or CancelToken()
        self.credential_provider = credential_provider
        self.store = ProgressStore(config.output_file, config.progress_file)

    def load_catalog(self, course: Optional[str] = None) -> List[CatalogCourse]:
        if course:
            logger.info(f"Filtering for single course: {course}")
            return single_course_catalog(course)

        catalog = load_catalog(self.config.data_dir)
        logger.info(f"Loaded {len(catalog)} unique courses to match against")
        return catalog

    def load_state(self, resume: bool) -> ProgressState:
        if not resume:
            return ProgressState()
        state = self.store.load()
        logger.info(f"Resuming: {len(state.completed)} reports already scraped")
        return state

    def find_missing(self, catalog: List[CatalogCourse], state: ProgressState) -> List[CatalogCourse]:
        """Report catalog courses that have no evaluations yet"""
        missing = find_missing_courses(catalog, state.evaluations)

        logger.info(f"Courses in data files: {len(catalog)}")
        logger.info(f"Courses with evaluations: {len(state.evaluations)}")
        logger.info(f"Courses with ZERO evaluations: {len(missing)}")
        return missing

    def crawl_terms(self,
                    catalog: List[CatalogCourse],
                    state: ProgressState,
                    terms: Optional[List[Term]] = None,
                    course: Optional[str] = None) -> CrawlStats:
        """Full crawl: search every term and extract every matching report"""
        jobs = term_jobs(terms if terms is not None else RECENT_TERMS, course)
        return self.run_jobs(jobs, catalog, state)

    def retry_missing(self, catalog: List[CatalogCourse], state: ProgressState) -> CrawlStats:
        """Search each course without evaluations directly by its code"""
        missing = self.find_missing(catalog, state)
        logger.info(f"Retry-missing: searching {len(missing)} courses directly by code...")
        return self.run_jobs(missing_course_jobs(missing), catalog, state)

    def ensure_credential(self) -> bool:
        if self.credential is not None:
            return True
        cookie = acquire_session_credential()
        if not cookie:
            return False
        self.credential = SessionCredential(cookie)
        return True

    def run_jobs(self, jobs, catalog: List[CatalogCourse], state: ProgressState) -> CrawlStats:
        if not self.ensure_credential():
            raise RuntimeError("No session credential available")

        config = self.config
        client = EvalKitClient(
            config.base_url,
            self.credential,
            pool_size=config.concurrency * max(1, config.workers),
            timeout=config.request_timeout
        )
        heartbeat = Heartbeat(client, config.keep_alive_interval) if config.keep_alive_interval > 0 else None

        paginator = SearchPaginator(
            client,
            RetryPolicy(config.search_retry, sleep=self.cancel.sleep),
            page_delay=config.page_delay,
            sleep=self.cancel.sleep
        )
        extractor = ReportExtractor(client, RetryPolicy(config.report_retry, sleep=self.cancel.sleep))
        matcher = CourseMatcher(build_course_lookup(catalog))
        writer = ProgressWriter(self.store, state)

        scheduler = CrawlScheduler(
            paginator=paginator,
            extractor=extractor,
            matcher=matcher,
            writer=writer,
            credential=self.credential,
            config=config,
            cancel=self.cancel,
            heartbeat=heartbeat,
            credential_provider=self.credential_provider
        )

        try:
            stats = scheduler.run(jobs)
        finally:
            writer.close()
            client.close()

        self.log_final_stats(stats, writer)
        return stats

    def log_final_stats(self, stats: CrawlStats, writer: ProgressWriter):
        """Log the end-of-crawl summary"""
        logger.info("📊 CRAWL STATISTICS")
        logger.info("=" * 60)
        logger.info(f"⏱️  Total time: {stats.duration_seconds / 60:.1f} minutes")
        logger.info(f"🔎 Searches run: {stats.jobs_searched}/{stats.jobs_total}")
        logger.info(f"📄 Search results: {stats.results_found}")
        logger.info(f"🎯 Evaluations matched: {stats.matched}")
        logger.info(f"✅ Evaluations extracted: {stats.extracted}")
        logger.info(f"⏭️  Skipped (no data): {stats.skipped}")
        logger.info(f"📚 Courses with evaluations: {writer.course_count}")
        logger.info(f"🔑 Session refreshes: {stats.session_refreshes}")
        logger.info(f"❌ Errors: {stats.errors}")
        logger.info(f"💾 Output: {self.config.output_file}")
        if stats.cancelled:
            logger.info("⏹️ Crawl was cancelled before finishing; run again with --resume")


def save_missing_courses(missing: List[CatalogCourse], output_file: str):
    """Export the missing-course listing as CSV"""
    rows = [
        {
            'course_key': course.key,
            'subject': course.subject,
            'code': course.code,
            'instructors': '; '.join(course.instructor_last_names),
        }
        for course in missing
    ]
    df = pd.DataFrame(rows, columns=['course_key', 'subject', 'code', 'instructors'])
    df.to_csv(output_file, index=False)
    logger.info(f"💾 Saved {len(missing)} missing courses to {output_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='EvaluationKit Course Evaluation Scraper',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full crawl of all recent terms
  python scraper.py

  # Continue a crawl that stopped part way
  python scraper.py --resume --workers 2

  # Single course
  python scraper.py --course "CS 106A"

  # List catalog courses with no evaluations, then go look for them
  python scraper.py --find-missing --missing-csv missing.csv
  python scraper.py --retry-missing
"""
    )
    parser.add_argument('--resume', action='store_true', help='Resume from the saved progress file')
    parser.add_argument('--limit', type=int, help='Only extract the first N evaluations (for testing)')
    parser.add_argument('--course', help='Scrape a single course by code, e.g. "CS 106A"')
    parser.add_argument('--find-missing', action='store_true',
                        help='List catalog courses without evaluations and exit (no network)')
    parser.add_argument('--retry-missing', action='store_true',
                        help='Search each course without evaluations by its code and extract what exists')
    parser.add_argument('--concurrency', type=int, default=20, help='Parallel report requests per batch')
    parser.add_argument('--workers', type=int, help='Parallel searches (default: 5, 1 with --course)')
    parser.add_argument('--data-dir', help='Directory with the course catalog JSON files')
    parser.add_argument('--output', '-o', help='Evaluations output file')
    parser.add_argument('--progress-file', help='Progress checkpoint file')
    parser.add_argument('--missing-csv', help='With --find-missing, also write the list to this CSV file')
    parser.add_argument('--log-file', default=DEFAULT_LOG_FILE, help='Log file (empty to disable)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


def config_from_args(args) -> CrawlConfig:
    config = CrawlConfig.from_env()
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.output:
        config.output_file = args.output
    if args.progress_file:
        config.progress_file = args.progress_file

    config.concurrency = max(1, args.concurrency)
    config.limit = args.limit
    if args.workers:
        config.workers = max(1, args.workers)
    elif args.course:
        config.workers = 1
    else:
        config.workers = min(5, len(RECENT_TERMS))
    return config


def install_signal_handlers(cancel: CancelToken):
    """First Ctrl-C stops the crawl at the next safe point, a second one exits immediately"""
    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.info("⏹️ Stop requested, finishing in-flight batches...")
        cancel.cancel()

    signal.signal(signal.SIGINT, handler)
    # SIGTERM is not reliably available on Windows
    if hasattr(signal, 'SIGTERM') and sys.platform != 'win32':
        signal.signal(signal.SIGTERM, handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug, args.log_file or None)

    config = config_from_args(args)

    logger.info("🎓 EvaluationKit Course Evaluation Scraper")
    logger.info(f"📁 Output file: {config.output_file}")
    logger.info(f"⚙️ Workers: {config.workers}, concurrency: {config.concurrency}")

    cancel = CancelToken()
    scraper = EvaluationScraper(config, cancel=cancel)

    catalog = scraper.load_catalog(args.course)
    if not catalog:
        logger.error(f"No courses found in {config.data_dir}")
        return 1

    # Missing-course modes always work from the saved progress
    state = scraper.load_state(args.resume or args.find_missing or args.retry_missing)

    if args.find_missing:
        missing = scraper.find_missing(catalog, state)
        logger.info("These courses have no evaluation data at all:")
        for course in missing:
            logger.info(f"  {course.key}")
        logger.info("Many of these may simply not exist on EvaluationKit.")
        logger.info("To search & extract any that do exist, run with --retry-missing")
        if args.missing_csv:
            save_missing_courses(missing, args.missing_csv)
        return 0

    if not scraper.ensure_credential():
        logger.error("No session credential: set EVALKIT_COOKIE or paste the cookie when prompted")
        return 1

    install_signal_handlers(cancel)

    try:
        if args.retry_missing:
            stats = scraper.retry_missing(catalog, state)
        else:
            stats = scraper.crawl_terms(catalog, state, course=args.course)
    except KeyboardInterrupt:
        logger.info("⏹️ Scraping interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"💥 Error during scraping: {e}")
        logger.debug(traceback.format_exc())
        return 1

    logger.info("✅ Scraping complete!" if not stats.cancelled else "⏹️ Scraping stopped")
    return 130 if stats.cancelled else 0


if __name__ == "__main__":
    sys.exit(main())
