"""
Configuration dataclasses for the EvaluationKit report scraper.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://stanford.evaluationkit.com"
DEFAULT_DATA_DIR = "public/data"
DEFAULT_OUTPUT_FILE = "public/data/evaluations.json"
DEFAULT_PROGRESS_FILE = ".eval-scrape-progress.json"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0


@dataclass
class CrawlConfig:
    """Main configuration for a crawl run."""
    base_url: str = DEFAULT_BASE_URL
    data_dir: str = DEFAULT_DATA_DIR
    output_file: str = DEFAULT_OUTPUT_FILE
    progress_file: str = DEFAULT_PROGRESS_FILE

    # Parallelism
    concurrency: int = 20
    workers: int = 5
    limit: Optional[int] = None

    # Politeness delays (seconds)
    request_timeout: float = 30.0
    page_delay: float = 0.05
    batch_delay: float = 0.3
    term_delay: float = 0.5

    # Session handling
    keep_alive_interval: float = 180.0
    max_session_refreshes: int = 3

    # Report fetches get 3 attempts, search pages get 4
    report_retry: RetryConfig = field(default_factory=lambda: RetryConfig(max_retries=2))
    search_retry: RetryConfig = field(default_factory=lambda: RetryConfig(max_retries=3))

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "CrawlConfig":
        """Build a config from environment variables, loading .env first if present."""
        env_path = Path(env_file) if env_file else Path.cwd() / '.env'
        if env_path.exists():
            load_dotenv(env_path)

        return cls(
            base_url=os.getenv('EVALKIT_BASE_URL', DEFAULT_BASE_URL).rstrip('/'),
            data_dir=os.getenv('EVALKIT_DATA_DIR', DEFAULT_DATA_DIR),
            output_file=os.getenv('EVALKIT_OUTPUT_FILE', DEFAULT_OUTPUT_FILE),
            progress_file=os.getenv('EVALKIT_PROGRESS_FILE', DEFAULT_PROGRESS_FILE),
        )
