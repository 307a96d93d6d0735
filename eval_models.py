"""
Data models for the EvaluationKit report scraper.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Dict, Optional, Set, Any


@dataclass(frozen=True)
class Term:
    """An academic term as the evaluation portal names it"""
    code: str
    label: str


# Crawl priority order (Fall 2023 onward)
RECENT_TERMS = [
    Term('F23', 'Fall 2023'),
    Term('W24', 'Winter 2024'),
    Term('Sp24', 'Spring 2024'),
    Term('Su24', 'Summer 2024'),
    Term('F24', 'Fall 2024'),
    Term('W25', 'Winter 2025'),
    Term('Sp25', 'Spring 2025'),
    Term('Su25', 'Summer 2025'),
    Term('F25', 'Fall 2025'),
]


@dataclass
class CatalogCourse:
    """A course known to the local catalog"""
    subject: str
    code: str
    id: str = ""
    instructor_last_names: List[str] = None

    def __post_init__(self):
        if self.instructor_last_names is None:
            self.instructor_last_names = []

    @property
    def key(self) -> str:
        """Course key used to group evaluations, e.g. 'CS 106A'"""
        return self.id or f"{self.subject} {self.code}"

    @property
    def lookup_key(self) -> str:
        """Whitespace-free 'SUBJECT-NUMBER' form used by search result codes"""
        return f"{''.join(self.subject.split())}-{''.join(self.code.split())}"


@dataclass
class SearchResult:
    """One row of a report search"""
    report_id: str
    course_code: str = ""
    title: str = ""
    instructor: str = ""
    term: str = ""
    respondents: str = ""

    def cross_listed_codes(self) -> List[str]:
        """Split a cross-listed code like 'F24-CS-106A-01/F24-SYMSYS-106A-01'"""
        return [segment.strip() for segment in self.course_code.split('/')]


@dataclass
class Option:
    """One answer option of a rated question"""
    text: str
    weight: Any = None
    count: Any = None
    pct: Any = None


@dataclass
class Question:
    """Aggregated answers to one evaluation question"""
    text: str
    type: str = "numeric"
    mean: float = 0.0
    median: float = 0.0
    std: float = 0.0
    response_rate: str = ""
    options: List[Option] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'type': self.type,
            'mean': self.mean,
            'median': self.median,
            'std': self.std,
            'responseRate': self.response_rate,
            'options': [asdict(option) for option in self.options],
        }


@dataclass
class Evaluation:
    """A normalized evaluation report for one course offering"""
    term: str = ""
    instructor: str = ""
    course_code: str = ""
    respondents: str = ""
    questions: List[Question] = field(default_factory=list)
    comments: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the shape stored in the evaluations document"""
        return {
            'term': self.term,
            'instructor': self.instructor,
            'courseCode': self.course_code,
            'respondents': self.respondents,
            'questions': [question.to_dict() for question in self.questions],
            'comments': list(self.comments),
        }


@dataclass
class ProgressState:
    """Everything a resumed crawl needs: the evaluations so far and the completed course codes"""
    evaluations: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    completed: Set[str] = field(default_factory=set)


@dataclass
class BatchResult:
    """Outcome of one extraction batch, sent to the progress writer"""
    job_label: str
    succeeded: List[tuple] = field(default_factory=list)  # (SearchResult, course_key, Evaluation)
    failed: List[SearchResult] = field(default_factory=list)


@dataclass
class CrawlStats:
    """Counters reported at the end of a crawl"""
    jobs_total: int = 0
    jobs_searched: int = 0
    results_found: int = 0
    matched: int = 0
    extracted: int = 0
    skipped: int = 0
    errors: int = 0
    session_refreshes: int = 0
    cancelled: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()
