"""
Evaluation report extraction.

Every report page carries its data as JSON in a hidden form field
(#hdnReportData). Upstream data quality varies, so parsing never raises:
bad numbers become 0, unknown question types become numeric, and a page
without usable data yields None.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from eval_models import Evaluation, Option, Question, SearchResult
from session_client import EvalKitClient, RetryPolicy

logger = logging.getLogger(__name__)

OPEN_ENDED_TYPE = 1
QUESTION_TYPES = {
    3: 'rating',   # Likert scale
    5: 'numeric',  # numeric entry
}
COMMENT_DELIMITER = '||'

BOILERPLATE_PATTERN = re.compile(r'All comments are subject to.*$', re.DOTALL)
LEADING_NUMBER_PATTERN = re.compile(r'^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')

# Anything shorter cannot be a question list
MIN_PAYLOAD_LENGTH = 10


def parse_number(value: Any) -> float:
    """Lenient numeric read: leading number of a string, 0 when there is none"""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0

    match = LEADING_NUMBER_PATTERN.match(str(value))
    if not match:
        return 0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0


def question_type(code: Any) -> str:
    # Only integer codes are mapped
    if isinstance(code, bool) or not isinstance(code, int):
        return 'numeric'
    return QUESTION_TYPES.get(code, 'numeric')


def clean_question_text(text: Optional[str]) -> str:
    if not isinstance(text, str):
        return ''
    return BOILERPLATE_PATTERN.sub('', text).strip()


def split_comments(answer_text: Optional[str]) -> List[str]:
    if not answer_text:
        return []
    return [c.strip() for c in str(answer_text).split(COMMENT_DELIMITER) if c.strip()]


def parse_question(raw: Dict[str, Any]) -> Question:
    options = [
        Option(
            text=o.get('OptionText'),
            weight=o.get('OptionWeight'),
            count=o.get('Frequency'),
            pct=o.get('Percentage'),
        )
        for o in (raw.get('Options') or [])
        if isinstance(o, dict) and o.get('OptionText')
    ]

    # Upstream spells it "Meadian"
    median = raw.get('Meadian', raw.get('Median'))

    return Question(
        text=clean_question_text(raw.get('QuestionText')),
        type=question_type(raw.get('QuestionType')),
        mean=parse_number(raw.get('Mean')),
        median=parse_number(median),
        std=parse_number(raw.get('STD')),
        response_rate=raw.get('ResponseRate') or '',
        options=options,
    )


def parse_report_data(raw_questions: List[Dict[str, Any]], result: SearchResult) -> Evaluation:
    """Turn the raw hdnReportData question list into an Evaluation"""
    evaluation = Evaluation(
        term=result.term,
        instructor=result.instructor,
        course_code=result.course_code,
        respondents=result.respondents,
    )

    for raw in raw_questions:
        if not isinstance(raw, dict):
            continue

        code = raw.get('QuestionType')
        if code == OPEN_ENDED_TYPE and not isinstance(code, bool):
            evaluation.comments.extend(split_comments(raw.get('AnswerText')))
            continue

        evaluation.questions.append(parse_question(raw))

    return evaluation


def extract_report_payload(html: str) -> Optional[List[Dict[str, Any]]]:
    """Pull the question list out of a report page, or None if it has none"""
    soup = BeautifulSoup(html, 'html.parser')
    field = soup.find(id='hdnReportData')
    if field is None:
        return None

    raw = field.get('value') or ''
    if len(raw) < MIN_PAYLOAD_LENGTH:
        return None

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.debug(f"hdnReportData is not valid JSON: {e}")
        return None

    return data if isinstance(data, list) else None


class ReportExtractor:
    """Fetches and parses one evaluation report"""

    def __init__(self, client: EvalKitClient, policy: RetryPolicy):
        self.client = client
        self.policy = policy

    def extract(self, result: SearchResult) -> Optional[Evaluation]:
        """
        Fetch the report behind a search result.

        Returns None when the report cannot be fetched or has no published
        data. SessionExpiredError is left to propagate.
        """
        response = self.client.get_report(result.report_id, self.policy)
        if response is None:
            logger.warning(f"  Report fetch failed for {result.course_code}")
            return None

        raw_questions = extract_report_payload(response.text)
        if raw_questions is None:
            logger.warning(f"  hdnReportData empty for {result.course_code}")
            return None

        return parse_report_data(raw_questions, result)
