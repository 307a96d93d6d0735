"""
Search result pagination for EvaluationKit.

Page 1 of a search is a full HTML document. Later pages come from the
/AppApi/Report/PublicReport endpoint, whose body may be a JSON wrapper
around HTML row fragments, a bare JSON string of HTML, or plain HTML.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Union

from bs4 import BeautifulSoup

from eval_models import SearchResult
from session_client import EvalKitClient, RetryPolicy

logger = logging.getLogger(__name__)

# Stop after this many empty pages in a row
MAX_CONSECUTIVE_EMPTY = 2


@dataclass
class JsonWrapped:
    """{"hasMore": bool, "results": ["<li>...</li>", ...]}"""
    has_more: Optional[bool]
    fragments: List[str] = field(default_factory=list)

    @property
    def html(self) -> str:
        return ''.join(self.fragments)


@dataclass
class BareJsonString:
    html: str


@dataclass
class RawHtml:
    html: str


ParsedPage = Union[JsonWrapped, BareJsonString, RawHtml]


def classify_page(body: str) -> ParsedPage:
    """Decide which of the three pagination payload shapes a body is"""
    try:
        data = json.loads(body)
    except ValueError:
        return RawHtml(body)

    if isinstance(data, dict) and isinstance(data.get('results'), list):
        has_more = data.get('hasMore')
        return JsonWrapped(
            has_more=has_more if isinstance(has_more, bool) else None,
            fragments=[str(fragment) for fragment in data['results']],
        )
    if isinstance(data, str):
        return BareJsonString(data)
    # Unknown JSON structure, let the HTML parser have a go at the raw body
    return RawHtml(body)


def parse_search_results(html: str) -> List[SearchResult]:
    """Parse .sr-dataitem rows from a search page or a fragment of one"""
    soup = BeautifulSoup(html, 'html.parser')
    results = []

    for item in soup.select('.sr-dataitem'):
        view_btn = item.select_one('.sr-view-report')
        if view_btn is None:
            continue

        ids = [view_btn.get(f'data-id{i}') for i in range(4)]
        if not all(ids):
            continue

        term = ""
        term_el = item.select_one('.small')
        if term_el is not None:
            lines = [line.strip() for line in term_el.get_text().strip().split('\n')]
            lines = [line for line in lines if line]
            term = lines[0] if lines else ""

        respondents_el = item.select_one('.sr-avg .small span')

        results.append(SearchResult(
            report_id=','.join(ids),
            course_code=_text(item.select_one('.sr-dataitem-info-code')),
            title=_text(item.select_one('h2')),
            instructor=_text(item.select_one('.sr-dataitem-info-instr')),
            term=term,
            respondents=_text(respondents_el),
        ))

    return results


def _text(element) -> str:
    return element.get_text().strip() if element is not None else ""


class SearchPaginator:
    """Lazily walks every page of one search query"""

    def __init__(self,
                 client: EvalKitClient,
                 policy: RetryPolicy,
                 page_delay: float = 0.05,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.policy = policy
        self.page_delay = page_delay
        self.sleep = sleep

    def search(self, query: str, instructor: str = "") -> List[SearchResult]:
        """Collect every result of a query"""
        return list(self.iter_results(query, instructor))

    def iter_results(self, query: str, instructor: str = "") -> Iterator[SearchResult]:
        """Yield results page by page, always starting from page 1"""
        response = self.client.get_search_page(query, instructor, self.policy)
        if response is None:
            logger.warning(f"    Search '{query}' failed on page 1")
            return

        first_page = parse_search_results(response.text)
        logger.info(f"    Page 1: {len(first_page)} results")
        yield from first_page

        if not first_page:
            return

        page = 2
        total = len(first_page)
        consecutive_empty = 0

        while True:
            self.sleep(self.page_delay)

            response = self.client.get_search_api_page(query, instructor, page, self.policy)
            if response is None:
                logger.info(f"    Page {page}: fetch failed, stopping pagination")
                return

            parsed = classify_page(response.text)
            results = parse_search_results(parsed.html)

            if results:
                consecutive_empty = 0
                total += len(results)
                yield from results
                if page % 10 == 0:
                    logger.info(f"    Page {page}: +{len(results)} results ({total} total)")
            else:
                consecutive_empty += 1
                if consecutive_empty == 1:
                    preview = response.text[:200].replace('\n', ' ')
                    logger.debug(f"    Page {page}: 0 results ({len(response.text)} chars), preview: {preview}")

            if isinstance(parsed, JsonWrapped) and parsed.has_more is False:
                logger.info(f"    Page {page}: last page ({total} total)")
                return

            if consecutive_empty >= MAX_CONSECUTIVE_EMPTY:
                logger.info(f"    Pagination ended at page {page}")
                return

            page += 1
