"""
Catalog loading and search-result matching.

Search result course codes look like 'F24-CS-106A-01', possibly several of
them joined with '/' when a course is cross-listed. They are resolved
against the local course catalog to pick the key evaluations are stored
under.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from eval_models import CatalogCourse, SearchResult

logger = logging.getLogger(__name__)

QUARTER_FILES = ['fall.json', 'winter.json', 'spring.json', 'summer.json']
FALLBACK_FILE = 'courses.json'


def get_last_name(full_name: str) -> str:
    """'Percy Liang' -> 'Liang'"""
    if not full_name:
        return ""
    parts = full_name.split()
    return parts[-1] if parts else ""


def _instructor_names(course: Dict) -> List[str]:
    names = list(course.get('instructors') or [])
    for section in course.get('sections') or []:
        for meeting in section.get('meetings') or []:
            names.extend(meeting.get('instructors') or [])
    return names


def _courses_in(data) -> List[Dict]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return data.get('courses') or []
    return []


def parse_catalog_courses(courses: Iterable[Dict], seen: Set[str]) -> List[CatalogCourse]:
    """Build CatalogCourse entries, skipping keys already in ``seen``"""
    catalog = []
    for c in courses:
        if not isinstance(c, dict) or not c.get('subject') or not c.get('code'):
            continue

        key = f"{c['subject']} {c['code']}"
        if key in seen:
            continue
        seen.add(key)

        last_names = []
        for name in _instructor_names(c):
            last = get_last_name(name)
            if last and last not in last_names:
                last_names.append(last)

        catalog.append(CatalogCourse(
            subject=c['subject'],
            code=c['code'],
            id=c.get('id') or key,
            instructor_last_names=last_names,
        ))
    return catalog


def load_catalog(data_dir: str) -> List[CatalogCourse]:
    """Load the known courses from the quarter files, falling back to courses.json"""
    data_path = Path(data_dir)
    seen = set()
    catalog = []

    for filename in QUARTER_FILES:
        filepath = data_path / filename
        if not filepath.exists():
            continue
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse {filename}: {e}")
            continue
        catalog.extend(parse_catalog_courses(_courses_in(data), seen))

    if not catalog:
        fallback = data_path / FALLBACK_FILE
        if fallback.exists():
            logger.info(f"Using fallback {FALLBACK_FILE}...")
            with open(fallback, 'r', encoding='utf-8') as f:
                catalog.extend(parse_catalog_courses(_courses_in(json.load(f)), seen))

    return catalog


def single_course_catalog(course: str) -> List[CatalogCourse]:
    """Catalog holding just one course given as 'SUBJECT NUMBER'"""
    subject, _, code = course.strip().partition(' ')
    return [CatalogCourse(subject=subject, code=code.strip(), id=course.strip())]


def build_course_lookup(catalog: Iterable[CatalogCourse]) -> Dict[str, str]:
    """'CS-106A' -> 'CS 106A'; the first catalog entry for a code wins"""
    lookup = {}
    for course in catalog:
        lookup.setdefault(course.lookup_key, course.key)
    return lookup


def find_missing_courses(catalog: Iterable[CatalogCourse], evaluations: Dict) -> List[CatalogCourse]:
    """Catalog courses with no evaluations at all"""
    return [course for course in catalog if course.key not in evaluations]


class CourseMatcher:
    """Resolves search results to catalog course keys"""

    def __init__(self, lookup: Dict[str, str]):
        self.lookup = lookup

    def match(self, result: SearchResult, term_code: Optional[str]) -> Optional[str]:
        """
        Return the course key for the first cross-listed code found in the catalog.

        When ``term_code`` is given, segments from any other term are ignored.
        """
        for segment in result.cross_listed_codes():
            parts = segment.split('-')
            if len(parts) < 3:
                continue
            if term_code is not None and parts[0] != term_code:
                continue

            course_key = self.lookup.get(f"{parts[1]}-{parts[2]}")
            if course_key:
                return course_key
        return None

    def select(self,
               results: Iterable[SearchResult],
               term_code: Optional[str],
               completed: Set[str],
               expected_key: Optional[str] = None) -> List[Tuple[SearchResult, str]]:
        """New, resolvable results paired with their course key, in search order"""
        selected = []
        seen = set()
        for result in results:
            if result.course_code in completed or result.course_code in seen:
                continue
            course_key = self.match(result, term_code)
            if course_key is None:
                continue
            if expected_key is not None and course_key != expected_key:
                continue
            seen.add(result.course_code)
            selected.append((result, course_key))
        return selected
