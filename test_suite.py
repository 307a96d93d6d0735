#!/usr/bin/env python3
"""
Comprehensive Test Suite for the EvaluationKit Course Evaluation Scraper
"""

import html
import json
import os
import shutil
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import Mock

import requests

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from course_matcher import (
    CourseMatcher,
    build_course_lookup,
    find_missing_courses,
    get_last_name,
    load_catalog,
    single_course_catalog,
)
from crawl_config import CrawlConfig, RetryConfig
from eval_models import BatchResult, CatalogCourse, Evaluation, ProgressState, Question, SearchResult
from progress_store import ProgressStore, ProgressWriter
from report_extractor import (
    extract_report_payload,
    parse_number,
    parse_report_data,
    question_type,
)
from session_client import RetryPolicy, SessionCredential, SessionExpiredError


def make_response(status_code=200, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    return response


def report_page(questions):
    """Report page with the question list embedded the way the portal does it"""
    payload = html.escape(json.dumps(questions), quote=True)
    return f'<html><body><form><input type="hidden" id="hdnReportData" value="{payload}" /></form></body></html>'


class TestCatalogCourse(unittest.TestCase):
    """Test CatalogCourse dataclass"""

    def test_key_defaults_to_subject_and_code(self):
        course = CatalogCourse(subject="CS", code="106A")
        self.assertEqual(course.key, "CS 106A")
        self.assertEqual(course.instructor_last_names, [])

    def test_key_prefers_id(self):
        course = CatalogCourse(subject="CS", code="106A", id="cs-106a-2025")
        self.assertEqual(course.key, "cs-106a-2025")

    def test_lookup_key_strips_whitespace(self):
        course = CatalogCourse(subject="ME ", code=" 10 1")
        self.assertEqual(course.lookup_key, "ME-101")


class TestEvaluationSerialization(unittest.TestCase):
    """Test the evaluations document shape"""

    def test_to_dict_uses_document_field_names(self):
        evaluation = Evaluation(
            term="Fall 2025",
            instructor="Jane Doe",
            course_code="F25-CS-106A-01",
            respondents="10 of 20",
            questions=[Question(text="Overall", type="rating", mean=4.5, response_rate="50%")],
            comments=["Great"],
        )

        data = evaluation.to_dict()

        self.assertEqual(data["courseCode"], "F25-CS-106A-01")
        self.assertEqual(data["questions"][0]["responseRate"], "50%")
        self.assertEqual(data["questions"][0]["options"], [])
        self.assertEqual(data["comments"], ["Great"])


class TestCourseMatcher(unittest.TestCase):
    """Test matching scraped course codes against the catalog"""

    def setUp(self):
        self.matcher = CourseMatcher({"CS-106A": "CS 106A", "MATH-51": "MATH 51"})

    def test_cross_listed_match_either_order(self):
        first = SearchResult(report_id="1,2,3,4", course_code="F25-CS-106A-01/F25-SYMSYS-106A-01")
        second = SearchResult(report_id="1,2,3,4", course_code="F25-SYMSYS-106A-01/F25-CS-106A-01")

        self.assertEqual(self.matcher.match(first, "F25"), "CS 106A")
        self.assertEqual(self.matcher.match(second, "F25"), "CS 106A")

    def test_term_code_must_match(self):
        result = SearchResult(report_id="1,2,3,4", course_code="F24-CS-106A-01/F24-SYMSYS-106A-01")
        self.assertIsNone(self.matcher.match(result, "F25"))

    def test_no_term_guard(self):
        result = SearchResult(report_id="1,2,3,4", course_code="W24-MATH-51-02")
        self.assertEqual(self.matcher.match(result, None), "MATH 51")

    def test_short_segments_ignored(self):
        result = SearchResult(report_id="1,2,3,4", course_code="CS-106A/")
        self.assertIsNone(self.matcher.match(result, "CS"))

    def test_unknown_course(self):
        result = SearchResult(report_id="1,2,3,4", course_code="F25-XYZ-999-01")
        self.assertIsNone(self.matcher.match(result, "F25"))

    def test_first_match_wins(self):
        matcher = CourseMatcher({"CS-106A": "CS 106A", "SYMSYS-106A": "SYMSYS 106A"})
        result = SearchResult(report_id="1,2,3,4", course_code="F25-SYMSYS-106A-01/F25-CS-106A-01")
        self.assertEqual(matcher.match(result, "F25"), "SYMSYS 106A")

    def test_select_skips_completed_and_unresolvable(self):
        results = [
            SearchResult(report_id="a", course_code="F25-CS-106A-01"),
            SearchResult(report_id="b", course_code="F25-CS-106A-02"),
            SearchResult(report_id="c", course_code="F25-XYZ-999-01"),
            SearchResult(report_id="d", course_code="F25-MATH-51-01"),
        ]

        selected = self.matcher.select(results, "F25", completed={"F25-CS-106A-01"})

        self.assertEqual(
            [(r.report_id, key) for r, key in selected],
            [("b", "CS 106A"), ("d", "MATH 51")]
        )

    def test_select_drops_duplicate_rows(self):
        results = [
            SearchResult(report_id="a", course_code="F25-CS-106A-01"),
            SearchResult(report_id="a", course_code="F25-CS-106A-01"),
        ]
        self.assertEqual(len(self.matcher.select(results, "F25", completed=set())), 1)

    def test_select_expected_key(self):
        results = [
            SearchResult(report_id="a", course_code="F24-CS-106A-01"),
            SearchResult(report_id="b", course_code="F24-MATH-51-01"),
        ]

        selected = self.matcher.select(results, None, completed=set(), expected_key="MATH 51")

        self.assertEqual([r.report_id for r, _ in selected], ["b"])


class TestCatalogLoading(unittest.TestCase):
    """Test catalog loading from the quarter JSON files"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, name, data):
        with open(os.path.join(self.temp_dir, name), 'w', encoding='utf-8') as f:
            f.write(data if isinstance(data, str) else json.dumps(data))

    def test_load_quarter_files(self):
        self.write("fall.json", [
            {"subject": "CS", "code": "106A", "instructors": ["Mehran Sahami", "Chris Piech"]},
            {"subject": "MATH", "code": "51"},
            {"subject": "", "code": "1"},
        ])
        self.write("winter.json", {"courses": [
            {"subject": "CS", "code": "106A", "instructors": ["Someone Else"]},
            {"subject": "CS", "code": "107", "id": "CS 107",
             "sections": [{"meetings": [{"instructors": ["Nick Troccoli", "Chris Gregg"]}]}]},
        ]})

        catalog = load_catalog(self.temp_dir)

        self.assertEqual([c.key for c in catalog], ["CS 106A", "MATH 51", "CS 107"])
        self.assertEqual(catalog[0].instructor_last_names, ["Sahami", "Piech"])
        self.assertEqual(catalog[2].instructor_last_names, ["Troccoli", "Gregg"])

    def test_unparseable_file_skipped(self):
        self.write("fall.json", "{not json")
        self.write("spring.json", [{"subject": "PHYS", "code": "41"}])

        catalog = load_catalog(self.temp_dir)

        self.assertEqual([c.key for c in catalog], ["PHYS 41"])

    def test_fallback_courses_json(self):
        self.write("courses.json", {"courses": [{"subject": "CHEM", "code": "31A"}]})
        self.assertEqual([c.key for c in load_catalog(self.temp_dir)], ["CHEM 31A"])

    def test_missing_directory(self):
        self.assertEqual(load_catalog(os.path.join(self.temp_dir, "nope")), [])

    def test_single_course_catalog(self):
        catalog = single_course_catalog("CS 106A")
        self.assertEqual(build_course_lookup(catalog), {"CS-106A": "CS 106A"})

    def test_build_lookup_first_entry_wins(self):
        catalog = [
            CatalogCourse(subject="CS", code="106A", id="first"),
            CatalogCourse(subject="CS", code="106A", id="second"),
        ]
        self.assertEqual(build_course_lookup(catalog), {"CS-106A": "first"})

    def test_find_missing_courses(self):
        catalog = [CatalogCourse(subject="CS", code="106A"), CatalogCourse(subject="MATH", code="51")]
        missing = find_missing_courses(catalog, {"CS 106A": [{}]})
        self.assertEqual([c.key for c in missing], ["MATH 51"])

    def test_get_last_name(self):
        self.assertEqual(get_last_name("Percy Liang"), "Liang")
        self.assertEqual(get_last_name("  "), "")
        self.assertEqual(get_last_name(""), "")


class TestReportParsing(unittest.TestCase):
    """Test extraction of evaluation data from report payloads"""

    def setUp(self):
        self.result = SearchResult(
            report_id="1,2,3,4",
            course_code="F25-CS-106A-01",
            instructor="Jane Doe",
            term="Fall 2025",
            respondents="10 of 20",
        )

    def test_open_ended_and_rating_questions(self):
        raw = [
            {"QuestionType": 1, "QuestionText": "Comments",
             "AnswerText": "Great class"},
            {"QuestionType": 3, "QuestionText": "Overall quality",
             "Mean": "4.25", "Meadian": "4.00", "STD": "0.8", "ResponseRate": "10/20 (50%)",
             "Options": [
                 {"OptionText": "Excellent", "OptionWeight": 5, "Frequency": 4, "Percentage": "40%"},
                 {"OptionText": "", "OptionWeight": 0, "Frequency": 0, "Percentage": "0%"},
             ]},
        ]

        evaluation = parse_report_data(raw, self.result)

        self.assertEqual(evaluation.comments, ["Great class"])
        self.assertEqual(len(evaluation.questions), 1)
        question = evaluation.questions[0]
        self.assertEqual(question.type, "rating")
        self.assertEqual(question.mean, 4.25)
        self.assertEqual(question.median, 4.0)
        self.assertEqual(question.std, 0.8)
        self.assertEqual(question.response_rate, "10/20 (50%)")
        self.assertEqual(len(question.options), 1)
        self.assertEqual(question.options[0].text, "Excellent")
        self.assertEqual(question.options[0].count, 4)

        self.assertEqual(evaluation.course_code, "F25-CS-106A-01")
        self.assertEqual(evaluation.instructor, "Jane Doe")
        self.assertEqual(evaluation.term, "Fall 2025")
        self.assertEqual(evaluation.respondents, "10 of 20")

    def test_unparseable_numbers_default_to_zero(self):
        raw = [{"QuestionType": 3, "QuestionText": "Q", "Mean": "N/A", "Meadian": None, "STD": "nan"}]

        question = parse_report_data(raw, self.result).questions[0]

        self.assertEqual(question.mean, 0)
        self.assertEqual(question.median, 0)
        self.assertEqual(question.std, 0)

    def test_correctly_spelled_median_accepted(self):
        raw = [{"QuestionType": 5, "QuestionText": "Hours per week", "Median": "7.5"}]
        self.assertEqual(parse_report_data(raw, self.result).questions[0].median, 7.5)

    def test_unknown_type_degrades_to_numeric(self):
        raw = [{"QuestionType": 42, "QuestionText": "Mystery", "Mean": "3"}]

        question = parse_report_data(raw, self.result).questions[0]

        self.assertEqual(question.type, "numeric")
        self.assertEqual(question.mean, 3.0)
        self.assertEqual(question_type(None), "numeric")

    def test_non_scalar_type_degrades_to_numeric(self):
        raw = [
            {"QuestionType": [3], "QuestionText": "Q", "Mean": "4"},
            {"QuestionType": {"code": 3}, "QuestionText": "R", "Mean": "2"},
            {"QuestionType": True, "QuestionText": ["not", "text"], "AnswerText": "ignored"},
        ]

        evaluation = parse_report_data(raw, self.result)

        self.assertEqual([q.type for q in evaluation.questions], ["numeric", "numeric", "numeric"])
        self.assertEqual(evaluation.questions[0].mean, 4.0)
        self.assertEqual(evaluation.questions[2].text, "")
        self.assertEqual(evaluation.comments, [])
        self.assertEqual(question_type("3"), "numeric")
        self.assertEqual(question_type(3), "rating")

    def test_comment_splitting(self):
        raw = [
            {"QuestionType": 1, "AnswerText": " Loved it || ||Too fast|| "},
            {"QuestionType": 1, "AnswerText": "Office hours helped"},
            {"QuestionType": 1, "AnswerText": None},
        ]

        evaluation = parse_report_data(raw, self.result)

        self.assertEqual(evaluation.comments, ["Loved it", "Too fast", "Office hours helped"])
        self.assertEqual(evaluation.questions, [])

    def test_boilerplate_stripped_from_question_text(self):
        raw = [{"QuestionType": 3,
                "QuestionText": "What would you tell a friend? All comments are subject to review."}]
        self.assertEqual(parse_report_data(raw, self.result).questions[0].text, "What would you tell a friend?")

    def test_non_dict_entries_skipped(self):
        raw = ["garbage", None, {"QuestionType": 3, "QuestionText": "Q"}]
        self.assertEqual(len(parse_report_data(raw, self.result).questions), 1)

    def test_parse_number(self):
        self.assertEqual(parse_number("4.5"), 4.5)
        self.assertEqual(parse_number("4.5 out of 5"), 4.5)
        self.assertEqual(parse_number(3), 3)
        self.assertEqual(parse_number(".5"), 0.5)
        self.assertEqual(parse_number("-1.2"), -1.2)
        self.assertEqual(parse_number(""), 0)
        self.assertEqual(parse_number("abc"), 0)
        self.assertEqual(parse_number(float("inf")), 0)
        self.assertEqual(parse_number(True), 0)

    def test_extract_report_payload(self):
        questions = [{"QuestionType": 3, "QuestionText": "Q <b>&amp;</b> A"}]
        self.assertEqual(extract_report_payload(report_page(questions)), questions)

    def test_extract_report_payload_missing_or_short(self):
        self.assertIsNone(extract_report_payload("<html><body>No report</body></html>"))
        self.assertIsNone(extract_report_payload('<input id="hdnReportData" value="[]" />'))
        self.assertIsNone(extract_report_payload('<input id="hdnReportData" />'))

    def test_extract_report_payload_malformed(self):
        self.assertIsNone(extract_report_payload('<input id="hdnReportData" value="[{not valid json" />'))
        self.assertIsNone(extract_report_payload(
            '<input id="hdnReportData" value="{&quot;a&quot;: &quot;object&quot;}" />'))


class TestRetryPolicy(unittest.TestCase):
    """Test retry and backoff behavior"""

    def setUp(self):
        self.sleep = Mock()
        self.policy = RetryPolicy(RetryConfig(max_retries=3, base_delay=1.0, backoff_factor=2.0), sleep=self.sleep)

    def test_success_first_try(self):
        send = Mock(return_value=make_response(200, "ok"))

        response = self.policy.call(send)

        self.assertEqual(response.text, "ok")
        self.assertEqual(send.call_count, 1)
        self.sleep.assert_not_called()

    def test_backoff_increases_then_gives_up(self):
        send = Mock(return_value=make_response(500))

        response = self.policy.call(send, "report")

        self.assertIsNone(response)
        self.assertEqual(send.call_count, 4)
        delays = [c.args[0] for c in self.sleep.call_args_list]
        self.assertEqual(delays, [1.0, 2.0, 4.0])
        self.assertTrue(all(a < b for a, b in zip(delays, delays[1:])))

    def test_network_error_retried(self):
        send = Mock(side_effect=[requests.ConnectionError("reset"), make_response(200, "ok")])

        response = self.policy.call(send)

        self.assertEqual(response.text, "ok")
        self.assertEqual(self.sleep.call_count, 1)

    def test_session_expiry_not_retried(self):
        for status in (401, 403):
            send = Mock(return_value=make_response(status))
            with self.assertRaises(SessionExpiredError) as ctx:
                self.policy.call(send)
            self.assertEqual(ctx.exception.status_code, status)
            self.assertEqual(send.call_count, 1)
        self.sleep.assert_not_called()

    def test_client_error_not_retried(self):
        send = Mock(return_value=make_response(404))

        self.assertIsNone(self.policy.call(send))
        self.assertEqual(send.call_count, 1)
        self.sleep.assert_not_called()

    def test_delay_capped(self):
        policy = RetryPolicy(RetryConfig(max_retries=4, base_delay=10.0, backoff_factor=3.0, max_delay=25.0))
        self.assertEqual(list(policy.delays()), [10.0, 25.0, 25.0, 25.0])

    def test_default_presets(self):
        config = CrawlConfig()
        self.assertEqual(len(list(RetryPolicy(config.report_retry).delays())), 2)
        self.assertEqual(list(RetryPolicy(config.search_retry).delays()), [1.0, 2.0, 4.0])


class TestSessionCredential(unittest.TestCase):
    """Test the shared credential cell"""

    def test_headers_carry_cookie(self):
        credential = SessionCredential("a=1; b=2")
        self.assertEqual(credential.headers()["Cookie"], "a=1; b=2")

    def test_refresh_swaps_value(self):
        credential = SessionCredential("old")

        self.assertTrue(credential.refresh(0, lambda: " new "))

        self.assertEqual(credential.snapshot(), ("new", 1))

    def test_refresh_without_new_value(self):
        credential = SessionCredential("old")
        self.assertFalse(credential.refresh(0, lambda: None))
        self.assertEqual(credential.snapshot(), ("old", 0))

    def test_refresh_is_single_flight(self):
        credential = SessionCredential("old")

        def slow_provider():
            time.sleep(0.05)
            return "new"

        provider = Mock(side_effect=slow_provider)
        outcomes = []
        threads = [
            threading.Thread(target=lambda: outcomes.append(credential.refresh(0, provider)))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(provider.call_count, 1)
        self.assertEqual(outcomes, [True] * 4)
        self.assertEqual(credential.snapshot(), ("new", 1))

    def test_stale_refresh_is_noop(self):
        credential = SessionCredential("old")
        credential.swap("newer")
        provider = Mock(return_value="newest")

        self.assertTrue(credential.refresh(0, provider))

        provider.assert_not_called()
        self.assertEqual(credential.snapshot(), ("newer", 1))


class TestProgressStore(unittest.TestCase):
    """Test durable progress files"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.output_file = os.path.join(self.temp_dir, "data", "evaluations.json")
        self.progress_file = os.path.join(self.temp_dir, ".progress.json")
        self.store = ProgressStore(self.output_file, self.progress_file)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_missing_files(self):
        state = self.store.load()
        self.assertEqual(state.evaluations, {})
        self.assertEqual(state.completed, set())

    def test_save_and_load(self):
        state = ProgressState(
            evaluations={"CS 106A": [{"term": "Fall 2025", "questions": []}]},
            completed={"F25-CS-106A-02", "F25-CS-106A-01"},
        )

        self.store.save(state)
        loaded = self.store.load()

        self.assertEqual(loaded.evaluations, state.evaluations)
        self.assertEqual(loaded.completed, state.completed)

        with open(self.output_file, 'r', encoding='utf-8') as f:
            raw = f.read()
        self.assertNotIn("\n", raw)
        self.assertNotIn(", ", raw)

        with open(self.progress_file, 'r', encoding='utf-8') as f:
            progress = json.load(f)
        self.assertEqual(progress["completed"], ["F25-CS-106A-01", "F25-CS-106A-02"])
        self.assertIn("lastUpdated", progress)

        leftovers = [p.name for p in Path(self.temp_dir).rglob("*.tmp")]
        self.assertEqual(leftovers, [])

    def test_corrupt_files_load_as_empty(self):
        os.makedirs(os.path.dirname(self.output_file))
        with open(self.output_file, 'w') as f:
            f.write('{"CS 106A": [')
        with open(self.progress_file, 'w') as f:
            f.write('not json')

        state = self.store.load()

        self.assertEqual(state.evaluations, {})
        self.assertEqual(state.completed, set())

    def test_malformed_entries_dropped_on_load(self):
        os.makedirs(os.path.dirname(self.output_file))
        with open(self.output_file, 'w') as f:
            json.dump({"CS 106A": {"bad": 1}, "MATH 51": [{"courseCode": "F25-MATH-51-01"}]}, f)
        with open(self.progress_file, 'w') as f:
            json.dump({"completed": ["F25-MATH-51-01", 7, None, ["x"]]}, f)

        state = self.store.load()

        self.assertEqual(list(state.evaluations), ["MATH 51"])
        self.assertEqual(state.completed, {"F25-MATH-51-01"})

        # The loaded state can be saved and extended again
        self.store.save(state)
        self.assertEqual(self.store.load().completed, {"F25-MATH-51-01"})


class TestProgressWriter(unittest.TestCase):
    """Test the single-writer batch application"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = ProgressStore(
            os.path.join(self.temp_dir, "evaluations.json"),
            os.path.join(self.temp_dir, "progress.json"),
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_batch_applied_and_persisted(self):
        a = SearchResult(report_id="a", course_code="F25-CS-106A-01")
        b = SearchResult(report_id="b", course_code="F25-CS-106A-02")
        c = SearchResult(report_id="c", course_code="F25-MATH-51-01")

        writer = ProgressWriter(self.store, ProgressState())
        writer.start()
        writer.submit(BatchResult(
            job_label="F25",
            succeeded=[(a, "CS 106A", Evaluation(course_code=a.course_code)),
                       (b, "CS 106A", Evaluation(course_code=b.course_code))],
            failed=[c],
        ))

        # Persisted before submit returns
        on_disk = self.store.load()
        self.assertEqual(on_disk.completed, {"F25-CS-106A-01", "F25-CS-106A-02"})
        self.assertEqual(list(on_disk.evaluations), ["CS 106A"])
        self.assertEqual(len(on_disk.evaluations["CS 106A"]), 2)

        writer.close()
        self.assertEqual(writer.extracted, 2)
        self.assertEqual(writer.skipped, 1)
        self.assertFalse(writer.is_completed("F25-MATH-51-01"))
        self.assertEqual(writer.course_count, 1)

    def test_save_error_reaches_submitter(self):
        store = Mock()
        store.save.side_effect = OSError("disk full")
        writer = ProgressWriter(store, ProgressState())
        writer.start()

        with self.assertRaises(OSError):
            writer.submit(BatchResult(job_label="F25"))

        store.save.side_effect = None
        writer.close()

    def test_writer_survives_failed_batch(self):
        """A batch that cannot be applied fails its submitter and later batches still go through"""
        result = SearchResult(report_id="a", course_code="F25-CS-106A-01")
        state = ProgressState(evaluations={"CS 106A": {"bad": 1}})
        writer = ProgressWriter(self.store, state)
        writer.start()

        with self.assertRaises(AttributeError):
            writer.submit(BatchResult(
                job_label="F25",
                succeeded=[(result, "CS 106A", Evaluation(course_code=result.course_code))],
            ))

        state.evaluations["CS 106A"] = []
        done = threading.Event()

        def submit_again():
            writer.submit(BatchResult(
                job_label="F25",
                succeeded=[(result, "CS 106A", Evaluation(course_code=result.course_code))],
            ))
            done.set()

        threading.Thread(target=submit_again, daemon=True).start()
        self.assertTrue(done.wait(5), "writer stopped serving batches")

        writer.close()
        self.assertEqual(len(self.store.load().evaluations["CS 106A"]), 1)


def run_tests():
    """Run all tests with verbose output"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    # Add all test cases
    for case in (TestCatalogCourse, TestEvaluationSerialization, TestCourseMatcher, TestCatalogLoading,
                 TestReportParsing, TestRetryPolicy, TestSessionCredential, TestProgressStore,
                 TestProgressWriter):
        suite.addTests(loader.loadTestsFromTestCase(case))

    # Run tests
    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    # Print summary
    print("\n" + "=" * 70)
    print(f"Tests run: {result.testsRun}")
    print(f"Failures: {len(result.failures)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Skipped: {len(result.skipped)}")

    if result.wasSuccessful():
        print("✅ All tests passed!")
    else:
        print("❌ Some tests failed")

    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
