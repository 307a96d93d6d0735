"""
Progress tracking for resumable crawls.

Two documents are written after every extraction batch: the evaluations
document ({course_key: [evaluation, ...]}, compact JSON) and a checkpoint
({"completed": [...], "lastUpdated": ...}). Each is replaced wholesale
through a temp file, so a crash never leaves a half-written file behind.
"""

import json
import logging
import os
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path
from queue import Queue
from typing import Optional

from eval_models import BatchResult, ProgressState

logger = logging.getLogger(__name__)


class ProgressStore:
    """Loads and saves ProgressState on disk"""

    def __init__(self, output_file: str, progress_file: str):
        self.output_file = Path(output_file)
        self.progress_file = Path(progress_file)

    def load(self) -> ProgressState:
        """Load existing evaluations and checkpoint; unreadable files count as empty"""
        state = ProgressState()

        evaluations = self._read_json(self.output_file, "evaluations file")
        if isinstance(evaluations, dict):
            for course_key, records in evaluations.items():
                if isinstance(records, list):
                    state.evaluations[course_key] = records
                else:
                    logger.warning(f"Ignoring malformed evaluations for {course_key} in {self.output_file}")

        progress = self._read_json(self.progress_file, "progress file")
        if isinstance(progress, dict):
            completed = progress.get('completed')
            if isinstance(completed, list):
                state.completed.update(code for code in completed if isinstance(code, str))

        return state

    def _read_json(self, path: Path, description: str):
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse existing {description} {path}: {e}")
            return None

    def save(self, state: ProgressState):
        """Overwrite both documents with the current state"""
        # Compact on purpose, the evaluations document gets very large
        self._write_atomic(self.output_file, state.evaluations, separators=(',', ':'))
        self._write_atomic(self.progress_file, {
            'completed': sorted(state.completed),
            'lastUpdated': datetime.now(timezone.utc).isoformat(),
        })

    def _write_atomic(self, path: Path, data, **dump_kwargs):
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_name(path.name + '.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, **dump_kwargs)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise


class _PendingBatch:
    def __init__(self, batch: BatchResult):
        self.batch = batch
        self.done = threading.Event()
        self.error: Optional[Exception] = None


_STOP = object()


class ProgressWriter:
    """
    Owns the ProgressState for the duration of a crawl.

    Workers hand finished batches to ``submit``; a single thread applies
    each batch and saves before taking the next one, so the files on disk
    only ever reflect whole batches.
    """

    def __init__(self, store: ProgressStore, state: ProgressState):
        self.store = store
        self.state = state
        self.extracted = 0
        self.skipped = 0
        self._queue = Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def completed(self):
        """Completed course codes; read-only outside the writer thread"""
        return self.state.completed

    @property
    def course_count(self) -> int:
        return len(self.state.evaluations)

    def is_completed(self, course_code: str) -> bool:
        return course_code in self.state.completed

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name='progress-writer', daemon=True)
        self._thread.start()

    def submit(self, batch: BatchResult):
        """Queue a batch and block until it has been applied and saved"""
        pending = _PendingBatch(batch)
        self._queue.put(pending)
        pending.done.wait()
        if pending.error is not None:
            raise pending.error

    def _run(self):
        while True:
            pending = self._queue.get()
            if pending is _STOP:
                break
            # The submitter gets the error; this thread keeps serving later batches
            try:
                self.apply(pending.batch)
                self.store.save(self.state)
            except OSError as e:
                logger.error(f"💥 Failed to save progress: {e}")
                pending.error = e
            except Exception as e:
                logger.error(f"💥 Failed to record batch {pending.batch.job_label}: {e}")
                logger.debug(traceback.format_exc())
                pending.error = e
            finally:
                pending.done.set()

    def apply(self, batch: BatchResult):
        """Add a batch's successes to the state. Failures stay uncompleted so a resume retries them."""
        prefix = f"[{batch.job_label}]"
        for result, course_key, evaluation in batch.succeeded:
            self.state.evaluations.setdefault(course_key, []).append(evaluation.to_dict())
            self.state.completed.add(result.course_code)
            self.extracted += 1
            logger.info(f"  {prefix} OK: {result.course_code} - {result.instructor}")

        for result in batch.failed:
            self.skipped += 1
            logger.info(f"  {prefix} SKIP: {result.course_code} - {result.instructor} (no data, will retry)")

    def close(self):
        """Drain pending batches, stop the thread and do a final save"""
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join()
            self._thread = None
        self.store.save(self.state)
