from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import asyncio
import logging

from ..config import DEFAULT_TAB_SWITCH_LIMIT, EXTENSION_POLL_SECONDS, SNAPSHOT_BUCKET
from ..schemas.attempt_schema import AttemptState, SubmissionResult
from ..schemas.proctoring_schema import ProctoringConfig
from .client_surface import ClientSurface
from .exam_service import _to_naive_utc
from .extension_poller import TimeExtensionPoller
from .fullscreen_service import FullscreenController
from .grading_service import grade_submission, is_correct, percentage, resolve_grade
from .integrity_monitor import IntegrityMonitor
from .media_devices import VideoSink
from .session_state import ExamPhase, SessionState
from .snapshot_service import SnapshotCapturer
from .storage import ObjectStorage
from .store import DataStore, StoreError
from .violation_logger import ViolationLogger
from .webcam_service import WebcamController

logger = logging.getLogger(__name__)


class ExamSessionController:
    """Runs one student's attempt at an online exam.

    Countdown, extension polling and proctoring start together in ``start()``.
    Passing ``resume_from`` picks up an unfinished attempt row instead of
    creating one, with the time already spent counted against the exam.
    Timeout, tab-switch budget exhaustion and the submit button all end in
    ``submit()``, which runs at most once to completion.
    """

    def __init__(self, store: DataStore, storage: ObjectStorage, surface: ClientSurface,
                 exam: Dict[str, Any], questions: List[Dict[str, Any]], student_id: str, user_id: str,
                 snapshot_bucket: str = SNAPSHOT_BUCKET, tick_seconds: float = 1,
                 poll_seconds: float = EXTENSION_POLL_SECONDS, resume_from: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.storage = storage
        self.surface = surface
        self.exam = exam
        self.questions = questions
        self.student_id = str(student_id)
        self.user_id = str(user_id)
        self.snapshot_bucket = snapshot_bucket
        self.tick_seconds = tick_seconds
        self.poll_seconds = poll_seconds
        self.resume_from = resume_from
        self.clock = clock

        self.state = SessionState()
        self.attempt_id: Optional[str] = None
        self.config: Optional[ProctoringConfig] = None
        self.monitor: Optional[IntegrityMonitor] = None
        self.webcam: Optional[WebcamController] = None
        self.poller: Optional[TimeExtensionPoller] = None
        self.sink = VideoSink()
        self.result: Optional[SubmissionResult] = None

        self._question_ids = [str(q['question_id']) for q in questions]
        self._submitting = False
        self._torn_down = False
        self._countdown_task: Optional[asyncio.Task] = None
        self.camera_task: Optional[asyncio.Task] = None
        self._answers_lock = asyncio.Lock()

    @property
    def phase(self) -> ExamPhase:
        return self.state.exam_phase

    def build_config(self) -> ProctoringConfig:
        limit = self.exam.get('tab_switch_limit')
        return ProctoringConfig(
            enabled=bool(self.exam.get('proctoring_enabled')),
            fullscreen_required=bool(self.exam.get('fullscreen_required')),
            tab_switch_limit=DEFAULT_TAB_SWITCH_LIMIT if limit is None else limit,
            webcam_required=bool(self.exam.get('webcam_required')),
            attempt_id=self.attempt_id,
            student_id=self.student_id,
            user_id=self.user_id,
        )

    async def start(self) -> str:
        if self.state.exam_phase != ExamPhase.NOT_STARTED:
            return self.attempt_id

        if self.resume_from is not None:
            self.attempt_id = str(self.resume_from['id'])
            await self._restore_attempt(self.resume_from)
        else:
            self.attempt_id = await self.store.create("online_exam_attempts", {
                'online_exam_id': str(self.exam['id']),
                'student_id': self.student_id,
                'status': "in_progress",
                'started_at': self.clock(),
            })
            self.state.remaining_seconds = self._duration_seconds()
        self.state.exam_phase = ExamPhase.IN_PROGRESS
        self.config = self.build_config()
        logger.info("Attempt %s %s for exam %s", self.attempt_id,
                    "resumed" if self.resume_from is not None else "started", self.exam['id'])

        violation_logger = ViolationLogger(self.store, self.state, self.attempt_id, self.student_id)
        if self.config.enabled and self.config.webcam_required:
            capturer = SnapshotCapturer(self.storage, self.snapshot_bucket, self.user_id, self.student_id, self.attempt_id)
            self.webcam = WebcamController(self.surface, self.state, violation_logger, capturer,
                                           self.config.snapshot_interval_seconds)
        self.monitor = IntegrityMonitor(self.config, self.surface, self.state, violation_logger,
                                        FullscreenController(self.surface, self.state), self.webcam,
                                        on_budget_exceeded=self._on_budget_exceeded)
        self.poller = TimeExtensionPoller(self.store, self.attempt_id, self.state, self._on_extension, self.poll_seconds)

        try:
            await self.monitor.arm()
            self.monitor.activate()
        except Exception:
            logger.exception("Could not start proctoring for attempt %s", self.attempt_id)
            await self.teardown()
            raise
        if self.webcam is not None:
            # a browser camera answers over the attempt socket, which connects after start returns
            self.camera_task = asyncio.create_task(self._start_camera())

        if self.state.remaining_seconds <= 0:
            await self.submit(reason="timeout")
            return self.attempt_id
        self._countdown_task = asyncio.create_task(self._run_countdown())
        self.poller.start()
        return self.attempt_id

    def _duration_seconds(self) -> int:
        return int(self.exam.get('duration_minutes') or 0) * 60

    async def _restore_attempt(self, attempt: Dict[str, Any]):
        saved = await self.store.read("online_exam_answers", {'attempt_id': self.attempt_id})
        for row in saved:
            qid = str(row['question_id'])
            if qid in self._question_ids and row.get('student_answer') is not None:
                self.state.answers[qid] = row['student_answer']

        logs = await self.store.read("exam_proctoring_logs", {'attempt_id': self.attempt_id, 'violation_type': "tab_switch"})
        self.state.tab_switch_count = len(logs)

        extensions = await self.store.read("exam_time_extensions", {'attempt_id': self.attempt_id})
        granted = sum(int(e.get('extension_minutes') or 0) for e in extensions)
        self.state.applied_extension_minutes = granted

        now = self.clock()
        started = _to_naive_utc(attempt.get('started_at')) or now
        elapsed = max(int((now - started).total_seconds()), 0)
        self.state.remaining_seconds = max(self._duration_seconds() + granted * 60 - elapsed, 0)

    async def _start_camera(self):
        if await self.webcam.acquire() is None:
            return
        if self._torn_down:
            self.webcam.release()
            return
        self.webcam.attach_sink(self.sink)
        self.webcam.start_periodic()

    async def _run_countdown(self):
        while not self._torn_down:
            await asyncio.sleep(self.tick_seconds)
            await self.tick()

    async def tick(self):
        if self._torn_down or self.state.exam_phase != ExamPhase.IN_PROGRESS:
            return
        if self.state.remaining_seconds > 0:
            self.state.remaining_seconds -= 1
        if self.state.remaining_seconds <= 0:
            self.state.remaining_seconds = 0
            await self.submit(reason="timeout")

    def apply_extension(self, minutes: int):
        if minutes <= 0 or self.state.exam_phase != ExamPhase.IN_PROGRESS:
            return
        self.state.remaining_seconds += minutes * 60
        self.state.applied_extension_minutes += minutes
        logger.info("Attempt %s extended by %d minutes", self.attempt_id, minutes)

    async def _on_extension(self, minutes: int):
        self.apply_extension(minutes)
        await self.surface.notify("success", f"Your exam time has been extended by {minutes} minutes")

    async def _on_budget_exceeded(self):
        await self.submit(reason="tab_switch_limit")

    def record_answer(self, question_id: str, answer: str) -> bool:
        if self.state.exam_phase != ExamPhase.IN_PROGRESS:
            return False
        if str(question_id) not in self._question_ids:
            raise ValueError(f"Question {question_id} is not part of this exam")
        self.state.answers[str(question_id)] = answer
        return True

    def go_to_question(self, index: int) -> int:
        if not 0 <= index < len(self.questions):
            raise IndexError(f"No question at position {index}")
        self.state.current_question = index
        return index

    def next_question(self) -> int:
        return self.go_to_question(min(self.state.current_question + 1, max(len(self.questions) - 1, 0)))

    def previous_question(self) -> int:
        return self.go_to_question(max(self.state.current_question - 1, 0))

    def toggle_flag(self, question_id: str) -> bool:
        qid = str(question_id)
        if qid not in self._question_ids:
            raise ValueError(f"Question {question_id} is not part of this exam")
        if qid in self.state.flagged:
            self.state.flagged.discard(qid)
            return False
        self.state.flagged.add(qid)
        return True

    def snapshot(self) -> AttemptState:
        return AttemptState(
            attempt_id=self.attempt_id,
            phase=self.state.exam_phase.value,
            monitor_phase=self.state.monitor_phase.value,
            current_question=self.state.current_question,
            answers=dict(self.state.answers),
            flagged=sorted(self.state.flagged),
            remaining_seconds=self.state.remaining_seconds,
            applied_extension_minutes=self.state.applied_extension_minutes,
            tab_switch_count=self.state.tab_switch_count,
            is_fullscreen=self.state.is_fullscreen,
            snapshot_count=self.state.snapshot_count,
            violations=list(self.state.violations),
        )

    async def submit(self, reason: str = "manual") -> Optional[SubmissionResult]:
        if self._submitting or self.state.exam_phase != ExamPhase.IN_PROGRESS:
            return self.result
        self._submitting = True
        self.state.exam_phase = ExamPhase.SUBMITTING
        logger.info("Submitting attempt %s (%s)", self.attempt_id, reason)
        try:
            result = await self._grade_and_close(reason)
        except Exception:
            logger.exception("Submission of attempt %s failed", self.attempt_id)
            self.state.exam_phase = ExamPhase.IN_PROGRESS
            await self.surface.notify("error", "Failed to submit exam. Please try again.")
            return None
        finally:
            self._submitting = False

        self.result = result
        self.state.exam_phase = ExamPhase.SUBMITTED
        await self.teardown()
        if self.exam.get('show_result_immediately'):
            await self.surface.notify("success", f"Exam submitted. Score: {result.obtained:g}/{result.total:g}")
        else:
            await self.surface.notify("success", "Exam submitted successfully")
        return result

    async def save_answers(self) -> bool:
        """Autosave; answers stay in memory for submission when the store is down."""
        if self.state.exam_phase != ExamPhase.IN_PROGRESS:
            return False
        try:
            await self._persist_answers()
        except StoreError as e:
            logger.warning("Autosave of attempt %s failed: %s", self.attempt_id, e)
            return False
        return True

    async def _persist_answers(self):
        # rows saved earlier (autosave, a failed submission) are updated, not duplicated
        async with self._answers_lock:
            existing = await self.store.read("online_exam_answers", {'attempt_id': self.attempt_id})
            by_question = {str(row['question_id']): row for row in existing}
            for question_id, answer in list(self.state.answers.items()):
                row = by_question.get(question_id)
                if row is None:
                    await self.store.create("online_exam_answers", {
                        'attempt_id': self.attempt_id,
                        'question_id': question_id,
                        'student_answer': answer,
                    })
                elif row.get('student_answer') != answer:
                    await self.store.update("online_exam_answers", row['id'], {'student_answer': answer})

    async def _load_grade_bands(self) -> List[Dict[str, Any]]:
        filters = {'school_id': self.exam['school_id']} if self.exam.get('school_id') else None
        try:
            return await self.store.read("grade_scales", filters)
        except Exception as e:
            logger.warning("Could not load grade scales for exam %s: %s", self.exam['id'], e)
            return []

    async def _grade_and_close(self, reason: str) -> SubmissionResult:
        await self._persist_answers()
        saved = await self.store.read("online_exam_answers", {'attempt_id': self.attempt_id})

        correct_rows = await self.store.read("question_bank", {'id': self._question_ids}) if self._question_ids else []
        correct = {str(r['id']): r.get('correct_answer') for r in correct_rows}
        graded_questions = [
            {'question_id': q['question_id'], 'marks': q.get('marks'), 'correct_answer': correct.get(str(q['question_id']))}
            for q in self.questions
        ]
        stored_answers = {str(row['question_id']): row.get('student_answer') for row in saved}
        question_marks, total = grade_submission(stored_answers, graded_questions)

        for row in saved:
            qid = str(row['question_id'])
            marks = question_marks.get(qid, 0.0)
            await self.store.update("online_exam_answers", row['id'], {
                'is_correct': is_correct(row.get('student_answer'), correct.get(qid)),
                'marks_obtained': int(marks),
            })

        max_total = self.exam.get('total_marks') or sum(float(q.get('marks') or 0) for q in self.questions)
        score = percentage(total, max_total)
        grade = resolve_grade(score, await self._load_grade_bands())

        submitted_at = datetime.utcnow()
        await self.store.update("online_exam_attempts", self.attempt_id, {
            'status': "submitted",
            'submitted_at': submitted_at,
            'total_marks_obtained': total,
        })
        return SubmissionResult(
            attempt_id=self.attempt_id,
            reason=reason,
            obtained=total,
            total=float(max_total),
            percentage=score,
            grade=grade,
            question_marks=question_marks,
            submitted_at=submitted_at,
        )

    async def teardown(self):
        if self._torn_down:
            return
        self._torn_down = True

        for task in (self._countdown_task, self.camera_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._countdown_task = self.camera_task = None
        if self.poller is not None:
            self.poller.stop()
        if self.monitor is not None:
            await self.monitor.disarm()
        if self.webcam is not None:
            self.webcam.release()
        logger.info("Attempt %s torn down", self.attempt_id)


class SessionRegistry:
    """Live controllers of this process, keyed by attempt id."""

    def __init__(self):
        self._sessions: Dict[str, ExamSessionController] = {}

    def add(self, controller: ExamSessionController):
        self.prune()
        self._sessions[controller.attempt_id] = controller

    def get(self, attempt_id: str) -> Optional[ExamSessionController]:
        return self._sessions.get(str(attempt_id))

    def find(self, exam_id: str, student_id: str) -> Optional[ExamSessionController]:
        for controller in self._sessions.values():
            if str(controller.exam['id']) == str(exam_id) and controller.student_id == str(student_id):
                return controller
        return None

    def prune(self):
        for attempt_id in [k for k, c in self._sessions.items() if c.phase == ExamPhase.SUBMITTED]:
            del self._sessions[attempt_id]

    async def close_all(self):
        """Release every live attempt; unfinished ones keep their saved answers and resume on the next start."""
        for controller in list(self._sessions.values()):
            if controller.phase == ExamPhase.IN_PROGRESS:
                await controller.save_answers()
            await controller.teardown()
        self._sessions.clear()


sessions = SessionRegistry()
