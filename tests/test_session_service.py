import asyncio
from datetime import datetime, timedelta

import pytest

from edumanage.services.exam_service import load_exam_questions, exam_availability, _sanitize_question
from edumanage.services.session_service import ExamSessionController, SessionRegistry
from edumanage.services.session_state import ExamPhase, MonitorPhase
from tests.conftest import Q1, Q2, make_exam, seed_exam

ATTEMPTS = "online_exam_attempts"
ANSWERS = "online_exam_answers"


async def start_controller(store, storage, surface, **exam_overrides):
    exam = make_exam(**exam_overrides)
    seed_exam(store, exam)
    questions = await load_exam_questions(store, exam['id'])
    controller = ExamSessionController(store, storage, surface, exam, questions, student_id="stu-1", user_id="usr-1",
                                       tick_seconds=3600, poll_seconds=3600)
    await controller.start()
    return controller


async def test_start_creates_attempt_and_arms_proctoring(store, storage, surface):
    controller = await start_controller(store, storage, surface, fullscreen_required=True)

    attempt = store.tables[ATTEMPTS][0]
    assert controller.attempt_id == attempt['id']
    assert attempt['status'] == "in_progress"
    assert attempt['student_id'] == "stu-1"
    assert controller.phase == ExamPhase.IN_PROGRESS
    assert controller.state.remaining_seconds == 30 * 60
    assert controller.state.monitor_phase == MonitorPhase.ACTIVE
    assert controller.config.tab_switch_limit == 3
    assert surface.fullscreen is True

    await controller.teardown()


async def test_two_question_scenario_manual_submit(store, storage, surface):
    controller = await start_controller(store, storage, surface, tab_switch_limit=3)
    controller.record_answer(Q1, "B")
    controller.record_answer(Q2, "A")

    await surface.fire("visibilitychange", hidden=True)
    await surface.fire("visibilitychange", hidden=True)
    assert controller.state.tab_switch_count == 2
    assert controller.phase == ExamPhase.IN_PROGRESS

    result = await controller.submit()

    assert controller.phase == ExamPhase.SUBMITTED
    assert result.reason == "manual"
    assert result.obtained == 5
    assert result.total == 8
    assert result.percentage == pytest.approx(62.5)
    assert result.grade is None
    assert result.question_marks == {Q1: 5.0, Q2: 0.0}

    attempt = store.tables[ATTEMPTS][0]
    assert attempt['status'] == "submitted"
    assert attempt['total_marks_obtained'] == 5
    assert isinstance(attempt['submitted_at'], datetime)

    answers = {row['question_id']: row for row in store.tables[ANSWERS]}
    assert answers[Q1]['is_correct'] is True and answers[Q1]['marks_obtained'] == 5
    assert answers[Q2]['is_correct'] is False and answers[Q2]['marks_obtained'] == 0

    assert controller.state.monitor_phase == MonitorPhase.TORN_DOWN
    assert surface.events.listener_count() == 0
    # further hides go nowhere
    await surface.fire("visibilitychange", hidden=True)
    assert controller.state.tab_switch_count == 2


async def test_tab_switch_budget_auto_submits(store, storage, surface):
    controller = await start_controller(store, storage, surface, tab_switch_limit=2)
    controller.record_answer(Q1, "B")
    controller.record_answer(Q2, "C")

    await surface.fire("visibilitychange", hidden=True)
    assert controller.phase == ExamPhase.IN_PROGRESS
    await surface.fire("visibilitychange", hidden=True)

    assert controller.phase == ExamPhase.SUBMITTED
    assert controller.result.reason == "tab_switch_limit"
    assert controller.result.obtained == 8
    assert controller.result.grade == "A"
    assert store.count("update", ATTEMPTS) == 1


async def test_concurrent_submits_run_once(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    controller.record_answer(Q1, "B")
    bank_reads = store.count("read", "question_bank")

    first, second = await asyncio.gather(controller.submit(reason="timeout"), controller.submit(reason="manual"))

    assert first.reason == "timeout"
    assert second is None
    assert store.count("update", ATTEMPTS) == 1
    assert store.count("read", "question_bank") == bank_reads + 1
    assert len(store.tables[ANSWERS]) == 1

    # late triggers return the first result
    assert await controller.submit() is first
    await controller.teardown()
    assert store.count("update", ATTEMPTS) == 1


async def test_countdown_reaching_zero_submits(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    controller.state.remaining_seconds = 2

    await controller.tick()
    assert controller.state.remaining_seconds == 1
    assert controller.phase == ExamPhase.IN_PROGRESS

    await controller.tick()
    assert controller.state.remaining_seconds == 0
    assert controller.phase == ExamPhase.SUBMITTED
    assert controller.result.reason == "timeout"

    await controller.tick()
    assert controller.state.remaining_seconds == 0
    assert store.count("update", ATTEMPTS) == 1


async def test_countdown_task_runs_on_its_own(store, storage, surface):
    exam = make_exam()
    seed_exam(store, exam)
    questions = await load_exam_questions(store, exam['id'])
    controller = ExamSessionController(store, storage, surface, exam, questions, "stu-1", "usr-1",
                                       tick_seconds=0.01, poll_seconds=3600)
    await controller.start()
    controller.state.remaining_seconds = 3

    for _ in range(200):
        if controller.phase == ExamPhase.SUBMITTED:
            break
        await asyncio.sleep(0.01)

    assert controller.phase == ExamPhase.SUBMITTED
    assert controller.result.reason == "timeout"


async def test_granted_extension_extends_countdown_once(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    before = controller.state.remaining_seconds
    store.tables["exam_time_extensions"].append({'id': "x1", 'attempt_id': controller.attempt_id, 'extension_minutes': 5})

    await controller.poller.poll_once()
    await controller.poller.poll_once()

    assert controller.state.remaining_seconds == before + 300
    assert controller.state.applied_extension_minutes == 5
    assert ("success", "Your exam time has been extended by 5 minutes") in surface.notifications
    await controller.teardown()


async def test_failed_submission_can_be_retried(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    controller.record_answer(Q1, "B")
    controller.record_answer(Q2, "C")
    store.failing.add(("update", ATTEMPTS))

    assert await controller.submit() is None
    assert controller.phase == ExamPhase.IN_PROGRESS
    assert controller.state.monitor_phase == MonitorPhase.ACTIVE
    assert ("error", "Failed to submit exam. Please try again.") in surface.notifications

    store.failing.clear()
    result = await controller.submit()
    assert result.obtained == 8
    assert controller.phase == ExamPhase.SUBMITTED
    # answers saved by the first try are reused
    assert len(store.tables[ANSWERS]) == 2


async def test_result_hidden_when_not_shown_immediately(store, storage, surface):
    controller = await start_controller(store, storage, surface, show_result_immediately=False)
    await controller.submit()
    assert surface.notifications[-1] == ("success", "Exam submitted successfully")


async def test_result_surfaced_when_shown_immediately(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    controller.record_answer(Q1, "B")
    await controller.submit()
    assert surface.notifications[-1] == ("success", "Exam submitted. Score: 5/8")


async def test_disabled_proctoring_acquires_nothing(store, storage, surface):
    controller = await start_controller(store, storage, surface, proctoring_enabled=False,
                                        webcam_required=True, fullscreen_required=True)
    assert surface.events.listener_count() == 0
    assert surface.media.requests == []
    assert surface.fullscreen is False
    assert controller.webcam is None
    assert controller.state.monitor_phase == MonitorPhase.IDLE
    await controller.teardown()


async def test_webcam_stream_released_on_submit(store, storage, surface):
    controller = await start_controller(store, storage, surface, webcam_required=True)
    await controller.camera_task
    stream = controller.state.stream
    assert stream is not None
    assert controller.sink.playing

    await controller.submit()
    assert controller.state.stream is None
    assert stream.track.stopped == 1


async def test_answers_navigation_and_flags(store, storage, surface):
    controller = await start_controller(store, storage, surface)

    with pytest.raises(ValueError):
        controller.record_answer("not-a-question", "A")
    assert controller.next_question() == 1
    assert controller.next_question() == 1
    assert controller.previous_question() == 0
    assert controller.previous_question() == 0
    with pytest.raises(IndexError):
        controller.go_to_question(2)

    assert controller.toggle_flag(Q2) is True
    assert controller.snapshot().flagged == [Q2]
    assert controller.toggle_flag(Q2) is False

    await controller.submit()
    assert controller.record_answer(Q1, "B") is False


async def test_load_exam_questions_is_ordered_and_sanitized(store):
    seed_exam(store, make_exam())
    questions = await load_exam_questions(store, make_exam()['id'])

    assert [q['question_id'] for q in questions] == [Q1, Q2]
    assert questions[0]['marks'] == 5
    assert 'correct_answer' not in _sanitize_question(questions[0])


def test_exam_availability():
    now = datetime(2026, 5, 1, 10, 0)
    exam = {'start_time': now - timedelta(hours=1), 'end_time': now + timedelta(hours=1)}

    assert exam_availability(exam, None, now) == ("Available", True)
    assert exam_availability(exam, {'status': "submitted"}, now) == ("Completed", False)
    assert exam_availability(exam, None, now - timedelta(hours=2)) == ("Upcoming", False)
    assert exam_availability(exam, None, now + timedelta(hours=2)) == ("Expired", False)


async def test_registry_prunes_finished_sessions(store, storage, surface):
    registry = SessionRegistry()
    controller = await start_controller(store, storage, surface)
    registry.add(controller)
    assert registry.get(controller.attempt_id) is controller
    assert registry.find(controller.exam['id'], "stu-1") is controller

    await controller.submit()
    registry.prune()
    assert registry.get(controller.attempt_id) is None
    await registry.close_all()


async def test_restart_resumes_unfinished_attempt(store, storage, surface):
    registry = SessionRegistry()
    started = datetime(2026, 5, 1, 9, 0)
    exam = make_exam(tab_switch_limit=3)
    seed_exam(store, exam)
    questions = await load_exam_questions(store, exam['id'])
    controller = ExamSessionController(store, storage, surface, exam, questions, "stu-1", "usr-1",
                                       tick_seconds=3600, poll_seconds=3600, clock=lambda: started)
    await controller.start()
    registry.add(controller)
    controller.record_answer(Q1, "B")
    await surface.fire("visibilitychange", hidden=True)

    await registry.close_all()

    row = store.tables[ATTEMPTS][0]
    assert row['status'] == "in_progress"
    assert [a['student_answer'] for a in store.tables[ANSWERS]] == ["B"]
    assert registry.find(exam['id'], "stu-1") is None

    store.tables["exam_time_extensions"].append({'id': "x1", 'attempt_id': row['id'], 'extension_minutes': 5})
    resumed = ExamSessionController(store, storage, surface, exam, questions, "stu-1", "usr-1",
                                    tick_seconds=3600, poll_seconds=3600, resume_from=row,
                                    clock=lambda: started + timedelta(minutes=10))
    await resumed.start()

    assert resumed.attempt_id == row['id']
    assert len(store.tables[ATTEMPTS]) == 1
    assert resumed.state.answers == {Q1: "B"}
    assert resumed.state.tab_switch_count == 1
    assert resumed.state.remaining_seconds == (30 - 10 + 5) * 60
    # the granted minutes are already in the countdown
    assert await resumed.poller.poll_once() == 0

    result = await resumed.submit()
    assert result.obtained == 5
    assert store.tables[ATTEMPTS][0]['status'] == "submitted"
    assert len(store.tables[ANSWERS]) == 1


async def test_resume_past_deadline_submits_on_start(store, storage, surface):
    started = datetime(2026, 5, 1, 9, 0)
    exam = make_exam()
    seed_exam(store, exam)
    questions = await load_exam_questions(store, exam['id'])
    row = {'id': "att-1", 'online_exam_id': exam['id'], 'student_id': "stu-1", 'status': "in_progress", 'started_at': started}
    store.tables[ATTEMPTS].append(dict(row))

    controller = ExamSessionController(store, storage, surface, exam, questions, "stu-1", "usr-1",
                                       tick_seconds=3600, poll_seconds=3600, resume_from=row,
                                       clock=lambda: started + timedelta(hours=2))
    await controller.start()

    assert controller.phase == ExamPhase.SUBMITTED
    assert controller.result.reason == "timeout"
    assert store.tables[ATTEMPTS][0]['status'] == "submitted"
    assert surface.events.listener_count() == 0


async def test_autosave_keeps_one_row_per_question(store, storage, surface):
    controller = await start_controller(store, storage, surface)
    controller.record_answer(Q1, "A")
    await asyncio.gather(controller.save_answers(), controller.save_answers())
    controller.record_answer(Q1, "B")
    assert await controller.save_answers() is True

    assert [(a['question_id'], a['student_answer']) for a in store.tables[ANSWERS]] == [(Q1, "B")]

    store.failing.add(("read", ANSWERS))
    assert await controller.save_answers() is False
    store.failing.clear()
    await controller.submit()
    assert await controller.save_answers() is False
