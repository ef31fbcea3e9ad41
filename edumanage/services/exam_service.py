from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime, timezone

from .store import DataStore


async def load_exam(store: DataStore, exam_id: str) -> Optional[Dict[str, Any]]:
    rows = await store.read("online_exams", {'id': exam_id})
    return rows[0] if rows else None


async def load_exam_questions(store: DataStore, exam_id: str) -> List[Dict[str, Any]]:
    """Exam questions in question_order, merged with their question_bank rows."""
    links = await store.read("online_exam_questions", {'online_exam_id': exam_id}, order_by="question_order")
    if not links:
        return []
    qids = [link['question_id'] for link in links]
    bank = {str(q['id']): q for q in await store.read("question_bank", {'id': qids})}

    ordered = []
    for link in links:
        q = bank.get(str(link['question_id']))
        if q is None:
            continue
        ordered.append({
            'question_id': str(q['id']),
            'question_order': link.get('question_order'),
            'marks': link.get('marks') or 0,
            'question_text': q.get('question_text'),
            'question_type': q.get('question_type'),
            'options': q.get('options'),
            'correct_answer': q.get('correct_answer'),
        })
    return ordered


def _sanitize_question(q: Dict[str, Any]) -> Dict[str, Any]:
    # remove correct_answer field to prevent leaking
    return {k: v for k, v in q.items() if k != 'correct_answer'}


def _to_naive_utc(dt: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC (remove tzinfo). If already naive, assume UTC and return as-is.
    Returns None if input is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        # assume naive datetimes are already UTC
        return dt
    # convert to UTC and drop tzinfo
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def exam_availability(exam: Dict[str, Any], attempt: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Tuple[str, bool]:
    """Return (label, can_take) for the student's exam list."""
    now = _to_naive_utc(now) or datetime.utcnow()
    if attempt and attempt.get('status') == "submitted":
        return "Completed", False
    start = _to_naive_utc(exam.get('start_time'))
    end = _to_naive_utc(exam.get('end_time'))
    if start and now < start:
        return "Upcoming", False
    if (start is None or now >= start) and (end is None or now <= end):
        return "Available", True
    return "Expired", False
