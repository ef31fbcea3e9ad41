"""Proctoring overview for staff: evidence timeline and violation counts per exam."""
from collections import Counter
from typing import Any, Dict, List, Optional

from ..config import SNAPSHOT_BUCKET
from ..schemas.proctoring_schema import ViolationType
from .storage import ObjectStorage
from .store import DataStore


async def exam_attempts(store: DataStore, exam_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
    filters = {'online_exam_id': exam_id}
    if status:
        filters['status'] = status
    return await store.read("online_exam_attempts", filters, order_by="started_at")


async def proctoring_logs(store: DataStore, storage: ObjectStorage, exam_id: str,
                          student_id: Optional[str] = None, bucket: str = SNAPSHOT_BUCKET) -> List[Dict[str, Any]]:
    attempts = await exam_attempts(store, exam_id)
    if student_id:
        attempts = [a for a in attempts if str(a.get('student_id')) == str(student_id)]
    if not attempts:
        return []

    logs = await store.read("exam_proctoring_logs", {'attempt_id': [a['id'] for a in attempts]}, order_by="created_at")
    for log in logs:
        path = log.get('snapshot_url')
        log['snapshot_public_url'] = storage.public_url(bucket, path) if path else None
    return logs


def summarize_violations(logs: List[Dict[str, Any]], attempts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Counts by type and per attempt. Periodic snapshots are evidence, not violations."""
    violations = [l for l in logs if l.get('violation_type') != ViolationType.PERIODIC_SNAPSHOT.value]
    by_type = Counter(l['violation_type'] for l in violations)
    by_attempt = Counter(str(l.get('attempt_id')) for l in violations)

    per_attempt = {str(a['id']): by_attempt.get(str(a['id']), 0) for a in attempts}
    flagged = sum(1 for count in per_attempt.values() if count > 0)
    return {
        'total_violations': len(violations),
        'snapshots': sum(1 for l in logs if l.get('snapshot_url')),
        'by_type': dict(by_type),
        'by_attempt': per_attempt,
        'attempts': len(attempts),
        'attempts_with_violations': flagged,
        # no attempts means no rate, reported as 0.0
        'average_violations_per_attempt': len(violations) / len(attempts) if attempts else 0.0,
    }
