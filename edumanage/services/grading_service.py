from typing import Dict, Any, Tuple, List, Optional, Iterable


def grade_submission(answers: Dict[str, Any], questions: List[Dict[str, Any]]) -> Tuple[Dict[str, float], float]:
    """
    Grade the given answers against the exam's questions.
    - answers: mapping question_id (str) -> stored student answer
    - questions: dicts with question_id, marks and the authoritative correct_answer
      read from question_bank (never the copy the client holds)

    Returns (question_scores: dict, total_score: float).
    Unanswered or wrong questions score 0; answers to questions outside the
    exam are ignored.
    """
    question_scores: Dict[str, float] = {}
    total = 0.0

    qmap = {str(q['question_id']): q for q in questions}

    for qid_str, q in qmap.items():
        ans = answers.get(qid_str)
        score = 0.0
        if is_correct(ans, q.get('correct_answer')):
            score = float(q.get('marks') or 0)
        question_scores[qid_str] = score
        total += score

    return question_scores, total


def is_correct(answer: Any, correct: Any) -> bool:
    return answer is not None and correct is not None and answer == correct


def percentage(obtained: float, max_total: float) -> float:
    # an exam worth nothing scores 0% rather than dividing by zero
    if not max_total:
        return 0.0
    return obtained / max_total * 100


def resolve_grade(score: float, bands: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Return the grade of the first band whose [min_score, max_score] holds ``score``.

    Bands are checked independently; a score outside every band has no grade.
    """
    for band in bands:
        low, high = band.get('min_score'), band.get('max_score')
        if low is None or high is None:
            continue
        if float(low) <= score <= float(high):
            return band.get('grade')
    return None
