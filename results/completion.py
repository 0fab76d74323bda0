import collections

from .grading import count_entered_components

NOT_STARTED = 'not_started'
PARTIAL = 'partial'
COMPLETE = 'complete'
ABSENT = 'absent'
EXEMPT = 'exempt'

STATUSES = (NOT_STARTED, PARTIAL, COMPLETE, ABSENT, EXEMPT)

CompletionResult = collections.namedtuple('CompletionResult', ['status', 'contributes_to_stats'])


def classify(assessment):
    """Completion status of one student's assessment (None when no row exists)."""
    if assessment is None:
        return CompletionResult(NOT_STARTED, False)
    if assessment.is_absent:
        return CompletionResult(ABSENT, False)
    if assessment.is_exempt:
        return CompletionResult(EXEMPT, False)

    entered = count_entered_components(assessment.ca1, assessment.ca2, assessment.ca3, assessment.exam)
    if entered == 4:
        return CompletionResult(COMPLETE, True)
    if entered > 0:
        return CompletionResult(PARTIAL, True)
    return CompletionResult(NOT_STARTED, False)


def is_finalized(assessment):
    """True when the row needs no more scores: absent, exempt or complete."""
    return classify(assessment).status in (COMPLETE, ABSENT, EXEMPT)


def _round_half_up(value):
    return int(value + 0.5)


def summarize(rows):
    """
    Roll up a class. ``rows`` are ``(CompletionResult, has_data)`` pairs, one
    per student; ``has_data`` is whether an assessment row exists at all.
    """
    counts = collections.Counter()
    total_students = 0
    students_with_data = 0
    students_with_scores = 0

    for result, has_data in rows:
        total_students += 1
        counts[result.status] += 1
        if has_data:
            students_with_data += 1
        if result.contributes_to_stats:
            students_with_scores += 1

    finalized = counts[COMPLETE] + counts[ABSENT] + counts[EXEMPT]
    completion_percentage = (
        _round_half_up(100 * finalized / total_students) if total_students else 0
    )

    return {
        'total_students': total_students,
        'students_with_data': students_with_data,
        'complete_assessments': counts[COMPLETE],
        'partial_assessments': counts[PARTIAL],
        'absent_students': counts[ABSENT],
        'exempt_students': counts[EXEMPT],
        'not_started': counts[NOT_STARTED],
        'students_without_data': total_students - students_with_data,
        'students_with_scores': students_with_scores,
        'completion_percentage': completion_percentage,
    }
