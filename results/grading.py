"""
Score aggregation and grade resolution.

A score component counts as entered when it is not None, whatever its value,
so a CA of 0 is a real score. Grades come from the school's default grading
system, read through ``GradingSystemCache``; schools without bands fall back to
``DEFAULT_GRADE_THRESHOLDS``.
"""
import logging

from django.conf import settings

from .caching import tagged_cache
from .models import GradingSystem

logger = logging.getLogger(__name__)

GRADING_TAG = 'grading'

DEFAULT_GRADE_THRESHOLDS = (
    (80, 'A1', 'Excellent'),
    (70, 'A2', 'Very Good'),
    (60, 'B1', 'Good'),
    (50, 'B2', 'Fair'),
    (45, 'C1', 'Pass'),
    (40, 'C2', 'Weak Pass'),
)
FAIL_GRADE = {'grade': 'F', 'remark': 'Fail'}
ERROR_GRADE = {'grade': 'F', 'remark': 'Error'}
DEFAULT_PASS_MARK = 40

# Same table expressed as bands, for report cards that print the key
DEFAULT_GRADE_LEVELS = [
    {'min_score': 80, 'max_score': 100, 'grade': 'A1', 'remark': 'Excellent'},
    {'min_score': 70, 'max_score': 79, 'grade': 'A2', 'remark': 'Very Good'},
    {'min_score': 60, 'max_score': 69, 'grade': 'B1', 'remark': 'Good'},
    {'min_score': 50, 'max_score': 59, 'grade': 'B2', 'remark': 'Fair'},
    {'min_score': 45, 'max_score': 49, 'grade': 'C1', 'remark': 'Pass'},
    {'min_score': 40, 'max_score': 44, 'grade': 'C2', 'remark': 'Weak Pass'},
    {'min_score': 0, 'max_score': 39, 'grade': 'F', 'remark': 'Fail'},
]

COMPONENTS = ('ca1', 'ca2', 'ca3', 'exam')


def count_entered_components(ca1, ca2, ca3, exam):
    return sum(1 for score in (ca1, ca2, ca3, exam) if score is not None)


def compute_total(ca1, ca2, ca3, exam):
    """Sum of the entered components, or None when nothing has been entered."""
    if count_entered_components(ca1, ca2, ca3, exam) == 0:
        return None
    return sum(score for score in (ca1, ca2, ca3, exam) if score is not None)


def assessment_total(assessment):
    """Subject score for an Assessment row; absent and exempt rows have none."""
    if assessment is None or assessment.is_absent or assessment.is_exempt:
        return None
    return compute_total(assessment.ca1, assessment.ca2, assessment.ca3, assessment.exam)


def load_grading_levels(school_id):
    """Bands of the school's default grading system, highest first, or None."""
    grading_system = (
        GradingSystem.objects
        .filter(school_id=school_id, is_default=True)
        .prefetch_related('levels')
        .first()
    )
    if grading_system is None:
        return None
    levels = [
        {
            'min_score': level.min_score,
            'max_score': level.max_score,
            'grade': level.grade,
            'remark': level.remark,
        }
        for level in grading_system.levels.all()
    ]
    return sorted(levels, key=lambda level: level['max_score'], reverse=True)


def load_pass_mark(school_id):
    pass_mark = (
        GradingSystem.objects
        .filter(school_id=school_id, is_default=True)
        .values_list('pass_mark', flat=True)
        .first()
    )
    return DEFAULT_PASS_MARK if pass_mark is None else pass_mark


class GradingSystemCache:
    """Process-wide cache of grading bands keyed by school."""

    def __init__(self, store=None, timeout=None, loader=load_grading_levels, pass_mark_loader=load_pass_mark):
        self.store = store or tagged_cache
        self.timeout = timeout
        self.loader = loader
        self.pass_mark_loader = pass_mark_loader

    def _timeout(self):
        if self.timeout is not None:
            return self.timeout
        return getattr(settings, 'GRADING_CACHE_TIMEOUT', 3600)

    def _key(self, school_id):
        return f"grading-system:{school_id}"

    def _pass_mark_key(self, school_id):
        return f"grading-pass-mark:{school_id}"

    def get(self, school_id):
        # Wrapped in a dict so "no grading system" is cached too
        entry = self.store.get_or_set(
            self._key(school_id),
            lambda: {'levels': self.loader(school_id)},
            tags=(GRADING_TAG,),
            timeout=self._timeout(),
        )
        return entry['levels']

    def pass_mark(self, school_id):
        return self.store.get_or_set(
            self._pass_mark_key(school_id),
            lambda: self.pass_mark_loader(school_id),
            tags=(GRADING_TAG,),
            timeout=self._timeout(),
        )

    def invalidate(self, school_id):
        self.store.delete(self._key(school_id), tags=(GRADING_TAG,))
        self.store.delete(self._pass_mark_key(school_id), tags=(GRADING_TAG,))

    def invalidate_all(self):
        self.store.invalidate_tag(GRADING_TAG)


grading_cache = GradingSystemCache()


def grade_from_thresholds(total_score):
    for minimum, grade, remark in DEFAULT_GRADE_THRESHOLDS:
        if total_score >= minimum:
            return {'grade': grade, 'remark': remark}
    return dict(FAIL_GRADE)


def grade_from_levels(total_score, levels):
    """First band containing the score, scanning from the highest max_score."""
    if not levels:
        return grade_from_thresholds(total_score)
    for level in sorted(levels, key=lambda level: level['max_score'], reverse=True):
        if level['min_score'] <= total_score <= level['max_score']:
            return {'grade': level['grade'], 'remark': level['remark']}
    return dict(FAIL_GRADE)


def resolve_grade(total_score, school_id, cache=None):
    """
    Map a total score to ``{'grade', 'remark'}`` using the school's default
    grading system.

    Returns None for a None score. Lookup failures degrade to ``{F, Error}``
    so that a broken grading table never blocks compilation; callers should
    treat that remark as a signal rather than a real grade.
    """
    if total_score is None:
        return None

    cache = cache or grading_cache
    try:
        levels = cache.get(school_id)
    except Exception as e:
        logger.error(f"Error fetching grading system for school {school_id}: {e}", exc_info=True)
        return dict(ERROR_GRADE)

    return grade_from_levels(total_score, levels)


def is_passing(score, pass_mark):
    """None when there is no score to judge."""
    if score is None:
        return None
    return score >= pass_mark


def grade_levels_warnings(levels):
    """Describe overlapping bands and gaps between consecutive bands."""
    warnings = []
    ordered = sorted(levels, key=lambda level: level['min_score'])

    for level in ordered:
        if level['min_score'] > level['max_score']:
            warnings.append(
                f"Grade {level['grade']} has min score {level['min_score']:g} above max score {level['max_score']:g}"
            )

    for lower, upper in zip(ordered, ordered[1:]):
        if upper['min_score'] <= lower['max_score']:
            warnings.append(
                f"Grades {lower['grade']} ({lower['min_score']:g}-{lower['max_score']:g}) and "
                f"{upper['grade']} ({upper['min_score']:g}-{upper['max_score']:g}) overlap"
            )
        elif upper['min_score'] - lower['max_score'] > 1:
            warnings.append(
                f"Scores between {lower['max_score']:g} and {upper['min_score']:g} are not covered by any grade"
            )

    return warnings
