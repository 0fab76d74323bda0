"""
Class-wide results: per-student totals, positions, class statistics and
publication of completed results.
"""
import logging

from django.db import transaction

from .assessments import canonical_assessments, invalidate_assessment_caches, load_class_term
from .completion import is_finalized
from .exceptions import AuthorizationError, NotFoundError, ValidationError, failure, success
from .grading import assessment_total, resolve_grade
from .models import Assessment, StudentClassEnrollment, Subject, TeacherClassTerm, TeacherSubject

logger = logging.getLogger(__name__)


def assign_positions(rows, key, field='position'):
    """
    Standard competition ranking: equal scores share a position and the next
    position skips (90, 90, 70 -> 1, 1, 3). Rows whose key is None get
    position 0 and are listed last. Returns the rows in ranked order.
    """
    scored = [row for row in rows if key(row) is not None]
    unscored = [row for row in rows if key(row) is None]
    scored.sort(key=key, reverse=True)

    previous = None
    position = 0
    for index, row in enumerate(scored, start=1):
        value = key(row)
        if value != previous:
            position = index
            previous = value
        row[field] = position

    for row in unscored:
        row[field] = 0

    return scored + unscored


def _average(values):
    return round(sum(values) / len(values), 2) if values else None


def class_subjects(class_term, subject_ids=None):
    if subject_ids:
        subjects = list(Subject.objects.filter(id__in=subject_ids).order_by('name'))
        missing = set(subject_ids) - {subject.id for subject in subjects}
        if missing:
            raise NotFoundError(f"Subjects not found: {', '.join(str(i) for i in sorted(missing))}")
        for subject in subjects:
            if subject.school_id != class_term.school_class.school_id:
                raise ValidationError(f"Subject {subject.name} does not belong to this class's school")
        return subjects
    return list(class_term.subjects.order_by('name'))


def _check_class_access(context, class_term):
    if context is not None and context.is_restricted:
        if not TeacherClassTerm.objects.filter(
            teacher_id=context.restricted_teacher_id, class_term=class_term
        ).exists():
            raise AuthorizationError("You are not assigned to teach this class")


def active_enrollments(class_term):
    return list(
        StudentClassEnrollment.objects
        .filter(class_term=class_term, status='ACTIVE')
        .select_related('student')
        .order_by('student__first_name', 'student__last_name', 'student_id')
    )


def rank_class(class_term_id, subject_ids=None, context=None):
    """
    Compile and rank every active student of a class term.

    Raises CompilerError subclasses for missing or inaccessible class terms;
    ``get_class_results`` wraps this in a result dict.
    """
    class_term = load_class_term(class_term_id, context)
    _check_class_access(context, class_term)

    subjects = class_subjects(class_term, subject_ids)
    enrollments = active_enrollments(class_term)
    school_id = class_term.school_class.school_id

    latest = canonical_assessments(
        Assessment.objects.filter(
            enrollment__in=enrollments,
            term_id=class_term.term_id,
            subject__in=subjects,
        )
    )

    results = []
    for enrollment in enrollments:
        student = enrollment.student
        subject_results = {}
        scores = []
        for subject in subjects:
            assessment = latest.get((student.id, subject.id))
            score = assessment_total(assessment)
            grade_info = resolve_grade(score, school_id)
            subject_results[subject.id] = {
                'subject_id': subject.id,
                'subject_name': subject.name,
                'score': score,
                'grade': grade_info['grade'] if grade_info else None,
                'remark': grade_info['remark'] if grade_info else None,
                'is_absent': bool(assessment and assessment.is_absent),
                'is_exempt': bool(assessment and assessment.is_exempt),
            }
            if score is not None:
                scores.append(score)

        total = sum(scores) if scores else None
        average = _average(scores)
        overall = resolve_grade(average, school_id)
        results.append({
            'student_id': student.id,
            'student_name': student.display_name,
            'admission_no': student.admission_no,
            'subjects': subject_results,
            'subjects_taken': len(scores),
            'total_score': total,
            'average_score': average,
            'grade': overall['grade'] if overall else None,
            'remark': overall['remark'] if overall else None,
        })

    ranked = assign_positions(results, key=lambda row: row['total_score'])
    logger.info(f"Ranked {len(ranked)} students in class term {class_term.id} across {len(subjects)} subjects")
    return ranked


def subject_statistics(results, subjects):
    """
    Highest/lowest/average per subject. Also writes each student's subject
    position into their subject entry.
    """
    statistics = []
    for subject in subjects:
        entries = [row['subjects'][subject.id] for row in results if subject.id in row['subjects']]
        assign_positions(entries, key=lambda entry: entry['score'])
        scores = [entry['score'] for entry in entries if entry['score'] is not None]
        statistics.append({
            'subject_id': subject.id,
            'subject_name': subject.name,
            'count': len(scores),
            'highest': max(scores) if scores else None,
            'lowest': min(scores) if scores else None,
            'average': _average(scores),
        })
    return statistics


def get_class_results(class_term_id, context, subject_ids=None):
    try:
        return success(rank_class(class_term_id, subject_ids, context))
    except Exception as e:
        return failure(e)


def class_statistics(class_term_id, context):
    try:
        class_term = load_class_term(class_term_id, context)
        results = rank_class(class_term_id, context=context)
        subjects = class_subjects(class_term)
        totals = [row['total_score'] for row in results if row['total_score'] is not None]

        return success({
            'class_info': {
                'class_term_id': class_term.id,
                'class_name': class_term.school_class.name,
                'term_name': class_term.term.name,
            },
            'total_students': len(results),
            'students_ranked': len(totals),
            'highest': max(totals) if totals else None,
            'lowest': min(totals) if totals else None,
            'average': _average(totals),
            'subjects': subject_statistics(results, subjects),
        })
    except Exception as e:
        return failure(e)


def auto_publish(class_term_id, subject_id=None, context=None):
    """
    Publish a class's results once every active student is finalized.

    With ``subject_id`` only that subject is checked and published. Without it
    every subject of the class term must be finalized before anything is
    published. Absent and exempt rows count as finalized.
    """
    try:
        if context is not None:
            context.check_can_write()
        class_term = load_class_term(class_term_id, context)
        _check_class_access(context, class_term)

        if subject_id:
            subjects = class_subjects(class_term, [subject_id])
        else:
            subjects = class_subjects(class_term)
        if not subjects:
            raise ValidationError("No subjects configured for this class")

        if context is not None and context.is_restricted:
            granted = set(
                TeacherSubject.objects.filter(
                    teacher_id=context.restricted_teacher_id,
                    term_id=class_term.term_id,
                    subject__in=subjects,
                ).values_list('subject_id', flat=True)
            )
            if any(subject.id not in granted for subject in subjects):
                raise AuthorizationError("You are not assigned to teach this subject")

        enrollments = active_enrollments(class_term)
        if not enrollments:
            raise ValidationError("No active students in this class")

        rows = Assessment.objects.filter(
            enrollment__in=enrollments,
            term_id=class_term.term_id,
            subject__in=subjects,
        )
        latest = canonical_assessments(rows)

        incomplete_students = set()
        for enrollment in enrollments:
            for subject in subjects:
                assessment = latest.get((enrollment.student_id, subject.id))
                if assessment is None or not is_finalized(assessment):
                    incomplete_students.add(enrollment.student_id)

        if incomplete_students:
            logger.info(
                f"Not publishing class term {class_term.id}: "
                f"{len(incomplete_students)} students have incomplete results"
            )
            return success({
                'published': False,
                'published_count': 0,
                'incomplete_count': len(incomplete_students),
            }, message="Results incomplete, cannot publish")

        # Saved row by row so every publication is audited
        editor_id = context.user_id if context is not None else None
        published_count = 0
        with transaction.atomic():
            for assessment in rows.filter(is_published=False):
                assessment.is_published = True
                assessment.edited_by_id = editor_id
                assessment.save(update_fields=['is_published', 'edited_by'])
                published_count += 1
        for subject in subjects:
            invalidate_assessment_caches(class_term.term_id, subject.id)
        logger.info(f"Published {published_count} assessments for class term {class_term.id}")
        return success({
            'published': True,
            'published_count': published_count,
            'incomplete_count': 0,
        }, message="Results published successfully")
    except Exception as e:
        return failure(e)
