"""
Assessment entry: validation, batched upserts and per-class completion views.

One engine serves admins and teachers; what differs is carried by the
AuthorizationContext. Unrestricted callers keep one row per
(student, subject, term) and attribute it to the resolved teacher. Teachers
upsert on (student, subject, term, teacher), so two teachers saving for the
same student end up owning two rows. Readers reconcile duplicates by taking
the most recently updated row.
"""
import logging

from django.conf import settings
from django.db import connection, transaction

from .caching import tagged_cache
from .completion import classify, summarize, COMPLETE, PARTIAL
from .exceptions import (
    AuthorizationError, BatchError, NotFoundError, ValidationError,
    classify_database_error, failure, success,
)
from .grading import assessment_total, compute_total, resolve_grade
from .models import (
    Assessment, ClassTerm, StudentClassEnrollment, Subject, TeacherSubject, Term, User,
)
from .teacher_assignment import check_teacher_grants, resolve_teacher

logger = logging.getLogger(__name__)

SCORE_FIELDS = (
    ('ca1', 'CA1'),
    ('ca2', 'CA2'),
    ('ca3', 'CA3'),
    ('exam', 'Exam'),
)
DEFAULT_SCORE_LIMITS = {'ca1': 10, 'ca2': 10, 'ca3': 10, 'exam': 70}
EDITABLE_FIELDS = ('ca1', 'ca2', 'ca3', 'exam', 'is_absent', 'is_exempt')


def score_limits():
    return getattr(settings, 'ASSESSMENT_SCORE_LIMITS', DEFAULT_SCORE_LIMITS)


def batch_size():
    return getattr(settings, 'ASSESSMENT_BATCH_SIZE', 5)


def assessment_tags(term_id, subject_id):
    return ('assessments', f"assessments-{term_id}-{subject_id}")


def invalidate_assessment_caches(term_id, subject_id):
    for tag in assessment_tags(term_id, subject_id):
        tagged_cache.invalidate_tag(tag)


def validate_scores(values, record_number=None):
    """Raise ValidationError naming the field, the bound and the record."""
    limits = score_limits()
    for field, label in SCORE_FIELDS:
        score = values.get(field)
        if score is None:
            continue
        maximum = limits[field]
        if score < 0 or score > maximum:
            where = f" (record {record_number})" if record_number is not None else ""
            raise ValidationError(f"{label} score must be between 0 and {maximum}, got {score}{where}")


def serialize_assessment(assessment):
    total = assessment_total(assessment)
    return {
        'id': assessment.id,
        'student_id': assessment.student_id,
        'subject_id': assessment.subject_id,
        'term_id': assessment.term_id,
        'enrollment_id': assessment.enrollment_id,
        'teacher_id': assessment.teacher_id,
        'ca1': assessment.ca1,
        'ca2': assessment.ca2,
        'ca3': assessment.ca3,
        'exam': assessment.exam,
        'total_score': total,
        'is_absent': assessment.is_absent,
        'is_exempt': assessment.is_exempt,
        'is_published': assessment.is_published,
        'updated_at': assessment.updated_at.isoformat() if assessment.updated_at else None,
    }


def canonical_assessments(assessments):
    """Latest row per (student, subject); older duplicates are ignored."""
    latest = {}
    for assessment in assessments:
        key = (assessment.student_id, assessment.subject_id)
        current = latest.get(key)
        if current is None or (assessment.updated_at, assessment.id) > (current.updated_at, current.id):
            latest[key] = assessment
    return latest


def load_class_term(class_term_id, context):
    class_term = (
        ClassTerm.objects
        .select_related('school_class', 'term')
        .filter(id=class_term_id)
        .first()
    )
    if class_term is None:
        raise NotFoundError(f"Class term with ID {class_term_id} not found")
    if context is not None:
        context.check_school(class_term.school_class.school_id, "Class term")
    return class_term


def require_teacher_grants(context, subject_id, class_term):
    """Teachers need both a subject grant for the term and a class grant."""
    if not context.is_restricted:
        return
    has_subject, has_class = check_teacher_grants(context.restricted_teacher_id, subject_id, class_term)
    if not has_class:
        raise AuthorizationError("You are not assigned to teach this class")
    if not has_subject:
        raise AuthorizationError("You are not assigned to teach this subject")


def _load_targets(term_id, subject_id, class_term_id, context):
    if not term_id or not subject_id or not class_term_id:
        raise ValidationError("Term ID, Subject ID, and Class Term ID are required")

    term = Term.objects.filter(id=term_id).first()
    if term is None:
        raise NotFoundError(f"Term with ID {term_id} not found")
    subject = Subject.objects.filter(id=subject_id).first()
    if subject is None:
        raise NotFoundError(f"Subject with ID {subject_id} not found")

    context.check_school(term.school_id, "Term")
    context.check_school(subject.school_id, "Subject")
    class_term = load_class_term(class_term_id, context)

    if class_term.term_id != term.id:
        raise ValidationError(f"Class term {class_term_id} does not belong to term {term_id}")

    return term, subject, class_term


def _resolve_enrollments(records, class_term):
    student_ids = [record['student_id'] for record in records]
    if len(set(student_ids)) != len(student_ids):
        raise ValidationError("Each student may appear only once per save")

    existing_students = set(
        User.objects.filter(id__in=student_ids, role='student').values_list('id', flat=True)
    )
    missing_students = [sid for sid in student_ids if sid not in existing_students]
    if missing_students:
        raise NotFoundError(f"Students not found: {', '.join(str(sid) for sid in missing_students)}")

    enrollments = {
        enrollment.student_id: enrollment
        for enrollment in StudentClassEnrollment.objects.filter(
            class_term=class_term,
            status='ACTIVE',
            student_id__in=student_ids,
        )
    }
    not_enrolled = [sid for sid in student_ids if sid not in enrollments]
    if not_enrolled:
        raise NotFoundError(f"Students not found in this class: {', '.join(str(sid) for sid in not_enrolled)}")

    for record in records:
        enrollment_id = record.get('enrollment_id')
        if enrollment_id is not None and enrollments[record['student_id']].id != enrollment_id:
            raise NotFoundError(
                f"Student class enrollment {enrollment_id} not found for student {record['student_id']} in this class"
            )

    return enrollments


def _existing_rows(student_ids, subject, term, context, teacher_id):
    rows = Assessment.objects.filter(student_id__in=student_ids, subject=subject, term=term)
    if context.is_restricted:
        rows = rows.filter(teacher_id=teacher_id)

    existing = {}
    for row in rows.order_by('-updated_at', '-id'):
        current = existing.get(row.student_id)
        if current is None:
            existing[row.student_id] = row
        elif current.teacher_id != teacher_id and row.teacher_id == teacher_id:
            # Prefer the row already owned by the teacher being written
            existing[row.student_id] = row
    return existing


def _apply_statement_timeout():
    timeout = getattr(settings, 'ASSESSMENT_TRANSACTION_TIMEOUT_MS', 5000)
    if timeout and connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(f"SET LOCAL statement_timeout = {int(timeout)}")


def _write_batch(batch, first_number, subject, term, enrollments, existing, teacher_id, context):
    for offset, record in enumerate(batch):
        validate_scores(record, first_number + offset)

    saved = []
    for record in batch:
        values = {
            'ca1': record.get('ca1'),
            'ca2': record.get('ca2'),
            'ca3': record.get('ca3'),
            'exam': record.get('exam'),
            'is_absent': bool(record.get('is_absent', False)),
            'is_exempt': bool(record.get('is_exempt', False)),
            'is_published': False,
            'teacher_id': teacher_id,
            'enrollment': enrollments[record['student_id']],
            'edited_by_id': context.user_id,
        }
        assessment = existing.get(record['student_id'])
        if assessment is not None:
            logger.info(f"Updating assessment {assessment.id} for student {record['student_id']}")
            for field, value in values.items():
                setattr(assessment, field, value)
            assessment.save()
        else:
            logger.info(f"Creating assessment for student {record['student_id']}")
            assessment = Assessment.objects.create(
                student_id=record['student_id'],
                subject=subject,
                term=term,
                created_by_id=context.user_id,
                **values
            )
        saved.append(assessment)
    return saved


def save_assessments(records, term_id, subject_id, class_term_id, context):
    """
    Validate and persist a list of score records for one subject of a class term.

    Records are written in batches, each inside its own transaction. A failing
    batch is rolled back on its own; earlier batches stay committed and the
    result reports the failing batch number and how many rows were saved.
    """
    saved = []
    try:
        context.check_can_write()
        if not records:
            raise ValidationError("No assessments provided")

        term, subject, class_term = _load_targets(term_id, subject_id, class_term_id, context)
        require_teacher_grants(context, subject.id, class_term)
        enrollments = _resolve_enrollments(records, class_term)

        if context.is_restricted:
            teacher_id = context.restricted_teacher_id
            teacher_info = {
                'is_assigned': True,
                'teacher_name': context.display_name,
                'message': f"Assessments saved by {context.display_name}",
            }
        else:
            assignment = resolve_teacher(subject.id, class_term.id)
            teacher_id = assignment['teacher_id']
            teacher_info = {
                'is_assigned': assignment['is_assigned'],
                'teacher_name': assignment['teacher_name'],
                'message': assignment['message'],
            }

        logger.info(
            f"Saving {len(records)} assessments for term {term.id}, subject {subject.id}, "
            f"class term {class_term.id}, teacher {teacher_id}"
        )

        student_ids = [record['student_id'] for record in records]
        existing = _existing_rows(student_ids, subject, term, context, teacher_id)
        logger.info(f"Found {len(existing)} existing assessments")

        size = batch_size()
        for start in range(0, len(records), size):
            batch = records[start:start + size]
            batch_number = start // size + 1
            logger.info(f"Processing batch {batch_number}, items {start + 1} to {start + len(batch)}")
            try:
                with transaction.atomic():
                    _apply_statement_timeout()
                    rows = _write_batch(
                        batch, start + 1, subject, term, enrollments, existing, teacher_id, context
                    )
            except Exception as e:
                logger.error(f"Error in batch {batch_number}: {e}")
                raise BatchError(
                    f"Failed to save batch {batch_number}: {e}",
                    batch_number,
                    classify_database_error(e),
                ) from e
            saved.extend(rows)
            logger.info(f"Batch {batch_number} completed successfully")

        invalidate_assessment_caches(term.id, subject.id)
        logger.info(f"Successfully saved {len(saved)} assessments. {teacher_info['message']}")
        return success(
            [serialize_assessment(row) for row in saved],
            teacher_info=teacher_info,
            message=f"Successfully saved {len(saved)} assessment{'s' if len(saved) != 1 else ''}",
        )
    except BatchError as e:
        if saved:
            invalidate_assessment_caches(term_id, subject_id)
        return failure(
            e,
            failed_batch=e.batch_number,
            cause_kind=e.cause_kind.value,
            saved_count=len(saved),
            data=[serialize_assessment(row) for row in saved],
        )
    except Exception as e:
        return failure(e)


def bulk_update_assessments(updates, term_id, subject_id, context):
    """Patch existing rows by id in a single transaction."""
    try:
        context.check_can_write()
        if not updates:
            raise ValidationError("No updates provided")

        ids = [update['id'] for update in updates]
        rows = {
            row.id: row
            for row in Assessment.objects.select_related('enrollment', 'enrollment__class_term').filter(
                id__in=ids, term_id=term_id, subject_id=subject_id
            )
        }
        missing = [assessment_id for assessment_id in ids if assessment_id not in rows]
        if missing:
            raise NotFoundError(f"Assessments not found: {', '.join(str(i) for i in missing)}")

        for row in rows.values():
            context.check_school(row.enrollment.school_id, "Assessment")
            if context.is_restricted:
                if row.teacher_id != context.restricted_teacher_id:
                    raise AuthorizationError("Some assessments do not belong to you")
                require_teacher_grants(context, subject_id, row.enrollment.class_term)

        with transaction.atomic():
            _apply_statement_timeout()
            updated = []
            for number, update in enumerate(updates, start=1):
                row = rows[update['id']]
                for field in EDITABLE_FIELDS:
                    if field in update:
                        setattr(row, field, update[field])
                validate_scores({field: getattr(row, field) for field, _ in SCORE_FIELDS}, number)
                # Edited scores go back through publication
                row.is_published = False
                row.edited_by_id = context.user_id
                row.save()
                updated.append(row)

        invalidate_assessment_caches(term_id, subject_id)
        return success([serialize_assessment(row) for row in updated])
    except Exception as e:
        return failure(e)


def get_teacher_assignment(subject_id, class_term_id, context):
    """Resolved owner of a subject in a class term, limited to the caller's school."""
    try:
        class_term = load_class_term(class_term_id, context)
        subject = Subject.objects.filter(id=subject_id).first()
        if subject is None:
            raise NotFoundError(f"Subject with ID {subject_id} not found")
        context.check_school(subject.school_id, "Subject")
        return success(resolve_teacher(subject.id, class_term.id))
    except Exception as e:
        return failure(e)


def _status_row(enrollment, assessment, status, school_id):
    total = grade = remark = None
    if status.status in (COMPLETE, PARTIAL):
        total = compute_total(assessment.ca1, assessment.ca2, assessment.ca3, assessment.exam)
        grade_info = resolve_grade(total, school_id)
        if grade_info:
            grade = grade_info['grade']
            remark = grade_info['remark']

    student = enrollment.student
    return {
        'id': assessment.id if assessment else None,
        'student_id': student.id,
        'enrollment_id': enrollment.id,
        'student_name': student.display_name,
        'admission_no': student.admission_no,
        'ca1': assessment.ca1 if assessment else None,
        'ca2': assessment.ca2 if assessment else None,
        'ca3': assessment.ca3 if assessment else None,
        'exam': assessment.exam if assessment else None,
        'total_score': total,
        'grade': grade,
        'remark': remark,
        'is_absent': assessment.is_absent if assessment else False,
        'is_exempt': assessment.is_exempt if assessment else False,
        'is_published': assessment.is_published if assessment else False,
        'completion_status': status.status,
        'contributes_to_stats': status.contributes_to_stats,
        'has_data': assessment is not None,
        'last_updated': assessment.updated_at.isoformat() if assessment else None,
    }


def get_assessments_with_status(class_term_id, subject_id, context):
    """Every active student of the class with their assessment and completion status."""
    try:
        class_term = load_class_term(class_term_id, context)
        subject = Subject.objects.filter(id=subject_id).first()
        if subject is None:
            raise NotFoundError(f"Subject with ID {subject_id} not found")
        context.check_school(subject.school_id, "Subject")
        require_teacher_grants(context, subject.id, class_term)

        enrollments = list(
            StudentClassEnrollment.objects
            .filter(class_term=class_term, status='ACTIVE')
            .select_related('student')
            .order_by('student__first_name', 'student__last_name', 'student_id')
        )
        assessments = Assessment.objects.filter(
            enrollment__in=enrollments,
            subject=subject,
            term_id=class_term.term_id,
        )
        if context.is_restricted:
            assessments = assessments.filter(teacher_id=context.restricted_teacher_id)
        latest = canonical_assessments(assessments)

        school_id = class_term.school_class.school_id
        rows = []
        completions = []
        for enrollment in enrollments:
            assessment = latest.get((enrollment.student_id, subject.id))
            status = classify(assessment)
            rows.append(_status_row(enrollment, assessment, status, school_id))
            completions.append((status, assessment is not None))
        statistics = summarize(completions)

        return success({
            'assessments': rows,
            'statistics': statistics,
            'class_info': {
                'class_name': class_term.school_class.name,
                'term_name': class_term.term.name,
                'subject_name': subject.name,
            },
        })
    except Exception as e:
        return failure(e)


def _subject_listing(term_id, subject_id, context, class_term_id):
    assessments = (
        Assessment.objects
        .filter(term_id=term_id, subject_id=subject_id)
        .select_related('student', 'enrollment', 'enrollment__class_term__school_class')
        .order_by('student__first_name', 'student__last_name', 'id')
    )
    if context.school_id is not None:
        assessments = assessments.filter(enrollment__school_id=context.school_id)
    if context.is_restricted:
        assessments = assessments.filter(teacher_id=context.restricted_teacher_id)
    if class_term_id:
        assessments = assessments.filter(enrollment__class_term_id=class_term_id)

    rows = []
    for assessment in assessments:
        row = serialize_assessment(assessment)
        grade_info = resolve_grade(row['total_score'], assessment.enrollment.school_id)
        row.update({
            'student_name': assessment.student.display_name,
            'admission_no': assessment.student.admission_no,
            'class_name': assessment.enrollment.class_term.school_class.name,
            'grade': grade_info['grade'] if grade_info else None,
            'remark': grade_info['remark'] if grade_info else None,
        })
        rows.append(row)
    return rows


def get_assessments_for_subject(term_id, subject_id, context, class_term_id=None):
    """Flat listing of a subject's assessments for a term, served from cache."""
    try:
        if context.is_restricted:
            subject = Subject.objects.filter(id=subject_id).first()
            if subject is None:
                raise NotFoundError(f"Subject with ID {subject_id} not found")
            term = Term.objects.filter(id=term_id).first()
            if term is None:
                raise NotFoundError(f"Term with ID {term_id} not found")
            if class_term_id:
                require_teacher_grants(context, subject_id, load_class_term(class_term_id, context))
            elif not TeacherSubject.objects.filter(
                teacher_id=context.restricted_teacher_id, subject_id=subject.id, term_id=term.id
            ).exists():
                raise AuthorizationError("You are not assigned to teach this subject")

        scope = f"{context.school_id}:{context.restricted_teacher_id}:{class_term_id}"
        rows = tagged_cache.get_or_set(
            f"assessment-list:{term_id}:{subject_id}:{scope}",
            lambda: _subject_listing(term_id, subject_id, context, class_term_id),
            tags=assessment_tags(term_id, subject_id),
            timeout=getattr(settings, 'ASSESSMENT_CACHE_TIMEOUT', 300),
        )
        return success(rows)
    except Exception as e:
        return failure(e)
