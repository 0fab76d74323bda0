"""
Which teacher owns a subject in a class term.

Resolution order: the subject teacher (holds the subject for the term and
teaches the class), then any class teacher, then nobody. The result is
advisory for admin saves; teacher saves are gated by ``check_teacher_grants``.
"""
import logging

from .models import ClassTerm, Subject, TeacherClassTerm, TeacherSubject

logger = logging.getLogger(__name__)


def _assignment(teacher, message):
    return {
        'teacher_id': teacher.id if teacher else None,
        'teacher_name': teacher.display_name if teacher else None,
        'is_assigned': teacher is not None,
        'message': message,
    }


def resolve_teacher(subject_id, class_term_id):
    try:
        subject = Subject.objects.filter(id=subject_id).first()
        class_term = (
            ClassTerm.objects
            .select_related('school_class', 'term')
            .filter(id=class_term_id)
            .first()
        )
        subject_name = str(subject) if subject else "Unknown Subject"
        class_name = class_term.school_class.name if class_term else "Unknown Class"

        if class_term is not None:
            subject_teacher = (
                TeacherSubject.objects
                .filter(
                    subject_id=subject_id,
                    term_id=class_term.term_id,
                    teacher__teacher_class_terms__class_term=class_term_id,
                )
                .select_related('teacher')
                .order_by('id')
                .first()
            )
            if subject_teacher:
                teacher = subject_teacher.teacher
                logger.info(f"Found subject teacher {teacher.id} for subject {subject_id} in class term {class_term_id}")
                return _assignment(teacher, f"Subject teacher: {teacher.display_name}")

        class_teacher = (
            TeacherClassTerm.objects
            .filter(class_term_id=class_term_id)
            .select_related('teacher')
            .order_by('id')
            .first()
        )
        if class_teacher:
            teacher = class_teacher.teacher
            logger.info(f"Found class teacher {teacher.id} for class term {class_term_id}")
            return _assignment(
                teacher,
                f"Class teacher: {teacher.display_name} (no specific subject assignment)",
            )

        logger.info(f"No teacher assigned to subject {subject_id} or class term {class_term_id}")
        return _assignment(
            None,
            f"No teacher assigned to {subject_name} for {class_name}. "
            "Assessments will be saved without teacher assignment.",
        )
    except Exception as e:
        logger.error(f"Error finding assigned teacher: {e}", exc_info=True)
        return _assignment(None, "Error checking teacher assignment")


def check_teacher_grants(teacher_id, subject_id, class_term):
    """Return ``(has_subject_grant, has_class_grant)`` for the teacher."""
    has_subject = TeacherSubject.objects.filter(
        teacher_id=teacher_id,
        subject_id=subject_id,
        term_id=class_term.term_id,
    ).exists()
    has_class = TeacherClassTerm.objects.filter(
        teacher_id=teacher_id,
        class_term_id=class_term.id,
    ).exists()
    return has_subject, has_class
