"""
Report card data for one student in one term.
"""
import logging

from .exceptions import NotFoundError, failure, success
from .grading import DEFAULT_GRADE_LEVELS, assessment_total, grading_cache, is_passing
from .models import StudentClassEnrollment, Term, User
from .ranking import class_subjects, rank_class, subject_statistics

logger = logging.getLogger(__name__)

NOT_TAKEN = 'Not Taken'


def _subject_remark(entry, assessment):
    if assessment is not None and assessment.is_absent:
        return 'Absent'
    if assessment is not None and assessment.is_exempt:
        return 'Exempt'
    if entry['score'] is None:
        return NOT_TAKEN
    return entry['remark']


def get_student_report(student_id, term_id, context):
    try:
        student = User.objects.filter(id=student_id, role='student').first()
        if student is None:
            raise NotFoundError("Student not found")
        context.check_school(student.school_id, "Student")

        term = Term.objects.filter(id=term_id).first()
        if term is None:
            raise NotFoundError("Term not found")
        context.check_school(term.school_id, "Term")

        enrollment = (
            StudentClassEnrollment.objects
            .filter(student=student, class_term__term=term, status='ACTIVE')
            .select_related('class_term__school_class', 'class_term__term')
            .first()
        )
        if enrollment is None:
            raise NotFoundError("Student is not enrolled in any class for this term")
        class_term = enrollment.class_term

        results = rank_class(class_term.id, context=context)
        subjects = class_subjects(class_term)
        statistics = {row['subject_id']: row for row in subject_statistics(results, subjects)}

        own = next((row for row in results if row['student_id'] == student.id), None)
        if own is None:
            raise NotFoundError("Student has no results in this class")

        assessments = {
            assessment.subject_id: assessment
            for assessment in student.assessments.filter(term=term, enrollment=enrollment).order_by('updated_at', 'id')
        }

        school_id = class_term.school_class.school_id
        pass_mark = grading_cache.pass_mark(school_id)

        subject_rows = []
        for subject in subjects:
            entry = own['subjects'][subject.id]
            assessment = assessments.get(subject.id)
            stats = statistics[subject.id]
            subject_rows.append({
                'subject_id': subject.id,
                'subject_name': subject.name,
                'ca1': assessment.ca1 if assessment else None,
                'ca2': assessment.ca2 if assessment else None,
                'ca3': assessment.ca3 if assessment else None,
                'exam': assessment.exam if assessment else None,
                'score': assessment_total(assessment),
                'grade': entry['grade'],
                'remark': _subject_remark(entry, assessment),
                'passed': is_passing(entry['score'], pass_mark),
                'position': entry['position'],
                'out_of': stats['count'],
                'highest': stats['highest'],
                'lowest': stats['lowest'],
                'average': stats['average'],
            })

        levels = grading_cache.get(school_id) or DEFAULT_GRADE_LEVELS
        ranked_students = sum(1 for row in results if row['position'])

        logger.info(f"Built report for student {student.id}, term {term.id}")
        return success({
            'student': {
                'id': student.id,
                'name': student.display_name,
                'admission_no': student.admission_no,
            },
            'class_info': {
                'class_term_id': class_term.id,
                'class_name': class_term.school_class.name,
                'term_name': term.name,
                'academic_year': term.academic_year,
            },
            'subjects': subject_rows,
            'total_score': own['total_score'],
            'average_score': own['average_score'],
            'grade': own['grade'],
            'remark': own['remark'],
            'passed': is_passing(own['average_score'], pass_mark),
            'pass_mark': pass_mark,
            'position': own['position'],
            'out_of': ranked_students,
            'grading_levels': levels,
        })
    except Exception as e:
        return failure(e)
