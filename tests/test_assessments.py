from authentication.permissions import AuthorizationContext
from results.assessments import (
    bulk_update_assessments, get_assessments_for_subject, get_assessments_with_status, save_assessments,
)
from results.models import Assessment, ChangeLog, School, Subject

from .base import ResultsTestCase


class SaveAssessmentsTests(ResultsTestCase):

    def setUp(self):
        super().setUp()
        self.student, self.enrollment = self.make_student('Amina')

    def save(self, records, context=None):
        return save_assessments(
            records, self.term.id, self.subject.id, self.class_term.id, context or self.admin_context()
        )

    def test_ca1_above_bound_fails_its_batch(self):
        result = self.save([self.record(self.student, ca1=11, ca2=5, ca3=5, exam=50)])

        assert not result['success']
        assert 'CA1' in result['error']
        assert '10' in result['error']
        assert result['failed_batch'] == 1
        assert result['saved_count'] == 0
        assert result['cause_kind'] == 'validation'
        assert not Assessment.objects.exists()

    def test_exam_above_bound_fails(self):
        result = self.save([self.record(self.student, exam=71)])

        assert not result['success']
        assert 'Exam' in result['error']
        assert '70' in result['error']

    def test_negative_score_fails(self):
        result = self.save([self.record(self.student, ca2=-1)])

        assert not result['success']
        assert 'CA2' in result['error']

    def test_zero_score_is_saved(self):
        result = self.save([self.record(self.student, ca1=0)])

        assert result['success'], result
        assessment = Assessment.objects.get()
        assert assessment.ca1 == 0
        assert assessment.ca2 is None
        assert result['data'][0]['total_score'] == 0

    def test_admin_saving_twice_keeps_one_row(self):
        self.save([self.record(self.student, ca1=5, ca2=6, ca3=7, exam=40)])
        result = self.save([self.record(self.student, ca1=8, ca2=6, ca3=7, exam=50)])

        assert result['success']
        assert Assessment.objects.count() == 1
        assessment = Assessment.objects.get()
        assert assessment.ca1 == 8
        assert assessment.exam == 50
        assert assessment.edited_by_id == self.admin.id
        assert assessment.created_by_id == self.admin.id

    def test_admin_save_is_attributed_to_subject_teacher(self):
        teacher = self.make_teacher('sam_maths', subjects=[self.subject], class_terms=[self.class_term])

        result = self.save([self.record(self.student, ca1=5)])

        assert result['teacher_info']['is_assigned']
        assert result['teacher_info']['message'].startswith("Subject teacher:")
        assert Assessment.objects.get().teacher_id == teacher.id

    def test_admin_save_without_teacher_proceeds(self):
        result = self.save([self.record(self.student, ca1=5)])

        assert result['success']
        assert not result['teacher_info']['is_assigned']
        assert Assessment.objects.get().teacher_id is None
        assert result['message'] == "Successfully saved 1 assessment"

    def test_different_teacher_saving_creates_second_row(self):
        self.make_teacher('sam_maths', subjects=[self.subject], class_terms=[self.class_term])
        other = self.make_teacher('tola_maths', subjects=[self.subject], class_terms=[self.class_term])

        first = self.save([self.record(self.student, ca1=5, ca2=5, ca3=5, exam=50)])
        second = self.save([self.record(self.student, ca1=9, ca2=9, ca3=9, exam=60)], self.teacher_context(other))

        assert first['success'] and second['success'], second
        assert Assessment.objects.count() == 2
        assert Assessment.objects.filter(teacher=other).get().ca1 == 9

    def test_teacher_saving_twice_updates_own_row(self):
        teacher = self.make_teacher('sam_maths', subjects=[self.subject], class_terms=[self.class_term])
        context = self.teacher_context(teacher)

        self.save([self.record(self.student, ca1=5)], context)
        self.save([self.record(self.student, ca1=6)], context)

        assert Assessment.objects.count() == 1
        assert Assessment.objects.get().ca1 == 6

    def test_partial_batch_failure_keeps_earlier_batches(self):
        students = [self.student] + [self.make_student(f"Student{i}")[0] for i in range(6)]
        records = [self.record(student, ca1=5, ca2=5, ca3=5, exam=50) for student in students]
        records[5]['exam'] = 95

        result = self.save(records)

        assert not result['success']
        assert result['error_kind'] == 'partial_batch'
        assert result['failed_batch'] == 2
        assert 'batch 2' in result['error']
        assert 'record 6' in result['error']
        assert result['saved_count'] == 5
        assert len(result['data']) == 5
        assert Assessment.objects.count() == 5
        assert not Assessment.objects.filter(student=students[6]).exists()

    def test_save_resets_publication(self):
        self.make_assessment(self.student, self.enrollment, ca1=5, is_published=True)

        self.save([self.record(self.student, ca1=6)])

        assessment = Assessment.objects.get()
        assert assessment.ca1 == 6
        assert not assessment.is_published

    def test_scores_omitted_are_cleared(self):
        self.make_assessment(self.student, self.enrollment, ca1=5, ca2=6)

        self.save([self.record(self.student, ca1=7)])

        assessment = Assessment.objects.get()
        assert assessment.ca2 is None

    def test_teacher_without_class_grant_is_rejected(self):
        teacher = self.make_teacher('sam_maths', subjects=[self.subject])

        result = self.save([self.record(self.student, ca1=5)], self.teacher_context(teacher))

        assert not result['success']
        assert result['error_kind'] == 'authorization'
        assert result['error'] == "You are not assigned to teach this class"
        assert not Assessment.objects.exists()

    def test_teacher_without_subject_grant_is_rejected(self):
        teacher = self.make_teacher('grace_class', class_terms=[self.class_term])

        result = self.save([self.record(self.student, ca1=5)], self.teacher_context(teacher))

        assert result['error'] == "You are not assigned to teach this subject"

    def test_student_outside_the_class_is_rejected(self):
        outsider, _ = self.make_student('Musa', status='WITHDRAWN')

        result = self.save([self.record(self.student, ca1=5), self.record(outsider, ca1=5)])

        assert not result['success']
        assert result['error_kind'] == 'not_found'
        assert 'Students not found in this class' in result['error']
        assert not Assessment.objects.exists()

    def test_mismatched_enrollment_is_rejected(self):
        other, other_enrollment = self.make_student('Musa')

        result = self.save([self.record(self.student, ca1=5, enrollment_id=other_enrollment.id)])

        assert result['error_kind'] == 'not_found'

    def test_duplicate_students_are_rejected(self):
        result = self.save([self.record(self.student, ca1=5), self.record(self.student, ca1=6)])

        assert result['error_kind'] == 'validation'

    def test_empty_save_is_rejected(self):
        result = self.save([])

        assert result['error_kind'] == 'validation'

    def test_missing_term_is_reported(self):
        result = save_assessments(
            [self.record(self.student, ca1=5)], 9999, self.subject.id, self.class_term.id, self.admin_context()
        )

        assert result['error'] == "Term with ID 9999 not found"
        assert result['error_kind'] == 'not_found'

    def test_admin_of_another_school_is_rejected(self):
        other_school = School.objects.create(name='Riverside Academy')
        context = AuthorizationContext(self.admin.id, other_school.id, can_write_any_teacher=True)

        result = self.save([self.record(self.student, ca1=5)], context)

        assert result['error_kind'] == 'authorization'

    def test_save_is_audited(self):
        self.save([self.record(self.student, ca1=5)])

        entry = ChangeLog.objects.get(model='Assessment')
        assert entry.action == 'create'
        assert entry.user_id == self.admin.id
        assert entry.school_id == self.school.id

    def test_context_without_write_capability_is_rejected(self):
        read_only = AuthorizationContext(self.admin.id, self.school.id, can_write_any_teacher=False)

        result = self.save([self.record(self.student, ca1=5)], read_only)

        assert result['error_kind'] == 'authorization'
        assert not Assessment.objects.exists()


class AssessmentStatusTests(ResultsTestCase):

    def test_rows_and_statistics(self):
        complete, complete_enrollment = self.make_student('Amina')
        partial, partial_enrollment = self.make_student('Bola')
        absent, absent_enrollment = self.make_student('Chidi')
        self.make_student('Dayo')
        self.make_student('Efe', status='WITHDRAWN')

        self.make_assessment(complete, complete_enrollment, ca1=8, ca2=8, ca3=8, exam=60)
        self.make_assessment(partial, partial_enrollment, ca1=8, exam=30)
        self.make_assessment(absent, absent_enrollment, is_absent=True)

        result = get_assessments_with_status(self.class_term.id, self.subject.id, self.admin_context())

        assert result['success'], result
        rows = {row['student_name']: row for row in result['data']['assessments']}
        assert len(rows) == 4
        assert rows['Amina Student']['completion_status'] == 'complete'
        assert rows['Amina Student']['total_score'] == 84
        assert rows['Amina Student']['grade'] == 'A1'
        assert rows['Bola Student']['completion_status'] == 'partial'
        assert rows['Bola Student']['total_score'] == 38
        assert rows['Chidi Student']['completion_status'] == 'absent'
        assert rows['Chidi Student']['total_score'] is None
        assert rows['Dayo Student']['completion_status'] == 'not_started'
        assert not rows['Dayo Student']['has_data']

        statistics = result['data']['statistics']
        assert statistics['total_students'] == 4
        assert statistics['students_with_data'] == 3
        assert statistics['students_with_scores'] == 2
        assert rows['Bola Student']['contributes_to_stats']
        assert not rows['Chidi Student']['contributes_to_stats']
        assert statistics['completion_percentage'] == 50
        assert result['data']['class_info']['subject_name'] == 'Mathematics'

    def test_latest_row_wins(self):
        student, enrollment = self.make_student('Amina')
        first = self.make_teacher('sam_maths')
        second = self.make_teacher('tola_maths')
        self.make_assessment(student, enrollment, teacher=first, ca1=1)
        self.make_assessment(student, enrollment, teacher=second, ca1=9)

        result = get_assessments_with_status(self.class_term.id, self.subject.id, self.admin_context())

        assert result['data']['assessments'][0]['ca1'] == 9

    def test_teacher_sees_only_own_rows(self):
        student, enrollment = self.make_student('Amina')
        teacher = self.make_teacher('sam_maths', subjects=[self.subject], class_terms=[self.class_term])
        other = self.make_teacher('tola_maths')
        self.make_assessment(student, enrollment, teacher=other, ca1=9)

        result = get_assessments_with_status(self.class_term.id, self.subject.id, self.teacher_context(teacher))

        assert result['success']
        assert result['data']['assessments'][0]['completion_status'] == 'not_started'


class AssessmentListTests(ResultsTestCase):

    def test_listing_is_cached_until_a_save(self):
        student, enrollment = self.make_student('Amina')
        other, other_enrollment = self.make_student('Bola')
        self.make_assessment(student, enrollment, ca1=5)
        context = self.admin_context()

        first = get_assessments_for_subject(self.term.id, self.subject.id, context)
        assert len(first['data']) == 1

        # Written behind the service's back: still served from cache
        self.make_assessment(other, other_enrollment, ca1=6)
        assert len(get_assessments_for_subject(self.term.id, self.subject.id, context)['data']) == 1

        save_assessments([self.record(student, ca1=7)], self.term.id, self.subject.id, self.class_term.id, context)
        rows = get_assessments_for_subject(self.term.id, self.subject.id, context)['data']
        assert len(rows) == 2
        assert {row['ca1'] for row in rows} == {7, 6}

    def test_other_subjects_are_not_listed(self):
        student, enrollment = self.make_student('Amina')
        english = self.add_subject('English')
        self.make_assessment(student, enrollment, subject=english, ca1=5)

        result = get_assessments_for_subject(self.term.id, self.subject.id, self.admin_context())

        assert result['data'] == []

    def test_teacher_needs_subject_grant(self):
        teacher = self.make_teacher('grace_class', class_terms=[self.class_term])

        result = get_assessments_for_subject(self.term.id, self.subject.id, self.teacher_context(teacher))

        assert result['error_kind'] == 'authorization'


class BulkUpdateTests(ResultsTestCase):

    def setUp(self):
        super().setUp()
        self.student, self.enrollment = self.make_student('Amina')
        self.assessment = self.make_assessment(self.student, self.enrollment, ca1=5, ca2=5)

    def test_updates_given_fields(self):
        result = bulk_update_assessments(
            [{'id': self.assessment.id, 'ca2': 9, 'exam': 55}], self.term.id, self.subject.id, self.admin_context()
        )

        assert result['success'], result
        self.assessment.refresh_from_db()
        assert self.assessment.ca1 == 5
        assert self.assessment.ca2 == 9
        assert self.assessment.exam == 55

    def test_bound_violation_rolls_back_everything(self):
        other, other_enrollment = self.make_student('Bola')
        second = self.make_assessment(other, other_enrollment, ca1=3)

        result = bulk_update_assessments(
            [{'id': second.id, 'ca1': 4}, {'id': self.assessment.id, 'ca3': 12}],
            self.term.id, self.subject.id, self.admin_context(),
        )

        assert result['error_kind'] == 'validation'
        assert 'CA3' in result['error']
        second.refresh_from_db()
        assert second.ca1 == 3

    def test_teacher_cannot_update_other_teachers_rows(self):
        teacher = self.make_teacher('sam_maths', subjects=[self.subject], class_terms=[self.class_term])

        result = bulk_update_assessments(
            [{'id': self.assessment.id, 'ca1': 9}], self.term.id, self.subject.id, self.teacher_context(teacher)
        )

        assert result['error_kind'] == 'authorization'

    def test_unknown_assessment(self):
        english = Subject.objects.create(name='English', school=self.school)

        result = bulk_update_assessments(
            [{'id': self.assessment.id, 'ca1': 9}], self.term.id, english.id, self.admin_context()
        )

        assert result['error_kind'] == 'not_found'

    def test_context_without_write_capability_is_rejected(self):
        read_only = AuthorizationContext(self.admin.id, self.school.id, can_write_any_teacher=False)

        result = bulk_update_assessments(
            [{'id': self.assessment.id, 'ca1': 9}], self.term.id, self.subject.id, read_only
        )

        assert result['error_kind'] == 'authorization'
        self.assessment.refresh_from_db()
        assert self.assessment.ca1 == 5

    def test_update_resets_publication(self):
        Assessment.objects.filter(id=self.assessment.id).update(is_published=True)

        result = bulk_update_assessments(
            [{'id': self.assessment.id, 'exam': 40}], self.term.id, self.subject.id, self.admin_context()
        )

        assert result['success'], result
        assert not result['data'][0]['is_published']
        self.assessment.refresh_from_db()
        assert not self.assessment.is_published
