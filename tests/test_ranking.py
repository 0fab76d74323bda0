from datetime import timedelta

from django.test import SimpleTestCase
from django.utils import timezone

from authentication.permissions import AuthorizationContext
from results.models import Assessment, ChangeLog
from results.ranking import assign_positions, auto_publish, class_statistics, rank_class

from .base import ResultsTestCase


class AssignPositionsTests(SimpleTestCase):

    def test_standard_competition_ranking(self):
        rows = [{'total': 70}, {'total': 90}, {'total': 90}]

        ranked = assign_positions(rows, key=lambda row: row['total'])

        assert [row['total'] for row in ranked] == [90, 90, 70]
        assert [row['position'] for row in ranked] == [1, 1, 3]

    def test_unscored_rows_are_last_with_position_zero(self):
        rows = [{'total': None}, {'total': 50}, {'total': 80}]

        ranked = assign_positions(rows, key=lambda row: row['total'])

        assert [row['position'] for row in ranked] == [1, 2, 0]
        assert ranked[-1]['total'] is None

    def test_custom_field(self):
        rows = [{'score': 10}]
        assign_positions(rows, key=lambda row: row['score'], field='rank')
        assert rows[0]['rank'] == 1


class RankClassTests(ResultsTestCase):

    def setUp(self):
        super().setUp()
        self.english = self.add_subject('English')
        self.amina, self.amina_enrollment = self.make_student('Amina')
        self.bola, self.bola_enrollment = self.make_student('Bola')
        self.chidi, self.chidi_enrollment = self.make_student('Chidi')
        self.dayo, self.dayo_enrollment = self.make_student('Dayo')

        self.make_assessment(self.amina, self.amina_enrollment, ca1=10, ca2=10, ca3=10, exam=60)
        self.make_assessment(self.amina, self.amina_enrollment, subject=self.english, ca1=5, ca2=5, ca3=5, exam=35)
        self.make_assessment(self.bola, self.bola_enrollment, ca1=10, ca2=10, ca3=10, exam=60)
        self.make_assessment(self.bola, self.bola_enrollment, subject=self.english, ca1=5, ca2=5, ca3=5, exam=35)
        self.make_assessment(self.chidi, self.chidi_enrollment, ca1=10, ca2=10, ca3=10, exam=40)
        self.make_assessment(self.chidi, self.chidi_enrollment, subject=self.english, is_absent=True)

    def test_positions_and_totals(self):
        results = rank_class(self.class_term.id, context=self.admin_context())

        assert [row['student_name'] for row in results] == [
            'Amina Student', 'Bola Student', 'Chidi Student', 'Dayo Student'
        ]
        assert [row['total_score'] for row in results] == [140, 140, 70, None]
        assert [row['position'] for row in results] == [1, 1, 3, 0]

        amina = results[0]
        assert amina['average_score'] == 70
        assert amina['grade'] == 'A2'
        assert amina['subjects'][self.subject.id]['score'] == 90
        assert amina['subjects'][self.subject.id]['grade'] == 'A1'

    def test_absent_subject_is_not_counted(self):
        chidi = rank_class(self.class_term.id, context=self.admin_context())[2]

        assert chidi['subjects'][self.english.id]['score'] is None
        assert chidi['subjects'][self.english.id]['is_absent']
        assert chidi['subjects_taken'] == 1
        assert chidi['average_score'] == 70

    def test_student_without_scores_is_unranked(self):
        dayo = rank_class(self.class_term.id, context=self.admin_context())[-1]

        assert dayo['total_score'] is None
        assert dayo['average_score'] is None
        assert dayo['grade'] is None
        assert dayo['position'] == 0

    def test_most_recent_duplicate_is_used(self):
        teacher = self.make_teacher('tola_maths')
        newer = self.make_assessment(self.dayo, self.dayo_enrollment, teacher=teacher, ca1=1, ca2=1, ca3=1, exam=1)
        older = self.make_assessment(self.dayo, self.dayo_enrollment, ca1=10, ca2=10, ca3=10, exam=70)
        Assessment.objects.filter(id=older.id).update(updated_at=timezone.now() - timedelta(days=1))
        Assessment.objects.filter(id=newer.id).update(updated_at=timezone.now())

        dayo = next(row for row in rank_class(self.class_term.id) if row['student_id'] == self.dayo.id)

        assert dayo['total_score'] == 4

    def test_subject_filter(self):
        results = rank_class(self.class_term.id, subject_ids=[self.english.id], context=self.admin_context())

        assert [row['total_score'] for row in results] == [50, 50, None, None]
        assert list(results[0]['subjects']) == [self.english.id]

    def test_withdrawn_students_are_excluded(self):
        self.make_student('Efe', status='WITHDRAWN')

        assert len(rank_class(self.class_term.id)) == 4

    def test_teacher_needs_class_grant(self):
        teacher = self.make_teacher('sam_maths', subjects=[self.subject])

        result = class_statistics(self.class_term.id, self.teacher_context(teacher))

        assert result['error_kind'] == 'authorization'

    def test_class_statistics(self):
        result = class_statistics(self.class_term.id, self.admin_context())

        assert result['success'], result
        data = result['data']
        assert data['total_students'] == 4
        assert data['students_ranked'] == 3
        assert data['highest'] == 140
        assert data['lowest'] == 70
        assert data['average'] == 116.67

        maths = next(subject for subject in data['subjects'] if subject['subject_id'] == self.subject.id)
        assert maths['highest'] == 90
        assert maths['lowest'] == 70
        assert maths['count'] == 3
        assert maths['average'] == 83.33

    def test_missing_class_term(self):
        result = class_statistics(9999, self.admin_context())

        assert result['error_kind'] == 'not_found'


class AutoPublishTests(ResultsTestCase):

    def setUp(self):
        super().setUp()
        self.amina, self.amina_enrollment = self.make_student('Amina')
        self.bola, self.bola_enrollment = self.make_student('Bola')
        self.chidi, self.chidi_enrollment = self.make_student('Chidi')
        self.make_assessment(self.amina, self.amina_enrollment, ca1=8, ca2=8, ca3=8, exam=50)
        self.make_assessment(self.bola, self.bola_enrollment, is_absent=True)

    def test_incomplete_class_is_not_published(self):
        self.make_assessment(self.chidi, self.chidi_enrollment, ca1=8, ca2=8)

        result = auto_publish(self.class_term.id, self.subject.id, self.admin_context())

        assert result['success']
        assert not result['data']['published']
        assert result['data']['incomplete_count'] == 1
        assert not Assessment.objects.filter(is_published=True).exists()

    def test_missing_assessment_blocks_publication(self):
        result = auto_publish(self.class_term.id, self.subject.id, self.admin_context())

        assert not result['data']['published']
        assert result['data']['incomplete_count'] == 1

    def test_complete_class_is_published_including_absent_and_exempt(self):
        self.make_assessment(self.chidi, self.chidi_enrollment, is_exempt=True)

        result = auto_publish(self.class_term.id, self.subject.id, self.admin_context())

        assert result['data']['published']
        assert result['data']['published_count'] == 3
        assert Assessment.objects.filter(is_published=True).count() == 3
        assert Assessment.objects.get(student=self.bola).is_published

    def test_whole_class_requires_every_subject(self):
        english = self.add_subject('English')
        self.make_assessment(self.chidi, self.chidi_enrollment, is_exempt=True)
        self.make_assessment(self.amina, self.amina_enrollment, subject=english, ca1=1, ca2=1, ca3=1, exam=1)

        result = auto_publish(self.class_term.id, context=self.admin_context())

        assert not result['data']['published']
        assert result['data']['incomplete_count'] == 2
        assert not Assessment.objects.filter(is_published=True).exists()

    def test_teacher_needs_subject_grant(self):
        teacher = self.make_teacher('grace_class', class_terms=[self.class_term])
        self.make_assessment(self.chidi, self.chidi_enrollment, is_exempt=True)

        result = auto_publish(self.class_term.id, self.subject.id, self.teacher_context(teacher))

        assert result['error_kind'] == 'authorization'
        assert not Assessment.objects.filter(is_published=True).exists()

    def test_context_without_write_capability_is_rejected(self):
        self.make_assessment(self.chidi, self.chidi_enrollment, is_exempt=True)
        read_only = AuthorizationContext(self.admin.id, self.school.id, can_write_any_teacher=False)

        result = auto_publish(self.class_term.id, self.subject.id, read_only)

        assert result['error_kind'] == 'authorization'
        assert not Assessment.objects.filter(is_published=True).exists()

    def test_publication_is_audited(self):
        self.make_assessment(self.chidi, self.chidi_enrollment, is_exempt=True)
        ChangeLog.objects.all().delete()

        auto_publish(self.class_term.id, self.subject.id, self.admin_context())

        entries = ChangeLog.objects.filter(model='Assessment', action='update')
        assert entries.count() == 3
        assert {entry.user_id for entry in entries} == {self.admin.id}
        assert all(entry.data['is_published'] for entry in entries)
