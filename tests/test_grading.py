from types import SimpleNamespace

from django.test import SimpleTestCase

from results.grading import (
    GradingSystemCache, assessment_total, compute_total, grade_from_levels, grade_levels_warnings,
    grading_cache, is_passing, resolve_grade,
)
from results.models import GradeLevel, GradingSystem

from .base import ResultsTestCase


class ComputeTotalTests(SimpleTestCase):

    def test_nothing_entered_has_no_total(self):
        assert compute_total(None, None, None, None) is None

    def test_single_component(self):
        assert compute_total(5, None, None, None) == 5

    def test_zero_is_an_entered_score(self):
        assert compute_total(0, 0, 0, 0) == 0
        assert compute_total(0, None, None, None) == 0

    def test_full_sum(self):
        assert compute_total(8, 7.5, 9, 60) == 84.5

    def test_absent_and_exempt_rows_have_no_total(self):
        absent = SimpleNamespace(ca1=8, ca2=8, ca3=8, exam=60, is_absent=True, is_exempt=False)
        exempt = SimpleNamespace(ca1=8, ca2=8, ca3=8, exam=60, is_absent=False, is_exempt=True)
        assert assessment_total(absent) is None
        assert assessment_total(exempt) is None
        assert assessment_total(None) is None


class GradeFromLevelsTests(SimpleTestCase):

    levels = [
        {'min_score': 0, 'max_score': 49, 'grade': 'F', 'remark': 'Fail'},
        {'min_score': 70, 'max_score': 100, 'grade': 'A', 'remark': 'Distinction'},
        {'min_score': 50, 'max_score': 59, 'grade': 'C', 'remark': 'Credit'},
    ]

    def test_scans_bands_from_the_highest(self):
        assert grade_from_levels(85, self.levels) == {'grade': 'A', 'remark': 'Distinction'}
        assert grade_from_levels(50, self.levels) == {'grade': 'C', 'remark': 'Credit'}

    def test_score_in_a_gap_fails(self):
        assert grade_from_levels(65, self.levels) == {'grade': 'F', 'remark': 'Fail'}

    def test_no_levels_uses_default_thresholds(self):
        assert grade_from_levels(72, []) == {'grade': 'A2', 'remark': 'Very Good'}

    def test_warnings_report_overlaps_and_gaps(self):
        warnings = grade_levels_warnings([
            {'min_score': 0, 'max_score': 50, 'grade': 'F'},
            {'min_score': 50, 'max_score': 59, 'grade': 'C'},
            {'min_score': 70, 'max_score': 100, 'grade': 'A'},
        ])
        assert len(warnings) == 2
        assert 'overlap' in warnings[0]
        assert 'not covered' in warnings[1]

    def test_contiguous_levels_have_no_warnings(self):
        assert grade_levels_warnings([
            {'min_score': 0, 'max_score': 49, 'grade': 'F'},
            {'min_score': 50, 'max_score': 100, 'grade': 'P'},
        ]) == []


class ResolveGradeTests(ResultsTestCase):

    def test_default_table_without_grading_system(self):
        assert resolve_grade(80, self.school.id) == {'grade': 'A1', 'remark': 'Excellent'}
        assert resolve_grade(39, self.school.id) == {'grade': 'F', 'remark': 'Fail'}
        assert resolve_grade(44.9, self.school.id) == {'grade': 'C2', 'remark': 'Weak Pass'}
        assert resolve_grade(None, self.school.id) is None

    def test_uses_default_grading_system(self):
        system = GradingSystem.objects.create(name='WAEC', school=self.school, is_default=True)
        GradeLevel.objects.create(grading_system=system, min_score=75, max_score=100, grade='A1', remark='Excellent')
        GradeLevel.objects.create(grading_system=system, min_score=0, max_score=74, grade='B', remark='Good')

        assert resolve_grade(76, self.school.id) == {'grade': 'A1', 'remark': 'Excellent'}
        assert resolve_grade(74, self.school.id) == {'grade': 'B', 'remark': 'Good'}

    def test_non_default_system_is_ignored(self):
        system = GradingSystem.objects.create(name='Draft', school=self.school, is_default=False)
        GradeLevel.objects.create(grading_system=system, min_score=0, max_score=100, grade='X', remark='Draft')

        assert resolve_grade(90, self.school.id) == {'grade': 'A1', 'remark': 'Excellent'}

    def test_grading_changes_invalidate_the_cache(self):
        assert resolve_grade(85, self.school.id)['grade'] == 'A1'

        system = GradingSystem.objects.create(name='Custom', school=self.school, is_default=True)
        GradeLevel.objects.create(grading_system=system, min_score=80, max_score=100, grade='A', remark='Distinction')
        assert resolve_grade(85, self.school.id) == {'grade': 'A', 'remark': 'Distinction'}

        GradeLevel.objects.filter(grading_system=system).first().delete()
        assert resolve_grade(85, self.school.id) == {'grade': 'A1', 'remark': 'Excellent'}

    def test_lookup_failure_degrades_to_error_grade(self):
        def broken_loader(school_id):
            raise RuntimeError("database unavailable")

        broken = GradingSystemCache(loader=broken_loader)
        assert resolve_grade(70, self.school.id, cache=broken) == {'grade': 'F', 'remark': 'Error'}

    def test_cache_serves_repeated_lookups(self):
        calls = []

        def counting_loader(school_id):
            calls.append(school_id)
            return None

        counting = GradingSystemCache(loader=counting_loader)
        resolve_grade(50, self.school.id, cache=counting)
        resolve_grade(60, self.school.id, cache=counting)
        assert calls == [self.school.id]

        counting.invalidate(self.school.id)
        resolve_grade(60, self.school.id, cache=counting)
        assert len(calls) == 2

    def test_setting_a_default_clears_the_previous_one(self):
        first = GradingSystem.objects.create(name='First', school=self.school, is_default=True)
        second = GradingSystem.objects.create(name='Second', school=self.school, is_default=True)
        first.refresh_from_db()
        assert not first.is_default
        assert second.is_default
        assert grading_cache.get(self.school.id) == []

    def test_pass_mark_follows_the_default_system(self):
        assert grading_cache.pass_mark(self.school.id) == 40

        system = GradingSystem.objects.create(name='WAEC', school=self.school, is_default=True, pass_mark=50)
        assert grading_cache.pass_mark(self.school.id) == 50

        system.pass_mark = 45
        system.save()
        assert grading_cache.pass_mark(self.school.id) == 45


class IsPassingTests(SimpleTestCase):

    def test_pass_mark_is_inclusive(self):
        assert is_passing(40, 40)
        assert not is_passing(39.5, 40)

    def test_no_score_is_not_judged(self):
        assert is_passing(None, 40) is None
