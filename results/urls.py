from django.urls import path, include

from rest_framework.routers import DefaultRouter

from .api_views import (
    GradeLevelViewSet, GradingSystemViewSet,
    save_assessments_view, bulk_update_assessments_view, assessment_status_view, assessment_list_view,
    teacher_assignment_view,
    class_results_view, class_statistics_view, publish_results_view, class_results_export_view,
    student_report_view, student_report_pdf_view,
)

router = DefaultRouter()
router.register(r'grading-systems', GradingSystemViewSet)
router.register(r'grade-levels', GradeLevelViewSet)


urlpatterns = [
    # API endpoints
    path('api/', include(router.urls)),

    # Assessment entry
    path('api/assessments/', assessment_list_view, name='assessment_list'),
    path('api/assessments/save/', save_assessments_view, name='assessment_save'),
    path('api/assessments/bulk-update/', bulk_update_assessments_view, name='assessment_bulk_update'),
    path('api/assessments/status/', assessment_status_view, name='assessment_status'),
    path('api/teacher-assignment/', teacher_assignment_view, name='teacher_assignment'),

    # Class results
    path('api/class-terms/<int:class_term_id>/results/', class_results_view, name='class_results'),
    path('api/class-terms/<int:class_term_id>/results/export/', class_results_export_view, name='class_results_export'),
    path('api/class-terms/<int:class_term_id>/statistics/', class_statistics_view, name='class_statistics'),
    path('api/class-terms/<int:class_term_id>/publish/', publish_results_view, name='class_publish'),

    # Report cards
    path('api/students/<int:student_id>/report/', student_report_view, name='student_report'),
    path('api/students/<int:student_id>/report/pdf/', student_report_pdf_view, name='student_report_pdf'),
]
