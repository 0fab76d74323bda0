import logging

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from authentication.permissions import IsSchoolAdmin, IsTeacherOrAdmin

from .assessments import (
    bulk_update_assessments, get_assessments_for_subject, get_assessments_with_status, get_teacher_assignment,
    load_class_term, save_assessments,
)
from .mixins import StandardViewSet, context_or_response, result_response
from .models import GradeLevel, GradingSystem, School
from .ranking import auto_publish, class_statistics, class_subjects, get_class_results
from .reports import get_student_report
from .serializers import (
    BulkUpdateAssessmentsSerializer, GradeLevelSerializer, GradingSystemSerializer, SaveAssessmentsSerializer,
)
from .utils import class_results_export, student_report_pdf

logger = logging.getLogger(__name__)


def _int_param(request, name, required=True):
    value = request.query_params.get(name)
    if value in (None, ''):
        if required:
            raise ValueError(f"{name} is required")
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer")


def _bad_request(message):
    return Response({'success': False, 'error': message, 'error_kind': 'validation'},
                    status=status.HTTP_400_BAD_REQUEST)


@api_view(['POST'])
@permission_classes([IsTeacherOrAdmin])
def save_assessments_view(request):
    """
    Save CA and exam scores for one subject of a class term.

    Admins save on behalf of the resolved subject or class teacher; teachers
    save as themselves.
    """
    context, error = context_or_response(request)
    if error:
        return error

    serializer = SaveAssessmentsSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {'success': False, 'error': 'Invalid data', 'error_kind': 'validation', 'details': serializer.errors},
            status=status.HTTP_400_BAD_REQUEST
        )

    data = serializer.validated_data
    logger.info(f"User {request.user.id} saving {len(data['assessments'])} assessments")
    result = save_assessments(
        data['assessments'], data['term_id'], data['subject_id'], data['class_term_id'], context
    )
    return result_response(result)


@api_view(['POST'])
@permission_classes([IsTeacherOrAdmin])
def bulk_update_assessments_view(request):
    context, error = context_or_response(request)
    if error:
        return error

    serializer = BulkUpdateAssessmentsSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(
            {'success': False, 'error': 'Invalid data', 'error_kind': 'validation', 'details': serializer.errors},
            status=status.HTTP_400_BAD_REQUEST
        )

    data = serializer.validated_data
    return result_response(bulk_update_assessments(data['updates'], data['term_id'], data['subject_id'], context))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def assessment_status_view(request):
    """Class roster for a subject with per-student completion status."""
    context, error = context_or_response(request)
    if error:
        return error
    try:
        class_term_id = _int_param(request, 'class_term_id')
        subject_id = _int_param(request, 'subject_id')
    except ValueError as e:
        return _bad_request(str(e))
    return result_response(get_assessments_with_status(class_term_id, subject_id, context))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def assessment_list_view(request):
    context, error = context_or_response(request)
    if error:
        return error
    try:
        term_id = _int_param(request, 'term_id')
        subject_id = _int_param(request, 'subject_id')
        class_term_id = _int_param(request, 'class_term_id', required=False)
    except ValueError as e:
        return _bad_request(str(e))
    return result_response(get_assessments_for_subject(term_id, subject_id, context, class_term_id))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def teacher_assignment_view(request):
    context, error = context_or_response(request)
    if error:
        return error
    try:
        subject_id = _int_param(request, 'subject_id')
        class_term_id = _int_param(request, 'class_term_id')
    except ValueError as e:
        return _bad_request(str(e))
    return result_response(get_teacher_assignment(subject_id, class_term_id, context))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def class_results_view(request, class_term_id):
    context, error = context_or_response(request)
    if error:
        return error
    subject_ids = [int(value) for value in request.query_params.getlist('subject_id') if value.isdigit()]
    return result_response(get_class_results(class_term_id, context, subject_ids or None))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def class_statistics_view(request, class_term_id):
    context, error = context_or_response(request)
    if error:
        return error
    return result_response(class_statistics(class_term_id, context))


@api_view(['POST'])
@permission_classes([IsTeacherOrAdmin])
def publish_results_view(request, class_term_id):
    context, error = context_or_response(request)
    if error:
        return error
    subject_id = request.data.get('subject_id')
    if subject_id in (None, ''):
        subject_id = None
    else:
        try:
            subject_id = int(subject_id)
        except (TypeError, ValueError):
            return _bad_request("subject_id must be an integer")
    logger.info(f"User {request.user.id} publishing class term {class_term_id}, subject {subject_id}")
    return result_response(auto_publish(class_term_id, subject_id, context))


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def class_results_export_view(request, class_term_id):
    context, error = context_or_response(request)
    if error:
        return error

    result = get_class_results(class_term_id, context)
    if not result['success']:
        return result_response(result)

    class_term = load_class_term(class_term_id, context)
    class_info = {'class_name': class_term.school_class.name, 'term_name': class_term.term.name}
    return class_results_export(class_info, result['data'], class_subjects(class_term))


def _report_for(request, student_id):
    context, error = context_or_response(request)
    if error:
        return None, error
    try:
        term_id = _int_param(request, 'term_id')
    except ValueError as e:
        return None, _bad_request(str(e))
    return get_student_report(student_id, term_id, context), None


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def student_report_view(request, student_id):
    result, error = _report_for(request, student_id)
    if error:
        return error
    return result_response(result)


@api_view(['GET'])
@permission_classes([IsTeacherOrAdmin])
def student_report_pdf_view(request, student_id):
    result, error = _report_for(request, student_id)
    if error:
        return error
    if not result['success']:
        return result_response(result)
    return student_report_pdf(result['data'])


class GradingSystemViewSet(StandardViewSet):
    """Grading systems of the user's school, with their bands"""

    queryset = GradingSystem.objects.select_related('school').prefetch_related('levels')
    serializer_class = GradingSystemSerializer
    permission_classes = [IsAuthenticated, IsSchoolAdmin]

    def perform_create(self, serializer):
        user = self.request.user
        if user.role == 'super_admin':
            school = School.objects.filter(id=self.request.data.get('school')).first()
            if school is None:
                raise PermissionDenied("A school is required to create a grading system.")
        else:
            school = user.school
        grading_system = serializer.save(school=school)
        logger.info(f"Grading system {grading_system.id} created for school {school.id}")

    def destroy(self, request, *args, **kwargs):
        grading_system = self.get_object()
        if grading_system.is_default:
            return Response(
                {'error': 'Cannot delete the default grading system. Set another system as default first.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return super().destroy(request, *args, **kwargs)

    @action(detail=True, methods=['post'])
    def set_default(self, request, pk=None):
        grading_system = self.get_object()
        with transaction.atomic():
            grading_system.is_default = True
            grading_system.save()
        logger.info(f"Grading system {grading_system.id} set as default for school {grading_system.school_id}")
        return Response(self.get_serializer(grading_system).data)


class GradeLevelViewSet(StandardViewSet):
    queryset = GradeLevel.objects.select_related('grading_system')
    serializer_class = GradeLevelSerializer
    permission_classes = [IsAuthenticated, IsSchoolAdmin]
    school_field = 'grading_system__school'

    def get_queryset(self):
        queryset = super().get_queryset()
        grading_system_id = self.request.query_params.get('grading_system')
        if grading_system_id:
            queryset = queryset.filter(grading_system_id=grading_system_id)
        return queryset
