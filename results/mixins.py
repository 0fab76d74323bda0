"""
Reusable mixins for ViewSets and API views.
Consolidates school scoping and the translation of service results into responses.
"""
from rest_framework import status, viewsets
from rest_framework.response import Response

from authentication.permissions import build_authorization_context

from .exceptions import ErrorKind, failure

ERROR_STATUS = {
    ErrorKind.VALIDATION.value: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorKind.AUTHORIZATION.value: status.HTTP_403_FORBIDDEN,
}


def result_response(result):
    """Render a service result dict with the matching HTTP status."""
    if result['success']:
        return Response(result, status=status.HTTP_200_OK)
    return Response(result, status=ERROR_STATUS.get(result.get('error_kind'), status.HTTP_400_BAD_REQUEST))


def context_or_response(request):
    """Return ``(context, None)`` or ``(None, error_response)`` for the request user."""
    try:
        return build_authorization_context(request.user), None
    except Exception as e:
        return None, result_response(failure(e))


class SchoolFilterMixin:
    """Mixin for filtering queryset by the user's school"""

    school_field = 'school'

    def get_school_queryset(self, queryset):
        user = self.request.user
        if user.role == 'super_admin':
            return queryset
        if user.school_id:
            return queryset.filter(**{f"{self.school_field}_id": user.school_id})
        return queryset.none()


class StandardViewSet(SchoolFilterMixin, viewsets.ModelViewSet):
    """Base ViewSet scoped to the requesting user's school"""

    def get_queryset(self):
        return self.get_school_queryset(self.queryset.all())
