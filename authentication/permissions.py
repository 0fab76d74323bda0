"""
Permission classes for role-based access control and API endpoints, and the
authorization context handed to the compilation services.
"""

from rest_framework.permissions import BasePermission

from results.exceptions import AuthorizationError


class IsSchoolAdmin(BasePermission):
    """
    Allows access to school admins and super admins.
    """
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        if request.user.role == 'super_admin':
            return True
        return request.user.role == 'admin' and request.user.school_id is not None

    def has_object_permission(self, request, view, obj):
        if request.user.role == 'super_admin':
            return True
        return getattr(obj, 'school_id', None) == request.user.school_id


class IsTeacherOrAdmin(BasePermission):
    """
    Allows access to teachers and admins for school-specific operations.
    """
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        if request.user.role == 'super_admin':
            return True
        return request.user.role in ['admin', 'teacher'] and request.user.school_id is not None


class AuthorizationContext:
    """
    What the acting user may do, independent of how their role is named.

    ``school_id`` of None means every school (super admins).
    ``restricted_teacher_id`` is set for teachers: they may only write
    assessments they own and only for subjects and classes they are assigned to.
    """

    def __init__(self, user_id, school_id=None, can_write_any_teacher=False, restricted_teacher_id=None, display_name=''):
        self.user_id = user_id
        self.school_id = school_id
        self.can_write_any_teacher = can_write_any_teacher
        self.restricted_teacher_id = restricted_teacher_id
        self.display_name = display_name

    def __repr__(self):
        return (
            f"AuthorizationContext(user_id={self.user_id}, school_id={self.school_id}, "
            f"can_write_any_teacher={self.can_write_any_teacher}, "
            f"restricted_teacher_id={self.restricted_teacher_id})"
        )

    @property
    def is_restricted(self):
        return self.restricted_teacher_id is not None

    def check_can_write(self):
        """Writers are either restricted to their own rows or may write for any teacher."""
        if not self.is_restricted and not self.can_write_any_teacher:
            raise AuthorizationError("You do not have permission to modify assessments")

    def check_school(self, school_id, label):
        if self.school_id is not None and school_id != self.school_id:
            raise AuthorizationError(f"{label} does not belong to your school")


def build_authorization_context(user):
    """Translate the session user into an AuthorizationContext."""
    if user is None or not user.is_authenticated:
        raise AuthorizationError("Authentication required")

    name = user.get_full_name() or user.username
    if user.role == 'super_admin':
        return AuthorizationContext(user.id, None, can_write_any_teacher=True, display_name=name)
    if user.role == 'admin':
        if user.school_id is None:
            raise AuthorizationError("Admin not assigned to a school")
        return AuthorizationContext(user.id, user.school_id, can_write_any_teacher=True, display_name=name)
    if user.role == 'teacher':
        if user.school_id is None:
            raise AuthorizationError("Teacher not assigned to a school")
        return AuthorizationContext(user.id, user.school_id, restricted_teacher_id=user.id, display_name=name)

    raise AuthorizationError("User does not have permission to access this resource")
