"""
Custom permissions for EduStream Backend
"""

from rest_framework import permissions


def is_platform_admin(user):
    return bool(
        user and user.is_authenticated
        and (getattr(user, 'role', None) == 'admin' or user.is_staff or user.is_superuser)
    )


class IsPlatformAdmin(permissions.BasePermission):
    """
    Allows access only to platform administrators.
    """
    message = 'Administrator access required.'

    def has_permission(self, request, view):
        return is_platform_admin(request.user)


class IsTeacherOrAdmin(permissions.BasePermission):
    """
    Allows access to teachers and administrators.
    """
    message = 'Teacher access required.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return getattr(user, 'role', None) == 'teacher' or is_platform_admin(user)
