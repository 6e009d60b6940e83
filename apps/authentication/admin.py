"""
Authentication admin configuration
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import AccessLog, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Custom User admin"""

    list_display = ['email', 'first_name', 'last_name', 'role', 'is_active', 'date_joined']
    list_filter = ['role', 'is_active', 'date_joined', 'last_login']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-date_joined']

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name', 'role')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions')
        }),
        ('Important Dates', {
            'fields': ('last_login', 'date_joined')
        })
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'first_name', 'last_name', 'role', 'password1', 'password2')
        }),
    )

    readonly_fields = ['date_joined', 'last_login']


@admin.register(AccessLog)
class AccessLogAdmin(admin.ModelAdmin):
    """Read-only view of playback and download decisions"""

    list_display = ['action', 'resource', 'user', 'user_role', 'access_granted', 'created_at']
    list_filter = ['action', 'access_granted', 'created_at']
    search_fields = ['resource', 'user__email', 'ip_address']
    raw_id_fields = ['user']
    readonly_fields = [field.name for field in AccessLog._meta.fields]
