"""
URL patterns for authentication endpoints
"""

from django.urls import path

from .views import (
    AccessDenialStatsView,
    AccessLogListView,
    CustomTokenRefreshView,
    LoginView,
    SuspiciousAccessView,
    UserProfileView,
)

app_name = 'authentication'

urlpatterns = [
    path('login/', LoginView.as_view(), name='login'),
    path('refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('profile/', UserProfileView.as_view(), name='profile'),

    # Access audit
    path('access-logs/', AccessLogListView.as_view(), name='access_logs'),
    path('access-logs/stats/', AccessDenialStatsView.as_view(), name='access_log_stats'),
    path('access-logs/suspicious/', SuspiciousAccessView.as_view(), name='access_log_suspicious'),
]
