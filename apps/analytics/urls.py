"""
Analytics URLs for EduStream Backend
"""

from django.urls import path

from . import views

app_name = 'analytics'

urlpatterns = [
    path('views/', views.RecordViewView.as_view(), name='record_view'),

    # Lesson analytics
    path('lessons/bulk/', views.BulkLessonAnalyticsView.as_view(), name='bulk_lessons'),
    path('lessons/<uuid:lesson_id>/', views.LessonAnalyticsView.as_view(), name='lesson'),
    path('lessons/<uuid:lesson_id>/heatmap/', views.LessonHeatmapView.as_view(), name='lesson_heatmap'),
    path('lessons/<uuid:lesson_id>/engagement-heatmap/', views.EngagementHeatmapView.as_view(),
         name='engagement_heatmap'),

    # Rollups
    path('courses/<uuid:course_id>/', views.CourseAnalyticsView.as_view(), name='course'),
    path('teacher/dashboard/', views.TeacherDashboardView.as_view(), name='teacher_dashboard'),
    path('platform/', views.PlatformAnalyticsView.as_view(), name='platform'),

    path('cache/clear/', views.ClearAnalyticsCacheView.as_view(), name='clear_cache'),
]
