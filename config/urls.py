"""
EduStream Backend URL Configuration
"""
from django.contrib import admin
from django.urls import include, path
from django.utils import timezone
from drf_spectacular.utils import extend_schema
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response


@extend_schema(summary="Health Check")
@api_view(['GET'])
@permission_classes([AllowAny])
def health_check(request):
    return Response({
        'status': 'healthy',
        'timestamp': timezone.now().isoformat(),
        'version': '1.0',
    })


urlpatterns = [
    path('admin/', admin.site.urls),
    path('health/', health_check, name='health'),

    # API endpoints
    path('api/auth/', include('apps.authentication.urls')),
    path('api/videos/', include('apps.videos.urls')),
    path('api/analytics/', include('apps.analytics.urls')),

    # API documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
]
