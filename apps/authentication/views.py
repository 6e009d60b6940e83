"""
Authentication views for EduStream Backend
"""

from django.utils import timezone
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView as BaseTokenRefreshView

from services import access_guard
from shared.permissions import IsPlatformAdmin

from .serializers import (
    AccessDenialStatsSerializer,
    AccessLogFilterSerializer,
    SuspiciousAccessSerializer,
    UserLoginSerializer,
    UserProfileSerializer,
)


class LoginView(TokenObtainPairView):
    """User login endpoint"""

    permission_classes = [AllowAny]

    @extend_schema(summary="Log in", request=UserLoginSerializer)
    def post(self, request):
        serializer = UserLoginSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data['user']

        user.last_login = timezone.now()
        user.save(update_fields=['last_login'])

        refresh = RefreshToken.for_user(user)
        return Response({
            'success': True,
            'access_token': str(refresh.access_token),
            'refresh_token': str(refresh),
            'user': UserProfileSerializer(user).data,
        }, status=status.HTTP_200_OK)


class CustomTokenRefreshView(BaseTokenRefreshView):
    """Token refresh with the same field names as login"""

    def post(self, request, *args, **kwargs):
        response = super().post(request, *args, **kwargs)
        response.data = {
            'success': True,
            'access_token': response.data.get('access'),
            'refresh_token': response.data.get('refresh', request.data.get('refresh')),
        }
        return response


class UserProfileView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Current user profile")
    def get(self, request):
        return Response({'success': True, 'user': UserProfileSerializer(request.user).data})


class AccessLogListView(APIView):
    """Filtered, paginated access audit trail"""

    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="List access logs", parameters=[AccessLogFilterSerializer])
    def get(self, request):
        serializer = AccessLogFilterSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        params = dict(serializer.validated_data)
        page = params.pop('page')
        page_size = params.pop('page_size')

        result = access_guard.get_access_logs(params, page=page, page_size=page_size)
        return Response({'success': True, 'data': result})


class AccessDenialStatsView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Access denial statistics", parameters=[AccessDenialStatsSerializer])
    def get(self, request):
        serializer = AccessDenialStatsSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        stats = access_guard.get_access_denial_stats(**serializer.validated_data)
        return Response({'success': True, 'data': stats})


class SuspiciousAccessView(APIView):
    permission_classes = [IsPlatformAdmin]

    @extend_schema(summary="Suspicious access patterns", parameters=[SuspiciousAccessSerializer])
    def get(self, request):
        serializer = SuspiciousAccessSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        patterns = access_guard.get_suspicious_access_patterns(**serializer.validated_data)
        return Response({'success': True, 'data': patterns})
