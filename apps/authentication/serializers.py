"""
Authentication serializers for EduStream Backend
"""

from django.contrib.auth import authenticate
from rest_framework import serializers

from services.access_guard import ACTIONS, DENIAL_GROUPINGS

from .models import User


class UserLoginSerializer(serializers.Serializer):
    """User login serializer"""

    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate(self, attrs):
        user = authenticate(
            request=self.context.get('request'),
            username=attrs['email'],
            password=attrs['password'],
        )

        if not user:
            raise serializers.ValidationError('Invalid email or password.')

        if not user.is_active:
            raise serializers.ValidationError('User account is disabled.')

        attrs['user'] = user
        return attrs


class UserProfileSerializer(serializers.ModelSerializer):
    """User profile serializer"""

    full_name = serializers.ReadOnlyField()
    is_platform_admin = serializers.ReadOnlyField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'full_name',
            'role', 'is_platform_admin', 'date_joined', 'last_login',
        ]
        read_only_fields = fields


class AccessLogFilterSerializer(serializers.Serializer):
    """Query parameters for the access log listing"""

    user_id = serializers.UUIDField(required=False)
    resource = serializers.CharField(required=False, max_length=255)
    action = serializers.ChoiceField(choices=ACTIONS, required=False)
    access_granted = serializers.BooleanField(required=False, allow_null=True, default=None)
    since = serializers.DateTimeField(required=False)
    until = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(min_value=1, default=1)
    page_size = serializers.IntegerField(min_value=1, max_value=200, default=50)


class AccessDenialStatsSerializer(serializers.Serializer):
    group_by = serializers.ChoiceField(choices=DENIAL_GROUPINGS, default='resource')
    days = serializers.IntegerField(min_value=1, max_value=365, default=7)


class SuspiciousAccessSerializer(serializers.Serializer):
    min_denials = serializers.IntegerField(min_value=1, default=10)
    window_hours = serializers.IntegerField(min_value=1, max_value=24 * 30, default=24)
