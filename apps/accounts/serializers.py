from rest_framework import serializers
from .models import ProviderLink, User


class ProviderLinkSerializer(serializers.ModelSerializer):
    """Linked provider without its token."""

    class Meta:
        model = ProviderLink
        fields = ['provider', 'created_at']
        read_only_fields = fields


class UserSerializer(serializers.ModelSerializer):
    """Account as shown to its owner."""

    providers = ProviderLinkSerializer(source='provider_links', many=True, read_only=True)

    class Meta:
        model = User
        fields = [
            'id',
            'email',
            'name',
            'gender',
            'location',
            'website',
            'providers',
            'created_at',
            'last_login',
        ]
        read_only_fields = fields


class SignupSerializer(serializers.Serializer):
    """Signup form."""

    email = serializers.CharField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )
    confirm_password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate(self, attrs):
        """Validate password confirmation."""
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError({
                'confirm_password': 'Passwords do not match'
            })
        return attrs


class LoginSerializer(serializers.Serializer):
    """Login form."""

    email = serializers.CharField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


class ProfileUpdateSerializer(serializers.Serializer):
    """
    Profile form.

    Omitted or blank profile fields are passed on as None and cleared.
    """

    email = serializers.CharField(required=True)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    gender = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    location = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    website = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PasswordChangeSerializer(serializers.Serializer):
    """Password change form for the logged-in account."""

    password = serializers.CharField(
        required=True,
        style={'input_type': 'password'}
    )
    confirm_password = serializers.CharField(
        required=True,
        style={'input_type': 'password'}
    )

    def validate(self, attrs):
        """Validate password confirmation."""
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError({
                'confirm_password': 'Passwords do not match'
            })
        return attrs


class PasswordResetRequestSerializer(serializers.Serializer):
    """Forgot-password form."""

    email = serializers.CharField(required=True)


class PasswordResetConfirmSerializer(serializers.Serializer):
    """New password submitted with a reset token."""

    password = serializers.CharField(
        required=True,
        style={'input_type': 'password'}
    )
    confirm = serializers.CharField(
        required=True,
        style={'input_type': 'password'}
    )

    def validate(self, attrs):
        """Validate password confirmation."""
        if attrs['password'] != attrs['confirm']:
            raise serializers.ValidationError({
                'confirm': 'Passwords must match.'
            })
        return attrs
