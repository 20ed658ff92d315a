from rest_framework import status, serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema
import logging

from .serializers import (
    SignupSerializer,
    LoginSerializer,
    UserSerializer,
    ProfileUpdateSerializer,
    PasswordChangeSerializer,
    PasswordResetRequestSerializer,
    PasswordResetConfirmSerializer,
)
from .services import (
    AccountNotFoundError,
    AccountsServiceError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    ProfileUpdate,
    StoreUnavailableError,
    ValidationFailedError,
    change_password,
    consume_reset,
    delete_account,
    login as login_account,
    logout as logout_account,
    request_reset,
    signup as signup_account,
    start_session,
    unlink_provider,
    update_profile,
    validate_reset_token,
)

logger = logging.getLogger(__name__)


# Response serializers for API documentation
class AccountResponseSerializer(serializers.Serializer):
    message = serializers.CharField()
    user = UserSerializer()


class MessageResponseSerializer(serializers.Serializer):
    message = serializers.CharField()


class ErrorResponseSerializer(serializers.Serializer):
    error = serializers.CharField()


ERROR_STATUSES = {
    ValidationFailedError: status.HTTP_400_BAD_REQUEST,
    DuplicateEmailError: status.HTTP_400_BAD_REQUEST,
    InvalidOrExpiredTokenError: status.HTTP_400_BAD_REQUEST,
    InvalidCredentialsError: status.HTTP_401_UNAUTHORIZED,
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(exc: AccountsServiceError) -> Response:
    """Convert a service exception to an API error response."""
    if isinstance(exc, ValidationFailedError):
        return Response(
            {'errors': [error.as_dict() for error in exc.errors]},
            status=status.HTTP_400_BAD_REQUEST
        )
    if isinstance(exc, StoreUnavailableError):
        logger.error("Request failed, store unavailable: %s", exc)
        return Response(
            {'error': 'Service temporarily unavailable'},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    return Response(
        {'error': str(exc)},
        status=ERROR_STATUSES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    )


# =============================================================================
# Signup / login / logout
# =============================================================================

@extend_schema(
    request=SignupSerializer,
    responses={
        201: AccountResponseSerializer,
        400: ErrorResponseSerializer,
    },
    description="Create a local account and log it in.",
    tags=['auth'],
)
@api_view(['POST'])
@permission_classes([AllowAny])
def signup(request):
    """Create a new local account."""
    serializer = SignupSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        account = signup_account(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
        )
        start_session(session=request.session, account=account)
    except AccountsServiceError as e:
        return error_response(e)

    return Response({
        'message': 'Account created.',
        'user': UserSerializer(account).data,
    }, status=status.HTTP_201_CREATED)


@extend_schema(
    request=LoginSerializer,
    responses={
        200: AccountResponseSerializer,
        401: ErrorResponseSerializer,
    },
    description="Sign in using email and password.",
    tags=['auth'],
)
@api_view(['POST'])
@permission_classes([AllowAny])
def login(request):
    """Login with email and password."""
    serializer = LoginSerializer(data=request.data)

    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        account = login_account(
            session=request.session,
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
        )
    except AccountsServiceError as e:
        return error_response(e)

    return Response({
        'message': 'Success! You are logged in.',
        'user': UserSerializer(account).data,
    })


@extend_schema(
    request=None,
    responses={200: MessageResponseSerializer},
    description="Log out. Succeeds even without an active session.",
    tags=['auth'],
)
@api_view(['POST'])
@permission_classes([AllowAny])
def logout(request):
    """End the current session."""
    logout_account(session=request.session)
    return Response({'message': 'Successfully logged out.'})


# =============================================================================
# Account management
# =============================================================================

@extend_schema(
    responses={200: UserSerializer},
    description="Get the logged-in account.",
    tags=['account'],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_account(request):
    """Get the current principal."""
    return Response(UserSerializer(request.user).data)


@extend_schema(
    request=ProfileUpdateSerializer,
    responses={
        200: UserSerializer,
        400: ErrorResponseSerializer,
    },
    description="Overwrite email and profile. Omitted profile fields are cleared.",
    tags=['account'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_account_profile(request):
    """Update profile information."""
    serializer = ProfileUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        account = update_profile(
            account_id=request.user.pk,
            fields=ProfileUpdate(**serializer.validated_data),
        )
    except AccountsServiceError as e:
        return error_response(e)

    return Response(UserSerializer(account).data)


@extend_schema(
    request=PasswordChangeSerializer,
    responses={
        200: MessageResponseSerializer,
        400: ErrorResponseSerializer,
    },
    description="Change the logged-in account's password.",
    tags=['account'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_account_password(request):
    """Update current password."""
    serializer = PasswordChangeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        change_password(
            account_id=request.user.pk,
            new_password=serializer.validated_data['password'],
            session=request.session,
        )
    except AccountsServiceError as e:
        return error_response(e)

    return Response({'message': 'Password has been changed.'})


@extend_schema(
    request=None,
    responses={
        200: MessageResponseSerializer,
        404: ErrorResponseSerializer,
    },
    description="Delete the logged-in account and end all of its sessions.",
    tags=['account'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def delete_account_view(request):
    """Delete user account."""
    try:
        delete_account(account_id=request.user.pk)
    except AccountsServiceError as e:
        return error_response(e)

    logout_account(session=request.session)
    return Response({'message': 'Your account has been deleted.'})


@extend_schema(
    request=None,
    responses={
        200: MessageResponseSerializer,
        404: ErrorResponseSerializer,
    },
    description="Unlink an OAuth provider. Unlinking an unlinked provider succeeds.",
    tags=['account'],
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def unlink_account_provider(request, provider):
    """Unlink OAuth provider."""
    try:
        unlink_provider(account_id=request.user.pk, provider=provider)
    except AccountsServiceError as e:
        return error_response(e)

    return Response({'message': f'{provider} account has been unlinked.'})


# =============================================================================
# Password reset
# =============================================================================

@extend_schema(
    request=PasswordResetRequestSerializer,
    responses={
        200: MessageResponseSerializer,
        404: ErrorResponseSerializer,
    },
    description="Create a reset token and email the reset link.",
    tags=['auth'],
)
@api_view(['POST'])
@permission_classes([AllowAny])
def forgot_password(request):
    """Request password reset email."""
    serializer = PasswordResetRequestSerializer(data=request.data)

    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    email = serializer.validated_data['email']
    try:
        request_reset(email=email)
    except AccountNotFoundError:
        return Response({
            'error': 'Account with that email address does not exist.'
        }, status=status.HTTP_404_NOT_FOUND)
    except AccountsServiceError as e:
        return error_response(e)

    return Response({
        'message': f'An e-mail has been sent to {email} with further instructions.'
    })


@extend_schema(
    methods=['GET'],
    request=None,
    responses={
        200: MessageResponseSerializer,
        400: ErrorResponseSerializer,
    },
    description="Check that a reset token is still valid.",
    tags=['auth'],
)
@extend_schema(
    methods=['POST'],
    request=PasswordResetConfirmSerializer,
    responses={
        200: AccountResponseSerializer,
        400: ErrorResponseSerializer,
    },
    description="Set a new password with a reset token and log in.",
    tags=['auth'],
)
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def reset_password(request, token):
    """Validate or consume a password reset token."""
    if request.method == 'GET':
        try:
            validate_reset_token(token=token)
        except AccountsServiceError as e:
            return error_response(e)
        return Response({'message': 'Password reset token is valid.'})

    serializer = PasswordResetConfirmSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    try:
        account = consume_reset(
            session=request.session,
            token=token,
            new_password=serializer.validated_data['password'],
        )
    except AccountsServiceError as e:
        return error_response(e)

    return Response({
        'message': 'Success! Your password has been changed.',
        'user': UserSerializer(account).data,
    })
