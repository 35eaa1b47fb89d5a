"""
Authentication REST API views.

Implements endpoints for:
- User registration
- Login
- Current user profile (read, update)
- Password change
"""
import json
import logging

from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.audit.recorder import get_client_ip
from apps.core.logging import SecurityLogger
from apps.rbac.services import AuthService
from apps.rbac.serializers import (
    RegistrationSerializer, LoginSerializer, ProfileUpdateSerializer,
    ChangePasswordSerializer, UserSerializer, UserProfileSerializer,
)

logger = logging.getLogger(__name__)


def email_key(group, request):
    """
    Rate limit key from the submitted email.

    Runs before DRF parses the body, so JSON payloads are read directly.
    """
    email = request.POST.get('email')
    if email is None and 'json' in (request.content_type or ''):
        try:
            email = json.loads(request.body or b'{}').get('email')
        except (ValueError, AttributeError):
            email = None
    return str(email or '').strip().lower()


def _rate_limited_response(retry_after):
    response = Response(
        {
            'success': False,
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'retry_after': retry_after,
        },
        status=status.HTTP_429_TOO_MANY_REQUESTS
    )
    response['Retry-After'] = str(retry_after)
    return response


def _validation_error_response(errors):
    return Response(
        {
            'success': False,
            'error': 'Validation error',
            'details': errors,
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def _auth_response(result, message, status_code=status.HTTP_200_OK):
    return Response(
        {
            'success': True,
            'data': {
                'user': UserSerializer(result['user']).data,
                'token': result['token'],
                'permissions': result['permissions'],
            },
            'message': message,
        },
        status=status_code
    )


@extend_schema(
    tags=['Authentication'],
    summary='Register new user',
    description='''
Register a new user account.

The account receives the default `user` role and a JWT token for immediate
use, together with its effective permissions.

**No authentication required** - this is a public endpoint.

**Rate limit**: 10 requests/hour per IP
    ''',
    request=RegistrationSerializer,
    responses={
        201: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Registration Request',
            value={
                'name': 'Jane Doe',
                'email': 'jane@example.com',
                'password': 'S3cure!Passw0rd',
            },
            request_only=True
        ),
    ]
)
@method_decorator(ratelimit(key='ip', rate='10/h', method='POST', block=False), name='dispatch')
class RegistrationView(APIView):
    """
    POST /v1/auth/register

    Register a new user with the default role.

    Rate limited to 10 requests per hour per IP.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Register new user."""
        if getattr(request, 'limited', False):
            SecurityLogger.log_rate_limit_exceeded(
                endpoint=request.path,
                ip_address=get_client_ip(request),
                limit='10/hour per IP'
            )
            return _rate_limited_response(3600)

        serializer = RegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer.errors)

        result = AuthService.register_user(
            name=serializer.validated_data['name'],
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
        )

        return _auth_response(
            result,
            'User registered successfully',
            status_code=status.HTTP_201_CREATED
        )


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password and receive a JWT token.

Failures always return the same generic 401 so the response does not reveal
whether the email exists or the account is inactive.

**Rate limit**: 5 requests/minute per IP, 10 requests/hour per email
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    }
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key=email_key, rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Rate limited to:
    - 5 requests per minute per IP
    - 10 requests per hour per email
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Login user."""
        if getattr(request, 'limited', False):
            SecurityLogger.log_rate_limit_exceeded(
                endpoint=request.path,
                ip_address=get_client_ip(request),
                user_email=request.data.get('email') if hasattr(request.data, 'get') else None,
                limit='5/min per IP or 10/hour per email'
            )
            return _rate_limited_response(60)

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer.errors)

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
            ip_address=get_client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT', 'unknown'),
        )

        return _auth_response(result, 'Login successful')


@extend_schema(
    tags=['Authentication'],
    summary='Get current user',
    description='Profile of the authenticated user with roles and effective permissions.',
    responses={
        200: UserProfileSerializer,
        401: OpenApiTypes.OBJECT,
    }
)
class MeView(APIView):
    """
    GET /v1/auth/me

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response({
            'success': True,
            'data': UserProfileSerializer(request.user).data,
        })


@extend_schema(
    tags=['Authentication'],
    summary='Update profile',
    description='Update the name and/or email of the authenticated user. Emails stay unique.',
    request=ProfileUpdateSerializer,
    responses={
        200: UserProfileSerializer,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
    }
)
class ProfileView(APIView):
    """
    PUT /v1/auth/profile
    """
    permission_classes = [IsAuthenticated]

    def put(self, request):
        serializer = ProfileUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer.errors)

        user = AuthService.update_profile(
            request.user,
            name=serializer.validated_data.get('name'),
            email=serializer.validated_data.get('email'),
        )

        return Response({
            'success': True,
            'data': UserProfileSerializer(user).data,
            'message': 'Profile updated successfully',
        })


@extend_schema(
    tags=['Authentication'],
    summary='Change password',
    description='Change the password of the authenticated user. The current password is required.',
    request=ChangePasswordSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
    }
)
class ChangePasswordView(APIView):
    """
    PUT /v1/auth/change-password
    """
    permission_classes = [IsAuthenticated]

    def put(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer.errors)

        AuthService.change_password(
            request.user,
            current_password=serializer.validated_data['current_password'],
            new_password=serializer.validated_data['new_password'],
        )

        logger.info(
            "Password changed",
            extra={'user_id': str(request.user.id)}
        )

        return Response({
            'success': True,
            'message': 'Password changed successfully',
        })
