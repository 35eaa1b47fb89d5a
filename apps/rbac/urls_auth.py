"""
URL routing for authentication endpoints.
"""
from django.urls import path
from apps.rbac.views_auth import (
    RegistrationView, LoginView, MeView, ProfileView, ChangePasswordView,
)

app_name = 'auth'

urlpatterns = [
    # Registration and login
    path('register', RegistrationView.as_view(), name='register'),
    path('login', LoginView.as_view(), name='login'),

    # Current user
    path('me', MeView.as_view(), name='me'),
    path('profile', ProfileView.as_view(), name='profile'),
    path('change-password', ChangePasswordView.as_view(), name='change-password'),
]
