import pytest
from django.urls import reverse
from rest_framework import status
from apps.accounts.models import User, UserRole


# =============================================================================
# Login Tests
# =============================================================================

@pytest.mark.django_db
class TestLogin:
    """Tests for POST /api/auth/login/"""

    def test_login_success(self, api_client, user):
        response = api_client.post(reverse('users:login'), {
            'email': user.email,
            'password': 'TestPass123!',
        })

        assert response.status_code == status.HTTP_200_OK
        assert 'access' in response.data
        assert 'refresh' in response.data

    def test_login_wrong_password(self, api_client, user):
        response = api_client.post(reverse('users:login'), {
            'email': user.email,
            'password': 'WrongPassword123!',
        })

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_login_inactive_user(self, api_client, user_inactive):
        response = api_client.post(reverse('users:login'), {
            'email': user_inactive.email,
            'password': 'TestPass123!',
        })

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_login_updates_last_login(self, api_client, user):
        assert user.last_login is None

        api_client.post(reverse('users:login'), {
            'email': user.email,
            'password': 'TestPass123!',
        })

        user.refresh_from_db()
        assert user.last_login is not None


# =============================================================================
# Get Current User Tests
# =============================================================================

@pytest.mark.django_db
class TestGetCurrentUser:
    """Tests for GET /api/auth/user/"""

    def test_get_current_user(self, authenticated_client, user):
        response = authenticated_client.get(reverse('users:current-user'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['email'] == user.email
        assert response.data['role'] == UserRole.FINANCIAL
        assert response.data['can_manage_finances'] is True

    def test_get_current_user_unauthenticated(self, api_client):
        response = api_client.get(reverse('users:current-user'))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# =============================================================================
# Roles
# =============================================================================

@pytest.mark.django_db
class TestFinanceRoles:

    @pytest.mark.parametrize('role,allowed', [
        (UserRole.ADMIN, True),
        (UserRole.FINANCIAL, True),
        (UserRole.SECRETARY, False),
        (UserRole.TEACHER, False),
        (UserRole.GUARDIAN, False),
    ])
    def test_can_manage_finances(self, role, allowed):
        user = User.objects.create_user(email=f'{role}@school.example', password='x', role=role)
        assert user.can_manage_finances() is allowed

    def test_superuser_always_allowed(self):
        admin = User.objects.create_superuser(email='root@school.example', password='x', role=UserRole.TEACHER)
        assert admin.can_manage_finances() is True

    def test_inactive_user_denied(self, user_inactive):
        user_inactive.role = UserRole.FINANCIAL
        assert user_inactive.can_manage_finances() is False

    def test_display_name_falls_back_to_email(self):
        user = User.objects.create_user(email='ana.lima@school.example', password='x')
        assert user.get_display_name() == 'ana.lima'
