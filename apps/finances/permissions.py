"""
Custom permission classes for the finances app.
"""
from rest_framework.permissions import BasePermission


class CanManageFinances(BasePermission):
    """
    Permission to read or change financial transactions.

    Allows if the user is active and is a superuser or holds the admin or
    financial role.

    Usage:
        @permission_classes([IsAuthenticated, CanManageFinances])
        class FinancialTransactionViewSet(viewsets.ModelViewSet):
            ...
    """

    message = 'Only finance staff can access financial transactions.'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.can_manage_finances())
