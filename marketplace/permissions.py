"""
Custom permission classes for the Guidee marketplace.
"""

from django.utils.translation import gettext_lazy as _
from rest_framework import permissions


class IsAdminRole(permissions.BasePermission):
    """
    Allows only users with the ADMIN role (or superusers).

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsAdminRole]
    """

    message = _('Administrator privileges required.')

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_admin()


class IsVerifiedGuide(permissions.BasePermission):
    """
    Allows only KYC-verified guides (administrators always pass).

    Returns 403 Forbidden for:
    - Customers
    - Guides without an approved KYC submission
    """

    message = _('Only KYC-verified guides can create services.')

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        if user.is_admin():
            return True

        if not user.is_guide():
            self.message = _('Only guides can create services.')
            return False

        if not user.is_kyc_verified:
            self.message = _('Please complete identity verification before creating services.')
            return False

        return True


class IsCustomer(permissions.BasePermission):
    message = _('Only customers can create bookings.')

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_customer()


class CanManageBooking(permissions.BasePermission):
    """
    Object-level permission for booking actions.

    Authorization rules:
    - confirm / complete: the booking's guide or an administrator
    - cancel / view: the traveler, the guide or an administrator

    The view sets `booking_action` before checking.
    """

    message = _('You do not have permission to access this booking.')

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        if user.is_admin():
            return True

        action = getattr(view, 'booking_action', 'view')
        is_traveler = obj.traveler_id == user.id
        is_guide = obj.guide_id == user.id

        if not is_traveler and not is_guide:
            self.message = _('You do not have permission to access this booking.')
            return False

        if action == 'confirm' and not is_guide:
            self.message = _('Only the guide can confirm this booking.')
            return False

        if action == 'complete' and not is_guide:
            self.message = _('Only the guide can complete this booking.')
            return False

        return True


class IsOwnerOrAdmin(permissions.BasePermission):
    """
    Object-level permission for resources with a single owner.

    The owning attribute is taken from the view's `owner_field`
    (defaults to `user`).
    """

    message = _('You do not have permission to modify this resource.')

    def has_object_permission(self, request, view, obj):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.is_admin():
            return True
        owner_field = getattr(view, 'owner_field', 'user')
        return getattr(obj, f'{owner_field}_id') == user.id
