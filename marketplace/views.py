"""
API views for the Guidee marketplace.

Every response uses the {success, data, error} envelope from
marketplace.responses. Errors raised as DRF exceptions are wrapped by the
envelope exception handler.
"""

import logging
import os
import uuid
from datetime import datetime, time, timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import update_last_login
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.files.storage import default_storage
from django.db import IntegrityError, connection, transaction
from django.db.models import (
    Avg,
    Case,
    Count,
    F,
    FloatField,
    Max,
    Min,
    Q,
    Sum,
    Value,
    When,
)
from django.shortcuts import get_object_or_404
from django.utils import timezone, translation
from django.utils.dateparse import parse_date, parse_datetime
from django.utils.translation import gettext as _
from rest_framework import status
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import AllowAny, IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings as jwt_settings
from rest_framework_simplejwt.tokens import RefreshToken

from . import notifications
from .audit import get_client_ip, record_activity
from .authentication import clear_auth_cookie, issue_tokens, set_auth_cookie
from .models import (
    ActivityLog,
    Booking,
    Conversation,
    ConversationParticipant,
    KycSubmission,
    Message,
    Notification,
    Payment,
    PaymentMethod,
    Post,
    PostLike,
    PostServiceEmbed,
    PushSubscription,
    Review,
    ReviewHelpful,
    ReviewResponse,
    Service,
    SupportTicket,
    default_user_settings,
    quantize_money,
)
from .pagination import paginate, parse_positive_int
from .permissions import CanManageBooking, IsAdminRole, IsCustomer, IsOwnerOrAdmin, IsVerifiedGuide
from .responses import BadRequest, Conflict, error_response, success_response
from .serializers import (
    ActivityLogSerializer,
    AdminBookingUpdateSerializer,
    AdminNotificationSerializer,
    AdminReviewStatusSerializer,
    AdminServiceSerializer,
    AdminServiceStatusSerializer,
    AdminTicketUpdateSerializer,
    AdminUserSerializer,
    AdminUserUpdateSerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    ConversationCreateSerializer,
    ConversationSerializer,
    CurrentUserSerializer,
    EmbedServiceSerializer,
    GuideSerializer,
    KycReviewSerializer,
    KycSubmissionSerializer,
    KycSubmitSerializer,
    LanguageSerializer,
    LoginSerializer,
    LogoutSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    NotificationSerializer,
    PaymentCreateSerializer,
    PaymentMethodCreateSerializer,
    PaymentMethodSerializer,
    PaymentSerializer,
    PostCommentSerializer,
    PostLikeSerializer,
    PostSerializer,
    PostWriteSerializer,
    PushSubscriptionSerializer,
    ReviewCreateSerializer,
    ReviewResponseSerializer,
    ReviewSerializer,
    ReviewUpdateSerializer,
    ServiceDetailSerializer,
    ServiceListSerializer,
    ServiceSuggestionSerializer,
    ServiceWriteSerializer,
    SupportReplySerializer,
    SupportTicketSerializer,
    TokenRefreshSerializer,
    UserProfileUpdateSerializer,
    UserRegistrationSerializer,
    UserSettingsSerializer,
)
from .validators import (
    DECLINED_TEST_CARDS,
    detect_card_brand,
    validate_chat_attachment,
    validate_post_media,
)

User = get_user_model()
logger = logging.getLogger(__name__)


# ============================================================================
# Query parameter helpers
# ============================================================================

def _parse_decimal(value, name):
    if value in (None, ''):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError({name: [_('Must be a number.')]})
    if not number.is_finite() or number < 0:
        raise ValidationError({name: [_('Must be a non-negative number.')]})
    return number


def _parse_bool(value):
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def _parse_datetime(value, name):
    if value in (None, ''):
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        parsed_date = parse_date(value)
        if parsed_date is None:
            raise ValidationError({name: [_('Enter a valid date or date/time.')]})
        parsed = datetime.combine(parsed_date, time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _parse_choice(value, choices, name):
    """Upper-case `value` and check it against model choices; None when empty."""
    if value in (None, ''):
        return None
    value = value.upper()
    valid = [choice for choice, _label in choices]
    if value not in valid:
        raise ValidationError({name: [_('Must be one of: %(choices)s.') % {'choices': ', '.join(valid)}]})
    return value


def _money(value):
    # Aggregates come back unquantized on some backends
    return str(quantize_money(str(value if value is not None else 0)))


# ============================================================================
# Authentication
# ============================================================================

class RegisterView(APIView):
    """
    API endpoint for user registration.

    POST /api/auth/register/
    Request body: {
        "email": "traveler@example.com",
        "password": "...",
        "confirm_password": "...",
        "name": "Lin",
        "role": "CUSTOMER"
    }

    Success response (201): {"success": true, "data": {"user": {...}, "tokens": {...}}}

    Error responses:
    - 400: Validation errors (duplicate email, weak password, invalid role)
    - 409: Concurrent registration with the same email
    - 429: Too many registrations from this client
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'register'

    def post(self, request, *args, **kwargs):
        serializer = UserRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            with transaction.atomic():
                user = serializer.save()
        except IntegrityError:
            logger.warning(
                f"Concurrent registration attempt. Email: {serializer.validated_data.get('email')}, "
                f"IP: {get_client_ip(request)}"
            )
            raise Conflict(_('A user with that email already exists.'))

        logger.info(
            f"User registered. User ID: {user.id}, Email: {user.email}, Role: {user.role}, "
            f"IP: {get_client_ip(request)}"
        )

        return success_response(
            {
                'user': CurrentUserSerializer(user, context={'request': request}).data,
                'tokens': issue_tokens(user),
            },
            message=_('Registration successful.'),
            status_code=status.HTTP_201_CREATED,
        )


class LoginView(APIView):
    """
    API endpoint for login with JWT token generation.

    Security features:
    - Rate limiting (login scope)
    - One generic error for unknown email, wrong password and inactive account
    - Failed attempts are logged with the client IP
    - Sets the httpOnly auth cookie used by the web client

    POST /api/auth/login/
    Request body: {"email": "user@example.com", "password": "password123"}

    Success response (200):
    {
        "success": true,
        "data": {"access": "...", "refresh": "...", "user": {...}},
        "error": null
    }

    Error response (401): {"success": false, "data": null, "error": "Invalid credentials"}
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'

    admin_only = False

    def _invalid_credentials(self, email, reason, request):
        logger.warning(
            f"Failed login attempt ({reason}). Email: {email}, IP: {get_client_ip(request)}"
        )
        return error_response(_('Invalid credentials'), status.HTTP_401_UNAUTHORIZED)

    def post(self, request, *args, **kwargs):
        """
        Steps:
        1. Validate the request body
        2. Look the user up by email (case-insensitive)
        3. Check password and active flag
        4. Issue tokens and set the auth cookie
        """
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        email = serializer.validated_data['email'].lower().strip()
        password = serializer.validated_data['password']

        try:
            user = User.objects.get(email__iexact=email)
        except User.DoesNotExist:
            # Hash anyway so response time does not reveal whether the email exists
            User().set_password(password)
            return self._invalid_credentials(email, 'unknown user', request)

        if not user.check_password(password):
            return self._invalid_credentials(email, 'wrong password', request)

        if not user.is_active:
            return self._invalid_credentials(email, 'inactive account', request)

        if self.admin_only and not user.is_admin():
            logger.warning(
                f"Non-admin attempted admin login. Email: {email}, IP: {get_client_ip(request)}"
            )
            return error_response(_('Administrator privileges required.'), status.HTTP_403_FORBIDDEN)

        tokens = issue_tokens(user)
        update_last_login(None, user)

        logger.info(f"Successful login. Email: {email}, IP: {get_client_ip(request)}")

        response = success_response({
            'access': tokens['access'],
            'refresh': tokens['refresh'],
            'user': CurrentUserSerializer(user, context={'request': request}).data,
        })
        return set_auth_cookie(response, tokens['access'])


class AdminLoginView(LoginView):
    """POST /api/auth/admin/login/: as login, restricted to administrators."""

    admin_only = True


class LogoutView(APIView):
    """
    Blacklist the refresh token and clear the auth cookie.

    POST /api/auth/logout/
    Request body: {"refresh": "<jwt_refresh_token>"}
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = LogoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            token = RefreshToken(serializer.validated_data['refresh'])
            token.blacklist()
        except TokenError as e:
            logger.warning(f"Logout with invalid refresh token. Error: {e}, IP: {get_client_ip(request)}")
            return error_response(_('Invalid or expired token.'), status.HTTP_401_UNAUTHORIZED)

        logger.info(f"User logged out. User ID: {token.get(jwt_settings.USER_ID_CLAIM)}, IP: {get_client_ip(request)}")
        response = success_response(message=_('Logged out successfully.'))
        return clear_auth_cookie(response)


class TokenRefreshView(APIView):
    """
    API endpoint for refreshing JWT access tokens.

    Security features:
    - Rate limiting (refresh scope)
    - Signature, expiry, type and blacklist checks
    - Rotation: the old refresh token is blacklisted and a new pair issued

    POST /api/auth/refresh/
    Request body: {"refresh": "<jwt_refresh_token>"}

    Error responses:
    - 400: Missing refresh field
    - 401: Invalid, expired, blacklisted or wrong-type token
    - 429: Rate limit exceeded
    """
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'refresh'

    def post(self, request, *args, **kwargs):
        serializer = TokenRefreshSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client_ip = get_client_ip(request)

        try:
            # Verifies signature, expiry, token type and blacklist
            refresh_token = RefreshToken(serializer.validated_data['refresh'])
        except TokenError as e:
            logger.warning(f"Failed token refresh attempt. Error: {e}, IP: {client_ip}")
            return error_response(_('Invalid or expired token.'), status.HTTP_401_UNAUTHORIZED)

        user_id = refresh_token.get(jwt_settings.USER_ID_CLAIM)
        user = User.objects.filter(pk=user_id, is_active=True).first()
        if user is None:
            logger.warning(f"Token refresh for missing or inactive user. User ID: {user_id}, IP: {client_ip}")
            return error_response(_('Invalid or expired token.'), status.HTTP_401_UNAUTHORIZED)

        if settings.SIMPLE_JWT.get('ROTATE_REFRESH_TOKENS', False):
            if settings.SIMPLE_JWT.get('BLACKLIST_AFTER_ROTATION', False):
                refresh_token.blacklist()
            tokens = issue_tokens(user)
        else:
            tokens = {'access': str(refresh_token.access_token)}

        logger.info(f"Successful token refresh. User ID: {user.id}, IP: {client_ip}")
        response = success_response(tokens)
        return set_auth_cookie(response, tokens['access'])


class MeView(APIView):
    """GET /api/auth/me/: the current user with profile and unread notification count."""

    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        data = CurrentUserSerializer(request.user, context={'request': request}).data
        data['unread_notifications'] = request.user.notifications.filter(is_read=False).count()
        return success_response(data)


# ============================================================================
# Profile and settings
# ============================================================================

class UserProfileView(APIView):
    """
    API endpoint for the authenticated user's profile.

    GET /api/users/profile/
    PUT/PATCH /api/users/profile/ (JSON or multipart for avatar uploads)

    Restricted fields (email, role, verification flags, permissions) are
    rejected with 400.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        return success_response(CurrentUserSerializer(request.user, context={'request': request}).data)

    def put(self, request, *args, **kwargs):
        return self._update(request)

    def patch(self, request, *args, **kwargs):
        return self._update(request)

    def _update(self, request):
        serializer = UserProfileUpdateSerializer(
            request.user,
            data=request.data,
            partial=True,
            context={'request': request},
        )
        if not serializer.is_valid():
            logger.warning(
                f"Profile update rejected. User: {request.user.email}, "
                f"Fields: {sorted(serializer.errors.keys())}, IP: {get_client_ip(request)}"
            )
            raise ValidationError(serializer.errors)

        user = serializer.save()
        user.refresh_from_db()
        logger.info(f"Profile updated. User: {user.email}, IP: {get_client_ip(request)}")
        return success_response(
            CurrentUserSerializer(user, context={'request': request}).data,
            message=_('Profile updated successfully.'),
        )


def _deep_merge(base, updates):
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class UserSettingsView(APIView):
    """GET|PUT /api/settings/: the user's preference document."""

    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        document = _deep_merge(default_user_settings(), request.user.settings or {})
        document['language'] = request.user.preferred_language
        return success_response(document)

    def put(self, request, *args, **kwargs):
        serializer = UserSettingsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = request.user
        current = _deep_merge(default_user_settings(), user.settings or {})
        user.settings = _deep_merge(current, serializer.validated_data)
        user.save(update_fields=['settings', 'updated_at'])

        logger.info(f"Settings updated. User: {user.email}, Keys: {sorted(serializer.validated_data.keys())}")
        document = dict(user.settings)
        document['language'] = user.preferred_language
        return success_response(document, message=_('Settings saved.'))


class LanguageView(APIView):
    """
    PUT /api/settings/language/

    Stores the preferred language and sets the language cookie so
    LocaleMiddleware picks it up on the next request.
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, *args, **kwargs):
        serializer = LanguageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        language = serializer.validated_data['language']

        request.user.preferred_language = language
        request.user.save(update_fields=['preferred_language', 'updated_at'])

        with translation.override(language):
            response = success_response({'language': language}, message=_('Language updated.'))
            response['Content-Language'] = language
        response.set_cookie(
            settings.LANGUAGE_COOKIE_NAME,
            language,
            max_age=365 * 24 * 60 * 60,
            samesite='Lax',
        )
        return response


class PaymentMethodListView(APIView):
    """
    GET|POST /api/settings/payment-methods/

    Only the brand and last four digits of a card are stored. The first
    method a user adds becomes the default.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        methods = request.user.payment_methods.all()
        return success_response(PaymentMethodSerializer(methods, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = PaymentMethodCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        card_number = data.get('card_number')

        with transaction.atomic():
            existing = PaymentMethod.objects.select_for_update().filter(user=request.user)
            make_default = data['is_default'] or not existing.exists()
            if make_default:
                existing.filter(is_default=True).update(is_default=False)

            method = PaymentMethod.objects.create(
                user=request.user,
                method_type=data['method_type'],
                brand=detect_card_brand(card_number) if card_number else '',
                last4=card_number[-4:] if card_number else '',
                holder_name=data.get('holder_name', ''),
                expiry_month=data.get('expiry_month'),
                expiry_year=data.get('expiry_year'),
                is_default=make_default,
            )

        logger.info(
            f"Payment method added. User: {request.user.email}, Type: {method.method_type}, "
            f"Brand: {method.brand or '-'}, Default: {method.is_default}"
        )
        return success_response(
            PaymentMethodSerializer(method).data,
            message=_('Payment method added.'),
            status_code=status.HTTP_201_CREATED,
        )


class PaymentMethodDetailView(APIView):
    """PATCH|DELETE /api/settings/payment-methods/<id>/ (owner only)."""

    permission_classes = [IsAuthenticated]

    def _get_method(self, request, pk):
        return get_object_or_404(PaymentMethod, pk=pk, user=request.user)

    def patch(self, request, pk, *args, **kwargs):
        method = self._get_method(request, pk)
        holder_name = request.data.get('holder_name')

        with transaction.atomic():
            if _parse_bool(request.data.get('is_default', False)) and not method.is_default:
                PaymentMethod.objects.filter(user=request.user, is_default=True).update(is_default=False)
                method.is_default = True
            if holder_name is not None:
                method.holder_name = str(holder_name)[:100]
            method.save()

        return success_response(PaymentMethodSerializer(method).data, message=_('Payment method updated.'))

    def delete(self, request, pk, *args, **kwargs):
        method = self._get_method(request, pk)

        with transaction.atomic():
            was_default = method.is_default
            method.delete()
            if was_default:
                replacement = PaymentMethod.objects.filter(user=request.user).order_by('-created_at').first()
                if replacement is not None:
                    replacement.is_default = True
                    replacement.save(update_fields=['is_default'])

        logger.info(f"Payment method deleted. User: {request.user.email}, Method ID: {pk}")
        return success_response(message=_('Payment method deleted.'))


class TransactionListView(APIView):
    """
    GET /api/settings/transactions/

    The user's payments, newest first, with a summary of totals.
    Query params: status, page, limit
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        payments = Payment.objects.filter(user=request.user).order_by('-created_at')

        summary = payments.aggregate(
            total_paid=Sum('amount', filter=Q(status__in=['COMPLETED', 'PARTIALLY_REFUNDED', 'REFUNDED'])),
            total_refunded=Sum('refunded_amount'),
            count=Count('id'),
        )

        status_filter = _parse_choice(request.query_params.get('status'), Payment.STATUS_CHOICES, 'status')
        if status_filter:
            payments = payments.filter(status=status_filter)

        items, pagination = paginate(request, payments.select_related('booking__service'))
        data = []
        for payment in items:
            entry = PaymentSerializer(payment).data
            entry['service_title'] = payment.booking.service.title
            data.append(entry)

        return success_response(
            data,
            pagination=pagination,
            summary={
                'total_paid': _money(summary['total_paid']),
                'total_refunded': _money(summary['total_refunded']),
                'count': summary['count'],
            },
        )


# ============================================================================
# Guides and health
# ============================================================================

def _annotated_guides():
    return User.objects.filter(role=User.ROLE_GUIDE, is_active=True).select_related('profile').annotate(
        active_services=Count('services', filter=Q(services__status='ACTIVE'), distinct=True),
        total_reviews=Count('reviews_received', filter=Q(reviews_received__status='PUBLISHED'), distinct=True),
    )


class GuideListView(APIView):
    """
    GET /api/guides/

    Public guide directory.

    Query params:
    - location, language, specialty, search: Text filters
    - min_rating: Minimum guide rating (0-5)
    - sort: rating (default), experience, newest
    - page, limit
    """
    permission_classes = [AllowAny]

    SORTS = {
        'rating': ('-avg_rating_as_guide', '-created_at'),
        'experience': ('-profile__experience_years', '-avg_rating_as_guide'),
        'newest': ('-created_at',),
    }

    def get(self, request, *args, **kwargs):
        params = request.query_params
        guides = _annotated_guides()

        if params.get('location'):
            guides = guides.filter(profile__location__icontains=params['location'])
        if params.get('language'):
            guides = guides.filter(profile__languages__icontains=params['language'])
        if params.get('specialty'):
            guides = guides.filter(profile__specialties__icontains=params['specialty'])
        if params.get('search'):
            term = params['search']
            guides = guides.filter(
                Q(name__icontains=term) | Q(profile__bio__icontains=term) | Q(profile__location__icontains=term)
            )

        min_rating = _parse_decimal(params.get('min_rating'), 'min_rating')
        if min_rating is not None:
            if min_rating > 5:
                raise ValidationError({'min_rating': [_('Must be between 0 and 5.')]})
            guides = guides.filter(avg_rating_as_guide__gte=min_rating)

        sort = params.get('sort', 'rating')
        if sort not in self.SORTS:
            raise ValidationError({'sort': [_('Must be one of: %(choices)s.') % {'choices': ', '.join(self.SORTS)}]})

        items, pagination = paginate(request, guides.order_by(*self.SORTS[sort]))
        return success_response(
            GuideSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class GuideDetailView(APIView):
    """GET /api/guides/<id>/: profile, active services, recent reviews and stats."""

    permission_classes = [AllowAny]

    def get(self, request, pk, *args, **kwargs):
        guide = get_object_or_404(_annotated_guides(), pk=pk)

        services = guide.services.filter(status='ACTIVE').select_related('guide').order_by('-average_rating')
        reviews = Review.objects.filter(guide=guide, status='PUBLISHED').select_related(
            'reviewer', 'service', 'response'
        ).order_by('-created_at')[:10]

        data = GuideSerializer(guide, context={'request': request}).data
        data['services'] = ServiceListSerializer(services, many=True, context={'request': request}).data
        data['recent_reviews'] = ReviewSerializer(reviews, many=True, context={'request': request}).data
        data['stats'] = {
            'active_services': guide.active_services,
            'total_reviews': guide.total_reviews,
            'average_rating': str(guide.avg_rating_as_guide),
            'completed_bookings': guide.guide_bookings.filter(status='COMPLETED').count(),
        }
        return success_response(data)


class HealthView(APIView):
    """GET /api/health/: database reachability."""

    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, *args, **kwargs):
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                cursor.fetchone()
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return error_response(_('Database unavailable.'), status.HTTP_503_SERVICE_UNAVAILABLE)

        return success_response({
            'status': 'ok',
            'database': 'ok',
            'timestamp': timezone.now().isoformat(),
        })


# ============================================================================
# Services
# ============================================================================

def _apply_service_filters(queryset, params):
    """
    Filters shared by the service list and search endpoints.

    Raises:
        ValidationError: For malformed numeric or choice values
    """
    category = _parse_choice(params.get('category'), Service.CATEGORY_CHOICES, 'category')
    if category:
        queryset = queryset.filter(category=category)

    if params.get('location'):
        queryset = queryset.filter(location__icontains=params['location'].strip())

    min_price = _parse_decimal(params.get('min_price'), 'min_price')
    max_price = _parse_decimal(params.get('max_price'), 'max_price')
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError({'min_price': [_('Minimum price cannot exceed maximum price.')]})
    if min_price is not None:
        queryset = queryset.filter(price__gte=min_price)
    if max_price is not None:
        queryset = queryset.filter(price__lte=max_price)

    min_rating = _parse_decimal(params.get('min_rating'), 'min_rating')
    if min_rating is not None:
        if min_rating > 5:
            raise ValidationError({'min_rating': [_('Must be between 0 and 5.')]})
        queryset = queryset.filter(average_rating__gte=min_rating)

    guests = parse_positive_int(params.get('guests'), 'guests')
    if guests is not None:
        queryset = queryset.filter(min_guests__lte=guests, max_guests__gte=guests)

    return queryset


class ServiceListCreateView(APIView):
    """
    API endpoint for listing and creating services.

    GET /api/services/ (public, ACTIVE services only)
    Query params:
    - category, location, min_price, max_price, min_rating, guests, guide
    - ordering: price, -price, rating, newest (default), popular
    - page, limit

    POST /api/services/ (KYC-verified guides)
    Error responses:
    - 400: Invalid filter or service data
    - 401: Not authenticated
    - 403: Not a KYC-verified guide
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    ORDERINGS = {
        'price': ('price', '-created_at'),
        '-price': ('-price', '-created_at'),
        'rating': ('-average_rating', '-total_reviews'),
        'newest': ('-created_at',),
        'popular': ('-total_bookings', '-average_rating'),
    }

    def get(self, request, *args, **kwargs):
        params = request.query_params
        services = Service.objects.filter(status='ACTIVE').select_related('guide')
        services = _apply_service_filters(services, params)

        guide_id = parse_positive_int(params.get('guide'), 'guide')
        if guide_id is not None:
            services = services.filter(guide_id=guide_id)

        ordering = params.get('ordering', 'newest')
        if ordering not in self.ORDERINGS:
            raise ValidationError({
                'ordering': [_('Must be one of: %(choices)s.') % {'choices': ', '.join(self.ORDERINGS)}]
            })

        items, pagination = paginate(request, services.order_by(*self.ORDERINGS[ordering]))
        return success_response(
            ServiceListSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )

    def post(self, request, *args, **kwargs):
        """
        Steps:
        1. Verify the user is a KYC-verified guide
        2. Validate service data
        3. Create the service (ACTIVE unless DRAFT requested)
        """
        permission = IsVerifiedGuide()
        if not permission.has_permission(request, self):
            logger.warning(
                f"Service creation denied. User: {request.user.email}, Role: {request.user.role}, "
                f"KYC: {request.user.is_kyc_verified}, IP: {get_client_ip(request)}"
            )
            raise PermissionDenied(permission.message)

        serializer = ServiceWriteSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        service = serializer.save()

        logger.info(
            f"Service created successfully. Service ID: {service.id}, Title: {service.title}, "
            f"Guide: {request.user.email}, IP: {get_client_ip(request)}"
        )
        return success_response(
            ServiceDetailSerializer(service, context={'request': request}).data,
            message=_('Service created successfully.'),
            status_code=status.HTTP_201_CREATED,
        )


class ServiceDetailView(APIView):
    """
    GET /api/services/<id>/: public for ACTIVE services; owners and admins see any status.
    PATCH /api/services/<id>/: owner or admin.
    DELETE /api/services/<id>/: owner or admin; soft-deletes to INACTIVE.
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    def _can_manage(self, user, service):
        return user.is_authenticated and (user.is_admin() or service.guide_id == user.id)

    def _get_managed(self, request, pk):
        service = get_object_or_404(Service.objects.select_related('guide'), pk=pk)
        if not self._can_manage(request.user, service):
            logger.warning(
                f"Unauthorized service modification attempt. Service ID: {service.id}, "
                f"User: {request.user.email}, IP: {get_client_ip(request)}"
            )
            raise PermissionDenied(_('You do not have permission to modify this service.'))
        return service

    def get(self, request, pk, *args, **kwargs):
        service = get_object_or_404(Service.objects.select_related('guide'), pk=pk)
        if service.status != 'ACTIVE' and not self._can_manage(request.user, service):
            raise NotFound(_('Service not found.'))
        return success_response(ServiceDetailSerializer(service, context={'request': request}).data)

    def patch(self, request, pk, *args, **kwargs):
        service = self._get_managed(request, pk)
        serializer = ServiceWriteSerializer(service, data=request.data, partial=True, context={'request': request})
        serializer.is_valid(raise_exception=True)
        service = serializer.save()

        logger.info(f"Service updated. Service ID: {service.id}, User: {request.user.email}")
        return success_response(
            ServiceDetailSerializer(service, context={'request': request}).data,
            message=_('Service updated successfully.'),
        )

    def delete(self, request, pk, *args, **kwargs):
        service = self._get_managed(request, pk)

        if service.bookings.filter(status__in=Booking.ACTIVE_STATUSES).exists():
            logger.warning(
                f"Service deletion blocked by active bookings. Service ID: {service.id}, "
                f"User: {request.user.email}"
            )
            raise Conflict(_('This service has pending or confirmed bookings and cannot be deleted.'))

        service.status = 'INACTIVE'
        service.save()
        logger.info(f"Service deactivated. Service ID: {service.id}, User: {request.user.email}")
        return success_response(message=_('Service deleted successfully.'))


class ServiceSearchView(APIView):
    """
    GET /api/services/search/

    Query params:
    - q: Keyword matched against title, short description, description and tags
    - location, category, min_price, max_price, min_rating, guests
    - duration: Exact duration in hours
    - tags: Comma-separated tag list (all must match)
    - sort_by: relevance (default), price_low, price_high, rating, duration, newest
    - sort_order: asc or desc (for rating, duration and newest)
    - page, limit

    Response data: services, filter statistics and the echoed search parameters.
    """
    permission_classes = [AllowAny]

    SORT_FIELDS = {
        'rating': 'average_rating',
        'duration': 'duration_hours',
        'newest': 'created_at',
    }

    def get(self, request, *args, **kwargs):
        params = request.query_params
        query = params.get('q', '').strip()

        base = Service.objects.filter(status='ACTIVE').select_related('guide')
        services = _apply_service_filters(base, params)

        if query:
            services = services.filter(
                Q(title__icontains=query)
                | Q(short_description__icontains=query)
                | Q(description__icontains=query)
                | Q(tags__icontains=query)
            )

        duration = parse_positive_int(params.get('duration'), 'duration')
        if duration is not None:
            services = services.filter(duration_hours=duration)

        tags = [tag.strip() for tag in params.get('tags', '').split(',') if tag.strip()]
        for tag in tags:
            services = services.filter(tags__icontains=tag)

        filtered = services
        sort_by = params.get('sort_by', 'relevance')
        sort_order = params.get('sort_order', 'desc')
        if sort_order not in ('asc', 'desc'):
            raise ValidationError({'sort_order': [_('Must be asc or desc.')]})

        if sort_by == 'relevance':
            if query:
                services = services.annotate(
                    title_match=Case(When(title__icontains=query, then=Value(1)), default=Value(0))
                ).order_by('-title_match', '-average_rating', '-total_bookings')
            else:
                services = services.order_by('-average_rating', '-total_bookings', '-created_at')
        elif sort_by == 'price_low':
            services = services.order_by('price', '-created_at')
        elif sort_by == 'price_high':
            services = services.order_by('-price', '-created_at')
        elif sort_by in self.SORT_FIELDS:
            prefix = '-' if sort_order == 'desc' else ''
            services = services.order_by(f'{prefix}{self.SORT_FIELDS[sort_by]}', '-created_at')
        else:
            raise ValidationError({'sort_by': [_('Invalid sort option.')]})

        items, pagination = paginate(request, services)

        price_range = filtered.aggregate(min_price=Min('price'), max_price=Max('price'))
        category_counts = {
            row['category']: row['total']
            for row in filtered.values('category').annotate(total=Count('id'))
        }
        location_counts = [
            {'location': row['location'], 'count': row['total']}
            for row in filtered.values('location').annotate(total=Count('id')).order_by('-total')[:10]
        ]

        return success_response(
            {
                'services': ServiceListSerializer(items, many=True, context={'request': request}).data,
                'filters': {
                    'price_range': {
                        'min': _money(price_range['min_price']) if price_range['min_price'] is not None else None,
                        'max': _money(price_range['max_price']) if price_range['max_price'] is not None else None,
                    },
                    'categories': category_counts,
                    'locations': location_counts,
                },
                'search_params': {
                    'q': query,
                    'location': params.get('location', ''),
                    'category': params.get('category', ''),
                    'min_price': params.get('min_price'),
                    'max_price': params.get('max_price'),
                    'min_rating': params.get('min_rating'),
                    'duration': params.get('duration'),
                    'guests': params.get('guests'),
                    'tags': tags,
                    'sort_by': sort_by,
                    'sort_order': sort_order,
                },
            },
            pagination=pagination,
        )


class ServiceSuggestionsView(APIView):
    """
    GET /api/services/suggestions/

    Query params:
    - q: Partial keyword; fewer than 2 characters returns popular suggestions
    - type: all (default), services, locations, categories
    - limit: Maximum suggestions per group (default 5, max 20)
    """
    permission_classes = [AllowAny]

    TYPES = ('all', 'services', 'locations', 'categories')

    def get(self, request, *args, **kwargs):
        query = request.query_params.get('q', '').strip()
        kind = request.query_params.get('type', 'all')
        if kind not in self.TYPES:
            raise ValidationError({'type': [_('Must be one of: %(choices)s.') % {'choices': ', '.join(self.TYPES)}]})
        limit = parse_positive_int(request.query_params.get('limit'), 'limit', default=5, maximum=20)

        active = Service.objects.filter(status='ACTIVE')
        category_labels = dict(Service.CATEGORY_CHOICES)

        if len(query) < 2:
            locations = active.order_by().values('location').annotate(total=Count('id')).order_by('-total')[:limit]
            categories = active.order_by().values('category').annotate(total=Count('id')).order_by('-total')[:limit]
            popular = active.order_by('-total_bookings', '-average_rating')[:limit]
            return success_response({
                'query': query,
                'popular': True,
                'services': ServiceSuggestionSerializer(popular, many=True).data,
                'locations': [{'value': row['location'], 'count': row['total']} for row in locations],
                'categories': [
                    {'value': row['category'], 'label': str(category_labels.get(row['category'], row['category'])),
                     'count': row['total']}
                    for row in categories
                ],
            })

        data = {'query': query, 'popular': False}

        if kind in ('all', 'services'):
            matches = active.filter(Q(title__icontains=query) | Q(tags__icontains=query)).order_by(
                '-total_bookings', '-average_rating'
            )[:limit]
            data['services'] = ServiceSuggestionSerializer(matches, many=True).data

        if kind in ('all', 'locations'):
            locations = (
                active.filter(location__icontains=query).order_by()
                .values('location').annotate(total=Count('id')).order_by('-total')[:limit]
            )
            data['locations'] = [{'value': row['location'], 'count': row['total']} for row in locations]

        if kind in ('all', 'categories'):
            lowered = query.lower()
            data['categories'] = [
                {'value': code, 'label': str(label)}
                for code, label in Service.CATEGORY_CHOICES
                if lowered in code.lower() or lowered in str(label).lower()
            ][:limit]

        return success_response(data)


class ServiceAvailabilityView(APIView):
    """
    GET /api/services/<id>/availability/

    Query params:
    - start_date, end_date: YYYY-MM-DD (default: today and 14 days later, max 90 days)

    Returns the guide's busy windows and, per day, the open start times.
    Start slots run from 08:00 and step by the service duration; a tour must
    end by 20:00 and start at least one hour from now.
    """
    permission_classes = [AllowAny]

    DAY_START = time(8, 0)
    DAY_END = time(20, 0)
    MAX_RANGE_DAYS = 90
    DEFAULT_RANGE_DAYS = 14

    def _parse_day(self, value, name, default):
        if value in (None, ''):
            return default
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError({name: [_('Enter a valid date (YYYY-MM-DD).')]})
        return parsed

    def get(self, request, pk, *args, **kwargs):
        service = get_object_or_404(Service, pk=pk, status='ACTIVE')

        today = timezone.localdate()
        start_day = self._parse_day(request.query_params.get('start_date'), 'start_date', today)
        end_day = self._parse_day(
            request.query_params.get('end_date'),
            'end_date',
            start_day + timedelta(days=self.DEFAULT_RANGE_DAYS),
        )
        if end_day < start_day:
            raise ValidationError({'end_date': [_('End date must not be before start date.')]})
        if (end_day - start_day).days > self.MAX_RANGE_DAYS:
            raise ValidationError({'end_date': [_('Date range cannot exceed 90 days.')]})

        range_start = timezone.make_aware(datetime.combine(start_day, time.min))
        range_end = timezone.make_aware(datetime.combine(end_day + timedelta(days=1), time.min))

        busy = list(
            Booking.objects.filter(
                guide_id=service.guide_id,
                status__in=Booking.ACTIVE_STATUSES,
                booking_date__lt=range_end,
                end_time__gt=range_start,
            ).order_by('booking_date').values_list('booking_date', 'end_time')
        )

        earliest = timezone.now() + BookingCreateSerializer.MINIMUM_ADVANCE
        step = timedelta(hours=service.duration_hours)
        days = []
        day = start_day
        while day <= end_day:
            slot = timezone.make_aware(datetime.combine(day, self.DAY_START))
            closing = timezone.make_aware(datetime.combine(day, self.DAY_END))
            open_slots = []
            while slot + step <= closing:
                slot_end = slot + step
                overlaps = any(start < slot_end and end > slot for start, end in busy)
                if slot >= earliest and not overlaps:
                    open_slots.append(timezone.localtime(slot).strftime('%H:%M'))
                slot = slot_end
            days.append({'date': day.isoformat(), 'available_slots': open_slots})
            day += timedelta(days=1)

        return success_response({
            'service_id': service.id,
            'duration_hours': service.duration_hours,
            'busy': [{'start': start.isoformat(), 'end': end.isoformat()} for start, end in busy],
            'days': days,
        })


# ============================================================================
# Bookings
# ============================================================================

def _get_booking_for(request, view, pk, action='view'):
    """
    Load a booking and run CanManageBooking for `action`.

    Raises:
        Http404: Unknown booking
        PermissionDenied: Caller may not perform the action
    """
    booking = get_object_or_404(
        Booking.objects.select_related('service', 'traveler', 'guide'),
        pk=pk,
    )
    view.booking_action = action
    permission = CanManageBooking()
    if not permission.has_object_permission(request, view, booking):
        logger.warning(
            f"Unauthorized booking {action} attempt. Booking ID: {booking.id}, "
            f"User: {request.user.email}, IP: {get_client_ip(request)}"
        )
        raise PermissionDenied(permission.message)
    return booking


def _check_owner_or_admin(request, view, obj):
    """Raise PermissionDenied unless the caller owns `obj` (per `view.owner_field`) or is an admin."""
    permission = IsOwnerOrAdmin()
    if not permission.has_object_permission(request, view, obj):
        logger.warning(
            f"Unauthorized {type(obj).__name__.lower()} modification. ID: {obj.pk}, "
            f"User: {request.user.email}, IP: {get_client_ip(request)}"
        )
        raise PermissionDenied(permission.message)


def confirm_booking(booking_id):
    """
    Move a PENDING booking to CONFIRMED under a row lock.

    Raises:
        BadRequest: Booking is not pending
    """
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking_id)
        if booking.status == 'CONFIRMED':
            raise BadRequest(_('Booking is already confirmed.'))
        valid, message = booking.can_transition_to('CONFIRMED')
        if not valid:
            raise BadRequest(message)
        booking.status = 'CONFIRMED'
        booking.confirmed_at = timezone.now()
        booking.save()
    return booking


def complete_booking(booking_id):
    """
    Move a CONFIRMED booking to COMPLETED and count it on the service.

    Raises:
        BadRequest: Not confirmed yet, or the tour has not started
    """
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking_id)
        valid, message = booking.can_transition_to('COMPLETED')
        if not valid or booking.status == 'COMPLETED':
            raise BadRequest(message or _('Booking is already completed.'))
        booking.status = 'COMPLETED'
        booking.completed_at = timezone.now()
        booking.save()
        Service.objects.filter(pk=booking.service_id).update(total_bookings=F('total_bookings') + 1)
    return booking


def cancel_booking(booking_id, user, reason='USER_REQUEST', note=''):
    """
    Cancel a booking and refund what the cancellation policy allows.

    Travelers follow the refund tiers (100% from 48h, 50% from 24h, refused
    inside 24h); guides and administrators refund in full. Refunds are
    spread over the booking's captured payments, oldest first.

    Returns:
        Booking: The cancelled booking (refund_amount set)

    Raises:
        BadRequest: Booking already cancelled/completed, or inside 24 hours
    """
    with transaction.atomic():
        booking = Booking.objects.select_for_update().select_related('service').get(pk=booking_id)

        if booking.status == 'CANCELLED':
            raise BadRequest(_('Booking is already cancelled.'))
        if booking.status == 'COMPLETED':
            raise BadRequest(_('Cannot modify a completed booking.'))

        quote = booking.get_refund_quote(user)
        if not quote['allowed']:
            raise BadRequest(quote['message'])

        remaining = quote['refund_amount']
        refunded = Decimal('0.00')
        captured = booking.payments.select_for_update().filter(
            status__in=['COMPLETED', 'PARTIALLY_REFUNDED']
        ).order_by('created_at')
        for payment in captured:
            if remaining <= 0:
                break
            amount = payment.refund(remaining)
            refunded += amount
            remaining -= amount

        paid = quote['paid_amount']
        if paid > 0 and refunded >= paid:
            booking.payment_status = 'REFUNDED'
        elif refunded > 0:
            booking.payment_status = 'PARTIALLY_REFUNDED'

        booking.status = 'CANCELLED'
        booking.cancelled_at = timezone.now()
        booking.cancelled_by = user
        booking.cancellation_reason = reason or 'OTHER'
        booking.cancellation_note = note or ''
        booking.refund_amount = refunded
        booking.save()

    logger.info(
        f"Booking cancelled. Booking ID: {booking.id}, By: {user.email}, "
        f"Refund: {refunded} ({quote['refund_percentage']}%), Reason: {booking.cancellation_reason}"
    )
    return booking


class BookingListCreateView(APIView):
    """
    API endpoint for listing and creating bookings.

    GET /api/bookings/
    - Customers see their own bookings, guides the bookings they received,
      administrators everything.
    Query params: status, role (as_traveler | as_guide), page, limit

    POST /api/bookings/ (customers only)
    Request body: {
        "service": 1,
        "booking_date": "2026-12-10T09:00:00+08:00",
        "guests": 2,
        "special_requests": "Vegetarian lunch",
        "contact_info": {"phone": "0912345678"}
    }

    Error responses:
    - 400: Invalid data, past date, inactive service, guests out of range
    - 401: Not authenticated
    - 403: Caller is not a customer
    - 409: The guide already has a booking overlapping the requested time
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        user = request.user
        bookings = Booking.objects.select_related('service', 'traveler', 'guide').prefetch_related('payments')

        role = request.query_params.get('role')
        if role not in (None, '', 'as_traveler', 'as_guide'):
            raise ValidationError({'role': [_('Must be as_traveler or as_guide.')]})

        if user.is_admin() and not role:
            pass
        elif role == 'as_guide' or (not role and user.is_guide()):
            bookings = bookings.filter(guide=user)
        else:
            bookings = bookings.filter(traveler=user)

        status_filter = _parse_choice(request.query_params.get('status'), Booking.STATUS_CHOICES, 'status')
        if status_filter:
            bookings = bookings.filter(status=status_filter)

        items, pagination = paginate(request, bookings.order_by('-booking_date'))
        return success_response(
            BookingSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )

    def post(self, request, *args, **kwargs):
        """
        Steps:
        1. Verify the user is a customer
        2. Validate request data
        3. Lock the guide row and check for overlapping active bookings
        4. Create the booking with its price breakdown
        5. Notify the guide
        """
        permission = IsCustomer()
        if not permission.has_permission(request, self):
            logger.warning(
                f"Non-customer attempted booking creation. User: {request.user.email}, "
                f"Role: {request.user.role}, IP: {get_client_ip(request)}"
            )
            raise PermissionDenied(permission.message)

        serializer = BookingCreateSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)

        service = serializer.validated_data['service']
        start = serializer.validated_data['booking_date']
        end = start + timedelta(hours=service.duration_hours)

        with transaction.atomic():
            # Serializes concurrent booking attempts for the same guide
            User.objects.select_for_update().get(pk=service.guide_id)

            conflict = Booking.objects.filter(
                guide_id=service.guide_id,
                status__in=Booking.ACTIVE_STATUSES,
                booking_date__lt=end,
                end_time__gt=start,
            ).first()
            if conflict is not None:
                logger.warning(
                    f"Booking conflict detected. Guide ID: {service.guide_id}, "
                    f"Requested: {start.isoformat()}, Conflicting Booking ID: {conflict.id}, "
                    f"Traveler: {request.user.email}, IP: {get_client_ip(request)}"
                )
                raise Conflict(_('The guide is already booked during the requested time. Please choose another time.'))

            booking = serializer.save()

        logger.info(
            f"Booking created successfully. Booking ID: {booking.id}, Service ID: {service.id}, "
            f"Traveler: {request.user.email}, Total: {booking.total_amount}, IP: {get_client_ip(request)}"
        )

        notifications.notify_booking_created(booking)

        return success_response(
            BookingSerializer(booking, context={'request': request}).data,
            message=_('Booking created successfully.'),
            status_code=status.HTTP_201_CREATED,
        )


class BookingDetailView(APIView):
    """GET /api/bookings/<id>/: traveler, guide or admin."""

    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        booking = _get_booking_for(request, self, pk)
        return success_response(BookingSerializer(booking, context={'request': request}).data)


class BookingConfirmView(APIView):
    """
    POST /api/bookings/<id>/confirm/

    Only the booking's guide or an administrator; only from PENDING.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        _get_booking_for(request, self, pk, action='confirm')
        booking = confirm_booking(pk)

        logger.info(f"Booking confirmed. Booking ID: {booking.id}, By: {request.user.email}")
        notifications.notify_booking_confirmed(booking)

        return success_response(
            BookingSerializer(booking, context={'request': request}).data,
            message=_('Booking confirmed.'),
        )


class BookingCancelView(APIView):
    """
    POST /api/bookings/<id>/cancel/
    Request body: {"reason": "WEATHER", "note": "Typhoon warning"}

    Error responses:
    - 400: Already cancelled, completed, or inside 24 hours (travelers)
    - 403: Caller is not a party to the booking
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        _get_booking_for(request, self, pk, action='cancel')
        serializer = BookingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = cancel_booking(
            pk,
            request.user,
            reason=serializer.validated_data['reason'],
            note=serializer.validated_data['note'],
        )
        notifications.notify_booking_cancelled(booking, request.user)

        return success_response(
            BookingSerializer(booking, context={'request': request}).data,
            message=_('Booking cancelled. Refund: %(amount)s %(currency)s.') % {
                'amount': booking.refund_amount, 'currency': booking.currency,
            },
        )


class BookingCompleteView(APIView):
    """POST /api/bookings/<id>/complete/: guide or admin, from CONFIRMED, after start."""

    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        _get_booking_for(request, self, pk, action='complete')
        booking = complete_booking(pk)

        logger.info(f"Booking completed. Booking ID: {booking.id}, By: {request.user.email}")
        notifications.notify_booking_completed(booking)

        return success_response(
            BookingSerializer(booking, context={'request': request}).data,
            message=_('Booking completed.'),
        )


class RefundQuoteView(APIView):
    """GET /api/bookings/<id>/refund-quote/: what cancelling now would refund to the caller."""

    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        booking = _get_booking_for(request, self, pk, action='cancel')
        quote = booking.get_refund_quote(request.user)
        return success_response({
            'booking_id': booking.id,
            'allowed': quote['allowed'],
            'message': quote['message'],
            'hours_until_start': quote['hours_until_start'],
            'refund_percentage': str(quote['refund_percentage']),
            'paid_amount': _money(quote['paid_amount']),
            'refund_amount': _money(quote['refund_amount']),
            'currency': booking.currency,
        })


# ============================================================================
# Payments
# ============================================================================

class PaymentCreateView(APIView):
    """
    API endpoint for paying a booking through the mock gateway.

    POST /api/bookings/payment/
    Request body: {
        "booking_id": 1,
        "payment_method": "CREDIT_CARD",
        "card_number": "4242424242424242"
    }

    The gateway declines card 4000000000000002: a FAILED payment is recorded,
    the booking's payment_status becomes FAILED and 400 is returned. Paying
    again is allowed.

    On success the payment is COMPLETED, the booking PAID, and a PENDING
    booking is confirmed.

    Error responses:
    - 400: Invalid card, cancelled or completed booking, declined card
    - 403: Caller is not the booking's traveler
    - 404: Unknown booking or saved payment method
    - 409: Booking already paid
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking = get_object_or_404(Booking.objects.select_related('service'), pk=data['booking_id'])
        if booking.traveler_id != request.user.id:
            logger.warning(
                f"Payment attempt on another user's booking. Booking ID: {booking.id}, "
                f"User: {request.user.email}, IP: {get_client_ip(request)}"
            )
            raise PermissionDenied(_('You can only pay for your own bookings.'))

        card_number = data.get('card_number')
        saved_method = None
        if data.get('payment_method_id'):
            saved_method = get_object_or_404(PaymentMethod, pk=data['payment_method_id'], user=request.user)

        with transaction.atomic():
            booking = Booking.objects.select_for_update().get(pk=booking.pk)

            if booking.status == 'CANCELLED':
                raise BadRequest(_('Cannot pay for a cancelled booking.'))
            if booking.status == 'COMPLETED' or booking.payment_status in ('PAID', 'PARTIALLY_REFUNDED', 'REFUNDED'):
                logger.warning(f"Duplicate payment attempt. Booking ID: {booking.id}, User: {request.user.email}")
                raise Conflict(_('This booking has already been paid.'))

            metadata = {}
            if card_number:
                metadata = {'card_brand': detect_card_brand(card_number), 'card_last4': card_number[-4:]}
            elif saved_method is not None:
                metadata = {'card_brand': saved_method.brand, 'card_last4': saved_method.last4,
                            'payment_method_id': saved_method.id}

            payment = Payment.objects.create(
                booking=booking,
                user=request.user,
                payment_method=data['payment_method'],
                payment_provider='MOCK',
                provider_payment_id=f'tx_{uuid.uuid4().hex[:24]}',
                amount=booking.total_amount,
                currency=booking.currency,
                status='PENDING',
                metadata=metadata,
            )

            if card_number in DECLINED_TEST_CARDS:
                payment.status = 'FAILED'
                payment.failure_reason = 'card_declined'
                payment.processed_at = timezone.now()
                payment.save()
                booking.payment_status = 'FAILED'
                booking.save()
                declined = True
            else:
                payment.status = 'COMPLETED'
                payment.processed_at = timezone.now()
                payment.save()
                booking.payment_status = 'PAID'
                if booking.status == 'PENDING':
                    booking.status = 'CONFIRMED'
                    booking.confirmed_at = timezone.now()
                booking.save()
                declined = False

        if declined:
            logger.warning(
                f"Payment declined. Booking ID: {booking.id}, Payment: {payment.provider_payment_id}, "
                f"User: {request.user.email}, IP: {get_client_ip(request)}"
            )
            return error_response(
                _('Your card was declined. Please try another payment method.'),
                status.HTTP_400_BAD_REQUEST,
                details={'payment_id': payment.id, 'payment_status': booking.payment_status},
            )

        logger.info(
            f"Payment completed. Booking ID: {booking.id}, Payment: {payment.provider_payment_id}, "
            f"Amount: {payment.amount} {payment.currency}, IP: {get_client_ip(request)}"
        )
        notifications.notify_payment_completed(payment)

        return success_response(
            {
                'payment': PaymentSerializer(payment).data,
                'booking': BookingSerializer(booking, context={'request': request}).data,
            },
            message=_('Payment successful.'),
            status_code=status.HTTP_201_CREATED,
        )


# ============================================================================
# Reviews
# ============================================================================

class BookingReviewCreateView(APIView):
    """
    API endpoint for reviewing a completed booking.

    POST /api/bookings/<id>/review/
    Request body: {"rating": 5, "comment": "Wonderful night market tour", "is_anonymous": false}

    Error responses:
    - 400: Booking not completed, invalid rating or comment
    - 403: Caller is not the booking's traveler
    - 409: The booking already has a review
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        booking = get_object_or_404(Booking.objects.select_related('service', 'guide', 'traveler'), pk=pk)

        if booking.traveler_id != request.user.id:
            logger.warning(
                f"Unauthorized review attempt. Booking ID: {booking.id}, "
                f"User: {request.user.email}, IP: {get_client_ip(request)}"
            )
            raise PermissionDenied(_('Only the traveler of the booking can review it.'))

        if booking.status != 'COMPLETED':
            raise BadRequest(_('Only completed bookings can be reviewed.'))

        if Review.objects.filter(booking=booking).exists():
            raise Conflict(_('You have already reviewed this booking.'))

        serializer = ReviewCreateSerializer(data=request.data, context={'request': request, 'booking': booking})
        serializer.is_valid(raise_exception=True)

        try:
            with transaction.atomic():
                review = serializer.save()
        except IntegrityError:
            logger.warning(f"Concurrent duplicate review. Booking ID: {booking.id}, User: {request.user.email}")
            raise Conflict(_('You have already reviewed this booking.'))

        logger.info(
            f"Review created. Review ID: {review.id}, Booking ID: {booking.id}, Rating: {review.rating}, "
            f"IP: {get_client_ip(request)}"
        )
        notifications.notify_review_received(review)

        return success_response(
            ReviewSerializer(review, context={'request': request}).data,
            message=_('Thank you for your review.'),
            status_code=status.HTTP_201_CREATED,
        )


class ServiceReviewsView(APIView):
    """
    GET /api/services/<id>/reviews/

    Query params:
    - sort: newest (default), highest, lowest, helpful
    - page, limit

    Includes statistics: average rating, total and the 1-5 distribution.
    """
    permission_classes = [AllowAny]

    SORTS = {
        'newest': ('-created_at',),
        'highest': ('-rating', '-created_at'),
        'lowest': ('rating', '-created_at'),
        'helpful': ('-helpful_count', '-created_at'),
    }

    def get(self, request, pk, *args, **kwargs):
        service = get_object_or_404(Service, pk=pk)
        sort = request.query_params.get('sort', 'newest')
        if sort not in self.SORTS:
            raise ValidationError({'sort': [_('Must be one of: %(choices)s.') % {'choices': ', '.join(self.SORTS)}]})

        reviews = Review.objects.filter(service=service, status='PUBLISHED').select_related(
            'reviewer', 'service', 'response'
        )
        distribution = dict(reviews.order_by().values_list('rating').annotate(total=Count('id')))
        stats = reviews.aggregate(average=Avg('rating'), total=Count('id'))

        items, pagination = paginate(request, reviews.order_by(*self.SORTS[sort]))
        return success_response(
            {
                'reviews': ReviewSerializer(items, many=True, context={'request': request}).data,
                'statistics': {
                    'average_rating': round(stats['average'] or 0, 2),
                    'total_reviews': stats['total'],
                    'distribution': {str(star): distribution.get(star, 0) for star in range(1, 6)},
                },
            },
            pagination=pagination,
        )


class UserReviewListView(APIView):
    """
    GET /api/reviews/

    Reviews the caller wrote; guides may pass ?received=true for the
    reviews of their services (hidden ones included).
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        if _parse_bool(request.query_params.get('received', '')):
            if not (request.user.is_guide() or request.user.is_admin()):
                raise PermissionDenied(_('Only guides receive reviews.'))
            reviews = Review.objects.filter(guide=request.user)
        else:
            reviews = Review.objects.filter(reviewer=request.user)

        reviews = reviews.select_related('reviewer', 'service', 'response').order_by('-created_at')
        items, pagination = paginate(request, reviews)
        return success_response(
            ReviewSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class ReviewDetailView(APIView):
    """
    GET /api/reviews/<id>/
    PATCH /api/reviews/<id>/: reviewer only, within 30 days of creation
    DELETE /api/reviews/<id>/: reviewer or admin
    """
    permission_classes = [IsAuthenticatedOrReadOnly]
    owner_field = 'reviewer'

    def _get_review(self, pk):
        return get_object_or_404(Review.objects.select_related('reviewer', 'service', 'guide'), pk=pk)

    def get(self, request, pk, *args, **kwargs):
        review = self._get_review(pk)
        if review.status != 'PUBLISHED':
            user = request.user
            if not user.is_authenticated or not (user.is_admin() or user.id in (review.reviewer_id, review.guide_id)):
                raise NotFound(_('Review not found.'))
        return success_response(ReviewSerializer(review, context={'request': request}).data)

    def patch(self, request, pk, *args, **kwargs):
        review = self._get_review(pk)
        if review.reviewer_id != request.user.id:
            logger.warning(f"Unauthorized review edit. Review ID: {review.id}, User: {request.user.email}")
            raise PermissionDenied(_('You can only edit your own reviews.'))

        if not review.is_editable():
            raise BadRequest(_('Reviews can only be edited within 30 days of posting.'))

        serializer = ReviewUpdateSerializer(review, data=request.data, partial=True, context={'request': request})
        serializer.is_valid(raise_exception=True)
        review = serializer.save()

        logger.info(f"Review updated. Review ID: {review.id}, User: {request.user.email}")
        return success_response(
            ReviewSerializer(review, context={'request': request}).data,
            message=_('Review updated.'),
        )

    def delete(self, request, pk, *args, **kwargs):
        review = self._get_review(pk)
        _check_owner_or_admin(request, self, review)

        review_id = review.id
        review.delete()
        if request.user.is_admin() and review.reviewer_id != request.user.id:
            record_activity(request, 'REVIEW_DELETED', description=f'Review #{review_id} deleted',
                            metadata={'review_id': review_id})

        logger.info(f"Review deleted. Review ID: {review_id}, User: {request.user.email}")
        return success_response(message=_('Review deleted.'))


class ReviewHelpfulView(APIView):
    """
    POST /api/reviews/<id>/helpful/: mark as helpful (409 when already marked)
    DELETE /api/reviews/<id>/helpful/: remove the mark (400 when not marked)
    """
    permission_classes = [IsAuthenticated]

    def _get_review(self, pk):
        return get_object_or_404(Review, pk=pk, status='PUBLISHED')

    def post(self, request, pk, *args, **kwargs):
        review = self._get_review(pk)
        if review.reviewer_id == request.user.id:
            raise BadRequest(_('You cannot mark your own review as helpful.'))

        if ReviewHelpful.objects.filter(review=review, user=request.user).exists():
            raise Conflict(_('You have already marked this review as helpful.'))

        try:
            with transaction.atomic():
                ReviewHelpful.objects.create(review=review, user=request.user)
                Review.objects.filter(pk=review.pk).update(helpful_count=F('helpful_count') + 1)
        except IntegrityError:
            raise Conflict(_('You have already marked this review as helpful.'))

        review.refresh_from_db(fields=['helpful_count'])
        return success_response({'review_id': review.id, 'helpful_count': review.helpful_count, 'is_helpful': True})

    def delete(self, request, pk, *args, **kwargs):
        review = self._get_review(pk)

        with transaction.atomic():
            deleted, _details = ReviewHelpful.objects.filter(review=review, user=request.user).delete()
            if not deleted:
                raise BadRequest(_('You have not marked this review as helpful.'))
            Review.objects.filter(pk=review.pk, helpful_count__gt=0).update(helpful_count=F('helpful_count') - 1)

        review.refresh_from_db(fields=['helpful_count'])
        return success_response({'review_id': review.id, 'helpful_count': review.helpful_count, 'is_helpful': False})


class ReviewResponseCreateView(APIView):
    """POST /api/reviews/<id>/responses/: the review's guide replies once."""

    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        review = get_object_or_404(Review, pk=pk)
        if review.guide_id != request.user.id:
            logger.warning(f"Unauthorized review response. Review ID: {review.id}, User: {request.user.email}")
            raise PermissionDenied(_('Only the guide of this service can respond to the review.'))

        if ReviewResponse.objects.filter(review=review).exists():
            raise Conflict(_('You have already responded to this review.'))

        serializer = ReviewResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            with transaction.atomic():
                response = serializer.save(review=review, guide=request.user)
        except IntegrityError:
            raise Conflict(_('You have already responded to this review.'))

        logger.info(f"Review response created. Review ID: {review.id}, Guide: {request.user.email}")
        return success_response(
            ReviewResponseSerializer(response).data,
            message=_('Response posted.'),
            status_code=status.HTTP_201_CREATED,
        )


# ============================================================================
# Posts
# ============================================================================

def _post_context(request, posts):
    """Serializer context with the caller's liked and bookmarked post ids."""
    context = {'request': request, 'liked_ids': set(), 'bookmarked_ids': set()}
    if request.user.is_authenticated and posts:
        rows = PostLike.objects.filter(
            user=request.user, post_id__in=[post.id for post in posts]
        ).values_list('post_id', 'like_type')
        for post_id, like_type in rows:
            key = 'liked_ids' if like_type == 'LIKE' else 'bookmarked_ids'
            context[key].add(post_id)
    return context


def _posts_queryset():
    return Post.objects.select_related('author').prefetch_related('service_embeds__service')


def _get_editable_post(request, view, pk):
    post = get_object_or_404(Post, pk=pk)
    _check_owner_or_admin(request, view, post)
    return post


def _embed_service(post, service, user, embed_type='CARD', position=0, custom_text=''):
    """
    Attach a service to a post.

    Raises:
        BadRequest: Service is not ACTIVE
        PermissionDenied: A guide author embedding another guide's service
        Conflict: Service already embedded
    """
    if not service.is_bookable():
        raise BadRequest(_('Only active services can be embedded.'))
    if post.author_type == 'GUIDE' and not user.is_admin() and service.guide_id != post.author_id:
        raise PermissionDenied(_('Guides can only embed their own services.'))
    if PostServiceEmbed.objects.filter(post=post, service=service).exists():
        raise Conflict(_('This service is already embedded in the post.'))
    try:
        with transaction.atomic():
            return PostServiceEmbed.objects.create(
                post=post,
                service=service,
                embed_type=embed_type,
                position=position,
                custom_text=custom_text,
            )
    except IntegrityError:
        raise Conflict(_('This service is already embedded in the post.'))


def _embed_services_by_id(post, service_ids, user):
    services = {service.id: service for service in Service.objects.filter(id__in=service_ids)}
    missing = [sid for sid in service_ids if sid not in services]
    if missing:
        raise ValidationError({'service_ids': [_('Unknown service ids: %(ids)s.') % {'ids': missing}]})
    for position, service_id in enumerate(dict.fromkeys(service_ids)):
        _embed_service(post, services[service_id], user, position=position)


class PostListCreateView(APIView):
    """
    GET /api/posts/

    Published posts.
    Query params:
    - category, author, location, author_type, search
    - sort: latest (default), popular, trending
    - page, limit (max 100)

    POST /api/posts/
    Required: title, content, category. GUIDE posts need the GUIDE or ADMIN
    role. Optional service_ids embeds services on creation.
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    SORTS = ('latest', 'popular', 'trending')

    def get(self, request, *args, **kwargs):
        params = request.query_params
        posts = _posts_queryset().filter(status='PUBLISHED')

        if params.get('category'):
            posts = posts.filter(category=params['category'].strip().lower())
        author_id = parse_positive_int(params.get('author'), 'author')
        if author_id is not None:
            posts = posts.filter(author_id=author_id)
        if params.get('location'):
            posts = posts.filter(location__icontains=params['location'])
        author_type = _parse_choice(params.get('author_type'), Post.AUTHOR_TYPE_CHOICES, 'author_type')
        if author_type:
            posts = posts.filter(author_type=author_type)
        if params.get('search'):
            term = params['search']
            posts = posts.filter(Q(title__icontains=term) | Q(content__icontains=term) | Q(tags__icontains=term))

        sort = params.get('sort', 'latest')
        if sort not in self.SORTS:
            raise ValidationError({'sort': [_('Must be one of: %(choices)s.') % {'choices': ', '.join(self.SORTS)}]})
        if sort == 'popular':
            posts = posts.order_by('-like_count', '-view_count', '-published_at')
        elif sort == 'trending':
            posts = posts.filter(published_at__gte=timezone.now() - timedelta(days=7)).annotate(
                interactions=F('like_count') + F('comment_count') + F('share_count')
            ).order_by('-interactions', '-published_at')
        else:
            posts = posts.order_by('-published_at', '-created_at')

        items, pagination = paginate(request, posts, max_limit=100)
        return success_response(
            PostSerializer(items, many=True, context=_post_context(request, items)).data,
            pagination=pagination,
        )

    def post(self, request, *args, **kwargs):
        serializer = PostWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        service_ids = data.pop('service_ids', [])

        user = request.user
        default_type = 'GUIDE' if (user.is_guide() or user.is_admin()) else 'CONSUMER'
        data.setdefault('author_type', default_type)
        if data['author_type'] == 'GUIDE' and not (user.is_guide() or user.is_admin()):
            logger.warning(f"Non-guide attempted a guide post. User: {user.email}, IP: {get_client_ip(request)}")
            raise PermissionDenied(_('Only guides can publish guide posts.'))

        with transaction.atomic():
            post = Post.objects.create(author=user, **data)
            if service_ids:
                _embed_services_by_id(post, service_ids, user)

        logger.info(f"Post created. Post ID: {post.id}, Author: {user.email}, Status: {post.status}")
        post = _posts_queryset().get(pk=post.pk)
        return success_response(
            PostSerializer(post, context=_post_context(request, [post])).data,
            message=_('Post published.') if post.status == 'PUBLISHED' else _('Post saved.'),
            status_code=status.HTTP_201_CREATED,
        )


class PostFeedView(APIView):
    """
    GET /api/posts/feed/

    Published posts ranked by engagement
    (likes x 0.4 + comments x 0.3 + shares x 0.2 + views x 0.1), doubled for
    posts under 24 hours old and multiplied by 1.5 under 7 days.
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        now = timezone.now()
        engagement = (
            F('like_count') * Value(0.4)
            + F('comment_count') * Value(0.3)
            + F('share_count') * Value(0.2)
            + F('view_count') * Value(0.1)
        )
        freshness = Case(
            When(published_at__gte=now - timedelta(hours=24), then=Value(2.0)),
            When(published_at__gte=now - timedelta(days=7), then=Value(1.5)),
            default=Value(1.0),
            output_field=FloatField(),
        )
        posts = _posts_queryset().filter(status='PUBLISHED').annotate(
            feed_score=engagement * freshness
        ).order_by('-feed_score', '-published_at')

        items, pagination = paginate(request, posts, max_limit=100)
        return success_response(
            PostSerializer(items, many=True, context=_post_context(request, items)).data,
            pagination=pagination,
        )


class PostDetailView(APIView):
    """
    GET /api/posts/<id>/: increments the view count; drafts only for their author.
    PATCH|DELETE /api/posts/<id>/: author or admin.
    """
    permission_classes = [IsAuthenticatedOrReadOnly]
    owner_field = 'author'

    def _get_managed(self, request, pk):
        post = get_object_or_404(_posts_queryset(), pk=pk)
        _check_owner_or_admin(request, self, post)
        return post

    def get(self, request, pk, *args, **kwargs):
        post = get_object_or_404(_posts_queryset(), pk=pk)
        if post.status != 'PUBLISHED' and post.author_id != request.user.id:
            raise NotFound(_('Post not found.'))

        Post.objects.filter(pk=post.pk).update(view_count=F('view_count') + 1)
        post.refresh_from_db(fields=['view_count'])
        return success_response(PostSerializer(post, context=_post_context(request, [post])).data)

    def patch(self, request, pk, *args, **kwargs):
        post = self._get_managed(request, pk)
        serializer = PostWriteSerializer(post, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        service_ids = data.pop('service_ids', None)

        if data.get('author_type') == 'GUIDE' and not (post.author.is_guide() or post.author.is_admin()):
            raise PermissionDenied(_('Only guides can publish guide posts.'))

        with transaction.atomic():
            for attr, value in data.items():
                setattr(post, attr, value)
            post.save()
            if service_ids is not None:
                post.service_embeds.all().delete()
                _embed_services_by_id(post, service_ids, request.user)

        post = _posts_queryset().get(pk=post.pk)
        return success_response(
            PostSerializer(post, context=_post_context(request, [post])).data,
            message=_('Post updated.'),
        )

    def delete(self, request, pk, *args, **kwargs):
        post = self._get_managed(request, pk)
        post_id = post.id
        post.delete()
        if request.user.is_admin() and post.author_id != request.user.id:
            record_activity(request, 'POST_DELETED', description=f'Post #{post_id} deleted',
                            metadata={'post_id': post_id})
        logger.info(f"Post deleted. Post ID: {post_id}, User: {request.user.email}")
        return success_response(message=_('Post deleted.'))


class PostCommentListCreateView(APIView):
    """GET|POST /api/posts/<id>/comments/"""

    permission_classes = [IsAuthenticatedOrReadOnly]

    def get(self, request, pk, *args, **kwargs):
        post = get_object_or_404(Post, pk=pk, status='PUBLISHED')
        comments = post.comments.select_related('author').order_by('created_at')
        items, pagination = paginate(request, comments, default_limit=50)
        return success_response(
            PostCommentSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )

    def post(self, request, pk, *args, **kwargs):
        post = get_object_or_404(Post.objects.select_related('author'), pk=pk, status='PUBLISHED')
        serializer = PostCommentSerializer(data=request.data, context={'request': request, 'post': post})
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            comment = serializer.save(post=post, author=request.user)
            Post.objects.filter(pk=post.pk).update(comment_count=F('comment_count') + 1)

        if post.author_id != request.user.id:
            notifications.notify_post_comment(comment)

        return success_response(
            PostCommentSerializer(comment, context={'request': request}).data,
            message=_('Comment posted.'),
            status_code=status.HTTP_201_CREATED,
        )


class PostLikeToggleView(APIView):
    """
    POST /api/posts/<id>/likes/
    Request body: {"like_type": "LIKE" | "BOOKMARK"}

    Toggles the mark and returns the new state and count.
    """
    permission_classes = [IsAuthenticated]

    COUNTERS = {'LIKE': 'like_count', 'BOOKMARK': 'bookmark_count'}

    def post(self, request, pk, *args, **kwargs):
        post = get_object_or_404(Post, pk=pk, status='PUBLISHED')
        serializer = PostLikeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        like_type = serializer.validated_data['like_type']
        counter = self.COUNTERS[like_type]

        with transaction.atomic():
            deleted, _details = PostLike.objects.filter(post=post, user=request.user, like_type=like_type).delete()
            if deleted:
                Post.objects.filter(pk=post.pk, **{f'{counter}__gt': 0}).update(**{counter: F(counter) - 1})
                active = False
            else:
                PostLike.objects.create(post=post, user=request.user, like_type=like_type)
                Post.objects.filter(pk=post.pk).update(**{counter: F(counter) + 1})
                active = True

        post.refresh_from_db(fields=[counter])
        return success_response({
            'post_id': post.id,
            'like_type': like_type,
            'is_active': active,
            'count': getattr(post, counter),
        })


class PostShareView(APIView):
    """POST /api/posts/<id>/share/"""

    permission_classes = [AllowAny]

    def post(self, request, pk, *args, **kwargs):
        post = get_object_or_404(Post, pk=pk, status='PUBLISHED')
        Post.objects.filter(pk=post.pk).update(share_count=F('share_count') + 1)
        post.refresh_from_db(fields=['share_count'])
        return success_response({'post_id': post.id, 'share_count': post.share_count})


class PostEmbedServiceView(APIView):
    """
    POST /api/posts/<id>/embed-service/
    Request body: {"service_id": 3, "embed_type": "CARD", "position": 0, "custom_text": ""}

    Error responses:
    - 400: Service not active
    - 403: Not the post author (or admin); guide embedding another guide's service
    - 404: Unknown post or service
    - 409: Already embedded
    """
    permission_classes = [IsAuthenticated]
    owner_field = 'author'

    def post(self, request, pk, *args, **kwargs):
        post = _get_editable_post(request, self, pk)
        serializer = EmbedServiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        service = get_object_or_404(Service, pk=data['service_id'])
        embed = _embed_service(
            post,
            service,
            request.user,
            embed_type=data['embed_type'],
            position=data['position'],
            custom_text=data['custom_text'],
        )
        logger.info(f"Service embedded. Post ID: {post.id}, Service ID: {service.id}, User: {request.user.email}")
        return success_response(
            {'id': embed.id, 'post_id': post.id, 'service_id': service.id,
             'embed_type': embed.embed_type, 'position': embed.position},
            message=_('Service embedded.'),
            status_code=status.HTTP_201_CREATED,
        )


class PostEmbedServiceDeleteView(APIView):
    """DELETE /api/posts/<id>/embed-service/<service_id>/"""

    permission_classes = [IsAuthenticated]
    owner_field = 'author'

    def delete(self, request, pk, service_id, *args, **kwargs):
        post = _get_editable_post(request, self, pk)
        deleted, _details = PostServiceEmbed.objects.filter(post=post, service_id=service_id).delete()
        if not deleted:
            raise NotFound(_('This service is not embedded in the post.'))
        return success_response(message=_('Service removed from post.'))


def _store_upload(request, upload, folder):
    """
    Save an uploaded file under `folder` with a generated name.

    Returns:
        tuple: (file id, absolute URL)
    """
    file_id = uuid.uuid4().hex
    extension = os.path.splitext(upload.name)[1].lower()
    stored_name = default_storage.save(f'{folder}/{file_id}{extension}', upload)
    return file_id, request.build_absolute_uri(default_storage.url(stored_name))


class PostMediaUploadView(APIView):
    """
    Upload images and videos for use in posts.

    POST /api/posts/media/ (multipart/form-data, repeat `files` per file)

    Images (jpg, jpeg, png, gif, webp) up to 10MB, videos (mp4, webm, mov)
    up to 100MB, at most 20 files per request. Files that fail validation
    are skipped and listed in `errors`; the rest are stored.

    Error responses:
    - 400: No files, too many files, or every file was rejected
    - 401: Not authenticated
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        files = request.FILES.getlist('files')
        if not files:
            raise ValidationError({'files': [_('Select at least one file to upload.')]})

        max_files = settings.MAX_POST_MEDIA_FILES
        if len(files) > max_files:
            raise ValidationError({'files': [_('You can upload at most %(count)d files.') % {'count': max_files}]})

        uploaded = []
        errors = []
        for position, upload in enumerate(files, start=1):
            try:
                kind = validate_post_media(upload)
            except DjangoValidationError as e:
                errors.append({'position': position, 'name': upload.name, 'errors': e.messages})
                continue

            file_id, url = _store_upload(request, upload, f'posts/{kind}s')
            uploaded.append({
                'id': file_id,
                'name': upload.name,
                'url': url,
                'type': kind,
                'size': upload.size,
                'mime_type': upload.content_type,
                'uploaded_at': timezone.now().isoformat(),
            })

        if not uploaded:
            logger.warning(f"Post media upload rejected. User: {request.user.email}, Files: {len(files)}")
            return error_response(_('No files were uploaded.'), status.HTTP_400_BAD_REQUEST, details=errors)

        logger.info(
            f"Post media uploaded. User: {request.user.email}, Stored: {len(uploaded)}, Rejected: {len(errors)}"
        )
        return success_response(
            {
                'files': uploaded,
                'success_count': len(uploaded),
                'failure_count': len(errors),
                'errors': errors,
            },
            message=_('%(count)d file(s) uploaded.') % {'count': len(uploaded)},
            status_code=status.HTTP_201_CREATED,
        )


# ============================================================================
# Conversations
# ============================================================================

def _conversations_for(user):
    return Conversation.objects.filter(memberships__user=user).prefetch_related('memberships__user').distinct()


def _find_direct_conversation(user, other):
    """Existing two-person DIRECT conversation between `user` and `other`."""
    return Conversation.objects.filter(
        conversation_type='DIRECT',
        id__in=ConversationParticipant.objects.filter(user=user).values('conversation_id'),
    ).filter(
        id__in=ConversationParticipant.objects.filter(user=other).values('conversation_id'),
    ).annotate(member_count=Count('memberships')).filter(member_count=2).first()


def _get_conversation_for(request, pk):
    conversation = get_object_or_404(Conversation.objects.prefetch_related('memberships__user'), pk=pk)
    if not conversation.has_participant(request.user):
        logger.warning(
            f"Unauthorized conversation access. Conversation ID: {conversation.id}, "
            f"User: {request.user.email}, IP: {get_client_ip(request)}"
        )
        raise PermissionDenied(_('You are not a participant of this conversation.'))
    return conversation


class ConversationListCreateView(APIView):
    """
    GET /api/conversations/: the caller's conversations, most recent activity first.

    POST /api/conversations/
    Request body: {
        "participant_ids": [7],
        "conversation_type": "DIRECT",
        "message": "Hi, is the night market tour available on Friday?",
        "booking_id": 12
    }

    A DIRECT conversation that already exists between the two users is
    returned (200, is_existing=true) instead of creating a duplicate.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        conversations = _conversations_for(request.user).order_by('-last_activity_at')
        kind = _parse_choice(request.query_params.get('type'), Conversation.TYPE_CHOICES, 'type')
        if kind:
            conversations = conversations.filter(conversation_type=kind)
        items, pagination = paginate(request, conversations)
        context = {'request': request, 'user': request.user}
        return success_response(
            ConversationSerializer(items, many=True, context=context).data,
            pagination=pagination,
        )

    def post(self, request, *args, **kwargs):
        serializer = ConversationCreateSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        others = data['participants']
        context = {'request': request, 'user': request.user}

        booking = None
        if data.get('booking_id') is not None:
            booking = get_object_or_404(Booking, pk=data['booking_id'])
            if not (booking.is_participant(request.user) or request.user.is_admin()):
                raise PermissionDenied(_('You do not have permission to access this booking.'))

        if data['conversation_type'] == 'DIRECT':
            existing = _find_direct_conversation(request.user, others[0])
            if existing is not None:
                if data['message'].strip():
                    self._post_message(existing, request.user, data['message'].strip(), others)
                existing = _conversations_for(request.user).get(pk=existing.pk)
                return success_response(
                    ConversationSerializer(existing, context=context).data,
                    is_existing=True,
                )

        with transaction.atomic():
            conversation = Conversation.objects.create(
                conversation_type=data['conversation_type'],
                title=data['title'].strip(),
                booking=booking,
                created_by=request.user,
            )
            ConversationParticipant.objects.bulk_create(
                [ConversationParticipant(conversation=conversation, user=request.user, last_read_at=timezone.now())]
                + [ConversationParticipant(conversation=conversation, user=user) for user in others]
            )

        logger.info(
            f"Conversation created. Conversation ID: {conversation.id}, Type: {conversation.conversation_type}, "
            f"Creator: {request.user.email}, Participants: {len(others) + 1}"
        )

        if data['message'].strip():
            self._post_message(conversation, request.user, data['message'].strip(), others)
        else:
            notifications.notify_conversation_started(conversation, request.user, others)

        conversation = _conversations_for(request.user).get(pk=conversation.pk)
        return success_response(
            ConversationSerializer(conversation, context=context).data,
            message=_('Conversation created.'),
            status_code=status.HTTP_201_CREATED,
            is_existing=False,
        )

    def _post_message(self, conversation, sender, content, recipients):
        message = Message.objects.create(conversation=conversation, sender=sender, content=content)
        Conversation.objects.filter(pk=conversation.pk).update(last_activity_at=message.created_at)
        notifications.notify_message_received(message, recipients)
        return message


class ConversationDetailView(APIView):
    """GET /api/conversations/<id>/ (participants only)"""

    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        conversation = _get_conversation_for(request, pk)
        return success_response(
            ConversationSerializer(conversation, context={'request': request, 'user': request.user}).data
        )


class ConversationMessagesView(APIView):
    """
    GET /api/conversations/<id>/messages/

    Newest first. Query params: page, limit (default 50), before
    (ISO date/time; only older messages). Reading marks the conversation
    as read for the caller.

    POST /api/conversations/<id>/messages/
    Request body: {"content": "See you at the MRT exit", "message_type": "TEXT"}
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        conversation = _get_conversation_for(request, pk)
        messages = conversation.messages.select_related('sender').order_by('-created_at', '-id')

        before = _parse_datetime(request.query_params.get('before'), 'before')
        if before is not None:
            messages = messages.filter(created_at__lt=before)

        items, pagination = paginate(request, messages, default_limit=50)
        ConversationParticipant.objects.filter(conversation=conversation, user=request.user).update(
            last_read_at=timezone.now()
        )
        return success_response(
            MessageSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )

    def post(self, request, pk, *args, **kwargs):
        conversation = _get_conversation_for(request, pk)
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        now = timezone.now()
        with transaction.atomic():
            message = serializer.save(conversation=conversation, sender=request.user)
            Conversation.objects.filter(pk=conversation.pk).update(last_activity_at=now)
            ConversationParticipant.objects.filter(conversation=conversation, user=request.user).update(
                last_read_at=now
            )

        recipients = [m.user for m in conversation.memberships.all() if m.user_id != request.user.id]
        notifications.notify_message_received(message, recipients)

        logger.info(f"Message sent. Conversation ID: {conversation.id}, Sender: {request.user.email}")
        return success_response(
            MessageSerializer(message, context={'request': request}).data,
            status_code=status.HTTP_201_CREATED,
        )


class ConversationAttachmentView(APIView):
    """
    Upload a file to share in a conversation.

    POST /api/conversations/<id>/attachments/ (multipart/form-data, field `file`)

    Accepts images, PDF, plain text and Word documents up to 10MB. The
    returned `url` goes into a message's `attachment_url`.

    Error responses:
    - 400: Missing file, unsupported type or file too large
    - 403: Not a participant
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        conversation = _get_conversation_for(request, pk)

        upload = request.FILES.get('file')
        if upload is None:
            raise ValidationError({'file': [_('Select a file to upload.')]})
        try:
            validate_chat_attachment(upload)
        except DjangoValidationError as e:
            raise ValidationError({'file': e.messages})

        file_id, url = _store_upload(request, upload, f'chat/{conversation.id}')
        is_image = upload.content_type.startswith('image/')

        logger.info(
            f"Chat attachment uploaded. Conversation ID: {conversation.id}, "
            f"User: {request.user.email}, Size: {upload.size}"
        )
        return success_response(
            {
                'id': file_id,
                'name': upload.name,
                'url': url,
                'thumbnail_url': url if is_image else None,
                'message_type': 'IMAGE' if is_image else 'FILE',
                'size': upload.size,
                'mime_type': upload.content_type,
                'uploaded_by': request.user.id,
                'conversation_id': conversation.id,
                'uploaded_at': timezone.now().isoformat(),
            },
            message=_('File uploaded.'),
            status_code=status.HTTP_201_CREATED,
        )


# ============================================================================
# KYC
# ============================================================================

class KycSubmitView(APIView):
    """
    API endpoint for identity verification submissions.

    POST /api/kyc/submit/ (multipart/form-data)
    Fields: id_number, birth_date, address, emergency_contact,
    id_front_image, id_back_image, selfie_image, criminal_record_image (optional)

    Error responses:
    - 400: Invalid fields or files, or the account is already verified
    - 409: A submission is already pending review
    """
    permission_classes = [IsAuthenticated]

    @staticmethod
    def _ensure_can_submit(user):
        if user.is_kyc_verified:
            raise BadRequest(_('Your identity is already verified.'))
        if KycSubmission.objects.filter(user=user, status='PENDING').exists():
            raise Conflict(_('You already have a verification request under review.'))

    def post(self, request, *args, **kwargs):
        user = request.user
        self._ensure_can_submit(user)

        serializer = KycSubmitSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            # Re-check under the user row lock so concurrent submissions queue up
            self._ensure_can_submit(User.objects.select_for_update().get(pk=user.pk))
            submission = serializer.save()

        logger.info(
            f"KYC submitted. Submission ID: {submission.id}, User: {user.email}, "
            f"Criminal record: {submission.has_criminal_record_certificate}, IP: {get_client_ip(request)}"
        )

        return success_response(
            {
                'application_id': submission.id,
                'status': submission.status,
                'estimated_review_time': KycSubmission.ESTIMATED_REVIEW_TIME,
                'submitted_at': submission.created_at,
            },
            message=_('Verification request submitted.'),
            status_code=status.HTTP_201_CREATED,
        )


class KycStatusView(APIView):
    """GET /api/kyc/status/: latest submission and the caller's verification flags."""

    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        user = request.user
        latest = KycSubmission.objects.filter(user=user).order_by('-created_at').first()
        data = {
            'is_kyc_verified': user.is_kyc_verified,
            'is_criminal_record_verified': user.is_criminal_record_verified,
            'status': latest.status if latest else 'NOT_SUBMITTED',
            'submission': None,
        }
        if latest is not None:
            data['submission'] = {
                'application_id': latest.id,
                'status': latest.status,
                'submitted_at': latest.created_at,
                'reviewed_at': latest.reviewed_at,
                'rejection_reason': latest.rejection_reason or None,
            }
        return success_response(data)


class AdminKycSubmissionListView(APIView):
    """GET /api/admin/kyc/submissions/?status=PENDING"""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        submissions = KycSubmission.objects.select_related('user', 'reviewed_by').order_by('-created_at')
        status_filter = _parse_choice(request.query_params.get('status'), KycSubmission.STATUS_CHOICES, 'status')
        if status_filter:
            submissions = submissions.filter(status=status_filter)

        items, pagination = paginate(request, submissions)
        return success_response(
            KycSubmissionSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class AdminKycReviewView(APIView):
    """
    Approve or reject a KYC submission.

    POST /api/admin/kyc/submissions/<id>/review/
    Request body: {"action": "approve"} or {"action": "reject", "rejection_reason": "..."}

    Steps:
    1. Lock the submission; only PENDING submissions can be reviewed (409)
    2. Record reviewer and time
    3. Approve: set is_kyc_verified, and is_criminal_record_verified when a
       certificate was provided. Reject: clear both flags
    4. Log the activity and notify the applicant
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def post(self, request, pk, *args, **kwargs):
        serializer = KycReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        action = serializer.validated_data['action']

        with transaction.atomic():
            submission = get_object_or_404(KycSubmission.objects.select_for_update(), pk=pk)
            if submission.status != 'PENDING':
                raise Conflict(_('This submission has already been reviewed.'))

            applicant = User.objects.select_for_update().get(pk=submission.user_id)
            submission.reviewed_by = request.user
            submission.reviewed_at = timezone.now()

            if action == 'approve':
                submission.status = 'APPROVED'
                submission.rejection_reason = ''
                applicant.is_kyc_verified = True
                applicant.is_criminal_record_verified = submission.has_criminal_record_certificate
            else:
                submission.status = 'REJECTED'
                submission.rejection_reason = serializer.validated_data['rejection_reason'].strip()
                applicant.is_kyc_verified = False
                applicant.is_criminal_record_verified = False

            submission.save()
            applicant.save(update_fields=['is_kyc_verified', 'is_criminal_record_verified', 'updated_at'])

            record_activity(
                request,
                'KYC_APPROVED' if action == 'approve' else 'KYC_REJECTED',
                entity=submission,
                description=f'KYC #{submission.id} for {applicant.email}',
                metadata={'user_id': applicant.id, 'rejection_reason': submission.rejection_reason},
            )

        logger.info(
            f"KYC reviewed. Submission ID: {submission.id}, Decision: {submission.status}, "
            f"Reviewer: {request.user.email}"
        )
        submission.user = applicant
        notifications.notify_kyc_reviewed(submission)

        return success_response(
            KycSubmissionSerializer(submission, context={'request': request}).data,
            message=_('Verification approved.') if action == 'approve' else _('Verification rejected.'),
        )


# ============================================================================
# Notifications
# ============================================================================

class NotificationListView(APIView):
    """GET /api/notifications/?unread_only=true"""

    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        items_qs = request.user.notifications.order_by('-created_at')
        if _parse_bool(request.query_params.get('unread_only', '')):
            items_qs = items_qs.filter(is_read=False)

        items, pagination = paginate(request, items_qs)
        return success_response(
            NotificationSerializer(items, many=True).data,
            pagination=pagination,
            unread_count=request.user.notifications.filter(is_read=False).count(),
        )


class NotificationReadView(APIView):
    """POST /api/notifications/<id>/read/"""

    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        notification = get_object_or_404(Notification, pk=pk, user=request.user)
        notification.mark_read()
        return success_response(NotificationSerializer(notification).data)


class NotificationReadAllView(APIView):
    """POST /api/notifications/read-all/"""

    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        updated = request.user.notifications.filter(is_read=False).update(is_read=True, read_at=timezone.now())
        return success_response({'updated': updated}, message=_('All notifications marked as read.'))


class PushSubscribeView(APIView):
    """
    POST /api/notifications/subscribe/
    Request body: the browser PushSubscription JSON {endpoint, keys: {p256dh, auth}}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = PushSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        subscription, created = PushSubscription.objects.update_or_create(
            endpoint=data['endpoint'],
            defaults={
                'user': request.user,
                'p256dh': data['keys']['p256dh'],
                'auth': data['keys']['auth'],
                'user_agent': request.META.get('HTTP_USER_AGENT', '')[:300],
            },
        )
        logger.info(f"Push subscription {'created' if created else 'updated'}. User: {request.user.email}")
        return success_response(
            {'id': subscription.id, 'endpoint': subscription.endpoint},
            message=_('Subscribed to push notifications.'),
            status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class PushUnsubscribeView(APIView):
    """POST /api/notifications/unsubscribe/ with {"endpoint": "..."}"""

    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = PushSubscriptionSerializer(data=request.data, context={'require_keys': False})
        serializer.is_valid(raise_exception=True)

        deleted, _details = PushSubscription.objects.filter(
            user=request.user, endpoint=serializer.validated_data['endpoint']
        ).delete()
        if not deleted:
            raise NotFound(_('Subscription not found.'))
        return success_response(message=_('Unsubscribed from push notifications.'))


class AdminNotificationView(APIView):
    """
    GET /api/admin/notifications/: recent system notifications
    POST /api/admin/notifications/
    Request body: {"title": "...", "content": "...", "role": "GUIDE" | "ALL", "channels": ["in_app", "email"]}
    or {"title": "...", "content": "...", "user_ids": [3, 4]}
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        recent = Notification.objects.filter(notification_type='SYSTEM').order_by('-created_at')
        items, pagination = paginate(request, recent)
        return success_response(NotificationSerializer(items, many=True).data, pagination=pagination)

    def post(self, request, *args, **kwargs):
        serializer = AdminNotificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        recipients = User.objects.filter(is_active=True)
        if data.get('user_ids'):
            recipients = recipients.filter(id__in=data['user_ids'])
        elif data['role'] != 'ALL':
            recipients = recipients.filter(role=data['role'])

        summary = notifications.broadcast(
            recipients,
            data['title'],
            data['content'],
            channels=data['channels'],
            action_url=data['action_url'],
        )
        record_activity(
            request,
            'NOTIFICATION_BROADCAST',
            description=data['title'],
            metadata={**summary, 'channels': list(data['channels'])},
        )
        return success_response(summary, message=_('Notification sent.'), status_code=status.HTTP_201_CREATED)


# ============================================================================
# Support
# ============================================================================

def _support_stats(queryset):
    today_start = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
    return queryset.aggregate(
        total=Count('id'),
        unread=Count('id', filter=Q(status='SENT')),
        pending=Count('id', filter=Q(status='READ')),
        resolved=Count('id', filter=Q(status='REPLIED')),
        closed=Count('id', filter=Q(status='CLOSED')),
        today=Count('id', filter=Q(created_at__gte=today_start)),
    )


def _get_ticket_for(request, pk):
    ticket = get_object_or_404(SupportTicket.objects.select_related('user').prefetch_related('replies__author'), pk=pk)
    if ticket.user_id != request.user.id and not request.user.is_admin():
        raise NotFound(_('Ticket not found.'))
    return ticket


class SupportTicketListCreateView(APIView):
    """
    GET /api/support/tickets/: the caller's tickets
    POST /api/support/tickets/ with {"subject", "message", "category", "priority"}
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        tickets = request.user.support_tickets.prefetch_related('replies__author').order_by('-created_at')
        items, pagination = paginate(request, tickets)
        return success_response(
            SupportTicketSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )

    def post(self, request, *args, **kwargs):
        serializer = SupportTicketSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        ticket = serializer.save(user=request.user, status='SENT')

        logger.info(f"Support ticket created. Ticket ID: {ticket.id}, User: {request.user.email}")
        return success_response(
            SupportTicketSerializer(ticket, context={'request': request}).data,
            message=_('Your message has been sent. We will get back to you soon.'),
            status_code=status.HTTP_201_CREATED,
        )


class SupportTicketDetailView(APIView):
    """GET /api/support/tickets/<id>/ (owner or admin; an admin opening a SENT ticket marks it READ)"""

    permission_classes = [IsAuthenticated]

    def get(self, request, pk, *args, **kwargs):
        ticket = _get_ticket_for(request, pk)
        if request.user.is_admin() and ticket.status == 'SENT':
            ticket.status = 'READ'
            ticket.save(update_fields=['status', 'updated_at'])
        return success_response(SupportTicketSerializer(ticket, context={'request': request}).data)


class SupportReplyCreateView(APIView):
    """
    POST /api/support/tickets/<id>/replies/ with {"message": "..."}

    A staff reply sets the ticket to REPLIED and notifies the owner; an
    owner reply reopens it as SENT. Closed tickets accept no replies.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        ticket = _get_ticket_for(request, pk)
        if ticket.status == 'CLOSED':
            raise BadRequest(_('This ticket is closed.'))

        serializer = SupportReplySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        is_staff_reply = request.user.is_admin() and ticket.user_id != request.user.id
        with transaction.atomic():
            reply = serializer.save(ticket=ticket, author=request.user, is_staff_reply=is_staff_reply)
            ticket.status = 'REPLIED' if is_staff_reply else 'SENT'
            ticket.save(update_fields=['status', 'updated_at'])

        if is_staff_reply:
            record_activity(request, 'SUPPORT_REPLIED', entity=ticket, description=ticket.subject)
            notifications.notify_support_reply(ticket, reply)

        logger.info(f"Support reply added. Ticket ID: {ticket.id}, Author: {request.user.email}, Staff: {is_staff_reply}")
        return success_response(
            SupportReplySerializer(reply, context={'request': request}).data,
            status_code=status.HTTP_201_CREATED,
        )


class AdminSupportTicketListView(APIView):
    """
    GET /api/admin/support/tickets/

    Query params: status, category, priority, user, search, page, limit.
    Includes unread/pending/resolved/today statistics over all tickets.
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        params = request.query_params
        tickets = SupportTicket.objects.select_related('user').prefetch_related('replies__author')

        status_filter = _parse_choice(params.get('status'), SupportTicket.STATUS_CHOICES, 'status')
        if status_filter:
            tickets = tickets.filter(status=status_filter)
        category = _parse_choice(params.get('category'), SupportTicket.CATEGORY_CHOICES, 'category')
        if category:
            tickets = tickets.filter(category=category)
        priority = _parse_choice(params.get('priority'), SupportTicket.PRIORITY_CHOICES, 'priority')
        if priority:
            tickets = tickets.filter(priority=priority)
        user_id = parse_positive_int(params.get('user'), 'user')
        if user_id is not None:
            tickets = tickets.filter(user_id=user_id)
        if params.get('search'):
            term = params['search']
            tickets = tickets.filter(
                Q(subject__icontains=term) | Q(message__icontains=term) | Q(user__email__icontains=term)
            )

        items, pagination = paginate(request, tickets.order_by('-created_at'))
        return success_response(
            SupportTicketSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
            stats=_support_stats(SupportTicket.objects.all()),
        )


class AdminSupportTicketDetailView(APIView):
    """GET|PATCH /api/admin/support/tickets/<id>/ (PATCH: status and/or priority)"""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, pk, *args, **kwargs):
        ticket = _get_ticket_for(request, pk)
        if ticket.status == 'SENT':
            ticket.status = 'READ'
            ticket.save(update_fields=['status', 'updated_at'])
        return success_response(SupportTicketSerializer(ticket, context={'request': request}).data)

    def patch(self, request, pk, *args, **kwargs):
        ticket = _get_ticket_for(request, pk)
        serializer = AdminTicketUpdateSerializer(ticket, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        ticket = serializer.save()

        record_activity(
            request,
            'SUPPORT_UPDATED',
            entity=ticket,
            description=ticket.subject,
            metadata={key: value for key, value in serializer.validated_data.items()},
        )
        return success_response(
            SupportTicketSerializer(ticket, context={'request': request}).data,
            message=_('Ticket updated.'),
        )


# ============================================================================
# Admin back office
# ============================================================================

def _growth_percentage(current, previous):
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


class AdminDashboardView(APIView):
    """
    GET /api/admin/dashboard/

    Platform totals for the back office: users by role, services, bookings
    by status, revenue, refunds, average rating, pending KYC, open support
    tickets and month-over-month user growth.
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        now = timezone.localtime()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        last_month_start = (month_start - timedelta(days=1)).replace(day=1)

        users = User.objects.aggregate(
            total=Count('id'),
            guides=Count('id', filter=Q(role=User.ROLE_GUIDE)),
            customers=Count('id', filter=Q(role=User.ROLE_CUSTOMER)),
            admins=Count('id', filter=Q(role=User.ROLE_ADMIN)),
            active=Count('id', filter=Q(is_active=True)),
            this_month=Count('id', filter=Q(created_at__gte=month_start)),
            last_month=Count('id', filter=Q(created_at__gte=last_month_start, created_at__lt=month_start)),
        )
        services = Service.objects.aggregate(
            total=Count('id'),
            active=Count('id', filter=Q(status='ACTIVE')),
            pending=Count('id', filter=Q(status='DRAFT')),
            suspended=Count('id', filter=Q(status='SUSPENDED')),
        )
        bookings = Booking.objects.aggregate(
            total=Count('id'),
            pending=Count('id', filter=Q(status='PENDING')),
            confirmed=Count('id', filter=Q(status='CONFIRMED')),
            completed=Count('id', filter=Q(status='COMPLETED')),
            cancelled=Count('id', filter=Q(status='CANCELLED')),
            revenue=Sum('total_amount', filter=Q(status='COMPLETED')),
            refunds=Sum('refund_amount', filter=Q(status='CANCELLED')),
        )
        average_rating = Review.objects.filter(status='PUBLISHED').aggregate(avg=Avg('rating'))['avg']

        return success_response({
            'users': {
                'total': users['total'],
                'guides': users['guides'],
                'customers': users['customers'],
                'admins': users['admins'],
                'active': users['active'],
                'new_this_month': users['this_month'],
                'growth_percentage': _growth_percentage(users['this_month'], users['last_month']),
            },
            'services': {
                'total': services['total'],
                'active': services['active'],
                'pending': services['pending'],
                'suspended': services['suspended'],
            },
            'bookings': {
                'total': bookings['total'],
                'pending': bookings['pending'],
                'confirmed': bookings['confirmed'],
                'completed': bookings['completed'],
                'cancelled': bookings['cancelled'],
            },
            'revenue': _money(bookings['revenue']),
            'refunds': _money(bookings['refunds']),
            'average_rating': round(average_rating or 0, 2),
            'pending_kyc': KycSubmission.objects.filter(status='PENDING').count(),
            'open_tickets': SupportTicket.objects.exclude(status='CLOSED').count(),
            'generated_at': now.isoformat(),
        })


class AdminUserListView(APIView):
    """GET /api/admin/users/?search=&role=&is_active="""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        params = request.query_params
        users = User.objects.all().order_by('-created_at')

        if params.get('search'):
            term = params['search']
            users = users.filter(Q(email__icontains=term) | Q(name__icontains=term) | Q(phone_number__icontains=term))
        role = _parse_choice(params.get('role'), User.ROLE_CHOICES, 'role')
        if role:
            users = users.filter(role=role)
        if params.get('is_active') not in (None, ''):
            users = users.filter(is_active=_parse_bool(params['is_active']))

        items, pagination = paginate(request, users)
        return success_response(
            AdminUserSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class AdminUserDetailView(APIView):
    """
    GET /api/admin/users/<id>/
    PATCH /api/admin/users/<id>/: role, is_active, permissions
    DELETE /api/admin/users/<id>/: deactivates the account
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, pk, *args, **kwargs):
        user = get_object_or_404(User, pk=pk)
        data = AdminUserSerializer(user, context={'request': request}).data
        data['stats'] = {
            'bookings_as_traveler': user.traveler_bookings.count(),
            'bookings_as_guide': user.guide_bookings.count(),
            'services': user.services.count(),
            'reviews_given': user.reviews_given.count(),
        }
        return success_response(data)

    def patch(self, request, pk, *args, **kwargs):
        user = get_object_or_404(User, pk=pk)
        before = {'role': user.role, 'is_active': user.is_active, 'permissions': list(user.permissions)}

        serializer = AdminUserUpdateSerializer(user, data=request.data, partial=True, context={'request': request})
        serializer.is_valid(raise_exception=True)
        user = serializer.save()

        record_activity(
            request,
            'USER_UPDATED',
            entity=user,
            description=f'Updated {user.email}',
            metadata={
                'before': before,
                'after': {'role': user.role, 'is_active': user.is_active, 'permissions': list(user.permissions)},
            },
        )
        logger.info(f"Admin updated user. User ID: {user.id}, Admin: {request.user.email}")
        return success_response(
            AdminUserSerializer(user, context={'request': request}).data,
            message=_('User updated.'),
        )

    def delete(self, request, pk, *args, **kwargs):
        user = get_object_or_404(User, pk=pk)
        if user.pk == request.user.pk:
            raise BadRequest(_('You cannot demote or deactivate your own account.'))

        user.is_active = False
        user.save(update_fields=['is_active', 'updated_at'])

        record_activity(request, 'USER_DEACTIVATED', entity=user, description=f'Deactivated {user.email}')
        logger.warning(f"User deactivated. User ID: {user.id}, Admin: {request.user.email}")
        return success_response(message=_('User deactivated.'))


class AdminServiceListView(APIView):
    """GET /api/admin/services/?status=&search=&guide="""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        params = request.query_params
        services = Service.objects.select_related('guide').order_by('-created_at')

        status_filter = _parse_choice(params.get('status'), Service.STATUS_CHOICES, 'status')
        if status_filter:
            services = services.filter(status=status_filter)
        guide_id = parse_positive_int(params.get('guide'), 'guide')
        if guide_id is not None:
            services = services.filter(guide_id=guide_id)
        if params.get('search'):
            term = params['search']
            services = services.filter(
                Q(title__icontains=term) | Q(location__icontains=term) | Q(guide__email__icontains=term)
            )

        items, pagination = paginate(request, services)
        return success_response(
            AdminServiceSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class AdminServiceDetailView(APIView):
    """PATCH /api/admin/services/<id>/ with {"status": "SUSPENDED", "reason": "..."}"""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, pk, *args, **kwargs):
        service = get_object_or_404(Service.objects.select_related('guide'), pk=pk)
        return success_response(ServiceDetailSerializer(service, context={'request': request}).data)

    def patch(self, request, pk, *args, **kwargs):
        service = get_object_or_404(Service.objects.select_related('guide'), pk=pk)
        serializer = AdminServiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        previous = service.status
        service.status = serializer.validated_data['status']
        service.save()

        record_activity(
            request,
            'SERVICE_STATUS_CHANGED',
            entity=service,
            description=f'{service.title}: {previous} -> {service.status}',
            metadata={'from': previous, 'to': service.status, 'reason': serializer.validated_data['reason']},
        )
        logger.info(
            f"Service moderated. Service ID: {service.id}, {previous} -> {service.status}, "
            f"Admin: {request.user.email}"
        )
        return success_response(
            AdminServiceSerializer(service, context={'request': request}).data,
            message=_('Service updated.'),
        )


class AdminBookingListView(APIView):
    """GET /api/admin/bookings/?status=&payment_status=&date_from=&date_to="""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        params = request.query_params
        bookings = Booking.objects.select_related('service', 'traveler', 'guide').prefetch_related(
            'payments'
        ).order_by('-created_at')

        status_filter = _parse_choice(params.get('status'), Booking.STATUS_CHOICES, 'status')
        if status_filter:
            bookings = bookings.filter(status=status_filter)
        payment_status = _parse_choice(params.get('payment_status'), Booking.PAYMENT_STATUS_CHOICES, 'payment_status')
        if payment_status:
            bookings = bookings.filter(payment_status=payment_status)

        date_from = _parse_datetime(params.get('date_from'), 'date_from')
        date_to = _parse_datetime(params.get('date_to'), 'date_to')
        if date_from is not None:
            bookings = bookings.filter(booking_date__gte=date_from)
        if date_to is not None:
            # A bare date includes the whole day
            if parse_datetime(params['date_to']) is None:
                date_to += timedelta(days=1)
                bookings = bookings.filter(booking_date__lt=date_to)
            else:
                bookings = bookings.filter(booking_date__lte=date_to)

        items, pagination = paginate(request, bookings)
        return success_response(
            BookingSerializer(items, many=True, context={'request': request}).data,
            pagination=pagination,
        )


class AdminBookingDetailView(APIView):
    """
    GET /api/admin/bookings/<id>/
    PATCH /api/admin/bookings/<id>/
    Request body: {"status": "CANCELLED", "cancellation_reason": "WEATHER", "note": "..."}

    Status changes go through the booking state machine; administrator
    cancellations refund in full.
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, pk, *args, **kwargs):
        booking = get_object_or_404(
            Booking.objects.select_related('service', 'traveler', 'guide').prefetch_related('payments'), pk=pk
        )
        return success_response(BookingSerializer(booking, context={'request': request}).data)

    def patch(self, request, pk, *args, **kwargs):
        booking = get_object_or_404(Booking, pk=pk)
        serializer = AdminBookingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        previous = booking.status
        target = data['status']

        if target == 'CONFIRMED':
            booking = confirm_booking(booking.id)
            notifications.notify_booking_confirmed(booking)
        elif target == 'COMPLETED':
            booking = complete_booking(booking.id)
            notifications.notify_booking_completed(booking)
        elif target == 'CANCELLED':
            booking = cancel_booking(booking.id, request.user, data['cancellation_reason'], data['note'])
            notifications.notify_booking_cancelled(booking, request.user)
        else:
            _valid, message = booking.can_transition_to(target)
            raise BadRequest(message or _('Invalid status transition from %(from)s to %(to)s.') % {
                'from': previous, 'to': target,
            })

        record_activity(
            request,
            'BOOKING_STATUS_CHANGED',
            entity=booking,
            description=f'Booking #{booking.id}: {previous} -> {booking.status}',
            metadata={'from': previous, 'to': booking.status, 'note': data['note'],
                      'refund_amount': _money(booking.refund_amount)},
        )

        booking = Booking.objects.select_related('service', 'traveler', 'guide').prefetch_related(
            'payments'
        ).get(pk=booking.pk)
        return success_response(
            BookingSerializer(booking, context={'request': request}).data,
            message=_('Booking updated.'),
        )


class AdminGuideListView(APIView):
    """
    GET /api/admin/guides/?search=&kyc=verified|unverified

    Guides with service count, booking count, revenue from completed
    bookings, rating and KYC status.
    """
    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        params = request.query_params
        guides = User.objects.filter(role=User.ROLE_GUIDE).annotate(
            service_count=Count('services', distinct=True),
        ).order_by('-avg_rating_as_guide', '-created_at')

        if params.get('search'):
            term = params['search']
            guides = guides.filter(Q(email__icontains=term) | Q(name__icontains=term))
        kyc = params.get('kyc')
        if kyc in ('verified', 'unverified'):
            guides = guides.filter(is_kyc_verified=(kyc == 'verified'))

        items, pagination = paginate(request, guides)

        booking_stats = {
            row['guide']: row
            for row in Booking.objects.filter(guide__in=items).values('guide').annotate(
                booking_count=Count('id'),
                revenue=Sum('total_amount', filter=Q(status='COMPLETED')),
            )
        }
        pending_kyc = set(
            KycSubmission.objects.filter(user__in=items, status='PENDING').values_list('user_id', flat=True)
        )

        data = []
        for guide in items:
            stats = booking_stats.get(guide.id, {})
            if guide.is_kyc_verified:
                kyc_status = 'VERIFIED'
            elif guide.id in pending_kyc:
                kyc_status = 'PENDING'
            else:
                kyc_status = 'UNVERIFIED'
            data.append({
                'id': guide.id,
                'email': guide.email,
                'name': guide.display_name,
                'is_active': guide.is_active,
                'service_count': guide.service_count,
                'booking_count': stats.get('booking_count', 0),
                'revenue': _money(stats.get('revenue')),
                'rating': str(guide.avg_rating_as_guide),
                'kyc_status': kyc_status,
                'is_criminal_record_verified': guide.is_criminal_record_verified,
                'created_at': guide.created_at,
            })
        return success_response(data, pagination=pagination)


class AdminReviewDetailView(APIView):
    """PATCH /api/admin/reviews/<id>/ with {"status": "HIDDEN"}; ratings follow via signals."""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def patch(self, request, pk, *args, **kwargs):
        review = get_object_or_404(Review.objects.select_related('reviewer', 'service'), pk=pk)
        serializer = AdminReviewStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        previous = review.status
        review.status = serializer.validated_data['status']
        review.save()

        record_activity(
            request,
            'REVIEW_MODERATED',
            entity=review,
            description=f'Review #{review.id}: {previous} -> {review.status}',
            metadata={'from': previous, 'to': review.status, 'service_id': review.service_id},
        )
        return success_response(
            ReviewSerializer(review, context={'request': request}).data,
            message=_('Review updated.'),
        )


class AdminActivityLogView(APIView):
    """GET /api/admin/activity/?action=&actor="""

    permission_classes = [IsAuthenticated, IsAdminRole]

    def get(self, request, *args, **kwargs):
        logs = ActivityLog.objects.select_related('actor').order_by('-created_at')
        if request.query_params.get('action'):
            logs = logs.filter(action=request.query_params['action'].upper())
        actor_id = parse_positive_int(request.query_params.get('actor'), 'actor')
        if actor_id is not None:
            logs = logs.filter(actor_id=actor_id)

        items, pagination = paginate(request, logs, default_limit=50)
        return success_response(ActivityLogSerializer(items, many=True).data, pagination=pagination)
