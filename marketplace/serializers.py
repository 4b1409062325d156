"""
Serializers for the Guidee API.
"""

import re
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .models import (
    Booking,
    Conversation,
    KycSubmission,
    Message,
    Notification,
    Payment,
    PaymentMethod,
    Post,
    PostComment,
    PostServiceEmbed,
    PushSubscription,
    Review,
    ReviewResponse,
    Service,
    SupportReply,
    SupportTicket,
    UserProfile,
    ActivityLog,
)
from .validators import (
    validate_adult_birth_date,
    validate_card_expiry,
    validate_image_upload,
    validate_phone_number,
    validate_taiwan_id_number,
    normalize_card_number,
)

User = get_user_model()


def absolute_media_url(context, field_file):
    if not field_file:
        return None
    request = context.get('request')
    if request is not None:
        return request.build_absolute_uri(field_file.url)
    return field_file.url


def _django_to_drf(error):
    return serializers.ValidationError(list(error.messages))


class StringListField(serializers.ListField):
    """A list of short non-empty strings, stripped."""

    def __init__(self, **kwargs):
        kwargs.setdefault('child', serializers.CharField(max_length=200, allow_blank=False))
        kwargs.setdefault('required', False)
        kwargs.setdefault('max_length', 30)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        return [item.strip() for item in super().to_internal_value(data)]


# ============================================================================
# Accounts
# ============================================================================

class UserSummarySerializer(serializers.ModelSerializer):
    """Public view of a user embedded in other resources."""

    avatar_url = serializers.SerializerMethodField()
    name = serializers.CharField(source='display_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name', 'avatar_url', 'role', 'is_kyc_verified']
        read_only_fields = fields

    def get_avatar_url(self, obj):
        return absolute_media_url(self.context, obj.avatar)


class UserProfileDetailsSerializer(serializers.ModelSerializer):
    class Meta:
        model = UserProfile
        fields = [
            'bio', 'location', 'languages', 'specialties',
            'experience_years', 'certifications', 'social_links',
        ]


class UserRegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Fields:
    - email: Required, unique (case-insensitive)
    - password / confirm_password: Required, must match and pass Django validators
    - name: Required display name
    - phone_number: Optional
    - role: GUIDE or CUSTOMER (administrators are never self-registered)
    - preferred_language: Optional, one of the supported languages
    """

    SELF_SERVICE_ROLES = (User.ROLE_GUIDE, User.ROLE_CUSTOMER)

    password = serializers.CharField(write_only=True, required=True, style={'input_type': 'password'})
    confirm_password = serializers.CharField(write_only=True, required=True, style={'input_type': 'password'})
    role = serializers.CharField(required=False, default=User.ROLE_CUSTOMER)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'password', 'confirm_password', 'name',
            'phone_number', 'role', 'preferred_language', 'created_at',
        ]
        read_only_fields = ['id', 'created_at']
        extra_kwargs = {
            'email': {'required': True},
            'name': {'required': True, 'allow_blank': False},
        }

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError(_('A user with that email already exists.'))
        return value

    def validate_password(self, value):
        try:
            validate_password(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def validate_role(self, value):
        value = (value or '').upper()
        if value not in self.SELF_SERVICE_ROLES:
            raise serializers.ValidationError(
                _('Role must be one of: %(roles)s.') % {'roles': ', '.join(self.SELF_SERVICE_ROLES)}
            )
        return value

    def validate(self, attrs):
        if attrs.get('password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({
                'confirm_password': _('Password confirmation does not match.')
            })
        return attrs

    def create(self, validated_data):
        """
        Create the user with a hashed password.

        The username is derived from the email prefix and suffixed when taken,
        since AbstractUser still requires one.
        """
        validated_data.pop('confirm_password', None)
        password = validated_data.pop('password')

        base_username = re.sub(r'[^\w.@+-]', '', validated_data['email'].split('@')[0])[:30] or 'user'
        username = base_username
        suffix = 1
        while User.objects.filter(username=username).exists():
            suffix += 1
            username = f'{base_username[:26]}{suffix}'

        user = User(username=username, **validated_data)
        user.set_password(password)
        user.save()
        return user


class LoginSerializer(serializers.Serializer):
    """
    Minimal validation to prevent user enumeration attacks.
    Actual authentication happens in the view.
    """

    email = serializers.EmailField(required=True)
    password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})


class TokenRefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=True)


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=True)


class CurrentUserSerializer(serializers.ModelSerializer):
    """
    The authenticated user's own account.

    Excludes password hashes and Django staff flags.
    """

    avatar_url = serializers.SerializerMethodField()
    profile = UserProfileDetailsSerializer(read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'phone_number', 'role', 'avatar_url',
            'is_email_verified', 'is_kyc_verified', 'is_criminal_record_verified',
            'preferred_language', 'avg_rating_as_guide', 'profile', 'created_at',
        ]
        read_only_fields = fields

    def get_avatar_url(self, obj):
        return absolute_media_url(self.context, obj.avatar)


class UserProfileUpdateSerializer(serializers.ModelSerializer):
    """
    Serializer for profile updates (PUT/PATCH).

    Updatable: name, phone_number, avatar, preferred_language and the
    extended profile fields. Restricted account fields are rejected.
    """

    RESTRICTED_FIELDS = (
        'email', 'password', 'role', 'username', 'permissions',
        'is_kyc_verified', 'is_criminal_record_verified', 'is_email_verified',
        'is_staff', 'is_superuser', 'is_active', 'avg_rating_as_guide',
    )

    PROFILE_FIELDS = (
        'bio', 'location', 'languages', 'specialties',
        'experience_years', 'certifications', 'social_links',
    )

    bio = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    location = serializers.CharField(required=False, allow_blank=True, max_length=200)
    languages = StringListField()
    specialties = StringListField()
    experience_years = serializers.IntegerField(required=False, min_value=0, max_value=80)
    certifications = StringListField()
    social_links = serializers.DictField(child=serializers.URLField(), required=False)

    class Meta:
        model = User
        fields = ['name', 'phone_number', 'avatar', 'preferred_language',
                  'bio', 'location', 'languages', 'specialties',
                  'experience_years', 'certifications', 'social_links']
        extra_kwargs = {
            'name': {'required': False},
            'phone_number': {'required': False},
            'avatar': {'required': False},
        }

    def validate_phone_number(self, value):
        try:
            validate_phone_number(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def validate_avatar(self, value):
        try:
            validate_image_upload(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def validate(self, attrs):
        attempted = [field for field in self.RESTRICTED_FIELDS if field in self.initial_data]
        if attempted:
            raise serializers.ValidationError({
                field: [_('This field cannot be changed.')] for field in attempted
            })
        return attrs

    def update(self, instance, validated_data):
        profile_data = {key: validated_data.pop(key) for key in self.PROFILE_FIELDS if key in validated_data}

        new_avatar = validated_data.get('avatar')
        if new_avatar and instance.avatar:
            instance.avatar.delete(save=False)

        fields_to_update = []
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
            fields_to_update.append(attr)
        if fields_to_update:
            instance.save(update_fields=fields_to_update + ['updated_at'])

        if profile_data:
            profile, _created = UserProfile.objects.get_or_create(user=instance)
            for attr, value in profile_data.items():
                setattr(profile, attr, value)
            profile.save()

        return instance


class NotificationPreferencesSerializer(serializers.Serializer):
    email = serializers.BooleanField(required=False)
    push = serializers.BooleanField(required=False)
    sms = serializers.BooleanField(required=False)


class PrivacySettingsSerializer(serializers.Serializer):
    profile_visibility = serializers.ChoiceField(choices=['PUBLIC', 'PRIVATE'], required=False)


class UserSettingsSerializer(serializers.Serializer):
    """Validates a partial settings document; the view deep-merges it."""

    notifications = NotificationPreferencesSerializer(required=False)
    newsletter = serializers.BooleanField(required=False)
    currency = serializers.ChoiceField(choices=['TWD', 'USD', 'JPY', 'KRW', 'EUR'], required=False)
    privacy = PrivacySettingsSerializer(required=False)


class LanguageSerializer(serializers.Serializer):
    language = serializers.ChoiceField(choices=[code for code, _name in settings.LANGUAGES])


class GuideSerializer(serializers.ModelSerializer):
    """Guide directory entry."""

    avatar_url = serializers.SerializerMethodField()
    name = serializers.CharField(source='display_name', read_only=True)
    profile = UserProfileDetailsSerializer(read_only=True)
    active_services = serializers.IntegerField(read_only=True, default=0)
    total_reviews = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = User
        fields = [
            'id', 'name', 'avatar_url', 'is_kyc_verified', 'is_criminal_record_verified',
            'avg_rating_as_guide', 'profile', 'active_services', 'total_reviews', 'created_at',
        ]
        read_only_fields = fields

    def get_avatar_url(self, obj):
        return absolute_media_url(self.context, obj.avatar)


# ============================================================================
# Services
# ============================================================================

class ServiceListSerializer(serializers.ModelSerializer):
    guide = UserSummarySerializer(read_only=True)

    class Meta:
        model = Service
        fields = [
            'id', 'title', 'short_description', 'category', 'location',
            'duration_hours', 'price', 'currency', 'min_guests', 'max_guests',
            'images', 'tags', 'status', 'average_rating', 'total_reviews',
            'total_bookings', 'guide', 'created_at',
        ]
        read_only_fields = fields


class ServiceDetailSerializer(ServiceListSerializer):
    """
    Full service description with rating distribution and recent reviews.
    """

    rating_distribution = serializers.SerializerMethodField()
    recent_reviews = serializers.SerializerMethodField()

    class Meta(ServiceListSerializer.Meta):
        fields = ServiceListSerializer.Meta.fields + [
            'description', 'included', 'not_included', 'highlights',
            'cancellation_policy', 'rating_distribution', 'recent_reviews', 'updated_at',
        ]
        read_only_fields = fields

    def get_rating_distribution(self, obj):
        from django.db.models import Count

        counts = dict(
            obj.reviews.filter(status='PUBLISHED')
            .values_list('rating')
            .annotate(total=Count('id'))
        )
        return {str(star): counts.get(star, 0) for star in range(1, 6)}

    def get_recent_reviews(self, obj):
        reviews = obj.reviews.filter(status='PUBLISHED').select_related(
            'reviewer', 'response'
        ).order_by('-created_at')[:5]
        return ReviewSerializer(reviews, many=True, context=self.context).data


class ServiceWriteSerializer(serializers.ModelSerializer):
    """
    Create or update a service.

    The guide is taken from the request user on creation. New services are
    ACTIVE unless DRAFT is requested; guides may only toggle between DRAFT,
    ACTIVE and INACTIVE (suspension is an administrator action).
    """

    GUIDE_STATUSES = ('DRAFT', 'ACTIVE', 'INACTIVE')

    included = StringListField()
    not_included = StringListField()
    highlights = StringListField()
    tags = StringListField(child=serializers.CharField(max_length=50))
    images = serializers.ListField(child=serializers.URLField(max_length=500), required=False, max_length=20)

    class Meta:
        model = Service
        fields = [
            'id', 'title', 'short_description', 'description', 'category', 'location',
            'duration_hours', 'price', 'currency', 'min_guests', 'max_guests',
            'included', 'not_included', 'highlights', 'images', 'tags',
            'cancellation_policy', 'status',
        ]
        read_only_fields = ['id']
        extra_kwargs = {
            'status': {'required': False},
            'currency': {'required': False},
        }

    def validate_title(self, value):
        value = value.strip()
        if len(value) < 5:
            raise serializers.ValidationError(_('Title must be at least 5 characters long.'))
        return value

    def validate_description(self, value):
        value = value.strip()
        if len(value) < 20:
            raise serializers.ValidationError(_('Description must be at least 20 characters long.'))
        return value

    def validate_price(self, value):
        if value <= 0:
            raise serializers.ValidationError(_('Price must be greater than 0.'))
        if value > Service.MAX_PRICE:
            raise serializers.ValidationError(_('Price must be less than 1,000,000.'))
        return value

    def validate_status(self, value):
        if value not in self.GUIDE_STATUSES:
            raise serializers.ValidationError(
                _('Status must be one of: %(statuses)s.') % {'statuses': ', '.join(self.GUIDE_STATUSES)}
            )
        return value

    def validate(self, attrs):
        min_guests = attrs.get('min_guests', getattr(self.instance, 'min_guests', 1))
        max_guests = attrs.get('max_guests', getattr(self.instance, 'max_guests', 10))
        if min_guests > max_guests:
            raise serializers.ValidationError({
                'min_guests': _('Minimum guests cannot exceed maximum guests.')
            })
        return attrs

    def create(self, validated_data):
        request = self.context['request']
        validated_data['guide'] = request.user
        validated_data.setdefault('status', 'ACTIVE')
        return Service.objects.create(**validated_data)


class ServiceSuggestionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Service
        fields = ['id', 'title', 'location', 'category', 'price', 'average_rating']
        read_only_fields = fields


# ============================================================================
# Bookings and payments
# ============================================================================

class BookingServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Service
        fields = ['id', 'title', 'location', 'duration_hours', 'price', 'currency', 'images']
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    booking_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'booking_id', 'payment_method', 'payment_provider', 'provider_payment_id',
            'amount', 'currency', 'status', 'refunded_amount', 'failure_reason',
            'processed_at', 'refunded_at', 'created_at',
        ]
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """Read representation of a booking with its parties and payments."""

    service = BookingServiceSerializer(read_only=True)
    traveler = UserSummarySerializer(read_only=True)
    guide = UserSummarySerializer(read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    has_review = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            'id', 'service', 'traveler', 'guide', 'booking_date', 'end_time',
            'guests', 'duration_hours', 'base_price', 'service_fee', 'total_amount',
            'currency', 'special_requests', 'contact_info', 'status', 'payment_status',
            'cancellation_reason', 'cancellation_note', 'refund_amount',
            'confirmed_at', 'cancelled_at', 'completed_at', 'created_at', 'updated_at',
            'payments', 'has_review',
        ]
        read_only_fields = fields

    def get_has_review(self, obj):
        return hasattr(obj, 'review')


class BookingCreateSerializer(serializers.ModelSerializer):
    """
    Serializer for creating bookings.

    Auto-populated:
    - traveler: From request.user
    - guide: From service.guide
    - duration_hours: From the service
    - base_price / service_fee / total_amount: From service price and guests
    - contact_info: Request value, falling back to the traveler's details

    Conflict detection is handled in the view under a row lock.
    """

    MINIMUM_ADVANCE = timedelta(hours=1)

    service = serializers.PrimaryKeyRelatedField(queryset=Service.objects.select_related('guide'))
    contact_info = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)

    class Meta:
        model = Booking
        fields = ['service', 'booking_date', 'guests', 'special_requests', 'contact_info']
        extra_kwargs = {
            'guests': {'required': True},
            'special_requests': {'required': False},
        }

    def validate_service(self, value):
        if not value.is_bookable():
            raise serializers.ValidationError(_('This service is currently unavailable for booking.'))
        return value

    def validate_booking_date(self, value):
        now = timezone.now()
        if value <= now:
            raise serializers.ValidationError(_('Booking date must be in the future.'))
        if value < now + self.MINIMUM_ADVANCE:
            raise serializers.ValidationError(_('Bookings must be made at least 1 hour in advance.'))
        return value

    def validate(self, attrs):
        request = self.context.get('request')
        service = attrs['service']
        guests = attrs['guests']

        if request and service.guide_id == request.user.id:
            raise serializers.ValidationError(_('You cannot book your own service.'))

        if not service.min_guests <= guests <= service.max_guests:
            raise serializers.ValidationError({
                'guests': _('Number of guests must be between %(min)s and %(max)s.') % {
                    'min': service.min_guests, 'max': service.max_guests,
                }
            })
        return attrs

    def create(self, validated_data):
        request = self.context['request']
        user = request.user
        service = validated_data['service']

        base, fee, total = Booking.price_breakdown(service, validated_data['guests'])
        contact_info = validated_data.pop('contact_info', None) or {
            'name': user.display_name,
            'email': user.email,
            'phone': user.phone_number,
        }

        return Booking.objects.create(
            traveler=user,
            guide=service.guide,
            duration_hours=service.duration_hours,
            base_price=base,
            service_fee=fee,
            total_amount=total,
            currency=service.currency,
            contact_info=contact_info,
            status='PENDING',
            payment_status='UNPAID',
            **validated_data,
        )


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(
        choices=[choice for choice, _label in Booking.CANCELLATION_REASON_CHOICES],
        required=False,
        default='USER_REQUEST',
    )
    note = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')


class PaymentCreateSerializer(serializers.Serializer):
    """
    Mock checkout request.

    Card payments need either a saved `payment_method_id` or a `card_number`;
    wallet and bank transfer payments need neither.
    """

    CARD_METHODS = ('CREDIT_CARD', 'DEBIT_CARD')

    booking_id = serializers.IntegerField()
    payment_method = serializers.ChoiceField(choices=[choice for choice, _label in Payment.METHOD_CHOICES])
    payment_method_id = serializers.IntegerField(required=False)
    card_number = serializers.CharField(required=False, write_only=True, max_length=30)

    def validate_card_number(self, value):
        try:
            return normalize_card_number(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)

    def validate(self, attrs):
        if attrs['payment_method'] in self.CARD_METHODS:
            if not attrs.get('payment_method_id') and not attrs.get('card_number'):
                raise serializers.ValidationError({
                    'card_number': _('A card number or saved payment method is required.')
                })
        return attrs


class PaymentMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentMethod
        fields = [
            'id', 'method_type', 'brand', 'last4', 'holder_name',
            'expiry_month', 'expiry_year', 'is_default', 'created_at',
        ]
        read_only_fields = ['id', 'brand', 'last4', 'created_at']


class PaymentMethodCreateSerializer(serializers.Serializer):
    """
    Validate a new card or wallet. The full card number is used only to
    derive brand and last4 and is never stored.
    """

    method_type = serializers.ChoiceField(choices=[choice for choice, _label in PaymentMethod.TYPE_CHOICES])
    card_number = serializers.CharField(required=False, write_only=True, max_length=30)
    holder_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    expiry_month = serializers.IntegerField(required=False)
    expiry_year = serializers.IntegerField(required=False)
    is_default = serializers.BooleanField(required=False, default=False)

    def validate_card_number(self, value):
        try:
            return normalize_card_number(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)

    def validate(self, attrs):
        if attrs['method_type'] in ('CREDIT_CARD', 'DEBIT_CARD'):
            missing = [f for f in ('card_number', 'expiry_month', 'expiry_year') if attrs.get(f) is None]
            if missing:
                raise serializers.ValidationError({
                    field: [_('This field is required for cards.')] for field in missing
                })
            try:
                validate_card_expiry(attrs['expiry_month'], attrs['expiry_year'])
            except DjangoValidationError as e:
                raise serializers.ValidationError({'expiry_month': list(e.messages)})
        return attrs


# ============================================================================
# Reviews
# ============================================================================

class ReviewResponseSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReviewResponse
        fields = ['id', 'content', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError(_('Response cannot be empty.'))
        return value.strip()


class ReviewSerializer(serializers.ModelSerializer):
    """
    Public review. Anonymous reviewers are masked.
    """

    reviewer = serializers.SerializerMethodField()
    service = serializers.SerializerMethodField()
    booking_id = serializers.IntegerField(read_only=True)
    response = ReviewResponseSerializer(read_only=True)

    class Meta:
        model = Review
        fields = [
            'id', 'booking_id', 'service', 'reviewer', 'rating', 'comment',
            'pros', 'cons', 'tags', 'photos', 'is_anonymous', 'is_verified',
            'helpful_count', 'status', 'response', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_reviewer(self, obj):
        if obj.is_anonymous:
            return {'id': None, 'name': str(_('Anonymous traveler')), 'avatar_url': None}
        return {
            'id': obj.reviewer_id,
            'name': obj.reviewer.display_name,
            'avatar_url': absolute_media_url(self.context, obj.reviewer.avatar),
        }

    def get_service(self, obj):
        return {'id': obj.service_id, 'title': obj.service.title}


class ReviewCreateSerializer(serializers.ModelSerializer):
    """
    Review for a completed booking; the booking comes from the URL and the
    view checks ownership, status and duplicates.
    """

    pros = StringListField(max_length=10)
    cons = StringListField(max_length=10)
    tags = StringListField(child=serializers.CharField(max_length=50), max_length=10)
    photos = serializers.ListField(child=serializers.URLField(max_length=500), required=False, max_length=10)

    class Meta:
        model = Review
        fields = ['rating', 'comment', 'pros', 'cons', 'tags', 'photos', 'is_anonymous']
        extra_kwargs = {
            'rating': {'required': True},
            'comment': {'required': True},
        }

    def validate_rating(self, value):
        if not 1 <= value <= 5:
            raise serializers.ValidationError(_('Rating must be between 1 and 5.'))
        return value

    def validate_comment(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Comment cannot be empty.'))
        return value

    def create(self, validated_data):
        booking = self.context['booking']
        return Review.objects.create(
            booking=booking,
            service=booking.service,
            guide=booking.guide,
            reviewer=booking.traveler,
            **validated_data,
        )


class ReviewUpdateSerializer(ReviewCreateSerializer):
    class Meta(ReviewCreateSerializer.Meta):
        fields = ['rating', 'comment', 'pros', 'cons', 'tags', 'photos', 'is_anonymous']
        extra_kwargs = {
            'rating': {'required': False},
            'comment': {'required': False},
        }


# ============================================================================
# Posts
# ============================================================================

class EmbeddedServiceSerializer(serializers.ModelSerializer):
    service = ServiceSuggestionSerializer(read_only=True)

    class Meta:
        model = PostServiceEmbed
        fields = ['id', 'service', 'position', 'embed_type', 'custom_text', 'created_at']
        read_only_fields = fields


class PostSerializer(serializers.ModelSerializer):
    """
    Post with author and embedded services.

    `is_liked` / `is_bookmarked` come from sets of post ids the view places
    in the context for the current user.
    """

    author = UserSummarySerializer(read_only=True)
    embedded_services = EmbeddedServiceSerializer(source='service_embeds', many=True, read_only=True)
    is_liked = serializers.SerializerMethodField()
    is_bookmarked = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id', 'author', 'author_type', 'title', 'content', 'cover_image',
            'category', 'tags', 'location', 'status', 'view_count', 'like_count',
            'bookmark_count', 'comment_count', 'share_count', 'embedded_services',
            'is_liked', 'is_bookmarked', 'published_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_is_liked(self, obj):
        return obj.id in self.context.get('liked_ids', ())

    def get_is_bookmarked(self, obj):
        return obj.id in self.context.get('bookmarked_ids', ())


class PostWriteSerializer(serializers.ModelSerializer):
    tags = StringListField(child=serializers.CharField(max_length=50), max_length=20)
    service_ids = serializers.ListField(
        child=serializers.IntegerField(),
        required=False,
        write_only=True,
        max_length=10,
    )

    class Meta:
        model = Post
        fields = [
            'title', 'content', 'cover_image', 'category', 'tags',
            'location', 'author_type', 'status', 'service_ids',
        ]
        extra_kwargs = {
            'title': {'required': True},
            'content': {'required': True},
            'category': {'required': True},
            'author_type': {'required': False},
            'status': {'required': False},
        }

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Title cannot be empty.'))
        return value

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError(_('Content cannot be empty.'))
        return value

    def validate_category(self, value):
        value = value.strip().lower()
        if not value:
            raise serializers.ValidationError(_('Category cannot be empty.'))
        return value


class PostCommentSerializer(serializers.ModelSerializer):
    author = UserSummarySerializer(read_only=True)
    parent_id = serializers.PrimaryKeyRelatedField(
        source='parent',
        queryset=PostComment.objects.all(),
        required=False,
        allow_null=True,
    )

    class Meta:
        model = PostComment
        fields = ['id', 'author', 'parent_id', 'content', 'created_at']
        read_only_fields = ['id', 'author', 'created_at']

    def validate_content(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Comment cannot be empty.'))
        return value

    def validate_parent_id(self, value):
        post = self.context.get('post')
        if value is not None and post is not None and value.post_id != post.id:
            raise serializers.ValidationError(_('Parent comment belongs to another post.'))
        return value


class PostLikeSerializer(serializers.Serializer):
    like_type = serializers.ChoiceField(choices=['LIKE', 'BOOKMARK'], required=False, default='LIKE')

    def to_internal_value(self, data):
        if hasattr(data, 'get') and isinstance(data.get('like_type'), str):
            data = {**data, 'like_type': data['like_type'].upper()}
        return super().to_internal_value(data)


class EmbedServiceSerializer(serializers.Serializer):
    service_id = serializers.IntegerField()
    embed_type = serializers.ChoiceField(choices=['CARD', 'INLINE'], required=False, default='CARD')
    position = serializers.IntegerField(required=False, min_value=0, default=0)
    custom_text = serializers.CharField(required=False, allow_blank=True, max_length=300, default='')


# ============================================================================
# Messaging
# ============================================================================

class MessageSerializer(serializers.ModelSerializer):
    sender = UserSummarySerializer(read_only=True)

    class Meta:
        model = Message
        fields = ['id', 'conversation_id', 'sender', 'content', 'message_type', 'attachment_url', 'created_at']
        read_only_fields = fields


class MessageCreateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Message
        fields = ['content', 'message_type', 'attachment_url']
        extra_kwargs = {
            'content': {'required': False, 'allow_blank': True},
            'message_type': {'required': False},
            'attachment_url': {'required': False},
        }

    def validate_message_type(self, value):
        if value == 'SYSTEM':
            raise serializers.ValidationError(_('System messages cannot be sent by users.'))
        return value

    def validate(self, attrs):
        content = (attrs.get('content') or '').strip()
        if not content and not attrs.get('attachment_url'):
            raise serializers.ValidationError({'content': _('Message content is required.')})
        if len(content) > Message.MAX_LENGTH:
            raise serializers.ValidationError({'content': _('Message is too long.')})
        attrs['content'] = content
        return attrs


class ConversationSerializer(serializers.ModelSerializer):
    """
    Conversation from the point of view of `context['user']`: other
    participants, last message and unread count.
    """

    participants = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()
    booking_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Conversation
        fields = [
            'id', 'conversation_type', 'title', 'participants', 'booking_id',
            'last_message', 'unread_count', 'last_activity_at', 'created_at',
        ]
        read_only_fields = fields

    def _membership(self, obj):
        user = self.context['user']
        for membership in obj.memberships.all():
            if membership.user_id == user.id:
                return membership
        return None

    def get_participants(self, obj):
        user = self.context['user']
        others = [m.user for m in obj.memberships.all() if m.user_id != user.id]
        return UserSummarySerializer(others, many=True, context=self.context).data

    def get_last_message(self, obj):
        message = obj.messages.select_related('sender').order_by('-created_at').first()
        if message is None:
            return None
        return MessageSerializer(message, context=self.context).data

    def get_unread_count(self, obj):
        user = self.context['user']
        membership = self._membership(obj)
        unread = obj.messages.exclude(sender=user)
        if membership is not None and membership.last_read_at:
            unread = unread.filter(created_at__gt=membership.last_read_at)
        return unread.count()


class ConversationCreateSerializer(serializers.Serializer):
    participant_ids = serializers.ListField(child=serializers.IntegerField(), min_length=1, max_length=50)
    conversation_type = serializers.ChoiceField(
        choices=[choice for choice, _label in Conversation.TYPE_CHOICES],
        required=False,
        default='DIRECT',
    )
    title = serializers.CharField(required=False, allow_blank=True, max_length=200, default='')
    message = serializers.CharField(required=False, allow_blank=True, max_length=Message.MAX_LENGTH, default='')
    booking_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        user = self.context['request'].user
        ids = sorted({pid for pid in attrs['participant_ids'] if pid != user.id})
        if not ids:
            raise serializers.ValidationError({'participant_ids': _('At least one other participant is required.')})

        found = list(User.objects.filter(id__in=ids, is_active=True))
        if len(found) != len(ids):
            raise serializers.ValidationError({'participant_ids': _('One or more participants do not exist.')})

        kind = attrs['conversation_type']
        if kind == 'DIRECT' and len(ids) != 1:
            raise serializers.ValidationError({
                'participant_ids': _('Direct conversations have exactly one other participant.')
            })
        if kind == 'GROUP' and not attrs.get('title', '').strip():
            raise serializers.ValidationError({'title': _('Group conversations require a title.')})

        attrs['participants'] = found
        return attrs


# ============================================================================
# KYC
# ============================================================================

class KycSubmitSerializer(serializers.ModelSerializer):
    """
    Identity verification submission (multipart).

    Validates the Taiwan ID format, minimum age and each image upload.
    """

    class Meta:
        model = KycSubmission
        fields = [
            'id_number', 'birth_date', 'address', 'emergency_contact',
            'id_front_image', 'id_back_image', 'selfie_image', 'criminal_record_image',
        ]
        extra_kwargs = {
            'criminal_record_image': {'required': False},
        }

    def validate_id_number(self, value):
        value = value.strip().upper()
        try:
            validate_taiwan_id_number(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def validate_birth_date(self, value):
        try:
            validate_adult_birth_date(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def _validate_image(self, value):
        try:
            validate_image_upload(value)
        except DjangoValidationError as e:
            raise _django_to_drf(e)
        return value

    def validate_id_front_image(self, value):
        return self._validate_image(value)

    def validate_id_back_image(self, value):
        return self._validate_image(value)

    def validate_selfie_image(self, value):
        return self._validate_image(value)

    def validate_criminal_record_image(self, value):
        return self._validate_image(value)

    def create(self, validated_data):
        validated_data['user'] = self.context['request'].user
        validated_data['status'] = 'PENDING'
        return KycSubmission.objects.create(**validated_data)


class KycSubmissionSerializer(serializers.ModelSerializer):
    """Administrator view; ID numbers are always masked."""

    user = UserSummarySerializer(read_only=True)
    email = serializers.EmailField(source='user.email', read_only=True)
    id_number = serializers.CharField(source='masked_id_number', read_only=True)
    documents = serializers.SerializerMethodField()
    reviewed_by = serializers.StringRelatedField(read_only=True)

    class Meta:
        model = KycSubmission
        fields = [
            'id', 'user', 'email', 'id_number', 'birth_date', 'address', 'emergency_contact',
            'documents', 'status', 'reviewed_by', 'reviewed_at', 'rejection_reason', 'created_at',
        ]
        read_only_fields = fields

    def get_documents(self, obj):
        return {
            'id_front': absolute_media_url(self.context, obj.id_front_image),
            'id_back': absolute_media_url(self.context, obj.id_back_image),
            'selfie': absolute_media_url(self.context, obj.selfie_image),
            'criminal_record': absolute_media_url(self.context, obj.criminal_record_image),
        }


class KycReviewSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['approve', 'reject'])
    rejection_reason = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')

    def validate(self, attrs):
        if attrs['action'] == 'reject' and not attrs['rejection_reason'].strip():
            raise serializers.ValidationError({
                'rejection_reason': _('A rejection reason is required.')
            })
        return attrs


# ============================================================================
# Notifications
# ============================================================================

class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            'id', 'notification_type', 'title', 'content', 'data',
            'action_url', 'is_read', 'read_at', 'created_at',
        ]
        read_only_fields = fields


class PushKeysSerializer(serializers.Serializer):
    p256dh = serializers.CharField(max_length=200)
    auth = serializers.CharField(max_length=100)


class PushSubscriptionSerializer(serializers.Serializer):
    """Browser PushSubscription JSON: {endpoint, keys: {p256dh, auth}}."""

    endpoint = serializers.URLField(max_length=500)
    keys = PushKeysSerializer(required=False)

    def validate(self, attrs):
        if self.context.get('require_keys', True) and not attrs.get('keys'):
            raise serializers.ValidationError({'keys': _('Subscription keys are required.')})
        return attrs


class AdminNotificationSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    content = serializers.CharField(max_length=5000)
    user_ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    role = serializers.ChoiceField(
        choices=['ALL'] + [role for role, _label in User.ROLE_CHOICES],
        required=False,
    )
    channels = serializers.MultipleChoiceField(choices=['in_app', 'email', 'push'], required=False)
    action_url = serializers.CharField(required=False, allow_blank=True, max_length=300, default='')

    def validate(self, attrs):
        if not attrs.get('user_ids') and not attrs.get('role'):
            raise serializers.ValidationError(_('Provide user_ids or a role to send to.'))
        attrs['channels'] = tuple(attrs.get('channels') or ('in_app',))
        return attrs


# ============================================================================
# Support
# ============================================================================

class SupportReplySerializer(serializers.ModelSerializer):
    author = UserSummarySerializer(read_only=True)

    class Meta:
        model = SupportReply
        fields = ['id', 'author', 'message', 'is_staff_reply', 'created_at']
        read_only_fields = ['id', 'author', 'is_staff_reply', 'created_at']

    def validate_message(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Message cannot be empty.'))
        return value


class SupportTicketSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    replies = SupportReplySerializer(many=True, read_only=True)

    class Meta:
        model = SupportTicket
        fields = [
            'id', 'user', 'subject', 'message', 'category', 'priority',
            'status', 'replies', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'user', 'status', 'replies', 'created_at', 'updated_at']
        extra_kwargs = {
            'category': {'required': False},
            'priority': {'required': False},
        }

    def validate_subject(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Subject cannot be empty.'))
        return value

    def validate_message(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError(_('Message cannot be empty.'))
        return value


class AdminTicketUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = SupportTicket
        fields = ['status', 'priority']
        extra_kwargs = {
            'status': {'required': False},
            'priority': {'required': False},
        }


# ============================================================================
# Admin
# ============================================================================

class AdminUserSerializer(serializers.ModelSerializer):
    avatar_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'phone_number', 'role', 'avatar_url', 'is_active',
            'is_email_verified', 'is_kyc_verified', 'is_criminal_record_verified',
            'permissions', 'avg_rating_as_guide', 'last_login', 'created_at',
        ]
        read_only_fields = fields

    def get_avatar_url(self, obj):
        return absolute_media_url(self.context, obj.avatar)


class AdminUserUpdateSerializer(serializers.ModelSerializer):
    permissions = serializers.ListField(child=serializers.CharField(max_length=50), required=False)

    class Meta:
        model = User
        fields = ['role', 'is_active', 'permissions']
        extra_kwargs = {
            'role': {'required': False},
            'is_active': {'required': False},
        }

    def validate(self, attrs):
        request = self.context['request']
        if self.instance is not None and self.instance.pk == request.user.pk:
            if attrs.get('role', self.instance.role) != User.ROLE_ADMIN or attrs.get('is_active') is False:
                raise serializers.ValidationError(_('You cannot demote or deactivate your own account.'))
        return attrs


class AdminServiceSerializer(ServiceListSerializer):
    class Meta(ServiceListSerializer.Meta):
        fields = ServiceListSerializer.Meta.fields + ['updated_at']
        read_only_fields = fields


class AdminServiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[choice for choice, _label in Service.STATUS_CHOICES])
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')


class AdminBookingUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[choice for choice, _label in Booking.STATUS_CHOICES])
    cancellation_reason = serializers.ChoiceField(
        choices=[choice for choice, _label in Booking.CANCELLATION_REASON_CHOICES],
        required=False,
        default='OTHER',
    )
    note = serializers.CharField(required=False, allow_blank=True, max_length=1000, default='')


class AdminReviewStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[choice for choice, _label in Review.STATUS_CHOICES])


class ActivityLogSerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()

    class Meta:
        model = ActivityLog
        fields = [
            'id', 'actor', 'action', 'entity_type', 'entity_id',
            'description', 'metadata', 'ip_address', 'created_at',
        ]
        read_only_fields = fields

    def get_actor(self, obj):
        if obj.actor is None:
            return None
        return {'id': obj.actor_id, 'email': obj.actor.email}
