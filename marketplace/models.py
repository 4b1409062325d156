"""
Data models for the Guidee marketplace.
"""

from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings as django_settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .validators import (
    validate_phone_number,
    validate_image_upload,
    validate_taiwan_id_number,
)


MONEY_QUANTUM = Decimal('0.01')


def quantize_money(value):
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def service_fee_rate():
    return Decimal(str(getattr(django_settings, 'SERVICE_FEE_RATE', '0.05')))


def default_user_settings():
    return {
        'notifications': {
            'email': True,
            'push': True,
            'sms': False,
        },
        'newsletter': False,
        'currency': 'TWD',
        'privacy': {
            'profile_visibility': 'PUBLIC',
        },
    }


def user_avatar_upload_path(instance, filename):
    """
    Generate upload path for avatars.

    Path format: avatars/{user_id}/{filename}
    Uses 'temp' while the user has not been saved yet.
    """
    user_id = instance.id if instance.id else 'temp'
    return f'avatars/{user_id}/{filename}'


def kyc_document_upload_path(instance, filename):
    return f'kyc/{instance.user_id}/{filename}'


# ============================================================================
# Accounts
# ============================================================================

class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Additional fields:
    - email: Required, unique email address (stored lower-case)
    - name: Display name
    - role: ADMIN, GUIDE or CUSTOMER
    - avatar: Optional profile picture
    - is_kyc_verified / is_criminal_record_verified: KYC outcome flags
    - permissions: Platform permission codes granted to admins
    - settings: Notification and privacy preferences
    - avg_rating_as_guide: Average of published reviews received as a guide
    """

    ROLE_ADMIN = 'ADMIN'
    ROLE_GUIDE = 'GUIDE'
    ROLE_CUSTOMER = 'CUSTOMER'

    ROLE_CHOICES = [
        (ROLE_ADMIN, _('Administrator')),
        (ROLE_GUIDE, _('Guide')),
        (ROLE_CUSTOMER, _('Customer')),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    name = models.CharField(
        _('name'),
        max_length=100,
        blank=True,
        default='',
        help_text=_('Display name shown to other users.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in local or international format.')
    )

    role = models.CharField(
        _('role'),
        max_length=20,
        choices=ROLE_CHOICES,
        default=ROLE_CUSTOMER,
        help_text=_('Platform role of the user.')
    )

    avatar = models.ImageField(
        _('avatar'),
        upload_to=user_avatar_upload_path,
        blank=True,
        null=True,
        validators=[validate_image_upload],
        help_text=_('Optional. Max 5MB. Formats: JPEG, PNG, WebP.')
    )

    is_email_verified = models.BooleanField(_('email verified'), default=False)

    is_kyc_verified = models.BooleanField(
        _('KYC verified'),
        default=False,
        help_text=_('Set when an administrator approves an identity submission.')
    )

    is_criminal_record_verified = models.BooleanField(
        _('criminal record verified'),
        default=False,
        help_text=_('Set when an approved submission included a criminal record certificate.')
    )

    permissions = models.JSONField(
        _('platform permissions'),
        default=list,
        blank=True,
        help_text=_('Permission codes granted to administrators.')
    )

    settings = models.JSONField(
        _('settings'),
        default=default_user_settings,
        blank=True,
    )

    preferred_language = models.CharField(
        _('preferred language'),
        max_length=10,
        choices=django_settings.LANGUAGES,
        default=django_settings.LANGUAGE_CODE,
    )

    avg_rating_as_guide = models.DecimalField(
        _('average rating as guide'),
        max_digits=3,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00')), MaxValueValidator(Decimal('5.00'))],
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email']),
            models.Index(fields=['role']),
            models.Index(fields=['is_kyc_verified']),
        ]

    def __str__(self):
        return self.email or self.username

    @property
    def display_name(self):
        return self.name or self.get_full_name() or self.email.split('@')[0]

    def is_guide(self):
        return self.role == self.ROLE_GUIDE

    def is_customer(self):
        return self.role == self.ROLE_CUSTOMER

    def is_admin(self):
        return self.role == self.ROLE_ADMIN or self.is_superuser

    def has_platform_permission(self, code):
        """
        Check a platform permission code.

        Superusers implicitly hold every permission; other admins need the code
        in their `permissions` list.
        """
        if self.is_superuser:
            return True
        return self.is_admin() and code in (self.permissions or [])

    def notification_preference(self, channel):
        prefs = (self.settings or {}).get('notifications', {})
        return bool(prefs.get(channel, channel != 'sms'))

    def clean(self):
        super().clean()

        if self.email:
            self.email = self.email.lower()

        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

        if self.role not in dict(self.ROLE_CHOICES):
            raise ValidationError({
                'role': _('Invalid role.')
            })

    def save(self, *args, **kwargs):
        """
        Normalize email and keep role and staff flags consistent.

        Superusers are always administrators and administrators can always
        reach the Django admin.
        """
        if self.email:
            self.email = self.email.lower()

        if self.is_superuser:
            self.role = self.ROLE_ADMIN
        if self.role == self.ROLE_ADMIN:
            self.is_staff = True

        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'role' in update_fields:
            kwargs['update_fields'] = set(update_fields) | {'is_staff'}

        super().save(*args, **kwargs)


class UserProfile(models.Model):
    """
    Extended public profile, created automatically for every user.
    """

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='profile',
    )
    bio = models.TextField(_('bio'), blank=True, default='', max_length=2000)
    location = models.CharField(_('location'), max_length=200, blank=True, default='')
    languages = models.JSONField(_('languages'), default=list, blank=True)
    specialties = models.JSONField(_('specialties'), default=list, blank=True)
    experience_years = models.PositiveSmallIntegerField(
        _('experience years'),
        default=0,
        validators=[MaxValueValidator(80)],
    )
    certifications = models.JSONField(_('certifications'), default=list, blank=True)
    social_links = models.JSONField(_('social links'), default=dict, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user profile')
        verbose_name_plural = _('user profiles')

    def __str__(self):
        return f"Profile of {self.user.email}"


# ============================================================================
# Services
# ============================================================================

class Service(models.Model):
    """
    A bookable tour offered by a guide.

    Prices are per guest in the service currency; the platform service fee is
    added on top when a booking is made.
    """

    CATEGORY_CHOICES = [
        ('CULTURE', _('Culture')),
        ('FOOD', _('Food')),
        ('NATURE', _('Nature')),
        ('ADVENTURE', _('Adventure')),
        ('HISTORY', _('History')),
        ('NIGHTLIFE', _('Nightlife')),
        ('SHOPPING', _('Shopping')),
        ('PHOTOGRAPHY', _('Photography')),
        ('OTHER', _('Other')),
    ]

    STATUS_CHOICES = [
        ('DRAFT', _('Draft')),
        ('ACTIVE', _('Active')),
        ('INACTIVE', _('Inactive')),
        ('SUSPENDED', _('Suspended')),
    ]

    MAX_PRICE = Decimal('999999.99')

    guide = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='services',
        help_text=_('Guide offering the service')
    )

    title = models.CharField(_('title'), max_length=200)
    short_description = models.CharField(_('short description'), max_length=300, blank=True, default='')
    description = models.TextField(_('description'))

    category = models.CharField(
        _('category'),
        max_length=20,
        choices=CATEGORY_CHOICES,
        default='OTHER',
    )

    location = models.CharField(_('location'), max_length=200)

    duration_hours = models.PositiveSmallIntegerField(
        _('duration (hours)'),
        validators=[
            MinValueValidator(1, message=_('Duration must be at least 1 hour.')),
            MaxValueValidator(24, message=_('Duration cannot exceed 24 hours.')),
        ],
    )

    price = models.DecimalField(
        _('price per guest'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )

    currency = models.CharField(_('currency'), max_length=3, default='TWD')

    min_guests = models.PositiveSmallIntegerField(
        _('minimum guests'),
        default=1,
        validators=[MinValueValidator(1)],
    )

    max_guests = models.PositiveSmallIntegerField(
        _('maximum guests'),
        default=10,
        validators=[MinValueValidator(1), MaxValueValidator(50)],
    )

    included = models.JSONField(_('included'), default=list, blank=True)
    not_included = models.JSONField(_('not included'), default=list, blank=True)
    highlights = models.JSONField(_('highlights'), default=list, blank=True)
    images = models.JSONField(_('images'), default=list, blank=True)
    tags = models.JSONField(_('tags'), default=list, blank=True)

    cancellation_policy = models.TextField(_('cancellation policy'), blank=True, default='')

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='ACTIVE',
    )

    average_rating = models.DecimalField(
        _('average rating'),
        max_digits=3,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00')), MaxValueValidator(Decimal('5.00'))],
    )
    total_reviews = models.PositiveIntegerField(_('total reviews'), default=0)
    total_bookings = models.PositiveIntegerField(_('total bookings'), default=0)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('service')
        verbose_name_plural = _('services')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['guide']),
            models.Index(fields=['status']),
            models.Index(fields=['category']),
            models.Index(fields=['location']),
            models.Index(fields=['price']),
            models.Index(fields=['average_rating']),
        ]

    def __str__(self):
        return f"{self.title} by {self.guide.email}"

    def is_bookable(self):
        return self.status == 'ACTIVE'

    def clean(self):
        """
        Ensures:
        - Guide has the GUIDE or ADMIN role
        - Title and description are not blank
        - Price is below the platform ceiling
        - min_guests does not exceed max_guests
        """
        super().clean()

        if self.guide_id and self.guide.role not in (User.ROLE_GUIDE, User.ROLE_ADMIN):
            raise ValidationError({
                'guide': _('Only guides can offer services.')
            })

        if not self.title or not self.title.strip():
            raise ValidationError({
                'title': _('Title cannot be empty.')
            })

        if not self.description or not self.description.strip():
            raise ValidationError({
                'description': _('Description cannot be empty.')
            })

        if self.price is not None and self.price > self.MAX_PRICE:
            raise ValidationError({
                'price': _('Price must be less than 1,000,000.')
            })

        if self.min_guests and self.max_guests and self.min_guests > self.max_guests:
            raise ValidationError({
                'min_guests': _('Minimum guests cannot exceed maximum guests.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Bookings
# ============================================================================

# Traveler refund tiers: (minimum hours before start, refund percentage)
TRAVELER_REFUND_TIERS = (
    (48, Decimal('100')),
    (24, Decimal('50')),
)


def refund_percentage_for(hours_until_start, by_traveler=True):
    """
    Return the refund percentage for a cancellation.

    Guides and administrators always refund in full. Travelers follow the
    tier table; inside the last tier the cancellation is not allowed and
    None is returned.
    """
    if not by_traveler:
        return Decimal('100')
    for min_hours, percentage in TRAVELER_REFUND_TIERS:
        if hours_until_start >= min_hours:
            return percentage
    return None


def calculate_refund_amount(paid_amount, percentage):
    if not paid_amount or not percentage:
        return Decimal('0.00')
    return quantize_money(Decimal(paid_amount) * percentage / Decimal('100'))


class Booking(models.Model):
    """
    Reservation of a guide's service by a traveler.

    Fields:
    - service / traveler / guide: Parties to the booking
    - booking_date: Scheduled start (timezone-aware)
    - end_time: Start plus the service duration
    - base_price / service_fee / total_amount: Price breakdown
    - status: PENDING, CONFIRMED, COMPLETED or CANCELLED
    - payment_status: UNPAID, PAID, PARTIALLY_REFUNDED, REFUNDED or FAILED
    - cancellation_*: Who cancelled, why, and how much was refunded
    """

    STATUS_CHOICES = [
        ('PENDING', _('Pending')),
        ('CONFIRMED', _('Confirmed')),
        ('COMPLETED', _('Completed')),
        ('CANCELLED', _('Cancelled')),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('UNPAID', _('Unpaid')),
        ('PAID', _('Paid')),
        ('PARTIALLY_REFUNDED', _('Partially refunded')),
        ('REFUNDED', _('Refunded')),
        ('FAILED', _('Failed')),
    ]

    CANCELLATION_REASON_CHOICES = [
        ('USER_REQUEST', _('Requested by user')),
        ('GUIDE_UNAVAILABLE', _('Guide unavailable')),
        ('WEATHER', _('Weather conditions')),
        ('FORCE_MAJEURE', _('Force majeure')),
        ('SCHEDULE_CONFLICT', _('Schedule conflict')),
        ('HEALTH_SAFETY', _('Health or safety concern')),
        ('QUALITY_ISSUE', _('Quality issue')),
        ('OTHER', _('Other')),
    ]

    VALID_TRANSITIONS = {
        'PENDING': ['CONFIRMED', 'CANCELLED'],
        'CONFIRMED': ['COMPLETED', 'CANCELLED'],
        'COMPLETED': [],
        'CANCELLED': [],
    }

    ACTIVE_STATUSES = ('PENDING', 'CONFIRMED')

    service = models.ForeignKey(
        Service,
        on_delete=models.PROTECT,
        related_name='bookings',
        help_text=_('Service being booked')
    )

    traveler = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='traveler_bookings',
        help_text=_('Traveler making the booking')
    )

    guide = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='guide_bookings',
        help_text=_('Guide delivering the service')
    )

    booking_date = models.DateTimeField(
        _('booking date'),
        help_text=_('Scheduled start of the tour')
    )

    end_time = models.DateTimeField(_('end time'), null=True, blank=True)

    guests = models.PositiveSmallIntegerField(
        _('guests'),
        default=1,
        validators=[MinValueValidator(1)],
    )

    duration_hours = models.PositiveSmallIntegerField(_('duration (hours)'), default=1)

    base_price = models.DecimalField(_('base price'), max_digits=12, decimal_places=2)
    service_fee = models.DecimalField(_('service fee'), max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(_('total amount'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('currency'), max_length=3, default='TWD')

    special_requests = models.TextField(_('special requests'), blank=True, default='', max_length=1000)
    contact_info = models.JSONField(_('contact info'), default=dict, blank=True)

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='PENDING',
    )

    payment_status = models.CharField(
        _('payment status'),
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default='UNPAID',
    )

    cancellation_reason = models.CharField(
        _('cancellation reason'),
        max_length=30,
        choices=CANCELLATION_REASON_CHOICES,
        blank=True,
        default='',
    )
    cancellation_note = models.TextField(_('cancellation note'), blank=True, default='')
    cancelled_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    refund_amount = models.DecimalField(
        _('refund amount'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
    )

    confirmed_at = models.DateTimeField(_('confirmed at'), null=True, blank=True)
    cancelled_at = models.DateTimeField(_('cancelled at'), null=True, blank=True)
    completed_at = models.DateTimeField(_('completed at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('booking')
        verbose_name_plural = _('bookings')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['traveler']),
            models.Index(fields=['guide']),
            models.Index(fields=['service']),
            models.Index(fields=['status']),
            models.Index(fields=['payment_status']),
            models.Index(fields=['booking_date']),
        ]

    def __str__(self):
        return f"Booking #{self.pk} by {self.traveler.email} - {self.service.title}"

    @classmethod
    def price_breakdown(cls, service, guests):
        """
        Compute base price, service fee and total for a number of guests.

        Returns:
            tuple: (base_price, service_fee, total_amount)
        """
        base = quantize_money(service.price * guests)
        fee = quantize_money(base * service_fee_rate())
        return base, fee, base + fee

    def hours_until_start(self, current_time=None):
        current_time = current_time or timezone.now()
        return (self.booking_date - current_time).total_seconds() / 3600

    def paid_amount(self):
        """Amount captured by completed payments, net of earlier refunds."""
        totals = self.payments.filter(
            status__in=['COMPLETED', 'PARTIALLY_REFUNDED']
        ).aggregate(captured=Sum('amount'), refunded=Sum('refunded_amount'))
        captured = totals['captured'] or Decimal('0.00')
        refunded = totals['refunded'] or Decimal('0.00')
        return quantize_money(captured - refunded)

    def is_participant(self, user):
        return user.id in (self.traveler_id, self.guide_id)

    def get_refund_quote(self, user, current_time=None):
        """
        Describe what cancelling now would mean for `user`.

        Returns:
            dict: allowed, message, hours_until_start, refund_percentage,
            paid_amount, refund_amount
        """
        hours = self.hours_until_start(current_time)
        by_traveler = user.id == self.traveler_id and not user.is_admin()
        percentage = refund_percentage_for(hours, by_traveler=by_traveler)
        paid = self.paid_amount()

        quote = {
            'allowed': True,
            'message': None,
            'hours_until_start': round(hours, 1),
            'refund_percentage': percentage or Decimal('0'),
            'paid_amount': paid,
            'refund_amount': calculate_refund_amount(paid, percentage),
        }

        if self.status not in self.ACTIVE_STATUSES:
            quote['allowed'] = False
            quote['message'] = str(_('Only pending or confirmed bookings can be cancelled.'))
        elif percentage is None:
            quote['allowed'] = False
            quote['message'] = str(_('Bookings cannot be cancelled less than 24 hours before the start time.'))

        return quote

    def can_transition_to(self, new_status, current_time=None):
        """
        Validate if booking can transition to new status.

        Valid transitions:
        - PENDING -> CONFIRMED, CANCELLED
        - CONFIRMED -> COMPLETED (only once the tour has started), CANCELLED
        - COMPLETED, CANCELLED -> terminal

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if current_time is None:
            current_time = timezone.now()

        current_status = self.status

        if current_status == new_status:
            return True, None

        if current_status == 'COMPLETED':
            return False, str(_('Cannot modify a completed booking.'))

        if current_status == 'CANCELLED':
            return False, str(_('Cannot modify a cancelled booking.'))

        if current_status == 'PENDING' and new_status == 'COMPLETED':
            return False, str(_('Cannot transition from pending to completed. Must confirm first.'))

        if new_status not in self.VALID_TRANSITIONS.get(current_status, []):
            return False, str(_('Invalid status transition from %(old)s to %(new)s.') % {
                'old': current_status, 'new': new_status,
            })

        if new_status == 'COMPLETED' and current_time < self.booking_date:
            return False, str(_('Cannot complete booking before the scheduled start time.'))

        return True, None

    def clean(self):
        """
        Ensures:
        - Traveler and guide are different users
        - Guide matches the service's guide
        - Guest count is within the service limits (on creation)
        - Amounts are consistent and positive
        - Status transitions follow the state machine
        """
        super().clean()

        if self.traveler_id and self.guide_id and self.traveler_id == self.guide_id:
            raise ValidationError({
                'traveler': _('You cannot book your own service.')
            })

        if self.service_id and self.guide_id and self.service.guide_id != self.guide_id:
            raise ValidationError({
                'guide': _('Booking guide must match the service guide.')
            })

        if self.pk is None and self.service_id and self.guests:
            if not self.service.min_guests <= self.guests <= self.service.max_guests:
                raise ValidationError({
                    'guests': _('Number of guests must be between %(min)s and %(max)s.') % {
                        'min': self.service.min_guests, 'max': self.service.max_guests,
                    }
                })

        if self.total_amount is not None and self.total_amount <= 0:
            raise ValidationError({
                'total_amount': _('Total amount must be greater than 0.')
            })

        if self.pk is not None:
            try:
                old_instance = Booking.objects.get(pk=self.pk)
            except Booking.DoesNotExist:
                old_instance = None
            if old_instance is not None and old_instance.status != self.status:
                valid, message = old_instance.can_transition_to(self.status)
                if not valid:
                    raise ValidationError({'status': message})

    def save(self, *args, **kwargs):
        if self.booking_date and self.duration_hours:
            self.end_time = self.booking_date + timedelta(hours=self.duration_hours)
        self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Payments
# ============================================================================

class Payment(models.Model):
    """
    A payment attempt against a booking.

    The gateway is a deterministic mock; `provider_payment_id` holds the
    generated transaction id.
    """

    METHOD_CHOICES = [
        ('CREDIT_CARD', _('Credit card')),
        ('DEBIT_CARD', _('Debit card')),
        ('BANK_TRANSFER', _('Bank transfer')),
        ('LINE_PAY', _('LINE Pay')),
        ('APPLE_PAY', _('Apple Pay')),
        ('GOOGLE_PAY', _('Google Pay')),
    ]

    PROVIDER_CHOICES = [
        ('MOCK', _('Mock gateway')),
        ('STRIPE', _('Stripe')),
        ('BANK', _('Bank')),
    ]

    STATUS_CHOICES = [
        ('PENDING', _('Pending')),
        ('COMPLETED', _('Completed')),
        ('FAILED', _('Failed')),
        ('PARTIALLY_REFUNDED', _('Partially refunded')),
        ('REFUNDED', _('Refunded')),
    ]

    VALID_TRANSITIONS = {
        'PENDING': ['COMPLETED', 'FAILED'],
        'COMPLETED': ['PARTIALLY_REFUNDED', 'REFUNDED'],
        'PARTIALLY_REFUNDED': ['PARTIALLY_REFUNDED', 'REFUNDED'],
        'FAILED': [],
        'REFUNDED': [],
    }

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='payments')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payments')

    payment_method = models.CharField(_('payment method'), max_length=20, choices=METHOD_CHOICES)
    payment_provider = models.CharField(_('payment provider'), max_length=20, choices=PROVIDER_CHOICES, default='MOCK')
    provider_payment_id = models.CharField(_('provider payment id'), max_length=100, unique=True)

    amount = models.DecimalField(_('amount'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('currency'), max_length=3, default='TWD')
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='PENDING')
    refunded_amount = models.DecimalField(
        _('refunded amount'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    failure_reason = models.CharField(_('failure reason'), max_length=200, blank=True, default='')
    metadata = models.JSONField(_('metadata'), default=dict, blank=True)

    processed_at = models.DateTimeField(_('processed at'), null=True, blank=True)
    refunded_at = models.DateTimeField(_('refunded at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('payment')
        verbose_name_plural = _('payments')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['booking']),
            models.Index(fields=['user']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"Payment {self.provider_payment_id} ({self.status}) - {self.amount} {self.currency}"

    @property
    def refundable_amount(self):
        return quantize_money(self.amount - self.refunded_amount)

    def refund(self, amount):
        """
        Refund part or all of a completed payment.

        Returns:
            Decimal: The amount actually refunded (capped at what is left)
        """
        amount = min(quantize_money(amount), self.refundable_amount)
        if amount <= 0:
            return Decimal('0.00')

        self.refunded_amount = quantize_money(self.refunded_amount + amount)
        self.status = 'REFUNDED' if self.refunded_amount >= self.amount else 'PARTIALLY_REFUNDED'
        self.refunded_at = timezone.now()
        self.save()
        return amount

    def clean(self):
        super().clean()

        if self.amount is not None and self.amount <= 0:
            raise ValidationError({
                'amount': _('Payment amount must be greater than 0.')
            })

        if self.refunded_amount is not None and self.amount is not None and self.refunded_amount > self.amount:
            raise ValidationError({
                'refunded_amount': _('Refunded amount cannot exceed the payment amount.')
            })

        if self.pk is not None:
            try:
                old_status = Payment.objects.values_list('status', flat=True).get(pk=self.pk)
            except Payment.DoesNotExist:
                old_status = None
            if old_status and old_status != self.status:
                if self.status not in self.VALID_TRANSITIONS.get(old_status, []):
                    raise ValidationError({
                        'status': _('Invalid payment status transition from %(old)s to %(new)s.') % {
                            'old': old_status, 'new': self.status,
                        }
                    })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class PaymentMethod(models.Model):
    """
    A saved payment method. Only the brand and last four digits of a card
    are stored.
    """

    TYPE_CHOICES = [
        ('CREDIT_CARD', _('Credit card')),
        ('DEBIT_CARD', _('Debit card')),
        ('LINE_PAY', _('LINE Pay')),
        ('APPLE_PAY', _('Apple Pay')),
        ('GOOGLE_PAY', _('Google Pay')),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payment_methods')
    method_type = models.CharField(_('type'), max_length=20, choices=TYPE_CHOICES, default='CREDIT_CARD')
    brand = models.CharField(_('brand'), max_length=20, blank=True, default='')
    last4 = models.CharField(_('last four digits'), max_length=4, blank=True, default='')
    holder_name = models.CharField(_('card holder'), max_length=100, blank=True, default='')
    expiry_month = models.PositiveSmallIntegerField(_('expiry month'), null=True, blank=True)
    expiry_year = models.PositiveSmallIntegerField(_('expiry year'), null=True, blank=True)
    is_default = models.BooleanField(_('default'), default=False)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('payment method')
        verbose_name_plural = _('payment methods')
        ordering = ['-is_default', '-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['user'],
                condition=Q(is_default=True),
                name='one_default_payment_method_per_user',
            ),
        ]

    def __str__(self):
        if self.last4:
            return f"{self.brand or self.method_type} ****{self.last4}"
        return self.method_type


# ============================================================================
# Reviews
# ============================================================================

class Review(models.Model):
    """
    A traveler's review of a completed booking.

    Only PUBLISHED reviews count towards service and guide ratings.
    """

    STATUS_CHOICES = [
        ('PUBLISHED', _('Published')),
        ('HIDDEN', _('Hidden')),
    ]

    EDIT_WINDOW_DAYS = 30

    booking = models.OneToOneField(
        Booking,
        on_delete=models.CASCADE,
        related_name='review',
        help_text=_('Booking being reviewed (one review per booking)')
    )
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='reviews')
    guide = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reviews_received')
    reviewer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='reviews_given')

    rating = models.PositiveSmallIntegerField(
        _('rating'),
        validators=[
            MinValueValidator(1, message=_('Rating must be at least 1.')),
            MaxValueValidator(5, message=_('Rating must be at most 5.'))
        ],
        help_text=_('Rating from 1 to 5 stars')
    )
    comment = models.TextField(_('comment'), max_length=2000)
    pros = models.JSONField(_('pros'), default=list, blank=True)
    cons = models.JSONField(_('cons'), default=list, blank=True)
    tags = models.JSONField(_('tags'), default=list, blank=True)
    photos = models.JSONField(_('photos'), default=list, blank=True)

    is_anonymous = models.BooleanField(_('anonymous'), default=False)
    is_verified = models.BooleanField(
        _('verified'),
        default=True,
        help_text=_('Written for a booking that actually took place')
    )
    helpful_count = models.PositiveIntegerField(_('helpful count'), default=0)
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='PUBLISHED')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('review')
        verbose_name_plural = _('reviews')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['service']),
            models.Index(fields=['guide']),
            models.Index(fields=['reviewer']),
            models.Index(fields=['rating']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"Review by {self.reviewer.email} for {self.service.title} - {self.rating}★"

    def is_editable(self, current_time=None):
        current_time = current_time or timezone.now()
        return current_time - self.created_at <= timedelta(days=self.EDIT_WINDOW_DAYS)

    def clean(self):
        """
        Ensures:
        - Booking is completed
        - Reviewer is the booking's traveler
        - Service and guide match the booking
        - Comment is not blank
        """
        super().clean()

        if self.booking_id:
            booking = self.booking
            if booking.status != 'COMPLETED':
                raise ValidationError({
                    'booking': _('Only completed bookings can be reviewed.')
                })
            if self.reviewer_id and self.reviewer_id != booking.traveler_id:
                raise ValidationError({
                    'reviewer': _('Only the traveler of the booking can review it.')
                })
            if self.service_id and self.service_id != booking.service_id:
                raise ValidationError({
                    'service': _('Review service must match the booking.')
                })
            if self.guide_id and self.guide_id != booking.guide_id:
                raise ValidationError({
                    'guide': _('Review guide must match the booking.')
                })

        if not self.comment or not self.comment.strip():
            raise ValidationError({
                'comment': _('Comment cannot be empty.')
            })

    def save(self, *args, **kwargs):
        """
        Validate business rules on creation only.

        full_clean() is not called so the one-review-per-booking constraint
        surfaces as an IntegrityError under concurrent submissions.
        """
        if self.booking_id and not self.service_id:
            self.service_id = self.booking.service_id
        if self.booking_id and not self.guide_id:
            self.guide_id = self.booking.guide_id
        if not self.pk:
            self.clean()
        super().save(*args, **kwargs)


class ReviewHelpful(models.Model):
    review = models.ForeignKey(Review, on_delete=models.CASCADE, related_name='helpful_marks')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='helpful_marks')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('helpful mark')
        verbose_name_plural = _('helpful marks')
        constraints = [
            models.UniqueConstraint(fields=['review', 'user'], name='unique_helpful_mark_per_user'),
        ]


class ReviewResponse(models.Model):
    """The guide's public reply to a review."""

    review = models.OneToOneField(Review, on_delete=models.CASCADE, related_name='response')
    guide = models.ForeignKey(User, on_delete=models.CASCADE, related_name='review_responses')
    content = models.TextField(_('content'), max_length=2000)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('review response')
        verbose_name_plural = _('review responses')

    def __str__(self):
        return f"Response to review #{self.review_id}"


# ============================================================================
# Posts
# ============================================================================

class Post(models.Model):
    """
    A travel story or tip in the social feed. Posts can embed services.
    """

    AUTHOR_TYPE_CHOICES = [
        ('GUIDE', _('Guide')),
        ('CONSUMER', _('Consumer')),
    ]

    STATUS_CHOICES = [
        ('DRAFT', _('Draft')),
        ('PUBLISHED', _('Published')),
        ('ARCHIVED', _('Archived')),
    ]

    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name='posts')
    author_type = models.CharField(_('author type'), max_length=20, choices=AUTHOR_TYPE_CHOICES, default='CONSUMER')
    title = models.CharField(_('title'), max_length=200)
    content = models.TextField(_('content'))
    cover_image = models.URLField(_('cover image'), max_length=500, blank=True, default='')
    category = models.CharField(_('category'), max_length=50)
    tags = models.JSONField(_('tags'), default=list, blank=True)
    location = models.CharField(_('location'), max_length=200, blank=True, default='')
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='PUBLISHED')

    view_count = models.PositiveIntegerField(_('views'), default=0)
    like_count = models.PositiveIntegerField(_('likes'), default=0)
    bookmark_count = models.PositiveIntegerField(_('bookmarks'), default=0)
    comment_count = models.PositiveIntegerField(_('comments'), default=0)
    share_count = models.PositiveIntegerField(_('shares'), default=0)

    services = models.ManyToManyField(
        Service,
        through='PostServiceEmbed',
        related_name='posts',
        blank=True,
    )

    published_at = models.DateTimeField(_('published at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('post')
        verbose_name_plural = _('posts')
        ordering = ['-published_at', '-created_at']
        indexes = [
            models.Index(fields=['author']),
            models.Index(fields=['status']),
            models.Index(fields=['category']),
            models.Index(fields=['published_at']),
        ]

    def __str__(self):
        return self.title

    def save(self, *args, **kwargs):
        if self.category:
            self.category = self.category.strip().lower()
        if self.status == 'PUBLISHED' and self.published_at is None:
            self.published_at = timezone.now()
        super().save(*args, **kwargs)


class PostComment(models.Model):
    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='comments')
    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name='post_comments')
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
    )
    content = models.TextField(_('content'), max_length=2000)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('post comment')
        verbose_name_plural = _('post comments')
        ordering = ['created_at']


class PostLike(models.Model):
    TYPE_CHOICES = [
        ('LIKE', _('Like')),
        ('BOOKMARK', _('Bookmark')),
    ]

    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='likes')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='post_likes')
    like_type = models.CharField(_('type'), max_length=10, choices=TYPE_CHOICES, default='LIKE')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('post like')
        verbose_name_plural = _('post likes')
        constraints = [
            models.UniqueConstraint(fields=['post', 'user', 'like_type'], name='unique_post_like_per_type'),
        ]


class PostServiceEmbed(models.Model):
    EMBED_TYPE_CHOICES = [
        ('CARD', _('Card')),
        ('INLINE', _('Inline')),
    ]

    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name='service_embeds')
    service = models.ForeignKey(Service, on_delete=models.CASCADE, related_name='post_embeds')
    position = models.PositiveSmallIntegerField(_('position'), default=0)
    embed_type = models.CharField(_('embed type'), max_length=10, choices=EMBED_TYPE_CHOICES, default='CARD')
    custom_text = models.CharField(_('custom text'), max_length=300, blank=True, default='')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('embedded service')
        verbose_name_plural = _('embedded services')
        ordering = ['position', 'created_at']
        constraints = [
            models.UniqueConstraint(fields=['post', 'service'], name='unique_service_per_post'),
        ]


# ============================================================================
# Messaging
# ============================================================================

class Conversation(models.Model):
    TYPE_CHOICES = [
        ('DIRECT', _('Direct')),
        ('GROUP', _('Group')),
        ('CUSTOMER_SUPPORT', _('Customer support')),
    ]

    conversation_type = models.CharField(_('type'), max_length=20, choices=TYPE_CHOICES, default='DIRECT')
    title = models.CharField(_('title'), max_length=200, blank=True, default='')
    participants = models.ManyToManyField(
        User,
        through='ConversationParticipant',
        related_name='conversations',
    )
    booking = models.ForeignKey(
        Booking,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='conversations',
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='+',
    )
    last_activity_at = models.DateTimeField(_('last activity'), default=timezone.now)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('conversation')
        verbose_name_plural = _('conversations')
        ordering = ['-last_activity_at']

    def __str__(self):
        return self.title or f"{self.conversation_type} #{self.pk}"

    def has_participant(self, user):
        return self.memberships.filter(user=user).exists()


class ConversationParticipant(models.Model):
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='conversation_memberships')
    last_read_at = models.DateTimeField(_('last read at'), null=True, blank=True)
    joined_at = models.DateTimeField(_('joined at'), auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['conversation', 'user'], name='unique_conversation_participant'),
        ]


class Message(models.Model):
    TYPE_CHOICES = [
        ('TEXT', _('Text')),
        ('IMAGE', _('Image')),
        ('FILE', _('File')),
        ('SYSTEM', _('System')),
    ]

    MAX_LENGTH = 5000

    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name='sent_messages')
    content = models.TextField(_('content'), blank=True, default='', max_length=MAX_LENGTH)
    message_type = models.CharField(_('type'), max_length=10, choices=TYPE_CHOICES, default='TEXT')
    attachment_url = models.URLField(_('attachment'), max_length=500, blank=True, default='')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('message')
        verbose_name_plural = _('messages')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['conversation', 'created_at']),
        ]


# ============================================================================
# KYC
# ============================================================================

class KycSubmission(models.Model):
    """
    Identity verification request reviewed by administrators.
    """

    STATUS_CHOICES = [
        ('PENDING', _('Pending')),
        ('APPROVED', _('Approved')),
        ('REJECTED', _('Rejected')),
    ]

    ESTIMATED_REVIEW_TIME = '24-48 hours'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='kyc_submissions')
    id_number = models.CharField(_('ID number'), max_length=10, validators=[validate_taiwan_id_number])
    birth_date = models.DateField(_('birth date'))
    address = models.CharField(_('address'), max_length=300)
    emergency_contact = models.CharField(_('emergency contact'), max_length=200)
    id_front_image = models.ImageField(_('ID front'), upload_to=kyc_document_upload_path, validators=[validate_image_upload])
    id_back_image = models.ImageField(_('ID back'), upload_to=kyc_document_upload_path, validators=[validate_image_upload])
    selfie_image = models.ImageField(_('selfie'), upload_to=kyc_document_upload_path, validators=[validate_image_upload])
    criminal_record_image = models.ImageField(
        _('criminal record certificate'),
        upload_to=kyc_document_upload_path,
        blank=True,
        null=True,
        validators=[validate_image_upload],
    )
    status = models.CharField(_('status'), max_length=20, choices=STATUS_CHOICES, default='PENDING')
    reviewed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='kyc_reviews',
    )
    reviewed_at = models.DateTimeField(_('reviewed at'), null=True, blank=True)
    rejection_reason = models.TextField(_('rejection reason'), blank=True, default='')
    created_at = models.DateTimeField(_('submitted at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('KYC submission')
        verbose_name_plural = _('KYC submissions')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"KYC #{self.pk} for {self.user.email} ({self.status})"

    @property
    def masked_id_number(self):
        if not self.id_number:
            return ''
        return f"{self.id_number[:2]}{'*' * 5}{self.id_number[-3:]}"

    @property
    def has_criminal_record_certificate(self):
        return bool(self.criminal_record_image)


# ============================================================================
# Notifications
# ============================================================================

class Notification(models.Model):
    TYPE_CHOICES = [
        ('BOOKING_CREATED', _('Booking created')),
        ('BOOKING_CONFIRMED', _('Booking confirmed')),
        ('BOOKING_CANCELLED', _('Booking cancelled')),
        ('BOOKING_COMPLETED', _('Booking completed')),
        ('PAYMENT_COMPLETED', _('Payment completed')),
        ('MESSAGE_RECEIVED', _('Message received')),
        ('REVIEW_RECEIVED', _('Review received')),
        ('KYC_APPROVED', _('KYC approved')),
        ('KYC_REJECTED', _('KYC rejected')),
        ('SUPPORT_REPLY', _('Support reply')),
        ('POST_COMMENT', _('Post comment')),
        ('SYSTEM', _('System')),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    notification_type = models.CharField(_('type'), max_length=30, choices=TYPE_CHOICES)
    title = models.CharField(_('title'), max_length=200)
    content = models.TextField(_('content'))
    data = models.JSONField(_('data'), default=dict, blank=True)
    action_url = models.CharField(_('action URL'), max_length=300, blank=True, default='')
    is_read = models.BooleanField(_('read'), default=False)
    read_at = models.DateTimeField(_('read at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('notification')
        verbose_name_plural = _('notifications')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read']),
            models.Index(fields=['notification_type']),
        ]

    def __str__(self):
        return f"{self.notification_type} for {self.user.email}"

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
            self.save(update_fields=['is_read', 'read_at'])


class PushSubscription(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='push_subscriptions')
    endpoint = models.URLField(_('endpoint'), max_length=500, unique=True)
    p256dh = models.CharField(_('p256dh key'), max_length=200)
    auth = models.CharField(_('auth key'), max_length=100)
    user_agent = models.CharField(_('user agent'), max_length=300, blank=True, default='')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('push subscription')
        verbose_name_plural = _('push subscriptions')


# ============================================================================
# Support
# ============================================================================

class SupportTicket(models.Model):
    CATEGORY_CHOICES = [
        ('GENERAL', _('General')),
        ('BOOKING', _('Booking')),
        ('PAYMENT', _('Payment')),
        ('ACCOUNT', _('Account')),
        ('TECHNICAL', _('Technical')),
    ]

    PRIORITY_CHOICES = [
        ('LOW', _('Low')),
        ('NORMAL', _('Normal')),
        ('HIGH', _('High')),
        ('URGENT', _('Urgent')),
    ]

    STATUS_CHOICES = [
        ('SENT', _('Sent')),
        ('READ', _('Read')),
        ('REPLIED', _('Replied')),
        ('CLOSED', _('Closed')),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='support_tickets')
    subject = models.CharField(_('subject'), max_length=200)
    message = models.TextField(_('message'), max_length=5000)
    category = models.CharField(_('category'), max_length=20, choices=CATEGORY_CHOICES, default='GENERAL')
    priority = models.CharField(_('priority'), max_length=10, choices=PRIORITY_CHOICES, default='NORMAL')
    status = models.CharField(_('status'), max_length=10, choices=STATUS_CHOICES, default='SENT')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('support ticket')
        verbose_name_plural = _('support tickets')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"#{self.pk} {self.subject}"


class SupportReply(models.Model):
    ticket = models.ForeignKey(SupportTicket, on_delete=models.CASCADE, related_name='replies')
    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name='support_replies')
    message = models.TextField(_('message'), max_length=5000)
    is_staff_reply = models.BooleanField(_('staff reply'), default=False)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('support reply')
        verbose_name_plural = _('support replies')
        ordering = ['created_at']


# ============================================================================
# Audit
# ============================================================================

class ActivityLog(models.Model):
    """Append-only record of administrative and security-relevant actions."""

    actor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='activity_logs',
    )
    action = models.CharField(_('action'), max_length=50)
    entity_type = models.CharField(_('entity type'), max_length=50, blank=True, default='')
    entity_id = models.CharField(_('entity id'), max_length=50, blank=True, default='')
    description = models.CharField(_('description'), max_length=300, blank=True, default='')
    metadata = models.JSONField(_('metadata'), default=dict, blank=True)
    ip_address = models.GenericIPAddressField(_('IP address'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('activity log')
        verbose_name_plural = _('activity logs')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['action']),
            models.Index(fields=['entity_type', 'entity_id']),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}#{self.entity_id}"
