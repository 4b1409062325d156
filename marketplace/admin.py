"""
Django admin configuration for the Guidee marketplace.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import (
    ActivityLog,
    Booking,
    Conversation,
    KycSubmission,
    Message,
    Notification,
    Payment,
    PaymentMethod,
    Post,
    PostComment,
    PushSubscription,
    Review,
    ReviewResponse,
    Service,
    SupportReply,
    SupportTicket,
    User,
    UserProfile,
)


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    extra = 0


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Extends Django's UserAdmin with roles and verification flags.
    """

    inlines = [UserProfileInline]

    list_display = [
        'email',
        'name',
        'role',
        'is_kyc_verified',
        'is_criminal_record_verified',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'role',
        'is_kyc_verified',
        'is_active',
        'is_staff',
        'preferred_language',
        'created_at',
    ]

    search_fields = ['email', 'username', 'name', 'phone_number']

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('name', 'email', 'phone_number', 'avatar', 'preferred_language')
        }),
        (_('Role & Verification'), {
            'fields': (
                'role',
                'is_email_verified',
                'is_kyc_verified',
                'is_criminal_record_verified',
                'avg_rating_as_guide',
            )
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'permissions',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Preferences'), {
            'fields': ('settings',),
            'classes': ('collapse',),
        }),
        (_('Important dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at')
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'name', 'role', 'password1', 'password2'),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined', 'avg_rating_as_guide']


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ['title', 'guide', 'category', 'location', 'price', 'status', 'average_rating', 'total_bookings']
    list_filter = ['status', 'category', 'created_at']
    search_fields = ['title', 'location', 'guide__email']
    readonly_fields = ['average_rating', 'total_reviews', 'total_bookings', 'created_at', 'updated_at']
    fieldsets = (
        (None, {'fields': ('guide', 'title', 'short_description', 'description', 'category', 'location')}),
        (_('Pricing & Capacity'), {'fields': ('price', 'currency', 'duration_hours', 'min_guests', 'max_guests')}),
        (_('Details'), {
            'fields': ('included', 'not_included', 'highlights', 'images', 'tags', 'cancellation_policy'),
            'classes': ('collapse',),
        }),
        (_('Status & Stats'), {
            'fields': ('status', 'average_rating', 'total_reviews', 'total_bookings', 'created_at', 'updated_at')
        }),
    )


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ['provider_payment_id', 'amount', 'status', 'refunded_amount', 'processed_at']
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['id', 'service', 'traveler', 'guide', 'booking_date', 'guests',
                    'total_amount', 'status', 'payment_status']
    list_filter = ['status', 'payment_status', 'booking_date']
    search_fields = ['traveler__email', 'guide__email', 'service__title']
    date_hierarchy = 'booking_date'
    inlines = [PaymentInline]
    readonly_fields = ['base_price', 'service_fee', 'total_amount', 'refund_amount',
                       'confirmed_at', 'cancelled_at', 'completed_at', 'created_at', 'updated_at']


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['provider_payment_id', 'booking', 'user', 'amount', 'status', 'refunded_amount', 'created_at']
    list_filter = ['status', 'payment_method', 'payment_provider']
    search_fields = ['provider_payment_id', 'user__email']


@admin.register(PaymentMethod)
class PaymentMethodAdmin(admin.ModelAdmin):
    list_display = ['user', 'method_type', 'brand', 'last4', 'is_default']
    list_filter = ['method_type', 'brand']
    search_fields = ['user__email']


class ReviewResponseInline(admin.StackedInline):
    model = ReviewResponse
    extra = 0


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ['id', 'service', 'reviewer', 'rating', 'status', 'helpful_count', 'created_at']
    list_filter = ['status', 'rating', 'is_anonymous']
    search_fields = ['comment', 'reviewer__email', 'service__title']
    inlines = [ReviewResponseInline]


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'author', 'author_type', 'category', 'status', 'like_count', 'view_count', 'published_at']
    list_filter = ['status', 'author_type', 'category']
    search_fields = ['title', 'content', 'author__email']


@admin.register(PostComment)
class PostCommentAdmin(admin.ModelAdmin):
    list_display = ['post', 'author', 'created_at']
    search_fields = ['content']


class MessageInline(admin.TabularInline):
    model = Message
    extra = 0
    readonly_fields = ['sender', 'content', 'message_type', 'created_at']


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ['id', 'conversation_type', 'title', 'created_by', 'last_activity_at']
    list_filter = ['conversation_type']
    inlines = [MessageInline]


@admin.register(KycSubmission)
class KycSubmissionAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'status', 'created_at', 'reviewed_by', 'reviewed_at']
    list_filter = ['status', 'created_at']
    search_fields = ['user__email']
    readonly_fields = ['reviewed_by', 'reviewed_at', 'created_at']


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'notification_type', 'title', 'is_read', 'created_at']
    list_filter = ['notification_type', 'is_read']
    search_fields = ['user__email', 'title']


@admin.register(PushSubscription)
class PushSubscriptionAdmin(admin.ModelAdmin):
    list_display = ['user', 'endpoint', 'created_at']
    search_fields = ['user__email']


class SupportReplyInline(admin.TabularInline):
    model = SupportReply
    extra = 0


@admin.register(SupportTicket)
class SupportTicketAdmin(admin.ModelAdmin):
    list_display = ['id', 'subject', 'user', 'category', 'priority', 'status', 'created_at']
    list_filter = ['status', 'category', 'priority']
    search_fields = ['subject', 'message', 'user__email']
    inlines = [SupportReplyInline]


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'actor', 'action', 'entity_type', 'entity_id', 'ip_address']
    list_filter = ['action', 'entity_type']
    search_fields = ['actor__email', 'description']
    readonly_fields = [f.name for f in ActivityLog._meta.fields]
