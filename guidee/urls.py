"""
URL configuration for the Guidee API.

All API endpoints live under /api/. The Django admin is mounted at /admin/.
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenVerifyView

from marketplace.views import (
    AdminActivityLogView,
    AdminBookingDetailView,
    AdminBookingListView,
    AdminDashboardView,
    AdminGuideListView,
    AdminKycReviewView,
    AdminKycSubmissionListView,
    AdminLoginView,
    AdminNotificationView,
    AdminReviewDetailView,
    AdminServiceDetailView,
    AdminServiceListView,
    AdminSupportTicketDetailView,
    AdminSupportTicketListView,
    AdminUserDetailView,
    AdminUserListView,
    BookingCancelView,
    BookingCompleteView,
    BookingConfirmView,
    BookingDetailView,
    BookingListCreateView,
    BookingReviewCreateView,
    ConversationAttachmentView,
    ConversationDetailView,
    ConversationListCreateView,
    ConversationMessagesView,
    GuideDetailView,
    GuideListView,
    HealthView,
    KycStatusView,
    KycSubmitView,
    LanguageView,
    LoginView,
    LogoutView,
    MeView,
    NotificationListView,
    NotificationReadAllView,
    NotificationReadView,
    PaymentCreateView,
    PaymentMethodDetailView,
    PaymentMethodListView,
    PostCommentListCreateView,
    PostDetailView,
    PostEmbedServiceDeleteView,
    PostEmbedServiceView,
    PostFeedView,
    PostLikeToggleView,
    PostListCreateView,
    PostMediaUploadView,
    PostShareView,
    PushSubscribeView,
    PushUnsubscribeView,
    RefundQuoteView,
    RegisterView,
    ReviewDetailView,
    ReviewHelpfulView,
    ReviewResponseCreateView,
    ServiceAvailabilityView,
    ServiceDetailView,
    ServiceListCreateView,
    ServiceReviewsView,
    ServiceSearchView,
    ServiceSuggestionsView,
    SupportReplyCreateView,
    SupportTicketDetailView,
    SupportTicketListCreateView,
    TokenRefreshView,
    TransactionListView,
    UserProfileView,
    UserReviewListView,
    UserSettingsView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/register/', RegisterView.as_view(), name='auth_register'),
    path('api/auth/login/', LoginView.as_view(), name='auth_login'),
    path('api/auth/admin/login/', AdminLoginView.as_view(), name='auth_admin_login'),
    path('api/auth/logout/', LogoutView.as_view(), name='auth_logout'),
    path('api/auth/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/verify/', TokenVerifyView.as_view(), name='token_verify'),
    path('api/auth/me/', MeView.as_view(), name='auth_me'),

    # Profile and settings endpoints
    path('api/users/profile/', UserProfileView.as_view(), name='user_profile'),
    path('api/settings/', UserSettingsView.as_view(), name='user_settings'),
    path('api/settings/language/', LanguageView.as_view(), name='user_language'),
    path('api/settings/payment-methods/', PaymentMethodListView.as_view(), name='payment_method_list'),
    path('api/settings/payment-methods/<int:pk>/', PaymentMethodDetailView.as_view(), name='payment_method_detail'),
    path('api/settings/transactions/', TransactionListView.as_view(), name='transaction_list'),

    # Guides
    path('api/guides/', GuideListView.as_view(), name='guide_list'),
    path('api/guides/<int:pk>/', GuideDetailView.as_view(), name='guide_detail'),
    path('api/health/', HealthView.as_view(), name='health'),

    # Service endpoints
    path('api/services/', ServiceListCreateView.as_view(), name='service_list'),
    path('api/services/search/', ServiceSearchView.as_view(), name='service_search'),
    path('api/services/suggestions/', ServiceSuggestionsView.as_view(), name='service_suggestions'),
    path('api/services/<int:pk>/', ServiceDetailView.as_view(), name='service_detail'),
    path('api/services/<int:pk>/availability/', ServiceAvailabilityView.as_view(), name='service_availability'),
    path('api/services/<int:pk>/reviews/', ServiceReviewsView.as_view(), name='service_reviews'),

    # Booking endpoints
    path('api/bookings/', BookingListCreateView.as_view(), name='booking_list'),
    path('api/bookings/payment/', PaymentCreateView.as_view(), name='booking_payment'),
    path('api/bookings/<int:pk>/', BookingDetailView.as_view(), name='booking_detail'),
    path('api/bookings/<int:pk>/confirm/', BookingConfirmView.as_view(), name='booking_confirm'),
    path('api/bookings/<int:pk>/cancel/', BookingCancelView.as_view(), name='booking_cancel'),
    path('api/bookings/<int:pk>/complete/', BookingCompleteView.as_view(), name='booking_complete'),
    path('api/bookings/<int:pk>/refund-quote/', RefundQuoteView.as_view(), name='booking_refund_quote'),
    path('api/bookings/<int:pk>/review/', BookingReviewCreateView.as_view(), name='booking_review'),

    # Review endpoints
    path('api/reviews/', UserReviewListView.as_view(), name='review_list'),
    path('api/reviews/<int:pk>/', ReviewDetailView.as_view(), name='review_detail'),
    path('api/reviews/<int:pk>/helpful/', ReviewHelpfulView.as_view(), name='review_helpful'),
    path('api/reviews/<int:pk>/responses/', ReviewResponseCreateView.as_view(), name='review_response'),

    # Post endpoints
    path('api/posts/', PostListCreateView.as_view(), name='post_list'),
    path('api/posts/media/', PostMediaUploadView.as_view(), name='post_media_upload'),
    path('api/posts/feed/', PostFeedView.as_view(), name='post_feed'),
    path('api/posts/<int:pk>/', PostDetailView.as_view(), name='post_detail'),
    path('api/posts/<int:pk>/comments/', PostCommentListCreateView.as_view(), name='post_comments'),
    path('api/posts/<int:pk>/likes/', PostLikeToggleView.as_view(), name='post_likes'),
    path('api/posts/<int:pk>/share/', PostShareView.as_view(), name='post_share'),
    path('api/posts/<int:pk>/embed-service/', PostEmbedServiceView.as_view(), name='post_embed_service'),
    path(
        'api/posts/<int:pk>/embed-service/<int:service_id>/',
        PostEmbedServiceDeleteView.as_view(),
        name='post_embed_service_delete',
    ),

    # Messaging endpoints
    path('api/conversations/', ConversationListCreateView.as_view(), name='conversation_list'),
    path('api/conversations/<int:pk>/', ConversationDetailView.as_view(), name='conversation_detail'),
    path('api/conversations/<int:pk>/messages/', ConversationMessagesView.as_view(), name='conversation_messages'),
    path(
        'api/conversations/<int:pk>/attachments/',
        ConversationAttachmentView.as_view(),
        name='conversation_attachments',
    ),

    # KYC endpoints
    path('api/kyc/submit/', KycSubmitView.as_view(), name='kyc_submit'),
    path('api/kyc/status/', KycStatusView.as_view(), name='kyc_status'),

    # Notification endpoints
    path('api/notifications/', NotificationListView.as_view(), name='notification_list'),
    path('api/notifications/read-all/', NotificationReadAllView.as_view(), name='notification_read_all'),
    path('api/notifications/<int:pk>/read/', NotificationReadView.as_view(), name='notification_read'),
    path('api/notifications/subscribe/', PushSubscribeView.as_view(), name='push_subscribe'),
    path('api/notifications/unsubscribe/', PushUnsubscribeView.as_view(), name='push_unsubscribe'),

    # Support endpoints
    path('api/support/tickets/', SupportTicketListCreateView.as_view(), name='support_ticket_list'),
    path('api/support/tickets/<int:pk>/', SupportTicketDetailView.as_view(), name='support_ticket_detail'),
    path('api/support/tickets/<int:pk>/replies/', SupportReplyCreateView.as_view(), name='support_ticket_replies'),

    # Admin back office
    path('api/admin/dashboard/', AdminDashboardView.as_view(), name='admin_dashboard'),
    path('api/admin/users/', AdminUserListView.as_view(), name='admin_user_list'),
    path('api/admin/users/<int:pk>/', AdminUserDetailView.as_view(), name='admin_user_detail'),
    path('api/admin/services/', AdminServiceListView.as_view(), name='admin_service_list'),
    path('api/admin/services/<int:pk>/', AdminServiceDetailView.as_view(), name='admin_service_detail'),
    path('api/admin/bookings/', AdminBookingListView.as_view(), name='admin_booking_list'),
    path('api/admin/bookings/<int:pk>/', AdminBookingDetailView.as_view(), name='admin_booking_detail'),
    path('api/admin/guides/', AdminGuideListView.as_view(), name='admin_guide_list'),
    path('api/admin/reviews/<int:pk>/', AdminReviewDetailView.as_view(), name='admin_review_detail'),
    path('api/admin/activity/', AdminActivityLogView.as_view(), name='admin_activity'),
    path('api/admin/kyc/submissions/', AdminKycSubmissionListView.as_view(), name='admin_kyc_list'),
    path(
        'api/admin/kyc/submissions/<int:pk>/review/',
        AdminKycReviewView.as_view(),
        name='admin_kyc_review',
    ),
    path('api/admin/notifications/', AdminNotificationView.as_view(), name='admin_notifications'),
    path('api/admin/support/tickets/', AdminSupportTicketListView.as_view(), name='admin_support_list'),
    path(
        'api/admin/support/tickets/<int:pk>/',
        AdminSupportTicketDetailView.as_view(),
        name='admin_support_detail',
    ),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
