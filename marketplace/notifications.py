"""
Unified notification dispatch.

Every event stores an in-app Notification and, depending on the requested
channels and the recipient's preferences, sends an email and records push
dispatches. Delivery failures are logged and reported in the result dict;
they never abort the request that triggered them.
"""

import logging

from django.utils import translation
from django.utils.translation import gettext as _

from . import emails
from .models import Notification

logger = logging.getLogger(__name__)

IN_APP = 'in_app'
EMAIL = 'email'
PUSH = 'push'

DEFAULT_CHANNELS = (IN_APP, EMAIL, PUSH)


def send_notification(user, notification_type, title, content, data=None, action_url='',
                      channels=DEFAULT_CHANNELS, email_content=None):
    """
    Deliver one notification to one user.

    Args:
        user: Recipient
        notification_type: One of Notification.TYPE_CHOICES
        title / content: In-app text (already translated)
        data: Extra JSON payload for the client
        action_url: Client route to open
        channels: Subset of (in_app, email, push)
        email_content: (subject, text, html) tuple; defaults to title/content

    Returns:
        dict: in_app, email_sent, push_sent, email_error
    """
    result = {'in_app': False, 'email_sent': False, 'push_sent': 0, 'email_error': None}

    if IN_APP in channels:
        notification = Notification.objects.create(
            user=user,
            notification_type=notification_type,
            title=title[:200],
            content=content,
            data=data or {},
            action_url=action_url,
        )
        result['in_app'] = True
        result['notification_id'] = notification.id

    if EMAIL in channels and user.email and user.notification_preference('email'):
        subject, text_body, html_body = email_content or (title, content, None)
        try:
            logger.info(f"Sending {notification_type} email to {user.email}")
            result['email_sent'] = emails.send_email(user.email, subject, text_body, html_body)
        except Exception as e:
            result['email_error'] = str(e)
            logger.error(f"Failed to send {notification_type} email to {user.email}: {e}")

    if PUSH in channels and user.notification_preference('push'):
        for subscription in user.push_subscriptions.all():
            # Web Push delivery is not wired to a push service; record the dispatch
            logger.info(
                f"Push dispatch recorded. Type: {notification_type}, "
                f"User: {user.email}, Endpoint: {subscription.endpoint[:60]}"
            )
            result['push_sent'] += 1

    return result


def _notify(user, notification_type, build, data, action_url, channels=DEFAULT_CHANNELS, template=None):
    """
    Build localized text in the recipient's language, then dispatch.

    `build` returns (title, content); `template` returns the email tuple.
    """
    with translation.override(user.preferred_language or None):
        title, content = build()
        email_content = template() if template else None
    return send_notification(
        user,
        notification_type,
        title,
        content,
        data=data,
        action_url=action_url,
        channels=channels,
        email_content=email_content,
    )


# ============================================================================
# Domain events
# ============================================================================

def notify_booking_created(booking):
    return _notify(
        booking.guide,
        'BOOKING_CREATED',
        lambda: (
            _('New booking request'),
            _('%(name)s booked %(title)s for %(guests)s guest(s).') % {
                'name': booking.traveler.display_name,
                'title': booking.service.title,
                'guests': booking.guests,
            },
        ),
        {'booking_id': booking.id},
        f'/bookings/{booking.id}',
        template=lambda: emails.booking_created_template(booking),
    )


def notify_booking_confirmed(booking):
    return _notify(
        booking.traveler,
        'BOOKING_CONFIRMED',
        lambda: (
            _('Booking confirmed'),
            _('Your booking for %(title)s has been confirmed.') % {'title': booking.service.title},
        ),
        {'booking_id': booking.id},
        f'/bookings/{booking.id}',
        template=lambda: emails.booking_confirmed_template(booking),
    )


def notify_booking_cancelled(booking, cancelled_by):
    """Notify every party of the booking other than the one who cancelled."""
    results = []
    for recipient in (booking.traveler, booking.guide):
        if recipient.id == cancelled_by.id:
            continue
        results.append(_notify(
            recipient,
            'BOOKING_CANCELLED',
            lambda: (
                _('Booking cancelled'),
                _('The booking for %(title)s has been cancelled.') % {'title': booking.service.title},
            ),
            {'booking_id': booking.id, 'refund_amount': str(booking.refund_amount)},
            f'/bookings/{booking.id}',
            template=lambda: emails.booking_cancelled_template(booking),
        ))
    return results


def notify_booking_completed(booking):
    return _notify(
        booking.traveler,
        'BOOKING_COMPLETED',
        lambda: (
            _('Tour completed'),
            _('Tell others about %(title)s by leaving a review.') % {'title': booking.service.title},
        ),
        {'booking_id': booking.id},
        f'/bookings/{booking.id}/review',
        template=lambda: emails.booking_completed_template(booking),
    )


def notify_payment_completed(payment):
    booking = payment.booking
    traveler_result = _notify(
        booking.traveler,
        'PAYMENT_COMPLETED',
        lambda: (
            _('Payment successful'),
            _('We received %(amount)s %(currency)s for booking #%(id)s.') % {
                'amount': payment.amount, 'currency': payment.currency, 'id': booking.id,
            },
        ),
        {'booking_id': booking.id, 'payment_id': payment.id},
        f'/bookings/{booking.id}',
        template=lambda: emails.payment_receipt_template(payment),
    )
    guide_result = _notify(
        booking.guide,
        'PAYMENT_COMPLETED',
        lambda: (
            _('Booking paid'),
            _('Booking #%(id)s for %(title)s has been paid.') % {
                'id': booking.id, 'title': booking.service.title,
            },
        ),
        {'booking_id': booking.id},
        f'/bookings/{booking.id}',
        channels=(IN_APP, PUSH),
    )
    return [traveler_result, guide_result]


def notify_message_received(message, recipients):
    results = []
    for recipient in recipients:
        results.append(_notify(
            recipient,
            'MESSAGE_RECEIVED',
            lambda: (
                _('New message from %(name)s') % {'name': message.sender.display_name},
                (message.content or _('(attachment)'))[:200],
            ),
            {'conversation_id': message.conversation_id, 'message_id': message.id},
            f'/messages/{message.conversation_id}',
            channels=(IN_APP, PUSH),
        ))
    return results


def notify_conversation_started(conversation, creator, recipients):
    results = []
    for recipient in recipients:
        results.append(_notify(
            recipient,
            'MESSAGE_RECEIVED',
            lambda: (
                _('New conversation'),
                _('%(name)s started a conversation with you.') % {'name': creator.display_name},
            ),
            {'conversation_id': conversation.id},
            f'/messages/{conversation.id}',
            channels=(IN_APP, PUSH),
        ))
    return results


def notify_review_received(review):
    return _notify(
        review.guide,
        'REVIEW_RECEIVED',
        lambda: (
            _('New review'),
            _('%(title)s received a %(rating)s-star review.') % {
                'title': review.service.title, 'rating': review.rating,
            },
        ),
        {'review_id': review.id, 'service_id': review.service_id},
        f'/services/{review.service_id}',
        template=lambda: emails.review_received_template(review),
    )


def notify_kyc_reviewed(submission):
    approved = submission.status == 'APPROVED'
    return _notify(
        submission.user,
        'KYC_APPROVED' if approved else 'KYC_REJECTED',
        lambda: (
            (_('Identity verification approved'), _('Your identity has been verified.'))
            if approved else
            (_('Identity verification rejected'), submission.rejection_reason)
        ),
        {'submission_id': submission.id},
        '/settings/kyc',
        template=lambda: emails.kyc_result_template(submission),
    )


def notify_support_reply(ticket, reply):
    return _notify(
        ticket.user,
        'SUPPORT_REPLY',
        lambda: (
            _('Support replied to your ticket'),
            _('%(subject)s') % {'subject': ticket.subject},
        ),
        {'ticket_id': ticket.id},
        f'/support/{ticket.id}',
        template=lambda: emails.support_reply_template(ticket, reply),
    )


def notify_post_comment(comment):
    post = comment.post
    return _notify(
        post.author,
        'POST_COMMENT',
        lambda: (
            _('New comment'),
            _('%(name)s commented on "%(title)s".') % {
                'name': comment.author.display_name, 'title': post.title,
            },
        ),
        {'post_id': post.id, 'comment_id': comment.id},
        f'/posts/{post.id}',
        channels=(IN_APP, PUSH),
    )


def broadcast(users, title, content, channels=(IN_APP,), action_url=''):
    """
    Send an administrator message to many users.

    Returns:
        dict: recipients, in_app, email_sent, push_sent, email_failed
    """
    summary = {'recipients': 0, 'in_app': 0, 'email_sent': 0, 'push_sent': 0, 'email_failed': 0}
    for user in users:
        result = send_notification(user, 'SYSTEM', title, content, action_url=action_url, channels=channels)
        summary['recipients'] += 1
        summary['in_app'] += int(result['in_app'])
        summary['email_sent'] += int(result['email_sent'])
        summary['push_sent'] += result['push_sent']
        summary['email_failed'] += int(result['email_error'] is not None)
    logger.info(f"Broadcast delivered. Recipients: {summary['recipients']}, Title: {title}")
    return summary
