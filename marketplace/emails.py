"""
Transactional email templates.

Each template returns (subject, text_body, html_body). Text is translated
in whatever language is active; callers wrap them in
`translation.override(user.preferred_language)`.
"""

import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils.html import escape
from django.utils.translation import gettext as _

logger = logging.getLogger(__name__)

THEME = {
    'primary': '#0f766e',
    'background': '#f8fafc',
    'text': '#0f172a',
    'muted': '#64748b',
}


def frontend_url(path=''):
    return f"{settings.FRONTEND_URL.rstrip('/')}/{path.lstrip('/')}"


def get_base_template(title, paragraphs, cta_url=None, cta_label=None):
    """Wrap paragraphs in the shared HTML layout."""
    body = ''.join(
        f'<p style="color:{THEME["text"]};font-size:15px;line-height:1.6">{escape(p)}</p>'
        for p in paragraphs
    )
    cta = ''
    if cta_url and cta_label:
        cta = (
            f'<p><a href="{escape(cta_url)}" style="background:{THEME["primary"]};color:#fff;'
            f'padding:12px 28px;border-radius:8px;text-decoration:none">{escape(cta_label)}</a></p>'
        )
    footer = _('You are receiving this email because you have a Guidee account.')
    return (
        f'<html><body style="background:{THEME["background"]};font-family:sans-serif;padding:24px">'
        f'<h2 style="color:{THEME["primary"]}">{escape(title)}</h2>{body}{cta}'
        f'<p style="color:{THEME["muted"]};font-size:12px">{escape(footer)}</p>'
        f'</body></html>'
    )


def _render(subject, paragraphs, cta_path=None, cta_label=None):
    cta_url = frontend_url(cta_path) if cta_path else None
    text = '\n\n'.join(paragraphs)
    if cta_url:
        text = f"{text}\n\n{cta_url}"
    return subject, text, get_base_template(subject, paragraphs, cta_url, cta_label)


def booking_created_template(booking):
    subject = _('New booking request: %(title)s') % {'title': booking.service.title}
    return _render(subject, [
        _('%(name)s requested your tour on %(date)s for %(guests)s guest(s).') % {
            'name': booking.traveler.display_name,
            'date': booking.booking_date.strftime('%Y-%m-%d %H:%M'),
            'guests': booking.guests,
        },
        _('Total: %(amount)s %(currency)s') % {'amount': booking.total_amount, 'currency': booking.currency},
    ], f'bookings/{booking.id}', _('View booking'))


def booking_confirmed_template(booking):
    subject = _('Your booking is confirmed: %(title)s') % {'title': booking.service.title}
    return _render(subject, [
        _('%(guide)s confirmed your tour on %(date)s.') % {
            'guide': booking.guide.display_name,
            'date': booking.booking_date.strftime('%Y-%m-%d %H:%M'),
        },
    ], f'bookings/{booking.id}', _('View booking'))


def booking_cancelled_template(booking):
    subject = _('Booking cancelled: %(title)s') % {'title': booking.service.title}
    paragraphs = [
        _('The booking on %(date)s has been cancelled.') % {
            'date': booking.booking_date.strftime('%Y-%m-%d %H:%M'),
        },
    ]
    if booking.refund_amount:
        paragraphs.append(_('A refund of %(amount)s %(currency)s will be issued.') % {
            'amount': booking.refund_amount, 'currency': booking.currency,
        })
    return _render(subject, paragraphs, f'bookings/{booking.id}', _('View booking'))


def booking_completed_template(booking):
    subject = _('How was your tour? %(title)s') % {'title': booking.service.title}
    return _render(subject, [
        _('Your tour with %(guide)s is complete. Share your experience by leaving a review.') % {
            'guide': booking.guide.display_name,
        },
    ], f'bookings/{booking.id}/review', _('Write a review'))


def payment_receipt_template(payment):
    booking = payment.booking
    subject = _('Payment receipt for booking #%(id)s') % {'id': booking.id}
    return _render(subject, [
        _('We received your payment of %(amount)s %(currency)s.') % {
            'amount': payment.amount, 'currency': payment.currency,
        },
        _('Transaction ID: %(tx)s') % {'tx': payment.provider_payment_id},
        _('Tour: %(title)s on %(date)s') % {
            'title': booking.service.title,
            'date': booking.booking_date.strftime('%Y-%m-%d %H:%M'),
        },
    ], f'bookings/{booking.id}', _('View booking'))


def new_message_template(message):
    subject = _('New message from %(name)s') % {'name': message.sender.display_name}
    preview = message.content[:200] if message.content else _('(attachment)')
    return _render(subject, [preview], f'messages/{message.conversation_id}', _('Reply'))


def review_received_template(review):
    subject = _('New %(rating)s-star review for %(title)s') % {
        'rating': review.rating, 'title': review.service.title,
    }
    return _render(subject, [review.comment[:300]], f'services/{review.service_id}', _('View review'))


def kyc_result_template(submission):
    if submission.status == 'APPROVED':
        subject = _('Your identity verification was approved')
        paragraphs = [_('You can now publish services on Guidee.')]
    else:
        subject = _('Your identity verification was not approved')
        paragraphs = [
            _('Reason: %(reason)s') % {'reason': submission.rejection_reason},
            _('You may submit a new application at any time.'),
        ]
    return _render(subject, paragraphs, 'settings/kyc', _('View status'))


def support_reply_template(ticket, reply):
    subject = _('Re: %(subject)s') % {'subject': ticket.subject}
    return _render(subject, [reply.message], f'support/{ticket.id}', _('View ticket'))


def send_email(to_email, subject, text_body, html_body=None):
    """
    Send a single email through the configured Django backend.

    Raises whatever the backend raises; the notification layer decides how to
    report failures.
    """
    sent = send_mail(
        subject,
        text_body,
        settings.DEFAULT_FROM_EMAIL,
        [to_email],
        html_message=html_body,
        fail_silently=False,
    )
    logger.info(f"Email sent. To: {to_email}, Subject: {subject}")
    return sent == 1
