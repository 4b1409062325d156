"""
Custom validators for Guidee models and serializers.
"""

import re
from datetime import date

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils.translation import gettext as _


TAIWAN_ID_PATTERN = re.compile(r'^[A-Z][12]\d{8}$')

MINIMUM_KYC_AGE = 18

# Card numbers the mock gateway treats as declined
DECLINED_TEST_CARDS = {'4000000000000002'}


def validate_phone_number(value):
    """
    Validate phone number format.

    Accepts local and international formats with optional country codes,
    spaces, dashes and parentheses. Requires 8 to 15 digits.

    Valid formats:
    - +886 912 345 678
    - 0912-345-678
    - (02) 2345-6789

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:  # Empty string is allowed (optional field)
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            _('Phone number can only contain digits, spaces, dashes, parentheses, and plus sign.'),
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)

    if len(digits) < 8 or len(digits) > 15:
        raise ValidationError(
            _('Phone number must contain between 8 and 15 digits.'),
            code='phone_length'
        )

    if len(set(digits)) == 1:
        raise ValidationError(
            _('Phone number cannot be all the same digit.'),
            code='invalid_phone_pattern'
        )


def validate_image_upload(image):
    """
    Validate an uploaded image file.

    Checks:
    - File size (max 5MB)
    - File extension (jpg, jpeg, png, webp)
    - Declared content type, when the upload carries one

    Used for avatars and KYC documents.
    """
    if not image:
        return

    max_size = 5 * 1024 * 1024
    if image.size > max_size:
        raise ValidationError(
            _('Image file size cannot exceed 5MB. Current size: %(size).2fMB')
            % {'size': image.size / (1024 * 1024)},
            code='image_too_large'
        )

    valid_extensions = ['jpg', 'jpeg', 'png', 'webp']
    file_name = image.name.lower()

    if not any(file_name.endswith(f'.{ext}') for ext in valid_extensions):
        raise ValidationError(
            _('Invalid image format. Allowed formats: %(formats)s')
            % {'formats': ', '.join(valid_extensions)},
            code='invalid_image_format'
        )

    valid_content_types = ['image/jpeg', 'image/png', 'image/webp']
    content_type = getattr(image, 'content_type', None)
    if content_type and content_type not in valid_content_types:
        raise ValidationError(
            _('Invalid image content type: %(type)s') % {'type': content_type},
            code='invalid_content_type'
        )


POST_MEDIA_TYPES = {
    'image': {
        'content_types': ['image/jpeg', 'image/png', 'image/gif', 'image/webp'],
        'extensions': ['jpg', 'jpeg', 'png', 'gif', 'webp'],
        'limit': 'POST_IMAGE',
    },
    'video': {
        'content_types': ['video/mp4', 'video/webm', 'video/quicktime'],
        'extensions': ['mp4', 'webm', 'mov'],
        'limit': 'POST_VIDEO',
    },
}

CHAT_ATTACHMENT_CONTENT_TYPES = [
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'application/pdf',
    'text/plain',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
]


def file_extension(name):
    if not name or '.' not in name:
        return ''
    return name.rsplit('.', 1)[-1].lower()


def _validate_upload_size(upload, limit_key):
    limit = settings.UPLOAD_LIMITS[limit_key]
    if upload.size > limit:
        raise ValidationError(
            _('File size cannot exceed %(size)sMB.') % {'size': f'{limit / (1024 * 1024):g}'},
            code='file_too_large'
        )


def validate_post_media(upload):
    """
    Validate an image or video attached to a post.

    The declared content type picks the media kind; the extension must
    agree with it and the size must fit that kind's limit.

    Returns:
        str: 'image' or 'video'
    """
    content_type = getattr(upload, 'content_type', None) or ''
    kind = next(
        (name for name, rules in POST_MEDIA_TYPES.items() if content_type in rules['content_types']),
        None,
    )
    if kind is None:
        raise ValidationError(_('Unsupported file type.'), code='unsupported_media_type')

    rules = POST_MEDIA_TYPES[kind]
    if file_extension(upload.name) not in rules['extensions']:
        raise ValidationError(
            _('Invalid file extension. Allowed: %(formats)s') % {'formats': ', '.join(rules['extensions'])},
            code='invalid_extension'
        )

    _validate_upload_size(upload, rules['limit'])
    return kind


def validate_chat_attachment(upload):
    """Validate a file shared in a conversation (images, PDF, text and Word documents)."""
    content_type = getattr(upload, 'content_type', None) or ''
    if content_type not in CHAT_ATTACHMENT_CONTENT_TYPES:
        raise ValidationError(_('Unsupported file type.'), code='unsupported_file_type')
    _validate_upload_size(upload, 'CHAT_FILE')


def validate_taiwan_id_number(value):
    """
    Validate a Taiwan national identification number.

    Format: one upper-case letter, a gender digit (1 or 2) and eight digits.
    """
    if not value or not TAIWAN_ID_PATTERN.match(value):
        raise ValidationError(
            _('Invalid ID number format.'),
            code='invalid_id_number'
        )


def calculate_age(birth_date, today=None):
    today = today or date.today()
    return today.year - birth_date.year - (
        (today.month, today.day) < (birth_date.month, birth_date.day)
    )


def validate_adult_birth_date(value):
    """Reject birth dates in the future or younger than the KYC minimum age."""
    if value is None:
        return
    if value > date.today():
        raise ValidationError(_('Birth date cannot be in the future.'), code='future_birth_date')
    if calculate_age(value) < MINIMUM_KYC_AGE:
        raise ValidationError(
            _('You must be at least 18 years old to apply.'),
            code='under_age'
        )


def luhn_checksum_is_valid(card_number):
    digits = [int(d) for d in card_number]
    checksum = 0
    parity = len(digits) % 2
    for index, digit in enumerate(digits):
        if index % 2 == parity:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def normalize_card_number(value):
    """
    Strip separators from a card number and validate it.

    Returns:
        str: Digits only

    Raises:
        ValidationError: If the number is not 12-19 digits or fails the Luhn check
    """
    cleaned = re.sub(r'[\s\-]', '', value or '')
    if not cleaned.isdigit() or not 12 <= len(cleaned) <= 19:
        raise ValidationError(_('Card number must contain 12 to 19 digits.'), code='invalid_card_length')
    if not luhn_checksum_is_valid(cleaned):
        raise ValidationError(_('Invalid card number.'), code='invalid_card_checksum')
    return cleaned


def detect_card_brand(card_number):
    if card_number.startswith('4'):
        return 'VISA'
    if card_number[:2] in ('51', '52', '53', '54', '55') or 2221 <= int(card_number[:4]) <= 2720:
        return 'MASTERCARD'
    if card_number[:2] in ('34', '37'):
        return 'AMEX'
    if card_number.startswith('35'):
        return 'JCB'
    return 'OTHER'


def validate_card_expiry(month, year, today=None):
    today = today or date.today()
    if not 1 <= month <= 12:
        raise ValidationError(_('Expiry month must be between 1 and 12.'), code='invalid_expiry_month')
    if (year, month) < (today.year, today.month):
        raise ValidationError(_('Card has expired.'), code='card_expired')
