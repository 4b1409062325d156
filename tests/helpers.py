"""
Shared builders for the API tests.
"""

import io
from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils import timezone
from PIL import Image
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from marketplace.models import Booking, Payment, Service

User = get_user_model()

PASSWORD = 'Str0ng!Passw0rd'


def make_user(email, role='CUSTOMER', **extra):
    extra.setdefault('name', email.split('@')[0].title())
    return User.objects.create_user(
        username=email.split('@')[0],
        email=email,
        password=PASSWORD,
        role=role,
        **extra
    )


def make_guide(email='guide@test.com', verified=True, **extra):
    return make_user(email, role='GUIDE', is_kyc_verified=verified, **extra)


def make_admin(email='admin@test.com', **extra):
    return make_user(email, role='ADMIN', **extra)


def make_service(guide, **overrides):
    data = {
        'title': '台北夜市美食巡禮',
        'short_description': 'Night market food walk',
        'description': 'Taste the best street food of Shilin night market.',
        'category': 'FOOD',
        'location': 'Taipei',
        'price': Decimal('1500.00'),
        'duration_hours': 5,
        'min_guests': 1,
        'max_guests': 10,
        'tags': ['food', 'night market'],
        'status': 'ACTIVE',
    }
    data.update(overrides)
    return Service.objects.create(guide=guide, **data)


def make_booking(service, traveler, start=None, guests=2, status='PENDING', **extra):
    start = start or timezone.now() + timedelta(days=7)
    base, fee, total = Booking.price_breakdown(service, guests)
    return Booking.objects.create(
        service=service,
        traveler=traveler,
        guide=service.guide,
        booking_date=start,
        guests=guests,
        duration_hours=service.duration_hours,
        base_price=base,
        service_fee=fee,
        total_amount=total,
        status=status,
        **extra
    )


def make_payment(booking, amount=None, status='COMPLETED', reference='tx_test'):
    booking.payment_status = 'PAID'
    booking.save()
    return Payment.objects.create(
        booking=booking,
        user=booking.traveler,
        payment_method='CREDIT_CARD',
        provider_payment_id=f'{reference}_{booking.pk}',
        amount=amount if amount is not None else booking.total_amount,
        status=status,
        processed_at=timezone.now(),
    )


def client_for(user=None):
    client = APIClient()
    if user is not None:
        client.force_authenticate(user=user)
    return client


def bearer_client(user):
    """Client authenticated through a real JWT in the Authorization header."""
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


def make_image(name='photo.png', size=(100, 100), image_format='PNG', content_type='image/png'):
    buffer = io.BytesIO()
    Image.new('RGB', size, color=(200, 120, 40)).save(buffer, format=image_format)
    return SimpleUploadedFile(name, buffer.getvalue(), content_type=content_type)
