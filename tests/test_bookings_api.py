"""
Tests for booking creation, listing and the confirm/cancel/complete lifecycle.
"""

from datetime import timedelta
from decimal import Decimal

from django.core import mail
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from marketplace.models import Booking, Notification, Payment, Service
from tests.helpers import client_for, make_admin, make_booking, make_guide, make_payment, make_service, make_user


class BookingCreationTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)
        self.client = client_for(self.traveler)
        self.start = (timezone.now() + timedelta(days=10)).replace(microsecond=0)
        self.payload = {
            'service': self.service.id,
            'booking_date': self.start.isoformat(),
            'guests': 2,
            'special_requests': 'Vegetarian please',
        }

    def test_create_booking_computes_price_breakdown(self):
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['status'], 'PENDING')
        self.assertEqual(data['payment_status'], 'UNPAID')
        self.assertEqual(Decimal(data['base_price']), Decimal('3000.00'))
        self.assertEqual(Decimal(data['service_fee']), Decimal('150.00'))
        self.assertEqual(Decimal(data['total_amount']), Decimal('3150.00'))
        self.assertEqual(data['guide']['id'], self.guide.id)

        booking = Booking.objects.get(pk=data['id'])
        self.assertEqual(booking.end_time, booking.booking_date + timedelta(hours=5))
        self.assertEqual(booking.contact_info['email'], 'traveler@test.com')

    def test_guide_is_notified(self):
        self.client.post('/api/bookings/', self.payload, format='json')

        self.assertTrue(
            Notification.objects.filter(user=self.guide, notification_type='BOOKING_CREATED').exists()
        )
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, [self.guide.email])

    def test_overlapping_booking_is_rejected(self):
        make_booking(self.service, make_user('other@test.com'), start=self.start - timedelta(hours=2))

        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data['success'])
        self.assertEqual(Booking.objects.filter(traveler=self.traveler).count(), 0)

    def test_back_to_back_bookings_are_allowed(self):
        make_booking(self.service, make_user('other@test.com'), start=self.start - timedelta(hours=5))

        response = self.client.post('/api/bookings/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_cancelled_booking_does_not_block_slot(self):
        make_booking(self.service, make_user('other@test.com'), start=self.start, status='CANCELLED')

        response = self.client.post('/api/bookings/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_guide_cannot_create_booking(self):
        other_guide = make_guide('other-guide@test.com')
        response = client_for(other_guide).post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_past_date_is_rejected(self):
        self.payload['booking_date'] = (timezone.now() - timedelta(days=1)).isoformat()
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('booking_date', response.data['details'])

    def test_less_than_one_hour_ahead_is_rejected(self):
        self.payload['booking_date'] = (timezone.now() + timedelta(minutes=30)).isoformat()
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('booking_date', response.data['details'])

    def test_guest_count_outside_service_limits(self):
        self.payload['guests'] = 11
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('guests', response.data['details'])

    def test_inactive_service_cannot_be_booked(self):
        self.service.status = 'INACTIVE'
        self.service.save()
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('service', response.data['details'])

    def test_unknown_service(self):
        self.payload['service'] = 99999
        response = self.client.post('/api/bookings/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_requires_authentication(self):
        response = client_for().post('/api/bookings/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class BookingListTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.service = make_service(self.guide)
        self.traveler = make_user('traveler@test.com')
        self.other = make_user('other@test.com')
        self.mine = make_booking(self.service, self.traveler, start=timezone.now() + timedelta(days=3))
        self.theirs = make_booking(self.service, self.other, start=timezone.now() + timedelta(days=5))

    def test_traveler_sees_only_own_bookings(self):
        response = client_for(self.traveler).get('/api/bookings/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [b['id'] for b in response.data['data']]
        self.assertEqual(ids, [self.mine.id])
        self.assertEqual(response.data['pagination']['total'], 1)

    def test_guide_sees_received_bookings(self):
        response = client_for(self.guide).get('/api/bookings/')

        ids = {b['id'] for b in response.data['data']}
        self.assertEqual(ids, {self.mine.id, self.theirs.id})

    def test_admin_sees_everything(self):
        response = client_for(make_admin()).get('/api/bookings/')
        self.assertEqual(response.data['pagination']['total'], 2)

    def test_status_filter(self):
        self.theirs.status = 'CONFIRMED'
        self.theirs.save()

        response = client_for(self.guide).get('/api/bookings/', {'status': 'CONFIRMED'})
        self.assertEqual([b['id'] for b in response.data['data']], [self.theirs.id])

    def test_invalid_status_filter(self):
        response = client_for(self.guide).get('/api/bookings/', {'status': 'LOST'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_detail_is_hidden_from_strangers(self):
        response = client_for(self.other).get(f'/api/bookings/{self.mine.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_detail_for_traveler(self):
        response = client_for(self.traveler).get(f'/api/bookings/{self.mine.id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['service']['id'], self.service.id)
        self.assertFalse(response.data['data']['has_review'])

    def test_unknown_booking(self):
        response = client_for(self.traveler).get('/api/bookings/99999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class BookingConfirmTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)
        self.booking = make_booking(self.service, self.traveler)

    def test_guide_confirms_pending_booking(self):
        response = client_for(self.guide).post(f'/api/bookings/{self.booking.id}/confirm/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'CONFIRMED')
        self.assertIsNotNone(self.booking.confirmed_at)
        self.assertTrue(
            Notification.objects.filter(user=self.traveler, notification_type='BOOKING_CONFIRMED').exists()
        )

    def test_traveler_cannot_confirm(self):
        response = client_for(self.traveler).post(f'/api/bookings/{self.booking.id}/confirm/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_confirming_twice(self):
        client = client_for(self.guide)
        client.post(f'/api/bookings/{self.booking.id}/confirm/')
        response = client.post(f'/api/bookings/{self.booking.id}/confirm/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cancelled_booking_cannot_be_confirmed(self):
        self.booking.status = 'CANCELLED'
        self.booking.save()
        response = client_for(self.guide).post(f'/api/bookings/{self.booking.id}/confirm/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class BookingCancelTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)

    def _paid_booking(self, hours_ahead):
        booking = make_booking(
            self.service,
            self.traveler,
            start=timezone.now() + timedelta(hours=hours_ahead),
            status='CONFIRMED',
        )
        make_payment(booking)
        return booking

    def test_traveler_gets_full_refund_48_hours_ahead(self):
        booking = self._paid_booking(72)
        response = client_for(self.traveler).post(
            f'/api/bookings/{booking.id}/cancel/', {'reason': 'SCHEDULE_CONFLICT'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'CANCELLED')
        self.assertEqual(booking.refund_amount, Decimal('3150.00'))
        self.assertEqual(booking.payment_status, 'REFUNDED')
        self.assertEqual(booking.cancelled_by, self.traveler)
        self.assertEqual(booking.cancellation_reason, 'SCHEDULE_CONFLICT')
        self.assertEqual(Payment.objects.get(booking=booking).status, 'REFUNDED')

    def test_traveler_gets_half_refund_between_24_and_48_hours(self):
        booking = self._paid_booking(36)
        response = client_for(self.traveler).post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        booking.refresh_from_db()
        self.assertEqual(booking.refund_amount, Decimal('1575.00'))
        self.assertEqual(booking.payment_status, 'PARTIALLY_REFUNDED')
        self.assertEqual(Payment.objects.get(booking=booking).status, 'PARTIALLY_REFUNDED')

    def test_traveler_cannot_cancel_inside_24_hours(self):
        booking = self._paid_booking(10)
        response = client_for(self.traveler).post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'CONFIRMED')
        self.assertEqual(booking.payment_status, 'PAID')

    def test_guide_cancellation_always_refunds_in_full(self):
        booking = self._paid_booking(10)
        response = client_for(self.guide).post(
            f'/api/bookings/{booking.id}/cancel/', {'reason': 'WEATHER', 'note': 'Typhoon'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        booking.refresh_from_db()
        self.assertEqual(booking.refund_amount, Decimal('3150.00'))
        self.assertEqual(booking.cancellation_note, 'Typhoon')
        self.assertTrue(
            Notification.objects.filter(user=self.traveler, notification_type='BOOKING_CANCELLED').exists()
        )
        self.assertFalse(
            Notification.objects.filter(user=self.guide, notification_type='BOOKING_CANCELLED').exists()
        )

    def test_unpaid_booking_cancels_without_refund(self):
        booking = make_booking(self.service, self.traveler)
        response = client_for(self.traveler).post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        booking.refresh_from_db()
        self.assertEqual(booking.refund_amount, Decimal('0.00'))
        self.assertEqual(booking.payment_status, 'UNPAID')

    def test_cancelling_twice(self):
        booking = make_booking(self.service, self.traveler)
        client = client_for(self.traveler)
        client.post(f'/api/bookings/{booking.id}/cancel/')
        response = client.post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_invalid_reason(self):
        booking = make_booking(self.service, self.traveler)
        response = client_for(self.traveler).post(
            f'/api/bookings/{booking.id}/cancel/', {'reason': 'BORED'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reason', response.data['details'])

    def test_stranger_cannot_cancel(self):
        booking = make_booking(self.service, self.traveler)
        response = client_for(make_user('stranger@test.com')).post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_refund_quote(self):
        booking = self._paid_booking(36)
        response = client_for(self.traveler).get(f'/api/bookings/{booking.id}/refund-quote/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertTrue(data['allowed'])
        self.assertEqual(Decimal(data['refund_percentage']), Decimal('50'))
        self.assertEqual(Decimal(data['refund_amount']), Decimal('1575.00'))

    def test_refund_quote_inside_24_hours(self):
        booking = self._paid_booking(5)
        response = client_for(self.traveler).get(f'/api/bookings/{booking.id}/refund-quote/')

        self.assertFalse(response.data['data']['allowed'])
        self.assertIsNotNone(response.data['data']['message'])


class BookingCompleteTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)

    def test_guide_completes_started_tour(self):
        booking = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(hours=6), status='CONFIRMED'
        )
        response = client_for(self.guide).post(f'/api/bookings/{booking.id}/complete/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'COMPLETED')
        self.assertIsNotNone(booking.completed_at)
        self.assertEqual(Service.objects.get(pk=self.service.pk).total_bookings, 1)
        self.assertTrue(
            Notification.objects.filter(user=self.traveler, notification_type='BOOKING_COMPLETED').exists()
        )

    def test_cannot_complete_before_start(self):
        booking = make_booking(self.service, self.traveler, status='CONFIRMED')
        response = client_for(self.guide).post(f'/api/bookings/{booking.id}/complete/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cannot_complete_pending_booking(self):
        booking = make_booking(self.service, self.traveler, start=timezone.now() - timedelta(hours=6))
        response = client_for(self.guide).post(f'/api/bookings/{booking.id}/complete/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_traveler_cannot_complete(self):
        booking = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(hours=6), status='CONFIRMED'
        )
        response = client_for(self.traveler).post(f'/api/bookings/{booking.id}/complete/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_completed_booking_cannot_be_cancelled(self):
        booking = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(hours=6), status='COMPLETED'
        )
        response = client_for(self.guide).post(f'/api/bookings/{booking.id}/cancel/')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
