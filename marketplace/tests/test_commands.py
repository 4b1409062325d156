from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from marketplace.models import Booking, Notification, Review, Service, User
from tests.helpers import make_booking, make_guide, make_service, make_user


def _completed_booking(service, traveler):
    return make_booking(
        service,
        traveler,
        start=timezone.now() - timedelta(days=3),
        status='COMPLETED',
        completed_at=timezone.now(),
    )


class RecalculateRatingsCommandTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.service = make_service(self.guide)
        self.other_service = make_service(make_guide('other@test.com'), title='Beitou hot spring walk')

        for email, rating in (('a@test.com', 5), ('b@test.com', 4)):
            traveler = make_user(email)
            Review.objects.create(
                booking=_completed_booking(self.service, traveler),
                reviewer=traveler,
                rating=rating,
                comment='Wonderful evening',
            )

        # Drift the stored aggregates away from the reviews
        Service.objects.filter(pk=self.service.pk).update(average_rating=Decimal('1.00'), total_reviews=9)
        Service.objects.filter(pk=self.other_service.pk).update(average_rating=Decimal('3.00'), total_reviews=1)
        User.objects.filter(pk=self.guide.pk).update(avg_rating_as_guide=Decimal('2.00'))

    def test_recalculates_services_and_guides(self):
        out = StringIO()
        call_command('recalculate_ratings', stdout=out)

        self.service.refresh_from_db()
        self.other_service.refresh_from_db()
        self.guide.refresh_from_db()
        self.assertEqual(self.service.average_rating, Decimal('4.50'))
        self.assertEqual(self.service.total_reviews, 2)
        self.assertEqual(self.other_service.average_rating, Decimal('0.00'))
        self.assertEqual(self.other_service.total_reviews, 0)
        self.assertEqual(self.guide.avg_rating_as_guide, Decimal('4.50'))
        self.assertIn('Recalculation completed successfully.', out.getvalue())

    def test_hidden_reviews_are_ignored(self):
        Review.objects.filter(rating=4).update(status='HIDDEN')
        call_command('recalculate_ratings', stdout=StringIO())

        self.service.refresh_from_db()
        self.assertEqual(self.service.average_rating, Decimal('5.00'))
        self.assertEqual(self.service.total_reviews, 1)

    def test_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('recalculate_ratings', '--dry-run', stdout=out)

        self.service.refresh_from_db()
        self.assertEqual(self.service.average_rating, Decimal('1.00'))
        self.assertIn('[DRY-RUN] Service', out.getvalue())
        self.assertIn('No changes saved', out.getvalue())

    def test_services_only(self):
        call_command('recalculate_ratings', '--services-only', stdout=StringIO())

        self.guide.refresh_from_db()
        self.service.refresh_from_db()
        self.assertEqual(self.service.average_rating, Decimal('4.50'))
        self.assertEqual(self.guide.avg_rating_as_guide, Decimal('2.00'))


class CompletePastBookingsCommandTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)
        self.finished = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(days=1), status='CONFIRMED'
        )
        # Ended one hour ago: still inside the default two-hour grace period
        self.just_ended = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(hours=6), status='CONFIRMED'
        )
        self.pending = make_booking(
            self.service, self.traveler, start=timezone.now() - timedelta(days=2), status='PENDING'
        )

    def test_completes_confirmed_bookings_past_grace(self):
        out = StringIO()
        call_command('complete_past_bookings', stdout=out)

        self.assertEqual(Booking.objects.get(pk=self.finished.pk).status, 'COMPLETED')
        self.assertIsNotNone(Booking.objects.get(pk=self.finished.pk).completed_at)
        self.assertEqual(Booking.objects.get(pk=self.just_ended.pk).status, 'CONFIRMED')
        self.assertEqual(Booking.objects.get(pk=self.pending.pk).status, 'PENDING')
        self.assertEqual(Service.objects.get(pk=self.service.pk).total_bookings, 1)
        self.assertTrue(
            Notification.objects.filter(user=self.traveler, notification_type='BOOKING_COMPLETED').exists()
        )
        self.assertIn('Completed 1 booking(s).', out.getvalue())

    def test_zero_grace(self):
        call_command('complete_past_bookings', '--grace-hours', '0', stdout=StringIO())
        self.assertEqual(Booking.objects.get(pk=self.just_ended.pk).status, 'COMPLETED')

    def test_dry_run(self):
        out = StringIO()
        call_command('complete_past_bookings', '--dry-run', stdout=out)

        self.assertEqual(Booking.objects.get(pk=self.finished.pk).status, 'CONFIRMED')
        self.assertIn('1 booking(s) due', out.getvalue())

    def test_negative_grace(self):
        with self.assertRaises(CommandError):
            call_command('complete_past_bookings', '--grace-hours', '-1', stdout=StringIO())
