from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from marketplace.models import Review, UserProfile
from tests.helpers import make_booking, make_guide, make_service, make_user


class ProfileSignalTests(TestCase):
    def test_profile_created_with_user(self):
        user = make_user('traveler@test.com')
        self.assertTrue(UserProfile.objects.filter(user=user).exists())

    def test_profile_not_duplicated_on_save(self):
        user = make_user('traveler@test.com')
        user.name = 'Renamed'
        user.save()
        self.assertEqual(UserProfile.objects.filter(user=user).count(), 1)


class RatingSignalTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.first_service = make_service(self.guide)
        self.second_service = make_service(self.guide, title='Tamsui sunset cycling')

    def _review(self, service, email, rating):
        traveler = make_user(email)
        booking = make_booking(
            service,
            traveler,
            start=timezone.now() - timedelta(days=1),
            status='COMPLETED',
            completed_at=timezone.now(),
        )
        return Review.objects.create(booking=booking, reviewer=traveler, rating=rating, comment='Nice trip')

    def test_guide_rating_spans_all_services(self):
        self._review(self.first_service, 'a@test.com', 5)
        self._review(self.second_service, 'b@test.com', 2)
        self._review(self.second_service, 'c@test.com', 4)

        self.guide.refresh_from_db()
        self.first_service.refresh_from_db()
        self.second_service.refresh_from_db()
        self.assertEqual(self.guide.avg_rating_as_guide, Decimal('3.67'))
        self.assertEqual(self.first_service.average_rating, Decimal('5.00'))
        self.assertEqual(self.second_service.average_rating, Decimal('3.00'))
        self.assertEqual(self.second_service.total_reviews, 2)

    def test_hiding_and_restoring_a_review(self):
        review = self._review(self.first_service, 'a@test.com', 5)
        self._review(self.first_service, 'b@test.com', 3)

        review.status = 'HIDDEN'
        review.save()
        self.first_service.refresh_from_db()
        self.assertEqual(self.first_service.average_rating, Decimal('3.00'))
        self.assertEqual(self.first_service.total_reviews, 1)

        review.status = 'PUBLISHED'
        review.save()
        self.first_service.refresh_from_db()
        self.assertEqual(self.first_service.average_rating, Decimal('4.00'))

    def test_deleting_last_review_resets_ratings(self):
        review = self._review(self.first_service, 'a@test.com', 4)
        review.delete()

        self.guide.refresh_from_db()
        self.first_service.refresh_from_db()
        self.assertEqual(self.guide.avg_rating_as_guide, Decimal('0.00'))
        self.assertEqual(self.first_service.average_rating, Decimal('0.00'))
        self.assertEqual(self.first_service.total_reviews, 0)
