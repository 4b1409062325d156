"""
Tests for the service catalogue, service management, the guide directory and
availability.
"""

from datetime import datetime, time, timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from marketplace.models import Service, UserProfile
from tests.helpers import client_for, make_admin, make_booking, make_guide, make_service, make_user


class ServiceListTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.food = make_service(self.guide, price=Decimal('1500.00'))
        self.hike = make_service(
            self.guide,
            title='Elephant Mountain sunset hike',
            category='NATURE',
            location='Xinyi, Taipei',
            price=Decimal('900.00'),
            max_guests=4,
        )
        self.draft = make_service(self.guide, title='Unfinished draft tour', status='DRAFT')

    def test_public_list_shows_active_services_only(self):
        response = client_for().get('/api/services/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = {s['id'] for s in response.data['data']}
        self.assertEqual(ids, {self.food.id, self.hike.id})
        self.assertEqual(response.data['pagination']['total'], 2)

    def test_filter_by_category(self):
        response = client_for().get('/api/services/', {'category': 'nature'})
        self.assertEqual([s['id'] for s in response.data['data']], [self.hike.id])

    def test_filter_by_price_range(self):
        response = client_for().get('/api/services/', {'min_price': '1000', 'max_price': '2000'})
        self.assertEqual([s['id'] for s in response.data['data']], [self.food.id])

    def test_filter_by_guests(self):
        response = client_for().get('/api/services/', {'guests': 6})
        self.assertEqual([s['id'] for s in response.data['data']], [self.food.id])

    def test_ordering_by_price(self):
        response = client_for().get('/api/services/', {'ordering': 'price'})
        self.assertEqual([s['id'] for s in response.data['data']], [self.hike.id, self.food.id])

    def test_invalid_filters(self):
        cases = [
            {'min_price': 'cheap'},
            {'min_price': '2000', 'max_price': '1000'},
            {'min_rating': '6'},
            {'category': 'SPACE'},
            {'ordering': 'random'},
            {'page': '0'},
        ]
        for params in cases:
            response = client_for().get('/api/services/', params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, params)

    def test_page_past_the_end(self):
        response = client_for().get('/api/services/', {'page': 5})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class ServiceCreateTests(TestCase):
    def setUp(self):
        self.payload = {
            'title': 'Dadaocheng heritage walk',
            'short_description': 'Old tea merchants and fabric stores',
            'description': 'Walk through the century-old streets of Dadaocheng and its tea houses.',
            'category': 'HISTORY',
            'location': 'Datong, Taipei',
            'duration_hours': 3,
            'price': '1200.00',
            'min_guests': 1,
            'max_guests': 12,
            'tags': ['history', 'tea'],
            'included': ['Tea tasting'],
        }

    def test_verified_guide_creates_service(self):
        guide = make_guide()
        response = client_for(guide).post('/api/services/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['status'], 'ACTIVE')
        self.assertEqual(response.data['data']['guide']['id'], guide.id)
        self.assertEqual(response.data['data']['rating_distribution'], {'1': 0, '2': 0, '3': 0, '4': 0, '5': 0})

    def test_draft_service(self):
        self.payload['status'] = 'DRAFT'
        response = client_for(make_guide()).post('/api/services/', self.payload, format='json')
        self.assertEqual(response.data['data']['status'], 'DRAFT')

    def test_unverified_guide_is_forbidden(self):
        response = client_for(make_guide(verified=False)).post('/api/services/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_customer_is_forbidden(self):
        response = client_for(make_user('traveler@test.com')).post('/api/services/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous_is_unauthorized(self):
        response = client_for().post('/api/services/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_validation(self):
        self.payload.update(title='Tour', description='Too short', price='0', min_guests=5, max_guests=2)
        response = client_for(make_guide()).post('/api/services/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        for field in ('title', 'description', 'price'):
            self.assertIn(field, response.data['details'])

    def test_guide_cannot_suspend_own_service(self):
        self.payload['status'] = 'SUSPENDED'
        response = client_for(make_guide()).post('/api/services/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('status', response.data['details'])


class ServiceDetailTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.service = make_service(self.guide)
        self.url = f'/api/services/{self.service.id}/'

    def test_public_detail(self):
        response = client_for().get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['title'], '台北夜市美食巡禮')
        self.assertEqual(response.data['data']['recent_reviews'], [])

    def test_inactive_service_hidden_from_public(self):
        self.service.status = 'INACTIVE'
        self.service.save()

        self.assertEqual(client_for().get(self.url).status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(client_for(self.guide).get(self.url).status_code, status.HTTP_200_OK)

    def test_owner_updates_service(self):
        response = client_for(self.guide).patch(self.url, {'price': '1800.00', 'tags': ['food']}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.service.refresh_from_db()
        self.assertEqual(self.service.price, Decimal('1800.00'))
        self.assertEqual(self.service.tags, ['food'])

    def test_other_guide_cannot_update(self):
        response = client_for(make_guide('other@test.com')).patch(self.url, {'price': '1.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_can_update(self):
        response = client_for(make_admin()).patch(self.url, {'location': 'Shilin, Taipei'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_delete_is_soft(self):
        response = client_for(self.guide).delete(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Service.objects.get(pk=self.service.pk).status, 'INACTIVE')

    def test_delete_blocked_by_active_booking(self):
        make_booking(self.service, make_user('traveler@test.com'))
        response = client_for(self.guide).delete(self.url)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Service.objects.get(pk=self.service.pk).status, 'ACTIVE')

    def test_unknown_service(self):
        self.assertEqual(client_for().get('/api/services/99999/').status_code, status.HTTP_404_NOT_FOUND)


class GuideDirectoryTests(TestCase):
    def setUp(self):
        self.top = make_guide('top@test.com', avg_rating_as_guide=Decimal('4.80'))
        UserProfile.objects.filter(user=self.top).update(
            location='Taipei', languages=['English', 'Japanese'], experience_years=10, bio='Food lover'
        )
        self.new = make_guide('new@test.com', avg_rating_as_guide=Decimal('3.50'))
        UserProfile.objects.filter(user=self.new).update(location='Tainan', languages=['Mandarin'], experience_years=1)
        make_service(self.top)
        make_user('traveler@test.com')

    def test_lists_guides_by_rating(self):
        response = client_for().get('/api/guides/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([g['id'] for g in response.data['data']], [self.top.id, self.new.id])
        self.assertEqual(response.data['data'][0]['active_services'], 1)

    def test_filters(self):
        by_location = client_for().get('/api/guides/', {'location': 'tainan'})
        self.assertEqual([g['id'] for g in by_location.data['data']], [self.new.id])

        by_language = client_for().get('/api/guides/', {'language': 'japanese'})
        self.assertEqual([g['id'] for g in by_language.data['data']], [self.top.id])

        by_rating = client_for().get('/api/guides/', {'min_rating': '4'})
        self.assertEqual([g['id'] for g in by_rating.data['data']], [self.top.id])

    def test_guide_detail(self):
        response = client_for().get(f'/api/guides/{self.top.id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']['services']), 1)
        self.assertEqual(response.data['data']['stats']['completed_bookings'], 0)
        self.assertEqual(response.data['data']['profile']['experience_years'], 10)

    def test_customer_is_not_a_guide(self):
        customer = make_user('customer@test.com')
        self.assertEqual(client_for().get(f'/api/guides/{customer.id}/').status_code, status.HTTP_404_NOT_FOUND)


class ServiceAvailabilityTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.service = make_service(self.guide)
        self.day = timezone.localdate() + timedelta(days=3)
        self.url = f'/api/services/{self.service.id}/availability/'

    def test_open_slots_step_by_duration(self):
        response = client_for().get(self.url, {'start_date': self.day.isoformat(), 'end_date': self.day.isoformat()})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['days'], [
            {'date': self.day.isoformat(), 'available_slots': ['08:00', '13:00']},
        ])

    def test_booked_slot_is_busy(self):
        start = timezone.make_aware(datetime.combine(self.day, time(8, 0)))
        make_booking(self.service, make_user('traveler@test.com'), start=start)

        response = client_for().get(self.url, {'start_date': self.day.isoformat(), 'end_date': self.day.isoformat()})

        self.assertEqual(response.data['data']['days'][0]['available_slots'], ['13:00'])
        self.assertEqual(len(response.data['data']['busy']), 1)

    def test_default_range_is_two_weeks(self):
        response = client_for().get(self.url)
        self.assertEqual(len(response.data['data']['days']), 15)

    def test_range_limits(self):
        too_long = client_for().get(self.url, {
            'start_date': self.day.isoformat(),
            'end_date': (self.day + timedelta(days=91)).isoformat(),
        })
        self.assertEqual(too_long.status_code, status.HTTP_400_BAD_REQUEST)

        reversed_range = client_for().get(self.url, {
            'start_date': self.day.isoformat(),
            'end_date': (self.day - timedelta(days=1)).isoformat(),
        })
        self.assertEqual(reversed_range.status_code, status.HTTP_400_BAD_REQUEST)

        malformed = client_for().get(self.url, {'start_date': 'tomorrow'})
        self.assertEqual(malformed.status_code, status.HTTP_400_BAD_REQUEST)
