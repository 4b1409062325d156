"""
Tests for keyword search and autocomplete suggestions.
"""

from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from marketplace.views import _money
from tests.helpers import client_for, make_guide, make_service


class ServiceSearchTests(TestCase):
    def setUp(self):
        guide = make_guide()
        self.market = make_service(
            guide,
            title='Shilin night market food crawl',
            location='Shilin, Taipei',
            price=Decimal('1500.00'),
            tags=['food', 'night market'],
            average_rating=Decimal('4.50'),
        )
        self.tea = make_service(
            guide,
            title='Maokong tea plantation visit',
            short_description='Tea fields above the city',
            description='Tea tasting with a view and a short walk through the night market afterwards.',
            category='CULTURE',
            location='Wenshan, Taipei',
            price=Decimal('800.00'),
            duration_hours=3,
            tags=['tea', 'culture'],
            average_rating=Decimal('4.90'),
        )
        self.hike = make_service(
            guide,
            title='Yangmingshan volcano hike',
            short_description='Volcanic trails and grasslands',
            description='Fumaroles, grasslands and wild water buffalo on the volcanic trails.',
            category='NATURE',
            location='Yangmingshan',
            price=Decimal('2200.00'),
            duration_hours=6,
            tags=['hiking', 'nature'],
        )
        self.url = '/api/services/search/'

    def test_keyword_matches_title_and_description(self):
        response = client_for().get(self.url, {'q': 'night market'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [s['id'] for s in response.data['data']['services']]
        # Title matches rank ahead of description matches
        self.assertEqual(ids, [self.market.id, self.tea.id])
        self.assertEqual(response.data['data']['search_params']['q'], 'night market')

    def test_tags_must_all_match(self):
        response = client_for().get(self.url, {'tags': 'tea,culture'})
        self.assertEqual([s['id'] for s in response.data['data']['services']], [self.tea.id])

        none = client_for().get(self.url, {'tags': 'tea,hiking'})
        self.assertEqual(none.data['data']['services'], [])

    def test_duration_filter(self):
        response = client_for().get(self.url, {'duration': 6})
        self.assertEqual([s['id'] for s in response.data['data']['services']], [self.hike.id])

    def test_sort_by_price(self):
        low = client_for().get(self.url, {'sort_by': 'price_low'})
        self.assertEqual(
            [s['id'] for s in low.data['data']['services']],
            [self.tea.id, self.market.id, self.hike.id],
        )

        high = client_for().get(self.url, {'sort_by': 'price_high'})
        self.assertEqual(high.data['data']['services'][0]['id'], self.hike.id)

    def test_sort_by_rating_ascending(self):
        response = client_for().get(self.url, {'sort_by': 'rating', 'sort_order': 'asc'})
        self.assertEqual(response.data['data']['services'][0]['id'], self.hike.id)

    def test_filter_statistics(self):
        response = client_for().get(self.url, {'location': 'taipei'})

        filters = response.data['data']['filters']
        self.assertEqual(filters['price_range'], {'min': '800.00', 'max': '1500.00'})
        self.assertEqual(filters['categories'], {'FOOD': 1, 'CULTURE': 1})
        self.assertEqual(response.data['pagination']['total'], 2)

    def test_empty_result_statistics(self):
        response = client_for().get(self.url, {'q': 'scuba diving'})

        self.assertEqual(response.data['data']['services'], [])
        self.assertEqual(response.data['data']['filters']['price_range'], {'min': None, 'max': None})

    def test_invalid_sort(self):
        self.assertEqual(
            client_for().get(self.url, {'sort_by': 'distance'}).status_code, status.HTTP_400_BAD_REQUEST
        )
        self.assertEqual(
            client_for().get(self.url, {'sort_order': 'up'}).status_code, status.HTTP_400_BAD_REQUEST
        )

    def test_inactive_services_are_not_searchable(self):
        self.hike.status = 'INACTIVE'
        self.hike.save()

        response = client_for().get(self.url, {'q': 'volcano'})
        self.assertEqual(response.data['data']['services'], [])


class ServiceSuggestionTests(TestCase):
    def setUp(self):
        guide = make_guide()
        self.market = make_service(guide, title='Shilin night market food crawl', location='Shilin, Taipei')
        self.hike = make_service(
            guide,
            title='Yangmingshan volcano hike',
            category='NATURE',
            location='Yangmingshan',
            tags=['hiking'],
            total_bookings=5,
        )
        self.url = '/api/services/suggestions/'

    def test_short_query_returns_popular(self):
        response = client_for().get(self.url, {'q': 'a'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['popular'])
        self.assertEqual(response.data['data']['services'][0]['id'], self.hike.id)

    def test_matches_services_locations_and_categories(self):
        response = client_for().get(self.url, {'q': 'shilin'})

        data = response.data['data']
        self.assertFalse(data['popular'])
        self.assertEqual([s['id'] for s in data['services']], [self.market.id])
        self.assertEqual(data['locations'], [{'value': 'Shilin, Taipei', 'count': 1}])

        categories = client_for().get(self.url, {'q': 'nat', 'type': 'categories'}).data['data']
        self.assertEqual([c['value'] for c in categories['categories']], ['NATURE'])
        self.assertNotIn('services', categories)

    def test_invalid_type(self):
        response = client_for().get(self.url, {'q': 'shilin', 'type': 'guides'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class MoneyFormattingTests(TestCase):
    def test_aggregates_are_rendered_with_two_decimals(self):
        self.assertEqual(_money(Decimal('800')), '800.00')
        self.assertEqual(_money(1500), '1500.00')
        self.assertEqual(_money(Decimal('12.345')), '12.35')
        self.assertEqual(_money(None), '0.00')
