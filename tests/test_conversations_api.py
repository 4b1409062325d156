"""
Tests for direct and group conversations and their messages.
"""

from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from rest_framework import status

from marketplace.models import Conversation, ConversationParticipant, Message, Notification
from tests.helpers import client_for, make_booking, make_guide, make_image, make_service, make_user


class ConversationCreateTests(TestCase):
    def setUp(self):
        self.traveler = make_user('traveler@test.com')
        self.guide = make_guide()
        self.client = client_for(self.traveler)
        self.url = '/api/conversations/'

    def test_start_direct_conversation_with_message(self):
        response = self.client.post(
            self.url,
            {'participant_ids': [self.guide.id], 'message': 'Is Friday evening available?'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['is_existing'])
        data = response.data['data']
        self.assertEqual(data['conversation_type'], 'DIRECT')
        self.assertEqual([p['id'] for p in data['participants']], [self.guide.id])
        self.assertEqual(data['last_message']['content'], 'Is Friday evening available?')
        self.assertEqual(data['unread_count'], 0)

        self.assertTrue(
            Notification.objects.filter(user=self.guide, notification_type='MESSAGE_RECEIVED').exists()
        )

    def test_existing_direct_conversation_is_reused(self):
        first = self.client.post(self.url, {'participant_ids': [self.guide.id]}, format='json')
        second = client_for(self.guide).post(
            self.url, {'participant_ids': [self.traveler.id], 'message': 'Hello again'}, format='json'
        )

        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertTrue(second.data['is_existing'])
        self.assertEqual(second.data['data']['id'], first.data['data']['id'])
        self.assertEqual(Conversation.objects.count(), 1)
        self.assertEqual(Message.objects.count(), 1)

    def test_group_conversation_needs_title(self):
        other = make_user('friend@test.com')
        response = self.client.post(
            self.url,
            {'participant_ids': [self.guide.id, other.id], 'conversation_type': 'GROUP'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('title', response.data['details'])

    def test_group_conversation(self):
        other = make_user('friend@test.com')
        response = self.client.post(
            self.url,
            {'participant_ids': [self.guide.id, other.id], 'conversation_type': 'GROUP', 'title': 'Jiufen trip'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['data']['participants']), 2)
        self.assertEqual(
            ConversationParticipant.objects.filter(conversation_id=response.data['data']['id']).count(), 3
        )

    def test_direct_conversation_has_one_other_participant(self):
        other = make_user('friend@test.com')
        response = self.client.post(self.url, {'participant_ids': [self.guide.id, other.id]}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('participant_ids', response.data['details'])

    def test_cannot_talk_to_yourself(self):
        response = self.client.post(self.url, {'participant_ids': [self.traveler.id]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_participant(self):
        response = self.client.post(self.url, {'participant_ids': [99999]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_booking_link_requires_participation(self):
        booking = make_booking(make_service(self.guide), make_user('someone@test.com'))
        response = self.client.post(
            self.url, {'participant_ids': [self.guide.id], 'booking_id': booking.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_anonymous(self):
        response = client_for().post(self.url, {'participant_ids': [self.guide.id]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class ConversationListTests(TestCase):
    def setUp(self):
        self.traveler = make_user('traveler@test.com')
        self.guide = make_guide()
        self.friend = make_user('friend@test.com')
        client = client_for(self.traveler)
        self.direct = client.post(
            '/api/conversations/', {'participant_ids': [self.guide.id]}, format='json'
        ).data['data']
        self.group = client.post(
            '/api/conversations/',
            {'participant_ids': [self.guide.id, self.friend.id], 'conversation_type': 'GROUP', 'title': 'Trip'},
            format='json',
        ).data['data']

    def test_lists_own_conversations(self):
        response = client_for(self.guide).get('/api/conversations/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual({c['id'] for c in response.data['data']}, {self.direct['id'], self.group['id']})

        outsider = client_for(make_user('outsider@test.com')).get('/api/conversations/')
        self.assertEqual(outsider.data['data'], [])

    def test_type_filter(self):
        response = client_for(self.traveler).get('/api/conversations/', {'type': 'group'})
        self.assertEqual([c['id'] for c in response.data['data']], [self.group['id']])

    def test_invalid_type(self):
        response = client_for(self.traveler).get('/api/conversations/', {'type': 'broadcast'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_non_participant_cannot_open(self):
        outsider = make_user('outsider@test.com')
        response = client_for(outsider).get(f"/api/conversations/{self.direct['id']}/")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(response.data['success'])


class ConversationMessageTests(TestCase):
    def setUp(self):
        self.traveler = make_user('traveler@test.com')
        self.guide = make_guide()
        conversation = client_for(self.traveler).post(
            '/api/conversations/', {'participant_ids': [self.guide.id]}, format='json'
        ).data['data']
        self.url = f"/api/conversations/{conversation['id']}/messages/"
        self.conversation_id = conversation['id']

    def test_send_and_read_messages(self):
        sent = client_for(self.traveler).post(self.url, {'content': '  See you at the MRT exit  '}, format='json')

        self.assertEqual(sent.status_code, status.HTTP_201_CREATED)
        self.assertEqual(sent.data['data']['content'], 'See you at the MRT exit')
        self.assertEqual(sent.data['data']['sender']['id'], self.traveler.id)

        detail = client_for(self.guide).get(f'/api/conversations/{self.conversation_id}/')
        self.assertEqual(detail.data['data']['unread_count'], 1)

        listing = client_for(self.guide).get(self.url)
        self.assertEqual(listing.status_code, status.HTTP_200_OK)
        self.assertEqual(len(listing.data['data']), 1)

        # Reading the messages marks the conversation as read
        detail = client_for(self.guide).get(f'/api/conversations/{self.conversation_id}/')
        self.assertEqual(detail.data['data']['unread_count'], 0)

    def test_recipient_is_notified(self):
        client_for(self.traveler).post(self.url, {'content': 'Hello'}, format='json')
        self.assertEqual(
            Notification.objects.filter(user=self.guide, notification_type='MESSAGE_RECEIVED').count(), 2
        )
        self.assertFalse(Notification.objects.filter(user=self.traveler).exists())

    def test_empty_message(self):
        response = client_for(self.traveler).post(self.url, {'content': '   '}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('content', response.data['details'])

    def test_attachment_without_text(self):
        response = client_for(self.traveler).post(
            self.url,
            {'message_type': 'IMAGE', 'attachment_url': 'https://cdn.example.com/map.png'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_users_cannot_send_system_messages(self):
        response = client_for(self.traveler).post(
            self.url, {'content': 'Booking confirmed', 'message_type': 'SYSTEM'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('message_type', response.data['details'])

    def test_outsider_cannot_post(self):
        response = client_for(make_user('outsider@test.com')).post(self.url, {'content': 'Hi'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Message.objects.exists())

    def test_invalid_before_parameter(self):
        response = client_for(self.traveler).get(self.url, {'before': 'yesterday'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ConversationAttachmentTests(TestCase):
    def setUp(self):
        self.traveler = make_user('traveler@test.com')
        self.guide = make_guide()
        conversation = client_for(self.traveler).post(
            '/api/conversations/', {'participant_ids': [self.guide.id]}, format='json'
        ).data['data']
        self.conversation_id = conversation['id']
        self.url = f'/api/conversations/{self.conversation_id}/attachments/'

    def test_upload_document(self):
        itinerary = SimpleUploadedFile('itinerary.pdf', b'%PDF-1.4 test', content_type='application/pdf')
        response = client_for(self.guide).post(self.url, {'file': itinerary}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['message_type'], 'FILE')
        self.assertIsNone(data['thumbnail_url'])
        self.assertEqual(data['conversation_id'], self.conversation_id)
        self.assertEqual(data['uploaded_by'], self.guide.id)
        self.assertIn(f'/media/chat/{self.conversation_id}/', data['url'])
        self.assertTrue(default_storage.exists(data['url'].split('/media/', 1)[1]))

    def test_upload_image_has_thumbnail(self):
        response = client_for(self.traveler).post(self.url, {'file': make_image('meetup.png')}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['message_type'], 'IMAGE')
        self.assertEqual(response.data['data']['thumbnail_url'], response.data['data']['url'])

    def test_unsupported_type(self):
        archive = SimpleUploadedFile('photos.zip', b'PK\x03\x04', content_type='application/zip')
        response = client_for(self.traveler).post(self.url, {'file': archive}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('file', response.data['details'])

    @override_settings(UPLOAD_LIMITS={'POST_IMAGE': 1024, 'POST_VIDEO': 1024, 'CHAT_FILE': 1024})
    def test_file_too_large(self):
        notes = SimpleUploadedFile('notes.txt', b'a' * 2048, content_type='text/plain')
        response = client_for(self.traveler).post(self.url, {'file': notes}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('file', response.data['details'])

    def test_missing_file(self):
        response = client_for(self.traveler).post(self.url, {}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_outsider_cannot_upload(self):
        outsider = make_user('outsider@test.com')
        response = client_for(outsider).post(self.url, {'file': make_image()}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
