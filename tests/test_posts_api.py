"""
Tests for the social feed: posts, comments, likes and bookmarks, shares and
embedded services.
"""

from datetime import timedelta

from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from marketplace.models import ActivityLog, Notification, Post, PostComment, PostLike, PostServiceEmbed
from tests.helpers import client_for, make_admin, make_guide, make_image, make_service, make_user


def make_post(author, **overrides):
    data = {
        'author_type': 'GUIDE' if author.role == 'GUIDE' else 'CONSUMER',
        'title': 'Three days of eating in Taipei',
        'content': 'Start at Raohe night market and end with breakfast at Fuhang soy milk.',
        'category': 'food',
        'tags': ['food', 'taipei'],
        'location': 'Taipei',
        'status': 'PUBLISHED',
    }
    data.update(overrides)
    return Post.objects.create(author=author, **data)


class PostCreateTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.service = make_service(self.guide)
        self.payload = {
            'title': 'My favourite night market stalls',
            'content': 'Pepper buns, oyster omelettes and bubble tea.',
            'category': 'Food',
            'tags': ['food'],
        }

    def test_guide_post_embeds_own_service(self):
        self.payload['service_ids'] = [self.service.id]
        response = client_for(self.guide).post('/api/posts/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['author_type'], 'GUIDE')
        self.assertEqual(data['category'], 'food')
        self.assertEqual(data['status'], 'PUBLISHED')
        self.assertIsNotNone(data['published_at'])
        self.assertEqual(data['embedded_services'][0]['service']['id'], self.service.id)

    def test_traveler_post_defaults_to_consumer(self):
        response = client_for(self.traveler).post('/api/posts/', self.payload, format='json')
        self.assertEqual(response.data['data']['author_type'], 'CONSUMER')

    def test_traveler_cannot_publish_guide_post(self):
        self.payload['author_type'] = 'GUIDE'
        response = client_for(self.traveler).post('/api/posts/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Post.objects.exists())

    def test_guide_cannot_embed_another_guides_service(self):
        other = make_service(make_guide('other@test.com'))
        self.payload['service_ids'] = [other.id]
        response = client_for(self.guide).post('/api/posts/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Post.objects.exists())

    def test_unknown_service_id(self):
        self.payload['service_ids'] = [99999]
        response = client_for(self.guide).post('/api/posts/', self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('service_ids', response.data['details'])

    def test_required_fields(self):
        response = client_for(self.traveler).post('/api/posts/', {'title': '  '}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        for field in ('title', 'content', 'category'):
            self.assertIn(field, response.data['details'])

    def test_anonymous_cannot_post(self):
        response = client_for().post('/api/posts/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class PostListTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.traveler = make_user('traveler@test.com')
        self.popular = make_post(self.guide, title='Popular guide tips', like_count=50, view_count=10)
        self.fresh = make_post(self.traveler, title='Fresh traveler story', category='culture', location='Tainan')
        self.draft = make_post(self.traveler, title='Unfinished draft', status='DRAFT')

    def test_lists_published_posts(self):
        response = client_for().get('/api/posts/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = {p['id'] for p in response.data['data']}
        self.assertEqual(ids, {self.popular.id, self.fresh.id})

    def test_filters(self):
        by_category = client_for().get('/api/posts/', {'category': 'Culture'})
        self.assertEqual([p['id'] for p in by_category.data['data']], [self.fresh.id])

        by_type = client_for().get('/api/posts/', {'author_type': 'guide'})
        self.assertEqual([p['id'] for p in by_type.data['data']], [self.popular.id])

        by_author = client_for().get('/api/posts/', {'author': self.traveler.id})
        self.assertEqual([p['id'] for p in by_author.data['data']], [self.fresh.id])

        by_search = client_for().get('/api/posts/', {'search': 'tips'})
        self.assertEqual([p['id'] for p in by_search.data['data']], [self.popular.id])

    def test_sort_popular(self):
        response = client_for().get('/api/posts/', {'sort': 'popular'})
        self.assertEqual(response.data['data'][0]['id'], self.popular.id)

    def test_trending_excludes_old_posts(self):
        Post.objects.filter(pk=self.fresh.pk).update(published_at=timezone.now() - timedelta(days=10))
        response = client_for().get('/api/posts/', {'sort': 'trending'})

        self.assertEqual([p['id'] for p in response.data['data']], [self.popular.id])

    def test_invalid_sort(self):
        response = client_for().get('/api/posts/', {'sort': 'oldest'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_feed_ranks_by_engagement_and_freshness(self):
        old = make_post(self.guide, title='Old but loved', like_count=60)
        Post.objects.filter(pk=old.pk).update(published_at=timezone.now() - timedelta(days=30))

        response = client_for().get('/api/posts/feed/')

        ids = [p['id'] for p in response.data['data']]
        # 50 likes and 10 views posted today outrank 60 likes a month ago
        self.assertEqual(ids, [self.popular.id, old.id, self.fresh.id])

    def test_liked_flags_for_current_user(self):
        PostLike.objects.create(post=self.popular, user=self.traveler, like_type='LIKE')
        PostLike.objects.create(post=self.fresh, user=self.traveler, like_type='BOOKMARK')

        response = client_for(self.traveler).get('/api/posts/')
        flags = {p['id']: (p['is_liked'], p['is_bookmarked']) for p in response.data['data']}

        self.assertEqual(flags[self.popular.id], (True, False))
        self.assertEqual(flags[self.fresh.id], (False, True))


class PostDetailTests(TestCase):
    def setUp(self):
        self.author = make_user('author@test.com')
        self.post = make_post(self.author)
        self.url = f'/api/posts/{self.post.id}/'

    def test_view_increments_view_count(self):
        client_for().get(self.url)
        response = client_for().get(self.url)

        self.assertEqual(response.data['data']['view_count'], 2)

    def test_draft_visible_only_to_author(self):
        self.post.status = 'DRAFT'
        self.post.save()

        self.assertEqual(client_for().get(self.url).status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(client_for(self.author).get(self.url).status_code, status.HTTP_200_OK)

    def test_author_updates_post(self):
        response = client_for(self.author).patch(self.url, {'title': 'Updated title'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['title'], 'Updated title')

    def test_others_cannot_update_or_delete(self):
        client = client_for(make_user('other@test.com'))

        self.assertEqual(client.patch(self.url, {'title': 'Hacked'}, format='json').status_code,
                         status.HTTP_403_FORBIDDEN)
        self.assertEqual(client.delete(self.url).status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_delete_is_audited(self):
        admin = make_admin()
        response = client_for(admin).delete(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Post.objects.filter(pk=self.post.pk).exists())
        self.assertTrue(ActivityLog.objects.filter(action='POST_DELETED', actor=admin).exists())


class PostInteractionTests(TestCase):
    def setUp(self):
        self.author = make_user('author@test.com')
        self.reader = make_user('reader@test.com')
        self.post = make_post(self.author)

    def test_comment_increments_count_and_notifies_author(self):
        response = client_for(self.reader).post(
            f'/api/posts/{self.post.id}/comments/', {'content': 'Great list!'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comment_count, 1)
        self.assertTrue(Notification.objects.filter(user=self.author, notification_type='POST_COMMENT').exists())

    def test_own_comment_does_not_notify(self):
        client_for(self.author).post(f'/api/posts/{self.post.id}/comments/', {'content': 'Edit: typo'}, format='json')
        self.assertFalse(Notification.objects.filter(user=self.author).exists())

    def test_reply_must_belong_to_same_post(self):
        other_post = make_post(self.author, title='Another story')
        parent = PostComment.objects.create(post=other_post, author=self.reader, content='Hi')

        response = client_for(self.reader).post(
            f'/api/posts/{self.post.id}/comments/', {'content': 'Reply', 'parent_id': parent.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('parent_id', response.data['details'])

    def test_list_comments_in_order(self):
        first = PostComment.objects.create(post=self.post, author=self.reader, content='First')
        second = PostComment.objects.create(post=self.post, author=self.author, content='Second')

        response = client_for().get(f'/api/posts/{self.post.id}/comments/')
        self.assertEqual([c['id'] for c in response.data['data']], [first.id, second.id])

    def test_like_toggles(self):
        client = client_for(self.reader)
        url = f'/api/posts/{self.post.id}/likes/'

        liked = client.post(url, {'like_type': 'like'}, format='json')
        self.assertEqual(liked.data['data'], {'post_id': self.post.id, 'like_type': 'LIKE', 'is_active': True, 'count': 1})

        unliked = client.post(url, {'like_type': 'LIKE'}, format='json')
        self.assertFalse(unliked.data['data']['is_active'])
        self.assertEqual(unliked.data['data']['count'], 0)

    def test_bookmark_is_independent_of_like(self):
        client = client_for(self.reader)
        url = f'/api/posts/{self.post.id}/likes/'
        client.post(url, {'like_type': 'LIKE'}, format='json')
        response = client.post(url, {'like_type': 'BOOKMARK'}, format='json')

        self.assertTrue(response.data['data']['is_active'])
        self.post.refresh_from_db()
        self.assertEqual((self.post.like_count, self.post.bookmark_count), (1, 1))

    def test_invalid_like_type(self):
        response = client_for(self.reader).post(
            f'/api/posts/{self.post.id}/likes/', {'like_type': 'LOVE'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_share_is_public(self):
        response = client_for().post(f'/api/posts/{self.post.id}/share/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['share_count'], 1)


class PostEmbedTests(TestCase):
    def setUp(self):
        self.guide = make_guide()
        self.service = make_service(self.guide)
        self.post = make_post(self.guide)
        self.url = f'/api/posts/{self.post.id}/embed-service/'

    def test_embed_and_remove(self):
        client = client_for(self.guide)
        response = client.post(self.url, {'service_id': self.service.id, 'embed_type': 'INLINE'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['embed_type'], 'INLINE')

        removed = client.delete(f'{self.url}{self.service.id}/')
        self.assertEqual(removed.status_code, status.HTTP_200_OK)
        self.assertFalse(PostServiceEmbed.objects.exists())

        missing = client.delete(f'{self.url}{self.service.id}/')
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)

    def test_duplicate_embed(self):
        client = client_for(self.guide)
        client.post(self.url, {'service_id': self.service.id}, format='json')
        response = client.post(self.url, {'service_id': self.service.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_inactive_service(self):
        self.service.status = 'INACTIVE'
        self.service.save()
        response = client_for(self.guide).post(self.url, {'service_id': self.service.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_consumer_post_may_embed_any_service(self):
        traveler = make_user('traveler@test.com')
        post = make_post(traveler)
        response = client_for(traveler).post(
            f'/api/posts/{post.id}/embed-service/', {'service_id': self.service.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_only_author_can_embed(self):
        response = client_for(make_user('stranger@test.com')).post(
            self.url, {'service_id': self.service.id}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


LIMITS = {'POST_IMAGE': 1024, 'POST_VIDEO': 4096, 'CHAT_FILE': 1024}


class PostMediaUploadTests(TestCase):
    def setUp(self):
        self.client = client_for(make_user('traveler@test.com'))
        self.url = '/api/posts/media/'

    def test_upload_image_and_video(self):
        video = SimpleUploadedFile('clip.mp4', b'\x00' * 64, content_type='video/mp4')
        response = self.client.post(self.url, {'files': [make_image('stall.png'), video]}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['success_count'], 2)
        self.assertEqual([f['type'] for f in data['files']], ['image', 'video'])
        self.assertIn('/media/posts/images/', data['files'][0]['url'])
        self.assertIn('/media/posts/videos/', data['files'][1]['url'])

        stored = data['files'][0]['url'].split('/media/', 1)[1]
        self.assertTrue(default_storage.exists(stored))

    def test_invalid_files_are_skipped(self):
        notes = SimpleUploadedFile('notes.txt', b'plain text', content_type='text/plain')
        response = self.client.post(self.url, {'files': [make_image(), notes]}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['success_count'], 1)
        self.assertEqual(response.data['data']['failure_count'], 1)
        self.assertEqual(response.data['data']['errors'][0]['position'], 2)

    def test_unsupported_type_is_rejected(self):
        archive = SimpleUploadedFile('photos.zip', b'PK\x03\x04', content_type='application/zip')
        response = self.client.post(self.url, {'files': [archive]}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['details'][0]['name'], 'photos.zip')

    def test_extension_must_match_type(self):
        disguised = SimpleUploadedFile('photo.exe', b'\x89PNG', content_type='image/png')
        response = self.client.post(self.url, {'files': [disguised]}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(UPLOAD_LIMITS=LIMITS)
    def test_size_limits_depend_on_media_type(self):
        image = SimpleUploadedFile('big.png', b'\x00' * 2048, content_type='image/png')
        rejected = self.client.post(self.url, {'files': [image]}, format='multipart')
        self.assertEqual(rejected.status_code, status.HTTP_400_BAD_REQUEST)

        # The same size is within the video limit
        video = SimpleUploadedFile('big.mp4', b'\x00' * 2048, content_type='video/mp4')
        accepted = self.client.post(self.url, {'files': [video]}, format='multipart')
        self.assertEqual(accepted.status_code, status.HTTP_201_CREATED)

    @override_settings(MAX_POST_MEDIA_FILES=2)
    def test_too_many_files(self):
        files = [make_image(f'photo{i}.png') for i in range(3)]
        response = self.client.post(self.url, {'files': files}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('files', response.data['details'])

    def test_no_files(self):
        response = self.client.post(self.url, {}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('files', response.data['details'])

    def test_requires_authentication(self):
        response = client_for().post(self.url, {'files': [make_image()]}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
