"""
Tests for the viewer-scoped views.

Focus areas:
1. Guest short-circuit (viewer-relative fields are constant False)
2. Visibility (drafts only for their owner)
3. Sensitive fields never leave the store
4. Query counts stay flat
"""

from django.db import connection
from django.test import TestCase, override_settings
from django.test.utils import CaptureQueriesContext

from social import queries
from social.errors import InvalidOperation, NotFound, Unauthenticated
from social.pipeline import Lookup
from social.services import toggle_post_like

from .helpers import follow, like_comment, like_post, make_comment, make_post, make_user

SENSITIVE = ('password', 'refresh_token')


def assert_no_sensitive_fields(test, value):
    """Walk a result payload and fail on any sensitive key."""
    if isinstance(value, dict):
        for key, item in value.items():
            test.assertNotIn(key, SENSITIVE)
            assert_no_sensitive_fields(test, item)
    elif isinstance(value, list):
        for item in value:
            assert_no_sensitive_fields(test, item)


class PostDetailTestCase(TestCase):

    def setUp(self):
        self.author = make_user('author', password='hash', refresh_token='live-token')
        self.reader = make_user('reader')
        self.post = make_post(self.author)
        like_post(self.reader, self.post)
        follow(self.reader, self.author)

    def test_member_sees_own_relations(self):
        detail = queries.get_post_detail(self.post.id, self.reader.id)

        self.assertEqual(detail['likes_count'], 1)
        self.assertTrue(detail['is_liked'])
        self.assertEqual(detail['owner']['subscribers_count'], 1)
        self.assertTrue(detail['owner']['is_subscribed'])
        self.assertEqual(detail['owner']['username'], 'author')

    def test_guest_short_circuit(self):
        """Guests get False for viewer fields regardless of relation rows."""
        detail = queries.get_post_detail(self.post.id, None)

        self.assertEqual(detail['likes_count'], 1)
        self.assertIs(detail['is_liked'], False)
        self.assertEqual(detail['owner']['subscribers_count'], 1)
        self.assertIs(detail['owner']['is_subscribed'], False)

    def test_guest_stages_have_no_membership_join(self):
        stages = queries.post_detail_stages(self.post.id, None)
        likes = [stage for stage in stages if isinstance(stage, Lookup) and stage.kind == 'like'][0]
        # Guest joins only like ids, never liked_by_id
        self.assertEqual(likes.pipeline[0].fields, ('id',))

    def test_output_allow_list(self):
        detail = queries.get_post_detail(self.post.id, self.reader.id)
        self.assertEqual(set(detail), {
            'id', 'content', 'image_url', 'views', 'is_published', 'created_at',
            'owner', 'likes_count', 'is_liked',
        })
        self.assertEqual(set(detail['owner']), {
            'id', 'username', 'full_name', 'avatar_url', 'subscribers_count', 'is_subscribed',
        })
        assert_no_sensitive_fields(self, detail)

    def test_draft_visible_only_to_owner(self):
        draft = make_post(self.author, published=False)

        self.assertEqual(queries.get_post_detail(draft.id, self.author.id)['id'], draft.id)
        with self.assertRaises(NotFound):
            queries.get_post_detail(draft.id, self.reader.id)
        with self.assertRaises(NotFound):
            queries.get_post_detail(draft.id, None)

    def test_missing_post(self):
        with self.assertRaises(NotFound):
            queries.get_post_detail(999999, self.reader.id)

    def test_query_count_is_flat(self):
        for i in range(10):
            like_post(make_user(f'fan{i}'), self.post)

        with CaptureQueriesContext(connection) as context:
            queries.get_post_detail(self.post.id, self.reader.id)

        # post, likes, owner, owner's followers
        self.assertLessEqual(len(context), 4)


class LikeToggleEndToEndTestCase(TestCase):
    """u1 publishes p1; u2 likes and unlikes it."""

    def test_like_visible_to_member_not_guest(self):
        u1 = make_user('u1')
        u2 = make_user('u2')
        p1 = make_post(u1)

        self.assertEqual(toggle_post_like(u2.id, p1.id), 'added')

        member_view = queries.get_post_detail(p1.id, u2.id)
        self.assertEqual(member_view['likes_count'], 1)
        self.assertTrue(member_view['is_liked'])

        guest_view = queries.get_post_detail(p1.id, None)
        self.assertEqual(guest_view['likes_count'], 1)
        self.assertFalse(guest_view['is_liked'])

        self.assertEqual(toggle_post_like(u2.id, p1.id), 'removed')
        self.assertEqual(queries.get_post_detail(p1.id, u2.id)['likes_count'], 0)


class CommentListTestCase(TestCase):

    def setUp(self):
        self.author = make_user('author')
        self.reader = make_user('reader')
        self.post = make_post(self.author)
        self.old = make_comment(self.post, self.author, 'first', minutes_ago=10)
        self.new = make_comment(self.post, self.reader, 'second', minutes_ago=1)
        like_comment(self.reader, self.old)

    def test_newest_first_with_counts(self):
        page = queries.get_post_comments(self.post.id, self.reader.id)

        self.assertEqual([c['id'] for c in page['items']], [self.new.id, self.old.id])
        self.assertEqual(page['total'], 2)
        self.assertEqual(page['items'][1]['likes_count'], 1)
        self.assertTrue(page['items'][1]['is_liked'])
        self.assertFalse(page['items'][0]['is_liked'])
        self.assertEqual(page['items'][0]['owner']['username'], 'reader')

    def test_guest_never_liked(self):
        page = queries.get_post_comments(self.post.id, None)
        self.assertEqual([c['is_liked'] for c in page['items']], [False, False])
        self.assertEqual(page['items'][1]['likes_count'], 1)

    def test_missing_post(self):
        with self.assertRaises(NotFound):
            queries.get_post_comments(999999, self.reader.id)


class FeedTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.cats = make_post(self.alice, 'Cats are great', minutes_ago=30, views=5)
        self.dogs = make_post(self.bob, 'Dogs are loyal', minutes_ago=20, views=50)
        self.birds = make_post(self.alice, 'Birds and cats', minutes_ago=10, views=1)
        self.draft = make_post(self.alice, 'Secret cats draft', published=False)

    def ids(self, page):
        return [item['id'] for item in page['items']]

    def test_default_newest_first_published_only(self):
        page = queries.get_feed()
        self.assertEqual(self.ids(page), [self.birds.id, self.dogs.id, self.cats.id])
        self.assertEqual(page['total'], 3)
        self.assertEqual(set(page['items'][0]['owner']), {'id', 'username', 'avatar_url'})

    def test_search_content(self):
        page = queries.get_feed(query='cats')
        self.assertEqual(set(self.ids(page)), {self.cats.id, self.birds.id})

    def test_owner_filter(self):
        page = queries.get_feed(owner_id=self.bob.id)
        self.assertEqual(self.ids(page), [self.dogs.id])

    def test_caller_sort(self):
        self.assertEqual(
            self.ids(queries.get_feed(sort_by='views')),
            [self.dogs.id, self.cats.id, self.birds.id]
        )
        self.assertEqual(
            self.ids(queries.get_feed(sort_by='views', sort_type='asc')),
            [self.birds.id, self.cats.id, self.dogs.id]
        )

    def test_unknown_sort_field(self):
        with self.assertRaises(InvalidOperation):
            queries.get_feed(sort_by='password')

    @override_settings(DISCOVERY_SAMPLE_SIZE=2)
    def test_next_posts_excludes_current(self):
        rows = queries.get_next_posts(self.cats.id)
        self.assertEqual(len(rows), 2)
        self.assertNotIn(self.cats.id, [row['id'] for row in rows])
        self.assertNotIn(self.draft.id, [row['id'] for row in rows])
        self.assertTrue(all(row['owner']['username'] for row in rows))

    def test_next_posts_missing_post(self):
        with self.assertRaises(NotFound):
            queries.get_next_posts(999999)


class ProfileTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice', refresh_token='secret-token')
        self.bob = make_user('bob')
        self.carol = make_user('carol')
        follow(self.bob, self.alice)
        follow(self.carol, self.alice)
        follow(self.alice, self.carol)

    def test_counts_and_subscription(self):
        profile = queries.get_profile('ALICE', self.bob.id)

        self.assertEqual(profile['username'], 'alice')
        self.assertEqual(profile['subscribers_count'], 2)
        self.assertEqual(profile['channels_subscribed_to_count'], 1)
        self.assertTrue(profile['is_subscribed'])
        self.assertIn('email', profile)
        assert_no_sensitive_fields(self, profile)

    def test_not_subscribed(self):
        profile = queries.get_profile('carol', self.bob.id)
        self.assertFalse(profile['is_subscribed'])
        self.assertEqual(profile['subscribers_count'], 1)

    def test_requires_viewer(self):
        with self.assertRaises(Unauthenticated):
            queries.get_profile('alice', None)

    def test_missing_user(self):
        with self.assertRaises(NotFound):
            queries.get_profile('nobody', self.bob.id)

    def test_followers_and_following(self):
        followers = queries.get_followers(self.alice.id)
        self.assertEqual(followers['follower_count'], 2)
        self.assertEqual(
            [user['username'] for user in followers['followers']],
            ['carol', 'bob']
        )

        following = queries.get_following(self.bob.id)
        self.assertEqual(following['following_count'], 1)
        self.assertEqual(following['followed_users'][0]['username'], 'alice')

        self.assertEqual(queries.get_following(make_user('dave').id), {'followed_users': [], 'following_count': 0})

    def test_current_user(self):
        me = queries.get_current_user(self.alice.id)
        self.assertEqual(me['username'], 'alice')
        assert_no_sensitive_fields(self, me)


class PerViewerListsTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.first = make_post(self.alice, 'first', minutes_ago=3)
        self.second = make_post(self.alice, 'second', minutes_ago=2)
        self.hidden = make_post(self.alice, 'hidden', published=False)

    def test_watch_history_in_stored_order(self):
        self.bob.watch_history = [self.first.id, 999999, self.second.id, self.hidden.id]
        self.bob.save()

        history = queries.get_watch_history(self.bob.id)

        # Missing and invisible posts drop out; order is kept
        self.assertEqual([post['id'] for post in history], [self.first.id, self.second.id])
        self.assertEqual(history[0]['owner']['username'], 'alice')
        assert_no_sensitive_fields(self, history)

    def test_saved_posts(self):
        self.bob.saved_posts = [self.second.id, self.first.id]
        self.bob.save()
        self.assertEqual(
            [post['id'] for post in queries.get_saved_posts(self.bob.id)],
            [self.second.id, self.first.id]
        )

    def test_liked_posts_and_comments(self):
        like_post(self.bob, self.first)
        like_post(self.bob, self.second)
        comment = make_comment(self.first, self.alice)
        like_comment(self.bob, comment)

        liked = queries.get_liked_posts(self.bob.id)
        self.assertEqual([post['id'] for post in liked], [self.second.id, self.first.id])

        comments = queries.get_liked_comments(self.bob.id)
        self.assertEqual(comments[0]['id'], comment.id)
        self.assertEqual(comments[0]['owner']['username'], 'alice')
