"""
Tests for the pipeline stages and the entity store.

Focus areas:
1. Joins are batched (one query per join level, not per row)
2. Left-outer semantics and list-order joins
3. Error translation (NotFound / Conflict / InvalidOperation)
"""

from django.db import connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext

from social.errors import Conflict, InvalidOperation, NotFound
from social.pipeline import (
    AddFields,
    Count,
    Group,
    Lookup,
    Match,
    Project,
    Push,
    Sample,
    Sort,
    Unwind,
    contains,
    size_of,
    split_stages,
)
from social.store import store

from .helpers import follow, like_post, make_post, make_user


class LookupTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.carol = make_user('carol')
        self.posts = [make_post(self.alice, f'Post {i}', minutes_ago=i) for i in range(5)]

    def test_join_is_one_query_per_level(self):
        """20 posts with likes and owners must not cost 20 queries."""
        for post in self.posts:
            like_post(self.bob, post)
            like_post(self.carol, post)

        with CaptureQueriesContext(connection) as context:
            rows = store.aggregate('post', [
                Match(owner=self.alice),
                Lookup('like', 'id', 'post_id', 'likes'),
                Lookup('user', 'owner_id', 'id', 'owner', single=True, pipeline=[
                    Lookup('follow', 'id', 'followed_user_id', 'followers'),
                    Project('id', 'username', 'followers'),
                ]),
            ])

        # posts, likes, users, follows
        self.assertEqual(len(context), 4)
        self.assertEqual(len(rows), 5)
        self.assertTrue(all(len(row['likes']) == 2 for row in rows))
        self.assertEqual(rows[0]['owner']['username'], 'alice')

    def test_unmatched_join_is_empty_not_error(self):
        rows = store.aggregate('post', [
            Match(id=self.posts[0].id),
            Lookup('like', 'id', 'post_id', 'likes'),
            Lookup('user', 'id', 'id', 'nobody', single=True, pipeline=[Match(username='zed')]),
        ])

        self.assertEqual(rows[0]['likes'], [])
        self.assertIsNone(rows[0]['nobody'])

    def test_list_valued_join_keeps_list_order(self):
        history = [self.posts[3].id, self.posts[0].id, 999999, self.posts[2].id]
        self.bob.watch_history = history
        self.bob.save()

        rows = store.aggregate('user', [
            Match(id=self.bob.id),
            Lookup('post', 'watch_history', 'id', 'history', pipeline=[Project('id')]),
        ])

        self.assertEqual(
            [post['id'] for post in rows[0]['history']],
            [self.posts[3].id, self.posts[0].id, self.posts[2].id]
        )

    def test_membership_helpers(self):
        like_post(self.bob, self.posts[0])
        follow(self.carol, self.alice)

        rows = store.aggregate('post', [
            Match(id=self.posts[0].id),
            Lookup('like', 'id', 'post_id', 'likes', pipeline=[Project('liked_by_id')]),
            AddFields(
                likes_count=size_of('likes'),
                liked_by_bob=contains('likes', 'liked_by_id', self.bob.id),
                liked_by_carol=contains('likes', 'liked_by_id', self.carol.id),
                source='test',
            ),
            Project('likes_count', 'liked_by_bob', 'liked_by_carol', 'source'),
        ])

        self.assertEqual(rows, [{
            'likes_count': 1,
            'liked_by_bob': True,
            'liked_by_carol': False,
            'source': 'test',
        }])

    def test_group_sort_unwind(self):
        follow(self.bob, self.alice)
        follow(self.carol, self.alice)

        rows = store.aggregate('follow', [
            Match(followed_user=self.alice),
            Lookup('user', 'follower_id', 'id', 'user', single=True, pipeline=[Project('username')]),
            Unwind('user'),
            Sort('-follower_id'),
            Group(names=Push('user'), total=Count()),
        ])

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['total'], 2)
        self.assertEqual([user['username'] for user in rows[0]['names']], ['carol', 'bob'])

    def test_sample_returns_at_most_size(self):
        rows = store.aggregate('post', [Match(owner=self.alice), Sample(3), Project('id')])
        self.assertEqual(len(rows), 3)
        self.assertEqual(len({row['id'] for row in rows}), 3)

    def test_match_after_document_stage_rejected(self):
        with self.assertRaises(ValueError):
            store.aggregate('post', [Project('id'), Match(id=1)])

    def test_group_not_allowed_inside_join(self):
        with self.assertRaises(ValueError):
            Lookup('like', 'id', 'post_id', 'likes', pipeline=[Group(total=Count())])


class SplitStagesTestCase(TestCase):

    def test_source_run_ends_at_first_document_stage(self):
        stages = [Match(a=1), Sort('b'), Project('a'), Sort('c')]
        source, rest = split_stages(stages)
        self.assertEqual(source, stages[:2])
        self.assertEqual(rest, stages[2:])

    def test_source_run_ends_after_sample(self):
        stages = [Match(a=1), Sample(2), Sort('b')]
        source, rest = split_stages(stages)
        self.assertEqual(source, stages[:2])
        self.assertEqual(rest, stages[2:])


class EntityStoreTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')

    def test_get_missing_raises_not_found(self):
        with self.assertRaises(NotFound):
            store.get('post', 424242)

    def test_delete_missing_raises_not_found(self):
        with self.assertRaises(NotFound):
            store.delete('comment', 424242)

    def test_unknown_kind(self):
        with self.assertRaises(InvalidOperation):
            store.get('playlist', 1)

    def test_duplicate_username_is_conflict(self):
        with self.assertRaises(Conflict):
            store.create('user', username='alice', email='other@example.com')

    def test_duplicate_follow_is_conflict_and_keeps_transaction_usable(self):
        bob = make_user('bob')
        store.create('follow', follower_id=bob.id, followed_user_id=self.alice.id)
        with self.assertRaises(Conflict):
            store.create('follow', follower_id=bob.id, followed_user_id=self.alice.id)

        # The failed insert only rolled back its own savepoint
        self.assertTrue(store.exists('follow', follower_id=bob.id))

    def test_self_follow_violates_check_constraint(self):
        with self.assertRaises(Conflict):
            store.create('follow', follower_id=self.alice.id, followed_user_id=self.alice.id)

    def test_increment_is_atomic_update(self):
        post = make_post(self.alice)
        store.increment('post', post.id, 'views')
        store.increment('post', post.id, 'views')
        post.refresh_from_db()
        self.assertEqual(post.views, 2)

    def test_update_where_returns_changed_rows(self):
        changed = store.update_where('user', {'pk': self.alice.pk, 'refresh_token': None}, refresh_token='abc')
        self.assertEqual(changed, 1)
        changed = store.update_where('user', {'pk': self.alice.pk, 'refresh_token': None}, refresh_token='xyz')
        self.assertEqual(changed, 0)
