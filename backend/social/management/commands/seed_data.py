"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data [--users N] [--posts N] [--comments N] [--clear]

Everything is created through the session manager and the services, so the
seeded rows obey the same rules as API traffic.
"""

import base64
import random

from django.core.management.base import BaseCommand

from social.models import Comment, Follow, Like, Post, User
from social.services import add_comment, publish_post, record_view, toggle_follow, toggle_relation
from social.sessions import get_session_manager
from social.store import store

# 1x1 transparent PNG used as the image of every seeded post
PLACEHOLDER_PNG = base64.b64decode(
    'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII='
)


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of users to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=20,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=100,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            Like.objects.all().delete()
            Follow.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating users...')
        user_ids = self._create_users(options['users'])

        self.stdout.write('Creating posts...')
        post_ids = self._create_posts(user_ids, options['posts'])

        self.stdout.write('Creating comments...')
        comment_ids = self._create_comments(user_ids, post_ids, options['comments'])

        self.stdout.write('Creating likes, follows and views...')
        self._create_relations(user_ids, post_ids, comment_ids)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(user_ids)} users\n'
            f'  - {len(post_ids)} posts\n'
            f'  - {len(comment_ids)} comments\n'
            f'  - Likes, follows and watch history'
        ))

    def _create_users(self, count):
        sessions = get_session_manager()
        user_ids = []
        for i in range(count):
            username = f'user{i+1}'
            existing = store.first('user', username=username)
            if existing is not None:
                user_ids.append(existing.pk)
                continue
            identity = sessions.register(
                username=username,
                email=f'{username}@example.com',
                password='password123',
                full_name=f'User {i+1}',
            )
            user_ids.append(identity.id)
        return user_ids

    def _create_posts(self, user_ids, count):
        contents = [
            "Just discovered this amazing trick!",
            "I've been working on this for a while and wanted to share my thoughts with the community.",
            "Has anyone else experienced this? I'd love to hear your perspectives.",
            "This might be controversial, but I think we need to discuss this more openly.",
            "Here's what I learned after years of experience in this field.",
        ]

        post_ids = []
        for i in range(count):
            post = publish_post(
                random.choice(user_ids),
                f"{random.choice(contents)}\n\nPost #{i+1}",
                PLACEHOLDER_PNG,
                # Every fifth post stays a draft
                is_published=bool(i % 5),
                filename='seed.png',
            )
            post_ids.append(post['id'])
        return post_ids

    def _create_comments(self, user_ids, post_ids, count):
        comment_texts = [
            "Great point! I totally agree.",
            "Hmm, I'm not sure about this...",
            "Thanks for sharing!",
            "Can you elaborate on this?",
            "Well said!",
        ]
        published = list(Post.objects.filter(pk__in=post_ids, is_published=True).values_list('pk', flat=True))
        if not published:
            return []

        return [
            add_comment(random.choice(user_ids), random.choice(published), random.choice(comment_texts))['id']
            for _ in range(count)
        ]

    def _create_relations(self, user_ids, post_ids, comment_ids):
        published = set(Post.objects.filter(pk__in=post_ids, is_published=True).values_list('pk', flat=True))

        for post_id in published:
            for liker in random.sample(user_ids, k=len(user_ids) // 2):
                if not store.exists('like', liked_by_id=liker, post_id=post_id):
                    toggle_relation(liker, 'post', post_id)

        for comment_id in comment_ids:
            if random.random() < 0.3:
                for liker in random.sample(user_ids, k=min(3, len(user_ids))):
                    if not store.exists('like', liked_by_id=liker, comment_id=comment_id):
                        toggle_relation(liker, 'comment', comment_id)

        for follower in user_ids:
            for followed in random.sample(user_ids, k=min(3, len(user_ids))):
                if followed != follower and not store.exists(
                    'follow', follower_id=follower, followed_user_id=followed
                ):
                    toggle_follow(follower, followed)

            for post_id in random.sample(sorted(published), k=min(5, len(published))):
                record_view(follower, post_id)
