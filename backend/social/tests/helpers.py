"""Small builders shared by the test modules."""

from datetime import timedelta

from django.utils import timezone

from social.models import Comment, Follow, Like, Post, User

FAST_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

TEST_ACCESS_SECRET = 'test-access-secret-0123456789-abcdefghijklmnop'
TEST_REFRESH_SECRET = 'test-refresh-secret-0123456789-abcdefghijklmnop'


def make_user(username, **fields):
    fields.setdefault('email', f'{username}@example.com')
    fields.setdefault('full_name', username.title())
    return User.objects.create(username=username, **fields)


def make_post(owner, content='Hello world', published=True, minutes_ago=0, **fields):
    return Post.objects.create(
        owner=owner,
        content=content,
        image_url=fields.pop('image_url', f'https://cdn.example.com/{owner.username}.png'),
        is_published=published,
        created_at=timezone.now() - timedelta(minutes=minutes_ago),
        **fields
    )


def make_comment(post, owner, content='Nice post', minutes_ago=0):
    return Comment.objects.create(
        post=post,
        owner=owner,
        content=content,
        created_at=timezone.now() - timedelta(minutes=minutes_ago),
    )


def like_post(user, post):
    return Like.objects.create(liked_by=user, post=post)


def like_comment(user, comment):
    return Like.objects.create(liked_by=user, comment=comment)


def follow(follower, followed):
    return Follow.objects.create(follower=follower, followed_user=followed)
