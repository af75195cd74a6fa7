"""
Data Models for PostGraph
=========================

Five entity kinds: User, Post, Comment, Like, Follow.

Design Notes:
-------------
1. User extends AbstractUser so the auth framework owns password hashing.
   Saved posts and watch history are ordered id lists stored on the user row
   (JSON), joined by the view layer in list order.

2. Likes use one table with two nullable targets (post / comment).
   - Check constraint: exactly one target is set
   - Unique constraints per (liked_by, post) and (liked_by, comment)
   NULLs never collide in a unique index, so the two pair constraints
   coexist on one table.

3. Follow edges are directed (follower -> followed_user).
   - Check constraint forbids self-follow
   - Unique constraint per ordered pair

4. No implicit cascades from Post.
   Comment.post, Like.post and Like.comment are declared DO_NOTHING without
   a DB constraint. Post deletion removes dependents explicitly
   (see services.delete_post).

5. No denormalized counters. Like and follower counts are computed by the
   view layer from the relation rows.

Indexes Strategy:
-----------------
- post.is_published + post.created_at: feed ordering
- comment.post_id + comment.created_at: comment list for a post
- like.post_id / like.comment_id: counting likes per target
- follow.followed_user_id: follower counts
"""

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class User(AbstractUser):
    """
    Account record.

    `refresh_token` holds the single live refresh credential (or NULL).
    It is written only by sessions.SessionManager.
    """
    email = models.EmailField(unique=True)
    full_name = models.CharField(max_length=150, blank=True)
    avatar_url = models.URLField(max_length=1000, blank=True)
    cover_image_url = models.URLField(max_length=1000, blank=True)

    # Ordered set of post ids, oldest save first
    saved_posts = models.JSONField(default=list, blank=True)
    # Post ids, most recent first
    watch_history = models.JSONField(default=list, blank=True)

    refresh_token = models.TextField(null=True, blank=True)

    # Never leave the store through a view
    SENSITIVE_FIELDS = ('password', 'refresh_token')

    def save(self, *args, **kwargs):
        self.username = self.username.lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.username


class Post(models.Model):
    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True
    )
    content = models.TextField()
    image_url = models.URLField(max_length=1000)
    views = models.PositiveIntegerField(default=0)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_published', '-created_at'], name='post_published_created_idx'),
            models.Index(fields=['owner', '-created_at'], name='post_owner_created_idx'),
        ]

    def __str__(self):
        return f"Post {self.pk} by {self.owner_id}"


class Comment(models.Model):
    post = models.ForeignKey(
        Post,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='comments'
    )
    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    content = models.TextField()
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['post', '-created_at'], name='comment_post_created_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.owner_id} on {self.post_id}"


class Like(models.Model):
    """
    A like on exactly one of a post or a comment.

    CONCURRENCY:
    The pair constraints are the serialization point for toggles. Two
    concurrent inserts for the same pair cannot both commit; the loser gets
    an IntegrityError and services.toggle_relation retries once.
    """
    liked_by = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    post = models.ForeignKey(
        Post,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='likes'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='likes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['liked_by', 'post'],
                name='unique_like_per_user_per_post'
            ),
            models.UniqueConstraint(
                fields=['liked_by', 'comment'],
                name='unique_like_per_user_per_comment'
            ),
            models.CheckConstraint(
                condition=(
                    Q(post__isnull=False, comment__isnull=True) |
                    Q(post__isnull=True, comment__isnull=False)
                ),
                name='like_targets_exactly_one'
            ),
        ]
        indexes = [
            models.Index(fields=['post'], name='like_post_idx'),
            models.Index(fields=['comment'], name='like_comment_idx'),
            models.Index(fields=['liked_by', '-created_at'], name='like_user_created_idx'),
        ]

    def __str__(self):
        target = f"post {self.post_id}" if self.post_id else f"comment {self.comment_id}"
        return f"{self.liked_by_id} liked {target}"


class Follow(models.Model):
    """Directed follow edge: follower -> followed_user."""
    follower = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='following_edges'
    )
    followed_user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='follower_edges'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['follower', 'followed_user'],
                name='unique_follow_per_pair'
            ),
            models.CheckConstraint(
                condition=~Q(follower=F('followed_user')),
                name='follow_not_self'
            ),
        ]
        indexes = [
            models.Index(fields=['followed_user'], name='follow_followed_idx'),
        ]

    def __str__(self):
        return f"{self.follower_id} follows {self.followed_user_id}"
