"""
View Composer
=============

Viewer-scoped read models built from pipeline stages (pipeline.py).

VIEWER IDENTITY:
----------------
Every function takes `viewer_id` explicitly. `None` means guest.

GUEST VS MEMBER:
----------------
Each viewer-relative view has two stage lists, chosen BEFORE execution:

    member: Lookup likes(liked_by_id) -> AddFields(is_liked=<membership test>)
    guest:  Lookup likes(id)          -> AddFields(is_liked=False)

The guest list never contains a membership test, so no comparison against
a missing viewer id can happen.

OUTPUT:
-------
Every view ends in an explicit Project allow-list. The sensitive user
fields (password, refresh_token) are in none of them.

QUERY COUNT (post detail):
--------------------------
Query 1: post by id
Query 2: likes WHERE post_id IN (...)
Query 3: users WHERE id IN (owner)
Query 4: follows WHERE followed_user_id IN (owner)
"""

from typing import Optional

from django.conf import settings
from django.db.models import Q

from .errors import InvalidOperation, NotFound, Unauthenticated
from .pagination import paginate
from .pipeline import (
    AddFields,
    Count,
    Group,
    Lookup,
    Match,
    Project,
    Push,
    Sample,
    Search,
    Sort,
    Unwind,
    contains,
    size_of,
)
from .store import store

OWNER_FIELDS = ('id', 'username', 'full_name', 'avatar_url')
FEED_OWNER_FIELDS = ('id', 'username', 'avatar_url')
POST_FIELDS = ('id', 'content', 'image_url', 'views', 'is_published', 'created_at', 'owner')
PROFILE_FIELDS = ('id', 'username', 'full_name', 'email', 'avatar_url', 'cover_image_url')

FEED_SORT_FIELDS = ('created_at', 'updated_at', 'views')


def _owner_lookup(fields=OWNER_FIELDS, as_field='owner'):
    return Lookup('user', 'owner_id', 'id', as_field, pipeline=[Project(*fields)], single=True)


def visible_to(viewer_id, through=''):
    """
    Published posts, plus the viewer's own drafts.

    `through` is the lookup path to the post when filtering rows that
    reference one (e.g. 'post' for comments).
    """
    prefix = f'{through}__' if through else ''
    published = Q(**{f'{prefix}is_published': True})
    if viewer_id is None:
        return published
    return published | Q(**{f'{prefix}owner_id': viewer_id})


def _post_list_lookup(local_field, viewer_id, as_field):
    """Join posts by an id list (watch history, saved posts) in list order."""
    return Lookup('post', local_field, 'id', as_field, pipeline=[
        Match(visible_to(viewer_id)),
        _owner_lookup(),
        Project(*POST_FIELDS),
    ])


# ============================================================================
# POST DETAIL
# ============================================================================

def post_detail_stages(post_id, viewer_id: Optional[int]):
    if viewer_id is None:
        return [
            Match(id=post_id, is_published=True),
            Lookup('like', 'id', 'post_id', 'likes', pipeline=[Project('id')]),
            Lookup('user', 'owner_id', 'id', 'owner', single=True, pipeline=[
                Lookup('follow', 'id', 'followed_user_id', 'subscribers', pipeline=[Project('id')]),
                AddFields(subscribers_count=size_of('subscribers'), is_subscribed=False),
                Project(*OWNER_FIELDS, 'subscribers_count', 'is_subscribed'),
            ]),
            AddFields(likes_count=size_of('likes'), is_liked=False),
            Project(*POST_FIELDS, 'likes_count', 'is_liked'),
        ]

    return [
        Match(visible_to(viewer_id), id=post_id),
        Lookup('like', 'id', 'post_id', 'likes', pipeline=[Project('liked_by_id')]),
        Lookup('user', 'owner_id', 'id', 'owner', single=True, pipeline=[
            Lookup('follow', 'id', 'followed_user_id', 'subscribers', pipeline=[Project('follower_id')]),
            AddFields(
                subscribers_count=size_of('subscribers'),
                is_subscribed=contains('subscribers', 'follower_id', viewer_id),
            ),
            Project(*OWNER_FIELDS, 'subscribers_count', 'is_subscribed'),
        ]),
        AddFields(
            likes_count=size_of('likes'),
            is_liked=contains('likes', 'liked_by_id', viewer_id),
        ),
        Project(*POST_FIELDS, 'likes_count', 'is_liked'),
    ]


def get_post_detail(post_id, viewer_id: Optional[int] = None) -> dict:
    """
    Single post with like count, owner and follower count.

    Guests only see published posts; members also see their own drafts.
    """
    rows = store.aggregate('post', post_detail_stages(post_id, viewer_id))
    if not rows:
        raise NotFound('Post not found.')
    return rows[0]


# ============================================================================
# COMMENTS
# ============================================================================

def _comment_stages(match, viewer_id: Optional[int]):
    if viewer_id is None:
        likes = Lookup('like', 'id', 'comment_id', 'likes', pipeline=[Project('id')])
        computed = AddFields(likes_count=size_of('likes'), is_liked=False)
    else:
        likes = Lookup('like', 'id', 'comment_id', 'likes', pipeline=[Project('liked_by_id')])
        computed = AddFields(
            likes_count=size_of('likes'),
            is_liked=contains('likes', 'liked_by_id', viewer_id),
        )
    return [
        match,
        Sort('-created_at'),
        _owner_lookup(),
        likes,
        computed,
        Project('id', 'post_id', 'content', 'created_at', 'owner', 'likes_count', 'is_liked'),
    ]


def comment_list_stages(post_id, viewer_id: Optional[int]):
    return _comment_stages(Match(post_id=post_id), viewer_id)


def get_comment(comment_id, viewer_id: Optional[int] = None) -> dict:
    rows = store.aggregate('comment', _comment_stages(Match(id=comment_id), viewer_id))
    if not rows:
        raise NotFound('Comment not found.')
    return rows[0]


def get_post_comments(post_id, viewer_id: Optional[int] = None, page=None, limit=None) -> dict:
    """Newest-first comments of a post, one page at a time."""
    if not store.exists('post', visible_to(viewer_id), id=post_id):
        raise NotFound('Post not found.')
    return paginate('comment', comment_list_stages(post_id, viewer_id), page, limit).as_dict()


# ============================================================================
# FEED
# ============================================================================

def feed_stages(query=None, owner_id=None, sort_by=None, sort_type=None):
    stages = []
    if query:
        stages.append(Search(query, fields=('content',)))
    if owner_id is not None:
        stages.append(Match(owner_id=owner_id))
    stages.append(Match(is_published=True))

    if sort_by:
        if sort_by not in FEED_SORT_FIELDS:
            raise InvalidOperation(f"Cannot sort posts by '{sort_by}'.")
        stages.append(Sort(sort_by if sort_type == 'asc' else f'-{sort_by}'))
    else:
        stages.append(Sort('-created_at'))

    stages += [
        _owner_lookup(FEED_OWNER_FIELDS),
        Project('id', 'content', 'image_url', 'views', 'created_at', 'owner'),
    ]
    return stages


def get_feed(page=None, limit=None, query=None, owner_id=None, sort_by=None, sort_type=None) -> dict:
    """
    Published posts, optionally searched and filtered by owner.

    Default order: newest first. `sort_type='asc'` flips a caller-chosen sort.
    """
    stages = feed_stages(query=query, owner_id=owner_id, sort_by=sort_by, sort_type=sort_type)
    return paginate('post', stages, page, limit).as_dict()


def get_next_posts(post_id, size=None) -> list:
    """Random published posts other than `post_id`, for "watch next"."""
    if not store.exists('post', id=post_id):
        raise NotFound('Post not found.')
    size = size or settings.DISCOVERY_SAMPLE_SIZE
    return store.aggregate('post', [
        Match(is_published=True, exclude={'id': post_id}),
        Sample(size),
        _owner_lookup(FEED_OWNER_FIELDS),
        Unwind('owner'),
        Project('id', 'content', 'image_url', 'views', 'created_at', 'owner'),
    ])


# ============================================================================
# PROFILES
# ============================================================================

def get_profile(username, viewer_id: int) -> dict:
    """
    Public profile with follower/following counts.

    Counts are always disclosed; `is_subscribed` needs a signed-in viewer.
    """
    if viewer_id is None:
        raise Unauthenticated('Sign in to view profiles.')
    if not username or not username.strip():
        raise InvalidOperation('username is missing.')

    rows = store.aggregate('user', [
        Match(username__iexact=username.strip()),
        Lookup('follow', 'id', 'followed_user_id', 'subscribers', pipeline=[Project('follower_id')]),
        Lookup('follow', 'id', 'follower_id', 'subscribed_to', pipeline=[Project('id')]),
        AddFields(
            subscribers_count=size_of('subscribers'),
            channels_subscribed_to_count=size_of('subscribed_to'),
            is_subscribed=contains('subscribers', 'follower_id', viewer_id),
        ),
        Project(*PROFILE_FIELDS, 'subscribers_count', 'channels_subscribed_to_count', 'is_subscribed'),
    ])
    if not rows:
        raise NotFound('User does not exist.')
    return rows[0]


def get_current_user(viewer_id: int) -> dict:
    rows = store.aggregate('user', [Match(id=viewer_id), Project(*PROFILE_FIELDS)])
    if not rows:
        raise NotFound('User not found.')
    return rows[0]


def _follow_list(match, user_field, list_name, count_name):
    rows = store.aggregate('follow', [
        match,
        Sort('-created_at', '-id'),
        Lookup('user', user_field, 'id', 'user', single=True, pipeline=[Project(*OWNER_FIELDS)]),
        Unwind('user'),
        Group(**{list_name: Push('user'), count_name: Count()}),
    ])
    if not rows:
        return {list_name: [], count_name: 0}
    return {list_name: rows[0][list_name], count_name: rows[0][count_name]}


def get_followers(user_id) -> dict:
    """Users following `user_id`, newest follow first."""
    if not store.exists('user', id=user_id):
        raise NotFound('User does not exist.')
    return _follow_list(Match(followed_user_id=user_id), 'follower_id', 'followers', 'follower_count')


def get_following(user_id) -> dict:
    """Users that `user_id` follows, newest follow first."""
    if not store.exists('user', id=user_id):
        raise NotFound('User does not exist.')
    return _follow_list(Match(follower_id=user_id), 'followed_user_id', 'followed_users', 'following_count')


# ============================================================================
# PER-VIEWER LISTS
# ============================================================================

def _user_post_list(viewer_id, field):
    rows = store.aggregate('user', [
        Match(id=viewer_id),
        _post_list_lookup(field, viewer_id, field),
        Project(field),
    ])
    if not rows:
        raise NotFound('User not found.')
    return rows[0][field]


def get_watch_history(viewer_id: int) -> list:
    """Watched posts, most recent first, each with its owner."""
    return _user_post_list(viewer_id, 'watch_history')


def get_saved_posts(viewer_id: int) -> list:
    """Saved posts in the order they were saved."""
    return _user_post_list(viewer_id, 'saved_posts')


def get_liked_posts(viewer_id: int) -> list:
    """Posts the viewer liked, newest like first."""
    rows = store.aggregate('like', [
        Match(liked_by_id=viewer_id, post_id__isnull=False),
        Sort('-created_at', '-id'),
        Lookup('post', 'post_id', 'id', 'post', single=True, pipeline=[
            Match(visible_to(viewer_id)),
            _owner_lookup(),
            Project(*POST_FIELDS),
        ]),
        Unwind('post'),
        Project('post'),
    ])
    return [row['post'] for row in rows]


def get_liked_comments(viewer_id: int) -> list:
    """Comments the viewer liked, newest like first."""
    rows = store.aggregate('like', [
        Match(liked_by_id=viewer_id, comment_id__isnull=False),
        Sort('-created_at', '-id'),
        Lookup('comment', 'comment_id', 'id', 'comment', single=True, pipeline=[
            _owner_lookup(),
            Project('id', 'post_id', 'content', 'created_at', 'owner'),
        ]),
        Unwind('comment'),
        Project('comment'),
    ])
    return [row['comment'] for row in rows]
