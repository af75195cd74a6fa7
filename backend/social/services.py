"""
Mutations: Toggle Engine & Content Services
===========================================

TOGGLE STRATEGY:
----------------
Problem: "find, then create or delete" races. Two toggles can both see
"absent" and both insert.

Solution: the store's unique constraints are the serialization point.

    1. DELETE the (actor, target) row          -> deleted?  'removed'
    2. INSERT it inside a savepoint            -> ok?       'added'
    3. INSERT hit the unique constraint        -> a concurrent toggle won;
       run 1-2 again exactly once (now 1 deletes). A second Conflict
       propagates.

No row locks, no global lock. Toggles on different pairs never wait on
each other.

CASCADE STRATEGY (delete_post):
-------------------------------
    1. one transaction: delete the Post row, then gather two independent
       row legs concurrently:
         likes    (on the post and on its comments)
         comments (of the post)
       any failed leg -> DependencyFailure(legs=[...]) and rollback, so
       the Post row and its image are both still there.
    2. after commit: release the stored image (already missing counts as
       released). A failure here leaves the post deleted and is reported
       as DependencyFailure(legs=['media']).

The image is never released inside the transaction: a rollback would
bring back a post pointing at a deleted file.

The row legs run through asgiref's async_to_sync. Thread-sensitive ORM
calls execute on the calling thread, inside its open transaction.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from asgiref.sync import async_to_sync
from django.db import transaction
from django.db.models import Q

from .errors import Conflict, DependencyFailure, Forbidden, InvalidOperation, NotFound
from .media import MediaStore, media as default_media
from .pipeline import Match, Project
from .queries import get_comment, get_current_user, get_post_detail, visible_to
from .store import store

logger = logging.getLogger(__name__)

ADDED = 'added'
REMOVED = 'removed'

ToggleResult = Literal['added', 'removed']


@dataclass(frozen=True)
class Relation:
    store_kind: str
    actor_field: str
    target_field: str
    target_kind: str
    forbid_self: bool = False
    # lookup path from the target to the post that scopes its visibility
    post_path: Optional[str] = None


RELATIONS = {
    'post': Relation('like', 'liked_by_id', 'post_id', 'post', post_path=''),
    'comment': Relation('like', 'liked_by_id', 'comment_id', 'comment', post_path='post'),
    'follow': Relation('follow', 'follower_id', 'followed_user_id', 'user', forbid_self=True),
}

profile_media = MediaStore(prefix='profiles')


# ============================================================================
# TOGGLE ENGINE
# ============================================================================

def _delete_relation(relation: Relation, pair: dict) -> int:
    return store.delete_where(relation.store_kind, **pair)


def _target_scope(relation: Relation, actor_id) -> Q:
    if relation.post_path is None:
        return Q()
    return visible_to(actor_id, through=relation.post_path)


def _flip(relation: Relation, pair: dict) -> ToggleResult:
    if _delete_relation(relation, pair):
        return REMOVED
    store.create(relation.store_kind, **pair)
    return ADDED


def toggle_relation(actor_id, target_kind, target_id) -> ToggleResult:
    """
    Flip the existence of the (actor, target) relation row.

    target_kind: 'post' / 'comment' (likes) or 'follow' (target is a user).

    RAISES:
    - InvalidOperation: unknown kind, or following yourself (before any
      store access)
    - NotFound: target does not exist, or sits on a post the actor
      cannot see
    - Conflict: lost the insert race twice
    """
    relation = RELATIONS.get(target_kind)
    if relation is None:
        raise InvalidOperation(f"Cannot toggle a relation on '{target_kind}'.")
    if relation.forbid_self and str(actor_id) == str(target_id):
        raise InvalidOperation('You cannot follow yourself.')

    if not store.exists(relation.target_kind, _target_scope(relation, actor_id), pk=target_id):
        raise NotFound(f"{relation.target_kind.capitalize()} {target_id} does not exist.")

    pair = {relation.actor_field: actor_id, relation.target_field: target_id}
    try:
        result = _flip(relation, pair)
    except Conflict:
        logger.info("Concurrent toggle on %s %s by %s, retrying", target_kind, target_id, actor_id)
        result = _flip(relation, pair)

    logger.debug("Toggle %s %s by %s: %s", target_kind, target_id, actor_id, result)
    return result


def toggle_post_like(actor_id, post_id) -> ToggleResult:
    return toggle_relation(actor_id, 'post', post_id)


def toggle_comment_like(actor_id, comment_id) -> ToggleResult:
    return toggle_relation(actor_id, 'comment', comment_id)


def toggle_follow(actor_id, user_id) -> ToggleResult:
    return toggle_relation(actor_id, 'follow', user_id)


# ============================================================================
# POSTS
# ============================================================================

def _owned(kind, pk, actor_id):
    instance = store.get(kind, pk)
    if instance.owner_id != actor_id:
        raise Forbidden(f'Only the owner can modify this {kind}.')
    return instance


def _require_text(value, name):
    value = (value or '').strip()
    if not value:
        raise InvalidOperation(f'{name} is required.')
    return value


def _release_media(media: MediaStore, url):
    try:
        media.release(url)
    except NotFound:
        logger.info("Media %s was already gone", url)


def _require_visible_post(viewer_id, post_id):
    if not store.exists('post', visible_to(viewer_id), pk=post_id):
        raise NotFound('Post not found.')


def publish_post(owner_id, content, image, is_published=True, filename=None, media=None) -> dict:
    """Store the image, create the post, return its detail view for the owner."""
    media = media or default_media
    content = _require_text(content, 'Content')
    if image is None:
        raise InvalidOperation('Image file is missing.')

    image_url = media.put(image, filename)
    post = store.create(
        'post',
        owner_id=owner_id,
        content=content,
        image_url=image_url,
        is_published=is_published,
    )
    logger.info("User %s published post %s", owner_id, post.pk)
    return get_post_detail(post.pk, owner_id)


def update_post(actor_id, post_id, content=None, image=None, filename=None, media=None) -> dict:
    media = media or default_media
    post = _owned('post', post_id, actor_id)

    changes = {}
    if content is not None:
        changes['content'] = _require_text(content, 'Content')
    if image is not None:
        changes['image_url'] = media.put(image, filename)
    if not changes:
        raise InvalidOperation('Nothing to update.')

    store.update('post', post_id, **changes)
    if 'image_url' in changes and post.image_url:
        _release_media(media, post.image_url)
    return get_post_detail(post_id, actor_id)


def toggle_publish(actor_id, post_id) -> dict:
    post = _owned('post', post_id, actor_id)
    post = store.update('post', post_id, is_published=not post.is_published)
    return {'id': post.pk, 'is_published': post.is_published}


async def _delete_rows(post_id, comment_ids):
    legs = {
        'likes': store.adelete_where('like', Q(post_id=post_id) | Q(comment_id__in=comment_ids)),
        'comments': store.adelete_where('comment', post_id=post_id),
    }
    results = await asyncio.gather(*legs.values(), return_exceptions=True)

    failed = []
    for leg, result in zip(legs, results):
        if isinstance(result, Exception):
            logger.error("Cascade leg '%s' failed for post %s: %r", leg, post_id, result)
            failed.append(leg)
    return failed


def delete_post(actor_id, post_id, media=None):
    """
    Delete a post with its likes, comments, comment likes and image.

    Row failures roll back and the post is still there, image included.
    An image release failure after commit leaves the post deleted and is
    reported as DependencyFailure(legs=['media']).
    """
    media = media or default_media
    post = _owned('post', post_id, actor_id)

    with transaction.atomic():
        comment_ids = [
            row['id'] for row in store.aggregate('comment', [Match(post_id=post_id), Project('id')])
        ]
        store.delete('post', post_id)
        failed = async_to_sync(_delete_rows)(post_id, comment_ids)
        if failed:
            raise DependencyFailure('Post deletion did not complete.', legs=failed)

    try:
        _release_media(media, post.image_url)
    except DependencyFailure as exc:
        logger.error("Post %s deleted but image %s was not released", post_id, post.image_url)
        raise DependencyFailure('Post deleted; its image was not released.', legs=['media']) from exc

    logger.info("User %s deleted post %s (%d comments)", actor_id, post_id, len(comment_ids))


# ============================================================================
# COMMENTS
# ============================================================================

def add_comment(actor_id, post_id, content) -> dict:
    content = _require_text(content, 'Content')
    _require_visible_post(actor_id, post_id)
    comment = store.create('comment', post_id=post_id, owner_id=actor_id, content=content)
    return get_comment(comment.pk, actor_id)


def update_comment(actor_id, comment_id, content) -> dict:
    content = _require_text(content, 'Content')
    _owned('comment', comment_id, actor_id)
    store.update('comment', comment_id, content=content)
    return get_comment(comment_id, actor_id)


def delete_comment(actor_id, comment_id):
    _owned('comment', comment_id, actor_id)
    with transaction.atomic():
        store.delete_where('like', comment_id=comment_id)
        store.delete('comment', comment_id)


# ============================================================================
# SAVED POSTS & WATCH HISTORY
# ============================================================================

def save_post(viewer_id, post_id) -> list:
    """Append to the viewer's saved posts (no-op if already saved)."""
    _require_visible_post(viewer_id, post_id)

    def add(user):
        if post_id not in user.saved_posts:
            user.saved_posts = [*user.saved_posts, post_id]

    return store.modify('user', viewer_id, add).saved_posts


def remove_saved_post(viewer_id, post_id) -> list:
    def remove(user):
        user.saved_posts = [saved for saved in user.saved_posts if saved != post_id]

    return store.modify('user', viewer_id, remove).saved_posts


def record_view(viewer_id, post_id):
    """Count a view and move the post to the front of the viewer's history."""
    _require_visible_post(viewer_id, post_id)

    def push_front(user):
        user.watch_history = [post_id, *(seen for seen in user.watch_history if seen != post_id)]

    with transaction.atomic():
        store.increment('post', post_id, 'views')
        store.modify('user', viewer_id, push_front)


# ============================================================================
# PROFILE IMAGES
# ============================================================================

PROFILE_IMAGE_FIELDS = ('avatar_url', 'cover_image_url')


def update_profile_image(user_id, field, image, filename=None, media=None) -> dict:
    """Replace the avatar or cover image; the previous file is released."""
    media = media or profile_media
    if field not in PROFILE_IMAGE_FIELDS:
        raise InvalidOperation(f"Unknown profile image '{field}'.")
    if image is None:
        raise InvalidOperation('Image file is missing.')

    previous = getattr(store.get('user', user_id), field)
    store.update('user', user_id, **{field: media.put(image, filename)})
    if previous:
        _release_media(media, previous)
    return get_current_user(user_id)
