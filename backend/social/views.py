"""
DRF Views
=========

Thin HTTP adapters. Each view:
1. validates the request (serializers.py)
2. resolves the viewer id from request.user (None for guests)
3. calls exactly one core operation with that id passed explicitly
4. returns the core payload as-is

Errors are not handled here; the core raises tagged errors and
exceptions.custom_exception_handler turns them into responses.

AUTHENTICATION NOTE:
--------------------
Access tokens come from AccessTokenAuthentication (Bearer header or the
`accessToken` cookie). Login and refresh also set both tokens as HttpOnly
cookies for browser clients. Register, login and refresh skip access-token
authentication entirely; guest-readable endpoints treat a rejected token as
a guest.
"""

from django.conf import settings
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import queries, services
from .authentication import ACCESS_COOKIE, REFRESH_COOKIE, GuestFallbackAuthentication
from .serializers import (
    AccountSerializer,
    ChangePasswordSerializer,
    CommentSerializer,
    FeedQuerySerializer,
    LoginSerializer,
    PostCreateSerializer,
    PostUpdateSerializer,
    ProfileImageSerializer,
    RefreshSerializer,
    RegisterSerializer,
)
from .sessions import get_session_manager


def viewer_id(request):
    user = request.user
    return user.pk if user and user.is_authenticated else None


def scoped_viewer_id(request):
    """Viewer id, unless the client asked for the guest rendering (?guest=true)."""
    if request.query_params.get('guest', '').lower() in ('1', 'true', 'yes'):
        return None
    return viewer_id(request)


def _set_session_cookies(response, tokens):
    options = {
        'httponly': True,
        'secure': settings.AUTH_COOKIE_SECURE,
        'samesite': 'Lax',
    }
    response.set_cookie(
        ACCESS_COOKIE,
        tokens.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRY_MINUTES * 60,
        **options
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRY_DAYS * 24 * 60 * 60,
        **options
    )
    return response


def _session_payload(tokens):
    return {
        'user': tokens.user.as_dict(),
        'access_token': tokens.access_token,
        'refresh_token': tokens.refresh_token,
    }


class OwnerWritePermissionMixin:
    """
    Reads are open to guests, writes need a signed-in user.

    A stale token on a read falls back to the guest rendering.
    """

    def get_authenticators(self):
        if self.request.method in permissions.SAFE_METHODS:
            return [GuestFallbackAuthentication()]
        return super().get_authenticators()

    def get_permissions(self):
        if self.request.method in permissions.SAFE_METHODS:
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]


# ============================================================================
# AUTH
# ============================================================================

class RegisterView(APIView):
    """POST /api/auth/register/"""
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        identity = get_session_manager().register(**serializer.validated_data)
        return Response(identity.as_dict(), status=status.HTTP_201_CREATED)


class LoginView(APIView):
    """
    POST /api/auth/login/

    Body: {"username" or "email": ..., "password": ...}
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tokens = get_session_manager().login(
            serializer.validated_data['identifier'],
            serializer.validated_data['password'],
        )
        return _set_session_cookies(Response(_session_payload(tokens)), tokens)


class RefreshView(APIView):
    """
    POST /api/auth/refresh/

    The refresh token comes from the body or the `refreshToken` cookie.
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = RefreshSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        presented = serializer.validated_data.get('refresh_token') or request.COOKIES.get(REFRESH_COOKIE)
        tokens = get_session_manager().renew(presented)
        return _set_session_cookies(Response(_session_payload(tokens)), tokens)


class LogoutView(APIView):
    """POST /api/auth/logout/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        get_session_manager().logout(viewer_id(request))
        response = Response({'message': 'User logged out.'})
        response.delete_cookie(ACCESS_COOKIE)
        response.delete_cookie(REFRESH_COOKIE)
        return response


class CurrentUserView(APIView):
    """GET /api/auth/me/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(queries.get_current_user(viewer_id(request)))


class ChangePasswordView(APIView):
    """POST /api/auth/password/ (also ends the current session)"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        get_session_manager().change_password(
            viewer_id(request),
            serializer.validated_data['old_password'],
            serializer.validated_data['new_password'],
        )
        return Response({'message': 'Password changed.'})


class AccountView(APIView):
    """PATCH /api/auth/account/"""
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request):
        serializer = AccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        identity = get_session_manager().update_account(viewer_id(request), **serializer.validated_data)
        return Response(identity.as_dict())


class ProfileImageView(APIView):
    """PATCH /api/auth/avatar/ and /api/auth/cover/"""
    permission_classes = [permissions.IsAuthenticated]
    field = 'avatar_url'

    def patch(self, request):
        serializer = ProfileImageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        image = serializer.validated_data['image']
        return Response(services.update_profile_image(viewer_id(request), self.field, image, image.name))


# ============================================================================
# USERS
# ============================================================================

class ProfileView(APIView):
    """GET /api/users/<username>/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, username):
        return Response(queries.get_profile(username, viewer_id(request)))


class FollowersView(APIView):
    """GET /api/users/<user_id>/followers/"""
    authentication_classes = [GuestFallbackAuthentication]
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        return Response(queries.get_followers(user_id))


class FollowingView(APIView):
    """GET /api/users/<user_id>/following/"""
    authentication_classes = [GuestFallbackAuthentication]
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        return Response(queries.get_following(user_id))


class FollowToggleView(APIView):
    """POST /api/users/<user_id>/follow/ -> {"action": "added" | "removed"}"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, user_id):
        return Response({'action': services.toggle_follow(viewer_id(request), user_id)})


class WatchHistoryView(APIView):
    """GET /api/history/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(queries.get_watch_history(viewer_id(request)))


# ============================================================================
# POSTS
# ============================================================================

class PostListView(OwnerWritePermissionMixin, APIView):
    """
    GET  /api/posts/  -> paginated feed
         ?page=&limit=&query=&user_id=&sort_by=&sort_type=asc|desc
    POST /api/posts/  -> publish (multipart: content, image, is_published)
    """

    def get(self, request):
        params = FeedQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data
        return Response(queries.get_feed(
            page=data.get('page'),
            limit=data.get('limit'),
            query=data.get('query'),
            owner_id=data.get('user_id'),
            sort_by=data.get('sort_by'),
            sort_type=data.get('sort_type'),
        ))

    def post(self, request):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        post = services.publish_post(
            viewer_id(request),
            data['content'],
            data['image'],
            is_published=data['is_published'],
            filename=data['image'].name,
        )
        return Response(post, status=status.HTTP_201_CREATED)


class PostDetailView(OwnerWritePermissionMixin, APIView):
    """GET/PATCH/DELETE /api/posts/<post_id>/"""

    def get(self, request, post_id):
        return Response(queries.get_post_detail(post_id, scoped_viewer_id(request)))

    def patch(self, request, post_id):
        serializer = PostUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        image = serializer.validated_data.get('image')
        return Response(services.update_post(
            viewer_id(request),
            post_id,
            content=serializer.validated_data.get('content'),
            image=image,
            filename=image.name if image else None,
        ))

    def delete(self, request, post_id):
        services.delete_post(viewer_id(request), post_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PublishToggleView(APIView):
    """POST /api/posts/<post_id>/publish/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        return Response(services.toggle_publish(viewer_id(request), post_id))


class PostViewCountView(APIView):
    """POST /api/posts/<post_id>/view/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        services.record_view(viewer_id(request), post_id)
        return Response({'message': 'View recorded.'})


class NextPostsView(APIView):
    """GET /api/posts/<post_id>/next/"""
    authentication_classes = [GuestFallbackAuthentication]
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        return Response(queries.get_next_posts(post_id))


class PostLikeView(APIView):
    """POST /api/posts/<post_id>/like/ -> {"action": "added" | "removed"}"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        return Response({'action': services.toggle_post_like(viewer_id(request), post_id)})


class SavePostView(APIView):
    """POST (save) / DELETE (unsave) /api/posts/<post_id>/save/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        return Response({'saved_posts': services.save_post(viewer_id(request), post_id)})

    def delete(self, request, post_id):
        return Response({'saved_posts': services.remove_saved_post(viewer_id(request), post_id)})


# ============================================================================
# COMMENTS
# ============================================================================

class PostCommentsView(OwnerWritePermissionMixin, APIView):
    """
    GET  /api/posts/<post_id>/comments/?page=&limit=
    POST /api/posts/<post_id>/comments/  {"content": ...}
    """

    def get(self, request, post_id):
        return Response(queries.get_post_comments(
            post_id,
            scoped_viewer_id(request),
            page=request.query_params.get('page'),
            limit=request.query_params.get('limit'),
        ))

    def post(self, request, post_id):
        serializer = CommentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = services.add_comment(viewer_id(request), post_id, serializer.validated_data['content'])
        return Response(comment, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """PATCH/DELETE /api/comments/<comment_id>/"""
    permission_classes = [permissions.IsAuthenticated]

    def patch(self, request, comment_id):
        serializer = CommentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return Response(services.update_comment(
            viewer_id(request), comment_id, serializer.validated_data['content']
        ))

    def delete(self, request, comment_id):
        services.delete_comment(viewer_id(request), comment_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CommentLikeView(APIView):
    """POST /api/comments/<comment_id>/like/"""
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, comment_id):
        return Response({'action': services.toggle_comment_like(viewer_id(request), comment_id)})


# ============================================================================
# PER-VIEWER LISTS
# ============================================================================

class SavedPostsView(APIView):
    """GET /api/saved/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(queries.get_saved_posts(viewer_id(request)))


class LikedPostsView(APIView):
    """GET /api/likes/posts/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(queries.get_liked_posts(viewer_id(request)))


class LikedCommentsView(APIView):
    """GET /api/likes/comments/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(queries.get_liked_comments(viewer_id(request)))
