"""
Social App URL Configuration
"""
from django.urls import path
from .views import (
    AccountView,
    ChangePasswordView,
    CommentDetailView,
    CommentLikeView,
    CurrentUserView,
    FollowToggleView,
    FollowersView,
    FollowingView,
    LikedCommentsView,
    LikedPostsView,
    LoginView,
    LogoutView,
    NextPostsView,
    PostCommentsView,
    PostDetailView,
    PostLikeView,
    PostListView,
    PostViewCountView,
    ProfileImageView,
    ProfileView,
    PublishToggleView,
    RefreshView,
    RegisterView,
    SavePostView,
    SavedPostsView,
    WatchHistoryView,
)

urlpatterns = [
    # Auth
    path('auth/register/', RegisterView.as_view(), name='register'),
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/refresh/', RefreshView.as_view(), name='refresh'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/me/', CurrentUserView.as_view(), name='current-user'),
    path('auth/password/', ChangePasswordView.as_view(), name='change-password'),
    path('auth/account/', AccountView.as_view(), name='account'),
    path('auth/avatar/', ProfileImageView.as_view(field='avatar_url'), name='avatar'),
    path('auth/cover/', ProfileImageView.as_view(field='cover_image_url'), name='cover-image'),

    # Users
    path('users/<int:user_id>/followers/', FollowersView.as_view(), name='followers'),
    path('users/<int:user_id>/following/', FollowingView.as_view(), name='following'),
    path('users/<int:user_id>/follow/', FollowToggleView.as_view(), name='follow-toggle'),
    path('users/<str:username>/', ProfileView.as_view(), name='profile'),
    path('history/', WatchHistoryView.as_view(), name='watch-history'),

    # Posts
    path('posts/', PostListView.as_view(), name='post-list'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/publish/', PublishToggleView.as_view(), name='post-publish'),
    path('posts/<int:post_id>/view/', PostViewCountView.as_view(), name='post-view'),
    path('posts/<int:post_id>/next/', NextPostsView.as_view(), name='post-next'),
    path('posts/<int:post_id>/like/', PostLikeView.as_view(), name='post-like'),
    path('posts/<int:post_id>/comments/', PostCommentsView.as_view(), name='post-comments'),
    path('posts/<int:post_id>/save/', SavePostView.as_view(), name='post-save'),

    # Comments
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),
    path('comments/<int:comment_id>/like/', CommentLikeView.as_view(), name='comment-like'),

    # Per-viewer lists
    path('saved/', SavedPostsView.as_view(), name='saved-posts'),
    path('likes/posts/', LikedPostsView.as_view(), name='liked-posts'),
    path('likes/comments/', LikedCommentsView.as_view(), name='liked-comments'),
]
