"""
Django Admin Configuration for Social Models
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import Comment, Follow, Like, Post, User


@admin.register(User)
class SocialUserAdmin(UserAdmin):
    list_display = ['username', 'email', 'full_name', 'is_active', 'date_joined']
    search_fields = ['username', 'email', 'full_name']
    fieldsets = UserAdmin.fieldsets + (
        ('Profile', {'fields': ('full_name', 'avatar_url', 'cover_image_url', 'saved_posts', 'watch_history')}),
    )


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['id', 'owner', 'is_published', 'views', 'created_at']
    list_filter = ['is_published', 'created_at']
    search_fields = ['content', 'owner__username']
    readonly_fields = ['views', 'created_at', 'updated_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'owner', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'owner__username']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(Like)
class LikeAdmin(admin.ModelAdmin):
    list_display = ['liked_by', 'post', 'comment', 'created_at']
    list_filter = ['created_at']
    search_fields = ['liked_by__username']


@admin.register(Follow)
class FollowAdmin(admin.ModelAdmin):
    list_display = ['follower', 'followed_user', 'created_at']
    list_filter = ['created_at']
    search_fields = ['follower__username', 'followed_user__username']
