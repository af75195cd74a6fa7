"""
DRF Serializers
===============

Request validation only. Responses are the plain dicts built by queries.py
and services.py (already projected to an allow-list), so there are no
model serializers on the way out.
"""

from rest_framework import serializers
from rest_framework.fields import empty


class OptionalBooleanField(serializers.BooleanField):
    """Absent from a multipart form means the default, not False."""
    default_empty_html = empty


class RegisterSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    full_name = serializers.CharField(max_length=150, required=False, allow_blank=True, default='')

    def validate_username(self, value):
        value = value.strip().lower()
        if not value:
            raise serializers.ValidationError("Username cannot be blank.")
        return value


class LoginSerializer(serializers.Serializer):
    """Either `username` or `email` identifies the account."""
    username = serializers.CharField(required=False, allow_blank=True)
    email = serializers.CharField(required=False, allow_blank=True)
    password = serializers.CharField(trim_whitespace=False)

    def validate(self, attrs):
        identifier = attrs.get('username') or attrs.get('email')
        if not identifier:
            raise serializers.ValidationError("Username or email is required.")
        attrs['identifier'] = identifier
        return attrs


class RefreshSerializer(serializers.Serializer):
    refresh_token = serializers.CharField(required=False, allow_blank=True)


class ChangePasswordSerializer(serializers.Serializer):
    old_password = serializers.CharField(trim_whitespace=False)
    new_password = serializers.CharField(trim_whitespace=False, min_length=6)


class AccountSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    email = serializers.EmailField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide full_name or email.")
        return attrs


class ProfileImageSerializer(serializers.Serializer):
    image = serializers.FileField()


class PostCreateSerializer(serializers.Serializer):
    content = serializers.CharField()
    image = serializers.FileField()
    is_published = OptionalBooleanField(required=False, default=True)

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Content cannot be empty.")
        return value.strip()


class PostUpdateSerializer(serializers.Serializer):
    content = serializers.CharField(required=False)
    image = serializers.FileField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide content or image.")
        return attrs


class CommentSerializer(serializers.Serializer):
    content = serializers.CharField()

    def validate_content(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value.strip()


class FeedQuerySerializer(serializers.Serializer):
    """Query string of GET /api/posts/."""
    page = serializers.IntegerField(required=False)
    limit = serializers.IntegerField(required=False)
    query = serializers.CharField(required=False, allow_blank=True)
    user_id = serializers.IntegerField(required=False, min_value=1)
    sort_by = serializers.CharField(required=False, allow_blank=True)
    sort_type = serializers.ChoiceField(choices=['asc', 'desc'], required=False)
