"""
Media store: put(bytes) -> URL, release(URL).

Backed by Django's storage API (STORAGES['default'] in settings, an
InMemoryStorage in tests). Stored URLs are kept verbatim on Post/User rows.
"""

import logging
import os
import uuid
from urllib.parse import unquote

from django.core.exceptions import SuspiciousFileOperation
from django.core.files.base import ContentFile, File
from django.core.files.storage import default_storage

from .errors import DependencyFailure, InvalidOperation, NotFound

logger = logging.getLogger(__name__)


class MediaStore:

    def __init__(self, storage=None, prefix='posts'):
        self._storage = storage
        self.prefix = prefix

    @property
    def storage(self):
        return default_storage if self._storage is None else self._storage

    def put(self, content, filename=None) -> str:
        """Store an upload (File or bytes) under a fresh name and return its URL."""
        if content is None:
            raise InvalidOperation('Image file is missing.')
        if isinstance(content, (bytes, bytearray)):
            content = ContentFile(bytes(content))
        elif not isinstance(content, File):
            raise InvalidOperation('Image must be an uploaded file.')

        _, extension = os.path.splitext(filename or getattr(content, 'name', '') or '')
        name = f'{self.prefix}/{uuid.uuid4().hex}{extension.lower()}'
        try:
            saved = self.storage.save(name, content)
            return self.storage.url(saved)
        except OSError as exc:
            logger.exception("Media upload failed for %s", name)
            raise DependencyFailure('Media store unavailable.', legs=['media']) from exc

    def name_for(self, url):
        """Storage name behind one of our URLs, or None for a foreign URL."""
        base_url = getattr(self.storage, 'base_url', '') or ''
        if not base_url or not url.startswith(base_url):
            return None
        return unquote(url[len(base_url):])

    def release(self, url):
        """Delete the stored file behind `url`. NotFound if nothing is stored there."""
        if not url:
            raise NotFound('No media stored.')
        name = self.name_for(url)
        if name is None:
            raise NotFound(f'Media {url} is not managed here.')
        try:
            if not self.storage.exists(name):
                raise NotFound(f'Media {url} does not exist.')
            self.storage.delete(name)
        except SuspiciousFileOperation:
            raise NotFound(f'Media {url} does not exist.') from None
        except OSError as exc:
            logger.exception("Media release failed for %s", url)
            raise DependencyFailure('Media store unavailable.', legs=['media']) from exc


media = MediaStore()
