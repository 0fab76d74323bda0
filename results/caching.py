"""
Tag-based invalidation on top of Django's cache framework.

Each tag owns a version counter stored in the cache; keys written under a tag
embed the tag's current version, so bumping the version orphans every entry
written under it.
"""
import logging

from django.core.cache import cache as default_cache

logger = logging.getLogger(__name__)

_MISSING = object()


class TaggedCache:

    def __init__(self, backend=None, prefix='results'):
        self._backend = backend
        self.prefix = prefix

    @property
    def backend(self):
        return self._backend if self._backend is not None else default_cache

    def _tag_key(self, tag):
        return f"{self.prefix}:tag:{tag}"

    def _tag_version(self, tag):
        key = self._tag_key(tag)
        version = self.backend.get(key)
        if version is None:
            self.backend.add(key, 1, None)
            version = self.backend.get(key, 1)
        return version

    def make_key(self, key, tags=()):
        versions = '.'.join(f"{tag}={self._tag_version(tag)}" for tag in sorted(tags))
        return f"{self.prefix}:{key}:{versions}"

    def get(self, key, tags=(), default=None):
        return self.backend.get(self.make_key(key, tags), default)

    def get_or_set(self, key, compute, tags=(), timeout=300):
        full_key = self.make_key(key, tags)
        value = self.backend.get(full_key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.backend.set(full_key, value, timeout)
        return value

    def delete(self, key, tags=()):
        self.backend.delete(self.make_key(key, tags))

    def invalidate_tag(self, tag):
        key = self._tag_key(tag)
        try:
            self.backend.incr(key)
        except ValueError:
            # Tag never used (or evicted): start a fresh generation
            self.backend.set(key, 2, None)
        logger.debug(f"Invalidated cache tag {tag}")


tagged_cache = TaggedCache()
