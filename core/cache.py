"""
Namespaced TTL cache over Django's cache framework.

Each TTLCache owns a namespace and a default time-to-live. Keys are
versioned per namespace, so invalidate_all() drops every entry at once
by bumping the version instead of scanning the backend.

Usage:
    coupon_cache = TTLCache('coupons:available', ttl=30)
    coupons = coupon_cache.get_or_set(customer_id, load_coupons)
    coupon_cache.invalidate_all()
"""
import logging

from django.core.cache import caches

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:

    def __init__(self, namespace: str, ttl: int, alias: str = 'default'):
        if ttl <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        self.namespace = namespace
        self.ttl = ttl
        self.alias = alias

    @property
    def backend(self):
        return caches[self.alias]

    def _version_key(self) -> str:
        return f"{self.namespace}:__version__"

    def _version(self) -> int:
        version = self.backend.get(self._version_key())
        if version is None:
            version = 1
            self.backend.add(self._version_key(), version, timeout=None)
        return version

    def make_key(self, key) -> str:
        return f"{self.namespace}:v{self._version()}:{key}"

    def get(self, key, default=None):
        value = self.backend.get(self.make_key(key), _MISSING)
        return default if value is _MISSING else value

    def set(self, key, value, ttl: int = None):
        self.backend.set(self.make_key(key), value, timeout=ttl or self.ttl)

    def get_or_set(self, key, loader, ttl: int = None):
        """Return the cached value, calling loader() on a miss."""
        cache_key = self.make_key(key)
        value = self.backend.get(cache_key, _MISSING)
        if value is _MISSING:
            value = loader()
            self.backend.set(cache_key, value, timeout=ttl or self.ttl)
        return value

    def invalidate(self, key):
        self.backend.delete(self.make_key(key))

    def invalidate_all(self):
        try:
            self.backend.incr(self._version_key())
        except ValueError:
            self.backend.set(self._version_key(), 2, timeout=None)
        logger.debug(f"Invalidated cache namespace {self.namespace}")
