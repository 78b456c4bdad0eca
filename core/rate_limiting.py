"""
Redis-based rate limiting for API endpoints.

Fixed-window counters keyed by view and client IP. Checkout, payment
verification and guest order lookup are the endpoints worth protecting:
they either hit the payment gateway or accept contact details that could
be enumerated.

If Redis is unreachable the limiter fails open.
"""
import logging
from functools import wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client():
    """Return a shared Redis client, or None when Redis cannot be reached."""
    global _redis_client
    if _redis_client is None:
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
            return None
        _redis_client = client
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def _limit_exceeded_response(max_requests, window_seconds, ttl):
    return Response(
        {
            'error': 'Rate limit exceeded',
            'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
            'retry_after': ttl
        },
        status=status.HTTP_429_TOO_MANY_REQUESTS,
        headers={
            'X-RateLimit-Limit': str(max_requests),
            'X-RateLimit-Remaining': '0',
            'X-RateLimit-Reset': str(ttl),
            'Retry-After': str(ttl)
        }
    )


def check_rate_limit(scope, request, max_requests, window_seconds):
    """
    Count one request against the limit for (scope, client IP).

    Returns (allowed, current_count, ttl). When limiting is disabled or
    Redis is down the request is always allowed.
    """
    if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
        return True, 0, window_seconds
    client = get_redis_client()
    if client is None:
        return True, 0, window_seconds

    try:
        key = f"rate_limit:{scope}:{get_client_ip(request)}"
        current_count = client.incr(key)
        if current_count == 1:
            client.expire(key, window_seconds)
        ttl = client.ttl(key)
    except redis.RedisError as e:
        logger.error(f"Redis error in rate limiting: {e}")
        return True, 0, window_seconds

    return current_count <= max_requests, current_count, ttl


def rate_limit(max_requests: int = 20, window_seconds: int = 60):
    """
    Rate limiting decorator for DRF view methods.

    Usage:
        @rate_limit(10, 60)  # 10 requests per minute
        def post(self, request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            scope = f"{self.__class__.__name__}.{view_func.__name__}"
            allowed, current_count, ttl = check_rate_limit(
                scope, request, max_requests, window_seconds
            )
            if not allowed:
                logger.warning(f"Rate limit exceeded for {scope} from {get_client_ip(request)}")
                return _limit_exceeded_response(max_requests, window_seconds, ttl)

            response = view_func(self, request, *args, **kwargs)
            if current_count:
                response['X-RateLimit-Limit'] = str(max_requests)
                response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
                response['X-RateLimit-Reset'] = str(ttl)
            return response

        return wrapper
    return decorator
