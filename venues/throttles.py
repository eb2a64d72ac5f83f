"""Custom DRF throttles for the public venue APIs."""
from __future__ import annotations

from rest_framework.throttling import SimpleRateThrottle


class QuickRequestRateThrottle(SimpleRateThrottle):
    scope = 'quick_request'

    def get_cache_key(self, request, view):  # type: ignore[override]
        user = getattr(request, 'user', None)
        if user and user.is_authenticated and user.is_staff:
            return None
        return self.cache_format % {'scope': self.scope, 'ident': self.get_ident(request)}
