"""Candidate venue selection for quick requests."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from django.conf import settings
from django.db.models import Q

from .models import Venue

GUEST_RANGES: Sequence[tuple[int, Optional[int], str]] = (
    (1, 25, '1-25'),
    (26, 50, '26-50'),
    (51, 100, '51-100'),
    (101, 200, '101-200'),
    (201, None, '200+'),
)
GUEST_LABEL_SUFFIX = 'hostů'


@dataclass(frozen=True)
class VenueMatch:
    id: str
    name: str
    contact_email: Optional[str] = None


class CandidateMatcher(Protocol):
    def match(self, guest_count: Optional[int], location_preference: Optional[str]) -> list[VenueMatch]:
        ...


def derive_guest_range(guest_count: Optional[int]) -> tuple[str, str]:
    """Return ``(range_key, human_label)`` for a guest count, or empty strings."""
    if not guest_count or guest_count <= 0:
        return '', ''
    for lower, upper, key in GUEST_RANGES:
        if guest_count >= lower and (upper is None or guest_count <= upper):
            return key, f'{key} {GUEST_LABEL_SUFFIX}'
    return '', ''


def location_label(location_preference: Optional[str]) -> str:
    location = (location_preference or '').strip()
    if location == getattr(settings, 'WHOLE_CITY_SENTINEL', 'Celá Praha'):
        return getattr(settings, 'CITY_NAME', 'Praha')
    return location


class VenueMatcher:
    """Default matcher over published, top-level venues."""

    def __init__(self, *, statuses: Optional[Sequence[str]] = None):
        self.statuses = list(statuses or getattr(settings, 'VENUE_VISIBLE_STATUSES', ['published', 'active']))
        self.city = getattr(settings, 'CITY_NAME', 'Praha')
        self.whole_city = getattr(settings, 'WHOLE_CITY_SENTINEL', 'Celá Praha')

    def match(self, guest_count: Optional[int], location_preference: Optional[str]) -> list[VenueMatch]:
        queryset = Venue.objects.filter(status__in=self.statuses, parent__isnull=True)

        location = (location_preference or '').strip()
        if location in (self.whole_city, self.city):
            queryset = queryset.filter(district__startswith=self.city)
        elif location:
            queryset = queryset.filter(Q(district__iexact=location) | Q(address__icontains=location))

        if guest_count and guest_count > 0:
            queryset = queryset.filter(
                Q(capacity_standing__gte=guest_count) | Q(capacity_seated__gte=guest_count)
            )

        return [
            VenueMatch(id=str(venue_id), name=name, contact_email=email or None)
            for venue_id, name, email in queryset.order_by('name', 'id').values_list('id', 'name', 'contact_email')
        ]
