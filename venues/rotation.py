"""Fair, time-windowed ordering of venue listings.

Venues are ranked by homepage slot, then manual priority, then a hash of
``(venue id, epoch)`` where the epoch is a fixed-width wall-clock window. Inside
one window every reader sees the same total order, so offset pagination never
repeats or skips a venue; across windows the unprioritised tail is reshuffled.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.db.models import Case, CharField, F, IntegerField, Q, QuerySet, Value, When
from django.db.models.functions import MD5, Cast, Coalesce, Concat
from django.utils import timezone

from .models import Venue

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 300
UNSET_PRIORITY = 32767


class SystemClock:
    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """Clock pinned to one moment; lets tests choose the rotation epoch."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment


def rotation_epoch(moment: datetime, window_seconds: int = DEFAULT_WINDOW_SECONDS) -> int:
    return int(moment.timestamp() // window_seconds)


@dataclass(frozen=True)
class CapacityBucket:
    minimum: int
    maximum: Optional[int] = None

    def condition(self) -> Q:
        seated = Q(capacity_seated__gte=self.minimum)
        standing = Q(capacity_standing__gte=self.minimum)
        if self.maximum is not None:
            seated &= Q(capacity_seated__lte=self.maximum)
            standing &= Q(capacity_standing__lte=self.maximum)
        return seated | standing


# The 480 and over-480 brackets overlap on purpose: "480" is the 480-959 band,
# "over-480" is everything from 480 up.
CAPACITY_BUCKETS: dict[str, CapacityBucket] = {
    'under-30': CapacityBucket(0, 29),
    '30': CapacityBucket(30, 59),
    '60': CapacityBucket(60, 119),
    '120': CapacityBucket(120, 239),
    '240': CapacityBucket(240, 479),
    '480': CapacityBucket(480, 959),
    'over-480': CapacityBucket(480),
}

CAPACITY_ALIASES = {
    'méně než 30': 'under-30',
    'více jak 480': 'over-480',
}


def resolve_capacity_bucket(token: Optional[str]) -> Optional[CapacityBucket]:
    if not token:
        return None
    token = token.strip()
    return CAPACITY_BUCKETS.get(CAPACITY_ALIASES.get(token, token))


@dataclass
class VenueFilters:
    q: Optional[str] = None
    category: Optional[str] = None
    district: Optional[str] = None
    capacity: Optional[str] = None
    statuses: list[str] = field(default_factory=list)
    include_subvenues: bool = False

    def __post_init__(self):
        if not self.statuses:
            self.statuses = list(getattr(settings, 'VENUE_VISIBLE_STATUSES', ['published', 'active']))

    def as_q(self) -> Q:
        condition = Q(status__in=self.statuses)
        if not self.include_subvenues:
            condition &= Q(parent__isnull=True)

        term = (self.q or '').strip()
        if term:
            condition &= (
                Q(name__icontains=term)
                | Q(description__icontains=term)
                | Q(address__icontains=term)
            )

        category = (self.category or '').strip()
        if category and category != 'all':
            # venue_types holds ascii slugs, so the quoted JSON token is a safe needle
            condition &= Q(venue_type=category) | Q(venue_types__icontains=f'"{category}"')

        district = (self.district or '').strip()
        if district and district != 'all':
            condition &= (
                Q(district__iexact=district)
                | Q(address__iendswith=district)
                | Q(address__icontains=f'{district},')
                | Q(address__icontains=f'{district} ')
            )

        bucket = resolve_capacity_bucket(self.capacity)
        if bucket is not None:
            condition &= bucket.condition()
        elif self.capacity and self.capacity != 'all':
            LOGGER.debug('Ignoring unknown capacity bucket %r', self.capacity)

        return condition


@dataclass
class VenuePage:
    items: list[Venue]
    total_count: int
    has_more: bool
    epoch: int


class VenueRanking:
    """Paginate the filtered venue set in rotation order."""

    def __init__(self, *, clock=None, window_seconds: Optional[int] = None):
        self.clock = clock or SystemClock()
        self.window_seconds = window_seconds or int(
            getattr(settings, 'ROTATION_WINDOW_SECONDS', DEFAULT_WINDOW_SECONDS)
        )

    def current_epoch(self) -> int:
        return rotation_epoch(self.clock.now(), self.window_seconds)

    def ordered(self, filters: VenueFilters, *, epoch: Optional[int] = None) -> QuerySet:
        if epoch is None:
            epoch = self.current_epoch()
        return (
            Venue.objects.filter(filters.as_q())
            .select_related('homepage_slot')
            .annotate(
                slot_tier=Case(
                    When(homepage_slot__position__isnull=False, then=Value(0)),
                    default=Value(1),
                    output_field=IntegerField(),
                ),
                priority_tier=Case(
                    When(priority__isnull=False, then=Value(0)),
                    default=Value(1),
                    output_field=IntegerField(),
                ),
                priority_rank=Coalesce('priority', Value(UNSET_PRIORITY), output_field=IntegerField()),
                rotation_key=MD5(
                    Concat(
                        Cast('id', output_field=CharField()),
                        Value(f':{epoch}'),
                        output_field=CharField(),
                    )
                ),
            )
            .order_by(
                'slot_tier',
                F('homepage_slot__position').asc(nulls_last=True),
                'priority_tier',
                'priority_rank',
                'rotation_key',
                'id',
            )
        )

    def page(self, filters: VenueFilters, *, page_size: int, offset: int = 0) -> VenuePage:
        epoch = self.current_epoch()
        offset = max(offset, 0)
        total_count = Venue.objects.filter(filters.as_q()).count()
        if total_count == 0 or offset >= total_count or page_size <= 0:
            return VenuePage(items=[], total_count=total_count, has_more=False, epoch=epoch)
        items = list(self.ordered(filters, epoch=epoch)[offset:offset + page_size])
        return VenuePage(
            items=items,
            total_count=total_count,
            has_more=offset + len(items) < total_count,
            epoch=epoch,
        )


ADMIN_ORDERING = (
    F('homepage_slot__position').asc(nulls_last=True),
    F('priority').asc(nulls_last=True),
    'name',
    'id',
)


def admin_ordering(queryset: QuerySet) -> QuerySet:
    """Stable, non-rotating order for back-office listings."""
    return queryset.order_by(*ADMIN_ORDERING)
