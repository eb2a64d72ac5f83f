from __future__ import annotations

import uuid
from typing import Optional

from django.utils.text import slugify

from venues.matching import VenueMatch
from venues.models import Venue
from venues.services import MessageSendError, OutboundMessage


def make_venue(name: str, **kwargs) -> Venue:
    slug = kwargs.pop('slug', None) or slugify(name)
    defaults = {
        'status': Venue.Status.PUBLISHED,
        'contact_email': f'{slug}@example.com',
        'district': 'Praha 1',
        'capacity_seated': 50,
        'capacity_standing': 80,
    }
    defaults.update(kwargs)
    return Venue.objects.create(name=name, slug=slug, **defaults)


def as_match(venue: Venue) -> VenueMatch:
    return VenueMatch(id=str(venue.id), name=venue.name, contact_email=venue.contact_email or None)


class StaticMatcher:
    def __init__(self, venues=()):
        self.venues = list(venues)
        self.calls = []

    def match(self, guest_count: Optional[int], location_preference: Optional[str]):
        self.calls.append((guest_count, location_preference))
        return [as_match(venue) for venue in self.venues]


class RecordingSender:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent: list[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> str:
        if message.recipient in self.fail_for:
            raise MessageSendError(f'Mailbox {message.recipient} rejected')
        self.sent.append(message)
        return f'msg-{uuid.uuid4().hex}'
