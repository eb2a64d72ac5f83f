"""Domain services for broadcast fan-out, delivery and reconciliation."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

import requests
from django.conf import settings
from django.core.mail import EmailMessage
from django.db import transaction
from django.db.models import F
from django.template.loader import render_to_string
from django.utils import timezone

from .matching import CandidateMatcher, VenueMatch, VenueMatcher, derive_guest_range, location_label
from .models import DeliveryStatus, EmailFlowLog, HomepageSlot, Venue, VenueBroadcast, VenueBroadcastLog

LOGGER = logging.getLogger(__name__)

RESENDABLE_STATUSES = (
    DeliveryStatus.FAILED,
    DeliveryStatus.BOUNCED,
    DeliveryStatus.COMPLAINED,
)


class MessageSendError(RuntimeError):
    """Raised when an outbound message could not be handed to the provider."""


class RateLimiter:
    """Simple in-memory rate limiter to respect provider quotas."""

    def __init__(self, per_minute: int, *, window_seconds: float = 60.0, clock=time.monotonic, sleep=time.sleep):
        self.per_minute = max(per_minute, 1)
        self.window = window_seconds
        self.clock = clock
        self.sleep = sleep
        self._window_start = clock()
        self._sent = 0

    def wait_for_slot(self):
        now = self.clock()
        if now - self._window_start >= self.window:
            self._window_start = now
            self._sent = 0
        if self._sent < self.per_minute:
            self._sent += 1
            return
        sleep_for = self.window - (now - self._window_start)
        if sleep_for > 0:
            LOGGER.info('Email quota reached, sleeping %.1fs', sleep_for)
            self.sleep(sleep_for)
        self._window_start = self.clock()
        self._sent = 1


@dataclass
class OutboundMessage:
    recipient: str
    subject: str
    body: str
    tags: dict[str, str] = field(default_factory=dict)


class DjangoMailSender:
    """Send through the configured Django email backend.

    Django backends do not hand back a provider id, so a local one is minted;
    webhook events will never reference it.
    """

    def __init__(self, *, from_email: Optional[str] = None):
        self.from_email = from_email or getattr(settings, 'BROADCAST_FROM_EMAIL', settings.DEFAULT_FROM_EMAIL)

    def send(self, message: OutboundMessage) -> str:
        email = EmailMessage(
            subject=message.subject,
            body=message.body,
            from_email=self.from_email,
            to=[message.recipient],
        )
        try:
            email.send(fail_silently=False)
        except Exception as exc:  # pragma: no cover - depends on backend
            raise MessageSendError(f'Email send failed: {exc}') from exc
        return f'local-{uuid.uuid4()}'


class ResendEmailSender:
    """Send through the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        from_email: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or getattr(settings, 'RESEND_API_KEY', None)
        self.api_url = api_url or getattr(settings, 'RESEND_API_URL', 'https://api.resend.com/emails')
        self.from_email = from_email or getattr(settings, 'BROADCAST_FROM_EMAIL', settings.DEFAULT_FROM_EMAIL)
        self.timeout = timeout or float(getattr(settings, 'RESEND_TIMEOUT_SECONDS', 10.0))
        self.session = session or requests.Session()

    def send(self, message: OutboundMessage) -> str:
        if not self.api_key:
            raise MessageSendError('Resend API key is not configured')
        payload: dict[str, Any] = {
            'from': self.from_email,
            'to': [message.recipient],
            'subject': message.subject,
            'text': message.body,
        }
        if message.tags:
            payload['tags'] = [{'name': name, 'value': value} for name, value in message.tags.items()]
        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                headers={'Authorization': f'Bearer {self.api_key}'},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise MessageSendError(f'Resend request failed: {exc}') from exc
        if response.status_code >= 400:
            raise MessageSendError(f'Resend rejected message ({response.status_code}): {response.text[:300]}')
        try:
            provider_id = response.json().get('id')
        except ValueError as exc:
            raise MessageSendError('Resend returned a non-JSON response') from exc
        if not provider_id:
            raise MessageSendError('Resend response did not include a message id')
        return provider_id


def get_message_sender():
    backend = getattr(settings, 'BROADCAST_EMAIL_SENDER', 'django')
    senders = {
        'django': DjangoMailSender,
        'resend': ResendEmailSender,
    }
    sender_class = senders.get(backend)
    if sender_class is None:
        raise ValueError(f'Unknown BROADCAST_EMAIL_SENDER {backend!r}')
    return sender_class()


def build_broadcast_title(guest_count: Optional[int], location_preference: Optional[str]) -> str:
    prefix = getattr(settings, 'BROADCAST_TITLE_PREFIX', 'Rychlá poptávka')
    separator = getattr(settings, 'BROADCAST_TITLE_SEPARATOR', ' · ')
    _, guest_label = derive_guest_range(guest_count)
    parts = [part for part in (guest_label, location_label(location_preference)) if part]
    return separator.join([prefix, *parts])


@dataclass
class BroadcastCriteria:
    contact_name: str
    contact_email: str
    contact_phone: str = ''
    description: str = ''
    event_type: str = ''
    event_date: Optional[date] = None
    guest_count: Optional[int] = None
    budget_range: str = ''
    location_preference: Optional[str] = None
    requirements: str = ''


def unique_venue_ids(matches: Iterable[VenueMatch]) -> list[str]:
    seen: list[str] = []
    for match in matches:
        venue_id = str(match.id)
        if venue_id not in seen:
            seen.append(venue_id)
    return seen


class BroadcastDispatcher:
    """Persist a quick request and fan it out to every matching venue."""

    def __init__(self, *, matcher: Optional[CandidateMatcher] = None):
        self.matcher = matcher or VenueMatcher()

    def dispatch(self, criteria: BroadcastCriteria) -> VenueBroadcast:
        title = build_broadcast_title(criteria.guest_count, criteria.location_preference)
        with transaction.atomic():
            broadcast = VenueBroadcast.objects.create(
                title=title,
                description=criteria.description,
                event_type=criteria.event_type,
                event_date=criteria.event_date,
                guest_count=criteria.guest_count,
                budget_range=criteria.budget_range,
                location_preference=criteria.location_preference,
                requirements=criteria.requirements,
                contact_name=criteria.contact_name,
                contact_email=criteria.contact_email,
                contact_phone=criteria.contact_phone,
                status=VenueBroadcast.Status.PENDING,
                sent_count=0,
            )
            matches = self.matcher.match(criteria.guest_count, criteria.location_preference)
            venue_ids = unique_venue_ids(matches)
            if venue_ids:
                VenueBroadcastLog.objects.bulk_create(
                    [
                        VenueBroadcastLog(broadcast=broadcast, venue_id=venue_id, email_status=DeliveryStatus.PENDING)
                        for venue_id in venue_ids
                    ],
                    ignore_conflicts=True,
                )
            else:
                LOGGER.warning(
                    'Broadcast %s: no venues matched (guests=%s, location=%r)',
                    broadcast.id,
                    criteria.guest_count,
                    criteria.location_preference,
                )
            broadcast.sent_venues = venue_ids
            broadcast.save(update_fields=('sent_venues', 'updated_at'))
        LOGGER.info('Broadcast %s created for %d venues', broadcast.id, len(venue_ids))
        return broadcast


class OperatorNotifier:
    """Email the operator inbox a summary of a new quick request."""

    def __init__(self, *, sender=None, recipient: Optional[str] = None):
        self.sender = sender or get_message_sender()
        self.recipient = recipient or getattr(settings, 'BROADCAST_OPERATOR_EMAIL', None)

    def notify(self, broadcast: VenueBroadcast) -> Optional[EmailFlowLog]:
        if not self.recipient:
            return None
        message = OutboundMessage(
            recipient=self.recipient,
            subject=f'Nová poptávka: {broadcast.title}',
            body=render_to_string(
                'emails/quick_request_summary.txt',
                {'broadcast': broadcast, 'venue_count': len(broadcast.sent_venues or [])},
            ),
            tags={'broadcast_id': str(broadcast.id), 'email_type': EmailFlowLog.EmailType.OPERATOR_SUMMARY},
        )
        flow_log = EmailFlowLog(
            email_type=EmailFlowLog.EmailType.OPERATOR_SUMMARY,
            recipient=self.recipient,
            subject=message.subject,
            recipient_type='operator',
            broadcast=broadcast,
        )
        try:
            flow_log.provider_message_id = self.sender.send(message)
        except MessageSendError as exc:
            LOGGER.error('Operator summary for broadcast %s failed: %s', broadcast.id, exc)
            flow_log.email_status = DeliveryStatus.FAILED
            flow_log.email_error = str(exc)[:500]
        else:
            flow_log.email_status = DeliveryStatus.SENT
            flow_log.sent_at = timezone.now()
        flow_log.save()
        return flow_log


class BroadcastDelivery:
    """Hand pending broadcast logs to the message sender and record the outcome."""

    def __init__(self, *, broadcast: VenueBroadcast, sender=None, limiter: Optional[RateLimiter] = None, user=None):
        self.broadcast = broadcast
        self.sender = sender or get_message_sender()
        self.limiter = limiter or RateLimiter(int(getattr(settings, 'BROADCAST_EMAIL_RATE_LIMIT_PER_MIN', 60)))
        self.user = user

    def send_pending(self, *, venue_id: Optional[str] = None) -> dict[str, int]:
        queryset = self.broadcast.logs.filter(email_status=DeliveryStatus.PENDING)
        if venue_id:
            queryset = queryset.filter(venue_id=venue_id)
        return self._deliver(queryset)

    def resend_failed(self) -> dict[str, int]:
        queryset = self.broadcast.logs.filter(email_status__in=RESENDABLE_STATUSES)
        return self._deliver(queryset)

    def _deliver(self, queryset) -> dict[str, int]:
        counts = {'sent': 0, 'failed': 0}
        skipped = 0
        try:
            for log in queryset.select_related('venue').order_by('created_at'):
                if not self._claim(log):
                    skipped += 1
                    continue
                if self._deliver_one(log):
                    counts['sent'] += 1
                else:
                    counts['failed'] += 1
        finally:
            self._finalize(sent=counts['sent'])
        if skipped:
            LOGGER.info('Broadcast %s: %s logs already claimed by another send', self.broadcast.id, skipped)
        LOGGER.info('Broadcast %s delivery: %s', self.broadcast.id, counts)
        return counts

    def _claim(self, log: VenueBroadcastLog) -> bool:
        """Move ``log`` to sending unless another send got to it first."""
        claimed = VenueBroadcastLog.objects.filter(pk=log.pk, email_status=log.email_status).update(
            email_status=DeliveryStatus.SENDING,
            updated_at=timezone.now(),
        )
        if claimed:
            log.email_status = DeliveryStatus.SENDING
        return bool(claimed)

    def _deliver_one(self, log: VenueBroadcastLog) -> bool:
        recipient = log.venue.contact_email
        if not recipient:
            self._handle_failure(log, 'Missing contact email', record=False)
            return False
        message = OutboundMessage(
            recipient=recipient,
            subject=self.broadcast.title,
            body=render_to_string(
                'emails/venue_broadcast.txt',
                {'broadcast': self.broadcast, 'venue': log.venue},
            ),
            tags={'broadcast_id': str(self.broadcast.id), 'email_type': EmailFlowLog.EmailType.VENUE_NOTIFICATION},
        )
        self.limiter.wait_for_slot()
        try:
            provider_id = self.sender.send(message)
        except MessageSendError as exc:
            LOGGER.warning('Broadcast %s -> venue %s failed: %s', self.broadcast.id, log.venue_id, exc)
            self._handle_failure(log, str(exc), record=True, subject=message.subject)
            return False
        return self._handle_success(log, provider_id, subject=message.subject)

    def _handle_success(self, log: VenueBroadcastLog, provider_id: str, *, subject: str) -> bool:
        now = timezone.now()
        with transaction.atomic():
            updated = VenueBroadcastLog.objects.filter(pk=log.pk, email_status=DeliveryStatus.SENDING).update(
                email_status=DeliveryStatus.SENT,
                provider_message_id=provider_id,
                sent_at=now,
                email_error='',
                updated_at=now,
            )
            if not updated:
                LOGGER.error(
                    'Broadcast %s log %s left sending state before provider id %s was stored',
                    self.broadcast.id,
                    log.pk,
                    provider_id,
                )
                return False
            EmailFlowLog.objects.create(
                email_type=EmailFlowLog.EmailType.VENUE_NOTIFICATION,
                recipient=log.venue.contact_email,
                subject=subject,
                recipient_type='venue',
                sent_by=self.user,
                broadcast=self.broadcast,
                email_status=DeliveryStatus.SENT,
                provider_message_id=provider_id,
                sent_at=now,
            )
        return True

    def _handle_failure(self, log: VenueBroadcastLog, error: str, *, record: bool, subject: str = ''):
        with transaction.atomic():
            VenueBroadcastLog.objects.filter(pk=log.pk, email_status=DeliveryStatus.SENDING).update(
                email_status=DeliveryStatus.FAILED,
                email_error=error[:500],
                updated_at=timezone.now(),
            )
            if record:
                EmailFlowLog.objects.create(
                    email_type=EmailFlowLog.EmailType.VENUE_NOTIFICATION,
                    recipient=log.venue.contact_email,
                    subject=subject,
                    recipient_type='venue',
                    sent_by=self.user,
                    broadcast=self.broadcast,
                    email_status=DeliveryStatus.FAILED,
                    email_error=error[:500],
                )

    def _finalize(self, *, sent: int):
        updates: dict[str, Any] = {}
        if sent:
            updates['sent_count'] = F('sent_count') + sent
            updates['last_sent_at'] = timezone.now()
        remaining = self.broadcast.logs.filter(
            email_status__in=(DeliveryStatus.PENDING, DeliveryStatus.SENDING),
        ).exists()
        if not remaining:
            updates['status'] = VenueBroadcast.Status.COMPLETED
        elif sent:
            updates['status'] = VenueBroadcast.Status.PARTIAL
        if not updates:
            return
        updates['updated_at'] = timezone.now()
        VenueBroadcast.objects.filter(pk=self.broadcast.pk).update(**updates)
        self.broadcast.refresh_from_db()


@dataclass
class BroadcastDelta:
    broadcast_id: str
    title: str
    added_venue_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def added_count(self) -> int:
        return len(self.added_venue_ids)


class BroadcastBackfill:
    """Add logs for venues that started matching a broadcast after it was created.

    Existing logs are never touched, so a second run finds nothing to add.
    """

    def __init__(self, *, matcher: Optional[CandidateMatcher] = None):
        self.matcher = matcher or VenueMatcher()

    def run(self, *, dry_run: bool = False) -> list[BroadcastDelta]:
        deltas = []
        for broadcast in VenueBroadcast.objects.order_by('created_at', 'id'):
            try:
                delta = self.reconcile(broadcast, dry_run=dry_run)
            except Exception as exc:
                LOGGER.exception('Backfill failed for broadcast %s', broadcast.id)
                deltas.append(BroadcastDelta(broadcast_id=str(broadcast.id), title=broadcast.title, error=str(exc)))
                continue
            if delta is not None:
                deltas.append(delta)
        LOGGER.info(
            'Backfill %s: %d broadcasts changed',
            'dry run' if dry_run else 'run',
            len([delta for delta in deltas if delta.error is None]),
        )
        return deltas

    def reconcile(self, broadcast: VenueBroadcast, *, dry_run: bool = False) -> Optional[BroadcastDelta]:
        matches = self.matcher.match(broadcast.guest_count, broadcast.location_preference)
        existing = {str(venue_id) for venue_id in broadcast.logs.values_list('venue_id', flat=True)}
        missing = [venue_id for venue_id in unique_venue_ids(matches) if venue_id not in existing]
        if not missing:
            return None
        delta = BroadcastDelta(broadcast_id=str(broadcast.id), title=broadcast.title, added_venue_ids=missing)
        if dry_run:
            return delta
        with transaction.atomic():
            VenueBroadcastLog.objects.bulk_create(
                [
                    VenueBroadcastLog(broadcast=broadcast, venue_id=venue_id, email_status=DeliveryStatus.PENDING)
                    for venue_id in missing
                ],
                ignore_conflicts=True,
            )
            sent_venues = [str(venue_id) for venue_id in (broadcast.sent_venues or [])]
            sent_venues.extend(venue_id for venue_id in missing if venue_id not in sent_venues)
            broadcast.sent_venues = sent_venues
            broadcast.save(update_fields=('sent_venues', 'updated_at'))
        LOGGER.info('Backfilled %d venues into broadcast %s', len(missing), broadcast.id)
        return delta


@dataclass
class RetirementStep:
    name: str
    ok: bool
    detail: str = ''


class VenueRetirement:
    """Take a venue out of circulation in ordered, independent steps.

    A failing step is logged and reported; later steps still run.
    """

    def __init__(self, *, venue: Venue):
        self.venue = venue

    def run(self) -> list[RetirementStep]:
        steps = (
            ('release_homepage_slot', self._release_homepage_slot),
            ('drop_pending_broadcast_logs', self._drop_pending_logs),
            ('mark_removed', self._mark_removed),
        )
        results = []
        for name, step in steps:
            try:
                with transaction.atomic():
                    detail = step()
            except Exception as exc:
                LOGGER.exception('Retirement step %s failed for venue %s', name, self.venue.slug)
                results.append(RetirementStep(name=name, ok=False, detail=str(exc)))
                continue
            results.append(RetirementStep(name=name, ok=True, detail=detail))
        return results

    def _release_homepage_slot(self) -> str:
        deleted, _ = HomepageSlot.objects.filter(venue=self.venue).delete()
        return f'{deleted} slot(s) released'

    def _drop_pending_logs(self) -> str:
        deleted, _ = VenueBroadcastLog.objects.filter(
            venue=self.venue,
            email_status=DeliveryStatus.PENDING,
        ).delete()
        return f'{deleted} pending log(s) dropped'

    def _mark_removed(self) -> str:
        Venue.objects.filter(pk=self.venue.pk).update(status=Venue.Status.REMOVED, updated_at=timezone.now())
        self.venue.status = Venue.Status.REMOVED
        return 'status set to removed'


