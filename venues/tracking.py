"""Reconcile provider delivery webhooks into tracked message rows."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Callable, Optional

from django.conf import settings
from django.db import connection, transaction
from django.db.models import Count, F, Q, QuerySet, Sum
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .models import DeliveryStatus, EmailFlowLog, VenueBroadcast, VenueBroadcastLog

LOGGER = logging.getLogger(__name__)

EVENT_PREFIX = 'email.'
DEFAULT_BOUNCE_TYPE = 'unknown'


class WebhookError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class WebhookConfigurationError(WebhookError):
    status_code = 500


class WebhookSignatureError(WebhookError):
    status_code = 401


class WebhookPayloadError(WebhookError):
    status_code = 400


@dataclass(frozen=True)
class DeliveryEvent:
    email_id: str
    occurred_at: datetime


@dataclass(frozen=True)
class Sent(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Delivered(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Opened(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Clicked(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Bounced(DeliveryEvent):
    bounce_type: str = DEFAULT_BOUNCE_TYPE


@dataclass(frozen=True)
class Complained(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Delayed(DeliveryEvent):
    pass


@dataclass(frozen=True)
class Unhandled(DeliveryEvent):
    event_type: str = ''


EVENT_TYPES: dict[str, type[DeliveryEvent]] = {
    'sent': Sent,
    'delivered': Delivered,
    'opened': Opened,
    'clicked': Clicked,
    'bounced': Bounced,
    'complained': Complained,
    'delivery_delayed': Delayed,
}


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 digest of the raw body."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(raw_body, secret), signature.strip().lower())


def decode_event(raw_body: bytes, *, now: Optional[datetime] = None) -> DeliveryEvent:
    try:
        payload = json.loads(raw_body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookPayloadError('Webhook body is not valid JSON') from exc
    if not isinstance(payload, dict):
        raise WebhookPayloadError('Webhook body must be a JSON object')

    data = payload.get('data')
    if not isinstance(data, dict):
        data = {}
    email_id = data.get('email_id')
    if not email_id or not isinstance(email_id, str):
        raise WebhookPayloadError('Missing data.email_id')

    # data.created_at is when the email was created, not when this event happened
    occurred_at = _parse_timestamp(payload.get('created_at')) or now or timezone.now()
    event_type = str(payload.get('type') or '')
    if event_type.startswith(EVENT_PREFIX):
        event_type = event_type[len(EVENT_PREFIX):]

    event_class = EVENT_TYPES.get(event_type)
    if event_class is None:
        return Unhandled(email_id=email_id, occurred_at=occurred_at, event_type=event_type)
    if event_class is Bounced:
        bounce = data.get('bounce') if isinstance(data.get('bounce'), dict) else {}
        bounce_type = bounce.get('type') or data.get('bounce_type') or DEFAULT_BOUNCE_TYPE
        return Bounced(email_id=email_id, occurred_at=occurred_at, bounce_type=str(bounce_type))
    return event_class(email_id=email_id, occurred_at=occurred_at)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def _apply_sent(queryset: QuerySet, event: Sent) -> int:
    return queryset.filter(email_status=DeliveryStatus.PENDING).update(
        email_status=DeliveryStatus.SENT,
        sent_at=event.occurred_at,
        updated_at=timezone.now(),
    )


def _apply_delivered(queryset: QuerySet, event: Delivered) -> int:
    queryset.filter(delivered_at__isnull=True).update(delivered_at=event.occurred_at)
    return queryset.exclude(
        email_status__in=(DeliveryStatus.BOUNCED, DeliveryStatus.COMPLAINED),
    ).update(email_status=DeliveryStatus.DELIVERED, email_error='', updated_at=timezone.now())


def _apply_opened(queryset: QuerySet, event: Opened) -> int:
    queryset.filter(opened_at__isnull=True).update(opened_at=event.occurred_at)
    return queryset.update(open_count=F('open_count') + 1, updated_at=timezone.now())


def _apply_clicked(queryset: QuerySet, event: Clicked) -> int:
    queryset.filter(clicked_at__isnull=True).update(clicked_at=event.occurred_at)
    return queryset.update(click_count=F('click_count') + 1, updated_at=timezone.now())


def _apply_bounced(queryset: QuerySet, event: Bounced) -> int:
    return queryset.update(
        email_status=DeliveryStatus.BOUNCED,
        bounced_at=event.occurred_at,
        bounce_type=event.bounce_type,
        email_error=f'Bounced ({event.bounce_type})',
        updated_at=timezone.now(),
    )


def _apply_complained(queryset: QuerySet, event: Complained) -> int:
    return queryset.update(
        email_status=DeliveryStatus.COMPLAINED,
        complained_at=event.occurred_at,
        email_error='Marked as spam',
        updated_at=timezone.now(),
    )


def _apply_delayed(queryset: QuerySet, event: Delayed) -> int:
    return queryset.update(
        email_status=DeliveryStatus.DELAYED,
        email_error='Delivery delayed',
        updated_at=timezone.now(),
    )


TRANSITIONS: dict[type[DeliveryEvent], Callable[[QuerySet, Any], int]] = {
    Sent: _apply_sent,
    Delivered: _apply_delivered,
    Opened: _apply_opened,
    Clicked: _apply_clicked,
    Bounced: _apply_bounced,
    Complained: _apply_complained,
    Delayed: _apply_delayed,
}

TRACKED_MODELS = (VenueBroadcastLog, EmailFlowLog)


def tracked_rows(model, email_id: str) -> Optional[QuerySet]:
    """Rows of ``model`` carrying ``email_id``, or None when the table has none."""
    queryset = model.objects.filter(provider_message_id=email_id)
    return queryset if queryset.exists() else None


@dataclass
class ReconcileResult:
    event: DeliveryEvent
    matched: list[str]
    handled: bool

    @property
    def ignored(self) -> bool:
        return not self.handled or not self.matched


class DeliveryReconciler:
    """Verify, decode and apply one provider webhook call."""

    def __init__(
        self,
        *,
        secret: Optional[str] = None,
        max_body_bytes: Optional[int] = None,
        db_timeout_ms: Optional[int] = None,
    ):
        self.secret = secret if secret is not None else getattr(settings, 'RESEND_WEBHOOK_SECRET', None)
        self.max_body_bytes = max_body_bytes or int(getattr(settings, 'WEBHOOK_MAX_BODY_BYTES', 256 * 1024))
        self.db_timeout_ms = db_timeout_ms or int(getattr(settings, 'WEBHOOK_DB_TIMEOUT_MS', 5000))

    def reconcile(self, raw_body: bytes, signature: Optional[str]) -> ReconcileResult:
        if not self.secret:
            LOGGER.error('Webhook secret is not configured; rejecting delivery event')
            raise WebhookConfigurationError('Webhook secret is not configured')
        if len(raw_body) > self.max_body_bytes:
            raise WebhookPayloadError('Webhook body too large')
        if not verify_signature(raw_body, signature, self.secret):
            LOGGER.warning('Rejected delivery webhook with invalid signature')
            raise WebhookSignatureError('Invalid signature')

        event = decode_event(raw_body)
        transition = TRANSITIONS.get(type(event))
        if transition is None:
            LOGGER.info('Ignoring delivery event %r for %s', getattr(event, 'event_type', ''), event.email_id)
            return ReconcileResult(event=event, matched=[], handled=False)

        matched = []
        for model in TRACKED_MODELS:
            with transaction.atomic():
                self._bound_statement_time()
                queryset = tracked_rows(model, event.email_id)
                if queryset is None:
                    continue
                transition(queryset, event)
            matched.append(model.__name__)
        if not matched:
            LOGGER.warning(
                'unmatched delivery event %s for provider id %s',
                type(event).__name__.lower(),
                event.email_id,
            )
            return ReconcileResult(event=event, matched=[], handled=True)
        LOGGER.info('Applied %s to %s for %s', type(event).__name__, ', '.join(matched), event.email_id)
        return ReconcileResult(event=event, matched=matched, handled=True)

    def _bound_statement_time(self):
        if connection.vendor != 'postgresql':
            return
        with connection.cursor() as cursor:
            cursor.execute(f'SET LOCAL statement_timeout = {int(self.db_timeout_ms)}')


def _rate(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, 2)


def delivery_stats(queryset: QuerySet) -> dict[str, Any]:
    stats = queryset.aggregate(
        total=Count('id'),
        sent=Count('id', filter=Q(sent_at__isnull=False)),
        delivered=Count('id', filter=Q(delivered_at__isnull=False)),
        opened=Count('id', filter=Q(opened_at__isnull=False)),
        clicked=Count('id', filter=Q(clicked_at__isnull=False)),
        bounced=Count('id', filter=Q(email_status=DeliveryStatus.BOUNCED)),
        complained=Count('id', filter=Q(email_status=DeliveryStatus.COMPLAINED)),
        failed=Count('id', filter=Q(email_status=DeliveryStatus.FAILED)),
        pending=Count('id', filter=Q(email_status=DeliveryStatus.PENDING)),
        total_opens=Sum('open_count'),
        total_clicks=Sum('click_count'),
    )
    stats['total_opens'] = stats['total_opens'] or 0
    stats['total_clicks'] = stats['total_clicks'] or 0
    sent = stats['sent']
    stats['rates'] = {
        'delivery': _rate(stats['delivered'], sent),
        'open': _rate(stats['opened'], stats['delivered']),
        'click': _rate(stats['clicked'], stats['delivered']),
        'bounce': _rate(stats['bounced'], sent),
        'complaint': _rate(stats['complained'], sent),
    }
    return stats


def build_tracking_report(*, broadcast_id: Optional[str] = None, recent: int = 20) -> dict[str, Any]:
    logs = VenueBroadcastLog.objects.all()
    broadcasts = VenueBroadcast.objects.order_by('-created_at')
    if broadcast_id:
        logs = logs.filter(broadcast_id=broadcast_id)
        broadcasts = broadcasts.filter(id=broadcast_id)
    per_broadcast = [
        {
            'id': str(broadcast.id),
            'title': broadcast.title,
            'status': broadcast.status,
            'sent_count': broadcast.sent_count,
            'created_at': broadcast.created_at,
            **delivery_stats(broadcast.logs.all()),
        }
        for broadcast in broadcasts
    ]
    recent_logs = list(
        logs.select_related('venue', 'broadcast')
        .order_by('-updated_at')
        .values(
            'id',
            'broadcast_id',
            'broadcast__title',
            'venue__name',
            'email_status',
            'email_error',
            'sent_at',
            'delivered_at',
            'opened_at',
            'clicked_at',
            'open_count',
            'click_count',
        )[:recent]
    )
    return {
        'overall': delivery_stats(logs),
        'broadcasts': per_broadcast,
        'recent': recent_logs,
    }
