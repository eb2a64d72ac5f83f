"""Database models for venue listings, broadcasts and delivery tracking."""
import uuid

from django.conf import settings
from django.db import models


def empty_list():
    return []


class Venue(models.Model):
    """Rentable venue exposed in listings and targeted by broadcasts."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending review'
        PUBLISHED = 'published', 'Published'
        ACTIVE = 'active', 'Active'
        HIDDEN = 'hidden', 'Hidden'
        REMOVED = 'removed', 'Removed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    parent = models.ForeignKey(
        'self',
        related_name='subvenues',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
    )
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True)
    description = models.TextField(blank=True)
    address = models.CharField(max_length=300, blank=True)
    district = models.CharField(max_length=120, blank=True, null=True)
    venue_type = models.CharField(max_length=80, blank=True)
    venue_types = models.JSONField(default=empty_list, blank=True)
    capacity_seated = models.PositiveIntegerField(null=True, blank=True)
    capacity_standing = models.PositiveIntegerField(null=True, blank=True)
    contact_email = models.EmailField(blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    priority = models.PositiveSmallIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('name',)
        indexes = [
            models.Index(fields=('status', 'priority'), name='venue_status_priority_idx'),
        ]

    def __str__(self) -> str:
        return self.name


class HomepageSlot(models.Model):
    """Manual pin that always outranks priority and rotation."""

    venue = models.OneToOneField(Venue, related_name='homepage_slot', on_delete=models.CASCADE)
    position = models.PositiveSmallIntegerField(unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ('position',)

    def __str__(self) -> str:
        return f"#{self.position} {self.venue.name}"


class VenueBroadcast(models.Model):
    """One inbound event request fanned out to matching venues."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PARTIAL = 'partial', 'Partially sent'
        COMPLETED = 'completed', 'Completed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    event_type = models.CharField(max_length=80, blank=True)
    event_date = models.DateField(null=True, blank=True)
    guest_count = models.PositiveIntegerField(null=True, blank=True)
    budget_range = models.CharField(max_length=80, blank=True)
    location_preference = models.CharField(max_length=120, blank=True, null=True)
    requirements = models.TextField(blank=True)
    contact_name = models.CharField(max_length=120)
    contact_email = models.EmailField()
    contact_phone = models.CharField(max_length=32, blank=True)
    sent_venues = models.JSONField(default=empty_list, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    sent_count = models.PositiveIntegerField(default=0)
    last_sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)

    def __str__(self) -> str:
        return self.title


class DeliveryStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    SENDING = 'sending', 'Sending'
    SENT = 'sent', 'Sent'
    DELIVERED = 'delivered', 'Delivered'
    DELAYED = 'delayed', 'Delayed'
    BOUNCED = 'bounced', 'Bounced'
    COMPLAINED = 'complained', 'Complained'
    FAILED = 'failed', 'Failed'


class DeliveryTracking(models.Model):
    """Provider-side delivery state shared by every tracked outbound message.

    ``provider_message_id`` is assigned once, when the message is handed to the
    provider, and is the key webhook callbacks are reconciled against.
    """

    email_status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
    )
    email_error = models.TextField(blank=True)
    provider_message_id = models.CharField(max_length=120, unique=True, null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    opened_at = models.DateTimeField(null=True, blank=True)
    clicked_at = models.DateTimeField(null=True, blank=True)
    bounced_at = models.DateTimeField(null=True, blank=True)
    complained_at = models.DateTimeField(null=True, blank=True)
    open_count = models.PositiveIntegerField(default=0)
    click_count = models.PositiveIntegerField(default=0)
    bounce_type = models.CharField(max_length=40, blank=True)

    class Meta:
        abstract = True


class VenueBroadcastLog(DeliveryTracking):
    """Per-venue delivery record of a broadcast."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    broadcast = models.ForeignKey(VenueBroadcast, related_name='logs', on_delete=models.CASCADE)
    venue = models.ForeignKey(Venue, related_name='broadcast_logs', on_delete=models.CASCADE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)
        constraints = [
            models.UniqueConstraint(fields=('broadcast', 'venue'), name='unique_broadcast_venue'),
        ]
        indexes = [
            models.Index(fields=('broadcast', 'email_status'), name='broadcastlog_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.broadcast.title} -> {self.venue.name} ({self.email_status})"


class EmailFlowLog(DeliveryTracking):
    """Ledger of every outbound email, broadcast or not."""

    class EmailType(models.TextChoices):
        VENUE_NOTIFICATION = 'quick_request_venue_notification', 'Venue notification'
        OPERATOR_SUMMARY = 'quick_request_internal_notification', 'Operator summary'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email_type = models.CharField(max_length=80)
    recipient = models.CharField(max_length=254)
    subject = models.CharField(max_length=300, blank=True)
    recipient_type = models.CharField(max_length=40, blank=True)
    sent_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name='email_flow_logs',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    broadcast = models.ForeignKey(
        VenueBroadcast,
        related_name='email_flow_logs',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)

    def __str__(self) -> str:
        return f"{self.email_type} -> {self.recipient} ({self.email_status})"
