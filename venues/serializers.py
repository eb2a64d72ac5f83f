"""DRF serializers for venue listings and broadcasts."""
from __future__ import annotations

from typing import Any

import phonenumbers
from django.conf import settings
from rest_framework import serializers

from .models import EmailFlowLog, Venue, VenueBroadcast, VenueBroadcastLog
from .rotation import VenueFilters
from .services import BroadcastCriteria


class VenuePageQuerySerializer(serializers.Serializer):
    q = serializers.CharField(required=False, allow_blank=True, max_length=200)
    type = serializers.CharField(required=False, allow_blank=True, max_length=80)
    district = serializers.CharField(required=False, allow_blank=True, max_length=120)
    capacity = serializers.CharField(required=False, allow_blank=True, max_length=40)
    page_size = serializers.IntegerField(required=False, min_value=1)
    offset = serializers.IntegerField(required=False, min_value=0)
    page = serializers.IntegerField(required=False, min_value=1)

    def validate_page_size(self, value: int) -> int:
        return min(value, int(getattr(settings, 'VENUE_PAGE_SIZE_MAX', 60)))

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        page_size = attrs.get('page_size') or int(getattr(settings, 'VENUE_PAGE_SIZE', 20))
        attrs['page_size'] = page_size
        if 'offset' not in attrs:
            attrs['offset'] = (attrs.get('page', 1) - 1) * page_size
        return attrs

    def to_filters(self) -> VenueFilters:
        data = self.validated_data
        return VenueFilters(
            q=data.get('q'),
            category=data.get('type'),
            district=data.get('district'),
            capacity=data.get('capacity'),
        )


class VenueListSerializer(serializers.ModelSerializer):
    homepage_position = serializers.SerializerMethodField()

    class Meta:
        model = Venue
        fields = (
            'id',
            'name',
            'slug',
            'description',
            'address',
            'district',
            'venue_type',
            'venue_types',
            'capacity_seated',
            'capacity_standing',
            'priority',
            'homepage_position',
        )

    def get_homepage_position(self, obj: Venue):
        slot = getattr(obj, 'homepage_slot', None)
        return slot.position if slot else None


class QuickRequestSerializer(serializers.Serializer):
    contact_name = serializers.CharField(max_length=120)
    contact_email = serializers.EmailField()
    contact_phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    event_type = serializers.CharField(max_length=80, required=False, allow_blank=True)
    event_date = serializers.DateField(required=False, allow_null=True)
    guest_count = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    budget_range = serializers.CharField(max_length=80, required=False, allow_blank=True)
    location_preference = serializers.CharField(max_length=120, required=False, allow_blank=True, allow_null=True)
    requirements = serializers.CharField(required=False, allow_blank=True)

    def validate_contact_phone(self, value: str) -> str:
        if not value:
            return value
        region = getattr(settings, 'PHONE_DEFAULT_REGION', 'CZ')
        try:
            parsed = phonenumbers.parse(value, region)
        except phonenumbers.NumberParseException as exc:
            raise serializers.ValidationError('Invalid phone number') from exc
        if not phonenumbers.is_valid_number(parsed):
            raise serializers.ValidationError('Invalid phone number')
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    def validate_location_preference(self, value):
        return (value or '').strip() or None

    def to_criteria(self) -> BroadcastCriteria:
        return BroadcastCriteria(**self.validated_data)


class VenueBroadcastSerializer(serializers.ModelSerializer):
    log_count = serializers.SerializerMethodField()

    class Meta:
        model = VenueBroadcast
        fields = (
            'id',
            'title',
            'description',
            'event_type',
            'event_date',
            'guest_count',
            'budget_range',
            'location_preference',
            'requirements',
            'contact_name',
            'contact_email',
            'contact_phone',
            'sent_venues',
            'status',
            'sent_count',
            'last_sent_at',
            'log_count',
            'created_at',
        )
        read_only_fields = fields

    def get_log_count(self, obj: VenueBroadcast) -> int:
        return obj.logs.count()


class VenueBroadcastLogSerializer(serializers.ModelSerializer):
    venue_name = serializers.CharField(source='venue.name', read_only=True)

    class Meta:
        model = VenueBroadcastLog
        fields = (
            'id',
            'broadcast',
            'venue',
            'venue_name',
            'email_status',
            'email_error',
            'provider_message_id',
            'sent_at',
            'delivered_at',
            'opened_at',
            'clicked_at',
            'bounced_at',
            'complained_at',
            'open_count',
            'click_count',
            'bounce_type',
        )
        read_only_fields = fields


class EmailFlowLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = EmailFlowLog
        fields = (
            'id',
            'email_type',
            'recipient',
            'subject',
            'recipient_type',
            'broadcast',
            'email_status',
            'email_error',
            'provider_message_id',
            'sent_at',
            'delivered_at',
            'opened_at',
            'open_count',
            'click_count',
            'created_at',
        )
        read_only_fields = fields


class BroadcastSendSerializer(serializers.Serializer):
    venue_id = serializers.UUIDField(required=False, allow_null=True)


class BroadcastDeltaSerializer(serializers.Serializer):
    broadcast_id = serializers.CharField()
    title = serializers.CharField()
    added_venue_ids = serializers.ListField(child=serializers.CharField())
    added_count = serializers.IntegerField()
    error = serializers.CharField(allow_null=True)


class BackfillRequestSerializer(serializers.Serializer):
    dry_run = serializers.BooleanField(required=False, default=False)


class TrackingQuerySerializer(serializers.Serializer):
    broadcast_id = serializers.UUIDField(required=False)
    recent = serializers.IntegerField(required=False, default=20, min_value=0, max_value=200)
