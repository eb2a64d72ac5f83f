"""Admin registrations for the venues app."""
from __future__ import annotations

from django.contrib import admin

from .models import EmailFlowLog, HomepageSlot, Venue, VenueBroadcast, VenueBroadcastLog
from .rotation import ADMIN_ORDERING


class HomepageSlotInline(admin.StackedInline):
    model = HomepageSlot
    extra = 0


@admin.register(Venue)
class VenueAdmin(admin.ModelAdmin):
    list_display = ('name', 'district', 'venue_type', 'status', 'priority', 'capacity_seated', 'capacity_standing')
    list_filter = ('status', 'venue_type')
    search_fields = ('name', 'slug', 'address', 'district')
    prepopulated_fields = {'slug': ('name',)}
    ordering = ADMIN_ORDERING
    inlines = (HomepageSlotInline,)


@admin.register(HomepageSlot)
class HomepageSlotAdmin(admin.ModelAdmin):
    list_display = ('position', 'venue', 'created_at')
    ordering = ('position',)


class VenueBroadcastLogInline(admin.TabularInline):
    model = VenueBroadcastLog
    extra = 0
    fields = ('venue', 'email_status', 'email_error', 'sent_at', 'delivered_at', 'open_count', 'click_count')
    readonly_fields = fields
    can_delete = False


@admin.register(VenueBroadcast)
class VenueBroadcastAdmin(admin.ModelAdmin):
    list_display = ('title', 'contact_email', 'guest_count', 'location_preference', 'status', 'sent_count', 'created_at')
    list_filter = ('status',)
    search_fields = ('title', 'contact_name', 'contact_email')
    readonly_fields = ('sent_venues', 'sent_count', 'last_sent_at', 'created_at', 'updated_at')
    inlines = (VenueBroadcastLogInline,)


@admin.register(VenueBroadcastLog)
class VenueBroadcastLogAdmin(admin.ModelAdmin):
    list_display = ('broadcast', 'venue', 'email_status', 'sent_at', 'delivered_at', 'opened_at', 'open_count')
    list_filter = ('email_status',)
    search_fields = ('provider_message_id', 'venue__name', 'broadcast__title')
    raw_id_fields = ('broadcast', 'venue')


@admin.register(EmailFlowLog)
class EmailFlowLogAdmin(admin.ModelAdmin):
    list_display = ('email_type', 'recipient', 'email_status', 'sent_at', 'delivered_at', 'created_at')
    list_filter = ('email_type', 'email_status')
    search_fields = ('recipient', 'subject', 'provider_message_id')
