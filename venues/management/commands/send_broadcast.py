"""Deliver pending (or failed) venue notifications of one broadcast."""
from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from venues.models import VenueBroadcast
from venues.services import BroadcastDelivery


class Command(BaseCommand):
    help = 'Send the pending notifications of a broadcast, or retry the failed ones.'

    def add_arguments(self, parser):
        parser.add_argument('--broadcast-id', required=True, help='Broadcast UUID')
        parser.add_argument('--resend-failed', action='store_true', help='Retry failed, bounced and complained logs')

    def handle(self, *args, **options):
        broadcast_id = options['broadcast_id']
        try:
            broadcast = VenueBroadcast.objects.filter(id=broadcast_id).first()
        except ValidationError as exc:
            raise CommandError(f'Invalid broadcast id {broadcast_id}') from exc
        if not broadcast:
            raise CommandError(f'Broadcast {broadcast_id} not found')
        delivery = BroadcastDelivery(broadcast=broadcast)
        result = delivery.resend_failed() if options['resend_failed'] else delivery.send_pending()
        self.stdout.write(
            self.style.SUCCESS(
                f"Sent {result['sent']}, failed {result['failed']}; broadcast is {broadcast.status}."
            )
        )
