"""Add logs for venues that began matching existing broadcasts."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from venues.services import BroadcastBackfill


class Command(BaseCommand):
    help = 'Re-run venue matching for every broadcast and add logs for newly matching venues.'

    def add_arguments(self, parser):
        parser.add_argument('--dry-run', action='store_true', help='Report what would be added without writing')

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        deltas = BroadcastBackfill().run(dry_run=dry_run)
        if not deltas:
            self.stdout.write(self.style.SUCCESS('All broadcasts are up to date.'))
            return
        verb = 'Would add' if dry_run else 'Added'
        for delta in deltas:
            if delta.error:
                self.stdout.write(self.style.ERROR(f'{delta.title} ({delta.broadcast_id}): {delta.error}'))
                continue
            self.stdout.write(f'{verb} {delta.added_count} venues to {delta.title} ({delta.broadcast_id})')
        changed = len([delta for delta in deltas if delta.error is None])
        self.stdout.write(self.style.SUCCESS(f'{verb} venues to {changed} broadcasts.'))
