"""Take venues out of listings and pending broadcasts."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from venues.models import Venue
from venues.services import VenueRetirement


class Command(BaseCommand):
    help = 'Release homepage slots, drop pending broadcast logs and mark the given venues removed.'

    def add_arguments(self, parser):
        parser.add_argument('slugs', nargs='+', help='Venue slugs to retire')

    def handle(self, *args, **options):
        venues = {venue.slug: venue for venue in Venue.objects.filter(slug__in=options['slugs'])}
        missing = [slug for slug in options['slugs'] if slug not in venues]
        if missing:
            raise CommandError(f"Unknown venues: {', '.join(missing)}")
        failures = 0
        for slug in options['slugs']:
            for step in VenueRetirement(venue=venues[slug]).run():
                if step.ok:
                    self.stdout.write(f'{slug}: {step.name} ok ({step.detail})')
                else:
                    failures += 1
                    self.stdout.write(self.style.ERROR(f'{slug}: {step.name} failed ({step.detail})'))
        if failures:
            self.stdout.write(self.style.WARNING(f'{failures} retirement steps failed; see log for details.'))
            return
        self.stdout.write(self.style.SUCCESS(f"Retired {len(options['slugs'])} venues."))
