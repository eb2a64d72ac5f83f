from io import StringIO

from django.core import mail
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from venues.models import DeliveryStatus, HomepageSlot, Venue, VenueBroadcast
from venues.services import BroadcastDispatcher, VenueRetirement

from .test_dispatch import criteria
from .utils import StaticMatcher, make_venue


class BackfillCommandTests(TestCase):
    def setUp(self):
        self.alpha = make_venue('Alpha')
        self.broadcast = BroadcastDispatcher(matcher=StaticMatcher([self.alpha])).dispatch(criteria())

    def test_reports_up_to_date(self):
        out = StringIO()
        call_command('backfill_broadcasts', stdout=out)
        self.assertIn('All broadcasts are up to date.', out.getvalue())

    def test_adds_new_venue(self):
        make_venue('Beta')
        out = StringIO()
        call_command('backfill_broadcasts', stdout=out)
        self.assertIn('Added 1 venues', out.getvalue())
        self.assertEqual(self.broadcast.logs.count(), 2)

    def test_dry_run(self):
        make_venue('Beta')
        out = StringIO()
        call_command('backfill_broadcasts', '--dry-run', stdout=out)
        self.assertIn('Would add 1 venues', out.getvalue())
        self.assertEqual(self.broadcast.logs.count(), 1)


class SendBroadcastCommandTests(TestCase):
    def setUp(self):
        self.alpha = make_venue('Alpha')
        self.broadcast = BroadcastDispatcher(matcher=StaticMatcher([self.alpha])).dispatch(criteria())

    def test_sends_pending(self):
        out = StringIO()
        call_command('send_broadcast', '--broadcast-id', str(self.broadcast.id), stdout=out)
        self.assertIn('Sent 1, failed 0', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)
        self.broadcast.refresh_from_db()
        self.assertEqual(self.broadcast.status, VenueBroadcast.Status.COMPLETED)

    def test_resend_failed(self):
        self.broadcast.logs.update(email_status=DeliveryStatus.BOUNCED)
        out = StringIO()
        call_command('send_broadcast', '--broadcast-id', str(self.broadcast.id), '--resend-failed', stdout=out)
        self.assertIn('Sent 1', out.getvalue())

    def test_unknown_broadcast(self):
        with self.assertRaises(CommandError):
            call_command('send_broadcast', '--broadcast-id', 'not-a-uuid')
        with self.assertRaises(CommandError):
            call_command('send_broadcast', '--broadcast-id', '00000000-0000-0000-0000-000000000000')


class RetirementTests(TestCase):
    def setUp(self):
        self.alpha = make_venue('Alpha')
        self.beta = make_venue('Beta')
        HomepageSlot.objects.create(venue=self.alpha, position=1)
        self.first = BroadcastDispatcher(matcher=StaticMatcher([self.alpha, self.beta])).dispatch(criteria())
        self.second = BroadcastDispatcher(matcher=StaticMatcher([self.alpha])).dispatch(criteria())
        self.first.logs.filter(venue=self.alpha).update(email_status=DeliveryStatus.DELIVERED)

    def test_steps_run_in_order(self):
        steps = VenueRetirement(venue=self.alpha).run()
        self.assertEqual(
            [step.name for step in steps],
            ['release_homepage_slot', 'drop_pending_broadcast_logs', 'mark_removed'],
        )
        self.assertTrue(all(step.ok for step in steps))
        self.assertFalse(HomepageSlot.objects.filter(venue=self.alpha).exists())
        self.assertEqual(self.second.logs.count(), 0)
        self.assertEqual(self.first.logs.get(venue=self.alpha).email_status, DeliveryStatus.DELIVERED)
        self.alpha.refresh_from_db()
        self.assertEqual(self.alpha.status, Venue.Status.REMOVED)

    def test_failing_step_does_not_block_later_steps(self):
        retirement = VenueRetirement(venue=self.alpha)

        def broken():
            raise RuntimeError('slot table locked')

        retirement._release_homepage_slot = broken
        with self.assertLogs('venues.services', level='ERROR'):
            steps = retirement.run()
        self.assertFalse(steps[0].ok)
        self.assertEqual(steps[0].detail, 'slot table locked')
        self.assertTrue(steps[2].ok)
        self.alpha.refresh_from_db()
        self.assertEqual(self.alpha.status, Venue.Status.REMOVED)

    def test_command(self):
        out = StringIO()
        call_command('retire_venues', 'alpha', 'beta', stdout=out)
        self.assertIn('Retired 2 venues.', out.getvalue())
        self.assertEqual(Venue.objects.filter(status=Venue.Status.REMOVED).count(), 2)

    def test_command_rejects_unknown_slug(self):
        with self.assertRaises(CommandError):
            call_command('retire_venues', 'alpha', 'ghost')
        self.alpha.refresh_from_db()
        self.assertEqual(self.alpha.status, Venue.Status.PUBLISHED)
