from collections import Counter
from datetime import datetime, timedelta, timezone

from django.test import TestCase, override_settings

from venues.models import HomepageSlot, Venue
from venues.rotation import (
    FixedClock,
    VenueFilters,
    VenueRanking,
    admin_ordering,
    resolve_capacity_bucket,
    rotation_epoch,
)

from .utils import make_venue

MOMENT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def ranking_at(moment, window_seconds=300):
    return VenueRanking(clock=FixedClock(moment), window_seconds=window_seconds)


class RotationEpochTests(TestCase):
    def test_epoch_is_floor_of_window(self):
        self.assertEqual(rotation_epoch(MOMENT, 300), int(MOMENT.timestamp()) // 300)

    def test_epoch_constant_inside_window(self):
        start = datetime.fromtimestamp(rotation_epoch(MOMENT) * 300, tz=timezone.utc)
        self.assertEqual(rotation_epoch(start), rotation_epoch(start + timedelta(seconds=299)))
        self.assertEqual(rotation_epoch(start + timedelta(seconds=300)), rotation_epoch(start) + 1)

    @override_settings(ROTATION_WINDOW_SECONDS=60)
    def test_window_comes_from_settings(self):
        self.assertEqual(VenueRanking(clock=FixedClock(MOMENT)).current_epoch(), int(MOMENT.timestamp()) // 60)


class PaginationStabilityTests(TestCase):
    def setUp(self):
        self.venues = [make_venue(f'Venue {idx:02d}') for idx in range(23)]

    def test_pages_within_one_epoch_partition_the_set(self):
        ranking = ranking_at(MOMENT)
        seen = []
        offset = 0
        while True:
            page = ranking.page(VenueFilters(), page_size=5, offset=offset)
            self.assertEqual(page.total_count, 23)
            seen.extend(venue.id for venue in page.items)
            offset += len(page.items)
            if not page.has_more:
                break
        self.assertEqual(len(seen), 23)
        self.assertEqual(set(seen), {venue.id for venue in self.venues})

    def test_same_epoch_gives_same_order(self):
        first = ranking_at(MOMENT).page(VenueFilters(), page_size=23)
        later = ranking_at(MOMENT + timedelta(seconds=10)).page(VenueFilters(), page_size=23)
        self.assertEqual([v.id for v in first.items], [v.id for v in later.items])

    def test_has_more_and_offset_past_end(self):
        ranking = ranking_at(MOMENT)
        last = ranking.page(VenueFilters(), page_size=10, offset=20)
        self.assertEqual(len(last.items), 3)
        self.assertFalse(last.has_more)
        beyond = ranking.page(VenueFilters(), page_size=10, offset=50)
        self.assertEqual(beyond.items, [])
        self.assertEqual(beyond.total_count, 23)
        self.assertFalse(beyond.has_more)


class RotationFairnessTests(TestCase):
    def test_unprioritised_venues_share_the_first_page(self):
        venues = [make_venue(f'Fair {idx}') for idx in range(4)]
        leaders = Counter()
        epochs = 400
        for step in range(epochs):
            page = ranking_at(MOMENT + timedelta(seconds=300 * step)).page(VenueFilters(), page_size=1)
            leaders[page.items[0].id] += 1
        self.assertEqual(set(leaders), {venue.id for venue in venues})
        for venue in venues:
            self.assertGreater(leaders[venue.id], epochs // 4 // 2)

    def test_order_changes_between_epochs(self):
        for idx in range(8):
            make_venue(f'Shuffle {idx}')
        orders = set()
        for step in range(10):
            page = ranking_at(MOMENT + timedelta(seconds=300 * step)).page(VenueFilters(), page_size=8)
            orders.add(tuple(venue.id for venue in page.items))
        self.assertGreater(len(orders), 1)


class TieringTests(TestCase):
    def test_slots_then_priority_then_rotation(self):
        plain = [make_venue(f'Plain {idx}') for idx in range(5)]
        high = make_venue('High', priority=1)
        low = make_venue('Low', priority=7)
        pinned_second = make_venue('Pinned second', priority=1)
        pinned_first = make_venue('Pinned first')
        HomepageSlot.objects.create(venue=pinned_first, position=1)
        HomepageSlot.objects.create(venue=pinned_second, position=2)

        for step in range(5):
            page = ranking_at(MOMENT + timedelta(seconds=300 * step)).page(VenueFilters(), page_size=20)
            ids = [venue.id for venue in page.items]
            self.assertEqual(ids[:4], [pinned_first.id, pinned_second.id, high.id, low.id])
            self.assertEqual(set(ids[4:]), {venue.id for venue in plain})


class FilterTests(TestCase):
    def setUp(self):
        self.loft = make_venue(
            'Industrial Loft',
            venue_type='loft',
            venue_types=['loft', 'gallery'],
            address='Holešovická 12, Praha 7',
            district='Praha 7',
            capacity_seated=40,
            capacity_standing=120,
            description='Raw concrete hall',
        )
        self.terrace = make_venue(
            'Sky Terrace',
            venue_type='terrace',
            venue_types=['terrace'],
            address='Na Příkopě 1, Praha 1',
            district='Praha 1',
            capacity_seated=20,
            capacity_standing=25,
        )
        self.palace = make_venue(
            'Palace Hall',
            venue_type='hall',
            venue_types=['hall', 'gallery'],
            address='Valdštejnská 3',
            district=None,
            capacity_seated=600,
            capacity_standing=900,
        )
        make_venue('Hidden Cellar', status=Venue.Status.HIDDEN)
        make_venue('Loft Annex', parent=self.loft)

    def names(self, **filters):
        page = ranking_at(MOMENT).page(VenueFilters(**filters), page_size=50)
        return sorted(venue.name for venue in page.items)

    def test_hidden_and_subvenues_excluded(self):
        self.assertEqual(self.names(), ['Industrial Loft', 'Palace Hall', 'Sky Terrace'])

    def test_free_text(self):
        self.assertEqual(self.names(q='concrete'), ['Industrial Loft'])
        self.assertEqual(self.names(q='sky'), ['Sky Terrace'])

    def test_category_matches_primary_or_tag(self):
        self.assertEqual(self.names(category='gallery'), ['Industrial Loft', 'Palace Hall'])
        self.assertEqual(self.names(category='terrace'), ['Sky Terrace'])
        self.assertEqual(len(self.names(category='all')), 3)

    def test_district_matches_field_or_address(self):
        self.assertEqual(self.names(district='Praha 7'), ['Industrial Loft'])
        self.assertEqual(self.names(district='Valdštejnská'), ['Palace Hall'])

    def test_capacity_bucket(self):
        self.assertEqual(self.names(capacity='120'), ['Industrial Loft'])
        self.assertEqual(self.names(capacity='under-30'), ['Sky Terrace'])
        self.assertEqual(self.names(capacity='více jak 480'), ['Palace Hall'])

    def test_unknown_capacity_token_is_ignored(self):
        self.assertEqual(len(self.names(capacity='huge')), 3)
        self.assertIsNone(resolve_capacity_bucket('huge'))

    def test_count_uses_filtered_predicate(self):
        page = ranking_at(MOMENT).page(VenueFilters(category='gallery'), page_size=1)
        self.assertEqual(page.total_count, 2)
        self.assertTrue(page.has_more)


class EmptyResultTests(TestCase):
    def test_empty_page(self):
        page = ranking_at(MOMENT).page(VenueFilters(q='nothing'), page_size=10)
        self.assertEqual(page.items, [])
        self.assertEqual(page.total_count, 0)
        self.assertFalse(page.has_more)


class AdminOrderingTests(TestCase):
    def test_admin_ordering_is_deterministic(self):
        beta = make_venue('Beta')
        alpha = make_venue('Alpha')
        ranked = make_venue('Ranked', priority=2)
        pinned = make_venue('Pinned')
        HomepageSlot.objects.create(venue=pinned, position=1)
        ordered = list(admin_ordering(Venue.objects.all()))
        self.assertEqual(ordered, [pinned, ranked, alpha, beta])
