"""Tests for windowed cursor pagination, including the offset overflow rewind."""

import unittest
from datetime import timedelta

import requests as rq

from fake_hubspot import (
    T0,
    FakeHubSpot,
    ScriptedSearchClient,
    make_meeting,
    make_meetings,
    make_remote,
    millis,
)
from meeting_sync.constants import LAST_MODIFIED_PROPERTY, MAX_OFFSET
from meeting_sync.errors import PaginationStalled, RetriesExhausted
from meeting_sync.filters import build_filter
from meeting_sync.models import SearchWindow
from meeting_sync.pager import CursorPager, get_next_after

NOW = T0 + timedelta(days=30)


def ids(records):
    return [record["id"] for record in records]


class FilterTests(unittest.TestCase):
    def test_inclusive_range_in_epoch_millis(self):
        date_filter = build_filter(T0, NOW, "hs_lastmodifieddate")

        self.assertEqual(
            date_filter,
            {
                "filters": [
                    {"propertyName": "hs_lastmodifieddate", "operator": "GTE", "value": str(millis(T0))},
                    {"propertyName": "hs_lastmodifieddate", "operator": "LTE", "value": str(millis(NOW))},
                ]
            },
        )

    def test_missing_start_matches_everything(self):
        self.assertEqual(build_filter(None, NOW), {})


class CursorPagerTests(unittest.TestCase):
    def make_pager(self, client, **options):
        return CursorPager(client, make_remote("123"), **options)

    def test_walks_pages_until_no_next_cursor(self):
        fake = FakeHubSpot(make_meetings(103))
        pager = self.make_pager(fake)

        pages = list(pager.pages(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 100))

        self.assertEqual([len(page) for page in pages], [100, 3])
        self.assertEqual(pager.pages_fetched, 2)
        self.assertNotIn("after", fake.search_calls[0])
        self.assertEqual(fake.search_calls[1]["after"], 100)

    def test_search_request_shape(self):
        fake = FakeHubSpot([])
        pager = self.make_pager(fake, properties=["hs_meeting_outcome"])

        list(pager.paginate(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 50))

        body = fake.search_calls[0]
        self.assertEqual(body["filterGroups"], [build_filter(T0, NOW, LAST_MODIFIED_PROPERTY)])
        self.assertEqual(body["sorts"], [{"propertyName": LAST_MODIFIED_PROPERTY, "direction": "ASCENDING"}])
        self.assertEqual(body["limit"], 50)
        for name in ("hs_meeting_title", "hs_meeting_start_time", "hs_meeting_end_time", "hs_meeting_outcome"):
            self.assertIn(name, body["properties"])

    def test_window_without_start_sends_no_filter(self):
        fake = FakeHubSpot(make_meetings(3))
        pager = self.make_pager(fake)

        records = list(pager.paginate(SearchWindow(None, NOW)))

        self.assertEqual(len(records), 3)
        self.assertEqual(fake.search_calls[0]["filterGroups"], [])

    def test_window_end_excludes_later_writes(self):
        meetings = make_meetings(5) + [make_meeting(99, NOW + timedelta(seconds=1))]
        pager = self.make_pager(FakeHubSpot(meetings))

        records = list(pager.paginate(SearchWindow(T0, NOW)))

        self.assertNotIn("99", ids(records))
        self.assertEqual(len(records), 5)

    def test_overflow_rewinds_to_last_record_and_loses_nothing(self):
        meetings = make_meetings(250)
        fake = FakeHubSpot(meetings, max_depth=150)
        pager = self.make_pager(fake, max_offset=100)

        records = list(pager.paginate(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 50))

        self.assertEqual(ids(records), ids(meetings))
        self.assertEqual(pager.rewinds, 2)
        # The inclusive lower bound brings the rewind record back once per rewind
        self.assertEqual(pager.duplicates_skipped, 2)

        rewind_call = fake.search_calls[2]
        self.assertNotIn("after", rewind_call)
        self.assertEqual(
            rewind_call["filterGroups"][0]["filters"][0]["value"],
            str(millis(T0 + timedelta(minutes=100))),
        )
        # The window end never moves
        for call in fake.search_calls:
            self.assertEqual(call["filterGroups"][0]["filters"][1]["value"], str(millis(NOW)))

    def test_overflow_at_the_real_offset_limit(self):
        meetings = make_meetings(MAX_OFFSET + 150, step=timedelta(seconds=1))
        fake = FakeHubSpot(meetings)
        pager = self.make_pager(fake)

        records = list(pager.paginate(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 100))

        self.assertEqual(len(records), len(meetings))
        self.assertEqual(len(set(ids(records))), len(meetings))
        self.assertEqual(pager.rewinds, 1)
        self.assertTrue(all(int(call.get("after", 0)) < MAX_OFFSET for call in fake.search_calls))

    def test_duplicates_are_delivered_when_deduplication_is_off(self):
        meetings = make_meetings(250)
        pager = self.make_pager(FakeHubSpot(meetings, max_depth=150), max_offset=100, deduplicate=False)

        records = list(pager.paginate(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 50))

        self.assertEqual(len(records), 252)
        self.assertEqual(set(ids(records)), set(ids(meetings)))

    def test_overflow_on_empty_page_ends_pagination(self):
        client = ScriptedSearchClient([{"results": [], "paging": {"next": {"after": str(MAX_OFFSET)}}}])
        pager = self.make_pager(client)

        self.assertEqual(list(pager.paginate(SearchWindow(T0, NOW))), [])
        self.assertEqual(len(client.search_calls), 1)

    def test_rewind_that_cannot_advance_raises(self):
        same_time = T0 + timedelta(hours=1)
        meetings = [make_meeting(i, same_time) for i in range(1, 151)]
        pager = self.make_pager(FakeHubSpot(meetings, max_depth=150), max_offset=100)

        with self.assertRaises(PaginationStalled):
            list(pager.paginate(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 50))

    def test_exhausted_page_fetch_aborts(self):
        fake = FakeHubSpot(make_meetings(150))
        fake.search_failures.extend([None] + [rq.exceptions.ConnectionError("down")] * 5)
        pager = CursorPager(fake, make_remote("123", max_attempts=5))

        pages = pager.pages(SearchWindow(T0, NOW), LAST_MODIFIED_PROPERTY, 100)
        self.assertEqual(len(next(pages)), 100)
        with self.assertRaises(RetriesExhausted):
            next(pages)
        self.assertEqual(len(fake.search_calls), 6)

    def test_next_after_parsing(self):
        self.assertEqual(get_next_after({"paging": {"next": {"after": "200"}}}), 200)
        self.assertIsNone(get_next_after({"results": []}))
        self.assertIsNone(get_next_after({"paging": {"next": None}}))


if __name__ == "__main__":
    unittest.main()
