"""
Unit tests for recurrence-rule rendering.
"""

import pytest

from gcal_notion_sync.rrule import UNKNOWN_RECURRENCE
from gcal_notion_sync.rrule import format_days
from gcal_notion_sync.rrule import join_list
from gcal_notion_sync.rrule import parse_rrule


class TestFrequencies:
    @pytest.mark.parametrize(
        "rule, expected",
        [
            ("RRULE:FREQ=DAILY", "Daily"),
            ("RRULE:FREQ=DAILY;INTERVAL=3", "Every 3 days"),
            ("RRULE:FREQ=WEEKLY", "Weekly"),
            ("RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR", "Weekly on Monday, Wednesday, and Friday"),
            ("RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=TU,TH", "Every 2 weeks on Tuesday and Thursday"),
            ("RRULE:FREQ=MONTHLY;BYMONTHDAY=15", "Monthly on day 15"),
            ("RRULE:FREQ=MONTHLY;BYDAY=2MO", "Monthly on the second Monday"),
            ("RRULE:FREQ=MONTHLY;BYDAY=-1FR", "Monthly on the last Friday"),
            ("RRULE:FREQ=MONTHLY;INTERVAL=3", "Every 3 months"),
            ("RRULE:FREQ=YEARLY;BYMONTH=7;BYMONTHDAY=4", "Yearly on July 4"),
            ("RRULE:FREQ=YEARLY;BYMONTH=12", "Yearly in December"),
            ("RRULE:FREQ=YEARLY;INTERVAL=2", "Every 2 years"),
        ],
    )
    def test_renders(self, rule, expected):
        assert parse_rrule(rule) == expected

    def test_prefix_is_optional(self):
        """The RRULE: prefix may be absent."""
        assert parse_rrule("FREQ=DAILY;INTERVAL=2") == "Every 2 days"

    def test_until_and_count_are_ignored(self):
        assert parse_rrule("RRULE:FREQ=WEEKLY;COUNT=10;BYDAY=MO") == "Weekly on Monday"
        assert parse_rrule("RRULE:FREQ=DAILY;UNTIL=20261231T000000Z") == "Daily"


class TestUnrenderable:
    @pytest.mark.parametrize(
        "rule",
        [
            None,
            "",
            "RRULE:INTERVAL=2",
            "RRULE:FREQ=DAILY;INTERVAL=abc",
            "RRULE:FREQ=DAILY;INTERVAL=0",
            "RRULE:FREQ=HOURLY",
            "garbage",
        ],
    )
    def test_unknown(self, rule):
        """Anything that cannot be rendered yields the fallback phrase, never an error."""
        assert parse_rrule(rule) == UNKNOWN_RECURRENCE


class TestHelpers:
    def test_join_list(self):
        assert join_list(["A"]) == "A"
        assert join_list(["A", "B"]) == "A and B"
        assert join_list(["A", "B", "C"]) == "A, B, and C"

    def test_format_days_mixes_plain_and_positional(self):
        assert format_days("MO,1TU") == "Monday and the first Tuesday"
