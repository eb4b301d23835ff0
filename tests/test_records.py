"""Tests for normalization of raw store rows."""

from zoneinfo import ZoneInfo

import pytest

from studio_booking.models.booking import RecordingPurpose
from studio_booking.store_providers.records import (
    normalize_date,
    normalize_record,
    normalize_records,
    normalize_time,
)


def raw_row(**overrides):
    row = {
        "id": "1704880800000-abc123xyz",
        "studio": "studio-1",
        "date": "2024-01-10",
        "startTime": "10:00",
        "endTime": "11:00",
        "userName": "Jane Doe",
        "purpose": "Planner",
        "subject": "Physics",
    }
    row.update(overrides)
    return row


class TestNormalizeDate:
    def test_canonical_passthrough(self):
        assert normalize_date("2024-01-10") == "2024-01-10"

    def test_utc_timestamp_without_zone(self):
        assert normalize_date("2024-01-10T00:00:00.000Z") == "2024-01-10"

    def test_timestamp_converted_to_calendar_zone(self):
        # Midnight in Kolkata serialized as the previous day in UTC
        assert normalize_date("2024-01-09T18:30:00.000Z", ZoneInfo("Asia/Kolkata")) == "2024-01-10"

    @pytest.mark.parametrize("value", ["", None, "yesterday", "2024-13-01"])
    def test_unparseable(self, value):
        assert normalize_date(value) is None


class TestNormalizeTime:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("10:00", "10:00"),
            ("9:30", "09:30"),
            ("09:30:00", "09:30"),
            ("1899-12-30T14:00:00.000Z", "14:00"),
        ],
    )
    def test_variants(self, value, expected):
        assert normalize_time(value) == expected

    @pytest.mark.parametrize("value", ["", None, "noon", "25:00"])
    def test_unparseable(self, value):
        assert normalize_time(value) is None


class TestNormalizeRecord:
    def test_full_row(self):
        booking = normalize_record(raw_row())
        assert booking.id == "1704880800000-abc123xyz"
        assert booking.studio == "studio-1"
        assert booking.start_time == "10:00"
        assert booking.end_time == "11:00"
        assert booking.user_name == "Jane Doe"
        assert booking.purpose is RecordingPurpose.PLANNER

    def test_numeric_id_and_timestamp_date(self):
        booking = normalize_record(raw_row(id=1704880800000, date="2024-01-10T00:00:00.000Z"))
        assert booking.id == "1704880800000"
        assert booking.date == "2024-01-10"

    def test_missing_purpose_defaults_to_youtube(self):
        booking = normalize_record(raw_row(purpose=""))
        assert booking.purpose is RecordingPurpose.YOUTUBE

    def test_renamed_and_reordered_headers(self):
        raw = {
            "Subject": "Maths",
            "End Time": "12:00",
            "start_time": "11:00",
            "ID": "x1",
            "Studio": "studio-2",
            "DATE": "2024-01-11",
            "user name": "Sam",
            "Purpose": "Live",
        }
        booking = normalize_record(raw)
        assert booking is not None
        assert booking.id == "x1"
        assert booking.start_time == "11:00"
        assert booking.end_time == "12:00"
        assert booking.user_name == "Sam"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"id": ""},
            {"studio": None},
            {"date": "not a date"},
            {"startTime": ""},
            {"endTime": "10:00"},
            {"purpose": "Podcast"},
        ],
    )
    def test_unusable_rows_dropped(self, overrides):
        assert normalize_record(raw_row(**overrides)) is None

    def test_non_dict_dropped(self):
        assert normalize_record(["1", "studio-1"]) is None


class TestNormalizeRecords:
    def test_drops_bad_rows_and_duplicate_ids(self, caplog):
        rows = [raw_row(), raw_row(), raw_row(id="2", endTime=""), raw_row(id="3")]
        bookings = normalize_records(rows)
        assert [b.id for b in bookings] == ["1704880800000-abc123xyz", "3"]
        assert "Dropped 2 malformed" in caplog.text

    def test_non_list_payload(self):
        assert normalize_records({"rows": []}) == []
