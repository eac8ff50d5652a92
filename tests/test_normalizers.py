# tests/test_normalizers.py

"""
Tests for field normalization.
"""

from datetime import date, datetime, timezone

from app.core.normalizers import (
    normalize_address,
    normalize_amount,
    normalize_date,
    normalize_datetime,
    normalize_job_code,
    normalize_relation_id,
    street_parts,
)


class TestNormalizeAddress:
    """Addresses compare equal across punctuation, street types and regions."""

    def test_street_type_and_punctuation(self):
        assert normalize_address("123 Main St.") == normalize_address("123 main street")

    def test_state_and_zip_variants(self):
        a = normalize_address("123 Main St., Springfield, IL 62704")
        b = normalize_address("123 Main Street Springfield IL 62704")
        assert a == b == "123 main springfield 62704"

    def test_empty(self):
        assert normalize_address(None) == ""
        assert normalize_address("") == ""

    def test_whole_words_only(self):
        """'st' inside a word is not a street type."""
        assert "stone" in normalize_address("9 Stone Rd")


class TestNormalizeJobCode:

    def test_ap_prefix_stripped(self):
        assert normalize_job_code("AP-00123") == "00123"
        assert normalize_job_code("ap00123") == "00123"

    def test_jobid_prefix_stripped(self):
        assert normalize_job_code("JOBID123") == "123"

    def test_plain_code_lowercased(self):
        assert normalize_job_code(" X-42 ") == "x-42"

    def test_empty(self):
        assert normalize_job_code(None) == ""


class TestStreetParts:

    def test_number_and_street(self):
        parts = street_parts("123 main springfield 62704")
        assert parts.number == "123"
        assert parts.street == "main springfield"

    def test_empty(self):
        assert street_parts("") == ("", "")


class TestNormalizeAmount:

    def test_currency_string(self):
        assert normalize_amount("$1,234.50") == 1234.50

    def test_numbers(self):
        assert normalize_amount(10) == 10.0
        assert normalize_amount(2.5) == 2.5

    def test_garbage_is_zero(self):
        assert normalize_amount("n/a") == 0.0
        assert normalize_amount(None) == 0.0


class TestNormalizeDate:

    def test_iso_with_z(self):
        assert normalize_date("2025-03-10T12:00:00Z") == date(2025, 3, 10)

    def test_us_format(self):
        assert normalize_date("03/10/2025") == date(2025, 3, 10)

    def test_datetime_becomes_date(self):
        assert normalize_date(datetime(2025, 3, 10, 8, 30)) == date(2025, 3, 10)

    def test_unparseable(self):
        assert normalize_date("not a date") is None
        assert normalize_date("") is None


class TestNormalizeDatetime:

    def test_keeps_time_of_day(self):
        assert normalize_datetime("2025-06-10T23:00:00Z") == datetime(2025, 6, 10, 23, tzinfo=timezone.utc)

    def test_naive_values_are_utc(self):
        assert normalize_datetime("2025-06-10 08:15:00").tzinfo == timezone.utc
        assert normalize_datetime(datetime(2025, 6, 10, 8)) == datetime(2025, 6, 10, 8, tzinfo=timezone.utc)

    def test_date_is_midnight(self):
        assert normalize_datetime(date(2025, 6, 10)) == datetime(2025, 6, 10, tzinfo=timezone.utc)

    def test_offset_preserved(self):
        value = normalize_datetime("2025-06-10T20:00:00-05:00")
        assert value == datetime(2025, 6, 11, 1, tzinfo=timezone.utc)

    def test_unparseable(self):
        assert normalize_datetime("soon") is None
        assert normalize_datetime(True) is None


class TestNormalizeRelationId:

    def test_expanded_object(self):
        assert normalize_relation_id({"id": 7, "name": "x"}) == "7"

    def test_raw_id(self):
        assert normalize_relation_id("c1") == "c1"

    def test_missing(self):
        assert normalize_relation_id(None) is None
        assert normalize_relation_id("") is None
