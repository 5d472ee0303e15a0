import pytest
from pydantic import ValidationError

from x402pay.types import PaymentFilters


class TestPaymentFilters:
    def test_stored_format_is_unchanged(self):
        filters = PaymentFilters(since="2024-01-02T03:04:05.123456Z")
        assert filters.since == "2024-01-02T03:04:05.123456Z"

    def test_offset_is_converted_to_utc(self):
        filters = PaymentFilters(since="2024-01-02T05:00:00+02:00", until="2024-01-02T03:00:00+00:00")

        assert filters.since == "2024-01-02T03:00:00.000000Z"
        assert filters.until == "2024-01-02T03:00:00.000000Z"

    def test_naive_is_treated_as_utc(self):
        assert PaymentFilters(until="2024-01-02").until == "2024-01-02T00:00:00.000000Z"

    def test_unset_bounds(self):
        filters = PaymentFilters()
        assert filters.since is None
        assert filters.until is None

    def test_invalid_timestamp(self):
        with pytest.raises(ValidationError):
            PaymentFilters(since="yesterday")
