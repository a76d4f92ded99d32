from datetime import datetime, timedelta, timezone

import pytest

from phrames.services.plans import PAID_PLANS, expiry_for, is_paid_plan, plan_price, PRICING_PLANS
from phrames.utils.batching import chunked, items_per_commit
from phrames.utils.timeutil import add_days, isoformat, to_utc

UTC = timezone.utc


class TestToUtc:
    def test_empty_values(self):
        assert to_utc(None) is None
        assert to_utc("") is None

    def test_naive_datetime_is_taken_as_utc(self):
        assert to_utc(datetime(2026, 3, 1, 12, 0)) == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def test_aware_datetime_is_converted(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        result = to_utc(datetime(2026, 3, 1, 17, 30, tzinfo=ist))
        assert result == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        assert result.tzinfo == UTC

    def test_timestamp_objects(self):
        expected = datetime.fromtimestamp(1700000000.5, tz=UTC)
        assert to_utc({"_seconds": 1700000000, "_nanoseconds": 500_000_000}) == expected
        assert to_utc({"seconds": 1700000000, "nanoseconds": 500_000_000}) == expected

    def test_iso_strings(self):
        assert to_utc("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, tzinfo=UTC)
        assert to_utc("2026-03-01T17:30:00+05:30") == datetime(2026, 3, 1, 12, tzinfo=UTC)

    def test_epoch_milliseconds(self):
        assert to_utc(1_700_000_000_000) == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    @pytest.mark.parametrize("value", [
        "not a date", True, object(), {"minutes": 3},
        10**30, 10**400, {"seconds": 10**20}, {"seconds": "soon"},
    ])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            to_utc(value)

    def test_isoformat(self):
        assert isoformat(None) is None
        assert isoformat(datetime(2026, 3, 1, 12)) == "2026-03-01T12:00:00+00:00"


def test_add_days_is_exact():
    start = datetime(2026, 3, 1, 12, tzinfo=UTC)
    assert add_days(start, 7) - start == timedelta(seconds=7 * 86400)


def test_add_days_out_of_range():
    with pytest.raises(ValueError):
        add_days(datetime(9999, 12, 1, tzinfo=UTC), 60)


class TestPlans:
    def test_prices(self):
        assert plan_price("week") == 49
        assert plan_price("month") == 99
        assert plan_price("3month") == 249
        assert plan_price("6month") == 499
        assert plan_price("year") == 899

    def test_free_is_known_but_not_paid(self):
        assert "free" in PRICING_PLANS
        assert not is_paid_plan("free")
        assert "free" not in PAID_PLANS
        assert "lifetime" not in PRICING_PLANS

    def test_expiry_for(self):
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert expiry_for("week", now) == now + timedelta(days=7)
        assert expiry_for("year", now) == now + timedelta(days=365)


class TestBatching:
    def test_chunked(self):
        assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]
        assert list(chunked([], 3)) == []

    def test_chunked_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))

    def test_items_per_commit_respects_batch_limit(self):
        assert items_per_commit(250, 2, 500) == 250
        assert items_per_commit(400, 2, 500) == 250
        assert items_per_commit(1000, 3, 500) == 166
        assert items_per_commit(10, 1000, 500) == 1
