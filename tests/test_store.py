"""
Notification store tests.
Tests for history queries, read/archive state, snoozing and grouping.
"""

import threading
from datetime import datetime, timedelta

import pytest

from beacon.database.models import NotificationRecord, User
from beacon.database.store import HistoryFilter, StoreError

BASE = datetime(2024, 3, 1, 12, 0)


def make_record(record_id, user_id="alice", minutes=0, **kwargs) -> NotificationRecord:
    defaults = dict(
        title=f"BTC sentiment shift {record_id}",
        message="Sentiment moved",
        type="signal",
        priority="medium",
        asset_symbol="BTC",
        group_id=f"grp_{record_id}",
        sent_at=BASE + timedelta(minutes=minutes),
    )
    defaults.update(kwargs)
    return NotificationRecord(id=record_id, user_id=user_id, **defaults)


class TestCreate:
    """Test persisting records."""

    def test_create_and_get(self, store, alice):
        """Should persist every field."""
        store.create(make_record("n1", data={"ruleId": 3}))

        record = store.get("n1")

        assert record.title == "BTC sentiment shift n1"
        assert record.data == {"ruleId": 3}
        assert record.read is False
        assert record.sent_at == BASE

    def test_create_defaults_sent_at(self, store, alice):
        """Should stamp sent_at when missing."""
        record = store.create(make_record("n1", sent_at=None))
        assert record.sent_at is not None

    def test_get_scoped_to_owner(self, store, alice, user_repo):
        """Should not return another user's record."""
        user_repo.create(User(id="bob"))
        store.create(make_record("n1"))
        assert store.get("n1", user_id="bob") is None

    def test_failure_raises_store_error(self, store):
        """Should wrap database errors (unknown user violates the foreign key)."""
        with pytest.raises(StoreError):
            store.create(make_record("n1", user_id="nobody"))

    def test_duplicate_id_raises_store_error(self, store, alice):
        """Should refuse a second record with the same id."""
        store.create(make_record("n1"))
        with pytest.raises(StoreError):
            store.create(make_record("n1"))

    def test_concurrent_writers(self, store, alice):
        """Should keep every record under concurrent inserts."""
        def write(batch):
            for i in range(20):
                store.create(make_record(f"{batch}-{i}", minutes=i))

        threads = [threading.Thread(target=write, args=(b,)) for b in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        page = store.find_history("alice", limit=500, now=BASE)
        assert page.total == 100
        assert len({r.id for r in page.records}) == 100


class TestHistory:
    """Test history listing."""

    @pytest.fixture
    def populated(self, store, alice):
        store.create(make_record("old", minutes=0, type="price_alert", priority="high"))
        store.create(make_record("mid", minutes=10, asset_symbol="ETH"))
        store.create(make_record("new", minutes=20, priority="critical"))
        return store

    def test_newest_first(self, populated):
        """Should order by sent_at descending."""
        page = populated.find_history("alice", now=BASE)
        assert [r.id for r in page.records] == ["new", "mid", "old"]
        assert page.total == 3
        assert page.total_pages == 1

    def test_pagination(self, populated):
        """Should page results."""
        page = populated.find_history("alice", page=2, limit=2, now=BASE)
        assert [r.id for r in page.records] == ["old"]
        assert page.total_pages == 2

    def test_filters(self, populated):
        """Should filter by type, priority, asset and date range."""
        assert [r.id for r in populated.find_history("alice", HistoryFilter(type="price_alert"), now=BASE).records] == ["old"]
        assert [r.id for r in populated.find_history("alice", HistoryFilter(priority="critical"), now=BASE).records] == ["new"]
        assert [r.id for r in populated.find_history("alice", HistoryFilter(asset_symbol="eth"), now=BASE).records] == ["mid"]

        window = HistoryFilter(date_from=BASE + timedelta(minutes=5), date_to=BASE + timedelta(minutes=15))
        assert [r.id for r in populated.find_history("alice", window, now=BASE).records] == ["mid"]

    def test_unread_only(self, populated):
        """Should hide read records when asked."""
        populated.mark_read("alice", ["new"], now=BASE)
        page = populated.find_history("alice", HistoryFilter(unread_only=True), now=BASE)
        assert [r.id for r in page.records] == ["mid", "old"]


class TestReadState:
    """Test idempotent mutations."""

    def test_mark_read_twice(self, store, alice):
        """Should mark read once and report no change the second time."""
        store.create(make_record("n1"))
        first_time = BASE + timedelta(minutes=1)

        assert store.mark_read("alice", ["n1"], now=first_time) == 1
        assert store.mark_read("alice", ["n1"], now=BASE + timedelta(minutes=5)) == 0

        record = store.get("n1")
        assert record.read is True
        assert record.read_at == first_time

    def test_mark_read_ignores_other_users(self, store, alice, user_repo):
        """Should not touch records the caller does not own."""
        user_repo.create(User(id="bob"))
        store.create(make_record("n1"))
        assert store.mark_read("bob", ["n1"]) == 0
        assert store.get("n1").read is False

    def test_mark_all_read(self, store, alice):
        """Should mark every unread record."""
        store.create(make_record("n1"))
        store.create(make_record("n2"))

        assert store.mark_all_read("alice") == 2
        assert store.mark_all_read("alice") == 0
        assert store.unread_count("alice", now=BASE) == 0

    def test_archive_twice(self, store, alice):
        """Should archive once and hide the record from history."""
        store.create(make_record("n1"))

        assert store.archive("alice", ["n1"]) == 1
        assert store.archive("alice", ["n1"]) == 0
        assert store.find_history("alice", now=BASE).total == 0
        assert store.find_history("alice", HistoryFilter(include_archived=True), now=BASE).total == 1
        assert store.unread_count("alice", now=BASE) == 0

    def test_snooze_hides_until_expiry(self, store, alice):
        """Should hide a snoozed record until the snooze passes."""
        store.create(make_record("n1"))
        until = BASE + timedelta(minutes=30)

        assert store.snooze("alice", "n1", until) is True

        assert store.unread_count("alice", now=BASE + timedelta(minutes=10)) == 0
        assert store.find_history("alice", now=BASE + timedelta(minutes=10)).total == 0
        assert store.unread_count("alice", now=BASE + timedelta(minutes=31)) == 1

    def test_snooze_unknown_record(self, store, alice):
        """Should report unknown records."""
        assert store.snooze("alice", "missing", BASE) is False


class TestGroups:
    """Test grouped view."""

    def test_aggregates_by_group(self, store, alice):
        """Should count members and pick the latest record as representative."""
        store.create(make_record("a1", minutes=0, group_id="grp_a", priority="high"))
        store.create(make_record("a2", minutes=5, group_id="grp_a", priority="low"))
        store.create(make_record("b1", minutes=10, group_id="grp_b"))
        store.mark_read("alice", ["a1"], now=BASE)

        groups = store.find_groups("alice")

        assert [g.group_id for g in groups] == ["grp_b", "grp_a"]
        group_a = groups[1]
        assert group_a.count == 2
        assert group_a.unread_count == 1
        assert group_a.highest_priority == "high"
        assert group_a.latest_record.id == "a2"
        assert group_a.first_sent_at == BASE
        assert group_a.last_sent_at == BASE + timedelta(minutes=5)

    def test_excludes_archived(self, store, alice):
        """Should leave archived records out unless asked."""
        store.create(make_record("a1", minutes=0, group_id="grp_a"))
        store.create(make_record("a2", minutes=5, group_id="grp_a"))
        store.archive("alice", ["a2"])

        groups = store.find_groups("alice")
        assert groups[0].count == 1
        assert groups[0].latest_record.id == "a1"

        assert store.find_groups("alice", include_archived=True)[0].count == 2

    def test_tied_latest_timestamps(self, store, alice):
        """Should return one group when members share the latest timestamp."""
        store.create(make_record("a1", minutes=5, group_id="grp_a"))
        store.create(make_record("a2", minutes=5, group_id="grp_a"))

        groups = store.find_groups("alice")

        assert len(groups) == 1
        assert groups[0].count == 2
