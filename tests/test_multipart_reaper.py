"""Tests for reapers/multipart_reaper.py"""

from datetime import timedelta

import pytest

from fake_object_store import NOW
from reapers.multipart_reaper import MultipartUploadReaper
from utils.config_manager import CleanupPolicy
from utils.error_utils import CleanupError

PREFIX = "docker/registry/v2/repositories/repo1/"


def make_reaper(store, clock, dry_run=False, page_size=1000, hours=12):
    return MultipartUploadReaper(
        store, CleanupPolicy(stale_after_hours=hours), dry_run=dry_run, clock=clock, page_size=page_size
    )


class TestEligibility:
    """Tests for the age threshold"""

    def test_upload_older_than_threshold_is_aborted_once(self, store, clock):
        store.add_upload(PREFIX + "_uploads/a/data", "u1", NOW - timedelta(hours=13))

        removed = make_reaper(store, clock).reap(PREFIX)

        assert removed == 1
        assert store.aborted == [(PREFIX + "_uploads/a/data", "u1")]

    def test_uploads_at_or_below_threshold_are_left_alone(self, store, clock):
        store.add_upload(PREFIX + "a", "fresh", NOW - timedelta(hours=1))
        store.add_upload(PREFIX + "b", "boundary", NOW - timedelta(hours=12))
        # 12h59m truncates to 12 whole hours
        store.add_upload(PREFIX + "c", "almost", NOW - timedelta(hours=12, minutes=59))

        removed = make_reaper(store, clock).reap(PREFIX)

        assert removed == 0
        assert store.mutations() == []

    def test_threshold_comes_from_policy(self, store, clock):
        store.add_upload(PREFIX + "a", "u1", NOW - timedelta(hours=3))

        assert make_reaper(store, clock, hours=24).reap(PREFIX) == 0
        assert make_reaper(store, clock, hours=2).reap(PREFIX) == 1

    def test_only_stale_uploads_are_counted(self, store, clock):
        store.add_upload(PREFIX + "a", "old1", NOW - timedelta(hours=30))
        store.add_upload(PREFIX + "b", "new", NOW - timedelta(hours=2))
        store.add_upload(PREFIX + "c", "old2", NOW - timedelta(days=5))

        reaper = make_reaper(store, clock)
        removed = reaper.reap(PREFIX)

        assert removed == 2
        assert {upload_id for _, upload_id in store.aborted} == {"old1", "old2"}
        assert reaper.stats.examined == 3
        assert reaper.stats.stale == 2


class TestDryRun:
    """Tests for dry-run mode"""

    def test_dry_run_issues_no_aborts_and_counts_nothing(self, store, clock):
        store.add_upload(PREFIX + "a", "u1", NOW - timedelta(hours=48))
        store.add_upload(PREFIX + "b", "u2", NOW - timedelta(hours=13))

        reaper = make_reaper(store, clock, dry_run=True)
        removed = reaper.reap(PREFIX)

        assert removed == 0
        assert store.mutations() == []
        assert reaper.stats.would_remove == 2


class TestAbortFailures:
    """Tests for per-upload abort failures"""

    def test_failed_abort_is_skipped_and_not_counted(self, store, clock):
        for upload_id in ("u1", "u2", "u3"):
            store.add_upload(PREFIX + upload_id, upload_id, NOW - timedelta(hours=20))
        store.fail_abort.add("u2")

        reaper = make_reaper(store, clock)
        removed = reaper.reap(PREFIX)

        assert removed == 2
        assert [upload_id for _, upload_id in store.aborted] == ["u1", "u3"]
        assert reaper.stats.failed == 1

    def test_failed_abort_does_not_stop_pagination(self, store, clock):
        for i in range(5):
            store.add_upload(f"{PREFIX}k{i}", f"u{i}", NOW - timedelta(hours=20))
        store.fail_abort.add("u1")

        removed = make_reaper(store, clock, page_size=2).reap(PREFIX)

        assert removed == 4

    def test_listing_failure_raises(self, store, clock):
        store.fail_list_uploads.add(PREFIX)

        with pytest.raises(CleanupError) as exc_info:
            make_reaper(store, clock).reap(PREFIX)

        assert "failed to list multipart uploads" in str(exc_info.value)


class TestPagination:
    """Tests for (key marker, upload id marker) pagination"""

    @pytest.mark.parametrize("count", [0, 1, 3, 4, 9])
    def test_every_upload_visited_exactly_once(self, store, clock, count):
        page_size = 3
        for i in range(count):
            store.add_upload(f"{PREFIX}key{i:03d}", f"id{i:03d}", NOW - timedelta(hours=100))

        reaper = make_reaper(store, clock, page_size=page_size)
        removed = reaper.reap(PREFIX)

        assert removed == count
        assert reaper.stats.examined == count
        aborted_ids = [upload_id for _, upload_id in store.aborted]
        assert sorted(aborted_ids) == [f"id{i:03d}" for i in range(count)]
        assert len(set(aborted_ids)) == count

    def test_several_uploads_of_one_key_across_pages(self, store, clock):
        key = PREFIX + "_uploads/shared/data"
        for upload_id in ("a", "b", "c", "d", "e"):
            store.add_upload(key, upload_id, NOW - timedelta(hours=50))

        reaper = make_reaper(store, clock, dry_run=True, page_size=2)
        reaper.reap(PREFIX)

        assert reaper.stats.examined == 5
        list_calls = [c for c in store.calls if c[0] == "list_multipart_uploads"]
        assert [(c[2], c[3]) for c in list_calls] == [(None, None), (key, "b"), (key, "d")]

    def test_page_size_is_passed_to_listing(self, store, clock):
        make_reaper(store, clock, page_size=1000).reap(PREFIX)

        assert store.calls[0] == ("list_multipart_uploads", PREFIX, None, None, 1000)
