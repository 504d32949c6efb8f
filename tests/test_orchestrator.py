"""Tests for reapers/orchestrator.py"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from fake_object_store import NOW
from reapers.multipart_reaper import MultipartUploadReaper
from reapers.orchestrator import RegistryUploadCleaner, next_listing_marker
from reapers.upload_folder_reaper import UploadFolderReaper
from utils.config_manager import DEFAULT_REPOSITORIES_PREFIX, CleanupPolicy
from utils.error_utils import CleanupError
from utils.s3_client import PrefixListing

ROOT = DEFAULT_REPOSITORIES_PREFIX


def make_cleaner(store, clock, dry_run=False, page_size=100):
    policy = CleanupPolicy(stale_after_hours=12)
    return RegistryUploadCleaner(
        store,
        MultipartUploadReaper(store, policy, dry_run=dry_run, clock=clock),
        UploadFolderReaper(store, policy, dry_run=dry_run, clock=clock),
        repositories_prefix=ROOT,
        page_size=page_size,
    )


def seed_repository(store, name):
    store.put(f"{ROOT}{name}/_manifests/tags/latest/current/link")


class TestNextListingMarker:
    """Tests for next_listing_marker"""

    def test_prefers_server_marker(self):
        page = PrefixListing(prefix=ROOT, common_prefixes=[ROOT + "b/"], keys=[ROOT + "a"], next_marker="zzz")
        assert next_listing_marker(page) == "zzz"

    def test_last_common_prefix(self):
        page = PrefixListing(prefix=ROOT, common_prefixes=[ROOT + "a/", ROOT + "b/"])
        assert next_listing_marker(page) == ROOT + "b/"

    def test_last_key(self):
        page = PrefixListing(prefix=ROOT, keys=[ROOT + "a", ROOT + "c"], common_prefixes=[ROOT + "b/"])
        assert next_listing_marker(page) == ROOT + "c"

    def test_empty_page(self):
        assert next_listing_marker(PrefixListing(prefix=ROOT)) is None


class TestRun:
    """Tests for RegistryUploadCleaner.run"""

    @pytest.mark.parametrize("count", [0, 1, 3, 4, 9])
    def test_every_repository_visited_once(self, store, clock, count):
        for i in range(count):
            seed_repository(store, f"repo{i:02d}")

        cleaner = make_cleaner(store, clock, page_size=3)
        cleaner.run()

        visited = [c[1] for c in store.calls if c[0] == "list_multipart_uploads"]
        assert visited == [f"{ROOT}repo{i:02d}/" for i in range(count)]
        assert cleaner.repositories_scanned == count

    def test_server_marker_is_followed(self, store, clock):
        store.report_next_marker = True
        for i in range(5):
            seed_repository(store, f"repo{i}")

        make_cleaner(store, clock, page_size=2).run()

        visited = [c[1] for c in store.calls if c[0] == "list_multipart_uploads"]
        assert len(visited) == 5
        assert len(set(visited)) == 5

    def test_listing_parameters(self, store, clock):
        make_cleaner(store, clock).run()

        assert store.calls[0] == ("list_common_prefixes", ROOT, None, 100)

    def test_accumulates_removed_multipart_uploads(self, store, clock):
        for name in ("alpha", "beta"):
            seed_repository(store, name)
        store.add_upload(f"{ROOT}alpha/_uploads/x/data", "a1", NOW - timedelta(hours=13))
        store.add_upload(f"{ROOT}alpha/_uploads/y/data", "a2", NOW - timedelta(hours=2))
        store.add_upload(f"{ROOT}beta/_uploads/z/data", "b1", NOW - timedelta(hours=40))

        assert make_cleaner(store, clock).run() == 2
        assert sorted(upload_id for _, upload_id in store.aborted) == ["a1", "b1"]

    def test_cleans_upload_folders_under_root(self, store, clock):
        seed_repository(store, "alpha")
        store.put(f"{ROOT}alpha/_uploads/s1/startedat", b"2024-01-01T00:00:00Z")
        store.put(f"{ROOT}alpha/_uploads/s1/data")

        make_cleaner(store, clock).run()

        assert sorted(store.deleted) == [f"{ROOT}alpha/_uploads/s1/data", f"{ROOT}alpha/_uploads/s1/startedat"]

    def test_folder_reaper_runs_once_per_page_with_root_prefix(self, store, clock):
        for i in range(5):
            seed_repository(store, f"repo{i}")
        folder_reaper = MagicMock()
        cleaner = RegistryUploadCleaner(
            store,
            MultipartUploadReaper(store, CleanupPolicy(), clock=clock),
            folder_reaper,
            repositories_prefix=ROOT,
            page_size=2,
        )

        cleaner.run()

        assert folder_reaper.reap.call_count == 3
        for call in folder_reaper.reap.call_args_list:
            assert call.args == (ROOT,)

    def test_folder_counters_not_repeated_across_pages(self, store, clock):
        for i in range(5):
            seed_repository(store, f"repo{i}")
        store.put(f"{ROOT}repo0/_uploads/s1/startedat", b"2024-01-01T00:00:00Z")
        store.put(f"{ROOT}repo1/_uploads/s2/startedat", b"garbage")
        store.put(f"{ROOT}repo2/_uploads/s3/startedat", b"2024-01-02T23:00:00Z")
        cleaner = make_cleaner(store, clock, dry_run=True, page_size=2)

        cleaner.run()

        stats = cleaner.folder_reaper.stats
        assert (stats.markers, stats.would_remove, stats.unreadable, stats.skipped) == (3, 1, 1, 1)
        assert len([c for c in store.calls if c[0] == "get_object"]) == 3

    def test_dry_run_mutates_nothing(self, store, clock):
        seed_repository(store, "alpha")
        store.add_upload(f"{ROOT}alpha/_uploads/x/data", "a1", NOW - timedelta(hours=13))
        store.put(f"{ROOT}alpha/_uploads/s1/startedat", b"2024-01-01T00:00:00Z")

        assert make_cleaner(store, clock, dry_run=True).run() == 0
        assert store.mutations() == []


class TestRunFailures:
    """Run-level failures"""

    def test_multipart_listing_failure_names_the_prefix(self, store, clock):
        for name in ("alpha", "beta"):
            seed_repository(store, name)
        store.fail_list_uploads.add(f"{ROOT}alpha/")

        with pytest.raises(CleanupError) as exc_info:
            make_cleaner(store, clock).run()

        assert f"failed to remove multipart uploads for prefix {ROOT}alpha/" in str(exc_info.value)
        visited = [c[1] for c in store.calls if c[0] == "list_multipart_uploads"]
        assert visited == [f"{ROOT}alpha/"]

    def test_folder_deletion_failure_stops_the_run(self, store, clock):
        seed_repository(store, "alpha")
        store.put(f"{ROOT}alpha/_uploads/s1/startedat", b"2024-01-01T00:00:00Z")
        store.fail_delete.add(f"{ROOT}alpha/_uploads/s1/startedat")

        with pytest.raises(CleanupError) as exc_info:
            make_cleaner(store, clock).run()

        assert f"failed to clean upload folders for prefix {ROOT}" in str(exc_info.value)

    def test_root_listing_failure(self, store, clock):
        store.fail_list_prefixes = True

        with pytest.raises(CleanupError) as exc_info:
            make_cleaner(store, clock).run()

        assert str(exc_info.value).startswith("failed to list objects")

    def test_truncated_empty_page_stops(self, clock):
        client = MagicMock()
        client.list_common_prefixes.return_value = PrefixListing(prefix=ROOT, is_truncated=True)
        multipart_reaper = MagicMock()
        folder_reaper = MagicMock()

        total = RegistryUploadCleaner(client, multipart_reaper, folder_reaper, repositories_prefix=ROOT).run()

        assert total == 0
        assert client.list_common_prefixes.call_count == 1
        multipart_reaper.reap.assert_not_called()
