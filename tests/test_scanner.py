"""Tests for scan orchestration and report helpers."""

import shutil
import tarfile
import time
from datetime import datetime

import pytest

from backupdu.cache import FileCacheStore, cache_key
from backupdu.models import (
    BackupRecord,
    BackupType,
    EntryKind,
    LayoutKind,
    ScanTarget,
    SizeMethod,
    SortKey,
    TypeFilter,
)
from backupdu.scanner import (
    ScanRootError,
    bucket_breakdown,
    discover_backup_roots,
    ensure_scan_root,
    filter_records,
    get_disk_usage,
    measure_one,
    run_scan,
    sanitize_scan_root,
    scan_backups,
    sort_records,
    type_breakdown,
)
from backupdu.sizing import CommandProbe, NativeProbe

from conftest import make_file

GIB = 1024**3
SLEEPER = ("sh", "-c", "sleep 10", "sh")


def _flat_tree(root):
    make_file(root / "daily" / "20240101" / "accounts" / "alice.tar.gz", 5 * GIB)
    make_file(root / "weekly" / "2024-01-01" / "accounts" / "bob.tar.gz", 2 * GIB)
    return root


class TestSanitizeScanRoot:
    def test_empty_uses_default(self):
        assert sanitize_scan_root(None) == "/backup"
        assert sanitize_scan_root("   ") == "/backup"
        assert sanitize_scan_root("", default="/newbackup") == "/newbackup"

    def test_parent_traversal_rejected(self):
        assert sanitize_scan_root("/backup/../etc") == "/backup"
        assert sanitize_scan_root("..") == "/backup"

    def test_relative_made_absolute(self):
        assert sanitize_scan_root("newbackup") == "/newbackup"

    def test_normalized(self):
        assert sanitize_scan_root("/backup/") == "/backup"
        assert sanitize_scan_root("//backup") == "/backup"
        assert sanitize_scan_root("/backup/./daily") == "/backup/daily"

    def test_system_directories_rejected(self):
        assert sanitize_scan_root("/") == "/backup"
        assert sanitize_scan_root("/etc") == "/backup"
        assert sanitize_scan_root("/proc/1") == "/backup"
        assert sanitize_scan_root("/sys/kernel") == "/backup"

    def test_ordinary_paths_kept(self):
        assert sanitize_scan_root("/backup2") == "/backup2"
        assert sanitize_scan_root("/var/backups") == "/var/backups"


class TestEnsureScanRoot:
    def test_existing(self, tmp_path):
        ensure_scan_root(str(tmp_path))

    def test_missing(self, tmp_path):
        with pytest.raises(ScanRootError, match="does not exist"):
            ensure_scan_root(str(tmp_path / "missing"))

    def test_file_is_not_a_root(self, tmp_path):
        with pytest.raises(ScanRootError):
            ensure_scan_root(str(make_file(tmp_path / "file")))


class TestDiscoverBackupRoots:
    def test_finds_numbered_variants(self, tmp_path):
        for name in ("backup", "backup2", "newbackup1"):
            (tmp_path / name).mkdir()
        make_file(tmp_path / "backup3")

        roots = discover_backup_roots(
            bases=(str(tmp_path / "backup"), str(tmp_path / "newbackup")), max_index=5
        )

        assert roots == [
            str(tmp_path / "backup"),
            str(tmp_path / "backup2"),
            str(tmp_path / "newbackup1"),
        ]

    def test_none(self, tmp_path):
        assert discover_backup_roots(bases=(str(tmp_path / "backup"),)) == []


class TestMeasureOne:
    def test_file_record(self, tmp_path, settings):
        path = make_file(tmp_path / "alice.tar.gz", 100)
        target = ScanTarget(
            backup_type=BackupType.WEEKLY, bucket_label="2024-01-01", scan_path=str(path), is_file=True
        )

        measured = measure_one(target, NativeProbe(), settings)

        record = measured.record
        assert record.size_bytes == 100
        assert record.size_method == SizeMethod.STAT
        assert record.entry_kind == EntryKind.FILE
        assert record.backup_type == BackupType.WEEKLY
        assert record.bucket_label == "2024-01-01"
        assert record.modified_at is not None
        assert record.unpacked_size_bytes is None
        assert not measured.du_timeout

    def test_past_deadline_skipped(self, tmp_path, settings):
        target = ScanTarget(bucket_label="x", scan_path=str(tmp_path))
        measured = measure_one(target, NativeProbe(), settings, deadline=time.monotonic() - 1)

        assert measured.skipped
        assert measured.record.size_bytes is None
        assert measured.record.size_method == SizeMethod.DU_TIMEOUT
        assert measured.record.entry_kind == EntryKind.DIR

    def test_file_measured_past_deadline(self, tmp_path, settings):
        path = make_file(tmp_path / "alice.tar.gz", 100)
        target = ScanTarget(bucket_label="x", scan_path=str(path), is_file=True)

        measured = measure_one(
            target, NativeProbe(), settings, unpacked=True, deadline=time.monotonic() - 1
        )

        assert not measured.skipped
        assert measured.record.size_bytes == 100
        assert measured.record.size_method == SizeMethod.STAT
        assert measured.record.unpacked_size_bytes is None

    def test_missing_path(self, tmp_path, settings):
        target = ScanTarget(bucket_label="x", scan_path=str(tmp_path / "gone.tar.gz"), is_file=True)
        measured = measure_one(target, NativeProbe(), settings)
        assert measured.record.size_bytes is None
        assert measured.record.modified_at is None


class TestRunScan:
    def test_flat_dated_scan(self, tmp_path, settings):
        _flat_tree(tmp_path)

        result = run_scan(str(tmp_path), settings=settings)

        assert result.layout == LayoutKind.FLAT_DATED
        assert len(result.records) == 2
        assert result.totals.overall_size == 7 * GIB
        assert result.totals.overall_count == 2
        assert {r.backup_type for r in result.records} == {BackupType.DAILY, BackupType.WEEKLY}
        assert not result.diagnostics.has_problems

    def test_archived_full_scan(self, tmp_path, settings):
        make_file(tmp_path / "full" / "manual" / "accounts" / "carol.zip", 1234)

        result = run_scan(str(tmp_path), settings=settings)

        assert result.layout == LayoutKind.ARCHIVED_FULL
        assert len(result.records) == 1
        record = result.records[0]
        assert record.backup_type == BackupType.MANUAL
        assert record.bucket_label == "manual"
        assert result.totals.per_type_bucket_sums == {"manual": {"manual": 1234}}

    def test_directory_targets_use_probe(self, tmp_path, settings):
        make_file(tmp_path / "20240101" / "accounts" / "alice" / "home.tar", 300)
        make_file(tmp_path / "20240101" / "accounts" / "alice" / "mail.tar", 200)

        result = run_scan(str(tmp_path), settings=settings)

        assert result.records[0].size_bytes == 500
        assert result.records[0].size_method == SizeMethod.DU
        assert result.records[0].entry_kind == EntryKind.DIR

    @pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available")
    def test_hung_size_command(self, tmp_path, settings):
        make_file(tmp_path / "dump.sql")
        settings = settings.model_copy(update={"du_timeout": 0.5, "kill_grace": 0.2})
        probe = CommandProbe(
            low_priority=False, kill_grace=0.2, bytes_command=SLEEPER, kilobytes_command=SLEEPER
        )

        start = time.monotonic()
        result = run_scan(str(tmp_path), settings=settings, probe=probe)
        elapsed = time.monotonic() - start

        assert result.layout == LayoutKind.UNKNOWN
        assert len(result.records) == 1
        assert result.records[0].size_bytes is None
        assert result.records[0].size_method == SizeMethod.DU_TIMEOUT
        assert result.diagnostics.du_timeouts == 1
        assert result.diagnostics.unknown_size_count == 1
        assert result.totals.overall_count == 0
        assert elapsed < 0.5 + 0.2 + 1.5

    def test_scan_deadline(self, tmp_path, settings):
        make_file(tmp_path / "20240101" / "accounts" / "alice" / "home.tar", 10)
        make_file(tmp_path / "20240101" / "accounts" / "bob" / "home.tar", 20)
        make_file(tmp_path / "20240101" / "accounts" / "carol.tar.gz", 30)
        settings = settings.model_copy(update={"scan_deadline": 1e-9})

        result = run_scan(str(tmp_path), settings=settings)

        assert result.diagnostics.deadline_skips == 2
        assert result.diagnostics.unknown_size_count == 2
        sizes = {r.name: r.size_bytes for r in result.records}
        assert sizes == {"alice": None, "bob": None, "carol.tar.gz": 30}

    def test_parallel_workers_keep_order(self, tmp_path, settings):
        for day in ("20240101", "20240102", "20240103"):
            for user in ("alice", "bob"):
                make_file(tmp_path / day / "accounts" / user / "home.tar", 10)
        sequential = run_scan(str(tmp_path), settings=settings)
        parallel = run_scan(str(tmp_path), settings=settings.model_copy(update={"workers": 4}))

        assert [r.path for r in parallel.records] == [r.path for r in sequential.records]
        assert parallel.totals.model_dump() == sequential.totals.model_dump()

    def test_progress_callback(self, tmp_path, settings):
        _flat_tree(tmp_path)
        calls = []

        run_scan(str(tmp_path), settings=settings, progress_callback=lambda *a: calls.append(a))

        assert [(c[1], c[2]) for c in calls] == [(1, 2), (2, 2)]

    @pytest.mark.skipif(shutil.which("tar") is None, reason="tar not available")
    def test_unpacked_sizes(self, tmp_path, settings):
        payload = make_file(tmp_path / "payload.bin", 8192)
        archive = tmp_path / "root" / "20240101" / "accounts" / "alice.tar.gz"
        archive.parent.mkdir(parents=True)
        with tarfile.open(archive, "w:gz") as tf:
            tf.add(payload, arcname="payload.bin")

        packed = run_scan(str(tmp_path / "root"), settings=settings)
        unpacked = run_scan(str(tmp_path / "root"), unpacked=True, settings=settings)

        assert packed.records[0].unpacked_size_bytes is None
        assert unpacked.unpacked
        assert unpacked.records[0].unpacked_size_bytes == 8192
        assert unpacked.records[0].size_bytes < 8192


class TestScanBackups:
    def test_result_is_cached(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")

        first = scan_backups(str(root), settings=settings)
        make_file(root / "daily" / "20240101" / "accounts" / "new.tar.gz", 10)
        second = scan_backups(str(root), settings=settings)

        assert second.model_dump() == first.model_dump()
        assert len(second.records) == 2

    def test_force_refresh(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")

        scan_backups(str(root), settings=settings)
        make_file(root / "daily" / "20240101" / "accounts" / "new.tar.gz", 10)
        refreshed = scan_backups(str(root), force_refresh=True, settings=settings)

        assert len(refreshed.records) == 3
        assert refreshed.totals.overall_size == 7 * GIB + 10

    def test_unpacked_cached_separately(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")
        assert not scan_backups(str(root), settings=settings).unpacked
        assert scan_backups(str(root), unpacked=True, settings=settings).unpacked

    def test_missing_root(self, tmp_path, settings):
        with pytest.raises(ScanRootError):
            scan_backups(str(tmp_path / "missing"), settings=settings)

    def test_lock_held_elsewhere(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")
        store = FileCacheStore(settings.cache_dir)

        with store.lock(cache_key(str(root))):
            result = scan_backups(str(root), settings=settings, store=store)

        assert result is None

    def test_unusable_cache_directory(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        settings = settings.model_copy(update={"cache_dir": blocker / "cache"})

        result = scan_backups(str(root), settings=settings)

        assert result is not None
        assert result.totals.overall_size == 7 * GIB

    def test_sweeps_stale_files(self, tmp_path, settings):
        root = _flat_tree(tmp_path / "backup")
        store = FileCacheStore(settings.cache_dir)
        store.put("old", "x")
        settings = settings.model_copy(update={"cache_retention": 0})
        time.sleep(0.05)

        scan_backups(str(root), settings=settings, store=store)

        assert store.get("old") is None


def _record(size, modified=None, backup_type=BackupType.DAILY, bucket="b", path="/backup/x"):
    return BackupRecord(
        size_bytes=size,
        size_method=SizeMethod.STAT if size is not None else SizeMethod.DU_TIMEOUT,
        path=path,
        modified_at=modified,
        bucket_label=bucket,
        backup_type=backup_type,
        entry_kind=EntryKind.FILE,
    )


class TestSortRecords:
    def setup_method(self):
        self.small = _record(1, datetime(2024, 1, 3), path="/small")
        self.big = _record(100, datetime(2024, 1, 1), path="/big")
        self.unknown = _record(None, None, path="/unknown")
        self.records = [self.unknown, self.small, self.big]

    def test_size_desc(self):
        assert sort_records(self.records, SortKey.SIZE_DESC) == [self.big, self.small, self.unknown]

    def test_size_asc_unknown_still_last(self):
        assert sort_records(self.records, SortKey.SIZE_ASC) == [self.small, self.big, self.unknown]

    def test_date_desc(self):
        assert sort_records(self.records, "date_desc") == [self.small, self.big, self.unknown]

    def test_date_asc(self):
        assert sort_records(self.records, SortKey.DATE_ASC) == [self.big, self.small, self.unknown]

    def test_does_not_mutate(self):
        sort_records(self.records, SortKey.SIZE_DESC)
        assert self.records[0] is self.unknown


class TestFilterRecords:
    def test_all(self):
        records = [_record(1), _record(2, backup_type=BackupType.WEEKLY)]
        assert filter_records(records, TypeFilter.ALL) == records

    def test_one_type(self):
        weekly = _record(2, backup_type=BackupType.WEEKLY)
        assert filter_records([_record(1), weekly], "weekly") == [weekly]


class TestBreakdowns:
    def test_type_and_bucket(self, tmp_path, settings):
        make_file(tmp_path / "daily" / "20240101" / "accounts" / "a.tar.gz", 10)
        make_file(tmp_path / "daily" / "20240102" / "accounts" / "b.tar.gz", 30)
        make_file(tmp_path / "weekly" / "2024-01-01" / "accounts" / "c.tar.gz", 5)

        result = run_scan(str(tmp_path), settings=settings)

        assert type_breakdown(result) == {"daily": 40, "weekly": 5}
        assert bucket_breakdown(result, BackupType.DAILY) == [("20240102", 30), ("20240101", 10)]
        assert bucket_breakdown(result, "monthly") == []


class TestGetDiskUsage:
    def test_reads_filesystem(self, tmp_path):
        usage = get_disk_usage(str(tmp_path))
        assert usage.total_bytes > 0
        assert usage.used_bytes + usage.free_bytes <= usage.total_bytes
        assert usage.mount_point == str(tmp_path)
