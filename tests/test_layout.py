"""Tests for layout detection."""

from backupdu.layout import (
    date_dir_parents,
    dated_children,
    detect_layout,
    is_date_name,
    is_mostly_dated,
)
from backupdu.models import LayoutKind

from conftest import make_file


class TestIsDateName:
    def test_compact(self):
        assert is_date_name("20240101")

    def test_dashed(self):
        assert is_date_name("2024-01-01")

    def test_not_dates(self):
        assert not is_date_name("alice")
        assert not is_date_name("2024-1-1")
        assert not is_date_name("202401011")
        assert not is_date_name("2024_01_01")


class TestIsMostlyDated:
    def test_all_dates(self):
        assert is_mostly_dated(["20240101", "20240102"])

    def test_all_users(self):
        assert not is_mostly_dated(["alice", "bob"])

    def test_majority_dates(self):
        assert is_mostly_dated(["20240101", "20240102", "tmp"])

    def test_majority_users(self):
        assert not is_mostly_dated(["alice", "bob", "20240101"])

    def test_tie_goes_to_dates(self):
        assert is_mostly_dated(["20240101", "alice"])

    def test_empty(self):
        assert not is_mostly_dated([])

    def test_accepts_generator(self):
        assert is_mostly_dated(n for n in ["2024-01-01"])


class TestHelpers:
    def test_dated_children_sorted(self, tmp_path):
        for name in ("20240102", "20240101", "notes", "2024-02-01"):
            (tmp_path / name).mkdir()
        make_file(tmp_path / "20240103")
        assert dated_children(str(tmp_path)) == ["2024-02-01", "20240101", "20240102"]

    def test_dated_children_missing_dir(self, tmp_path):
        assert dated_children(str(tmp_path / "nope")) == []

    def test_date_dir_parents(self, tmp_path):
        (tmp_path / "weekly").mkdir()
        root = str(tmp_path)
        assert date_dir_parents(root) == [root, str(tmp_path / "weekly")]


class TestDetectLayout:
    def test_missing_root(self, tmp_path):
        assert detect_layout(str(tmp_path / "missing")) == LayoutKind.UNKNOWN

    def test_empty_root(self, tmp_path):
        assert detect_layout(str(tmp_path)) == LayoutKind.UNKNOWN

    def test_archived_full(self, tmp_path):
        make_file(tmp_path / "full" / "manual" / "accounts" / "carol.zip")
        assert detect_layout(str(tmp_path)) == LayoutKind.ARCHIVED_FULL

    def test_archived_full_wins_over_dates(self, tmp_path):
        (tmp_path / "full").mkdir()
        (tmp_path / "20240101" / "accounts").mkdir(parents=True)
        assert detect_layout(str(tmp_path)) == LayoutKind.ARCHIVED_FULL

    def test_flat_dated_at_root(self, tmp_path):
        (tmp_path / "2024-01-01" / "system").mkdir(parents=True)
        assert detect_layout(str(tmp_path)) == LayoutKind.FLAT_DATED

    def test_flat_dated_under_cadence_dirs(self, tmp_path):
        make_file(tmp_path / "daily" / "20240101" / "accounts" / "alice.tar.gz")
        make_file(tmp_path / "weekly" / "2024-01-01" / "accounts" / "bob.tar.gz")
        assert detect_layout(str(tmp_path)) == LayoutKind.FLAT_DATED

    def test_bucketed_by_cadence_dirs(self, tmp_path):
        (tmp_path / "daily" / "alice").mkdir(parents=True)
        (tmp_path / "monthly" / "2024-01-01").mkdir(parents=True)
        assert detect_layout(str(tmp_path)) == LayoutKind.BUCKETED_DATED

    def test_bucketed_by_bare_dates(self, tmp_path):
        (tmp_path / "20240101").mkdir()
        assert detect_layout(str(tmp_path)) == LayoutKind.BUCKETED_DATED

    def test_unrelated_tree(self, tmp_path):
        (tmp_path / "home").mkdir()
        make_file(tmp_path / "dump.sql")
        assert detect_layout(str(tmp_path)) == LayoutKind.UNKNOWN
