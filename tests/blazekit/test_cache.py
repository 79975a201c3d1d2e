"""Tests for the in-memory and file-backed cache stores."""

import json
import os
import stat

import pytest
from filelock import FileLock

from BlazeKit.cache import FileCache, MemoryCache
from BlazeKit.errors import CacheError


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemoryCache:
    def test_value_expires_after_ttl(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        cache.set("k", {"a": 1}, 60)

        clock.now += 59
        assert cache.get("k") == {"a": 1}
        clock.now += 1
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_forget_removes_entry(self):
        cache = MemoryCache()
        cache.set("k", "v", 60)
        cache.forget("k")
        cache.forget("k")
        assert cache.get("k") is None


class TestFileCache:
    def test_round_trip_and_expiry(self, tmp_path):
        clock = FakeClock()
        cache = FileCache(tmp_path / "cache", clock=clock)
        cache.set("blazekit:authorization:key", {"token": "t"}, 60)

        assert cache.get("blazekit:authorization:key") == {"token": "t"}
        clock.now += 61
        assert cache.get("blazekit:authorization:key") is None
        assert list((tmp_path / "cache").glob("*.json")) == []

    def test_entries_written_private(self, tmp_path):
        cache = FileCache(tmp_path)
        cache.set("k", [1, 2], 60)
        (entry,) = list(tmp_path.glob("*.json"))
        assert stat.S_IMODE(entry.stat().st_mode) == 0o600
        assert json.loads(entry.read_text())["value"] == [1, 2]

    def test_corrupt_entry_is_discarded(self, tmp_path, caplog):
        cache = FileCache(tmp_path)
        cache.set("k", "v", 60)
        (entry,) = list(tmp_path.glob("*.json"))
        entry.write_text("{not json")

        with caplog.at_level("WARNING", logger="BlazeKit.cache"):
            assert cache.get("k") is None
        assert not entry.exists()
        assert "Discarding unreadable cache entry" in caplog.text

    def test_held_lock_surfaces_cache_error(self, tmp_path):
        cache = FileCache(tmp_path, lock_timeout=0.05)
        cache.set("k", "v", 60)
        (entry,) = list(tmp_path.glob("*.json"))

        with FileLock(str(entry.with_suffix(".lock"))):
            with pytest.raises(CacheError):
                cache.set("k", "w", 60)

        assert cache.get("k") == "v"

    def test_unprovisionable_directory_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(CacheError):
            FileCache(blocker / "cache")

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    def test_read_only_directory_raises(self, tmp_path):
        target = tmp_path / "ro"
        target.mkdir()
        target.chmod(0o500)
        try:
            with pytest.raises(CacheError):
                FileCache(target)
        finally:
            target.chmod(0o700)

    def test_default_directory_from_platformdirs(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "BlazeKit.cache.platformdirs.user_cache_dir", lambda appname: str(tmp_path / appname)
        )
        cache = FileCache()
        assert cache.directory == tmp_path / "blazekit"
        assert cache.directory.is_dir()
