"""Tests for the offline read cache."""

from goods_tracker.services.read_cache import CACHE_KEYS, KeyValueFile, ReadCache


def test_empty_cache_returns_none(tmp_path):
    cache = ReadCache(data_dir=tmp_path)
    assert cache.get_cached_movements() is None
    assert cache.get_cached_staff() is None
    assert cache.get_last_sync_time() is None


def test_overwrite_is_wholesale(tmp_path):
    cache = ReadCache(data_dir=tmp_path)
    cache.cache_movements([{"id": "a"}, {"id": "b"}])
    cache.cache_movements([{"id": "c"}])
    assert cache.get_cached_movements() == [{"id": "c"}]


def test_persists_across_instances(tmp_path):
    ReadCache(data_dir=tmp_path).cache_staff([{"id": "s1"}])
    assert ReadCache(data_dir=tmp_path).get_cached_staff() == [{"id": "s1"}]


def test_corrupt_blob_reads_as_none(tmp_path):
    storage = KeyValueFile(tmp_path / "cache.json")
    storage.set_item(CACHE_KEYS["movements"], "{not json")
    cache = ReadCache(storage=storage)
    assert cache.get_cached_movements() is None


def test_unserializable_write_is_logged_not_raised(tmp_path):
    cache = ReadCache(data_dir=tmp_path)
    cache.cache_movements([{"id": object()}])
    assert cache.get_cached_movements() is None


def test_corrupt_file_is_replaced_on_next_write(tmp_path):
    (tmp_path / "offline_cache.json").write_text("{trunc")
    cache = ReadCache(data_dir=tmp_path)
    assert cache.get_cached_movements() is None

    cache.cache_movements([{"id": "m1"}])
    assert cache.get_cached_movements() == [{"id": "m1"}]
    assert cache.get_last_sync_time() is not None


def test_non_object_file_reads_as_empty(tmp_path):
    (tmp_path / "offline_cache.json").write_text("[1, 2, 3]")
    cache = ReadCache(data_dir=tmp_path)
    assert cache.get_cached_staff() is None

    cache.cache_staff([{"id": "s1"}])
    assert cache.get_cached_staff() == [{"id": "s1"}]
