"""Tests for fragment stores and the cache manager."""

import time
from unittest.mock import MagicMock, Mock

import pytest

from cached_json import CacheStoreError, ExposureLevel
from cached_json.cache import (
    CacheEntry,
    CacheManager,
    FragmentStore,
    InMemoryFragmentStore,
)

from sample_models import Node, Person


def test_cache_entry_expiration():
    """Test cache entry TTL expiration."""
    entry = CacheEntry(data={"a": 1}, ttl=0.1)

    assert not entry.is_expired()
    time.sleep(0.2)
    assert entry.is_expired()
    assert not CacheEntry(data={}).is_expired()


class TestInMemoryFragmentStore:
    def test_basic_operations(self):
        store = InMemoryFragmentStore()
        assert isinstance(store, FragmentStore)

        store.set("k", {"name": "Ada"})
        assert store.get("k") == {"name": "Ada"}
        assert "k" in store
        assert store.get("missing") is None

        store.delete("k")
        assert store.get("k") is None

    def test_values_are_copied(self):
        store = InMemoryFragmentStore()
        value = {"name": "Ada"}
        store.set("k", value)
        value["name"] = "mutated"
        store.get("k")["name"] = "mutated again"
        assert store.get("k") == {"name": "Ada"}

    def test_nested_values_are_copied(self):
        store = InMemoryFragmentStore()
        value = {"tags": ["a"], "meta": {"n": 1}}
        store.set("k", value)
        value["tags"].append("b")
        fetched = store.get("k")
        fetched["tags"].append("c")
        fetched["meta"]["n"] = 2
        assert store.get("k") == {"tags": ["a"], "meta": {"n": 1}}

    def test_ttl(self):
        store = InMemoryFragmentStore(default_ttl=0.1)
        store.set("k", {"a": 1})
        assert store.get("k") == {"a": 1}
        time.sleep(0.2)
        assert store.get("k") is None
        assert len(store) == 0

    def test_max_entries_resets_store(self):
        store = InMemoryFragmentStore(max_entries=2)
        store.set("a", {})
        store.set("b", {})
        store.set("a", {"again": True})
        assert len(store) == 2
        store.set("c", {})
        assert len(store) == 1
        assert store.get("c") == {}

    def test_batch_operations(self):
        store = InMemoryFragmentStore()
        store.set("a", {"v": 1})
        store.set("b", {"v": 2})
        assert store.get_many(["a", "b", "c"]) == {"a": {"v": 1}, "b": {"v": 2}}
        store.delete_many(["a", "c"])
        assert store.get("a") is None
        store.clear()
        assert len(store) == 0


@pytest.fixture
def manager(registry, monitor):
    return CacheManager(registry, store=InMemoryFragmentStore(), monitor=monitor)


class TestKeys:
    def test_keys_are_deterministic(self, manager):
        first = manager.make_key(Person, 1, "v2", ExposureLevel.PUBLIC)
        second = manager.make_key(Person, 1, "v2", "public")
        assert first == second
        assert first == "cached_json:sample_models.Person:1:v2:public"

    def test_keys_differ_per_component(self, manager):
        keys = {
            manager.make_key(Person, 1, "v2", ExposureLevel.SHORT),
            manager.make_key(Person, 2, "v2", ExposureLevel.SHORT),
            manager.make_key(Person, 1, "v3", ExposureLevel.SHORT),
            manager.make_key(Person, 1, "v2", ExposureLevel.ALL),
            manager.make_key(Node, 1, "v2", ExposureLevel.SHORT),
        }
        assert len(keys) == 5

    def test_unknown_versions_share_a_key(self, manager):
        assert manager.make_key(Person, 1, "v1", ExposureLevel.SHORT) == manager.make_key(
            Person, 1, "unspecified", ExposureLevel.SHORT
        )
        assert manager.make_key(Person, 1, "v1", ExposureLevel.SHORT).endswith(":*:short")

    def test_ids_of_different_types_get_different_keys(self, manager):
        assert manager.make_key(Person, 1, "v2", ExposureLevel.SHORT) != manager.make_key(
            Person, "1", "v2", ExposureLevel.SHORT
        )
        assert manager.make_key(Person, "1", "v2", ExposureLevel.SHORT) in manager.keys_for(
            Person, "1"
        )
        assert manager.make_key(Person, 1, "v2", ExposureLevel.SHORT) not in manager.keys_for(
            Person, "1"
        )

    def test_keys_for_covers_every_combination(self, manager):
        keys = manager.keys_for(Person, 1)
        assert len(keys) == 3 * len(ExposureLevel)
        for version in ["v1", "v2", "v3", "other"]:
            for level in ExposureLevel:
                assert manager.make_key(Person, 1, version, level) in keys


class TestGetOrRender:
    def test_miss_then_hit(self, manager, monitor):
        render = Mock(return_value={"name": "Ada"})

        first = manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, render)
        second = manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, render)

        assert first == second == {"name": "Ada"}
        assert render.call_count == 1
        assert monitor.cache_metrics.hits == 1
        assert monitor.cache_metrics.misses == 1

    def test_disabled_caching_always_renders(self, registry):
        store = MagicMock()
        manager = CacheManager(registry, store=store, disable_caching=True)
        render = Mock(return_value={"name": "Ada"})

        manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, render)
        manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, render)

        assert render.call_count == 2
        store.get.assert_not_called()
        store.set.assert_not_called()

    def test_read_failure_is_treated_as_miss(self, registry, monitor):
        store = Mock()
        store.get.side_effect = CacheStoreError("get", "k", "down")
        manager = CacheManager(registry, store=store, monitor=monitor)

        fragment = manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, lambda: {"a": 1})

        assert fragment == {"a": 1}
        store.set.assert_called_once()
        assert monitor.cache_metrics.store_errors == 1

    def test_write_failure_still_returns_fragment(self, registry, monitor):
        store = Mock()
        store.get.return_value = None
        store.set.side_effect = RuntimeError("disk full")
        manager = CacheManager(registry, store=store, monitor=monitor)

        fragment = manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, lambda: {"a": 1})

        assert fragment == {"a": 1}
        assert monitor.cache_metrics.store_errors == 1

    def test_render_errors_propagate(self, manager):
        def render():
            raise ValueError("bad field")

        with pytest.raises(ValueError):
            manager.get_or_render(Person, 1, "v2", ExposureLevel.SHORT, render)
        assert manager.store.get(manager.make_key(Person, 1, "v2", ExposureLevel.SHORT)) is None


class TestGetOrRenderMany:
    def test_batch_uses_get_many(self, registry, monitor):
        store = InMemoryFragmentStore()
        manager = CacheManager(registry, store=store, monitor=monitor)
        manager.get_or_render(Node, 1, "v1", ExposureLevel.SHORT, lambda: {"label": "cached"})

        renders = []

        def render_for(i):
            def render():
                renders.append(i)
                return {"label": f"fresh {i}"}

            return render

        fragments = manager.get_or_render_many(
            [(Node, i, render_for(i)) for i in (1, 2, 3)], "v1", ExposureLevel.SHORT
        )

        assert fragments == [{"label": "cached"}, {"label": "fresh 2"}, {"label": "fresh 3"}]
        assert renders == [2, 3]
        assert store.get(manager.make_key(Node, 3, "v1", ExposureLevel.SHORT)) == {
            "label": "fresh 3"
        }

    def test_batch_times_each_item_separately(self, registry):
        monitor = Mock()
        manager = CacheManager(registry, store=InMemoryFragmentStore(), monitor=monitor)
        manager.get_or_render(Node, 2, "v1", ExposureLevel.SHORT, lambda: {"label": "cached"})
        monitor.reset_mock()

        def slow_render():
            time.sleep(0.2)
            return {"label": "slow"}

        manager.get_or_render_many(
            [(Node, 1, slow_render), (Node, 2, lambda: {"label": "unused"})],
            "v1",
            ExposureLevel.SHORT,
        )

        (miss_time,), _ = monitor.record_cache_miss.call_args
        (hit_time,), _ = monitor.record_cache_hit.call_args
        assert miss_time >= 0.15
        assert hit_time < 0.1

    def test_batch_without_get_many(self, registry):
        class PlainStore:
            def __init__(self):
                self.data = {}

            def get(self, key):
                return self.data.get(key)

            def set(self, key, value):
                self.data[key] = value

            def delete(self, key):
                self.data.pop(key, None)

        store = PlainStore()
        manager = CacheManager(registry, store=store)
        items = [(Node, 1, lambda: {"label": "one"})]

        assert manager.get_or_render_many(items, "v1", ExposureLevel.SHORT) == [{"label": "one"}]
        assert manager.get_or_render_many(
            [(Node, 1, lambda: {"label": "other"})], "v1", ExposureLevel.SHORT
        ) == [{"label": "one"}]

        manager.invalidate(Node, 1)
        assert store.data == {}

    def test_batch_read_failure_renders_everything(self, registry):
        store = Mock()
        store.get_many.side_effect = CacheStoreError("get_many", None, "down")
        manager = CacheManager(registry, store=store)

        fragments = manager.get_or_render_many(
            [(Node, 1, lambda: {"n": 1}), (Node, 2, lambda: {"n": 2})], "v1", ExposureLevel.SHORT
        )
        assert fragments == [{"n": 1}, {"n": 2}]

    def test_empty_batch(self, manager):
        assert manager.get_or_render_many([], "v1", ExposureLevel.SHORT) == []


class TestInvalidate:
    def test_invalidation_removes_every_combination(self, manager, monitor):
        for version in ["v1", "v2", "v3"]:
            for level in ExposureLevel:
                manager.get_or_render(Person, 1, version, level, lambda: {"x": 1})
        manager.get_or_render(Person, 2, "v2", ExposureLevel.SHORT, lambda: {"x": 2})

        manager.invalidate(Person, 1)

        for key in manager.keys_for(Person, 1):
            assert manager.store.get(key) is None
        assert manager.store.get(manager.make_key(Person, 2, "v2", ExposureLevel.SHORT)) == {"x": 2}
        assert monitor.cache_metrics.invalidations == 1

    def test_invalidation_failure_is_raised(self, registry, monitor):
        store = Mock()
        store.delete_many.side_effect = RuntimeError("down")
        manager = CacheManager(registry, store=store, monitor=monitor)

        with pytest.raises(CacheStoreError):
            manager.invalidate(Person, 1)
        assert monitor.cache_metrics.store_errors == 1
