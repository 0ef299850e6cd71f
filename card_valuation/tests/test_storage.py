"""
card_valuation/tests/test_storage.py: Unit tests for the image and key-value stores
"""

from datetime import datetime, timedelta, timezone

import pytest

from card_valuation.database.schema import create_session_factory
from card_valuation.errors import ImageNotFoundError
from card_valuation.storage import InMemoryKeyValueStore, LocalImageStore, SqlKeyValueStore


class SqlClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def sql_clock():
    return SqlClock()


@pytest.fixture
def sql_store(sql_clock):
    return SqlKeyValueStore(create_session_factory("sqlite://"), clock=sql_clock)


class TestInMemoryKeyValueStore:
    """Test TTL handling of the process-local store"""

    def test_put_get(self, fake_clock):
        """Test a live entry is returned"""
        store = InMemoryKeyValueStore(clock=fake_clock)
        store.put("k", [{"price": 20.0}], ttl_seconds=60)
        assert store.get("k") == [{"price": 20.0}]
        assert store.get("missing") is None

    def test_expiry(self, fake_clock):
        """Test an entry reads as a miss once its TTL has elapsed"""
        store = InMemoryKeyValueStore(clock=fake_clock)
        store.put("k", "v", ttl_seconds=60)

        fake_clock.advance(59)
        assert store.get("k") == "v"
        fake_clock.advance(1)
        assert store.get("k") is None
        assert len(store) == 0

    def test_last_writer_wins(self, fake_clock):
        """Test that a rewrite replaces value and TTL"""
        store = InMemoryKeyValueStore(clock=fake_clock)
        store.put("k", "old", ttl_seconds=10)
        store.put("k", "new", ttl_seconds=100)

        fake_clock.advance(50)
        assert store.get("k") == "new"

    def test_put_sweeps_expired_entries(self, fake_clock):
        """Test that expired keys nobody reads again are dropped on the next write"""
        store = InMemoryKeyValueStore(clock=fake_clock)
        store.put("a", "stale", ttl_seconds=10)
        store.put("b", "live", ttl_seconds=100)

        fake_clock.advance(20)
        store.put("c", "new", ttl_seconds=10)

        assert len(store) == 2
        assert store.get("a") is None
        assert store.get("b") == "live"

    def test_empty_store_is_truthy(self):
        """Test that an empty store is not mistaken for a missing one"""
        store = InMemoryKeyValueStore()
        assert len(store) == 0
        assert bool(store) is True


class TestSqlKeyValueStore:
    """Test the cache_entries backed store"""

    def test_put_get(self, sql_store):
        """Test a JSON payload round trip"""
        sql_store.put("pricing:charizard", [{"source": "PokemonTCG", "price": 21.5}], ttl_seconds=3600)
        assert sql_store.get("pricing:charizard") == [{"source": "PokemonTCG", "price": 21.5}]
        assert sql_store.get("pricing:other") is None

    def test_expiry(self, sql_store, sql_clock):
        """Test expired rows read as misses"""
        sql_store.put("k", {"a": 1}, ttl_seconds=60)
        sql_clock.advance(61)
        assert sql_store.get("k") is None

    def test_upsert(self, sql_store, sql_clock):
        """Test that rewriting an expired key revives it"""
        sql_store.put("k", {"a": 1}, ttl_seconds=60)
        sql_clock.advance(120)
        sql_store.put("k", {"a": 2}, ttl_seconds=60)
        assert sql_store.get("k") == {"a": 2}

    def test_purge_expired(self, sql_store, sql_clock):
        """Test that only expired rows are deleted"""
        sql_store.put("short", 1, ttl_seconds=10)
        sql_store.put("long", 2, ttl_seconds=1000)
        sql_clock.advance(100)

        assert sql_store.purge_expired() == 1
        assert sql_store.get("long") == 2
        assert sql_store.purge_expired() == 0


class TestLocalImageStore:
    """Test image lookup"""

    def test_relative_ref(self, temp_dir, sample_card_image_file):
        """Test refs resolve against the base directory"""
        store = LocalImageStore(temp_dir)
        assert store.get_image_bytes("sample_card.png") == sample_card_image_file.read_bytes()

    def test_absolute_ref(self, temp_dir, sample_card_image_file):
        """Test absolute paths bypass the base directory"""
        store = LocalImageStore(temp_dir / "elsewhere")
        assert store.get_image_bytes(str(sample_card_image_file))

    @pytest.mark.parametrize("ref", ["missing.png", ""])
    def test_missing(self, temp_dir, ref):
        """Test missing refs raise ImageNotFoundError"""
        with pytest.raises(ImageNotFoundError):
            LocalImageStore(temp_dir).get_image_bytes(ref)

    def test_directory_is_not_an_image(self, temp_dir):
        """Test that a directory ref is rejected"""
        (temp_dir / "uploads").mkdir()
        with pytest.raises(ImageNotFoundError):
            LocalImageStore(temp_dir).get_image_bytes("uploads")
