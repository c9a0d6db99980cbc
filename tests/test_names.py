"""Tests for the shared display name registry."""

from concurrent.futures import ThreadPoolExecutor

from relay_bot.core.names import NameRegistry


class TestNameRegistry:
    """Tests for NameRegistry."""

    def test_register_and_lookup(self):
        """Registered names are known regardless of case."""
        registry = NameRegistry()
        assert registry.register("Alice") is True
        assert registry.is_known("alice")
        assert registry.is_known(" ALICE ")
        assert not registry.is_known("bob")

    def test_register_twice(self):
        """A second registration of the same name is reported."""
        registry = NameRegistry()
        registry.register("Alice")
        assert registry.register("alice") is False
        assert len(registry) == 1

    def test_names_sorted(self):
        """names() is a sorted lowercase snapshot."""
        registry = NameRegistry()
        for name in ["Charlie", "alice", "Bob"]:
            registry.register(name)
        assert registry.names() == ["alice", "bob", "charlie"]

    def test_concurrent_registration(self):
        """Registering from many threads loses nothing."""
        registry = NameRegistry()
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(registry.register, [f"bot{i}" for i in range(200)]))
        assert all(results)
        assert len(registry) == 200

    def test_persona_user_ids(self):
        """User ids registered alongside names are recognised exactly."""
        registry = NameRegistry()
        registry.register("Alice", "@alice:example.org")
        registry.register("Bob")
        assert registry.is_persona("@alice:example.org")
        assert not registry.is_persona("@bob:example.org")
        assert not registry.is_persona("@someone:example.org")
