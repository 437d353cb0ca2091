"""Tests for the named server registry."""

import threading

from mcp_host import events
from mcp_host.instances import ServerRegistry, mcp_server, registry


class TestServerRegistry:
    """Tests for get-or-create semantics."""

    def test_get_creates_once(self):
        """Should return the same instance for the same name."""
        servers = ServerRegistry()
        first = servers.get("docs", description="Docs")
        second = servers.get("docs", description="ignored")

        assert first is second
        assert first.get_description() == "Docs"
        assert servers.count() == 1

    def test_default_name(self):
        """Should use 'default' when no name is given."""
        servers = ServerRegistry()

        assert servers.get().name == "default"
        assert servers.has_instance("default")

    def test_find_does_not_create(self):
        """Should return None for unknown names."""
        servers = ServerRegistry()

        assert servers.find("ghost") is None
        assert servers.count() == 0

    def test_instances_are_isolated(self):
        """Should keep registries and settings separate per name."""
        servers = ServerRegistry()
        a = servers.get("a").register_tool(lambda: "a", name="only_a")
        b = servers.get("b").with_basic_auth("u", "p")

        assert a.has_tool("only_a")
        assert not b.has_tool("only_a")
        assert not a.has_basic_auth()
        assert servers.get_instance_names() == ["a", "b"]

    def test_remove_instance(self):
        """Should remove instances and report whether they existed."""
        servers = ServerRegistry()
        servers.get("tmp")

        assert servers.remove_instance("tmp") is True
        assert servers.remove_instance("tmp") is False
        assert not servers.has_instance("tmp")

    def test_clear_all(self):
        """Should remove every instance."""
        servers = ServerRegistry()
        servers.get("a")
        servers.get("b")
        servers.clear_all_instances()

        assert servers.count() == 0

    def test_concurrent_get_creates_one_instance(self):
        """Should create exactly one instance under concurrent access."""
        servers = ServerRegistry()
        results = []

        def worker():
            results.append(servers.get("shared"))

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(server) for server in results}) == 1


class TestLifecycleEvents:
    """Tests for server_create and server_remove."""

    def test_create_and_remove_events(self):
        """Should fire create after creation and remove before removal."""
        servers = ServerRegistry()
        seen = []
        servers.events.on(events.SERVER_CREATE, lambda e: seen.append(("create", e.server_name)))
        servers.events.on(
            events.SERVER_REMOVE,
            lambda e: seen.append(("remove", e.server_name, servers.has_instance(e.server_name))),
        )

        servers.get("docs")
        servers.get("docs")
        servers.remove_instance("docs")

        assert seen == [("create", "docs"), ("remove", "docs", True)]

    def test_instances_share_registry_bus(self):
        """Should publish instance events on the registry's bus."""
        servers = ServerRegistry()
        responses = []
        servers.events.on(events.RESPONSE, responses.append)

        servers.get("a").handle_request({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        servers.get("b").handle_request({"jsonrpc": "2.0", "id": 2, "method": "ping"})

        assert [r.server_name for r in responses] == ["a", "b"]


class TestModuleRegistry:
    """Tests for the process-wide registry."""

    def test_mcp_server_uses_global_registry(self):
        """Should get-or-create in the module-level registry."""
        server = mcp_server("global", version="3.0.0")

        assert registry.find("global") is server
        assert mcp_server("global") is server
        assert server.get_version() == "3.0.0"
