"""Tests for the apply executor."""

import asyncio

import pytest
from conftest import make_graph

from infralayer.core.errors import ProviderFatalError, ProviderTransientError
from infralayer.graph.builder import DependencyGraph, build_graph
from infralayer.orchestration.engine import ApplyExecutor, IllegalTransition
from infralayer.orchestration.plan_builder import PlanBuilder
from infralayer.orchestration.results import Action, DeploymentResult, NodeState
from infralayer.providers.memory import InMemoryProvider
from infralayer.template.models import ResourceId

VNET = ResourceId("network.virtualNetwork", "vnet")
DB = ResourceId("database.postgresServer", "db")
FILES = ResourceId("storage.account", "files")
WEB = ResourceId("container.app", "web")


class RecordingProvider(InMemoryProvider):
    """Records the properties of every create_or_update call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sent: list[tuple[str, dict]] = []

    async def create_or_update(self, resource_type, name, properties):
        self.sent.append((f"{resource_type}/{name}", properties))
        return await super().create_or_update(resource_type, name, properties)


async def run(
    graph: DependencyGraph,
    provider: InMemoryProvider,
    retry_policy,
    **kwargs,
) -> DeploymentResult:
    plan = await PlanBuilder(provider, retry_policy).build(graph)
    executor = ApplyExecutor(provider, retry_policy=retry_policy, **kwargs)
    return await executor.execute(plan, graph)


class TestOrdering:
    """Tests for dependency-ordered execution."""

    @pytest.mark.asyncio
    async def test_dependencies_provisioned_first(self, vaultwarden, provider, retry_policy):
        result = await run(build_graph(vaultwarden.resources), provider, retry_policy)

        calls = provider.calls_for("create_or_update")
        assert calls.index(str(VNET)) < calls.index(str(DB)) < calls.index(str(WEB))
        assert calls.index(str(FILES)) < calls.index(str(WEB))
        assert result.success
        assert set(result.provisioned) == {VNET, DB, FILES, WEB}

    @pytest.mark.asyncio
    async def test_references_resolved_from_dependency_attributes(self, vaultwarden, provider, retry_policy):
        result = await run(build_graph(vaultwarden.resources), provider, retry_policy)

        env = result.attributes[WEB]["env"]
        assert env["DATABASE_HOST"] == "db.postgres.example.net"
        assert env["ATTACHMENTS"] == "https://files.blob.example.net/attachments"

    @pytest.mark.asyncio
    async def test_identity_reference_resolves_to_id(self, provider, retry_policy):
        graph = make_graph(
            [
                {"type": "network.virtualNetwork", "name": "vnet"},
                {
                    "type": "database.postgresServer",
                    "name": "db",
                    "properties": {"subnet": "${ref(network.virtualNetwork/vnet)}"},
                },
            ]
        )

        result = await run(graph, provider, retry_policy)

        assert result.attributes[DB]["subnet"] == "/resourceGroups/rg/providers/network.virtualNetwork/vnet"

    @pytest.mark.asyncio
    async def test_parallelism_is_bounded(self, retry_policy):
        provider = InMemoryProvider("rg", latency=0.01)
        graph = make_graph([{"type": "storage.account", "name": f"s{i}"} for i in range(6)])

        result = await run(graph, provider, retry_policy, max_parallelism=2)

        assert result.success
        assert provider.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_independent_nodes_run_concurrently(self, retry_policy):
        provider = InMemoryProvider("rg", latency=0.01)
        graph = make_graph([{"type": "storage.account", "name": f"s{i}"} for i in range(4)])

        await run(graph, provider, retry_policy, max_parallelism=4)

        assert provider.max_in_flight == 4

    def test_rejects_zero_parallelism(self, provider):
        with pytest.raises(ValueError):
            ApplyExecutor(provider, max_parallelism=0)


class TestFailures:
    """Tests for partial failure, blocking and retries."""

    @pytest.mark.asyncio
    async def test_failure_blocks_dependents_only(self, vaultwarden, provider, retry_policy):
        provider.inject_failure("database.postgresServer", "db", ProviderFatalError("quota exceeded"))

        result = await run(build_graph(vaultwarden.resources), provider, retry_policy)

        assert result.state_of(VNET) is NodeState.PROVISIONED
        assert result.state_of(FILES) is NodeState.PROVISIONED
        assert result.state_of(DB) is NodeState.FAILED
        assert result.state_of(WEB) is NodeState.BLOCKED
        assert result.nodes[WEB].blocked_by == DB
        assert result.nodes[DB].error == "quota exceeded"
        assert str(WEB) not in provider.calls_for("create_or_update")
        assert not result.success

    @pytest.mark.asyncio
    async def test_transient_errors_retried_with_backoff(self, provider, retry_policy, sleeper):
        provider.inject_failure("storage.account", "files", ProviderTransientError("429"), times=2)
        graph = make_graph([{"type": "storage.account", "name": "files"}])

        result = await run(graph, provider, retry_policy)

        assert result.state_of(FILES) is NodeState.PROVISIONED
        assert result.nodes[FILES].attempts == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_node(self, provider, retry_policy):
        provider.inject_failure("storage.account", "files", ProviderTransientError("503"), times=3)
        graph = make_graph([{"type": "storage.account", "name": "files"}])

        result = await run(graph, provider, retry_policy)

        node = result.nodes[FILES]
        assert node.state is NodeState.FAILED
        assert node.attempts == 3
        assert "after 3 attempts" in node.error

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, provider, retry_policy, sleeper):
        provider.inject_failure("storage.account", "files", ProviderFatalError("invalid sku"))
        graph = make_graph([{"type": "storage.account", "name": "files"}])

        result = await run(graph, provider, retry_policy)

        assert result.nodes[FILES].attempts == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_node(self, provider, retry_policy):
        provider.inject_failure("storage.account", "files", RuntimeError("boom"))
        graph = make_graph([{"type": "storage.account", "name": "files"}])

        result = await run(graph, provider, retry_policy)

        assert result.state_of(FILES) is NodeState.FAILED
        assert result.nodes[FILES].error == "boom"

    @pytest.mark.asyncio
    async def test_block_is_transitive(self, provider, retry_policy):
        provider.inject_failure("t", "a", ProviderFatalError("nope"))
        graph = make_graph(
            [
                {"type": "t", "name": "a"},
                {"type": "t", "name": "b", "dependsOn": ["t/a"]},
                {"type": "t", "name": "c", "dependsOn": ["t/b"]},
            ]
        )

        result = await run(graph, provider, retry_policy)

        assert result.blocked == [ResourceId("t", "b"), ResourceId("t", "c")]
        assert provider.calls_for("create_or_update") == ["t/a"]


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, vaultwarden, provider, retry_policy):
        event = asyncio.Event()
        event.set()

        result = await run(build_graph(vaultwarden.resources), provider, retry_policy, cancel_event=event)

        assert result.cancelled
        assert len(result.cancelled_nodes) == 4
        assert provider.calls_for("create_or_update") == []

    @pytest.mark.asyncio
    async def test_in_flight_node_finishes(self, retry_policy):
        event = asyncio.Event()

        class CancellingProvider(InMemoryProvider):
            async def create_or_update(self, resource_type, name, properties):
                event.set()
                return await super().create_or_update(resource_type, name, properties)

        provider = CancellingProvider("rg")
        graph = make_graph(
            [{"type": "t", "name": "a"}, {"type": "t", "name": "b", "dependsOn": ["t/a"]}]
        )

        result = await run(graph, provider, retry_policy, cancel_event=event)

        assert result.state_of(ResourceId("t", "a")) is NodeState.PROVISIONED
        assert result.state_of(ResourceId("t", "b")) is NodeState.CANCELLED
        assert not result.success


class TestDeferredReferences:
    """Tests for a resource referencing its own runtime attributes."""

    @pytest.mark.asyncio
    async def test_self_reference_resolved_in_second_pass(self, vaultwarden, retry_policy):
        provider = RecordingProvider("rg")

        result = await run(build_graph(vaultwarden.resources), provider, retry_policy)

        web_calls = [props for rid, props in provider.sent if rid == str(WEB)]
        assert len(web_calls) == 2
        assert "DOMAIN" not in web_calls[0]["env"]
        assert web_calls[1]["env"]["DOMAIN"] == "https://web.rg.apps.example.net"
        assert result.attributes[WEB]["env"]["DOMAIN"] == "https://web.rg.apps.example.net"
        assert result.nodes[WEB].attempts == 1

    @pytest.mark.asyncio
    async def test_existing_resource_applies_in_one_call(self, retry_policy):
        provider = RecordingProvider("rg")
        provider.seed("container.app", "web", {"ingress": {"fqdn": "web.rg.apps.example.net"}, "image": "old"})
        graph = make_graph(
            [
                {
                    "type": "container.app",
                    "name": "web",
                    "properties": {"image": "new", "env": {"DOMAIN": "https://${ref(container.app/web).ingress.fqdn}"}},
                }
            ]
        )

        result = await run(graph, provider, retry_policy)

        assert len(provider.sent) == 1
        assert provider.sent[0][1]["env"]["DOMAIN"] == "https://web.rg.apps.example.net"
        assert result.attributes[WEB]["image"] == "new"


class TestIdempotence:
    """Tests for re-applying an already provisioned template."""

    @pytest.mark.asyncio
    async def test_second_apply_is_noop(self, vaultwarden, provider, retry_policy):
        graph = build_graph(vaultwarden.resources)
        await run(graph, provider, retry_policy)
        before = provider.snapshot()
        writes = len(provider.calls_for("create_or_update"))

        plan = await PlanBuilder(provider, retry_policy).build(graph)
        result = await ApplyExecutor(provider, retry_policy=retry_policy).execute(plan, graph)

        assert all(c.action is Action.NOOP for c in plan.changes)
        assert len(provider.calls_for("create_or_update")) == writes
        assert provider.snapshot() == before
        assert result.success
        assert result.attributes[WEB]["ingress"]["fqdn"] == "web.rg.apps.example.net"


class TestTransitions:
    """Tests for the node state machine."""

    @pytest.mark.asyncio
    async def test_terminal_state_cannot_change(self, provider, retry_policy):
        graph = make_graph([{"type": "t", "name": "a"}])
        executor = ApplyExecutor(provider, retry_policy=retry_policy)
        plan = await PlanBuilder(provider, retry_policy).build(graph)
        result = await executor.execute(plan, graph)

        node = result.nodes[ResourceId("t", "a")]
        with pytest.raises(IllegalTransition):
            executor._transition(node, NodeState.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_every_node_terminal(self, vaultwarden, provider, retry_policy):
        provider.inject_failure("storage.account", "files", ProviderFatalError("x"))

        result = await run(build_graph(vaultwarden.resources), provider, retry_policy)

        assert all(node.state.is_terminal for node in result.nodes.values())


class RevisionProvider(InMemoryProvider):
    """Bumps a server-owned ``revision`` attribute on every write."""

    async def create_or_update(self, resource_type, name, properties):
        current = (await self.get(resource_type, name)).properties
        attributes = await super().create_or_update(resource_type, name, properties)
        attributes["revision"] = current.get("revision", 0) + 1
        self.seed(resource_type, name, attributes)
        return attributes


class TestChangedDependencies:
    """Tests for dependents of resources that change during apply."""

    @pytest.mark.asyncio
    async def test_dependent_of_updated_resource_converges(self, provider, retry_policy):
        provider.seed("t", "a", {"x": "old"})
        provider.seed("t", "b", {"y": "old"})
        graph = make_graph(
            [
                {"type": "t", "name": "a", "properties": {"x": "new"}},
                {"type": "t", "name": "b", "properties": {"y": "${ref(t/a).x}"}},
            ]
        )

        result = await run(graph, provider, retry_policy)
        second = await PlanBuilder(provider, retry_policy).build(graph)

        assert result.success
        assert provider.snapshot()["t/b"]["y"] == "new"
        assert all(c.action is Action.NOOP for c in second.changes)

    @pytest.mark.asyncio
    async def test_noop_node_updated_when_referenced_attribute_changes(self, retry_policy):
        provider = RevisionProvider("rg")
        provider.seed("t", "a", {"x": "old", "revision": 1})
        provider.seed("t", "b", {"rev": 1})
        graph = make_graph(
            [
                {"type": "t", "name": "a", "properties": {"x": "new"}},
                {"type": "t", "name": "b", "properties": {"rev": "${ref(t/a).revision}"}},
            ]
        )
        plan = await PlanBuilder(provider, retry_policy).build(graph)

        result = await ApplyExecutor(provider, retry_policy=retry_policy).execute(plan, graph)

        assert plan.get(ResourceId("t", "b")).action is Action.NOOP
        assert result.nodes[ResourceId("t", "b")].action is Action.UPDATE
        assert provider.snapshot()["t/b"]["rev"] == 2

    @pytest.mark.asyncio
    async def test_unchanged_noop_node_skips_provider(self, provider, retry_policy):
        provider.seed("t", "a", {"x": "same"})
        provider.seed("t", "b", {"y": "same"})
        graph = make_graph(
            [
                {"type": "t", "name": "a", "properties": {"x": "same"}},
                {"type": "t", "name": "b", "properties": {"y": "${ref(t/a).x}"}},
            ]
        )

        result = await run(graph, provider, retry_policy)

        assert provider.calls_for("create_or_update") == []
        assert result.nodes[ResourceId("t", "b")].action is Action.NOOP
