"""Tests for reference handling helpers."""

import pytest

from infralayer.template.expressions import (
    InterpolatedString,
    MissingAttributeError,
    PendingReference,
    iter_references,
    resolve_value,
    strip_references,
)
from infralayer.template.models import DeploymentContext, ResourceId

DB = ResourceId("database.postgresServer", "db")
APP = ResourceId("container.app", "web")


class TestPendingReference:
    def test_identity_reference_uses_id_attribute(self):
        ref = PendingReference(DB)

        assert ref.path == "id"
        assert ref.lookup({"id": "/resourceGroups/rg/db"}) == "/resourceGroups/rg/db"

    def test_attribute_path(self):
        ref = PendingReference(APP, ("ingress", "fqdn"))

        assert ref.lookup({"ingress": {"fqdn": "web.example.net"}}) == "web.example.net"
        assert str(ref) == "${ref(container.app/web).ingress.fqdn}"

    def test_missing_attribute(self):
        ref = PendingReference(APP, ("ingress", "fqdn"))

        with pytest.raises(MissingAttributeError) as exc_info:
            ref.lookup({"ingress": {}})

        assert exc_info.value.reference is ref
        assert "ingress.fqdn" in str(exc_info.value)


class TestResolveValue:
    def test_resolves_nested_values(self):
        value = {
            "host": PendingReference(DB, ("fqdn",)),
            "urls": [InterpolatedString(("https://", PendingReference(APP, ("fqdn",)), "/"))],
            "port": 5432,
        }
        attributes = {DB: {"fqdn": "db.example.net"}, APP: {"fqdn": "web.example.net"}}

        resolved = resolve_value(value, lambda ref: ref.lookup(attributes[ref.resource_id]))

        assert resolved == {
            "host": "db.example.net",
            "urls": ["https://web.example.net/"],
            "port": 5432,
        }

    def test_interpolation_stringifies_booleans(self):
        value = InterpolatedString(("enabled=", PendingReference(APP, ("on",))))

        assert resolve_value(value, lambda ref: True) == "enabled=true"


class TestStripReferences:
    def test_drops_matching_mapping_entries(self):
        value = {
            "env": {
                "DOMAIN": InterpolatedString(("https://", PendingReference(APP, ("fqdn",)))),
                "DB": PendingReference(DB, ("fqdn",)),
            },
            "image": "vaultwarden/server",
        }

        stripped = strip_references(value, lambda ref: ref.resource_id == APP)

        assert set(stripped["env"]) == {"DB"}
        assert stripped["image"] == "vaultwarden/server"

    def test_drops_list_items_containing_match(self):
        value = {"hosts": [{"name": PendingReference(APP, ("fqdn",))}, "static.example.net"]}

        stripped = strip_references(value, lambda ref: ref.resource_id == APP)

        assert stripped == {"hosts": ["static.example.net"]}


def test_iter_references_finds_all():
    value = {
        "a": PendingReference(DB),
        "b": [InterpolatedString(("x", PendingReference(APP, ("fqdn",))))],
        "c": "plain",
    }

    refs = list(iter_references(value))

    assert [r.resource_id for r in refs] == [DB, APP]


def test_context_builtins():
    context = DeploymentContext(resource_group="rg", location="northeurope", environment="prod")

    assert context.builtin("resourceGroup", "location") == "northeurope"
    assert context.builtin("environment", "name") == "prod"
    with pytest.raises(KeyError):
        context.builtin("subscription", "id")
