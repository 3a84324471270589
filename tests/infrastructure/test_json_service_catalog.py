"""Tests for JsonServiceCatalog."""

import json

import pytest

from convoy.domain.entities.service_descriptor import HealthCheckKind, ServiceKind
from convoy.domain.errors import InvalidServiceConfig, ServiceNotFound
from convoy.domain.value_objects.host_id import HostId
from convoy.infrastructure.repositories.json_service_catalog import JsonServiceCatalog

CATALOG = {
    "services": {
        "billing-api": {
            "kind": "container",
            "version": "1.4.2",
            "previous_version": "1.4.1",
            "config": {"image": "billing-api", "registry": "registry.local", "LOG_LEVEL": "info"},
            "health_check": {"kind": "http", "target": "http://localhost:8080/health"},
            "environments": {
                "prod": {
                    "hosts": ["deploy@10.0.0.5", "deploy@10.0.0.6:2222"],
                    "credentials_ref": "/keys/prod",
                    "config": {"LOG_LEVEL": "warn"},
                },
                "qa": {"hosts": ["qa1.internal"], "version": "1.5.0-rc1"},
            },
        },
        "ledger": {
            "kind": "systemd",
            "version": "3.0",
            "config": {"unit_template": "[Service]\nExecStart=/opt/ledger/bin/ledger\n"},
            "environments": {"dev": {"hosts": ["dev1"]}},
        },
    }
}


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "services.json"
    path.write_text(json.dumps(CATALOG))
    return JsonServiceCatalog(path)


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_environment(self, catalog):
        d = await catalog.resolve("billing-api", "prod")
        assert d.service_kind is ServiceKind.CONTAINER
        assert d.version == "1.4.2"
        assert d.previous_version_ref == "1.4.1"
        assert d.environment == "prod"
        assert d.target_hosts == (
            HostId(host="10.0.0.5", user="deploy", credentials_ref="/keys/prod"),
            HostId(host="10.0.0.6", user="deploy", port=2222, credentials_ref="/keys/prod"),
        )
        assert d.health_check.kind is HealthCheckKind.HTTP

    @pytest.mark.asyncio
    async def test_environment_config_is_merged(self, catalog):
        d = await catalog.resolve("billing-api", "prod")
        assert d.config["LOG_LEVEL"] == "warn"
        assert d.config["registry"] == "registry.local"

    @pytest.mark.asyncio
    async def test_environment_version_overrides(self, catalog):
        d = await catalog.resolve("billing-api", "qa")
        assert d.version == "1.5.0-rc1"

    @pytest.mark.asyncio
    async def test_system_process(self, catalog):
        d = await catalog.resolve("ledger", "dev")
        assert d.service_kind is ServiceKind.SYSTEM_PROCESS
        assert d.previous_version_ref is None
        assert d.health_check.kind is HealthCheckKind.STATUS

    def test_service_names(self, catalog):
        assert catalog.service_names() == ["billing-api", "ledger"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_unknown_service(self, catalog):
        with pytest.raises(ServiceNotFound, match="ghost"):
            await catalog.resolve("ghost", "prod")

    @pytest.mark.asyncio
    async def test_unknown_environment(self, catalog):
        with pytest.raises(ServiceNotFound, match="qa"):
            await catalog.resolve("ledger", "qa")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(ServiceNotFound, match="not found"):
            await JsonServiceCatalog(tmp_path / "missing.json").resolve("x", "dev")

    @pytest.mark.asyncio
    async def test_malformed_json(self, tmp_path):
        path = tmp_path / "services.json"
        path.write_text("{")
        with pytest.raises(InvalidServiceConfig):
            await JsonServiceCatalog(path).resolve("x", "dev")

    @pytest.mark.asyncio
    async def test_missing_services_key(self, tmp_path):
        path = tmp_path / "services.json"
        path.write_text(json.dumps({"apps": {}}))
        with pytest.raises(InvalidServiceConfig, match="services"):
            await JsonServiceCatalog(path).resolve("x", "dev")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", [
        {"kind": "lambda", "version": "1", "environments": {"dev": {"hosts": ["a"]}}},
        {"kind": "container", "environments": {"dev": {"hosts": ["a"]}}},
        {"version": "1", "environments": {"dev": {"hosts": ["bad host!"]}}},
        {"version": "1", "health_check": {"kind": "http"}, "environments": {"dev": {"hosts": ["a"]}}},
    ])
    async def test_invalid_entries(self, tmp_path, entry):
        path = tmp_path / "services.json"
        path.write_text(json.dumps({"services": {"svc": entry}}))
        with pytest.raises(InvalidServiceConfig):
            await JsonServiceCatalog(path).resolve("svc", "dev")
