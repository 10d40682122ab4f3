from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from cftunnel.config import Settings
from cftunnel.schemas.cloudflare import DNSRecord, IngressConfig, Tunnel, Zone, ZoneAccount
from cftunnel.services.cloudflare import CloudflareError, ProviderError


ZONE_ID = "0123456789abcdef0123456789abcdef"
ACCOUNT_ID = "fedcba9876543210fedcba9876543210"


def make_token(account_id: str, tunnel_id: str, secret: str) -> str:
    payload = json.dumps({"a": account_id, "t": tunnel_id, "s": secret})
    return base64.b64encode(payload.encode()).decode()


class FakeCloudflareClient:
    """In-memory stand-in for CloudflareClient that records every call."""

    def __init__(self):
        self.zones: dict[str, list[Zone]] = {}
        self.tunnels: list[Tunnel] = []
        self.tokens: dict[str, str] = {}
        self.configurations: dict[str, IngressConfig] = {}
        self.dns_records: dict[str, DNSRecord] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, CloudflareError] = {}

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    # Seeding helpers

    def add_zone(self, name: str, zone_id: str = ZONE_ID, account_id: str | None = ACCOUNT_ID) -> Zone:
        zone = Zone(id=zone_id, name=name, account=ZoneAccount(id=account_id) if account_id else None)
        self.zones.setdefault(name, []).append(zone)
        return zone

    def add_tunnel(self, name: str, secret: str = "c2VjcmV0", tunnel_id: str | None = None,
                   deleted: bool = False) -> Tunnel:
        tunnel_id = tunnel_id or str(uuid4())
        deleted_at = datetime.now(timezone.utc).isoformat() if deleted else None
        tunnel = Tunnel(id=tunnel_id, name=name, deleted_at=deleted_at)
        self.tunnels.append(tunnel)
        self.tokens[tunnel_id] = make_token(ACCOUNT_ID, tunnel_id, secret)
        return tunnel

    def add_dns_record(self, name: str, content: str) -> DNSRecord:
        record = DNSRecord(id=uuid4().hex, name=name, content=content)
        self.dns_records[record.id] = record
        return record

    def active_tunnels(self, name: str) -> list[Tunnel]:
        return [t for t in self.tunnels if t.name == name and not t.is_deleted]

    # CloudflareClient surface

    def list_zones(self, name):
        self._call("list_zones", name)
        return list(self.zones.get(name, []))

    def list_tunnels(self, account_id, name):
        self._call("list_tunnels", account_id, name)
        return [t for t in self.tunnels if t.name == name and not t.is_deleted]

    def get_tunnel_token(self, account_id, tunnel_id):
        self._call("get_tunnel_token", account_id, tunnel_id)
        if tunnel_id not in self.tokens:
            raise ProviderError(f"Tunnel {tunnel_id} not found")
        return self.tokens[tunnel_id]

    def create_tunnel(self, account_id, name, tunnel_secret):
        self._call("create_tunnel", account_id, name, tunnel_secret)
        tunnel_id = str(uuid4())
        token = make_token(account_id, tunnel_id, tunnel_secret)
        self.tunnels.append(Tunnel(id=tunnel_id, name=name))
        self.tokens[tunnel_id] = token
        return Tunnel(id=tunnel_id, name=name, token=token)

    def clean_tunnel_connections(self, account_id, tunnel_id):
        self._call("clean_tunnel_connections", account_id, tunnel_id)

    def delete_tunnel(self, account_id, tunnel_id):
        self._call("delete_tunnel", account_id, tunnel_id)
        for i, tunnel in enumerate(self.tunnels):
            if tunnel.id == tunnel_id:
                self.tunnels[i] = tunnel.model_copy(update={"deleted_at": "2026-01-01T00:00:00Z"})

    def put_tunnel_configuration(self, account_id, tunnel_id, config):
        self._call("put_tunnel_configuration", account_id, tunnel_id, config)
        self.configurations[tunnel_id] = config

    def list_dns_records(self, zone_id, name, record_type="CNAME"):
        self._call("list_dns_records", zone_id, name)
        return [r for r in self.dns_records.values() if r.name == name and r.type == record_type]

    def create_dns_record(self, zone_id, record):
        self._call("create_dns_record", zone_id, record)
        stored = record.model_copy(update={"id": uuid4().hex})
        self.dns_records[stored.id] = stored
        return stored

    def update_dns_record(self, zone_id, record_id, record):
        self._call("update_dns_record", zone_id, record_id, record)
        stored = record.model_copy(update={"id": record_id})
        self.dns_records[record_id] = stored
        return stored

    def delete_dns_record(self, zone_id, record_id):
        self._call("delete_dns_record", zone_id, record_id)
        self.dns_records.pop(record_id, None)


@pytest.fixture
def fake_cf() -> FakeCloudflareClient:
    client = FakeCloudflareClient()
    client.add_zone("example.com")
    return client


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)
