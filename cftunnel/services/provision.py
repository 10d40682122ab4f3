from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass, field
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from cftunnel.schemas.cloudflare import (
    CATCH_ALL_SERVICE,
    DesiredState,
    DNSRecord,
    IngressConfig,
    IngressRule,
    OriginRequest,
    ProvisionResult,
    Tunnel,
    TunnelPolicy,
    TunnelTokenPayload,
    Zone,
    ZoneAccount,
    tunnel_target,
)
from cftunnel.services.cloudflare import (
    CloudflareClient,
    CloudflareError,
    MalformedResponseError,
    NotFoundError,
)
from cftunnel.validators import is_hex32, is_uuid


logger = logging.getLogger(__name__)


TUNNEL_SECRET_BYTES = 32


# Journal ------------------------------------------------------------------


TUNNEL_CREATED = "tunnel_created"
DNS_CREATED = "dns_created"
DNS_UPDATED = "dns_updated"


@dataclass
class JournalStep:
    action: str
    scope_id: str  # account id for tunnels, zone id for DNS records
    resource_id: str
    previous: DNSRecord | None = None


@dataclass
class ProvisionJournal:
    """Remote changes committed during one run, in order."""

    steps: list[JournalStep] = field(default_factory=list)

    def record(self, action: str, scope_id: str, resource_id: str, previous: DNSRecord | None = None) -> None:
        self.steps.append(JournalStep(action, scope_id, resource_id, previous))

    def has(self, action: str) -> bool:
        return any(step.action == action for step in self.steps)


def rollback(client: CloudflareClient, journal: ProvisionJournal) -> list[JournalStep]:
    """Undo journaled steps in reverse order.

    Returns the steps that could not be undone. Deletions performed by the
    recreate policy are not journaled and cannot be undone.
    """
    failed: list[JournalStep] = []
    for step in reversed(journal.steps):
        try:
            if step.action == TUNNEL_CREATED:
                logger.info(f"Rollback: deleting tunnel {step.resource_id}")
                client.clean_tunnel_connections(step.scope_id, step.resource_id)
                client.delete_tunnel(step.scope_id, step.resource_id)
            elif step.action == DNS_CREATED:
                logger.info(f"Rollback: deleting DNS record {step.resource_id}")
                client.delete_dns_record(step.scope_id, step.resource_id)
            elif step.action == DNS_UPDATED and step.previous is not None:
                logger.info(f"Rollback: restoring DNS record {step.resource_id} to {step.previous.content}")
                client.update_dns_record(step.scope_id, step.resource_id, step.previous)
        except CloudflareError as e:
            logger.error(f"Rollback of {step.action} {step.resource_id} failed: {e}")
            failed.append(step)
    return failed


# Stage 2: zone and account -------------------------------------------------


def locate_zone(client: CloudflareClient, root_domain: str) -> Zone:
    zones = client.list_zones(root_domain)
    if not zones:
        raise NotFoundError(f"No zone found for '{root_domain}', is the domain on this account?")

    zone = zones[0]
    if not zone.account_id:
        raise NotFoundError(
            f"Zone {zone.id} has no account id, the API token may lack account read permission"
        )

    check_zone_identifiers(zone)
    logger.info(f"Resolved zone {root_domain}: zone={zone.id} account={zone.account_id}")
    return zone


def check_zone_identifiers(zone: Zone) -> None:
    if not is_hex32(zone.id):
        raise MalformedResponseError(f"Zone id has unexpected format: {zone.id!r}")
    if not is_hex32(zone.account_id):
        raise MalformedResponseError(f"Account id has unexpected format: {zone.account_id!r}")


def zone_from_ids(zone_id: str, account_id: str) -> Zone:
    """Build a zone from operator-supplied identifiers, skipping the lookup."""
    zone = Zone(id=zone_id, account=ZoneAccount(id=account_id))
    check_zone_identifiers(zone)
    return zone


# Stage 3: tunnel -----------------------------------------------------------


def generate_tunnel_secret() -> str:
    return base64.b64encode(secrets.token_bytes(TUNNEL_SECRET_BYTES)).decode("ascii")


def decode_tunnel_token(token: str | None) -> TunnelTokenPayload | None:
    """Decode a connector token into its account/tunnel/secret payload.

    Returns None if the token is not base64-encoded JSON of the expected shape.
    """
    if not token:
        return None
    try:
        raw = base64.b64decode(token + "=" * (-len(token) % 4))
        return TunnelTokenPayload.model_validate(json.loads(raw))
    except (binascii.Error, ValueError, PydanticValidationError):
        return None


def _attach_secret(client: CloudflareClient, account_id: str, tunnel: Tunnel) -> Tunnel:
    token = tunnel.token
    if not token:
        try:
            token = client.get_tunnel_token(account_id, tunnel.id)
        except CloudflareError as e:
            logger.warning(f"Could not fetch connector token for tunnel {tunnel.id}: {e}")
            return tunnel

    payload = decode_tunnel_token(token)
    if payload is None:
        logger.warning(f"Connector token for tunnel {tunnel.id} could not be decoded, secret unknown")
        return tunnel.model_copy(update={"token": token})

    if payload.tunnel_id != tunnel.id:
        logger.warning(f"Connector token belongs to tunnel {payload.tunnel_id}, expected {tunnel.id}")
    return tunnel.model_copy(update={"token": token, "secret": payload.tunnel_secret})


def _create_tunnel(
    client: CloudflareClient,
    account_id: str,
    tunnel_name: str,
    journal: ProvisionJournal | None,
) -> Tunnel:
    secret = generate_tunnel_secret()
    logger.info(f"Creating tunnel '{tunnel_name}'")
    tunnel = client.create_tunnel(account_id, tunnel_name, secret)
    if journal is not None:
        journal.record(TUNNEL_CREATED, account_id, tunnel.id)
    tunnel = tunnel.model_copy(update={"secret": secret})

    if not tunnel.token:
        try:
            tunnel = tunnel.model_copy(update={"token": client.get_tunnel_token(account_id, tunnel.id)})
        except CloudflareError as e:
            logger.warning(f"Could not fetch connector token for new tunnel {tunnel.id}: {e}")

    logger.info(f"Created tunnel '{tunnel_name}' ({tunnel.id})")
    return tunnel


def _active_tunnels(client: CloudflareClient, account_id: str, tunnel_name: str) -> list[Tunnel]:
    return [
        t for t in client.list_tunnels(account_id, tunnel_name)
        if t.name == tunnel_name and not t.is_deleted
    ]


def _reuse_tunnel(
    client: CloudflareClient,
    account_id: str,
    tunnel_name: str,
    journal: ProvisionJournal | None,
) -> Tunnel:
    matches = _active_tunnels(client, account_id, tunnel_name)
    if not matches:
        logger.info(f"No active tunnel named '{tunnel_name}'")
        return _create_tunnel(client, account_id, tunnel_name, journal)

    if len(matches) > 1:
        ids = ", ".join(t.id for t in matches)
        logger.warning(f"Found {len(matches)} tunnels named '{tunnel_name}' ({ids}), reusing the first")

    tunnel = matches[0]
    logger.info(f"Reusing tunnel '{tunnel_name}' ({tunnel.id})")
    # list responses never carry a usable connector token
    return _attach_secret(client, account_id, tunnel.model_copy(update={"token": None}))


def _recreate_tunnel(
    client: CloudflareClient,
    account_id: str,
    tunnel_name: str,
    journal: ProvisionJournal | None,
) -> Tunnel:
    existing = _active_tunnels(client, account_id, tunnel_name)
    if existing:
        logger.info(f"Deleting {len(existing)} tunnel(s) named '{tunnel_name}'")
    for tunnel in existing:
        try:
            client.clean_tunnel_connections(account_id, tunnel.id)
            client.delete_tunnel(account_id, tunnel.id)
            logger.info(f"Deleted tunnel {tunnel.id}")
        except CloudflareError as e:
            logger.warning(f"Failed to delete tunnel {tunnel.id}, continuing: {e}")

    return _create_tunnel(client, account_id, tunnel_name, journal)


def reconcile_tunnel(
    client: CloudflareClient,
    account_id: str,
    tunnel_name: str,
    policy: TunnelPolicy = TunnelPolicy.REUSE,
    journal: ProvisionJournal | None = None,
) -> Tunnel:
    """Return the tunnel named ``tunnel_name``, creating it when needed.

    REUSE keeps the first active tunnel of that name and recovers its secret
    from the connector token. RECREATE deletes every active tunnel of that
    name and creates a fresh one.
    """
    if policy is TunnelPolicy.RECREATE:
        tunnel = _recreate_tunnel(client, account_id, tunnel_name, journal)
    else:
        tunnel = _reuse_tunnel(client, account_id, tunnel_name, journal)

    if not is_uuid(tunnel.id):
        raise MalformedResponseError(f"Tunnel id has unexpected format: {tunnel.id!r}")
    return tunnel


# Stage 4: ingress ----------------------------------------------------------


def build_ingress(hostname: str, service_url: str) -> IngressConfig:
    origin_request = OriginRequest(no_tls_verify=True) if urlparse(service_url).scheme.lower() == "https" else None
    return IngressConfig(
        ingress=[
            IngressRule(service=service_url, hostname=hostname, origin_request=origin_request),
            IngressRule(service=CATCH_ALL_SERVICE),
        ]
    )


def configure_ingress(
    client: CloudflareClient,
    account_id: str,
    tunnel_id: str,
    hostname: str,
    service_url: str,
) -> IngressConfig:
    """Replace the tunnel configuration with a single route plus the 404 catch-all."""
    config = build_ingress(hostname, service_url)
    client.put_tunnel_configuration(account_id, tunnel_id, config)
    logger.info(f"Configured ingress {hostname} -> {service_url} on tunnel {tunnel_id}")
    return config


# Stage 5: DNS --------------------------------------------------------------


def reconcile_dns(
    client: CloudflareClient,
    zone_id: str,
    hostname: str,
    tunnel_id: str,
    journal: ProvisionJournal | None = None,
) -> DNSRecord:
    """Point the CNAME for ``hostname`` at the tunnel, updating or creating it."""
    desired = DNSRecord(name=hostname, content=tunnel_target(tunnel_id))

    existing = [r for r in client.list_dns_records(zone_id, hostname) if r.name == hostname]
    current = next((r for r in existing if r.id), None)

    if current is not None:
        logger.info(f"Updating DNS record {current.id}: {hostname} -> {desired.content}")
        record = client.update_dns_record(zone_id, current.id, desired)
        if journal is not None:
            journal.record(DNS_UPDATED, zone_id, current.id, previous=current)
    else:
        logger.info(f"Creating DNS record {hostname} -> {desired.content}")
        record = client.create_dns_record(zone_id, desired)
        if journal is not None and record.id:
            journal.record(DNS_CREATED, zone_id, record.id)

    if not is_hex32(record.id):
        raise MalformedResponseError(f"DNS record id has unexpected format: {record.id!r}")
    return record


# Pipeline ------------------------------------------------------------------


class ProvisionService:
    """Converges tunnel, ingress and DNS state for one hostname."""

    def __init__(
        self,
        client: CloudflareClient,
        policy: TunnelPolicy = TunnelPolicy.REUSE,
        rollback_on_failure: bool = False,
    ):
        self.client = client
        self.policy = policy
        self.rollback_on_failure = rollback_on_failure

    def provision(self, desired: DesiredState, zone: Zone | None = None) -> ProvisionResult:
        """Run every stage in order, stopping at the first failure.

        ``zone`` skips the zone lookup when the identifiers are already known.
        """
        if zone is None:
            zone = locate_zone(self.client, desired.root_domain)
        account_id = zone.account_id

        journal = ProvisionJournal()
        try:
            tunnel = reconcile_tunnel(
                self.client, account_id, desired.tunnel_name, self.policy, journal
            )
            configure_ingress(self.client, account_id, tunnel.id, desired.hostname, desired.service_url)
            record = reconcile_dns(self.client, zone.id, desired.hostname, tunnel.id, journal)
        except CloudflareError:
            if self.rollback_on_failure and journal.steps:
                logger.warning(f"Provisioning {desired.hostname} failed, rolling back {len(journal.steps)} step(s)")
                failed = rollback(self.client, journal)
                if failed:
                    logger.error(f"{len(failed)} rollback step(s) failed, manual cleanup required")
            raise

        return ProvisionResult(
            zone_id=zone.id,
            account_id=account_id,
            tunnel_id=tunnel.id,
            tunnel_name=tunnel.name,
            hostname=desired.hostname,
            target=record.content,
            service_url=desired.service_url,
            token=tunnel.token,
            tunnel_secret=tunnel.secret,
            tunnel_created=journal.has(TUNNEL_CREATED),
            dns_record_id=record.id,
            dns_action="updated" if journal.has(DNS_UPDATED) else "created",
        )
