from __future__ import annotations

from cftunnel.schemas.cloudflare import ProvisionResult


RULE = "=" * 42


def credentials_json(result: ProvisionResult) -> str:
    """Single-line credentials JSON for a connector process."""
    return result.credentials.to_json()


def format_report(result: ProvisionResult) -> str:
    tunnel_state = "created" if result.tunnel_created else "reused"
    lines = [
        RULE,
        "Tunnel provisioned",
        RULE,
        f"Zone ID:       {result.zone_id}",
        f"Account ID:    {result.account_id}",
        f"Tunnel ID:     {result.tunnel_id} ({tunnel_state})",
        f"Tunnel Name:   {result.tunnel_name}",
        f"Hostname:      {result.hostname}",
        f"Tunnel Target: {result.target}",
        f"DNS Record:    {result.dns_record_id} ({result.dns_action})",
        f"Service:       {result.service_url}",
        RULE,
        f"Tunnel Token: {result.token or '(unavailable)'}",
        RULE,
        "Tunnel Json:",
        credentials_json(result),
    ]
    return "\n".join(lines)
