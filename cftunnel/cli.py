"""
Provision a Cloudflare Tunnel and its DNS record for a local service.

Usage:
    cftunnel API_TOKEN HOSTNAME [SERVICE_URL] [--policy reuse|recreate] [--rollback]
                                              [--zone-id ID --account-id ID] [--json] [-v]

Example:
    cftunnel "$CLOUDFLARE_API_TOKEN" app.example.com https://localhost:8443

HOSTNAME needs at least three labels: the first label names the tunnel and the
rest must be a zone on the account the API token can access.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError as PydanticValidationError

from cftunnel.config import ConfigurationError, get_settings, validate_config_on_startup
from cftunnel.schemas.cloudflare import DesiredState, TunnelPolicy
from cftunnel.services.cloudflare import CloudflareClient, CloudflareError
from cftunnel.services.provision import ProvisionService, zone_from_ids
from cftunnel.services.report import format_report
from cftunnel.validators import ValidationError, validate_api_token, validate_hex32


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_PROVIDER_ERROR = 1
EXIT_USAGE_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cftunnel",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("api_token", help="Cloudflare API token (Zone:Read, DNS:Edit, Tunnel:Edit)")
    parser.add_argument("hostname", help="Public hostname, e.g. app.example.com")
    parser.add_argument("service_url", nargs="?", default=None,
                        help="Local service URL (default: CFTUNNEL_DEFAULT_SERVICE_URL or http://localhost:3010)")
    parser.add_argument("--policy", choices=[p.value for p in TunnelPolicy], default=None,
                        help="Handling of existing tunnels with the same name (default: reuse)")
    parser.add_argument("--rollback", action="store_true", default=None,
                        help="Undo tunnel and DNS changes from this run if a later step fails")
    parser.add_argument("--zone-id", default=None, help="Zone id, skips the zone lookup (requires --account-id)")
    parser.add_argument("--account-id", default=None, help="Account id owning the zone (requires --zone-id)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = get_settings()
    except PydanticValidationError as e:
        print(f"error: invalid CFTUNNEL_* configuration: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        validate_config_on_startup(settings)
    except ConfigurationError:
        return EXIT_USAGE_ERROR

    policy = TunnelPolicy(args.policy) if args.policy else settings.tunnel_policy
    rollback_on_failure = settings.rollback_on_failure if args.rollback is None else args.rollback

    try:
        api_token = validate_api_token(args.api_token)
        service_url = settings.default_service_url if args.service_url is None else args.service_url
        desired = DesiredState.build(args.hostname, service_url)
        zone = None
        if args.zone_id or args.account_id:
            if not (args.zone_id and args.account_id):
                raise ValidationError("--zone-id and --account-id must be given together")
            zone = zone_from_ids(
                validate_hex32(args.zone_id, "Zone id"),
                validate_hex32(args.account_id, "Account id"),
            )
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    logger.info(
        f"Provisioning {desired.hostname} -> {desired.service_url} "
        f"(tunnel '{desired.tunnel_name}', policy {policy.value})"
    )

    client = CloudflareClient(api_token, api_base=settings.api_base, timeout=settings.http_timeout)
    service = ProvisionService(client, policy=policy, rollback_on_failure=rollback_on_failure)

    try:
        result = service.provision(desired, zone=zone)
    except CloudflareError as e:
        logger.error(f"Provisioning {desired.hostname} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        if e.errors:
            print(f"errors: {e.errors}", file=sys.stderr)
        return EXIT_PROVIDER_ERROR

    if args.json:
        data = result.model_dump()
        data["credentials"] = result.credentials.model_dump(by_alias=True)
        print(json.dumps(data, indent=2))
    else:
        print(format_report(result))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
