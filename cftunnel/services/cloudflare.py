from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cftunnel.config import DEFAULT_API_BASE
from cftunnel.schemas.cloudflare import DNSRecord, IngressConfig, Tunnel, Zone


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class CloudflareError(RuntimeError):
    """Base class for failures talking to the Cloudflare API."""

    def __init__(self, message: str, errors: list | None = None, status_code: int | None = None):
        super().__init__(message)
        self.errors = errors or []
        self.status_code = status_code


class ProviderError(CloudflareError):
    """API call reported success=false or the transport failed."""
    pass


class NotFoundError(CloudflareError):
    """A zone or account could not be resolved with the given credential."""
    pass


class MalformedResponseError(CloudflareError):
    """Response is missing required fields or identifiers have the wrong shape."""
    pass


def parse_model(model: type[M], data: Any, what: str) -> M:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponseError(f"Unexpected {what} payload from Cloudflare: {e}") from e


class CloudflareClient:
    """Synchronous client for the zone, tunnel and DNS endpoints of the Cloudflare v4 API.

    Every call is made once. Responses without ``success: true`` raise
    ProviderError carrying the API ``errors`` array verbatim.
    """

    def __init__(self, api_token: str, api_base: str = DEFAULT_API_BASE, timeout: float | None = None):
        self.api_token = api_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    # Internal HTTP helpers -------------------------------------------

    def _client(self) -> httpx.Client:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        if self.timeout is None:
            return httpx.Client(base_url=self.api_base, headers=headers)
        return httpx.Client(base_url=self.api_base, headers=headers, timeout=self.timeout)

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        logger.debug(f"CF API request: {method} {url} params={params}")
        try:
            with self._client() as client:
                response = client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"{method} {url} returned a non-JSON response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict) or data.get("success") is not True:
            errors = data.get("errors", []) if isinstance(data, dict) else []
            raise ProviderError(
                f"{method} {url} failed (HTTP {response.status_code}): {errors}",
                errors=errors,
                status_code=response.status_code,
            )

        logger.debug(f"CF API response: {method} {url} -> HTTP {response.status_code}")
        return data.get("result")

    def _list(self, url: str, params: dict[str, Any] | None = None) -> list[Any]:
        result = self._request("GET", url, params=params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise MalformedResponseError(f"Expected a list from GET {url}, got {type(result).__name__}")
        return result

    # Zones -------------------------------------------

    def list_zones(self, name: str) -> list[Zone]:
        return [parse_model(Zone, item, "zone") for item in self._list("/zones", params={"name": name})]

    # Tunnels -------------------------------------------

    def list_tunnels(self, account_id: str, name: str) -> list[Tunnel]:
        """List non-deleted tunnels named exactly ``name``."""
        params = {"name": name, "is_deleted": "false"}
        results = self._list(f"/accounts/{account_id}/cfd_tunnel", params=params)
        return [parse_model(Tunnel, item, "tunnel") for item in results]

    def get_tunnel_token(self, account_id: str, tunnel_id: str) -> str:
        result = self._request("GET", f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}/token")
        if not isinstance(result, str) or not result:
            raise MalformedResponseError(f"Tunnel {tunnel_id} token response did not contain a token")
        return result

    def create_tunnel(self, account_id: str, name: str, tunnel_secret: str) -> Tunnel:
        payload = {
            "name": name,
            "config_src": "cloudflare",
            "tunnel_secret": tunnel_secret,
        }
        result = self._request("POST", f"/accounts/{account_id}/cfd_tunnel", json=payload)
        return parse_model(Tunnel, result, "tunnel")

    def clean_tunnel_connections(self, account_id: str, tunnel_id: str) -> None:
        """Drop active connector connections so the tunnel can be deleted."""
        self._request("DELETE", f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}/connections")

    def delete_tunnel(self, account_id: str, tunnel_id: str) -> None:
        self._request("DELETE", f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}")

    def put_tunnel_configuration(self, account_id: str, tunnel_id: str, config: IngressConfig) -> None:
        self._request(
            "PUT",
            f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}/configurations",
            json=config.to_payload(),
        )

    # DNS records -------------------------------------------

    def list_dns_records(self, zone_id: str, name: str, record_type: str = "CNAME") -> list[DNSRecord]:
        results = self._list(f"/zones/{zone_id}/dns_records", params={"type": record_type, "name": name})
        return [parse_model(DNSRecord, item, "DNS record") for item in results]

    def create_dns_record(self, zone_id: str, record: DNSRecord) -> DNSRecord:
        result = self._request("POST", f"/zones/{zone_id}/dns_records", json=record.to_payload())
        return parse_model(DNSRecord, result, "DNS record")

    def update_dns_record(self, zone_id: str, record_id: str, record: DNSRecord) -> DNSRecord:
        result = self._request(
            "PATCH",
            f"/zones/{zone_id}/dns_records/{record_id}",
            json=record.to_payload(),
        )
        return parse_model(DNSRecord, result, "DNS record")

    def delete_dns_record(self, zone_id: str, record_id: str) -> None:
        self._request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
