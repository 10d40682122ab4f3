from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cftunnel.validators import resolve_hostname, validate_service_url


CATCH_ALL_SERVICE = "http_status:404"
TUNNEL_TARGET_SUFFIX = "cfargotunnel.com"


class TunnelPolicy(str, Enum):
    REUSE = "reuse"
    RECREATE = "recreate"


class DesiredState(BaseModel):
    """Hostname -> local service mapping the run converges towards."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    service_url: str

    @classmethod
    def build(cls, hostname: str, service_url: str) -> DesiredState:
        """Validate raw input and return the normalized desired state.

        Raises cftunnel.validators.ValidationError before any network call.
        """
        tunnel_name, root_domain = resolve_hostname(hostname)
        return cls(
            hostname=f"{tunnel_name}.{root_domain}",
            service_url=validate_service_url(service_url),
        )

    @property
    def tunnel_name(self) -> str:
        return self.hostname.split(".", 1)[0]

    @property
    def root_domain(self) -> str:
        return self.hostname.split(".", 1)[1]


class ZoneAccount(BaseModel):
    id: str | None = None
    name: str | None = None


class Zone(BaseModel):
    id: str
    name: str | None = None
    account: ZoneAccount | None = None

    @property
    def account_id(self) -> str | None:
        return self.account.id if self.account else None


class Tunnel(BaseModel):
    id: str
    name: str
    token: str | None = None
    secret: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def target(self) -> str:
        return tunnel_target(self.id)


class TunnelTokenPayload(BaseModel):
    """Structured payload embedded in a base64 connector token."""

    account_tag: str = Field(alias="a")
    tunnel_id: str = Field(alias="t")
    tunnel_secret: str = Field(alias="s")


class OriginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    no_tls_verify: bool = Field(default=False, alias="noTLSVerify")


class IngressRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service: str
    hostname: str | None = None
    origin_request: OriginRequest | None = Field(default=None, alias="originRequest")


class WarpRouting(BaseModel):
    enabled: bool = False


class IngressConfig(BaseModel):
    """Full replacement configuration pushed to a remotely-managed tunnel."""

    model_config = ConfigDict(populate_by_name=True)

    ingress: list[IngressRule]
    warp_routing: WarpRouting = Field(default_factory=WarpRouting, alias="warp-routing")

    @model_validator(mode="after")
    def check_catch_all(self) -> IngressConfig:
        if not self.ingress:
            raise ValueError("ingress must contain at least the catch-all rule")
        if self.ingress[-1].hostname is not None:
            raise ValueError("last ingress rule must be a catch-all without hostname")
        for rule in self.ingress[:-1]:
            if not rule.hostname:
                raise ValueError("only the last ingress rule may omit hostname")
        return self

    def to_payload(self) -> dict:
        return {"config": self.model_dump(by_alias=True, exclude_none=True)}


class DNSRecordSettings(BaseModel):
    flatten_cname: bool = False


class DNSRecord(BaseModel):
    id: str | None = None
    name: str
    type: str = "CNAME"
    content: str
    proxied: bool = True
    settings: DNSRecordSettings = Field(default_factory=DNSRecordSettings)

    def to_payload(self) -> dict:
        return self.model_dump(exclude={"id"})


class TunnelCredentials(BaseModel):
    """Credentials file contents a connector uses to run the tunnel without re-registering."""

    model_config = ConfigDict(populate_by_name=True)

    account_tag: str = Field(alias="AccountTag")
    tunnel_secret: str | None = Field(default=None, alias="TunnelSecret")
    tunnel_id: str = Field(alias="TunnelID")
    endpoint: str = Field(default="", alias="Endpoint")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ProvisionResult(BaseModel):
    zone_id: str
    account_id: str
    tunnel_id: str
    tunnel_name: str
    hostname: str
    target: str
    service_url: str
    token: str | None = None
    tunnel_secret: str | None = None
    tunnel_created: bool = False
    dns_record_id: str | None = None
    dns_action: str | None = None

    @property
    def credentials(self) -> TunnelCredentials:
        return TunnelCredentials(
            account_tag=self.account_id,
            tunnel_secret=self.tunnel_secret,
            tunnel_id=self.tunnel_id,
        )


def tunnel_target(tunnel_id: str) -> str:
    return f"{tunnel_id}.{TUNNEL_TARGET_SUFFIX}"
