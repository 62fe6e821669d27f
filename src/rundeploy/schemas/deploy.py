from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Ingress(str, Enum):
    ALL = "all"
    INTERNAL = "internal"
    INTERNAL_AND_CLOUD_LOAD_BALANCING = "internal-and-cloud-load-balancing"

    @classmethod
    def parse(cls, value: object) -> Ingress:
        """Unrecognized or empty values fall back to ALL."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.ALL


class VpcEgress(str, Enum):
    ALL_TRAFFIC = "all-traffic"
    PRIVATE_RANGES_ONLY = "private-ranges-only"


class DeployOptions(BaseModel):
    """
    Desired end state of a Cloud Run service.

    At most one of set/update/clear is active per env or secret category;
    the CLI enforces that before the options reach the reconciler.
    Secret keys starting with "/" are mount paths, anything else is an
    environment variable name.
    """

    service: str
    image: str = ""

    env_vars: dict[str, str] = Field(default_factory=dict)
    update_env_vars: dict[str, str] = Field(default_factory=dict)
    remove_env_vars: list[str] = Field(default_factory=list)
    clear_env_vars: bool = False

    secrets: dict[str, str] = Field(default_factory=dict)
    update_secrets: dict[str, str] = Field(default_factory=dict)
    remove_secrets: list[str] = Field(default_factory=list)
    clear_secrets: bool = False

    ingress: Ingress = Ingress.ALL
    allow_unauthenticated: bool = False
    default_url: bool = True

    # Passed through to the revision template, never merged
    vpc_connector: str | None = None
    network: str | None = None
    subnet: str | None = None
    vpc_egress: VpcEgress | None = None

    @field_validator("ingress", mode="before")
    @classmethod
    def _parse_ingress(cls, value: object) -> Ingress:
        return Ingress.parse(value)

    @property
    def has_vpc_access(self) -> bool:
        return any([self.vpc_connector, self.network, self.subnet, self.vpc_egress])


class DeploymentSummary(BaseModel):
    service: str
    revision: str
    traffic_percent: int = 0
    url: str | None = Field(default=None, description="None when the default URL is disabled")
