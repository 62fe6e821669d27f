from typing import NamedTuple

from ..core import LATEST_SECRET_VERSION


class SecretReference(NamedTuple):
    secret: str
    version: str

    @property
    def is_valid(self) -> bool:
        return bool(self.secret)


def parse_secret_reference(value: str) -> SecretReference:
    """
    Parses `name[:version]` or `projects/p/secrets/name[/versions/v]`.

    The version defaults to "latest". A reference without a secret name
    yields an empty `secret`; callers skip those entries.
    """
    value = value.strip()

    if "/secrets/" in value:
        remainder = value.split("/secrets/", 1)[1]
        secret, _, tail = remainder.partition("/")
        version = ""
        if tail.startswith("versions/"):
            version = tail[len("versions/") :].strip("/")
        return SecretReference(secret, version or LATEST_SECRET_VERSION)

    secret, _, version = value.partition(":")
    return SecretReference(secret, version or LATEST_SECRET_VERSION)
