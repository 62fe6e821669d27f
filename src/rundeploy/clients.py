from __future__ import annotations

from functools import lru_cache
from typing import Any

from google.api_core.gapic_v1.client_info import ClientInfo
from google.cloud import run_v2
from google.cloud.devtools import cloudbuild_v1

_user_agent: str | None = None


def set_user_agent(user_agent: str | None) -> None:
    """Sets the user agent sent by every client created from now on."""
    global _user_agent
    _user_agent = user_agent or None
    get_run_client.cache_clear()
    get_build_client.cache_clear()


def _client_kwargs() -> dict[str, Any]:
    if not _user_agent:
        return {}
    return {"client_info": ClientInfo(user_agent=_user_agent)}


# Shared Client Registry (Lazy-loaded and cached)


@lru_cache(maxsize=1)
def get_run_client() -> Any:
    return run_v2.ServicesClient(**_client_kwargs())


@lru_cache(maxsize=1)
def get_build_client() -> Any:
    return cloudbuild_v1.CloudBuildClient(**_client_kwargs())
