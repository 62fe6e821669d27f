import threading

from google.api_core import exceptions
from google.cloud import run_v2

from ..clients import get_run_client
from ..core import POLL_INTERVAL_SECONDS, POLL_TIMEOUT_SECONDS
from ..errors import ServiceLookupError, ServiceWriteError
from ..logger import logger
from ..schemas.deploy import DeploymentSummary, DeployOptions
from .merge import build_service, merge_service
from .poll import poll_until_ready, summarize


def service_parent(project_id: str, region: str) -> str:
    return f"projects/{project_id}/locations/{region}"


def service_resource_name(project_id: str, region: str, service: str) -> str:
    return f"{service_parent(project_id, region)}/services/{service}"


def lookup_service(name: str) -> run_v2.Service | None:
    """
    Fetches a Cloud Run service, returning None when it does not exist.
    """
    client = get_run_client()
    try:
        return client.get_service(request=run_v2.GetServiceRequest(name=name))
    except exceptions.NotFound:
        return None
    except exceptions.GoogleAPICallError as e:
        raise ServiceLookupError(f"Failed to get service {name}: {e}") from e


def create_or_update_service(project_id: str, region: str, options: DeployOptions) -> run_v2.Service:
    """
    Deploys `options` to Cloud Run.

    A missing service is created from scratch; an existing one has the options
    merged into it and is replaced. Returns the definition that was sent. The
    long-running operation is not awaited, see `wait_for_service_ready`.
    """
    parent = service_parent(project_id, region)
    name = service_resource_name(project_id, region, options.service)
    logger.info(
        f"Deploying container to Cloud Run service [{options.service}] "
        f"in project [{project_id}] region [{region}]"
    )

    existing = lookup_service(name)
    client = get_run_client()

    if existing is None:
        service = build_service(options)
        logger.info(f"Creating a new service {options.service}")
        request = run_v2.CreateServiceRequest(
            parent=parent, service=service, service_id=options.service
        )
        try:
            client.create_service(request=request)
        except exceptions.GoogleAPICallError as e:
            raise ServiceWriteError(f"Failed to create service {name}: {e}") from e
        return service

    service = merge_service(existing, options)
    logger.info(f"Replacing the existing service {options.service}")
    try:
        client.update_service(request=run_v2.UpdateServiceRequest(service=service))
    except exceptions.GoogleAPICallError as e:
        raise ServiceWriteError(f"Failed to replace service {name}: {e}") from e
    return service


def wait_for_service_ready(
    project_id: str,
    region: str,
    service: str,
    timeout: float = POLL_TIMEOUT_SECONDS,
    interval: float = POLL_INTERVAL_SECONDS,
    cancel: threading.Event | None = None,
) -> DeploymentSummary:
    """
    Blocks until the latest revision is Ready and reports what is serving.
    """
    name = service_resource_name(project_id, region, service)

    def fetch() -> run_v2.Service:
        current = lookup_service(name)
        if current is None:
            raise ServiceLookupError(f"Service {name} disappeared while waiting for it")
        return current

    ready = poll_until_ready(fetch, service, timeout=timeout, interval=interval, cancel=cancel)
    summary = summarize(ready, service)
    logger.info(
        f"Service [{service}] with revision [{summary.revision}] is deployed successfully, "
        f"serving {summary.traffic_percent} percent of traffic."
    )
    return summary
