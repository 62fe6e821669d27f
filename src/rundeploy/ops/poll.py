import threading
from collections.abc import Callable
from enum import Enum

from google.cloud import run_v2
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..core import POLL_INTERVAL_SECONDS, POLL_TIMEOUT_SECONDS, READY_CONDITION_TYPE
from ..errors import PollCancelledError, PollTimeoutError, ServiceNotReadyError
from ..logger import logger
from ..schemas.deploy import DeploymentSummary


class Readiness(Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


def readiness(service: run_v2.Service) -> Readiness:
    """
    Classifies a fetched service.

    A rollout is only settled once the server has observed the latest
    generation; until then the Ready condition describes an older revision.
    """
    if service.observed_generation != service.generation:
        return Readiness.PENDING

    condition = service.terminal_condition
    if condition.type_ != READY_CONDITION_TYPE:
        return Readiness.PENDING

    if condition.state == run_v2.Condition.State.CONDITION_SUCCEEDED:
        return Readiness.READY
    if condition.state == run_v2.Condition.State.CONDITION_FAILED:
        return Readiness.FAILED
    return Readiness.PENDING


def poll_until_ready(
    fetch: Callable[[], run_v2.Service],
    service_name: str,
    timeout: float = POLL_TIMEOUT_SECONDS,
    interval: float = POLL_INTERVAL_SECONDS,
    cancel: threading.Event | None = None,
) -> run_v2.Service:
    """
    Polls `fetch` every `interval` seconds until the service is Ready.

    Returns the last fetched service. Raises ServiceNotReadyError as soon as
    the server reports a failure, PollTimeoutError once `timeout` elapses and
    PollCancelledError when `cancel` is set. Errors raised by `fetch` are not
    retried.
    """
    cancel = cancel or threading.Event()
    latest: list[run_v2.Service] = []

    def sleep(seconds: float) -> None:
        if cancel.wait(seconds):
            raise PollCancelledError(f"Polling for service {service_name} was cancelled")

    def tick() -> Readiness:
        if cancel.is_set():
            raise PollCancelledError(f"Polling for service {service_name} was cancelled")

        service = fetch()
        latest[:] = [service]

        if service.terminal_condition.message:
            logger.info(service.terminal_condition.message)

        state = readiness(service)
        if state is Readiness.FAILED:
            raise ServiceNotReadyError(
                service_name,
                revision=_short_name(service.latest_created_revision),
                message=service.terminal_condition.message,
            )
        return state

    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda state: state is Readiness.PENDING),
        sleep=sleep,
    )

    try:
        retrying(tick)
    except RetryError as e:
        raise PollTimeoutError(
            f"Timed out after {timeout:g}s waiting for service {service_name} to become ready"
        ) from e

    return latest[0]


def summarize(service: run_v2.Service, service_name: str) -> DeploymentSummary:
    """Reports the serving revision, its traffic share and URL."""
    traffic_percent = 0
    if not service.default_uri_disabled and service.traffic_statuses:
        traffic_percent = service.traffic_statuses[0].percent

    url = None if service.default_uri_disabled else (service.uri or None)

    return DeploymentSummary(
        service=service_name,
        revision=_short_name(service.latest_ready_revision),
        traffic_percent=traffic_percent,
        url=url,
    )


def _short_name(resource_name: str) -> str:
    return resource_name.split("/")[-1]
