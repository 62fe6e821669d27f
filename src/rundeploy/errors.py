class DeployError(Exception):
    """Base class for every failure surfaced by `rundeploy`."""


class ServiceLookupError(DeployError):
    """Fetching the service failed for a reason other than it not existing."""


class ServiceWriteError(DeployError):
    """The create or replace call was rejected."""


class ServiceNotReadyError(DeployError):
    """The server reported the latest revision as failed."""

    def __init__(self, service: str, revision: str = "", message: str = "") -> None:
        self.service = service
        self.revision = revision
        self.message = message
        text = f"failed to deploy the latest revision of the service {service}"
        if revision:
            text += f" (revision {revision})"
        if message:
            text += f": {message}"
        super().__init__(text)


class PollTimeoutError(DeployError):
    """The service did not reach a terminal state before the deadline."""


class PollCancelledError(DeployError):
    """Readiness polling was aborted by the caller."""


class BuildError(DeployError):
    """Building the container image from source failed."""
