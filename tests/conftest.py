import pytest
from google.cloud import run_v2

from rundeploy.clients import get_build_client, get_run_client


@pytest.fixture(autouse=True)
def clear_clients():
    """Never share cached API clients between tests."""
    get_run_client.cache_clear()
    get_build_client.cache_clear()


@pytest.fixture
def existing_service():
    """A deployed service with one plain var, one secret var and one secret mount."""
    container = run_v2.Container(
        image="gcr.io/p/app:1",
        env=[
            run_v2.EnvVar(name="MODE", value="prod"),
            run_v2.EnvVar(
                name="API_KEY",
                value_source=run_v2.EnvVarSource(
                    secret_key_ref=run_v2.SecretKeySelector(secret="api-key", version="1")
                ),
            ),
        ],
        volume_mounts=[
            run_v2.VolumeMount(name="tls-cert", mount_path="/certs/tls.pem"),
            run_v2.VolumeMount(name="scratch", mount_path="/tmp/scratch"),
        ],
    )
    return run_v2.Service(
        name="projects/p/locations/us-central1/services/app",
        generation=3,
        ingress=run_v2.IngressTraffic.INGRESS_TRAFFIC_ALL,
        template=run_v2.RevisionTemplate(
            containers=[container],
            volumes=[
                run_v2.Volume(
                    name="tls-cert",
                    secret=run_v2.SecretVolumeSource(
                        secret="tls-cert",
                        items=[run_v2.VersionToPath(path="tls.pem", version="2")],
                    ),
                ),
                run_v2.Volume(name="scratch", empty_dir=run_v2.EmptyDirVolumeSource()),
            ],
        ),
    )
