import os
from pathlib import Path

from google.api_core import exceptions
from google.cloud.devtools import cloudbuild_v1

from ..clients import get_build_client
from ..core import (
    BUILDPACKS_BUILDER,
    COMMIT_SHA_VAR,
    DOCKER_BUILDER_IMAGE,
    PACK_BUILDER_IMAGE,
    REPOSITORY_URL_VAR,
    SOURCE_DEPLOY_REPOSITORY,
)
from ..errors import BuildError
from ..logger import logger


def source_image(project_id: str, region: str, service: str) -> str:
    return f"{region}-docker.pkg.dev/{project_id}/{SOURCE_DEPLOY_REPOSITORY}/{service}"


def create_build_request(
    project_id: str, region: str, service: str, source: str
) -> cloudbuild_v1.CreateBuildRequest:
    """
    Builds the Cloud Build request for a source deploy.

    A Dockerfile at the root of `source` is built with docker, anything else
    with buildpacks. The source is fetched from the commit described by the
    CI environment.
    """
    image = source_image(project_id, region, service)

    if (Path(source) / "Dockerfile").exists():
        step = cloudbuild_v1.BuildStep(
            name=DOCKER_BUILDER_IMAGE, args=["build", "-t", image, "."]
        )
    else:
        step = cloudbuild_v1.BuildStep(
            name=PACK_BUILDER_IMAGE,
            args=["build", image, "--builder", BUILDPACKS_BUILDER],
        )

    url = os.getenv(REPOSITORY_URL_VAR)
    if not url:
        raise BuildError(f"{REPOSITORY_URL_VAR} is not defined")
    revision = os.getenv(COMMIT_SHA_VAR)
    if not revision:
        raise BuildError(f"{COMMIT_SHA_VAR} is not defined")

    return cloudbuild_v1.CreateBuildRequest(
        parent=f"projects/{project_id}/locations/global",
        project_id=project_id,
        build=cloudbuild_v1.Build(
            source=cloudbuild_v1.Source(
                git_source=cloudbuild_v1.GitSource(url=url, dir_=source, revision=revision)
            ),
            steps=[step],
            images=[image],
        ),
    )


def build_from_source(project_id: str, region: str, service: str, source: str) -> str:
    """Runs the build to completion and returns the pushed image URI."""
    request = create_build_request(project_id, region, service, source)
    logger.debug(f"Created build request: {request}")

    client = get_build_client()
    try:
        operation = client.create_build(request=request)
        build = operation.result()
    except exceptions.GoogleAPICallError as e:
        raise BuildError(f"Cloud Build failed for service {service}: {e}") from e

    if build.log_url:
        logger.info(f"Build log: {build.log_url}")

    if len(build.images) != 1:
        raise BuildError(f"expected 1 image, got {len(build.images)}")

    image = build.images[0]
    logger.info(f"Built image: {image}")
    return image
