# Readiness polling defaults used by `rundeploy deploy`
POLL_TIMEOUT_SECONDS = 120.0
POLL_INTERVAL_SECONDS = 1.0

# Version used when a secret reference does not name one
LATEST_SECRET_VERSION = "latest"

# Condition the server reports once a rollout settles
READY_CONDITION_TYPE = "Ready"

# Source deploys (Cloud Build)
SOURCE_DEPLOY_REPOSITORY = "cloud-run-source-deploy"
DOCKER_BUILDER_IMAGE = "gcr.io/cloud-builders/docker"
PACK_BUILDER_IMAGE = "gcr.io/k8s-skaffold/pack"
BUILDPACKS_BUILDER = "gcr.io/buildpacks/builder:v1"

# CI variables describing the commit to build from
REPOSITORY_URL_VAR = "CI_REPOSITORY_URL"
COMMIT_SHA_VAR = "CI_COMMIT_SHA"

# Environment fallbacks for the global CLI flags
PROJECT_ENV_VAR = "GOOGLE_CLOUD_PROJECT"
REGION_ENV_VAR = "GOOGLE_CLOUD_REGION"
