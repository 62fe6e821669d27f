import warnings

# Suppress Google SDK FutureWarning messages about interpreter deprecation.
# These clutter the CI job logs the deployer writes to.
warnings.filterwarnings("ignore", category=FutureWarning, module="google.api_core")
warnings.filterwarnings("ignore", category=FutureWarning, module="google.cloud")
