"""Shared defaults for the convergence engine and its front end."""

STATE_DIR_NAME = ".converge"
CONFIG_FILE = "config.yaml"

# Retry for a long time: there is no useful fallback when a node cannot converge.
DEFAULT_MAX_ATTEMPTS_WITH_NO_PROGRESS = 100
DEFAULT_CLI_NO_PROGRESS_BACKOFF_SECONDS = 10.0
DEFAULT_MAX_WORKERS = 1

TARGET_DIRECT = "direct"
TARGET_DRYRUN = "dryrun"
TARGET_CLOUDINIT = "cloudinit"
VALID_TARGETS = (TARGET_DIRECT, TARGET_DRYRUN, TARGET_CLOUDINIT)

SCRIPT_FORMAT_CLOUD_CONFIG = "cloud-config"
SCRIPT_FORMAT_SHELL = "shell"
VALID_SCRIPT_FORMATS = (SCRIPT_FORMAT_CLOUD_CONFIG, SCRIPT_FORMAT_SHELL)

IMAGE_TASK_PREFIX = "LoadImage."
