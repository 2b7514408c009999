"""Default configuration values for Shipyard."""

# Run settings defaults (all durations in seconds)
DEFAULT_RUN_SETTINGS: dict[str, int | float | bool | str | None] = {
    "timeout": 1800,  # overall run deadline
    "component_timeout": 600,  # readiness deadline per component
    "exec_ready_timeout": 300,
    "poll_interval": 5.0,
    "poll_step": 5.0,
    "poll_max_interval": 30.0,
    "retry_attempts": 3,
    "retry_base_delay": 1.0,
    "retry_max_delay": 30.0,
    "track_state": True,
    "kubeconfig": None,
    "context": None,
}

DEFAULT_DEPLOYMENT_FILE = "deployment.yaml"

# Annotation holding the hash of the desired document
SPEC_HASH_ANNOTATION = "shipyard.io/spec-hash"

MANAGED_BY = "shipyard"

STATE_CONFIGMAP_SUFFIX = "-shipyard-state"

# Length of generated credential values
DEFAULT_SECRET_LENGTH = 24
