"""Run settings models.

``RunSettings`` controls how a reconciliation run behaves (deadlines, poll
and retry policies). Values come from CLI flags, ``SHIPYARD_*`` environment
variables and built-in defaults, in that order of precedence.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PollPolicy(BaseModel):
    """Linear backoff for readiness polling.

    The n-th wait is ``initial + n * step``, capped at ``max_interval``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    initial: float = Field(default=5.0, gt=0)
    step: float = Field(default=5.0, ge=0)
    max_interval: float = Field(default=30.0, gt=0)

    def interval(self, attempt: int) -> float:
        """Return the wait before poll ``attempt`` (0-based)."""
        return min(self.initial + attempt * self.step, self.max_interval)


class RetryConfig(BaseModel):
    """Exponential backoff for transient cluster API errors.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry
        exponential_base: Growth factor between retries
        max_delay: Upper bound for a single delay
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    exponential_base: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)

    def delay(self, attempt: int) -> float:
        """Return the delay before retry ``attempt`` (0-based)."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)


class RunSettings(BaseModel):
    """Settings for one reconciliation run.

    Attributes:
        timeout: Overall run deadline in seconds
        component_timeout: Readiness deadline per component in seconds
        exec_ready_timeout: Bound on waiting for a container to accept commands
        poll_interval: First readiness poll interval
        poll_step: Linear increase of the poll interval
        poll_max_interval: Cap on the poll interval
        retry_attempts: Retries for transient cluster API errors
        retry_base_delay: First retry delay
        retry_max_delay: Cap on the retry delay
        track_state: Persist component state in a ConfigMap
        kubeconfig: Path to a kubeconfig file (default: standard lookup)
        context: Kubeconfig context to use
    """

    model_config = ConfigDict(extra="forbid")

    timeout: int = Field(default=1800, ge=1)
    component_timeout: int = Field(default=600, ge=1)
    exec_ready_timeout: int = Field(default=300, ge=1)
    poll_interval: float = Field(default=5.0, gt=0)
    poll_step: float = Field(default=5.0, ge=0)
    poll_max_interval: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    track_state: bool = True
    kubeconfig: str | None = None
    context: str | None = None

    @model_validator(mode="after")
    def validate_intervals(self) -> "RunSettings":
        """Validate the poll cap is not below the first interval."""
        if self.poll_max_interval < self.poll_interval:
            raise ValueError(
                "poll_max_interval must be >= poll_interval "
                f"({self.poll_max_interval} < {self.poll_interval})"
            )
        return self

    @property
    def poll_policy(self) -> PollPolicy:
        """Readiness poll policy derived from these settings."""
        return PollPolicy(
            initial=self.poll_interval,
            step=self.poll_step,
            max_interval=self.poll_max_interval,
        )

    @property
    def retry_config(self) -> RetryConfig:
        """Transient retry policy derived from these settings."""
        return RetryConfig(
            max_retries=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )
