"""Session state model for the flashing orchestrator."""

from typing import Optional

from pydantic import BaseModel, Field, computed_field, model_validator

from flasher.models.status import ErrorEnum, StepEnum

# Progress value meaning "indeterminate / hidden"
PROGRESS_HIDDEN = -1.0


class SessionState(BaseModel):
    """The single mutable record owned by the orchestrator.

    Snapshots handed to callers are copies; only the state manager replaces
    the live record.
    """

    step: StepEnum = Field(StepEnum.READY, description="Current lifecycle step")
    error: ErrorEnum = Field(ErrorEnum.NONE, description="Current error kind")
    message: str = Field("", description="Human-readable sub-stage label")
    progress: float = Field(
        PROGRESS_HIDDEN, ge=-1.0, le=1.0, description="Fraction in [0, 1], or -1 when hidden"
    )
    connected: bool = Field(False, description="Device connected and recognised")
    serial: Optional[str] = Field(None, description="Device serial number once recognised")

    @model_validator(mode="after")
    def hide_progress_on_error(self) -> "SessionState":
        """Progress is only meaningful while no error is set."""
        if self.error != ErrorEnum.NONE and self.progress != PROGRESS_HIDDEN:
            self.progress = PROGRESS_HIDDEN
        return self

    @computed_field
    @property
    def destructive_in_flight(self) -> bool:
        """A stage past CONNECTING is running; the host should warn before interrupting."""
        return (
            self.error == ErrorEnum.NONE
            and StepEnum.DOWNLOADING <= self.step < StepEnum.DONE
        )

    @property
    def can_retry(self) -> bool:
        return self.error != ErrorEnum.NONE
