"""State manager for the in-memory flashing session."""

from typing import Callable, Optional
import logging

from flasher.models.state import PROGRESS_HIDDEN, SessionState
from flasher.models.status import ErrorEnum, StepEnum

Subscriber = Callable[[SessionState], None]


class StateManager:
    """Singleton owner of the session state record.

    The record lives for the whole process; there is no reset. A fresh session
    means a fresh process.

    Manages:
    - The current SessionState (for GET /progress and subscribers)
    - Change notification to subscribers
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("flasher.state_manager")
        self._state = SessionState()
        self._subscribers: list[Subscriber] = []

        self._initialized = True
        self.logger.info("StateManager initialized")

    def get_status(self) -> SessionState:
        """Get a snapshot of the current session state."""
        return self._state.model_copy()

    def update_status(self, **changes) -> SessionState:
        """Replace the session record with ``changes`` applied.

        The record is re-validated on every update, so setting an error always
        hides progress.

        Returns:
            The new state
        """
        previous = self._state
        data = previous.model_dump(exclude={"destructive_in_flight"})
        data.update(changes)
        self._state = SessionState(**data)

        if self._state.message != previous.message and self._state.message:
            self.logger.info(self._state.message)
        if self._state.step != previous.step:
            self.logger.debug(f"Step changed: {previous.step.name} -> {self._state.step.name}")

        self._notify()
        return self._state

    def set_step(self, step: StepEnum) -> SessionState:
        """Enter a new step; progress is hidden and the label cleared."""
        return self.update_status(step=step, progress=PROGRESS_HIDDEN, message="")

    def set_error(self, error: ErrorEnum) -> SessionState:
        self.logger.debug(f"error {error.name}")
        return self.update_status(error=error, progress=PROGRESS_HIDDEN)

    def set_progress(self, progress: float) -> None:
        """Record overall progress. Ignored while an error is set."""
        if self._state.error != ErrorEnum.NONE:
            return
        self.update_status(progress=progress)

    def set_message(self, message: str) -> None:
        self.update_status(message=message)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback invoked with every new state.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.get_status()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                # Observers must not break the session
                self.logger.error(f"State subscriber failed: {e}", exc_info=True)
