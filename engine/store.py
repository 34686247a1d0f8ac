import threading
from typing import Tuple

from .errors import StaleStateError
from .model import State


class StateStore:
    """Single-writer container holding the authoritative State.

    Readers get the current State object; writers build a complete new State
    and swap it in with a version check so a computation based on an older
    read cannot clobber a newer write.
    """

    def __init__(self, initial_state: State):
        self._state = initial_state
        self._version = 0
        self._lock = threading.Lock()

    @property
    def version(self) -> int:
        return self._version

    def read(self) -> Tuple[State, int]:
        """Return the current state together with its version."""
        with self._lock:
            return self._state, self._version

    @property
    def state(self) -> State:
        return self._state

    def replace(self, new_state: State, expected_version: int) -> int:
        """Atomically swap in new_state if the store is still at expected_version."""
        with self._lock:
            if expected_version != self._version:
                raise StaleStateError(
                    f"State changed from version {expected_version} to {self._version}")
            self._state = new_state
            self._version += 1
            return self._version
