"""Shared sync parameters state for ControlServer."""

import copy
import dataclasses
import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)


class SyncParametersCell:
    """
    Holds the current sync parameters value.

    The owner replaces the value with :meth:`set`; connection handlers take
    a reference with :meth:`get`. Values are swapped whole under a lock and
    never mutated in place, so a reader always gets a complete value that
    was stored at some point.
    """

    def __init__(self, value: Any):
        self._lock = threading.Lock()
        self._value = self._freeze(value)
        self._generation = 0

    @staticmethod
    def _is_mutable(value: Any) -> bool:
        """Containers and non-frozen dataclass instances can change under readers."""
        if isinstance(value, (dict, list)):
            return True
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return not value.__dataclass_params__.frozen
        return False

    @classmethod
    def _freeze(cls, value: Any) -> Any:
        """Detach mutable values from the caller so later edits stay invisible."""
        if value is None:
            raise ValueError("sync parameters must not be None")
        if not cls._is_mutable(value):
            return value
        try:
            return copy.deepcopy(value)
        except (TypeError, copy.Error) as e:
            # Stored as given; the owner must not modify it after set()
            logger.warning(f"Sync parameters of type {type(value).__name__} cannot be copied ({e}); storing a shared reference")
            return value

    def get(self) -> Any:
        """Get the current snapshot."""
        with self._lock:
            value = self._value
        # Stored mutable values are never handed out, only copies of them
        if self._is_mutable(value):
            try:
                return copy.deepcopy(value)
            except (TypeError, copy.Error):
                # Uncopyable values were reported when stored
                return value
        return value

    def set(self, value: Any) -> int:
        """Replace the current snapshot and return its generation number."""
        frozen = self._freeze(value)
        with self._lock:
            self._value = frozen
            self._generation += 1
            generation = self._generation
        logger.debug(f"Sync parameters updated (generation {generation})")
        return generation

    @property
    def generation(self) -> int:
        """Number of updates applied since construction."""
        with self._lock:
            return self._generation
