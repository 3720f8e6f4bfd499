"""
Process-wide runtime state shared by every engine instance.

The state is reference counted: the first :meth:`GlobalRuntimeState.acquire`
runs the one-time setup (CPU probe) and the last :meth:`GlobalRuntimeState.release`
runs the one-time teardown.  Instances receive the state object explicitly;
:func:`shared_state` only exists for callers embedding a single engine.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from .cpu import CPUCapability, probe_capabilities

LOG = logging.getLogger(__name__)

TeardownHook = Callable[[], None]

_SHARED_LOCK = threading.Lock()
_SHARED_STATE: Optional["GlobalRuntimeState"] = None


class GlobalRuntimeState:
    """
    Reference counted one-time setup/teardown guarded by a single mutex.

    Every field is mutated only while ``_lock`` is held.  Once setup has run the
    capability mask is never written again, so readers need no locking.
    """

    def __init__(self, *, probe: Callable[[], CPUCapability] = probe_capabilities) -> None:
        self._lock = threading.Lock()
        self._probe = probe
        self._refcount = 0
        self._ready = False
        self._cpu = CPUCapability.NONE
        self._daemon = False
        self._teardown_hooks: List[TeardownHook] = []
        self.module_bank: Any = None
        self.setup_count = 0
        self.teardown_count = 0

    # ------------------------------------------------------------------ properties

    @property
    def refcount(self) -> int:
        with self._lock:
            return self._refcount

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def cpu(self) -> CPUCapability:
        return self._cpu

    @property
    def daemon(self) -> bool:
        return self._daemon

    def mark_daemon(self) -> None:
        with self._lock:
            self._daemon = True

    def register_teardown(self, hook: TeardownHook) -> None:
        """
        Register a callback executed once when the last reference is released.
        """

        with self._lock:
            self._teardown_hooks.append(hook)

    # ------------------------------------------------------------------ refcount

    def acquire(self) -> int:
        with self._lock:
            self._refcount += 1
            if self._refcount == 1 and not self._ready:
                self._setup_locked()
            return self._refcount

    def release(self) -> int:
        with self._lock:
            if self._refcount <= 0:
                LOG.warning("Global runtime state released more often than acquired.")
                return 0
            self._refcount -= 1
            if self._refcount == 0:
                self._teardown_locked()
            return self._refcount

    # ------------------------------------------------------------------ helpers

    def _setup_locked(self) -> None:
        self._cpu = self._probe()
        # The module bank is created later by the registry.
        self.module_bank = None
        self._ready = True
        self.setup_count += 1
        LOG.debug("Global runtime state initialised (cpu=%s)", int(self._cpu))

    def _teardown_locked(self) -> None:
        hooks = list(reversed(self._teardown_hooks))
        self._teardown_hooks.clear()
        for hook in hooks:
            try:
                hook()
            except Exception:  # pragma: no cover - teardown must reach the end
                LOG.exception("Global teardown hook %r failed.", hook)
        self._ready = False
        self._daemon = False
        self._cpu = CPUCapability.NONE
        self.module_bank = None
        self.teardown_count += 1
        LOG.debug("Global runtime state torn down")


def shared_state() -> GlobalRuntimeState:
    """
    Return the lazily created process-wide state object.
    """

    global _SHARED_STATE
    with _SHARED_LOCK:
        if _SHARED_STATE is None:
            _SHARED_STATE = GlobalRuntimeState()
        return _SHARED_STATE
