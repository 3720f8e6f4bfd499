"""
Command line entrypoint.

``mediacore [options] [targets...]`` creates one engine instance, initialises
it from the command line, runs the main interface on the calling thread until
it is asked to quit, then tears the instance down again.
"""

from __future__ import annotations

import logging
import signal
import sys
from typing import List, Optional

from .ipc.transport import UnixSocketTransport
from .runtime.lifecycle import InitResult, InstanceLifecycleManager
from .runtime.state import GlobalRuntimeState
from .utils.logging import configure_logging, level_for_verbosity

LOG = logging.getLogger(__name__)


def _install_signal_handlers(instance) -> None:
    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down...", signum)
        instance.request_quit()

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)


def run(argv: Optional[List[str]] = None, *, manager: Optional[InstanceLifecycleManager] = None) -> int:
    """
    Run one engine instance and return the process exit status.
    """

    args = list(sys.argv[1:] if argv is None else argv)
    configure_logging(level=logging.WARNING, color=sys.stderr.isatty())

    if manager is None:
        manager = InstanceLifecycleManager(GlobalRuntimeState(), transport=UnixSocketTransport())
    instance = manager.create()

    result = manager.init(instance, args)
    logging.getLogger("mediacore").setLevel(level_for_verbosity(instance.verbose))
    if result is not InitResult.SUCCESS:
        manager.destroy(instance)
        return result.exit_code

    _install_signal_handlers(instance)
    try:
        result = manager.add_interface(instance, None, blocking=True, autoplay=True)
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")
    finally:
        manager.cleanup(instance)
        manager.destroy(instance)
    return result.exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
