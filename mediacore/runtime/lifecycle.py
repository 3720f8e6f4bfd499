"""
Creation, staged initialisation, cleanup and destruction of engine instances.

Initialisation runs twelve ordered stages.  Each stage registers the release of
what it acquired on a :class:`contextlib.ExitStack`; a failing stage returns a
result code and the stack unwinds every prior stage in reverse order.  Only a
fully initialised instance commits the stack and becomes live.
"""

from __future__ import annotations

import functools
import logging
import os
import sys
from contextlib import ExitStack
from enum import Enum
from typing import IO, Callable, List, Optional, Sequence

from ..config import ConfigGate
from ..errors import (
    ConfigError,
    DaemonizeError,
    ModuleLoadError,
    NotSupported,
    PlaylistInitError,
    ResourceError,
)
from ..hotkeys import hotkey_snapshot
from ..instance import EngineInstance
from ..interfaces.supervisor import InterfaceSupervisor, split_interface_list
from ..ipc.coordinator import HandoffComplete, SingleInstanceCoordinator
from ..ipc.protocol import CHANNEL_NAME
from ..ipc.transport import Transport
from ..modules.memcpy import PORTABLE_STRATEGY
from ..modules.registry import ModuleRegistry
from ..playlist import PlaylistService
from ..reports import (
    help_report,
    list_report,
    long_help_report,
    module_help_report,
    version_report,
    write_report,
)
from ..stats import TimerCollection
from ..utils.paths import default_config_path, expand_config_path, home_dir, user_dir
from ..workitems import WorkItem, normalise_reference, parse_targets
from .cpu import apply_feature_masks, describe
from .daemon import daemonize, remove_pidfile, write_pidfile
from .state import GlobalRuntimeState, shared_state

LOG = logging.getLogger(__name__)

ENV_VERBOSE_VAR = "MEDIACORE_VERBOSE"
EXIT_HANDOFF = 0


class InitResult(Enum):
    SUCCESS = "success"
    EXIT_SUCCESS = "exit-success"
    EXIT_FAILURE = "exit-failure"
    GENERIC_FAILURE = "generic-failure"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    InitResult.SUCCESS: 0,
    InitResult.EXIT_SUCCESS: 0,
    InitResult.EXIT_FAILURE: 1,
    InitResult.GENERIC_FAILURE: 2,
}

RegistryFactory = Callable[[GlobalRuntimeState], ModuleRegistry]
PlaylistFactory = Callable[[EngineInstance], Optional[PlaylistService]]


def _has_display() -> bool:
    return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))


class InstanceLifecycleManager:
    """
    Create, Init, Cleanup and Destroy for engine instances sharing one state.

    Every collaborator that touches the operating system is injectable:
    ``transport`` carries the single-instance protocol (``None`` disables
    coordination), ``daemonizer`` detaches the process and ``exit_process``
    terminates it after a handoff.
    """

    def __init__(
        self,
        state: Optional[GlobalRuntimeState] = None,
        *,
        transport: Optional[Transport] = None,
        channel: str = CHANNEL_NAME,
        registry_factory: Optional[RegistryFactory] = None,
        playlist_factory: Optional[PlaylistFactory] = None,
        daemonizer: Callable[[], None] = daemonize,
        exit_process: Callable[[int], object] = sys.exit,
        report_stream: Optional[IO[str]] = None,
        allocate: Callable[[GlobalRuntimeState, str], EngineInstance] = EngineInstance,
    ) -> None:
        self.state = state if state is not None else shared_state()
        self.transport = transport
        self.channel = channel
        self._registry_factory = registry_factory or ModuleRegistry
        self._playlist_factory = playlist_factory or PlaylistService.create
        self._daemonizer = daemonizer
        self._exit_process = exit_process
        self._report_stream = report_stream
        self._allocate = allocate

    # ------------------------------------------------------------------ create

    def create(self, name: str = "mediacore") -> EngineInstance:
        """
        Allocate an instance and take a reference on the global state.
        """

        self.state.acquire()
        try:
            instance = self._allocate(self.state, name)
        except Exception as exc:
            self.state.release()
            LOG.error("Cannot allocate instance '%s': %s", name, exc)
            raise ResourceError(f"cannot allocate instance '{name}'") from exc

        raw = os.environ.get(ENV_VERBOSE_VAR)
        if raw:
            try:
                instance.set_verbosity(int(raw))
            except ValueError:
                LOG.warning("Ignoring non-numeric %s=%r", ENV_VERBOSE_VAR, raw)
        else:
            instance.set_verbosity(instance.verbose)
        LOG.debug("Created instance %r", instance)
        return instance

    # ------------------------------------------------------------------ init

    def init(self, instance: EngineInstance, argv: Sequence[str] = ()) -> InitResult:
        """
        Run the initialisation stages on ``instance``.

        ``argv`` excludes the program name.  On any result other than
        :attr:`InitResult.SUCCESS` everything acquired here has been released
        again.  When the targets were handed to another instance the process
        exits and this call does not return.
        """

        if instance.destroyed:
            raise ResourceError("cannot initialise a destroyed instance")
        if instance.live:
            raise ResourceError("instance is already initialised")

        with ExitStack() as stack:
            try:
                result = self._run_stages(instance, list(argv), stack)
            except HandoffComplete as done:
                handoff = done
            else:
                if result is InitResult.SUCCESS:
                    stack.pop_all()
                    instance.live = True
                    instance.cleaned = False
                    instance.logger.debug("Instance initialised")
                return result

        self._finish_handoff(instance, handoff)
        raise SystemExit(EXIT_HANDOFF)

    def _finish_handoff(self, instance: EngineInstance, done: HandoffComplete) -> None:
        if done.failed:
            LOG.warning("Handoff aborted after %d item(s), exiting anyway", done.delivered)
        else:
            LOG.info("Handed %d item(s) to the running instance", done.delivered)
        self.destroy(instance)
        self._exit_process(EXIT_HANDOFF)

    def _report(self, text: str) -> None:
        write_report(self._report_stream or sys.stdout, text)

    def _run_stages(self, instance: EngineInstance, argv: List[str], stack: ExitStack) -> InitResult:
        config = instance.config
        log = instance.logger

        # 1. command line, leniently: module options are not known yet
        try:
            config.load_command_line(argv, ignore_unknown=True)
        except ConfigError as exc:
            log.error("Invalid command line: %s", exc)
            return InitResult.EXIT_FAILURE
        stack.callback(config.reset_all)
        if config.get("verbose") is not None:
            instance.set_verbosity(int(config.get("verbose")))

        if config.get_bool("help"):
            self._report(help_report(config, advanced=config.get_bool("advanced")))
            return InitResult.EXIT_SUCCESS
        if config.get_bool("version"):
            self._report(version_report())
            return InitResult.EXIT_SUCCESS

        # 2. paths
        instance.home_dir = home_dir()
        instance.user_dir = user_dir(instance.home_dir) or instance.home_dir
        stack.callback(self._forget_paths, instance)
        config_path = config.get_str("config") or default_config_path(instance.user_dir)
        instance.config_path = expand_config_path(config_path, instance.user_dir)
        config.path = instance.config_path
        log.debug("Configuration file is %s", instance.config_path)

        # 3. module bank
        registry = self._registry_factory(instance.state)
        try:
            registry.init_bank()
        except ModuleLoadError as exc:
            log.error("Module bank initialisation failed: %s", exc)
            return InitResult.GENERIC_FAILURE
        instance.registry = registry
        stack.callback(self._release_registry, instance)
        if config.get_bool("reset-plugins-cache"):
            registry.mark_cache_for_rebuild()

        # 4. daemon mode
        if config.get_bool("daemon") and not instance.state.daemon:
            result = self._daemonize(instance)
            if result is not None:
                return result

        # 5. modules
        try:
            builtins = registry.load_builtins()
            plugins = registry.load_plugins(config.get_str("plugin-path") or None, cache_dir=instance.user_dir)
        except ModuleLoadError as exc:
            log.error("Module loading failed: %s", exc)
            return InitResult.GENERIC_FAILURE
        log.debug("Module bank holds %d builtin and %d dynamic modules", builtins, plugins)

        advanced = config.get_bool("advanced")
        if config.get_str("module"):
            self._report(module_help_report(config, registry, config.get_str("module"), advanced=advanced))
            return InitResult.EXIT_SUCCESS
        if config.get_bool("longhelp"):
            self._report(long_help_report(config, registry, advanced=advanced))
            return InitResult.EXIT_SUCCESS
        if config.get_bool("list"):
            self._report(list_report(registry, verbose=instance.verbose > 0))
            return InitResult.EXIT_SUCCESS

        # 6. configuration file and strict command line
        registry.register_options(config)
        result = self._apply_configuration(instance, config, argv)
        if result is not None:
            return result
        token = config.watch(instance._on_config_change)
        stack.callback(config.unwatch, token)
        if instance.messages is not None:
            instance.messages.flush()

        # 7. single instance
        if self.transport is not None:
            self._coordinate(instance, config, stack)

        # 8. cpu
        instance.cpu = apply_feature_masks(instance.state.cpu, config.get_bool)
        log.debug("CPU has capabilities %s", describe(instance.cpu))

        # 9. copy strategy, statistics and key bindings
        handle = registry.need("memcpy", "$memcpy", config=config, cpu=instance.cpu)
        if handle is None:
            log.debug("%s", NotSupported("no accelerated copy strategy, using the portable one"))
            instance.copy_strategy = PORTABLE_STRATEGY
        else:
            instance.copy_module = handle
            instance.copy_strategy = handle.obj
            stack.callback(self._release_copy_module, instance)
        log.debug("Using copy strategy '%s'", instance.copy_strategy.name)
        instance.timers = TimerCollection(enabled=config.get_bool("stats"))
        instance.hotkeys = hotkey_snapshot()
        stack.callback(setattr, instance, "hotkeys", None)

        # 10. playlist
        try:
            playlist = self._playlist_factory(instance)
        except PlaylistInitError as exc:
            log.error("Playlist initialization failed: %s", exc)
            return InitResult.GENERIC_FAILURE
        if playlist is None:
            log.error("Playlist initialization failed")
            return InitResult.GENERIC_FAILURE
        instance.playlist = playlist
        stack.callback(self._destroy_playlist, instance)
        discovery = config.get_str("services-discovery")
        if discovery:
            playlist.add_service_discovery(discovery)

        # 11. interfaces
        instance.interfaces = InterfaceSupervisor(instance)
        stack.callback(self._stop_interfaces, instance)
        self._start_default_interfaces(instance, config)

        # 12. targets
        for item in parse_targets(config.targets):
            playlist.add_target(item, position=0, source="command-line")
        target = config.get_str("open")
        if target:
            playlist.add_target(WorkItem(reference=normalise_reference(target)), position=0, source="open")

        return InitResult.SUCCESS

    # ------------------------------------------------------------------ stage helpers

    def _daemonize(self, instance: EngineInstance) -> Optional[InitResult]:
        LOG.debug("Detaching from the terminal")
        try:
            self._daemonizer()
        except DaemonizeError as exc:
            LOG.error("Unable to enter daemon mode: %s", exc)
            return InitResult.EXIT_FAILURE
        instance.state.mark_daemon()

        pidfile = instance.config.get_str("pidfile")
        if pidfile and write_pidfile(pidfile):
            instance.pidfile = pidfile
            instance.state.register_teardown(functools.partial(remove_pidfile, pidfile))
        return None

    def _apply_configuration(
        self,
        instance: EngineInstance,
        config: ConfigGate,
        argv: List[str],
    ) -> Optional[InitResult]:
        try:
            if config.get_bool("reset-config"):
                config.reset_all()
                config.load_command_line(argv)
                config.save(merge=False)
            if config.get_bool("save-config"):
                config.load_config_file()
                config.load_command_line(argv)
                config.save()
            config.load_config_file()
        except ConfigError as exc:
            instance.logger.error("Configuration failed: %s", exc)
            return InitResult.GENERIC_FAILURE

        try:
            config.load_command_line(argv)
        except ConfigError as exc:
            instance.logger.error("Invalid command line: %s", exc)
            return InitResult.EXIT_FAILURE

        verbose = instance.verbose
        if config.get("verbose") is not None:
            verbose = int(config.get("verbose"))
        if config.get_bool("quiet"):
            verbose = -1
        instance.set_verbosity(verbose)
        instance.color = config.get_bool("color") and sys.stderr.isatty()
        return None

    def _coordinate(self, instance: EngineInstance, config: ConfigGate, stack: ExitStack) -> None:
        # parse_targets scans right to left; handoff sends left to right
        items = list(reversed(parse_targets(config.targets)))
        target = config.get_str("open")
        if target:
            items.insert(0, WorkItem(reference=normalise_reference(target)))
        coordinator = SingleInstanceCoordinator(self.transport, channel=self.channel)
        outcome = coordinator.run(
            instance,
            items,
            one_instance=config.get_bool("one-instance"),
            play=not config.get_bool("playlist-enqueue"),
        )
        instance.logger.debug("Single instance coordination: %s", outcome.value)
        if coordinator.claim is not None:
            instance.ipc_claim = coordinator.claim
            stack.callback(self._release_claim, instance)

    def _start_default_interfaces(self, instance: EngineInstance, config: ConfigGate) -> None:
        for name in split_interface_list(config.get_str("extraintf"), config.get_str("control")):
            instance.logger.info("Adding extra interface '%s'", name)
            self.add_interface(instance, name)

        self.add_interface(instance, "hotkeys")
        if config.get_bool("disable-screensaver") and _has_display():
            self.add_interface(instance, "screensaver")
        if config.get_bool("file-logging"):
            self.add_interface(instance, "logger")
        if config.get_bool("syslog"):
            self.add_interface(instance, "logger", options=["logmode=syslog"])
        if config.get_bool("show-intf"):
            self.add_interface(instance, "showintf")

    # ------------------------------------------------------------------ interfaces

    def add_interface(
        self,
        instance: EngineInstance,
        name: Optional[str] = None,
        *,
        blocking: bool = False,
        autoplay: bool = False,
        options: Sequence[str] = (),
    ) -> InitResult:
        """
        Start an interface module on ``instance``.

        ``None`` selects the configured main interface.  A blocking interface
        runs on the calling thread until it is stopped.
        """

        if instance.interfaces is None or instance.destroyed:
            LOG.error("Cannot add interface '%s' to an uninitialised instance", name)
            return InitResult.GENERIC_FAILURE
        started = instance.interfaces.start(name, blocking=blocking, autoplay=autoplay, options=options)
        return InitResult.SUCCESS if started else InitResult.GENERIC_FAILURE

    # ------------------------------------------------------------------ cleanup / destroy

    def cleanup(self, instance: EngineInstance) -> None:
        """
        Stop interfaces, destroy the playlist, outputs, timers and announcers.
        """

        if instance.cleaned:
            return
        instance.cleaned = True
        instance.live = False

        self._stop_interfaces(instance)
        self._destroy_playlist(instance)

        outputs = list(instance.outputs)
        instance.outputs.clear()
        for sink in outputs:
            sink.destroy()

        if instance.timers.enabled:
            instance.timers.dump_all(instance.logger)
        instance.timers.clean()

        handlers = list(instance.announce_handlers)
        instance.announce_handlers.clear()
        for handler in handlers:
            handler.destroy()
        LOG.debug("Instance %r cleaned up", instance)

    def destroy(self, instance: EngineInstance, *, release_reference: bool = False) -> None:
        """
        Release what the instance still owns and drop its global reference.

        Destroying an instance twice is a no-op.
        """

        if instance.destroyed:
            LOG.debug("Instance %r is already destroyed", instance)
            return
        if instance.live and not instance.cleaned:
            self.cleanup(instance)
        instance.destroyed = True
        instance.live = False

        self._release_copy_module(instance)
        self._release_claim(instance)
        self._release_registry(instance)
        self._forget_paths(instance)
        instance.hotkeys = None

        remaining = instance.state.release()
        LOG.debug("Instance %r destroyed, %d reference(s) left on the runtime", instance, remaining)

        if instance.messages is not None:
            instance.messages.close()
            instance.messages = None
        if release_reference:
            instance.release_reference()

    # ------------------------------------------------------------------ release helpers

    @staticmethod
    def _forget_paths(instance: EngineInstance) -> None:
        instance.home_dir = None
        instance.user_dir = None
        instance.config_path = None

    @staticmethod
    def _release_registry(instance: EngineInstance) -> None:
        registry = instance.registry
        if registry is None:
            return
        instance.registry = None
        registry.end_bank()

    @staticmethod
    def _release_copy_module(instance: EngineInstance) -> None:
        handle = instance.copy_module
        if handle is None:
            return
        instance.copy_module = None
        instance.copy_strategy = PORTABLE_STRATEGY
        if instance.registry is not None:
            instance.registry.unneed(handle)

    @staticmethod
    def _release_claim(instance: EngineInstance) -> None:
        claim = instance.ipc_claim
        if claim is None:
            return
        instance.ipc_claim = None
        claim.release()

    @staticmethod
    def _stop_interfaces(instance: EngineInstance) -> None:
        if instance.interfaces is None:
            return
        count = instance.interfaces.stop_all()
        if count:
            LOG.debug("Stopped %d interface(s)", count)

    @staticmethod
    def _destroy_playlist(instance: EngineInstance) -> None:
        playlist = instance.playlist
        if playlist is None:
            return
        instance.playlist = None
        playlist.destroy()
