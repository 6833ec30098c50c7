"""
ovas/engine/lifecycle.py

Purpose:
    Runs one scan end to end (the start invocation) and stops a running scan
    from a separate, short-lived process (the stop invocation).

States:
    start: IDLE -> PREFERENCES_LOADED -> PROCESS_GROUP_LAUNCHED -> RUNNING
           -> TERMINATED
    stop:  IDLE -> STOP_REQUESTED -> SIGNALED | NO_OP

Semantics:
    - Without preferences a scan must not run: ingestion or transport
      failures abort the start path.
    - The whole scan is one process group led by the start process. Its pid
      is registered as "internal/<scan-id>/internal/ovas_pid", next to the
      scan marker "internal/<scan-id>", and both are removed when the scan
      ends.
    - The stop path only reads the store. An unknown scan, a non-positive
      pid or a pid that no longer exists are no-ops, never errors.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import redis

from ovas.base.config import OvasConfig
from ovas.base.prefs import PreferenceStore, ScanLimits
from ovas.data.kb import KnowledgeBase, connect, scan_namespace
from ovas.data.messaging import MessageBus, ScanConfigFetcher
from ovas.errors import KnowledgeBaseError, MalformedConfiguration, OvasError, ScanUnknown
from ovas.toolkit.builtins import ScriptBuiltins
from .ingest import PreferenceIngestor
from .supervisor import STOP_SIGNAL, ProcessSupervisor, signal_group

logger = logging.getLogger(__name__)

PID_KEY = "internal/ovas_pid"


class ScanState(str, Enum):
    IDLE = "idle"
    PREFERENCES_LOADED = "preferences-loaded"
    PROCESS_GROUP_LAUNCHED = "process-group-launched"
    RUNNING = "running"
    TERMINATED = "terminated"


class StopOutcome(str, Enum):
    SIGNALED = "signaled"
    NO_OP = "no-op"


@dataclass
class ScanGlobals:
    scan_id: str
    pid: Optional[int] = None
    state: ScanState = ScanState.IDLE
    limits: ScanLimits = field(default_factory=ScanLimits)
    exit_code: Optional[int] = None
    stopped_by: Optional[int] = None


@dataclass
class ScanContext:
    """What the attack (the external scheduler) gets to work with."""
    globals: ScanGlobals
    prefs: PreferenceStore
    kb: KnowledgeBase
    builtins: ScriptBuiltins


AttackCallable = Callable[[ScanContext], Optional[int]]


def load_entrypoint(spec: str) -> AttackCallable:
    """Resolve "package.module:callable"."""
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise MalformedConfiguration(
            f"attack entry point {spec!r} must look like 'module:callable'"
        )
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise MalformedConfiguration(
            f"attack entry point {spec!r} cannot be loaded: {exc}"
        ) from exc
    if not callable(target):
        raise MalformedConfiguration(f"attack entry point {spec!r} is not callable")
    return target


class ScanController:
    def __init__(
        self,
        config: OvasConfig,
        prefs: Optional[PreferenceStore] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        kb_factory: Callable[..., "redis.Redis"] = connect,
        bus_factory: Callable[..., MessageBus] = MessageBus.from_uri,
    ):
        self.config = config
        self.prefs = prefs if prefs is not None else PreferenceStore()
        self.supervisor = supervisor or ProcessSupervisor(
            poll_interval=config.scan.poll_interval,
            stop_grace_seconds=config.scan.stop_grace_seconds,
        )
        self._kb_factory = kb_factory
        self._bus_factory = bus_factory
        self._kb_client = None

    # ------------------------------------------------------------------
    # shared set-up
    # ------------------------------------------------------------------

    def load_preferences(self, config_file: Optional[str] = None) -> PreferenceStore:
        """Built-in defaults, then the configuration file."""
        self.prefs.apply_defaults(self.config)
        self.prefs.load_file(config_file or self.config.paths.effective_config_file)
        return self.prefs

    def kb_client(self) -> "redis.Redis":
        if self._kb_client is None:
            address = self.prefs.get("db_address") or self.config.kb.db_address
            self._kb_client = self._kb_factory(address, self.config.kb.connect_timeout)
        return self._kb_client

    def init_messaging(self) -> Optional[MessageBus]:
        uri = self.prefs.get("mqtt_server_uri") or self.config.messaging.server_uri
        if not uri:
            logger.info("No message broker configured")
            return None
        try:
            bus = self._bus_factory(uri, self.config.kb.connect_timeout)
        except OvasError as exc:
            logger.warning(f"Failed init of message broker communication: {exc}")
            return None
        logger.info(f"Successful init of message broker communication ({uri})")
        return bus

    # ------------------------------------------------------------------
    # start path
    # ------------------------------------------------------------------

    def fetch_preferences(self, scan: ScanGlobals, bus: Optional[MessageBus]) -> None:
        # Default the director may override
        self.prefs.set("ALIVE_TEST", "2")

        fetcher = ScanConfigFetcher(
            bus,
            context=self.prefs.get("mqtt_context") or self.config.messaging.context,
            timeout=self.config.messaging.receive_timeout,
        )
        try:
            payload = fetcher.fetch(scan.scan_id)
            PreferenceIngestor(self.prefs).ingest(payload)
        except OvasError:
            logger.error(f"No preferences found for the scan {scan.scan_id}")
            raise
        finally:
            if bus is not None:
                bus.close()

        scan.limits = ScanLimits.from_preferences(self.prefs)
        scan.state = ScanState.PREFERENCES_LOADED
        logger.info(f"Preferences for scan {scan.scan_id} loaded ({scan.limits})")

    def start(self, scan_id: str, attack: Optional[AttackCallable] = None,
              config_file: Optional[str] = None) -> ScanGlobals:
        scan = ScanGlobals(scan_id=scan_id)
        self.load_preferences(config_file)
        bus = self.init_messaging()
        self.fetch_preferences(scan, bus)

        if attack is None:
            entrypoint = self.prefs.get("attack_entrypoint")
            if not entrypoint:
                raise MalformedConfiguration("no attack entry point configured")
            attack = load_entrypoint(entrypoint)

        leader = self.supervisor.become_group_leader()
        root_kb = KnowledgeBase(self.kb_client())
        scan_kb = root_kb.scoped(scan_namespace(scan_id))
        context = ScanContext(
            globals=scan,
            prefs=self.prefs,
            kb=scan_kb,
            builtins=ScriptBuiltins(kb=root_kb),
        )

        self.supervisor.install_signal_handlers()
        try:
            child = self.supervisor.launch(lambda: attack(context))
            scan.state = ScanState.PROCESS_GROUP_LAUNCHED

            scan.pid = leader
            try:
                self._register(scan_kb, leader)
            except KnowledgeBaseError:
                # an unregistered scan cannot be stopped; do not leave it running
                self.supervisor.request_stop()
                self.supervisor.wait(child)
                raise
            scan.state = ScanState.RUNNING
            logger.info(f"Scan {scan_id} running as process group {leader}")

            scan.exit_code = self.supervisor.wait(child)
            scan.stopped_by = self.supervisor.termination_signal
        finally:
            scan.state = ScanState.TERMINATED
            self._unregister(scan_kb)
            self.supervisor.restore_signal_handlers()

        if scan.stopped_by is not None:
            logger.info(f"Scan {scan_id} stopped by signal {scan.stopped_by}")
        else:
            logger.info(f"Scan {scan_id} finished with exit code {scan.exit_code}")
        return scan

    def _register(self, scan_kb: KnowledgeBase, leader: int) -> None:
        scan_kb.set_int(PID_KEY, leader)
        scan_kb.mark(ScanState.RUNNING.value)

    def _unregister(self, scan_kb: KnowledgeBase) -> None:
        try:
            scan_kb.delete(PID_KEY)
            scan_kb.delete_self()
        except KnowledgeBaseError as exc:
            logger.error(f"Could not remove the registration of {scan_kb.namespace}: {exc}")

    # ------------------------------------------------------------------
    # stop path
    # ------------------------------------------------------------------

    def stop(self, scan_id: str, config_file: Optional[str] = None) -> StopOutcome:
        """Signal the process group of a running scan, if there is one."""
        self.load_preferences(config_file)
        logger.debug(f"Stop requested for scan {scan_id}")

        scan_kb = KnowledgeBase.find(self.kb_client(), scan_namespace(scan_id))
        if scan_kb is None:
            logger.info(str(ScanUnknown(f"scan {scan_id} is unknown or already finished")))
            return StopOutcome.NO_OP

        pid = scan_kb.get_int(PID_KEY)
        # -1 is the KB "absent" value; nothing at or below 0 is ever signaled
        if pid <= 0:
            logger.info(f"Scan {scan_id} has no process group registered")
            return StopOutcome.NO_OP

        if signal_group(pid, STOP_SIGNAL):
            return StopOutcome.SIGNALED
        return StopOutcome.NO_OP
