# ============================================================================
# ovas/base/config.py
# Scanner Process Configuration
# ============================================================================
#
# PURPOSE:
# Process-level settings of the scanner: where the shared knowledge base
# lives, how to reach the message broker, where configuration files are
# and how logging behaves. These are NOT scan preferences (those live in
# ovas/base/prefs.py and are ingested per scan); this is the environment the
# scanner process itself runs in.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses: one immutable section per concern
# 2. Environment variables: every field can be overridden via OVAS_*
# 3. Singleton: get_config() builds the config once per process
#
# ============================================================================

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Default unix socket of the Redis instance backing the knowledge base
KB_PATH_DEFAULT = "/run/redis/redis.sock"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    return float(raw)


# ============================================================================
# Knowledge Base Configuration
# ============================================================================
# The shared key-value store every scan process (and the stop invocation)
# talks to.

@dataclass(frozen=True)
class KBConfig:
    # Redis URL ("redis://host:6379/0", "unix:///run/redis/redis.sock")
    # or a bare unix socket path, which is what openvas.conf usually carries
    db_address: str = KB_PATH_DEFAULT

    # Seconds to wait when connecting before the store counts as unreachable
    connect_timeout: float = 5.0


# ============================================================================
# Messaging Configuration
# ============================================================================
# The publish/subscribe channel used to fetch a scan's configuration.

@dataclass(frozen=True)
class MessagingConfig:
    # Broker address; None means "not configured" and the transport is not
    # initialised unless the preferences supply mqtt_server_uri
    server_uri: Optional[str] = None

    # Topic prefix shared with the director ("<context>/scan/info", ...)
    context: str = "eulabeia"

    # Seconds to block for the scan configuration reply; None = forever
    receive_timeout: Optional[float] = None


# ============================================================================
# File Locations
# ============================================================================

@dataclass(frozen=True)
class PathsConfig:
    # System configuration directory (printed by --sysconfdir)
    sysconf_dir: Path = Path("/etc/openvas")

    # Preference file read at scan start; defaults to <sysconf_dir>/openvas.conf
    config_file: Optional[Path] = None

    # Directory holding the NVT scripts
    nvt_dir: Path = Path("/var/lib/openvas/plugins")

    # Directory for the log file
    state_dir: Path = Path("/var/log/gvm")

    @property
    def effective_config_file(self) -> Path:
        return self.config_file or self.sysconf_dir / "openvas.conf"


# ============================================================================
# Scan Process Behaviour
# ============================================================================

@dataclass(frozen=True)
class ScanConfig:
    # Seconds a forwarded termination may take before the attack child is
    # killed outright
    stop_grace_seconds: float = 10.0

    # How often the supervisor re-checks the attack child while waiting
    poll_interval: float = 0.2

    # Per-NVT timeout defaults (seconds), exported as preferences
    plugins_timeout: int = 320
    scanner_plugins_timeout: int = 36000


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    # DEBUG, INFO, WARNING or ERROR
    level: str = "INFO"

    # %(name)s is the module that logged (e.g. "ovas.toolkit.subprocess_exec")
    format: str = "%(asctime)s [%(levelname)s] %(process)d %(name)s: %(message)s"

    # Also write to <state_dir>/<file_name>, rotated by size
    file_enabled: bool = False
    file_name: str = "openvas.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass(frozen=True)
class OvasConfig:
    kb: KBConfig = field(default_factory=KBConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False

    @classmethod
    def from_env(cls) -> "OvasConfig":
        """Build a config from OVAS_* environment variables."""
        kb = KBConfig(
            db_address=os.getenv("OVAS_DB_ADDRESS", KB_PATH_DEFAULT),
            connect_timeout=float(os.getenv("OVAS_DB_CONNECT_TIMEOUT", "5")),
        )

        messaging = MessagingConfig(
            server_uri=os.getenv("OVAS_MQTT_SERVER_URI") or None,
            context=os.getenv("OVAS_MESSAGE_CONTEXT", "eulabeia"),
            receive_timeout=_env_float("OVAS_MESSAGE_TIMEOUT"),
        )

        config_file = os.getenv("OVAS_CONFIG_FILE")
        paths = PathsConfig(
            sysconf_dir=Path(os.getenv("OVAS_SYSCONF_DIR", "/etc/openvas")),
            config_file=Path(config_file) if config_file else None,
            nvt_dir=Path(os.getenv("OVAS_NVT_DIR", "/var/lib/openvas/plugins")),
            state_dir=Path(os.getenv("OVAS_STATE_DIR", "/var/log/gvm")),
        )

        scan = ScanConfig(
            stop_grace_seconds=float(os.getenv("OVAS_STOP_GRACE", "10")),
        )

        log = LogConfig(
            level=os.getenv("OVAS_LOG_LEVEL", "INFO"),
            file_enabled=_env_bool("OVAS_LOG_FILE_ENABLED", "false"),
        )

        return cls(
            kb=kb,
            messaging=messaging,
            paths=paths,
            scan=scan,
            log=log,
            debug=_env_bool("OVAS_DEBUG", "false"),
        )


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[OvasConfig] = None


def get_config() -> OvasConfig:
    """
    Get the process-wide configuration instance.

    Built from the environment on first use, then reused.
    """
    global _config
    if _config is None:
        _config = OvasConfig.from_env()
    return _config


def set_config(config: Optional[OvasConfig]) -> None:
    """Replace (or reset with None) the global configuration, mainly for tests."""
    global _config
    _config = config


def setup_logging(config: Optional[OvasConfig] = None) -> None:
    """
    Configure Python's logging system from LogConfig.

    Console output always; a size-rotated file under the state directory when
    file logging is enabled. Call once at process start.
    """
    cfg = config or get_config()
    level = "DEBUG" if cfg.debug else cfg.log.level

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        cfg.paths.state_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            cfg.paths.state_dir / cfg.log.file_name,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
