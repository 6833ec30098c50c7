"""
ovas/base/prefs.py

Purpose:
    The flat preference set a scan runs with. Filled once at start-up
    (built-in defaults, then the configuration file, then the ingested scan
    configuration) and read for the rest of the scan.

Semantics:
    - Keys are unique strings, values are strings, last writer wins.
    - A missing configuration file is not an error; the defaults stand.
    - ScanLimits derives the numeric scheduling limits from the preferences,
      falling back to fixed defaults for absent, non-numeric or non-positive
      values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from .config import KB_PATH_DEFAULT, OvasConfig

logger = logging.getLogger(__name__)


def default_preferences(config: Optional[OvasConfig] = None) -> Dict[str, str]:
    """
    Built-in preference defaults.

    Values are strings; empty options are "" rather than missing so that a
    dump shows every known option.
    """
    nvt_dir = str(config.paths.nvt_dir) if config else "/var/lib/openvas/plugins"
    db_address = config.kb.db_address if config else KB_PATH_DEFAULT
    plugins_timeout = config.scan.plugins_timeout if config else 320
    scanner_timeout = config.scan.scanner_plugins_timeout if config else 36000

    return {
        "plugins_folder": nvt_dir,
        "include_folders": nvt_dir,
        "plugins_timeout": str(plugins_timeout),
        "scanner_plugins_timeout": str(scanner_timeout),
        "db_address": db_address,
        "max_hosts": "30",
        "max_checks": "10",
        "cgi_path": "/cgi-bin:/scripts",
        "checks_read_timeout": "5",
        "non_simult_ports": "139, 445, 3389, Services/irc",
        "open_sock_max_attempts": "5",
        "timeout_retry": "3",
        "time_between_request": "0",
        "unscanned_closed": "yes",
        "unscanned_closed_udp": "yes",
        "expand_vhosts": "yes",
        "test_empty_vhost": "no",
        "report_host_details": "yes",
        "nasl_no_signature_check": "yes",
    }


class PreferenceStore:
    """Process-local str -> str preference mapping."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._prefs: Dict[str, str] = dict(initial or {})

    def set(self, key: str, value: str) -> None:
        self._prefs[key] = value

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._prefs.get(key, default)

    def update(self, values: Mapping[str, str]) -> None:
        self._prefs.update(values)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._prefs)

    def apply_defaults(self, config: Optional[OvasConfig] = None) -> None:
        self.update(default_preferences(config))

    def load_file(self, path: Union[str, Path]) -> int:
        """
        Read "key = value" lines from an openvas.conf style file.

        Blank lines and lines starting with '#' are skipped, as are lines
        without '='. Returns the number of preferences read.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"Config file {path} not found, using defaults")
            return 0
        except OSError as exc:
            logger.warning(f"Could not read config file {path}: {exc}")
            return 0

        count = 0
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                logger.warning(f"{path}:{lineno}: ignoring line without '='")
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            if not key:
                continue
            self._prefs[key] = value.strip()
            count += 1

        logger.debug(f"Loaded {count} preferences from {path}")
        return count

    def dump(self) -> str:
        """Render as sorted "key = value" lines (for --cfg-specs)."""
        return "\n".join(f"{key} = {value}" for key, value in sorted(self._prefs.items()))

    def __contains__(self, key: object) -> bool:
        return key in self._prefs

    def __getitem__(self, key: str) -> str:
        return self._prefs[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._prefs)

    def __len__(self) -> int:
        return len(self._prefs)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._prefs.items())


@dataclass(frozen=True)
class ScanLimits:
    max_hosts: int = 15
    max_checks: int = 10
    max_sysload: int = 0
    min_free_mem: int = 0

    @classmethod
    def from_preferences(cls, prefs: PreferenceStore) -> "ScanLimits":
        def positive(key: str, default: int) -> int:
            raw = prefs.get(key)
            if raw is None:
                return default
            try:
                value = int(raw.strip())
            except ValueError:
                logger.warning(f"Preference {key}={raw!r} is not a number, using {default}")
                return default
            return value if value > 0 else default

        return cls(
            max_hosts=positive("max_hosts", cls.max_hosts),
            max_checks=positive("max_checks", cls.max_checks),
            max_sysload=positive("max_sysload", cls.max_sysload),
            min_free_mem=positive("min_free_mem", cls.min_free_mem),
        )
