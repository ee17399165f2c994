"""ConfigKit-backed loader for the certdesk YAML configuration.

Created once by the CLI (or the WSGI module) and fetched everywhere
else through :func:`get_config`::

    CertdeskConfig(config_file="/etc/certdesk/config.yaml", schema_file="bundled")
    get_config().settings.retry_queue.max_retries

String values of the form ``${VAR}`` or ``${VAR:-fallback}`` are taken
from the environment before the schema is applied.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from certdesk.config.settings import CertdeskSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_REF = re.compile(r"^\$\{(?P<name>[^}:]+?)(?::-(?P<fallback>.*))?\}$", re.DOTALL)
_DOTTED_CLASS = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+$")

_BUILTIN_GENERATORS = frozenset({"http"})
_CHUNK_BOUNDS = (10, 50)

log = logging.getLogger(__name__)

_instance: CertdeskConfig | None = None


def get_config() -> CertdeskConfig:
    """Return the loaded configuration, or raise ``RuntimeError`` before startup."""
    if _instance is None:
        raise RuntimeError(
            "Configuration not initialised; construct CertdeskConfig(config_file=...) first",
        )
    return _instance


class ConfigValidationError(Exception):
    """One or more configuration problems; all of them are in :attr:`errors`."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(
            "Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors),
        )


# ---------------------------------------------------------------------------
# ${VAR} substitution
# ---------------------------------------------------------------------------


def _substitute(value: str, where: str) -> str:
    match = _ENV_REF.match(value)
    if match is None:
        return value
    name = match["name"]
    if name in os.environ:
        return os.environ[name]
    if match["fallback"] is not None:
        return match["fallback"]
    raise ConfigValidationError(
        [f"{where}: environment variable '{name}' is not set and has no default"],
    )


def resolve_env_vars(data: Any, path: str = "") -> None:  # noqa: ANN401
    """Substitute environment references throughout *data*, in place."""
    if isinstance(data, dict):
        entries = [(k, f"{path}.{k}" if path else str(k)) for k in data]
    elif isinstance(data, list):
        entries = [(i, f"{path}[{i}]") for i in range(len(data))]
    else:
        return
    for key, where in entries:
        value = data[key]
        if isinstance(value, str):
            data[key] = _substitute(value, where)
        else:
            resolve_env_vars(value, where)


# ---------------------------------------------------------------------------
# Cross-field checks, one per section
# ---------------------------------------------------------------------------
#
# Each check receives the whole raw mapping and appends to the shared
# error and warning lists.


def _check_server(data: dict, errors: list[str], warnings: list[str]) -> None:
    url = (data.get("server") or {}).get("external_url", "")
    if url.endswith("/"):
        errors.append(f"server.external_url must not end with '/' (got '{url}')")


def _check_database(data: dict, errors: list[str], warnings: list[str]) -> None:
    db = data.get("database") or {}
    low, high = db.get("min_connections", 2), db.get("max_connections", 10)
    if low > high:
        errors.append(
            f"database.min_connections ({low}) exceeds database.max_connections ({high})",
        )


def _check_mail(data: dict, errors: list[str], warnings: list[str]) -> None:
    smtp = data.get("smtp") or {}
    if smtp.get("enabled"):
        errors.extend(
            f"smtp.{key} is required when smtp.enabled is true"
            for key in ("host", "from_address")
            if not smtp.get(key)
        )
    elif (data.get("notifications") or {}).get("enabled", True):
        warnings.append("smtp is disabled; notifications will be recorded but never sent")


def _check_retry_queue(data: dict, errors: list[str], warnings: list[str]) -> None:
    rq = data.get("retry_queue") or {}
    if rq.get("max_retries", 3) < 0:
        errors.append("retry_queue.max_retries must be >= 0")
    if rq.get("backoff_multiplier", 2.0) < 1:
        errors.append("retry_queue.backoff_multiplier must be >= 1")


def _check_bounce_monitor(data: dict, errors: list[str], warnings: list[str]) -> None:
    bm = data.get("bounce_monitor") or {}
    high, critical = bm.get("threshold_percent", 10.0), bm.get("critical_percent", 20.0)
    if critical < high:
        errors.append(
            f"bounce_monitor.critical_percent ({critical}) is below "
            f"bounce_monitor.threshold_percent ({high})",
        )


def _check_generation(data: dict, errors: list[str], warnings: list[str]) -> None:
    gen = data.get("generation") or {}
    http = gen.get("http") or {}
    backend = gen.get("backend", "http")

    if backend.startswith("ext:"):
        if not _DOTTED_CLASS.match(backend[4:]):
            errors.append(f"generation.backend '{backend}' is not a valid 'ext:module.Class'")
        return
    if backend not in _BUILTIN_GENERATORS:
        errors.append(
            f"generation.backend '{backend}' is unknown; use one of "
            f"{sorted(_BUILTIN_GENERATORS)} or 'ext:module.Class'",
        )
        return

    if not http.get("url"):
        errors.append("generation.http.url is required for the http backend")
    http_timeout = http.get("timeout_seconds", 30)
    overall = gen.get("timeout_seconds", 60)
    if http_timeout >= overall:
        warnings.append(
            f"generation.http.timeout_seconds ({http_timeout}) >= "
            f"generation.timeout_seconds ({overall}); slow renders surface as timeouts",
        )


def _check_bulk(data: dict, errors: list[str], warnings: list[str]) -> None:
    chunk = (data.get("bulk") or {}).get("chunk_size", 25)
    low, high = _CHUNK_BOUNDS
    if not low <= chunk <= high:
        errors.append(f"bulk.chunk_size ({chunk}) must be between {low} and {high}")


_SECTION_CHECKS = (
    _check_server,
    _check_database,
    _check_mail,
    _check_retry_queue,
    _check_bounce_monitor,
    _check_generation,
    _check_bulk,
)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class CertdeskConfig(ConfigKit):
    """certdesk configuration; the JSON schema is always the bundled one."""

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        global _instance  # noqa: PLW0603

        # ConfigKitMeta insists on a schema_file argument; it is ignored.
        super().__init__(config_file=config_file, schema_file=_SCHEMA_PATH)
        self._settings: CertdeskSettings = build_settings(self.data)
        _instance = self

    def _load(self) -> None:
        super()._load()
        resolve_env_vars(self._data)

    @property
    def settings(self) -> CertdeskSettings:
        return self._settings

    def additional_checks(self) -> None:
        """Run after the schema passes; raises with every error found at once."""
        errors: list[str] = []
        warnings: list[str] = []
        for check in _SECTION_CHECKS:
            check(self.data, errors, warnings)
        for warning in warnings:
            log.warning("Config warning: %s", warning)
        if errors:
            raise ConfigValidationError(errors)

    def reload_settings(self) -> CertdeskSettings:
        """Build fresh settings from the file on disk, leaving this instance as is."""
        import json  # noqa: PLC0415

        import yaml  # noqa: PLC0415

        path = self._config_path
        if not path.is_file():
            raise RuntimeError(f"Cannot reload: {path} no longer exists")
        text = path.read_text(encoding="utf-8")
        raw = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
        resolve_env_vars(raw)
        return build_settings(raw)

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded configuration (tests)."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        return f"<CertdeskConfig {self._config_path}>"
