"""Configuration loader for peertubectl.

Values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/peertubectl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PEERTUBECTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PEERTUBECTL_APP__BACKEND_PORT=9100
    export PEERTUBECTL_NETWORK__RETRIES=5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The result is exposed as immutable dataclasses.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "PEERTUBECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class AppSettings:
    """Where and how the PeerTube application is installed."""

    root: Path = Path("/var/www/peertube")
    service_user: str = "peertube"
    service_name: str = "peertube"
    current_link: str = "peertube-latest"
    subdirs: tuple[str, ...] = ("versions", "storage", "config")
    backend_host: str = "127.0.0.1"
    backend_port: int = 9000
    release_repo: str = "Chocobozzz/PeerTube"
    release_api_url: str = "https://api.github.com/repos/{repo}/releases/latest"
    download_url: str = (
        "https://github.com/{repo}/releases/download/v{version}/peertube-v{version}.zip"
    )
    yarn_bin: str = "yarn"

    @property
    def versions_dir(self) -> Path:
        """Directory holding unpacked release bundles."""
        return self.root / "versions"

    @property
    def config_dir(self) -> Path:
        """Directory holding ``production.yaml``."""
        return self.root / "config"

    @property
    def current_path(self) -> Path:
        """Symlink pointing at the active release."""
        return self.root / self.current_link

    @property
    def backend_address(self) -> str:
        """``host:port`` the application listens on."""
        return f"{self.backend_host}:{self.backend_port}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "service_user": self.service_user,
            "service_name": self.service_name,
            "current_link": self.current_link,
            "subdirs": list(self.subdirs),
            "backend_host": self.backend_host,
            "backend_port": self.backend_port,
            "release_repo": self.release_repo,
            "release_api_url": self.release_api_url,
            "download_url": self.download_url,
            "yarn_bin": self.yarn_bin,
        }


@dataclass(frozen=True)
class RuntimeSettings:
    """Node.js runtime requirements."""

    node_major: int = 20
    conflicting_packages: tuple[str, ...] = ("libnode-dev",)
    setup_url: str = "https://deb.nodesource.com/setup_{major}.x"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "node_major": self.node_major,
            "conflicting_packages": list(self.conflicting_packages),
            "setup_url": self.setup_url,
        }


@dataclass(frozen=True)
class PackageSettings:
    """OS packages and the system services they provide."""

    baseline: tuple[str, ...] = ()
    services: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"baseline": list(self.baseline), "services": list(self.services)}


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL role, database and extensions."""

    name: str = "peertube_prod"
    user: str = "peertube"
    extensions: tuple[str, ...] = ("pg_trgm", "unaccent")
    admin_user: str = "postgres"
    psql_bin: str = "psql"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "user": self.user,
            "extensions": list(self.extensions),
            "admin_user": self.admin_user,
            "psql_bin": self.psql_bin,
        }


@dataclass(frozen=True)
class NginxSettings:
    """nginx layout and site rendering options."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    site_source: str = "auto"
    client_max_body_size: str = "12G"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "nginx_bin": self.nginx_bin,
            "site_source": self.site_source,
            "client_max_body_size": self.client_max_body_size,
        }


@dataclass(frozen=True)
class TLSSettings:
    """Let's Encrypt locations and certbot invocation."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    webroot: Path = Path("/var/www/certbot")
    options_file: Path = Path("/etc/letsencrypt/options-ssl-nginx.conf")
    dhparam_file: Path = Path("/etc/letsencrypt/ssl-dhparams.pem")
    certbot_bin: str = "certbot"
    warn_expiry_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "live_dir": str(self.live_dir),
            "webroot": str(self.webroot),
            "options_file": str(self.options_file),
            "dhparam_file": str(self.dhparam_file),
            "certbot_bin": self.certbot_bin,
            "warn_expiry_days": self.warn_expiry_days,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    restart_sec: int = 10

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir),
            "systemctl_bin": self.systemctl_bin,
            "restart_sec": self.restart_sec,
        }


@dataclass(frozen=True)
class NetworkSettings:
    """Timeouts and retry policy for network-dependent steps."""

    timeout: float = 30.0
    retries: int = 3
    backoff: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout, "retries": self.retries, "backoff": self.backoff}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for peertubectl."""

    config_file: Path
    logs_dir: Path
    state_dir: Path
    templates_dir: Path
    app: AppSettings
    runtime: RuntimeSettings
    packages: PackageSettings
    database: DatabaseSettings
    nginx: NginxSettings
    tls: TLSSettings
    systemd: SystemdConfig
    network: NetworkSettings

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "state_dir": str(self.state_dir),
            "templates_dir": str(self.templates_dir),
            "app": self.app.to_dict(),
            "runtime": self.runtime.to_dict(),
            "packages": self.packages.to_dict(),
            "database": self.database.to_dict(),
            "nginx": self.nginx.to_dict(),
            "tls": self.tls.to_dict(),
            "systemd": self.systemd.to_dict(),
            "network": self.network.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/peertubectl/config.yml",
    "logs_dir": "/var/log/peertubectl",
    "state_dir": "/var/lib/peertubectl",
    "templates_dir": "/etc/peertubectl/templates",
    "app": AppSettings().to_dict(),
    "runtime": RuntimeSettings().to_dict(),
    "packages": {
        "baseline": [
            "curl",
            "sudo",
            "unzip",
            "vim",
            "gnupg",
            "apt-transport-https",
            "postgresql",
            "postgresql-contrib",
            "nginx",
            "redis-server",
            "ffmpeg",
            "g++",
            "make",
            "openssl",
            "libssl-dev",
            "python3-dev",
            "cron",
            "wget",
            "certbot",
            "jq",
        ],
        "services": ["postgresql", "redis-server", "nginx"],
    },
    "database": DatabaseSettings().to_dict(),
    "nginx": NginxSettings().to_dict(),
    "tls": TLSSettings().to_dict(),
    "systemd": SystemdConfig().to_dict(),
    "network": NetworkSettings().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], value).keys())
    for section, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}
ALLOWED_SITE_SOURCES = {"auto", "bundle", "builtin"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    site_source = str(nginx_map.get("site_source", "auto"))
    if site_source not in ALLOWED_SITE_SOURCES:
        allowed_sources = ", ".join(sorted(ALLOWED_SITE_SOURCES))
        raise ConfigError(
            f"Unsupported nginx.site_source '{site_source}'. Allowed: {allowed_sources}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    app_map = _as_dict(raw.get("app"), "app")
    backend_port = _expect_int(app_map.get("backend_port"), "app.backend_port", default=9000)
    if not 0 < backend_port < 65536:
        raise ConfigError(f"app.backend_port must be a valid TCP port. Got {backend_port}.")
    app = AppSettings(
        root=_to_path(app_map.get("root")),
        service_user=_expect_name(app_map.get("service_user"), "app.service_user"),
        service_name=_expect_name(app_map.get("service_name"), "app.service_name"),
        current_link=_expect_name(app_map.get("current_link"), "app.current_link"),
        subdirs=_as_str_tuple(app_map.get("subdirs"), "app.subdirs"),
        backend_host=_expect_name(app_map.get("backend_host"), "app.backend_host"),
        backend_port=backend_port,
        release_repo=_expect_name(app_map.get("release_repo"), "app.release_repo"),
        release_api_url=_expect_name(app_map.get("release_api_url"), "app.release_api_url"),
        download_url=_expect_name(app_map.get("download_url"), "app.download_url"),
        yarn_bin=_expect_name(app_map.get("yarn_bin"), "app.yarn_bin"),
    )

    runtime_map = _as_dict(raw.get("runtime"), "runtime")
    node_major = _expect_int(runtime_map.get("node_major"), "runtime.node_major", default=20)
    if node_major <= 0:
        raise ConfigError("runtime.node_major must be greater than zero.")
    runtime = RuntimeSettings(
        node_major=node_major,
        conflicting_packages=_as_str_tuple(
            runtime_map.get("conflicting_packages"), "runtime.conflicting_packages"
        ),
        setup_url=_expect_name(runtime_map.get("setup_url"), "runtime.setup_url"),
    )

    packages_map = _as_dict(raw.get("packages"), "packages")
    packages = PackageSettings(
        baseline=_as_str_tuple(packages_map.get("baseline"), "packages.baseline"),
        services=_as_str_tuple(packages_map.get("services"), "packages.services"),
    )

    database_map = _as_dict(raw.get("database"), "database")
    database = DatabaseSettings(
        name=_expect_name(database_map.get("name"), "database.name"),
        user=_expect_name(database_map.get("user"), "database.user"),
        extensions=_as_str_tuple(database_map.get("extensions"), "database.extensions"),
        admin_user=_expect_name(database_map.get("admin_user"), "database.admin_user"),
        psql_bin=_expect_name(database_map.get("psql_bin"), "database.psql_bin"),
    )

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxSettings(
        sites_available=_to_path(nginx_map.get("sites_available")),
        sites_enabled=_to_path(nginx_map.get("sites_enabled")),
        nginx_bin=_expect_name(nginx_map.get("nginx_bin"), "nginx.nginx_bin"),
        site_source=str(nginx_map.get("site_source", "auto")),
        client_max_body_size=_expect_name(
            nginx_map.get("client_max_body_size"), "nginx.client_max_body_size"
        ),
    )

    tls_map = _as_dict(raw.get("tls"), "tls")
    warn_expiry_days = _expect_int(
        tls_map.get("warn_expiry_days"), "tls.warn_expiry_days", default=30
    )
    if warn_expiry_days < 0:
        raise ConfigError("tls.warn_expiry_days must be non-negative.")
    tls = TLSSettings(
        live_dir=_to_path(tls_map.get("live_dir")),
        webroot=_to_path(tls_map.get("webroot")),
        options_file=_to_path(tls_map.get("options_file")),
        dhparam_file=_to_path(tls_map.get("dhparam_file")),
        certbot_bin=_expect_name(tls_map.get("certbot_bin"), "tls.certbot_bin"),
        warn_expiry_days=warn_expiry_days,
    )

    systemd_map = _as_dict(raw.get("systemd"), "systemd")
    restart_sec = _expect_int(systemd_map.get("restart_sec"), "systemd.restart_sec", default=10)
    if restart_sec < 0:
        raise ConfigError("systemd.restart_sec must be non-negative.")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_map.get("unit_dir")),
        systemctl_bin=_expect_name(systemd_map.get("systemctl_bin"), "systemd.systemctl_bin"),
        restart_sec=restart_sec,
    )

    network_map = _as_dict(raw.get("network"), "network")
    retries = _expect_int(network_map.get("retries"), "network.retries", default=3)
    if retries < 1:
        raise ConfigError("network.retries must be at least 1.")
    network = NetworkSettings(
        timeout=_expect_positive_float(network_map.get("timeout"), "network.timeout", default=30.0),
        retries=retries,
        backoff=_expect_positive_float(network_map.get("backoff"), "network.backoff", default=2.0),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        state_dir=_to_path(raw.get("state_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        app=app,
        runtime=runtime,
        packages=packages,
        database=database,
        nginx=nginx,
        tls=tls,
        systemd=systemd,
        network=network,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_str_tuple(value: object, label: str) -> tuple[str, ...]:
    if value is None:
        return ()
    items: list[str] = []
    for index, item in enumerate(_as_sequence(value, label)):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        items.append(item.strip())
    return tuple(items)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_name(value: object, label: str) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string.")
    return value.strip()


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "AppSettings",
    "ConfigError",
    "DatabaseSettings",
    "NetworkSettings",
    "NginxSettings",
    "PackageSettings",
    "RuntimeSettings",
    "SystemdConfig",
    "TLSSettings",
    "load_config",
]
