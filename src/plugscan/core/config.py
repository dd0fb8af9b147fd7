"""Configuration models and loaders for :mod:`plugscan`."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
import os
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, field_validator, model_validator

from plugscan.resources import read_resource_text

DEFAULTS_RESOURCE_NAME = "plugscan.defaults.toml"
USER_CONFIG_FILENAME = "plugscan.toml"

ENV_CONFIG = "PLUGSCAN_CONFIG"
ENV_LOG_LEVEL = "PLUGSCAN_LOG_LEVEL"
ENV_PACKAGES = "PLUGSCAN_PACKAGES"
ENV_RECURSIVE = "PLUGSCAN_RECURSIVE"
ENV_MAX_WORKERS = "PLUGSCAN_MAX_WORKERS"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _normalize_suffixes(values: Any) -> tuple[str, ...]:
    if isinstance(values, str):
        values = (values,)
    normalized: list[str] = []
    for value in values or ():
        text = str(value).strip().lower()
        if not text:
            continue
        if not text.startswith("."):
            text = f".{text}"
        normalized.append(text)
    return tuple(dict.fromkeys(normalized))


class ResolverSettings(BaseModel):
    """Settings steering how packages are located and walked."""

    recursive: bool = Field(
        default=False,
        description="Descend into sub-packages below the requested package.",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        description="Resource locations walked concurrently (1 = sequential).",
    )
    module_suffixes: tuple[str, ...] = Field(
        default=(".py", ".pyc"),
        description="Entry suffixes treated as importable modules.",
    )
    archive_extensions: tuple[str, ...] = Field(
        default=(
            ".zip",
            ".whl",
            ".egg",
            ".pyz",
            ".jar",
            ".war",
            ".ear",
            ".sar",
        ),
        description="File extensions classified as zip-based code archives.",
    )
    exclude: tuple[str, ...] = Field(
        default=("__pycache__/",),
        description="Gitignore-style patterns for entries never imported.",
    )

    model_config = {"frozen": True}

    @field_validator("module_suffixes", "archive_extensions", mode="before")
    @classmethod
    def _coerce_suffixes(cls, value: Any) -> tuple[str, ...]:
        return _normalize_suffixes(value)

    @field_validator("exclude", mode="before")
    @classmethod
    def _coerce_patterns(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            value = (value,)
        return tuple(
            dict.fromkeys(str(item).strip() for item in value or () if item)
        )

    @model_validator(mode="after")
    def _require_suffixes(self) -> "ResolverSettings":
        if not self.module_suffixes:
            raise ValueError("At least one module suffix is required.")
        return self


class AppConfig(BaseModel):
    """Root configuration for the :mod:`plugscan` application."""

    log_level: str = Field(
        default="INFO",
        description="Threshold for console and file log output.",
    )
    log_dir: Path | None = Field(
        default=None,
        description="Directory receiving the rotating JSON log file.",
    )
    packages: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Packages scanned when none are given explicitly.",
    )
    search_path: tuple[Path, ...] = Field(
        default_factory=tuple,
        description="Extra directories or archives placed before sys.path.",
    )
    resolver: ResolverSettings = Field(
        default_factory=ResolverSettings,
        description="Package resolver settings.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator("packages", mode="before")
    @classmethod
    def _coerce_packages(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        return tuple(
            dict.fromkeys(
                str(item).strip() for item in value if str(item).strip()
            )
        )

    @field_validator("log_dir", mode="before")
    @classmethod
    def _coerce_log_dir(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _post_process(self) -> "AppConfig":
        object.__setattr__(self, "log_level", self.log_level.upper())
        if self.log_dir is not None:
            object.__setattr__(self, "log_dir", self.log_dir.expanduser())
        object.__setattr__(
            self,
            "search_path",
            tuple(path.expanduser() for path in self.search_path),
        )
        return self


def read_packaged_defaults_text() -> str:
    """Return ``plugscan.defaults.toml`` exactly as shipped.

    Example:
        >>> read_packaged_defaults_text().startswith("#")
        True
    """

    return read_resource_text(DEFAULTS_RESOURCE_NAME)


def load_packaged_defaults() -> dict[str, Any]:
    """Parse the shipped defaults into nested dictionaries.

    Example:
        >>> load_packaged_defaults()["resolver"]["recursive"]
        False
    """

    return tomllib.loads(read_packaged_defaults_text())


def load_user_config(path: Path) -> dict[str, Any]:
    """Parse a user ``plugscan.toml`` file.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
    """

    with path.open("rb") as handle:
        return tomllib.load(handle)


def _parse_bool(raw: str, *, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Translate ``PLUGSCAN_*`` environment variables into a config layer.

    Example:
        >>> env_overrides({"PLUGSCAN_LOG_LEVEL": "debug"})
        {'log_level': 'debug'}
    """

    env = os.environ if environ is None else environ
    layer: dict[str, Any] = {}
    resolver: dict[str, Any] = {}

    if env.get(ENV_LOG_LEVEL):
        layer["log_level"] = env[ENV_LOG_LEVEL]
    if env.get(ENV_PACKAGES):
        layer["packages"] = env[ENV_PACKAGES]
    if env.get(ENV_RECURSIVE):
        resolver["recursive"] = _parse_bool(
            env[ENV_RECURSIVE],
            name=ENV_RECURSIVE,
        )
    if env.get(ENV_MAX_WORKERS):
        resolver["max_workers"] = int(env[ENV_MAX_WORKERS])

    if resolver:
        layer["resolver"] = resolver
    return layer


def _deep_merge(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` applied; nested tables merge key by key."""

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MappingABC)
            and isinstance(value, MappingABC)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Merge the configuration layers, later layers winning, and validate them.

    Args:
        defaults: Parsed ``plugscan.defaults.toml``.
        user_config: Parsed user ``plugscan.toml`` content.
        env_config: Layer built by :func:`env_overrides`.
        cli_overrides: Layer built from command-line flags.

    Returns:
        The effective :class:`AppConfig`.

    Raises:
        TypeError: If the resolver section is not a table.
    """

    stack = dict(defaults)
    for layer in (user_config, env_config, cli_overrides):
        if layer:
            stack = _deep_merge(stack, layer)

    resolver_raw = stack.pop("resolver", None)
    if isinstance(resolver_raw, ResolverSettings):
        resolver = resolver_raw
    elif isinstance(resolver_raw, MappingABC):
        resolver = ResolverSettings(**resolver_raw)
    elif resolver_raw is None:
        resolver = ResolverSettings()
    else:
        raise TypeError(
            f"Unsupported resolver configuration payload: {resolver_raw!r}"
        )
    stack["resolver"] = resolver

    return AppConfig(**stack)


def resolve_config_path(
    explicit: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> Path | None:
    """Return the user configuration file to load, if any.

    An explicit path wins, then ``PLUGSCAN_CONFIG``, then ``plugscan.toml`` in
    the working directory when present.
    """

    env = os.environ if environ is None else environ
    if explicit is not None:
        return explicit.expanduser()
    if env.get(ENV_CONFIG):
        return Path(env[ENV_CONFIG]).expanduser()
    candidate = (cwd or Path.cwd()) / USER_CONFIG_FILENAME
    if candidate.is_file():
        return candidate
    return None


def load_app_config(
    *,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Build the effective configuration from every layer."""

    path = resolve_config_path(config_path, environ=environ)
    user_config = load_user_config(path) if path is not None else None
    return load_config(
        defaults=load_packaged_defaults(),
        user_config=user_config,
        env_config=env_overrides(environ),
        cli_overrides=cli_overrides,
    )


def render_user_config(
    config: AppConfig,
    *,
    include_defaults: bool = True,
) -> str:
    """Render a ``plugscan.toml`` document for users to customize."""

    document = tomlkit.document()

    if include_defaults:
        document.add(tomlkit.comment("Generated by plugscan config"))
        document.add(
            tomlkit.comment(
                "Precedence: CLI flags > env vars > plugscan.toml > defaults"
            )
        )
        document.add(tomlkit.comment("Environment overrides:"))
        document.add(tomlkit.comment(f"  {ENV_LOG_LEVEL}=info"))
        document.add(tomlkit.comment(f"  {ENV_PACKAGES}=acme.plugins,other"))
        document.add(tomlkit.comment(f"  {ENV_RECURSIVE}=true"))
        document.add(tomlkit.comment(f"  {ENV_MAX_WORKERS}=4"))
        document.add(tomlkit.nl())

    document["log_level"] = config.log_level
    if config.log_dir is not None:
        document["log_dir"] = str(config.log_dir)
    document["packages"] = list(config.packages)
    document["search_path"] = [str(path) for path in config.search_path]

    resolver_table = tomlkit.table()
    resolver_table["recursive"] = config.resolver.recursive
    resolver_table["max_workers"] = config.resolver.max_workers
    resolver_table["module_suffixes"] = list(config.resolver.module_suffixes)
    resolver_table["archive_extensions"] = list(
        config.resolver.archive_extensions
    )
    resolver_table["exclude"] = list(config.resolver.exclude)
    document["resolver"] = resolver_table

    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "ResolverSettings",
    "DEFAULTS_RESOURCE_NAME",
    "USER_CONFIG_FILENAME",
    "env_overrides",
    "load_app_config",
    "load_config",
    "load_packaged_defaults",
    "load_user_config",
    "read_packaged_defaults_text",
    "render_user_config",
    "resolve_config_path",
]
