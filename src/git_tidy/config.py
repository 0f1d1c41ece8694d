"""Configuration loading.

Configuration is read from four layers, lowest priority first:

1. built-in defaults
2. global file (``~/.config/git-tidy/config.toml``)
3. project file (``.git-tidy.toml`` in the repository directory)
4. command line flags

A later layer replaces the scalar settings of an earlier one. Branch names and
patterns are unioned, so a layer can add protection but never remove it.
"""

import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from fnmatch import fnmatchcase
from functools import reduce
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from git_tidy.exceptions import ConfigError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".git-tidy.toml"
DEFAULT_PROTECTED = ("master", "develop", "main")
GLOB_CHARS = "*?["

DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}
DURATION_RE = re.compile(r"(\d+)([smhdw])")


class MatcherKind(Enum):
    """How a protection entry is matched against a branch name."""

    EXACT = "exact"
    GLOB = "glob"
    REGEX = "regex"


@dataclass(frozen=True)
class Matcher:
    """A single protection entry."""

    kind: MatcherKind
    pattern: str
    source: str = field(compare=False)
    compiled: Optional[re.Pattern] = field(default=None, compare=False, repr=False)

    def matches(self, branch_name: str) -> bool:
        """Check a branch name against this entry."""
        if self.kind is MatcherKind.EXACT:
            return branch_name == self.pattern
        if self.kind is MatcherKind.GLOB:
            return fnmatchcase(branch_name, self.pattern)
        return self.compiled.search(branch_name) is not None


@dataclass(frozen=True)
class ConfigLayer:
    """Settings read from one configuration source.

    ``None`` scalars leave the value of lower layers untouched.
    """

    source: str
    protected: tuple[Matcher, ...] = ()
    keep_patterns: tuple[Matcher, ...] = ()
    merged_only: Optional[bool] = None
    older_than: Optional[timedelta] = None
    base_branch: Optional[str] = None


@dataclass(frozen=True)
class EffectiveConfig:
    """Merged policy snapshot used for every branch of a run."""

    protected: tuple[Matcher, ...] = ()
    keep_patterns: tuple[Matcher, ...] = ()
    merged_only: bool = False
    older_than: Optional[timedelta] = None
    base_branch: Optional[str] = None

    def matchers(self, kind: MatcherKind) -> tuple[Matcher, ...]:
        """Protection entries of one kind, in configuration order."""
        return tuple(m for m in self.protected if m.kind is kind)

    @property
    def protected_names(self) -> frozenset[str]:
        return frozenset(m.pattern for m in self.matchers(MatcherKind.EXACT))

    @property
    def protected_patterns(self) -> tuple[str, ...]:
        return tuple(m.pattern for m in self.matchers(MatcherKind.GLOB))

    @property
    def regex_patterns(self) -> tuple[str, ...]:
        return tuple(m.pattern for m in self.matchers(MatcherKind.REGEX))


def parse_duration(text: str, source: Optional[str] = None) -> timedelta:
    """Parse a duration such as ``30d`` or ``2w``.

    Units are s (seconds), m (minutes), h (hours), d (days) and w (weeks).

    Raises:
        ConfigError: If the text is not a non-negative integer followed by a unit,
            or if the duration reaches back past the earliest representable date
    """
    match = DURATION_RE.fullmatch(text.strip())
    if not match:
        raise ConfigError(
            f"Invalid duration '{text}': expected a number followed by s, m, h, d or w",
            source,
        )
    amount, unit = match.groups()
    try:
        duration = timedelta(**{DURATION_UNITS[unit]: int(amount)})
    except (OverflowError, ValueError) as err:
        raise ConfigError(f"Invalid duration '{text}': too large", source) from err
    # The age cutoff is computed as now - duration
    if duration > datetime.now(timezone.utc) - datetime.min.replace(tzinfo=timezone.utc):
        raise ConfigError(f"Invalid duration '{text}': too large", source)
    return duration


def _check_glob(pattern: str, source: str) -> None:
    if not pattern.strip():
        raise ConfigError("Empty branch name or pattern", source)
    i = 0
    while i < len(pattern):
        if pattern[i] == "[":
            j = i + 1
            if j < len(pattern) and pattern[j] in "!^":
                j += 1
            # A leading ] is a literal member of the class
            if j < len(pattern) and pattern[j] == "]":
                j += 1
            j = pattern.find("]", j)
            if j == -1:
                raise ConfigError(f"Invalid glob pattern '{pattern}': unterminated character class", source)
            i = j
        i += 1


def name_matcher(entry: str, source: str) -> Matcher:
    """Build an exact or glob matcher from a protected branch entry.

    Surrounding whitespace is ignored.
    """
    entry = entry.strip()
    if not entry:
        raise ConfigError("Empty branch name or pattern", source)
    if any(char in entry for char in GLOB_CHARS):
        _check_glob(entry, source)
        return Matcher(MatcherKind.GLOB, entry, source)
    return Matcher(MatcherKind.EXACT, entry, source)


def regex_matcher(pattern: str, source: str) -> Matcher:
    """Compile a regular expression matcher.

    Raises:
        ConfigError: If the expression does not compile
    """
    try:
        compiled = re.compile(pattern)
    except re.error as err:
        raise ConfigError(f"Invalid regex pattern '{pattern}': {err}", source) from err
    return Matcher(MatcherKind.REGEX, pattern, source, compiled)


def defaults_layer() -> ConfigLayer:
    """Built-in configuration."""
    source = "built-in defaults"
    return ConfigLayer(
        source=source,
        protected=tuple(name_matcher(name, source) for name in DEFAULT_PROTECTED),
    )


def cli_layer(
    keep_patterns: Optional[Iterable[str]] = None,
    merged: bool = False,
    older_than: Optional[str] = None,
    base_branch: Optional[str] = None,
) -> ConfigLayer:
    """Build the layer for command line flags.

    An unset ``--merged`` flag does not switch off a merged-only setting from a file.
    """
    return ConfigLayer(
        source="command line",
        keep_patterns=tuple(regex_matcher(p, "CLI flag --keep-pattern") for p in keep_patterns or ()),
        merged_only=True if merged else None,
        older_than=parse_duration(older_than, "CLI flag --older-than") if older_than is not None else None,
        base_branch=base_branch or None,
    )


class ProtectedBranchesSection(BaseModel):
    """The ``[protected_branches]`` table."""

    model_config = ConfigDict(extra="ignore")

    defaults: list[StrictStr] = Field(default_factory=list)
    additional: list[StrictStr] = Field(default_factory=list)
    patterns: list[StrictStr] = Field(default_factory=list)


class FiltersSection(BaseModel):
    """The ``[filters]`` table."""

    model_config = ConfigDict(extra="ignore")

    merged: Optional[StrictBool] = None
    older_than: Optional[StrictStr] = None
    base_branch: Optional[StrictStr] = None

    @field_validator("base_branch")
    @classmethod
    def _non_empty_branch(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("must be a branch name")
        return value


class ConfigFile(BaseModel):
    """Schema of a global or project configuration file."""

    model_config = ConfigDict(extra="ignore")

    protected_branches: ProtectedBranchesSection = Field(default_factory=ProtectedBranchesSection)
    filters: FiltersSection = Field(default_factory=FiltersSection)


def _warn_unknown_keys(data: dict[str, Any], source: str) -> None:
    for unknown in sorted(set(data) - set(ConfigFile.model_fields)):
        logger.warning("Ignoring unknown table '%s' in %s", unknown, source)
    for name, info in ConfigFile.model_fields.items():
        table = data.get(name)
        if isinstance(table, dict):
            for unknown in sorted(set(table) - set(info.annotation.model_fields)):
                logger.warning("Ignoring unknown key '%s.%s' in %s", name, unknown, source)


def _describe(err: ValidationError) -> str:
    problems = []
    for error in err.errors():
        location = ".".join(str(part) for part in error["loc"])
        problems.append(f"'{location}': {error['msg']}")
    return "; ".join(problems)


def parse_layer(data: dict[str, Any], source: str) -> ConfigLayer:
    """Validate parsed TOML and turn it into a layer.

    Unknown tables and keys are logged and ignored.

    Raises:
        ConfigError: On wrong value types or invalid patterns
    """
    _warn_unknown_keys(data, source)
    try:
        parsed = ConfigFile.model_validate(data)
    except ValidationError as err:
        raise ConfigError(f"Invalid configuration value {_describe(err)}", source) from err

    branches = parsed.protected_branches
    filters = parsed.filters
    return ConfigLayer(
        source=source,
        protected=tuple(name_matcher(name, source) for name in branches.defaults + branches.additional)
        + tuple(regex_matcher(pattern, source) for pattern in branches.patterns),
        merged_only=filters.merged,
        older_than=parse_duration(filters.older_than, source) if filters.older_than is not None else None,
        base_branch=filters.base_branch,
    )


def read_layer(path: Path, kind: str) -> Optional[ConfigLayer]:
    """Read a TOML configuration file.

    Args:
        path: File to read
        kind: Human-readable kind of file, e.g. "project file"

    Returns:
        The layer, or None if the file does not exist
    """
    source = f"{kind} ({path})"
    if not path.is_file():
        logger.debug("No %s at %s", kind, path)
        return None
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(f"Failed to parse config file: {err}", source) from err
    except OSError as err:
        raise ConfigError(f"Failed to read config file: {err}", source) from err
    logger.debug("Loaded %s", source)
    return parse_layer(data, source)


def global_config_path() -> Path:
    return Path.home() / ".config" / "git-tidy" / "config.toml"


def _union(first: tuple[Matcher, ...], second: tuple[Matcher, ...]) -> tuple[Matcher, ...]:
    merged = list(first)
    for matcher in second:
        if matcher not in merged:
            merged.append(matcher)
    return tuple(merged)


def _apply(config: EffectiveConfig, layer: ConfigLayer) -> EffectiveConfig:
    logger.debug("Merging configuration from %s", layer.source)
    return replace(
        config,
        protected=_union(config.protected, layer.protected),
        keep_patterns=_union(config.keep_patterns, layer.keep_patterns),
        merged_only=config.merged_only if layer.merged_only is None else layer.merged_only,
        older_than=config.older_than if layer.older_than is None else layer.older_than,
        base_branch=config.base_branch if layer.base_branch is None else layer.base_branch,
    )


def merge_layers(layers: Iterable[Optional[ConfigLayer]]) -> EffectiveConfig:
    """Fold layers, lowest priority first, into one effective configuration.

    Missing layers (None) are skipped.
    """
    return reduce(_apply, (layer for layer in layers if layer is not None), EffectiveConfig())


def load_config(
    project_dir: Path,
    cli: Optional[ConfigLayer] = None,
    global_path: Optional[Path] = None,
) -> EffectiveConfig:
    """Load and merge every configuration layer.

    Args:
        project_dir: Directory holding the project file
        cli: Layer built from command line flags
        global_path: Override for the global file location

    Raises:
        ConfigError: If any layer is malformed
    """
    global_layer = read_layer(global_path or global_config_path(), "global file")
    project_layer = read_layer(project_dir / PROJECT_CONFIG_NAME, "project file")
    return merge_layers([defaults_layer(), global_layer, project_layer, cli])
