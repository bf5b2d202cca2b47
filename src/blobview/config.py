"""Configuration management for blobview.

Handles loading .blobview.yaml files with directory traversal,
environment variable overrides, and default values. Configuration is
read once at start; sessions never modify it.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import BlobviewError

CONFIG_FILENAME = ".blobview.yaml"
ENV_DEBUG = "BLOBVIEW_DEBUG"
ENV_MAX_MB = "BLOBVIEW_MAX_MB"

STRATEGIES = ("hardened", "simple")
EMBED_MODES = ("inline", "reference")

DEFAULT_EXCLUDED_SITES = [
    r"^https?://mail\.google\.com",
    r"^https?://outlook\.live\.com",
]


@dataclass
class TimingConfig:
    """Timer settings."""

    verify_ms: int = 1200  # Deadline for the embedded viewer to populate
    notice_ms: int = 3000  # Lifetime of the "opened elsewhere" notice
    sweep_interval_s: int = 300
    max_age_s: int = 1800  # Registry entries older than this are evicted
    fetch_timeout_s: float = 30.0  # 0 = no timeout


@dataclass
class ViewerConfig:
    """Texts shown by the viewer document and notices."""

    default_label: str = "document.pdf"
    fallback_text: str = "The PDF could not be displayed inline."
    link_text: str = "Open the PDF directly"
    notice_text: str = "PDF opened in a new tab"
    too_large_text: str = (
        "This PDF is too large to preview inline ({size_mb:.2f}MB > {max_mb}MB)."
    )


@dataclass
class BlobviewConfig:
    """Complete blobview configuration."""

    open_in_new_surface: bool = True
    strategy: str = "hardened"  # "hardened", "simple"
    embed_mode: str = "inline"  # "inline", "reference"
    watch_ms: int = 4000
    max_mb: int = 80  # 0 = unlimited
    debug: bool = False
    excluded_sites: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_SITES)
    )
    timing: TimingConfig = field(default_factory=TimingConfig)
    viewer: ViewerConfig = field(default_factory=ViewerConfig)
    config_path: Path | None = None  # Path where config was loaded from

    @property
    def max_bytes(self) -> int:
        return self.max_mb * 1024 * 1024

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            BlobviewError: If configuration is invalid.
        """
        if self.strategy not in STRATEGIES:
            raise BlobviewError(
                f"Invalid strategy: {self.strategy}. "
                f"Must be one of: {', '.join(STRATEGIES)}"
            )
        if self.embed_mode not in EMBED_MODES:
            raise BlobviewError(
                f"Invalid embed_mode: {self.embed_mode}. "
                f"Must be one of: {', '.join(EMBED_MODES)}"
            )
        if self.watch_ms < 0:
            raise BlobviewError("watch_ms must be non-negative")
        if self.max_mb < 0:
            raise BlobviewError("max_mb must be non-negative")

        timing = self.timing
        for name in ("verify_ms", "notice_ms", "fetch_timeout_s"):
            if getattr(timing, name) < 0:
                raise BlobviewError(f"timing.{name} must be non-negative")
        for name in ("sweep_interval_s", "max_age_s"):
            if getattr(timing, name) <= 0:
                raise BlobviewError(f"timing.{name} must be positive")

        for pattern in self.excluded_sites:
            try:
                re.compile(pattern)
            except re.error as e:
                raise BlobviewError(
                    f"Invalid excluded_sites pattern {pattern!r}: {e}"
                ) from e


def is_site_excluded(location: str, patterns: list[str]) -> bool:
    """Check a page location against the excluded site patterns."""
    return any(re.search(pattern, location) for pattern in patterns)


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find .blobview.yaml by traversing up from start_path.

    Args:
        start_path: Directory to start searching from. Defaults to cwd.

    Returns:
        Path to config file if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()
    else:
        start_path = Path(start_path).resolve()

    if start_path.is_file():
        start_path = start_path.parent

    current = start_path
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.is_file():
            return config_path

        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    config_path: Path | None = None,
    start_path: Path | None = None,
    debug_override: bool | None = None,
) -> BlobviewConfig:
    """Load configuration from file, environment, and overrides.

    Priority (highest to lowest):
    1. Function arguments (debug_override)
    2. Environment variables (BLOBVIEW_DEBUG, BLOBVIEW_MAX_MB)
    3. Config file (.blobview.yaml)
    4. Defaults

    Args:
        config_path: Explicit path to config file. If None, searches.
        start_path: Directory to start config file search from.
        debug_override: Override the debug toggle from a CLI flag.

    Returns:
        Loaded and validated configuration.
    """
    config = BlobviewConfig()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise BlobviewError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(start_path)

    if config_path is not None:
        config = _load_config_file(config_path)

    env_debug = os.environ.get(ENV_DEBUG)
    if env_debug:
        config.debug = env_debug.strip().lower() in ("1", "true", "yes", "on")

    env_max_mb = os.environ.get(ENV_MAX_MB)
    if env_max_mb:
        try:
            config.max_mb = int(env_max_mb)
        except ValueError as e:
            raise BlobviewError(f"{ENV_MAX_MB} must be an integer: {env_max_mb}") from e

    if debug_override is not None:
        config.debug = debug_override

    config.validate()
    return config


def _load_config_file(config_path: Path) -> BlobviewConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to .blobview.yaml file.

    Returns:
        Configuration loaded from file.

    Raises:
        BlobviewError: If file cannot be read or parsed.
    """
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise BlobviewError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise BlobviewError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise BlobviewError(f"Config file {config_path} must contain a mapping")

    config = BlobviewConfig(config_path=config_path)

    if "open_in_new_surface" in data:
        config.open_in_new_surface = bool(data["open_in_new_surface"])
    if "strategy" in data:
        config.strategy = str(data["strategy"])
    if "embed_mode" in data:
        config.embed_mode = str(data["embed_mode"])
    if "watch_ms" in data:
        config.watch_ms = _as_int(data["watch_ms"], "watch_ms")
    if "max_mb" in data:
        config.max_mb = _as_int(data["max_mb"], "max_mb")
    if "debug" in data:
        config.debug = bool(data["debug"])

    # An explicit empty list disables the built-in exclusions
    if "excluded_sites" in data and isinstance(data["excluded_sites"], list):
        config.excluded_sites = [str(p) for p in data["excluded_sites"]]

    if "timing" in data and isinstance(data["timing"], dict):
        timing_data = data["timing"]
        defaults = config.timing
        config.timing = TimingConfig(
            verify_ms=_as_int(
                timing_data.get("verify_ms", defaults.verify_ms), "timing.verify_ms"
            ),
            notice_ms=_as_int(
                timing_data.get("notice_ms", defaults.notice_ms), "timing.notice_ms"
            ),
            sweep_interval_s=_as_int(
                timing_data.get("sweep_interval_s", defaults.sweep_interval_s),
                "timing.sweep_interval_s",
            ),
            max_age_s=_as_int(
                timing_data.get("max_age_s", defaults.max_age_s), "timing.max_age_s"
            ),
            fetch_timeout_s=float(
                timing_data.get("fetch_timeout_s", defaults.fetch_timeout_s)
            ),
        )

    if "viewer" in data and isinstance(data["viewer"], dict):
        viewer_data = data["viewer"]
        defaults = config.viewer
        config.viewer = ViewerConfig(
            default_label=str(
                viewer_data.get("default_label", defaults.default_label)
            ),
            fallback_text=str(
                viewer_data.get("fallback_text", defaults.fallback_text)
            ),
            link_text=str(viewer_data.get("link_text", defaults.link_text)),
            notice_text=str(viewer_data.get("notice_text", defaults.notice_text)),
            too_large_text=str(
                viewer_data.get("too_large_text", defaults.too_large_text)
            ),
        )

    return config


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise BlobviewError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BlobviewError(f"{name} must be an integer, got {value!r}") from e


def create_default_config(path: Path | None = None) -> Path:
    """Create a default .blobview.yaml config file.

    Args:
        path: Directory to create config in. Defaults to cwd.

    Returns:
        Path to created config file.

    Raises:
        BlobviewError: If file already exists or cannot be written.
    """
    if path is None:
        path = Path.cwd()
    else:
        path = Path(path)

    config_path = path / CONFIG_FILENAME

    if config_path.exists():
        raise BlobviewError(f"Config file already exists: {config_path}")

    config_content = """# blobview configuration

# true = open PDFs in a new tab, false = replace the current page
open_in_new_surface: true

# "hardened": open the viewer tab synchronously inside the click handler and
#             reuse it across clicks (survives popup blockers)
# "simple":   open a fresh tab once the content has been resolved
strategy: "hardened"

# "inline":    embed the bytes as a data: reference
# "reference": embed a live object reference instead of re-encoding
embed_mode: "inline"

# How long to watch the page for injected frames after a user action (ms)
watch_ms: 4000

# Largest PDF converted for inline viewing, in MB (0 = unlimited)
max_mb: 80

# Verbose diagnostics (or set BLOBVIEW_DEBUG=1)
debug: false

# Pages where nothing is intercepted (regular expressions)
excluded_sites:
  - "^https?://mail\\\\.google\\\\.com"
  - "^https?://outlook\\\\.live\\\\.com"

timing:
  verify_ms: 1200         # Viewer load deadline before navigating directly
  notice_ms: 3000         # Lifetime of the "opened in a new tab" notice
  sweep_interval_s: 300   # Registry sweep period
  max_age_s: 1800         # Registry entry lifetime
  fetch_timeout_s: 30     # 0 = no timeout

viewer:
  default_label: "document.pdf"
  fallback_text: "The PDF could not be displayed inline."
  link_text: "Open the PDF directly"
  notice_text: "PDF opened in a new tab"
  # {size_mb} and {max_mb} are filled in with the content size and max_mb
  too_large_text: "This PDF is too large to preview inline
    ({size_mb:.2f}MB > {max_mb}MB)."
"""

    try:
        config_path.write_text(config_content)
    except OSError as e:
        raise BlobviewError(f"Cannot write config file: {e}") from e

    return config_path


def config_to_dict(config: BlobviewConfig) -> dict[str, Any]:
    """Convert config to dictionary for display."""
    return {
        "open_in_new_surface": config.open_in_new_surface,
        "strategy": config.strategy,
        "embed_mode": config.embed_mode,
        "watch_ms": config.watch_ms,
        "max_mb": config.max_mb,
        "debug": config.debug,
        "excluded_sites": list(config.excluded_sites),
        "timing": {
            "verify_ms": config.timing.verify_ms,
            "notice_ms": config.timing.notice_ms,
            "sweep_interval_s": config.timing.sweep_interval_s,
            "max_age_s": config.timing.max_age_s,
            "fetch_timeout_s": config.timing.fetch_timeout_s,
        },
        "viewer": {
            "default_label": config.viewer.default_label,
            "fallback_text": config.viewer.fallback_text,
            "link_text": config.viewer.link_text,
            "notice_text": config.viewer.notice_text,
            "too_large_text": config.viewer.too_large_text,
        },
        "config_path": str(config.config_path) if config.config_path else None,
    }
