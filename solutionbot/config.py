"""
Configuration
=============
Render options, the sources.json table, logging setup, and the
application context that ties them together.

The context is created explicitly (init_context) or on first use
(get_context) and then shared read-only for the life of the process.
Editing sources.json requires a restart; tests call reset_context().

sources.json:
    {
        "defaultSource": "Hibbeler",
        "sources": {
            "Hibbeler": "/books/hibbeler-statics.pdf",
            "Beer": "/books/beer-dynamics.pdf"
        }
    }
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from . import storage
from .errors import ConfigError, NotFound

logger = logging.getLogger(__name__)

SOURCES_FILENAME = "sources.json"
SCHEDULE_FILENAME = "schedule.json"
CACHE_DIRNAME = "cache"

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ─── Render Options ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RenderOptions:
    """Configuration for rendering one page to JPEG."""

    dpi: int = 150
    jpeg_quality: int = 85

    # Optional clamp on output pixels; aspect ratio is kept
    max_width: Optional[int] = 2000
    max_height: Optional[int] = 2000

    force_white_background: bool = True

    def __post_init__(self):
        if self.dpi <= 0:
            raise ValueError(f"dpi must be positive, got {self.dpi}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(
                f"jpeg_quality must be within 1-100, got {self.jpeg_quality}"
            )
        for name in ("max_width", "max_height"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}")

    def with_overrides(self, **changes) -> "RenderOptions":
        """Copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# Defaults the cache builder has always used: smaller files for bulk output
CACHE_RENDER_OPTIONS = RenderOptions(dpi=110, jpeg_quality=80)


# ─── Sources ──────────────────────────────────────────────────────────────────


class SourcesConfig(BaseModel):
    """
    Named PDF sources with one default.
    Names are trimmed and matched case-insensitively.
    """
    default_source: str = ""
    sources: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        # Accept defaultSource / DefaultSource / default_source alike
        if not isinstance(data, dict):
            return data
        fields = {"defaultsource": "default_source", "sources": "sources"}
        out = {}
        for key, value in data.items():
            flat = str(key).replace("_", "").lower()
            if flat in fields:
                out[fields[flat]] = value
        return out

    @field_validator("sources", mode="before")
    @classmethod
    def _clean_sources(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        cleaned: dict[str, str] = {}
        for name, path in value.items():
            if not isinstance(name, str) or not isinstance(path, str):
                continue
            if not name.strip() or not path.strip():
                continue
            cleaned[name.strip()] = path.strip()
        return cleaned

    @model_validator(mode="after")
    def _check_default(self) -> "SourcesConfig":
        self.default_source = (self.default_source or "").strip()
        if not self.default_source:
            raise ValueError("defaultSource is missing.")
        if not self.sources:
            raise ValueError("sources are empty.")
        if self.find(self.default_source) is None:
            raise ValueError(
                f"defaultSource '{self.default_source}' not found in sources."
            )
        return self

    def find(self, name: Optional[str]) -> Optional[tuple[str, str]]:
        """Case-insensitive lookup returning (canonical name, pdf path)."""
        if not name or not name.strip():
            return None
        wanted = name.strip().lower()
        for key, path in self.sources.items():
            if key.lower() == wanted:
                return key, path
        return None

    def resolve(self, name: Optional[str]) -> tuple[str, str]:
        """
        Resolve a source name, falling back to the default when blank.

        Raises:
            NotFound: If the name is not configured.
        """
        wanted = name.strip() if name and name.strip() else self.default_source
        found = self.find(wanted)
        if found is None:
            raise NotFound(
                f"Unknown source '{wanted}'. Available: {', '.join(self.names())}"
            )
        return found

    def names(self) -> list[str]:
        return sorted(self.sources, key=str.lower)


def load_sources(path: Path) -> SourcesConfig:
    """
    Load and validate sources.json.

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation.
    """
    if not path.exists():
        raise ConfigError(f"{path.name} not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Invalid {path.name}: {e}") from e

    try:
        cfg = SourcesConfig.model_validate(data)
    except ValidationError as e:
        messages = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
        raise ConfigError(f"Invalid {path.name}: {messages}") from e

    logger.info(f"Loaded {len(cfg.sources)} sources from {path}")
    return cfg


# ─── Application Context ──────────────────────────────────────────────────────


class AppContext:
    """
    Read-mostly settings shared by every command.

    sources.json is read the first time ``sources`` is accessed, so the
    schedule commands keep working on installs without one.
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        render_options: Optional[RenderOptions] = None,
        cache_render_options: Optional[RenderOptions] = None,
        response_timeout: float = 60.0,
        use_cache: bool = True,
    ):
        self.base_dir = Path(base_dir) if base_dir else storage.get_home_dir()
        self.sources_path = self.base_dir / SOURCES_FILENAME
        self.schedule_path = self.base_dir / SCHEDULE_FILENAME
        self.cache_dir = self.base_dir / CACHE_DIRNAME
        self.render_options = render_options or RenderOptions()
        self.cache_render_options = cache_render_options or CACHE_RENDER_OPTIONS
        self.response_timeout = response_timeout
        self.use_cache = use_cache

        self._sources: Optional[SourcesConfig] = None
        self._lock = threading.Lock()

    @property
    def sources(self) -> SourcesConfig:
        if self._sources is None:
            with self._lock:
                if self._sources is None:
                    self._sources = load_sources(self.sources_path)
        return self._sources

    def __repr__(self) -> str:
        return f"AppContext(base_dir={str(self.base_dir)!r})"


_context: Optional[AppContext] = None
_context_lock = threading.Lock()


def init_context(base_dir: Optional[Path] = None, **kwargs) -> AppContext:
    """Create the process-wide context explicitly, replacing any previous one."""
    global _context
    with _context_lock:
        _context = AppContext(base_dir=base_dir, **kwargs)
        logger.info(f"Context initialized: {_context.base_dir}")
        return _context


def get_context() -> AppContext:
    """Return the process-wide context, creating a default one on first use."""
    global _context
    if _context is None:
        with _context_lock:
            if _context is None:
                _context = AppContext()
    return _context


def reset_context():
    """Forget the cached context (tests only)."""
    global _context
    with _context_lock:
        _context = None


# ─── Logging ──────────────────────────────────────────────────────────────────


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the solutionbot package logger (console + optional file)."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    package_logger = logging.getLogger("solutionbot")
    package_logger.setLevel(log_level)

    # Console handler
    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(formatter)
        package_logger.addHandler(console)
    else:
        for handler in package_logger.handlers:
            handler.setLevel(log_level)

    # File handler
    if log_file:
        log_dir = Path(log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)
