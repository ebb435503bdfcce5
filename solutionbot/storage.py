"""
Filesystem Storage Manager
===========================
Paths and safe writes for rendered artifacts and the schedule file.

Directory Layout (under the home directory):
    sources.json           # Named PDF sources
    schedule.json          # Schedule items
    cache/
    └── {source_slug}/     # Pre-rendered pages per source
        └── {chapter}-{problem}.jpg

On-demand renders go to the system temp dir as
answer-page-{page}-{random}.jpg and are deleted after upload.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

# Project root: one level up from /solutionbot/ package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

HOME_ENV_VAR = "SOLUTIONBOT_HOME"
ARTIFACT_PREFIX = "answer-page-"

PathLike = Union[str, Path]


def get_home_dir() -> Path:
    """Base directory for config, schedule and cache; overridable by env."""
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser().absolute()
    return _PROJECT_ROOT


# ─── Cache Paths ──────────────────────────────────────────────────────────────


def slugify(name: str) -> str:
    """
    Filesystem-safe form of a source name.
    Non-alphanumerics become "_", leading/trailing "_" are stripped,
    and an empty result falls back to "source".
    """
    if not name or not name.strip():
        return "source"
    slug = "".join(c if c.isalnum() else "_" for c in name).strip("_")
    return slug or "source"


def get_source_cache_dir(cache_dir: PathLike, source_name: str) -> Path:
    return Path(cache_dir) / slugify(source_name)


def get_cached_image_path(
    cache_dir: PathLike, source_name: str, problem_key: str
) -> Path:
    return get_source_cache_dir(cache_dir, source_name) / f"{problem_key}.jpg"


# ─── Temporary Artifacts ──────────────────────────────────────────────────────


def new_artifact_path(page_number: int) -> Path:
    """Unique temp path for an on-demand render of one page."""
    name = f"{ARTIFACT_PREFIX}{page_number}-{uuid.uuid4().hex}.jpg"
    return Path(tempfile.gettempdir()) / name


def discard_artifact(path: PathLike) -> bool:
    """
    Delete an on-demand artifact after it has been sent.
    Cache files are never touched here.
    """
    p = Path(path)
    if not p.name.startswith(ARTIFACT_PREFIX):
        return False
    try:
        p.unlink()
    except FileNotFoundError:
        return False
    logger.debug(f"Deleted artifact: {p}")
    return True


# ─── Safe Writes ──────────────────────────────────────────────────────────────


def write_bytes_atomic(dest: PathLike, data: bytes) -> Path:
    """
    Write bytes to a sibling temp file, then move it over ``dest``.
    Readers never see a half-written file.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()
    return dest


def replace_with_backup(dest: PathLike, text: str) -> Path:
    """
    Rewrite a text file: write ``<dest>.tmp``, keep ``<dest>.bak`` of the
    current content while the temp file replaces it, then drop the backup.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".tmp")
    backup = dest.with_name(dest.name + ".bak")

    with open(tmp, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())

    try:
        if dest.exists():
            shutil.copy2(dest, backup)
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()

    try:
        backup.unlink()
    except FileNotFoundError:
        pass
    return dest
