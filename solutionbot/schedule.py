"""
Schedule Store & Paginator
==========================
A JSON-backed list of upcoming tests and quizzes.

Storage:
    schedule.json holds a JSON array of items. Every mutation is a full
    load → modify → save; the file is the only source of truth.

Pagination:
    Views show PAGE_SIZE items sorted by date, then title (case-insensitive).
    The cursor lives entirely in the navigation control ids:

        schedule|<back|next|noop>|<include past 0/1>|<page>|<owner user id>

    so any process can rebuild the view from the id alone.

Known race: removal by list index re-sorts the list at removal time. If the
schedule changed since it was displayed, the index may name a different
item than the one the user saw. Removal by id is exact.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from . import storage
from .errors import ConfigError, InvalidFormat, IOFailure, NotFound, Unauthorized
from .models import NavControl, ScheduleEntry, ScheduleItem, ScheduleKind, SchedulePage

logger = logging.getLogger(__name__)

PAGE_SIZE = 3
CONTROL_PREFIX = "schedule"
NAV_ACTIONS = ("back", "next", "noop")
ID_ATTEMPTS = 64

FOOTER = "Use /schedule-add to add items, /schedule-remove <id or index> to remove."
UNAUTHORIZED_MESSAGE = "Only the original requester can use these buttons."

MAX_TITLE = 110
MAX_ENTRY_NAME = 256
MAX_DESCRIPTION = 900


# ─── Parsing Helpers ──────────────────────────────────────────────────────────


def parse_kind(raw: str) -> ScheduleKind:
    try:
        return ScheduleKind((raw or "").strip().lower())
    except ValueError:
        raise InvalidFormat(
            f"Invalid kind '{raw}'. Use one of: "
            + ", ".join(k.value for k in ScheduleKind)
        ) from None


def parse_date(raw: str) -> dt.date:
    """Strict YYYY-MM-DD."""
    try:
        return dt.datetime.strptime((raw or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise InvalidFormat(
            "Invalid date. Use YYYY-MM-DD (e.g., 2025-11-03)."
        ) from None


def truncate(text: str, limit: int) -> str:
    if not text or len(text) <= limit:
        return text
    return text[: max(0, limit - 1)] + "…"


def sort_items(items: Iterable[ScheduleItem]) -> list[ScheduleItem]:
    """Date ascending, then title case-insensitive; stable."""
    return sorted(items, key=lambda i: (i.date, i.title.lower()))


def filter_items(
    items: Iterable[ScheduleItem],
    include_past: bool,
    today: Optional[dt.date] = None,
) -> list[ScheduleItem]:
    today = today or dt.date.today()
    return sort_items(i for i in items if include_past or i.date >= today)


# ─── Store ────────────────────────────────────────────────────────────────────


class ScheduleStore:
    """Load/save access to schedule.json."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> list[ScheduleItem]:
        """
        Read all items. A missing file is created empty.

        Raises:
            ConfigError: If the file is not a valid item array.
            IOFailure: If the missing file cannot be created.
        """
        if not self.path.exists():
            try:
                storage.replace_with_backup(self.path, "[]")
            except OSError as e:
                raise IOFailure(f"Failed to create {self.path.name}: {e}") from e
            logger.info(f"Created empty schedule: {self.path}")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise ConfigError(f"Failed to read {self.path.name}: {e}") from e

        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid {self.path.name}: {e}") from e

        if data is None:
            return []
        if not isinstance(data, list):
            raise ConfigError(f"Invalid {self.path.name}: expected a JSON array")

        try:
            return [ScheduleItem.model_validate(entry) for entry in data]
        except ValidationError as e:
            raise ConfigError(f"Invalid {self.path.name}: {e}") from e

    def save(self, items: list[ScheduleItem]):
        """
        Rewrite the whole file.

        Raises:
            IOFailure: If the file cannot be written.
        """
        payload = [item.model_dump(mode="json", exclude_none=True) for item in items]
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        try:
            storage.replace_with_backup(self.path, text)
        except OSError as e:
            raise IOFailure(f"Failed to save {self.path.name}: {e}") from e
        logger.debug(f"Saved {len(items)} schedule items to {self.path}")

    def add(
        self,
        kind: Union[str, ScheduleKind],
        title: str,
        date: Union[str, dt.date],
        description: Optional[str] = None,
    ) -> ScheduleItem:
        """Validate, append and persist a new item."""
        kind = kind if isinstance(kind, ScheduleKind) else parse_kind(kind)
        date = date if isinstance(date, dt.date) else parse_date(date)
        if not title or not title.strip():
            raise InvalidFormat("Title must not be empty.")

        items = self.load()
        item = ScheduleItem(
            id=new_item_id(i.id for i in items),
            kind=kind,
            title=title,
            date=date,
            description=description,
        )
        items.append(item)
        self.save(items)

        logger.info(f"Added schedule item {item.id}: {item.title} on {item.date}")
        return item

    def remove(self, id_or_index: str) -> ScheduleItem:
        """
        Remove by id (case-insensitive) or by 1-based position in the
        default sort order of all items, recomputed now.

        Raises:
            NotFound: If the schedule is empty or nothing matches.
        """
        items = self.load()
        if not items:
            raise NotFound("Schedule is empty.")

        key = (id_or_index or "").strip()
        target = None

        # Plain ASCII digits only; "+2" or "1_0" are treated as ids
        index = int(key) if key.isascii() and key.isdigit() else None
        if index is not None:
            ordered = sort_items(items)
            if 1 <= index <= len(ordered):
                target = ordered[index - 1]

        if target is None:
            target = next((i for i in items if i.id.lower() == key.lower()), None)

        if target is None:
            raise NotFound("No matching item found with that id or index.")

        remaining = [i for i in items if i.id.lower() != target.id.lower()]
        self.save(remaining)

        logger.info(f"Removed schedule item {target.id}: {target.title}")
        return target


def new_item_id(existing: Iterable[str] = ()) -> str:
    """8 lowercase hex chars not already in ``existing``."""
    taken = {i.lower() for i in existing}
    for _ in range(ID_ATTEMPTS):
        candidate = secrets.token_hex(4)
        if candidate not in taken:
            return candidate
    raise IOFailure("Could not generate a unique schedule id.")


# ─── Navigation Payload ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class NavPayload:
    """Cursor state carried in a navigation control id."""

    action: str
    include_past: bool
    page: int
    owner_id: int

    def encode(self) -> str:
        return "|".join([
            CONTROL_PREFIX,
            self.action,
            "1" if self.include_past else "0",
            str(self.page),
            str(self.owner_id),
        ])

    @classmethod
    def decode(cls, custom_id: Optional[str]) -> Optional["NavPayload"]:
        """Parse a control id; None for anything malformed or foreign."""
        if not custom_id or not custom_id.startswith(CONTROL_PREFIX + "|"):
            return None

        parts = custom_id.split("|")
        if len(parts) != 5:
            return None

        _, action, past, page, owner = parts
        action = action.lower()
        if action not in NAV_ACTIONS or past not in ("0", "1"):
            return None
        try:
            page_num = int(page)
        except ValueError:
            return None
        if not owner.isdigit():
            return None

        return cls(action, past == "1", page_num, int(owner))

    def target_page(self) -> int:
        if self.action == "next":
            return self.page + 1
        if self.action == "back":
            return self.page - 1
        return self.page


# ─── Views ────────────────────────────────────────────────────────────────────


def _entry(item: ScheduleItem, absolute_index: int) -> ScheduleEntry:
    date_str = item.date.strftime("%m/%d/%Y")
    title = item.title.strip() or "(no title)"
    name = truncate(
        f"{absolute_index}. {date_str} – {item.kind.label}: {truncate(title, MAX_TITLE)}",
        MAX_ENTRY_NAME,
    )
    if item.description:
        value = f"{truncate(item.description.strip(), MAX_DESCRIPTION)}\nid: `{item.id}`"
    else:
        value = f"id: `{item.id}`"
    return ScheduleEntry(index=absolute_index, name=name, value=value, item_id=item.id)


def build_page(
    items: Iterable[ScheduleItem],
    include_past: bool,
    page_index: int,
    user_id: int,
    today: Optional[dt.date] = None,
) -> SchedulePage:
    """
    Build one page of the schedule view.
    ``page_index`` is 0-based and clamped to the available pages.
    """
    filtered = filter_items(items, include_past, today)
    title = "Schedule" if include_past else "Upcoming Schedule"

    total = len(filtered)
    if total == 0:
        return SchedulePage(
            title=title,
            description="No scheduled items." if include_past else "No upcoming items.",
        )

    total_pages = math.ceil(total / PAGE_SIZE)
    page_index = min(max(page_index, 0), total_pages - 1)

    start = page_index * PAGE_SIZE
    window = filtered[start:start + PAGE_SIZE]
    scope = "total" if include_past else "upcoming"

    entries = [_entry(item, start + i + 1) for i, item in enumerate(window)]

    back = NavPayload("back", include_past, page_index, user_id)
    nxt = NavPayload("next", include_past, page_index, user_id)

    return SchedulePage(
        title=title,
        description=(
            f"Showing {start + 1}–{start + len(window)} of {total} {scope} "
            f"item(s). Page {page_index + 1}/{total_pages}."
        ),
        footer=FOOTER,
        page_index=page_index,
        total_pages=total_pages,
        total_items=total,
        entries=entries,
        controls=[
            NavControl(label="Back", custom_id=back.encode(), disabled=page_index <= 0),
            NavControl(
                label="Next",
                custom_id=nxt.encode(),
                disabled=page_index >= total_pages - 1,
            ),
        ],
    )


def navigate(
    store: ScheduleStore,
    custom_id: str,
    user_id: int,
    today: Optional[dt.date] = None,
) -> Optional[SchedulePage]:
    """
    Apply a navigation control press.

    Returns:
        The new page, or None if the id is not a schedule control.

    Raises:
        Unauthorized: If ``user_id`` is not the control's owner.
    """
    payload = NavPayload.decode(custom_id)
    if payload is None:
        return None

    if int(user_id) != payload.owner_id:
        raise Unauthorized(UNAUTHORIZED_MESSAGE)

    page = build_page(
        store.load(),
        payload.include_past,
        payload.target_page(),
        payload.owner_id,
        today=today,
    )

    if not page.controls:
        # Replace stale buttons on a now-empty view with disabled ones
        noop = NavPayload("noop", False, 0, payload.owner_id).encode()
        page.controls = [
            NavControl(label="Back", custom_id=noop, disabled=True),
            NavControl(label="Next", custom_id=noop, disabled=True),
        ]
    return page
