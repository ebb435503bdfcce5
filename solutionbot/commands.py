"""
Command Handlers
================
Transport-neutral handlers for the bot's slash commands and buttons.

A chat adapter calls these with plain strings/ids and sends back the
CommandReply it receives. Every core error is turned into a message
here; nothing raised by the core reaches the adapter.

    /answer problem [source]          → answer()
    source autocomplete               → autocomplete_sources()
    /schedule [includePast]           → schedule_list()
    schedule Back/Next buttons        → schedule_navigate()
    /schedule-add kind title date     → schedule_add()
    /schedule-remove idOrIndex        → schedule_remove()
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from typing import Optional

from . import storage
from .config import AppContext, get_context
from .engine import AnswerEngine
from .errors import (
    ConfigError,
    InvalidFormat,
    IOFailure,
    NotFound,
    OutOfRange,
    ParseFailure,
    SolutionBotError,
    Unauthorized,
)
from .models import CommandReply, LookupResult, ScheduleKind
from .schedule import ScheduleStore, build_page, navigate, parse_date, parse_kind

logger = logging.getLogger(__name__)

MAX_AUTOCOMPLETE = 25

DM_REFUSAL = (
    "The /{command} command cannot be used in direct messages. "
    "Please run this command in a server channel."
)


def _discard_late_result(future: asyncio.Future):
    """Clean up the artifact of a lookup whose caller already gave up."""
    if future.cancelled() or future.exception() is not None:
        return
    result: LookupResult = future.result()
    if result.artifact_path and not result.from_cache:
        storage.discard_artifact(result.artifact_path)


class BotCommands:
    """Async command handlers sharing one context and answer engine."""

    def __init__(
        self,
        context: Optional[AppContext] = None,
        engine: Optional[AnswerEngine] = None,
    ):
        self.context = context or get_context()
        self.engine = engine or AnswerEngine(self.context)
        self.store = ScheduleStore(self.context.schedule_path)

    # ─── /answer ──────────────────────────────────────────────────────────

    async def answer(self, problem: str, source: Optional[str] = None) -> CommandReply:
        """Find the page for ``problem`` and reply with it as a JPEG."""
        cancel_event = threading.Event()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            None,
            functools.partial(
                self.engine.lookup, source, problem, cancel_event=cancel_event
            ),
        )

        try:
            result = await asyncio.wait_for(
                asyncio.shield(future), timeout=self.context.response_timeout
            )
        except asyncio.TimeoutError:
            cancel_event.set()
            future.add_done_callback(_discard_late_result)
            logger.warning(
                f"Lookup of {problem!r} exceeded {self.context.response_timeout}s"
            )
            return CommandReply(
                content="Timed out while looking up that problem. Please try again."
            )
        except ConfigError as e:
            return CommandReply(content=f"Failed to load sources.json: {e}")
        except (NotFound, InvalidFormat) as e:
            return CommandReply(content=str(e))
        except ParseFailure as e:
            return CommandReply(content=f"Error while searching the PDF: {e}")
        except (OutOfRange, IOFailure) as e:
            return CommandReply(content=f"Failed to render/send the page image: {e}")
        except SolutionBotError as e:
            return CommandReply(content=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error answering {problem!r}")
            return CommandReply(content=f"Unexpected error: {e}")

        if not result.found:
            return CommandReply(
                content=(
                    f"Couldn't find '{result.token.display}' "
                    f"in '{result.source_name}'."
                )
            )

        slug = storage.slugify(result.source_name)
        return CommandReply(
            content=(
                f"Answer page for {result.token.display} "
                f"(page {result.page_number}) from '{result.source_name}'."
            ),
            attachment_path=result.artifact_path,
            attachment_name=f"answer-{result.token.key}-{slug}.jpg",
            delete_after_send=not result.from_cache,
        )

    def autocomplete_sources(self, query: Optional[str] = None) -> list[str]:
        """Source names containing ``query``; default first, then A-Z."""
        try:
            cfg = self.context.sources
        except ConfigError:
            return []

        needle = (query or "").strip().lower()
        names = [n for n in cfg.sources if needle in n.lower()]
        default = cfg.default_source.lower()
        names.sort(key=lambda n: (n.lower() != default, n.lower()))
        return names[:MAX_AUTOCOMPLETE]

    # ─── /schedule ────────────────────────────────────────────────────────

    @staticmethod
    def kind_choices() -> list[tuple[str, str]]:
        """(label, value) pairs for the kind option."""
        return [(kind.label, kind.value) for kind in ScheduleKind]

    async def schedule_list(self, user_id: int, include_past: bool = False) -> CommandReply:
        try:
            items = await asyncio.to_thread(self.store.load)
        except SolutionBotError as e:
            return CommandReply(content=f"Failed to build schedule: {e}")

        return CommandReply(schedule=build_page(items, include_past, 0, user_id))

    async def schedule_navigate(
        self, custom_id: str, user_id: int
    ) -> Optional[CommandReply]:
        """Handle a Back/Next press; None if the id is not ours."""
        try:
            page = await asyncio.to_thread(navigate, self.store, custom_id, user_id)
        except Unauthorized as e:
            return CommandReply(content=str(e), ephemeral=True)
        except SolutionBotError as e:
            return CommandReply(
                content=f"Failed to update schedule: {e}", ephemeral=True
            )

        if page is None:
            return None
        return CommandReply(schedule=page)

    async def schedule_add(
        self,
        kind: str,
        title: str,
        date: str,
        description: Optional[str] = None,
        in_guild: bool = True,
    ) -> CommandReply:
        if not in_guild:
            return CommandReply(content=DM_REFUSAL.format(command="schedule-add"))

        try:
            parsed_kind = parse_kind(kind)
            parsed_date = parse_date(date)
            item = await asyncio.to_thread(
                self.store.add, parsed_kind, title, parsed_date, description
            )
        except InvalidFormat as e:
            return CommandReply(content=str(e))
        except ConfigError as e:
            return CommandReply(content=f"Failed to read schedule.json: {e}")
        except IOFailure as e:
            return CommandReply(content=f"Failed to save schedule.json: {e}")

        return CommandReply(
            content=(
                f"Added [{item.kind.label}] {item.date.strftime('%m/%d/%Y')} — "
                f"{item.title} (id: {item.id})"
            )
        )

    async def schedule_remove(self, id_or_index: str, in_guild: bool = True) -> CommandReply:
        if not in_guild:
            return CommandReply(content=DM_REFUSAL.format(command="schedule-remove"))

        try:
            item = await asyncio.to_thread(self.store.remove, id_or_index)
        except NotFound as e:
            return CommandReply(content=str(e))
        except ConfigError as e:
            return CommandReply(content=f"Failed to read schedule.json: {e}")
        except IOFailure as e:
            return CommandReply(content=f"Failed to save schedule.json: {e}")

        return CommandReply(
            content=(
                f"Removed [{item.kind.label}] {item.date.strftime('%m/%d/%Y')} — "
                f"{item.title} (id: {item.id})"
            )
        )
