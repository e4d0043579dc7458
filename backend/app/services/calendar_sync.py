"""
Twitch schedule -> Discord scheduled events.

For every Discord integration with calendar sync enabled, the broadcaster's
Twitch schedule is mirrored into the guild's scheduled events. Each segment
gets a shadow row in synced_calendar_events (upserted on every pass) that
remembers the Discord event id, so later passes update instead of creating.

Recurring segments arrive as one segment per future occurrence sharing a
title. Discord shows them as one event for the next occurrence, and every
occurrence's row carries that event's id.
"""
import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set
from loguru import logger
from sqlalchemy import select, update, delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.discord import DiscordClient
from app.clients.registry import ClientRegistry
from app.clients.twitch import TwitchClient
from app.constants import CALENDAR_REQUEST_DELAY_SECONDS, CALENDAR_DEFAULT_EVENT_DURATION_HOURS
from app.models import DiscordIntegration, SyncedCalendarEvent, User
from app.schemas.twitch import ScheduleSegment
from app.services.notification_dispatcher import build_stream_url
from app.services.token_service import TwitchTokenService
from app.utils.clock import parse_rfc3339, to_rfc3339, utcnow
from app.utils.errors import DiscordError

# Discord guild scheduled event enums
PRIVACY_LEVEL_GUILD_ONLY = 2
ENTITY_TYPE_EXTERNAL = 3


def build_event_payload(
    title: str,
    category_name: Optional[str],
    start_time: datetime,
    end_time: Optional[datetime],
    stream_url: str,
) -> Dict[str, Any]:
    """Scheduled event body. External events need an end time; default to two hours."""
    end_time = end_time or start_time + timedelta(hours=CALENDAR_DEFAULT_EVENT_DURATION_HOURS)
    return {
        "name": title,
        "description": category_name or "",
        "scheduled_start_time": to_rfc3339(start_time),
        "scheduled_end_time": to_rfc3339(end_time),
        "privacy_level": PRIVACY_LEVEL_GUILD_ONLY,
        "entity_type": ENTITY_TYPE_EXTERNAL,
        "channel_id": None,
        "entity_metadata": {"location": stream_url},
    }


class CalendarSyncService:
    def __init__(
        self,
        twitch: TwitchClient,
        tokens: TwitchTokenService,
        clients: ClientRegistry,
        get_db_session: Callable[[], AsyncSession],
        request_delay: float = CALENDAR_REQUEST_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.twitch = twitch
        self.tokens = tokens
        self.clients = clients
        self._get_db_session = get_db_session
        self.request_delay = request_delay
        self._clock = clock
        self._sleep = sleep

    async def sync_all(self) -> int:
        """Sync every integration with calendar sync enabled. Returns how many succeeded."""
        async with self._get_db_session() as db:
            result = await db.execute(
                select(DiscordIntegration)
                .where(DiscordIntegration.calendar_sync_enabled.is_(True))
                .order_by(DiscordIntegration.id)
            )
            integrations = list(result.scalars().all())

        await self._purge_disabled()

        synced = 0
        for integration in integrations:
            try:
                await self.sync_for_integration(integration)
                synced += 1
            except Exception as e:
                logger.warning(f"Failed to sync calendar for integration {integration.id}: {e}")
        if integrations:
            logger.info(f"Calendar sync finished for {synced}/{len(integrations)} integration(s)")
        return synced

    async def _purge_disabled(self) -> None:
        """Remove mirrored events of integrations whose calendar sync was turned off."""
        discord = self.clients.discord
        if discord is None:
            return

        async with self._get_db_session() as db:
            result = await db.execute(
                select(DiscordIntegration).where(
                    DiscordIntegration.calendar_sync_enabled.is_(False),
                    DiscordIntegration.id.in_(select(SyncedCalendarEvent.discord_integration_id).distinct()),
                )
            )
            disabled = list(result.scalars().all())

        for integration in disabled:
            try:
                rows = await self._rows_for(integration.id)
                logger.info(f"Calendar sync disabled for integration {integration.id}; removing {len(rows)} event(s)")
                await self._delete_rows(discord, integration, rows)
            except Exception as e:
                logger.warning(f"Failed to clean up calendar events of integration {integration.id}: {e}")

    async def sync_for_integration(self, integration: DiscordIntegration) -> None:
        discord = self.clients.discord
        if discord is None:
            logger.warning(f"Discord service not initialized; skipping calendar sync for integration {integration.id}")
            return

        async with self._get_db_session() as db:
            user = await db.get(User, integration.user_id)
        if user is None:
            logger.warning(f"Integration {integration.id} has no owner; skipping calendar sync")
            return

        try:
            schedule = await self.tokens.call_with_refresh(
                user, lambda token: self.twitch.get_schedule(token, user.twitch_id)
            )
        except Exception as e:
            logger.warning(f"Could not fetch the schedule of {user.twitch_login}; will retry next cycle: {e}")
            return

        if schedule is None:
            rows = await self._rows_for(integration.id)
            if rows:
                logger.info(f"{user.twitch_login} has no schedule; removing {len(rows)} synced event(s)")
                await self._delete_rows(discord, integration, rows)
            return

        stream_url = build_stream_url(user.twitch_login)
        present_ids: Set[str] = {segment.id for segment in schedule.segments}

        canceled = [s for s in schedule.segments if s.canceled_until]
        active = [s for s in schedule.segments if not s.canceled_until]
        single = [s for s in active if not s.is_recurring]
        recurring: "OrderedDict[str, List[ScheduleSegment]]" = OrderedDict()
        for segment in active:
            if segment.is_recurring:
                recurring.setdefault(segment.title, []).append(segment)

        if canceled:
            canceled_ids = {s.id for s in canceled}
            rows = [row for row in await self._rows_for(integration.id) if row.twitch_segment_id in canceled_ids]
            if rows:
                logger.info(f"Removing {len(rows)} canceled segment(s) for integration {integration.id}")
                await self._delete_rows(discord, integration, rows)

        for segment in single:
            try:
                await self._sync_single(discord, integration, segment, stream_url)
            except Exception as e:
                logger.warning(f"Failed to sync segment {segment.id} for integration {integration.id}: {e}")

        for title, segments in recurring.items():
            try:
                await self._sync_recurring_group(discord, integration, title, segments, stream_url)
            except Exception as e:
                logger.warning(f"Failed to sync recurring '{title}' for integration {integration.id}: {e}")

        stale = [row for row in await self._rows_for(integration.id) if row.twitch_segment_id not in present_ids]
        if stale:
            logger.info(f"Removing {len(stale)} synced event(s) no longer in the schedule of {user.twitch_login}")
            await self._delete_rows(discord, integration, stale)

    # ========================================================================
    # Segments
    # ========================================================================

    async def _sync_single(
        self,
        discord: DiscordClient,
        integration: DiscordIntegration,
        segment: ScheduleSegment,
        stream_url: str,
    ) -> None:
        async with self._get_db_session() as db:
            row = await self.upsert_event(db, integration, segment)
            await db.commit()

        if row.start_time <= self._clock():
            logger.debug(f"Segment {segment.id} already started; not mirroring")
            return

        payload = build_event_payload(row.title, row.category_name, row.start_time, row.end_time, stream_url)
        try:
            event_id = await self._mirror(discord, integration.discord_guild_id, row.discord_event_id, payload)
            if event_id != row.discord_event_id:
                await self._set_event_id([row.id], event_id)
        finally:
            await self._sleep(self.request_delay)

    async def _sync_recurring_group(
        self,
        discord: DiscordClient,
        integration: DiscordIntegration,
        title: str,
        segments: List[ScheduleSegment],
        stream_url: str,
    ) -> None:
        async with self._get_db_session() as db:
            rows = [await self.upsert_event(db, integration, segment, is_recurring=True) for segment in segments]
            await db.commit()

        now = self._clock()
        upcoming = sorted((row for row in rows if row.start_time > now), key=lambda row: row.start_time)
        if not upcoming:
            logger.debug(f"All occurrences of '{title}' already started; not mirroring")
            return
        anchor = upcoming[0]

        known_ids: List[str] = []
        for row in rows:
            if row.discord_event_id and row.discord_event_id not in known_ids:
                known_ids.append(row.discord_event_id)

        payload = build_event_payload(anchor.title, anchor.category_name, anchor.start_time, anchor.end_time, stream_url)
        try:
            event_id = await self._mirror(
                discord, integration.discord_guild_id, known_ids[0] if known_ids else None, payload
            )

            for duplicate in known_ids:
                if duplicate != event_id:
                    await self._delete_remote(discord, integration.discord_guild_id, duplicate)

            await self._set_event_id([row.id for row in rows], event_id)
        finally:
            # Pace Discord calls even when one fails
            await self._sleep(self.request_delay)

    async def upsert_event(
        self,
        db: AsyncSession,
        integration: DiscordIntegration,
        segment: ScheduleSegment,
        is_recurring: bool = False,
    ) -> SyncedCalendarEvent:
        """Insert or update the shadow row of (segment, integration). Never duplicates."""
        start_time = parse_rfc3339(segment.start_time)
        if start_time is None:
            raise ValueError(f"Segment {segment.id} has an invalid start time: {segment.start_time!r}")

        now = self._clock()
        values = {
            "title": segment.title,
            "start_time": start_time,
            "end_time": parse_rfc3339(segment.end_time),
            "category_name": segment.category.name if segment.category else None,
            "is_recurring": is_recurring,
            "last_synced_at": now,
            "updated_at": now,
        }
        stmt = sqlite_insert(SyncedCalendarEvent).values(
            user_id=integration.user_id,
            twitch_segment_id=segment.id,
            discord_integration_id=integration.id,
            created_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SyncedCalendarEvent.twitch_segment_id, SyncedCalendarEvent.discord_integration_id],
            set_=values,
        )
        await db.execute(stmt)

        result = await db.execute(
            select(SyncedCalendarEvent)
            .where(
                SyncedCalendarEvent.twitch_segment_id == segment.id,
                SyncedCalendarEvent.discord_integration_id == integration.id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ========================================================================
    # Discord
    # ========================================================================

    async def _mirror(
        self,
        discord: DiscordClient,
        guild_id: str,
        event_id: Optional[str],
        payload: Dict[str, Any],
    ) -> str:
        """Update the event when it exists, otherwise create it. Returns the event id."""
        if event_id:
            try:
                await discord.update_scheduled_event(guild_id, event_id, payload)
                return event_id
            except DiscordError as e:
                if e.status != 404:
                    raise
                logger.info(f"Discord event {event_id} disappeared; creating a new one")

        created = await discord.create_scheduled_event(guild_id, payload)
        new_id = str(created["id"])
        logger.info(f"Created Discord event {new_id} '{payload['name']}' in guild {guild_id}")
        return new_id

    async def _delete_remote(self, discord: DiscordClient, guild_id: str, event_id: str) -> None:
        try:
            await discord.delete_scheduled_event(guild_id, event_id)
        except Exception as e:
            logger.warning(f"Failed to delete Discord event {event_id} in guild {guild_id}: {e}")

    async def _delete_rows(
        self,
        discord: DiscordClient,
        integration: DiscordIntegration,
        rows: Iterable[SyncedCalendarEvent],
    ) -> None:
        """
        Delete shadow rows, remote events first.

        A remote event still referenced by a surviving row (another occurrence
        of the same recurring group) is kept.
        """
        rows = list(rows)
        doomed = {row.id for row in rows}
        surviving_ids = {
            row.discord_event_id
            for row in await self._rows_for(integration.id)
            if row.id not in doomed and row.discord_event_id
        }

        for event_id in {row.discord_event_id for row in rows if row.discord_event_id}:
            if event_id not in surviving_ids:
                await self._delete_remote(discord, integration.discord_guild_id, event_id)

        async with self._get_db_session() as db:
            await db.execute(delete(SyncedCalendarEvent).where(SyncedCalendarEvent.id.in_(doomed)))
            await db.commit()

    # ========================================================================
    # Rows
    # ========================================================================

    async def _rows_for(self, integration_id: int) -> List[SyncedCalendarEvent]:
        async with self._get_db_session() as db:
            result = await db.execute(
                select(SyncedCalendarEvent)
                .where(SyncedCalendarEvent.discord_integration_id == integration_id)
                .order_by(SyncedCalendarEvent.id)
            )
            return list(result.scalars().all())

    async def _set_event_id(self, row_ids: List[int], event_id: str) -> None:
        async with self._get_db_session() as db:
            await db.execute(
                update(SyncedCalendarEvent)
                .where(SyncedCalendarEvent.id.in_(row_ids))
                .values(discord_event_id=event_id, updated_at=self._clock())
            )
            await db.commit()
