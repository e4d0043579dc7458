"""
EventSub subscription reconciliation.

Keeps each user's remote EventSub subscriptions equal to the required set:
extraneous records are pruned (remote first, local only after the remote
delete succeeded), required records that are neither enabled nor freshly
pending verification are deleted and recreated, missing types are created, and a create that fails is
healed by adopting a matching subscription that already exists remotely.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, NamedTuple, Optional
from loguru import logger
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.twitch import TwitchClient
from app.constants import (
    VERIFICATION_PENDING_TIMEOUT_SECONDS,
    EVENTSUB_STREAM_ONLINE,
    EVENTSUB_STREAM_OFFLINE,
    EVENTSUB_CHANNEL_UPDATE,
    EVENTSUB_REWARD_REDEMPTION,
)
from app.models import EventSubSubscription, SubscriptionStatus, User
from app.schemas.twitch import EventSubInfo
from app.utils.clock import utcnow


class RequiredSubscription(NamedTuple):
    type: str
    version: str


# Every user gets all event types; integrations filter what they care about
REQUIRED_SUBSCRIPTIONS: List[RequiredSubscription] = [
    RequiredSubscription(EVENTSUB_STREAM_ONLINE, "1"),
    RequiredSubscription(EVENTSUB_STREAM_OFFLINE, "1"),
    RequiredSubscription(EVENTSUB_CHANNEL_UPDATE, "2"),
    RequiredSubscription(EVENTSUB_REWARD_REDEMPTION, "1"),
]

# Remote subscriptions in any other state are broken and must not be adopted
ADOPTABLE_STATUSES = {
    SubscriptionStatus.ENABLED.value,
    SubscriptionStatus.VERIFICATION_PENDING.value,
}


def condition_matches_broadcaster(condition: Any, broadcaster_id: str) -> bool:
    """A condition matches when it names the broadcaster, as an object field or a bare string."""
    if isinstance(condition, dict):
        return condition.get("broadcaster_user_id") == broadcaster_id
    if isinstance(condition, str):
        return condition == broadcaster_id
    return False


@dataclass
class ReconcileReport:
    created: List[str] = field(default_factory=list)
    adopted: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class SubscriptionReconciler:
    def __init__(
        self,
        twitch: TwitchClient,
        get_db_session: Callable[[], AsyncSession],
        required: Optional[List[RequiredSubscription]] = None,
        clock=utcnow,
    ):
        self.twitch = twitch
        self._get_db_session = get_db_session
        self.required = required or REQUIRED_SUBSCRIPTIONS
        self._clock = clock

    async def sync_all(self) -> Dict[int, ReconcileReport]:
        """Reconcile every user. One user's failure never stops the others."""
        async with self._get_db_session() as db:
            result = await db.execute(select(User).order_by(User.id))
            users = list(result.scalars().all())

        reports: Dict[int, ReconcileReport] = {}
        for user in users:
            try:
                reports[user.id] = await self.sync_for_user(user)
            except Exception as e:
                logger.error(f"EventSub sync failed for user {user.id} ({user.twitch_login}): {e}")
        logger.info(f"EventSub sync finished for {len(reports)}/{len(users)} user(s)")
        return reports

    async def sync_for_user(self, user: User) -> ReconcileReport:
        report = ReconcileReport()
        records = await self._load(user.id)
        logger.debug(f"User {user.id} has {len(records)} local EventSub subscription(s)")

        required_types = {r.type for r in self.required}

        # Prune
        for record in records:
            if record.subscription_type not in required_types:
                if await self._delete(record, "no longer required"):
                    report.deleted.append(record.subscription_type)

        # Recreate required subscriptions that are not healthy
        cutoff = self._clock() - timedelta(seconds=VERIFICATION_PENDING_TIMEOUT_SECONDS)
        for record in records:
            if record.subscription_type not in required_types or self._is_healthy(record, cutoff):
                continue
            logger.warning(
                f"Subscription {record.twitch_subscription_id} ({record.subscription_type}) is {record.status}; recreating"
            )
            if await self._delete(record, f"status {record.status}"):
                report.deleted.append(record.subscription_type)

        # Fill
        present = {r.subscription_type for r in await self._load(user.id)}
        remote_cache: Optional[List[EventSubInfo]] = None
        for required in self.required:
            if required.type in present:
                continue

            condition = {"broadcaster_user_id": user.twitch_id}
            try:
                info = await self.twitch.create_eventsub_subscription(required.type, required.version, condition)
            except Exception as e:
                logger.warning(f"Failed to create {required.type} for user {user.id}: {e}; looking for an existing one")
                if remote_cache is None:
                    try:
                        remote_cache = await self.twitch.list_eventsub_subscriptions()
                    except Exception as list_error:
                        logger.error(f"Failed to list EventSub subscriptions: {list_error}")
                        report.failed.append(required.type)
                        continue

                match = next(
                    (
                        sub for sub in remote_cache
                        if sub.type == required.type
                        and sub.status in ADOPTABLE_STATUSES
                        and condition_matches_broadcaster(sub.condition, user.twitch_id)
                    ),
                    None,
                )
                if match is None:
                    logger.error(f"No existing {required.type} subscription for user {user.id}; will retry next pass")
                    report.failed.append(required.type)
                    continue

                await self._persist(user.id, match)
                report.adopted.append(required.type)
                logger.info(f"Adopted existing {required.type} subscription {match.id} for user {user.id}")
                continue

            await self._persist(user.id, info)
            report.created.append(required.type)
            logger.info(f"Created {required.type} subscription {info.id} for user {user.id} (status {info.status})")

        return report

    @staticmethod
    def _is_healthy(record: EventSubSubscription, pending_cutoff) -> bool:
        """Enabled, or still inside the verification window."""
        if record.status == SubscriptionStatus.ENABLED.value:
            return True
        if record.status == SubscriptionStatus.VERIFICATION_PENDING.value:
            return record.created_at is None or record.created_at >= pending_cutoff
        return False

    async def _load(self, user_id: int) -> List[EventSubSubscription]:
        async with self._get_db_session() as db:
            result = await db.execute(
                select(EventSubSubscription)
                .where(EventSubSubscription.user_id == user_id)
                .order_by(EventSubSubscription.id)
            )
            return list(result.scalars().all())

    async def _delete(self, record: EventSubSubscription, reason: str) -> bool:
        """Delete remotely, then locally. The local row stays when the remote delete fails."""
        try:
            await self.twitch.delete_eventsub_subscription(record.twitch_subscription_id)
        except Exception as e:
            logger.warning(
                f"Failed to delete {record.subscription_type} subscription {record.twitch_subscription_id} "
                f"({reason}): {e}; keeping local record"
            )
            return False

        async with self._get_db_session() as db:
            await db.execute(delete(EventSubSubscription).where(EventSubSubscription.id == record.id))
            await db.commit()
        logger.info(f"Removed {record.subscription_type} subscription {record.twitch_subscription_id} ({reason})")
        return True

    async def _persist(self, user_id: int, info: EventSubInfo) -> None:
        async with self._get_db_session() as db:
            result = await db.execute(
                select(EventSubSubscription).where(EventSubSubscription.twitch_subscription_id == info.id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                db.add(EventSubSubscription(
                    twitch_subscription_id=info.id,
                    user_id=user_id,
                    subscription_type=info.type,
                    status=info.status,
                ))
            else:
                record.user_id = user_id
                record.subscription_type = info.type
                record.status = info.status
            await db.commit()
