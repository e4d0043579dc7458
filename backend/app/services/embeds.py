"""
Discord embeds for each notification type.

Embeds decorate the already-rendered message with fields from the same
payload; they never re-render the template.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from app.schemas.notifications import (
    NotificationContent,
    StreamOnlineData,
    StreamOfflineData,
    TitleChangeData,
    CategoryChangeData,
    RewardRedemptionData,
)

TWITCH_PURPLE = 0x9146FF
SUCCESS = 0x57F287
INFO = 0x5865F2


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_embed(content: NotificationContent, message: str, stream_url: str) -> Tuple[Dict[str, Any], str, Optional[str]]:
    """
    Build the embed for a notification.

    Returns:
        (embed, webhook username, webhook avatar url)
    """
    if isinstance(content, StreamOnlineData):
        embed: Dict[str, Any] = {
            "title": f"🔴 {content.streamer_name} is now live!",
            "description": content.title,
            "url": stream_url,
            "color": TWITCH_PURPLE,
            "fields": [{"name": "Game", "value": content.category or "Unknown", "inline": True}],
            "timestamp": _now(),
        }
        if content.streamer_avatar:
            embed["author"] = {"name": content.streamer_name, "url": stream_url, "icon_url": content.streamer_avatar}
        if content.thumbnail_url:
            embed["image"] = {"url": content.thumbnail_url.replace("{width}", "440").replace("{height}", "248")}
        return embed, f"{content.streamer_name} is live!", content.streamer_avatar

    if isinstance(content, StreamOfflineData):
        embed = {
            "title": f"⚫ {content.streamer_name} ended the stream",
            "url": stream_url,
            "color": INFO,
            "timestamp": _now(),
        }
        return embed, content.streamer_name, None

    if isinstance(content, TitleChangeData):
        embed = {
            "title": f"📝 {content.streamer_name} changed the stream title",
            "description": message,
            "url": stream_url,
            "color": INFO,
            "timestamp": _now(),
        }
        return embed, content.streamer_name, None

    if isinstance(content, CategoryChangeData):
        embed = {
            "title": f"🎮 {content.streamer_name} changed the category",
            "description": message,
            "url": stream_url,
            "color": INFO,
            "timestamp": _now(),
        }
        return embed, content.streamer_name, None

    if isinstance(content, RewardRedemptionData):
        embed = {
            "title": f"🎁 {content.redeemer_name} redeemed a reward!",
            "description": f"**{content.reward_name}** for {content.reward_cost} points",
            "color": SUCCESS,
            "timestamp": _now(),
        }
        if content.user_input:
            embed["fields"] = [{"name": "Message", "value": content.user_input, "inline": False}]
        return embed, content.broadcaster_name, None

    raise TypeError(f"Unsupported notification content: {type(content).__name__}")
