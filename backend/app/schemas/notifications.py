"""
Notification content payloads.

One model per notification type, discriminated by ``kind``. The same JSON is
stored in notification_queue.content_json and parsed back by the worker.
"""
from typing import Annotated, Dict, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from app.models.enums import NotificationType


class _Content(BaseModel):
    @property
    def notification_type(self) -> NotificationType:
        return NotificationType(self.kind)

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        raise NotImplementedError


class StreamOnlineData(_Content):
    kind: Literal["stream_online"] = "stream_online"
    streamer_name: str
    streamer_avatar: Optional[str] = None
    title: str
    category: str
    thumbnail_url: Optional[str] = None

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        return {
            "streamer": self.streamer_name,
            "title": self.title,
            "category": self.category,
            "game": self.category,
            "url": stream_url,
        }


class StreamOfflineData(_Content):
    kind: Literal["stream_offline"] = "stream_offline"
    streamer_name: str

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        return {"streamer": self.streamer_name}


class TitleChangeData(_Content):
    kind: Literal["title_change"] = "title_change"
    streamer_name: str
    new_title: str
    category_name: str = ""

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        return {
            "streamer": self.streamer_name,
            "title": self.new_title,
            "category": self.category_name,
            "game": self.category_name,
            "url": stream_url,
        }


class CategoryChangeData(_Content):
    kind: Literal["category_change"] = "category_change"
    streamer_name: str
    new_category: str

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        return {
            "streamer": self.streamer_name,
            "category": self.new_category,
            "game": self.new_category,
            "url": stream_url,
        }


class RewardRedemptionData(_Content):
    kind: Literal["reward_redemption"] = "reward_redemption"
    redeemer_name: str
    reward_name: str
    reward_cost: int
    user_input: Optional[str] = None
    broadcaster_name: str

    def placeholders(self, stream_url: str) -> Dict[str, str]:
        return {
            "user": self.redeemer_name,
            "reward": self.reward_name,
            "cost": str(self.reward_cost),
        }


NotificationContent = Annotated[
    Union[StreamOnlineData, StreamOfflineData, TitleChangeData, CategoryChangeData, RewardRedemptionData],
    Field(discriminator="kind"),
]

_content_adapter = TypeAdapter(NotificationContent)


def parse_content(raw: str) -> NotificationContent:
    """Parse stored content JSON. Raises pydantic.ValidationError on bad input."""
    return _content_adapter.validate_json(raw)


def dump_content(content: NotificationContent) -> str:
    return content.model_dump_json()
