"""
Twitch Helix and EventSub data shapes.

Only the fields the service reads are declared; unknown fields are ignored.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 0
    scope: List[str] = Field(default_factory=list)
    token_type: str = "bearer"


class Stream(BaseModel):
    id: str
    user_id: str
    user_login: str
    user_name: str
    game_id: str = ""
    game_name: str = ""
    type: str = ""
    title: str = ""
    viewer_count: int = 0
    started_at: Optional[str] = None
    thumbnail_url: Optional[str] = None


class ScheduleCategory(BaseModel):
    id: str
    name: str


class ScheduleSegment(BaseModel):
    id: str
    start_time: str
    end_time: Optional[str] = None
    title: str = ""
    canceled_until: Optional[str] = None
    category: Optional[ScheduleCategory] = None
    is_recurring: bool = False


class Schedule(BaseModel):
    broadcaster_id: str
    broadcaster_name: str = ""
    broadcaster_login: str = ""
    segments: List[ScheduleSegment] = Field(default_factory=list)


class EventSubTransport(BaseModel):
    method: str = "webhook"
    callback: Optional[str] = None
    secret: Optional[str] = None


class EventSubInfo(BaseModel):
    """A subscription as returned by the EventSub API."""
    id: str
    status: str
    type: str
    version: str = "1"
    condition: Any = None
    created_at: Optional[str] = None
    transport: Optional[EventSubTransport] = None
    cost: int = 0


class EventSubSubscriptionRef(BaseModel):
    """The ``subscription`` object of a webhook delivery."""
    id: str
    type: str
    status: str = ""
    version: Optional[str] = None


class EventSubWebhookPayload(BaseModel):
    subscription: EventSubSubscriptionRef
    challenge: Optional[str] = None
    event: Optional[Dict[str, Any]] = None


class StreamOnlineEvent(BaseModel):
    broadcaster_user_id: str
    broadcaster_user_login: str = ""
    broadcaster_user_name: str = ""
    type: Optional[str] = None
    started_at: Optional[str] = None


class StreamOfflineEvent(BaseModel):
    broadcaster_user_id: str
    broadcaster_user_login: str = ""
    broadcaster_user_name: str = ""


class ChannelUpdateEvent(BaseModel):
    broadcaster_user_id: str
    broadcaster_user_login: str = ""
    broadcaster_user_name: str = ""
    title: str = ""
    category_id: str = ""
    category_name: str = ""


class RedemptionReward(BaseModel):
    id: Optional[str] = None
    title: str
    cost: int = 0
    prompt: Optional[str] = None


class RewardRedemptionEvent(BaseModel):
    id: Optional[str] = None
    broadcaster_user_id: str
    broadcaster_user_login: str = ""
    broadcaster_user_name: str = ""
    user_id: Optional[str] = None
    user_login: Optional[str] = None
    user_name: str
    user_input: Optional[str] = None
    reward: RedemptionReward
