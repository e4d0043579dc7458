"""
Application constants with documented reasoning.

This file centralizes "magic numbers" used throughout the codebase,
providing clear documentation for why each value was chosen.
"""

# =============================================================================
# HTTP CLIENT TIMEOUTS
# =============================================================================

# General HTTP client timeout (Twitch, Discord, Telegram)
# 30 seconds allows for slow upstreams while preventing a hung call from
# stalling the dispatcher or a reconciliation loop indefinitely
HTTP_CLIENT_TIMEOUT_SECONDS = 30

# Grace period for in-flight queue work during shutdown
# After this the batch is abandoned; its tasks stay "processing" and are
# reclaimed by the stale-processing sweep on the next start
SHUTDOWN_GRACE_SECONDS = 15

# =============================================================================
# DATABASE
# =============================================================================

# SQLite busy timeout - wait for locks before failing
# 5 seconds covers the claim-one updates of several concurrent workers
SQLITE_BUSY_TIMEOUT_MS = 5000

# =============================================================================
# BACKGROUND LOOPS
# =============================================================================

# Background task health check interval
# 60 seconds is frequent enough to catch crashes quickly
# without adding unnecessary overhead
TASK_MONITOR_CHECK_INTERVAL_SECONDS = 60

# Data retention cleanup interval
# Hourly is sufficient - retention is measured in days, not seconds
RETENTION_CLEANUP_INTERVAL_SECONDS = 3600

# How often missing bot clients are retried after a failed startup init
BOT_CLIENT_INIT_RETRY_SECONDS = 300

# =============================================================================
# TWITCH EVENTSUB
# =============================================================================

# Header names of an EventSub webhook delivery (matched case-insensitively)
EVENTSUB_MESSAGE_ID_HEADER = "Twitch-Eventsub-Message-Id"
EVENTSUB_MESSAGE_TIMESTAMP_HEADER = "Twitch-Eventsub-Message-Timestamp"
EVENTSUB_MESSAGE_SIGNATURE_HEADER = "Twitch-Eventsub-Message-Signature"
EVENTSUB_MESSAGE_TYPE_HEADER = "Twitch-Eventsub-Message-Type"

EVENTSUB_SIGNATURE_PREFIX = "sha256="

EVENTSUB_MESSAGE_TYPE_VERIFICATION = "webhook_callback_verification"
EVENTSUB_MESSAGE_TYPE_NOTIFICATION = "notification"
EVENTSUB_MESSAGE_TYPE_REVOCATION = "revocation"

EVENTSUB_STREAM_ONLINE = "stream.online"
EVENTSUB_STREAM_OFFLINE = "stream.offline"
EVENTSUB_CHANNEL_UPDATE = "channel.update"
EVENTSUB_REWARD_REDEMPTION = "channel.channel_points_custom_reward_redemption.add"

# Deliveries older than this are rejected as replays
# Twitch documents 10 minutes as the replay window
WEBHOOK_MESSAGE_MAX_AGE_SECONDS = 600

# A subscription still waiting for webhook verification after this long will
# never verify; it is deleted and recreated
VERIFICATION_PENDING_TIMEOUT_SECONDS = 600

# =============================================================================
# STREAM STATE
# =============================================================================

# "Is live" cache lifetime
# Title/category/reward events arrive in bursts while live; one Helix call per
# minute per broadcaster is plenty
LIVE_STATUS_CACHE_TTL_SECONDS = 60

# Refresh a stored user token when it expires within this window so a
# request does not race the expiry
TOKEN_REFRESH_MARGIN_SECONDS = 60

TWITCH_STREAM_URL_BASE = "https://twitch.tv"

# =============================================================================
# CALENDAR SYNC
# =============================================================================

# Delay between Discord scheduled-event writes
# Discord allows 5 requests per 5 seconds on these endpoints
CALENDAR_REQUEST_DELAY_SECONDS = 1.2

# Discord requires an end time for external events; used when the Twitch
# segment has none
CALENDAR_DEFAULT_EVENT_DURATION_HOURS = 2

# =============================================================================
# NOTIFICATIONS
# =============================================================================

# Retry budget of a queued delivery when the caller does not set one
DEFAULT_MAX_ATTEMPTS = 5

# A delivery older than this is stale news ("stream is live" an hour late)
DEFAULT_TASK_TTL_SECONDS = 300

DEFAULT_STREAM_ONLINE_MESSAGE = "🔴 {streamer} started streaming!\n\n{title}\n🎮 {game}\n\n{url}"
DEFAULT_STREAM_OFFLINE_MESSAGE = "⚫ {streamer} ended the stream"
DEFAULT_TITLE_CHANGE_MESSAGE = "📝 {streamer} changed stream title:\n\n{title}"
DEFAULT_CATEGORY_CHANGE_MESSAGE = "🎮 {streamer} changed category to: {game}"
DEFAULT_REWARD_REDEMPTION_MESSAGE = "🎁 {user} redeemed reward \"{reward}\"!"
