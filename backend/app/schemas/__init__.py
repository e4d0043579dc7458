"""
Pydantic schemas for notification payloads and Twitch API data.
"""
