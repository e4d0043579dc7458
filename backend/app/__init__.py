"""
Streamrelay - Twitch stream notifications for Telegram and Discord.
"""
__version__ = "0.1.0"
