"""
Telegram channel announcements for published articles.
"""

import logging
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.helpers import escape_markdown

from ..config import TelegramSettings
from ..interfaces import Notifier
from ..models import Draft, NotificationResult, utcnow


logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://razewire.com"


def public_base_url(base_url: str) -> str:
    """Telegram rejects localhost button URLs; fall back to the public site."""
    base = (base_url or PRODUCTION_URL).rstrip("/")
    return PRODUCTION_URL if "localhost" in base or "127.0.0.1" in base else base


def format_message(draft: Draft) -> str:
    category = draft.category.capitalize() if draft.category else "General"
    published = (draft.published_at or utcnow()).strftime("%Y-%m-%d %H:%M UTC")
    message = "📰 *NEW ARTICLE PUBLISHED*\n\n"
    message += f"*{escape_markdown(draft.title.en)}*\n\n"
    message += f"{escape_markdown(draft.description.en)}\n\n"
    message += f"📂 Category: {escape_markdown(category)}\n"
    message += f"📅 Published: {published}\n\n"
    message += f"#news #{category.lower().replace(' ', '')} #razewire"
    return message


def build_keyboard(draft: Draft, base_url: str, channel_username: Optional[str] = None) -> InlineKeyboardMarkup:
    base = public_base_url(base_url)
    channel = (channel_username or "razewire").lstrip("@")
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("📖 Read Full Article", url=f"{base}/news/{draft.slug}")],
            [
                InlineKeyboardButton("🏠 Visit Website", url=base),
                InlineKeyboardButton("📰 All News", url=f"{base}/news"),
            ],
            [
                InlineKeyboardButton("📱 Follow Us", url=f"https://t.me/{channel}"),
                InlineKeyboardButton("🌐 Website", url=base),
            ],
        ]
    )


class TelegramSink(Notifier):
    """Posts a Markdown announcement with navigation buttons to a channel."""

    name = "TelegramSink"

    def __init__(self, settings: TelegramSettings, bot: Optional[Bot] = None):
        if not settings.bot_token and bot is None:
            raise ValueError("Telegram bot_token is required")
        if not settings.channel_id:
            raise ValueError("Telegram channel_id is required")
        self.settings = settings
        self.bot = bot or Bot(token=settings.bot_token)
        self._initialized = False

    async def notify(self, draft: Draft) -> NotificationResult:
        """Send the announcement for a published draft."""
        try:
            if not self._initialized:
                await self.bot.initialize()
                self._initialized = True
            message = await self.bot.send_message(
                chat_id=self.settings.channel_id,
                text=format_message(draft),
                parse_mode=ParseMode.MARKDOWN,
                reply_markup=build_keyboard(draft, self.settings.base_url, self.settings.channel_username),
            )
        except TelegramError as e:
            logger.error(f"Failed to send Telegram notification: {e}")
            return NotificationResult.failed(str(e))

        return NotificationResult(
            ok=True,
            message_id=str(message.message_id),
            url=f"{public_base_url(self.settings.base_url)}/news/{draft.slug}",
        )

    async def close(self) -> None:
        if self._initialized:
            await self.bot.shutdown()
            self._initialized = False
