"""Tests for the Telegram notifier."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram.error import NetworkError

from sentinel.config import TelegramSettings
from sentinel.sinks.telegram_sink import TelegramSink, build_keyboard, format_message, public_base_url

from conftest import make_draft


def settings(**kwargs) -> TelegramSettings:
    defaults = dict(enabled=True, bot_token="123:abc", channel_id="@razewire_news", channel_username="@razewire_news")
    defaults.update(kwargs)
    return TelegramSettings(**defaults)


def fake_bot() -> AsyncMock:
    bot = AsyncMock()
    bot.send_message.return_value = SimpleNamespace(message_id=42)
    return bot


def test_public_base_url_replaces_localhost() -> None:
    assert public_base_url("http://localhost:5173/") == "https://razewire.com"
    assert public_base_url("https://news.example.com/") == "https://news.example.com"


def test_format_message() -> None:
    draft = make_draft("Rice exports climb", category="business", published_at=datetime(2025, 3, 1, 9, 5, tzinfo=timezone.utc))
    message = format_message(draft)
    assert message.startswith("📰 *NEW ARTICLE PUBLISHED*")
    assert "*Rice exports climb*" in message
    assert "📂 Category: Business" in message
    assert "📅 Published: 2025-03-01 09:05 UTC" in message
    assert message.endswith("#news #business #razewire")


def test_keyboard_links() -> None:
    keyboard = build_keyboard(make_draft("Rice exports climb"), "http://localhost:3000", "@razewire_news")
    buttons = [button for row in keyboard.inline_keyboard for button in row]
    assert buttons[0].url == "https://razewire.com/news/rice-exports-climb"
    assert "https://t.me/razewire_news" in [b.url for b in buttons]


def test_requires_channel() -> None:
    with pytest.raises(ValueError):
        TelegramSink(settings(channel_id=None), bot=fake_bot())


async def test_notify_sends_markdown_message() -> None:
    bot = fake_bot()
    sink = TelegramSink(settings(), bot=bot)
    result = await sink.notify(make_draft("Rice exports climb"))

    assert result.ok
    assert result.message_id == "42"
    assert result.url == "https://razewire.com/news/rice-exports-climb"
    bot.initialize.assert_awaited_once()
    kwargs = bot.send_message.await_args.kwargs
    assert kwargs["chat_id"] == "@razewire_news"
    assert kwargs["parse_mode"] == "Markdown"

    await sink.close()
    bot.shutdown.assert_awaited_once()


async def test_notify_returns_failure_instead_of_raising() -> None:
    bot = fake_bot()
    bot.send_message.side_effect = NetworkError("connection reset")
    result = await TelegramSink(settings(), bot=bot).notify(make_draft())
    assert not result.ok
    assert "connection reset" in result.error
