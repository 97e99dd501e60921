"""
Delivery transports for the workflow bot.

Both transports turn Telegram updates into ``InboundUpdate`` objects, pass
them through the shared ``CommandHandler`` and send the reply back:
- PollingTransport: python-telegram-bot Application with long polling
- WebhookTransport: Telegram webhook JSON (served by ``workflowbot.server``)
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from telegram import Bot, BotCommand as TGBotCommand, Update
from telegram.error import TelegramError
from telegram.ext import Application, MessageHandler, filters
from telegram.request import HTTPXRequest

from ..logging_config import get_logger
from .commands import COMMANDS
from .handler import CommandHandler
from .models import InboundUpdate

logger = get_logger("workflowbot.telegram.transport")

# Telegram rejects longer messages
MAX_MESSAGE_LENGTH = 4096


def inbound_from_update(update: Optional[Update]) -> Optional[InboundUpdate]:
    """Reduce a telegram.Update to sender, chat and text. None if not a new text message."""
    if update is None or update.message is None:
        return None
    message = update.message
    if message.from_user is None:
        return None
    text = (message.text or "").strip()
    if not text:
        return None
    return InboundUpdate(sender_id=message.from_user.id, chat_id=message.chat_id, text=text)


class Transport(ABC):
    """Receives updates for the handler and delivers its replies."""

    def __init__(self, handler: CommandHandler):
        self.handler = handler

    @abstractmethod
    def receive_update(self, raw: Any) -> Optional[InboundUpdate]:
        """Convert a transport-specific update; None means nothing to handle."""

    @abstractmethod
    async def send_reply(self, chat_id: int, text: str) -> None:
        """Deliver reply text to a chat."""

    async def process(self, raw: Any) -> Optional[str]:
        """Handle one raw update end to end. Returns the reply text, if any."""
        update = self.receive_update(raw)
        if update is None:
            return None
        reply = await self.handler.handle(update)
        try:
            await self.send_reply(update.chat_id, reply[:MAX_MESSAGE_LENGTH])
        except TelegramError as e:
            logger.error_with("Failed to send reply", chat_id=update.chat_id, error=str(e))
        return reply


class PollingTransport(Transport):
    """Long-polling transport built on a python-telegram-bot Application."""

    def __init__(self, handler: CommandHandler, bot_token: str, timeout: float = 15.0):
        super().__init__(handler)
        self._app = (
            Application.builder()
            .token(bot_token)
            .concurrent_updates(True)
            .connect_timeout(timeout)
            .read_timeout(timeout)
            .write_timeout(timeout)
            .build()
        )
        self._app.add_handler(MessageHandler(filters.UpdateType.MESSAGE & filters.TEXT, self._on_message))
        self._app.add_error_handler(self._on_error)
        self._initialized = False
        self._running = False

    @property
    def app(self) -> Application:
        return self._app

    def receive_update(self, raw: Update) -> Optional[InboundUpdate]:
        return inbound_from_update(raw)

    async def send_reply(self, chat_id: int, text: str) -> None:
        await self._app.bot.send_message(chat_id=chat_id, text=text)

    async def _on_message(self, update, context):
        await self.process(update)

    async def _on_error(self, update, context):
        logger.error(f"Telegram update error: {context.error}")

    async def start(self):
        """Start long polling."""
        if self._running:
            raise RuntimeError("Polling transport is already running")

        await self._app.initialize()
        self._initialized = True
        await self._app.start()

        try:
            await self._app.bot.set_my_commands(
                [TGBotCommand(cmd.command, cmd.description) for cmd in COMMANDS]
            )
            me = await self._app.bot.get_me()
            logger.info(f"Telegram bot started as @{me.username}")
        except TelegramError as e:
            logger.error(f"Failed to set bot commands: {e}")

        await self._app.updater.start_polling(
            drop_pending_updates=True,
            allowed_updates=[Update.MESSAGE],
        )
        self._running = True
        logger.info("Telegram bot polling started")

    async def stop(self):
        """Stop polling and shut the application down, also after a failed start."""
        if not self._initialized:
            return
        self._running = False
        try:
            if self._app.updater and self._app.updater.running:
                await self._app.updater.stop()
            if self._app.running:
                await self._app.stop()
        finally:
            self._initialized = False
            await self._app.shutdown()
        logger.info("Telegram bot stopped")


class WebhookTransport(Transport):
    """Webhook transport: raw update JSON in, Bot API sendMessage out."""

    def __init__(self, handler: CommandHandler, bot_token: str, timeout: float = 15.0, bot: Optional[Bot] = None):
        super().__init__(handler)
        self.bot = bot if bot is not None else Bot(
            bot_token,
            request=HTTPXRequest(connect_timeout=timeout, read_timeout=timeout, write_timeout=timeout),
        )

    def receive_update(self, raw: dict) -> Optional[InboundUpdate]:
        if not isinstance(raw, dict):
            return None
        try:
            update = Update.de_json(raw, self.bot)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed update: {e}")
            return None
        return inbound_from_update(update)

    async def send_reply(self, chat_id: int, text: str) -> None:
        await self.bot.send_message(chat_id=chat_id, text=text)

    async def start(self):
        await self.bot.initialize()

    async def stop(self):
        await self.bot.shutdown()

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        """Register ``url`` as the bot's webhook."""
        return await self.bot.set_webhook(
            url=url,
            secret_token=secret_token or None,
            allowed_updates=[Update.MESSAGE],
            drop_pending_updates=True,
        )
