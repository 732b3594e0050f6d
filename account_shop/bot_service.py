# bot_service.py
"""
Telegram Bot Service.

Owns the python-telegram-bot Application: builds it from the stored bot
settings, adapts incoming updates into BotDispatcher calls and runs long
polling inside the web application's event loop.

Demo mode: when the token is missing, a placeholder, masked or malformed,
when the bot status is not 'active', or when Telegram rejects the token, the
service stays stopped and the dashboard keeps working on the store alone.
"""

import asyncio
import logging
from typing import Optional

from telegram import Update
from telegram.error import InvalidToken, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from account_shop import store
from account_shop.bot_commands import BotDispatcher
from account_shop.config import Settings, get_settings, is_usable_token, mask_token
from account_shop.db import Database
from account_shop.models import BotStatus
from account_shop.services import ChatIdentity

logger = logging.getLogger(__name__)


def identity_from_update(update: Update) -> Optional[ChatIdentity]:
    user = update.effective_user
    if user is None:
        return None
    return ChatIdentity(
        telegram_id=str(user.id),
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
    )


class BotService:
    """Start/stop/restart wrapper around a polling Telegram Application."""

    def __init__(self, database: Database, settings: Optional[Settings] = None):
        self.database = database
        self.settings = settings or get_settings()
        self.application: Optional[Application] = None
        self.dispatcher: Optional[BotDispatcher] = None
        self._lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        return self.application is not None and self.application.running

    @property
    def demo_mode(self) -> bool:
        return not self.is_active

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    async def initialize(self, token: Optional[str] = None, status: Optional[BotStatus] = None) -> bool:
        """
        Builds the Application. Token and status default to the stored bot
        settings. Returns False (demo mode) instead of raising.
        """
        if token is None or status is None:
            async with self.database.session() as db:
                bot_settings = await store.get_bot_settings(db)
            if bot_settings is None:
                logger.warning("Bot settings not found - using demo mode")
                return False
            token = bot_settings.token if token is None else token
            status = bot_settings.status if status is None else status

        if not is_usable_token(token):
            logger.warning("⚠️ Valid bot token not provided - using demo mode")
            return False

        if BotStatus(status) != BotStatus.ACTIVE:
            logger.info(f"Bot is in {BotStatus(status).value} mode - not starting polling")
            return False

        try:
            application = Application.builder().token(token).build()
            self.dispatcher = BotDispatcher(self.database, application.bot, self.settings)

            application.add_handler(CallbackQueryHandler(self._on_callback))
            application.add_handler(MessageHandler(filters.TEXT, self._on_message))
            application.add_error_handler(self._on_error)

            await application.initialize()
        except InvalidToken as e:
            logger.error(f"❌ Telegram rejected the bot token: {e} - using demo mode")
            return False
        except TelegramError as e:
            logger.error(f"❌ Error initializing bot: {e} - using demo mode")
            return False

        self.application = application
        logger.info(f"✅ Bot initialized with token: {mask_token(token)}")
        return True

    async def start(self, token: Optional[str] = None, status: Optional[BotStatus] = None) -> bool:
        async with self._lock:
            return await self._start(token, status)

    async def stop(self) -> None:
        async with self._lock:
            await self._stop()

    async def restart(self, token: Optional[str] = None, status: Optional[BotStatus] = None) -> bool:
        """Stops a running bot and starts again with the given token/status."""
        async with self._lock:
            await self._stop()
            return await self._start(token, status)

    async def _start(self, token: Optional[str], status: Optional[BotStatus]) -> bool:
        if not await self.initialize(token, status):
            return False

        try:
            await self.application.start()
            await self.application.updater.start_polling(drop_pending_updates=True)
        except TelegramError as e:
            logger.error(f"❌ Could not start polling: {e} - using demo mode")
            await self._stop()
            return False

        logger.info("🤖 Telegram bot polling started")
        return True

    async def _stop(self) -> None:
        application = self.application
        if application is None:
            return

        self.application = None
        try:
            if application.updater and application.updater.running:
                await application.updater.stop()
            if application.running:
                await application.stop()
            await application.shutdown()
        except TelegramError as e:
            logger.warning(f"Error while stopping bot: {e}")
        logger.info("🛑 Telegram bot stopped")

    # ==========================================================================
    # UPDATE ADAPTERS
    # ==========================================================================

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        chat = update.effective_chat
        sender = identity_from_update(update)
        if message is None or chat is None or sender is None or message.text is None:
            return

        reply_to_text = message.reply_to_message.text if message.reply_to_message else None
        await self.dispatcher.handle_message(chat.id, sender, message.text, reply_to_text=reply_to_text)

    async def _on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        chat = update.effective_chat
        sender = identity_from_update(update)
        if query is None or chat is None or sender is None or not query.data:
            return

        await self.dispatcher.handle_callback(query.id, chat.id, sender, query.data)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        update_info = "unknown"
        if isinstance(update, Update):
            if update.effective_user:
                update_info = f"user {update.effective_user.id}"
            elif update.effective_chat:
                update_info = f"chat {update.effective_chat.id}"
            update_info += f" (update_id: {update.update_id})"

        logger.error(f"Update from {update_info} caused error: {context.error}", exc_info=context.error)
