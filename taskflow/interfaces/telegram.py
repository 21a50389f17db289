import logging
from datetime import date
from typing import Optional, Tuple

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import ApplicationBuilder, CallbackQueryHandler, CommandHandler, ContextTypes

from taskflow.core.config import settings
from taskflow.core.errors import DispatchError, InvalidTransitionError
from taskflow.core.notifier import ChannelResult, NotificationChannel, WorkflowNotification
from taskflow.models.workflow import WorkflowKind

logger = logging.getLogger("taskflow.telegram")

CALLBACK_PREFIX = "wf"


def encode_callback_data(kind: WorkflowKind, workflow_date: date, action: str, param: Optional[int] = None) -> str:
    """wf|{kind}|{date}|{action}|{param}, well under Telegram's 64 byte limit."""
    return "|".join(
        [CALLBACK_PREFIX, WorkflowKind(kind).value, workflow_date.isoformat(), action, "" if param is None else str(param)]
    )


def decode_callback_data(data: str) -> Tuple[WorkflowKind, date, str, Optional[int]]:
    parts = (data or "").split("|")
    if len(parts) != 5 or parts[0] != CALLBACK_PREFIX:
        raise ValueError(f"Not a workflow callback: {data!r}")
    _, kind, day, action, param = parts
    return WorkflowKind(kind), date.fromisoformat(day), action, int(param) if param else None


def build_keyboard(notification: WorkflowNotification) -> InlineKeyboardMarkup:
    def button(action):
        return InlineKeyboardButton(
            action.label,
            callback_data=encode_callback_data(notification.kind, notification.workflow_date, action.action, action.param),
        )

    start = [button(a) for a in notification.actions if a.action == "start"]
    snoozes = [button(a) for a in notification.actions if a.action == "snooze"]
    cancel = [button(a) for a in notification.actions if a.action == "cancel"]
    return InlineKeyboardMarkup([row for row in (start, snoozes, cancel) if row])


# Running application (set by run_telegram_bot)
_global_app = None


class TelegramPushChannel(NotificationChannel):
    """Sends the workflow prompt as a message with an inline keyboard."""

    name = "telegram"

    def __init__(self, bot: Optional[Bot] = None, token: Optional[str] = None):
        self._bot = bot
        self._token = token
        self._initialized = bot is not None

    async def _get_bot(self) -> Bot:
        if _global_app is not None:
            return _global_app.bot
        if self._bot is None:
            if not self._token:
                raise TelegramError("TELEGRAM_BOT_TOKEN not set")
            self._bot = Bot(self._token)
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True
        return self._bot

    async def send(self, notification: WorkflowNotification) -> ChannelResult:
        try:
            bot = await self._get_bot()
            await bot.send_message(
                chat_id=notification.channel_id,
                text=f"{notification.title}\n\n{notification.body}",
                reply_markup=build_keyboard(notification),
            )
        except TelegramError as e:
            logger.error(f"Telegram send to {notification.channel_id} failed: {e}")
            raise DispatchError("telegram", str(e)) from e
        return ChannelResult(success=True)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await context.bot.send_message(
        chat_id=update.effective_chat.id,
        text=f"🗓 TaskFlow workflow notifier online. Your chat id is {update.effective_chat.id}.",
    )


async def handle_workflow_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Button taps route straight into the state machine."""
    query = update.callback_query
    try:
        kind, workflow_date, action, param = decode_callback_data(query.data)
    except ValueError as e:
        logger.warning(f"Ignoring callback: {e}")
        await query.answer("Unknown action")
        return

    from taskflow.core.engine import get_engine

    try:
        result = await get_engine().machine.apply_action(kind, workflow_date, action, param)
    except InvalidTransitionError as e:
        await query.answer(str(e), show_alert=True)
        return
    except Exception as e:
        logger.error(f"Workflow callback {query.data} failed: {e}", exc_info=True)
        await query.answer("❌ Something went wrong, please try again.")
        return

    await query.answer(result.message)
    if not result.changed:
        return

    try:
        original = query.message.text if query.message else ""
        await query.edit_message_text(text=f"{original}\n\n✅ {result.message}")
    except TelegramError as e:
        logger.debug(f"Could not edit workflow message: {e}")


async def run_telegram_bot():
    """Starts polling for commands and workflow button callbacks."""
    global _global_app

    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN not set. Telegram Interface disabled.")
        return

    from telegram.request import HTTPXRequest

    request = HTTPXRequest(connection_pool_size=8, read_timeout=30.0, write_timeout=30.0, connect_timeout=30.0)
    builder = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).request(request)

    proxy_url = settings.TELEGRAM_PROXY_URL
    if proxy_url:
        logger.info(f"Using Telegram Proxy: {proxy_url}")
        builder = builder.proxy(proxy_url).get_updates_proxy(proxy_url)

    application = builder.build()
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CallbackQueryHandler(handle_workflow_callback, pattern=r"^wf\|"))

    logger.info("Starting Telegram Bot Polling...")
    await application.initialize()
    await application.start()
    _global_app = application
    await application.updater.start_polling()


async def stop_telegram_bot():
    global _global_app

    if _global_app is None:
        return
    application, _global_app = _global_app, None
    try:
        await application.updater.stop()
        await application.stop()
        await application.shutdown()
    except TelegramError as e:
        logger.warning(f"Telegram shutdown error: {e}")
