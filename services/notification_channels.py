"""
Notification channels for tuning file events

One Notifier per channel: the file-admin and super-admin operator bots, the
customer bot and Brevo email. Each channel raises on failure and raises
NotificationSkipped when it has nothing to deliver; isolation is the
dispatcher's job.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError

from config import Config
from models import FileStatus
from services.notification_events import FileEvent, FileEventKind, NotificationSkipped
from services.notification_templates import (
    STATUS_EMOJI,
    STATUS_LABEL,
    EMAIL_RENDERERS,
    render_customer_message,
    render_operator_message,
)
from utils.callback_data import (
    ESTIMATE_CHOICES_MINUTES,
    FILE_ADMIN_STATUS_PREFIX,
    SUPER_ADMIN_STATUS_PREFIX,
    build_estimate_callback,
    build_status_callback,
)
from utils.exceptions import ExternalServiceError
from utils.file_state_machine import FileStateValidator

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """A delivery channel for file events"""

    name: str = "notifier"

    def accepts(self, event: FileEvent) -> bool:
        return True

    @abstractmethod
    async def send(self, event: FileEvent) -> Optional[str]:
        """Deliver the event; returns the provider message id when there is one"""


def build_operator_keyboard(
    event: FileEvent, callback_prefix: str, include_estimates: bool = False
) -> InlineKeyboardMarkup:
    """One button per allowed next status, plus estimate shortcuts on PENDING files"""
    status_row = [
        InlineKeyboardButton(
            text=f"{STATUS_EMOJI[FileStatus(target)]} {STATUS_LABEL[FileStatus(target)]}",
            callback_data=build_status_callback(callback_prefix, event.file_id, FileStatus(target)),
        )
        for target in FileStateValidator.get_valid_transitions(event.status.value)
    ]
    keyboard = [status_row] if status_row else []

    if include_estimates and event.status == FileStatus.PENDING:
        buttons = [
            InlineKeyboardButton(text=f"⏱ {minutes}m", callback_data=build_estimate_callback(event.file_id, minutes))
            for minutes in ESTIMATE_CHOICES_MINUTES
        ]
        keyboard.append(buttons[:4])
        keyboard.append(buttons[4:])
    return InlineKeyboardMarkup(keyboard)


class TelegramOperatorNotifier(Notifier):
    """Operator broadcast through a role-specific bot identity"""

    def __init__(
        self,
        name: str,
        bot: Optional[Bot],
        chat_id: Optional[str],
        callback_prefix: str,
        include_estimate_buttons: bool = False,
        enabled: bool = True,
    ):
        self.name = name
        self._bot = bot
        self._chat_id = chat_id
        self._callback_prefix = callback_prefix
        self._include_estimate_buttons = include_estimate_buttons
        self._enabled = enabled

    def accepts(self, event: FileEvent) -> bool:
        # Price and payment changes are customer-facing only
        return event.kind in (FileEventKind.STATUS, FileEventKind.ADMIN_NOTE)

    async def send(self, event: FileEvent) -> Optional[str]:
        if not (self._enabled and self._bot and self._chat_id):
            raise NotificationSkipped(f"{self.name} bot is disabled or not configured")

        try:
            message = await self._bot.send_message(
                chat_id=self._chat_id,
                text=render_operator_message(event),
                parse_mode=ParseMode.HTML,
                reply_markup=build_operator_keyboard(
                    event, self._callback_prefix, self._include_estimate_buttons
                ),
                disable_web_page_preview=True,
            )
        except TelegramError as e:
            raise ExternalServiceError(f"telegram:{self.name}", str(e))

        logger.info(
            f"✅ TELEGRAM_SENT: channel={self.name} file={event.file_id} "
            f"kind={event.kind.value} status={event.status.value}"
        )
        return str(message.message_id)


class TelegramCustomerNotifier(Notifier):
    """Direct message to the customer, only when they linked the customer bot"""

    name = "customer_telegram"

    def __init__(self, bot: Optional[Bot], enabled: bool = True):
        self._bot = bot
        self._enabled = enabled

    def accepts(self, event: FileEvent) -> bool:
        if event.kind == FileEventKind.ADMIN_NOTE:
            return bool((event.admin_note or "").strip())
        return True

    async def send(self, event: FileEvent) -> Optional[str]:
        if not (self._enabled and self._bot):
            raise NotificationSkipped("customer bot is disabled or not configured")
        if not event.customer_chat_id:
            raise NotificationSkipped(f"customer {event.customer_id} has not linked Telegram")

        try:
            message = await self._bot.send_message(
                chat_id=event.customer_chat_id,
                text=render_customer_message(event),
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
        except TelegramError as e:
            raise ExternalServiceError("telegram:customer", str(e))

        logger.info(f"✅ TELEGRAM_SENT: channel={self.name} user={event.customer_id} file={event.file_id}")
        return str(message.message_id)


class BrevoEmailNotifier(Notifier):
    """File ready, price set and payment confirmed emails through Brevo transactional email"""

    name = "email"

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        from_name: str,
        transactional_api=None,
        timeout: float = 30.0,
    ):
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = timeout
        self.transactional_emails_api = transactional_api
        if self.transactional_emails_api is None and api_key:
            configuration = sib_api_v3_sdk.Configuration()
            configuration.api_key["api-key"] = api_key
            api_client = sib_api_v3_sdk.ApiClient(configuration)
            self.transactional_emails_api = sib_api_v3_sdk.TransactionalEmailsApi(api_client)

    EMAIL_TAGS = {
        FileEventKind.STATUS: "file-ready",
        FileEventKind.PRICE_SET: "price-set",
        FileEventKind.PAYMENT_CONFIRMED: "payment-confirmed",
    }

    def accepts(self, event: FileEvent) -> bool:
        if event.kind == FileEventKind.STATUS:
            return event.status == FileStatus.READY
        return event.kind in (FileEventKind.PRICE_SET, FileEventKind.PAYMENT_CONFIRMED)

    async def send(self, event: FileEvent) -> Optional[str]:
        if self.transactional_emails_api is None:
            raise NotificationSkipped("BREVO_API_KEY not configured")
        if not event.customer_email:
            raise NotificationSkipped(f"customer {event.customer_id} has no email address")

        template = EMAIL_RENDERERS[event.kind](event, self._from_name)
        send_smtp_email = sib_api_v3_sdk.SendSmtpEmail(
            to=[sib_api_v3_sdk.SendSmtpEmailTo(email=event.customer_email, name=event.customer_name or None)],
            sender=sib_api_v3_sdk.SendSmtpEmailSender(email=self._from_email, name=self._from_name),
            subject=template["subject"],
            html_content=template["html_content"],
            text_content=template["text_content"],
            tags=["tuning-file", self.EMAIL_TAGS[event.kind]],
        )

        try:
            # Brevo SDK is blocking
            api_response = await asyncio.wait_for(
                asyncio.to_thread(self.transactional_emails_api.send_transac_email, send_smtp_email),
                timeout=self._timeout,
            )
        except ApiException as e:
            raise ExternalServiceError("brevo", f"status={e.status} reason={e.reason}")

        message_id = getattr(api_response, "message_id", None)
        logger.info(f"✅ EMAIL_SENT: to={event.customer_email} file={event.file_id} message_id={message_id}")
        return message_id


def _bot_for(token: Optional[str]) -> Optional[Bot]:
    return Bot(token) if token else None


def build_notifiers(config=Config) -> List[Notifier]:
    """Channel set wired from configuration; unconfigured channels report SKIPPED"""
    return [
        TelegramOperatorNotifier(
            name="file_admin_telegram",
            bot=_bot_for(config.TELEGRAM_FILE_ADMIN_BOT_TOKEN),
            chat_id=config.TELEGRAM_FILE_ADMIN_CHAT_ID,
            callback_prefix=FILE_ADMIN_STATUS_PREFIX,
            include_estimate_buttons=True,
            enabled=config.TELEGRAM_FILE_ADMIN_ENABLED,
        ),
        TelegramOperatorNotifier(
            name="super_admin_telegram",
            bot=_bot_for(config.TELEGRAM_SUPER_ADMIN_BOT_TOKEN),
            chat_id=config.TELEGRAM_SUPER_ADMIN_CHAT_ID,
            callback_prefix=SUPER_ADMIN_STATUS_PREFIX,
            enabled=config.TELEGRAM_SUPER_ADMIN_ENABLED,
        ),
        TelegramCustomerNotifier(
            bot=_bot_for(config.TELEGRAM_CUSTOMER_BOT_TOKEN),
            enabled=config.TELEGRAM_CUSTOMER_ENABLED,
        ),
        BrevoEmailNotifier(
            api_key=config.BREVO_API_KEY,
            from_email=config.FROM_EMAIL,
            from_name=config.FROM_NAME,
        ),
    ]
