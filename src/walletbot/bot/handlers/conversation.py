"""Free-text and inline button routing into the conversation state machine."""

import logging

from aiogram import F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery, Message

from walletbot.conversation import ConversationStateMachine
from walletbot.formatting import GENERIC_RETRY

logger = logging.getLogger(__name__)

router = Router()


@router.message(F.text)
async def handle_text(message: Message, machine: ConversationStateMachine) -> None:
    """Menu buttons and step input."""
    chat_id = message.chat.id
    try:
        await machine.handle_text(chat_id, message.text)
    except Exception as e:
        logger.exception(f"Error handling message in chat {chat_id}: {e}")
        await machine.responder.send_message(chat_id, GENERIC_RETRY)


@router.callback_query(F.data)
async def handle_callback(callback: CallbackQuery, machine: ConversationStateMachine) -> None:
    """Inline keyboard presses."""
    # Stop the button spinner before any slow backend work
    try:
        await callback.answer()
    except TelegramAPIError as e:
        logger.warning(f"Failed to answer callback query: {e}")

    if callback.message is None:
        return

    chat_id = callback.message.chat.id
    try:
        await machine.handle_callback(chat_id, callback.data)
    except Exception as e:
        logger.exception(f"Error in callback query handler for chat {chat_id}: {e}")
        await machine.responder.send_message(chat_id, GENERIC_RETRY)
