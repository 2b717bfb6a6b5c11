"""Telegram delivery for conversation output.

Every method swallows delivery failures: a message that cannot be sent is
logged and reported as ``None``/``False`` so conversation state is never
left half-updated by a chat API hiccup.
"""

import logging
from typing import Optional, Union

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramForbiddenError
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup, ReplyKeyboardMarkup

logger = logging.getLogger(__name__)

ReplyMarkup = Union[InlineKeyboardMarkup, ReplyKeyboardMarkup]


class TelegramResponder:
    """Sends messages and photos to a chat on behalf of the state machine."""

    def __init__(self, bot: Bot):
        self._bot = bot

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[ReplyMarkup] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> Optional[int]:
        """Send a message to a chat.

        Returns:
            The sent message id, or None if delivery failed
        """
        try:
            message = await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                reply_markup=reply_markup,
                parse_mode=parse_mode,
                disable_web_page_preview=True,
            )
            return message.message_id
        except TelegramForbiddenError:
            logger.warning(f"User {chat_id} has blocked the bot")
        except TelegramBadRequest as e:
            logger.error(f"Bad request sending to {chat_id}: {e}")
        except TelegramAPIError as e:
            logger.error(f"Telegram API error sending to {chat_id}: {e}")
        except Exception as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
        return None

    async def send_photo(
        self,
        chat_id: int,
        photo: bytes,
        caption: Optional[str] = None,
        filename: str = "image.png",
        parse_mode: Optional[str] = "HTML",
    ) -> Optional[int]:
        """Upload PNG bytes as a photo.

        Returns:
            The sent message id, or None if delivery failed
        """
        try:
            message = await self._bot.send_photo(
                chat_id=chat_id,
                photo=BufferedInputFile(photo, filename=filename),
                caption=caption,
                parse_mode=parse_mode,
            )
            return message.message_id
        except TelegramAPIError as e:
            logger.error(f"Telegram API error sending photo to {chat_id}: {e}")
        except Exception as e:
            logger.error(f"Failed to send photo to {chat_id}: {e}")
        return None

    async def delete_message(self, chat_id: int, message_id: Optional[int]) -> bool:
        """Delete a transient message; a missing id is a no-op."""
        if message_id is None:
            return False
        try:
            return await self._bot.delete_message(chat_id=chat_id, message_id=message_id)
        except Exception as e:
            logger.warning(f"Failed to delete message {message_id} in {chat_id}: {e}")
        return False
