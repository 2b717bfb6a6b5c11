"""Slash command handlers: /start, /authenticate, /reset."""

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from walletbot.conversation import ConversationStateMachine

router = Router()


@router.message(CommandStart())
async def cmd_start(message: Message, machine: ConversationStateMachine) -> None:
    """Handle /start command - drop the chat's session and show the menu."""
    first_name = message.from_user.first_name if message.from_user else None
    await machine.start(message.chat.id, first_name)


@router.message(Command("authenticate"))
async def cmd_authenticate(message: Message, machine: ConversationStateMachine) -> None:
    """Handle /authenticate command - begin the wallet handshake."""
    await machine.authenticate(message.chat.id)


@router.message(Command("reset"))
async def cmd_reset(message: Message, machine: ConversationStateMachine) -> None:
    """Handle /reset command - clear session and credentials."""
    first_name = message.from_user.first_name if message.from_user else None
    await machine.reset(message.chat.id, first_name)
