import logging

from aiogram import Bot, Dispatcher, F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from shopbot.checkout import CATALOG, CheckoutInitiator
from shopbot.config import Settings
from shopbot.notifications import format_amount

logger = logging.getLogger(__name__)

router = Router()


def catalog_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(
            text=f"{p.name} - {format_amount(p.price, p.currency)}",
            callback_data=f"buy_{p.id}",
        )]
        for p in CATALOG
    ])


@router.message(Command("start"))
async def cmd_start(message: Message):
    await message.answer("Welcome! Send /shop to open the catalog.")


@router.message(Command("shop"))
async def cmd_shop(message: Message):
    await message.answer("Catalog:", reply_markup=catalog_keyboard())


@router.callback_query(F.data.startswith("buy_"))
async def on_buy(callback: CallbackQuery, checkout: CheckoutInitiator):
    await callback.answer()
    chat_id = callback.message.chat.id
    try:
        product_id = int(callback.data.removeprefix("buy_"))
        result = await checkout.start_checkout(callback.from_user.id, chat_id, product_id)
    except Exception:
        logger.exception("Error creating order for user %s (%s)", callback.from_user.id, callback.data)
        await callback.bot.send_message(
            chat_id, "Something went wrong while creating your order. Please try again later."
        )
        return
    await callback.bot.send_message(chat_id, f"Pay here: {result.url}")


def create_bot(settings: Settings) -> Bot:
    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is not set. Check your .env file.")
    return Bot(token=settings.bot_token)


async def run_polling(bot: Bot, checkout: CheckoutInitiator) -> None:
    dp = Dispatcher()
    dp.include_router(router)
    logger.info("Bot polling started")
    # Runs inside the web server: uvicorn owns the signals and the lifespan closes the session
    await dp.start_polling(bot, handle_signals=False, close_bot_session=False, checkout=checkout)
