"""
bot.py — Telegram bot handlers.

The chat is both the capture layer (user sends a photo) and the presentation
layer (cards + inline keyboards). All visual formatting is delegated to
style.py; persistence to database.py.

Session state is kept in-memory per user_id. Updates are processed
concurrently, so a new photo can arrive while an earlier scan is still
running; the ScanTracker generation counter makes the stale one drop out.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import database as db
import style
from analyzers.base import AnalysisError, ScannedItem
from analyzers.classifier import DisabledClassifier, SustainabilityClassifier
from analyzers.gemini_analyzer import GeminiAnalyzer
from analyzers.orchestrator import AnalysisOrchestrator, ScanState, ScanTracker
from collection import BANDS, collection_stats, filter_by_band, search_items
from config import Settings

logger = logging.getLogger(__name__)

# ── Callback data ──────────────────────────────────────────────────────────────
CB_RETRY        = "scan:retry:"      # + scan generation
CB_COLLECTION   = "col:open"
CB_PAGE         = "col:page:"        # + page index
CB_BAND         = "col:band:"        # + band name / "all"
CB_VIEW         = "col:view:"        # + item id
CB_DELETE       = "col:del:"         # + item id  → asks for confirmation
CB_DELETE_YES   = "col:delyes:"      # + item id
CB_CLEAR_YES    = "clear:yes"
CB_CLEAR_NO     = "clear:no"
CB_NOOP         = "nav:noop"

DEFAULT_PER_PAGE = 5


# ── Session ────────────────────────────────────────────────────────────────────

@dataclass
class UserSession:
    tracker: ScanTracker
    page: int = 0               # collection page (0-based)
    band: str = "all"
    query: str = ""


_sessions: dict[int, UserSession] = {}


# ── Rate limiter ───────────────────────────────────────────────────────────────
RATE_MAX_REQUESTS = 5
RATE_WINDOW_SECS  = 60
_rate_buckets: dict[int, deque] = defaultdict(deque)


def _is_rate_limited(user_id: int) -> bool:
    now    = time.monotonic()
    bucket = _rate_buckets[user_id]
    while bucket and now - bucket[0] > RATE_WINDOW_SECS:
        bucket.popleft()
    if len(bucket) >= RATE_MAX_REQUESTS:
        return True
    bucket.append(now)
    return False


def get_session(user_id: int, context: ContextTypes.DEFAULT_TYPE) -> UserSession:
    if user_id not in _sessions:
        orchestrator: AnalysisOrchestrator = context.bot_data["orchestrator"]
        _sessions[user_id] = UserSession(tracker=ScanTracker(orchestrator))
    return _sessions[user_id]


def _per_page(context: ContextTypes.DEFAULT_TYPE) -> int:
    return context.bot_data.get("results_per_page", DEFAULT_PER_PAGE)


# ── Keyboards ──────────────────────────────────────────────────────────────────

def retry_keyboard(generation: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🔄  Try again", callback_data=f"{CB_RETRY}{generation}")],
    ])


def result_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("📚  View collection", callback_data=CB_COLLECTION)],
    ])


def clear_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("🗑️  Yes, clear all", callback_data=CB_CLEAR_YES),
        InlineKeyboardButton("✖️  Cancel",          callback_data=CB_CLEAR_NO),
    ]])


def delete_keyboard(item: ScannedItem) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("🗑️  Delete",  callback_data=f"{CB_DELETE_YES}{item.id}"),
        InlineKeyboardButton("✖️  Cancel",  callback_data=f"{CB_PAGE}0"),
    ]])


def collection_keyboard(
    items: list[ScannedItem],
    page: int,
    per_page: int,
    band: str,
) -> InlineKeyboardMarkup:
    total_pages = max(1, (len(items) + per_page - 1) // per_page)
    start = page * per_page

    rows = [
        [
            InlineKeyboardButton(f"👁  #{start + i + 1}", callback_data=f"{CB_VIEW}{item.id}"),
            InlineKeyboardButton(f"🗑️  #{start + i + 1}", callback_data=f"{CB_DELETE}{item.id}"),
        ]
        for i, item in enumerate(items[start:start + per_page])
    ]

    nav = []
    if page > 0:
        nav.append(InlineKeyboardButton("◀", callback_data=f"{CB_PAGE}{page - 1}"))
    nav.append(InlineKeyboardButton(f"{page + 1} / {total_pages}", callback_data=CB_NOOP))
    if page < total_pages - 1:
        nav.append(InlineKeyboardButton("▶", callback_data=f"{CB_PAGE}{page + 1}"))
    rows.append(nav)

    band_row = []
    for b in ("all", *BANDS):
        label = style.BAND_LABEL.get(b, "All")
        if b == band:
            label = f"• {label}"
        band_row.append(InlineKeyboardButton(label, callback_data=f"{CB_BAND}{b}"))
    rows.append(band_row)
    return InlineKeyboardMarkup(rows)


# ── Handlers ───────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.welcome(), parse_mode="MarkdownV2")


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.help_text(), parse_mode="MarkdownV2")


async def cmd_about(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.about(), parse_mode="MarkdownV2")


async def cmd_collection(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    session = get_session(user_id, context)
    session.query = " ".join(context.args or []).strip()
    session.band  = "all"
    session.page  = 0

    items = await db.get_scanned_items(owner=user_id)
    if not items:
        await update.message.reply_text(style.empty_collection(), parse_mode="MarkdownV2")
        return

    text, keyboard = _collection_view(items, session, _per_page(context))
    await update.message.reply_text(text, parse_mode="MarkdownV2", reply_markup=keyboard)


async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    items = await db.get_scanned_items(owner=update.effective_user.id)
    await update.message.reply_text(
        style.stats_card(collection_stats(items)),
        parse_mode="MarkdownV2",
    )


async def cmd_clear(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    items = await db.get_scanned_items(owner=update.effective_user.id)
    if not items:
        await update.message.reply_text(style.empty_collection(), parse_mode="MarkdownV2")
        return
    await update.message.reply_text(
        style.confirm_clear(len(items)),
        parse_mode="MarkdownV2",
        reply_markup=clear_keyboard(),
    )


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id

    if _is_rate_limited(user_id):
        await update.message.reply_text(
            style.error_rate_limited(RATE_MAX_REQUESTS, RATE_WINDOW_SECS),
            parse_mode="MarkdownV2",
        )
        return

    session = get_session(user_id, context)
    tracker = session.tracker
    token   = tracker.begin_capture()

    msg = await update.message.reply_text(style.loading_scan(), parse_mode="MarkdownV2")

    photo = update.message.photo[-1]
    try:
        photo_file  = await context.bot.get_file(photo.file_id)
        image_bytes = bytes(await photo_file.download_as_bytearray())
    except TelegramError as exc:
        logger.error("Photo download failed for user %s: %s", user_id, exc)
        if tracker.is_current(token):
            tracker.reset()
        await msg.edit_text(style.error_download_failed(), parse_mode="MarkdownV2")
        return

    # The Telegram file_id is the image reference: stored, never copied
    if not tracker.capture(image_bytes, photo.file_id, token):
        await msg.edit_text(style.scan_superseded(), parse_mode="MarkdownV2")
        return
    await _run_scan(msg, session, user_id)


async def _run_scan(message, session: UserSession, user_id: int) -> None:
    """Analyse the captured image and render the outcome into `message`."""
    tracker = session.tracker
    try:
        item = await tracker.analyze()
    except AnalysisError as exc:
        logger.error("Scan failed for user %s: %s", user_id, exc)
        await message.edit_text(
            style.error_analysis_failed(exc),
            parse_mode="MarkdownV2",
            reply_markup=retry_keyboard(tracker.generation),
        )
        return

    if item is None:
        # Superseded by a newer photo / retry; that run owns the result now
        await message.edit_text(style.scan_superseded(), parse_mode="MarkdownV2")
        return

    saved = True
    try:
        await db.save_scanned_item(item, owner=user_id)
    except Exception as exc:
        logger.error("Failed to save scan %s: %s", item.id, exc)
        saved = False

    await message.edit_text(
        style.result_card(item, saved=saved),
        parse_mode="MarkdownV2",
        reply_markup=result_keyboard(),
    )


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    user_id  = update.effective_user.id
    session  = get_session(user_id, context)
    data     = query.data
    per_page = _per_page(context)

    # ── Retry the failed scan on the same image ───────────────────────────────
    if data.startswith(CB_RETRY):
        tracker = session.tracker
        try:
            generation = int(data[len(CB_RETRY):])
        except ValueError:
            generation = -1
        if (
            tracker.image_bytes is None
            or tracker.state is not ScanState.FAILED
            or not tracker.is_current(generation)
        ):
            await query.edit_message_text(style.error_retry_unavailable(), parse_mode="MarkdownV2")
            return
        await query.edit_message_text(style.loading_scan(retry=True), parse_mode="MarkdownV2")
        await _run_scan(query.message, session, user_id)
        return

    if data == CB_NOOP:
        return

    # ── Clear confirmation ────────────────────────────────────────────────────
    if data == CB_CLEAR_YES:
        await db.clear_scanned_items(owner=user_id)
        await query.edit_message_text(style.cleared(), parse_mode="MarkdownV2")
        return
    if data == CB_CLEAR_NO:
        await query.edit_message_text("👍 Kept your collection\\.", parse_mode="MarkdownV2")
        return

    # ── View a single item ────────────────────────────────────────────────────
    if data.startswith(CB_VIEW):
        item = await db.get_scanned_item(data[len(CB_VIEW):], owner=user_id)
        if item is None:
            await _refresh_collection(query, session, user_id, per_page)
            return
        chat_id = query.message.chat_id
        try:
            await context.bot.send_photo(chat_id=chat_id, photo=item.image_uri)
        except TelegramError as exc:
            logger.warning("Could not re-send photo for %s: %s", item.id, exc)
        await context.bot.send_message(
            chat_id=chat_id,
            text=style.result_card(item, footer=f"📅 Scanned {style.fmt_date(item.scanned_at)}"),
            parse_mode="MarkdownV2",
        )
        return

    # ── Delete (ask, then do) ─────────────────────────────────────────────────
    if data.startswith(CB_DELETE):
        item = await db.get_scanned_item(data[len(CB_DELETE):], owner=user_id)
        if item is None:
            await _refresh_collection(query, session, user_id, per_page)
            return
        await query.edit_message_text(
            style.confirm_delete(item.object_name),
            parse_mode="MarkdownV2",
            reply_markup=delete_keyboard(item),
        )
        return

    if data.startswith(CB_DELETE_YES):
        item_id = data[len(CB_DELETE_YES):]
        item = await db.get_scanned_item(item_id, owner=user_id)
        await db.delete_scanned_item(item_id, owner=user_id)
        if item is not None:
            await query.message.reply_text(style.deleted(item.object_name), parse_mode="MarkdownV2")
        await _refresh_collection(query, session, user_id, per_page)
        return

    # ── Collection navigation ─────────────────────────────────────────────────
    if data == CB_COLLECTION:
        session.page, session.band, session.query = 0, "all", ""
        await _refresh_collection(query, session, user_id, per_page)
        return

    if data.startswith(CB_PAGE):
        session.page = max(0, int(data[len(CB_PAGE):]))
        await _refresh_collection(query, session, user_id, per_page)
        return

    if data.startswith(CB_BAND):
        band = data[len(CB_BAND):]
        session.band = band if band in ("all", *BANDS) else "all"
        session.page = 0
        await _refresh_collection(query, session, user_id, per_page)
        return


def _collection_view(
    items: list[ScannedItem],
    session: UserSession,
    per_page: int,
) -> tuple[str, InlineKeyboardMarkup]:
    visible = filter_by_band(search_items(items, session.query), session.band)
    total_pages = max(1, (len(visible) + per_page - 1) // per_page)
    session.page = min(session.page, total_pages - 1)
    text = style.collection_page(visible, session.page, per_page, session.band, session.query)
    return text, collection_keyboard(visible, session.page, per_page, session.band)


async def _refresh_collection(query, session: UserSession, user_id: int, per_page: int) -> None:
    items = await db.get_scanned_items(owner=user_id)
    if not items:
        await query.edit_message_text(style.empty_collection(), parse_mode="MarkdownV2")
        return
    text, keyboard = _collection_view(items, session, per_page)
    await query.edit_message_text(text, parse_mode="MarkdownV2", reply_markup=keyboard)


async def handle_non_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.not_a_photo(), parse_mode="MarkdownV2")


# ── App factory ────────────────────────────────────────────────────────────────

async def _post_init(application: Application) -> None:
    await db.init_db()


def build_orchestrator(settings: Settings) -> AnalysisOrchestrator:
    analyzer = GeminiAnalyzer(settings.gemini)
    if settings.classifier.enabled:
        predictor = SustainabilityClassifier(settings.classifier)
    else:
        logger.info("Classifier disabled by CLASSIFIER_ENABLED=false")
        predictor = DisabledClassifier()
    return AnalysisOrchestrator(analyzer, predictor)


def build_application(settings: Settings) -> Application:
    app = (
        Application.builder()
        .token(settings.telegram_bot_token)
        .post_init(_post_init)
        .concurrent_updates(True)
        .build()
    )
    app.bot_data["orchestrator"]     = build_orchestrator(settings)
    app.bot_data["results_per_page"] = settings.results_per_page

    app.add_handler(CommandHandler("start",      cmd_start))
    app.add_handler(CommandHandler("help",       cmd_help))
    app.add_handler(CommandHandler("about",      cmd_about))
    app.add_handler(CommandHandler("collection", cmd_collection))
    app.add_handler(CommandHandler("stats",      cmd_stats))
    app.add_handler(CommandHandler("clear",      cmd_clear))
    app.add_handler(MessageHandler(filters.PHOTO,                   handle_photo))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_non_photo))
    return app
