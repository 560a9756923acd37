"""
style.py — visual style system for the bot.

Design language:
  • Structured cards with consistent emoji icons
  • Unicode box-drawing dividers
  • Clear visual hierarchy: header → body → footer
  • MarkdownV2 throughout

All text that goes into Telegram messages should be formatted through this module.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from analyzers.base import AnalysisError, ScannedItem, SUSTAINABLE
from collection import CollectionStats

# ── Escape ────────────────────────────────────────────────────────────────────

def esc(text: str) -> str:
    """Escape all MarkdownV2 special characters."""
    for ch in r"\_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, f"\\{ch}")
    return text


# ── Visual constants ──────────────────────────────────────────────────────────

DIV   = "━━━━━━━━━━━━━━━━━━━━━━━━━━"    # thick divider
SDIV  = "┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄"    # subtle divider

BAND_ICON  = {"excellent": "🏆", "good": "✅", "fair": "⚠️", "poor": "🛑"}
BAND_LABEL = {"excellent": "Excellent", "good": "Good", "fair": "Fair", "poor": "Poor"}
BAND_DOT   = {"excellent": "🟢", "good": "🟡", "fair": "🟠", "poor": "🔴"}

MAX_MESSAGE = 4050


def score_bar(score: int) -> str:
    s = max(0, min(10, score))
    return "█" * s + "░" * (10 - s)


def fmt_confidence(confidence: Optional[float]) -> str:
    if confidence is None:
        return "—"
    return f"{confidence * 100:.0f}%"


def fmt_date(iso: str) -> str:
    """'2026-03-02T10:15:00+00:00' → 'Mar 2'"""
    try:
        dt = datetime.fromisoformat(iso)
    except (TypeError, ValueError):
        return iso or ""
    return f"{dt:%b} {dt.day}"


def _bullets(values: Optional[list[str]], empty: str = "_none_") -> str:
    if not values:
        return f"  ▸ {empty}"
    return "\n".join(f"  ▸ {esc(v)}" for v in values)


def _truncate(full: str) -> str:
    """
    Cap a MarkdownV2 message at MAX_MESSAGE. Cards keep every entity on a
    single line, so the cut goes at the last line break when there is one
    in the second half; otherwise it backs off a dangling escape backslash.
    """
    if len(full) <= MAX_MESSAGE:
        return full
    cut = full[:MAX_MESSAGE]
    newline = cut.rfind("\n")
    if newline > MAX_MESSAGE // 2:
        return cut[:newline] + "\n\\.\\.\\."
    if (len(cut) - len(cut.rstrip("\\"))) % 2:
        cut = cut[:-1]
    return cut + "\\.\\.\\."


# ══════════════════════════════════════════════════════════════════════════════
# START / HELP / ABOUT
# ══════════════════════════════════════════════════════════════════════════════

def welcome() -> str:
    return (
        f"🌿 *ECOSCAN*\n"
        f"{DIV}\n\n"
        f"Send a photo of any object and I'll rate how\n"
        f"sustainable it is\\.\n\n"
        f"✨  *What I can do*\n"
        f"▸ Score the object from 1 to 10\n"
        f"▸ Explain its environmental impact\n"
        f"▸ Suggest eco\\-friendly alternatives\n"
        f"▸ Keep a collection of everything you scan\n\n"
        f"{DIV}\n"
        f"_📸 Just send a photo to get started_"
    )


def help_text() -> str:
    return (
        f"📖 *HOW TO USE*\n"
        f"{DIV}\n\n"
        f"*1️⃣  Send a photo*\n"
        f"_One object, well\\-lit, filling the frame_\n\n"
        f"*2️⃣  Two models analyse it*\n"
        f"_A vision model writes the report, a classifier double\\-checks_\n\n"
        f"*3️⃣  Browse your collection*\n"
        f"_/collection to list, filter and delete scans_\n\n"
        f"{DIV}\n"
        f"_Commands: /start · /help · /collection · /stats · /clear · /about_"
    )


def about() -> str:
    return (
        f"ℹ️ *ABOUT ECOSCAN*\n"
        f"{DIV}\n\n"
        f"Every scan runs two analyses in parallel:\n"
        f"▸ 🤖 *Vision model* — full sustainability report\n"
        f"▸ 🧠 *ML classifier* — sustainable / unsustainable label\n\n"
        f"If the classifier is unreachable the report is still saved\\.\n\n"
        f"*Score guide*\n"
        f"🏆 8–10  Excellent\n"
        f"✅ 6–7  Good\n"
        f"⚠️ 4–5  Fair\n"
        f"🛑 1–3  Poor"
    )


# ══════════════════════════════════════════════════════════════════════════════
# SCAN
# ══════════════════════════════════════════════════════════════════════════════

def loading_scan(retry: bool = False) -> str:
    title = "Retrying analysis" if retry else "Analysing your photo"
    return (
        f"🔍 *{title}*\n"
        f"{SDIV}\n"
        f"Running *2 models* in parallel…\n\n"
        f"⠋ Assessing sustainability…"
    )


def prediction_line(item: ScannedItem) -> str:
    if item.sustainability_prediction:
        icon = "🌱" if item.sustainability_prediction == SUSTAINABLE else "🏭"
        return (
            f"🧠 *ML model:* {icon} {esc(item.sustainability_prediction.capitalize())}"
            f"  `{esc(fmt_confidence(item.prediction_confidence))}`"
        )
    if item.api_error:
        return f"🧠 *ML model:* _unavailable — {esc(item.api_error)}_"
    return "🧠 *ML model:* _no prediction_"


def result_card(item: ScannedItem, saved: bool = True, footer: Optional[str] = None) -> str:
    """Full report card. `footer` (plain text) replaces the saved/not-saved note."""
    band = item.score_band
    if footer is not None:
        footer_line = f"_{esc(footer)}_"
    elif saved:
        footer_line = "_✅ Saved to your collection_"
    else:
        footer_line = "_⚠️ Couldn't save this scan to your collection_"
    extras = []
    if item.key_points:
        extras.append(f"🔑 *Key Points*\n{_bullets(item.key_points)}")
    if item.materials:
        extras.append(f"🧱 *Materials*\n{_bullets(item.materials)}")
    if item.carbon_footprint:
        extras.append(f"💨 *Carbon Footprint*\n{esc(item.carbon_footprint)}")
    if item.recyclability:
        extras.append(f"♻️ *Recyclability*\n{esc(item.recyclability)}")
    extra_block = ("\n\n".join(extras) + "\n\n") if extras else ""

    full = (
        f"🌿 *{esc(item.object_name)}*\n"
        f"📦 {esc(item.category)}\n"
        f"{DIV}\n\n"
        f"{BAND_ICON[band]} *{item.sustainability_score}/10 · {BAND_LABEL[band]}*\n"
        f"`{score_bar(item.sustainability_score)}`\n"
        f"{prediction_line(item)}\n\n"
        f"🌍 *Environmental Impact*\n{esc(item.environmental_impact)}\n\n"
        f"💡 *Eco\\-friendly Alternatives*\n{_bullets(item.eco_friendly_alternatives)}\n\n"
        f"📊 *Did you know?*\n{_bullets(item.facts)}\n\n"
        f"{extra_block}"
        f"{SDIV}\n"
        f"{footer_line}"
    )
    return _truncate(full)


def error_analysis_failed(exc: Optional[AnalysisError] = None) -> str:
    reason = ""
    if exc is not None:
        reason = f"_{esc(_human_reason(exc))}_\n\n"
    return (
        f"❌ *Analysis Failed*\n"
        f"{DIV}\n\n"
        f"{reason}"
        f"Couldn't analyse this photo\\. Try:\n"
        f"▸ Better lighting\n"
        f"▸ A closer shot of a single object\n"
        f"▸ Tapping *Try again* below\n"
    )


def _human_reason(exc: AnalysisError) -> str:
    msg = exc.message
    if msg == "network error":
        return "Couldn't reach the vision service."
    if msg == "request failed":
        return f"The vision service returned an error (HTTP {exc.status})."
    if msg in ("malformed response", "no JSON found", "parse failure"):
        return "The vision service gave an unreadable answer."
    if msg.startswith("missing field") or msg.startswith("invalid field"):
        return "The vision service gave an incomplete report."
    return msg


def error_retry_unavailable() -> str:
    return (
        f"⚠️ *Nothing to retry*\n"
        f"{SDIV}\n"
        f"That scan has expired\\. Please send the photo again\\."
    )


def scan_superseded() -> str:
    return "⏭ _Replaced by a newer scan\\._"


def error_download_failed() -> str:
    return (
        f"❌ *Couldn't Download Photo*\n"
        f"{SDIV}\n"
        f"Telegram didn't hand over the image\\.\n"
        f"_Please send the photo again\\._"
    )


def not_a_photo() -> str:
    return (
        f"📸 *Send a Photo*\n"
        f"{SDIV}\n"
        f"I need a photo of an object to analyse\\.\n"
        f"_Just take a pic and send it here\\!_"
    )


def error_rate_limited(max_requests: int, window_secs: int) -> str:
    return (
        f"⏱ *Slow Down\\!*\n"
        f"{SDIV}\n"
        f"You can scan up to *{max_requests} photos* every *{window_secs} seconds*\\.\n\n"
        f"_Please wait a moment before sending another photo\\._"
    )


# ══════════════════════════════════════════════════════════════════════════════
# COLLECTION
# ══════════════════════════════════════════════════════════════════════════════

def collection_row(item: ScannedItem, index: int) -> str:
    band = item.score_band
    alt = len(item.eco_friendly_alternatives)
    alt_note = f"  ·  {alt} alternatives" if alt else ""
    return (
        f"*{index}\\.*  {esc(item.object_name[:80])}\n"
        f"   {BAND_DOT[band]} {item.sustainability_score}/10 {BAND_LABEL[band]}"
        f"  ·  {esc(item.category)}  ·  📅 {esc(fmt_date(item.scanned_at))}{esc(alt_note)}"
    )


def collection_page(
    items: list[ScannedItem],
    page: int,
    per_page: int,
    band: str = "all",
    query: str = "",
) -> str:
    total_pages = max(1, (len(items) + per_page - 1) // per_page)
    start = page * per_page
    page_items = items[start:start + per_page]

    filters = [f"🏷️ {esc(BAND_LABEL.get(band, 'All'))}"]
    if query:
        filters.append(f"🔎 _{esc(query[:40])}_")

    header = (
        f"📚 *YOUR COLLECTION*\n"
        f"{DIV}\n"
        f"{'   '.join(filters)}   📄 {page + 1}/{total_pages}\n"
        f"{SDIV}\n"
    )
    if not page_items:
        return header + "\n_No items match\\. Scan something or change the filter\\._"

    rows = [collection_row(item, start + i + 1) for i, item in enumerate(page_items)]
    footer = f"\n{SDIV}\n_{len(items)} items_"
    return _truncate(header + "\n" + "\n\n".join(rows) + footer)


def empty_collection() -> str:
    return (
        f"🍃 *No Items Yet*\n"
        f"{SDIV}\n"
        f"Start scanning objects to build your sustainability\n"
        f"collection and track your environmental impact\\!"
    )


def stats_card(stats: CollectionStats) -> str:
    bands = "\n".join(
        f"{BAND_DOT[b]} {BAND_LABEL[b]}: *{stats.by_band.get(b, 0)}*"
        for b in BAND_LABEL
    )
    return (
        f"📈 *YOUR IMPACT*\n"
        f"{DIV}\n\n"
        f"🍃 Items scanned: *{stats.total}*\n"
        f"📊 Avg\\. score: *{esc(f'{stats.average_score:.1f}')}*\n"
        f"🌱 Sustainable \\(ML\\): *{stats.sustainable_count}*\n\n"
        f"{SDIV}\n"
        f"{bands}"
    )


def confirm_clear(count: int) -> str:
    return (
        f"🗑️ *Clear Collection?*\n"
        f"{SDIV}\n"
        f"This permanently removes *{count}* saved scans\\."
    )


def cleared() -> str:
    return "🗑️ Collection cleared\\."


def confirm_delete(name: str) -> str:
    return (
        f"🗑️ *Delete Item?*\n"
        f"{SDIV}\n"
        f"Remove *{esc(name)}* from your collection?"
    )


def deleted(name: str) -> str:
    return f"🗑️ Removed *{esc(name)}* from your collection\\."
