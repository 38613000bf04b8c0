"""
MedMinder — Telegram Bot.

Telegram is the only user interface. Reminders arrive as messages with
"Taken" / "Snooze" buttons; a handful of commands manage medications.
All real work is delegated to the ReminderEngine held in bot_data.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)
from telegram.helpers import escape_markdown

from src.config import settings
from src.core.occurrence import parse_time_of_day
from src.core.registry import ValidationError, ValidationReason
from src.data.models import (
    Daily,
    EmergencyContact,
    Medication,
    MedicationType,
    OccurrenceState,
    Weekday,
    WeeklyOn,
)

if TYPE_CHECKING:
    from src.core.engine import ReminderEngine
    from src.ports.notification_port import NotificationPort
    from src.ports.notification_sink import WakeupPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

_TYPE_NAMES = {t.name.lower(): t for t in MedicationType}

_DAY_NAMES = {
    "sun": Weekday.SUNDAY, "mon": Weekday.MONDAY, "tue": Weekday.TUESDAY,
    "wed": Weekday.WEDNESDAY, "thu": Weekday.THURSDAY, "fri": Weekday.FRIDAY,
    "sat": Weekday.SATURDAY,
}

_VALIDATION_MESSAGES = {
    ValidationReason.EMPTY_NAME: "The medication needs a name.",
    ValidationReason.NO_REMINDER_TIMES: "Add at least one reminder time, e.g. 08:00.",
    ValidationReason.INVALID_QUANTITY: "Pills and capsules need a quantity above zero.",
    ValidationReason.INVALID_DOSE: "The dose per time must be at least 1.",
    ValidationReason.DUPLICATE_ID: "That medication already exists.",
}

ADDMED_USAGE = (
    "Usage: /addmed name; type; quantity; times; days; dose; description\n"
    "Example: /addmed Aspirin; pill; 30; 08:00,20:00; daily; 1\n"
    "Types: " + ", ".join(_TYPE_NAMES) + "\n"
    "Days: daily, or a list like mon,wed,fri"
)


def _parse_days(raw: str) -> Daily | WeeklyOn:
    raw = raw.strip().lower()
    if raw in ("", "daily", "every day"):
        return Daily()
    days = set()
    for part in raw.split(","):
        part = part.strip()[:3]
        if part not in _DAY_NAMES:
            raise ValueError(f"Unknown day: {part!r}")
        days.add(_DAY_NAMES[part])
    return WeeklyOn(frozenset(days))


def parse_medication_spec(text: str) -> dict:
    """Parse "name; type; quantity; times; days; dose; description".

    Everything after the name is optional. Raises ValueError with a
    user-readable message on bad input.
    """
    parts = [p.strip() for p in text.split(";")]
    parts += [""] * (7 - len(parts))
    name, type_raw, qty_raw, times_raw, days_raw, dose_raw, description = parts[:7]

    type_key = type_raw.lower() or "pill"
    if type_key not in _TYPE_NAMES:
        raise ValueError(f"Unknown type: {type_raw!r}")

    try:
        quantity = int(qty_raw) if qty_raw else 0
        dose = int(dose_raw) if dose_raw else 1
    except ValueError:
        raise ValueError("Quantity and dose must be whole numbers.") from None

    times = [parse_time_of_day(t) for t in times_raw.split(",") if t.strip()]

    return {
        "name": name,
        "type": _TYPE_NAMES[type_key],
        "quantity": quantity,
        "reminder_times": sorted(set(times)),
        "recurrence": _parse_days(days_raw),
        "dose_per_time": dose,
        "description": description,
    }


def _describe_recurrence(recurrence: Daily | WeeklyOn) -> str:
    if isinstance(recurrence, Daily):
        return "daily"
    if not recurrence.days:
        return "never"
    return ",".join(d.name[:3].title() for d in sorted(recurrence.days))


def _resolve_medication(engine: ReminderEngine, arg: str) -> Medication | None:
    """Look up a medication by its 1-based position in /meds."""
    try:
        index = int(arg)
    except ValueError:
        return None
    meds = engine.list_medications()
    if 1 <= index <= len(meds):
        return meds[index - 1]
    return None


def _command_text(update: Update) -> str:
    """Message text after the /command word."""
    text = update.message.text or ""
    _, _, rest = text.partition(" ")
    return rest.strip()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — greet the user."""
    await update.message.reply_text(
        "Hi! I'll remind you to take your medications and alert your "
        "emergency contact if a dose is missed.\nSend /help to see commands."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list commands."""
    await update.message.reply_text(
        "/meds — list medications\n"
        "/addmed — add a medication\n"
        "/editmed <n> — replace a medication's details\n"
        "/contact <n> name; email; phone — set the emergency contact\n"
        "/take <n> — record a dose\n"
        "/history <n> — recent reminders\n"
        "/deletemed — delete a medication"
    )


@authorized_only
async def cmd_meds(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /meds — list all medications with their next reminder."""
    engine: ReminderEngine = context.bot_data["engine"]

    meds = engine.list_medications()
    if not meds:
        await update.message.reply_text("No medications yet. Use /addmed to add one.")
        return

    lines = ["*Medications:*\n"]
    for i, med in enumerate(meds, start=1):
        times = ", ".join(t.strftime("%H:%M") for t in med.reminder_times)
        line = f"`{i}` — {escape_markdown(med.name)} ({med.type.name.lower()}, {_describe_recurrence(med.recurrence)} at {times})"
        if med.is_countable:
            line += f", {med.quantity_remaining}/{med.quantity_initial} left"
        occurrence = engine.next_occurrence(med.id)
        if occurrence is not None:
            line += f"\n      next: {occurrence.scheduled_at:%a %d/%m %H:%M}"
        lines.append(line)
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_addmed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addmed name; type; quantity; times; days; dose; description."""
    engine: ReminderEngine = context.bot_data["engine"]

    text = _command_text(update)
    if not text:
        await update.message.reply_text(ADDMED_USAGE)
        return

    try:
        fields = parse_medication_spec(text)
    except ValueError as exc:
        await update.message.reply_text(f"{exc}\n\n{ADDMED_USAGE}")
        return

    med = Medication.create(
        fields["name"], fields["description"], fields["type"], fields["quantity"],
    )
    med.reminder_times = fields["reminder_times"]
    med.recurrence = fields["recurrence"]
    med.dose_per_time = fields["dose_per_time"]

    try:
        stored = await engine.add_medication(med)
    except ValidationError as exc:
        await update.message.reply_text(_VALIDATION_MESSAGES[exc.reason])
        return

    occurrence = engine.next_occurrence(stored.id)
    msg = f"✅ Added *{escape_markdown(stored.name)}*."
    if occurrence is not None:
        msg += f" First reminder: {occurrence.scheduled_at:%a %d/%m %H:%M}"
    await update.message.reply_text(msg, parse_mode="Markdown")


@authorized_only
async def cmd_editmed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /editmed <n> name; type; quantity; times; days; dose; description."""
    engine: ReminderEngine = context.bot_data["engine"]

    index, _, spec = _command_text(update).partition(" ")
    med = _resolve_medication(engine, index)
    if med is None or not spec.strip():
        await update.message.reply_text(
            "Usage: /editmed <n> name; type; quantity; times; days; dose; description"
        )
        return

    try:
        fields = parse_medication_spec(spec)
    except ValueError as exc:
        await update.message.reply_text(str(exc))
        return

    quantity = fields.pop("quantity")
    fields["quantity_initial"] = quantity if fields["type"].is_countable else 0

    try:
        updated = await engine.edit_medication(med.id, **fields)
    except ValidationError as exc:
        await update.message.reply_text(_VALIDATION_MESSAGES[exc.reason])
        return

    if updated is None:
        await update.message.reply_text("That medication no longer exists.")
        return
    await update.message.reply_text(f"✏️ Updated *{escape_markdown(updated.name)}*.", parse_mode="Markdown")


@authorized_only
async def cmd_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /contact <n> name; email; phone — or /contact <n> none to clear."""
    engine: ReminderEngine = context.bot_data["engine"]

    index, _, spec = _command_text(update).partition(" ")
    med = _resolve_medication(engine, index)
    if med is None or not spec.strip():
        await update.message.reply_text("Usage: /contact <n> name; email; phone")
        return

    if spec.strip().lower() == "none":
        contact = None
    else:
        parts = [p.strip() for p in spec.split(";")] + ["", ""]
        contact = EmergencyContact(
            name=parts[0], email=parts[1] or None, phone=parts[2] or None,
        )

    updated = await engine.edit_medication(med.id, emergency_contact=contact)
    if updated is None:
        await update.message.reply_text("That medication no longer exists.")
        return

    if contact is None:
        await update.message.reply_text(f"Emergency contact removed from {med.name}.")
    elif not contact.has_deliverable_channel:
        await update.message.reply_text(
            f"Saved, but {contact.name} has no e-mail or phone, so nobody will be alerted."
        )
    else:
        await update.message.reply_text(f"🚨 {contact.name} will be alerted if {med.name} is missed.")


@authorized_only
async def cmd_take(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /take <n> — record a dose taken outside of a reminder."""
    engine: ReminderEngine = context.bot_data["engine"]

    args = context.args
    med = _resolve_medication(engine, args[0]) if args else None
    if med is None:
        await update.message.reply_text("Usage: /take <n>\nUse /meds to see numbers.")
        return

    result = await engine.take_dose(med.id)
    if result is None:
        await update.message.reply_text("That medication no longer exists.")
    elif not result.taken:
        await update.message.reply_text(f"Not enough {med.name} left for a dose.")
    elif med.is_countable:
        await update.message.reply_text(f"✅ Dose recorded. {result.remaining} left.")
    else:
        await update.message.reply_text("✅ Dose recorded.")


@authorized_only
async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /history <n> — show how recent reminders were settled."""
    engine: ReminderEngine = context.bot_data["engine"]

    args = context.args
    med = _resolve_medication(engine, args[0]) if args else None
    if med is None:
        await update.message.reply_text("Usage: /history <n>")
        return

    records = engine.history(med.id)[-10:]
    if not records:
        await update.message.reply_text(f"No reminders for {med.name} yet.")
        return

    lines = [f"*{escape_markdown(med.name)}* — last {len(records)} reminder(s):"]
    for r in records:
        lines.append(f"{r.occurrence_key.replace('T', ' ')} — {r.state.value}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_deletemed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletemed — show medications as buttons to pick from."""
    engine: ReminderEngine = context.bot_data["engine"]

    meds = engine.list_medications()
    if not meds:
        await update.message.reply_text("No medications to delete.")
        return

    keyboard = [
        [InlineKeyboardButton(m.name, callback_data=f"delmed:{m.id}")]
        for m in meds
    ]
    await update.message.reply_text(
        "Which medication do you want to delete?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


# ---------------------------------------------------------------------------
# Inline button callbacks
# ---------------------------------------------------------------------------


async def _handle_deletemed_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the inline button tap to delete a medication."""
    engine: ReminderEngine = context.bot_data["engine"]

    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    medication_id = query.data.split(":", 1)[1]
    med = engine.get_medication(medication_id)
    if med is None or not await engine.remove_medication(medication_id):
        await query.edit_message_text("Medication not found or already deleted.")
        return
    await query.edit_message_text(f"🗑 Deleted {med.name} and its reminders.")


async def _handle_reminder_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle "Taken" / "Snooze" taps on a delivered reminder."""
    engine: ReminderEngine = context.bot_data["engine"]

    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    action, _, ref = query.data.partition(":")
    medication_id, _, key = ref.partition(":")
    med = engine.get_medication(medication_id)
    if med is None:
        await query.edit_message_text("This medication was deleted.")
        return

    if action == "ack":
        result = await engine.acknowledge(medication_id, key)
        if result is None:
            await query.edit_message_text(_already_settled_text(engine, med, key))
        elif med.is_countable:
            await query.edit_message_text(f"✅ {med.name} taken. {result.remaining} left.")
        else:
            await query.edit_message_text(f"✅ {med.name} taken.")
        return

    occurrence = await engine.postpone(medication_id, key)
    if occurrence is None:
        await query.edit_message_text(_already_settled_text(engine, med, key))
        return
    await query.edit_message_text(
        f"⏰ I'll remind you about {med.name} again at {occurrence.scheduled_at:%H:%M}."
    )


def _already_settled_text(engine: ReminderEngine, med: Medication, key: str) -> str:
    record = next((r for r in engine.history(med.id) if r.occurrence_key == key), None)
    if record is not None and record.state is OccurrenceState.ESCALATED:
        return f"This {med.name} reminder was missed and your emergency contact was alerted."
    state = record.state.value if record is not None else "handled"
    return f"This {med.name} reminder was already {state}."


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _make_fire_handler(app: Application) -> Callable[[WakeupPayload], Coroutine[Any, Any, None]]:
    """Deliver a fired reminder to every allowed user, then arm escalation."""

    async def _on_fire(payload: WakeupPayload) -> None:
        engine: ReminderEngine = app.bot_data["engine"]
        notifier: NotificationPort = app.bot_data["notifier"]

        for user_id in settings.ALLOWED_USER_IDS:
            try:
                await notifier.send_reminder(user_id, payload)
            except Exception as exc:
                logger.error("Failed to deliver reminder to %d: %s", user_id, exc)
        await engine.handle_fired(payload)

    return _on_fire


async def _sweep_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    engine: ReminderEngine = context.bot_data["engine"]
    await engine.sweep()


async def _post_init(app: Application) -> None:
    await app.bot_data["engine"].start()


async def _post_shutdown(app: Application) -> None:
    await app.bot_data["engine"].shutdown()


def build_app(
    engine: ReminderEngine | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        engine: Reminder engine. Defaults to one backed by the JobQueue sink,
                the SQLite state store and the configured message transport.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot, postpone_minutes=settings.POSTPONE_MINUTES)

    if engine is None:
        from src.adapters.job_queue_sink import JobQueueSink
        from src.adapters.transport_factory import create_message_transport
        from src.core.engine import ReminderEngine
        from src.data.db import StateDB

        engine = ReminderEngine(
            sink=JobQueueSink(app.job_queue, _make_fire_handler(app)),
            transport=create_message_transport(),
            store=StateDB(),
            notifier=notifier,
            owner_ids=settings.ALLOWED_USER_IDS,
            display_name=settings.USER_DISPLAY_NAME,
            grace_window=timedelta(minutes=settings.GRACE_WINDOW_MINUTES),
            postpone_minutes=settings.POSTPONE_MINUTES,
        )

    # Store collaborators in bot_data for handler access
    app.bot_data["engine"] = engine
    app.bot_data["notifier"] = notifier

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("meds", cmd_meds))
    app.add_handler(CommandHandler("addmed", cmd_addmed))
    app.add_handler(CommandHandler("editmed", cmd_editmed))
    app.add_handler(CommandHandler("contact", cmd_contact))
    app.add_handler(CommandHandler("take", cmd_take))
    app.add_handler(CommandHandler("history", cmd_history))
    app.add_handler(CommandHandler("deletemed", cmd_deletemed))
    app.add_handler(CallbackQueryHandler(_handle_deletemed_callback, pattern=r"^delmed:"))
    app.add_handler(CallbackQueryHandler(_handle_reminder_callback, pattern=r"^(ack|snooze):"))

    if settings.SWEEP_ENABLED:
        app.job_queue.run_repeating(
            _sweep_job,
            interval=timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES),
            name="missed_reminder_sweep",
        )
        logger.info("Missed-reminder sweep every %d min", settings.SWEEP_INTERVAL_MINUTES)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app
