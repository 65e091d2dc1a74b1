# bot.py

import asyncio
import datetime
import functools
import logging
import re
from typing import Any, Dict, List, Optional

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.constants import ChatType, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application, ApplicationHandlerStop, CallbackQueryHandler, CommandHandler,
    ContextTypes, ConversationHandler, MessageHandler, filters
)

import config
from edit_logic import (
    consume_edit_session, consume_post_edit_session, try_delete_bot_message, try_edit_bot_message
)
from scheduler_logic import (
    TelegramSender, cancel_job, collect_stats, rearm_restored_jobs, reschedule_job, schedule_job
)
from shared.message_store import classify_message
from shared.models import (
    MEDIA_CONTENT_TYPES, ContentType, JobContent, JobKind, JobStatus, MessageSource
)
from shared.services import BotServices, build_services
from shared.triggers import InvalidCronExpression
from shared.utils import (
    WEEKDAY_LABELS, build_daily_cron, build_monthly_cron, build_once_cron, build_weekly_cron,
    describe_content_type, parse_hhmm, parse_monthday_time, parse_user_datetime,
    parse_weekday_time, truncate_text
)
from web_api import build_panel_server

logger = logging.getLogger(__name__)

WIZARD_MODE, WIZARD_WHEN, WIZARD_LOCATION = range(3)

DEFAULT_LIST_POSTS_LIMIT = 10
MAX_LIST_POSTS_LIMIT = 50

# /schedule "0 30 9 * * *" Текст
SCHEDULE_RE = re.compile(r'^/\S+\s+"([^"]+)"(?:\s+([\s\S]+))?\s*$')
RESCHEDULE_RE = re.compile(r'^/\S+\s+(\d+)\s+"([^"]+)"\s*$')
EDIT_POST_RE = re.compile(r'^/\S+\s+(\d+)\s+([\s\S]+)$')

BOT_COMMANDS = [
    BotCommand("ping", "Проверить, что бот работает"),
    BotCommand("help_inline", "Помощь с кнопками"),
    BotCommand("schedule", "Cron: публиковать в этом чате"),
    BotCommand("schedule_channel", "Cron: публиковать в канале"),
    BotCommand("wizard", "Мастер планирования поста"),
    BotCommand("test_post", "Отправить тестовый пост"),
    BotCommand("list_posts", "Последние посты бота"),
    BotCommand("list_jobs", "Задачи этого чата"),
    BotCommand("stats", "Статистика задач"),
    BotCommand("current_channel", "Показать канал"),
    BotCommand("set_channel", "Задать канал (reply или ID)"),
    BotCommand("channel_test", "Тестовый пост в канал"),
    BotCommand("channel_test_media", "Тестовое медиа в канал (reply)"),
    BotCommand("list_admins", "Список администраторов"),
    BotCommand("add_admin", "Добавить администратора"),
    BotCommand("remove_admin", "Удалить администратора"),
    BotCommand("debug_config", "Текущая конфигурация бота"),
]

USAGE = {
    'schedule': (
        'Использование: /schedule "CRON_С_СЕКУНДАМИ" Текст\n'
        'например: /schedule "0 */15 * * * *" Привет\n'
        'Ответьте командой на текстовое сообщение, чтобы запланировать его с форматированием; '
        'дополнительный текст после cron тогда не нужен.'
    ),
    'schedule_channel': (
        'Использование: /schedule_channel "CRON_С_СЕКУНДАМИ" Текст\n'
        'Можно ответить на текст или медиа (фото/видео/gif): будет опубликован именно он.'
    ),
    'edit_post': (
        'Использование:\n/edit_post <message_id> <новый текст>\n'
        'или ответьте на сообщение бота: /edit_post Новый текст'
    ),
    'delete_post': (
        'Использование:\n/delete_post <message_id>\n'
        'или ответьте на сообщение бота командой /delete_post'
    ),
    'list_posts': 'Использование: /list_posts [лимит]\nнапример: /list_posts 5',
    'cancel_job': 'Использование: /cancel_job <id задачи>\nнапример: /cancel_job 1',
    'reschedule': 'Использование: /reschedule <id задачи> "CRON_С_СЕКУНДАМИ"',
}

HELP_TEXT = (
    "📌 Основное\n"
    "/ping — проверить бота\n"
    "/help_inline — помощь с кнопками по разделам\n"
    "/test_post [текст] — тестовый пост для отработки правки\n"
    "/list_posts [лимит] — последние посты с кнопками ✏️/🗑/📝\n"
    "/edit_post, /delete_post — правка и удаление сообщений бота\n\n"
    "🕒 Планирование\n"
    "/wizard — ответьте на пост, чтобы запланировать его по шагам\n"
    "/schedule \"CRON\" текст — публикация в этом чате\n"
    "/schedule_channel \"CRON\" текст — публикация в канале\n"
    "/cron_help — как писать cron\n\n"
    "📑 Задачи\n"
    "/list_jobs — задачи этого чата\n"
    "/reschedule <id> \"CRON\" — новое расписание\n"
    "/cancel_job <id> — остановить задачу\n"
    "/stats — статистика\n\n"
    "📢 Канал и администраторы\n"
    "/current_channel, /set_channel\n"
    "/channel_test — тестовый пост в канал\n"
    "/channel_test_media — ответом на фото/видео/gif: тестовое медиа в канал\n"
    "/list_admins, /add_admin, /remove_admin, /debug_config"
)

CRON_HELP_TEXT = (
    "⏱️ Формат cron (6 полей):\n"
    "секунда | минута | час | день_месяца | месяц | день_недели\n\n"
    "секунда, минута — 0-59\n"
    "час — 0-23\n"
    "день_месяца — 1-31\n"
    "месяц — 1-12\n"
    "день_недели — 0-6 (0 = воскресенье)\n\n"
    "* — любое значение\n"
    "*/10 — каждые 10 единиц\n"
    "1,15 — перечисление\n"
    "1-5 — диапазон\n\n"
    "Примеры:\n"
    "*/10 * * * * * — каждые 10 секунд\n"
    "0 */5 * * * * — каждые 5 минут\n"
    "0 0 9 * * * — каждый день в 9:00\n"
    "0 0 18 * * 1-5 — по будням в 18:00\n\n"
    f"Часовой пояс: {config.TIMEZONE}"
)

HELP_MENU_TEXT = "📖 <b>Помощь</b>\n\nВыберите раздел:"

# Раздел -> (текст, кнопки перехода); admin доступен только администраторам
HELP_SECTIONS = {
    'basic': (
        "✨ <b>Основные команды</b>\n\n"
        "<b>/ping</b>: проверить, что бот отвечает.\n\n"
        "<b>/help</b>: список команд текстом.\n\n"
        "<b>/help_inline</b>: это меню с кнопками.",
        [],
    ),
    'plan': (
        "✨ <b>Планирование постов</b>\n\n"
        "<b>/schedule \"CRON\" Текст</b>: публикация в этом чате.\n"
        "Пример: <code>/schedule \"0 */30 * * * *\" Каждые полчаса</code>\n\n"
        "<b>/schedule_channel \"CRON\"</b> ответом на пост: публикация в основном канале.\n\n"
        "<b>/wizard</b> ответом на пост: планирование по шагам.\n\n"
        "В cron 6 полей: <code>секунда минута час день месяц день_недели</code>.\n"
        "Подробнее: /cron_help",
        [('jobs', "📑 Задачи")],
    ),
    'jobs': (
        "✨ <b>Задачи и посты</b>\n\n"
        "<b>/list_jobs</b>: задачи чата с кнопками ✏️ и 🛑.\n\n"
        "<b>/list_posts</b>: последние посты с кнопками ✏️/📝/🗑.\n\n"
        "<b>/reschedule</b>, <b>/cancel_job</b>: изменить или остановить задачу.",
        [('plan', "🕒 Планирование")],
    ),
    'channel': (
        "✨ <b>Канал</b>\n\n"
        "<b>/current_channel</b>: текущий основной канал.\n\n"
        "<b>/set_channel</b>, три способа:\n"
        "1) в самом канале (бот должен быть администратором);\n"
        "2) ответом на сообщение, пересланное из канала;\n"
        "3) по ID: <code>/set_channel -1001234567890</code>.\n\n"
        "<b>/channel_test</b>, <b>/channel_test_media</b>: проверить публикацию в канал.",
        [('plan', "🕒 Планирование")],
    ),
    'admin': (
        "🛡 <b>Администрирование</b>\n\n"
        "<b>/list_admins</b>: список администраторов.\n\n"
        "<b>/add_admin</b>: ответом на сообщение пользователя или <code>/add_admin 123456789</code>.\n\n"
        "<b>/remove_admin</b>: ответом на сообщение или <code>/remove_admin 123456789</code>.",
        [('channel', "📢 Канал")],
    ),
    'debug': (
        "🔧 <b>Отладка</b>\n\n"
        "<b>/debug_config</b>: режим (DEV/PROD), администраторы и канал.\n\n"
        "На продакшене администраторы и канал берутся из окружения (ADMIN_IDS, CHANNEL_ID).",
        [('basic', "📌 Основное")],
    ),
}

# === Вспомогательные функции ===


def get_services(context: ContextTypes.DEFAULT_TYPE) -> BotServices:
    return context.bot_data["services"]


async def reply_with_tracking(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    text: str,
    source: MessageSource = MessageSource.SYSTEM,
    tag: str = '',
    **kwargs
) -> Message:
    """Отвечает в чат и записывает ответ в журнал сообщений."""
    message = await update.effective_message.reply_text(text, **kwargs)
    get_services(context).message_store.record_telegram_message(message, source, tag)
    return message


def check_auth(func):
    """
    Пропускает только администраторов.

    Вне продакшена первый пользователь становится администратором,
    если список администраторов пуст.
    """
    @functools.wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        user = update.effective_user
        if user is None:
            await reply_with_tracking(update, context, "❌ Команда требует прав администратора.")
            return None
        config_store = get_services(context).config_store
        if config_store.is_admin(user.id):
            return await func(update, context)
        if config_store.ensure_bootstrap_admin(user.id):
            await reply_with_tracking(
                update, context, "Администраторов не было, вы назначены первым администратором."
            )
            return await func(update, context)
        text = "❌ Доступ запрещён."
        if config.IS_PROD:
            text += " На продакшене администраторы задаются через ADMIN_IDS."
        await reply_with_tracking(update, context, text)
        return None
    return wrapper


def _entities_to_dicts(entities) -> Optional[List[Dict[str, Any]]]:
    if not entities:
        return None
    return [entity.to_dict() for entity in entities]


def extract_job_content(message: Optional[Message]) -> Optional[JobContent]:
    """Контент задачи из сообщения: текст с форматированием или фото/видео/gif с подписью."""
    if message is None:
        return None
    content_type, file_id = classify_message(message)
    if content_type in MEDIA_CONTENT_TYPES:
        return JobContent(
            content_type=content_type,
            text=message.caption,
            file_id=file_id,
            entities=_entities_to_dicts(message.caption_entities),
        )
    if content_type == ContentType.TEXT and message.text.strip():
        return JobContent(ContentType.TEXT, message.text, None, _entities_to_dicts(message.entities))
    return None


def parse_int_argument(context: ContextTypes.DEFAULT_TYPE) -> Optional[int]:
    if not context.args:
        return None
    try:
        return int(context.args[0])
    except ValueError:
        return None


def is_reply_to_bot(message: Message, bot_id: int) -> bool:
    reply = message.reply_to_message
    return bool(reply and reply.from_user and reply.from_user.id == bot_id)


def format_job_row(job, chat_id: int) -> str:
    preview = truncate_text(job.text.strip(), 60) if job.text and job.text.strip() else '(без текста)'
    destination = 'этот чат' if job.target_chat_id == chat_id else f'чат {job.target_chat_id}'
    status = '\nСтатус: ❌ не выполнена' if job.status == JobStatus.FAILED else ''
    return (
        f"Задача #{job.id}\n"
        f"Куда: {destination}\n"
        f"CRON: {job.cron_expr}\n"
        f"Тип: {describe_content_type(job.content_type)}\n"
        f"Текст: {preview}{status}"
    )


def admin_list_payload(admin_ids: List[int]):
    text = "\n".join(["Администраторы:"] + [f"• {admin_id}" for admin_id in admin_ids])
    keyboard = InlineKeyboardMarkup(
        [[InlineKeyboardButton(f"❌ Удалить {admin_id}", callback_data=f"rmadmin:{admin_id}")]
         for admin_id in admin_ids]
    )
    return text, keyboard


async def _drop_keyboard(query):
    try:
        await query.edit_message_reply_markup(reply_markup=None)
    except TelegramError as e:
        logger.debug(f"Не удалось убрать клавиатуру: {e}")

# === Команды ===


async def ping(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await reply_with_tracking(update, context, "pong")


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await reply_with_tracking(update, context, HELP_TEXT)


async def cron_help(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await reply_with_tracking(update, context, CRON_HELP_TEXT)


def help_menu_keyboard(is_admin: bool) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton("📌 Основное", callback_data="help:basic")],
        [InlineKeyboardButton("🕒 Планирование", callback_data="help:plan")],
        [InlineKeyboardButton("📑 Задачи", callback_data="help:jobs")],
        [InlineKeyboardButton("📢 Канал", callback_data="help:channel")],
    ]
    if is_admin:
        rows.append([InlineKeyboardButton("🛡 Администрирование", callback_data="help:admin")])
    rows.append([InlineKeyboardButton("🔧 Отладка", callback_data="help:debug")])
    return InlineKeyboardMarkup(rows)


def help_section_keyboard(links) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(label, callback_data=f"help:{section}")] for section, label in links]
    rows.append([InlineKeyboardButton("⬅️ Назад в меню", callback_data="help:back")])
    return InlineKeyboardMarkup(rows)


def _is_admin_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    user = update.effective_user
    return user is not None and get_services(context).config_store.is_admin(user.id)


async def help_inline(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await reply_with_tracking(
        update, context, HELP_MENU_TEXT,
        tag='help',
        parse_mode=ParseMode.HTML,
        reply_markup=help_menu_keyboard(_is_admin_user(update, context)),
    )


async def help_menu(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Переходы по разделам /help_inline: сообщение меню правится на месте."""
    query = update.callback_query
    section = (query.data or '').partition(':')[2]

    if section == 'back':
        text, keyboard = HELP_MENU_TEXT, help_menu_keyboard(_is_admin_user(update, context))
    elif section in HELP_SECTIONS:
        if section == 'admin' and not _is_admin_user(update, context):
            await query.answer("Этот раздел только для администраторов.", show_alert=True)
            return
        section_text, links = HELP_SECTIONS[section]
        text, keyboard = section_text, help_section_keyboard(links)
    else:
        await query.answer("Неизвестный раздел.")
        return

    await query.answer()
    try:
        await query.edit_message_text(text, parse_mode=ParseMode.HTML, reply_markup=keyboard)
    except BadRequest as e:
        # Повторное нажатие той же кнопки: "Message is not modified"
        logger.debug(f"Меню помощи не обновлено: {e}")


async def _schedule_from_command(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    target_chat_id: int,
    usage_key: str
):
    message = update.effective_message
    owner_chat_id = update.effective_chat.id
    match = SCHEDULE_RE.match(message.text or '')
    if not match:
        await reply_with_tracking(update, context, USAGE[usage_key])
        return

    cron_expr = match.group(1).strip()
    provided_text = (match.group(2) or '').strip()
    reply_content = extract_job_content(message.reply_to_message)
    to_channel = target_chat_id != owner_chat_id
    note = ''

    if reply_content is not None and reply_content.content_type == ContentType.TEXT:
        if provided_text and not to_channel:
            await reply_with_tracking(
                update, context,
                "Чтобы скопировать сообщение с форматированием, используйте /schedule "
                "ответом без дополнительного текста после cron."
            )
            return
        if provided_text:
            note = "\nТекст команды проигнорирован: использовано сообщение, на которое вы ответили."
        content = reply_content
    elif reply_content is not None:
        content = reply_content
        if not (content.text or '').strip():
            content.text = provided_text or None
            content.entities = None
    else:
        content = JobContent(ContentType.TEXT, provided_text)

    if content.content_type == ContentType.TEXT and not content.text:
        await reply_with_tracking(update, context, USAGE[usage_key])
        return

    services = get_services(context)
    try:
        job = schedule_job(services, owner_chat_id, target_chat_id, cron_expr, content)
    except InvalidCronExpression as e:
        await reply_with_tracking(update, context, f"❌ Ошибка cron: {e}")
        return

    kind = "задача для канала" if to_channel else "задача"
    await reply_with_tracking(
        update, context,
        f"✅ Запланирована {kind} #{job.id} ({describe_content_type(job.content_type)}), cron: {cron_expr}.{note}"
    )


async def schedule(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _schedule_from_command(update, context, update.effective_chat.id, 'schedule')


async def _require_channel_id(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Optional[int]:
    channel_id = get_services(context).config_store.get_main_channel_id()
    if channel_id is None:
        await reply_with_tracking(
            update, context,
            "Канал не настроен. Задайте CHANNEL_ID в окружении или используйте /set_channel."
        )
    return channel_id


@check_auth
async def schedule_channel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    channel_id = await _require_channel_id(update, context)
    if channel_id is None:
        return
    await _schedule_from_command(update, context, channel_id, 'schedule_channel')


async def channel_test(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Отправляет тестовый текст в основной канал."""
    channel_id = await _require_channel_id(update, context)
    if channel_id is None:
        return
    sender = get_services(context).sender
    try:
        sent = await sender.send_text(
            channel_id, "Это тестовый пост бота в канале 🚀",
            source=MessageSource.CHANNEL_TEST, tag='channel_test'
        )
    except TelegramError as e:
        logger.error(f"❌ Не удалось отправить тестовый пост в канал {channel_id}: {e}")
        await reply_with_tracking(
            update, context,
            "Не удалось отправить пост в канал. Проверьте, что бот администратор канала и канал задан верно."
        )
        return
    logger.info(f"📤 Тестовый пост {sent.message_id} отправлен в канал {channel_id}")
    await reply_with_tracking(update, context, f"Пост отправлен в канал (ID: {sent.message_id}).")


async def channel_test_media(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Отправляет в канал медиа из сообщения, на которое ответили командой."""
    channel_id = await _require_channel_id(update, context)
    if channel_id is None:
        return
    reply = update.effective_message.reply_to_message
    if reply is None:
        await reply_with_tracking(
            update, context,
            "Чтобы использовать /channel_test_media, ответьте на сообщение с фото, видео или gif."
        )
        return
    content_type, file_id = classify_message(reply)
    if content_type not in MEDIA_CONTENT_TYPES:
        await reply_with_tracking(
            update, context,
            "В этом сообщении нет поддерживаемого медиа. Пришлите фото, видео или gif и попробуйте снова."
        )
        return

    sender = get_services(context).sender
    try:
        await sender.send_media(
            channel_id, content_type, file_id, caption="Тестовое медиа для канала 🚀",
            source=MessageSource.CHANNEL_TEST, tag='channel_test_media'
        )
    except TelegramError as e:
        logger.error(f"❌ Не удалось отправить тестовое медиа в канал {channel_id}: {e}")
        await reply_with_tracking(
            update, context,
            "Не удалось отправить тестовое медиа в канал. Проверьте права бота и попробуйте снова."
        )
        return
    await reply_with_tracking(update, context, "Тестовое медиа отправлено в канал ✅")


async def test_post(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = " ".join(context.args).strip() if context.args else ''
    text = text or (
        "Это тестовый пост бота. Используйте /list_posts, кнопки ✏️/🗑 "
        "или /edit_post и /delete_post, чтобы потренироваться."
    )
    try:
        sent = await reply_with_tracking(update, context, text, source=MessageSource.TEST_POST)
    except TelegramError as e:
        logger.error(f"❌ Не удалось отправить тестовый пост: {e}")
        await reply_with_tracking(update, context, "Не удалось отправить тестовый пост. Попробуйте ещё раз.")
        return
    logger.info(f"📤 Тестовый пост {sent.message_id} отправлен в чат {sent.chat_id}")
    await reply_with_tracking(
        update, context,
        f"Тестовый пост отправлен (ID: {sent.message_id}).\n"
        "Теперь можно:\n"
        "- открыть /list_posts и нажать ✏️ или 🗑,\n"
        "- или использовать /edit_post <ID> Новый текст и /delete_post <ID>."
    )


async def list_posts(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id = update.effective_chat.id
    limit = DEFAULT_LIST_POSTS_LIMIT
    if context.args:
        if len(context.args) > 1:
            await reply_with_tracking(update, context, USAGE['list_posts'])
            return
        limit = parse_int_argument(context)
        if limit is None or limit <= 0:
            await reply_with_tracking(update, context, "Лимит должен быть положительным числом, например /list_posts 5")
            return
        limit = min(limit, MAX_LIST_POSTS_LIMIT)

    posts = get_services(context).message_store.get_listable_messages_for_chat(chat_id)
    if not posts:
        await reply_with_tracking(update, context, "В этом чате нет запланированных или тестовых постов.")
        return

    await reply_with_tracking(update, context, f"Последние посты бота в этом чате (не больше {limit}):")
    for post in posts[:limit]:
        preview = truncate_text(post.text.strip(), 60) if post.text.strip() else '(без текста)'
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton("✏️ Текст", callback_data=f"edit:{post.message_id}"),
            InlineKeyboardButton("📝 Заменить", callback_data=f"postedit:{post.message_id}"),
            InlineKeyboardButton("🗑 Удалить", callback_data=f"delete:{post.message_id}"),
        ]])
        await reply_with_tracking(
            update, context,
            f"ID: {post.message_id}\nТип: {describe_content_type(post.content_type)}\nТекст: {preview}",
            reply_markup=keyboard,
        )


async def list_jobs(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id = update.effective_chat.id
    jobs = get_services(context).job_store.get_jobs_for_chat(chat_id)
    if not jobs:
        await reply_with_tracking(update, context, "В этом чате нет задач.")
        return

    await reply_with_tracking(update, context, f"Задачи этого чата (всего {len(jobs)}):")
    for job in jobs:
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton("✏️ Изменить", callback_data=f"jobedit:{job.id}"),
            InlineKeyboardButton("🛑 Стоп", callback_data=f"jobstop:{job.id}"),
        ]])
        await reply_with_tracking(update, context, format_job_row(job, chat_id), reply_markup=keyboard)


async def cancel_job_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    job_id = parse_int_argument(context)
    if job_id is None or job_id <= 0:
        await reply_with_tracking(update, context, USAGE['cancel_job'])
        return
    removed = cancel_job(get_services(context), update.effective_chat.id, job_id)
    if removed is None:
        await reply_with_tracking(update, context, f"Задача #{job_id} в этом чате не найдена.")
        return
    await reply_with_tracking(update, context, f"⏹️ Задача #{job_id} остановлена.")


async def reschedule(update: Update, context: ContextTypes.DEFAULT_TYPE):
    match = RESCHEDULE_RE.match(update.effective_message.text or '')
    if not match:
        await reply_with_tracking(update, context, USAGE['reschedule'])
        return
    job_id, cron_expr = int(match.group(1)), match.group(2).strip()
    services = get_services(context)
    if services.job_store.get_job(update.effective_chat.id, job_id) is None:
        await reply_with_tracking(update, context, f"Задача #{job_id} в этом чате не найдена.")
        return
    try:
        job = reschedule_job(services, job_id, cron_expr)
    except InvalidCronExpression as e:
        await reply_with_tracking(update, context, f"❌ Ошибка cron: {e}")
        return
    await reply_with_tracking(update, context, f"⏰ Задача #{job.id} перепланирована: {job.cron_expr}")


async def edit_post(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    chat_id = update.effective_chat.id
    services = get_services(context)
    text = message.text or ''

    match = EDIT_POST_RE.match(text)
    if match:
        new_text = match.group(2).strip()
        if not new_text:
            await reply_with_tracking(update, context, USAGE['edit_post'])
            return
        result = await try_edit_bot_message(context.bot, services.message_store, chat_id, int(match.group(1)), new_text)
        await reply_with_tracking(update, context, result.message)
        return

    if message.reply_to_message is not None:
        if not is_reply_to_bot(message, context.bot.id):
            await reply_with_tracking(
                update, context,
                "Редактировать можно только сообщения этого бота. Ответьте на нужное сообщение."
            )
            return
        new_text = " ".join(context.args).strip() if context.args else ''
        if not new_text:
            await reply_with_tracking(update, context, "Укажите новый текст после команды: /edit_post Новый текст")
            return
        result = await try_edit_bot_message(
            context.bot, services.message_store, chat_id, message.reply_to_message.message_id, new_text
        )
        await reply_with_tracking(update, context, result.message)
        return

    await reply_with_tracking(update, context, USAGE['edit_post'])


async def delete_post(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    chat_id = update.effective_chat.id
    services = get_services(context)

    message_id = parse_int_argument(context)
    if message_id is not None and len(context.args) == 1:
        result = await try_delete_bot_message(context.bot, services.message_store, chat_id, message_id)
        await reply_with_tracking(update, context, result.message)
        return

    if message.reply_to_message is not None:
        if not is_reply_to_bot(message, context.bot.id):
            await reply_with_tracking(
                update, context,
                "Удалять можно только сообщения этого бота. Ответьте на нужное сообщение."
            )
            return
        result = await try_delete_bot_message(
            context.bot, services.message_store, chat_id, message.reply_to_message.message_id
        )
        await reply_with_tracking(update, context, result.message)
        return

    await reply_with_tracking(update, context, USAGE['delete_post'])


async def stats(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    data = collect_stats(services, update.effective_chat.id, services.config_store.get_main_channel_id())
    if data['total'] == 0:
        await reply_with_tracking(update, context, "Задач пока нет.")
        return

    destinations = data['destinations']
    lines = [
        f"📊 Всего задач: {data['total']} (не выполнено: {data['failed']})",
        f"Этот чат: {destinations['current_chat']}, канал: {destinations['default_channel']}, "
        f"другие: {destinations['other']}",
    ]
    if data['hours']:
        lines.append("По часам: " + ", ".join(f"{hour}:00 — {count}" for hour, count in data['hours'].items()))
    if data['weekdays']:
        lines.append("По дням: " + ", ".join(f"{day} — {count}" for day, count in data['weekdays'].items()))
    if data['upcoming']:
        lines.append("Ближайшие запуски:")
        for item in data['upcoming']:
            lines.append(f"• #{item['id']} — {item['next_run'].strftime('%d.%m.%Y %H:%M:%S')}")
    await reply_with_tracking(update, context, "\n".join(lines))


@check_auth
async def current_channel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    channel_id = get_services(context).config_store.get_main_channel_id()
    text = f"Текущий канал: {channel_id}" if channel_id is not None else "Канал не задан."
    await reply_with_tracking(update, context, text)


def _channel_from_message(message: Optional[Message]) -> Optional[int]:
    if message is None:
        return None
    origin_chat = getattr(getattr(message, 'forward_origin', None), 'chat', None)
    if origin_chat is not None:
        return origin_chat.id
    if message.sender_chat is not None:
        return message.sender_chat.id
    return None


async def set_channel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """
    В канале работает без проверки прав (у постов канала нет автора);
    выбор подтверждает администратор кнопкой.
    """
    chat = update.effective_chat
    if chat is not None and chat.type == ChatType.CHANNEL:
        await _offer_channel(update, context, chat.id)
        return
    await _set_channel_from_message(update, context)


@check_auth
async def _set_channel_from_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    channel_id = (
        _channel_from_message(message.reply_to_message)
        or _channel_from_message(message)
        or parse_int_argument(context)
    )
    if channel_id is None:
        await reply_with_tracking(
            update, context,
            "Не удалось определить ID канала. Используйте /set_channel <id> "
            "или ответьте на сообщение, пересланное из канала."
        )
        return
    await _offer_channel(update, context, channel_id)


async def _offer_channel(update: Update, context: ContextTypes.DEFAULT_TYPE, channel_id: int):
    keyboard = InlineKeyboardMarkup([[InlineKeyboardButton("✅ Сделать основным", callback_data=f"setchan:{channel_id}")]])
    await reply_with_tracking(
        update, context,
        f"Найден канал с ID {channel_id}.\nСделать его основным?",
        reply_markup=keyboard,
    )


@check_auth
async def list_admins(update: Update, context: ContextTypes.DEFAULT_TYPE):
    admin_ids = get_services(context).config_store.get_admin_ids()
    if not admin_ids:
        await reply_with_tracking(update, context, "Администраторы не заданы.")
        return
    text, keyboard = admin_list_payload(admin_ids)
    await reply_with_tracking(update, context, text, reply_markup=keyboard)


def _target_user_id(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Optional[int]:
    reply = update.effective_message.reply_to_message
    if reply is not None and reply.from_user is not None:
        return reply.from_user.id
    return parse_int_argument(context)


@check_auth
async def add_admin(update: Update, context: ContextTypes.DEFAULT_TYPE):
    target_id = _target_user_id(update, context)
    if target_id is None:
        await reply_with_tracking(update, context, "Укажите ID пользователя или ответьте на его сообщение.")
        return
    if get_services(context).config_store.add_admin(target_id):
        await reply_with_tracking(update, context, f"✅ Администратор {target_id} добавлен.")
    else:
        await reply_with_tracking(update, context, f"Пользователь {target_id} уже администратор.")


@check_auth
async def remove_admin(update: Update, context: ContextTypes.DEFAULT_TYPE):
    target_id = _target_user_id(update, context)
    if target_id is None:
        await reply_with_tracking(update, context, "Укажите ID пользователя или ответьте на его сообщение.")
        return
    if get_services(context).config_store.remove_admin(target_id):
        await reply_with_tracking(update, context, f"Администратор {target_id} удалён.")
    else:
        await reply_with_tracking(update, context, f"Пользователь {target_id} не администратор.")


@check_auth
async def debug_config(update: Update, context: ContextTypes.DEFAULT_TYPE):
    config_store = get_services(context).config_store
    admin_ids = config_store.get_admin_ids()
    channel_id = config_store.get_main_channel_id()
    mode = "PROD (окружение)" if config.IS_PROD else "DEV (файл конфигурации)"
    await update.effective_message.reply_text(
        "Конфигурация:\n"
        f"Режим: {mode}\n"
        f"Часовой пояс: {config.TIMEZONE}\n"
        f"Администраторы: {', '.join(map(str, admin_ids)) if admin_ids else 'нет'}\n"
        f"Основной канал: {channel_id if channel_id is not None else 'нет'}"
    )

# === Кнопки ===


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    if query.message is None:
        await query.answer("Нет чата для кнопки.")
        return
    action, _, raw_id = (query.data or '').partition(':')
    try:
        target_id = int(raw_id)
    except ValueError:
        await query.answer("Некорректные данные кнопки.")
        return

    services = get_services(context)
    chat_id = query.message.chat.id
    user_id = query.from_user.id

    if action == 'jobstop':
        await query.answer("Останавливаю задачу...")
        removed = cancel_job(services, chat_id, target_id)
        text = f"⏹️ Задача #{target_id} остановлена." if removed else f"Задача #{target_id} в этом чате не найдена."
        await reply_with_tracking(update, context, text)
        await _drop_keyboard(query)
        return

    if action == 'jobedit':
        if services.job_store.get_job(chat_id, target_id) is None:
            await query.answer("Задача не найдена.")
            await reply_with_tracking(update, context, f"Задача #{target_id} в этом чате не найдена.")
            await _drop_keyboard(query)
            return
        services.post_sessions.clear(chat_id, user_id)
        services.edit_sessions.start_job_session(chat_id, user_id, target_id)
        await query.answer("Готовлю правку задачи...")
        await reply_with_tracking(update, context, f"Правим задачу #{target_id}. Отправьте новый текст сообщения.")
        await _drop_keyboard(query)
        return

    if action == 'delete':
        await query.answer("Удаляю сообщение...")
        result = await try_delete_bot_message(context.bot, services.message_store, chat_id, target_id)
        await reply_with_tracking(update, context, result.message)
        await _drop_keyboard(query)
        return

    if action in ('edit', 'postedit'):
        stored = services.message_store.get(chat_id, target_id)
        if stored is None or stored.deleted:
            await query.answer("Сообщение не найдено.")
            await reply_with_tracking(update, context, f"Сообщение с ID {target_id} в этом чате не найдено.")
            await _drop_keyboard(query)
            return
        if action == 'edit':
            services.post_sessions.clear(chat_id, user_id)
            services.edit_sessions.start_message_session(chat_id, user_id, target_id)
            text = f"Правим сообщение {target_id}. Отправьте новый текст следующим сообщением."
        else:
            services.edit_sessions.clear(chat_id, user_id)
            services.post_sessions.start(chat_id, user_id, target_id)
            text = (
                f"Заменяем пост {target_id} ({describe_content_type(stored.content_type)}). "
                "Отправьте новый контент того же типа."
            )
        await query.answer("Готовлю правку...")
        await reply_with_tracking(update, context, text)
        await _drop_keyboard(query)
        return

    if action in ('rmadmin', 'setchan'):
        if not services.config_store.is_admin(user_id):
            await query.answer("Нет прав администратора.", show_alert=True)
            return
        try:
            if action == 'rmadmin':
                if not services.config_store.remove_admin(target_id):
                    await query.answer("Этот пользователь не администратор.")
                    return
                await query.answer(f"Администратор {target_id} удалён")
                admin_ids = services.config_store.get_admin_ids()
                if not admin_ids:
                    await query.edit_message_text("Администраторы не заданы.")
                    return
                text, keyboard = admin_list_payload(admin_ids)
                await query.edit_message_text(text, reply_markup=keyboard)
            else:
                services.config_store.set_main_channel_id(target_id)
                await query.answer("Канал установлен.")
                await query.edit_message_text(f"✅ Основной канал: {target_id}")
        except TelegramError as e:
            logger.warning(f"⚠️ Не удалось обновить сообщение с кнопками: {e}")
        return

    await query.answer("Неизвестное действие.")

# === Сессии правки ===


async def consume_sessions(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Следующее сообщение после кнопки ✏️/📝 забирается как новый контент."""
    message = update.effective_message
    chat = update.effective_chat
    user = update.effective_user
    if message is None or chat is None or user is None:
        return

    services = get_services(context)
    reply = await consume_post_edit_session(services, context.bot, chat.id, user.id, message)
    # Сессию правки текста забирает только текстовое сообщение
    if reply is None and message.text is not None:
        reply = await consume_edit_session(services, context.bot, chat.id, user.id, message.text)
    if reply is None:
        return

    await reply_with_tracking(update, context, reply)
    raise ApplicationHandlerStop

# === Мастер /wizard ===


@check_auth
async def wizard_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    content = extract_job_content(update.effective_message.reply_to_message)
    if content is None:
        await reply_with_tracking(
            update, context,
            "Ответьте командой /wizard на пост (текст, фото, видео или gif), который нужно запланировать."
        )
        return ConversationHandler.END

    context.user_data['wizard'] = {'content': content}
    keyboard = InlineKeyboardMarkup([
        [InlineKeyboardButton("Один раз", callback_data="wizard:once")],
        [InlineKeyboardButton("Ежедневно", callback_data="wizard:daily")],
        [InlineKeyboardButton("Еженедельно", callback_data="wizard:weekly")],
        [InlineKeyboardButton("Ежемесячно", callback_data="wizard:monthly")],
    ])
    await reply_with_tracking(update, context, "Как часто публиковать?", reply_markup=keyboard)
    return WIZARD_MODE


WIZARD_PROMPTS = {
    'once': "Дата и время публикации (ДД.ММ.ГГГГ ЧЧ:ММ):",
    'daily': "Время публикации (ЧЧ:ММ):",
    'weekly': "День недели и время, например «пт 18:00»:",
    'monthly': "День месяца и время, например «15 09:30»:",
}


async def wizard_mode(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    mode = query.data.partition(':')[2]
    if mode not in WIZARD_PROMPTS or 'wizard' not in context.user_data:
        await query.edit_message_text("Мастер прерван, начните заново с /wizard.")
        return ConversationHandler.END
    context.user_data['wizard']['mode'] = mode
    await query.edit_message_text(WIZARD_PROMPTS[mode])
    return WIZARD_WHEN


def _parse_wizard_when(mode: str, text: str, now: datetime.datetime):
    """Возвращает (cron, repeat, scheduled_at, описание) или строку с ошибкой."""
    if mode == 'once':
        when = parse_user_datetime(text, config.TIMEZONE)
        if when is None:
            return "Формат: ДД.ММ.ГГГГ ЧЧ:ММ"
        if when <= now:
            return "Дата должна быть в будущем!"
        cron, repeat, scheduled_at = build_once_cron(when)
        return cron, repeat, scheduled_at, when.strftime('%d.%m.%Y %H:%M')
    if mode == 'daily':
        time = parse_hhmm(text)
        if time is None:
            return "Формат: ЧЧ:ММ"
        cron, repeat = build_daily_cron(*time)
        return cron, repeat, None, f"каждый день в {time[0]:02d}:{time[1]:02d}"
    if mode == 'weekly':
        parsed = parse_weekday_time(text)
        if parsed is None:
            return "Формат: «пт 18:00» (пн, вт, ср, чт, пт, сб, вс)"
        cron, repeat = build_weekly_cron(*parsed)
        return cron, repeat, None, f"каждую неделю: {WEEKDAY_LABELS[parsed[0]]} {parsed[1]:02d}:{parsed[2]:02d}"
    parsed = parse_monthday_time(text)
    if parsed is None:
        return "Формат: «15 09:30» (день месяца 1-31 и время)"
    cron, repeat = build_monthly_cron(*parsed)
    return cron, repeat, None, f"каждый месяц {parsed[0]}-го в {parsed[1]:02d}:{parsed[2]:02d}"


async def wizard_when(update: Update, context: ContextTypes.DEFAULT_TYPE):
    state = context.user_data.get('wizard')
    if not state or 'mode' not in state:
        await reply_with_tracking(update, context, "Мастер прерван, начните заново с /wizard.")
        return ConversationHandler.END

    now = datetime.datetime.now(datetime.timezone.utc)
    parsed = _parse_wizard_when(state['mode'], update.effective_message.text or '', now)
    if isinstance(parsed, str):
        await reply_with_tracking(update, context, parsed)
        return WIZARD_WHEN

    state['cron'], state['repeat'], state['scheduled_at'], state['label'] = parsed
    buttons = [[InlineKeyboardButton("В этот чат", callback_data="wizloc:here")]]
    if get_services(context).config_store.get_main_channel_id() is not None:
        buttons.append([InlineKeyboardButton("В канал", callback_data="wizloc:channel")])
    await reply_with_tracking(update, context, "Куда публиковать?", reply_markup=InlineKeyboardMarkup(buttons))
    return WIZARD_LOCATION


async def wizard_location(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    state = context.user_data.pop('wizard', None)
    if not state or 'cron' not in state:
        await query.edit_message_text("Мастер прерван, начните заново с /wizard.")
        return ConversationHandler.END

    services = get_services(context)
    chat_id = query.message.chat.id
    target_chat_id = chat_id
    if query.data == 'wizloc:channel':
        target_chat_id = services.config_store.get_main_channel_id()
        if target_chat_id is None:
            await query.edit_message_text("Канал не настроен. Используйте /set_channel.")
            return ConversationHandler.END

    try:
        job = schedule_job(
            services, chat_id, target_chat_id, state['cron'], state['content'],
            scheduled_at=state["scheduled_at"], repeat=state["repeat"], kind=JobKind.POST,
        )
    except InvalidCronExpression as e:
        await query.edit_message_text(f"❌ Ошибка расписания: {e}")
        return ConversationHandler.END

    await query.edit_message_text(
        f"✅ Задача #{job.id} создана: {state['label']}.\nСписок задач: /list_jobs"
    )
    return ConversationHandler.END


async def wizard_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    context.user_data.pop('wizard', None)
    await reply_with_tracking(update, context, "Отменено.")
    return ConversationHandler.END

# === Запуск ===


async def post_init(application: Application):
    services: BotServices = application.bot_data["services"]
    services.sender = TelegramSender(application.bot, services.message_store)
    services.trigger_engine.start()
    rearm_restored_jobs(services)

    try:
        await application.bot.set_my_commands(BOT_COMMANDS)
    except TelegramError as e:
        logger.warning(f"⚠️ Не удалось зарегистрировать команды бота: {e}")

    if config.START_PANEL:
        server = build_panel_server(services)
        application.bot_data["panel_server"] = server
        application.bot_data["panel_task"] = asyncio.create_task(server.serve())
        logger.info(f"🚀 Панель запущена на {config.PANEL_HOST}:{config.PANEL_PORT}")
    else:
        logger.info("Панель отключена (START_PANEL != true)")


async def post_shutdown(application: Application):
    services: BotServices = application.bot_data["services"]
    server = application.bot_data.pop("panel_server", None)
    task = application.bot_data.pop("panel_task", None)
    if server is not None:
        server.should_exit = True
    if task is not None:
        await task
    services.trigger_engine.shutdown()
    if services.snapshot_store is not None:
        await services.snapshot_store.flush()


def build_application(services: BotServices) -> Application:
    application = (
        Application.builder()
        .token(config.BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    application.bot_data["services"] = services

    application.add_handler(MessageHandler(filters.ALL & ~filters.COMMAND, consume_sessions), group=-1)

    wizard_handler = ConversationHandler(
        entry_points=[CommandHandler("wizard", wizard_start)],
        states={
            WIZARD_MODE: [CallbackQueryHandler(wizard_mode, pattern=r'^wizard:')],
            WIZARD_WHEN: [MessageHandler(filters.TEXT & ~filters.COMMAND, wizard_when)],
            WIZARD_LOCATION: [CallbackQueryHandler(wizard_location, pattern=r'^wizloc:')],
        },
        fallbacks=[CommandHandler("cancel", wizard_cancel)],
    )
    application.add_handler(wizard_handler)

    commands = {
        "ping": ping,
        "help": help_command,
        "start": help_command,
        "help_inline": help_inline,
        "cron_help": cron_help,
        "schedule": schedule,
        "schedule_channel": schedule_channel,
        "test_post": test_post,
        "list_posts": list_posts,
        "list_jobs": list_jobs,
        "cancel_job": cancel_job_command,
        "reschedule": reschedule,
        "edit_post": edit_post,
        "delete_post": delete_post,
        "stats": stats,
        "current_channel": current_channel,
        "channel_test": channel_test,
        "channel_test_media": channel_test_media,
        "list_admins": list_admins,
        "add_admin": add_admin,
        "remove_admin": remove_admin,
        "debug_config": debug_config,
    }
    for name, callback in commands.items():
        application.add_handler(CommandHandler(name, callback))
    # /set_channel принимается и из самого канала
    application.add_handler(CommandHandler(
        "set_channel", set_channel, filters=filters.UpdateType.MESSAGES | filters.UpdateType.CHANNEL_POST
    ))
    application.add_handler(CallbackQueryHandler(help_menu, pattern=r"^help:"))

    application.add_handler(CallbackQueryHandler(
        handle_callback, pattern=r'^(edit|delete|postedit|jobedit|jobstop|rmadmin|setchan):'
    ))
    return application


def main():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    if not config.BOT_TOKEN:
        logger.error("❌ Не задан BOT_TOKEN")
        raise SystemExit(1)

    application = build_application(build_services())
    logger.info("✅ Бот запущен...")
    application.run_polling()


if __name__ == "__main__":
    main()
