from __future__ import annotations

import logging
import sys

from telegram import BotCommand, BotCommandScopeAllPrivateChats, BotCommandScopeDefault
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

from argos.config import EXPORTS_DIR, ConfigError, ensure_data_dirs, load_config
from argos.handlers import (
    dismiss_error_callback,
    document_handler,
    export_command,
    finish_command,
    help_command,
    mode_callback,
    restart_command,
    retry_report_callback,
    retry_turn_callback,
    save_command,
    start_command,
    status_command,
    text_message_handler,
)
from argos.reporting import ReportBuilder

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # httpx logs every Telegram long-poll request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _post_init_set_commands(app: Application) -> None:
    commands = [
        BotCommand("start", "Accueil et nouvelle session"),
        BotCommand("status", "Sujet, mode et phase en cours"),
        BotCommand("save", "Sauvegarder la progression (.JSON)"),
        BotCommand("finish", "Terminer et générer l'audit"),
        BotCommand("export", "Renvoyer l'archive de l'audit"),
        BotCommand("restart", "Lancer un nouvel audit"),
        BotCommand("help", "Manuel d'utilisation"),
    ]

    scopes = [BotCommandScopeDefault(), BotCommandScopeAllPrivateChats()]
    language_codes: list[str | None] = [None, "fr"]

    for scope in scopes:
        for language_code in language_codes:
            await app.bot.set_my_commands(
                commands,
                scope=scope,
                language_code=language_code,
            )

    logger.info("Telegram command menu updated for default/private scopes")


def build_application() -> Application:
    ensure_data_dirs()
    config = load_config()

    app = (
        Application.builder()
        .token(config.telegram_bot_token)
        .concurrent_updates(True)
        .post_init(_post_init_set_commands)
        .build()
    )

    app.bot_data["config"] = config
    # Built lazily on the first session start so a missing OpenAI key is reported in chat.
    app.bot_data["gateway"] = None
    app.bot_data["reporter"] = ReportBuilder(exports_dir=EXPORTS_DIR)
    app.bot_data["sessions"] = {}
    app.bot_data["dialogues"] = {}
    app.bot_data["report_generators"] = {}
    app.bot_data["setup_drafts"] = {}
    app.bot_data["awaiting_declaration"] = set()

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("status", status_command))
    app.add_handler(CommandHandler("save", save_command))
    app.add_handler(CommandHandler("finish", finish_command))
    app.add_handler(CommandHandler("export", export_command))
    app.add_handler(CommandHandler("restart", restart_command))

    app.add_handler(CallbackQueryHandler(mode_callback, pattern=r"^mode:(TUTOR|CRITIC)$"))
    app.add_handler(CallbackQueryHandler(retry_turn_callback, pattern=r"^retry_turn$"))
    app.add_handler(CallbackQueryHandler(retry_report_callback, pattern=r"^retry_report$"))
    app.add_handler(CallbackQueryHandler(dismiss_error_callback, pattern=r"^dismiss_error$"))
    app.add_handler(MessageHandler(filters.Document.FileExtension("json"), document_handler))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_message_handler))

    return app


def main() -> None:
    configure_logging()

    try:
        app = build_application()
    except ConfigError as exc:
        logging.error("Startup failed: %s", exc)
        sys.exit(1)

    app.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
