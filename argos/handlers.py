from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

from .analysis import ReportGenerator
from .archive import ArchiveError, load_archive
from .config import AppConfig, ConfigError
from .constants import PROTOCOL_PHASES, TUTOR_NAME
from .dialogue import DialogueManager
from .models import ImportedSession, SessionConfig, SocraticMode, TurnResult
from .openai_service import OpenAIService
from .reporting import ReportBuilder
from .session import AppMode, InvalidTransitionError, SessionStateMachine, SetupError

logger = logging.getLogger(__name__)


COMMANDS_HINT = "Commandes : /start, /status, /save, /finish, /export, /restart, /help"

GUIDE_TEXT = (
    "Argos : manuel de continuité\n\n"
    "Argos conduit un dialogue socratique : une seule question par message, jamais de corrigé.\n\n"
    "Modes :\n"
    "- Tuteur : je t'aide à construire et fortifier ton propre raisonnement.\n"
    "- Critique : je te propose un texte qui cache des failles logiques, à toi de les débusquer.\n\n"
    "Phases : " + " → ".join(f"{i}. {label}" for i, label in enumerate(PROTOCOL_PHASES)) + "\n\n"
    "Sauvegarde & reprise : Argos ne stocke rien sur ses serveurs.\n"
    "1. /save t'envoie ta progression en .JSON.\n"
    "2. Au prochain démarrage, envoie ce fichier sur l'écran d'accueil pour reprendre.\n\n"
    "/finish termine la session, te demande ton journal d'usage IA et génère l'audit final."
)

MODE_KEYBOARD = InlineKeyboardMarkup(
    [
        [InlineKeyboardButton("Mode Tuteur (Accompagnement)", callback_data="mode:TUTOR")],
        [InlineKeyboardButton("Mode Critique (Audit Logique)", callback_data="mode:CRITIC")],
    ]
)

RETRY_TURN_KEYBOARD = InlineKeyboardMarkup(
    [[InlineKeyboardButton("Réessayer", callback_data="retry_turn")]]
)

RETRY_REPORT_KEYBOARD = InlineKeyboardMarkup(
    [[InlineKeyboardButton("Relancer l'audit", callback_data="retry_report")]]
)

BUSY_TEXT = f"{TUTOR_NAME} analyse encore ton propos, patiente un instant."

DISMISS_KEYBOARD = InlineKeyboardMarkup(
    [[InlineKeyboardButton("Fermer", callback_data="dismiss_error")]]
)


def _service(context: ContextTypes.DEFAULT_TYPE, key: str) -> Any:
    return context.application.bot_data[key]


def _chunk_text(text: str, limit: int = 3800) -> list[str]:
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    cursor = 0
    while cursor < len(text):
        next_cursor = min(cursor + limit, len(text))
        if next_cursor < len(text):
            split = text.rfind("\n", cursor, next_cursor)
            if split > cursor:
                next_cursor = split
        chunks.append(text[cursor:next_cursor].strip())
        cursor = next_cursor
    return [c for c in chunks if c]


async def _reply_long(update: Update, text: str, **kwargs: Any) -> None:
    if update.effective_message is None:
        return
    chunks = _chunk_text(text)
    for idx, chunk in enumerate(chunks):
        if idx == len(chunks) - 1:
            await update.effective_message.reply_text(chunk, **kwargs)
        else:
            await update.effective_message.reply_text(chunk)


async def _reply_document(update: Update, path: Path) -> None:
    if update.effective_message is None:
        return
    with path.open("rb") as f:
        await update.effective_message.reply_document(document=f, filename=path.name)


def _gateway(context: ContextTypes.DEFAULT_TYPE) -> OpenAIService:
    bot_data = context.application.bot_data
    gateway = bot_data.get("gateway")
    if gateway is None:
        config: AppConfig = bot_data["config"]
        gateway = OpenAIService(
            api_key=config.openai_api_key,
            chat_model=config.chat_model,
            analysis_model=config.analysis_model,
            chat_temperature=config.chat_temperature,
            analysis_temperature=config.analysis_temperature,
        )
        bot_data["gateway"] = gateway
    return gateway


def _get_session(context: ContextTypes.DEFAULT_TYPE, user_id: int) -> SessionStateMachine | None:
    sessions: dict[int, SessionStateMachine] = _service(context, "sessions")
    return sessions.get(user_id)


def _clear_user_state(context: ContextTypes.DEFAULT_TYPE, user_id: int) -> None:
    _service(context, "dialogues").pop(user_id, None)
    _service(context, "report_generators").pop(user_id, None)
    _service(context, "setup_drafts").pop(user_id, None)
    _service(context, "awaiting_declaration").discard(user_id)


async def _prompt_setup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    _service(context, "setup_drafts")[update.effective_user.id] = {}
    await update.effective_message.reply_text(
        "Argos Socratique : ton partenaire de réflexion critique.\n\n"
        "Quel est ton prénom ?\n"
        "(Pour reprendre un travail, envoie ton fichier .JSON de progression.)"
    )


async def _send_turn_result(update: Update, result: TurnResult | None) -> None:
    if update.effective_message is None:
        return

    if result is None:
        await update.effective_message.reply_text(BUSY_TEXT)
        return

    if not result.ok:
        await update.effective_message.reply_text(
            f"Erreur de communication avec {TUTOR_NAME}.",
            reply_markup=RETRY_TURN_KEYBOARD,
        )
        return

    await _reply_long(update, result.reply.text)


async def _start_chat(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    state: SessionStateMachine,
    config: SessionConfig | None = None,
    imported: ImportedSession | None = None,
) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    user_id = update.effective_user.id
    app_config: AppConfig = _service(context, "config")

    try:
        gateway = _gateway(context)
    except ConfigError as exc:
        logger.error("Session creation failed: %s", exc)
        state.fail_setup(f"Impossible de créer la session. Vérifiez la configuration. ({exc})")
        await update.effective_message.reply_text(state.error, reply_markup=DISMISS_KEYBOARD)
        return

    try:
        if imported is not None:
            state.resume(imported)
        elif config is not None:
            state.start(config)
        else:
            return
    except SetupError:
        await update.effective_message.reply_text("Le prénom et le sujet sont obligatoires.")
        await _prompt_setup(update, context)
        return

    _service(context, "setup_drafts").pop(user_id, None)
    dialogue = DialogueManager(
        state=state,
        openai_service=gateway,
        rotate_strategies=app_config.rotate_strategies,
    )
    _service(context, "dialogues")[user_id] = dialogue

    session_config = state.require_config()
    if len(state.transcript) > 0:
        await update.effective_message.reply_text(
            f"Session reprise : {session_config.topic} ({len(state.transcript.visible())} messages). "
            f"Phase {dialogue.phase} : {ReportBuilder.phase_label(dialogue.phase)}."
        )
        last_model = state.transcript.last_model_message()
        if last_model is not None:
            await _reply_long(update, last_model.text)
        return

    await update.effective_message.reply_text(f"Sujet : {session_config.topic}. {TUTOR_NAME} prépare la session...")
    result = await dialogue.open()
    await _send_turn_result(update, result)


async def _run_report(update: Update, context: ContextTypes.DEFAULT_TYPE, state: SessionStateMachine) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    generators: dict[int, ReportGenerator] = _service(context, "report_generators")
    generator = generators.get(update.effective_user.id)
    if generator is None:
        generator = ReportGenerator(_gateway(context))
        generators[update.effective_user.id] = generator

    if generator.busy:
        await update.effective_message.reply_text(f"{TUTOR_NAME} génère déjà l'audit final...")
        return

    await update.effective_message.reply_text(f"{TUTOR_NAME} génère l'audit final...")
    await generator.run(state)

    if state.analysis is None:
        await update.effective_message.reply_text(
            "L'audit n'a pas pu être généré.",
            reply_markup=RETRY_REPORT_KEYBOARD,
        )
        return

    reporter: ReportBuilder = _service(context, "reporter")
    artifacts = reporter.export_report(state)
    await _reply_long(update, artifacts.markdown)
    await _reply_document(update, Path(artifacts.export_path))
    await update.effective_message.reply_text("/export renvoie l'archive, /restart lance un nouvel audit.")


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    user_id = update.effective_user.id
    sessions: dict[int, SessionStateMachine] = _service(context, "sessions")
    existing = sessions.get(user_id)

    if existing is not None and existing.mode == AppMode.CHAT:
        await update.effective_message.reply_text(
            "Tu as déjà une session en cours. Continue à répondre, /status pour le détail ou /finish pour terminer."
        )
        return

    state = SessionStateMachine()
    sessions[user_id] = state
    _clear_user_state(context, user_id)

    app_config: AppConfig = _service(context, "config")
    if app_config.access_code:
        await update.effective_message.reply_text("Bienvenue sur Argos. Entre ton code d'accès.")
        return

    state.login()
    await _prompt_setup(update, context)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None:
        return
    await update.effective_message.reply_text(GUIDE_TEXT + "\n\n" + COMMANDS_HINT)


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None:
        await update.effective_message.reply_text("Aucune session. Écris /start pour commencer.")
        return

    if state.mode != AppMode.CHAT or state.config is None:
        await update.effective_message.reply_text(f"Écran actuel : {state.mode.value}.")
        return

    dialogue: DialogueManager | None = _service(context, "dialogues").get(update.effective_user.id)
    phase = dialogue.phase if dialogue else 0
    exchanges = state.transcript.model_reply_count()
    mode_label = "Tuteur" if state.config.mode == SocraticMode.TUTOR else "Critique"

    await update.effective_message.reply_text(
        "\n".join(
            [
                f"Sujet : {state.config.topic}",
                f"Mode : {mode_label}",
                f"Phase {phase} : {ReportBuilder.phase_label(phase)}",
                f"Échanges : {exchanges}",
            ]
        )
    )


async def save_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None or state.mode != AppMode.CHAT:
        await update.effective_message.reply_text("Aucune session en cours à sauvegarder.")
        return

    reporter: ReportBuilder = _service(context, "reporter")
    path = reporter.export_progress(state)
    await _reply_document(update, path)
    await update.effective_message.reply_text("Progression sauvegardée. Renvoie ce fichier après /start pour reprendre.")


async def finish_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None or state.mode != AppMode.CHAT:
        await update.effective_message.reply_text("Aucune session en cours à terminer.")
        return

    dialogue: DialogueManager | None = _service(context, "dialogues").get(update.effective_user.id)
    if dialogue is not None and dialogue.busy:
        await update.effective_message.reply_text(BUSY_TEXT)
        return

    _service(context, "awaiting_declaration").add(update.effective_user.id)
    await update.effective_message.reply_text(
        "Journal d'usage IA : comment as-tu utilisé l'IA pour tes recherches ?\n"
        "Réponds par un message (ou « aucun »)."
    )


async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None or state.mode != AppMode.REPORT:
        await update.effective_message.reply_text("L'export de l'audit est disponible après /finish.")
        return

    reporter: ReportBuilder = _service(context, "reporter")
    artifacts = reporter.export_report(state)
    await _reply_document(update, Path(artifacts.export_path))


async def restart_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None:
        await update.effective_message.reply_text("Aucune session. Écris /start pour commencer.")
        return

    try:
        state.restart()
    except InvalidTransitionError:
        if state.mode == AppMode.CHAT:
            await update.effective_message.reply_text("Termine d'abord la session en cours avec /finish.")
        else:
            await update.effective_message.reply_text("Rien à relancer pour l'instant. Écris /start pour commencer.")
        return

    _clear_user_state(context, update.effective_user.id)
    await _prompt_setup(update, context)


async def mode_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None or update.effective_user is None:
        return

    await query.answer()

    state = _get_session(context, update.effective_user.id)
    draft: dict[str, str] | None = _service(context, "setup_drafts").get(update.effective_user.id)
    if state is None or state.mode != AppMode.SETUP or not draft or "topic" not in draft:
        return

    mode = SocraticMode(query.data.split(":", 1)[1])
    config = SessionConfig(student_name=draft.get("name", ""), topic=draft["topic"], mode=mode)
    await _start_chat(update, context, state, config=config)


async def dismiss_error_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None or update.effective_user is None:
        return

    await query.answer()
    state = _get_session(context, update.effective_user.id)
    if state is not None:
        state.dismiss_error()
    if query.message is not None:
        await query.message.delete()


async def retry_turn_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None or update.effective_user is None:
        return

    await query.answer()
    state = _get_session(context, update.effective_user.id)
    dialogue: DialogueManager | None = _service(context, "dialogues").get(update.effective_user.id)
    if state is None or state.mode != AppMode.CHAT or dialogue is None or not dialogue.pending_text:
        return

    result = await dialogue.retry()
    await _send_turn_result(update, result)


async def retry_report_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if query is None or update.effective_user is None:
        return

    await query.answer()
    state = _get_session(context, update.effective_user.id)
    if state is None or state.mode != AppMode.REPORT:
        return

    await _run_report(update, context, state)


async def document_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    state = _get_session(context, update.effective_user.id)
    if state is None or state.mode != AppMode.SETUP:
        await update.effective_message.reply_text("Envoie ton fichier de progression depuis l'écran d'accueil (/start).")
        return

    document = update.effective_message.document
    if document is None:
        return

    try:
        telegram_file = await document.get_file()
        raw = await telegram_file.download_as_bytearray()
        imported = load_archive(raw)
    except ArchiveError as exc:
        logger.info("Import rejected for user %s: %s", update.effective_user.id, exc)
        await update.effective_message.reply_text("Fichier JSON corrompu ou invalide.")
        return

    await _start_chat(update, context, state, imported=imported)


async def _handle_setup_text(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    text: str,
) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    drafts: dict[int, dict[str, str]] = _service(context, "setup_drafts")
    draft = drafts.setdefault(update.effective_user.id, {})

    if "name" not in draft:
        draft["name"] = text
        await update.effective_message.reply_text("Quel sujet veux-tu explorer ? (ex : La justice sociale)")
        return

    if "topic" not in draft:
        draft["topic"] = text
        await update.effective_message.reply_text(
            "Choisis l'expérience de dialogue :",
            reply_markup=MODE_KEYBOARD,
        )
        return

    await update.effective_message.reply_text("Choisis un mode ci-dessus pour lancer la discussion.", reply_markup=MODE_KEYBOARD)


async def text_message_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.effective_message is None or update.effective_user is None:
        return

    text = (update.effective_message.text or "").strip()
    if not text:
        return

    user_id = update.effective_user.id
    state = _get_session(context, user_id)
    if state is None:
        await update.effective_message.reply_text("Aucune session. Écris /start pour commencer.")
        return

    try:
        if state.mode == AppMode.LOGIN:
            app_config: AppConfig = _service(context, "config")
            if text != app_config.access_code:
                await update.effective_message.reply_text("Code d'accès incorrect.")
                return
            state.login()
            await _prompt_setup(update, context)
            return

        if state.mode == AppMode.SETUP:
            await _handle_setup_text(update, context, text)
            return

        if state.mode == AppMode.CHAT:
            awaiting: set[int] = _service(context, "awaiting_declaration")
            if user_id in awaiting:
                pending: DialogueManager | None = _service(context, "dialogues").get(user_id)
                if pending is not None and pending.busy:
                    await update.effective_message.reply_text(BUSY_TEXT)
                    return
                awaiting.discard(user_id)
                declaration = "" if text.lower() in {"aucun", "aucune", "non"} else text
                state.finish(declaration)
                _service(context, "dialogues").pop(user_id, None)
                await _run_report(update, context, state)
                return

            dialogue: DialogueManager | None = _service(context, "dialogues").get(user_id)
            if dialogue is None:
                await update.effective_message.reply_text("Session introuvable. Écris /start pour recommencer.")
                return
            result = await dialogue.send_turn(text)
            await _send_turn_result(update, result)
            return

        await update.effective_message.reply_text("L'audit est terminé. " + COMMANDS_HINT)

    except InvalidTransitionError as exc:
        logger.warning("Rejected action for user %s: %s", user_id, exc)
        await update.effective_message.reply_text("Action impossible à cette étape. " + COMMANDS_HINT)
    except Exception as exc:
        logger.exception("Unexpected error in message handler: %s", exc)
        await update.effective_message.reply_text(
            "Une erreur est survenue lors du traitement de ton message. Réessaie."
        )
