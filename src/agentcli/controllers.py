"""Controllers for agent CLI commands."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from agentcli.agent.memory import load_memory, save_memory
from agentcli.agent.session import AgentSession
from agentcli.config import Settings, check_path_component
from agentcli.errors import AgentError
from agentcli.history import Conversation, HistoryManager
from agentcli.llm.models import ASSISTANT, USER
from agentcli.logs import configure_session_logging

logger = logging.getLogger(__name__)

AVAILABLE_MODELS = (
    "gpt-4o-mini",
    "gpt-4o",
    "gpt-4.1",
    "gpt-4.1-mini",
    "o4-mini",
    "o3",
)
HISTORY_WINDOW = 20
PREVIEW_MESSAGES = 6
PREVIEW_CHARS = 100

Echo = Callable[[str], None]
ReadLine = Callable[[str], str]
SessionFactory = Callable[[Settings], AgentSession]


@dataclass(slots=True)
class ChatCommand:
    """CLI input for the interactive REPL."""

    user_id: str | None
    session_id: str | None
    model: str | None
    memory: str | None
    pipeline: bool
    stream: bool = False


@dataclass(slots=True)
class AskCommand:
    """CLI input for a one-shot request."""

    prompt: str
    model: str | None
    pipeline: bool


@dataclass(slots=True)
class StreamCommand:
    """CLI input for a streamed answer, optionally followed by its tool plan."""

    prompt: str
    model: str | None
    tools: bool = False


@dataclass(slots=True)
class ChatState:
    """Mutable REPL state shared by slash commands."""

    user_id: str
    conversation: Conversation
    pipeline: bool
    stream: bool = False
    memory: str = ""


class AgentCliController:
    """Coordinates sessions, history and persona memory for CLI commands."""

    def __init__(
        self,
        *,
        settings_loader: Callable[[], Settings] = Settings.from_env,
        session_factory: SessionFactory = AgentSession,
    ) -> None:
        self._settings_loader = settings_loader
        self._session_factory = session_factory

    def list_tools(self) -> list[str]:
        settings = self._settings_loader()
        session = self._session_factory(settings)
        try:
            lines = [f"Enabled tools ({len(session.registry)}):"]
            for tool in session.registry:
                params = ", ".join(tool.parameter_names)
                lines.append(f"- {tool.name}({params}): {tool.description}")
        finally:
            session.close()
        return lines

    def ask(self, command: AskCommand, echo: Echo) -> None:
        settings = self._load_settings()
        session = self._session_factory(settings)
        try:
            if command.model:
                session.update_model(command.model)
            session.set_memory(load_memory(settings.memory_dir, settings.user_id))
            if command.pipeline:
                session.process_request(command.prompt, on_output=echo)
            else:
                session.run_turn(command.prompt, on_output=echo)
            echo("\n")
        finally:
            session.close()

    def stream(self, command: StreamCommand, echo: Echo) -> None:
        settings = self._load_settings()
        session = self._session_factory(settings)
        try:
            if command.model:
                session.update_model(command.model)
            session.set_memory(load_memory(settings.memory_dir, settings.user_id))
            if command.tools:
                session.stream_request(command.prompt, on_output=echo)
            else:
                session.stream_answer(command.prompt, echo)
            echo("\n")
        finally:
            session.close()

    def chat(self, command: ChatCommand, *, read_line: ReadLine, echo: Echo) -> None:
        """Run the REPL until ``exit``/``quit`` or end of input."""

        settings = self._load_settings()
        session_id = command.session_id or datetime.now().strftime("%Y%m%d_%H%M%S")
        user_id = command.user_id or settings.user_id
        check_path_component(session_id, "session id")
        check_path_component(user_id, "user id")
        session_log = configure_session_logging(settings, session_id)
        session = self._session_factory(settings)
        history = HistoryManager(settings.history_dir)
        try:
            if command.model:
                session.update_model(command.model)
            memory = command.memory or load_memory(settings.memory_dir, user_id)
            if memory:
                session.set_memory(memory)
            state = ChatState(
                user_id=user_id,
                conversation=Conversation.new(user_id, session.model),
                pipeline=command.pipeline,
                stream=command.stream,
                memory=memory,
            )
            _echo_banner(echo, session.model, user_id, state)
            self._repl(state, session, history, settings, read_line=read_line, echo=echo)
        finally:
            session.close()
            session_log.close()

    def _repl(  # noqa: PLR0913
        self,
        state: ChatState,
        session: AgentSession,
        history: HistoryManager,
        settings: Settings,
        *,
        read_line: ReadLine,
        echo: Echo,
    ) -> None:
        while True:
            try:
                user_input = read_line("you> ").strip()
            except EOFError:
                _save_conversation(history, state.conversation, echo)
                echo("\nGoodbye!\n")
                return

            if not user_input:
                continue
            if user_input in {"exit", "quit"}:
                _save_conversation(history, state.conversation, echo)
                echo("Goodbye!\n")
                return
            if user_input.startswith("/"):
                self._handle_slash(user_input, state, session, history, settings, read_line, echo)
                continue
            self._run_turn(user_input, state, session, history, echo)

    def _run_turn(
        self,
        user_input: str,
        state: ChatState,
        session: AgentSession,
        history: HistoryManager,
        echo: Echo,
    ) -> None:
        prior = [
            message
            for message in state.conversation.to_llm_messages()[-HISTORY_WINDOW:]
            if message.role in {USER, ASSISTANT}
        ]
        try:
            if state.pipeline:
                answer = session.process_request(user_input, on_output=echo)
            elif state.stream:
                answer = session.stream_request(user_input, on_output=echo)
            else:
                answer = session.run_turn(user_input, history=prior, on_output=echo).answer
        except AgentError as error:
            logger.exception("Request failed")
            echo(f"\nError: {error}\n\n")
            return
        except KeyboardInterrupt:
            logger.warning("Request interrupted by user")
            echo("\nRequest interrupted.\n\n")
            return

        state.conversation.add_message(USER, user_input)
        state.conversation.add_message(ASSISTANT, answer)
        echo("\n\n")
        try:
            history.save(state.conversation)
        except AgentError as error:
            logger.exception("Failed to save conversation")
            echo(f"Could not save conversation: {error}\n")

    def _handle_slash(  # noqa: PLR0913, C901
        self,
        user_input: str,
        state: ChatState,
        session: AgentSession,
        history: HistoryManager,
        settings: Settings,
        read_line: ReadLine,
        echo: Echo,
    ) -> None:
        name, _, argument = user_input.partition(" ")
        argument = argument.strip()

        if name == "/new":
            _save_conversation(history, state.conversation, echo)
            state.conversation = Conversation.new(state.user_id, session.model)
            logger.info("New conversation: id=%s", state.conversation.conversation_id)
            echo("Started a new conversation.\n")
        elif name == "/model":
            if not argument:
                for index, model in enumerate(AVAILABLE_MODELS, start=1):
                    marker = "*" if model == session.model else " "
                    echo(f"  [{marker}] {index}. {model}\n")
                echo(f"Current model: {session.model}\n")
                argument = read_line("Model number or name (empty keeps current): ").strip()
                if not argument:
                    echo("Keeping the current model.\n")
                    return
            selected = select_model(argument)
            if selected is None:
                echo(f"Unknown model: {argument}\n")
                return
            session.update_model(selected)
            state.conversation.model = selected
            echo(f"Switched to model: {selected}\n")
        elif name == "/history":
            conversations = history.list(state.user_id)
            if not conversations:
                echo("No saved conversations.\n")
                return
            for index, item in enumerate(conversations, start=1):
                echo(
                    f"  {index}. id={item.conversation_id} model={item.model} "
                    f"messages={len(item.messages)} updated={item.updated:%Y-%m-%d %H:%M}\n",
                )
        elif name == "/load":
            if not argument:
                echo("Usage: /load <conversation id>\n")
                return
            try:
                loaded = history.load(argument)
            except AgentError as error:
                logger.exception("Failed to load conversation: id=%s", argument)
                echo(f"Error: {error}\n")
                return
            _save_conversation(history, state.conversation, echo)
            state.conversation = loaded
            session.update_model(loaded.model or session.model)
            echo(
                f"Loaded conversation {loaded.conversation_id} "
                f"({len(loaded.messages)} messages).\n",
            )
            for message in loaded.recent(PREVIEW_MESSAGES):
                content = message.content
                if len(content) > PREVIEW_CHARS:
                    content = content[:PREVIEW_CHARS] + "..."
                echo(f"  {message.role}: {content}\n")
        elif name == "/memory":
            if not argument:
                echo(f"Current memory: {state.memory}\n" if state.memory else "No memory set.\n")
                echo("Usage: /memory <text>\n")
                return
            state.memory = argument
            session.set_memory(argument)
            try:
                save_memory(settings.memory_dir, state.user_id, argument)
            except AgentError as error:
                logger.exception("Failed to save memory")
                echo(f"Memory set for this session but not saved: {error}\n")
                return
            echo("Memory saved.\n")
        elif name == "/pipeline":
            if argument not in {"on", "off"}:
                mode = "on" if state.pipeline else "off"
                echo(f"Pipeline mode is {mode}. Usage: /pipeline on|off\n")
                return
            state.pipeline = argument == "on"
            echo(f"Pipeline mode {argument}.\n")
        elif name == "/stream":
            if argument not in {"on", "off"}:
                mode = "on" if state.stream else "off"
                echo(f"Stream mode is {mode}. Usage: /stream on|off\n")
                return
            state.stream = argument == "on"
            echo(f"Stream mode {argument}.\n")
        else:
            echo(f"Unknown command: {name}\n")

    def _load_settings(self) -> Settings:
        settings = self._settings_loader()
        settings.validate()
        return settings


def select_model(choice: str) -> str | None:
    """Resolve a 1-based list number or an exact model name."""

    if choice.isdigit():
        index = int(choice) - 1
        if 0 <= index < len(AVAILABLE_MODELS):
            return AVAILABLE_MODELS[index]
        return None
    return choice if choice in AVAILABLE_MODELS else None


def _save_conversation(history: HistoryManager, conversation: Conversation, echo: Echo) -> None:
    if not conversation.messages:
        return
    try:
        history.save(conversation)
    except AgentError as error:
        logger.exception("Failed to save conversation")
        echo(f"Could not save conversation: {error}\n")
        return
    echo(f"Conversation saved (id: {conversation.conversation_id}).\n")


def _echo_banner(echo: Echo, model: str, user_id: str, state: ChatState) -> None:
    echo(f"agentcli interactive mode | model: {model} | user: {user_id}\n")
    pipeline = "on" if state.pipeline else "off"
    stream = "on" if state.stream else "off"
    echo(f"pipeline mode: {pipeline} | stream mode: {stream}\n")
    echo(
        "Commands: exit/quit, /new, /model [name|number], /history, /load <id>, "
        "/memory [text], /pipeline on|off, /stream on|off\n\n",
    )
