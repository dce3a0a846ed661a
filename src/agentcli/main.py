"""CLI entrypoint for agentcli."""

from collections.abc import Callable

import rich_click as click

from agentcli import __version__
from agentcli.controllers import AgentCliController, AskCommand, ChatCommand, StreamCommand
from agentcli.errors import AgentError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agentcli")
def agentcli() -> None:
    """Terminal assistant that answers through tool-calling LLM turns."""


@agentcli.command("chat")
@click.option("--user", "user_id", default=None, help="User id for history and memory.")
@click.option(
    "--session",
    "session_id",
    default=None,
    help="Session id used for the log file name.",
)
@click.option("--model", default=None, help="Override the configured model.")
@click.option("--memory", default=None, help="Persona memory for this session.")
@click.option(
    "--pipeline/--no-pipeline",
    default=False,
    show_default=True,
    help="Answer through the think/decision/tool/summary pipeline.",
)
@click.option(
    "--stream/--no-stream",
    default=False,
    show_default=True,
    help="Stream answers and run the tool plan they end with.",
)
def chat(  # noqa: PLR0913
    user_id: str | None,
    session_id: str | None,
    model: str | None,
    memory: str | None,
    pipeline: bool,
    stream: bool,
) -> None:
    """Start an interactive conversation.

    Type `exit` or `quit` to leave. Slash commands: `/new`, `/model`, `/history`,
    `/load <id>`, `/memory <text>`, `/pipeline on|off`, `/stream on|off`.
    """

    _run(
        lambda: CONTROLLER.chat(
            ChatCommand(
                user_id=user_id,
                session_id=session_id,
                model=model,
                memory=memory,
                pipeline=pipeline,
                stream=stream,
            ),
            read_line=_read_line,
            echo=_echo_fragment,
        ),
    )


@agentcli.command("ask")
@click.argument("prompt")
@click.option("--model", default=None, help="Override the configured model.")
@click.option(
    "--pipeline/--no-pipeline",
    default=False,
    show_default=True,
    help="Answer through the think/decision/tool/summary pipeline.",
)
def ask(prompt: str, model: str | None, pipeline: bool) -> None:
    """Answer one request, calling tools as needed."""

    _run(
        lambda: CONTROLLER.ask(
            AskCommand(prompt=prompt, model=model, pipeline=pipeline),
            _echo_fragment,
        ),
    )


@agentcli.command("stream")
@click.argument("prompt")
@click.option("--model", default=None, help="Override the configured model.")
@click.option(
    "--tools/--no-tools",
    default=False,
    show_default=True,
    help="Analyze intent first and run the JSON tool plan the answer ends with.",
)
def stream(prompt: str, model: str | None, tools: bool) -> None:
    """Stream an answer as it is generated."""

    _run(
        lambda: CONTROLLER.stream(
            StreamCommand(prompt=prompt, model=model, tools=tools),
            _echo_fragment,
        ),
    )


@agentcli.command("tools")
def tools() -> None:
    """List enabled tools and their parameters."""

    _run(lambda: _emit_lines(CONTROLLER.list_tools()))


def _run(action: Callable[[], None]) -> None:
    try:
        action()
    except (AgentError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _read_line(prompt: str) -> str:
    try:
        return click.prompt(prompt, default="", show_default=False, prompt_suffix="")
    except click.Abort as error:
        raise EOFError from error


def _echo_fragment(text: str) -> None:
    click.echo(text, nl=False)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agentcli()
