from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Sequence
from functools import partial

import click

from parley.approval import ApprovalChoice, JsonFileApprovalPolicy
from parley.config import Config, get_config
from parley.dbutils import open_db_session
from parley.history import ChatHistoryStore
from parley.llms import ChatClient
from parley.llms.models import KNOWN_MODELS, fetch_model_infos, init_model
from parley.llms.pydantic_ai_client import PydanticAIChatClient
from parley.llms.responses_client import ResponsesChatClient
from parley.log import logger
from parley.mcp.manager import init_mcp_manager
from parley.messages import ApprovalRequest, Message
from parley.orchestrator import ChatOrchestrator
from parley.settings import ChatSettings, SettingsStore
from parley.state import TurnStatus
from parley.tools import MCPToolExecutor, ToolExecutor

EXIT_COMMANDS = ("/exit", "/quit")


def build_chat_client(
    config: Config, settings: ChatSettings, tool_executor: ToolExecutor, use_responses_api: bool
) -> ChatClient:
    api_key = config.require_api_key()
    if use_responses_api:
        return ResponsesChatClient(
            api_key, config.base_url, tool_executor, settings, timeout=config.request_timeout
        )
    return PydanticAIChatClient(
        partial(init_model, config.provider, api_key=api_key, base_url=config.base_url),
        tool_executor,
        settings,
    )


class TranscriptPrinter:
    """Echo transcript changes to the terminal as they stream in."""

    def __init__(self, shown: int = 0) -> None:
        self._shown = shown
        self._partial = 0

    def __call__(self, messages: Sequence[Message]) -> None:
        if len(messages) < self._shown:
            self._shown = len(messages)
            self._partial = 0
        for index in range(self._shown, len(messages)):
            message = messages[index]
            if message.is_streaming:
                text = message.text()
                if len(text) > self._partial:
                    click.echo(text[self._partial :], nl=False)
                    self._partial = len(text)
                return
            self._finish(message)
            self._shown = index + 1

    def _finish(self, message: Message) -> None:
        if message.role == "assistant":
            text = message.text()
            if text.startswith("Error:"):
                if self._partial:
                    click.echo()
                click.secho(text, fg="red")
            elif len(text) > self._partial or not self._partial:
                click.echo(text[self._partial :])
            else:
                click.echo()
            for tool_call in message.tool_calls or []:
                click.secho(f"  -> {tool_call.name}({tool_call.function.arguments})", fg="cyan")
        elif message.role == "tool":
            click.secho(f"  <- {message.text()[:200]}", dim=True)
        self._partial = 0


def _describe_pending(pending) -> str:
    if isinstance(pending, ApprovalRequest):
        return f"Remote tool '{pending.name}' on '{pending.server_label}' with {pending.arguments or '{}'}"
    return f"Tool '{pending.name}' with {pending.function.arguments or '{}'}"


async def _run_interruptible(orchestrator: ChatOrchestrator, flow: Awaitable[TurnStatus]) -> TurnStatus:
    # Ctrl-C stops generation instead of exiting
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
    try:
        return await flow
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _chat(config: Config, chat_id: str | None, model: str | None, use_responses_api: bool | None) -> None:
    settings = SettingsStore(config.settings_path).load()
    policy = JsonFileApprovalPolicy(config.approvals_path)

    async with open_db_session(config) as session, init_mcp_manager(config) as mcp_manager:
        history = ChatHistoryStore(session)
        messages: list[Message] = []
        if chat_id:
            record = await history.load_chat(chat_id)
            messages = record.messages
            model = model or record.model
            use_responses_api = record.use_responses_api if use_responses_api is None else use_responses_api

        model = model or settings.model or config.default_model
        use_responses_api = settings.use_responses_api if use_responses_api is None else use_responses_api

        executor = MCPToolExecutor(mcp_manager)
        client = build_chat_client(config, settings, executor, use_responses_api)
        orchestrator = ChatOrchestrator(
            client, executor, policy, model, max_empty_retries=config.max_empty_retries
        )
        orchestrator.reset(messages)
        if not chat_id:
            chat_id = await history.create_chat(model, use_responses_api)

        click.secho(f"Chat {chat_id} with {model}. Type /exit to quit.", fg="green")
        if mcp_manager.failed_clients:
            click.secho(f"Failed MCP servers: {', '.join(mcp_manager.failed_clients)}", fg="yellow")

        unsubscribe = orchestrator.transcript.subscribe(TranscriptPrinter(shown=len(messages)))
        try:
            while True:
                try:
                    text = click.prompt("You", prompt_suffix="> ")
                except click.Abort:
                    break
                if text.strip() in EXIT_COMMANDS:
                    break
                if not text.strip():
                    continue

                is_first = not orchestrator.transcript.persistable()
                status = await _run_interruptible(orchestrator, orchestrator.send_message(text))
                while status == TurnStatus.PAUSED and orchestrator.pending_approval is not None:
                    choice = click.prompt(
                        _describe_pending(orchestrator.pending_approval),
                        type=click.Choice([choice.value for choice in ApprovalChoice]),
                        default=ApprovalChoice.ONCE.value,
                    )
                    status = await _run_interruptible(orchestrator, orchestrator.handle_tool_approval(choice))
                if status == TurnStatus.CANCELLED:
                    click.secho("[stopped]", fg="yellow")

                await history.save_chat(chat_id, orchestrator.transcript.persistable())
                if is_first:
                    await history.update_title(chat_id, text.strip()[:50])
        finally:
            unsubscribe()
            await history.save_chat(chat_id, orchestrator.transcript.persistable())
            if isinstance(client, ResponsesChatClient):
                await client.close()


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="parley")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Parley: chat with hosted LLMs and approved MCP tools."""
    ctx.obj = get_config()


@cli.command()
@click.option("--chat-id", help="Continue an existing chat.")
@click.option("--model", help="Model to chat with.")
@click.option("--responses/--completions", "use_responses_api", default=None, help="API flavour to use.")
@click.pass_obj
def chat(config: Config, chat_id: str | None, model: str | None, use_responses_api: bool | None) -> None:
    """Start an interactive chat."""
    asyncio.run(_chat(config, chat_id, model, use_responses_api))


@cli.group()
def history() -> None:
    """Browse saved chats."""


async def _list_chats(config: Config, limit: int, offset: int) -> None:
    async with open_db_session(config) as session:
        chats = await ChatHistoryStore(session).list_chats(limit=limit, offset=offset)
    if not chats:
        click.echo("No chats yet.")
        return
    for record in chats:
        click.echo(f"{record.chat_id}  {record.updated_at:%Y-%m-%d %H:%M}  {record.title}")


@history.command(name="list")
@click.option("--limit", default=20, show_default=True)
@click.option("--offset", default=0, show_default=True)
@click.pass_obj
def list_chats(config: Config, limit: int, offset: int) -> None:
    asyncio.run(_list_chats(config, limit, offset))


async def _show_chat(config: Config, chat_id: str) -> None:
    async with open_db_session(config) as session:
        record = await ChatHistoryStore(session).load_chat(chat_id)
    click.secho(f"{record.title} ({record.model or 'default model'})", bold=True)
    for message in record.messages:
        click.secho(f"{message.role}: ", fg="cyan", nl=False)
        click.echo(message.text())
        for tool_call in message.tool_calls or []:
            click.echo(f"  -> {tool_call.name}({tool_call.function.arguments})")


@history.command()
@click.argument("chat_id")
@click.pass_obj
def show(config: Config, chat_id: str) -> None:
    asyncio.run(_show_chat(config, chat_id))


async def _delete_chat(config: Config, chat_id: str) -> None:
    async with open_db_session(config) as session:
        await ChatHistoryStore(session).delete_chat(chat_id)


@history.command(name="delete")
@click.argument("chat_id")
@click.confirmation_option(prompt="Delete this chat?")
@click.pass_obj
def delete_chat(config: Config, chat_id: str) -> None:
    asyncio.run(_delete_chat(config, chat_id))
    click.echo(f"Deleted {chat_id}")


@cli.group()
def approvals() -> None:
    """Inspect or clear remembered tool approvals."""


@approvals.command(name="list")
@click.pass_obj
def list_approvals(config: Config) -> None:
    policy = JsonFileApprovalPolicy(config.approvals_path)
    if policy.is_yolo():
        click.secho("YOLO mode: every tool is auto-approved", fg="yellow")
    always = policy.list_always()
    if not always and not policy.is_yolo():
        click.echo("No remembered approvals.")
    for tool_name in always:
        click.echo(f"{tool_name}: always")


@approvals.command()
@click.pass_obj
def reset(config: Config) -> None:
    JsonFileApprovalPolicy(config.approvals_path).reset()
    click.echo("Cleared all tool approvals.")


@cli.command()
@click.pass_obj
def models(config: Config) -> None:
    """List available models."""
    model_infos = KNOWN_MODELS
    if config.api_key:
        try:
            model_infos = asyncio.run(fetch_model_infos(config.base_url, config.api_key))
        except Exception as e:
            logger.warning(f"Could not fetch models, showing known models: {e}")
    for name, info in sorted(model_infos.items()):
        flags = " vision" if info.vision_supported else ""
        click.echo(f"{name}  context={info.context}{flags}")


if __name__ == "__main__":
    cli()
