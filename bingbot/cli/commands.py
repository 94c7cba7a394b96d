"""
CLI 命令模块 - bingbot 的命令行入口。

- onboard：生成默认配置文件 ~/.bingbot/config.json
- gateway：启动网关服务（飞书渠道 + 分发器 + Bing 会话）
- chat：在终端里直接与 Bing 对话（单条消息或交互模式）
- status：查看配置状态

技术栈：
- Typer：CLI 框架
- Rich：终端输出（Markdown 渲染、表格、加载动画）
- prompt_toolkit：交互式输入（历史记录、行编辑）
"""

import asyncio
import os
import select
import signal
import sys
from contextlib import nullcontext

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from bingbot import __logo__, __version__

app = typer.Typer(
    name="bingbot",
    help=f"{__logo__} bingbot - Bing Chat for Feishu",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

_PROMPT_SESSION: PromptSession | None = None
_SAVED_TERM_ATTRS = None


# ---------------------------------------------------------------------------
# 交互式输入
# ---------------------------------------------------------------------------


def _flush_pending_tty_input() -> None:
    """清掉等待回答期间误按的按键，避免混进下一次输入。"""
    try:
        fd = sys.stdin.fileno()
        if not os.isatty(fd):
            return
    except (OSError, ValueError):
        return

    try:
        import termios
        termios.tcflush(fd, termios.TCIFLUSH)
        return
    except (ImportError, OSError):
        pass

    try:
        while True:
            ready, _, _ = select.select([fd], [], [], 0)
            if not ready or not os.read(fd, 4096):
                break
    except OSError:
        return


def _restore_terminal() -> None:
    if _SAVED_TERM_ATTRS is None:
        return
    try:
        import termios
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, _SAVED_TERM_ATTRS)
    except (ImportError, OSError):
        pass


def _init_prompt_session() -> None:
    """创建 prompt_toolkit 会话，历史记录保存在 ~/.bingbot/history/cli_history。"""
    global _PROMPT_SESSION, _SAVED_TERM_ATTRS
    from bingbot.utils.helpers import ensure_dir, get_data_path

    try:
        import termios
        _SAVED_TERM_ATTRS = termios.tcgetattr(sys.stdin.fileno())
    except (ImportError, OSError):
        pass

    history_dir = ensure_dir(get_data_path() / "history")
    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_dir / "cli_history")),
        enable_open_in_editor=False,
        multiline=False,
    )


async def _read_interactive_input_async() -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def _print_reply(reply: str, render_markdown: bool) -> None:
    body = Markdown(reply) if render_markdown else Text(reply)
    console.print()
    console.print(f"[cyan]{__logo__} Bing[/cyan]")
    console.print(body)
    console.print()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} bingbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """bingbot CLI 根命令回调。"""


# ============================================================================
# Onboard
# ============================================================================


@app.command()
def onboard():
    """在 ~/.bingbot/ 下生成默认配置文件。"""
    from bingbot.config.loader import get_config_path, save_config
    from bingbot.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} bingbot is ready!")
    console.print("\nNext steps:")
    console.print("  1. Put your bing.com [bold]_U[/bold] cookie into [cyan]bing.cookie[/cyan]")
    console.print("     (or export [cyan]BINGBOT_BING__COOKIE[/cyan])")
    console.print("  2. Chat: [cyan]bingbot chat -m \"Hello!\"[/cyan]")
    console.print("  3. Feishu: fill [cyan]channels.feishu[/cyan] and run [cyan]bingbot gateway[/cyan]")


def _make_sessions(config):
    """按配置构建会话管理器；未配置 Cookie 时直接退出。"""
    from bingbot.providers.bing_chat import BingChatSession
    from bingbot.session.manager import SessionManager

    if not config.bing.cookie:
        console.print("[red]Error: No Bing cookie configured.[/red]")
        console.print("Set bing.cookie in ~/.bingbot/config.json or BINGBOT_BING__COOKIE")
        raise typer.Exit(1)
    return SessionManager(lambda: BingChatSession(config.bing))


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """启动网关：飞书渠道 + 分发器，每个飞书用户一个 Bing 会话。"""
    from loguru import logger

    from bingbot.bus.queue import MessageBus
    from bingbot.channels.manager import ChannelManager
    from bingbot.config.loader import load_config
    from bingbot.dispatcher.loop import Dispatcher

    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")

    console.print(f"{__logo__} Starting bingbot gateway...")

    config = load_config()
    bus = MessageBus()
    sessions = _make_sessions(config)
    dispatcher = Dispatcher(bus, sessions, config.dispatcher)
    channels = ChannelManager(config, bus)

    if channels.enabled_channels:
        console.print(f"[green]✓[/green] Channels enabled: {', '.join(channels.enabled_channels)}")
    else:
        console.print("[yellow]Warning: No channels enabled[/yellow]")

    async def run():
        try:
            await asyncio.gather(dispatcher.run(), channels.start_all())
        except (KeyboardInterrupt, asyncio.CancelledError):
            console.print("\nShutting down...")
        finally:
            dispatcher.stop()
            await channels.stop_all()
            busy = [s["key"] for s in sessions.list_sessions() if s["busy"]]
            if busy:
                logger.info(f"Interrupting {len(busy)} in-flight replies: {', '.join(busy)}")
            # 关闭会话会以 SessionReset 结束进行中的交换，再等这些处理任务收尾
            await sessions.close_all()
            await dispatcher.wait_idle()

    asyncio.run(run())


# ============================================================================
# Chat
# ============================================================================


@app.command()
def chat(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to Bing"),
    session_id: str = typer.Option("cli:direct", "--session", "-s", help="Session ID"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render replies as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show bingbot runtime logs during chat"),
):
    """
    在终端里与 Bing 对话。

    - bingbot chat -m "你好"：发送一条消息，打印回答后退出
    - bingbot chat：进入交互模式，/reset 开启新对话，exit 退出
    """
    from loguru import logger

    from bingbot.bus.queue import MessageBus
    from bingbot.config.loader import load_config
    from bingbot.dispatcher.loop import Dispatcher
    from bingbot.dispatcher.render import render_result
    from bingbot.providers.base import ChatMessage
    from bingbot.providers.errors import BingChatError

    config = load_config()
    sessions = _make_sessions(config)
    dispatcher = Dispatcher(MessageBus(), sessions, config.dispatcher)

    if logs:
        logger.enable("bingbot")
    else:
        logger.disable("bingbot")

    async def ask(text: str) -> None:
        status = None if logs else console.status("[dim]Bing is thinking...[/dim]", spinner="dots")

        def on_progress(fragments: list[ChatMessage]) -> None:
            notes = [m.text for m in fragments if m.is_status and m.text]
            if status is not None and notes:
                status.update(f"[dim]{notes[-1]}[/dim]")

        try:
            with status or nullcontext():
                result = await dispatcher.process_direct(text, session_id, on_progress=on_progress)
        except BingChatError as e:
            console.print(f"[red]Error: {e}[/red]")
            return
        _print_reply(render_result(result), render_markdown=markdown)

    if message:
        async def run_once():
            try:
                await ask(message)
            finally:
                await sessions.close_all()

        asyncio.run(run_once())
        return

    _init_prompt_session()
    console.print(
        f"{__logo__} Interactive mode "
        f"(type [bold]{config.dispatcher.reset_command}[/bold] for a new topic, "
        f"[bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n"
    )

    def _exit_on_sigint(signum, frame):
        _restore_terminal()
        console.print("\nGoodbye!")
        os._exit(0)

    signal.signal(signal.SIGINT, _exit_on_sigint)

    async def run_interactive():
        try:
            while True:
                try:
                    _flush_pending_tty_input()
                    command = (await _read_interactive_input_async()).strip()
                except KeyboardInterrupt:
                    break
                if not command:
                    continue
                if command.lower() in EXIT_COMMANDS:
                    break
                if command == config.dispatcher.reset_command:
                    await sessions.reset(session_id)
                    console.print("[green]✓[/green] Session reset\n")
                    continue
                await ask(command)
        finally:
            _restore_terminal()
            console.print("\nGoodbye!")
            await sessions.close_all()

    asyncio.run(run_interactive())


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """显示配置文件与各项设置的状态。"""
    from bingbot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} bingbot Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Bing cookie: {'[green]✓[/green]' if config.bing.cookie else '[dim]not set[/dim]'}")
    console.print(f"Endpoint: {config.bing.ws_url}")
    console.print(f"Locale: {config.bing.locale} / market {config.bing.market} / region {config.bing.region}")

    table = Table(title="Channel Status")
    table.add_column("Channel", style="cyan")
    table.add_column("Enabled", style="green")
    table.add_column("Configuration", style="yellow")

    fs = config.channels.feishu
    table.add_row(
        "Feishu",
        "✓" if fs.enabled else "✗",
        f"app_id: {fs.app_id[:10]}..." if fs.app_id else "[dim]not configured[/dim]",
    )
    console.print(table)


if __name__ == "__main__":
    app()
