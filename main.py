"""
Coding Agent - mode-driven coding assistant for OpenAI-compatible endpoints.
Terminal UI built with Textual + Rich.
"""

import asyncio
import argparse
import logging
import os
import sys
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Header, Footer, Input, Static
from textual.reactive import reactive
from textual import on, work

from rich.console import Console
from rich.text import Text
from rich.markup import escape as rich_escape

from agent import AgentBusyError, AgentEvent, CodingAgent, ModeEngine
from config import app_config, endpoint_config, save_default_model
from llm_service import LLMError, LLMService
from planning_service import PlanError, PlanningService, describe_plan
from plans import PlanStore
from request_log import CommunicationLogger
from tools import ToolRegistry, register_plan_tools

# Configure logging to file so it doesn't interfere with the TUI
logging.basicConfig(
    filename=app_config.log_file,
    level=getattr(logging, app_config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


HELP_TEXT = """Commands:
  /mode <name>   switch mode          /modes   list modes
  /plan <id>     open a plan          /plans   list plans
  /show          show the open plan   /model <name>  switch model
  /clear         reset conversation   /quit    exit
Ctrl+C cancels the running turn (press again to quit)."""


def build_agent(mode: Optional[str] = None, model: Optional[str] = None,
                streaming: Optional[bool] = None) -> CodingAgent:
    """Wire the services together: endpoint, plans, tools, modes, agent."""
    service = LLMService(endpoint_config)
    planner = PlanningService(PlanStore())
    registry = ToolRegistry()
    register_plan_tools(registry, planner)
    modes = ModeEngine.from_config()
    if mode:
        modes.set_mode(mode)
    return CodingAgent(
        service=service,
        tools=registry,
        modes=modes,
        planner=planner,
        comm_log=CommunicationLogger(),
        model=model,
        streaming=streaming,
    )


# ============================================================
# TUI Application
# ============================================================

class CodingAgentApp(App):
    """Coding Agent TUI"""

    TITLE = "Coding Agent"

    CSS = """
    Screen {
        background: #0d1117;
    }

    #output-scroll {
        height: 1fr;
        padding: 1 2;
        scrollbar-size: 1 1;
        scrollbar-color: #30363d;
    }

    #output-scroll > Static {
        width: 100%;
        height: auto;
    }

    #user-input {
        dock: bottom;
        margin: 0 2 1 2;
        border: tall #30363d;
        background: #161b22;
        color: #c9d1d9;
    }

    #user-input:focus {
        border: tall #58a6ff;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #161b22;
        color: #6e7681;
        padding: 0 2;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel_or_quit", "Cancel / Quit", priority=True),
        Binding("ctrl+l", "clear_screen", "Clear"),
    ]

    is_running = reactive(False)

    def __init__(self, agent: CodingAgent, **kwargs):
        super().__init__(**kwargs)
        self._agent = agent
        self._text_widget: Optional[Static] = None
        self._current_text = ""
        self._thinking_widget: Optional[Static] = None
        self._thinking_content = ""
        self._widget_counter = 0

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="output-scroll")
        yield Input(placeholder=" ❯ Ask or describe a task  (/help for commands)", id="user-input")
        yield Footer()

    # ============================================================
    # Output helpers
    # ============================================================

    def _next_id(self, prefix: str = "out") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def _log(self, renderable) -> Static:
        scroll = self.query_one("#output-scroll", VerticalScroll)
        widget = Static(renderable, id=self._next_id())
        scroll.mount(widget)
        scroll.scroll_end(animate=False)
        return widget

    def _update_status(self) -> None:
        plan = self._agent.planner.current_plan if self._agent.planner else None
        parts = [
            f"mode: {self._agent.modes.current_mode}",
            f"model: {self._agent.model}",
            f"plan: {plan.id if plan else '-'}",
        ]
        if self.is_running:
            parts.append("running…")
        self.query_one("#status-bar", Static).update("  ·  ".join(parts))

    def on_mount(self) -> None:
        self._log(Text.from_markup(
            f"\n[bold #58a6ff]coding[/bold #58a6ff][bold #f0f6fc] agent[/bold #f0f6fc]\n"
            f"[#8b949e]{rich_escape(endpoint_config.base_url)}  ·  {rich_escape(self._agent.model)}[/#8b949e]\n"
            f"[#484f58]Type a message to begin  ·  /help for commands  ·  Ctrl+C to cancel[/#484f58]\n"
        ))
        self._update_status()
        self.query_one("#user-input", Input).focus()

    # ============================================================
    # Input
    # ============================================================

    @on(Input.Submitted, "#user-input")
    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        self.query_one("#user-input", Input).value = ""
        if not text:
            return
        if text.startswith("/"):
            await self._handle_command(text)
            return
        if self.is_running:
            self._log(Text("   Agent is busy, Ctrl+C to cancel", style="italic #e3b341"))
            return
        self._run_turn(text)

    async def _handle_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""
        planner = self._agent.planner

        try:
            if cmd == "/help":
                self._log(Text(HELP_TEXT, style="#8b949e"))
            elif cmd == "/quit":
                self.exit()
            elif cmd == "/modes":
                self._log(Text(self._agent.modes.describe(), style="#8b949e"))
            elif cmd == "/mode":
                mode = self._agent.set_mode(arg)
                self._log(Text(f"   ✓ Mode: {mode.name}", style="#3fb950"))
            elif cmd == "/model" and not arg:
                self._log(Text(f"   Model: {self._agent.model}", style="#8b949e"))
            elif cmd == "/model":
                self._agent.set_model(arg)
                save_default_model(arg)
                self._log(Text(f"   ✓ Model: {arg}", style="#3fb950"))
            elif cmd == "/plans":
                lines = [f"{p.id}: {p.name} [{p.creation_step}]" for p in planner.list_plans()]
                self._log(Text("\n".join(lines) or "No plans.", style="#8b949e"))
            elif cmd == "/plan":
                planner.set_current_plan(arg or None)
                self._log(Text(f"   ✓ Plan: {arg or 'closed'}", style="#3fb950"))
            elif cmd == "/show":
                self._log(Text(describe_plan(planner.get_plan()), style="#c9d1d9"))
            elif cmd == "/clear":
                if not self.is_running:
                    self._agent.clear()
                    self._log(Text("   ✓ Conversation reset.", style="#3fb950"))
            else:
                self._log(Text(f"   Unknown command: {cmd}", style="#e3b341"))
        except (KeyError, PlanError) as e:
            self._log(Text(f"   ✗ {e}", style="#f85149"))
        self._update_status()

    @work(thread=False)
    async def _run_turn(self, text: str) -> None:
        self._log(Text(""))
        self._log(Text.from_markup(f"[bold #f0f6fc]❯ [/bold #f0f6fc][#c9d1d9]{rich_escape(text)}[/#c9d1d9]"))
        self.is_running = True
        self._update_status()
        try:
            await self._agent.process_turn(text, on_event=self._handle_agent_event)
        except AgentBusyError as e:
            self._log(Text(f"   {e}", style="italic #e3b341"))
        except Exception as e:
            logger.exception("Agent turn error")
            self._log(Text.from_markup(f"\n   [bold #f85149]✗ {rich_escape(str(e))}[/bold #f85149]"))
        finally:
            self.is_running = False
            self._text_widget = None
            self._thinking_widget = None
            self._update_status()

    async def _handle_agent_event(self, event: AgentEvent) -> None:
        if event.type == "start":
            self._current_text = ""
            self._thinking_content = ""
            self._text_widget = None
            self._thinking_widget = None

        elif event.type == "thinking":
            self._thinking_content += event.content
            if self._thinking_widget is None:
                self._thinking_widget = self._log(Text(""))
            self._thinking_widget.update(Text(self._thinking_content[-2000:], style="italic #8b949e"))

        elif event.type == "content":
            self._current_text += event.content
            if self._text_widget is None:
                self._text_widget = self._log(Text(""))
            self._text_widget.update(Text(self._current_text, style="#c9d1d9"))

        elif event.type == "tool_call":
            args = (event.data or {}).get("arguments", "")
            self._log(Text.from_markup(
                f"   [#d2a8ff]▶ {rich_escape(event.content)}[/#d2a8ff] [#6e7681]{rich_escape(args[:120])}[/#6e7681]"
            ))

        elif event.type == "tool_result":
            ok = (event.data or {}).get("success")
            color = "#3fb950" if ok else "#f85149"
            mark = "✓" if ok else "✗"
            first = event.content.splitlines()[0] if event.content else ""
            self._log(Text.from_markup(f"     [{color}]{mark}[/{color}] [#8b949e]{rich_escape(first[:160])}[/#8b949e]"))
            # A tool result closes the current text block; the follow-up starts fresh
            self._text_widget = None
            self._current_text = ""

        elif event.type == "plan_step":
            data = event.data or {}
            self._log(Text.from_markup(
                f"\n   [bold #79c0ff]─── {rich_escape(event.content)}[/] "
                f"[#6e7681]({rich_escape(str(data.get('mode', '')))})[/#6e7681]"
            ))
            self._update_status()

        elif event.type == "notice":
            self._log(Text(f"   {event.content}", style="#d2a8ff"))

        elif event.type == "error":
            self._log(Text.from_markup(f"   [bold #f85149]✗ {rich_escape(event.content)}[/bold #f85149]"))

    # ============================================================
    # Actions
    # ============================================================

    def action_cancel_or_quit(self) -> None:
        if self.is_running:
            self._agent.abort()
            self._log(Text.from_markup("   [italic #e3b341]cancelling…[/italic #e3b341]"))
        else:
            self.exit()

    def action_clear_screen(self) -> None:
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.remove_children()


# ============================================================
# One-shot mode
# ============================================================

async def run_once(agent: CodingAgent, prompt: str) -> int:
    """Run a single turn, printing the stream to the console."""
    console = Console()

    async def on_event(event: AgentEvent) -> None:
        if event.type == "content":
            console.print(event.content, end="", markup=False, highlight=False)
        elif event.type == "thinking":
            console.print(event.content, end="", style="dim italic", markup=False, highlight=False)
        elif event.type == "end":
            console.print()
        elif event.type == "tool_call":
            console.print(f"▶ {event.content}", style="magenta")
        elif event.type == "tool_result":
            style = "green" if (event.data or {}).get("success") else "red"
            console.print(f"  {event.content.splitlines()[0] if event.content else ''}", style=style, markup=False)
        elif event.type == "plan_step":
            console.rule(f"{event.content} ({(event.data or {}).get('mode', '')})")
        elif event.type in ("notice", "error"):
            console.print(event.content, style="red" if event.type == "error" else "cyan", markup=False)

    try:
        messages = await agent.process_turn(prompt, on_event=on_event)
    finally:
        await agent.service.close()
    return 1 if any(m.role == "error" for m in messages) else 0


async def list_models(agent: CodingAgent) -> int:
    console = Console()
    try:
        for model_id in await agent.list_models():
            console.print(model_id)
    except LLMError as e:
        console.print(f"Error: {e}", style="red", markup=False)
        return 1
    finally:
        await agent.service.close()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Coding Agent - mode-driven assistant for OpenAI-compatible endpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          Start the terminal UI
  python main.py --mode Architect         Start in Architect mode
  python main.py -p "explain plan x"      Run one turn and print the answer
  python main.py --host 10.0.0.5 --port 8000 --model qwen2.5-coder
  python main.py --list-models            List models served by the endpoint
        """,
    )
    parser.add_argument("-p", "--prompt", help="Run a single turn and exit")
    parser.add_argument("--mode", help=f"Initial mode (default: {app_config.default_mode})")
    parser.add_argument("--model", help=f"Model name (default: {endpoint_config.model})")
    parser.add_argument("--host", help="Endpoint host")
    parser.add_argument("--port", type=int, help="Endpoint port")
    parser.add_argument("--plan", help="Open this plan on start")
    parser.add_argument("--no-stream", action="store_true", help="Disable streaming responses")
    parser.add_argument("--list-models", action="store_true", help="List available models and exit")

    args = parser.parse_args()

    if args.host:
        endpoint_config.host = args.host
    if args.port:
        endpoint_config.port = args.port

    try:
        agent = build_agent(
            mode=args.mode,
            model=args.model,
            streaming=False if args.no_stream else None,
        )
        if args.plan:
            agent.planner.set_current_plan(args.plan)
    except (KeyError, PlanError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.list_models:
        sys.exit(asyncio.run(list_models(agent)))
    if args.prompt:
        sys.exit(asyncio.run(run_once(agent, args.prompt)))

    logger.info(f"Starting TUI in {os.getcwd()}")
    CodingAgentApp(agent).run()


if __name__ == "__main__":
    main()
