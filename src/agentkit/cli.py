"""agentkit command line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from agentkit.backends import EchoBackend, OpenAIBackend
from agentkit.compiler import CompilerOptions, compile_prompt
from agentkit.config import Settings, load_settings
from agentkit.errors import AgentKitError, ManifestError
from agentkit.evals import run_golden_tests
from agentkit.executors import RoutingToolExecutor
from agentkit.logging_utils import configure_logging
from agentkit.runtime import AgentResponse, AgentRuntime, MemoryStore, ModelBackend, RunSink
from agentkit.spec import AgentManifest, load_manifest, validate_manifest_integrity
from agentkit.stores import FileMemoryStore, InMemoryMemoryStore, InMemoryRunSink, JsonlRunSink

app = typer.Typer(name="agentkit", help="Run FSM-driven agents from a manifest", add_completion=False)
console = Console()

EXIT_COMMANDS = frozenset({"/exit", "/quit"})


def _load(path: Path) -> AgentManifest:
    try:
        return load_manifest(path)
    except ManifestError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _backend(settings: Settings, *, echo: bool) -> ModelBackend:
    if echo:
        return EchoBackend()
    return OpenAIBackend(
        settings.model,
        api_key=settings.api_key,
        api_base=settings.api_base,
        supports_tool_choice=settings.supports_tool_choice,
    )


def _runtime(
    manifest: AgentManifest,
    settings: Settings,
    *,
    echo: bool,
    memory: MemoryStore | None = None,
    run_sink: RunSink | None = None,
) -> AgentRuntime:
    return AgentRuntime(
        manifest,
        backend=_backend(settings, echo=echo),
        memory=memory or FileMemoryStore(settings.home),
        tools=RoutingToolExecutor(),
        run_sink=run_sink or JsonlRunSink(settings.home),
        options=settings.runtime_options(),
    )


def _print_response(response: AgentResponse) -> None:
    console.print(response.message or "[dim](no answer)[/dim]")
    run = response.run
    console.print(
        f"[dim]state={response.state} terminal={response.is_terminal} status={run.status} "
        f"steps={len(run.steps)} tokens={run.total_tokens} cost={run.total_cost:.6f}[/dim]"
    )


@app.command()
def validate(
    manifest_path: Path = typer.Argument(..., help="Manifest file (YAML or JSON)"),  # noqa: B008
    strict: bool = typer.Option(False, "--strict", help="Also reject malformed condition triggers"),
) -> None:
    """Check a manifest's schema and references."""
    try:
        manifest = load_manifest(manifest_path)
    except ManifestError as exc:
        for problem in exc.errors or [str(exc)]:
            typer.echo(f"- {problem}", err=True)
        raise typer.Exit(code=1) from exc

    problems = validate_manifest_integrity(manifest, strict_conditions=strict)
    if problems:
        for problem in problems:
            typer.echo(f"- {problem}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"ok: {manifest.metadata.slug} ({len(manifest.fsm.states)} states, {len(manifest.tools.tools)} tools)")


@app.command("compile")
def compile_command(
    manifest_path: Path = typer.Argument(..., help="Manifest file (YAML or JSON)"),  # noqa: B008
    state: str | None = typer.Option(None, "--state", "-s", help="State id, defaults to the initial state"),
    no_examples: bool = typer.Option(False, "--no-examples", help="Omit example prompt blocks"),
    max_desc: int = typer.Option(500, "--max-desc", help="Maximum tool description length"),
) -> None:
    """Print the compiled prompt of one state."""
    manifest = _load(manifest_path)
    state_id = state or manifest.fsm.initial_state
    try:
        compiled = compile_prompt(
            manifest,
            state_id,
            CompilerOptions(include_examples=not no_examples, max_tool_description_length=max_desc),
        )
    except AgentKitError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(compiled.system)
    typer.echo("")
    typer.echo(f"tool_choice: {compiled.tool_choice}")
    typer.echo(f"tools: {', '.join(compiled.allowed_tool_names)}")


@app.command()
def run(
    manifest_path: Path = typer.Argument(..., help="Manifest file (YAML or JSON)"),  # noqa: B008
    message: str = typer.Argument(..., help="User message"),
    session: str = typer.Option("local", "--session", help="Session id"),
    echo: bool = typer.Option(False, "--echo", help="Use the offline echo backend"),
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
) -> None:
    """Send one message to the agent."""
    configure_logging()
    manifest = _load(manifest_path)
    runtime = _runtime(manifest, load_settings(home), echo=echo)
    try:
        response = asyncio.run(runtime.process_message(session, message))
    except AgentKitError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    _print_response(response)


@app.command()
def chat(
    manifest_path: Path = typer.Argument(..., help="Manifest file (YAML or JSON)"),  # noqa: B008
    session: str = typer.Option("local", "--session", help="Session id"),
    echo: bool = typer.Option(False, "--echo", help="Use the offline echo backend"),
    home: Path | None = typer.Option(None, "--home", help="State directory"),  # noqa: B008
) -> None:
    """Talk to the agent interactively. Type /exit to leave."""
    configure_logging(profile="chat")
    manifest = _load(manifest_path)
    runtime = _runtime(manifest, load_settings(home), echo=echo)
    console.print(f"[bold]{manifest.metadata.name}[/bold] session={session}")
    asyncio.run(_chat_loop(runtime, session))


async def _chat_loop(runtime: AgentRuntime, session: str) -> None:
    while True:
        try:
            text = (await asyncio.to_thread(console.input, "[bold cyan]you[/bold cyan] > ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not text:
            continue
        if text in EXIT_COMMANDS:
            break
        try:
            response = await runtime.process_message(session, text)
        except AgentKitError as exc:
            console.print(f"[red]error:[/red] {exc}")
            continue
        _print_response(response)
        if response.is_terminal:
            console.print("[dim]conversation reached a terminal state[/dim]")


@app.command("eval")
def eval_command(
    manifest_path: Path = typer.Argument(..., help="Manifest file (YAML or JSON)"),  # noqa: B008
    echo: bool = typer.Option(False, "--echo", help="Use the offline echo backend"),
    tag: list[str] = typer.Option([], "--tag", help="Only run golden tests carrying this tag"),  # noqa: B008
) -> None:
    """Replay the manifest's golden tests."""
    configure_logging()
    manifest = _load(manifest_path)
    settings = load_settings()

    def factory() -> AgentRuntime:
        return _runtime(manifest, settings, echo=echo, memory=InMemoryMemoryStore(), run_sink=InMemoryRunSink())

    report = asyncio.run(run_golden_tests(manifest, factory, tags=frozenset(tag) or None))

    table = Table("test", "result", "detail")
    for result in report.results:
        details = [item.detail for item in result.asserts if item.outcome == "failed"]
        if result.error:
            details.append(result.error)
        table.add_row(result.test_id, "pass" if result.passed else "FAIL", "; ".join(details))
    console.print(table)
    console.print(f"{report.passed}/{report.total} passed ({report.pass_rate:.1f}%)")
    if not report.meets_threshold(manifest.evals.coverage_threshold):
        raise typer.Exit(code=1)

