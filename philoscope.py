#!/usr/bin/env python3
"""
Philoscope - LLM-driven analysis of philosophical manuscripts

Usage:
    python philoscope.py process <files...>                 # Deep domain analysis of manuscripts
    python philoscope.py load-report <files...>             # Register existing markdown reports
    python philoscope.py comprehensive <file> [keywords...] # Three-round keyword analysis
    python philoscope.py compare <reportA> <reportB>        # Juxtapose two analysed items
    python philoscope.py chat <code>                        # Talk to a persona (/quit to leave)
    python philoscope.py observe <codeA> <codeB> <topic...> # Watch two personas talk
    python philoscope.py index [search]                     # Browse the philosophy index

Press Ctrl+C to stop the running operation.
"""

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

# Force UTF-8 encoding on Windows
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from analysis import (
    ComprehensiveAnalysisPipeline,
    ManuscriptError,
    ManuscriptProcessor,
    ManuscriptQueue,
    PhilosophyIndex,
    ResultStatus,
    ResultStore,
    UnknownItemError,
    extract_keywords,
    generate_comparison_report,
    parse_report_header,
    read_manuscript,
)
from llm import (
    CancellationController,
    ChatCompletionClient,
    LLMError,
    OperationKind,
    describe_error,
)
from persona import PersonaChat
from shared.config import Settings, load_config, load_env_file
from shared.logging import configure_logging, get_logger, timestamped

console = Console(force_terminal=True, legacy_windows=False)
log = get_logger("cli", "philoscope")

controller = CancellationController()


def load_settings() -> Settings:
    load_env_file()
    config = load_config()
    logging_config = config.get("logging", {}) or {}
    configure_logging(
        level=logging_config.get("level", "INFO"),
        console=bool(logging_config.get("console", False)),
    )
    return Settings.from_config(config)


def make_client(settings: Settings) -> ChatCompletionClient:
    settings.require_credentials()
    return ChatCompletionClient(
        settings.llm.api_key,
        model=settings.llm.model,
        endpoint=settings.llm.endpoint,
        timeout_seconds=settings.llm.timeout_seconds,
    )


def results_path(settings: Settings) -> Path:
    return settings.output_dir / "results.json"


def progress(message: str) -> None:
    console.print(message, markup=False, highlight=False)


def install_stop_handler() -> None:
    """Route Ctrl+C to the controller instead of killing the loop."""
    loop = asyncio.get_running_loop()

    def stop():
        if controller.active(OperationKind.GENERATION) or controller.active(OperationKind.CONVERSATION):
            console.print("\n[yellow]Stopping...[/yellow]")
            controller.cancel_all()
        else:
            console.print("\n[dim]Nothing running. Use /quit to leave a chat.[/dim]")

    try:
        loop.add_signal_handler(signal.SIGINT, stop)
    except (NotImplementedError, RuntimeError):
        # Windows event loops: Ctrl+C falls back to KeyboardInterrupt
        pass


def run(coro) -> None:
    """Run a command coroutine and report errors the same way everywhere."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    except (LLMError, ManuscriptError, UnknownItemError) as e:
        log.error("cli.command_failed", error=str(e), error_type=type(e).__name__)
        style = "yellow" if describe_error(e) == "Stopped by user" else "red"
        console.print(f"\n[{style}]{describe_error(e)}[/{style}]")
        if style == "red":
            sys.exit(1)


def print_results(results) -> None:
    table = Table(title="Results")
    table.add_column("File")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Error")
    for result in results:
        ok = result.status == ResultStatus.SUCCESS
        table.add_row(
            result.file_name,
            result.code,
            result.name,
            "[green]success[/green]" if ok else "[red]error[/red]",
            result.error or "",
        )
    console.print(table)


def cmd_process(args: list[str]):
    """Deep domain analysis of manuscript files."""
    if not args:
        console.print("[red]Usage: philoscope.py process <files...>[/red]")
        return
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)

    queue = ManuscriptQueue()
    for arg in args:
        try:
            queue.add(read_manuscript(Path(arg)))
        except ManuscriptError as e:
            console.print(f"[red]{e}[/red]")
    if not len(queue):
        return

    async def process():
        install_stop_handler()
        store = ResultStore.load(results_path(settings))
        async with make_client(settings) as client:
            processor = ManuscriptProcessor(
                client, index, settings, store=store, on_log=timestamped(progress),
            )
            try:
                async with controller.operation(OperationKind.GENERATION) as token:
                    results = await processor.process(list(queue), token=token)
            finally:
                # Results stored before a stop are kept
                store.save(results_path(settings))

        settings.output_dir.mkdir(parents=True, exist_ok=True)
        for result in results:
            if result.report:
                report_path = settings.output_dir / f"{Path(result.file_name).stem}.md"
                report_path.write_text(result.report, encoding="utf-8")
        print_results(results)

    run(process())


def cmd_load_report(args: list[str]):
    """Register existing markdown reports."""
    if not args:
        console.print("[red]Usage: philoscope.py load-report <files...>[/red]")
        return
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)
    store = ResultStore.load(results_path(settings))
    processor = ManuscriptProcessor(None, index, settings, store=store, on_log=timestamped(progress))

    for arg in args:
        path = Path(arg)
        try:
            processor.load_report(path.name, path.read_text(encoding="utf-8"))
        except (OSError, ManuscriptError) as e:
            console.print(f"[red]{e}[/red]")

    store.save(results_path(settings))
    print_results(store)


def cmd_comprehensive(args: list[str]):
    """Three-round keyword analysis of one manuscript."""
    if not args:
        console.print("[red]Usage: philoscope.py comprehensive <file> [keywords...][/red]")
        return
    settings = load_settings()
    manuscript = read_manuscript(Path(args[0]))
    title = Path(manuscript.name).stem
    keywords = args[1:] or extract_keywords(title)
    console.print(f"[bold]Keywords:[/bold] {', '.join(keywords) or '(none)'}")

    async def analyze():
        install_stop_handler()
        async with make_client(settings) as client:
            pipeline = ComprehensiveAnalysisPipeline(
                client,
                concurrency_limit=settings.concurrency_limit,
                prompts=settings.prompts,
                sampling=settings.sampling,
                on_log=timestamped(progress),
            )
            async with controller.operation(OperationKind.GENERATION) as token:
                result = await pipeline.analyze(title, manuscript.content, keywords, token=token)

        out_dir = settings.output_dir / "comprehensive"
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"{title}.json"
        out_path.write_text(json.dumps(result.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")

        console.print(Panel(result.summary, title="Document summary"))
        for keyword in result.keywords:
            keyword_result = result.results[keyword]
            console.print(
                f"  • {keyword}: {len(keyword_result.primary)} primary, "
                f"{len(keyword_result.secondary)} secondary"
            )
        console.print(f"\n[green]✓ Saved to {out_path}[/green]")

    run(analyze())


def cmd_compare(args: list[str]):
    """Juxtapose two analysed items from their reports."""
    if len(args) != 2:
        console.print("[red]Usage: philoscope.py compare <reportA> <reportB>[/red]")
        return
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)

    sides = []
    for arg in args:
        content = Path(arg).read_text(encoding="utf-8")
        header = parse_report_header(content)
        if header is None:
            console.print(f"[red]{arg}: not an analysis report[/red]")
            return
        sides.append((index.require(header[0]), content))
    if sides[0][0].code == sides[1][0].code:
        console.print("[red]Select two different items to compare[/red]")
        return

    async def compare():
        install_stop_handler()
        (item_a, report_a), (item_b, report_b) = sides
        async with make_client(settings) as client:
            async with controller.operation(OperationKind.GENERATION) as token:
                report = await generate_comparison_report(
                    client, item_a, report_a, item_b, report_b,
                    settings.prompts, settings.sampling_for("comparison"), token=token,
                )
        out_path = settings.output_dir / f"compare_{item_a.code}_vs_{item_b.code}.md"
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(report, encoding="utf-8")
        console.print(report, markup=False)
        console.print(f"\n[green]✓ Saved to {out_path}[/green]")

    run(compare())


def _analysis_for(store: ResultStore, code: str):
    for result in store:
        if result.code == code and result.analysis is not None:
            return result.analysis
    return None


def cmd_chat(args: list[str]):
    """Interactive conversation with one persona."""
    if len(args) != 1:
        console.print("[red]Usage: philoscope.py chat <code>[/red]")
        return
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)
    store = ResultStore.load(results_path(settings))
    item = index.require(args[0])

    async def session():
        install_stop_handler()
        loop = asyncio.get_running_loop()
        async with make_client(settings) as client:
            chat = PersonaChat.from_settings(client, settings, controller=controller)
            chat.load_persona("A", item, _analysis_for(store, item.code), settings.prompts)
            console.print(Panel(f"[bold][{item.code}] {item.name}[/bold]\n{item.representative}"))

            while True:
                try:
                    message = await loop.run_in_executor(None, input, "you> ")
                except EOFError:
                    break
                if message.strip() in ("/quit", "/exit"):
                    break
                if not message.strip():
                    continue
                try:
                    result = await chat.send("A", message)
                except LLMError as e:
                    style = "yellow" if describe_error(e) == "Stopped by user" else "red"
                    console.print(f"[{style}]{describe_error(e)}[/{style}]")
                    continue
                console.print(f"[bold cyan]{item.name}>[/bold cyan] {result.reply}\n")

    run(session())


def cmd_observe(args: list[str]):
    """Two personas talk about a topic."""
    if len(args) < 3:
        console.print("[red]Usage: philoscope.py observe <codeA> <codeB> <topic...>[/red]")
        return
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)
    store = ResultStore.load(results_path(settings))
    item_a, item_b = index.require(args[0]), index.require(args[1])
    topic = " ".join(args[2:])

    def show(entry):
        style = "cyan" if entry.slot == "A" else "magenta"
        console.print(f"[bold {style}][{entry.code}] {entry.speaker}>[/bold {style}] {entry.message}\n")

    async def observe():
        install_stop_handler()
        async with make_client(settings) as client:
            chat = PersonaChat.from_settings(client, settings, controller=controller)
            chat.load_persona("A", item_a, _analysis_for(store, item_a.code), settings.prompts)
            chat.load_persona("B", item_b, _analysis_for(store, item_b.code), settings.prompts)
            console.print(Panel(f"[bold]Topic:[/bold] {topic}"))
            transcript = await chat.observe(topic, on_turn=show)
        console.print(f"[dim]{len(transcript)} turn(s).[/dim]")

    run(observe())


def cmd_index(args: list[str]):
    """List or search the philosophy index."""
    settings = load_settings()
    index = PhilosophyIndex.load(settings.index_path)
    items = index.search(" ".join(args)) if args else index.items

    table = Table(title=f"Philosophy index ({len(items)} of {len(index)})")
    table.add_column("Code")
    table.add_column("Name")
    table.add_column("Ontology")
    table.add_column("Representative")
    for item in items:
        table.add_row(item.code, item.name, item.ontology, item.representative)
    console.print(table)

    stats = index.stats()
    console.print(Panel(
        f"[bold]Total:[/bold] {stats['total']}  [bold]Special:[/bold] {stats['special']}\n"
        f"[bold]By part:[/bold] {stats['by_part']}\n"
        f"[bold]By depth:[/bold] {stats['by_depth']}"
    ))


def cmd_help(args: list[str] = None):
    """Show help."""
    console.print(__doc__)


COMMANDS = {
    "process": cmd_process,
    "load-report": cmd_load_report,
    "comprehensive": cmd_comprehensive,
    "compare": cmd_compare,
    "chat": cmd_chat,
    "observe": cmd_observe,
    "index": cmd_index,
    "help": cmd_help,
    "--help": cmd_help,
    "-h": cmd_help,
}


def main():
    if len(sys.argv) < 2:
        cmd_help()
        return

    cmd = sys.argv[1].lower()

    if cmd in COMMANDS:
        try:
            COMMANDS[cmd](sys.argv[2:])
        except (LLMError, ManuscriptError, UnknownItemError) as e:
            console.print(f"[red]{describe_error(e)}[/red]")
            sys.exit(1)
    else:
        console.print(f"[red]Unknown command: {cmd}[/red]")
        cmd_help()


if __name__ == "__main__":
    main()
