"""
RAG Assistant CLI - Command-line interface for the local RAG assistant.

This module provides the command-line front end: one-shot questions,
an interactive chat loop, knowledge base management, statistics and the
Ollama model administration commands.

Commands:
    (none)            Ask with --query, chat with --interactive, or show help
    add               Add a document to the knowledge base
    search            Search the knowledge base
    stats             Show assistant and performance statistics
    history           Show the recent chat history
    clear-history     Clear the chat history
    seed              Load the built-in facts into an empty knowledge base
    health            Check the Ollama server and the local files
    config            Show the effective configuration
    models ...        List, switch, pull, delete, copy and inspect models
    prompts ...       Show, edit or reset the prompt templates
    version           Display version information

Examples:
    python rag_cli.py --query "What is RAG?"
    python rag_cli.py --interactive --speech
    python rag_cli.py add "Ollama listens on port 11434" --source notes
    python rag_cli.py models switch llama3.2
    python rag_cli.py prompts set system "Answer in one short paragraph."
"""

import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from . import __version__
from .assistant import Assistant, create_assistant
from .config import AssistantConfig
from .exceptions import ConfigurationError, InvalidVectorDimensionError, ProviderUnavailableError
from .logging_setup import configure_logging
from .models import Role, SearchResult
from .prompts import TEMPLATE_NAMES

logger = logging.getLogger(__name__)
console = Console()


class CLIContext:
    """
    Shared CLI state: configuration, the lazily created assistant, and the
    errors and warnings collected while a command runs.
    """

    def __init__(self):
        self.start_time = time.time()
        self.config: Optional[AssistantConfig] = None
        self.assistant: Optional[Assistant] = None
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def load_configuration(self, env_file: Optional[str] = None) -> AssistantConfig:
        if self.config is None:
            self.config = AssistantConfig.from_env(env_file)
        return self.config

    def get_assistant(self) -> Assistant:
        if self.assistant is None:
            with console.status("Loading knowledge base and chat history..."):
                self.assistant = create_assistant(self.load_configuration())
        return self.assistant

    def close(self) -> None:
        if self.assistant is not None:
            self.assistant.close()
            self.assistant = None

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        logger.error(error)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)
        logger.warning(warning)

    def get_elapsed_time(self) -> float:
        return time.time() - self.start_time

    def display_summary(self) -> None:
        """Display operation summary with errors and warnings."""
        if self.errors:
            console.print(f"\nErrors encountered ({len(self.errors)}):", style="red")
            for error in self.errors:
                console.print(f"  - {error}", style="red", markup=False)

        if self.warnings:
            console.print(f"\nWarnings ({len(self.warnings)}):", style="yellow")
            for warning in self.warnings:
                console.print(f"  - {warning}", style="yellow", markup=False)

        console.print(f"\nOperation completed in {self.get_elapsed_time():.2f} seconds", style="dim")


# Global CLI context
cli_context = CLIContext()


def _print_token(token: str) -> None:
    console.print(token, end="", style="green", markup=False, highlight=False)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="RAG Assistant CLI")
@click.option('--query', '-q',
              help='Question to ask the assistant')
@click.option('--interactive', '-i',
              is_flag=True,
              help='Start interactive chat mode')
@click.option('--speech/--no-speech',
              default=None,
              help='Narrate answers through the text-to-speech command')
@click.option('--env-file',
              type=click.Path(dir_okay=False),
              help='Read configuration from this .env file')
@click.option('--verbose', '-v',
              is_flag=True,
              help='Enable verbose logging output')
@click.pass_context
def cli(ctx, query, interactive, speech, env_file, verbose):
    """
    RAG Assistant CLI - Local Retrieval-Augmented Generation Assistant

    Ask questions answered by an Ollama model grounded in your own knowledge
    base. The knowledge base and the conversation are kept in binary files
    next to the working directory and survive restarts.

    Examples:
        # Basic query
        python rag_cli.py --query "What is RAG?"

        # Interactive mode with narration
        python rag_cli.py --interactive --speech

        # Add knowledge
        python rag_cli.py add "Ollama listens on port 11434" --source notes
    """
    try:
        config = cli_context.load_configuration(env_file)
    except ConfigurationError as e:
        console.print(f"Configuration error: {e}", style="red", markup=False)
        sys.exit(2)

    configure_logging("rag_cli", config.log_dir, verbose)
    if verbose:
        logger.debug("Verbose logging enabled")
    if speech is not None:
        config.speech_enabled = speech

    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.call_on_close(cli_context.close)

    if ctx.invoked_subcommand is None:
        if query:
            _execute_query(query)
        elif interactive:
            _run_interactive_mode()
        else:
            console.print(ctx.get_help(), markup=False)
            _display_quick_help()


def _execute_query(query: str) -> None:
    """Answer a single question, streaming tokens to the console."""
    try:
        assistant = cli_context.get_assistant()
        console.print(f"Model: {assistant.get_current_model()}", style="dim", markup=False)
        console.print("-" * 60, style="dim")
        response = assistant.ask(query, on_token=_print_token)
        console.print()
        console.print("-" * 60, style="dim")
        _display_response_metadata(response)
    except ValueError as e:
        console.print(f"Invalid question: {e}", style="red")
        sys.exit(1)
    except InvalidVectorDimensionError as e:
        console.print(f"Embedding model mismatch: {e}", style="red")
        console.print("Switch back to the embedding model the knowledge base was built with.",
                      style="yellow")
        cli_context.add_error(str(e))
        sys.exit(1)


def _display_response_metadata(response) -> None:
    if response.sources:
        sources = ", ".join(f"{s['source']} ({s['similarity']:.3f})" for s in response.sources)
        console.print(f"Sources: {sources}", style="dim", markup=False)
    else:
        console.print("No relevant knowledge found; answered from model knowledge", style="dim")
    if response.cancelled:
        console.print("Generation timed out; the answer is partial", style="yellow")
    console.print(f"Completed in {response.metadata.get('elapsed_seconds', 0):.2f}s", style="dim")


def _run_interactive_mode() -> None:
    """Run the interactive chat loop."""
    assistant = cli_context.get_assistant()

    console.print("RAG Assistant - Interactive Mode", style="bold blue")
    console.print(f"Documents: {assistant.knowledge_store.get_document_count()} | "
                  f"Model: {assistant.get_current_model()} | "
                  f"Speech: {'on' if assistant.is_speech_enabled() else 'off'}", style="dim", markup=False)
    console.print("Type 'help' for commands, 'quit' to exit", style="dim")
    console.print("=" * 60, style="dim")

    query_count = 0
    while True:
        try:
            query = Prompt.ask("\nYou").strip()
            command = query.lower()

            if command in ['quit', 'exit', 'q']:
                console.print("Goodbye!", style="green")
                break
            elif command == 'help':
                _display_interactive_help()
                continue
            elif command == 'stats':
                _display_statistics(assistant)
                continue
            elif command == 'config':
                _display_current_config(assistant.config)
                continue
            elif command == 'speech':
                assistant.set_speech_enabled(not assistant.is_speech_enabled())
                console.print(f"Speech {'enabled' if assistant.is_speech_enabled() else 'disabled'}",
                              style="cyan")
                continue
            elif command == 'clear':
                assistant.clear_chat_history()
                console.print("Chat history cleared", style="cyan")
                continue
            elif command == 'add':
                content = Prompt.ask("Content")
                source = Prompt.ask("Source", default="user input")
                document = assistant.add_knowledge(content, source)
                console.print(f"Added document {document.id}", style="green")
                continue
            elif command.startswith('search '):
                _display_search_results(assistant.search_knowledge(query[7:].strip(), 3))
                continue
            elif not query:
                continue

            query_count += 1
            console.print("\nAssistant: ", style="bold cyan", end="")
            response = assistant.ask(query, on_token=_print_token)
            console.print()
            _display_response_metadata(response)

        except KeyboardInterrupt:
            console.print("\nGoodbye!", style="green")
            break
        except (ValueError, InvalidVectorDimensionError, ProviderUnavailableError) as e:
            console.print(f"\nError: {e}", style="red", markup=False)
            cli_context.add_error(str(e))
            if not Confirm.ask("Continue with interactive mode?", default=True):
                break

    console.print(f"\nSession completed - {query_count} questions answered", style="blue")


def _display_statistics(assistant: Assistant) -> None:
    stats = assistant.get_statistics()

    table = Table(title="Assistant Statistics", show_header=True, header_style="bold blue")
    table.add_column("Component", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Documents", str(stats["total_documents"]))
    table.add_row("Memory Usage (estimate)", stats["memory_usage"])
    table.add_row("Chat Messages", str(stats["chat_history_size"]))
    table.add_row("Answer Model", stats["llm_model"])
    table.add_row("Embedding Model", stats["embedding_model"])
    table.add_row("Speech", "on" if stats["speech_enabled"] else "off")
    console.print(table)
    console.print(assistant.performance_monitor.display_performance_table())


def _display_search_results(results: List[SearchResult]) -> None:
    if not results:
        console.print("No matching documents", style="yellow")
        return

    table = Table(title="Search Results", show_header=True, header_style="bold blue")
    table.add_column("#", style="dim")
    table.add_column("Similarity", style="green")
    table.add_column("Source", style="cyan")
    table.add_column("Content")
    for rank, result in enumerate(results, 1):
        content = result.document.content
        if len(content) > 200:
            content = content[:200] + "..."
        table.add_row(str(rank), f"{result.similarity:.3f}", result.document.source, content)
    console.print(table)


def _display_current_config(config: AssistantConfig) -> None:
    table = Table(title="Current Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="green")

    for key, value in config.as_dict().items():
        table.add_row(str(key).replace('_', ' ').title(), str(value))

    console.print(table)


def _display_interactive_help() -> None:
    help_panel = Panel(
        """[bold cyan]Interactive Mode Commands[/bold cyan]

        [yellow]Special Commands:[/yellow]
        help            - Show this help message
        stats           - Display assistant statistics
        config          - Show current configuration
        add             - Add a document to the knowledge base
        search <text>   - Search the knowledge base
        speech          - Toggle narration
        clear           - Clear the chat history
        quit            - Exit interactive mode

        [yellow]Tips:[/yellow]
        - Earlier questions and answers are part of every prompt
        - Press Ctrl+C to exit at any time
                """,
        title="Help",
        border_style="blue"
    )
    console.print(help_panel)


def _display_quick_help() -> None:
    help_panel = Panel(
        """[bold cyan]Local RAG Assistant[/bold cyan]

        [yellow]Quick Start:[/yellow]
        python rag_cli.py seed                          # Load starter facts
        python rag_cli.py add "Some fact" --source me   # Add knowledge
        python rag_cli.py --query "What is RAG?"        # Ask question

        [yellow]Available Commands:[/yellow]
        add, search, stats, history, clear-history, seed,
        health, config, models, prompts, version

        [yellow]Options:[/yellow]
        --interactive   - Start interactive mode
        --speech        - Narrate answers
        --verbose       - Enable detailed logging
                """,
        title="Quick Help",
        border_style="green"
    )
    console.print(help_panel)


@cli.command()
@click.argument('content', required=False)
@click.option('--file', 'file_path',
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Read the document content from a text file')
@click.option('--source',
              default=None,
              help='Provenance label stored with the document')
def add(content, file_path, source):
    """Add a document to the knowledge base."""
    if file_path is not None:
        content = file_path.read_text(encoding="utf-8")
        source = source or file_path.name
    if not content or not content.strip():
        raise click.UsageError("Provide document content or --file")

    assistant = cli_context.get_assistant()
    document = assistant.add_knowledge(content, source or "user input")
    console.print(f"Added document {document.id} from '{document.source}'", style="green", markup=False)
    console.print(f"Documents in knowledge base: {assistant.knowledge_store.get_document_count()}",
                  style="dim")


@cli.command()
@click.argument('query')
@click.option('--top-k', '-k',
              default=3,
              type=click.IntRange(1, 50),
              help='Number of results to show')
def search(query, top_k):
    """Search the knowledge base."""
    assistant = cli_context.get_assistant()
    try:
        results = assistant.search_knowledge(query, top_k)
    except InvalidVectorDimensionError as e:
        console.print(f"Embedding model mismatch: {e}", style="red")
        sys.exit(1)
    _display_search_results(results)


@cli.command()
def stats():
    """Show assistant and performance statistics."""
    _display_statistics(cli_context.get_assistant())


@cli.command()
@click.option('--last', '-n',
              default=10,
              type=click.IntRange(1, 50),
              help='Number of recent messages to show')
def history(last):
    """Show the recent chat history."""
    messages = [m for m in cli_context.get_assistant().get_chat_history() if m.role is not Role.SYSTEM]
    if not messages:
        console.print("Chat history is empty", style="yellow")
        return
    for message in messages[-last:]:
        style = "cyan" if message.role is Role.USER else "green"
        console.print(f"{message.role.name.title()}: ", style=f"bold {style}", end="")
        console.print(message.content, style=style, markup=False, highlight=False)


@cli.command(name='clear-history')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def clear_history(yes):
    """Clear the chat history (the system message is kept)."""
    if not yes and not Confirm.ask("Clear the chat history?", default=False):
        console.print("Cancelled", style="yellow")
        return
    cli_context.get_assistant().clear_chat_history()
    console.print("Chat history cleared", style="green")


@cli.command()
def seed():
    """Load the built-in facts into an empty knowledge base."""
    assistant = cli_context.get_assistant()
    added = assistant.load_initial_knowledge()
    if added:
        console.print(f"Loaded {added} initial facts", style="green")
    else:
        console.print("Knowledge base is not empty; nothing seeded", style="yellow")


@cli.command()
def health():
    """Check the Ollama server and the local files."""
    assistant = cli_context.get_assistant()
    status = assistant.health_check()

    table = Table(title="Health Check", show_header=True, header_style="bold blue")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="dim")
    table.add_row("Ollama server",
                  "[green]OK[/green]" if status["ollama_reachable"] else "[red]UNREACHABLE[/red]",
                  assistant.config.ollama_host)
    table.add_row("Knowledge base", "[green]OK[/green]",
                  f"{status['documents']} documents in {status['knowledge_base']}")
    table.add_row("Narration",
                  "[green]OK[/green]" if status["narrator_available"] else "[yellow]UNAVAILABLE[/yellow]",
                  assistant.config.tts_command)
    console.print(table)

    if not status["ollama_reachable"]:
        cli_context.add_warning("Ollama is not reachable; answers will be apologies")
        sys.exit(1)


@cli.command(name='config')
def show_config():
    """Show the effective configuration."""
    _display_current_config(cli_context.load_configuration())


@cli.command()
def version():
    """Display version information."""
    version_table = Table(show_header=False, box=None)
    version_table.add_column("Component", style="cyan")
    version_table.add_column("Version", style="green")

    version_table.add_row("RAG Assistant", __version__)
    version_table.add_row("Python", sys.version.split()[0])
    for module_name in ("requests", "numpy", "click", "rich", "psutil"):
        try:
            module = __import__(module_name)
            version_table.add_row(module_name, getattr(module, "__version__", "unknown"))
        except ImportError:
            version_table.add_row(module_name, "Not installed")

    console.print("RAG Assistant Version Information", style="bold blue")
    console.print(version_table)


@cli.group()
def models():
    """Manage Ollama models."""


def _run_model_operation(description: str, operation) -> Any:
    try:
        return operation()
    except ProviderUnavailableError as e:
        console.print(f"{description} failed: {e}", style="red", markup=False)
        sys.exit(1)


@models.command(name='list')
def list_models():
    """List the models installed on the Ollama server."""
    assistant = cli_context.get_assistant()
    names = _run_model_operation("Listing models", assistant.get_available_models)
    current = assistant.get_current_model()

    table = Table(title="Installed Models", show_header=True, header_style="bold blue")
    table.add_column("Model", style="cyan")
    table.add_column("Active", style="green")
    for name in names:
        table.add_row(name, "*" if name == current else "")
    console.print(table)


@models.command(name='embedding')
def list_embedding_models():
    """List models that can produce embeddings."""
    assistant = cli_context.get_assistant()
    for name in assistant.get_available_embedding_models():
        marker = " (active)" if name == assistant.get_embedding_model() else ""
        console.print(f"  - {name}{marker}", markup=False)


@models.command(name='switch')
@click.argument('model_name')
def switch_model(model_name):
    """Use MODEL_NAME for answers."""
    assistant = cli_context.get_assistant()
    if assistant.switch_model(model_name):
        console.print(f"Answer model switched to {model_name}", style="green", markup=False)
    else:
        console.print(f"Model {model_name} is not installed", style="red", markup=False)
        sys.exit(1)


@models.command(name='switch-embedding')
@click.argument('model_name')
def switch_embedding_model(model_name):
    """Use MODEL_NAME for embeddings."""
    assistant = cli_context.get_assistant()
    if assistant.switch_embedding_model(model_name):
        console.print(f"Embedding model switched to {model_name}", style="green", markup=False)
        console.print("Documents embedded with another model will no longer be comparable",
                      style="yellow")
    else:
        console.print(f"Model {model_name} does not support embeddings or is unavailable",
                      style="red", markup=False)
        sys.exit(1)


@models.command(name='pull')
@click.argument('model_name')
def pull_model(model_name):
    """Download MODEL_NAME to the Ollama server."""
    assistant = cli_context.get_assistant()
    with console.status(f"Pulling {model_name}..."):
        ok = _run_model_operation("Pull", lambda: assistant.pull_model(model_name))
    console.print(f"Pulled {model_name}" if ok else f"Pull of {model_name} did not complete",
                  style="green" if ok else "red", markup=False)


@models.command(name='delete')
@click.argument('model_name')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def delete_model(model_name, yes):
    """Delete MODEL_NAME from the Ollama server."""
    if not yes and not Confirm.ask(f"Delete model {model_name}?", default=False):
        console.print("Cancelled", style="yellow")
        return
    assistant = cli_context.get_assistant()
    _run_model_operation("Delete", lambda: assistant.delete_model(model_name))
    console.print(f"Deleted {model_name}", style="green", markup=False)


@models.command(name='copy')
@click.argument('source_model')
@click.argument('target_model')
def copy_model(source_model, target_model):
    """Copy SOURCE_MODEL to TARGET_MODEL."""
    assistant = cli_context.get_assistant()
    _run_model_operation("Copy", lambda: assistant.copy_model(source_model, target_model))
    console.print(f"Copied {source_model} -> {target_model}", style="green", markup=False)


@models.command(name='info')
@click.argument('model_name')
def model_info(model_name):
    """Show details of MODEL_NAME."""
    assistant = cli_context.get_assistant()
    info: Dict[str, Any] = _run_model_operation("Info", lambda: assistant.get_model_info(model_name))

    table = Table(title=f"Model {model_name}", show_header=True, header_style="bold blue")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    details = info.get("details", {}) or {}
    for key in ("family", "parameter_size", "quantization_level", "format"):
        if key in details:
            table.add_row(key.replace('_', ' ').title(), str(details[key]))
    if "modified_at" in info:
        table.add_row("Modified", str(info["modified_at"]))
    console.print(table)


@cli.group()
def prompts():
    """Show, edit or reset the prompt templates."""


@prompts.command(name='show')
def show_prompts():
    """Print the active prompt templates."""
    store = cli_context.get_assistant().prompt_store
    templates = store.load()
    console.print(store.file_info(), style="dim", markup=False)
    console.print(Panel(Text(templates.system_prompt), title="System Prompt", border_style="blue"))
    console.print(Panel(Text(templates.rag_template), title="RAG Template", border_style="blue"))
    console.print(Panel(Text(templates.fallback_template), title="Fallback Template", border_style="blue"))


@prompts.command(name='set')
@click.argument('name', type=click.Choice(sorted(TEMPLATE_NAMES)))
@click.argument('text', required=False)
@click.option('--file', 'file_path',
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Read the template from a text file')
def set_prompt(name, text, file_path):
    """Replace the system, rag or fallback template."""
    if file_path is not None:
        text = file_path.read_text(encoding="utf-8")
    if not text or not text.strip():
        raise click.UsageError("Provide the template text or --file")

    try:
        cli_context.get_assistant().update_prompt(name, text)
    except ValueError as e:
        console.print(f"Invalid prompt: {e}", style="red", markup=False)
        sys.exit(1)
    console.print(f"Prompt '{name}' updated", style="green")


@prompts.command(name='reset')
def reset_prompts():
    """Delete the prompts file and use the built-in templates."""
    cli_context.get_assistant().reset_prompts()
    console.print("Prompt templates reset to defaults", style="green")


def main():
    """
    Main entry point for the RAG Assistant CLI.
    """
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\nOperation cancelled by user", style="yellow")
        logger.info("Operation cancelled by user")
    finally:
        if cli_context.errors or cli_context.warnings:
            cli_context.display_summary()


if __name__ == "__main__":
    main()
