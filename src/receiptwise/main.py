import asyncio
import json
import mimetypes
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from receiptwise.assistant import ChatOrchestrator, ContextAssembler
from receiptwise.config import Settings
from receiptwise.dates import Clock, utc_now
from receiptwise.envelope import Envelope, capture, capture_call
from receiptwise.errors import RequestValidationError
from receiptwise.integrations.anthropic_chat import AnthropicConversation
from receiptwise.integrations.anthropic_extractor import AnthropicExtractor
from receiptwise.integrations.image_store import LocalImageStore
from receiptwise.logging import configure_logging
from receiptwise.integrations.support import (
    GenerativeSupportProvider,
    SerperSupportProvider,
    SupportLookup,
    SupportProvider,
)
from receiptwise.models import ChatTurn, ReceiptFields
from receiptwise.receipts import ReceiptService
from receiptwise.store import SQLiteReceiptStore

app = typer.Typer(no_args_is_help=True)


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context):
    """Receiptwise: receipt and warranty tracker with an AI assistant."""
    load_dotenv(find_dotenv(usecwd=True))
    configure_logging()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@dataclass
class Services:
    """Everything a command needs, constructed once by the entry point."""

    settings: Settings
    clock: Clock
    store: SQLiteReceiptStore
    receipts: ReceiptService
    orchestrator: ChatOrchestrator
    extractor: AnthropicExtractor | None = None
    conversation: AnthropicConversation | None = None
    web_search: SerperSupportProvider | None = None

    async def aclose(self) -> None:
        """Close network clients. Must run on the loop that used them."""
        if self.web_search is not None:
            await self.web_search.aclose()
        if self.conversation is not None:
            await self.conversation.client.close()
        if self.extractor is not None:
            await self.extractor.client.close()

    def close(self) -> None:
        self.store.close()


def build_services(settings: Settings, clock: Clock = utc_now) -> Services:
    """Wire the store, the AI clients and the services that use them.

    Without ANTHROPIC_API_KEY, uploads and chat fail with a clear error while
    every store-backed operation (including quick actions) keeps working.
    """
    store = SQLiteReceiptStore(settings.database_path)
    images = LocalImageStore(settings.uploads_dir)

    extractor = conversation = web_search = support = None
    if settings.anthropic_api_key:
        extractor = AnthropicExtractor(
            api_key=settings.anthropic_api_key,
            model=settings.extraction_model,
            timeout=settings.extraction_timeout,
        )
        conversation = AnthropicConversation(
            api_key=settings.anthropic_api_key,
            model=settings.chat_model,
            max_tokens=settings.chat_max_tokens,
            timeout=settings.chat_timeout,
        )

        providers: list[SupportProvider] = []
        if settings.serper_api_key:
            web_search = SerperSupportProvider(
                api_key=settings.serper_api_key, timeout=settings.support_timeout
            )
            providers.append(web_search)
        providers.append(GenerativeSupportProvider(conversation))
        support = SupportLookup(providers)

    assembler = ContextAssembler(store, support=support, clock=clock)
    return Services(
        settings=settings,
        clock=clock,
        store=store,
        receipts=ReceiptService(store, images, extractor=extractor, clock=clock),
        orchestrator=ChatOrchestrator(
            assembler,
            conversation,
            store,
            clock=clock,
            max_tokens=settings.chat_max_tokens,
        ),
        extractor=extractor,
        conversation=conversation,
        web_search=web_search,
    )


@contextmanager
def open_services() -> Iterator[Services]:
    try:
        settings = Settings()
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1) from e

    services = build_services(settings)
    try:
        yield services
    finally:
        services.close()


def _emit(envelope: Envelope) -> None:
    output = envelope.model_dump_json(indent=2)
    if envelope.success:
        typer.echo(output)
        return
    typer.echo(output, err=True)
    raise typer.Exit(code=1)


def _read_fields(path: Path) -> ReceiptFields:
    try:
        return ReceiptFields.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise RequestValidationError(f"Invalid receipt fields: {e}") from e


def _read_history(path: Path | None) -> list[ChatTurn]:
    if path is None:
        return []
    try:
        turns = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(turns, list):
            raise RequestValidationError("Conversation history must be a JSON list")
        return [ChatTurn.model_validate(turn) for turn in turns]
    except (json.JSONDecodeError, ValidationError) as e:
        raise RequestValidationError(f"Invalid conversation history: {e}") from e


@app.command()
def upload(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Receipt photo"),
    mime_type: str | None = typer.Option(
        None, "--mime-type", "-m", help="Override the MIME type guessed from the file name"
    ),
):
    """Analyze a receipt photo and store the extracted receipt."""
    mime = mime_type or mimetypes.guess_type(image.name)[0] or "application/octet-stream"
    with open_services() as services:
        typer.echo(f"Analyzing {image.name}...", err=True)

        async def run() -> Envelope:
            try:
                return await capture(services.receipts.process_receipt(image.read_bytes(), mime))
            finally:
                await services.aclose()

        _emit(asyncio.run(run()))


@app.command("list")
def list_receipts(
    page: int = typer.Option(1, "--page", "-p", help="Page number, starting at 1"),
    limit: int = typer.Option(20, "--limit", "-l", help="Receipts per page"),
    sort: str = typer.Option(
        "-purchase_date", "--sort", help="Sort field; prefix with '-' for descending"
    ),
    expiring: bool = typer.Option(
        False, "--expiring", help="Only receipts whose warranty expires within 30 days"
    ),
    recurring: bool | None = typer.Option(
        None, "--recurring/--one-off", help="Only recurring or only one-off purchases"
    ),
    search: str | None = typer.Option(None, "--search", "-s", help="Free-text search"),
):
    """List stored receipts."""
    with open_services() as services:
        _emit(
            capture_call(
                services.receipts.list_receipts,
                page=page,
                limit=limit,
                sort=sort,
                warranty_expiring=expiring,
                is_recurring=recurring,
                search=search,
            )
        )


@app.command()
def show(receipt_id: str = typer.Argument(..., help="Receipt id")):
    """Show one receipt with its warranty status."""
    with open_services() as services:
        _emit(capture_call(services.receipts.get_receipt, receipt_id))


@app.command()
def update(
    receipt_id: str = typer.Argument(..., help="Receipt id"),
    fields_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON file with the full set of receipt fields"
    ),
):
    """Replace the editable fields of a receipt."""
    with open_services() as services:
        _emit(
            capture_call(
                lambda: services.receipts.update_receipt(receipt_id, _read_fields(fields_file))
            )
        )


@app.command()
def delete(receipt_id: str = typer.Argument(..., help="Receipt id")):
    """Delete a receipt and its stored image."""
    with open_services() as services:
        envelope = capture_call(services.receipts.delete_receipt, receipt_id)
        if envelope.success:
            envelope = Envelope.ok({"message": "Receipt deleted successfully"})
        _emit(envelope)


@app.command()
def stats():
    """Show dashboard statistics."""
    with open_services() as services:
        _emit(capture_call(services.receipts.dashboard_stats))


@app.command()
def expiring(
    days: int = typer.Option(30, "--days", "-d", help="Look-ahead window in days"),
):
    """List receipts whose warranty expires soon."""
    with open_services() as services:
        _emit(capture_call(services.receipts.expiring_warranties, days))


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message for the assistant"),
    receipt_id: str | None = typer.Option(
        None, "--receipt-id", "-r", help="Receipt the question is about"
    ),
    history: Path | None = typer.Option(
        None,
        "--history",
        exists=True,
        dir_okay=False,
        help="JSON file with prior turns: [{\"role\": ..., \"content\": ...}]",
    ),
):
    """Ask the receipt assistant a question."""
    with open_services() as services:

        async def turn():
            turns = _read_history(history)
            return await services.orchestrator.chat(
                message, receipt_id=receipt_id, conversation_history=turns
            )

        async def run() -> Envelope:
            try:
                return await capture(turn())
            finally:
                await services.aclose()

        _emit(asyncio.run(run()))


@app.command()
def quick(
    action: str = typer.Argument(
        ...,
        help="expiring-warranties | this-month-spending | recurring-bills | recent",
    ),
):
    """Run a predefined query without involving the assistant."""
    with open_services() as services:
        _emit(capture_call(services.orchestrator.quick_action, action))


def main():
    app()


if __name__ == "__main__":
    main()
