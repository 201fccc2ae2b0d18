"""
Meterpay demo CLI.

Usage:
    meterpay [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
from typing import Any

import click
import httpx
from rich.console import Console
from rich.markup import escape

from meterpay_core.models import new_id

from .client import MeterpayAPIError, MeterpayClient

console = Console()

# Free-mode demo claim; base64 strings the format check accepts.
DEMO_SPEND_BLOB = "c3BlbmRibG9iMTIz"
DEMO_PROOF = "cHJvb2ZkYXRhMTIz"

DEMO_TEXT = (
    "Bitcoin is a decentralized digital currency that enables peer-to-peer transactions "
    "without the need for trusted intermediaries like banks. It uses blockchain technology "
    "to maintain a public ledger of all transactions."
)


def _client(ctx: click.Context) -> MeterpayClient:
    return MeterpayClient(ctx.obj["base_url"], transport=ctx.obj.get("transport"))


async def _paid_call(client: MeterpayClient, endpoint: str, units: dict[str, Any], args: dict[str, Any]) -> dict:
    console.print(f"Getting quote for [cyan]{endpoint}[/cyan]...")
    quote = await client.get_quote(endpoint, **units)
    console.print(f"Price: [bold]{quote['price_sats']}[/bold] sats (expires {quote['expires_at']})")

    result = await client.paycall(
        quote["quote_id"],
        spend_blob=DEMO_SPEND_BLOB,
        proof=DEMO_PROOF,
        endpoint=endpoint,
        args=args,
        idempotency_key=new_id("cli"),
    )
    receipt = result["receipt"]
    console.print(f"[green]✓ Paid {receipt['paid_amount']} sats[/green]")
    console.print(f"  Receipt: [cyan]{escape(receipt['settlement_ref'])}[/cyan]")
    console.print(f"  Job: {receipt['job_id']}")
    return result["result"]


def _run(ctx: click.Context, endpoint: str, units: dict[str, Any], args: dict[str, Any]) -> dict:
    async def call():
        async with _client(ctx) as client:
            return await _paid_call(client, endpoint, units, args)

    try:
        return asyncio.run(call())
    except MeterpayAPIError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
    except httpx.HTTPError as e:
        console.print(f"[red]Error: could not reach {ctx.obj['base_url']} ({escape(str(e))})[/red]")
    ctx.exit(1)


@click.group()
@click.version_option(package_name="meterpay", message="%(prog)s %(version)s")
@click.option("-u", "--url", envvar="METERPAY_URL", default=MeterpayClient.DEFAULT_BASE_URL, show_default=True,
              help="API base URL")
@click.pass_context
def cli(ctx, url: str):
    """Meterpay CLI - pay-per-call demo client."""
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = url


@cli.command()
@click.argument("text")
@click.option("-t", "--tokens", default=1000, show_default=True, help="Number of tokens")
@click.pass_context
def summarize(ctx, text: str, tokens: int):
    """Summarize text."""
    result = _run(ctx, "summarize", {"tokens": tokens}, {"text": text})

    console.print("\n[bold blue]Summary[/bold blue]")
    console.print(escape(result["summary"]))
    console.print(f"Tokens processed: {result['tokens_processed']}")


@cli.command()
@click.argument("prompt")
@click.option("-w", "--width", default=512, show_default=True, help="Image width")
@click.option("-h", "--height", default=512, show_default=True, help="Image height")
@click.pass_context
def image(ctx, prompt: str, width: int, height: int):
    """Generate an image."""
    result = _run(ctx, "generate_image", {"images": 1}, {"prompt": prompt, "width": width, "height": height})

    dimensions = result["dimensions"]
    console.print("\n[bold blue]Generated Image[/bold blue]")
    console.print(f"URL: {escape(result['image_url'])}", soft_wrap=True)
    console.print(f"Dimensions: {dimensions['width']}x{dimensions['height']}")


@cli.command()
@click.argument("text")
@click.option("-f", "--from", "source", default="en", show_default=True, help="Source language")
@click.option("-t", "--to", "target", default="es", show_default=True, help="Target language")
@click.pass_context
def translate(ctx, text: str, source: str, target: str):
    """Translate text."""
    result = _run(ctx, "translate", {"characters": len(text)}, {"text": text, "from": source, "to": target})

    console.print("\n[bold blue]Translation[/bold blue]")
    console.print(f"Original ({source}): {escape(result['original'])}")
    console.print(f"Translated ({target}): {escape(result['translated'])}")
    console.print(f"Characters: {result['characters_processed']}")


@cli.command()
@click.argument("operation", type=click.Choice(["square", "sqrt", "double"]))
@click.argument("value", type=float)
@click.option("-s", "--seconds", default=1, show_default=True, help="Processing seconds")
@click.pass_context
def compute(ctx, operation: str, value: float, seconds: int):
    """Run a computation."""
    result = _run(ctx, "compute", {"seconds": seconds}, {"operation": operation, "value": value})

    console.print("\n[bold blue]Computation[/bold blue]")
    console.print(f"Operation: {result['operation']}")
    console.print(f"Input: {result['input']}")
    console.print(f"Output: {result['output']}")


@cli.command()
@click.pass_context
def health(ctx):
    """Check API health."""
    async def call():
        async with _client(ctx) as client:
            return await client.health()

    try:
        status = asyncio.run(call())
    except (MeterpayAPIError, httpx.HTTPError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        ctx.exit(1)

    asp = status["asp"]
    console.print("\n[bold blue]API Health[/bold blue]\n")
    console.print(f"Status: {status['status']}")
    console.print(f"Payments mode: {status['payments_mode']}")
    console.print(f"Database: {status['database']['type']}")
    console.print(f"ASP: {'[green]healthy[/green]' if asp['healthy'] else '[red]unreachable[/red]'}")
    if asp.get("current_round"):
        console.print(f"Current round: {asp['current_round']}")


@cli.command()
@click.pass_context
def demo(ctx):
    """Run a paid call against every built-in endpoint."""
    steps = [
        ("summarize", {"tokens": 500}, {"text": DEMO_TEXT}),
        ("generate_image", {"images": 1}, {"prompt": "Bitcoin logo on a futuristic background"}),
        ("translate", {"characters": 11}, {"text": "Hello world", "from": "en", "to": "es"}),
        ("compute", {"seconds": 1}, {"operation": "square", "value": 42}),
    ]

    console.print("[bold blue]Meterpay demo[/bold blue]\n")
    for number, (endpoint, units, args) in enumerate(steps, start=1):
        console.print(f"[bold]Step {number}: {endpoint}[/bold]")
        _run(ctx, endpoint, units, args)
        console.print()

    console.print(f"[bold green]Demo complete: {len(steps)} paid calls settled[/bold green]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
