"""CLI entrypoint for ERA posting.

Commands:
  decode         Decode an 835 file and print (or save) its contents
  post           Load claims, process an 835 file end-to-end, reconcile, export records
  describe-code  Look up the description of an 835 code
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich.console import Console

from era_posting.config import PipelineConfig

app = typer.Typer(
    name="era-posting",
    help="ERA 835 decoding, payment posting, and reconciliation.",
    add_completion=False,
)
console = Console()


def _get_config(
    output_dir: Path,
    actor_id: str,
    config_file: Path | None = None,
) -> PipelineConfig:
    """Build pipeline config from CLI args and optional config file."""
    if config_file and config_file.exists():
        raw = json.loads(config_file.read_text())
        return PipelineConfig(**raw)
    return PipelineConfig(output_dir=output_dir, actor_id=actor_id)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def decode(
    input_file: Path = typer.Option(..., "--input", help="Path to the 835 file"),
    output: Path | None = typer.Option(None, help="Write the decoded document as JSON here"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
) -> None:
    """Decode an 835 remittance file."""
    from era_posting.edi import decode as decode_835
    from era_posting.ingest import read_era_text
    from era_posting.reconciliation import check_remittance_balance

    config = _get_config(Path("output"), "system", config_file)
    console.print(f"[bold blue]Decoding {input_file}...[/]")

    result = decode_835(read_era_text(input_file), config.decoder)
    for warning in result.warnings:
        console.print(f"  [yellow]! {warning}[/]")

    if not result.success or result.data is None:
        console.print(f"[red]✗ Decode FAILED — {len(result.errors)} errors:[/]")
        for error in result.errors:
            console.print(f"  [red]• {error}[/]")
        raise typer.Exit(code=1)

    era = result.data
    balance = check_remittance_balance(era, config.posting.balance_tolerance)
    console.print(
        f"[green]✓ ICN {era.interchange_control_number}: {len(era.claims)} claims, "
        f"{era.total_service_lines} service lines, payment {era.payment_amount:,.2f} "
        f"({era.payment_method}) from {era.payer.name}[/]"
    )
    if not balance.balanced:
        console.print(
            f"  [yellow]! Remittance out of balance by {balance.variance:,.2f} "
            f"(expected {balance.expected_payment:,.2f})[/]"
        )

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(era.model_dump_json(indent=2))
        console.print(f"[green]✓ Decoded document → {output}[/]")


@app.command()
def post(
    era_file: Path = typer.Option(..., "--era", help="Path to the 835 file"),
    claims_file: Path = typer.Option(..., "--claims", help="Claims table (Parquet or CSV)"),
    output_dir: Path = typer.Option(Path("output"), help="Output directory"),
    actor_id: str = typer.Option("system", "--actor", help="User recorded on postings"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
) -> None:
    """Post an 835 file against a claims table and export the resulting records."""
    from era_posting.ingest import load_claims, read_era_text, save_records, seed_claims
    from era_posting.posting import PostingEngine
    from era_posting.processing import process_era_file
    from era_posting.reconciliation import reconcile_era_file
    from era_posting.store import InMemoryDataStore

    config = _get_config(output_dir, actor_id, config_file)
    console.print("[bold blue]═══ ERA Posting ═══[/]\n")

    try:
        store = InMemoryDataStore()
        loaded = seed_claims(store, load_claims(claims_file))
        console.print(f"  Loaded {loaded:,} claims from {claims_file}")

        engine = PostingEngine(store, config.posting)
        outcome = process_era_file(
            engine, era_file.name, read_era_text(era_file), config.actor_id, config.decoder
        )
        for warning in outcome.warnings:
            console.print(f"  [yellow]! {warning}[/]")

        if outcome.posting is None:
            console.print("[red]✗ ERA file not posted:[/]")
            for error in outcome.errors:
                console.print(f"  [red]• {error}[/]")
            save_records(store, config.output_dir)
            raise typer.Exit(code=1)

        batch = outcome.posting
        console.print(
            f"  [green]✓ {batch.successful_posts}/{batch.total_claims} claims posted "
            f"({batch.file_status})[/]"
        )
        for result in batch.results:
            for error in result.errors:
                console.print(f"    [red]• {error}[/]")

        record = reconcile_era_file(
            store, outcome.era_file_id, config.actor_id, config.posting.balance_tolerance
        )
        colour = "green" if record.reconciliation_status == "Balanced" else "yellow"
        console.print(
            f"  [{colour}]Reconciliation: {record.reconciliation_status} "
            f"(variance {record.variance_amount:,.2f})[/]"
        )

        written = save_records(store, config.output_dir)
        console.print(f"\n[bold green]✓ Records written: {', '.join(sorted(written))} → {config.output_dir}[/]")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Posting error: {e}[/]")
        raise typer.Exit(code=2) from e


@app.command()
def describe_code(
    code: str = typer.Argument(..., help="Code to look up"),
    kind: str = typer.Option("carc", help="'carc', 'status' or 'group'"),
) -> None:
    """Describe a code from one of the 835 code tables."""
    from era_posting.codes import describe_adjustment_group, describe_carc, describe_claim_status

    if kind == "status":
        console.print(describe_claim_status(code))
    elif kind == "carc":
        console.print(describe_carc(code))
    elif kind == "group":
        console.print(describe_adjustment_group(code))
    else:
        console.print(f"[red]Unknown kind {kind!r}; use 'carc', 'status' or 'group'[/]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
