"""
card_valuation/cli/main.py: CLI entry point using Click

Commands:
- identify IMAGE [--set] [--rarity] [--resume ID] [--json] - Identify and value one card
- batch DIR --out results.csv - Identify every image in a directory
- resolve-set NAME [--number] - Look up which printing a card is
- match-name TEXT [--names] - Rank known card names against OCR text
- price NAME [--set] [--number] [--refresh] - Value a card by name
- init-db - Create database tables
- show ID - Print a stored execution
"""

import click
from pathlib import Path
import json
import logging

from card_valuation.config import LOG_LEVEL

# Setup logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp', '.gif', '.tif', '.tiff', '.bmp'}


def _print_result(result):
    """Human-readable summary of an IdentificationResult."""
    click.echo(f"Execution: {result.execution_id}")
    click.echo(f"Status:    {result.status.value}")

    meta = result.card_metadata
    if meta is not None:
        click.echo(f"Name:      {meta.card_name or '-'} ({meta.name.confidence:.2f})")
        click.echo(f"Set:       {meta.set_name or '-'} ({meta.set_confidence:.2f})")
        click.echo(f"Rarity:    {meta.rarity.value or '-'} ({meta.rarity.confidence:.2f})")
        click.echo(f"Number:    {meta.collector_number.value or '-'}")
        click.echo(f"Overall:   {meta.overall_confidence:.2f} (verified by AI: {meta.verified_by_ai})")

    if result.set_match is not None:
        sm = result.set_match
        click.echo(f"Catalog:   {sm.set_name} #{sm.collector_number} ({sm.confidence:.2f}, {sm.match_reason})")

    if result.valuation is not None:
        v = result.valuation
        if v.comps_count:
            click.echo(f"Value:     ${v.value_low:.2f} / ${v.value_median:.2f} / ${v.value_high:.2f} "
                       f"({v.comps_count} comps from {', '.join(v.sources)}, confidence {v.confidence:.2f})")
        else:
            click.echo("Value:     insufficient price data")

    if result.valuation_summary is not None:
        s = result.valuation_summary
        click.echo(f"Fair:      ${s.fair_value:.2f} ({s.trend.value}) - {s.summary}")
        if s.recommendation:
            click.echo(f"Advice:    {s.recommendation}")

    if result.authenticity is not None:
        a = result.authenticity
        click.echo(f"Authentic: score {a.authenticity_score:.2f}{' - POSSIBLE FAKE' if a.fake_detected else ''}")

    for stage, error in result.errors.items():
        click.echo(f"Error:     {stage}: {error}")


@click.group()
def cli():
    """Pokemon Card Identification and Valuation CLI"""
    pass


@cli.command()
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--set', 'expected_set', default=None, help='Expected set name hint')
@click.option('--rarity', 'expected_rarity', default=None, help='Expected rarity hint')
@click.option('--resume', 'execution_id', default=None, help='Resume (or create) this execution ID')
@click.option('--refresh', is_flag=True, help='Bypass cached prices')
@click.option('--json', 'as_json', is_flag=True, help='Print the full result as JSON')
def identify(image, expected_set, expected_rarity, execution_id, refresh, as_json):
    """
    Identify and value a single card image

    Example: identify scans/charizard.jpg --set "Brilliant Stars"
    """
    from card_valuation.errors import FatalPipelineError
    from card_valuation.models import ReasoningHints
    from card_valuation.workflow.coordinator import build_default_coordinator

    hints = None
    if expected_set or expected_rarity:
        hints = ReasoningHints(expected_set=expected_set, expected_rarity=expected_rarity)

    coordinator = build_default_coordinator()
    try:
        result = coordinator.identify(
            str(Path(image).resolve()), hints=hints, execution_id=execution_id, force_refresh=refresh
        )
    except FatalPipelineError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)


@cli.command()
@click.argument('scan_dir', type=click.Path(exists=True, file_okay=False))
@click.option('--out', 'output_csv', required=True, type=click.Path(), help='Output CSV path for results')
def batch(scan_dir, output_csv):
    """
    Identify every image in a directory

    Example: batch scans/ --out results.csv
    """
    from tqdm import tqdm
    import csv

    from card_valuation.errors import FatalPipelineError
    from card_valuation.workflow.coordinator import build_default_coordinator

    image_paths = sorted(p for p in Path(scan_dir).iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)
    if not image_paths:
        raise click.ClickException(f"No images found in {scan_dir}")

    logger.info(f"Processing {len(image_paths)} images from {scan_dir}")
    coordinator = build_default_coordinator()

    rows = []
    for img_path in tqdm(image_paths, desc="Identifying cards"):
        try:
            result = coordinator.identify(str(img_path.resolve()))
        except FatalPipelineError as e:
            logger.error(f"Skipping {img_path}: {e}")
            rows.append({'image': str(img_path), 'status': 'FAILED', 'error': str(e)})
            continue

        meta = result.card_metadata
        valuation = result.valuation
        rows.append({
            'image': str(img_path),
            'execution_id': result.execution_id,
            'status': result.status.value,
            'card_name': meta.card_name if meta else '',
            'set_name': (result.set_match.set_name if result.set_match else (meta.set_name if meta else '')) or '',
            'collector_number': (meta.collector_number.value if meta else '') or '',
            'confidence': f"{meta.overall_confidence:.3f}" if meta else '',
            'value_median': f"{valuation.value_median:.2f}" if valuation else '',
            'error': '; '.join(f"{k}: {v}" for k, v in result.errors.items()),
        })

    output_path = Path(output_csv)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ['image', 'execution_id', 'status', 'card_name', 'set_name', 'collector_number',
                  'confidence', 'value_median', 'error']
    with open(output_path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)

    succeeded = sum(1 for r in rows if r['status'] == 'SUCCEEDED')
    logger.info(f"Done: {succeeded}/{len(rows)} succeeded, results written to {output_path}")


@cli.command('resolve-set')
@click.argument('name')
@click.option('--number', default=None, help='Collector number, e.g. 018/195')
def resolve_set(name, number):
    """
    Resolve which printing of a card a collector number belongs to

    Example: resolve-set "Charizard VMAX" --number 018/195
    """
    from card_valuation.catalog.pokemontcg import PokemonTCGCatalog
    from card_valuation.catalog.set_resolver import SetResolver

    match = SetResolver(PokemonTCGCatalog()).resolve_set(name, number)
    if match is None:
        click.echo("No match")
        return
    click.echo(match.model_dump_json(indent=2))


@cli.command('match-name')
@click.argument('text')
@click.option('--names', 'names_path', default=None, type=click.Path(exists=True, dir_okay=False),
              help='Known-name dictionary (defaults to KNOWN_NAMES_PATH)')
@click.option('--threshold', default=0.6, type=float, help='Minimum similarity')
@click.option('--limit', default=5, type=int, help='Maximum matches to show')
def match_name(text, names_path, threshold, limit):
    """
    Rank known card names against OCR text

    Example: match-name "Charlzard VMAK" --names data/names.txt
    """
    from card_valuation.config import KNOWN_NAMES_PATH
    from card_valuation.reasoning.service import load_known_names
    from card_valuation.utils.fuzzy_matching import find_all_matches

    names = load_known_names(names_path or KNOWN_NAMES_PATH)
    if not names:
        raise click.ClickException("No known-name dictionary; pass --names or set KNOWN_NAMES_PATH")

    matches = find_all_matches(text, names, threshold=threshold, limit=limit)
    if not matches:
        click.echo("No match")
        return
    for m in matches:
        click.echo(f"{m.confidence:.3f}  {m.match}")


@cli.command()
@click.argument('name')
@click.option('--set', 'set_name', default=None, help='Set name')
@click.option('--number', default=None, help='Collector number')
@click.option('--refresh', is_flag=True, help='Bypass cached prices')
def price(name, set_name, number, refresh):
    """
    Value a card by name

    Example: price "Charizard VMAX" --set "Brilliant Stars"
    """
    from card_valuation.database.schema import create_session_factory
    from card_valuation.errors import UpstreamError
    from card_valuation.models import PriceQuery
    from card_valuation.pricing.cache import PricingCache
    from card_valuation.pricing.orchestrator import PricingOrchestrator
    from card_valuation.pricing.pokemontcg_adapter import PokemonTCGPriceAdapter
    from card_valuation.pricing.pricecharting_adapter import PriceChartingAdapter
    from card_valuation.storage.kv_store import SqlKeyValueStore

    orchestrator = PricingOrchestrator(
        [PokemonTCGPriceAdapter(), PriceChartingAdapter()],
        cache=PricingCache(SqlKeyValueStore(create_session_factory())),
    )
    try:
        valuation = orchestrator.get_valuation(
            PriceQuery(card_name=name, set_name=set_name, number=number), force_refresh=refresh
        )
    except UpstreamError as e:
        raise click.ClickException(str(e))
    click.echo(valuation.model_dump_json(indent=2))


@cli.command('init-db')
def init_db_command():
    """Create database tables"""
    from card_valuation.database.schema import init_db

    init_db()
    logger.info("Database initialized")


@cli.command()
@click.argument('execution_id')
def show(execution_id):
    """
    Print a stored execution with its per-stage results

    Example: show 3f2a9c...
    """
    from card_valuation.database.schema import create_session_factory
    from card_valuation.workflow.store import SqlWorkflowStore

    execution = SqlWorkflowStore(create_session_factory()).get(execution_id)
    if execution is None:
        raise click.ClickException(f"Execution not found: {execution_id}")
    click.echo(json.dumps(execution.model_dump(mode='json'), indent=2))


if __name__ == '__main__':
    cli()
