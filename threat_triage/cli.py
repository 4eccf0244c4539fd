"""Command-line interface for the threat triage pipeline."""

import click
import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from tabulate import tabulate
from colorama import init, Fore, Style

# Initialize colorama for cross-platform colored output
init(autoreset=True)

from threat_triage.config import get_config
from threat_triage.enrichment import (
    ProfileLoader, get_actor_stats, get_dark_web_stats, get_global_risk_stats, get_top_actors,
    get_top_ransomware_groups, get_top_risk_countries,
)
from threat_triage.ingestion import FeedCollector, JsonFeedFile
from threat_triage.pipeline import build_service
from threat_triage.query import filter_items, parse_timestamp
from threat_triage.storage import build_cache

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    'CRITICAL': Fore.RED,
    'HIGH': Fore.YELLOW,
    'MEDIUM': Fore.CYAN,
    'LOW': Fore.GREEN,
    'INFO': Fore.WHITE,
}

CSV_FIELDS = ['title', 'link', 'pubDate', 'source', 'sourceCount', 'riskScore', 'severity',
              'badges', 'tags', 'correlationId', 'relatedCount']


def _service(ctx):
    if 'service' not in ctx.obj:
        config = ctx.obj['config']
        cache = ctx.obj.get('cache') or build_cache(config)
        ctx.obj['cache'] = cache
        ctx.obj['service'] = build_service(config, cache)
    return ctx.obj['service']


def _severity(value):
    color = SEVERITY_COLORS.get(value or '', '')
    return f"{color}{value}{Style.RESET_ALL}" if color else str(value)


def _threat_rows(items):
    rows = []
    for item in items:
        rows.append([
            item.get('riskScore', 'N/A'),
            _severity(item.get('severity')),
            item.get('title', 'N/A')[:60],
            item.get('source', 'N/A')[:20],
            item.get('sourceCount', 1),
            ','.join(item.get('badges', [])),
            str(item.get('pubDate', 'N/A'))[:10],
        ])
    return rows


def _csv_row(item):
    row = {k: item.get(k, '') for k in CSV_FIELDS}
    # Convert lists to strings
    for key in ('badges', 'tags'):
        if isinstance(row.get(key), list):
            row[key] = ','.join(row[key])
    return row


def _filtered_items(service, after, tag, q, severity):
    after_time = None
    if after:
        try:
            after_time = parse_timestamp(after)
        except ValueError:
            raise click.BadParameter(f"Invalid ISO-8601 timestamp: {after}", param_hint='--after')
    payload = service.get_threats_payload()
    return filter_items(payload.get('items', []), after=after_time, tag=tag, q=q, severity=severity)


@click.group()
@click.option('--config', type=click.Path(exists=True), help='Path to custom config file')
@click.pass_context
def cli(ctx, config):
    """
    Threat Triage CLI

    Normalizes, deduplicates, correlates, attributes, scores and ranks
    threat intelligence items from configured feeds.
    """
    ctx.ensure_object(dict)
    if 'config' not in ctx.obj:
        ctx.obj['config'] = get_config(config)

    settings = ctx.obj['config']
    logging.basicConfig(
        level=getattr(logging, str(settings.get('logging.level', 'INFO')).upper(), logging.INFO),
        format=settings.get('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )


@cli.command()
@click.option('--input', 'inputs', multiple=True, type=click.Path(exists=True, dir_okay=False),
              help='JSON feed file to process instead of the configured feeds (repeatable)')
@click.pass_context
def process(ctx, inputs):
    """
    Run one processing cycle and cache the ranked batch.

    Collects the configured feed files (or the given --input files), runs the
    full pipeline and writes the batch, the top slice and the trends bucket.
    """
    click.echo(f"{Fore.CYAN}=== Threat Triage Processing Cycle ==={Style.RESET_ALL}\n")

    config = ctx.obj['config']
    service = _service(ctx)

    if inputs:
        collector = FeedCollector(
            [JsonFeedFile(Path(path).stem, Path(path)) for path in inputs],
            timeout=config.get('ingestion.timeout_seconds', 10),
            max_concurrent=config.get('ingestion.max_concurrent', 5),
        )
    else:
        collector = service.collector

    if collector is None or not collector.feeds:
        click.echo(f"{Fore.YELLOW}No feeds configured{Style.RESET_ALL}")
        return

    click.echo(f"{Fore.YELLOW}Collecting from {len(collector.feeds)} feed(s)...{Style.RESET_ALL}")
    raw_items = collector.collect()
    click.echo(f"Collected {len(raw_items)} raw items\n")
    for failure in collector.last_failures:
        click.echo(f"{Fore.RED}{failure}{Style.RESET_ALL}")

    batch = service.run_cycle(raw_items)
    click.echo(f"{Fore.GREEN}Processed {batch.count} threats in {batch.processing_time_ms}ms{Style.RESET_ALL}\n")

    stats = batch.statistics
    click.echo(f"{Fore.CYAN}=== Batch Statistics ==={Style.RESET_ALL}")
    table_data = [[severity, count] for severity, count in stats['severityCounts'].items()]
    click.echo(tabulate(table_data, headers=['Severity', 'Count'], tablefmt='grid'))
    click.echo(f"\nAverage score: {stats['averageScore']}")
    click.echo(f"Multi-source threats: {stats['multiSourceThreats']}")
    click.echo(f"Items with related threats: {batch.correlation_stats['itemsWithRelated']}")


@cli.command()
@click.option('--severity', help='Filter by severity (e.g., CRITICAL, HIGH)')
@click.option('--tag', help='Filter by tag (e.g., KEV, CVE-2024-1234)')
@click.option('--q', help='Free-text search in title and description')
@click.option('--after', help='Only items published at or after this ISO-8601 time')
@click.option('--limit', default=50, help='Maximum results to return (default: 50)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json', 'csv']), default='table',
              help='Output format (default: table)')
@click.pass_context
def threats(ctx, severity, tag, q, after, limit, output_format):
    """
    List ranked threats from the cached batch.

    Use various filters to find specific threats.
    """
    items = _filtered_items(_service(ctx), after, tag, q, severity)[:limit]

    if not items:
        click.echo(f"{Fore.YELLOW}No threats found{Style.RESET_ALL}")
        return

    if output_format == 'json':
        click.echo(json.dumps(items, indent=2, default=str))

    elif output_format == 'csv':
        writer = csv.DictWriter(click.get_text_stream('stdout'), fieldnames=CSV_FIELDS)
        writer.writeheader()
        for item in items:
            writer.writerow(_csv_row(item))

    else:  # table format
        click.echo(f"{Fore.GREEN}Found {len(items)} threat(s){Style.RESET_ALL}\n")
        headers = ['Score', 'Severity', 'Title', 'Source', 'Sources', 'Badges', 'Published']
        click.echo(tabulate(_threat_rows(items), headers=headers, tablefmt='grid'))


@cli.command()
@click.option('--limit', default=10, help='Number of top threats (default: 10)')
@click.pass_context
def top(ctx, limit):
    """
    Show the precomputed top threats.
    """
    payload = _service(ctx).get_top_payload()
    items = payload.get('items', [])[:limit]

    if not items:
        click.echo(f"{Fore.YELLOW}No threats cached{Style.RESET_ALL}")
        return

    click.echo(f"{Fore.CYAN}=== Top {len(items)} Threats (updated {payload.get('updated')}) ==={Style.RESET_ALL}\n")
    headers = ['Score', 'Severity', 'Title', 'Source', 'Sources', 'Badges', 'Published']
    click.echo(tabulate(_threat_rows(items), headers=headers, tablefmt='grid'))


@cli.command()
@click.option('--output', required=True, help='Output file path')
@click.option('--format', 'output_format', type=click.Choice(['json', 'csv']),
              required=True, help='Export format')
@click.option('--severity', help='Filter by severity')
@click.option('--tag', help='Filter by tag')
@click.option('--q', help='Free-text search')
@click.option('--after', help='Only items published at or after this ISO-8601 time')
@click.pass_context
def export(ctx, output, output_format, severity, tag, q, after):
    """
    Export ranked threats to a file.

    Supports JSON and CSV formats.
    """
    items = _filtered_items(_service(ctx), after, tag, q, severity)

    if not items:
        click.echo(f"{Fore.YELLOW}No threats to export{Style.RESET_ALL}")
        return

    click.echo(f"{Fore.YELLOW}Exporting {len(items)} threat(s)...{Style.RESET_ALL}")

    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if output_format == 'json':
        with open(output_path, 'w') as f:
            json.dump(items, f, indent=2, default=str)

    elif output_format == 'csv':
        with open(output_path, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            for item in items:
                writer.writerow(_csv_row(item))

    click.echo(f"{Fore.GREEN}Exported to {output_path}{Style.RESET_ALL}")


@cli.command()
@click.option('--hours', default=24, help='Hours to summarize (default: 24)')
@click.option('--top', 'top_n', default=5, help='Entries per table (default: 5)')
@click.pass_context
def trends(ctx, hours, top_n):
    """
    Show the most frequent sources and tags over recent hours.
    """
    summary = _service(ctx).trends.summarize(datetime.now(timezone.utc), hours, top_n)

    click.echo(f"{Fore.CYAN}=== Trends (last {hours}h) ==={Style.RESET_ALL}\n")
    if not summary['topSources'] and not summary['topTags']:
        click.echo(f"{Fore.YELLOW}No trend data recorded{Style.RESET_ALL}")
        return

    click.echo(f"{Fore.CYAN}Top Sources:{Style.RESET_ALL}")
    click.echo(tabulate(list(summary['topSources'].items()), headers=['Source', 'Count'], tablefmt='grid'))
    click.echo()
    click.echo(f"{Fore.CYAN}Top Tags:{Style.RESET_ALL}")
    click.echo(tabulate(list(summary['topTags'].items()), headers=['Tag', 'Count'], tablefmt='grid'))


@cli.group()
def sources():
    """
    Manage approved, candidate and blocked feed sources.
    """


@sources.command('list')
@click.pass_context
def list_sources(ctx):
    """List approved and candidate sources and blocked domains."""
    registry = _service(ctx).sources
    data = registry.get_sources()

    click.echo(f"{Fore.CYAN}Approved sources:{Style.RESET_ALL}")
    rows = [[s.get('url'), s.get('approvedAt', '')] for s in data['approved']]
    click.echo(tabulate(rows, headers=['URL', 'Approved'], tablefmt='grid') if rows else '  (none)')
    click.echo()

    click.echo(f"{Fore.CYAN}Candidate sources:{Style.RESET_ALL}")
    rows = [[c.get('url'), c.get('title', ''), c.get('discoveredAt', '')] for c in data['candidates']]
    click.echo(tabulate(rows, headers=['URL', 'Title', 'Discovered'], tablefmt='grid') if rows else '  (none)')
    click.echo()

    blocked = registry.blocked_domains()
    click.echo(f"{Fore.CYAN}Blocked domains:{Style.RESET_ALL} {', '.join(blocked) if blocked else '(none)'}")


@sources.command()
@click.argument('url')
@click.pass_context
def approve(ctx, url):
    """Approve a source URL."""
    _service(ctx).sources.add_approved_source(url)
    click.echo(f"{Fore.GREEN}Approved {url}{Style.RESET_ALL}")


@sources.command()
@click.argument('url')
@click.option('--title', help='Display title for the source')
@click.pass_context
def candidate(ctx, url, title):
    """Record a candidate source URL for review."""
    if _service(ctx).sources.add_candidate_source(url, title):
        click.echo(f"{Fore.GREEN}Added candidate {url}{Style.RESET_ALL}")
    else:
        click.echo(f"{Fore.YELLOW}{url} is already known or blocked{Style.RESET_ALL}")


@sources.command()
@click.argument('domain')
@click.pass_context
def block(ctx, domain):
    """Block a domain and drop its sources."""
    _service(ctx).sources.block_domain(domain)
    click.echo(f"{Fore.GREEN}Blocked {domain.strip().lower()}{Style.RESET_ALL}")


@cli.command()
@click.pass_context
def profiles(ctx):
    """
    Display reference profile set statistics.
    """
    config = ctx.obj['config']
    cache = ctx.obj.get('cache') or build_cache(config)
    ctx.obj['cache'] = cache
    loaded = ProfileLoader(config, cache).load()

    click.echo(f"{Fore.CYAN}=== Reference Profiles ==={Style.RESET_ALL}\n")
    counts = [
        ['APT groups', len(loaded.apt_groups)],
        ['Threat actors', len(loaded.actors)],
        ['Ransomware victims', len(loaded.victims)],
        ['Paste findings', len(loaded.pastes)],
        ['Detection rules', len(loaded.detections)],
        ['Countries', len(loaded.countries)],
    ]
    click.echo(tabulate(counts, headers=['Reference set', 'Entries'], tablefmt='grid'))
    click.echo()

    click.echo(f"{Fore.CYAN}Threat actors:{Style.RESET_ALL}")
    for key, value in get_actor_stats(loaded.actors).items():
        click.echo(f"  {key}: {value}")
    top_actors = get_top_actors(loaded.actors, 5)
    if top_actors:
        click.echo(tabulate([[a['name'], a['type'], a['country'], a['campaignCount']] for a in top_actors],
                            headers=['Actor', 'Type', 'Country', 'Campaigns'], tablefmt='grid'))
    click.echo()

    click.echo(f"{Fore.CYAN}Dark web:{Style.RESET_ALL}")
    for key, value in get_dark_web_stats(loaded.victims, loaded.pastes).items():
        click.echo(f"  {key}: {value}")
    groups = get_top_ransomware_groups(loaded.victims, 5)
    if groups:
        click.echo(tabulate([[g['group'], g['count']] for g in groups],
                            headers=['Ransomware group', 'Victims'], tablefmt='grid'))
    click.echo()

    click.echo(f"{Fore.CYAN}Geopolitical risk:{Style.RESET_ALL}")
    for key, value in get_global_risk_stats(loaded.countries).items():
        click.echo(f"  {key}: {value}")
    top_countries = get_top_risk_countries(loaded.countries, 5)
    if top_countries:
        click.echo(tabulate([[c.name, c.risk_score, c.risk_level, c.region] for c in top_countries],
                            headers=['Country', 'Risk score', 'Level', 'Region'], tablefmt='grid'))


@cli.command()
@click.option('--host', help='Bind address (default: api.host)')
@click.option('--port', type=int, help='Bind port (default: api.port)')
@click.pass_context
def serve(ctx, host, port):
    """
    Serve the read-only HTTP API.
    """
    import uvicorn
    from threat_triage.api import create_app

    config = ctx.obj['config']
    app = create_app(_service(ctx), config)
    host = host or config.get('api.host', '127.0.0.1')
    port = port or config.get('api.port', 8000)
    click.echo(f"{Fore.CYAN}Serving on http://{host}:{port}{Style.RESET_ALL}")
    uvicorn.run(app, host=host, port=port)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == '__main__':
    main()
