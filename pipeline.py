from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

import click
import yaml

from metadata import DEFAULT_IPFS_GATEWAY, TokenMetadataFetcher, acquire_tokens, split_results
from rarity import MetadataStore, RankEntry, compute_rarity

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'


@dataclass
class PipelineResult:
    store: MetadataStore
    ranking: List[RankEntry]
    skipped: Dict[int, str] = field(default_factory=dict)


def load_config(path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f)


async def build_store(fetch: Callable[[int], dict], total_supply: int, max_concurrency: int = 1):
    results = await acquire_tokens(fetch, range(1, total_supply + 1), max_concurrency)
    acquired, skipped = split_results(results)
    logger.info('Fetched %d of %d tokens, skipped %d', len(acquired), total_supply, len(skipped))
    return MetadataStore(acquired), skipped


async def run_pipeline(fetch: Callable[[int], dict], total_supply: int, max_concurrency: int = 1) -> PipelineResult:
    # scoring needs the whole collection, so every fetch resolves first
    store, skipped = await build_store(fetch, total_supply, max_concurrency)
    stats, ranking = compute_rarity(store)
    logger.info('Scored %d trait types over %d tokens', len(stats), len(store))
    return PipelineResult(store=store, ranking=ranking, skipped=skipped)


def to_document(store: MetadataStore, ranking: List[RankEntry]) -> dict:
    return {
        'metadata': {str(token_id): metadata for token_id, metadata in store.items()},
        'rarity': [entry.to_dict() for entry in ranking],
    }


def save_document(path, store: MetadataStore, ranking: List[RankEntry]):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(to_document(store, ranking), f, indent=2)


def load_document(path) -> dict:
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    data['metadata'] = {int(token_id): metadata for token_id, metadata in data['metadata'].items()}
    return data


@click.command('Rarity ranking')
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, type=click.Path(exists=True, dir_okay=False))
@click.option('--output', type=click.Path(dir_okay=False), help='Overrides collection.output')
@click.option('--max-concurrency', type=click.IntRange(min=1), help='Overrides collection.max_concurrency')
@click.option('-v', '--verbose', is_flag=True)
def main(config_path: str, output: str, max_concurrency: int, verbose: bool):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    collection = load_config(config_path)['collection']
    fetcher = TokenMetadataFetcher(collection['contract_address'], collection['rpc_url'],
                                   collection.get('ipfs_gateway', DEFAULT_IPFS_GATEWAY),
                                   collection.get('request_timeout', 30))
    result = asyncio.run(run_pipeline(fetcher.fetch, collection['total_supply'],
                                      max_concurrency or collection.get('max_concurrency', 1)))
    if result.skipped:
        logger.warning('Skipped tokens: %s', ', '.join(map(str, sorted(result.skipped))))
    output = Path(output or collection.get('output', 'metadata.json'))
    save_document(output, result.store, result.ranking)
    logger.info('Updated metadata and final NFT ranking saved to %s', output)


if __name__ == '__main__':
    main(auto_envvar_prefix='RARITY')
