import asyncio
import json

import pytest
from click.testing import CliRunner

import pipeline
from pipeline import load_config, load_document, run_pipeline, save_document


def test_failed_token_is_excluded(fake_source, make_token):
    tokens = {i: make_token(('Background', 'Red')) for i in range(1, 9)}
    tokens[2]['attributes'].append({'trait_type': 'Hat', 'value': 'Cap'})
    source = fake_source(tokens, failing={5})
    result = asyncio.run(run_pipeline(source.fetch, total_supply=8))
    assert source.calls == list(range(1, 9))
    assert 5 not in result.store
    assert 5 not in [e.token_id for e in result.ranking]
    assert list(result.skipped) == [5]
    hat = result.store[2]['attributes'][1]
    assert hat['traitCount'] == 1
    assert hat['score'] == 1 / 7 * 100
    assert result.store[1]['attributes'][0]['score'] == 100


def test_ranking_covers_every_acquired_token(collection, fake_source):
    result = asyncio.run(run_pipeline(fake_source(collection).fetch, total_supply=4, max_concurrency=2))
    scores = [e.total_rarity_score for e in result.ranking]
    assert scores == sorted(scores, reverse=True)
    assert [e.rank for e in result.ranking] == [1, 2, 3, 4]
    for entry in result.ranking:
        assert result.store[entry.token_id]['rarity'] == {'totalRarityScore': entry.total_rarity_score,
                                                          'rank': entry.rank}


def test_token_without_attributes_ranks_last(collection, fake_source):
    result = asyncio.run(run_pipeline(fake_source(collection).fetch, total_supply=4))
    assert result.ranking[-1].token_id == 4
    assert result.store[4]['rarity'] == {'totalRarityScore': 0, 'rank': 4}


def test_all_tokens_failing(fake_source):
    result = asyncio.run(run_pipeline(fake_source({}).fetch, total_supply=3))
    assert len(result.store) == 0
    assert result.ranking == []
    assert list(result.skipped) == [1, 2, 3]


def test_document_round_trip(tmp_path, collection, fake_source):
    result = asyncio.run(run_pipeline(fake_source(collection).fetch, total_supply=4))
    path = tmp_path / 'metadata.json'
    save_document(path, result.store, result.ranking)
    raw = json.loads(path.read_text(encoding='utf-8'))
    assert set(raw) == {'metadata', 'rarity'}
    assert raw['rarity'][0] == {'tokenId': 3, 'totalRarityScore': 150.0, 'rank': 1}
    assert raw['metadata']['3']['attributes'][0] == {'trait_type': 'Background', 'value': 'Red',
                                                     'score': 75.0, 'traitCount': 3}
    data = load_document(path)
    assert sorted(data['metadata']) == [1, 2, 3, 4]
    assert data['metadata'][3]['rarity'] == {'totalRarityScore': 150.0, 'rank': 1}


def test_save_document_overwrites(tmp_path, collection, fake_source):
    path = tmp_path / 'metadata.json'
    path.write_text('stale', encoding='utf-8')
    result = asyncio.run(run_pipeline(fake_source(collection).fetch, total_supply=4))
    save_document(path, result.store, result.ranking)
    assert len(load_document(path)['rarity']) == 4


def test_save_document_failure_propagates(tmp_path, collection, fake_source):
    result = asyncio.run(run_pipeline(fake_source(collection).fetch, total_supply=4))
    with pytest.raises(OSError):
        save_document(tmp_path / 'missing' / 'metadata.json', result.store, result.ranking)


def test_load_config(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text('collection:\n  total_supply: 10\n  contract_address: "0xabc"\n', encoding='utf-8')
    assert load_config(path)['collection'] == {'total_supply': 10, 'contract_address': '0xabc'}


CONFIG = """\
collection:
  contract_address: '0xf3e6dbbe461c6fa492cea7cb1f5c5ea660eb1b47'
  total_supply: 4
  rpc_url: http://localhost:8545
  request_timeout: 5
  max_concurrency: 1
  output: {output}
"""


@pytest.fixture
def cli(tmp_path, monkeypatch, collection, fake_source):
    source = fake_source(collection, failing={2})
    fetchers = []

    def make_fetcher(*args):
        fetchers.append(args)
        return source

    monkeypatch.setattr(pipeline, 'TokenMetadataFetcher', make_fetcher)
    config = tmp_path / 'config.yaml'
    config.write_text(CONFIG.format(output=tmp_path / 'metadata.json'), encoding='utf-8')
    return str(config), fetchers


def test_main_writes_document(tmp_path, cli, caplog):
    config, fetchers = cli
    result = CliRunner().invoke(pipeline.main, ['--config', config])
    assert result.exit_code == 0, result.output
    assert fetchers == [('0xf3e6dbbe461c6fa492cea7cb1f5c5ea660eb1b47', 'http://localhost:8545',
                         'https://ipfs.io/ipfs/', 5)]
    data = load_document(tmp_path / 'metadata.json')
    assert sorted(data['metadata']) == [1, 3, 4]
    assert [entry['tokenId'] for entry in data['rarity']] == [3, 1, 4]
    assert 'Skipped tokens: 2' in caplog.text


def test_main_output_and_concurrency_overrides(tmp_path, cli, monkeypatch):
    config, _ = cli
    calls = []
    real_run_pipeline = pipeline.run_pipeline

    def spy(fetch, total_supply, max_concurrency=1):
        calls.append((total_supply, max_concurrency))
        return real_run_pipeline(fetch, total_supply, max_concurrency)

    monkeypatch.setattr(pipeline, 'run_pipeline', spy)
    output = tmp_path / 'other.json'
    result = CliRunner().invoke(pipeline.main, ['--config', config, '--output', str(output),
                                                '--max-concurrency', '3'])
    assert result.exit_code == 0, result.output
    assert calls == [(4, 3)]
    assert len(load_document(output)['rarity']) == 3
    assert not (tmp_path / 'metadata.json').exists()


def test_main_fails_when_document_cannot_be_written(tmp_path, cli):
    config, _ = cli
    result = CliRunner().invoke(pipeline.main, ['--config', config,
                                                '--output', str(tmp_path / 'missing' / 'metadata.json')])
    assert result.exit_code != 0
    assert isinstance(result.exception, OSError)
