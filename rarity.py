from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np


class MetadataStore:
    """Token id -> metadata dict for the tokens acquired in one run.

    Tokens are kept in insertion order, which the pipeline makes ascending
    token id order.
    """

    def __init__(self, tokens: Optional[Mapping[int, dict]] = None):
        self._tokens: Dict[int, dict] = {}
        for token_id, metadata in (tokens or {}).items():
            self.add(token_id, metadata)

    def add(self, token_id: int, metadata: dict):
        self._tokens[int(token_id)] = metadata

    def __getitem__(self, token_id: int) -> dict:
        return self._tokens[token_id]

    def __contains__(self, token_id) -> bool:
        return token_id in self._tokens

    def __iter__(self) -> Iterator[int]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def items(self):
        return self._tokens.items()

    def attributes(self) -> Iterator[dict]:
        for metadata in self._tokens.values():
            yield from metadata['attributes']

    def as_dict(self) -> Dict[int, dict]:
        return dict(self._tokens)


@dataclass(frozen=True)
class TraitStats:
    scores: Mapping[str, float]
    counts: Mapping[str, int]

    def __contains__(self, trait_type) -> bool:
        return trait_type in self.counts

    def __len__(self) -> int:
        return len(self.counts)


@dataclass(frozen=True)
class RankEntry:
    token_id: int
    total_rarity_score: float
    rank: int

    def to_dict(self) -> dict:
        return {'tokenId': self.token_id, 'totalRarityScore': self.total_rarity_score, 'rank': self.rank}

    def rarity_info(self) -> dict:
        return {'totalRarityScore': self.total_rarity_score, 'rank': self.rank}


def score_trait_types(store: MetadataStore) -> TraitStats:
    """Occurrence count and frequency score (percent of acquired tokens) per trait type.

    Reads the store only. Every attribute occurrence is counted, so a token
    carrying the same trait type twice adds two. Tokens without attributes
    still count towards the number of tokens. The score is plain frequency:
    the more common a trait type, the higher it scores.
    """
    counts = Counter(attr['trait_type'] for attr in store.attributes())
    nr_tokens = len(store)
    scores = {trait_type: count / nr_tokens * 100 for trait_type, count in counts.items()}
    return TraitStats(scores=MappingProxyType(scores), counts=MappingProxyType(dict(counts)))


def annotate_attributes(store: MetadataStore, stats: TraitStats):
    # overwrites, so annotating twice gives the same result
    for attr in store.attributes():
        trait_type = attr['trait_type']
        attr['score'] = stats.scores[trait_type]
        attr['traitCount'] = stats.counts[trait_type]


def total_rarity_score(metadata: dict) -> float:
    # unannotated attributes count as 0
    return sum(attr.get('score', 0) for attr in metadata['attributes'])


def calculate_rarity_scores(store: MetadataStore) -> Dict[int, float]:
    return {token_id: total_rarity_score(metadata) for token_id, metadata in store.items()}


def rank_tokens(rarity_scores: Mapping[int, float]) -> List[RankEntry]:
    """Sort tokens by descending total score and number them 1..n.

    Equal scores are ordered by ascending token id and still receive distinct
    consecutive ranks.
    """
    token_ids = np.array(list(rarity_scores.keys()), dtype=np.int64)
    scores = np.array(list(rarity_scores.values()), dtype=np.float64)
    # lexsort uses the last key as the primary one
    order = np.lexsort((token_ids, -scores))
    return [RankEntry(token_id=int(token_ids[i]), total_rarity_score=float(scores[i]), rank=rank)
            for rank, i in enumerate(order, start=1)]


def attach_rarity(store: MetadataStore, ranking: List[RankEntry]):
    for entry in ranking:
        store[entry.token_id]['rarity'] = entry.rarity_info()


def compute_rarity(store: MetadataStore) -> Tuple[TraitStats, List[RankEntry]]:
    """Score, annotate, aggregate and rank a fully acquired store in place."""
    stats = score_trait_types(store)
    annotate_attributes(store, stats)
    ranking = rank_tokens(calculate_rarity_scores(store))
    attach_rarity(store, ranking)
    return stats, ranking
