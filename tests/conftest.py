"""
Pytest fixtures: small in-memory collections and a fake metadata source.
"""

from __future__ import annotations

import pytest

from metadata import AcquisitionError


def build_token(*traits, image='ipfs://QmImage'):
    return {
        'name': 'Token',
        'image': image,
        'attributes': [{'trait_type': trait_type, 'value': value} for trait_type, value in traits],
    }


@pytest.fixture
def make_token():
    return build_token


@pytest.fixture
def collection():
    return {
        1: build_token(('Background', 'Red'), ('Hat', 'Cap')),
        2: build_token(('Background', 'Blue')),
        3: build_token(('Background', 'Red'), ('Hat', 'Crown'), ('Eyes', 'Laser')),
        4: build_token(),
    }


class FakeSource:
    """Serves metadata from a dict; listed ids fail like a broken gateway."""

    def __init__(self, tokens, failing=()):
        self.tokens = tokens
        self.failing = set(failing)
        self.calls = []

    def fetch(self, token_id):
        self.calls.append(token_id)
        if token_id in self.failing or token_id not in self.tokens:
            raise AcquisitionError(f'gateway timeout for {token_id}')
        return self.tokens[token_id]


@pytest.fixture
def fake_source():
    return FakeSource
