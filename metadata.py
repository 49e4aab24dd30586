from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

logger = logging.getLogger(__name__)

IPFS_PREFIX = 'ipfs://'
DEFAULT_IPFS_GATEWAY = 'https://ipfs.io/ipfs/'

# only the view we call, not a full ERC-721 ABI
TOKEN_URI_ABI = [{
    'inputs': [{'internalType': 'uint256', 'name': 'tokenId', 'type': 'uint256'}],
    'name': 'tokenURI',
    'outputs': [{'internalType': 'string', 'name': '', 'type': 'string'}],
    'stateMutability': 'view',
    'type': 'function',
}]


class RarityError(Exception):
    pass


class AcquisitionError(RarityError):
    pass


def ipfs_to_http(locator: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    if locator.startswith(IPFS_PREFIX):
        return gateway.rstrip('/') + '/' + locator[len(IPFS_PREFIX):]
    return locator


def adjust_image_url(metadata: dict, gateway: str = DEFAULT_IPFS_GATEWAY) -> dict:
    """Shallow copy of `metadata` with an ipfs:// image rewritten to the gateway."""
    adjusted = dict(metadata)
    image = adjusted.get('image')
    if not image:
        return adjusted
    if not isinstance(image, str):
        raise AcquisitionError(f'Invalid image locator {image!r}')
    adjusted['image'] = ipfs_to_http(image, gateway)
    return adjusted


def check_metadata(metadata) -> dict:
    if not isinstance(metadata, dict):
        raise AcquisitionError('Metadata is not a JSON object')
    attributes = metadata.get('attributes')
    if not isinstance(attributes, list):
        raise AcquisitionError('Metadata has no attributes list')
    for attr in attributes:
        if not isinstance(attr, dict) or not isinstance(attr.get('trait_type'), str):
            raise AcquisitionError(f'Attribute without a trait_type name: {attr!r}')
    return metadata


class TokenMetadataFetcher:
    """Looks up a token's URI on-chain and downloads the JSON it points to."""

    def __init__(self, contract_address: str, rpc_url: str, ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
                 timeout: float = 30, w3: Optional[Web3] = None, session: Optional[requests.Session] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        self.contract = self.w3.eth.contract(address=Web3.to_checksum_address(contract_address),
                                             abi=TOKEN_URI_ABI)
        self.ipfs_gateway = ipfs_gateway
        self.timeout = timeout
        self.session = session or requests.Session()

    def token_uri(self, token_id: int) -> str:
        try:
            return self.contract.functions.tokenURI(token_id).call()
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise AcquisitionError(f'tokenURI call failed: {e}') from e

    def fetch(self, token_id: int) -> dict:
        url = ipfs_to_http(self.token_uri(token_id), self.ipfs_gateway)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            metadata = response.json()
        except requests.RequestException as e:
            raise AcquisitionError(f'Request to {url} failed: {e}') from e
        except ValueError as e:
            raise AcquisitionError(f'Invalid JSON at {url}: {e}') from e
        return adjust_image_url(check_metadata(metadata), self.ipfs_gateway)


@dataclass(frozen=True)
class TokenResult:
    token_id: int
    metadata: Optional[dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def acquire_token(fetch: Callable[[int], dict], token_id: int, semaphore: asyncio.Semaphore) -> TokenResult:
    async with semaphore:
        try:
            metadata = await asyncio.to_thread(fetch, token_id)
        except AcquisitionError as e:
            logger.warning('Error fetching metadata for token %s: %s', token_id, e)
            return TokenResult(token_id, error=str(e))
    logger.debug('Fetched metadata for token %s', token_id)
    return TokenResult(token_id, metadata=metadata)


async def acquire_tokens(fetch: Callable[[int], dict], token_ids: Iterable[int],
                         max_concurrency: int = 1) -> List[TokenResult]:
    """Fetch every token, at most `max_concurrency` at a time.

    Results come back in the order of `token_ids` whatever order the fetches
    finish in. A failed fetch becomes a failed TokenResult; only
    AcquisitionError is treated as a per-token failure.
    """
    if max_concurrency < 1:
        raise ValueError('max_concurrency must be at least 1')
    semaphore = asyncio.Semaphore(max_concurrency)
    return list(await asyncio.gather(*(acquire_token(fetch, token_id, semaphore) for token_id in token_ids)))


def split_results(results: Iterable[TokenResult]):
    acquired: Dict[int, dict] = {}
    skipped: Dict[int, str] = {}
    for result in results:
        if result.ok:
            acquired[result.token_id] = result.metadata
        else:
            skipped[result.token_id] = result.error
    return acquired, skipped
