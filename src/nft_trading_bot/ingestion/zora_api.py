"""Client for the Zora GraphQL API, the secondary market-data source."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import requests
from cachetools import TTLCache
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import DataSourceConfig, get_app_config
from ..datalake.schemas import AssetInfo, CollectionStats, Listing, Offer, PricePoint
from ..monitoring.logger import get_logger
from ..utils.errors import ConfigurationError, TransientProviderError
from .opensea_api import DEFAULT_HEADERS, _parse_timestamp, _RetryableHTTPError, _to_float, _to_int

# chain name -> (network, chain) as the API spells them
ZORA_NETWORKS = {
    "ethereum": ("ETHEREUM", "MAINNET"),
    "base": ("BASE", "BASE_MAINNET"),
    "optimism": ("OPTIMISM", "OPTIMISM_MAINNET"),
    "zora": ("ZORA", "ZORA_MAINNET"),
}

TOKEN_QUERY = """
query Token($address: String!, $tokenId: String!, $network: NetworkInput!) {
  token(token: {address: $address, tokenId: $tokenId}, network: $network) {
    token {
      collectionAddress
      collectionName
      tokenId
      name
      attributes { traitType value }
      image { url }
    }
  }
}
"""

COLLECTION_QUERY = """
query CollectionStats($address: String!, $network: NetworkInput!) {
  collection(address: $address, network: $network) { name totalSupply }
  aggregateStat {
    floorPrice(where: {collectionAddresses: [$address]}, network: $network)
    ownerCount(where: {collectionAddresses: [$address]}, networks: [$network])
    salesVolume(where: {collectionAddresses: [$address]}, networks: [$network]) { chainTokenPrice totalCount }
  }
}
"""

ASKS_QUERY = """
query Asks($address: String!, $tokenId: String!, $network: NetworkInput!) {
  markets(
    where: {tokens: [{address: $address, tokenId: $tokenId}]}
    filter: {marketFilters: [{marketType: V3_ASK, statuses: [ACTIVE]}]}
    networks: [$network]
  ) {
    nodes {
      market {
        marketAddress
        price { nativePrice { decimal } }
        properties { ... on V3Ask { seller } }
      }
    }
  }
}
"""

SALES_QUERY = """
query Sales($address: String!, $tokenId: String!, $network: NetworkInput!, $limit: Int!) {
  sales(
    where: {tokens: [{address: $address, tokenId: $tokenId}]}
    networks: [$network]
    pagination: {limit: $limit}
    sort: {sortKey: TIME, sortDirection: DESC}
  ) {
    nodes {
      sale {
        price { nativePrice { decimal currency { name } } }
        transactionInfo { blockTimestamp transactionHash }
      }
    }
  }
}
"""


class _GraphQLError(RuntimeError):
    """The API answered with errors and no data."""


def _native_price(price: Any) -> Optional[float]:
    native = (price or {}).get("nativePrice") or {}
    if native.get("decimal") is None:
        return None
    return _to_float(native.get("decimal"))


def _nodes(payload: Optional[dict], key: str) -> List[Dict[str, Any]]:
    return [node for node in ((payload or {}).get(key) or {}).get("nodes") or [] if isinstance(node, dict)]


class ZoraClient:
    """Zora market data: token metadata, V3 asks, sales and collection aggregates.

    Zora's offers module is not indexed, so no offers are reported.
    """

    name = "zora"

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        cache_ttl: Optional[int] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        if self._config.chain not in ZORA_NETWORKS:
            raise ConfigurationError(f"Zora does not index chain {self._config.chain!r}")
        network, chain = ZORA_NETWORKS[self._config.chain]
        self._network = {"network": network, "chain": chain}
        ttl = self._config.cache_ttl_seconds if cache_ttl is None else cache_ttl
        self._cache: TTLCache = TTLCache(maxsize=1024, ttl=max(ttl, 1))
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, _RetryableHTTPError)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
    )
    def _post(self, operation: str, query: str, variables: Dict[str, Any]) -> Optional[dict]:
        headers = dict(DEFAULT_HEADERS)
        if self._config.zora_api_key:
            headers["X-API-KEY"] = self._config.zora_api_key
        response = self._session.post(
            str(self._config.zora_api_url),
            json={"operationName": operation, "query": query, "variables": variables},
            headers=headers,
            timeout=self._config.http_timeout,
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableHTTPError(f"Zora API error: {response.status_code}", response=response)
        response.raise_for_status()
        body = response.json() or {}
        if body.get("errors") and not body.get("data"):
            messages = "; ".join(str(error.get("message", error)) for error in body["errors"])
            raise _GraphQLError(messages)
        return body.get("data")

    def _request(self, operation: str, query: str, **variables: Any) -> Optional[dict]:
        variables["network"] = self._network
        cache_key = (operation, json.dumps(variables, sort_keys=True))
        if cache_key in self._cache:
            return self._cache[cache_key]
        try:
            payload = self._post(operation, query, variables)
        except (RetryError, requests.RequestException, _GraphQLError) as exc:
            self._logger.warning("Zora %s request failed: %s", operation, exc)
            raise TransientProviderError(f"zora.{operation}", exc) from exc
        self._cache[cache_key] = payload
        return payload

    # ------------------------------------------------------------------
    # Synchronous fetchers
    # ------------------------------------------------------------------

    def fetch_asset(self, contract_address: str, token_id: str) -> Optional[AssetInfo]:
        payload = self._request("Token", TOKEN_QUERY, address=contract_address, tokenId=str(token_id))
        token = ((payload or {}).get("token") or {}).get("token")
        if not token:
            return None
        traits = {
            str(item.get("traitType")): item.get("value")
            for item in token.get("attributes") or []
            if isinstance(item, dict) and item.get("traitType") is not None
        }
        collection = token.get("collectionAddress") or contract_address
        return AssetInfo(
            contract_address=str(collection),
            token_id=str(token.get("tokenId") or token_id),
            name=token.get("name") or f"Token #{token_id}",
            collection_id=str(collection),
            traits=traits,
            image_url=(token.get("image") or {}).get("url"),
        )

    def fetch_collection_stats(self, collection_id: str) -> Optional[CollectionStats]:
        if not collection_id.lower().startswith("0x"):
            # marketplace slugs do not resolve here
            return None
        payload = self._request("CollectionStats", COLLECTION_QUERY, address=collection_id) or {}
        collection = payload.get("collection") or {}
        aggregate = payload.get("aggregateStat") or {}
        if not collection and aggregate.get("floorPrice") is None:
            return None
        volume = aggregate.get("salesVolume") or {}
        return CollectionStats(
            collection_id=collection_id,
            name=str(collection.get("name") or collection_id),
            total_supply=_to_int(collection.get("totalSupply")),
            holders_count=_to_int(aggregate.get("ownerCount")),
            floor_price=_to_float(aggregate.get("floorPrice")),
            total_volume=_to_float(volume.get("chainTokenPrice")),
        )

    def fetch_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        payload = self._request("Asks", ASKS_QUERY, address=contract_address, tokenId=str(token_id))
        listings: List[Listing] = []
        for node in _nodes(payload, "markets"):
            market = node.get("market") or {}
            price = _native_price(market.get("price"))
            if price is None:
                continue
            listings.append(
                Listing(
                    marketplace=self.name,
                    price=price,
                    listing_id=market.get("marketAddress"),
                    seller=(market.get("properties") or {}).get("seller"),
                )
            )
        return listings

    def fetch_sales(self, contract_address: str, token_id: str, limit: int = 20) -> List[PricePoint]:
        payload = self._request(
            "Sales", SALES_QUERY, address=contract_address, tokenId=str(token_id), limit=limit
        )
        points: List[PricePoint] = []
        for node in _nodes(payload, "sales"):
            sale = node.get("sale") or {}
            info = sale.get("transactionInfo") or {}
            timestamp = _parse_timestamp(info.get("blockTimestamp"))
            if timestamp is None:
                continue
            native = (sale.get("price") or {}).get("nativePrice") or {}
            points.append(
                PricePoint(
                    timestamp=timestamp,
                    price=_native_price(sale.get("price")),
                    marketplace=self.name,
                    transaction_hash=info.get("transactionHash"),
                    payment_token=(native.get("currency") or {}).get("name"),
                )
            )
        points.sort(key=lambda point: point.timestamp, reverse=True)
        return points

    # ------------------------------------------------------------------
    # MarketDataProvider protocol
    # ------------------------------------------------------------------

    async def get_asset(self, contract_address: str, token_id: str) -> Optional[AssetInfo]:
        return await asyncio.to_thread(self.fetch_asset, contract_address, token_id)

    async def get_floor_price(self, collection_id: str) -> Optional[float]:
        stats = await self.get_collection_stats(collection_id)
        return stats.floor_price if stats and stats.floor_price > 0 else None

    async def get_asset_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        return await asyncio.to_thread(self.fetch_listings, contract_address, token_id)

    async def get_asset_offers(self, contract_address: str, token_id: str) -> List[Offer]:
        return []

    async def get_asset_trades(
        self, contract_address: str, token_id: str, limit: int = 20
    ) -> List[PricePoint]:
        return await asyncio.to_thread(self.fetch_sales, contract_address, token_id, limit)

    async def get_collection_stats(self, collection_id: str) -> Optional[CollectionStats]:
        return await asyncio.to_thread(self.fetch_collection_stats, collection_id)


__all__ = ["ZORA_NETWORKS", "ZoraClient"]
