"""Client for the OpenSea v2 REST API used as the primary market-data source."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from cachetools import TTLCache
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import DataSourceConfig, get_app_config
from ..datalake.schemas import AssetInfo, CollectionStats, Listing, Offer, PricePoint
from ..monitoring.logger import get_logger
from ..utils.errors import TransientProviderError

DEFAULT_HEADERS = {"User-Agent": "nft-trading-bot/1.0", "Accept": "application/json"}
WEI_PER_ETH = 10**18

_INTERVAL_KEYS = {"one_day": "24h", "seven_day": "7d", "thirty_day": "30d"}


class _RetryableHTTPError(requests.HTTPError):
    """Server side failure worth retrying."""


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _wei_to_eth(value: Any, decimals: int = 18) -> Optional[float]:
    if value is None:
        return None
    try:
        return int(str(value)) / float(10**decimals)
    except ValueError:
        return _to_float(value)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalise_rarity(rank: Any, supply: Any) -> Optional[float]:
    """Map a rarity rank (1 = rarest) onto a 0..1 signal where 1 is rarest."""

    rank_value = _to_int(rank, 0)
    supply_value = _to_int(supply, 0)
    if rank_value <= 0 or supply_value <= 0:
        return None
    return max(0.0, min(1.0, 1.0 - (rank_value - 1) / supply_value))


class OpenSeaClient:
    """Thin wrapper around the OpenSea REST API with caching and retries.

    Blocking HTTP calls run in worker threads so the client satisfies the async
    ``MarketDataProvider`` protocol.
    """

    name = "opensea"

    def __init__(
        self,
        config: Optional[DataSourceConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        cache_ttl: Optional[int] = None,
    ) -> None:
        self._config = config or get_app_config().data_sources
        ttl = self._config.cache_ttl_seconds if cache_ttl is None else cache_ttl
        self._cache: TTLCache = TTLCache(maxsize=1024, ttl=max(ttl, 1))
        self._session = session or requests.Session()
        self._logger = get_logger(__name__)

    @property
    def base_url(self) -> str:
        url = self._config.opensea_testnet_base_url if self._config.use_testnet else self._config.opensea_base_url
        return str(url).rstrip("/")

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, _RetryableHTTPError)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
    )
    def _get(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        url = f"{self.base_url}{path}"
        headers = dict(DEFAULT_HEADERS)
        if self._config.opensea_api_key:
            headers["X-API-KEY"] = self._config.opensea_api_key
        response = self._session.get(
            url,
            params=params,
            headers=headers,
            timeout=self._config.http_timeout,
        )
        if response.status_code == 404:
            return None
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableHTTPError(f"OpenSea API error: {response.status_code}", response=response)
        response.raise_for_status()
        return response.json()

    def _request(self, operation: str, path: str, params: Optional[dict] = None) -> Optional[dict]:
        cache_key = (path, tuple(sorted((params or {}).items())))
        if cache_key in self._cache:
            return self._cache[cache_key]
        try:
            payload = self._get(path, params=params)
        except (RetryError, requests.RequestException) as exc:
            self._logger.warning("OpenSea %s request failed for %s: %s", operation, path, exc)
            raise TransientProviderError(f"opensea.{operation}", exc) from exc
        self._cache[cache_key] = payload
        return payload

    # ------------------------------------------------------------------
    # Synchronous fetchers
    # ------------------------------------------------------------------

    def resolve_collection_slug(self, collection_id: str) -> str:
        """Contract addresses are translated to collection slugs; slugs pass through."""

        if not collection_id.lower().startswith("0x"):
            return collection_id
        payload = self._request(
            "contract", f"/api/v2/chain/{self._config.chain}/contract/{collection_id}"
        )
        slug = (payload or {}).get("collection")
        return str(slug) if slug else collection_id

    def fetch_asset(self, contract_address: str, token_id: str) -> Optional[AssetInfo]:
        payload = self._request(
            "asset",
            f"/api/v2/chain/{self._config.chain}/contract/{contract_address}/nfts/{token_id}",
        )
        if not payload:
            return None
        nft = payload.get("nft", payload)
        collection_id = nft.get("collection")
        supply: Optional[int] = None
        if collection_id:
            collection = self._request("collection", f"/api/v2/collections/{collection_id}") or {}
            supply = _to_int(collection.get("total_supply"), 0) or None
        rarity_data = nft.get("rarity") or {}
        traits = {
            str(trait.get("trait_type")): trait.get("value")
            for trait in nft.get("traits") or []
            if isinstance(trait, dict) and trait.get("trait_type") is not None
        }
        last_sale = nft.get("last_sale") or {}
        return AssetInfo(
            contract_address=str(nft.get("contract") or contract_address),
            token_id=str(nft.get("identifier") or token_id),
            name=nft.get("name") or f"Token #{token_id}",
            collection_id=str(collection_id) if collection_id else None,
            last_sale_price=_wei_to_eth(last_sale.get("total_price")) if last_sale else None,
            rarity=normalise_rarity(rarity_data.get("rank"), supply),
            traits=traits,
            collection_supply=supply,
            image_url=nft.get("image_url") or nft.get("display_image_url"),
        )

    def fetch_collection_stats(self, collection_id: str) -> Optional[CollectionStats]:
        slug = self.resolve_collection_slug(collection_id)
        collection = self._request("collection", f"/api/v2/collections/{slug}")
        stats = self._request("collection_stats", f"/api/v2/collections/{slug}/stats")
        if not collection and not stats:
            return None
        collection = collection or {}
        total = (stats or {}).get("total") or {}
        intervals: Dict[str, Dict[str, Any]] = {}
        for interval in (stats or {}).get("intervals") or []:
            key = _INTERVAL_KEYS.get(str(interval.get("interval")))
            if key:
                intervals[key] = interval

        def _interval(key: str, field: str) -> Any:
            return intervals.get(key, {}).get(field)

        return CollectionStats(
            collection_id=collection_id,
            name=str(collection.get("name") or slug),
            total_supply=_to_int(collection.get("total_supply")),
            holders_count=_to_int(total.get("num_owners")),
            floor_price=_to_float(total.get("floor_price")),
            market_cap=_to_float(total.get("market_cap")),
            total_volume=_to_float(total.get("volume")),
            volume_24h=_to_float(_interval("24h", "volume")),
            volume_7d=_to_float(_interval("7d", "volume")),
            volume_30d=_to_float(_interval("30d", "volume")),
            change_24h=_to_float(_interval("24h", "volume_change")),
            change_7d=_to_float(_interval("7d", "volume_change")),
            change_30d=_to_float(_interval("30d", "volume_change")),
            average_price=_to_float(total.get("average_price")),
            sales_24h=_to_int(_interval("24h", "sales")),
            sales_7d=_to_int(_interval("7d", "sales")),
            sales_30d=_to_int(_interval("30d", "sales")),
            twitter_username=collection.get("twitter_username") or None,
            discord_url=collection.get("discord_url") or None,
        )

    def fetch_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        payload = self._request(
            "listings",
            f"/api/v2/orders/{self._config.chain}/seaport/listings",
            params={"asset_contract_address": contract_address, "token_ids": token_id},
        )
        listings: List[Listing] = []
        for order in (payload or {}).get("orders") or []:
            price = _wei_to_eth(order.get("current_price"))
            if price is None:
                continue
            maker = order.get("maker") or {}
            listings.append(
                Listing(
                    marketplace=self.name,
                    price=price,
                    listing_id=order.get("order_hash"),
                    seller=maker.get("address") if isinstance(maker, dict) else maker,
                    expires_at=_parse_timestamp(order.get("expiration_time")),
                )
            )
        return listings

    def fetch_offers(self, contract_address: str, token_id: str) -> List[Offer]:
        payload = self._request(
            "offers",
            f"/api/v2/orders/{self._config.chain}/seaport/offers",
            params={"asset_contract_address": contract_address, "token_ids": token_id},
        )
        offers: List[Offer] = []
        for order in (payload or {}).get("orders") or []:
            price = _wei_to_eth(order.get("current_price"))
            if price is None:
                continue
            maker = order.get("maker") or {}
            offers.append(
                Offer(
                    marketplace=self.name,
                    price=price,
                    offer_id=order.get("order_hash"),
                    bidder=maker.get("address") if isinstance(maker, dict) else maker,
                )
            )
        return offers

    def fetch_sales(self, contract_address: str, token_id: str, limit: int = 20) -> List[PricePoint]:
        payload = self._request(
            "sales",
            f"/api/v2/events/chain/{self._config.chain}/contract/{contract_address}/nfts/{token_id}",
            params={"event_type": "sale", "limit": limit},
        )
        points: List[PricePoint] = []
        for event in (payload or {}).get("asset_events") or []:
            timestamp = _parse_timestamp(event.get("event_timestamp"))
            if timestamp is None:
                continue
            payment = event.get("payment") or {}
            price = _wei_to_eth(payment.get("quantity"), _to_int(payment.get("decimals"), 18))
            points.append(
                PricePoint(
                    timestamp=timestamp,
                    price=price,
                    marketplace=self.name,
                    transaction_hash=event.get("transaction"),
                    payment_token=payment.get("symbol"),
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
        return stats.floor_price if stats else None

    async def get_asset_listings(self, contract_address: str, token_id: str) -> List[Listing]:
        return await asyncio.to_thread(self.fetch_listings, contract_address, token_id)

    async def get_asset_offers(self, contract_address: str, token_id: str) -> List[Offer]:
        return await asyncio.to_thread(self.fetch_offers, contract_address, token_id)

    async def get_asset_trades(
        self, contract_address: str, token_id: str, limit: int = 20
    ) -> List[PricePoint]:
        return await asyncio.to_thread(self.fetch_sales, contract_address, token_id, limit)

    async def get_collection_stats(self, collection_id: str) -> Optional[CollectionStats]:
        return await asyncio.to_thread(self.fetch_collection_stats, collection_id)


__all__ = ["OpenSeaClient", "normalise_rarity"]
