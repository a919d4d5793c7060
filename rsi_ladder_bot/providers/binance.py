from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

log = logging.getLogger("binance")


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _klines_path(market: str) -> str:
    return "/fapi/v1/klines" if market == "futures" else "/api/v3/klines"


def _ticker_path(market: str) -> str:
    return "/fapi/v1/ticker/price" if market == "futures" else "/api/v3/ticker/price"


class BinanceProvider:
    """Market data over Binance REST. Fetch failures return ``None`` instead of raising."""

    def __init__(
        self,
        market: str = "spot",
        *,
        rest_timeout_s: int = 20,
        rest_max_retries: int = 2,
        rest_backoff_s: float = 0.8,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s

        # REST robustness
        self.rest_max_retries = max(1, int(rest_max_retries))
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        # Slightly more granular timeouts than total-only.
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        url = _rest_base(self.market) + path
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, self.rest_max_retries + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    # Rate-limit / ban signals
                    if resp.status in (418, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                        log.warning(
                            "rest_rate_limited status=%s path=%s params=%s sleep=%.1fs body=%s",
                            resp.status,
                            path,
                            params,
                            sleep_s,
                            txt[:200],
                        )
                        last_err = RuntimeError(f"rate limited: {resp.status}")
                        if attempt >= self.rest_max_retries:
                            break
                        await asyncio.sleep(sleep_s)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise RuntimeError(f"Binance {path} failed: {resp.status} {txt[:500]}")

                    # Some proxies return a wrong content-type; be tolerant.
                    return await resp.json(content_type=None)

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= self.rest_max_retries:
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d path=%s params=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    path,
                    params,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        raise last_err if last_err is not None else RuntimeError(f"Binance {path} failed")

    async def fetch_close_series(self, symbol: str, interval: str, limit: int) -> Optional[List[float]]:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)}
        try:
            data = await self._get_json(_klines_path(self.market), params)
            # [4]=close
            return [float(row[4]) for row in data]
        except Exception as e:
            log.warning("klines_unavailable symbol=%s tf=%s limit=%d err=%s", symbol, interval, limit, e)
            return None

    async def fetch_price(self, symbol: str) -> Optional[float]:
        try:
            data = await self._get_json(_ticker_path(self.market), {"symbol": symbol.upper()})
            return float(data["price"])
        except Exception as e:
            log.warning("price_unavailable symbol=%s err=%s", symbol, e)
            return None
