from __future__ import annotations

from typing import Any, Protocol

import httpx
from httpx import HTTPStatusError, RequestError

from rewards.core.config import settings
from rewards.core.errors import NotFound, Unavailable
from rewards.core.types import RawRewardSnapshot


class ChainClient(Protocol):
    def latest_epoch(self) -> int: ...

    def reward_parameters(self, epoch: int) -> RawRewardSnapshot: ...


class NamadaClient:
    """Reads epoch and MASP reward parameters from a node's HTTP gateway.

    No retries happen here; the crawl loop owns the retry policy.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.tendermint_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.node_timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    def _get_json(self, path: str) -> Any:
        try:
            with self._client() as client:
                resp = client.get(path)
                resp.raise_for_status()
                return resp.json()
        except HTTPStatusError:
            raise
        except RequestError as exc:
            raise Unavailable(f"node request {path} failed: {exc}") from exc
        except ValueError as exc:
            raise Unavailable(f"node returned a non-JSON body for {path}") from exc

    def latest_epoch(self) -> int:
        try:
            payload = self._get_json("/epoch")
        except HTTPStatusError as exc:
            raise Unavailable(f"node returned HTTP {exc.response.status_code} for /epoch") from exc
        try:
            return int(payload["epoch"])
        except (KeyError, TypeError, ValueError) as exc:
            raise Unavailable(f"unexpected epoch payload: {payload!r}") from exc

    def reward_parameters(self, epoch: int) -> RawRewardSnapshot:
        path = f"/masp/rewards/{epoch}"
        try:
            payload = self._get_json(path)
        except HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise NotFound(epoch) from exc
            raise Unavailable(f"node returned HTTP {exc.response.status_code} for {path}") from exc
        if not isinstance(payload, dict):
            raise Unavailable(f"unexpected reward payload for epoch {epoch}: {payload!r}")
        # Shape problems inside the token list are the extractor's to reject.
        return RawRewardSnapshot(epoch=epoch, entries=payload.get("tokens", []))


namada_client = NamadaClient()
