import httpx
from typing import List, Dict, Any, Optional
import logging
from gonka_tracker.errors import UpstreamError

logger = logging.getLogger(__name__)

PARTICIPANTS_PAGE_LIMIT = 10000


class GonkaClient:
    def __init__(
        self,
        base_urls: List[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_urls = base_urls or []
        self.timeout = timeout
        self.transport = transport
        self.current_url_index = 0

    def _get_current_url(self) -> str:
        if not self.base_urls:
            return ""
        return self.base_urls[self.current_url_index]

    def _rotate_url(self) -> None:
        if not self.base_urls:
            return
        self.current_url_index = (self.current_url_index + 1) % len(self.base_urls)
        logger.info(f"Rotated to URL: {self._get_current_url()}")

    @staticmethod
    def _join(base: str, path: str) -> str:
        return base.rstrip('/') + '/' + path.lstrip('/')

    async def _make_request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        attempts = len(self.base_urls) or 1
        last_error = None

        for attempt in range(attempts):
            url = self._join(self._get_current_url(), path)

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    logger.debug(f"Request to {url} with params {params}, headers {headers}")
                    response = await client.get(url, params=params, headers=headers)
                    response.raise_for_status()
                    return response.json()
            except Exception as e:
                last_error = e
                logger.warning(f"Request failed to {url} (attempt {attempt + 1}/{attempts}): {e}")
                self._rotate_url()

        raise UpstreamError(f"All URLs failed. Last error: {last_error}") from last_error

    async def get_latest_epoch(self) -> Dict[str, Any]:
        return await self._make_request("/v1/epochs/latest")

    async def get_current_epoch_participants(self) -> Dict[str, Any]:
        return await self._make_request("/v1/epochs/current/participants")

    async def get_epoch_participants(self, epoch_id: int) -> Dict[str, Any]:
        return await self._make_request(f"/v1/epochs/{epoch_id}/participants")

    async def get_all_participants(self, height: Optional[int] = None) -> Dict[str, Any]:
        params = {"pagination.limit": str(PARTICIPANTS_PAGE_LIMIT)}
        headers = {}

        if height:
            headers["X-Cosmos-Block-Height"] = str(height)

        return await self._make_request(
            "/chain-api/productscience/inference/inference/participant",
            params=params,
            headers=headers if headers else None
        )

    async def get_latest_height(self) -> int:
        data = await self._make_request("/chain-rpc/status")
        height = ((data.get("result") or {}).get("sync_info") or {}).get("latest_block_height") or "0"
        return int(height)

    async def get_block(self, height: int) -> Dict[str, Any]:
        return await self._make_request(f"/chain-api/cosmos/base/tendermint/v1beta1/blocks/{height}")

    async def get_models_all(self) -> Dict[str, Any]:
        return await self._make_request("/models/all")

    async def get_models_stats(self) -> Dict[str, Any]:
        return await self._make_request("/models/stats")
