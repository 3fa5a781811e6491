"""Off-chain attribution report for confirmed transactions."""

import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.divvi.xyz/submitReferral"


class AttributionReporter:
    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport

    async def report(self, tx_hash: str, chain_id: int) -> bool:
        """POST the transaction for attribution. HTTP errors propagate."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.endpoint, json={"txHash": tx_hash, "chainId": chain_id},
            )
            response.raise_for_status()
        logger.debug("Attribution accepted for %s on chain %s", tx_hash, chain_id)
        return True
