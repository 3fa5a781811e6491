"""Signer and transport over an AsyncWeb3 connection."""

import logging
from typing import Callable

from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from .errors import SignatureDeclinedError, SubmissionError, WrongNetworkError

logger = logging.getLogger(__name__)

# EIP-1193 "user rejected request"
USER_REJECTED_CODE = 4001


def _is_user_rejection(exc: Exception) -> bool:
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict):
        error = response.get("error") or {}
        if isinstance(error, dict) and error.get("code") == USER_REJECTED_CODE:
            return True
    text = str(exc).lower()
    return "user rejected" in text or "user denied" in text


def connect(rpc_url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))


class Web3Wallet:
    """Sends transactions for one account.

    With a local ``account`` transactions are built and signed in-process,
    after an optional ``confirm`` prompt. Without one they go through
    eth_sendTransaction and whatever sits behind the provider (a node with an
    unlocked account, a wallet bridge) signs them; only that path can attach
    a ``feeCurrency``.
    """

    def __init__(self, w3: AsyncWeb3, account=None, address: str | None = None,
                 rpc_urls: dict[int, str] | None = None,
                 confirm: Callable[[dict], bool] | None = None,
                 priority_gwei: float = 1.0,
                 receipt_timeout: float = 600.0):
        self.w3 = w3
        self.account = account
        self._address = account.address if account is not None else address
        self.rpc_urls = dict(rpc_urls or {})
        self.confirm = confirm
        self.priority_gwei = priority_gwei
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str | None:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def switch_chain(self, chain_id: int) -> None:
        if self.account is not None:
            url = self.rpc_urls.get(chain_id)
            if not url:
                raise WrongNetworkError(f"No RPC endpoint configured for chain {chain_id}")
            logger.info("Reconnecting signer to chain %s via %s", chain_id, url)
            self.w3 = connect(url)
            return

        response = await self.w3.provider.make_request(
            "wallet_switchEthereumChain", [{"chainId": hex(chain_id)}],
        )
        if response.get("error"):
            raise WrongNetworkError(f"Wallet refused to switch to chain {chain_id}")

    async def _fee_params(self) -> dict:
        base_fee = await self.w3.eth.gas_price
        prio_wei = Web3.to_wei(self.priority_gwei, "gwei")
        max_fee = max(base_fee + prio_wei, Web3.to_wei(1, "gwei"))
        return {
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(prio_wei, max_fee),
        }

    async def _build_tx(self, to: str, data: bytes, value: int) -> dict:
        tx = {
            "from": self.address,
            "to": Web3.to_checksum_address(to),
            "data": Web3.to_hex(data),
            "value": value,
            "nonce": await self.w3.eth.get_transaction_count(self.address),
            "chainId": await self.w3.eth.chain_id,
        }
        tx.update(await self._fee_params())
        try:
            tx["gas"] = int(await self.w3.eth.estimate_gas(tx) * 1.2)
        except Exception as e:
            # estimation fails when the call would revert; surface it before signing
            raise SubmissionError(f"Gas estimation failed: {e}") from e
        return tx

    async def send_transaction(self, to: str, data: bytes, value: int = 0,
                               fee_currency: str | None = None) -> str | None:
        """Sign and broadcast; returns the 0x transaction hash."""
        try:
            if self.account is not None:
                tx_hash = await self._send_signed(to, data, value, fee_currency)
            else:
                tx_hash = await self._send_via_provider(to, data, value, fee_currency)
        except (SignatureDeclinedError, SubmissionError):
            raise
        except Exception as e:
            if _is_user_rejection(e):
                raise SignatureDeclinedError() from e
            raise SubmissionError(f"Transaction failed to send: {e}") from e
        return Web3.to_hex(tx_hash) if tx_hash else None

    async def _send_signed(self, to, data, value, fee_currency):
        if fee_currency:
            logger.warning("Local signer cannot set feeCurrency %s; paying fees natively", fee_currency)
        tx = await self._build_tx(to, data, value)
        if self.confirm is not None and not self.confirm(tx):
            raise SignatureDeclinedError()
        signed = self.account.sign_transaction(tx)
        return await self.w3.eth.send_raw_transaction(signed.raw_transaction)

    async def _send_via_provider(self, to, data, value, fee_currency):
        tx = {
            "from": self.address,
            "to": Web3.to_checksum_address(to),
            "data": Web3.to_hex(data),
            "value": value,
        }
        if fee_currency:
            tx["feeCurrency"] = Web3.to_checksum_address(fee_currency)
        return await self.w3.eth.send_transaction(tx)

    async def wait_for_receipt(self, tx_hash: str):
        try:
            return await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout,
            )
        except TimeExhausted as e:
            raise SubmissionError(
                f"Transaction {tx_hash} not confirmed within {self.receipt_timeout:.0f}s"
            ) from e
        except Exception as e:
            # the transaction may still land; only its confirmation is unknown
            raise SubmissionError(f"Could not confirm transaction {tx_hash}: {e}") from e
