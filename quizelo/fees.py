"""Fee-currency selection for constrained host wallets (MiniPay)."""

from web3 import Web3

from .abi import CUSD_ADDRESS, USDC_ADDRESS, USDT_ADDRESS

# MiniPay only pays gas in these stablecoins, never in native CELO
MINIPAY_FEE_TOKENS = (CUSD_ADDRESS, USDC_ADDRESS, USDT_ADDRESS)
DEFAULT_FEE_TOKEN = CUSD_ADDRESS


def is_fee_token_supported(token: str) -> bool:
    return any(token.lower() == addr.lower() for addr in MINIPAY_FEE_TOKENS)


def resolve_fee_currency(selected_token: str | None, constrained_host: bool) -> str | None:
    """Token to pay network fees with, or None to use the native currency."""
    if not constrained_host or not selected_token:
        return None
    if is_fee_token_supported(selected_token):
        return Web3.to_checksum_address(selected_token)
    return DEFAULT_FEE_TOKEN
