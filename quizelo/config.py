"""Settings from a YAML file, overlaid by CLI options and environment."""

from dataclasses import dataclass, field, fields

import yaml

from .abi import ALFAJORES_CHAIN_ID, ATTRIBUTION_CONSUMER, CELO_CHAIN_ID, CUSD_ADDRESS
from .generator import DEFAULT_ENDPOINT as DEFAULT_AI_ENDPOINT
from .generator import DEFAULT_MODEL as DEFAULT_AI_MODEL
from .referral import DEFAULT_ENDPOINT as DEFAULT_ATTRIBUTION_ENDPOINT


@dataclass(frozen=True)
class Network:
    name: str
    chain_id: int
    rpc_url: str
    explorer: str


NETWORKS = {
    "celo": Network("celo", CELO_CHAIN_ID, "https://forno.celo.org", "https://celoscan.io"),
    "alfajores": Network(
        "alfajores", ALFAJORES_CHAIN_ID,
        "https://alfajores-forno.celo-testnet.org",
        "https://alfajores.celoscan.io",
    ),
}


def network_for_env(env: str | None) -> str:
    """QUIZELO_ENV=dev targets the testnet, anything else mainnet."""
    return "alfajores" if env == "dev" else "celo"


def load_config(path: str | None) -> dict:
    if path is None:
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


@dataclass
class Settings:
    network: str = "celo"
    rpc_url: str | None = None
    contract_address: str | None = None
    private_key: str | None = None
    account: str | None = None
    constrained_host: bool = False
    fee_token: str = CUSD_ADDRESS
    attribution_consumer: str = ATTRIBUTION_CONSUMER
    attribution_endpoint: str | None = DEFAULT_ATTRIBUTION_ENDPOINT
    ai_endpoint: str = DEFAULT_AI_ENDPOINT
    ai_api_key: str | None = None
    ai_model: str = DEFAULT_AI_MODEL
    refresh_interval: float = 30.0
    message_ttl: float = 5.0
    receipt_timeout: float = 600.0
    priority_gwei: float = 1.0
    extra: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_config(cls, cfg: dict, **overrides) -> "Settings":
        """Build from a config dict; non-None ``overrides`` win over the file."""
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {k: v for k, v in cfg.items() if k in known}
        values.update({k: v for k, v in overrides.items() if v is not None})
        unknown = {k: v for k, v in cfg.items() if k not in known}
        settings = cls(**values, extra=unknown)
        if settings.network not in NETWORKS:
            raise ValueError(f"Unknown network: {settings.network}")
        return settings

    @property
    def chain(self) -> Network:
        return NETWORKS[self.network]

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    @property
    def resolved_rpc_url(self) -> str:
        return self.rpc_url or self.chain.rpc_url

    def rpc_urls(self) -> dict[int, str]:
        """Endpoints the signer may reconnect to when switching chain."""
        urls = {n.chain_id: n.rpc_url for n in NETWORKS.values()}
        urls[self.chain_id] = self.resolved_rpc_url
        return urls
