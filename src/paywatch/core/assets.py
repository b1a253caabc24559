"""
Asset and fiat currency tables.

Precision is a fixed per-asset table, never inferred from a price or a
transaction amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from paywatch.core.exceptions import UnsupportedAsset, UnsupportedFiatCurrency


@dataclass(frozen=True)
class AssetInfo:
    """Static description of a settlement asset."""

    code: str
    coingecko_id: str
    decimals: int
    requires_tag: bool = False
    # Ledgers with deterministic finality need fewer confirmations than configured
    max_confirmations: int | None = None
    explorer_url: str = "https://blockchair.com/{asset}/transaction/{hash}"
    testnet_explorer_url: str | None = None

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, e.g. Decimal('0.000001')."""
        return Decimal(1).scaleb(-self.decimals)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round an amount to the asset's canonical precision."""
        return amount.quantize(self.quantum, rounding=ROUND_HALF_UP)

    def effective_confirmations(self, configured: int) -> int:
        """Confirmations actually required for this asset."""
        if self.max_confirmations is None:
            return configured
        return min(configured, self.max_confirmations)


ASSETS: dict[str, AssetInfo] = {
    "btc": AssetInfo("btc", "bitcoin", 8),
    "eth": AssetInfo("eth", "ethereum", 18),
    "usdt": AssetInfo("usdt", "tether", 6),
    "usdc": AssetInfo("usdc", "usd-coin", 6),
    "bnb": AssetInfo("bnb", "binancecoin", 18),
    "sol": AssetInfo("sol", "solana", 9),
    "xrp": AssetInfo(
        "xrp",
        "ripple",
        6,
        requires_tag=True,
        # A transaction in a validated ledger is final
        max_confirmations=1,
        explorer_url="https://xrpscan.com/tx/{hash}",
        testnet_explorer_url="https://testnet.xrpl.org/transactions/{hash}",
    ),
    "doge": AssetInfo("doge", "dogecoin", 8),
    "ltc": AssetInfo("ltc", "litecoin", 8),
    "bch": AssetInfo("bch", "bitcoin-cash", 8),
    "trx": AssetInfo("trx", "tron", 6),
    "algo": AssetInfo("algo", "algorand", 6),
}

SUPPORTED_FIAT = (
    "usd", "eur", "gbp", "jpy", "cad", "aud", "chf", "cny", "inr", "brl", "mxn",
    "krw", "sek", "nok", "dkk", "pln", "zar", "sgd", "hkd", "nzd",
)


def get_asset(code: str) -> AssetInfo:
    """Look up an asset by code (case-insensitive)."""
    info = ASSETS.get(code.strip().lower())
    if info is None:
        raise UnsupportedAsset(code)
    return info


def normalize_fiat(currency: str) -> str:
    """Validate a fiat code and return it upper-cased."""
    code = currency.strip().lower()
    if code not in SUPPORTED_FIAT:
        raise UnsupportedFiatCurrency(currency)
    return code.upper()


def explorer_url(
    asset: str,
    tx_hash: str,
    testnet: bool = False,
    test_mode: bool = False,
) -> str:
    """Build a block explorer link for a transaction."""
    if test_mode:
        return f"#test-transaction-{tx_hash}"
    info = get_asset(asset)
    template = info.explorer_url
    if testnet and info.testnet_explorer_url:
        template = info.testnet_explorer_url
    return template.format(asset=info.code, hash=tx_hash)
