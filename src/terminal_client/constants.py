"""Shared API constants for the trading-terminal backend."""

INTERNAL_API_PREFIX = "internal/"

CACHED_BALANCES_PATH = f"{INTERNAL_API_PREFIX}sor/get_cached_account_balance"
PAIR_PRICE_PATH = f"{INTERNAL_API_PREFIX}sor/get_pair_price"
CONVERT_QTY_PATH = f"{INTERNAL_API_PREFIX}account/convert_qty"
ORDER_FORM_DATA_PATH = "api/order_form_data"

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_ERROR_MESSAGE = "An error occurred. Please try again."

# Exchange names as reported in the account directory.
HYPERLIQUID = "Hyperliquid"
PACIFICA = "Pacifica"
PARADEX = "Paradex"
DERIBIT = "Deribit"

# Stable assets with exchange-specific margin accounting.
USDC = "USDC"
USDH = "USDH"
USDT = "USDT"

UNIFIED_WALLET = "unified"
SPOT_WALLET = "spot"
POSITION_ASSET_TYPE = "position"

_EXCHANGE_ALIASES = {
    "MockExchange": "OKX",
    "BinancePM": "Binance",
}


def resolve_exchange_name(exchange_name: str) -> str:
    """Return the exchange name the pricing endpoints expect."""
    return _EXCHANGE_ALIASES.get(exchange_name, exchange_name)
