"""Bybit P2P USDT/RUB rate watcher."""

from .client import FetchError, P2PClient, TransportError, UpstreamError, build_request_body
from .config import WatchConfig, load_watch_config
from .controller import PAGE_COUNT, REFRESH_INTERVAL_SECONDS, PollController
from .feeds import Listing
from .pricing import calculate_average, derive_subsets, parse_price
from .state import RefreshToken, Snapshot

__all__ = [
    "FetchError",
    "Listing",
    "P2PClient",
    "PAGE_COUNT",
    "PollController",
    "REFRESH_INTERVAL_SECONDS",
    "RefreshToken",
    "Snapshot",
    "TransportError",
    "UpstreamError",
    "WatchConfig",
    "build_request_body",
    "calculate_average",
    "derive_subsets",
    "load_watch_config",
    "parse_price",
]
