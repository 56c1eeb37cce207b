from .base import Provider, QuoteProvider, StatusProvider, StatusResult, StatusValue
from .changenow import ChangeNowProvider
from .jupiter import JupiterProvider
from .lifi import LiFiProvider
from .okx import OkxDexProvider

__all__ = [
    "Provider",
    "QuoteProvider",
    "StatusProvider",
    "StatusResult",
    "StatusValue",
    "ChangeNowProvider",
    "JupiterProvider",
    "LiFiProvider",
    "OkxDexProvider",
]
