from .models import AssetRef, Quote, QuoteParams

__all__ = ["AssetRef", "Quote", "QuoteParams"]
