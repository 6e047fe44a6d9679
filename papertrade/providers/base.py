"""Quote source interface."""

from abc import ABC, abstractmethod

from ledger.domain.models import Quote


class QuoteSource(ABC):
    """Provides the last (previous) closing price for a ticker."""

    name: str = "quotes"

    @abstractmethod
    async def get_last_close(self, ticker: str) -> Quote:
        """
        Fetch the latest available close.

        Raises:
            QuoteFetchFailed: when no usable price is available
        """
        pass
