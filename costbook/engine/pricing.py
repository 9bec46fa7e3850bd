"""Price lookup collaborator used by the calculation engine."""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Mapping, Optional, Protocol, Union

from .errors import PriceNotFound


@dataclass(frozen=True)
class PriceQuote:
    unit_price: float
    unit: Optional[str] = None
    title: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None


class PriceLookup(Protocol):
    def lookup_price(self, ref_key: str) -> PriceQuote:
        """Return the current quote for ref_key or raise PriceNotFound."""
        ...


class DictPriceLookup:
    """
    In-memory lookup over {ref_key: price} or {ref_key: PriceQuote}.

    Used by tests and by callers that already hold a price list.
    """

    def __init__(self, prices: Mapping[str, Union[float, int, PriceQuote]]):
        self._prices: Dict[str, PriceQuote] = {}
        for ref_key, entry in prices.items():
            if isinstance(entry, PriceQuote):
                self._prices[ref_key] = entry
            else:
                self._prices[ref_key] = PriceQuote(unit_price=float(entry))

    def lookup_price(self, ref_key: str) -> PriceQuote:
        try:
            return self._prices[ref_key]
        except KeyError:
            raise PriceNotFound(ref_key) from None

    def __contains__(self, ref_key: str) -> bool:
        return ref_key in self._prices

    def __len__(self) -> int:
        return len(self._prices)
