"""Position ledger - current holdings for one account."""

from typing import Dict, Iterable, Iterator, List, Optional

from .models import Position, PositionChange


class PositionLedger:
    """
    Ticker -> open position map.

    Every position held has quantity > 0; applying a change whose quantity
    is zero or negative drops the entry instead of keeping it around.
    Instances are never mutated in place: ``apply`` returns a new ledger so
    a rejected or unpersisted order cannot leak into the confirmed state.
    """

    def __init__(self, positions: Optional[Iterable[Position]] = None):
        self._positions: Dict[str, Position] = {}
        for position in positions or ():
            if position.quantity > 0:
                self._positions[position.ticker] = position

    @classmethod
    def from_mapping(cls, positions: Dict[str, Position]) -> "PositionLedger":
        return cls(positions.values())

    def get(self, ticker: str) -> Optional[Position]:
        return self._positions.get(ticker)

    def all(self) -> List[Position]:
        return [self._positions[t] for t in sorted(self._positions)]

    def tickers(self) -> List[str]:
        return sorted(self._positions)

    def as_dict(self) -> Dict[str, Position]:
        return dict(self._positions)

    def apply(self, change: PositionChange) -> "PositionLedger":
        updated = dict(self._positions)
        if change.position is None or change.position.quantity <= 0:
            updated.pop(change.ticker, None)
        else:
            updated[change.ticker] = change.position
        return PositionLedger(updated.values())

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, ticker: object) -> bool:
        return ticker in self._positions

    def __iter__(self) -> Iterator[Position]:
        return iter(self.all())
