"""Instrument table: market index <-> symbol mapping for the tracked perp markets."""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional


@dataclass(frozen=True)
class Instrument:
    """A tradable perp market."""
    index: int
    symbol: str

    @property
    def channel_market(self) -> str:
        """Market name used in upstream subscribe requests (e.g. "SOL-PERP")."""
        return f"{self.symbol}-PERP"


class InstrumentTable:
    """Immutable lookup over the configured instruments, ordered by market index."""

    def __init__(self, instruments: List[Instrument]):
        self._by_index: Dict[int, Instrument] = {}
        for instrument in sorted(instruments, key=lambda i: i.index):
            if instrument.index in self._by_index:
                raise ValueError(f"Duplicate market index {instrument.index}")
            self._by_index[instrument.index] = instrument

    @classmethod
    def from_mapping(cls, markets: Mapping[str, int]) -> "InstrumentTable":
        """Build from a symbol -> market index mapping (as configured)."""
        return cls([Instrument(index=int(idx), symbol=sym.upper()) for sym, idx in markets.items()])

    def get(self, index: int) -> Optional[Instrument]:
        return self._by_index.get(index)

    def symbol_for(self, index: int) -> str:
        instrument = self._by_index.get(index)
        return instrument.symbol if instrument else f"Market-{index}"

    def __contains__(self, index: object) -> bool:
        return index in self._by_index

    def __iter__(self) -> Iterator[Instrument]:
        return iter(self._by_index.values())

    def __len__(self) -> int:
        return len(self._by_index)
