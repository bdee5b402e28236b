from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal


_QUANT = Decimal("0.000001")


@dataclass(frozen=True, slots=True)
class CurrencyConversionRate:
    currency: str
    start_date: date
    end_date: date
    reference_rate: Decimal


class CurrencyConverter:
    """Converts amounts into the reference currency using dated reference rates.

    A rate row applies to ``start_date <= day <= end_date``. When several rows
    overlap, the one starting last wins. Amounts already in the reference
    currency are returned unchanged; amounts without an applicable rate convert
    to ``None`` so reports can tell "unknown" from "zero".
    """

    def __init__(self, reference_currency: str, rates: Iterable[CurrencyConversionRate] = ()) -> None:
        self.reference_currency = reference_currency.upper()
        self._rates: dict[str, list[CurrencyConversionRate]] = defaultdict(list)
        for rate in rates:
            self._rates[rate.currency.upper()].append(rate)
        for currency_rates in self._rates.values():
            currency_rates.sort(key=lambda item: item.start_date)

    def get_converted_value(self, amount: Decimal | None, currency: str | None, on_date: date | None) -> Decimal | None:
        if amount is None or currency is None:
            return None
        if currency.upper() == self.reference_currency:
            return Decimal(amount)
        if on_date is None:
            return None

        rate = self._find_rate(currency.upper(), on_date)
        if rate is None:
            return None
        return (Decimal(amount) * rate.reference_rate).quantize(_QUANT)

    def _find_rate(self, currency: str, on_date: date) -> CurrencyConversionRate | None:
        found: CurrencyConversionRate | None = None
        for rate in self._rates.get(currency, []):
            if rate.start_date > on_date:
                break
            if on_date <= rate.end_date:
                found = rate
        return found
