"""Currency conversion backed by a persistent rate cache and a remote rate API."""

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .allocator import round_money
from .clients.rates import ExchangeRateClient
from .db import Database
from .exceptions import RateUnavailableError, RemoteSourceError
from .models import ConversionMode, ConvertedAmount, ConvertedValue, Expense, Money

logger = logging.getLogger(__name__)

ONE = Decimal("1")


@dataclass(frozen=True)
class ResolvedRate:
    """A rate together with the date it is valid for."""

    rate: Decimal
    rate_date: date
    approximate: bool = False  # True when a fallback rate from another date was used


class CurrentRateCache:
    """
    Short-lived in-memory cache for current rates.

    Best-effort only: losing it means more remote fetches, never wrong
    results. Safe to share between threads.
    """

    def __init__(
        self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str, str], tuple[Decimal, float]] = {}
        self._lock = threading.Lock()

    def get(self, base: str, target: str) -> Decimal | None:
        """Get a cached current rate if it hasn't expired."""
        key = (base, target, "current")
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            rate, stored_at = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return rate

    def set(self, base: str, target: str, rate: Decimal):
        """Store a current rate."""
        with self._lock:
            self._entries[(base, target, "current")] = (rate, self._clock())

    def clear(self):
        """Drop every cached rate."""
        with self._lock:
            self._entries.clear()


class CurrencyConverter:
    """
    Resolves exchange rates and converts amounts.

    Lookup order for current rates: in-memory cache, remote API, then the
    latest persisted rate. For historical rates: persisted rate for the
    exact date, remote API, then the latest persisted rate (flagged as
    approximate). Same-currency pairs short-circuit to 1.
    """

    def __init__(
        self,
        database: Database,
        client: ExchangeRateClient,
        cache: CurrentRateCache | None = None,
        max_workers: int = 4,
        today: Callable[[], date] = date.today,
    ):
        """
        Initialize the converter.

        Args:
            database: Persistent rate cache
            client: Remote rate source
            cache: In-memory cache for current rates (a fresh one if omitted)
            max_workers: Bound on currency groups resolved in parallel
            today: Clock used for "current" rate dates
        """
        self.db = database
        self.client = client
        self.cache = cache or CurrentRateCache()
        self.max_workers = max_workers
        self._today = today

    # ========================================================================
    # Rate resolution
    # ========================================================================

    def current_rate(self, base: str, target: str) -> Decimal:
        """Get the current base -> target rate."""
        return self.resolve_current(base, target).rate

    def historical_rate(self, base: str, target: str, rate_date: date) -> Decimal:
        """Get the base -> target rate for a specific date."""
        return self.resolve_historical(base, target, rate_date).rate

    def resolve_current(self, base: str, target: str) -> ResolvedRate:
        """
        Resolve the current rate with its rate date.

        Raises:
            RateUnavailableError: If the API fails and nothing is cached
        """
        today = self._today()
        if base == target:
            return ResolvedRate(ONE, today)

        cached = self.cache.get(base, target)
        if cached is not None:
            logger.debug(f"Using in-memory rate for {base}->{target}: {cached}")
            return ResolvedRate(cached, today)

        try:
            quote = self.client.get_latest_rate(base, target)
        except RemoteSourceError as e:
            logger.error(f"Failed to fetch current exchange rate {base}->{target}: {e}")
            return self._latest_fallback(base, target, None, e)

        self.cache.set(base, target, quote.rate)
        self.db.upsert_rate(base, target, today, quote.rate)
        logger.info(f"Fetched current rate {base}->{target}: {quote.rate}")
        return ResolvedRate(quote.rate, today)

    def resolve_historical(
        self, base: str, target: str, rate_date: date
    ) -> ResolvedRate:
        """
        Resolve the rate for a date, hitting the persistent cache first.

        Raises:
            RateUnavailableError: If the API fails and no rate of any date is cached
        """
        if base == target:
            return ResolvedRate(ONE, rate_date)

        cached = self.db.find_cached_rate(base, target, rate_date)
        if cached is not None:
            return ResolvedRate(cached.rate, cached.rate_date)

        return self._fetch_historical(base, target, rate_date)

    def _fetch_historical(
        self, base: str, target: str, rate_date: date
    ) -> ResolvedRate:
        """Fetch a historical rate and persist it under the requested date."""
        try:
            quote = self.client.get_historical_rate(base, target, rate_date)
        except RemoteSourceError as e:
            logger.error(
                f"Failed to fetch historical exchange rate {base}->{target} "
                f"for {rate_date}: {e}"
            )
            return self._latest_fallback(base, target, rate_date, e)

        # Keyed by the requested date so weekend/holiday lookups hit the cache
        self.db.upsert_rate(base, target, rate_date, quote.rate)
        logger.info(
            f"Fetched rate {base}->{target} for {rate_date} "
            f"(source date {quote.rate_date}): {quote.rate}"
        )
        return ResolvedRate(quote.rate, rate_date)

    def _latest_fallback(
        self,
        base: str,
        target: str,
        rate_date: date | None,
        error: RemoteSourceError,
    ) -> ResolvedRate:
        latest = self.db.find_latest_cached_rate(base, target)
        if latest is None:
            raise RateUnavailableError(base, target, rate_date) from error

        logger.warning(
            f"Using nearest available rate for {base}->{target} "
            f"from {latest.rate_date} (approximate)"
        )
        return ResolvedRate(latest.rate, latest.rate_date, approximate=True)

    # ========================================================================
    # Conversion
    # ========================================================================

    @staticmethod
    def convert(amount: Decimal, rate: Decimal) -> Decimal:
        """Multiply by the rate and round to 2 decimal places."""
        return round_money(amount * rate)

    def convert_expense(
        self, expense: Expense, target: str, mode: ConversionMode
    ) -> ConvertedAmount:
        """Convert a single expense. ``converted`` is None when nothing to do."""
        original = Money(amount=expense.amount, currency=expense.currency)
        if mode == ConversionMode.OFF or expense.currency == target:
            return ConvertedAmount(original=original)

        if mode == ConversionMode.SIMPLE:
            resolved = self.resolve_current(expense.currency, target)
        else:
            # Stamped with the expense date unless a fallback rate was used
            resolved = self.resolve_historical(expense.currency, target, expense.date)

        return _converted(expense, target, resolved)

    def convert_batch(
        self,
        expenses: Sequence[Expense],
        target: str,
        mode: ConversionMode,
    ) -> dict[int, ConvertedAmount]:
        """
        Convert many expenses with one rate lookup per currency (or date).

        Expenses already in ``target`` are left out of the result, as are
        expenses whose rate could not be resolved: a failing currency or
        date group is logged and skipped without affecting the others.

        Args:
            expenses: Expenses to convert (must have ids)
            target: Display currency code
            mode: off returns an empty map; simple uses today's rate per
                currency; smart uses each expense's own date

        Returns:
            Mapping of expense id to ConvertedAmount
        """
        if mode == ConversionMode.OFF:
            return {}

        by_currency: dict[str, list[Expense]] = defaultdict(list)
        for expense in expenses:
            if expense.currency != target:
                by_currency[expense.currency].append(expense)

        if not by_currency:
            return {}

        results: dict[int, ConvertedAmount] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_currency = {
                executor.submit(
                    self._convert_currency_group, currency, group, target, mode
                ): currency
                for currency, group in by_currency.items()
            }

            for future in as_completed(future_to_currency):
                currency = future_to_currency[future]
                try:
                    results.update(future.result())
                except RateUnavailableError as e:
                    logger.error(f"Skipping {currency} expenses: {e}")

        logger.info(
            f"Converted {len(results)} expenses to {target} ({mode.value} mode) "
            f"across {len(by_currency)} currencies"
        )
        return results

    def _convert_currency_group(
        self,
        currency: str,
        expenses: list[Expense],
        target: str,
        mode: ConversionMode,
    ) -> dict[int, ConvertedAmount]:
        """Convert one currency's expenses."""
        if mode == ConversionMode.SIMPLE:
            # One current rate for the whole group, stamped with a single "now"
            resolved = self.resolve_current(currency, target)
            return {e.id: _converted(e, target, resolved) for e in expenses}

        dates = {e.date for e in expenses}
        cached = self.db.find_cached_rates(currency, target, dates)
        rates: dict[date, ResolvedRate] = {
            d: ResolvedRate(rate.rate, d) for d, rate in cached.items()
        }

        for rate_date in sorted(dates - rates.keys()):
            try:
                rates[rate_date] = self._fetch_historical(currency, target, rate_date)
            except RateUnavailableError as e:
                logger.error(f"Skipping {currency} expenses on {rate_date}: {e}")

        results = {}
        for expense in expenses:
            resolved = rates.get(expense.date)
            if resolved is None:
                continue
            # A fallback rate keeps its own date so it reads as approximate
            results[expense.id] = _converted(expense, target, resolved)
        return results

    def calculate_total_in_currency(
        self, expenses: Sequence[Expense], target: str, mode: ConversionMode
    ) -> Decimal:
        """
        Sum expenses in the target currency.

        With conversion off only expenses already in ``target`` count.
        """
        if mode == ConversionMode.OFF:
            return sum(
                (e.amount for e in expenses if e.currency == target), Decimal(0)
            )

        conversions = self.convert_batch(expenses, target, mode)
        total = Decimal(0)
        for expense in expenses:
            conversion = conversions.get(expense.id)
            if conversion and conversion.converted:
                total += conversion.converted.amount
            elif expense.currency == target:
                total += expense.amount
            else:
                raise RateUnavailableError(expense.currency, target)

        return round_money(total)


def _converted(expense: Expense, target: str, resolved: ResolvedRate) -> ConvertedAmount:
    return ConvertedAmount(
        original=Money(amount=expense.amount, currency=expense.currency),
        converted=ConvertedValue(
            amount=CurrencyConverter.convert(expense.amount, resolved.rate),
            currency=target,
            rate=resolved.rate,
            rate_date=resolved.rate_date,
            approximate=resolved.approximate,
        ),
    )
