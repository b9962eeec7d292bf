"""Exchange rate API client (Frankfurter-compatible)."""

import json
import logging
from datetime import date
from decimal import Decimal

import httpx

from ..exceptions import RemoteSourceError
from ..models import ExchangeRate

logger = logging.getLogger(__name__)


class ExchangeRateClient:
    """Client for a Frankfurter-style exchange rate API.

    Both endpoints answer ``{"base": ..., "date": ..., "rates": {CODE: rate}}``.
    Every failure (transport error, timeout, non-2xx status, malformed body,
    missing target code) surfaces as ``RemoteSourceError``.
    """

    BASE_URL = "https://api.frankfurter.app"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        """Initialize the exchange rate client."""
        self.client = http_client or httpx.Client(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def get_latest_rate(self, base: str, target: str) -> ExchangeRate:
        """Get the current rate for base -> target."""
        return self._get_rate("/latest", base, target)

    def get_historical_rate(
        self, base: str, target: str, rate_date: date
    ) -> ExchangeRate:
        """
        Get the rate for base -> target on a given date.

        The API answers with the closest preceding business day, so the
        returned ``rate_date`` may be earlier than the requested one.
        """
        return self._get_rate(f"/{rate_date.isoformat()}", base, target)

    def _get_rate(self, path: str, base: str, target: str) -> ExchangeRate:
        """Fetch one rate and parse it at full precision."""
        logger.debug(f"Fetching exchange rate {base}->{target} from {path}")

        try:
            response = self.client.get(path, params={"from": base, "to": target})
            response.raise_for_status()
            # Parse floats as Decimal so no precision is lost on the rate
            data = response.json(parse_float=Decimal, parse_int=Decimal)
        except httpx.HTTPStatusError as e:
            logger.warning(f"Exchange rate API error: {e}")
            raise RemoteSourceError(
                f"Exchange rate API returned {e.response.status_code} "
                f"for {base}->{target}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error fetching {base}->{target}: {e}")
            raise RemoteSourceError(f"Exchange rate request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise RemoteSourceError(
                f"Exchange rate API returned invalid JSON for {base}->{target}"
            ) from e

        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict) or target not in rates:
            raise RemoteSourceError(f"No rate found for {base} to {target}")

        try:
            return ExchangeRate(
                base_currency=base,
                target_currency=target,
                rate_date=date.fromisoformat(data["date"]),
                rate=Decimal(rates[target]),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise RemoteSourceError(
                f"Malformed exchange rate response for {base}->{target}: {e}"
            ) from e
