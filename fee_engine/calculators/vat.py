"""
VAT Engine

Splits a fee into net / VAT / payable according to the rule's VAT mode:

INCLUDED: fee_gross already contains VAT -> extract it
    net = gross / (1 + rate)
    vat = gross - net
    total = gross

ON_TOP: fee_gross is net -> add VAT
    net = gross
    vat = gross * rate
    total = gross + vat

The split is the fee line's invoice, so it is quantized here, once, and the
derived component is computed from quantized parts. That keeps
net + vat == total (or == gross) exact to the cent.
"""

import logging
from datetime import date
from decimal import Decimal

from ..errors import ConfigurationError
from ..models import VatCalculation, VatMode, VatRate, in_window
from ..money import Money

logger = logging.getLogger(__name__)


class VatEngine:
    """VAT rate resolution and fee splitting."""

    def calculate(self, fee_gross, vat_rate: Decimal, mode: VatMode) -> VatCalculation:
        """Split `fee_gross` under `mode` at `vat_rate` (a fraction, 0.17 == 17%)."""
        if vat_rate < 0:
            raise ConfigurationError(f"VAT rate cannot be negative, got: {vat_rate}")

        gross = Money(fee_gross).quantize()

        if mode is VatMode.INCLUDED:
            net = (gross / (1 + vat_rate)).quantize()
            vat = gross - net
            return VatCalculation(
                fee_gross=gross.amount,
                vat_amount=vat.amount,
                fee_net=net.amount,
                total_payable=gross.amount,
                vat_rate=vat_rate,
            )

        if mode is VatMode.ON_TOP:
            net = gross
            vat = net.apply_rate(vat_rate).quantize()
            total = net + vat
            return VatCalculation(
                fee_gross=gross.amount,
                vat_amount=vat.amount,
                fee_net=net.amount,
                total_payable=total.amount,
                vat_rate=vat_rate,
            )

        raise TypeError(f"Unhandled VAT mode: {mode!r}")

    def get_applicable_rate(self, rates: list[VatRate], country_code: str, as_of_date: date) -> Decimal:
        """
        Resolve the VAT rate for a country on a date.

        Country rate whose window contains the date -> default rate whose
        window contains the date -> ConfigurationError. Never assumes 0%.
        """
        return self.resolve(rates, country_code, as_of_date).rate

    def resolve(self, rates: list[VatRate], country_code: str, as_of_date: date) -> VatRate:
        country_rates = [
            r for r in rates
            if r.country_code == country_code and in_window(as_of_date, r.effective_from, r.effective_to)
        ]
        if country_rates:
            # Latest effective_from wins if windows overlap
            return self._checked(max(country_rates, key=lambda r: (r.effective_from, r.id or "")))

        defaults = [r for r in rates if r.is_default and in_window(as_of_date, r.effective_from, r.effective_to)]
        if defaults:
            chosen = self._checked(max(defaults, key=lambda r: (r.effective_from, r.id or "")))
            logger.warning(
                f"No VAT rate for {country_code} on {as_of_date}; "
                f"using default rate {chosen.rate} ({chosen.country_code})"
            )
            return chosen

        raise ConfigurationError(
            f"No VAT rate effective on {as_of_date} for country {country_code} and no default rate exists"
        )

    def _checked(self, rate: VatRate) -> VatRate:
        if rate.rate < 0:
            raise ConfigurationError(
                f"VAT rate cannot be negative, got: {rate.rate} ({rate.country_code}, from {rate.effective_from})"
            )
        return rate
