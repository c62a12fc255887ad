# src/services/valuation.py

from decimal import ROUND_HALF_UP, Decimal
from typing import List

from src.config import Settings
from src.core.errors import ValuationError
from src.core.models import (
    PRICE_UNAVAILABLE,
    Holding,
    PortfolioHoldings,
    PortfolioSnapshot,
    PricedAsset,
)
from src.services.prices import PriceResolver
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="valuation-engine")

CENTS = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class ValuationEngine:
    """
    Turns holdings into a PortfolioSnapshot in the reporting currency.

    Native unit prices already include the FX conversion, so every asset is
    valued the same way: quantity x unit price, once.
    """

    def __init__(self, resolver: PriceResolver, settings: Settings):
        self.resolver = resolver
        self.settings = settings

    async def price_holding(self, holding: Holding) -> PricedAsset:
        unit_price = await self.resolver.resolve_price(holding.price_symbol, holding.asset_kind)

        if unit_price == PRICE_UNAVAILABLE:
            LOGGER.warning(f"No price for {holding.asset_symbol}; excluded from total")
            return PricedAsset(
                asset_symbol=holding.asset_symbol,
                asset_kind=holding.asset_kind,
                quantity=holding.quantity,
                locked_quantity=holding.locked_quantity,
                unit_price=PRICE_UNAVAILABLE,
                priced=False,
            )

        total_value = quantize(holding.quantity * unit_price)
        locked_value = quantize(holding.locked_quantity * unit_price)
        if total_value < 0 or locked_value < 0:
            raise ValuationError(
                f"Negative value for {holding.asset_symbol}: "
                f"{holding.quantity} x {unit_price} = {total_value}"
            )

        return PricedAsset(
            asset_symbol=holding.asset_symbol,
            asset_kind=holding.asset_kind,
            quantity=holding.quantity,
            locked_quantity=holding.locked_quantity,
            unit_price=unit_price,
            total_value=total_value,
            locked_value=locked_value,
        )

    async def value_portfolio(self, holdings: PortfolioHoldings) -> List[PricedAsset]:
        """Price every holding sequentially, in ledger_tokens, equities, native order."""
        priced = []
        for holding in holdings.all():
            priced.append(await self.price_holding(holding))
        return priced

    async def snapshot(self, holdings: PortfolioHoldings) -> PortfolioSnapshot:
        """
        Value the portfolio and sum the priced assets.

        Unpriced assets stay in `holdings` with priced=False and are listed in
        `unpriced_symbols`; they contribute nothing to either total.

        Raises:
            ValuationError: a priced asset came out negative
        """
        assets = await self.value_portfolio(holdings)

        total = sum((a.total_value for a in assets if a.priced), Decimal("0"))
        locked = sum((a.locked_value for a in assets if a.priced), Decimal("0"))
        unpriced = [a.asset_symbol for a in assets if not a.priced]

        LOGGER.info(
            f"Portfolio valued at {quantize(total)} {self.settings.reporting_currency} "
            f"({len(assets) - len(unpriced)} priced, {len(unpriced)} unpriced)"
        )
        return PortfolioSnapshot(
            holdings=assets,
            total_value=quantize(total),
            locked_value=quantize(locked),
            unpriced_symbols=unpriced,
            currency=self.settings.reporting_currency,
        )
