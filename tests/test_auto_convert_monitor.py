"""
Auto-convert monitor tests
"""

from decimal import Decimal

import pytest

from jobs.auto_convert_monitor import AutoConvertMonitor
from services.balance_ledger import BalanceLedger
from services.conversion_orchestrator import ConversionOrchestrator
from services.payment_network import SettlementProvider


class RejectingSettlement(SettlementProvider):
    async def settle(self, order):
        raise RuntimeError("settlement partner offline")


@pytest.fixture
def monitor(conversion_orchestrator, ledger):
    return AutoConvertMonitor(conversion_orchestrator, ledger)


class TestAutoConvertSkips:
    """Passes that convert nothing still report success"""

    @pytest.mark.asyncio
    async def test_disabled(self, monitor, ledger):
        result = await monitor.check_and_convert()

        assert result["success"] is True
        assert result["converted"] is False
        assert result["reason"] == "disabled"
        assert await ledger.get_balance("btc") == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_below_threshold(self, monitor, conversion_orchestrator):
        await conversion_orchestrator.enable_auto_convert(Decimal("0.02"))

        result = await monitor.check_and_convert()

        assert result["converted"] is False
        assert result["reason"] == "below_threshold"

    @pytest.mark.asyncio
    async def test_balance_within_reserve(self, memory_store, rate_cache, fee_collector, history, settlement_provider):
        ledger = BalanceLedger(memory_store, initial_balances={"btc": "0.0001"})
        conversions = ConversionOrchestrator(
            ledger=ledger,
            rate_cache=rate_cache,
            fee_collector=fee_collector,
            history=history,
            settlement_provider=settlement_provider,
            store=memory_store,
        )
        await conversions.enable_auto_convert(Decimal("0.0001"))

        result = await AutoConvertMonitor(conversions, ledger).check_and_convert()

        assert result["converted"] is False
        assert result["reason"] == "nothing_convertible"


class TestAutoConvertRuns:
    @pytest.mark.asyncio
    async def test_converts_largest_affordable_amount(self, monitor, conversion_orchestrator, ledger):
        await conversion_orchestrator.enable_auto_convert(Decimal("0.001"))

        result = await monitor.check_and_convert()

        assert result["success"] is True
        assert result["converted"] is True
        assert result["order_id"].startswith("conv_")
        # Capped by the 0.0001 BTC reserve
        assert result["amount"] == "0.0099"
        assert await ledger.get_balance("btc") == Decimal("0.0000405")
        assert await ledger.get_balance("zmw") == Decimal("8241.75")

    @pytest.mark.asyncio
    async def test_uses_policy_country(self, monitor, conversion_orchestrator, ledger):
        await conversion_orchestrator.set_selected_country("bw")
        await conversion_orchestrator.enable_auto_convert(Decimal("0.001"), "za")

        result = await monitor.check_and_convert()

        assert result["converted"] is True
        assert await ledger.get_balance("zar") > 0
        assert await ledger.get_balance("bwp") == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_selected_country(self, monitor, conversion_orchestrator, ledger):
        await conversion_orchestrator.set_selected_country("bw")
        await conversion_orchestrator.enable_auto_convert(Decimal("0.001"))

        await monitor.check_and_convert()

        assert await ledger.get_balance("bwp") > 0

    @pytest.mark.asyncio
    async def test_failed_conversion_reported(
        self, ledger, rate_cache, fee_collector, history, memory_store
    ):
        conversions = ConversionOrchestrator(
            ledger=ledger,
            rate_cache=rate_cache,
            fee_collector=fee_collector,
            history=history,
            settlement_provider=RejectingSettlement(),
            store=memory_store,
        )
        await conversions.enable_auto_convert(Decimal("0.001"))

        result = await AutoConvertMonitor(conversions, ledger).check_and_convert()

        assert result["success"] is False
        assert result["converted"] is False
        assert "settlement partner offline" in result["errors"][0]
        assert await ledger.get_balance("btc") == Decimal("0.01")
