"""
Auto Convert Monitor
Converts the BTC balance into local currency once it reaches the persisted threshold
"""

import logging
from decimal import Decimal
from typing import Any, Dict

from config import Config
from services.balance_ledger import BalanceLedger
from services.conversion_orchestrator import ConversionOrchestrator
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import WalletServiceError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

ONE_SATOSHI = Decimal("0.00000001")


class AutoConvertMonitor:
    """Periodic check driven by the job scheduler; the orchestrator itself never polls"""

    def __init__(self, conversions: ConversionOrchestrator, ledger: BalanceLedger):
        self.conversions = conversions
        self.ledger = ledger

    async def _largest_affordable_principal(self, btc_balance: Decimal, country) -> Decimal:
        """Largest principal whose principal + fees fits the balance, capped by the fee reserve"""
        max_convertible = await self.conversions.get_max_convertible_amount()

        # principal * (1 + protocol rate) + network fee <= balance, one satoshi of rounding slack
        estimate = MonetaryDecimal.floor_crypto(
            (btc_balance - Config.CONVERSION_NETWORK_FEE) / (Decimal("1") + Config.PROTOCOL_FEE_RATE)
        ) - ONE_SATOSHI
        principal = MonetaryDecimal.floor_crypto(min(estimate, max_convertible))

        # Local-currency rounding can still push the fee up by a satoshi
        for _ in range(10):
            if principal <= 0:
                return Decimal("0")
            quote = await self.conversions.quote(principal, country)
            if quote["total_cost"] <= btc_balance:
                return principal
            principal -= ONE_SATOSHI
        return Decimal("0")

    async def check_and_convert(self) -> Dict[str, Any]:
        """Run one auto-convert pass and report what happened"""
        result: Dict[str, Any] = {
            "success": True,
            "converted": False,
            "order_id": None,
            "amount": None,
            "errors": [],
            "timestamp": utc_now().isoformat(),
        }

        try:
            policy = await self.conversions.get_auto_convert_policy()
            if policy is None or not policy.enabled:
                logger.debug("⏭️ AUTO_CONVERT: disabled")
                result["reason"] = "disabled"
                return result

            btc_balance = await self.ledger.get_balance("btc")
            if btc_balance < policy.threshold:
                logger.debug(f"⏭️ AUTO_CONVERT: balance {btc_balance} below threshold {policy.threshold}")
                result["reason"] = "below_threshold"
                return result

            country = policy.country_id or await self.conversions.get_selected_country()
            principal = await self._largest_affordable_principal(btc_balance, country)
            if principal <= 0:
                logger.info(f"⏭️ AUTO_CONVERT: nothing convertible from {btc_balance} BTC")
                result["reason"] = "nothing_convertible"
                return result

            logger.info(f"🔄 AUTO_CONVERT: converting {principal} BTC (balance {btc_balance})")
            order = await self.conversions.convert(principal, country)

            result.update(converted=True, order_id=order.id, amount=str(principal))
            logger.info(f"✅ AUTO_CONVERT: {order.id} credited {order.to_amount} {order.to_currency}")
            return result

        except WalletServiceError as e:
            logger.error(f"❌ AUTO_CONVERT_FAILED: {e}")
            result["success"] = False
            result["errors"].append(str(e))
            return result
