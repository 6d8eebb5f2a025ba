"""Wallet record on file: the custodial BTC and Lightning receive addresses"""

import logging
from typing import Optional

from models import WalletInfo
from services.key_value_store import KeyValueStore, WALLET_DATA_KEY
from utils.address_detector import is_valid_bitcoin_address, is_valid_lightning_address
from utils.error_handler import ErrorCodes, ValidationError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class WalletRepository:
    """Reads and writes the WalletInfo stored under `wallet_data`"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get(self) -> Optional[WalletInfo]:
        data = await self.store.get(WALLET_DATA_KEY)
        return WalletInfo.from_dict(data) if data else None

    async def save(self, wallet: WalletInfo) -> None:
        await self.store.set(WALLET_DATA_KEY, wallet.to_dict())
        logger.info(f"💾 WALLET_SAVED: {wallet.btc_address}")

    async def initialize_wallet(self, btc_address: str, lightning_address: str) -> WalletInfo:
        """Create the wallet record once; later calls return the existing record unchanged"""
        existing = await self.get()
        if existing is not None:
            logger.info(f"♻️ WALLET_EXISTS: {existing.btc_address}")
            return existing

        if not is_valid_bitcoin_address(btc_address):
            raise ValidationError(
                f"Invalid wallet BTC address: {btc_address!r}",
                code=ErrorCodes.INVALID_ADDRESS,
            )
        if not is_valid_lightning_address(lightning_address):
            raise ValidationError(
                f"Invalid wallet Lightning address: {lightning_address!r}",
                code=ErrorCodes.INVALID_ADDRESS,
            )

        wallet = WalletInfo(
            btc_address=btc_address,
            lightning_address=lightning_address,
            created_at=utc_now(),
        )
        await self.save(wallet)
        logger.info(f"✅ WALLET_INITIALIZED: {btc_address} / {lightning_address}")
        return wallet
