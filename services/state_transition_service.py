"""
State Transition Service
========================

Validates and applies lifecycle transitions for transfers and conversion orders.

## Lifecycles

- transfer: pending → broadcasting → confirmed | failed
- conversion: pending → processing → completed | failed

Terminal states have no outgoing transitions; a transfer or order that reached
one is immutable.

## Usage

```python
from services.state_transition_service import StateTransitionService
from models import TransferStatus

StateTransitionService.transition(transfer, TransferStatus.BROADCASTING, context="SEND_ONCHAIN")
```
"""

import logging
from enum import Enum
from typing import Dict, Optional, Set, Union

from models import ConversionOrder, ConversionStatus, Transfer, TransferStatus
from utils.error_handler import StateTransitionError

logger = logging.getLogger(__name__)


class StateTransitionService:
    """
    Single registry of allowed transitions per entity type.

    `transition()` mutates the entity's status only after the move is validated;
    callers set the accompanying fields (tx hash, timestamps, failure reason).
    """

    TRANSITIONS: Dict[str, Dict[Enum, Set[Enum]]] = {
        "transfer": {
            TransferStatus.PENDING: {TransferStatus.BROADCASTING},
            TransferStatus.BROADCASTING: {TransferStatus.CONFIRMED, TransferStatus.FAILED},
            TransferStatus.CONFIRMED: set(),  # Terminal state
            TransferStatus.FAILED: set(),  # Terminal state
        },
        "conversion": {
            ConversionStatus.PENDING: {ConversionStatus.PROCESSING},
            ConversionStatus.PROCESSING: {ConversionStatus.COMPLETED, ConversionStatus.FAILED},
            ConversionStatus.COMPLETED: set(),  # Terminal state
            ConversionStatus.FAILED: set(),  # Terminal state
        },
    }

    @staticmethod
    def _entity_type_of(entity: Union[Transfer, ConversionOrder]) -> str:
        if isinstance(entity, Transfer):
            return "transfer"
        if isinstance(entity, ConversionOrder):
            return "conversion"
        raise ValueError(f"No lifecycle registered for {type(entity).__name__}")

    @staticmethod
    def validate_transition_only(entity_type: str, current_status: Enum, new_status: Enum) -> bool:
        """Pre-flight check without touching any entity"""
        transitions = StateTransitionService.TRANSITIONS.get(entity_type.lower())
        if transitions is None:
            raise ValueError(
                f"Unknown entity_type: {entity_type}. "
                f"Valid types: {list(StateTransitionService.TRANSITIONS.keys())}"
            )
        return new_status in transitions.get(current_status, set())

    @staticmethod
    def is_terminal(entity_type: str, status: Enum) -> bool:
        return not StateTransitionService.TRANSITIONS[entity_type][status]

    @staticmethod
    def transition(
        entity: Union[Transfer, ConversionOrder],
        new_status: Enum,
        context: Optional[str] = None,
    ) -> None:
        """
        Validate and apply a status change.

        Raises:
            StateTransitionError: the move is not allowed from the entity's current status
        """
        entity_type = StateTransitionService._entity_type_of(entity)
        current_status = entity.status
        context_tag = f"[{context}]" if context else ""

        if not StateTransitionService.validate_transition_only(entity_type, current_status, new_status):
            logger.error(
                f"❌ TRANSITION_BLOCKED {context_tag}: {entity_type} {entity.id} "
                f"{current_status.value} → {new_status.value}"
            )
            raise StateTransitionError(
                f"Invalid {entity_type} transition for {entity.id}: "
                f"{current_status.value} → {new_status.value}",
                details={"entity_id": entity.id, "from": current_status.value, "to": new_status.value},
            )

        entity.status = new_status
        logger.info(
            f"🔄 STATE_TRANSITION {context_tag}: {entity_type} {entity.id} "
            f"{current_status.value} → {new_status.value}"
        )
