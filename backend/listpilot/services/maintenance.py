"""Background maintenance loop: checkpoints unstable conversations and purges old activity."""

import asyncio
import logging

from listpilot.core.config import settings
from listpilot.services.conversation_state import ConversationStateManager

logger = logging.getLogger(__name__)


def run_maintenance(state: ConversationStateManager) -> dict[str, int]:
    """One maintenance pass. Returns counts for logging and tests."""
    checkpointed = 0
    for conversation_id in state.unstable_or_stale():
        if state.evaluate(conversation_id) == "unstable" and state.checkpoint(conversation_id):
            checkpointed += 1

    purged = state.purge_activity()
    if checkpointed or purged:
        logger.info(f"Maintenance: checkpointed {checkpointed} conversations, purged {purged} activity rows")
    return {"checkpointed": checkpointed, "purged": purged}


async def maintenance_loop(state: ConversationStateManager) -> None:
    """Main maintenance loop. Runs every ``maintenance_interval_seconds``."""
    logger.info("Maintenance loop started")

    while True:
        try:
            run_maintenance(state)
        except Exception as e:
            logger.error(f"Maintenance error: {e}")

        await asyncio.sleep(settings.maintenance_interval_seconds)
