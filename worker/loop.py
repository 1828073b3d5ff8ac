"""Example server-side loop tracking a batch of customers."""

from __future__ import annotations

import logging
import time

from functionary.client import Functionary
from functionary.core.config import FunctionarySettings
from functionary.core.types import ORGANIZATION, ByEntity, Entity
from functionary.entities import Customer
from functionary.surface.memory import MemorySurfaceDelegate

logger = logging.getLogger(__name__)


def run_loop(iterations: int = 10, sleep_s: float = 0.05) -> None:
    """Emit identify and state calls for a few customers, then flush on exit."""
    settings = FunctionarySettings()
    functionary = Functionary(MemorySurfaceDelegate(), settings=settings)
    customer = Customer(functionary)
    organization = Entity(ORGANIZATION, ["acme"])

    functionary.identify(organization, properties={"plan": "enterprise"})
    for index in range(iterations):
        customer_id = f"customer-{index % 3}"
        customer.identify([customer_id], properties={"iteration": index})
        customer.join(["acme"], [customer_id])
        customer.track("worker.tick", {"iteration": index}, ids=[customer_id])
        functionary.event("org.heartbeat", target=ByEntity(organization))

        logger.info(
            "[%02d] customer=%s cached_states=%d",
            index,
            customer_id,
            functionary.hub.state.record_count,
        )
        time.sleep(sleep_s)

    functionary.flush()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
