import asyncio
import signal

from structlog import get_logger
from temporalio.worker import Worker

from tradeloop.common.config import settings
from tradeloop.common.logging import configure_logging
from tradeloop.common.temporal import get_temporal_client
from tradeloop.workflows.fulfillment import OrderFulfillmentWorkflow

logger = get_logger()

async def main():
    configure_logging()
    logger.info("worker_startup", version="0.1.0")

    client = await get_temporal_client()

    interrupt_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info("signal_received", signal=sig)
        interrupt_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    # Order fulfillment has no activities, all transitions are pure
    order_worker = Worker(
        client,
        task_queue=settings.ORDERS_TASK_QUEUE,
        workflows=[OrderFulfillmentWorkflow],
    )

    logger.info("workers_initialized", queues=[settings.ORDERS_TASK_QUEUE])

    async with order_worker:
        logger.info("workers_started")
        await interrupt_event.wait()
        logger.info("shutdown_signal_received_draining")

    logger.info("shutdown_complete")

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
