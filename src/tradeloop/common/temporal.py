from temporalio.client import Client
from structlog import get_logger

from tradeloop.common.config import settings

logger = get_logger()

async def get_temporal_client() -> Client:
    """
    Connect to the Temporal server named in settings.
    """
    target_host = settings.TEMPORAL_ADDRESS
    logger.info("connecting_to_temporal", address=target_host, namespace=settings.TEMPORAL_NAMESPACE)

    # In production, you would configure TLS here
    client = await Client.connect(target_host, namespace=settings.TEMPORAL_NAMESPACE)

    logger.info("connected_to_temporal", address=target_host)
    return client
