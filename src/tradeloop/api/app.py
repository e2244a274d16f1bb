import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from temporalio.client import Client

from tradeloop.api.models import (
    AdvanceRequest,
    CompletenessResponse,
    DeviceFixRequest,
    GuardRequest,
    HandshakeRequest,
    OrderStartRequest,
    OrderStateResponse,
    PasswordChangeRequest,
)
from tradeloop.common.config import settings
from tradeloop.common.logging import configure_logging
from tradeloop.common.temporal import get_temporal_client
from tradeloop.domain import orders as order_rules
from tradeloop.domain.orders import (
    HandshakeMismatch,
    Order,
    OrderWorkflowError,
    Role,
    UnknownOrder,
)
from tradeloop.domain.profiles import (
    GuardDecision,
    OperationResult,
    Profile,
    completion_percentage,
    guard,
    is_complete,
    validate_password_change,
)
from tradeloop.geocoding.models import CityValidation, DevicePosition, ResolvedLocation
from tradeloop.geocoding.resolver import AddressResolver, validate_city_name
from tradeloop.geocoding.sensor import ReportedPositionSensor
from tradeloop.workflows.fulfillment import OrderFulfillmentWorkflow

logger = logging.getLogger("uvicorn")

temporal_client: Optional[Client] = None
address_resolver: Optional[AddressResolver] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global temporal_client, address_resolver
    configure_logging()
    logger.info("Initializing Temporal Client...")
    try:
        temporal_client = await get_temporal_client()
    except Exception as e:
        # Geocoding and profile endpoints stay usable without Temporal
        logger.error(f"Failed to connect to Temporal: {e}")
    address_resolver = AddressResolver.from_settings()
    yield
    logger.info("Shutting down API...")
    await address_resolver.aclose()


app = FastAPI(title="tradeloop API", version="0.1.0", lifespan=lifespan)

# --- Dependencies ---

def get_client() -> Client:
    if not temporal_client:
        raise HTTPException(status_code=503, detail="Temporal client not available")
    return temporal_client


def get_resolver() -> AddressResolver:
    if not address_resolver:
        raise HTTPException(status_code=503, detail="Address resolver not available")
    return address_resolver


def workflow_error_to_http(e: OrderWorkflowError) -> HTTPException:
    if isinstance(e, HandshakeMismatch):
        status_code = 422
    elif isinstance(e, UnknownOrder):
        status_code = 404
    else:
        status_code = 409
    return HTTPException(status_code=status_code, detail={"reason": e.reason, "message": e.message})


async def fetch_order(client: Client, order_id: str) -> Order:
    handle = client.get_workflow_handle(order_id)
    try:
        data = await handle.query(OrderFulfillmentWorkflow.get_order)
    except Exception as e:
        logger.warning(f"Could not query workflow {order_id}: {e}")
        raise workflow_error_to_http(UnknownOrder(f"Order {order_id} not found"))
    return Order.model_validate(data)

# --- Health ---

@app.get("/health")
async def health():
    return {"status": "healthy", "service": settings.SERVICE_NAME, "temporal": temporal_client is not None}

# --- Orders ---

@app.post("/orders/{order_id}/start")
async def start_order(
    order_id: str,
    request: OrderStartRequest,
    client: Client = Depends(get_client)
):
    """Start an OrderFulfillmentWorkflow for a new pending order."""
    try:
        order = Order(id=order_id, **request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        handle = await client.start_workflow(
            OrderFulfillmentWorkflow.run,
            order.model_dump(mode="json"),
            id=order_id,
            task_queue=settings.ORDERS_TASK_QUEUE,
        )
        return {"workflow_id": handle.id, "run_id": handle.result_run_id, "status": "started"}
    except Exception as e:
        logger.error(f"Failed to start workflow: {e}")
        raise HTTPException(status_code=409, detail=f"Workflow start failed: {str(e)}")


@app.get("/orders/{order_id}", response_model=OrderStateResponse)
async def get_order_state(
    order_id: str,
    role: Role = Query(...),
    client: Client = Depends(get_client)
):
    """Order as seen by ``role`` plus the action that role may take."""
    order = await fetch_order(client, order_id)
    handle = client.get_workflow_handle(order_id)
    last_error = await handle.query(OrderFulfillmentWorkflow.get_last_error)

    data = order.model_dump(mode="json")
    # Sellers learn the code only from the buyer
    if role == Role.SELLER:
        data["exchange_code"] = None
    return OrderStateResponse(
        order=data,
        next_action=order_rules.next_action(order, role),
        last_error=last_error,
    )


@app.post("/orders/{order_id}/advance")
async def advance_order(
    order_id: str,
    request: AdvanceRequest,
    client: Client = Depends(get_client)
):
    """Check the transition against the current state, then signal it."""
    order = await fetch_order(client, order_id)
    try:
        order_rules.check_advance(order, request.target)
    except OrderWorkflowError as e:
        raise workflow_error_to_http(e)

    await client.get_workflow_handle(order_id).signal(OrderFulfillmentWorkflow.advance_order, request.target.value)
    return {"status": "signal_sent", "target": request.target.value}


@app.post("/orders/{order_id}/complete")
async def complete_order(
    order_id: str,
    request: HandshakeRequest,
    client: Client = Depends(get_client)
):
    """Seller completion, gated on the buyer's exchange code."""
    order = await fetch_order(client, order_id)
    try:
        order_rules.complete_with_handshake(order, request.exchange_code)
    except OrderWorkflowError as e:
        logger.info(f"Completion rejected for {order_id}: {e.reason}")
        raise workflow_error_to_http(e)

    await client.get_workflow_handle(order_id).signal(
        OrderFulfillmentWorkflow.complete_with_handshake, request.exchange_code
    )
    return {"status": "signal_sent", "target": "completed"}


@app.get("/orders/{order_id}/exchange-code")
async def get_exchange_code(
    order_id: str,
    role: Role = Query(...),
    client: Client = Depends(get_client)
):
    if role != Role.BUYER:
        raise HTTPException(status_code=403, detail="Only the buyer can view the exchange code")
    order = await fetch_order(client, order_id)
    code = order_rules.view_exchange_code(order, role)
    if code is None:
        raise HTTPException(status_code=404, detail="Exchange code not generated yet")
    return {"order_id": order_id, "exchange_code": code}

# --- Locations ---

@app.get("/locations/validate-city", response_model=CityValidation)
async def validate_city(name: str = Query("")):
    return validate_city_name(name)


@app.get("/locations/forward", response_model=ResolvedLocation)
async def forward_geocode(
    city: str,
    state: str = "",
    country: Optional[str] = None,
    resolver: AddressResolver = Depends(get_resolver)
):
    checked = validate_city_name(city)
    if not checked.valid:
        return ResolvedLocation.failure(checked.error)
    return await resolver.resolve_forward(city.strip(), state.strip(), country)


@app.get("/locations/reverse", response_model=ResolvedLocation)
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    resolver: AddressResolver = Depends(get_resolver)
):
    return await resolver.resolve_reverse(lat, lng)


@app.post("/locations/device", response_model=ResolvedLocation)
async def device_location(
    request: DeviceFixRequest,
    resolver: AddressResolver = Depends(get_resolver)
):
    position = None
    if request.error_code is None:
        position = DevicePosition(latitude=request.latitude, longitude=request.longitude, accuracy=request.accuracy)
    sensor = ReportedPositionSensor(position=position, error_code=request.error_code)
    device_resolver = AddressResolver(resolver.client, sensor)
    return await device_resolver.resolve_from_device_location()

# --- Profiles ---

@app.post("/profiles/completeness", response_model=CompletenessResponse)
async def profile_completeness(profile: Profile):
    return CompletenessResponse(complete=is_complete(profile), percentage=completion_percentage(profile))


@app.post("/profiles/guard", response_model=GuardDecision)
async def profile_guard(request: GuardRequest):
    return guard(request.view, request.profile)


@app.post("/profiles/password/validate", response_model=OperationResult)
async def password_validate(request: PasswordChangeRequest):
    return validate_password_change(request.new_password, request.confirm_password)


def run():
    uvicorn.run("tradeloop.api.app:app", host=settings.SERVICE_HOST, port=settings.SERVICE_PORT)
