from typing import Any, Callable, Dict, Optional

from temporalio import workflow

with workflow.unsafe.imports_passed_through():
    from tradeloop.common.config import settings
    from tradeloop.domain import orders as order_rules
    from tradeloop.domain.orders import Order, OrderStatus, OrderWorkflowError, Role


@workflow.defn(name="OrderFulfillmentWorkflow")
class OrderFulfillmentWorkflow:
    """
    Hosts one order while it moves towards completion.

    Signals apply the pure transition rules; a rejected signal never fails
    the workflow, it is recorded as the last error for the caller to query.
    The run ends once the order is completed.
    """

    @workflow.init
    def __init__(self, order: Dict[str, Any]) -> None:
        self._order = Order.model_validate(order)
        self._last_error: Optional[Dict[str, str]] = None

    @workflow.run
    async def run(self, order: Dict[str, Any]) -> Dict[str, Any]:
        workflow.logger.info("workflow_started", extra={"order_id": self._order.id, "status": self._order.status.value})

        await workflow.wait_condition(lambda: self._order.status == OrderStatus.COMPLETED)

        workflow.logger.info("order_completed", extra={"order_id": self._order.id})
        return self._order.model_dump(mode="json")

    def _new_exchange_code(self) -> str:
        # workflow.random() keeps replays deterministic
        return order_rules.generate_exchange_code(settings.EXCHANGE_CODE_LENGTH, rng=workflow.random())

    def _apply(self, transition: Callable[[Order], Order], action: str) -> None:
        try:
            updated = transition(self._order)
        except OrderWorkflowError as e:
            self._last_error = {"reason": e.reason, "message": e.message}
            workflow.logger.warning("transition_rejected", extra={"order_id": self._order.id, "action": action, "reason": e.reason})
            return
        workflow.logger.info("order_transitioned", extra={"order_id": updated.id, "from": self._order.status.value, "to": updated.status.value})
        self._order = updated
        self._last_error = None

    # --- Signals ---

    @workflow.signal(name="AdvanceOrder")
    def advance_order(self, target: str) -> None:
        """Signal to move the order to its next status."""
        try:
            status = OrderStatus(target)
        except ValueError:
            self._last_error = {"reason": order_rules.InvalidTransition.reason, "message": f"Unknown status {target!r}"}
            return
        self._apply(lambda o: order_rules.advance(o, status, code_factory=self._new_exchange_code), "advance")

    @workflow.signal(name="CompleteWithHandshake")
    def complete_with_handshake(self, exchange_code: str) -> None:
        """Signal carrying the code the seller received from the buyer."""
        self._apply(lambda o: order_rules.complete_with_handshake(o, exchange_code), "complete")

    # --- Queries ---

    @workflow.query
    def get_order(self) -> Dict[str, Any]:
        return self._order.model_dump(mode="json")

    @workflow.query
    def get_next_action(self, role: str) -> Optional[Dict[str, Any]]:
        action = order_rules.next_action(self._order, Role(role))
        return action.model_dump(mode="json") if action else None

    @workflow.query
    def get_exchange_code(self, role: str) -> Optional[str]:
        return order_rules.view_exchange_code(self._order, Role(role))

    @workflow.query
    def get_last_error(self) -> Optional[Dict[str, str]]:
        return self._last_error
