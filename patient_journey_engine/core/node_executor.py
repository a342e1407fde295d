"""
Single-step execution of journey nodes.

The executor never touches persisted state. It performs a node's effect and
returns the id of the node to run next, or None when the journey ends.
"""

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional
import logging

from ..models import ConditionalNode, DelayNode, MessageNode
from ..utils.errors import ExecutionError, RunCancelledError
from ..utils.logging_config import ProgressLogger
from .conditions import evaluate

logger = logging.getLogger(__name__)

# (run_id, patient_context, node) -> awaitable; real channel delivery plugs in here
MessageSender = Callable[[str, Mapping[str, Any], MessageNode], Awaitable[None]]


class NodeExecutor:
    """
    Executes MESSAGE, DELAY and CONDITIONAL nodes.

    Message delivery is delegated to ``message_sender``. Without one,
    messages are only logged.
    """

    def __init__(
        self,
        message_sender: Optional[MessageSender] = None,
        progress: Optional[ProgressLogger] = None
    ):
        """
        Initialize the executor.

        Args:
            message_sender: Async hook that delivers a MESSAGE node's text
            progress: Run event logger
        """
        self.message_sender = message_sender
        self.progress = progress or ProgressLogger()

    async def execute(
        self,
        node: Any,
        context: Mapping[str, Any],
        run_id: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[str]:
        """
        Execute one node.

        Args:
            node: Node to execute
            context: Patient context of the run
            run_id: Run the node belongs to
            cancel_event: Set when the run is cancelled; interrupts delays

        Returns:
            Id of the next node, or None if the journey ends here

        Raises:
            RunCancelledError: If cancelled while a delay is pending
            ExecutionError: If the node type is unknown
        """
        if isinstance(node, MessageNode):
            return await self._execute_message(node, context, run_id)
        if isinstance(node, DelayNode):
            return await self._execute_delay(node, run_id, cancel_event)
        if isinstance(node, ConditionalNode):
            return self._execute_conditional(node, context, run_id)
        raise ExecutionError(f"Unknown node type: {getattr(node, 'type', type(node).__name__)}")

    async def _execute_message(
        self,
        node: MessageNode,
        context: Mapping[str, Any],
        run_id: str
    ) -> Optional[str]:
        if self.message_sender is not None:
            await self.message_sender(run_id, context, node)

        self.progress.message_sent(
            run_id,
            patient_id=context.get("id"),
            message=node.message,
            language=context.get("language")
        )
        return node.next_node_id

    async def _execute_delay(
        self,
        node: DelayNode,
        run_id: str,
        cancel_event: Optional[asyncio.Event]
    ) -> Optional[str]:
        self.progress.delay_started(run_id, node.duration_seconds)

        if cancel_event is None:
            await asyncio.sleep(node.duration_seconds)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=node.duration_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                raise RunCancelledError(run_id)

        self.progress.delay_finished(run_id)
        return node.next_node_id

    def _execute_conditional(
        self,
        node: ConditionalNode,
        context: Mapping[str, Any],
        run_id: str
    ) -> Optional[str]:
        condition = node.condition
        result = evaluate(condition, context)

        self.progress.condition_evaluated(
            run_id,
            field=condition.field,
            operator=condition.operator.value,
            expected=condition.value,
            actual=context.get(condition.field),
            result=result
        )
        return node.on_true_next_node_id if result else node.on_false_next_node_id
