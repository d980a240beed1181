"""
Handler-facing glue: turn platform invocations into bridge calls.

The platform calls handle(event, context) once per inbound event. The event
supplies the correlation id; per-request failures come back as the error half
of an (error, response) pair instead of being raised.
"""

from typing import Any, Callable, Dict, Optional, Tuple

from .core.bridge import Bridge
from .core.errors import (
    BridgeClosedError,
    DuplicateIdError,
    EncodeError,
    SpawnError,
    WorkerExitedError,
    WriteAfterCloseError,
)
from .core.sync_wrapper import SyncBridge

# Attributes copied from a platform context object into the request context
CONTEXT_ATTRIBUTES = (
    ("aws_request_id", "awsRequestId"),
    ("function_name", "functionName"),
    ("function_version", "functionVersion"),
    ("invoked_function_arn", "invokedFunctionArn"),
    ("memory_limit_in_mb", "memoryLimitInMB"),
    ("log_group_name", "logGroupName"),
    ("log_stream_name", "logStreamName"),
)

# Errors scoped to one invocation; anything else propagates
REQUEST_ERRORS = (
    SpawnError,
    WorkerExitedError,
    WriteAfterCloseError,
    DuplicateIdError,
    EncodeError,
    BridgeClosedError,
    TimeoutError,
    ValueError,
)

HandlerResult = Tuple[Optional[BaseException], Any]


def context_to_dict(context: Any) -> Dict[str, Any]:
    """Convert a platform context (dict or object) into a JSON object."""
    if context is None:
        return {}
    if isinstance(context, dict):
        return dict(context)

    data = {}
    for attr, key in CONTEXT_ATTRIBUTES:
        value = getattr(context, attr, None)
        if value is not None:
            data[key] = value
    return data


def resolve_request_id(event: Any, context: Any = None) -> str:
    """
    Derive the correlation id for an invocation.

    Tries the gateway request id (event.requestContext.requestId), then
    event.id, then the platform's own request id on the context.

    Raises:
        ValueError: If no usable id is found
    """
    if isinstance(event, dict):
        request_context = event.get("requestContext")
        if isinstance(request_context, dict):
            request_id = request_context.get("requestId")
            if isinstance(request_id, str) and request_id:
                return request_id

        request_id = event.get("id")
        if isinstance(request_id, str) and request_id:
            return request_id

    if isinstance(context, dict):
        request_id = context.get("aws_request_id") or context.get("awsRequestId")
    else:
        request_id = getattr(context, "aws_request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id

    raise ValueError("Invocation carries no request id to correlate the reply with")


class InvocationHandler:
    """
    Async handler adapter around a Bridge.

    Usage:
        handler = InvocationHandler(Bridge(["./worker"]))
        error, response = await handler.handle(event, context)
    """

    def __init__(
        self,
        bridge: Bridge,
        id_resolver: Callable[[Any, Any], str] = resolve_request_id,
        timeout: Optional[float] = None,
    ):
        self.bridge = bridge
        self.id_resolver = id_resolver
        self.timeout = timeout

    async def handle(self, event: Any, context: Any = None) -> HandlerResult:
        """Forward one invocation to the worker and return (error, response)."""
        try:
            request_id = self.id_resolver(event, context)
            response = await self.bridge.call(
                request_id,
                event,
                context=context_to_dict(context),
                timeout=self.timeout,
            )
        except REQUEST_ERRORS as e:
            return e, None
        return None, response


def make_sync_handler(
    bridge: SyncBridge,
    id_resolver: Callable[[Any, Any], str] = resolve_request_id,
    timeout: Optional[float] = None,
) -> Callable[[Any, Any], HandlerResult]:
    """
    Build a blocking handler(event, context) for platforms that invoke synchronously.

    Usage:
        bridge = SyncBridge(Bridge(["./worker"]))
        handler = make_sync_handler(bridge)
        error, response = handler(event, context)
    """

    def handler(event: Any, context: Any = None) -> HandlerResult:
        try:
            request_id = id_resolver(event, context)
            response = bridge.call(
                request_id,
                event,
                context=context_to_dict(context),
                timeout=timeout,
            )
        except REQUEST_ERRORS as e:
            return e, None
        return None, response

    return handler
