"""Message Dispatcher - Routes decoded messages to capability handlers

Handlers form an ordered chain. Each handler receives the message and either
returns a response dict or NOT_HANDLED; the first handled result wins. Handlers
may be plain functions or coroutines.

`dispatch` always resolves to exactly one response. Handler exceptions become
HANDLER_ERROR responses and unclaimed messages become UNKNOWN_TYPE responses.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from download_router.frame import MessageType, ResponseCode, error_response, message_type


logger = logging.getLogger(__name__)


class _NotHandled:
    """Sentinel returned by a handler that does not claim a message"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_HANDLED"


NOT_HANDLED = _NotHandled()

Handler = Callable[[Dict[str, Any]], Any]


async def _call_handler(handler: Handler, message: Dict[str, Any]) -> Any:
    result = handler(message)
    if inspect.isawaitable(result):
        result = await result
    return result


class DispatchTable:
    """Explicit MessageType -> handler table

    The table is itself a handler: registered types are routed to their handler,
    everything else (unregistered or unknown tags) is NOT_HANDLED.
    """

    def __init__(self):
        self._handlers: Dict[MessageType, Handler] = {}

    def register(self, kind: MessageType, handler: Handler) -> "DispatchTable":
        """Register the handler for one request type

        Returns self for method chaining.
        """
        self._handlers[kind] = handler
        return self

    def lookup(self, raw_type: Any) -> Optional[Handler]:
        """Find the handler for a raw `type` tag, None if not registered"""
        kind = MessageType.from_str(raw_type)
        if kind is None:
            return None
        return self._handlers.get(kind)

    def registered_types(self) -> List[MessageType]:
        """Types this table handles, in registration order"""
        return list(self._handlers.keys())

    def __contains__(self, kind: MessageType) -> bool:
        return kind in self._handlers

    async def __call__(self, message: Dict[str, Any]) -> Any:
        handler = self.lookup(message_type(message))
        if handler is None:
            return NOT_HANDLED
        return await _call_handler(handler, message)


class MessageDispatcher:
    """Ordered handler chain with a never-raising dispatch"""

    def __init__(self, handlers: Optional[List[Handler]] = None):
        self._handlers: List[Handler] = list(handlers or [])

    def register(self, handler: Handler) -> None:
        """Append a handler to the chain

        Handlers are tried in registration order until one returns a response.
        """
        self._handlers.append(handler)

    @property
    def handlers(self) -> List[Handler]:
        return list(self._handlers)

    async def dispatch(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Route a message through the handler chain

        Args:
            message: Decoded request

        Returns:
            Exactly one response dict. Never raises.
        """
        raw_type = message_type(message)
        logger.debug("Dispatching message type=%s", raw_type)

        for handler in self._handlers:
            try:
                result = await _call_handler(handler, message)
            except Exception as e:
                logger.exception("Handler failed for message type=%s", raw_type)
                return error_response(
                    ResponseCode.HANDLER_ERROR,
                    str(e) or type(e).__name__,
                    response_type=raw_type,
                )

            if result is NOT_HANDLED or result is None:
                continue

            if not isinstance(result, dict):
                logger.error("Handler returned %s instead of a response dict", type(result).__name__)
                return error_response(
                    ResponseCode.HANDLER_ERROR,
                    f"Handler returned invalid response of type {type(result).__name__}",
                    response_type=raw_type,
                )

            return result

        return error_response(
            ResponseCode.UNKNOWN_TYPE,
            f"Unknown message type: {raw_type}",
            response_type=raw_type,
        )
