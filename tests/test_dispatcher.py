"""Tests for dispatcher - handler chain and dispatch table"""

import pytest

from download_router.dispatcher import NOT_HANDLED, DispatchTable, MessageDispatcher
from download_router.frame import MessageType


# TEST050: NOT_HANDLED is a falsy singleton
def test_not_handled_sentinel():
    from download_router.dispatcher import _NotHandled

    assert _NotHandled() is NOT_HANDLED
    assert not NOT_HANDLED
    assert repr(NOT_HANDLED) == "NOT_HANDLED"


# TEST051: the first handler returning a response wins
@pytest.mark.asyncio
async def test_first_handler_wins():
    calls = []

    def first(message):
        calls.append("first")
        return {"success": True, "from": "first"}

    def second(message):
        calls.append("second")
        return {"success": True, "from": "second"}

    dispatcher = MessageDispatcher([first, second])
    response = await dispatcher.dispatch({"type": "getVersion"})

    assert response["from"] == "first"
    assert calls == ["first"]


# TEST052: handlers returning NOT_HANDLED or None pass the message down the chain
@pytest.mark.asyncio
async def test_not_handled_falls_through():
    dispatcher = MessageDispatcher()
    dispatcher.register(lambda message: NOT_HANDLED)
    dispatcher.register(lambda message: None)
    dispatcher.register(lambda message: {"success": True, "third": True})

    response = await dispatcher.dispatch({"type": "getVersion"})
    assert response == {"success": True, "third": True}
    assert len(dispatcher.handlers) == 3


# TEST053: coroutine handlers are awaited
@pytest.mark.asyncio
async def test_async_handler_awaited():
    async def handler(message):
        return {"success": True, "echo": message["value"]}

    dispatcher = MessageDispatcher([handler])
    assert await dispatcher.dispatch({"type": "x", "value": 42}) == {"success": True, "echo": 42}


# TEST054: a handler exception becomes a HANDLER_ERROR response carrying the request type
@pytest.mark.asyncio
async def test_handler_exception_becomes_handler_error():
    def handler(message):
        raise ValueError("disk on fire")

    dispatcher = MessageDispatcher([handler])
    response = await dispatcher.dispatch({"type": "moveFile"})

    assert response == {
        "success": False,
        "error": "disk on fire",
        "code": "HANDLER_ERROR",
        "type": "moveFile",
    }


# TEST055: an exception without a message reports its type name
@pytest.mark.asyncio
async def test_handler_exception_without_message():
    async def handler(message):
        raise KeyError()

    response = await MessageDispatcher([handler]).dispatch({"type": "moveFile"})
    assert response["code"] == "HANDLER_ERROR"
    assert response["error"] == "KeyError"


# TEST056: a handler returning something other than a dict is a HANDLER_ERROR
@pytest.mark.asyncio
async def test_handler_invalid_return_type():
    response = await MessageDispatcher([lambda message: "ok"]).dispatch({"type": "getVersion"})
    assert response["success"] is False
    assert response["code"] == "HANDLER_ERROR"


# TEST057: an unclaimed message yields UNKNOWN_TYPE naming the type
@pytest.mark.asyncio
async def test_unclaimed_message_unknown_type():
    response = await MessageDispatcher().dispatch({"type": "bogus"})
    assert response == {
        "success": False,
        "error": "Unknown message type: bogus",
        "code": "UNKNOWN_TYPE",
        "type": "bogus",
    }


# TEST058: a message without a type tag is UNKNOWN_TYPE without a type field
@pytest.mark.asyncio
async def test_message_without_type():
    response = await MessageDispatcher().dispatch({"path": "/tmp"})
    assert response["code"] == "UNKNOWN_TYPE"
    assert "type" not in response


# TEST059: DispatchTable routes registered types and returns NOT_HANDLED for the rest
@pytest.mark.asyncio
async def test_dispatch_table_routing():
    table = (
        DispatchTable()
        .register(MessageType.GET_VERSION, lambda message: {"success": True, "type": "version"})
        .register(MessageType.VERIFY_FOLDER, lambda message: {"success": True, "exists": False})
    )

    assert MessageType.GET_VERSION in table
    assert MessageType.MOVE_FILE not in table
    assert table.registered_types() == [MessageType.GET_VERSION, MessageType.VERIFY_FOLDER]

    assert await table({"type": "getVersion"}) == {"success": True, "type": "version"}
    assert await table({"type": "moveFile"}) is NOT_HANDLED
    assert await table({"type": "bogus"}) is NOT_HANDLED
    assert await table({"type": 7}) is NOT_HANDLED


# TEST060: a DispatchTable followed by a fallback handler in a dispatcher chain
@pytest.mark.asyncio
async def test_dispatch_table_with_fallback():
    table = DispatchTable().register(MessageType.GET_VERSION, lambda message: {"success": True})
    dispatcher = MessageDispatcher([table, lambda message: {"success": True, "fallback": True}])

    assert await dispatcher.dispatch({"type": "getVersion"}) == {"success": True}
    assert await dispatcher.dispatch({"type": "bogus"}) == {"success": True, "fallback": True}
