"""Tests for the middleware chain and error broadcast."""

from __future__ import annotations

import asyncio

import pytest

from dispatchly.chain import ChainState, MiddlewareChain, Pipeline
from dispatchly.errors import BadRequest, HTTPError
from dispatchly.request import Request
from dispatchly.response import Response


def _request(method: str = "GET", path: str = "/") -> Request:
    async def receive() -> dict:
        return {"type": "http.request", "body": b"", "more_body": False}

    scope = {"type": "http", "method": method, "path": path, "query_string": b"", "headers": []}
    return Request(scope, receive)


async def _run(pipeline: Pipeline, request: Request | None = None) -> tuple[Response, object]:
    response = Response()
    run = pipeline(request or _request(), response)
    await asyncio.wait_for(run.finish(), 1)
    return response, run


def _ok(request, response) -> None:
    response.text("ok")


# =====================================================================
# Registration
# =====================================================================


class TestRegistration:
    def test_use_and_use_error_fill_separate_lists(self) -> None:
        chain = MiddlewareChain()

        async def mw(request, response, next): ...

        async def eh(err, request, response, next): ...

        assert chain.use(mw) is mw
        assert chain.use_error(eh) is eh
        assert chain.middlewares == [mw]
        assert chain.error_handlers == [eh]

    def test_wrap_snapshots_current_lists(self) -> None:
        chain = MiddlewareChain()

        async def early(request, response, next): ...

        async def late(request, response, next): ...

        chain.use(early)
        pipeline = chain.wrap(_ok)
        chain.use(late)
        assert pipeline.middlewares == (early,)
        assert chain.wrap(_ok).middlewares == (early, late)


# =====================================================================
# Normal flow
# =====================================================================


@pytest.mark.asyncio
async def test_middlewares_run_in_registration_order() -> None:
    calls: list[str] = []
    chain = MiddlewareChain()

    for name in ("a", "b", "c"):

        async def mw(request, response, next, _name=name):
            calls.append(_name)
            await next()

        chain.use(mw)

    def handler(request, response) -> None:
        calls.append("handler")
        response.text("done")

    response, _run_state = await _run(chain.wrap(handler))
    assert calls == ["a", "b", "c", "handler"]
    assert response.body == b"done"


@pytest.mark.asyncio
async def test_sync_middleware_may_call_next_without_await() -> None:
    calls: list[str] = []
    chain = MiddlewareChain()

    def sync_mw(request, response, next) -> None:
        calls.append("sync")
        next()

    chain.use(sync_mw)

    def handler(request, response) -> None:
        calls.append("handler")
        response.text("ok")

    response, _state = await _run(chain.wrap(handler))
    assert calls == ["sync", "handler"]
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_middleware_post_processing_after_next() -> None:
    calls: list[str] = []
    chain = MiddlewareChain()

    async def around(request, response, next) -> None:
        calls.append("before")
        await next()
        calls.append("after")

    chain.use(around)

    async def handler(request, response) -> None:
        calls.append("handler")
        response.text("ok")

    await _run(chain.wrap(handler))
    assert calls == ["before", "handler", "after"]


@pytest.mark.asyncio
async def test_middleware_can_short_circuit() -> None:
    chain = MiddlewareChain()

    def deny(request, response, next) -> None:
        response.text("forbidden", status_code=403)

    chain.use(deny)
    handler_called = False

    def handler(request, response) -> None:
        nonlocal handler_called
        handler_called = True

    response, run = await _run(chain.wrap(handler))
    assert response.status_code == 403
    assert handler_called is False
    assert run.state is ChainState.RESPONSE_SENT


@pytest.mark.asyncio
async def test_handler_return_value_is_written() -> None:
    pipeline = Pipeline(lambda request, response: {"a": 1})
    response, _state = await _run(pipeline)
    assert response.status_code == 200
    assert response.get_header("content-type") == "application/json"
    assert response.body == b'{"a":1}'


@pytest.mark.asyncio
async def test_handler_return_string_is_text() -> None:
    pipeline = Pipeline(lambda request, response: "hi")
    response, _state = await _run(pipeline)
    assert response.body == b"hi"
    assert response.get_header("content-type").startswith("text/plain")


# =====================================================================
# Error path
# =====================================================================


@pytest.mark.asyncio
async def test_handler_error_reaches_every_error_handler_once_in_order() -> None:
    seen: list[tuple[str, BaseException]] = []
    chain = MiddlewareChain()
    boom = RuntimeError("boom")

    for name in ("first", "second", "third"):

        def eh(err, request, response, next, _name=name) -> None:
            seen.append((_name, err))

        chain.use_error(eh)

    def handler(request, response) -> None:
        raise boom

    _response, run = await _run(chain.wrap(handler))
    assert seen == [("first", boom), ("second", boom), ("third", boom)]
    assert run.error is boom


@pytest.mark.asyncio
async def test_broadcast_does_not_stop_after_a_response() -> None:
    seen: list[str] = []
    chain = MiddlewareChain()

    def writer(err, request, response, next) -> None:
        seen.append("writer")
        response.text("handled", status_code=418)

    def observer(err, request, response, next) -> None:
        seen.append("observer")
        assert response.headers_sent

    chain.use_error(writer)
    chain.use_error(observer)

    async def handler(request, response) -> None:
        raise ValueError("x")

    response, _state = await _run(chain.wrap(handler))
    assert seen == ["writer", "observer"]
    assert response.status_code == 418
    assert response.body == b"handled"


@pytest.mark.asyncio
async def test_fallback_500_when_no_handler_writes() -> None:
    chain = MiddlewareChain()
    chain.use_error(lambda err, request, response, next: None)

    def handler(request, response) -> None:
        raise KeyError("missing")

    response, run = await _run(chain.wrap(handler))
    assert response.status_code == 500
    assert response.body == b"Internal Server Error"
    assert run.state is ChainState.RESPONSE_SENT


@pytest.mark.asyncio
async def test_fallback_500_without_error_handlers() -> None:
    def handler(request, response) -> None:
        raise RuntimeError("no handlers")

    response, _state = await _run(Pipeline(handler))
    assert response.status_code == 500
    assert response.body


@pytest.mark.asyncio
async def test_fallback_keeps_http_error_status() -> None:
    chain = MiddlewareChain()

    async def reject(request, response, next) -> None:
        response.status_code = 400
        await next(BadRequest(detail="Invalid JSON body"))

    chain.use(reject)
    response, _state = await _run(chain.wrap(_ok))
    assert response.status_code == 400
    assert response.body == b"Invalid JSON body"


@pytest.mark.asyncio
async def test_next_with_error_skips_remaining_middlewares() -> None:
    calls: list[str] = []
    chain = MiddlewareChain()

    async def failing(request, response, next) -> None:
        calls.append("failing")
        await next(HTTPError(422, "nope"))

    async def skipped(request, response, next) -> None:
        calls.append("skipped")
        await next()

    chain.use(failing)
    chain.use(skipped)
    chain.use_error(lambda err, request, response, next: calls.append(f"error:{err.status}"))

    response, _state = await _run(chain.wrap(_ok))
    assert calls == ["failing", "error:422"]
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_middleware_exception_is_routed_to_error_handlers() -> None:
    seen: list[BaseException] = []
    chain = MiddlewareChain()

    def explode(request, response, next) -> None:
        raise LookupError("mw")

    chain.use(explode)
    chain.use_error(lambda err, request, response, next: seen.append(err))

    response, _state = await _run(chain.wrap(_ok))
    assert len(seen) == 1
    assert isinstance(seen[0], LookupError)
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_raising_error_handler_does_not_stop_broadcast() -> None:
    seen: list[str] = []
    chain = MiddlewareChain()

    def broken(err, request, response, next) -> None:
        seen.append("broken")
        raise RuntimeError("handler bug")

    def after(err, request, response, next) -> None:
        seen.append("after")

    chain.use_error(broken)
    chain.use_error(after)

    def handler(request, response) -> None:
        raise ValueError("x")

    response, _state = await _run(chain.wrap(handler))
    assert seen == ["broken", "after"]
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_resignalling_same_error_is_ignored() -> None:
    calls = 0
    chain = MiddlewareChain()

    async def resignal(err, request, response, next) -> None:
        nonlocal calls
        calls += 1
        await next(err)

    chain.use_error(resignal)

    def handler(request, response) -> None:
        raise ValueError("x")

    response, _state = await _run(chain.wrap(handler))
    assert calls == 1
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_async_work_reports_error_via_next() -> None:
    chain = MiddlewareChain()

    def deferred(request, response, next) -> None:
        loop = asyncio.get_running_loop()
        loop.call_soon(next, HTTPError(502, "upstream failed"))

    chain.use(deferred)
    response, _state = await _run(chain.wrap(_ok))
    assert response.status_code == 502
    assert response.body == b"upstream failed"


@pytest.mark.asyncio
async def test_stalled_middleware_leaves_request_pending() -> None:
    chain = MiddlewareChain()
    chain.use(lambda request, response, next: None)
    response = Response()
    run = chain.wrap(_ok)(_request(), response)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(response.wait_closed(), 0.05)
    assert run.state is ChainState.RUNNING
    assert run.index == 1
    await run.cancel()


@pytest.mark.asyncio
async def test_unserialisable_return_value_is_routed_to_error_handlers() -> None:
    seen: list[BaseException] = []
    chain = MiddlewareChain()
    chain.use_error(lambda err, request, response, next: seen.append(err))

    def handler(request, response) -> dict:
        return {"x": object()}

    response, _state = await _run(chain.wrap(handler))
    assert len(seen) == 1
    assert isinstance(seen[0], TypeError)
    assert response.status_code == 500
    assert response.body == b"Internal Server Error"


# =====================================================================
# Expiry
# =====================================================================


@pytest.mark.asyncio
async def test_expire_cancels_awaiting_middleware_and_broadcasts() -> None:
    seen: list[int] = []
    cancelled = asyncio.Event()
    chain = MiddlewareChain()

    async def slow(request, response, next) -> None:
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        await next()

    chain.use(slow)
    chain.use_error(lambda err, request, response, next: seen.append(err.status))
    response = Response()
    run = chain.wrap(_ok)(_request(), response)
    await asyncio.sleep(0)

    await asyncio.wait_for(run.expire(HTTPError(503, "late"), 1), 2)
    assert cancelled.is_set()
    assert seen == [503]
    assert response.status_code == 503
    assert response.body == b"late"


@pytest.mark.asyncio
async def test_expire_during_broadcast_writes_fallback_directly() -> None:
    calls = 0
    chain = MiddlewareChain()
    never = asyncio.Event()

    async def stuck(err, request, response, next) -> None:
        nonlocal calls
        calls += 1
        await never.wait()

    chain.use_error(stuck)

    def handler(request, response) -> None:
        raise ValueError("x")

    response = Response()
    run = chain.wrap(handler)(_request(), response)
    await asyncio.sleep(0.01)
    assert run.state is ChainState.ERROR

    await asyncio.wait_for(run.expire(HTTPError(503, "late"), 1), 2)
    assert calls == 1
    assert response.status_code == 503
    assert response.body == b"late"
