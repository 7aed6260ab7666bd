from __future__ import annotations

import asyncio

import pytest

from browser_tester.errors import HostRPCError
from browser_tester.events import ID_ALL
from browser_tester.rpc import RecordingHostRPC
from browser_tester.ui import generate_file_id

from conftest import FakeUI


def _done(*files: str, sandbox_id: str | None = None) -> dict:
    return {"type": "done", "filenames": list(files), "id": sandbox_id or files[-1]}


def _error(sandbox_id: str, message: str = "boom") -> dict:
    return {
        "type": "error",
        "error": {"name": "Error", "message": message},
        "errorType": "Unhandled Error",
        "files": [sandbox_id],
        "id": sandbox_id,
    }


async def _deliver(orchestrator, *payloads: dict) -> None:
    for payload in payloads:
        orchestrator.channel.publish(payload)
    await orchestrator.channel.join()


@pytest.mark.asyncio
async def test_shared_mode_creates_single_all_sandbox(make_orchestrator, factory, host) -> None:
    o = make_orchestrator(isolate=False)
    await o.request_run(["a.test.js", "b.test.js", "c.test.js"])

    assert factory.ids == [ID_ALL]
    assert factory.created[0].size == (414, 896)
    assert factory.created[0].started is True
    assert o.tracker.running == {"a.test.js", "b.test.js", "c.test.js"}
    assert o.in_flight is False
    assert host.finished == 0
    await o.close()


@pytest.mark.asyncio
async def test_shared_mode_keeps_all_sandbox_until_run_ends(make_orchestrator, factory, host) -> None:
    o = make_orchestrator(isolate=False)
    await o.request_run(["a", "b", "c"])

    await _deliver(o, _done("a", "b", sandbox_id=ID_ALL))
    assert o.tracker.running == {"c"}
    assert factory.created[0].removed == 0
    assert host.finished == 0

    await _deliver(o, _done("c", sandbox_id=ID_ALL))
    assert o.tracker.is_empty()
    assert host.finished == 1
    assert host.drained == 1
    await o.close()


@pytest.mark.asyncio
async def test_isolated_mode_creates_sandboxes_strictly_in_order(make_orchestrator, factory, host, wait_until) -> None:
    o = make_orchestrator()
    run = asyncio.create_task(o.request_run(["a", "b", "c"]))

    await wait_until(lambda: factory.ids == ["a"])
    assert o.in_flight is True

    # A finish signal for some other sandbox does not advance the run.
    await _deliver(o, _done("x"))
    await asyncio.sleep(0.01)
    assert factory.ids == ["a"]

    await _deliver(o, _done("a"))
    await wait_until(lambda: factory.ids == ["a", "b"])
    assert factory.created[0].removed == 1
    assert ("remove", "a") in factory.log
    assert factory.log.index(("remove", "a")) < factory.log.index(("create", "b"))

    await _deliver(o, _error("b"))
    await wait_until(lambda: factory.ids == ["a", "b", "c"])
    assert factory.created[1].removed == 1
    assert host.errors == [({"name": "Error", "message": "boom"}, "Unhandled Error")]

    await _deliver(o, _done("c"))
    await asyncio.wait_for(run, 2)
    assert host.finished == 1
    # the last sandbox is kept for inspection
    assert factory.created[2].removed == 0
    await o.close()


@pytest.mark.asyncio
async def test_done_events_finalize_exactly_once(make_orchestrator, host) -> None:
    ui = FakeUI()
    o = make_orchestrator(isolate=False, ui=ui)
    await o.request_run(["a", "b"])

    await _deliver(o, _done("a", sandbox_id=ID_ALL))
    assert o.tracker.running == {"b"}
    assert not o.tracker.is_empty()
    assert host.finished == 0

    await _deliver(o, _done("b", sandbox_id=ID_ALL))
    assert o.tracker.running == frozenset()
    assert host.finished == 1
    assert ui.finished == 1

    # late signals after the run ended do not notify twice
    await _deliver(o, _done("b", sandbox_id=ID_ALL), _error(ID_ALL))
    assert host.finished == 1
    assert ui.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_error_from_all_sandbox_ends_the_whole_run(make_orchestrator, factory, host) -> None:
    o = make_orchestrator(isolate=False)
    await o.request_run(["x", "y", "z"])

    await _deliver(o, _error(ID_ALL))

    assert o.tracker.is_empty()
    assert factory.created[0].removed == 1
    assert ID_ALL not in o.registry
    assert host.errors == [({"name": "Error", "message": "boom"}, "Unhandled Error")]
    assert host.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_viewport_request_for_unknown_sandbox_fails_back(make_orchestrator, host) -> None:
    o = make_orchestrator(isolate=False)
    await o.request_run(["a", "b"])
    sent: list[dict] = []
    o.channel.on_outbound(sent.append)

    await _deliver(o, {"type": "viewport", "width": 100, "height": 50, "id": "ghost"})

    assert sent == [{"type": "viewport:fail", "id": "ghost", "error": "Cannot find iframe with id ghost"}]
    assert host.errors == [
        ({"name": "Teardown Error", "message": "Cannot find iframe with id ghost"}, "Teardown Error")
    ]
    assert o.tracker.running == {"a", "b"}
    assert host.finished == 0
    await o.close()


@pytest.mark.asyncio
async def test_viewport_request_resizes_live_sandbox(make_orchestrator, factory) -> None:
    o = make_orchestrator(isolate=False)
    await o.request_run(["a"])
    sent: list[dict] = []
    o.channel.on_outbound(sent.append)

    await _deliver(o, {"type": "viewport", "width": 1280, "height": 720, "id": ID_ALL})

    assert factory.created[0].size == (1280, 720)
    assert sent == [{"type": "viewport:done", "id": ID_ALL}]
    await o.close()


@pytest.mark.asyncio
async def test_unexpected_event_finalizes_without_ui_notification(make_orchestrator, host) -> None:
    ui = FakeUI()
    o = make_orchestrator(isolate=False, ui=ui)
    await o.request_run(["a"])

    await _deliver(o, {"type": "reload", "id": ID_ALL})

    assert host.errors == [
        ({"name": "Unexpected Event", "message": "Unexpected event: reload"}, "Unexpected Event")
    ]
    assert host.finished == 1
    assert ui.finished == 0
    await o.close()


@pytest.mark.asyncio
async def test_ui_released_when_run_completes_after_unexpected_event(make_orchestrator, host) -> None:
    ui = FakeUI()
    o = make_orchestrator(isolate=False, ui=ui)
    await o.request_run(["a", "b"])

    await _deliver(o, {"type": "reload", "id": ID_ALL})
    assert host.finished == 1
    assert ui.finished == 0

    await _deliver(o, _done("a", "b", sandbox_id=ID_ALL))
    assert o.tracker.is_empty()
    assert host.finished == 1
    assert host.drained == 1
    assert ui.finished == 1
    assert o.runs_finished == 1

    await _deliver(o, _done("b", sandbox_id=ID_ALL))
    assert ui.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_finalize_releases_ui_when_flush_fails(make_orchestrator) -> None:
    class _FailingFlushHost(RecordingHostRPC):
        async def drain(self) -> None:
            raise HostRPCError("flush failed")

    rpc = _FailingFlushHost()
    ui = FakeUI()
    o = make_orchestrator(ui=ui, rpc=rpc)

    with pytest.raises(HostRPCError):
        await o.finalize()

    assert ui.finished == 1
    assert rpc.finished == 0
    assert o.runs_finished == 1


@pytest.mark.asyncio
async def test_second_run_waits_for_the_first(make_orchestrator, factory, host, wait_until) -> None:
    o = make_orchestrator()
    first = asyncio.create_task(o.request_run(["a"]))
    await wait_until(lambda: factory.ids == ["a"])

    second = asyncio.create_task(o.request_run(["b"]))
    await asyncio.sleep(0.01)
    assert factory.ids == ["a"]
    assert o.tracker.running == {"a"}

    await _deliver(o, _done("a"))
    await wait_until(lambda: factory.ids == ["a", "b"])
    assert first.done()
    # the first run's sandbox was torn down before the second one was created
    assert factory.created[0].removed == 1
    assert o.tracker.running == {"b"}

    await _deliver(o, _done("b"))
    await asyncio.wait_for(second, 2)
    assert host.finished == 2
    assert o.runs_started == 2
    await o.close()


@pytest.mark.asyncio
async def test_open_starts_run_from_shared_state(make_orchestrator, factory) -> None:
    o = make_orchestrator(isolate=False, files=["a", "b"])
    await o.open()

    assert factory.ids == [ID_ALL]
    assert o.runs_started == 1
    await o.close()
    assert factory.created[0].removed == 1


@pytest.mark.asyncio
async def test_open_without_files_waits_for_host(make_orchestrator, factory) -> None:
    o = make_orchestrator()
    async with o:
        assert o.channel.running
        assert factory.ids == []
        assert o.runs_started == 0


@pytest.mark.asyncio
async def test_isolated_sandbox_timeout_moves_on(make_orchestrator, factory, host) -> None:
    o = make_orchestrator(timeout=0.05)

    await asyncio.wait_for(o.request_run(["a", "b"]), 2)

    assert factory.ids == ["a", "b"]
    assert [s.removed for s in factory.created] == [1, 1]
    assert [t for _, t in host.errors] == ["Timeout Error", "Timeout Error"]
    assert host.errors[0][0]["message"] == "Sandbox a did not finish within 0.05s"
    assert host.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_shared_sandbox_timeout_ends_run(make_orchestrator, factory, host) -> None:
    o = make_orchestrator(isolate=False, timeout=0.05)
    await o.request_run(["a", "b"])

    await asyncio.wait_for(o.wait_finished(), 2)

    assert o.tracker.is_empty()
    assert factory.created[0].removed == 1
    assert host.errors[0][1] == "Timeout Error"
    assert host.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_ui_mode_waits_for_container_and_delegates_viewport(make_orchestrator, factory, wait_until) -> None:
    ui = FakeUI()
    o = make_orchestrator(ui=ui, ui_mode=True)
    run = asyncio.create_task(o.request_run(["a"]))

    await asyncio.sleep(0.01)
    assert factory.ids == []

    o.containers.attach("ui-container")
    await wait_until(lambda: factory.ids == ["a"])
    assert factory.created[0].container == "ui-container"
    assert ui.containers == ["ui-container"]
    assert ui.viewports == [(414, 896)]
    assert factory.created[0].size is None

    await _deliver(o, _done("a"))
    await asyncio.wait_for(run, 2)
    assert ui.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_ui_selects_last_file_when_run_completes(make_orchestrator) -> None:
    ui = FakeUI()
    o = make_orchestrator(isolate=False, ui=ui)
    await o.request_run(["/repo/a.test.js", "/repo/b.test.js"])

    await _deliver(o, _done("/repo/a.test.js", "/repo/b.test.js", sandbox_id=ID_ALL))

    assert ui.file_ids == [generate_file_id("/repo/b.test.js", "/repo", "web")]
    await o.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(("flag", "forwarded"), [("1", True), ("false", False), ("", False)])
async def test_debug_is_gated_by_env_flag(make_orchestrator, host, flag: str, forwarded: bool) -> None:
    o = make_orchestrator(isolate=False, env={"TESTER_BROWSER_DEBUG": flag})
    await o.request_run(["a"])
    await _deliver(o, _done("a", sandbox_id=ID_ALL))

    if forwarded:
        assert host.debug_messages[0][0] == "channel event"
        assert '"type": "done"' in host.debug_messages[0][1]
    else:
        assert host.debug_messages == []
    await o.close()


@pytest.mark.asyncio
async def test_viewport_adapter_failure_is_acknowledged(make_orchestrator, host) -> None:
    class _BrokenUI(FakeUI):
        async def set_iframe_viewport(self, width: int, height: int) -> None:
            raise RuntimeError("layout gone")

    o = make_orchestrator(isolate=False)
    await o.request_run(["a"])
    o.viewport.ui = _BrokenUI()
    sent: list[dict] = []
    o.channel.on_outbound(sent.append)

    await _deliver(o, {"type": "viewport", "width": 10, "height": 10, "id": ID_ALL})
    assert sent == [{"type": "viewport:fail", "id": ID_ALL, "error": "layout gone"}]
    assert host.errors == [({"name": "RuntimeError", "message": "layout gone"}, "Viewport Error")]

    await _deliver(o, _done("a", sandbox_id=ID_ALL))
    assert host.finished == 1
    await o.close()


@pytest.mark.asyncio
async def test_failing_finish_is_reported_and_channel_keeps_routing(make_orchestrator, factory) -> None:
    class _BrokenFinishHost(RecordingHostRPC):
        async def finish_browser_tests(self) -> None:
            raise HostRPCError("host went away")

    rpc = _BrokenFinishHost()
    ui = FakeUI()
    o = make_orchestrator(isolate=False, ui=ui, rpc=rpc)
    await o.request_run(["a"])
    sent: list[dict] = []
    o.channel.on_outbound(sent.append)

    await _deliver(o, _done("a", sandbox_id=ID_ALL))
    assert ui.finished == 1
    assert rpc.errors == [({"name": "HostRPCError", "message": "host went away"}, "Unhandled Error")]

    await _deliver(o, {"type": "viewport", "width": 10, "height": 10, "id": ID_ALL})
    assert sent == [{"type": "viewport:done", "id": ID_ALL}]
    assert ui.viewports[-1] == (10, 10)
    assert factory.created[0].size is None
    await o.close()


@pytest.mark.asyncio
async def test_failed_bootstrap_closes_orchestrator(make_orchestrator, factory) -> None:
    async def _refuse_to_load() -> None:
        raise RuntimeError("navigation failed")

    real_create = factory.create

    async def _create(container, sandbox_id):
        sandbox = await real_create(container, sandbox_id)
        sandbox.start = _refuse_to_load
        return sandbox

    factory.create = _create
    o = make_orchestrator(isolate=False, files=["a"])

    with pytest.raises(RuntimeError, match="navigation failed"):
        async with o:
            pass

    assert factory.ids == [ID_ALL]
    assert factory.created[0].removed == 1
    assert len(o.registry) == 0
    assert not o.channel.running
    assert o.in_flight is False
