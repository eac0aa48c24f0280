"""Unit tests for SessionController."""

import asyncio

import pytest

from kvm_control.errors import (
    BackendUnavailable,
    CommandRejected,
    InvalidConfig,
    InvalidTransition,
)
from kvm_control.session import (
    SessionController,
    SessionPhase,
    SessionState,
    port_from_url,
)


class TestSessionState:
    """Test the tagged state values."""

    def test_running(self):
        state = SessionState.running("http://host:9921/kvm", 9921)
        assert state.is_running
        assert state.to_dict() == {
            "phase": "running",
            "url": "http://host:9921/kvm",
            "port": 9921,
            "message": "",
        }

    def test_error(self):
        state = SessionState.error("boom")
        assert state.phase is SessionPhase.ERROR
        assert not state.is_running
        assert state.message == "boom"

    @pytest.mark.parametrize("url,port", [
        ("http://host:9921/kvm", 9921),
        ("http://host/kvm", None),
        ("http://host:notaport/kvm", None),
    ])
    def test_port_from_url(self, url, port):
        assert port_from_url(url) == port


class TestStart:
    """Test start() transitions."""

    @pytest.mark.asyncio
    async def test_initial_state(self, controller):
        assert controller.state == SessionState.stopped()
        assert controller.connection_url() == ""
        assert controller.busy is False

    @pytest.mark.asyncio
    async def test_start_success(self, controller, fake_backend, reconciler):
        assert await controller.start(9921) is True

        assert controller.state == SessionState.running("http://host:9921", 9921)
        assert controller.server_url == "http://host:9921"
        assert controller.server_port == 9921
        assert controller.error_message == ""
        assert controller.busy is False
        fake_backend.start_server.assert_awaited_once_with(
            9921, reconciler.config.to_backend_options()
        )

    @pytest.mark.asyncio
    async def test_start_uses_given_config(self, controller, fake_backend, reconciler):
        custom = reconciler.config
        custom.framerate = 15

        await controller.start(9921, custom)
        assert fake_backend.options["framerate"] == 15

    @pytest.mark.asyncio
    async def test_low_bandwidth_scenario(self, controller, reconciler):
        reconciler.apply_preset("lowBandwidth")
        reconciler.set_field("use_h265", True)
        reconciler.set_field("selected_monitor", 2)

        await controller.start(9921, reconciler.config)

        assert controller.connection_url() == "http://host:9921/kvm?audio=true;codec=h265;monitor=2"

    @pytest.mark.asyncio
    async def test_backend_rejection_is_invalid_config(self, controller, fake_backend):
        fake_backend.start_server.side_effect = CommandRejected("start_server", "Address in use")

        with pytest.raises(InvalidConfig, match="Address in use"):
            await controller.start(9921)

        assert controller.state.phase is SessionPhase.ERROR
        assert controller.error_message == "Failed to start server: Address in use"
        assert not controller.is_running
        assert controller.busy is False

    @pytest.mark.asyncio
    async def test_backend_unreachable(self, controller, fake_backend):
        fake_backend.start_server.side_effect = BackendUnavailable("connection refused")

        with pytest.raises(BackendUnavailable):
            await controller.start(9921)

        assert controller.state.phase is SessionPhase.ERROR
        assert controller.error_message.startswith("Failed to start server:")

    @pytest.mark.asyncio
    async def test_unexpected_backend_exception(self, controller, fake_backend):
        fake_backend.start_server.side_effect = RuntimeError("ipc crashed")

        with pytest.raises(BackendUnavailable, match="ipc crashed"):
            await controller.start(9921)

        assert controller.state.phase is SessionPhase.ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("port", [80, 1023, 65536, "9921", True])
    async def test_invalid_port(self, controller, fake_backend, port):
        with pytest.raises(InvalidConfig):
            await controller.start(port)

        fake_backend.start_server.assert_not_awaited()
        assert controller.state.phase is SessionPhase.ERROR

    @pytest.mark.asyncio
    async def test_empty_address(self, controller, fake_backend):
        fake_backend.start_server.side_effect = None
        fake_backend.start_server.return_value = ""

        with pytest.raises(BackendUnavailable):
            await controller.start(9921)
        assert not controller.is_running

    @pytest.mark.asyncio
    async def test_start_while_running(self, controller, fake_backend):
        await controller.start(9921)

        with pytest.raises(InvalidTransition):
            await controller.start(9921)

        assert fake_backend.start_server.await_count == 1
        assert controller.is_running

    @pytest.mark.asyncio
    async def test_concurrent_start_is_dropped(self, controller, fake_backend):
        gate = asyncio.Event()

        async def slow_start(port, options):
            await gate.wait()
            return f"http://host:{port}"

        fake_backend.start_server.side_effect = slow_start

        first = asyncio.create_task(controller.start(9921))
        await asyncio.sleep(0)

        assert controller.busy is True
        assert controller.state.phase is SessionPhase.STARTING
        assert await controller.start(9921) is False
        assert await controller.stop() is False
        assert controller.state.phase is SessionPhase.STARTING

        gate.set()
        assert await first is True

        fake_backend.start_server.assert_awaited_once()
        fake_backend.stop_server.assert_not_awaited()
        assert controller.is_running

    @pytest.mark.asyncio
    async def test_error_clears_on_next_start(self, controller, fake_backend):
        fake_backend.start_server.side_effect = BackendUnavailable("down")
        with pytest.raises(BackendUnavailable):
            await controller.start(9921)

        fake_backend.start_server.side_effect = fake_backend._start_server
        await controller.start(9921)

        assert controller.error_message == ""
        assert controller.is_running


class TestStop:
    """Test stop() transitions."""

    @pytest.mark.asyncio
    async def test_stop_success(self, controller, fake_backend):
        await controller.start(9921)
        assert await controller.stop() is True

        assert controller.state == SessionState.stopped()
        assert controller.server_url == ""
        assert controller.connection_url() == ""
        fake_backend.stop_server.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_while_stopped(self, controller, fake_backend):
        with pytest.raises(InvalidTransition):
            await controller.stop()

        assert controller.state == SessionState.stopped()
        fake_backend.stop_server.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_failure(self, controller, fake_backend):
        await controller.start(9921)
        fake_backend.stop_server.side_effect = BackendUnavailable("timeout")

        with pytest.raises(BackendUnavailable):
            await controller.stop()

        assert controller.state.phase is SessionPhase.ERROR
        assert controller.error_message == "Failed to stop server: timeout"

        # Backend is still running, the next poll restores RUNNING
        await controller.poll()
        assert controller.is_running
        assert controller.server_url == "http://host:9921/kvm"

    @pytest.mark.asyncio
    async def test_stop_rejected_by_backend(self, controller, fake_backend):
        await controller.start(9921)
        fake_backend.stop_server.side_effect = CommandRejected("stop_server", "Server is not running")

        with pytest.raises(BackendUnavailable):
            await controller.stop()
        assert controller.state.phase is SessionPhase.ERROR

    @pytest.mark.asyncio
    async def test_stop_from_error_state(self, controller, fake_backend):
        fake_backend.running = True
        fake_backend.port = 9921
        controller._set_state(SessionState.error("stale"))

        assert await controller.stop() is True
        assert controller.state == SessionState.stopped()
        assert fake_backend.running is False


class TestPoll:
    """Test poll() reconciliation."""

    @pytest.mark.asyncio
    async def test_poll_stopped(self, controller, fake_backend):
        state = await controller.poll()

        assert state == SessionState.stopped()
        fake_backend.get_server_url.assert_not_awaited()
        fake_backend.get_available_monitors.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_poll_picks_up_external_session(self, controller, fake_backend):
        fake_backend.running = True
        fake_backend.port = 9955

        await controller.poll()

        assert controller.state == SessionState.running("http://host:9955/kvm", 9955)
        assert controller.connection_url().startswith("http://host:9955/kvm?")

    @pytest.mark.asyncio
    async def test_running_without_address_forces_stopped(self, controller, fake_backend):
        await controller.start(9921)
        fake_backend.get_server_url.side_effect = CommandRejected("get_server_url", "no address")

        state = await controller.poll()

        assert state == SessionState.stopped()
        assert controller.connection_url() == ""
        assert controller.error_message == ""

    @pytest.mark.asyncio
    async def test_empty_address_forces_stopped(self, controller, fake_backend):
        fake_backend.running = True
        fake_backend.get_server_url.side_effect = None
        fake_backend.get_server_url.return_value = ""

        state = await controller.poll()

        assert state == SessionState.stopped()
        assert controller.connection_url() == ""

    @pytest.mark.asyncio
    async def test_status_failure_sets_error(self, controller, fake_backend):
        fake_backend.get_server_status.side_effect = BackendUnavailable("connection refused")

        state = await controller.poll()

        assert state.phase is SessionPhase.ERROR
        assert controller.error_message == "Failed to check server status: connection refused"
        fake_backend.get_available_monitors.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_normalized_by_next_poll(self, controller, fake_backend):
        fake_backend.start_server.side_effect = InvalidConfig("bad")
        with pytest.raises(BackendUnavailable):
            await controller.start(9921)
        assert controller.state.phase is SessionPhase.ERROR

        await controller.poll()
        assert controller.state == SessionState.stopped()

    @pytest.mark.asyncio
    async def test_monitor_failure_does_not_break_poll(self, controller, fake_backend):
        fake_backend.running = True
        fake_backend.port = 9921
        fake_backend.get_available_monitors.side_effect = BackendUnavailable("no displays")

        state = await controller.poll()

        assert state.is_running
        assert controller.monitors.last_error == "no displays"
        assert controller.snapshot()["monitors"] == []

    @pytest.mark.asyncio
    async def test_unexpected_monitor_error_does_not_break_poll(self, controller, fake_backend):
        fake_backend.get_available_monitors.side_effect = OSError("pipe closed")

        state = await controller.poll()

        assert state == SessionState.stopped()
        assert controller.monitors.last_error == "pipe closed"
        assert controller.snapshot()["monitors_loading"] is False

    @pytest.mark.asyncio
    async def test_poll_skips_state_during_transition(self, controller, fake_backend):
        gate = asyncio.Event()

        async def slow_start(port, options):
            await gate.wait()
            return f"http://host:{port}"

        fake_backend.start_server.side_effect = slow_start
        task = asyncio.create_task(controller.start(9921))
        await asyncio.sleep(0)

        state = await controller.poll()

        assert state.phase is SessionPhase.STARTING
        fake_backend.get_server_status.assert_not_awaited()
        fake_backend.get_available_monitors.assert_awaited_once()

        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_stale_poll_result_is_discarded(self, controller, fake_backend):
        gate = asyncio.Event()

        async def slow_status():
            await gate.wait()
            return False

        fake_backend.get_server_status.side_effect = slow_status
        poll_task = asyncio.create_task(controller.poll())
        await asyncio.sleep(0)

        await controller.start(9921)
        gate.set()
        await poll_task

        assert controller.is_running

    @pytest.mark.asyncio
    async def test_poll_selects_primary_monitor(self, controller, reconciler):
        await controller.poll()
        assert reconciler.config.selected_monitor == 1


class TestPolling:
    """Test the recurring poll task and cleanup."""

    @pytest.mark.asyncio
    async def test_polling_runs_and_cancels(self, controller, fake_backend):
        controller.start_polling(0.01)
        assert controller.polling

        await asyncio.sleep(0.1)
        assert fake_backend.get_server_status.await_count >= 2

        await controller.stop_polling()
        assert not controller.polling

        count = fake_backend.get_server_status.await_count
        await asyncio.sleep(0.05)
        assert fake_backend.get_server_status.await_count == count

    @pytest.mark.asyncio
    async def test_polling_survives_failures(self, controller, fake_backend):
        fake_backend.get_server_status.side_effect = BackendUnavailable("down")
        controller.start_polling(0.01)

        await asyncio.sleep(0.08)

        assert controller.polling
        assert fake_backend.get_server_status.await_count >= 2

    @pytest.mark.asyncio
    async def test_restart_polling_replaces_task(self, controller):
        controller.start_polling(0.01)
        first = controller._poll_task
        controller.start_polling(0.01)
        await asyncio.sleep(0)

        assert first.cancelled() or first.done()
        assert controller.polling

    @pytest.mark.asyncio
    async def test_zero_interval_is_kept(self, controller, fake_backend):
        controller.poll_interval = 60
        controller.start_polling(0)
        await asyncio.sleep(0.05)
        await controller.stop_polling()

        assert fake_backend.get_server_status.await_count >= 1

    @pytest.mark.asyncio
    async def test_recheck_after_start(self, fake_backend, reconciler):
        controller = SessionController(fake_backend, reconciler, recheck_delay=0.01)
        try:
            await controller.start(9921)
            fake_backend.get_server_status.assert_not_awaited()

            await asyncio.sleep(0.05)
            fake_backend.get_server_status.assert_awaited()
            assert controller.state == SessionState.running("http://host:9921/kvm", 9921)
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_recheck_after_stop(self, fake_backend, reconciler):
        controller = SessionController(fake_backend, reconciler, recheck_delay=0.01)
        try:
            await controller.start(9921)
            await controller.stop()
            count = fake_backend.get_server_status.await_count

            await asyncio.sleep(0.05)
            assert fake_backend.get_server_status.await_count > count
            assert controller.state == SessionState.stopped()
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_recheck(self, fake_backend, reconciler):
        controller = SessionController(fake_backend, reconciler, recheck_delay=0.05)
        await controller.start(9921)
        await controller.close()

        await asyncio.sleep(0.1)
        fake_backend.get_server_status.assert_not_awaited()
        fake_backend.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_context_manager(self, fake_backend, reconciler):
        fake_backend.running = True
        fake_backend.port = 9921

        async with SessionController(fake_backend, reconciler, poll_interval=0.01) as controller:
            assert controller.is_running
            assert controller.polling

        assert not controller.polling
        fake_backend.close.assert_awaited_once()


class TestSnapshotAndLogs:
    """Test presentation helpers."""

    @pytest.mark.asyncio
    async def test_snapshot(self, controller, reconciler):
        reconciler.set_field("use_av1", True)
        await controller.poll()
        await controller.start(9921)

        snapshot = controller.snapshot()

        assert snapshot["running"] is True
        assert snapshot["busy"] is False
        assert snapshot["state"]["phase"] == "running"
        assert snapshot["codec"] == "av1"
        assert snapshot["url"] == "http://host:9921/kvm?audio=true;codec=av1;monitor=1"
        assert len(snapshot["monitors"]) == 3
        assert snapshot["settings"]["use_av1"] is True

    @pytest.mark.asyncio
    async def test_get_logs(self, controller):
        assert await controller.get_logs() == ("debug output", "error output")

    @pytest.mark.asyncio
    async def test_get_logs_failure(self, controller, fake_backend):
        fake_backend.get_logs.side_effect = OSError("gone")
        with pytest.raises(BackendUnavailable):
            await controller.get_logs()
