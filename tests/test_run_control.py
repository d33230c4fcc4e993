import threading

import pytest

from colslam.run_control import StopController, ViewerSettings


def test_new_controller_is_finished_and_stopped():
    control = StopController()
    assert control.is_finished() is True
    assert control.is_stopped() is True
    assert control.check_finish() is False


def test_stop_request_ignored_while_stopped():
    control = StopController()
    control.request_stop()
    assert control.stop() is False


def test_stop_after_release_consumes_request():
    control = StopController()
    control.release()
    assert control.is_stopped() is False
    control.request_stop()
    assert control.stop() is True
    assert control.is_stopped() is True
    assert control.stop() is False


def test_finish_request_blocks_stop():
    control = StopController(finished=False, stopped=False)
    control.request_stop()
    control.request_finish()
    assert control.check_finish() is True
    assert control.stop() is False
    assert control.is_stopped() is False


def test_set_finish_marks_finished():
    control = StopController(finished=False, stopped=False)
    assert control.is_finished() is False
    control.set_finish()
    assert control.is_finished() is True


def test_worker_loop_handshake():
    control = StopController(finished=False, stopped=False)
    stopped_seen = threading.Event()

    def worker():
        while not control.check_finish():
            if control.stop():
                stopped_seen.set()
                while control.is_stopped() and not control.check_finish():
                    pass
        control.set_finish()

    thread = threading.Thread(target=worker)
    thread.start()
    control.request_stop()
    assert stopped_seen.wait(5)
    assert control.is_stopped() is True
    control.release()
    control.request_finish()
    thread.join(5)
    assert control.is_finished() is True


def test_viewer_defaults_for_missing_settings():
    settings = ViewerSettings.from_mapping({})
    assert settings.fps == 30.0
    assert settings.period_ms == pytest.approx(1e3 / 30.0)
    assert (settings.image_width, settings.image_height) == (640.0, 480.0)


def test_viewer_reads_settings():
    settings = ViewerSettings.from_mapping(
        {"Camera.fps": 20, "Camera.width": 1241, "Camera.height": 376}
    )
    assert settings.fps == 20.0
    assert settings.period_ms == pytest.approx(1e3 / 20.0)
    assert (settings.image_width, settings.image_height) == (1241.0, 376.0)


def test_viewer_size_falls_back_when_one_side_missing():
    settings = ViewerSettings.from_mapping({"Camera.width": 1241})
    assert (settings.image_width, settings.image_height) == (640.0, 480.0)


def test_viewer_rejects_non_numeric():
    with pytest.raises(ValueError):
        ViewerSettings.from_mapping({"Camera.fps": "fast"})