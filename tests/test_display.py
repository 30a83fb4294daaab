import numpy as np
import pygame
import pytest

from lowlatvideo.display import Display, draw_text


@pytest.fixture
def dummy_video(monkeypatch):
    monkeypatch.setenv("SDL_VIDEODRIVER", "dummy")


@pytest.fixture
def display(dummy_video):
    disp = Display(320, 240)
    disp.initialize("Test Window")
    yield disp
    disp.cleanup()


def _screen_pixel(x, y):
    return tuple(int(c) for c in pygame.surfarray.array3d(pygame.display.get_surface())[x, y])


def test_draw_text_uses_given_channel_color():
    frame = np.zeros((60, 200, 3), dtype=np.uint8)
    result = draw_text(frame, "FPS: 60", (10, 40), (0, 255, 0))
    assert result is frame
    assert frame[..., 1].max() > 0
    assert frame[..., 0].max() == 0
    assert frame[..., 2].max() == 0


def test_draw_text_stays_above_baseline():
    frame = np.zeros((80, 200, 3), dtype=np.uint8)
    draw_text(frame, "Render", (10, 40), (0, 255, 0))
    rows = np.flatnonzero(frame[..., 1].any(axis=1))
    assert rows.size > 0
    assert rows.max() <= 40


def test_draw_text_on_gray_frame():
    frame = np.zeros((40, 120), dtype=np.uint8)
    draw_text(frame, "abc", (5, 30), (255, 255, 255))
    assert frame.max() > 0


def test_draw_text_rejects_float_frame():
    with pytest.raises(ValueError):
        draw_text(np.zeros((10, 10, 3), dtype=np.float32), "x", (0, 5), (0, 255, 0))


def test_defaults_follow_source():
    disp = Display()
    assert disp.show_metrics is True
    assert disp.vsync_enabled is False
    assert disp.max_fps == 60
    assert disp.current_fps == 0.0
    assert disp.last_render_time == 0.0


def test_set_max_frame_rate_non_positive_is_unlimited():
    disp = Display()
    interval = disp.frame_interval
    disp.set_max_frame_rate(-5)
    assert disp.max_fps == 0
    assert disp.frame_interval == interval


def test_set_max_frame_rate_changes_interval():
    disp = Display()
    disp.set_max_frame_rate(10)
    assert disp.max_fps == 10
    assert disp.frame_interval == pytest.approx(0.1)


def test_render_requires_initialize():
    disp = Display(64, 48)
    with pytest.raises(RuntimeError):
        disp.render_frame(np.zeros((48, 64, 3), dtype=np.uint8))


def test_render_rejects_empty_frame(display):
    with pytest.raises(ValueError):
        display.render_frame(np.zeros((0, 0, 3), dtype=np.uint8))


def test_render_with_metrics_draws_overlay_and_keeps_input(display):
    frame = np.full((240, 320, 3), 255, dtype=np.uint8)
    display.render_frame(frame)
    assert np.all(frame == 255)
    assert _screen_pixel(305, 165) == (0, 0, 0)
    assert _screen_pixel(5, 5) == (255, 255, 255)
    assert display.last_render_time >= 0.0


def test_render_without_metrics_shows_frame_unchanged(display):
    display.show_performance_metrics(False)
    assert display.show_metrics is False
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    frame[..., 0] = 200
    display.render_frame(frame)
    assert _screen_pixel(305, 165) == (0, 0, 200)
    assert display.last_render_time >= 0.0


def test_render_scales_to_window(display):
    display.show_performance_metrics(False)
    assert display.show_metrics is False
    frame = np.full((10, 10), 128, dtype=np.uint8)
    display.render_frame(frame)
    assert _screen_pixel(300, 200) == (128, 128, 128)
    assert display.last_render_time >= 0.0


def test_poll_key_returns_posted_key(display):
    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q))
    assert display.poll_key(50) == ord("q")
    assert display.poll_key(0) == -1


def test_poll_key_requires_initialize():
    with pytest.raises(RuntimeError):
        Display(64, 48).poll_key(0)


def test_vsync_limits_frame_rate(dummy_video):
    now = [0.0]
    sleeps = []

    def clock():
        return now[0]

    def sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    disp = Display(64, 48, clock=clock, sleep=sleep)
    disp.set_vsync(True)
    disp.set_max_frame_rate(10)
    disp.initialize()
    try:
        frame = np.zeros((48, 64, 3), dtype=np.uint8)
        disp.render_frame(frame)
        assert sleeps == []
        disp.render_frame(frame)
        assert sleeps == [pytest.approx(0.1)]
        assert disp.current_fps == pytest.approx(3.0)
    finally:
        disp.cleanup()


def test_no_limit_when_vsync_disabled(dummy_video):
    sleeps = []
    disp = Display(64, 48, clock=lambda: 0.0, sleep=sleeps.append)
    disp.initialize()
    try:
        frame = np.zeros((48, 64, 3), dtype=np.uint8)
        disp.render_frame(frame)
        disp.render_frame(frame)
        assert sleeps == []
        assert disp.current_fps == 0.0
    finally:
        disp.cleanup()