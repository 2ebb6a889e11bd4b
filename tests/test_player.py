from __future__ import annotations

from typing import List, Tuple

import pytest

from src.client.player import CLIP, MOVIE, MediaPairController, PlaybackRange, SourceState, SyncPolicy


class FakeHandle:
    def __init__(self, fail_load: bool = False) -> None:
        self.fail_load = fail_load
        self.pos = 0.0
        self.playing = False
        self.muted = False
        self.loaded: List[str] = []
        self.seeks: List[float] = []

    def load(self, source: str) -> None:
        if self.fail_load:
            raise OSError(f"cannot open {source}")
        self.loaded.append(source)

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self.pos = seconds

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def position(self) -> float:
        return self.pos

    def set_muted(self, muted: bool) -> None:
        self.muted = muted


class LaggingHandle(FakeHandle):
    """Reports the old position until :meth:`settle` is called, like an asynchronous seek."""

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self.pending = seconds

    def settle(self) -> None:
        self.pos = self.pending


@pytest.fixture()
def pair():
    clip, movie = FakeHandle(), FakeHandle()
    errors: List[Tuple[str, Exception]] = []
    controller = MediaPairController(clip, movie, on_error=lambda name, error: errors.append((name, error)))
    return controller, clip, movie, errors


def _run_to_end(controller: MediaPairController, handle: FakeHandle, end: float) -> None:
    controller.tick()
    handle.pos = end
    controller.tick()


def test_joint_policy_restarts_once_for_two_plays(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((0.0, 1.0), (10.0, 12.0), SyncPolicy.JOINT, loop_count=2)
    assert clip.seeks == [0.0] and movie.seeks == [10.0]
    assert controller.restarts_remaining == 1

    _run_to_end(controller, clip, 1.0)
    assert controller.finished(CLIP) and not clip.playing
    assert controller.state(CLIP) is SourceState.PAUSED
    assert movie.playing and controller.restarts_remaining == 1

    _run_to_end(controller, movie, 12.0)
    assert clip.seeks == [0.0, 0.0] and movie.seeks == [10.0, 10.0]
    assert clip.playing and movie.playing
    assert controller.restarts_remaining == 0

    controller.tick()
    clip.pos, movie.pos = 1.0, 12.0
    controller.tick()
    assert clip.seeks == [0.0, 0.0] and movie.seeks == [10.0, 10.0]
    assert not clip.playing and not movie.playing
    assert controller.state(CLIP) is SourceState.STOPPED
    assert controller.state(MOVIE) is SourceState.STOPPED


def test_loop_count_one_plays_once(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((0.0, 1.0), (5.0, 6.0), "joint", loop_count=1)
    controller.tick()
    clip.pos, movie.pos = 1.0, 6.0
    controller.tick()
    assert clip.seeks == [0.0] and movie.seeks == [5.0]
    assert not controller.is_playing


def test_independent_policy_shares_one_budget(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((0.0, 1.0), (10.0, 11.0), SyncPolicy.INDEPENDENT, loop_count=2)

    _run_to_end(controller, clip, 1.0)
    assert clip.seeks == [0.0, 0.0] and clip.playing
    assert controller.restarts_remaining == 0

    _run_to_end(controller, movie, 11.0)
    assert movie.seeks == [10.0]
    assert not movie.playing
    assert controller.state(MOVIE) is SourceState.STOPPED
    assert controller.state(CLIP) is SourceState.PLAYING


def test_replaying_ignores_stale_boundaries(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((0.0, 1.0), (10.0, 11.0), loop_count=3)
    old_session = controller.session

    controller.play_pair((2.0, 3.0), (20.0, 21.0), loop_count=3)
    assert controller.session != old_session
    controller.boundary_reached(CLIP, old_session)
    assert clip.playing
    assert not controller.finished(CLIP)
    assert controller.restarts_remaining == 2
    assert controller.range(CLIP) == PlaybackRange(2.0, 3.0)


def test_boundary_not_fired_before_seek_lands() -> None:
    clip, movie = LaggingHandle(), FakeHandle()
    clip.pos = 5.0
    controller = MediaPairController(clip, movie)
    controller.play_pair((0.0, 1.0), (10.0, 11.0), loop_count=2)

    controller.tick()
    assert not controller.finished(CLIP)
    assert clip.playing

    clip.settle()
    controller.tick()
    clip.pos = 1.0
    controller.tick()
    assert controller.finished(CLIP)


def test_load_failure_isolated_to_one_source() -> None:
    clip, movie = FakeHandle(), FakeHandle(fail_load=True)
    errors: List[Tuple[str, Exception]] = []
    controller = MediaPairController(clip, movie, on_error=lambda name, error: errors.append((name, error)))

    controller.play_pair((0.0, 1.0), (10.0, 11.0), clip_source="clip.mp4", movie_source="movie.mp4", loop_count=2)
    assert [name for name, _ in errors] == [MOVIE]
    assert controller.state(MOVIE) is SourceState.STOPPED
    assert clip.loaded == ["clip.mp4"] and clip.playing
    assert movie.seeks == [] and not movie.playing

    _run_to_end(controller, clip, 1.0)
    assert clip.seeks == [0.0, 0.0]
    assert clip.playing


def test_play_pair_validates_arguments(pair) -> None:
    controller, _, _, _ = pair
    with pytest.raises(ValueError):
        controller.play_pair((0.0, 1.0), (2.0, 3.0), loop_count=0)
    with pytest.raises(ValueError):
        controller.play_pair((1.0, 0.5), (2.0, 3.0))
    with pytest.raises(ValueError):
        controller.play_pair((0.0, 1.0), (2.0, 3.0), sync_policy="together")


def test_empty_range_finishes_immediately(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((1.0, 1.0), (5.0, 5.0), loop_count=1)
    controller.tick()
    assert controller.finished(CLIP) and controller.finished(MOVIE)
    assert not clip.playing and not movie.playing


def test_pause_and_resume(pair) -> None:
    controller, clip, movie, _ = pair
    controller.play_pair((0.0, 1.0), (10.0, 11.0), loop_count=2)
    controller.toggle_play_pause()
    assert not clip.playing and not movie.playing
    controller.toggle_play_pause()
    assert clip.playing and movie.playing

    controller.stop()
    assert not controller.is_playing
    assert not controller.has_watch(CLIP)


def test_audio_source_mutes_the_other_side(pair) -> None:
    controller, clip, movie, _ = pair
    assert movie.muted and not clip.muted
    controller.set_audio_source(MOVIE)
    assert clip.muted and not movie.muted
    with pytest.raises(ValueError):
        controller.set_audio_source("both")
