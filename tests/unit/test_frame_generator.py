# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import dataclasses
import struct
import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from config import SimulatorConfig
from protocol.binary import decode_envelope
from session.cancellation import CancellationToken
from spec import STI_TAIL
from telemetry import frame_generator
from telemetry.frame_generator import FrameGenerator
from telemetry.source import SourceOpenError


class StepClock:
    """Fake microsecond clock that advances one gap per reading."""

    def __init__(self, step_us: int) -> None:
        self._now = 0
        self._step = step_us

    def __call__(self) -> int:
        now = self._now
        self._now += self._step
        return now


def collect_until(
    cancel: CancellationToken, frames: list[bytes], count: int
) -> Callable[[bytes], Any]:
    async def sink(frame: bytes) -> None:
        frames.append(frame)
        if len(frames) >= count:
            cancel.cancel()

    return sink


def stepped_generator(
    config: SimulatorConfig, frames: list[bytes], count: int, **kwargs: Any
) -> FrameGenerator:
    cancel = CancellationToken()
    return FrameGenerator(
        config=config,
        cancel=cancel,
        sink=collect_until(cancel, frames, count),
        clock_us=StepClock(config.gap_us),
        **kwargs,
    )


# ---------------------------------------------------------------------
# Envelope stream
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_end_of_source_tick_is_skipped(make_config: Callable[..., SimulatorConfig]):
    config = make_config(frame_length=100, fps=10, time_code=0)
    frames: list[bytes] = []

    gen = stepped_generator(config, frames, 3)
    sample = await gen.run()

    envs = [decode_envelope(f) for f in frames]

    assert [len(f) for f in frames] == [168, 168, 168]
    assert [e.sequence for e in envs] == [0, 1, 2]
    assert envs[0].payload == bytes(range(100))
    assert envs[1].payload == bytes(range(100, 200))
    # Third read hit the 50-byte tail: rewound, nothing sent that tick
    assert envs[2].payload == bytes(range(100))
    assert all(f[-4:] == struct.pack(">I", STI_TAIL) for f in frames)

    assert gen.skipped_ticks == 1
    assert sample.frames == 3


@pytest.mark.asyncio
async def test_preframed_source_is_sent_verbatim(make_config: Callable[..., SimulatorConfig]):
    config = dataclasses.replace(make_config(frame_length=50), has_envelope=True)
    frames: list[bytes] = []

    await stepped_generator(config, frames, 2).run()

    assert frames == [bytes(range(50)), bytes(range(50, 100))]


@pytest.mark.asyncio
async def test_each_generator_starts_at_sequence_zero(make_config: Callable[..., SimulatorConfig]):
    config = make_config(frame_length=10)

    runs: list[list[int]] = []
    for _ in range(2):
        frames: list[bytes] = []
        await stepped_generator(config, frames, 4).run()
        runs.append([decode_envelope(f).sequence for f in frames])

    assert runs == [[0, 1, 2, 3], [0, 1, 2, 3]]


@pytest.mark.asyncio
async def test_time_tag_uses_wall_clock(make_config: Callable[..., SimulatorConfig]):
    config = make_config(frame_length=10, time_code=3)
    frames: list[bytes] = []

    await stepped_generator(
        config,
        frames,
        1,
        wall_clock_ns=lambda: 86_400 * 1_000_000_000 + 250_000_000,  # 1970-01-02
    ).run()

    tag = decode_envelope(frames[0]).time_tag
    assert tag.seconds_of_year == 86_400
    assert tag.sub_second == 250_000


@pytest.mark.asyncio
async def test_source_reads_run_off_the_event_loop(
    make_config: Callable[..., SimulatorConfig], monkeypatch: pytest.MonkeyPatch
):
    config = make_config(frame_length=10)
    loop_thread = threading.current_thread()
    io_threads: list[threading.Thread] = []

    source_cls = frame_generator.CyclicSource
    real_open = source_cls.open
    real_read = source_cls.read_frame

    def tracking_open(self: Any) -> None:
        io_threads.append(threading.current_thread())
        real_open(self)

    def tracking_read(self: Any) -> Any:
        io_threads.append(threading.current_thread())
        return real_read(self)

    monkeypatch.setattr(source_cls, "open", tracking_open)
    monkeypatch.setattr(source_cls, "read_frame", tracking_read)

    frames: list[bytes] = []
    await stepped_generator(config, frames, 3).run()

    assert len(frames) == 3
    assert len(io_threads) == 4
    assert all(t is not loop_thread for t in io_threads)


@pytest.mark.asyncio
async def test_slow_read_does_not_stall_other_tasks(
    make_config: Callable[..., SimulatorConfig], monkeypatch: pytest.MonkeyPatch
):
    config = make_config(frame_length=10, fps=100)
    source_cls = frame_generator.CyclicSource
    real_read = source_cls.read_frame

    def slow_read(self: Any) -> Any:
        threading.Event().wait(0.2)
        return real_read(self)

    monkeypatch.setattr(source_cls, "read_frame", slow_read)

    frames: list[bytes] = []
    gen = stepped_generator(config, frames, 1)
    task = asyncio.create_task(gen.run())

    beats = 0
    while not task.done():
        await asyncio.sleep(0.01)
        beats += 1

    await task
    assert len(frames) == 1
    # The loop kept ticking during the 200 ms read
    assert beats >= 5


# ---------------------------------------------------------------------
# Pacing / cancellation
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_achieved_rate_tracks_target(make_config: Callable[..., SimulatorConfig]):
    config = make_config(frame_length=10, fps=100)
    cancel = CancellationToken()
    frames: list[bytes] = []

    async def sink(frame: bytes) -> None:
        frames.append(frame)

    gen = FrameGenerator(config=config, cancel=cancel, sink=sink)
    task = asyncio.create_task(gen.run())
    await asyncio.sleep(0.5)
    cancel.cancel()
    sample = await task

    assert sample.fps is not None
    assert 60 <= sample.fps <= 110
    assert 25 <= len(frames) <= 55


@pytest.mark.asyncio
async def test_cancel_interrupts_pacing_sleep(make_config: Callable[..., SimulatorConfig]):
    # 1 fps: first tick is a full second away
    config = make_config(frame_length=10, fps=1)
    cancel = CancellationToken()

    async def sink(frame: bytes) -> None:
        raise AssertionError("no frame expected")

    gen = FrameGenerator(config=config, cancel=cancel, sink=sink)
    task = asyncio.create_task(gen.run())
    await asyncio.sleep(0.05)
    cancel.cancel()
    sample = await asyncio.wait_for(task, 0.5)

    assert sample.frames == 0
    assert sample.fps is None


@pytest.mark.asyncio
async def test_stop_event_reports_rate(
    make_config: Callable[..., SimulatorConfig], events: list[dict[str, Any]]
):
    config = make_config(frame_length=10, fps=10)
    frames: list[bytes] = []

    await stepped_generator(config, frames, 5, session_id="sess_test").run()

    stopped = [e for e in events if e["event_type"] == "GENERATOR_STOPPED"]
    assert len(stopped) == 1
    assert stopped[0]["session_id"] == "sess_test"
    assert stopped[0]["frames"] == 5
    assert stopped[0]["fps"] == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_missing_source_fails_generator(
    make_config: Callable[..., SimulatorConfig], source_file: Path
):
    config = make_config()
    source_file.unlink()

    async def sink(frame: bytes) -> None:
        pass

    gen = FrameGenerator(config=config, cancel=CancellationToken(), sink=sink)

    with pytest.raises(SourceOpenError):
        await gen.run()
