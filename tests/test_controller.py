"""
Tests for the playback controller state machine.

Tests cover:
- Lookahead: playing chunk 0 with W=3 caches 1, 2, 3 before chunk 0 ends
- pause/resume keeps the attached audio (no re-synthesis, no index change)
- Natural completion of the last chunk stops and resets to chunk 0
- A synthesis failure for the current chunk surfaces a message and stops
- Monotonic +1 advance per natural completion
- stop() releases every cached resource; stop() twice == once
- next/seek/select/set_rate/set_voice policies
- A seek frees the prefetch window for the chunks after the new playhead
- Pause while audio is still being fetched
- Position persistence (fire-and-forget, failures swallowed)
- teardown()
"""

import asyncio
import json
from unittest import mock

import pytest

from readaloud.core.errors import SynthesisError
from readaloud.library.store import BookLibrary, LibraryPositionStore
from readaloud.reader.controller import PlaybackStatus

from conftest import FakePositionStore, FakeSynthesizer, chunk_text, settle


class TestPlay:
    """Starting playback and prefetching."""

    def test_play_attaches_current_chunk(self, make_reader):
        async def run():
            controller, cache, _, synth, output = make_reader(n=5, window=3)
            await controller.play()
            assert controller.status == PlaybackStatus.PLAYING
            assert controller.current_index == 0
            assert output.attached is cache.get(0)
            assert controller.message == "Reading chunk 1 of 5..."
            await controller.teardown()

        asyncio.run(run())

    def test_window_cached_before_first_chunk_ends(self, make_reader):
        async def run():
            controller, cache, scheduler, synth, output = make_reader(n=5, window=3)
            await controller.play(0)
            await settle()
            assert output.attached is not None
            assert {1, 2, 3} <= set(cache.indices())
            assert 4 not in cache
            assert scheduler.peak_in_flight <= 3
            await controller.teardown()

        asyncio.run(run())

    def test_chunk_started_logs_text_preview(self, make_reader):
        async def run():
            controller, _, _, _, _ = make_reader(n=2, text_preview_chars=4)
            with mock.patch("readaloud.reader.controller.info") as logged:
                await controller.play()
            started = [c for c in logged.call_args_list if c.args[1] == "chunk_started"]
            assert started[0].kwargs["text_preview"] == "Chun"
            assert started[0].kwargs["chars"] == len(chunk_text(0))
            await controller.teardown()

        asyncio.run(run())

    def test_play_while_playing_is_noop(self, make_reader):
        async def run():
            controller, _, _, synth, output = make_reader(n=3)
            await controller.play()
            await settle()
            calls = len(synth.calls)
            await controller.play()
            assert len(output.started) == 1
            assert len(synth.calls) == calls
            await controller.teardown()

        asyncio.run(run())

    def test_empty_book(self, make_reader):
        async def run():
            controller, _, _, synth, _ = make_reader(n=0)
            await controller.play()
            assert controller.status == PlaybackStatus.IDLE
            assert controller.message == "Nothing to read."
            assert synth.calls == []
            await controller.teardown()

        asyncio.run(run())

    def test_toggle(self, make_reader):
        async def run():
            controller, _, _, _, output = make_reader(n=3)
            await controller.toggle()
            assert controller.status == PlaybackStatus.PLAYING
            await controller.toggle()
            assert controller.status == PlaybackStatus.PAUSED
            assert output.paused
            await controller.toggle()
            assert controller.status == PlaybackStatus.PLAYING
            assert not output.paused
            await controller.teardown()

        asyncio.run(run())


class TestPauseResume:
    """pause() and resume through play()."""

    def test_resume_reuses_attached_audio(self, make_reader):
        async def run():
            controller, cache, _, synth, output = make_reader(n=5)
            await controller.play()
            await settle()
            attached = output.attached
            calls = len(synth.calls)

            controller.pause()
            assert controller.status == PlaybackStatus.PAUSED
            assert controller.message == "Paused."
            assert output.paused
            assert output.attached is attached

            await controller.play()
            assert controller.status == PlaybackStatus.PLAYING
            assert controller.current_index == 0
            assert output.attached is attached
            assert len(output.started) == 1
            assert len(synth.calls) == calls
            await controller.teardown()

        asyncio.run(run())

    def test_pause_when_not_playing_is_noop(self, make_reader):
        async def run():
            controller, _, _, _, _ = make_reader(n=3)
            controller.pause()
            assert controller.status == PlaybackStatus.IDLE
            await controller.teardown()

        asyncio.run(run())

    def test_pause_during_fetch(self, make_reader):
        async def run():
            synth = FakeSynthesizer(blocked=True)
            controller, cache, _, _, output = make_reader(n=3, synth=synth)
            playing = asyncio.create_task(controller.play())
            await settle()
            assert controller.status == PlaybackStatus.PLAYING
            assert output.attached is None

            controller.pause()
            assert controller.status == PlaybackStatus.PAUSED
            synth.release()
            await playing
            await settle()
            # the fetched audio is cached but not attached
            assert output.attached is None
            assert 0 in cache
            assert controller.status == PlaybackStatus.PAUSED

            await controller.play()
            assert controller.status == PlaybackStatus.PLAYING
            assert output.attached is cache.get(0)
            assert synth.count(chunk_text(0)) == 1
            await controller.teardown()

        asyncio.run(run())


class TestAdvance:
    """Natural completion."""

    def test_monotonic_advance(self, make_reader):
        async def run():
            controller, cache, _, _, output = make_reader(n=4, window=2)
            seen = []
            controller.on_change = lambda s: seen.append(s)
            await controller.play()
            indices = [controller.current_index]
            for _ in range(3):
                output.finish()
                await settle()
                indices.append(controller.current_index)
                assert output.attached is cache.get(controller.current_index)
            assert indices == [0, 1, 2, 3]
            playing = [s.current_index for s in seen if s.status == PlaybackStatus.PLAYING]
            assert playing == sorted(playing)
            await controller.teardown()

        asyncio.run(run())

    def test_last_chunk_stops_and_resets(self, make_reader):
        async def run():
            controller, cache, _, _, output = make_reader(n=5)
            await controller.play(4)
            assert controller.current_index == 4
            assert not controller.can_next
            output.finish()
            await settle()
            assert controller.status == PlaybackStatus.STOPPED
            assert controller.current_index == 0
            assert controller.message == "Finished reading."
            assert len(cache) == 0
            await controller.teardown()

        asyncio.run(run())

    def test_halted_audio_does_not_advance(self, make_reader):
        async def run():
            controller, _, _, _, output = make_reader(n=5)
            await controller.play()
            output.halt()
            await settle()
            assert controller.current_index == 0
            await controller.teardown()

        asyncio.run(run())


class TestFailure:
    """Synthesis failures for the current chunk."""

    def test_failure_stops_with_message(self, make_reader):
        async def run():
            synth = FakeSynthesizer(fail_on={chunk_text(2)})
            controller, cache, _, _, output = make_reader(n=5, synth=synth)
            await controller.seek(2)
            assert controller.status == PlaybackStatus.STOPPED
            assert isinstance(controller.error, SynthesisError)
            assert controller.message.startswith("Could not read chunk 3:")
            assert 2 not in cache
            assert output.attached is None

            # stop() after an error is still safe
            controller.stop()
            assert controller.status == PlaybackStatus.STOPPED
            await controller.teardown()

        asyncio.run(run())

    def test_error_cleared_on_next_attempt(self, make_reader):
        async def run():
            synth = FakeSynthesizer(fail_on={chunk_text(0)})
            controller, _, _, _, output = make_reader(n=3, synth=synth)
            await controller.play()
            assert controller.error is not None
            await controller.seek(1)
            assert controller.error is None
            assert controller.status == PlaybackStatus.PLAYING
            await controller.teardown()

        asyncio.run(run())


class TestStop:
    """stop() releases everything."""

    def test_stop_releases_all_resources(self, make_reader):
        async def run():
            controller, cache, scheduler, _, output = make_reader(n=6, window=3)
            await controller.play()
            await settle()
            resources = [cache.get(i) for i in cache.indices()]
            assert resources

            controller.stop()
            assert controller.status == PlaybackStatus.STOPPED
            assert all(cache.get(i) is None for i in range(6))
            assert all(r.released for r in resources)
            assert scheduler.pending == frozenset()
            assert output.attached is None
            await controller.teardown()

        asyncio.run(run())

    def test_stop_twice_equals_once(self, make_reader):
        async def run():
            controller, cache, _, _, _ = make_reader(n=3)
            await controller.play()
            states = []
            controller.on_change = states.append
            controller.stop()
            first = (controller.state, controller.message, len(cache))
            controller.stop()
            assert (controller.state, controller.message, len(cache)) == first
            assert len(states) == 1
            await controller.teardown()

        asyncio.run(run())

    def test_stop_during_fetch_discards_result(self, make_reader):
        async def run():
            synth = FakeSynthesizer(blocked=True)
            controller, cache, _, _, output = make_reader(n=3, synth=synth)
            playing = asyncio.create_task(controller.play())
            await settle()
            controller.stop()
            synth.release()
            await playing
            await settle()
            assert len(cache) == 0
            assert output.attached is None
            assert controller.status == PlaybackStatus.STOPPED
            await controller.teardown()

        asyncio.run(run())

    def test_play_after_stop_resynthesizes(self, make_reader):
        async def run():
            controller, cache, _, synth, output = make_reader(n=3)
            await controller.play()
            controller.stop()
            await controller.play()
            assert controller.status == PlaybackStatus.PLAYING
            assert output.attached is cache.get(0)
            assert synth.count(chunk_text(0)) == 2
            await controller.teardown()

        asyncio.run(run())


class TestNavigation:
    """next(), seek(), select()."""

    def test_next_keeps_cache(self, make_reader):
        async def run():
            controller, cache, _, synth, output = make_reader(n=5, window=3)
            await controller.play()
            await settle()
            prefetched = cache.get(1)
            await controller.next()
            assert controller.current_index == 1
            assert output.attached is prefetched
            assert synth.count(chunk_text(1)) == 1
            assert 0 in cache
            await controller.teardown()

        asyncio.run(run())

    def test_next_on_last_chunk_is_noop(self, make_reader):
        async def run():
            controller, _, _, _, output = make_reader(n=3)
            await controller.seek(2)
            await controller.next()
            assert controller.current_index == 2
            assert len(output.started) == 1
            await controller.teardown()

        asyncio.run(run())

    def test_seek_out_of_range(self, make_reader):
        async def run():
            controller, _, _, _, _ = make_reader(n=3)
            with pytest.raises(ValueError):
                await controller.seek(3)
            with pytest.raises(ValueError):
                await controller.seek(-1)
            await controller.teardown()

        asyncio.run(run())

    def test_seek_supersedes_pending_fetch(self, make_reader):
        async def run():
            synth = FakeSynthesizer(blocked=True)
            controller, cache, _, _, output = make_reader(n=10, window=1, synth=synth)
            first = asyncio.create_task(controller.play())
            await settle()
            second = asyncio.create_task(controller.seek(5))
            await settle()
            synth.release()
            await asyncio.gather(first, second)
            await settle()
            assert controller.current_index == 5
            assert output.attached is cache.get(5)
            assert [r.label for r in output.started] == ["chunk-5"]
            await controller.teardown()

        asyncio.run(run())

    def test_seek_refills_window_ahead(self, make_reader):
        """Slow prefetches left behind by a seek do not hold the window."""
        async def run():
            synth = FakeSynthesizer(block_on=[chunk_text(i) for i in (1, 2, 3)])
            controller, cache, scheduler, _, output = make_reader(n=12, window=3, synth=synth)
            await controller.play()
            await settle()
            assert scheduler.pending == frozenset({1, 2, 3})
            await controller.seek(7)
            await settle()
            assert {8, 9, 10} <= set(scheduler.pending) | set(cache.indices())
            assert not scheduler.pending & {1, 2, 3}
            assert output.attached is cache.get(7)
            await controller.teardown()

        asyncio.run(run())

    def test_next_joins_prefetch_in_flight(self, make_reader):
        async def run():
            synth = FakeSynthesizer(block_on=[chunk_text(1)])
            controller, cache, scheduler, _, output = make_reader(n=6, window=2, synth=synth)
            await controller.play()
            await settle()
            moving = asyncio.create_task(controller.next())
            await settle()
            assert 3 in scheduler.pending or 3 in cache
            synth.release()
            await moving
            assert controller.current_index == 1
            assert output.attached is cache.get(1)
            assert synth.count(chunk_text(1)) == 1
            await controller.teardown()

        asyncio.run(run())

    def test_select_ignored_while_playing(self, make_reader):
        async def run():
            controller, _, _, _, _ = make_reader(n=5)
            await controller.play()
            assert await controller.select(3) is False
            assert controller.current_index == 0
            controller.pause()
            assert await controller.select(3) is True
            assert controller.current_index == 3
            assert controller.status == PlaybackStatus.PLAYING
            await controller.teardown()

        asyncio.run(run())


class TestSettings:
    """set_rate() and set_voice()."""

    def test_set_rate_applies_to_output(self, make_reader):
        async def run():
            controller, _, _, _, output = make_reader(n=3)
            await controller.play()
            controller.set_rate(1.5)
            assert controller.rate == 1.5
            assert output.rate == 1.5
            with pytest.raises(ValueError):
                controller.set_rate(5.0)
            with pytest.raises(ValueError):
                controller.set_rate(0.1)
            assert controller.rate == 1.5
            await controller.teardown()

        asyncio.run(run())

    def test_set_voice_rejected_while_playing(self, make_reader):
        async def run():
            controller, _, _, _, _ = make_reader(n=3)
            await controller.play()
            assert controller.set_voice("Puck") is False
            controller.pause()
            assert controller.set_voice("Puck") is False
            assert controller.voice == "Kore"
            await controller.teardown()

        asyncio.run(run())

    def test_set_voice_clears_cache(self, make_reader):
        async def run():
            controller, cache, _, synth, _ = make_reader(n=3)
            await controller.play()
            await settle()
            controller.stop()
            assert controller.set_voice("Puck") is True
            assert controller.voice == "Puck"
            await controller.play()
            assert len(cache) >= 1
            assert (chunk_text(0), "Puck") in synth.calls
            await controller.teardown()

        asyncio.run(run())


class TestPersistence:
    """Position writes through the position store."""

    def test_each_started_chunk_is_saved(self, make_reader):
        async def run():
            store = FakePositionStore()
            controller, _, _, _, output = make_reader(n=3, store=store)
            await controller.play()
            output.finish()
            await settle()
            await controller.seek(2)
            await settle()
            assert store.history == [0, 1, 2]
            await controller.teardown()

        asyncio.run(run())

    def test_end_of_book_does_not_save_zero(self, make_reader):
        async def run():
            store = FakePositionStore()
            controller, _, _, _, output = make_reader(n=2, store=store)
            await controller.seek(1)
            output.finish()
            await settle()
            assert controller.current_index == 0
            assert store.history == [1]
            await controller.teardown()

        asyncio.run(run())

    def test_store_failure_does_not_block(self, make_reader):
        async def run():
            store = FakePositionStore(fail=True)
            controller, _, _, _, output = make_reader(n=3, store=store)
            await controller.play()
            await settle()
            assert controller.status == PlaybackStatus.PLAYING
            assert controller.error is None
            assert output.attached is not None
            await controller.teardown()

        asyncio.run(run())

    def test_malformed_library_entry_is_only_logged(self, make_reader, tmp_path):
        library = BookLibrary(tmp_path / "lib")
        library.base_dir.mkdir(parents=True, exist_ok=True)
        library.index_path.write_text(json.dumps({"next_id": 2, "books": [{"name": "x"}]}), encoding="utf-8")

        async def run():
            controller, _, _, _, _ = make_reader(n=3, store=LibraryPositionStore(library))
            with mock.patch("readaloud.reader.controller.warn") as warned:
                await controller.play()
                await controller.teardown()
            events = [c.args[1] for c in warned.call_args_list]
            assert "position_save_failed" in events
            assert controller.error is None

        asyncio.run(run())


class TestTeardown:
    """teardown()."""

    def test_teardown_closes(self, make_reader):
        async def run():
            controller, cache, _, _, output = make_reader(n=4)
            await controller.play()
            await settle()
            await controller.teardown()
            assert controller.closed
            assert controller.status == PlaybackStatus.IDLE
            assert len(cache) == 0
            assert output.closed
            with pytest.raises(RuntimeError):
                await controller.play()
            await controller.teardown()

        asyncio.run(run())

    def test_teardown_during_fetch(self, make_reader):
        async def run():
            synth = FakeSynthesizer(blocked=True)
            controller, cache, scheduler, _, output = make_reader(n=4, synth=synth)
            playing = asyncio.create_task(controller.play())
            await settle()
            await controller.teardown()
            await playing
            synth.release()
            await settle()
            assert len(cache) == 0
            assert scheduler.pending == frozenset()
            assert output.attached is None

        asyncio.run(run())

    def test_observer_errors_are_swallowed(self, make_reader):
        async def run():
            def broken(state):
                raise RuntimeError("observer bug")

            controller, _, _, _, _ = make_reader(n=2, on_change=broken)
            await controller.play()
            assert controller.status == PlaybackStatus.PLAYING
            await controller.teardown()

        asyncio.run(run())
