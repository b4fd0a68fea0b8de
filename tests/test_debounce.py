import asyncio

import pytest

from placemarks.debounce import Debouncer, RequestSequencer


@pytest.mark.asyncio
async def test_rapid_schedules_collapse_to_last_call():
    debouncer = Debouncer()
    fired = []

    for value in range(5):
        async def call(value=value):
            fired.append(value)

        debouncer.schedule("region", 20, call)
        await asyncio.sleep(0.001)

    await debouncer.wait()
    assert fired == [4]


@pytest.mark.asyncio
async def test_channels_are_independent():
    debouncer = Debouncer()
    fired = []

    async def region():
        fired.append("region")

    async def search():
        fired.append("search")

    debouncer.schedule("region", 10, region)
    debouncer.schedule("search", 10, search)
    await debouncer.wait()

    assert sorted(fired) == ["region", "search"]


@pytest.mark.asyncio
async def test_cancel_and_cancel_all():
    debouncer = Debouncer()
    fired = []

    async def call():
        fired.append(1)

    debouncer.schedule("region", 10, call)
    debouncer.schedule("search", 10, call)
    assert debouncer.is_pending("region")
    assert debouncer.cancel("region") is True
    assert debouncer.cancel("region") is False

    debouncer.cancel_all()
    await debouncer.wait()

    assert fired == []
    assert not debouncer.is_pending("search")


@pytest.mark.asyncio
async def test_wait_covers_running_callbacks_and_logs_failures(caplog):
    debouncer = Debouncer()
    done = []

    async def slow():
        await asyncio.sleep(0.02)
        done.append(True)

    async def broken():
        raise RuntimeError("boom")

    debouncer.schedule("region", 0, slow)
    debouncer.schedule("search", 0, broken)
    await debouncer.wait()

    assert done == [True]
    assert "Debounced call on channel search failed" in caplog.text


def test_sequencer_tracks_latest_per_channel():
    sequencer = RequestSequencer()

    first = sequencer.issue("region")
    second = sequencer.issue("region")
    search = sequencer.issue("search")

    assert (first, second, search) == (1, 2, 1)
    assert not sequencer.is_latest("region", first)
    assert sequencer.is_latest("region", second)
    assert sequencer.is_latest("search", search)
    assert sequencer.latest("catalog") == 0
