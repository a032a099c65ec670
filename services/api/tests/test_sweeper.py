import asyncio

from idp.sweeper import PeriodicSweeper


async def test_run_once_survives_failing_job(caplog):
    calls = []

    async def broken():
        raise RuntimeError("boom")

    async def healthy():
        calls.append("healthy")

    sweeper = PeriodicSweeper(60, [broken, healthy])
    await sweeper.run_once()
    assert calls == ["healthy"]
    assert "sweep job broken failed" in caplog.text


async def test_loop_runs_until_stopped():
    ticks = asyncio.Event()
    count = 0

    async def job():
        nonlocal count
        count += 1
        if count >= 3:
            ticks.set()

    sweeper = PeriodicSweeper(0.01, [job])
    sweeper.start()
    assert sweeper.running
    await asyncio.wait_for(ticks.wait(), timeout=2)
    await sweeper.stop()
    assert not sweeper.running
    seen = count
    await asyncio.sleep(0.05)
    assert count == seen


async def test_stop_without_start_is_noop():
    await PeriodicSweeper(1, []).stop()


async def test_services_sweep_wiring(core, clock):
    challenge = await core.challenges.create_challenge("did:example:abc")
    await core.revocations.add("old-jti", clock.now(), clock.now() + 5)
    clock.advance(core.settings.challenge_ttl_seconds + core.settings.challenge_retention_seconds + 1)
    await core.sweeper.run_once()
    assert core.challenge_store.get(challenge.id) is None
    assert not await core.revocations.contains("old-jti")
