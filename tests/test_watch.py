# tests/test_watch.py
"""
Unit Tests for the supervised watch loop
Backoff bounds, resubscription after loss, resync after expiry
"""

import asyncio

from node_trust.errors import StoreUnavailable, WatchExpired
from node_trust.store.memory import InMemoryStore
from node_trust.watch import Backoff, SupervisedWatch, WatchOutcome


class RecordingSleep:
    """Replaces asyncio.sleep, keeps the requested delays"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def stop(task):
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class TestBackoff:
    """Tests for Backoff"""

    def test_grows_exponentially_up_to_max(self):
        backoff = Backoff(min_delay=1, max_delay=10, factor=2)

        delays = [backoff.next_delay() for _ in range(6)]

        assert delays == [1, 2, 4, 8, 10, 10]

    def test_reset(self):
        backoff = Backoff(min_delay=1, max_delay=10)
        backoff.next_delay()
        backoff.next_delay()

        backoff.reset()

        assert backoff.next_delay() == 1


class TestSupervisedWatch:
    """Tests for SupervisedWatch"""

    def test_run_once_closed_stream(self):
        async def scenario():
            store = InMemoryStore()
            await store.put_node("node-a")
            await store.put_node("node-b")
            seen = []

            async def subscribe(resource_version):
                async for event in store.watch_nodes(resource_version):
                    yield event
                    if event.obj.name == "node-b":
                        return

            async def handle(event):
                seen.append(event.obj.name)

            watch = SupervisedWatch("nodes", subscribe, handle, resync=None)
            watch.resource_version = "0"

            outcome = await watch.run_once()

            assert outcome is WatchOutcome.CLOSED
            assert seen == ["node-a", "node-b"]
            assert watch.resource_version == "2"

        asyncio.run(scenario())

    def test_resubscribes_after_loss_without_missing_events(self, wait_until):
        async def scenario():
            store = InMemoryStore()
            sleep = RecordingSleep()
            seen = []

            async def handle(event):
                seen.append(event.obj.name)

            watch = SupervisedWatch(
                "nodes", store.watch_nodes, handle, resync=None,
                backoff=Backoff(min_delay=0.5, max_delay=4), sleep=sleep,
            )
            task = asyncio.create_task(watch.run("0"))

            await store.put_node("node-b")
            await wait_until(lambda: seen == ["node-b"])

            store.fail_next("watch_nodes", StoreUnavailable("refused"))
            await store.drop_watches()
            await store.put_node("node-c")
            await store.put_node("node-d")

            await wait_until(lambda: seen == ["node-b", "node-c", "node-d"])
            await stop(task)

            assert sleep.delays[:2] == [0.5, 1.0]
            assert watch.subscriptions >= 3

        asyncio.run(scenario())

    def test_backoff_resets_after_event(self, wait_until):
        async def scenario():
            store = InMemoryStore()
            sleep = RecordingSleep()
            seen = []

            async def handle(event):
                seen.append(event.obj.name)

            watch = SupervisedWatch(
                "nodes", store.watch_nodes, handle, resync=None,
                backoff=Backoff(min_delay=0.5, max_delay=4), sleep=sleep,
            )
            task = asyncio.create_task(watch.run("0"))
            await asyncio.sleep(0)

            await store.drop_watches()
            await wait_until(lambda: len(sleep.delays) == 1)
            await store.put_node("node-b")
            await wait_until(lambda: seen == ["node-b"])
            await store.drop_watches()
            await wait_until(lambda: len(sleep.delays) == 2)
            await stop(task)

            assert sleep.delays == [0.5, 0.5]

        asyncio.run(scenario())

    def test_expired_history_triggers_resync(self, wait_until):
        async def scenario():
            store = InMemoryStore()
            await store.put_node("node-a")
            await store.put_node("node-b")
            store.compact()
            seen = []
            resyncs = []

            async def handle(event):
                seen.append(event.obj.name)

            async def resync():
                resyncs.append(store.revision)
                return store.revision

            watch = SupervisedWatch("nodes", store.watch_nodes, handle, resync, sleep=RecordingSleep())
            task = asyncio.create_task(watch.run("1"))

            await wait_until(lambda: resyncs == ["2"])
            await store.put_node("node-c")
            await wait_until(lambda: seen == ["node-c"])
            await stop(task)

        asyncio.run(scenario())

    def test_repeated_expiry_backs_off(self, wait_until):
        async def scenario():
            sleep = RecordingSleep()
            resyncs = []

            def subscribe(resource_version):
                raise WatchExpired(f"resource version {resource_version} is too old")

            async def resync():
                resyncs.append(1)
                return "5"

            async def handle(event):
                pass

            watch = SupervisedWatch(
                "nodes", subscribe, handle, resync,
                backoff=Backoff(min_delay=0.5, max_delay=4), sleep=sleep,
            )
            task = asyncio.create_task(watch.run("1"))

            await wait_until(lambda: len(sleep.delays) >= 5)
            await stop(task)

            assert sleep.delays[:5] == [0.5, 1.0, 2.0, 4.0, 4.0]
            assert len(resyncs) >= 4

        asyncio.run(scenario())

    def test_no_resource_version_starts_with_resync(self, wait_until):
        async def scenario():
            store = InMemoryStore()
            sleep = RecordingSleep()
            attempts = []

            async def resync():
                attempts.append(1)
                if len(attempts) == 1:
                    raise StoreUnavailable("refused")
                return store.revision

            async def handle(event):
                pass

            watch = SupervisedWatch(
                "nodes", store.watch_nodes, handle, resync,
                backoff=Backoff(min_delay=0.25), sleep=sleep,
            )
            task = asyncio.create_task(watch.run())

            await wait_until(lambda: watch.subscriptions == 1)
            await stop(task)

            assert len(attempts) == 2
            assert sleep.delays == [0.25]

        asyncio.run(scenario())

    def test_handler_errors_do_not_end_the_loop(self, wait_until):
        async def scenario():
            store = InMemoryStore()
            seen = []

            async def handle(event):
                if event.obj.name == "bad":
                    raise ValueError("boom")
                seen.append(event.obj.name)

            watch = SupervisedWatch("nodes", store.watch_nodes, handle, resync=None, sleep=RecordingSleep())
            task = asyncio.create_task(watch.run("0"))

            await store.put_node("bad")
            await store.put_node("good")

            await wait_until(lambda: seen == ["good"])
            await stop(task)

            assert watch.events_received == 2

        asyncio.run(scenario())
