"""Unit tests for the subscription lifecycle manager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from dwnstream.errors import ProvisioningError
from dwnstream.event_stream import codec
from dwnstream.event_stream.provisioner import ResourceProvisioner
from dwnstream.event_stream.subscription import ManagedSubscription, SubscriptionState
from dwnstream.schemas import EventEnvelope


def _payload(tenant="tenantA", event=None, indexes=None) -> bytes:
    return codec.encode(
        EventEnvelope(
            tenant=tenant,
            event=event or {"type": "create"},
            indexes=indexes or {"schema": "foo"},
        )
    )


@pytest.fixture
def provisioner(memory_broker):
    return ResourceProvisioner(memory_broker, retry_delay=0)


class TestManagedSubscription:
    @pytest.mark.asyncio
    async def test_subscribe_provisions_and_activates(
        self, memory_broker, provisioner, recorder
    ):
        managed = ManagedSubscription(
            memory_broker, provisioner, "did:ex:1", "listener1", recorder
        )
        assert managed.state is SubscriptionState.UNSUBSCRIBED

        handle = await managed.subscribe()

        assert handle.id == "listener1"
        assert managed.state is SubscriptionState.ACTIVE
        assert await memory_broker.topic_exists("did_ex_1_events")
        assert await memory_broker.subscription_exists("sub_did_ex_1_listener1")
        await handle.close()

    @pytest.mark.asyncio
    async def test_delivers_and_acks(self, memory_broker, provisioner, recorder, wait_until):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()

        await memory_broker.publish(managed.topic, _payload())
        await wait_until(lambda: len(recorder.calls) == 1)

        assert recorder.calls[0] == ("tenantA", {"type": "create"}, {"schema": "foo"})
        assert memory_broker.pending_count(managed.name) == 0
        await handle.close()

    @pytest.mark.asyncio
    async def test_async_listener_is_awaited(self, memory_broker, provisioner, wait_until):
        seen = []

        async def listener(tenant, event, indexes):
            await asyncio.sleep(0)
            seen.append(event)

        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", listener)
        handle = await managed.subscribe()

        await memory_broker.publish(managed.topic, _payload(tenant="t"))
        await wait_until(lambda: seen == [{"type": "create"}])
        await handle.close()

    @pytest.mark.asyncio
    async def test_malformed_message_is_acked_and_skipped(
        self, memory_broker, provisioner, recorder, wait_until
    ):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()

        await memory_broker.publish(managed.topic, b"{not json")
        await memory_broker.publish(managed.topic, _payload(event={"n": 2}))
        await wait_until(lambda: len(recorder.calls) == 1)

        assert recorder.calls[0][1] == {"n": 2}
        assert memory_broker.pending_count(managed.name) == 0
        await handle.close()

    @pytest.mark.asyncio
    async def test_listener_error_does_not_stop_delivery(
        self, memory_broker, provisioner, wait_until
    ):
        seen = []

        def listener(tenant, event, indexes):
            seen.append(event["n"])
            if event["n"] == 1:
                raise RuntimeError("listener blew up")

        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", listener)
        handle = await managed.subscribe()

        await memory_broker.publish(managed.topic, _payload(tenant="t", event={"n": 1}))
        await memory_broker.publish(managed.topic, _payload(tenant="t", event={"n": 2}))
        await wait_until(lambda: seen == [1, 2])

        assert memory_broker.pending_count(managed.name) == 0
        await handle.close()

    @pytest.mark.asyncio
    async def test_ack_happens_before_listener_completes(
        self, memory_broker, provisioner, wait_until
    ):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_listener(tenant, event, indexes):
            started.set()
            await release.wait()

        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", slow_listener)
        handle = await managed.subscribe()

        await memory_broker.publish(managed.topic, _payload(tenant="t"))
        await asyncio.wait_for(started.wait(), timeout=2)

        assert memory_broker.pending_count(managed.name) == 0
        release.set()
        await handle.close()

    @pytest.mark.asyncio
    async def test_close_deletes_subscription(self, memory_broker, provisioner, recorder):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()

        await handle.close()

        assert managed.state is SubscriptionState.CLOSED
        assert not await memory_broker.subscription_exists(managed.name)
        # topics outlive subscriptions
        assert await memory_broker.topic_exists(managed.topic)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, memory_broker, provisioner, recorder):
        closed = []
        managed = ManagedSubscription(
            memory_broker,
            provisioner,
            "tenantA",
            "listener1",
            recorder,
            on_closed=closed.append,
        )
        handle = await managed.subscribe()

        await handle.close()
        await handle.close()
        await asyncio.gather(handle.close(), handle.close())

        assert managed.state is SubscriptionState.CLOSED
        assert closed == [managed]

    @pytest.mark.asyncio
    async def test_close_when_subscription_already_gone(
        self, memory_broker, provisioner, recorder
    ):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()
        await memory_broker.delete_subscription(managed.name)

        await handle.close()

        assert managed.state is SubscriptionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_swallows_broker_errors(self, memory_broker, provisioner, recorder):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()
        memory_broker.delete_subscription = AsyncMock(side_effect=ConnectionError("down"))

        await handle.close()

        assert managed.state is SubscriptionState.CLOSED

    @pytest.mark.asyncio
    async def test_no_delivery_after_close(
        self, memory_broker, provisioner, recorder, wait_until
    ):
        managed = ManagedSubscription(
            memory_broker, provisioner, "tenantA", "listener1", recorder
        )
        handle = await managed.subscribe()
        await memory_broker.publish(managed.topic, _payload())
        await wait_until(lambda: len(recorder.calls) == 1)

        await handle.close()
        await memory_broker.publish(managed.topic, _payload())
        await asyncio.sleep(0.05)

        assert len(recorder.calls) == 1

    @pytest.mark.asyncio
    async def test_listener_can_close_its_own_handle(
        self, memory_broker, provisioner, wait_until
    ):
        holder = {}
        seen = []

        async def listener(tenant, event, indexes):
            seen.append(event)
            await holder["handle"].close()

        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", listener)
        holder["handle"] = await managed.subscribe()

        await memory_broker.publish(managed.topic, _payload(tenant="t"))
        await wait_until(lambda: managed.state is SubscriptionState.CLOSED)
        await memory_broker.publish(managed.topic, _payload(tenant="t"))
        await asyncio.sleep(0.05)

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_strict_provisioning_failure_closes_subscription(
        self, memory_broker, recorder
    ):
        memory_broker.create_topic = AsyncMock(side_effect=PermissionError("denied"))
        provisioner = ResourceProvisioner(
            memory_broker, max_attempts=1, retry_delay=0, strict=True
        )
        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", recorder)

        with pytest.raises(ProvisioningError):
            await managed.subscribe()
        assert managed.state is SubscriptionState.CLOSED

    @pytest.mark.asyncio
    async def test_subscribe_twice_on_same_manager_is_rejected(
        self, memory_broker, provisioner, recorder
    ):
        managed = ManagedSubscription(memory_broker, provisioner, "t", "l", recorder)
        handle = await managed.subscribe()

        with pytest.raises(RuntimeError):
            await managed.subscribe()
        await handle.close()

    @pytest.mark.asyncio
    async def test_close_while_provisioning_never_activates(
        self, memory_broker, provisioner, recorder
    ):
        create_subscription = memory_broker.create_subscription

        async def slow_create(topic, subscription):
            await asyncio.sleep(0.05)
            await create_subscription(topic, subscription)

        memory_broker.create_subscription = slow_create
        closed = []
        managed = ManagedSubscription(
            memory_broker, provisioner, "t", "l", recorder, on_closed=closed.append
        )

        subscribing = asyncio.create_task(managed.subscribe())
        await asyncio.sleep(0.01)
        assert managed.state is SubscriptionState.PROVISIONING
        await managed.close()
        await subscribing

        assert managed.state is SubscriptionState.CLOSED
        assert closed == [managed]
        assert await memory_broker.list_subscriptions() == []
        assert managed._dispatcher is None
