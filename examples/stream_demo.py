import asyncio
import logging

from decouple import config

from dwnstream import FileDataStore, PubSubEventStream

logging.basicConfig(level=config("DWN_LOG_LEVEL", default="INFO"))


def on_event(tenant, event, indexes):
    print(f"[{tenant}] {event} {indexes}")


async def main():
    # needs DWN_PROJECT_ID and a reachable REDIS_URL
    stream = PubSubEventStream()
    data_store = FileDataStore()
    await stream.open()
    await data_store.open()

    tenant = "did:example:alice"
    subscription = await stream.subscribe(tenant, "demo-listener", on_event)

    put = await data_store.put(tenant, "record-1", "cid-1", b"hello world")
    await stream.emit(
        tenant,
        {"type": "RecordsWrite", "dataCid": put.data_cid},
        {"schema": "https://example.com/note", "dataSize": put.data_size},
    )
    await asyncio.sleep(2)

    await subscription.close()
    await stream.close()
    await data_store.close()


if __name__ == "__main__":
    asyncio.run(main())
