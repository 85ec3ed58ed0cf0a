import asyncio
import logging
from typing import Awaitable, Callable

from dwnstream.broker.base import BaseBroker
from dwnstream.errors import ProvisioningError, ResourceExistsError

logger = logging.getLogger(__name__)


class ResourceProvisioner:
    """
    Makes sure a topic or subscription exists before it is used.

    Existence check and creation are two separate broker round trips, so two
    callers can both see "absent" and both try to create. The loser gets a
    ``ResourceExistsError`` which counts as success.

    Any other creation failure is retried ``max_attempts`` times with
    exponential backoff. When the last attempt fails the provisioner either
    logs and lets the caller continue without the resource (default), or
    raises ``ProvisioningError`` when ``strict`` is set.
    """

    def __init__(
        self,
        broker: BaseBroker,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        backoff_factor: float = 2.0,
        strict: bool = False,
    ):
        self.broker = broker
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.strict = strict

    async def ensure_topic(self, name: str) -> str:
        await self._ensure(
            name,
            kind="topic",
            exists=lambda: self.broker.topic_exists(name),
            create=lambda: self.broker.create_topic(name),
        )
        return name

    async def ensure_subscription(self, topic: str, name: str) -> str:
        await self._ensure(
            name,
            kind="subscription",
            exists=lambda: self.broker.subscription_exists(name),
            create=lambda: self.broker.create_subscription(topic, name),
        )
        return name

    async def _ensure(
        self,
        name: str,
        kind: str,
        exists: Callable[[], Awaitable[bool]],
        create: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            if await exists():
                return
        except Exception as e:
            # treat as absent; create will tell us if it was there
            logger.warning(f"[Provisioner] could not check {kind} {name}: {e}")

        for attempt in range(1, self.max_attempts + 1):
            try:
                await create()
                logger.info(f"[Provisioner] created {kind} {name}")
                return
            except ResourceExistsError:
                logger.debug(f"[Provisioner] {kind} {name} created concurrently")
                return
            except Exception as e:
                logger.error(
                    f"[Provisioner] creating {kind} {name} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    delay = self.retry_delay * self.backoff_factor ** (attempt - 1)
                    await asyncio.sleep(delay)
                    continue
                if self.strict:
                    raise ProvisioningError(name, e) from e
                logger.critical(
                    f"[Provisioner] giving up on {kind} {name}; continuing without it"
                )
