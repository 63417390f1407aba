"""
Concurrency and infrastructure safety tests.

Demonstrates:
1. Distributed lock acquire / release semantics (mocked Redis).
2. A request whose lock stays busy surfaces as a conflict, never a write.
3. Change events reach both pub/sub channels; a Redis outage is swallowed.
4. The Paystack client maps processor replies onto transfer outcomes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from unittest.mock import AsyncMock

import httpx
import pytest
import redis.asyncio as aioredis

from roadside.domain.enums import ActorRole, RequestStatus, ServiceType
from roadside.domain.errors import (
    AssignmentConflict,
    SettlementInitiationFailed,
    TransitionConflict,
)
from roadside.infrastructure.events import (
    FIREHOSE_CHANNEL,
    RedisChangePublisher,
    request_channel,
)
from roadside.infrastructure.locks import (
    DistributedLock,
    LockUnavailable,
    request_lock_key,
)
from roadside.infrastructure.payments import PaystackClient, verify_webhook_signature
from roadside.services.lifecycle import RequestLifecycleService
from tests.conftest import add_provider


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_acquire_within_polls_until_free(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(side_effect=[False, False, True])

        lock = DistributedLock(mock_redis, "test-key", poll_interval=0.001)
        assert await lock.acquire_within(1.0) is True
        assert mock_redis.set.await_count == 3

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
        assert mock_redis.eval.call_args.args[1:] == (1, "lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockUnavailable, match="Could not acquire lock"):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()

    def test_request_lock_key(self):
        assert request_lock_key(42) == "service_request:42"


class TestBusyRequestLock:
    """A lock that never frees turns every transition into a conflict."""

    @pytest.fixture
    def busy_service(self, session_factory, publisher, payments, tracking):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        def lock_factory(key: str) -> DistributedLock:
            return DistributedLock(mock_redis, key, wait_seconds=0.0)

        return RequestLifecycleService(
            session_factory,
            lock_factory,
            publisher,
            payments,
            tracking,
            retry_delay_seconds=0.0,
        )

    @pytest.mark.asyncio
    async def test_cancel_while_locked_is_a_conflict(self, busy_service, publisher):
        request = await busy_service.create_request(
            service_type=ServiceType.BATTERY_JUMP,
            location="Osu",
            customer_id="cust-1",
        )
        with pytest.raises(TransitionConflict, match="busy"):
            await busy_service.cancel(request.id, ActorRole.CUSTOMER)

        current = await busy_service.get_request(request.id)
        assert current.status == RequestStatus.PENDING
        assert publisher.names(request.id) == ["created"]

    @pytest.mark.asyncio
    async def test_assign_while_locked_is_an_assignment_conflict(
        self, busy_service, session_factory
    ):
        provider = await add_provider(session_factory)
        request = await busy_service.create_request(
            service_type=ServiceType.TOWING,
            location="Osu",
            customer_id="cust-1",
        )
        with pytest.raises(AssignmentConflict):
            await busy_service.assign_provider(request.id, provider.id)

        current = await busy_service.get_request(request.id)
        assert current.provider_id is None


class TestChangePublisher:
    EVENT = {"event": "assigned", "request_id": 9, "status": "assigned"}

    @pytest.mark.asyncio
    async def test_publishes_to_firehose_and_request_channel(self):
        mock_redis = AsyncMock()
        await RedisChangePublisher(mock_redis).publish(self.EVENT)

        channels = [c.args[0] for c in mock_redis.publish.await_args_list]
        assert channels == [FIREHOSE_CHANNEL, request_channel(9)]
        assert json.loads(mock_redis.publish.await_args.args[1]) == self.EVENT

    @pytest.mark.asyncio
    async def test_redis_outage_is_logged_not_raised(self, caplog):
        mock_redis = AsyncMock()
        mock_redis.publish = AsyncMock(side_effect=aioredis.ConnectionError("down"))

        await RedisChangePublisher(mock_redis).publish(self.EVENT)
        assert "Could not publish assigned for request 9" in caplog.text

    def test_channel_names(self):
        assert request_channel(9) == "service_requests:9"


class TestPaystackClient:
    def _client(self, handler) -> PaystackClient:
        http = httpx.AsyncClient(
            base_url="https://api.paystack.test",
            transport=httpx.MockTransport(handler),
        )
        return PaystackClient("sk_test", client=http)

    @pytest.mark.asyncio
    async def test_transfer_sent_in_minor_units(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"status": True, "data": {"transfer_code": "TRF_abc"}}
            )

        client = self._client(handler)
        result = await client.initiate_transfer(5, "RCP_1", 127.5)
        await client.aclose()

        assert result.success and result.transfer_id == "TRF_abc"
        assert seen["path"] == "/transfer"
        assert seen["body"]["amount"] == 12750
        assert seen["body"]["recipient"] == "RCP_1"
        assert seen["body"]["reference"] == "payout-5"

    @pytest.mark.asyncio
    async def test_rejection_raises_with_processor_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"status": False, "message": "Insufficient balance"}
            )

        client = self._client(handler)
        with pytest.raises(SettlementInitiationFailed, match="Insufficient balance"):
            await client.initiate_transfer(5, "RCP_1", 10.0)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = self._client(handler)
        with pytest.raises(SettlementInitiationFailed, match="transfer request failed"):
            await client.initiate_transfer(5, "RCP_1", 10.0)
        await client.aclose()


class TestWebhookSignature:
    def test_valid_signature(self):
        body = b'{"event":"charge.success"}'
        signature = hmac.new(b"secret", body, hashlib.sha512).hexdigest()
        assert verify_webhook_signature(body, signature, "secret")

    def test_tampered_body_rejected(self):
        signature = hmac.new(b"secret", b"{}", hashlib.sha512).hexdigest()
        assert not verify_webhook_signature(b'{"x":1}', signature, "secret")
