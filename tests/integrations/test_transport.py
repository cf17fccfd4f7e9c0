"""
Tests for the in-memory transport and the in-memory knowledge store.
"""

import pytest

from app.errors import AuthError, TransportError
from app.integrations.transport import Delivery, MemoryTransport
from app.services.knowledge_store import InMemoryKnowledgeStore


class TestMemoryTransport:
    @pytest.mark.asyncio
    async def test_receive_ack_and_drop(self):
        transport = MemoryTransport()
        await transport.open()
        transport.push(Delivery(delivery_id="d1", external_id="e1", content="hi"))

        delivery = await transport.receive(timeout=0.1)
        await transport.ack(delivery)
        assert transport.acked == ["d1"]
        assert await transport.receive(timeout=0.01) is None

        transport.drop()
        with pytest.raises(TransportError):
            await transport.receive(timeout=0.1)
        assert transport.is_open is False

    @pytest.mark.asyncio
    async def test_auth_error(self):
        with pytest.raises(AuthError):
            await MemoryTransport(auth_error="revoked").authorize()


class TestInMemoryKnowledgeStore:
    @pytest.mark.asyncio
    async def test_writes_are_idempotent(self):
        store = InMemoryKnowledgeStore()

        first = await store.write_page(None, "Deploy freeze", "Fridays only.", "policy")
        second = await store.write_page(None, "Deploy freeze", "Fridays  only.", "policy")

        assert first == second == "policy/deploy-freeze.md"
        assert store.revisions[first] == 1

    @pytest.mark.asyncio
    async def test_find_by_title(self):
        store = InMemoryKnowledgeStore()
        await store.write_page("sop/oncall.md", "On-call handoff", "Steps")

        assert (await store.find_page("on-call HANDOFF")).page_ref == "sop/oncall.md"
        assert await store.find_page("unknown") is None
