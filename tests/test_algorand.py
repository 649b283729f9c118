"""algod / indexer REST 客户端的请求与响应解析。"""

from __future__ import annotations

import httpx
import pytest
from conftest import CREATOR, TRADER

from alpha_arcade_cli.clients.algorand import AlgorandClient
from alpha_arcade_cli.clients.ledger import GroupResult, Payment, list_all_created_applications
from alpha_arcade_cli.config import Settings


def _algod(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v2/applications/42":
        return httpx.Response(200, json={"id": 42, "params": {"global-state": [{"key": "a2V5", "value": {}}]}})
    if path == f"/v2/accounts/{TRADER}":
        return httpx.Response(200, json={"assets": [{"asset-id": 7, "amount": 15}, {"amount": 3}]})
    if path == "/v2/transactions/pending/TX":
        return httpx.Response(200, json={"confirmed-round": 9, "inner-txns": []})
    return httpx.Response(404)


def _indexer(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == f"/v2/accounts/{CREATOR}/created-applications":
        if request.url.params.get("next") == "p2":
            return httpx.Response(200, json={"applications": [{"id": 3}]})
        return httpx.Response(
            200,
            json={"applications": [{"id": 1}, {"id": 2, "deleted": True}], "next-token": "p2"},
        )
    if path == "/v2/assets/7":
        return httpx.Response(200, json={"asset": {"index": 7, "params": {"name": "Alpha Market 1 Yes"}}})
    if path == "/v2/transactions/TX":
        return httpx.Response(200, json={"transaction": {"id": "TX"}})
    return httpx.Response(404)


def _client(submitter=None) -> AlgorandClient:
    settings = Settings(algod_token="algod-secret")
    return AlgorandClient(
        settings,
        submitter,
        algod_transport=httpx.MockTransport(_algod),
        indexer_transport=httpx.MockTransport(_indexer),
    )


@pytest.mark.asyncio
async def test_reads_parse_algod_and_indexer_payloads() -> None:
    client = _client()
    try:
        assert await client.get_application_state(42) == [{"key": "a2V5", "value": {}}]
        holdings = await client.get_account_assets(TRADER)
        assert [(h.asset_id, h.amount) for h in holdings] == [(7, 15)]
        assert (await client.get_asset_params(7))["name"] == "Alpha Market 1 Yes"
        assert (await client.get_pending_transaction("TX"))["confirmed-round"] == 9
        assert await client.lookup_transaction("TX") == {"id": "TX"}
        apps = await list_all_created_applications(client, CREATOR)
        assert [a["id"] for a in apps] == [1, 3]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_missing_application_raises_http_error() -> None:
    client = _client()
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.get_application_state(99)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_execute_group_requires_submitter() -> None:
    client = _client()
    try:
        with pytest.raises(RuntimeError):
            await client.execute_group([Payment(sender=TRADER, receiver=TRADER, amount=0)])
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_execute_group_delegates_to_submitter() -> None:
    received = []

    async def submitter(operations):
        received.extend(operations)
        return GroupResult(tx_ids=["T0"], confirmed_round=5)

    client = _client(submitter)
    op = Payment(sender=TRADER, receiver=TRADER, amount=1)
    try:
        result = await client.execute_group([op])
    finally:
        await client.close()
    assert received == [op]
    assert result.confirmed_round == 5
