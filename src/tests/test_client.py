import httpx
import pytest
from gonka_tracker.client import GonkaClient
from gonka_tracker.errors import UpstreamError


def make_client(base_urls, handler):
    return GonkaClient(base_urls=base_urls, transport=httpx.MockTransport(handler))


def test_client_initialization():
    client = GonkaClient(base_urls=["http://node1.example.com", "http://node2.example.com"])
    assert len(client.base_urls) == 2
    assert client.current_url_index == 0
    assert client.timeout == 30.0


def test_url_rotation():
    client = GonkaClient(base_urls=["http://node1.example.com", "http://node2.example.com"])

    assert client._get_current_url() == "http://node1.example.com"

    client._rotate_url()
    assert client._get_current_url() == "http://node2.example.com"

    client._rotate_url()
    assert client._get_current_url() == "http://node1.example.com"


@pytest.mark.parametrize("base, path", [
    ("http://node1.example.com/", "/v1/epochs/latest"),
    ("http://node1.example.com", "v1/epochs/latest"),
    ("http://node1.example.com/", "v1/epochs/latest"),
    ("http://node1.example.com", "/v1/epochs/latest"),
])
def test_url_joining(base, path):
    assert GonkaClient._join(base, path) == "http://node1.example.com/v1/epochs/latest"


@pytest.mark.asyncio
async def test_failover_to_next_base():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "node1.example.com":
            return httpx.Response(503)
        return httpx.Response(200, json={"latest_epoch": {"index": 7}})

    client = make_client(["http://node1.example.com", "http://node2.example.com"], handler)

    data = await client.get_latest_epoch()

    assert data["latest_epoch"]["index"] == 7
    assert hosts == ["node1.example.com", "node2.example.com"]
    assert client.current_url_index == 1


@pytest.mark.asyncio
async def test_rotation_is_sticky_across_calls():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "node1.example.com":
            return httpx.Response(503)
        return httpx.Response(200, json={})

    client = make_client(
        ["http://node1.example.com", "http://node2.example.com", "http://node3.example.com"],
        handler
    )

    await client.get_latest_epoch()
    await client.get_latest_epoch()

    assert hosts == ["node1.example.com", "node2.example.com", "node2.example.com"]
    assert client.current_url_index == 1


@pytest.mark.asyncio
async def test_wraps_around_to_first_base():
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "node2.example.com":
            return httpx.Response(500)
        return httpx.Response(200, json={})

    client = make_client(["http://node1.example.com", "http://node2.example.com"], handler)
    client.current_url_index = 1

    await client.get_latest_epoch()

    assert hosts == ["node2.example.com", "node1.example.com"]
    assert client.current_url_index == 0


@pytest.mark.asyncio
async def test_all_bases_failing_raises_after_one_attempt_each():
    attempts = []

    def handler(request):
        attempts.append(request.url.host)
        return httpx.Response(503)

    client = make_client(["http://node1.example.com", "http://node2.example.com"], handler)

    with pytest.raises(UpstreamError) as exc_info:
        await client.get_latest_epoch()

    assert attempts == ["node1.example.com", "node2.example.com"]
    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)
    assert "All URLs failed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_network_errors_trigger_failover():
    def handler(request):
        if request.url.host == "node1.example.com":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, json={"ok": True})

    client = make_client(["http://node1.example.com", "http://node2.example.com"], handler)

    assert await client.get_latest_epoch() == {"ok": True}


@pytest.mark.asyncio
async def test_no_base_urls_makes_single_attempt():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = make_client([], handler)

    with pytest.raises(UpstreamError):
        await client.get_latest_epoch()

    assert len(calls) <= 1


@pytest.mark.asyncio
async def test_get_latest_height(gonka_client, upstream):
    height = await gonka_client.get_latest_height()

    assert height == 120000
    assert isinstance(height, int)
    assert upstream.paths() == ["/chain-rpc/status"]


@pytest.mark.asyncio
async def test_all_participants_pins_height_with_header(gonka_client, upstream):
    data = await gonka_client.get_all_participants(height=1234)

    assert len(data["participant"]) == 3

    request = upstream.requests[-1]
    assert request.headers["X-Cosmos-Block-Height"] == "1234"
    assert request.url.params["pagination.limit"] == "10000"
    assert "height" not in request.url.params


@pytest.mark.asyncio
async def test_all_participants_without_height_sends_no_header(gonka_client, upstream):
    await gonka_client.get_all_participants()

    assert "X-Cosmos-Block-Height" not in upstream.requests[-1].headers


@pytest.mark.asyncio
async def test_endpoint_paths(gonka_client, upstream):
    upstream.models_available = True

    await gonka_client.get_latest_epoch()
    await gonka_client.get_current_epoch_participants()
    await gonka_client.get_epoch_participants(41)
    await gonka_client.get_block(120000)
    await gonka_client.get_models_all()
    await gonka_client.get_models_stats()

    assert upstream.paths() == [
        "/v1/epochs/latest",
        "/v1/epochs/current/participants",
        "/v1/epochs/41/participants",
        "/chain-api/cosmos/base/tendermint/v1beta1/blocks/120000",
        "/models/all",
        "/models/stats",
    ]


@pytest.mark.asyncio
async def test_all_participants_zero_height_sends_no_header(gonka_client, upstream):
    await gonka_client.get_all_participants(height=0)

    assert "X-Cosmos-Block-Height" not in upstream.requests[-1].headers


@pytest.mark.asyncio
async def test_latest_height_with_null_sync_info():
    def handler(request):
        return httpx.Response(200, json={"result": {"sync_info": None}})

    client = make_client(["http://node1.example.com"], handler)

    assert await client.get_latest_height() == 0
