import httpx
import pytest
from gonka_tracker.client import GonkaClient
from gonka_tracker.database import MemoryCacheDB
from gonka_tracker.service import InferenceService

BLOCKS_PATH = "/chain-api/cosmos/base/tendermint/v1beta1/blocks/"
PARTICIPANTS_PATH = "/chain-api/productscience/inference/inference/participant"


def epoch_stats(inference_count, missed, invalidated="0", validated="0"):
    return {
        "inference_count": inference_count,
        "missed_requests": missed,
        "earned_coins": "0",
        "rewarded_coins": "0",
        "burned_coins": "0",
        "validated_inferences": validated,
        "invalidated_inferences": invalidated
    }


class FakeUpstream:
    """Serves canned Gonka API responses and records every request."""

    def __init__(self):
        self.height = 120000
        self.epoch_id = 42
        self.active = [
            {"index": "idx-1", "validator_key": "vk-1", "weight": 5, "inference_url": "http://n1", "models": ["m1"]},
            {"index": "idx-3", "validator_key": "vk-3", "weight": 7, "inference_url": "http://n3", "models": ["m1", "m2"]},
        ]
        self.participants = [
            {
                "index": "idx-1",
                "address": "gonka1one",
                "inference_url": "http://n1",
                "status": "ACTIVE",
                "current_epoch_stats": epoch_stats("10", "2", invalidated="1", validated="9")
            },
            {
                "index": "idx-2",
                "address": "gonka1two",
                "inference_url": "http://n2",
                "status": "INACTIVE",
                "current_epoch_stats": epoch_stats("4", "0")
            },
            {
                "index": "idx-3",
                "address": "gonka1three",
                "inference_url": "http://n3",
                "status": "ACTIVE",
                "current_epoch_stats": epoch_stats("0", "0")
            },
        ]
        self.blocks = {
            120000: "2025-10-19T12:00:00.123456789Z",
            110000: "2025-10-19T08:20:00Z",
        }
        self.nested_blocks = False
        self.models_available = False
        self.models_all = {"models": [{"id": "m1", "v_ram": "24"}]}
        self.models_stats = {"stats": [{"model": "m1", "ai_tokens": "100", "inferences": 3}]}
        self.unavailable = False
        self.requests = []

    def paths(self):
        return [request.url.path for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self.unavailable:
            return httpx.Response(503, json={"message": "unavailable"})

        if path == "/chain-rpc/status":
            return httpx.Response(200, json={"result": {"sync_info": {"latest_block_height": str(self.height)}}})
        if path == "/v1/epochs/latest":
            return httpx.Response(200, json={"block_height": self.height, "latest_epoch": {"index": self.epoch_id}})
        if path == "/v1/epochs/current/participants":
            return httpx.Response(200, json={
                "active_participants": {"epoch_group_id": self.epoch_id, "participants": self.active}
            })
        if path.startswith("/v1/epochs/") and path.endswith("/participants"):
            epoch_id = int(path.split("/")[3])
            return httpx.Response(200, json={
                "active_participants": {"epoch_group_id": epoch_id, "participants": self.active}
            })
        if path == PARTICIPANTS_PATH:
            return httpx.Response(200, json={"participant": self.participants})
        if path.startswith(BLOCKS_PATH):
            height = int(path[len(BLOCKS_PATH):])
            if height not in self.blocks:
                return httpx.Response(404, json={"message": "block not found"})
            block = {"block": {"header": {"height": str(height), "time": self.blocks[height]}}}
            if self.nested_blocks:
                block = {"result": block}
            return httpx.Response(200, json=block)
        if path == "/models/all" and self.models_available:
            return httpx.Response(200, json=self.models_all)
        if path == "/models/stats" and self.models_available:
            return httpx.Response(200, json=self.models_stats)

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def gonka_client(upstream):
    return GonkaClient(
        base_urls=["http://node1.example.com"],
        transport=httpx.MockTransport(upstream.handler)
    )


@pytest.fixture
def memory_db():
    return MemoryCacheDB()


@pytest.fixture
def service(gonka_client, memory_db):
    return InferenceService(client=gonka_client, cache_db=memory_db)
