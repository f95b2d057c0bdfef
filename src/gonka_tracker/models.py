import math
from pydantic import BaseModel, computed_field
from typing import Optional, List, Dict, Any


def round_half_up(value: float, places: int) -> float:
    # Ties go up, not to the even digit as with round().
    scale = 10 ** places
    return math.floor(value * scale + 0.5) / scale


def _counter(stats: Dict[str, Any], name: str) -> int:
    return int(stats.get(name) or 0)


def compute_missed_rate(stats: Dict[str, Any]) -> float:
    missed = _counter(stats, "missed_requests")
    inferences = _counter(stats, "inference_count")
    total = missed + inferences

    if total == 0:
        return 0.0

    return round_half_up(missed / total, 4)


def compute_invalidation_rate(stats: Dict[str, Any]) -> float:
    invalidated = _counter(stats, "invalidated_inferences")
    inferences = _counter(stats, "inference_count")

    if inferences == 0:
        return 0.0

    return min(1.0, round_half_up(invalidated / inferences, 4))


class ParticipantStats(BaseModel):
    index: str
    address: str
    weight: int = 0
    validator_key: Optional[str] = None
    inference_url: Optional[str] = None
    status: Optional[str] = None
    models: List[str] = []
    # Passed through from the chain as-is; counters are string-encoded ints.
    current_epoch_stats: Dict[str, Any] = {}

    @computed_field
    @property
    def missed_rate(self) -> float:
        return compute_missed_rate(self.current_epoch_stats)

    @computed_field
    @property
    def invalidation_rate(self) -> float:
        return compute_invalidation_rate(self.current_epoch_stats)


class InferenceResponse(BaseModel):
    epoch_id: int
    height: int
    participants: List[ParticipantStats]
    cached_at: Optional[str] = None
    is_current: bool = False
    current_block_height: Optional[int] = None
    current_block_timestamp: Optional[str] = None
    avg_block_time: Optional[float] = None


class ModelsResponse(BaseModel):
    epoch_id: int
    height: int
    models: List[Dict[str, Any]]
    stats: List[Dict[str, Any]]
    cached_at: Optional[str] = None
    is_current: bool = False
    current_block_timestamp: Optional[str] = None
    avg_block_time: Optional[float] = None


class BlockInfo(BaseModel):
    height: int
    timestamp: str


class TimelineResponse(BaseModel):
    current_block: BlockInfo
    reference_block: BlockInfo
    avg_block_time: float
    events: List[Dict[str, Any]] = []
    current_epoch_start: int
    current_epoch_index: int
    epoch_length: int
    epoch_stages: Optional[Dict[str, Any]] = None
    next_epoch_stages: Optional[Dict[str, Any]] = None


class RewardInfo(BaseModel):
    epoch_id: int
    assigned_reward_gnk: int
    claimed: bool


class SeedInfo(BaseModel):
    participant: str
    epoch_index: int
    signature: str


class WarmKeyInfo(BaseModel):
    grantee_address: str
    granted_at: str


class HardwareInfo(BaseModel):
    type: str
    count: int


class MLNodeInfo(BaseModel):
    local_id: str
    status: str
    models: List[str]
    hardware: List[HardwareInfo]
    host: str
    port: str


class ParticipantDetailsResponse(BaseModel):
    participant: ParticipantStats
    rewards: List[RewardInfo] = []
    seed: Optional[SeedInfo] = None
    warm_keys: List[WarmKeyInfo] = []
    ml_nodes: List[MLNodeInfo] = []


class ParticipantInferencesResponse(BaseModel):
    epoch_id: int
    participant_id: str
    successful: List[Dict[str, Any]] = []
    expired: List[Dict[str, Any]] = []
    invalidated: List[Dict[str, Any]] = []
    cached_at: Optional[str] = None
