import logging
import re
import time
from typing import Optional, Dict, Any, List, Awaitable
from datetime import datetime, timezone
from gonka_tracker.client import GonkaClient
from gonka_tracker.database import CacheStore
from gonka_tracker.errors import ParticipantNotFoundError
from gonka_tracker.models import (
    ParticipantStats,
    InferenceResponse,
    ModelsResponse,
    BlockInfo,
    TimelineResponse,
    ParticipantDetailsResponse,
    ParticipantInferencesResponse,
    round_half_up
)

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 30
BLOCK_TIME_SAMPLE_BLOCKS = 10000
DEFAULT_BLOCK_TIME = 6.0
EPOCH_LENGTH = 25000

# Tried in order; the first path present in a block response wins.
BLOCK_TIME_PATHS = (
    ("block", "header", "time"),
    ("result", "block", "header", "time"),
)

_FRACTION_RE = re.compile(r"\.(\d+)")


def extract_block_time(block_data: Any) -> Optional[str]:
    for path in BLOCK_TIME_PATHS:
        value = block_data
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value:
            return value
    return None


def parse_block_time(value: str) -> datetime:
    # Tendermint reports nanoseconds; datetime keeps microseconds.
    normalized = value.strip().replace("Z", "+00:00")
    normalized = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _build_active_map(epoch_data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    participants = (epoch_data.get("active_participants") or {}).get("participants") or []

    active = {}
    for p in participants:
        index = p.get("index")
        if not index:
            continue
        models = p.get("models")
        active[index] = {
            "weight": p.get("weight") or 0,
            "models": models if isinstance(models, list) else [],
            "validator_key": p.get("validator_key") or None
        }
    return active


def _merge_participant(p: Dict[str, Any], extra: Dict[str, Any]) -> ParticipantStats:
    return ParticipantStats(
        index=p["index"],
        address=p.get("address") or "",
        weight=extra["weight"],
        validator_key=extra["validator_key"],
        inference_url=p.get("inference_url"),
        status=p.get("status"),
        models=extra["models"],
        current_epoch_stats=p.get("current_epoch_stats") or {}
    )


def synthesize_models(participants: List[ParticipantStats]) -> Dict[str, List[Dict[str, Any]]]:
    """Build models/all and models/stats shaped payloads from participant data.

    Used when the upstream model endpoints are missing. Fields that cannot be
    derived from participants are filled with "-" or zero.
    """
    by_model: Dict[str, Dict[str, Any]] = {}
    for p in participants:
        for model_id in p.models:
            entry = by_model.get(model_id)
            if entry is None:
                entry = {
                    "id": model_id,
                    "total_weight": 0,
                    "participant_count": 0,
                    "proposed_by": "-",
                    "v_ram": "-",
                    "throughput_per_nonce": "-",
                    "units_of_compute_per_token": "-",
                    "hf_repo": "-",
                    "hf_commit": "-",
                    "model_args": [],
                    "validation_threshold": {"value": "0", "exponent": 0}
                }
                by_model[model_id] = entry
            entry["total_weight"] += p.weight
            entry["participant_count"] += 1

    return {
        "models_all": {"models": list(by_model.values())},
        "models_stats": {
            "stats": [{"model": model_id, "ai_tokens": "0", "inferences": 0} for model_id in by_model]
        }
    }


class InferenceService:
    def __init__(self, client: GonkaClient, cache_db: CacheStore):
        self.client = client
        self.cache_db = cache_db
        self.current_epoch_data: Optional[InferenceResponse] = None
        self.last_fetch_time: Optional[float] = None

    async def _persist(self, what: str, operation: Awaitable[Any]) -> bool:
        try:
            await operation
            return True
        except Exception as e:
            logger.warning(f"Failed to persist {what}, continuing without it: {e}")
            return False

    async def _latest_epoch_id(self) -> int:
        latest = await self.client.get_latest_epoch()
        return int((latest.get("latest_epoch") or {}).get("index") or 0)

    async def _avg_block_time(self, current_height: int) -> float:
        reference_height = current_height - BLOCK_TIME_SAMPLE_BLOCKS
        try:
            current_block = await self.client.get_block(current_height)
            reference_block = await self.client.get_block(reference_height)

            current_time = parse_block_time(extract_block_time(current_block))
            reference_time = parse_block_time(extract_block_time(reference_block))

            elapsed = max(1.0, (current_time - reference_time).total_seconds())
            return round_half_up(elapsed / (current_height - reference_height), 2)
        except Exception as e:
            logger.warning(f"Could not estimate block time at height {current_height}, using {DEFAULT_BLOCK_TIME}s: {e}")
            return DEFAULT_BLOCK_TIME

    async def _block_timestamp(self, height: int, default: Optional[str] = None) -> str:
        block = await self.client.get_block(height)
        return extract_block_time(block) or default or datetime.utcnow().isoformat()

    async def get_current_inference(self, reload: bool = False) -> InferenceResponse:
        current_time = time.time()
        cache_age = (current_time - self.last_fetch_time) if self.last_fetch_time is not None else None

        if not reload and self.current_epoch_data and cache_age is not None and cache_age < CACHE_TTL_SECONDS:
            logger.info(f"Returning cached current epoch data (age: {cache_age:.1f}s)")
            return self.current_epoch_data

        try:
            logger.info("Fetching fresh current epoch data")
            height = await self.client.get_latest_height()
            epoch_data = await self.client.get_current_epoch_participants()
            epoch_id = (epoch_data.get("active_participants") or {}).get("epoch_group_id") or 0

            all_participants_data = await self.client.get_all_participants(height=height)
            participants_list = all_participants_data.get("participant") or []

            active = _build_active_map(epoch_data)

            # Only participants active in this epoch are reported here.
            participants_stats = [
                _merge_participant(p, active[p["index"]])
                for p in participants_list if p.get("index") in active
            ]

            rows = [dict(p.model_dump(), seed_signature=None) for p in participants_stats]
            await self._persist(
                f"stats for epoch {epoch_id} at height {height}",
                self.cache_db.save_stats_batch(epoch_id=epoch_id, height=height, participants_stats=rows)
            )

            avg_block_time = await self._avg_block_time(height)
            block_timestamp = await self._block_timestamp(height)

            response = InferenceResponse(
                epoch_id=epoch_id,
                height=height,
                participants=participants_stats,
                cached_at=datetime.utcnow().isoformat(),
                is_current=True,
                current_block_height=height,
                current_block_timestamp=block_timestamp,
                avg_block_time=avg_block_time
            )

            self.current_epoch_data = response
            self.last_fetch_time = current_time

            logger.info(f"Fetched current epoch {epoch_id} stats at height {height}: {len(participants_stats)} participants")

            return response

        except Exception as e:
            logger.error(f"Error fetching current epoch stats: {e}")
            raise

    async def get_current_models(self) -> ModelsResponse:
        height = await self.client.get_latest_height()
        epoch_id = await self._latest_epoch_id()

        try:
            models_all = await self.client.get_models_all()
            models_stats = await self.client.get_models_stats()
        except Exception as e:
            logger.warning(f"Models endpoints unavailable, deriving models from participants: {e}")
            current = await self.get_current_inference()
            synthesized = synthesize_models(current.participants)
            models_all = synthesized["models_all"]
            models_stats = synthesized["models_stats"]

        await self._persist(
            f"models for epoch {epoch_id} at height {height}",
            self.cache_db.save_models_cache(epoch_id, height, models_all, models_stats)
        )

        avg_block_time = await self._avg_block_time(height)
        block_timestamp = await self._block_timestamp(height)

        models = models_all.get("models") if isinstance(models_all, dict) else None
        stats = models_stats.get("stats") if isinstance(models_stats, dict) else None

        return ModelsResponse(
            epoch_id=epoch_id,
            height=height,
            models=models if isinstance(models, list) else [],
            stats=stats if isinstance(stats, list) else [],
            cached_at=datetime.utcnow().isoformat(),
            is_current=True,
            current_block_timestamp=block_timestamp,
            avg_block_time=avg_block_time
        )

    async def get_timeline(self) -> TimelineResponse:
        height = await self.client.get_latest_height()
        epoch_id = await self._latest_epoch_id()
        avg_block_time = await self._avg_block_time(height)
        block_timestamp = await self._block_timestamp(height)

        reference_height = max(1, height - BLOCK_TIME_SAMPLE_BLOCKS)
        reference_timestamp = await self._block_timestamp(reference_height, default=block_timestamp)

        response = TimelineResponse(
            current_block=BlockInfo(height=height, timestamp=block_timestamp),
            reference_block=BlockInfo(height=reference_height, timestamp=reference_timestamp),
            avg_block_time=avg_block_time,
            events=[],
            # TODO: replace with the epoch's effective_block_height once stages are exposed
            current_epoch_start=height,
            current_epoch_index=epoch_id,
            epoch_length=EPOCH_LENGTH,
            epoch_stages=None,
            next_epoch_stages=None
        )

        await self._persist("timeline", self.cache_db.save_timeline_cache(response.model_dump()))

        return response

    async def get_participant_details(
        self,
        participant_id: str,
        epoch_id: Optional[int] = None
    ) -> ParticipantDetailsResponse:
        height = await self.client.get_latest_height()
        epoch_data = await self.client.get_current_epoch_participants()
        all_participants_data = await self.client.get_all_participants(height=height)
        participants_list = all_participants_data.get("participant") or []

        base = next((p for p in participants_list if p.get("index") == participant_id), None)
        if base is None:
            raise ParticipantNotFoundError(participant_id)

        active = _build_active_map(epoch_data)
        extra = active.get(participant_id) or {"weight": 0, "models": [], "validator_key": None}

        return ParticipantDetailsResponse(
            participant=_merge_participant(base, extra),
            rewards=[],
            seed=None,
            warm_keys=[],
            ml_nodes=[]
        )

    async def get_participant_inferences(
        self,
        participant_id: str,
        epoch_id: Optional[int] = None
    ) -> ParticipantInferencesResponse:
        effective_epoch_id = epoch_id if epoch_id else await self._latest_epoch_id()

        return ParticipantInferencesResponse(
            epoch_id=effective_epoch_id,
            participant_id=participant_id,
            successful=[],
            expired=[],
            invalidated=[],
            cached_at=datetime.utcnow().isoformat()
        )
