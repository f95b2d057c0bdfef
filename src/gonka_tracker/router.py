from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
from gonka_tracker.errors import ParticipantNotFoundError
from gonka_tracker.models import (
    InferenceResponse,
    ModelsResponse,
    ParticipantDetailsResponse,
    ParticipantInferencesResponse,
    TimelineResponse
)
from gonka_tracker.service import InferenceService

router = APIRouter(prefix="/v1")


def get_inference_service(request: Request) -> InferenceService:
    service = getattr(request.app.state, "inference_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


@router.get("/hello")
def hello():
    return {"message": "hello"}


@router.get("/inference/current", response_model=InferenceResponse)
async def get_current_inference_stats(
    reload: bool = False,
    service: InferenceService = Depends(get_inference_service)
):
    try:
        return await service.get_current_inference(reload=reload)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch current epoch stats: {str(e)}")


@router.get("/models/current", response_model=ModelsResponse)
async def get_current_models(service: InferenceService = Depends(get_inference_service)):
    try:
        return await service.get_current_models()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch current models: {str(e)}")


@router.get("/timeline", response_model=TimelineResponse)
async def get_timeline(service: InferenceService = Depends(get_inference_service)):
    try:
        return await service.get_timeline()
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch timeline: {str(e)}")


@router.get("/inference/epochs/{epoch_id}")
async def get_epoch_inference_stats(epoch_id: int):
    return JSONResponse(status_code=501, content={"detail": "Not implemented yet"})


@router.get("/models/epochs/{epoch_id}")
async def get_epoch_models(epoch_id: int):
    return JSONResponse(status_code=501, content={"detail": "Not implemented yet"})


@router.get("/participants/{participant_id}", response_model=ParticipantDetailsResponse)
async def get_participant_details(
    participant_id: str,
    epoch_id: Optional[int] = Query(None, description="Epoch ID (optional)"),
    service: InferenceService = Depends(get_inference_service)
):
    if epoch_id is not None and epoch_id < 1:
        raise HTTPException(status_code=400, detail="Invalid epoch ID")

    try:
        return await service.get_participant_details(
            participant_id=participant_id,
            epoch_id=epoch_id
        )
    except ParticipantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch participant details: {str(e)}"
        )


@router.get("/participants/{participant_id}/inferences", response_model=ParticipantInferencesResponse)
async def get_participant_inferences(
    participant_id: str,
    epoch_id: Optional[int] = Query(None, description="Epoch ID (optional, defaults to latest)"),
    service: InferenceService = Depends(get_inference_service)
):
    if epoch_id is not None and epoch_id < 1:
        raise HTTPException(status_code=400, detail="Invalid epoch ID")

    try:
        return await service.get_participant_inferences(
            participant_id=participant_id,
            epoch_id=epoch_id
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch participant inferences: {str(e)}"
        )
