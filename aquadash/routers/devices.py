from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from aquadash.auth import require_operator_auth
from aquadash.config import Settings, get_settings
from aquadash.errors import AquadashError
from aquadash.http_utils import command_channel, device_store, http_error, ingestion
from aquadash.models import DeviceState
from aquadash.schemas import CommandAccepted, DeviceDetail, DeviceListResponse
from aquadash.services.commands import OFFSET_SUFFIX
from aquadash.services.reducer import calibration_health
from aquadash.services.thresholds import ThresholdSet, recommended

router = APIRouter(prefix="/v1")


def _detail(device: DeviceState) -> DeviceDetail:
    return DeviceDetail(device=device, calibration_health=calibration_health(device))


@router.get("/devices", response_model=DeviceListResponse)
async def list_devices(request: Request) -> DeviceListResponse:
    snapshot = device_store(request.app).snapshot()
    devices = [_detail(snapshot[device_id]) for device_id in sorted(snapshot)]
    return DeviceListResponse(summary=ingestion(request.app).summary(), devices=devices)


@router.get("/devices/{device_id}", response_model=DeviceDetail)
async def get_device(device_id: str, request: Request) -> DeviceDetail:
    device = device_store(request.app).get(device_id)
    if device is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return _detail(device)


@router.get("/thresholds/recommended", response_model=ThresholdSet)
async def recommended_thresholds() -> ThresholdSet:
    return recommended()


@router.post(
    "/devices/{device_id}/thresholds",
    response_model=CommandAccepted,
    dependencies=[Depends(require_operator_auth)],
)
async def push_thresholds(
    device_id: str,
    payload: ThresholdSet,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> CommandAccepted:
    try:
        threshold = payload.to_backend()
        command_id = await command_channel(request.app).send_thresholds(device_id, threshold)
    except AquadashError as exc:
        raise http_error(exc) from exc
    return CommandAccepted(
        device_id=device_id,
        topic=settings.device_topic(device_id, OFFSET_SUFFIX),
        command_id=command_id,
        payload={"threshold": threshold},
    )
