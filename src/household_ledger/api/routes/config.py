from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from household_ledger.api.dependencies import get_current_user
from household_ledger.core import configuration

router = APIRouter(prefix="/api/config", dependencies=[Depends(get_current_user)])


@router.get("")
async def get_config() -> dict[str, Any]:
    return configuration.build_config_view()


@router.post("")
async def save_config(request: Request, payload: dict[str, Any]) -> Any:
    errors, updates = configuration.apply_config_updates(payload)
    if errors:
        return JSONResponse(status_code=422, content={"detail": errors})
    configuration.apply_runtime_updates(request.app, updates)
    return {"saved": sorted(updates), **configuration.build_config_view()}
