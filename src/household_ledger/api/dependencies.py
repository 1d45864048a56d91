import asyncio
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from household_ledger.ledger.repository import Ledger
from household_ledger.services.classification import ClassificationPipeline
from household_ledger.services.connections import ConnectionService
from household_ledger.services.households import CONNECTION_ROLES, HouseholdService
from household_ledger.services.imports import ImportService
from household_ledger.services.receipts import ReceiptProcessor
from household_ledger.services.sync import SyncController


def _state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return value


def get_ledger(request: Request) -> Ledger:
    return _state(request, "ledger")  # type: ignore[return-value]


def get_households(request: Request) -> HouseholdService:
    return _state(request, "households")  # type: ignore[return-value]


def get_classification(request: Request) -> ClassificationPipeline:
    return _state(request, "classification")  # type: ignore[return-value]


def get_imports(request: Request) -> ImportService:
    return _state(request, "imports")  # type: ignore[return-value]


def get_sync(request: Request) -> SyncController:
    return _state(request, "sync")  # type: ignore[return-value]


def get_connections(request: Request) -> ConnectionService:
    return _state(request, "connections")  # type: ignore[return-value]


def get_receipts(request: Request) -> ReceiptProcessor:
    return _state(request, "receipts")  # type: ignore[return-value]


def get_current_user(x_user_id: Annotated[str | None, Header()] = None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


async def require_member(
    household_id: str,
    user_id: Annotated[str, Depends(get_current_user)],
    households: Annotated[HouseholdService, Depends(get_households)],
) -> str:
    await asyncio.to_thread(households.authorize, household_id, user_id)
    return household_id


async def require_admin(
    household_id: str,
    user_id: Annotated[str, Depends(get_current_user)],
    households: Annotated[HouseholdService, Depends(get_households)],
) -> str:
    await asyncio.to_thread(households.authorize, household_id, user_id, CONNECTION_ROLES)
    return household_id


MemberHousehold = Annotated[str, Depends(require_member)]
AdminHousehold = Annotated[str, Depends(require_admin)]
