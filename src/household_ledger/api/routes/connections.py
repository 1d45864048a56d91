import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import (
    AdminHousehold,
    MemberHousehold,
    get_connections,
    get_current_user,
    get_ledger,
    get_sync,
)
from household_ledger.api.schemas import ConnectionOut, ExchangeOut, ExchangeRequest, LinkTokenOut
from household_ledger.ledger.repository import Ledger
from household_ledger.models import SyncSummary
from household_ledger.services.connections import ConnectionService
from household_ledger.services.sync import SyncController

router = APIRouter(prefix="/api/households/{household_id}/connections")


@router.post("/link-token", response_model=LinkTokenOut)
async def create_link_token(
    household_id: AdminHousehold,
    user_id: Annotated[str, Depends(get_current_user)],
    connections: Annotated[ConnectionService, Depends(get_connections)],
) -> LinkTokenOut:
    return LinkTokenOut(link_token=await connections.create_link_token(user_id))


@router.post("/exchange", response_model=ExchangeOut, status_code=201)
async def exchange_public_token(
    req: ExchangeRequest,
    household_id: AdminHousehold,
    connections: Annotated[ConnectionService, Depends(get_connections)],
) -> ExchangeOut:
    connection, count = await connections.exchange_public_token(
        household_id, req.public_token, req.institution_name
    )
    return ExchangeOut(connection=ConnectionOut.model_validate(connection), accounts=count)


@router.get("", response_model=list[ConnectionOut])
async def list_connections(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> list[ConnectionOut]:
    rows = await asyncio.to_thread(ledger.list_connections, household_id)
    return [ConnectionOut.model_validate(row) for row in rows]


@router.post("/sync", response_model=dict[str, SyncSummary])
async def sync_household(
    household_id: MemberHousehold,
    sync: Annotated[SyncController, Depends(get_sync)],
) -> dict[str, SyncSummary]:
    return await sync.sync_household(household_id)


@router.post("/{connection_id}/sync", response_model=SyncSummary)
async def sync_connection(
    connection_id: str,
    household_id: MemberHousehold,
    sync: Annotated[SyncController, Depends(get_sync)],
) -> SyncSummary:
    return await sync.sync_connection(household_id, connection_id)
