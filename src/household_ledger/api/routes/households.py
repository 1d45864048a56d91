import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import (
    AdminHousehold,
    MemberHousehold,
    get_current_user,
    get_households,
    get_ledger,
)
from household_ledger.api.schemas import (
    AccountCreate,
    AccountOut,
    CategoryCreate,
    CategoryOut,
    HouseholdCreate,
    HouseholdOut,
    HouseholdSettings,
    MemberCreate,
    MemberOut,
)
from household_ledger.ledger.repository import Ledger
from household_ledger.services.households import HouseholdService

router = APIRouter(prefix="/api/households")


@router.post("", response_model=HouseholdOut, status_code=201)
async def create_household(
    req: HouseholdCreate,
    user_id: Annotated[str, Depends(get_current_user)],
    households: Annotated[HouseholdService, Depends(get_households)],
) -> HouseholdOut:
    household = await asyncio.to_thread(
        households.create, req.name, user_id, auto_classify_imports=req.auto_classify_imports
    )
    return HouseholdOut.model_validate(household)


@router.get("/{household_id}", response_model=HouseholdOut)
async def get_household(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> HouseholdOut:
    household = await asyncio.to_thread(ledger.get_household, household_id)
    return HouseholdOut.model_validate(household)


@router.put("/{household_id}/settings", response_model=HouseholdOut)
async def update_settings(
    req: HouseholdSettings,
    household_id: AdminHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> HouseholdOut:
    household = await asyncio.to_thread(ledger.set_auto_classify, household_id, req.auto_classify_imports)
    return HouseholdOut.model_validate(household)


@router.post("/{household_id}/members", response_model=MemberOut, status_code=201)
async def add_member(
    req: MemberCreate,
    household_id: AdminHousehold,
    households: Annotated[HouseholdService, Depends(get_households)],
) -> MemberOut:
    member = await asyncio.to_thread(households.add_member, household_id, req.user_id, req.role)
    return MemberOut.model_validate(member)


@router.get("/{household_id}/categories", response_model=list[CategoryOut])
async def list_categories(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> list[CategoryOut]:
    categories = await asyncio.to_thread(ledger.list_categories, household_id)
    return [CategoryOut.model_validate(category) for category in categories]


@router.post("/{household_id}/categories", response_model=CategoryOut, status_code=201)
async def create_category(
    req: CategoryCreate,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> CategoryOut:
    category = await asyncio.to_thread(ledger.create_category, household_id, req.name)
    return CategoryOut.model_validate(category)


@router.get("/{household_id}/accounts", response_model=list[AccountOut])
async def list_accounts(
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> list[AccountOut]:
    accounts = await asyncio.to_thread(ledger.list_accounts, household_id)
    return [AccountOut.model_validate(account) for account in accounts]


@router.post("/{household_id}/accounts", response_model=AccountOut, status_code=201)
async def create_account(
    req: AccountCreate,
    household_id: MemberHousehold,
    ledger: Annotated[Ledger, Depends(get_ledger)],
) -> AccountOut:
    account = await asyncio.to_thread(
        ledger.create_account,
        household_id,
        req.name,
        account_type=req.type,
        subtype=req.subtype,
        mask=req.mask,
    )
    return AccountOut.model_validate(account)
