from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import MemberHousehold, get_classification
from household_ledger.models import ClassificationSummary
from household_ledger.services.classification import ClassificationPipeline

router = APIRouter(prefix="/api/households/{household_id}")


@router.post("/classify", response_model=ClassificationSummary)
async def classify_household(
    household_id: MemberHousehold,
    classification: Annotated[ClassificationPipeline, Depends(get_classification)],
) -> ClassificationSummary:
    return await classification.classify_household(household_id)
