import datetime

from fastapi import APIRouter, Depends, Request

from voc_tracker.api.deps import get_tracker
from voc_tracker.api.schemas import ImportResult, UsageCreate, UsageOut
from voc_tracker.services.ingestion import read_csv_bytes, usage_from_frame
from voc_tracker.services.tracker import EmissionsTracker

router = APIRouter()


@router.get("", response_model=list[UsageOut])
async def list_usage(
    start: datetime.date | None = None,
    end: datetime.date | None = None,
    emission_unit_id: str | None = None,
    tracker: EmissionsTracker = Depends(get_tracker),
):
    return [UsageOut(**ev.to_dict()) for ev in tracker.log.query(start, end, emission_unit_id)]


@router.post("", response_model=UsageOut, status_code=201)
async def log_usage(data: UsageCreate, tracker: EmissionsTracker = Depends(get_tracker)):
    event = await tracker.log_usage(
        date=data.date,
        product_id=data.product_id,
        emission_unit_id=data.emission_unit_id,
        gallons=data.gallons,
        usage_class=data.usage_class,
    )
    return UsageOut(**event.to_dict())


@router.post("/import", response_model=ImportResult, status_code=201)
async def import_usage_csv(request: Request, tracker: EmissionsTracker = Depends(get_tracker)):
    # raw text/csv body
    df = read_csv_bytes(await request.body())
    events = usage_from_frame(df, tracker.catalog, tracker.unit_ids)
    saved = await tracker.import_usage(events)
    return ImportResult(imported=len(saved), ids=[ev.id for ev in saved])
