import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from voc_tracker.api.deps import get_tracker
from voc_tracker.services.reports import build_xlsx
from voc_tracker.services.tracker import EmissionsTracker

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/aggregate")
async def aggregate_emissions(
    as_of: datetime.date | None = None,
    horizon: int | None = Query(default=None, ge=0, le=240),
    tracker: EmissionsTracker = Depends(get_tracker),
):
    return tracker.report(as_of, horizon)


@router.get("/limits")
async def limit_status(
    as_of: datetime.date | None = None,
    tracker: EmissionsTracker = Depends(get_tracker),
):
    anchor = as_of or datetime.date.today()
    return {"year": anchor.year, "month": anchor.month, "limits": tracker.limit_status(anchor)}


@router.get("/trend")
async def trend(
    as_of: datetime.date | None = None,
    months: int | None = Query(default=None, ge=1, le=120),
    tracker: EmissionsTracker = Depends(get_tracker),
):
    return tracker.trend(as_of, months)


@router.get("/material-use")
async def material_use(
    as_of: datetime.date | None = None,
    horizon: int | None = Query(default=None, ge=0, le=240),
    tracker: EmissionsTracker = Depends(get_tracker),
):
    return tracker.material_use(as_of, horizon)


@router.get("/daily-use")
async def daily_use(
    year: int = Query(ge=1900, le=9999),
    month: int = Query(ge=1, le=12),
    tracker: EmissionsTracker = Depends(get_tracker),
):
    return tracker.daily_use(year, month)


@router.get("/export.xlsx")
async def export_xlsx(
    as_of: datetime.date | None = None,
    horizon: int | None = Query(default=None, ge=1, le=240),
    tracker: EmissionsTracker = Depends(get_tracker),
):
    periods = tracker.periods(as_of, horizon)
    data = build_xlsx(
        periods,
        unit_ids=tracker.unit_ids,
        limits=tracker.limits,
        material_content=tracker.material_content(),
    )
    stamp = f"{periods[0].year}-{periods[0].month:02d}" if periods else "empty"
    return Response(
        content=data,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="aggregate_emissions_{stamp}.xlsx"'},
    )
