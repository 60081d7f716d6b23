"""
日历路由 - 月视图、可用性、封锁/解封
"""
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from villa.database import get_db
from villa.models.ontology import Employee
from villa.models.schemas import (
    AvailabilityRequest, AvailabilityResponse, DateRange, OccupancyResponse
)
from villa.routers.errors import to_http_exception
from villa.security import permissions as perm
from villa.security.auth import require_permission
from villa.services.calendar_service import CalendarService

router = APIRouter(prefix="/bookings", tags=["日历"])


@router.get("", response_model=List[OccupancyResponse])
def month_view(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., description="1-12"),
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_VIEW))
):
    """与指定月份有交集的占用"""
    try:
        return CalendarService(db).month_view(year, month)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/availability", response_model=AvailabilityResponse)
def check_availability(
    data: AvailabilityRequest,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_VIEW))
):
    """检查区间是否可预订"""
    try:
        result = CalendarService(db).check_availability(
            data.check_in, data.check_out, data.exclude_booking_id, data.exclude_customer_id
        )
    except ValueError as e:
        raise to_http_exception(e)
    blocker = result.conflicts[0] if result.conflicts else None
    return AvailabilityResponse(
        available=result.available,
        conflicting_booking_id=result.conflicting_booking_id,
        conflicting_customer_id=blocker.customer_id if blocker else None,
    )


@router.post("/block", response_model=OccupancyResponse)
def block_dates(
    data: DateRange,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_CREATE))
):
    """封锁日期"""
    try:
        return CalendarService(db).block_dates(data.check_in, data.check_out, data.reason)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/unblock")
def unblock_dates(
    data: DateRange,
    db: Session = Depends(get_db),
    current_user: Employee = Depends(require_permission(perm.BOOKINGS_DELETE))
):
    """解封日期；区间不存在时同样返回成功"""
    try:
        released = CalendarService(db).unblock_dates(data.check_in, data.check_out)
    except ValueError as e:
        raise to_http_exception(e)
    return {"message": "日期已解封", "released": released}
