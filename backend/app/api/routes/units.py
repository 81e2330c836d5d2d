"""Measurement unit routes."""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, Request

from app.core.rate_limit import limiter
from app.core.rbac import RequireStaff
from app.services.units import UnitConversionError, convert, get_unit_category, list_units, normalize_unit

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def get_units(request: Request, current_user: RequireStaff):
    """Units grouped by category (weight, volume, count)."""
    return {"categories": list_units()}


@router.get("/convert")
@limiter.limit("60/minute")
def convert_units(
    request: Request,
    current_user: RequireStaff,
    quantity: Decimal = Query(..., ge=0),
    from_unit: str = Query(..., alias="from", max_length=20),
    to_unit: str = Query(..., alias="to", max_length=20),
):
    try:
        result = convert(quantity, from_unit, to_unit)
    except UnitConversionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "quantity": float(quantity),
        "from": normalize_unit(from_unit),
        "to": normalize_unit(to_unit),
        "category": get_unit_category(from_unit),
        "result": float(result),
    }
