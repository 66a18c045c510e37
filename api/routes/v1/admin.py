"""
api/routes/v1/admin.py -- Enforcement toggle endpoints (admin only).

  GET /api/v1/admin/enforcement  -- current setting
  PUT /api/v1/admin/enforcement  -- enable / disable authentication

A failed write is a 500 with code persistence_failure: the caller must not
believe the setting changed when it did not.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import EnforcementResponse, EnforcementUpdate
from auth.dependencies import require_admin
from auth.enforcement import EnforcementSetting, EnforcementToggle
from auth.errors import PersistenceFailure
from auth.models import Identity

router = APIRouter()


def _to_response(setting: EnforcementSetting) -> EnforcementResponse:
    return EnforcementResponse(enabled=setting.enabled, updated_at=setting.updated_at, updated_by=setting.updated_by)


@router.get("/admin/enforcement", response_model=EnforcementResponse)
def get_enforcement(request: Request, identity: Identity | None = Depends(require_admin)) -> EnforcementResponse:
    toggle: EnforcementToggle = request.app.state.enforcement
    return _to_response(toggle.read())


@router.put("/admin/enforcement", response_model=EnforcementResponse)
def set_enforcement(
    request: Request,
    body: EnforcementUpdate,
    identity: Identity | None = Depends(require_admin),
) -> EnforcementResponse:
    toggle: EnforcementToggle = request.app.state.enforcement
    updated_by = identity.username if identity is not None else "anonymous (auth disabled)"
    try:
        setting = toggle.write(body.enabled, updated_by=updated_by)
    except PersistenceFailure as exc:
        raise HTTPException(
            status_code=500,
            detail={"code": exc.code, "message": "The enforcement setting could not be saved. It is unchanged."},
        ) from exc
    return _to_response(setting)
