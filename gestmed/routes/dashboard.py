from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from .. import services
from ..db import Database
from ..deps import get_database, get_repository
from ..repository import AppointmentRepository

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("")
def api_dashboard(
    repo: AppointmentRepository = Depends(get_repository),
    db: Database = Depends(get_database),
) -> dict[str, Any]:
    return services.dashboard_data(repo, db)
