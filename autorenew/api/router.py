from fastapi import APIRouter, Depends

from autorenew.api.automation import router as automation_router
from autorenew.api.deps import require_admin_key
from autorenew.api.renewals import router as renewals_router

api_router = APIRouter(dependencies=[Depends(require_admin_key)])
api_router.include_router(renewals_router)
api_router.include_router(automation_router)
