from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from tryon_billing.api.dependencies.auth import get_app_settings
from tryon_billing.platform.health import HealthChecker

router = APIRouter()


@router.get("/health")
def health(request: Request):
    """Liveness plus database check; 503 when the database is unreachable."""
    checker = HealthChecker(getattr(request.app.state, "engine", None), get_app_settings(request))
    result = checker.get_health_status()
    code = status.HTTP_503_SERVICE_UNAVAILABLE if result["status"] == "error" else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=result)
