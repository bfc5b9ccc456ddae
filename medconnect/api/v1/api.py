from fastapi import APIRouter
from medconnect.core.exceptions import ErrorResponse
from medconnect.api.v1.prescriptions import routes as prescriptions
from medconnect.api.v1.pharmacy import routes as pharmacy

# Documented error bodies shared by every workflow route
error_responses = {
    code: {"model": ErrorResponse}
    for code in (400, 404, 409, 410, 422)
}

api_router = APIRouter(responses=error_responses)
api_router.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])
api_router.include_router(pharmacy.router, prefix="/pharmacy", tags=["pharmacy"])
