from fastapi import APIRouter
from busbooking.api.v1.routes.reservations import router as reservations_router
from busbooking.api.v1.routes.payments import router as payments_router
from busbooking.api.v1.routes.vouchers import router as vouchers_router
from busbooking.api.v1.routes.trips import router as trips_router
from busbooking.api.v1.routes.ops import router as ops_router
from busbooking.api.v1.routes.driver import router as driver_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(reservations_router)
api_router.include_router(payments_router)
api_router.include_router(vouchers_router)
api_router.include_router(trips_router)
api_router.include_router(ops_router)
api_router.include_router(driver_router)
