from fastapi import APIRouter

from app.api.balances import balance_router, employee_balance_router
from app.api.policies import router as policies_router
from app.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(policies_router)
api_router.include_router(requests_router)
api_router.include_router(employee_balance_router)
api_router.include_router(balance_router)
