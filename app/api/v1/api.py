# api/v1/api.py
from fastapi import APIRouter
from app.api.v1.endpoints import qrcode, transactions, user_plans

api_router = APIRouter()

# SingleClin API 엔드포인트 등록
api_router.include_router(qrcode.router, prefix="/qrcode", tags=["qrcode"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(user_plans.router, prefix="/user-plans", tags=["user-plans"])
