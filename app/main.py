from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import check_connection, create_tables
from app.core.middleware import RateLimitMiddleware, RequestContextMiddleware
from app.schemas.common import ErrorResponse
import logging

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SingleClin API",
    description="QR 코드 기반 크레딧 사용 및 트랜잭션 관리 API",
    version="1.0.0",
)

# 미들웨어는 나중에 추가한 것이 바깥쪽
app.add_middleware(
    RateLimitMiddleware,
    calls=settings.RATE_LIMIT_CALLS,
    period=settings.RATE_LIMIT_PERIOD,
    path_limits={
        # QR 코드 발급: 분당 제한
        "/api/v1/qrcode/generate": (settings.QR_GENERATION_LIMIT_PER_MINUTE, 60),
    },
)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Request-Id"],
    expose_headers=["Request-Id", "X-Process-Time", "Retry-After"],
)
logger.info(f"Starting SingleClin API (env={settings.ENV}, cors={settings.ALLOWED_ORIGINS})")

app.include_router(api_router, prefix="/api/v1")

@app.on_event("startup")
def prepare_database():
    """DB 연결 확인 후 누락된 테이블 생성"""
    if not check_connection():
        logger.error("Database unreachable at startup; requests will fail until it recovers")
        return

    try:
        create_tables()
    except Exception as e:
        # 권한 부족 등: 기존 스키마로 계속 운영
        logger.error(f"Table creation skipped: {e}")

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    logger.exception(f"Unhandled error on {request.method} {request.url.path} (request_id={request_id})")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_server_error",
            message="서버 내부 오류가 발생했습니다.",
            code=request_id,
        ).model_dump(),
    )

@app.get("/")
async def root():
    return {
        "service": "SingleClin API",
        "version": app.version,
        "docs": app.docs_url,
    }

@app.get("/health")
async def health_check():
    """헬스 체크 (DB 포함)"""
    db_ok = check_connection()
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={"status": "healthy" if db_ok else "degraded", "database": db_ok},
    )
