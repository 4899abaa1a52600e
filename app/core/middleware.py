from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from collections import deque
from typing import Dict, Optional
from app.utils.geo_utils import get_client_ip
import logging
import time
import uuid

logger = logging.getLogger(__name__)

class RequestContextMiddleware(BaseHTTPMiddleware):
    """요청 ID 부여 및 처리 시간 헤더 추가"""

    async def dispatch(self, request: Request, call_next):
        # 요청 ID 생성 (클라이언트가 보낸 값이 있으면 사용)
        request_id = request.headers.get("Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        # 시작 시간 기록
        start_time = time.time()

        response = await call_next(request)

        # 처리 시간 계산
        process_time = time.time() - start_time
        response.headers["Request-Id"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        return response

class RateLimitMiddleware(BaseHTTPMiddleware):
    """클라이언트별 슬라이딩 윈도우 요청 제한

    path_limits: 경로별 (calls, period) 개별 제한 (예: QR 코드 발급 분당 5회)
    윈도우가 비면 해당 클라이언트 키를 제거하고, period마다 유휴 키를 정리
    """

    def __init__(
        self,
        app,
        calls: int = 100,
        period: int = 60,
        path_limits: Optional[Dict[str, tuple]] = None,
    ):
        super().__init__(app)
        self.calls = calls
        self.period = period
        self.path_limits = path_limits or {}
        self.requests: Dict[tuple, deque] = {}
        self._last_sweep = time.monotonic()

    def _limit_for(self, path: str) -> tuple:
        return self.path_limits.get(path, (self.calls, self.period))

    def _sweep(self, now: float):
        """마지막 요청이 윈도우 밖인 키 제거"""
        stale = [
            key for key, window in self.requests.items()
            if not window or now - window[-1] >= self._limit_for(key[1])[1]
        ]
        for key in stale:
            del self.requests[key]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        calls, period = self._limit_for(path)
        bucket = path if path in self.path_limits else "*"
        key = (get_client_ip(request), bucket)

        now = time.monotonic()
        if now - self._last_sweep >= self.period:
            self._sweep(now)

        window = self.requests.get(key)
        if window is not None:
            while window and now - window[0] >= period:
                window.popleft()
            if not window:
                del self.requests[key]
                window = None

        if window is not None and len(window) >= calls:
            retry_after = max(1, int(period - (now - window[0])))
            logger.warning(f"Rate limit exceeded for {key[0]} on {bucket}")
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "rate_limit_exceeded",
                    "message": f"요청 한도를 초과했습니다. {period}초에 최대 {calls}회까지 허용됩니다.",
                },
                headers={"Retry-After": str(retry_after)},
            )

        self.requests.setdefault(key, deque()).append(now)
        return await call_next(request)
