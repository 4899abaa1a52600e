from typing import Optional


def get_client_ip(request) -> str:
    """클라이언트 IP 주소 추출"""
    # X-Forwarded-For 헤더 확인 (프록시/로드밸런서 환경)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # 첫 번째 IP가 실제 클라이언트 IP
        return forwarded_for.split(",")[0].strip()

    # X-Real-IP 헤더 확인
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # 직접 연결된 클라이언트 IP
    return request.client.host if request.client else "127.0.0.1"


def get_user_agent(request) -> Optional[str]:
    """User-Agent 헤더 (DB 컬럼 길이에 맞춰 자름)"""
    user_agent = request.headers.get("User-Agent")
    return user_agent[:500] if user_agent else None
