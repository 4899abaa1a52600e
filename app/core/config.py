from pydantic_settings import BaseSettings
from typing import List
import os

def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))

class Settings(BaseSettings):
    ENV: str = os.getenv("ENV", "development")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _env_int("PORT", 8000)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # 운영은 PostgreSQL, 테스트/개발은 sqlite 허용
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # 액세스 토큰 검증과 QR 토큰 서명에 같은 키 사용
    SECRET_KEY: str = os.getenv("SECRET_KEY", "singleclin-dev-secret-change-me")
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "singleclin-api")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "singleclin-clients")

    # QR 코드 발급
    QR_DEFAULT_EXPIRATION_MINUTES: int = _env_int("QR_DEFAULT_EXPIRATION_MINUTES", 30)
    QR_MIN_EXPIRATION_MINUTES: int = _env_int("QR_MIN_EXPIRATION_MINUTES", 5)
    QR_MAX_EXPIRATION_MINUTES: int = _env_int("QR_MAX_EXPIRATION_MINUTES", 60)
    QR_DEFAULT_SIZE: int = _env_int("QR_DEFAULT_SIZE", 300)
    QR_MIN_SIZE: int = 100
    QR_MAX_SIZE: int = 1000
    QR_GENERATION_LIMIT_PER_MINUTE: int = _env_int("QR_GENERATION_LIMIT_PER_MINUTE", 5)

    # 크레딧 / 트랜잭션
    DEFAULT_TRANSACTION_AMOUNT: float = float(os.getenv("DEFAULT_TRANSACTION_AMOUNT", "10.00"))
    LOW_BALANCE_THRESHOLD: int = _env_int("LOW_BALANCE_THRESHOLD", 3)
    NONCE_RETENTION_MINUTES: int = _env_int("NONCE_RETENTION_MINUTES", 0)  # 토큰 만료 후 nonce 보관 (분)

    # 요청 제한 (클라이언트별)
    RATE_LIMIT_CALLS: int = _env_int("RATE_LIMIT_CALLS", 100)
    RATE_LIMIT_PERIOD: int = _env_int("RATE_LIMIT_PERIOD", 60)

    # CORS: CORS_ALLOWED_ORIGINS 환경 변수(쉼표 구분)가 우선
    ALLOWED_ORIGINS: List[str] = []

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.ALLOWED_ORIGINS = self._resolve_origins()

    def _resolve_origins(self) -> List[str]:
        configured = os.getenv("CORS_ALLOWED_ORIGINS", "")
        if configured:
            return [origin.strip() for origin in configured.split(",") if origin.strip()]

        if self.ENV == "production":
            # 관리자 대시보드 / 클리닉 포털
            return ["https://admin.singleclin.com.br", "https://clinicas.singleclin.com.br"]

        return ["http://localhost:3000", "http://localhost:5173"]

    class Config:
        case_sensitive = True
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = "ignore"

settings = Settings()
