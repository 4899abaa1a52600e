# core/database.py
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

def get_database_url():
    """환경에 맞는 데이터베이스 URL 생성"""
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL environment variable is not set")

    # asyncpg/구형 스킴 -> psycopg 동기 드라이버로 변경
    url = settings.DATABASE_URL
    if url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)

    return url

def build_engine(url: str):
    """드라이버별 엔진 생성"""
    if url.startswith("sqlite"):
        # 개발/테스트용 sqlite: 메모리 DB는 단일 커넥션 공유
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=300,  # 5분마다 연결 재생성
        connect_args={
            "connect_timeout": 10,
            "application_name": "singleclin-api",
        },
        isolation_level="READ COMMITTED",
        echo=settings.ENV == "development"  # 개발 환경에서만 SQL 로깅
    )

engine = build_engine(get_database_url())

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

Base = declarative_base()

def get_db() -> Session:
    """데이터베이스 세션 생성 및 관리"""
    db = None
    try:
        db = SessionLocal()
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        if db:
            db.rollback()
        raise
    finally:
        if db:
            try:
                db.close()
            except Exception as e:
                logger.error(f"Error closing database session: {e}")

def create_tables():
    """데이터베이스 테이블 생성"""
    # 모델 등록을 위해 import
    from app.models import database  # noqa: F401
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise

def check_connection():
    """데이터베이스 연결 테스트"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False
