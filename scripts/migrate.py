#!/usr/bin/env python3
"""
데이터베이스 테이블 생성 스크립트

사용법:
  python scripts/migrate.py

환경변수:
  DATABASE_URL: PostgreSQL 연결 URL
"""

import os
import sys
import logging

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.core.config import settings
from app.core.database import check_connection, create_tables

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def run_migrations():
    """연결 확인 후 누락된 테이블 생성"""
    if not check_connection():
        logger.error("Database connection failed")
        return False

    try:
        create_tables()
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        return False

    logger.info("Migrations completed successfully!")
    return True

if __name__ == "__main__":
    if not settings.DATABASE_URL:
        logger.error("DATABASE_URL environment variable is not set")
        sys.exit(1)

    success = run_migrations()
    sys.exit(0 if success else 1)
