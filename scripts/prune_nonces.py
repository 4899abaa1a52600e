#!/usr/bin/env python3
"""
만료된 QR nonce 정리 스크립트 (cron 등으로 주기 실행)

사용법:
  python scripts/prune_nonces.py
"""

import os
import sys
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.core.config import settings
from app.core.database import SessionLocal
from app.crud.nonce import prune_expired_nonces

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def main():
    db = SessionLocal()
    try:
        deleted = prune_expired_nonces(db, retention_minutes=settings.NONCE_RETENTION_MINUTES)
        logger.info(f"Nonce pruning finished: {deleted} rows removed")
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"Nonce pruning failed: {e}")
        return False
    finally:
        db.close()

if __name__ == "__main__":
    sys.exit(0 if main() else 1)
