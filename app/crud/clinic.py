from sqlalchemy.orm import Session
from app.crud.base import CRUDBase
from app.models.database import Clinic
import logging

logger = logging.getLogger(__name__)


class CRUDClinic(CRUDBase[Clinic]):
    def is_authorized(self, db: Session, clinic_id: str) -> bool:
        """클리닉이 QR 코드를 검증할 수 있는지 (존재 + 활성)"""
        row = db.query(Clinic.id, Clinic.is_active).filter(Clinic.id == clinic_id).first()
        if row is None:
            logger.warning(f"Clinic {clinic_id} not found in directory")
            return False
        return bool(row.is_active)

clinic = CRUDClinic(Clinic)
