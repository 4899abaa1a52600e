"""
권한(capability) 검사

웹 프레임워크와 무관한 (actor, action, resource) -> allow/deny 함수.
"""

from enum import Enum
from typing import Any

from app.models.database import Transaction, User, UserPlan, UserRole


class Action(str, Enum):
    GENERATE_QR = "generate_qr"
    VALIDATE_QR = "validate_qr"
    VIEW_TRANSACTION = "view_transaction"
    LIST_TRANSACTIONS = "list_transactions"
    CANCEL_TRANSACTION = "cancel_transaction"
    VIEW_USER_PLAN = "view_user_plan"


def _is_admin(actor: User) -> bool:
    return actor.role == UserRole.ADMINISTRATOR.value


def _is_clinic_staff_of(actor: User, clinic_id: Any) -> bool:
    return (
        actor.role == UserRole.CLINIC.value
        and actor.clinic_id is not None
        and actor.clinic_id == clinic_id
    )


def can(actor: User, action: Action, resource: Any = None) -> bool:
    """actor가 resource에 대해 action을 수행할 수 있는지 여부"""
    if actor is None or not actor.is_active:
        return False

    if action == Action.GENERATE_QR:
        # 본인 소유 플랜만 (resource: UserPlan 또는 None=본인 플랜 자동 선택)
        if actor.role != UserRole.PATIENT.value:
            return False
        return resource is None or (isinstance(resource, UserPlan) and resource.user_id == actor.id)

    if action == Action.VALIDATE_QR:
        # resource: clinic_id
        return _is_admin(actor) or _is_clinic_staff_of(actor, resource)

    if action == Action.VIEW_TRANSACTION:
        if not isinstance(resource, Transaction):
            return False
        if _is_admin(actor) or _is_clinic_staff_of(actor, resource.clinic_id):
            return True
        return resource.user_plan is not None and resource.user_plan.user_id == actor.id

    if action == Action.LIST_TRANSACTIONS:
        # resource: 조회 대상 clinic_id (None = 전체)
        if _is_admin(actor):
            return True
        return resource is not None and _is_clinic_staff_of(actor, resource)

    if action == Action.CANCEL_TRANSACTION:
        if not isinstance(resource, Transaction):
            return False
        return _is_admin(actor) or _is_clinic_staff_of(actor, resource.clinic_id)

    if action == Action.VIEW_USER_PLAN:
        if not isinstance(resource, UserPlan):
            return False
        return _is_admin(actor) or resource.user_id == actor.id

    return False
