from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from agence_api.core.config import settings
from agence_api.database.database import get_db
from agence_api.modules.auth.schemas import AuthContext
from agence_api.modules.permissions.dependencies import require_permission
from agence_api.modules.registry.models import Action
from agence_api.modules.suppliers.schemas import (
    SupplierAmountRequest, SupplierCreate, SupplierCreditApplyRequest, SupplierDebtRequest, SupplierList,
    SupplierMovementOut, SupplierOut, SupplierTransactionOut, SupplierUpdate,
)
from agence_api.modules.suppliers.service import SupplierService

suppliers_router = APIRouter(prefix="/fournisseurs", tags=["Fournisseurs"])


@suppliers_router.post("", response_model=SupplierOut, status_code=status.HTTP_201_CREATED)
def create_supplier(
    supplier_data: SupplierCreate,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.CREATE)),
    db: Session = Depends(get_db),
):
    return SupplierService(db).create_supplier(supplier_data, auth_context.agency_id)


@suppliers_router.get("", response_model=SupplierList)
def list_suppliers(
    active_only: bool = False,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.READ)),
    db: Session = Depends(get_db),
):
    suppliers, total = SupplierService(db).list_suppliers(
        auth_context.agency_id, active_only=active_only, limit=limit, offset=offset
    )
    return SupplierList(items=suppliers, total=total, limit=limit, offset=offset)


@suppliers_router.get("/{supplier_id}", response_model=SupplierOut)
def get_supplier(
    supplier_id: UUID,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.READ)),
    db: Session = Depends(get_db),
):
    return SupplierService(db).get_supplier(supplier_id, auth_context.agency_id)


@suppliers_router.patch("/{supplier_id}", response_model=SupplierOut)
def update_supplier(
    supplier_id: UUID,
    supplier_data: SupplierUpdate,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    return SupplierService(db).update_supplier(supplier_id, supplier_data, auth_context.agency_id)


@suppliers_router.get("/{supplier_id}/transactions", response_model=List[SupplierTransactionOut])
def list_supplier_transactions(
    supplier_id: UUID,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.READ)),
    db: Session = Depends(get_db),
):
    return SupplierService(db).list_transactions(supplier_id, auth_context.agency_id)


@suppliers_router.post("/{supplier_id}/dette", response_model=SupplierMovementOut)
def record_supplier_debt(
    supplier_id: UUID,
    payload: SupplierDebtRequest,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    """Enregistre une facture fournisseur (dette), sans mouvement de caisse."""
    movement = SupplierService(db).record_debt(
        supplier_id, payload.amount, auth_context.agency_id,
        reference=payload.reference, notes=payload.notes,
    )
    return SupplierMovementOut.model_validate(movement)


@suppliers_router.post("/{supplier_id}/paiement", response_model=SupplierMovementOut)
def pay_supplier(
    supplier_id: UUID,
    payload: SupplierAmountRequest,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    movement = SupplierService(db).pay_supplier(
        supplier_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, reference=payload.reference, notes=payload.notes,
    )
    return SupplierMovementOut.model_validate(movement)


@suppliers_router.post("/{supplier_id}/avance", response_model=SupplierMovementOut)
def record_supplier_advance(
    supplier_id: UUID,
    payload: SupplierAmountRequest,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    movement = SupplierService(db).record_advance(
        supplier_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, reference=payload.reference, notes=payload.notes,
    )
    return SupplierMovementOut.model_validate(movement)


@suppliers_router.post("/{supplier_id}/credit/imputation", response_model=SupplierMovementOut)
def apply_supplier_credit(
    supplier_id: UUID,
    payload: SupplierCreditApplyRequest,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    """Impute le crédit du fournisseur sur sa dette, sans mouvement de caisse."""
    movement = SupplierService(db).apply_credit(
        supplier_id, auth_context.agency_id, payload.amount,
        reference=payload.reference, notes=payload.notes,
    )
    return SupplierMovementOut.model_validate(movement)


@suppliers_router.post("/{supplier_id}/credit/remboursement", response_model=SupplierMovementOut)
def refund_supplier_credit(
    supplier_id: UUID,
    payload: SupplierAmountRequest,
    auth_context: AuthContext = Depends(require_permission("fournisseurs", Action.UPDATE)),
    db: Session = Depends(get_db),
):
    movement = SupplierService(db).refund_credit(
        supplier_id, payload.amount, payload.method, auth_context.agency_id,
        created_by=auth_context.user_id, reference=payload.reference, notes=payload.notes,
    )
    return SupplierMovementOut.model_validate(movement)
