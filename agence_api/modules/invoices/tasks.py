"""
Tâches Celery du module factures.
"""
from datetime import date
import logging

from agence_api.core.celery import celery_app
from agence_api.database.database import SessionLocal
from agence_api.modules.invoices.service import InvoiceService

logger = logging.getLogger(__name__)


@celery_app.task(name="agence_api.modules.invoices.tasks.mark_overdue_invoices_task")
def mark_overdue_invoices_task(today: str = None):
    """Relance quotidienne : factures envoyées dont l'échéance est dépassée."""
    db = SessionLocal()
    try:
        sweep_date = date.fromisoformat(today) if today else date.today()
        count = InvoiceService(db).mark_overdue_invoices(today=sweep_date)
        logger.info(f"Overdue sweep for {sweep_date}: {count} invoice(s) updated")
        return {"date": sweep_date.isoformat(), "updated": count}
    except Exception as e:
        db.rollback()
        logger.error(f"Overdue sweep failed: {e}")
        raise
    finally:
        db.close()
