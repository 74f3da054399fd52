from datetime import datetime, timezone

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from storefront.errors import OrderNotFound, PersistenceError
from storefront.models import Order, OrderItem, PaymentStatus
from storefront.schemas import OrderRecord

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = {"payment_url", "payment_status", "status"}

# payment_status an order must currently hold for a move to the key status.
# Anything else is either a repeat of the current state or a regression.
PAYMENT_TRANSITIONS = {
    # failed -> paid stays open: a payer may retry at checkout after a rejection.
    PaymentStatus.PAID.value: {PaymentStatus.PENDING.value, PaymentStatus.FAILED.value},
    PaymentStatus.FAILED.value: {PaymentStatus.PENDING.value},
    PaymentStatus.PENDING.value: set(),
}


class OrderStore:
    """Order persistence over a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, order_id: str) -> OrderRecord:
        db = self._session_factory()
        try:
            order = db.get(
                Order,
                order_id,
                options=[selectinload(Order.items).selectinload(OrderItem.product)],
            )
            if order is None:
                raise OrderNotFound(order_id)
            return OrderRecord.model_validate(order)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load order {order_id}: {exc}") from exc
        finally:
            db.close()

    def update(self, order_id: str, fields: dict) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        values = dict(fields, updated_at=datetime.now(timezone.utc))
        db = self._session_factory()
        try:
            result = db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Could not update order {order_id}: {exc}") from exc
        finally:
            db.close()

        if result.rowcount == 0:
            raise OrderNotFound(order_id)

    def transition_payment(self, order_id: str, payment_status: str, status: str) -> bool:
        """Move an order to a new payment/order status pair in one write.

        Returns False when the order already holds ``payment_status`` or the
        move would go backwards; the row is left untouched in that case.
        """
        allowed_from = PAYMENT_TRANSITIONS[payment_status]
        db = self._session_factory()
        try:
            result = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.payment_status.in_(sorted(allowed_from)))
                .values(
                    payment_status=payment_status,
                    status=status,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount:
                return True
            current = db.get(Order, order_id)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Could not update order {order_id}: {exc}") from exc
        finally:
            db.close()

        if current is None:
            raise OrderNotFound(order_id)
        logger.info(
            "payment_transition_skipped",
            order_id=order_id,
            current=current.payment_status,
            requested=payment_status,
        )
        return False
