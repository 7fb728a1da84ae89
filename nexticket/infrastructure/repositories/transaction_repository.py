# nexticket/infrastructure/repositories/transaction_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from nexticket.infrastructure.db.models import Transaction


class TransactionRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_transaction_id(self, transaction_id: str) -> Transaction | None:
        stmt = select(Transaction).where(Transaction.transaction_id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def append(
        self,
        transaction_id: str,
        user_email: str,
        booking_id: str,
        ticket_title: str,
        amount: int,
        payment_date: datetime,
        status: str = "completed",
    ) -> Transaction:
        record = Transaction(
            transaction_id=transaction_id,
            user_email=user_email,
            booking_id=booking_id,
            ticket_title=ticket_title,
            amount=amount,
            payment_date=payment_date,
            status=status,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_by_user(self, user_email: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(func.lower(Transaction.user_email) == user_email.lower())
            .order_by(Transaction.payment_date.desc())
        )
        return list(self.db.execute(stmt).scalars().all())
