"""
Delivery and read receipt repository.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from taskchat.models.db import DeliveryReceipt, ReadReceipt


class ReceiptRepository:
    """
    Repository for delivery and read receipts.

    Receipts are insert-only: recording a receipt that already exists for a
    (message, user) pair leaves the original timestamp untouched.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_delivery(
        self, message_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[DeliveryReceipt]:
        """Get the delivery receipt for a pair, if any."""
        return self.session.get(DeliveryReceipt, (message_id, user_id))

    def get_read(self, message_id: uuid.UUID, user_id: uuid.UUID) -> Optional[ReadReceipt]:
        """Get the read receipt for a pair, if any."""
        return self.session.get(ReadReceipt, (message_id, user_id))

    def record_delivery(
        self, message_id: uuid.UUID, user_id: uuid.UUID, delivered_at: datetime
    ) -> bool:
        """
        Insert a delivery receipt unless one exists.

        Returns:
            True if a receipt was inserted
        """
        if self.get_delivery(message_id, user_id) is not None:
            return False
        self.session.add(
            DeliveryReceipt(
                message_id=message_id, user_id=user_id, delivered_at=delivered_at
            )
        )
        self.session.flush()
        return True

    def record_read(
        self, message_id: uuid.UUID, user_id: uuid.UUID, read_at: datetime
    ) -> bool:
        """
        Insert a read receipt unless one exists.

        Returns:
            True if a receipt was inserted
        """
        if self.get_read(message_id, user_id) is not None:
            return False
        self.session.add(ReadReceipt(message_id=message_id, user_id=user_id, read_at=read_at))
        self.session.flush()
        return True

    def read_receipts_for(self, message_id: uuid.UUID) -> List[ReadReceipt]:
        """All read receipts of a message, earliest first."""
        return (
            self.session.query(ReadReceipt)
            .filter(ReadReceipt.message_id == message_id)
            .order_by(ReadReceipt.read_at.asc())
            .all()
        )

    def delivery_receipts_for(self, message_id: uuid.UUID) -> List[DeliveryReceipt]:
        """All delivery receipts of a message, earliest first."""
        return (
            self.session.query(DeliveryReceipt)
            .filter(DeliveryReceipt.message_id == message_id)
            .order_by(DeliveryReceipt.delivered_at.asc())
            .all()
        )
