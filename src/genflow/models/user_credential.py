from sqlalchemy import Column, String, Text

from genflow.db.database import Base
from genflow.models.mixins import TimestampMixin


class UserCredential(Base, TimestampMixin):
    """The owner's generation-API key, stored Fernet-encrypted."""

    __tablename__ = "user_credentials"

    user_id = Column(String(255), primary_key=True)
    encrypted_api_key = Column(Text, nullable=False)

    def __repr__(self):
        return f"<UserCredential(user_id={self.user_id})>"
