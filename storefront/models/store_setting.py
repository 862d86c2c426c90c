from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime
from storefront.db.base_class import Base


class StoreSetting(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
