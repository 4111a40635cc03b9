import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, Float, Integer, String

from app.database import Base


class UnitStatus(str, enum.Enum):
    OCCUPIED = "occupied"
    VACANT = "vacant"


class Unit(Base):
    __tablename__ = "units"

    id = Column(Integer, primary_key=True)
    unit_number = Column(String(20), nullable=False, unique=True, index=True)
    owner_name = Column(String(300), nullable=True)
    # Fractional ownership in percent of the whole building
    voting_pct = Column(Float, nullable=False, default=0.0)
    status = Column(Enum(UnitStatus), nullable=False, default=UnitStatus.OCCUPIED, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
