import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, Integer, String

from app.database import Base


class DocumentStatus(str, enum.Enum):
    CURRENT = "current"
    SUPERSEDED = "superseded"
    DRAFT = "draft"


class BuildingInfo(Base):
    __tablename__ = "building_info"

    id = Column(Integer, primary_key=True)
    name = Column(String(300), nullable=True)
    jurisdiction = Column(String(20), nullable=True)  # state / district code, e.g. "DC"
    unit_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class GoverningDocument(Base):
    __tablename__ = "governing_documents"

    id = Column(Integer, primary_key=True)
    name = Column(String(300), nullable=False)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.CURRENT, index=True)
    uploaded_by = Column(String(200), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)
