from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from photoshelf.models import Base


class Photo(Base):
    """Index row for a photo stored by the local filesystem backend."""
    __tablename__ = "photos"

    id = Column(Integer, primary_key=True)
    # Storage key relative to the backend root, e.g. img_1700000000000_IMG_1234.jpg
    name = Column(String(255), unique=True, nullable=False)
    identifier = Column(String(20), nullable=True, index=True)
    size = Column(Integer, nullable=False)
    content_type = Column(String(100), nullable=True)
    md5_hash = Column(String(64), nullable=False, index=True)
    uploaded_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
