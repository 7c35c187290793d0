from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .photo import Photo  # noqa: F401
