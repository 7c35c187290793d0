from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoshelf.models.photo import Photo


class Repository:
    """Small repository/service layer wrapping SQLAlchemy session operations.

    Accepts a Session instance and provides the CRUD helpers the local
    storage backend and tests need.
    """

    def __init__(self, session: Session):
        self.session = session

    def create_photo(self, **kwargs) -> Photo:
        """Insert an index row. A duplicate ``name`` is an IntegrityError for the caller."""
        p = Photo(**kwargs)
        self.session.add(p)
        try:
            self.session.commit()
        except IntegrityError:
            # Session is in a broken state; rollback to continue using it.
            self.session.rollback()
            raise
        # refresh to populate defaults
        self.session.refresh(p)
        return p

    def get_photo_by_name(self, name: str) -> Optional[Photo]:
        return self.session.query(Photo).filter_by(name=name).first()

    def list_photos(self, limit: Optional[int] = None) -> list[Photo]:
        q = self.session.query(Photo).order_by(Photo.id)
        if limit:
            q = q.limit(limit)
        return q.all()

    def delete_photo(self, name: str) -> bool:
        p = self.get_photo_by_name(name)
        if not p:
            return False
        self.session.delete(p)
        self.session.commit()
        return True

