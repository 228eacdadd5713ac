from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint
from datetime import datetime

from portal.core.database import Base
from portal.core.types import JSONDocument


class Document(Base):
    """A single document of a named collection (site content, settings, logs...)"""
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Address of the document: (collection, doc_id)
    collection = Column(String(100), nullable=False, index=True)
    doc_id = Column(String(255), nullable=False)

    # Field map, always replaced as a whole on write
    data = Column(JSONDocument, nullable=False, default=dict)

    # Bumped on every write; subscribers see versions in increasing order
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Document {self.collection}/{self.doc_id}>"
