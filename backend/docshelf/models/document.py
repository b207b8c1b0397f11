from sqlalchemy import Column, Integer, Text
from docshelf.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    owner_id = Column(Text, nullable=False)
    course_id = Column(Text)
    title = Column(Text, nullable=False)
    original_filename = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False, unique=True)
    mime_type = Column(Text, nullable=False)
    file_size_bytes = Column(Integer, nullable=False)
    pages = Column(Integer, nullable=False, default=1)
    status = Column(Text, nullable=False, default="PENDING")
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)
