from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    age = Column(Integer)
    gender = Column(String)
    city = Column(String)
    language = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    files = relationship("File", back_populates="owner")

class File(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), index=True)
    file_id = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    folder_name = Column(String)
    access_code = Column(String)
    mime_type = Column(String)
    size_bytes = Column(Integer)
    filepath = Column(String)
    drive_url = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    owner = relationship("User", back_populates="files")

class PublicRecording(Base):
    __tablename__ = "public_recordings"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, index=True, nullable=False)
    owner = Column(String, nullable=False)
    # JSON text: {"filename": ..., "driveUrl": ...}
    recording = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
