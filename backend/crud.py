import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import DuplicateUserError, StorageError


def _commit(db: Session):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Database write failed: {e}") from e

# 用户相关操作
def create_user(db: Session, username: str, hashed_password: str, age: Optional[int] = None,
                gender: Optional[str] = None, city: Optional[str] = None, language: Optional[str] = None):
    db_user = models.User(
        username=username,
        password=hashed_password,
        age=age,
        gender=gender,
        city=city,
        language=language
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        # 并发注册同名用户时由唯一约束兜底
        db.rollback()
        raise DuplicateUserError("Username already exists") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Database write failed: {e}") from e
    db.refresh(db_user)
    return db_user

def get_user_by_username(db: Session, username: str):
    return db.query(models.User)\
        .filter(func.lower(models.User.username) == username.lower())\
        .first()

def get_users(db: Session):
    return db.query(models.User).all()

def update_user_password(db: Session, db_user: models.User, hashed_password: str):
    db_user.password = hashed_password
    _commit(db)

# 文件相关操作
def create_file(db: Session, owner_id: int, file_id: str, file_name: str, folder_name: str,
                drive_url: str, access_code: Optional[str] = None, mime_type: Optional[str] = None,
                size_bytes: Optional[int] = None, filepath: Optional[str] = None):
    db_file = models.File(
        owner_id=owner_id,
        file_id=file_id,
        file_name=file_name,
        folder_name=folder_name,
        access_code=access_code or None,
        mime_type=mime_type,
        size_bytes=size_bytes,
        filepath=filepath,
        drive_url=drive_url
    )
    db.add(db_file)
    _commit(db)
    db.refresh(db_file)
    return db_file

def get_user_files(db: Session, user_id: int):
    return db.query(models.File)\
        .filter(models.File.owner_id == user_id)\
        .order_by(models.File.created_at.desc())\
        .all()

def delete_files_created_before(db: Session, cutoff: datetime) -> List[Optional[str]]:
    """删除过期文件记录，返回其本地路径"""
    expired = db.query(models.File).filter(models.File.created_at < cutoff)
    paths = [row.filepath for row in expired.with_entities(models.File.filepath)]
    if paths:
        expired.delete(synchronize_session=False)
        _commit(db)
    return paths

# 公开分享相关操作
def create_public_recording(db: Session, code: str, owner: str, filename: Optional[str],
                            drive_url: Optional[str]):
    entry = models.PublicRecording(
        code=code,
        owner=owner,
        recording=json.dumps({"filename": filename, "driveUrl": drive_url})
    )
    db.add(entry)
    _commit(db)
    db.refresh(entry)
    return entry

def get_public_recordings(db: Session, code: str, created_after: Optional[datetime] = None):
    query = db.query(models.PublicRecording).filter(models.PublicRecording.code == code)
    if created_after is not None:
        query = query.filter(models.PublicRecording.created_at >= created_after)
    return query\
        .order_by(models.PublicRecording.created_at.desc())\
        .all()

def delete_public_recordings_created_before(db: Session, cutoff: datetime) -> int:
    deleted = db.query(models.PublicRecording)\
        .filter(models.PublicRecording.created_at < cutoff)\
        .delete(synchronize_session=False)
    _commit(db)
    return deleted
