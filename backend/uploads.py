"""录音上传流程

Every upload follows the same steps: stage the bytes on local disk, resolve
the owner's Drive folder, push the object, open it for public read, build
the download URL and record a row in ``files``.

The multipart path keeps its staging file (its path is stored in
``files.filepath`` and reclaimed by the expiry sweeper). The base64 paths
delete their staging file once the remote write has succeeded. A failed
remote write leaves the staging file where it is.
"""
import base64
import binascii
import os
import time
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

import crud
import models
from drive import BlobStore, public_url, resolve_user_folder
from errors import ValidationError
from schemas import EncodedRecording

logger = structlog.get_logger()

ENCODED_MIME_TYPE = "audio/mp3"
MISSING_DATA = "Missing data"


def decode_data_uri(data: str) -> bytes:
    """解码 data:<mime>;base64,<payload> 格式的音频数据"""
    if not data or "," not in data:
        raise ValidationError("Malformed data URI")
    payload = data.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 payload: {e}") from e


def staged_basename(filename: str) -> str:
    """文件名去掉目录部分；空名或 "." ".." 视为缺失"""
    name = os.path.basename(filename or "")
    if name in ("", ".", ".."):
        raise ValidationError(MISSING_DATA)
    return name


class UploadPipeline:
    def __init__(self, store: BlobStore, parent_folder_id: Optional[str], upload_dir: str):
        self.store = store
        self.parent_folder_id = parent_folder_id
        self.upload_dir = upload_dir

    def _stage(self, filename: str, content: bytes) -> str:
        os.makedirs(self.upload_dir, exist_ok=True)
        path = os.path.abspath(os.path.join(self.upload_dir, staged_basename(filename)))
        with open(path, "wb") as buffer:
            buffer.write(content)
        return path

    def _push(self, folder_id: str, name: str, local_path: str, mime_type: str) -> Tuple[str, str]:
        file_id = self.store.put_object(folder_id, name, local_path, mime_type)
        self.store.set_public_readable(file_id)
        return file_id, public_url(file_id)

    def resolve_folder(self, name: str) -> str:
        return resolve_user_folder(self.store, self.parent_folder_id, name)

    def upload_multipart(self, db: Session, owner_id: Optional[int], username: Optional[str],
                         filename: Optional[str], content: Optional[bytes], mime_type: Optional[str],
                         access_code: Optional[str] = None) -> models.File:
        if not owner_id or not username or not filename or content is None:
            raise ValidationError(MISSING_DATA)

        staged_name = f"{int(time.time() * 1000)}_{staged_basename(filename)}"
        local_path = self._stage(staged_name, content)

        folder_id = self.resolve_folder(username)
        file_id, url = self._push(folder_id, filename, local_path, mime_type or "application/octet-stream")

        record = crud.create_file(
            db,
            owner_id=owner_id,
            file_id=file_id,
            file_name=filename,
            folder_name=username,
            drive_url=url,
            access_code=access_code,
            mime_type=mime_type,
            size_bytes=len(content),
            filepath=local_path,
        )
        logger.info("recording_uploaded", owner_id=owner_id, file_id=file_id, path="multipart")
        return record

    def _upload_encoded(self, db: Session, owner_id: int, folder: str, folder_id: str,
                        filename: str, content: bytes) -> models.File:
        tmp_path = self._stage(filename, content)

        file_id, url = self._push(folder_id, filename, tmp_path, ENCODED_MIME_TYPE)
        record = crud.create_file(
            db,
            owner_id=owner_id,
            file_id=file_id,
            file_name=filename,
            folder_name=folder,
            drive_url=url,
        )
        os.remove(tmp_path)
        return record

    def upload_encoded(self, db: Session, owner_id: Optional[int], folder: Optional[str],
                       filename: Optional[str], data: Optional[str]) -> models.File:
        if not filename or not data or not owner_id or not folder:
            raise ValidationError(MISSING_DATA)
        # 先校验文件名并解码，格式错误时不产生任何副作用
        staged_basename(filename)
        content = decode_data_uri(data)

        folder_id = self.resolve_folder(folder)
        record = self._upload_encoded(db, owner_id, folder, folder_id, filename, content)
        logger.info("recording_uploaded", owner_id=owner_id, file_id=record.file_id, path="encoded")
        return record

    def upload_batch(self, db: Session, owner_id: Optional[int], folder: Optional[str],
                     recordings: Optional[List[EncodedRecording]]) -> Tuple[List[dict], List[dict]]:
        """Upload each recording in input order; one failure never stops the rest."""
        if not recordings or not owner_id or not folder:
            raise ValidationError(MISSING_DATA)

        folder_id = self.resolve_folder(folder)
        uploaded, failed = [], []
        for item in recordings:
            try:
                if not item.filename or not item.data:
                    raise ValidationError(MISSING_DATA)
                staged_basename(item.filename)
                content = decode_data_uri(item.data)
                record = self._upload_encoded(db, owner_id, folder, folder_id, item.filename, content)
            except Exception as e:
                db.rollback()
                logger.warning("batch_item_failed", owner_id=owner_id, filename=item.filename, error=str(e))
                failed.append({"filename": item.filename, "error": str(e)})
                continue
            uploaded.append({"filename": record.file_name, "driveUrl": record.drive_url})

        logger.info("batch_uploaded", owner_id=owner_id, uploaded=len(uploaded), failed=len(failed))
        return uploaded, failed
