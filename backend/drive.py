import re
from typing import List, Optional

import structlog
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from errors import ConfigurationError, StorageError

logger = structlog.get_logger()

SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DRIVE_URL_TEMPLATE = "https://drive.google.com/uc?id={file_id}&export=download"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_ ]")
_DRIVE_ID = re.compile(r"[-\w]{25,}")


def sanitize_folder_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name)


def parse_parent_folder_id(value: Optional[str]) -> str:
    """接受裸 ID 或完整的 Drive 链接，返回文件夹 ID"""
    if not value or not value.strip():
        raise ConfigurationError("Missing GOOGLE_DRIVE_PARENT_FOLDER_ID")
    value = value.strip()
    if "drive.google.com" in value or "://" in value:
        match = _DRIVE_ID.search(value)
        if not match:
            raise ConfigurationError(
                "Invalid GOOGLE_DRIVE_PARENT_FOLDER_ID, could not extract ID"
            )
        return match.group(0)
    return value


def public_url(file_id: str) -> str:
    return DRIVE_URL_TEMPLATE.format(file_id=file_id)


class BlobStore:
    """Remote object storage organised as folders with permissions."""

    def find_folders(self, name: str, parent_id: str) -> List[str]:
        raise NotImplementedError

    def create_folder(self, name: str, parent_id: str) -> str:
        raise NotImplementedError

    def put_object(self, folder_id: str, name: str, local_path: str, mime_type: str) -> str:
        raise NotImplementedError

    def set_public_readable(self, object_id: str) -> None:
        raise NotImplementedError


class DriveBlobStore(BlobStore):
    def __init__(self, service):
        self.service = service

    @classmethod
    def from_service_account(cls, keyfile: str) -> "DriveBlobStore":
        try:
            credentials = service_account.Credentials.from_service_account_file(
                keyfile, scopes=SCOPES
            )
        except (OSError, ValueError, GoogleAuthError) as e:
            raise ConfigurationError(f"Unable to load service account credentials: {e}") from e
        service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return cls(service)

    def _execute(self, request, action: str):
        try:
            return request.execute()
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error("drive_request_failed", action=action, error=str(e))
            raise StorageError(f"Drive {action} failed: {e}") from e

    def find_folders(self, name: str, parent_id: str) -> List[str]:
        query = (
            f"name='{name}' and mimeType='{FOLDER_MIME_TYPE}' "
            f"and '{parent_id}' in parents and trashed=false"
        )
        result = self._execute(
            self.service.files().list(q=query, fields="files(id, name)"),
            "list folders",
        )
        return [f["id"] for f in result.get("files", [])]

    def create_folder(self, name: str, parent_id: str) -> str:
        metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
        folder = self._execute(
            self.service.files().create(body=metadata, fields="id"),
            "create folder",
        )
        return folder["id"]

    def put_object(self, folder_id: str, name: str, local_path: str, mime_type: str) -> str:
        media = MediaFileUpload(local_path, mimetype=mime_type, resumable=False)
        created = self._execute(
            self.service.files().create(
                body={"name": name, "parents": [folder_id]}, media_body=media, fields="id"
            ),
            "upload",
        )
        return created["id"]

    def set_public_readable(self, object_id: str) -> None:
        self._execute(
            self.service.permissions().create(
                fileId=object_id, body={"role": "reader", "type": "anyone"}
            ),
            "set permission",
        )


def resolve_user_folder(store: BlobStore, parent_id: Optional[str], name: str) -> str:
    """获取或创建用户文件夹

    Not safe against concurrent callers for the same name: two racing
    requests may both create a folder. Folders are only a grouping, so a
    duplicate is tolerated.
    """
    parent = parse_parent_folder_id(parent_id)
    folder_name = sanitize_folder_name(name)

    existing = store.find_folders(folder_name, parent)
    if existing:
        return existing[0]

    folder_id = store.create_folder(folder_name, parent)
    logger.info("drive_folder_created", folder=folder_name, folder_id=folder_id)
    return folder_id
