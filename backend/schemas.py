from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

# 请求体字段均为可选，缺失字段由路由统一返回 "Missing data"

# 用户相关模型
class SignupRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    city: Optional[str] = None
    language: Optional[str] = None

class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

class UserSummary(BaseModel):
    id: int
    username: str

    class Config:
        from_attributes = True

class UserProfile(UserSummary):
    age: Optional[int] = None
    gender: Optional[str] = None
    city: Optional[str] = None
    language: Optional[str] = None
    created_at: Optional[datetime] = None

class SignupResponse(BaseModel):
    success: bool = True
    user: UserSummary

class LoginResponse(BaseModel):
    success: bool = True
    user: UserProfile

# 上传相关模型
class EncodedRecording(BaseModel):
    filename: Optional[str] = None
    data: Optional[str] = None

class EncodedUploadRequest(EncodedRecording):
    user_id: Optional[int] = Field(default=None, alias="userId")
    folder: Optional[str] = None

    class Config:
        populate_by_name = True

class BatchUploadRequest(BaseModel):
    recordings: Optional[List[EncodedRecording]] = None
    user_id: Optional[int] = Field(default=None, alias="userId")
    folder: Optional[str] = None

    class Config:
        populate_by_name = True

class UploadResponse(BaseModel):
    success: bool = True
    id: int
    driveUrl: str

class UploadedItem(BaseModel):
    filename: str
    driveUrl: str

class FailedItem(BaseModel):
    filename: Optional[str] = None
    error: str

class BatchUploadResponse(BaseModel):
    success: bool = True
    uploaded: List[UploadedItem]
    failed: List[FailedItem] = []

class FileRecord(BaseModel):
    id: int
    file_name: str
    folder_name: Optional[str] = None
    drive_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

# 公开分享相关模型
class RecordingDescriptor(BaseModel):
    filename: Optional[str] = None
    driveUrl: Optional[str] = None

class PublicSaveRequest(BaseModel):
    code: Optional[str] = None
    owner: Optional[str] = None
    recordings: Optional[List[RecordingDescriptor]] = None

class SaveResult(BaseModel):
    filename: Optional[str] = None
    status: str
    error: Optional[str] = None

class PublicSaveResponse(BaseModel):
    message: str = "Public recordings processed"
    code: str
    saved: List[SaveResult]
    failed: List[SaveResult]

class PublicRecording(BaseModel):
    owner: str
    created_at: datetime
    recording: dict

class PublicFetchResponse(BaseModel):
    recordings: List[PublicRecording]
