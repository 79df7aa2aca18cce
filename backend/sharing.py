import json
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

import crud
from errors import ValidationError
from schemas import RecordingDescriptor
from sweeper import RETENTION, sweep_expired_public_recordings, utcnow

logger = structlog.get_logger()


def save_recordings(db: Session, code: Optional[str], owner: Optional[str],
                    recordings: Optional[List[RecordingDescriptor]]) -> Tuple[List[dict], List[dict]]:
    """按分享码保存公开录音，每条记录独立写入"""
    if not code or not owner or not recordings:
        raise ValidationError("Missing data or no recordings provided")

    saved, failed = [], []
    for r in recordings:
        try:
            crud.create_public_recording(db, code, owner, r.filename, r.driveUrl)
        except Exception as e:
            logger.error("public_recording_save_failed", code=code, filename=r.filename, error=str(e))
            failed.append({"filename": r.filename, "status": "failed", "error": str(e)})
            continue
        saved.append({"filename": r.filename, "status": "saved"})
    return saved, failed


def fetch_by_code(db: Session, code: str, now: Optional[datetime] = None,
                  retention: timedelta = RETENTION) -> List[dict]:
    now = now or utcnow()
    # 先清理过期记录，再查询；清理失败不影响读取
    try:
        sweep_expired_public_recordings(db, now, retention)
    except Exception as e:
        logger.warning("public_sweep_failed", code=code, error=str(e))

    return [
        {
            "owner": row.owner,
            "created_at": row.created_at,
            "recording": json.loads(row.recording) if isinstance(row.recording, str) else row.recording,
        }
        for row in crud.get_public_recordings(db, code, created_after=now - retention)
    ]
