import sys

from sqlalchemy.exc import SQLAlchemyError

import auth
import crud
from database import SessionLocal
from errors import StorageError

def hash_all_passwords(db) -> int:
    """将明文密码批量转换为 bcrypt 哈希，返回更新数量"""
    updated = 0
    for user in crud.get_users(db):
        # 已经是哈希值则跳过
        if auth.is_password_hashed(user.password):
            continue
        crud.update_user_password(db, user, auth.get_password_hash(user.password))
        print(f"Password for user ID {user.id} hashed.")
        updated += 1
    return updated

def main() -> int:
    db = SessionLocal()
    try:
        updated = hash_all_passwords(db)
        print(f"All passwords hashed successfully! ({updated} updated)")
        return 0
    except (SQLAlchemyError, StorageError) as e:
        print(f"Error hashing passwords: {e}")
        return 1
    finally:
        db.close()

if __name__ == "__main__":
    sys.exit(main())
