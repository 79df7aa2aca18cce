from passlib.context import CryptContext
from sqlalchemy.orm import Session

import crud
from errors import AuthError, DuplicateUserError, ValidationError

INVALID_CREDENTIALS = "Invalid credentials"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # 非 bcrypt 格式的旧密码，视为不匹配
        return False

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def is_password_hashed(value: str) -> bool:
    return pwd_context.identify(value) is not None

def find_by_username(db: Session, username: str):
    return crud.get_user_by_username(db, username)

def create_user(db: Session, username: str, password: str, age=None, gender=None,
                city=None, language=None):
    if not username or not password:
        raise ValidationError("Username & password required")

    if find_by_username(db, username):
        raise DuplicateUserError("Username already exists")

    return crud.create_user(
        db,
        username=username,
        hashed_password=get_password_hash(password),
        age=age,
        gender=gender,
        city=city,
        language=language
    )

def authenticate_user(db: Session, username: str, password: str):
    if not username or not password:
        raise ValidationError("Username & password required")

    # 用户不存在与密码错误返回相同信息
    user = find_by_username(db, username)
    if not user:
        raise AuthError(INVALID_CREDENTIALS)
    if not verify_password(password, user.password):
        raise AuthError(INVALID_CREDENTIALS)
    return user
