# auth.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from access import PERMISSIONS, Identity, authorize
from database import get_db
from directory import UserDirectory
from errors import DuplicateUser, ExpiredToken, InvalidCredentials, InvalidToken, MissingToken, NotFound
from models import Role, User
from schemas import AuthResponse, LoginRequest, RegisterRequest, UserProfile
from utils import ACCESS_TOKEN_EXPIRE_HOURS, ALGORITHM, AUDIENCE, BCRYPT_ROUNDS, ISSUER, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # bcrypt.checkpw compares in constant time
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    claims = {
        "userId": user.id,
        "email": user.email,
        "role": user.role.value,
        "iat": now,
        "exp": expire,
        "aud": AUDIENCE,
        "iss": ISSUER,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            issuer=ISSUER,
        )
    except ExpiredSignatureError:
        raise ExpiredToken()
    except JWTError:
        raise InvalidToken()
    try:
        return Identity(user_id=int(payload["userId"]), email=payload["email"], role=Role(payload["role"]))
    except (KeyError, TypeError, ValueError):
        raise InvalidToken()


class CredentialService:
    def __init__(self, db: Session):
        self.directory = UserDirectory(db)

    def issue_credentials(self, email: str, password: str) -> Tuple[str, User]:
        user = self.directory.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.warning("Rejected login attempt")
            raise InvalidCredentials()
        logger.info(f"User {user.id} logged in")
        return create_access_token(user), user

    def register(self, password: str, **profile) -> Tuple[str, User]:
        # friendly message first, the unique index still guards the insert
        if self.directory.find_by_email(profile["email"]):
            logger.warning("Registration rejected, email already in use")
            raise DuplicateUser()
        user = self.directory.create(password_hash=hash_password(password), **profile)
        return create_access_token(user), user


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Identity:
    if credentials is None or not credentials.credentials:
        raise MissingToken()
    return decode_token(credentials.credentials)


def require_role(allowed_roles):
    def _inner(user: Identity = Depends(get_current_user)) -> Identity:
        return authorize(user, allowed_roles)
    return _inner


def get_credential_service(db: Session = Depends(get_db)) -> CredentialService:
    return CredentialService(db)


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, service: CredentialService = Depends(get_credential_service)):
    profile = data.model_dump(exclude={"password"}, mode="python")
    if data.schedule is not None:
        profile["schedule"] = [entry.model_dump(mode="json") for entry in data.schedule]
    token, user = service.register(data.password, **profile)
    return {"token": token, "user": user}


@router.post("/login", response_model=AuthResponse)
def login(data: LoginRequest, service: CredentialService = Depends(get_credential_service)):
    token, user = service.issue_credentials(data.email, data.password)
    return {"message": "Login exitoso", "token": token, "user": user}


@router.get("/profile", response_model=UserProfile)
def profile(db: Session = Depends(get_db), claims: Identity = Depends(require_role(PERMISSIONS["auth.profile"]))):
    user = UserDirectory(db).find_by_id(claims.user_id)
    if not user:
        raise NotFound("usuario", "Usuario no encontrado")
    return user
