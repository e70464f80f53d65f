import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlmodel import select

from config import settings
from db import SessionDep
from models import User, UserRole, utcnow
from responses import ok
from schemas import LoginData, ProfileUpdate, UserCreate, UserRead, UserSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

serializer = URLSafeTimedSerializer(settings.secret_key, salt="access-token")
http_bearer = HTTPBearer(auto_error=False)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

# Each role may only set its own profile attribute
ROLE_FIELDS = {
    UserRole.DONOR: "donor_type",
    UserRole.NGO: "ngo_registration_id",
    UserRole.LOGISTICS: "vehicle_type",
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User) -> str:
    """
    Store user_id + email + role in the signed token.
    Example data:
        {"user_id": 3, "email": "a@b.org", "role": "donor"}
    """
    return serializer.dumps(
        {"user_id": user.id, "email": user.email, "role": user.role.value}
    )


def verify_access_token(token: str) -> Optional[dict]:
    """
    Returns the token payload if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=settings.token_max_age_seconds)
    except SignatureExpired:
        logger.info("Rejected expired access token")
        return None
    except BadSignature:
        return None


@dataclass
class AuthContext:
    """The authenticated caller, passed explicitly to every protected handler."""

    user: User
    role: UserRole

    @property
    def user_id(self) -> int:
        return self.user.id


def get_current_user(
    session: SessionDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> AuthContext:
    """
    Reads the bearer token, verifies it,
    looks up the user, and returns an AuthContext.
    Raises 401 if not logged in / invalid.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    data = verify_access_token(credentials.credentials)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = session.get(User, data.get("user_id"))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found for this token",
        )

    # The stored role wins over whatever the token was issued with
    return AuthContext(user=user, role=user.role)


CurrentUserDep = Annotated[AuthContext, Depends(get_current_user)]


def require_roles(*roles: UserRole):
    def dependency(current: CurrentUserDep) -> AuthContext:
        if current.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to access this resource",
            )
        return current

    return dependency


DonorDep = Annotated[AuthContext, Depends(require_roles(UserRole.DONOR))]
NGODep = Annotated[AuthContext, Depends(require_roles(UserRole.NGO))]
LogisticsDep = Annotated[AuthContext, Depends(require_roles(UserRole.LOGISTICS))]
AdminDep = Annotated[AuthContext, Depends(require_roles(UserRole.ADMIN))]


def user_payload(user: User) -> dict:
    return jsonable_encoder(UserRead.model_validate(user))


def user_summary(session: SessionDep, user_id: Optional[int]) -> Optional[dict]:
    """Public contact details of a related user, or None when unset."""
    if user_id is None:
        return None
    user = session.get(User, user_id)
    if user is None:
        return None
    return jsonable_encoder(UserSummary.model_validate(user))


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(user_in: UserCreate, session: SessionDep):
    """
    Register a new user with a hashed password and return a token.
    """
    if user_in.role == UserRole.ADMIN and not settings.allow_admin_registration:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin accounts cannot be self-registered",
        )

    email = user_in.email.lower()
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists",
        )

    user = User(
        name=user_in.name.strip(),
        email=email,
        password_hash=hash_password(user_in.password),
        role=user_in.role,
        location=user_in.location,
        phone=user_in.phone,
    )
    role_field = ROLE_FIELDS.get(user_in.role)
    if role_field is not None:
        setattr(user, role_field, getattr(user_in, role_field))

    session.add(user)
    session.commit()
    session.refresh(user)

    logger.info("Registered %s user %s", user.role.value, user.id)
    return ok(
        {"token": create_access_token(user), "user": user_payload(user)},
        message="User registered successfully",
    )


@router.post("/login")
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password and return a bearer token.
    """
    user = session.exec(
        select(User).where(User.email == payload.email.lower())
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    return ok(
        {"token": create_access_token(user), "user": user_payload(user)},
        message="Login successful",
    )


@router.get("/profile")
def read_profile(current: CurrentUserDep):
    """
    Get info about the currently logged-in user.
    """
    return ok({"user": user_payload(current.user)})


@router.patch("/profile")
def update_profile(update: ProfileUpdate, session: SessionDep, current: CurrentUserDep):
    user = current.user
    changes = update.model_dump(exclude_unset=True)

    for field in ("name", "location"):
        if changes.get(field) is not None:
            setattr(user, field, changes[field])
    if "phone" in changes:
        user.phone = changes["phone"]

    role_field = ROLE_FIELDS.get(user.role)
    for field in ROLE_FIELDS.values():
        if field not in changes:
            continue
        if field != role_field:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{field} cannot be set for role {user.role.value}",
            )
        setattr(user, field, changes[field])

    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return ok({"user": user_payload(user)}, message="Profile updated")
