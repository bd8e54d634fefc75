from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlmodel import Session, select
from database import get_session
from models import User, UserRole
from schemas import UserRegister, UserLogin, UserResponse, TokenResponse
from auth import get_password_hash, verify_password, create_access_token
from config import get_settings
from dependencies import get_current_user
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)

def token_response(user: User) -> TokenResponse:
    access_token = create_access_token(user.id, user.role.value)
    return TokenResponse(
        access_token=access_token,
        user=UserResponse.model_validate(user)
    )

@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
def signup(request: Request, user_data: UserRegister, session: Session = Depends(get_session)):
    """Register a new doctor or patient"""
    # Check if user already exists
    existing_user = session.exec(select(User).where(User.email == user_data.email.lower())).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    specialization = (user_data.specialization or "").strip() or None
    if user_data.role == UserRole.DOCTOR and not specialization:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Specialization is required for doctors"
        )

    new_user = User(
        name=user_data.name.strip(),
        email=user_data.email.lower(),
        password_hash=get_password_hash(user_data.password),
        role=user_data.role,
        specialization=specialization if user_data.role == UserRole.DOCTOR else None
    )

    session.add(new_user)
    session.commit()
    session.refresh(new_user)
    logger.info(f"Registered {new_user.role.value} {new_user.id}")

    return token_response(new_user)

@router.post("/signin", response_model=TokenResponse)
@limiter.limit("5/minute")
def signin(request: Request, credentials: UserLogin, session: Session = Depends(get_session)):
    """Sign in with email and password"""
    user = session.exec(select(User).where(User.email == credentials.email.lower())).first()
    if not user or not verify_password(credentials.password, user.password_hash):
        logger.warning(f"Failed sign-in attempt for {credentials.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    logger.info(f"User {user.id} signed in")
    return token_response(user)

@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return UserResponse.model_validate(current_user)
