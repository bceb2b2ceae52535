"""
Authentication API Routes
"""
from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from sqlalchemy.orm import Session
from datetime import timedelta

from backoffice.api.deps import get_client_info
from backoffice.core.database import get_db
from backoffice.core.security import TOKEN_COOKIE, create_access_token, get_current_user
from backoffice.core.config import settings
from backoffice.models import User
from backoffice.schemas import LoginRequest, RegisterRequest, Token, UserResponse, MessageResponse
from backoffice.services.user_service import UserService
from backoffice.services.audit_service import AuditService, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    register_data: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """Create a user account"""
    user = UserService(db).create(register_data)

    ip_address, _ = get_client_info(request)
    AuditService(db).log(
        action=AuditAction.USER_CREATED,
        resource_type="User",
        resource_id=user.id,
        description=f"User '{user.username}' registered",
        user_id=user.id,
        username=user.username,
        ip_address=ip_address
    )
    db.commit()
    db.refresh(user)
    return user


@router.post("/login", response_model=Token)
async def login(
    login_data: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """Login and get access token"""
    user_service = UserService(db)
    audit_service = AuditService(db)

    ip_address, _ = get_client_info(request)

    user = user_service.authenticate(login_data.username, login_data.password)

    if not user:
        # Log failed login attempt
        audit_service.log(
            action=AuditAction.LOGIN_FAILED,
            resource_type="User",
            description=f"Failed login attempt for username '{login_data.username}'",
            ip_address=ip_address,
            status="failure",
            error_message="Invalid credentials"
        )
        db.commit()

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )

    if not user.is_active:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username},
        expires_delta=access_token_expires
    )

    # Log successful login
    audit_service.log(
        action=AuditAction.LOGIN,
        resource_type="User",
        resource_id=user.id,
        description=f"User '{user.username}' logged in successfully",
        user_id=user.id,
        username=user.username,
        ip_address=ip_address
    )

    db.commit()

    # Set cookie with security settings
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        max_age=int(access_token_expires.total_seconds()),
        samesite="lax",
        secure=settings.is_production  # Only secure in production
    )

    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Logout and clear token"""
    ip_address, _ = get_client_info(request)
    AuditService(db).log(
        action=AuditAction.LOGOUT,
        resource_type="User",
        resource_id=current_user.id,
        description=f"User '{current_user.username}' logged out",
        user_id=current_user.id,
        username=current_user.username,
        ip_address=ip_address
    )
    db.commit()

    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return current_user
