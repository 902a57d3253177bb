from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from slowapi import Limiter
from slowapi.util import get_remote_address
from dealership.database import get_db
from dealership.models.models import User, Role
from dealership.models.schemas import UserCreate, UserLogin, UserResponse, Token, AdminContact
from dealership.utils.auth import verify_password, get_password_hash, create_access_token
from dealership.utils.dependencies import get_current_user

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.post("/auth/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")  # Rate limit: 5 registrations per minute per IP
def register(request: Request, user: UserCreate, db: Session = Depends(get_db)):
    """Register a new buyer account. Admin accounts are only created by seeding."""
    db_user = db.query(User).filter(User.username == user.username).first()
    if db_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already registered"
        )

    new_user = User(
        username=user.username,
        name=user.name,
        hashed_password=get_password_hash(user.password),
        role=Role.USER,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    return new_user


@router.post("/auth/login", response_model=Token)
@limiter.limit("10/minute")  # Rate limit: 10 login attempts per minute per IP
def login(request: Request, credentials: UserLogin, db: Session = Depends(get_db)):
    """Authenticate user and return JWT token."""
    db_user = db.query(User).filter(User.username == credentials.username).first()
    if not db_user or not verify_password(credentials.password, db_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(db_user.id, db_user.role, db_user.name)
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/admin-user", response_model=AdminContact)
def get_admin_user(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The admin buyers talk to; its id is the admin part of every conversation key."""
    admin = db.query(User).filter(User.role == Role.ADMIN).order_by(User.id).first()
    if admin is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No admin user found"
        )
    return admin
