"""
Account endpoints: sign up, sign in and "who am I".
"""

from fastapi import APIRouter, HTTPException, Depends, Request, status
from mongoengine import NotUniqueError
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from models.user_model import User
from services.exceptions import RideHailError, ValidationError
from utils.jwt_utils import create_user_token, get_current_user
from utils.rate_limiter import auth_rate_limit
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., alias="firstName", min_length=2, max_length=50)
    last_name: str = Field(..., alias="lastName", min_length=2, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\+?\d{1,15}$")
    password: str = Field(..., min_length=6)
    role: str = Field(default="passenger", pattern="^(passenger|driver)$")

    # Only kept for drivers
    vehicle_model: Optional[str] = Field(None, alias="vehicleModel", max_length=50)
    vehicle_plate: Optional[str] = Field(None, alias="vehiclePlate", max_length=20)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    success: bool
    message: str
    token: str
    user: dict


def _session(request: Request, user: User, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "token": create_user_token(user, request.app.state.settings),
        "user": user.to_dict(),
    }


def reject_taken(field_name: str, message: str, **lookup) -> None:
    if User.objects(**lookup).first() is not None:
        raise ValidationError(message, errors=[{"field": field_name, "message": message}])


def duplicate_account_error(exc: NotUniqueError) -> ValidationError:
    """Map a unique index violation on users to the same 400 the pre-checks give."""
    if "phone" in str(exc):
        field_name, message = "phone", "Phone number already registered"
    else:
        field_name, message = "email", "Email already registered"
    return ValidationError(message, errors=[{"field": field_name, "message": message}])


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
async def register(request: Request, data: RegisterRequest):
    """Create a passenger or driver account and sign it in."""
    email = data.email.lower()
    try:
        reject_taken("email", "Email already registered", email=email)
        reject_taken("phone", "Phone number already registered", phone=data.phone)

        user = User(
            first_name=data.first_name,
            last_name=data.last_name,
            email=email,
            phone=data.phone,
            role=data.role,
        )
        user.set_password(data.password)
        if user.is_driver:
            user.vehicle_model = data.vehicle_model
            user.vehicle_plate = data.vehicle_plate
        user.save()

    except RideHailError:
        raise
    except NotUniqueError as e:
        # A concurrent registration won the unique index
        logger.warning(f"Duplicate registration for {email}: {e}")
        raise duplicate_account_error(e)
    except Exception as e:
        logger.error(f"Could not register {email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed",
        )

    logger.info(f"Registered {user.role} {user.email}")
    return _session(request, user, "User registered successfully")


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def login(request: Request, data: LoginRequest):
    user = User.objects(email=data.email.lower()).first()

    if user is None or not user.verify_password(data.password):
        logger.warning(f"Bad credentials for {data.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated"
        )

    logger.info(f"{user.email} signed in")
    return _session(request, user, "Login successful")


@router.get("/me")
async def get_current_user_profile(current_user: User = Depends(get_current_user)):
    return {"success": True, "user": current_user.to_dict()}
