from pydantic import BaseModel, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional
import re
from dealership.models.models import Role, VehicleStatus


class UserCreate(BaseModel):
    username: str
    name: str
    password: str

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username format and length."""
        if len(v) < 3:
            raise ValueError('Username must be at least 3 characters long')
        if len(v) > 50:
            raise ValueError('Username must be at most 50 characters long')
        if not re.match(r'^[a-zA-Z0-9_.-]+$', v):
            raise ValueError('Username can only contain letters, numbers, dots, underscores, and hyphens')
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Name is required')
        return v

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password length."""
        if len(v) < 6:
            raise ValueError('Password must be at least 6 characters long')
        if len(v) > 128:
            raise ValueError('Password must be at most 128 characters long')
        return v


class UserLogin(BaseModel):
    username: str
    password: str


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    role: Role
    created_at: datetime

    class Config:
        from_attributes = True


class AdminContact(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    """Verified claims of an access token."""
    subject_id: int
    role: Role
    display_name: Optional[str] = None
    expires_at: Optional[datetime] = None


# Vehicle schemas
class VehicleCreate(BaseModel):
    brand: str
    model: str
    year: int
    price: Decimal
    mileage: Optional[int] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    description: Optional[str] = None
    status: VehicleStatus = VehicleStatus.AVAILABLE

    @field_validator('year')
    @classmethod
    def validate_year(cls, v: int) -> int:
        """Validate vehicle year."""
        if v < 1900 or v > datetime.now().year + 1:
            raise ValueError(f'Year must be between 1900 and {datetime.now().year + 1}')
        return v

    @field_validator('price')
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError('Price must be positive')
        return v


class VehicleUpdate(BaseModel):
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    price: Optional[Decimal] = None
    mileage: Optional[int] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    description: Optional[str] = None
    status: Optional[VehicleStatus] = None


class VehicleResponse(BaseModel):
    id: int
    brand: str
    model: str
    year: int
    price: Decimal
    mileage: Optional[int] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    description: Optional[str] = None
    status: VehicleStatus
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Personnel schemas
class PersonnelCreate(BaseModel):
    name: str
    position: str
    phone: Optional[str] = None
    email: Optional[str] = None
    salary: Optional[Decimal] = None
    hire_date: Optional[date] = None


class PersonnelUpdate(BaseModel):
    name: Optional[str] = None
    position: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    salary: Optional[Decimal] = None
    hire_date: Optional[date] = None


class PersonnelResponse(BaseModel):
    id: int
    name: str
    position: str
    phone: Optional[str] = None
    email: Optional[str] = None
    salary: Optional[Decimal] = None
    hire_date: Optional[date] = None
    created_at: datetime

    class Config:
        from_attributes = True


def as_utc(value: datetime) -> datetime:
    """Columns hold naive UTC; clients must see the offset."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# Realtime payloads. The wire uses camelCase keys (conversationKey, senderId...).
class WireModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class JoinRoom(WireModel):
    conversation_key: str
    token: str


class LeaveRoom(WireModel):
    conversation_key: str


class MessageClaim(WireModel):
    """A send_message payload as claimed by the client, before authorization."""
    conversation_key: str
    sender_id: int
    receiver_id: int
    listing_id: Optional[int] = None
    body: str

    @field_validator('body')
    @classmethod
    def validate_body(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Message body must not be empty')
        return v


class AdminClearedNotifications(WireModel):
    admin_id: int
    conversation_key: Optional[str] = None


class UserClearedNotifications(WireModel):
    user_id: int
    conversation_key: Optional[str] = None


class StoredMessage(WireModel):
    id: int
    conversation_key: str
    sender_id: int
    sender_name: Optional[str] = None
    sender_role: Role
    receiver_id: int
    listing_id: Optional[int] = None
    body: str
    created_at: datetime
    read_by_admin: bool
    read_by_user: bool

    @property
    def receiver_role(self) -> Role:
        return self.sender_role.counterpart

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> datetime:
        return as_utc(value)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ConversationSummary(BaseModel):
    """Latest-message view of one conversation, as listed for either side."""
    conversation_key: str
    last_message: str
    last_message_at: datetime
    listing_id: Optional[int] = None
    vehicle_brand: Optional[str] = None
    vehicle_model: Optional[str] = None
    counterpart_id: int
    counterpart_name: Optional[str] = None
    unread_count: int = 0

    @field_serializer("last_message_at")
    def serialize_last_message_at(self, value: datetime) -> datetime:
        return as_utc(value)

