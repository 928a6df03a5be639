"""
Request schemas and the validation decorator used by every route group.
"""
import logging
import re
from functools import wraps
from typing import List, Literal, Optional

from flask import jsonify, request
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024

PHONE_PATTERN = re.compile(r'2547\d{8}')


def is_valid_phone(phone_number):
    return bool(phone_number) and PHONE_PATTERN.fullmatch(phone_number) is not None


class Schema(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


# Products

class ProductCreate(Schema):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=5, max_length=100)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)


class ProductUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, min_length=5, max_length=100)
    price: Optional[float] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1)
    stock: Optional[int] = Field(default=None, ge=0)


class StockUpdate(Schema):
    stock: int = Field(..., ge=0)


# Orders

class OrderLine(Schema):
    product: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class OrderCreate(Schema):
    user: Optional[str] = None
    products: List[OrderLine] = Field(..., min_length=1)
    totalAmount: float = Field(..., ge=0)
    paymentMethod: Literal['cash', 'Mpesa']
    phoneNumber: Optional[str] = None

    @field_validator('phoneNumber', mode='before')
    @classmethod
    def blank_phone_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class OrderUpdate(Schema):
    user: Optional[str] = None
    products: Optional[List[OrderLine]] = Field(default=None, min_length=1)
    totalAmount: Optional[float] = Field(default=None, ge=0)
    paymentMethod: Optional[Literal['cash', 'Mpesa']] = None


# Raw-material store

Unit = Literal['kg', 'g', 'liters', 'units']


class StoreItemCreate(Schema):
    itemName: str = Field(..., min_length=1, max_length=100)
    quantity: float = Field(..., ge=1)
    unit: Unit
    cost: float = Field(default=0, ge=0)


class StoreItemUpdate(Schema):
    itemName: Optional[str] = Field(default=None, min_length=1, max_length=100)
    quantity: Optional[float] = Field(default=None, ge=1)
    unit: Optional[Unit] = None
    cost: Optional[float] = Field(default=None, ge=0)


class QuantityUpdate(Schema):
    quantity: float = Field(..., ge=0)


class TransferRequest(Schema):
    quantity: float = Field(..., ge=1)
    destination: Literal['kitchen', 'shop']


# Auth

class RegisterRequest(Schema):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2, max_length=100)
    role: Literal['attendant', 'admin'] = 'attendant'


class LoginRequest(Schema):
    email: EmailStr
    password: str = Field(..., min_length=6)


class ProfileUpdate(Schema):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)


# Notifications

class MarkAsReadRequest(Schema):
    id: str = Field(..., min_length=1)


def first_error_message(exc):
    error = exc.errors()[0]
    field = '.'.join(str(part) for part in error.get('loc', ()))
    message = error.get('msg', 'Invalid value')
    return f'{field}: {message}' if field else message


def _request_payload():
    if request.mimetype == 'multipart/form-data' or request.mimetype == 'application/x-www-form-urlencoded':
        payload = request.form.to_dict()
        # Image arrives as a file part; a stray text field is ignored
        payload.pop('image', None)
        return payload
    return request.get_json(silent=True)


def validate_body(schema):
    """Validate the request body against ``schema`` and expose it as request.validated"""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            payload = _request_payload()
            if payload is None:
                payload = {}
            if not isinstance(payload, dict):
                logger.error("Validation error: request body must be an object")
                return jsonify({'success': False, 'message': 'Request body must be a JSON object'}), 400
            try:
                request.validated = schema.model_validate(payload)
            except ValidationError as e:
                message = first_error_message(e)
                logger.error("Validation error: %s", message)
                return jsonify({'success': False, 'message': message}), 400
            return f(*args, **kwargs)
        return decorated
    return decorator


def validate_image(file, required=True):
    """Return an error message for an unacceptable upload, or None"""
    if file is None or not file.filename:
        if required:
            logger.error("Validation error: Image file is required")
            return 'Image file is required'
        return None

    if not (file.mimetype or '').startswith('image/'):
        logger.error("Validation error: Only image files are allowed")
        return 'Only image files are allowed'

    file.stream.seek(0, 2)
    size = file.stream.tell()
    file.stream.seek(0)
    if size > MAX_IMAGE_BYTES:
        logger.error("Validation error: Image size must be less than 5MB")
        return 'Image size must be less than 5MB'
    return None
