"""Request and response schemas for every form the site accepts.

Each schema parses raw input into a validated value or raises
``pydantic.ValidationError``. Field problems are raised as
``PydanticCustomError`` so the Spanish message reaches the user verbatim.
"""
from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from . import messages

PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{9,20}$")
MAX_EMAIL_LENGTH = 254
SHIRT_SIZES = ("XS", "S", "M", "L", "XL", "XXL")
MERCHANDISE_CATEGORIES = ("clothing", "accessories", "collectibles")
ORDER_STATUSES = ("pending", "confirmed", "fulfilled", "cancelled")
CONTACT_METHODS = ("email", "whatsapp")
USER_ROLES = ("user", "moderator", "admin")
ISO_DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")


def _error(message: str, kind: str = "value_error") -> PydanticCustomError:
    return PydanticCustomError(kind, message)


def _text(
    value: str,
    *,
    minimum: int = 0,
    maximum: Optional[int] = None,
    too_short: str = "",
    too_long: str = "",
) -> str:
    cleaned = value.strip()
    if len(cleaned) < minimum:
        raise _error(too_short, "string_too_short")
    if maximum is not None and len(cleaned) > maximum:
        raise _error(too_long, "string_too_long")
    return cleaned


def _email(value: str, *, invalid: str, too_long: Optional[str] = None) -> str:
    cleaned = value.strip().lower()
    if too_long and len(cleaned) > MAX_EMAIL_LENGTH:
        raise _error(too_long, "string_too_long")
    try:
        validate_email(cleaned, check_deliverability=False)
    except EmailNotValidError as exc:
        raise _error(invalid) from exc
    return cleaned


def _whole_number(value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise _error(message, "int_type")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value.strip())
    raise _error(message, "int_type")


def _optional_phone(value: Optional[str], message: str) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if cleaned and not PHONE_PATTERN.match(cleaned):
        raise _error(message)
    return cleaned


def field_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten a validation error into ``{"field", "message"}`` pairs."""
    issues: List[Dict[str, str]] = []
    for item in exc.errors():
        field = ".".join(str(part) for part in item.get("loc", ()))
        issues.append({"field": field, "message": str(item.get("msg", ""))})
    return issues


def first_error_message(exc: ValidationError) -> str:
    issues = field_errors(exc)
    return issues[0]["message"] if issues else messages.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# RSVP


class RSVPInput(BaseModel):
    name: str
    email: str
    attendees: int
    message: Optional[str] = None
    whatsapp_interest: bool = Field(default=False, alias="whatsappInterest")
    match_id: Optional[int] = Field(default=None, alias="matchId", gt=0)
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _text(
            value,
            minimum=2,
            maximum=50,
            too_short="Nombre debe tener al menos 2 caracteres",
            too_long="Nombre no puede exceder 50 caracteres",
        )

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value, invalid="Formato de email inválido", too_long="Email demasiado largo")

    @field_validator("attendees", mode="before")
    @classmethod
    def _check_attendees(cls, value: Any) -> int:
        number = _whole_number(value, "Número de asistentes debe ser un entero")
        if number < 1:
            raise _error("Número de asistentes debe ser al menos 1", "greater_than_equal")
        if number > 10:
            raise _error("Número de asistentes no puede exceder 10", "less_than_equal")
        return number

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, maximum=500, too_long="Mensaje no puede exceder 500 caracteres")


class RSVPQuery(BaseModel):
    match: Optional[int] = Field(default=None, gt=0)


class RSVPDeleteInput(BaseModel):
    id: Optional[int] = Field(default=None, gt=0)
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return _email(value, invalid="Formato de email inválido")

    @model_validator(mode="after")
    def _require_target(self) -> "RSVPDeleteInput":
        if self.id is None and not self.email:
            raise _error(messages.RSVP_DELETE_TARGET_REQUIRED)
        return self


# ---------------------------------------------------------------------------
# Contact


class ContactInput(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    type: Literal["general", "rsvp", "photo", "whatsapp", "feedback"] = "general"
    subject: str
    message: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _text(
            value,
            minimum=2,
            maximum=50,
            too_short="Nombre debe tener al menos 2 caracteres",
            too_long="Nombre no puede exceder 50 caracteres",
        )

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value, invalid="Formato de email inválido", too_long="Email demasiado largo")

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _optional_phone(value, "Formato de teléfono inválido, debe tener al menos 9 dígitos")

    @field_validator("subject")
    @classmethod
    def _check_subject(cls, value: str) -> str:
        return _text(
            value,
            minimum=3,
            maximum=100,
            too_short="Asunto debe tener al menos 3 caracteres",
            too_long="Asunto no puede exceder 100 caracteres",
        )

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: str) -> str:
        return _text(
            value,
            minimum=5,
            maximum=1000,
            too_short="Mensaje debe tener al menos 5 caracteres",
            too_long="Mensaje no puede exceder 1000 caracteres",
        )


class ContactStatusInput(BaseModel):
    status: Literal["new", "in_progress", "resolved", "closed"]
    admin_notes: Optional[str] = None

    @field_validator("admin_notes")
    @classmethod
    def _check_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, maximum=500, too_long="Notas no pueden exceder 500 caracteres")


# ---------------------------------------------------------------------------
# Shirt voting and pre-orders


def _voter_name(value: str) -> str:
    return _text(
        value,
        minimum=2,
        maximum=50,
        too_short="El nombre debe tener al menos 2 caracteres",
        too_long="El nombre es demasiado largo",
    )


class VoterInput(BaseModel):
    name: str
    email: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _voter_name(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value, invalid="Email inválido")


class PreOrderInput(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    size: str
    quantity: int
    preferred_design: Optional[str] = Field(default=None, alias="preferredDesign")
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _voter_name(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value, invalid="Email inválido")

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _optional_phone(value, "Formato de teléfono inválido")

    @field_validator("size")
    @classmethod
    def _check_size(cls, value: str) -> str:
        if value not in SHIRT_SIZES:
            raise _error("Talla inválida", "literal_error")
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def _check_quantity(cls, value: Any) -> int:
        number = _whole_number(value, "La cantidad debe ser positiva")
        if number < 1:
            raise _error("La cantidad debe ser positiva", "greater_than_equal")
        if number > 10:
            raise _error("Cantidad máxima es 10", "less_than_equal")
        return number

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, maximum=500, too_long="Mensaje demasiado largo")


class VoteAction(BaseModel):
    action: Literal["vote"]
    design_id: str = Field(alias="designId")
    voter: VoterInput

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("design_id")
    @classmethod
    def _check_design(cls, value: str) -> str:
        return _text(value, minimum=1, too_short="ID del diseño requerido")


class PreOrderAction(BaseModel):
    action: Literal["preOrder"]
    order_data: PreOrderInput = Field(alias="orderData")

    model_config = ConfigDict(populate_by_name=True)


VotingRequest = Annotated[Union[VoteAction, PreOrderAction], Field(discriminator="action")]
voting_request_adapter: TypeAdapter[Union[VoteAction, PreOrderAction]] = TypeAdapter(VotingRequest)


def parse_voting_request(data: Any) -> Union[VoteAction, PreOrderAction]:
    return voting_request_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Merchandise


def _image_reference(value: str) -> str:
    cleaned = value.strip()
    if cleaned.startswith("/") and not cleaned.startswith("//"):
        return cleaned
    parsed = urlparse(cleaned)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return cleaned
    raise _error("URL de imagen inválida", "url_parsing")


def _category(value: str) -> str:
    if value not in MERCHANDISE_CATEGORIES:
        raise _error("Categoría debe ser clothing, accessories o collectibles", "literal_error")
    return value


def _price(value: float) -> float:
    if value <= 0:
        raise _error("El precio debe ser positivo", "greater_than")
    return round(float(value), 2)


class MerchandiseCreate(BaseModel):
    name: str
    description: str
    price: float
    images: List[str] = Field(default_factory=list)
    category: str
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    in_stock: bool = Field(default=True, alias="inStock")
    featured: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _text(value, minimum=1, maximum=100, too_short="Nombre es requerido", too_long="Nombre demasiado largo")

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: str) -> str:
        return _text(
            value,
            minimum=1,
            maximum=500,
            too_short="Descripción es requerida",
            too_long="Descripción demasiado larga",
        )

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: float) -> float:
        return _price(value)

    @field_validator("images")
    @classmethod
    def _check_images(cls, value: List[str]) -> List[str]:
        return [_image_reference(item) for item in value]

    @field_validator("category")
    @classmethod
    def _check_category(cls, value: str) -> str:
        return _category(value)


class MerchandiseUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    images: Optional[List[str]] = None
    category: Optional[str] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    in_stock: Optional[bool] = Field(default=None, alias="inStock")
    featured: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, minimum=1, maximum=100, too_short="Nombre es requerido", too_long="Nombre demasiado largo")

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(
            value,
            minimum=1,
            maximum=500,
            too_short="Descripción es requerida",
            too_long="Descripción demasiado larga",
        )

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: Optional[float]) -> Optional[float]:
        return None if value is None else _price(value)

    @field_validator("images")
    @classmethod
    def _check_images(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return None if value is None else [_image_reference(item) for item in value]

    @field_validator("category")
    @classmethod
    def _check_category(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _category(value)


class MerchandiseQuery(BaseModel):
    category: Optional[str] = None
    featured: bool = False
    in_stock: bool = Field(default=True, alias="inStock")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Shop orders


def _iso_datetime(value: str, message: str) -> str:
    cleaned = value.strip()
    if not ISO_DATETIME_PATTERN.match(cleaned):
        raise _error(message, "datetime_from_date_parsing")
    try:
        dt.datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError as exc:
        raise _error(message, "datetime_from_date_parsing") from exc
    return cleaned


def _order_status(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in ORDER_STATUSES:
        raise _error("Estado inválido", "literal_error")
    return value


class CustomerInfo(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    contact_method: str = Field(default="email", alias="contactMethod")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _text(
            value,
            minimum=2,
            maximum=100,
            too_short="El nombre debe tener al menos 2 caracteres",
            too_long="El nombre es demasiado largo",
        )

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _email(value, invalid="Email inválido")

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _optional_phone(value, "Formato de teléfono inválido")

    @field_validator("contact_method")
    @classmethod
    def _check_contact_method(cls, value: str) -> str:
        if value not in CONTACT_METHODS:
            raise _error("Método de contacto debe ser email o whatsapp", "literal_error")
        return value


class OrderDetails(BaseModel):
    size: Optional[str] = None
    message: Optional[str] = None

    @field_validator("size")
    @classmethod
    def _check_size(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, maximum=10, too_long="Talla demasiado larga")

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _text(value, maximum=500, too_long="Mensaje demasiado largo")


class OrderCreate(BaseModel):
    product_id: str = Field(alias="productId")
    product_name: str = Field(alias="productName")
    price: float
    quantity: int
    total_price: float = Field(alias="totalPrice")
    customer_info: CustomerInfo = Field(alias="customerInfo")
    order_details: Optional[OrderDetails] = Field(default=None, alias="orderDetails")
    is_pre_order: bool = Field(default=False, alias="isPreOrder")
    timestamp: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("product_id")
    @classmethod
    def _check_product_id(cls, value: str) -> str:
        return _text(value, minimum=1, too_short="ID del producto es requerido")

    @field_validator("product_name")
    @classmethod
    def _check_product_name(cls, value: str) -> str:
        return _text(
            value,
            minimum=1,
            maximum=100,
            too_short="Nombre del producto es requerido",
            too_long="Nombre del producto demasiado largo",
        )

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: float) -> float:
        return _price(value)

    @field_validator("total_price")
    @classmethod
    def _check_total(cls, value: float) -> float:
        if value <= 0:
            raise _error("El precio total debe ser positivo", "greater_than")
        return round(float(value), 2)

    @field_validator("quantity", mode="before")
    @classmethod
    def _check_quantity(cls, value: Any) -> int:
        number = _whole_number(value, "La cantidad debe ser un número entero positivo")
        if number < 1:
            raise _error("La cantidad debe ser un número entero positivo", "greater_than_equal")
        if number > 20:
            raise _error("Cantidad máxima es 20", "less_than_equal")
        return number

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _iso_datetime(value, "Fecha y hora deben tener formato ISO válido")


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    fulfillment_date: Optional[str] = Field(default=None, alias="fulfillmentDate")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("status")
    @classmethod
    def _check_status(cls, value: Optional[str]) -> Optional[str]:
        return _order_status(value)

    @field_validator("fulfillment_date")
    @classmethod
    def _check_fulfillment_date(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _iso_datetime(value, "Fecha y hora deben tener formato ISO válido")


class OrderQuery(BaseModel):
    product_id: Optional[str] = Field(default=None, alias="productId")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("status")
    @classmethod
    def _check_status(cls, value: Optional[str]) -> Optional[str]:
        return _order_status(value)


class OrderIdInput(BaseModel):
    id: str

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        return _text(value, minimum=1, too_short="ID del pedido requerido")


# ---------------------------------------------------------------------------
# Trivia


class TriviaScoreInput(BaseModel):
    score: int

    @field_validator("score", mode="before")
    @classmethod
    def _check_score(cls, value: Any) -> int:
        # Scores come from the game as JSON numbers; strings and booleans are rejected.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _error("La puntuación debe ser un número", "int_type")
        if isinstance(value, float) and not value.is_integer():
            raise _error("La puntuación debe ser un número entero", "int_from_float")
        score = int(value)
        if score < 0:
            raise _error("La puntuación debe ser mayor o igual a 0", "greater_than_equal")
        if score > 100:
            raise _error("La puntuación no puede exceder 100", "less_than_equal")
        return score


# ---------------------------------------------------------------------------
# Admin user management


def _user_id(value: str) -> str:
    return _text(value, minimum=1, too_short="ID de usuario requerido")


class UserQuery(BaseModel):
    limit: int = 50
    offset: int = 0

    @field_validator("limit", mode="before")
    @classmethod
    def _check_limit(cls, value: Any) -> int:
        number = _whole_number(value, "El límite debe ser un número entero")
        if number < 1 or number > 100:
            raise _error("El límite debe estar entre 1 y 100", "less_than_equal")
        return number

    @field_validator("offset", mode="before")
    @classmethod
    def _check_offset(cls, value: Any) -> int:
        number = _whole_number(value, "El desplazamiento debe ser un número entero")
        if number < 0:
            raise _error("El desplazamiento no puede ser negativo", "greater_than_equal")
        return number


class UserUpdate(BaseModel):
    user_id: str = Field(alias="userId")
    role: Optional[str] = None
    banned: Optional[StrictBool] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("user_id")
    @classmethod
    def _check_user_id(cls, value: str) -> str:
        return _user_id(value)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in USER_ROLES:
            raise _error("Rol debe ser user, moderator, o admin", "literal_error")
        return value


class UserDelete(BaseModel):
    user_id: str = Field(alias="userId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("user_id")
    @classmethod
    def _check_user_id(cls, value: str) -> str:
        return _user_id(value)


# ---------------------------------------------------------------------------
# Responses read by the RSVP client


class AttendeeCountResponse(BaseModel):
    count: int = Field(ge=0)


class RSVPStatusResponse(BaseModel):
    success: bool = True
    status: Optional[str] = None
    attendees: Optional[int] = None
    message: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class RSVPSubmitResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None
    total_attendees: Optional[int] = Field(default=None, alias="totalAttendees")
    confirmed_count: Optional[int] = Field(default=None, alias="confirmedCount")

    model_config = ConfigDict(populate_by_name=True)


class ApiErrorResponse(BaseModel):
    success: bool = False
    error: Optional[str] = None
    message: Optional[str] = None
