"""
Request Schemas

Pydantic models for the JSON bodies the API accepts. Fields are kept loose
(mostly optional) so that ``validation`` can report the first violation with
a descriptive message instead of a generic schema error.
"""

from pydantic import BaseModel, Field
from typing import Optional, Union


class RegisterInput(BaseModel):
    username: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginInput(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserUpdate(BaseModel):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[int] = Field(None, ge=0, description="Digits only")


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class ProductIn(BaseModel):
    title: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    label: Optional[str] = None
    image1: Optional[str] = None
    image2: Optional[str] = None
    image3: Optional[str] = None
    image4: Optional[str] = None
    btn_color1: str = ""
    btn_color2: str = ""
    btn_color3: str = ""
    btn_color4: str = ""


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    label: Optional[str] = None
    image1: Optional[str] = None
    image2: Optional[str] = None
    image3: Optional[str] = None
    image4: Optional[str] = None
    btn_color1: Optional[str] = None
    btn_color2: Optional[str] = None
    btn_color3: Optional[str] = None
    btn_color4: Optional[str] = None


class CartItemIn(BaseModel):
    product_id: Optional[int] = None
    size: Optional[str] = None
    cart_image: Optional[str] = None
    # Accepted but ignored: new cart lines always start at quantity 1
    quantity: Optional[int] = None


class CartQuantityUpdate(BaseModel):
    id: int = Field(..., description="Cart line id")
    quantity: int = Field(..., ge=1)


class AddressIn(BaseModel):
    zip: Optional[Union[int, str]] = None
    address: Optional[str] = None
    locality: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class AddressUpdate(AddressIn):
    id: int = Field(..., description="Address id")
