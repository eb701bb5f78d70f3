"""
Form validation

Each function checks one write payload and returns the first violation as a
message, or ``None`` when the payload is valid. Fields are checked in a fixed
order; uniqueness is left to the handlers and the database.
"""

from typing import Any, Dict, Optional

from email_validator import EmailNotValidError, validate_email


def _required_string(name: str, value: Any, min_length: int = 0) -> Optional[str]:
    if value is None:
        return f'"{name}" is required'
    if not isinstance(value, str):
        return f'"{name}" must be a string'
    if value == "":
        return f'"{name}" is not allowed to be empty'
    if len(value) < min_length:
        return f'"{name}" length must be at least {min_length} characters long'
    return None


def _optional_string(name: str, value: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        return f'"{name}" must be a string'
    return None


def _required_number(name: str, value: Any, minimum: Optional[float] = None,
                     maximum: Optional[float] = None) -> Optional[str]:
    if value is None or value == "":
        return f'"{name}" is required'
    if isinstance(value, bool):
        return f'"{name}" must be a number'
    try:
        number = float(value)
    except (TypeError, ValueError):
        return f'"{name}" must be a number'
    if number != number:  # NaN
        return f'"{name}" must be a number'
    if minimum is not None and number < minimum:
        return f'"{name}" must be greater than or equal to {minimum:g}'
    if maximum is not None and number > maximum:
        return f'"{name}" must be less than or equal to {maximum}'
    return None


def _email(value: str) -> Optional[str]:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return '"email" must be a valid email'
    return None


def _first(*checks) -> Optional[str]:
    for check in checks:
        error = check()
        if error:
            return error
    return None


def register_validation(username, firstname, lastname, email, password) -> Optional[str]:
    return _first(
        lambda: _required_string("username", username, 3),
        lambda: _required_string("firstname", firstname, 3),
        lambda: _required_string("lastname", lastname, 3),
        lambda: _required_string("email", email, 6) or _email(email),
        lambda: _required_string("password", password, 6),
    )


def login_validation(username, password) -> Optional[str]:
    return _first(
        lambda: _required_string("username", username, 3),
        lambda: _required_string("password", password, 6),
    )


def profile_validation(firstname=None, lastname=None, email=None) -> Optional[str]:
    """Like registration, but only for the fields being changed."""
    return _first(
        lambda: firstname is not None and _required_string("firstname", firstname, 3),
        lambda: lastname is not None and _required_string("lastname", lastname, 3),
        lambda: email is not None and (_required_string("email", email, 6) or _email(email)),
    )


def password_validation(new_password) -> Optional[str]:
    return _required_string("new_password", new_password, 6)


def address_validation(address, locality, city, state, zip) -> Optional[str]:
    return _first(
        lambda: _required_string("address", address),
        lambda: _required_string("locality", locality),
        lambda: _required_string("city", city),
        lambda: _required_string("state", state),
        lambda: _required_number("zip", zip),
    )


# Largest value a NUMERIC(8, 2) column holds
MAX_PRICE = 999999.99

PRODUCT_RULES = (
    ("title", lambda v: _required_string("title", v, 6)),
    ("price", lambda v: _required_number("price", v, 2, MAX_PRICE)),
    ("quantity", lambda v: _required_number("quantity", v, 1)),
    ("description", lambda v: _required_string("description", v, 10)),
    ("category", lambda v: _required_string("category", v)),
    ("label", lambda v: _optional_string("label", v)),
    ("image1", lambda v: _required_string("image1", v)),
    ("image2", lambda v: _optional_string("image2", v)),
    ("image3", lambda v: _optional_string("image3", v)),
    ("image4", lambda v: _optional_string("image4", v)),
)


def product_validation(title, price, quantity, description, category, label,
                       image1, image2=None, image3=None, image4=None) -> Optional[str]:
    values = dict(title=title, price=price, quantity=quantity, description=description,
                  category=category, label=label, image1=image1, image2=image2,
                  image3=image3, image4=image4)
    return _first(*(lambda rule=rule, name=name: rule(values[name]) for name, rule in PRODUCT_RULES))


def product_update_validation(changes: Dict[str, Any]) -> Optional[str]:
    """Product rules applied to the fields being changed only."""
    return _first(*(lambda rule=rule, name=name: rule(changes[name])
                    for name, rule in PRODUCT_RULES if name in changes))


def cart_validation(product_id, size, cart_image) -> Optional[str]:
    return _first(
        lambda: _required_number("product_id", product_id, 1),
        lambda: _required_string("size", size),
        lambda: _required_string("cart_image", cart_image),
    )
