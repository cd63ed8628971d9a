import logging
import os
import re
from typing import Any, Dict, Mapping, NamedTuple, Optional
from urllib.parse import urlparse

from fastapi import HTTPException, UploadFile

from .categories import CATEGORY_VALUES
from .config import Config


logger = logging.getLogger(__name__)

MAX_FILE_SIZE = Config.MAX_IMAGE_SIZE
ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp', '.gif'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/webp', 'image/gif'}

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
CITY_RE = re.compile(r"^[a-zA-Z\s\-']+$")
NON_DIGIT_RE = re.compile(r'\D')

STRENGTH_LABELS = ['Very Weak', 'Weak', 'Fair', 'Good', 'Strong']


class ValidationResult(NamedTuple):
    valid: bool
    message: str


class FormValidation(NamedTuple):
    valid: bool
    errors: Dict[str, str]


def _digits(value: str) -> str:
    return NON_DIGIT_RE.sub('', value)


def validate_email(email: Any) -> bool:
    if not email or not isinstance(email, str):
        return False
    return bool(EMAIL_RE.match(email.strip()))


def validate_phone(phone: Any) -> bool:
    if not phone or not isinstance(phone, str):
        return False
    return 10 <= len(_digits(phone)) <= 15


def validate_password(password: Any) -> ValidationResult:
    if not password or not isinstance(password, str):
        return ValidationResult(False, 'Password is required')
    if len(password) < 6:
        return ValidationResult(False, 'Password must be at least 6 characters')
    if len(password) > 128:
        return ValidationResult(False, 'Password is too long')
    return ValidationResult(True, 'Password is valid')


def _validate_length(value: Any, label: str, minimum: int, maximum: int, required: str, too_long: str) -> ValidationResult:
    if not value or not isinstance(value, str):
        return ValidationResult(False, required)
    trimmed = value.strip()
    if len(trimmed) < minimum:
        return ValidationResult(False, f'{label} must be at least {minimum} characters')
    if len(trimmed) > maximum:
        return ValidationResult(False, too_long)
    return ValidationResult(True, f'{label} is valid')


def validate_service_name(name: Any) -> ValidationResult:
    return _validate_length(
        name, 'Service name', 3, 100,
        required='Service name is required',
        too_long='Service name is too long (max 100 characters)',
    )


def validate_description(description: Any) -> ValidationResult:
    return _validate_length(
        description, 'Description', 10, 1000,
        required='Description is required',
        too_long='Description is too long (max 1000 characters)',
    )


def validate_category(category: Any) -> bool:
    if not category or not isinstance(category, str):
        return False
    return category.lower() in CATEGORY_VALUES


def validate_city(city: Any) -> ValidationResult:
    result = _validate_length(
        city, 'City name', 2, 50,
        required='City is required',
        too_long='City name is too long',
    )
    if not result.valid:
        return result
    if not CITY_RE.match(city.strip()):
        return ValidationResult(False, 'City name contains invalid characters')
    return result


def validate_rating(rating: Any) -> bool:
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return False
    return 1 <= rating <= 5


def validate_image_file(content_type: Optional[str], size: Optional[int]) -> ValidationResult:
    if content_type is None and size is None:
        return ValidationResult(False, 'No file selected')
    if size is not None and size > MAX_FILE_SIZE:
        return ValidationResult(False, f'Image size must be less than {MAX_FILE_SIZE // (1024 * 1024)}MB')
    if content_type not in ALLOWED_MIME_TYPES:
        return ValidationResult(False, 'Invalid file type. Please upload JPG, PNG, WEBP, or GIF')
    return ValidationResult(True, 'Image is valid')


def validate_service_form(form: Mapping[str, Any]) -> FormValidation:
    """Validate a new or edited listing.

    Phone is optional but must be valid when present. Every failing field
    contributes exactly one entry to the error map.
    """
    errors: Dict[str, str] = {}

    name = validate_service_name(form.get('name'))
    if not name.valid:
        errors['name'] = name.message

    if not validate_category(form.get('category')):
        errors['category'] = 'Please select a valid category'

    description = validate_description(form.get('description'))
    if not description.valid:
        errors['description'] = description.message

    if form.get('phone') and not validate_phone(form.get('phone')):
        errors['phone'] = 'Please enter a valid phone number'

    if not validate_email(form.get('email')):
        errors['email'] = 'Please enter a valid email address'

    city = validate_city(form.get('city'))
    if not city.valid:
        errors['city'] = city.message

    return FormValidation(not errors, errors)


def validate_sign_up_form(form: Mapping[str, Any]) -> FormValidation:
    errors: Dict[str, str] = {}

    display_name = (form.get('display_name') or '').strip()
    if not display_name:
        errors['display_name'] = 'Name is required'
    elif len(display_name) < 2:
        errors['display_name'] = 'Name must be at least 2 characters'

    if not form.get('email'):
        errors['email'] = 'Email is required'
    elif not validate_email(form.get('email')):
        errors['email'] = 'Please enter a valid email address'

    if form.get('phone') and not validate_phone(form.get('phone')):
        errors['phone'] = 'Please enter a valid phone number'

    password = validate_password(form.get('password'))
    if not password.valid:
        errors['password'] = password.message

    if not form.get('confirm_password'):
        errors['confirm_password'] = 'Please confirm your password'
    elif form.get('password') != form.get('confirm_password'):
        errors['confirm_password'] = 'Passwords do not match'

    return FormValidation(not errors, errors)


def validate_sign_in_form(form: Mapping[str, Any]) -> FormValidation:
    errors: Dict[str, str] = {}

    if not form.get('email'):
        errors['email'] = 'Email is required'
    elif not validate_email(form.get('email')):
        errors['email'] = 'Please enter a valid email address'

    password = form.get('password')
    if not password:
        errors['password'] = 'Password is required'
    elif len(password) < 6:
        errors['password'] = 'Password must be at least 6 characters'

    return FormValidation(not errors, errors)


def password_strength(password: str) -> int:
    strength = 0
    if len(password) >= 6:
        strength += 1
    if len(password) >= 10:
        strength += 1
    if re.search(r'[a-z]', password) and re.search(r'[A-Z]', password):
        strength += 1
    if re.search(r'\d', password):
        strength += 1
    if re.search(r'[^a-zA-Z\d]', password):
        strength += 1
    return strength


def password_strength_label(score: int) -> str:
    if 0 <= score < len(STRENGTH_LABELS):
        return STRENGTH_LABELS[score]
    return ''


def sanitize_input(value: Any) -> str:
    if not value or not isinstance(value, str):
        return ''
    return re.sub(r'[<>]', '', value.strip())[:1000]


def format_phone_number(phone: Optional[str]) -> str:
    if not phone:
        return ''
    digits = _digits(phone)
    # 082 123 4567
    if len(digits) == 10 and digits.startswith('0'):
        return f'{digits[:3]} {digits[3:6]} {digits[6:]}'
    # +27 82 123 4567
    if len(digits) == 11 and digits.startswith('27'):
        return f'+{digits[:2]} {digits[2:4]} {digits[4:7]} {digits[7:]}'
    return phone


def is_valid_url(url: Any) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def truncate_text(text: Optional[str], max_length: int) -> Optional[str]:
    if not text or len(text) <= max_length:
        return text
    return text[:max_length] + '...'


def capitalize_first(text: Optional[str]) -> str:
    if not text:
        return ''
    return text[0].upper() + text[1:]


def validate_file(file: UploadFile) -> None:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    result = validate_image_file(file.content_type, getattr(file, 'size', None))
    if not result.valid:
        status_code = 413 if 'size' in result.message else 400
        logger.warning(f"Rejected upload {file.filename}: {result.message}")
        raise HTTPException(status_code=status_code, detail=result.message)

    file_ext = os.path.splitext(file.filename.lower())[1]
    if file_ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    if '..' in file.filename or '/' in file.filename or '\\' in file.filename:
        raise HTTPException(status_code=400, detail="Invalid filename")


def validate_identifier(value: Optional[str], label: str) -> None:
    if value and not re.match(r'^[a-zA-Z0-9_-]+$', value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")
