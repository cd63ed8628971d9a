import re

import pytest
from fastapi import HTTPException
from unittest.mock import MagicMock

from servicefinder.core.validation import (
    capitalize_first,
    format_phone_number,
    is_valid_url,
    password_strength,
    password_strength_label,
    sanitize_input,
    truncate_text,
    validate_category,
    validate_city,
    validate_description,
    validate_email,
    validate_file,
    validate_image_file,
    validate_password,
    validate_phone,
    validate_rating,
    validate_service_form,
    validate_service_name,
    validate_sign_in_form,
    validate_sign_up_form,
)
from factories import valid_listing_form


@pytest.mark.parametrize("email", ["", "plainaddress", "no-at.example.com", "user@nodot", "a b@c.co", None, 42])
def test_validate_email_rejects_malformed(email):
    assert validate_email(email) is False


@pytest.mark.parametrize("email", ["a@b.co", "  joe@example.com  ", "first.last@sub.domain.org"])
def test_validate_email_accepts_well_formed(email):
    assert validate_email(email) is True


@pytest.mark.parametrize("phone", ["081 234 5678", "12345", "+27 (82) 123-4567", "1234567890123456", "abc", ""])
def test_validate_phone_matches_digit_count_rule(phone):
    digits = re.sub(r"\D", "", phone)
    assert validate_phone(phone) is (10 <= len(digits) <= 15)


def test_validate_phone_examples():
    assert validate_phone("081 234 5678") is True
    assert validate_phone("12345") is False
    assert validate_phone(None) is False


def test_validate_password_bounds():
    assert validate_password("") == (False, "Password is required")
    assert validate_password("12345") == (False, "Password must be at least 6 characters")
    assert validate_password("x" * 129) == (False, "Password is too long")
    assert validate_password("123456").valid is True
    assert validate_password("x" * 128).valid is True


def test_service_name_and_description_are_trimmed():
    assert validate_service_name("  ab  ").message == "Service name must be at least 3 characters"
    assert validate_service_name("abc").valid is True
    assert validate_service_name("x" * 101).message == "Service name is too long (max 100 characters)"
    assert validate_description("   short    ").message == "Description must be at least 10 characters"
    assert validate_description("x" * 1000).valid is True
    assert validate_description("x" * 1001).valid is False


def test_validate_category_is_case_insensitive_closed_set():
    assert validate_category("Plumbing") is True
    assert validate_category("hvac") is True
    assert validate_category("astrology") is False
    assert validate_category("") is False


def test_validate_city_charset_and_length():
    assert validate_city("Port Elizabeth").valid is True
    assert validate_city("O'Neill-Town").valid is True
    assert validate_city("A").message == "City name must be at least 2 characters"
    assert validate_city("Cape Town 2").message == "City name contains invalid characters"
    assert validate_city("x" * 51).message == "City name is too long"
    assert validate_city(None).message == "City is required"


def test_validate_rating():
    assert validate_rating(1) is True
    assert validate_rating(4.5) is True
    assert validate_rating(0) is False
    assert validate_rating(6) is False
    assert validate_rating("5") is False
    assert validate_rating(True) is False


def test_validate_image_file():
    assert validate_image_file("image/png", 1024).valid is True
    assert validate_image_file("application/pdf", 1024).message.startswith("Invalid file type")
    assert validate_image_file("image/jpeg", 5 * 1024 * 1024 + 1).message == "Image size must be less than 5MB"
    assert validate_image_file(None, None).message == "No file selected"


def test_service_form_valid_input_has_no_errors():
    validation = validate_service_form(valid_listing_form())
    assert validation.valid is True
    assert validation.errors == {}


@pytest.mark.parametrize("field", ["name", "category", "description", "email", "city"])
def test_service_form_missing_required_field_flags_only_that_field(field):
    form = valid_listing_form()
    del form[field]
    validation = validate_service_form(form)
    assert validation.valid is False
    assert list(validation.errors) == [field]


def test_service_form_phone_is_optional_but_checked():
    assert validate_service_form(valid_listing_form(phone="")).errors == {}
    assert validate_service_form(valid_listing_form(phone="123")).errors == {"phone": "Please enter a valid phone number"}


def test_sign_up_form():
    form = {
        "display_name": "Ana",
        "email": "ana@example.com",
        "phone": "",
        "password": "secret1",
        "confirm_password": "secret1",
    }
    assert validate_sign_up_form(form).errors == {}

    form.update(display_name=" A ", confirm_password="secret2")
    errors = validate_sign_up_form(form).errors
    assert errors == {
        "display_name": "Name must be at least 2 characters",
        "confirm_password": "Passwords do not match",
    }


def test_sign_in_form():
    assert validate_sign_in_form({"email": "ana@example.com", "password": "secret1"}).valid is True
    errors = validate_sign_in_form({"email": "", "password": "123"}).errors
    assert errors == {"email": "Email is required", "password": "Password must be at least 6 characters"}


def test_password_strength():
    assert password_strength("abc") == 0
    assert password_strength("abcdef") == 1
    assert password_strength("Abcdef12345!") == 5
    assert password_strength_label(password_strength("abcdef")) == "Weak"
    assert password_strength_label(5) == ""


def test_text_helpers():
    assert sanitize_input("  <b>hello</b>  ") == "bhello/b"
    assert sanitize_input(None) == ""
    assert len(sanitize_input("x" * 2000)) == 1000
    assert truncate_text("hello world", 5) == "hello..."
    assert truncate_text("hi", 5) == "hi"
    assert capitalize_first("plumbing") == "Plumbing"
    assert capitalize_first("") == ""


def test_format_phone_number():
    assert format_phone_number("0821234567") == "082 123 4567"
    assert format_phone_number("27821234567") == "+27 82 123 4567"
    assert format_phone_number("+1 555 0100") == "+1 555 0100"
    assert format_phone_number(None) == ""


def test_is_valid_url():
    assert is_valid_url("https://example.com/a.png") is True
    assert is_valid_url("ftp://example.com") is False
    assert is_valid_url("not a url") is False


def test_validate_file_rejects_bad_uploads():
    upload = MagicMock(filename="photo.exe", content_type="image/png", size=10)
    with pytest.raises(HTTPException) as exc_info:
        validate_file(upload)
    assert exc_info.value.status_code == 400

    too_big = MagicMock(filename="photo.png", content_type="image/png", size=6 * 1024 * 1024)
    with pytest.raises(HTTPException) as exc_info:
        validate_file(too_big)
    assert exc_info.value.status_code == 413

    validate_file(MagicMock(filename="photo.png", content_type="image/png", size=10))
