"""
Small text helpers shared by services (documents, phones, accents)
"""
import re
import unicodedata
from typing import Optional


def only_digits(value: Optional[str]) -> str:
    """'123.456.789-09' -> '12345678909'"""
    if not value:
        return ""
    return re.sub(r"\D", "", str(value))


def strip_accents(value: str) -> str:
    """'São Paulo' -> 'Sao Paulo'"""
    normalized = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def normalize_phone_br(phone: Optional[str]) -> str:
    """
    Digits only, with the 55 country code added to bare DDD+number
    (10 or 11 digits). Anything else is returned as digits unchanged.
    """
    digits = only_digits(phone)
    if len(digits) in (10, 11):
        digits = f"55{digits}"
    return digits
