"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_iso
from utils.validation import is_valid_email, is_valid_phone, normalize_email
