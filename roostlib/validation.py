"""
Roost Validation Module
Input validation shared by the store and the terminal front-end
"""

import re
from urllib.parse import urlsplit
from typing import Dict, List, Tuple

import email_validator

MAX_TITLE_LENGTH = 200
MAX_FIELD_LENGTH = 500

# Characters never allowed in a database name (it becomes a file name)
_FORBIDDEN_NAME_CHARS = re.compile(r'[/\\\x00]')


def validate_required(field: str, value: str) -> Tuple[bool, str]:
    """
    Require a non-blank string value

    Returns:
        (is_valid, validation_message)
    """
    if not isinstance(value, str) or not value.strip():
        return False, f"{field.capitalize()} required"
    return True, ""


def validate_secret(field: str, value: str) -> Tuple[bool, str]:
    """
    Require a non-empty secret. Whitespace is a legal secret and is kept.

    Returns:
        (is_valid, validation_message)
    """
    if not isinstance(value, str) or value == "":
        return False, f"{field.capitalize()} required"
    return True, ""


def validate_database_name(name: str) -> Tuple[bool, str]:
    """
    Validate a database name before it is turned into a file path

    Returns:
        (is_valid, validation_message)
    """
    ok, message = validate_required("name", name)
    if not ok:
        return ok, message

    if _FORBIDDEN_NAME_CHARS.search(name):
        return False, "Name must not contain path separators"

    if name.startswith('.'):
        return False, "Name must not start with '.'"

    if len(name) > MAX_TITLE_LENGTH:
        return False, "Name exceeds maximum length"

    return True, ""


def validate_url(url: str) -> bool:
    """
    Check that a URL names a host

    Any host form is accepted: names without a TLD (localhost, intranet
    hosts), IPv4 and IPv6 literals. Only used for advisory notices; the
    store keeps whatever text is given.

    Returns:
        True if URL is empty or has a host
    """
    if not url:
        return True

    if any(ch.isspace() for ch in url):
        return False

    if '://' not in url:
        url = 'http://' + url

    try:
        parts = urlsplit(url)
        # Raises ValueError for a malformed or out-of-range port
        parts.port
    except ValueError:
        return False

    return parts.scheme in ('http', 'https') and bool(parts.hostname)


def validate_email(email: str) -> bool:
    """
    Validate email using python-email-validator

    Returns:
        True if email is valid
    """
    if not email:
        return True

    try:
        email_validator.validate_email(email, check_deliverability=False)
        return True
    except email_validator.EmailNotValidError:
        return False


def looks_like_email(value: str) -> bool:
    return '@' in value and '.' in value.split('@')[-1]


def validate_input_length(value: str, max_length: int = MAX_FIELD_LENGTH) -> bool:
    if value is None:
        return True
    return len(value) <= max_length


def validate_entry_data(entry_data: Dict) -> Tuple[bool, str]:
    """
    Validate a new entry before it is encrypted and stored

    Required: title (non-blank) and secret (non-empty). Optional username,
    url and notes are free text limited only by length.

    Returns:
        (is_valid, validation_message)
    """
    ok, message = validate_required('title', entry_data.get('title', ''))
    if not ok:
        return ok, message

    ok, message = validate_secret('secret', entry_data.get('secret', ''))
    if not ok:
        return ok, message

    if len(entry_data['title']) > MAX_TITLE_LENGTH:
        return False, "Title exceeds maximum length"

    for field in ('username', 'url', 'notes'):
        value = entry_data.get(field, '')
        if not isinstance(value, str):
            return False, f"{field.capitalize()} must be text"
        if not validate_input_length(value):
            return False, f"{field.capitalize()} exceeds maximum length"

    return True, "Entry validation passed"


def entry_notices(entry_data: Dict) -> List[str]:
    """
    Advisory remarks about optional fields that look mistyped.

    Nothing here blocks storing the entry.
    """
    notices = []

    url = entry_data.get('url', '')
    if url and not validate_url(url):
        notices.append("URL does not look like a web address")

    username = entry_data.get('username', '')
    if looks_like_email(username) and not validate_email(username):
        notices.append("Username is not a valid e-mail address")

    return notices
