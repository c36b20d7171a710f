"""
Card number generation, validation, and masking.

Everything here is pure: no database, no encryption. The lifecycle and
transfer services call into this module before touching the store.

Card numbers:
  A generated PAN is BIN (6 digits) + 9 random digits + 1 Luhn check digit.
  When the caller doesn't supply a valid 6-digit BIN, one of the issuer
  prefixes below is picked at random.

Expiry dates:
  Cards expire at month granularity. An expiry is stored as the first day
  of its month ("12/27" -> 2027-12-01) and a card counts as expired once
  today is strictly after that date.

Randomness comes from `secrets`, never `random`: card numbers and CVVs
must not be predictable from earlier output.
"""

import re
import secrets
import string
from datetime import date, datetime, timedelta, timezone

from bankcards.config import settings
from bankcards.exceptions import CardFormatError, InvalidExpiryDateError

# Issuer prefixes used when no BIN is supplied
BINS = ("414947", "524154", "377765", "601122")

LUHN_MIN_LENGTH = 13
LUHN_MAX_LENGTH = 19
MAX_EXPIRY_YEARS = 10

_BIN_PATTERN = re.compile(r"\d{6}")
_CVV_PATTERN = re.compile(r"\d{3}")


def utc_today() -> date:
    """Today's date in UTC. Every expiry check reads this clock."""
    return datetime.now(timezone.utc).date()


def _add_years(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year + years, day=28)


def _add_months(day: date, months: int) -> date:
    """Shift a first-of-month date by whole months."""
    month_index = day.year * 12 + (day.month - 1) + months
    return day.replace(year=month_index // 12, month=month_index % 12 + 1, day=1)


# ---------------------------------------------------------------------------
# Luhn
# ---------------------------------------------------------------------------

def calculate_luhn_check_digit(partial_number: str) -> int:
    """
    Compute the digit that makes `partial_number + digit` pass the Luhn check.

    Walking right to left over the partial number, every FIRST digit gets
    doubled (it becomes the second-from-right once the check digit is
    appended), doubled results above 9 lose 9, and everything is summed.
    """
    total = 0
    double = True
    for char in reversed(partial_number):
        digit = int(char)
        if double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        double = not double
    return (10 - total % 10) % 10


def validate_luhn(card_number) -> bool:
    """
    Standard Luhn check.

    Fails closed: anything that isn't a 13–19 character all-digit string
    returns False instead of raising.
    """
    if not isinstance(card_number, str):
        return False
    if not LUHN_MIN_LENGTH <= len(card_number) <= LUHN_MAX_LENGTH:
        return False
    if not card_number.isascii() or not card_number.isdigit():
        return False

    total = 0
    for position, char in enumerate(reversed(card_number)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def generate_card_number(bin_prefix: str | None = None) -> str:
    """
    Generate a 16-digit, Luhn-valid card number.

    Args:
        bin_prefix: Optional 6-digit issuer prefix. Anything else (None, wrong
                    length, non-digits) is replaced by a random entry of BINS.
    """
    if bin_prefix is None or not _BIN_PATTERN.fullmatch(bin_prefix):
        bin_prefix = secrets.choice(BINS)

    body = bin_prefix + "".join(str(secrets.randbelow(10)) for _ in range(9))
    return body + str(calculate_luhn_check_digit(body))


def generate_cvv() -> str:
    """Random 3-digit CVV, zero padded ("007" is valid)."""
    return f"{secrets.randbelow(1000):03d}"


def is_valid_cvv(cvv) -> bool:
    return isinstance(cvv, str) and _CVV_PATTERN.fullmatch(cvv) is not None


def is_valid_card_number(card_number, length: int | None = None) -> bool:
    """Exactly `length` ASCII digits (the configured PAN length by default)."""
    length = length or settings.CARD_NUMBER_LENGTH
    return (
        isinstance(card_number, str)
        and len(card_number) == length
        and card_number.isascii()
        and card_number.isdigit()
    )


# ---------------------------------------------------------------------------
# Expiry dates
# ---------------------------------------------------------------------------

def normalize_expiry(expiry: date) -> date:
    """Collapse an expiry to month granularity (first day of the month)."""
    return expiry.replace(day=1)


def parse_expiry(value: str) -> date:
    """
    Parse the "MM/yy" form printed on cards into a first-of-month date.

    Raises:
        InvalidExpiryDateError: On anything that isn't a real MM/yy value.
    """
    try:
        parsed = datetime.strptime(value.strip(), "%m/%y")
    except (AttributeError, ValueError) as exc:
        raise InvalidExpiryDateError("Invalid date format. Use MM/yy") from exc
    return parsed.date().replace(day=1)


def generate_expiry_date(today: date | None = None) -> date:
    """First day of a month 3–5 years out, plus a random 0–11 month offset."""
    today = today or utc_today()
    years = 3 + secrets.randbelow(3)
    start = _add_years(today, years).replace(day=1)
    return _add_months(start, secrets.randbelow(12))


def is_valid_expiry_date(expiry: date | None, today: date | None = None) -> bool:
    """True iff the expiry is not in the past and less than 10 years out."""
    if expiry is None:
        return False
    today = today or utc_today()
    return today - timedelta(days=1) < expiry < _add_years(today, MAX_EXPIRY_YEARS)


def is_not_expired(expiry: date | None, today: date | None = None) -> bool:
    if expiry is None:
        return False
    today = today or utc_today()
    return expiry > today - timedelta(days=1)


# ---------------------------------------------------------------------------
# Masking
# ---------------------------------------------------------------------------

def last_four(card_number: str) -> str:
    return card_number[-4:]


def mask_card_number(
    card_number,
    pattern: str | None = None,
    length: int | None = None,
) -> str:
    """
    Build the display form of a card number.

    Only the last four digits are placed into the pattern; nothing else
    from the input reaches the output.

    Args:
        card_number: The full PAN.
        pattern: Format string with a `{last_four}` field. Defaults to
                 settings.CARD_MASK_PATTERN.
        length: Required digit count. Defaults to settings.CARD_NUMBER_LENGTH.

    Raises:
        CardFormatError: If the input isn't exactly `length` digits. The
            input is never truncated or padded to make it fit. Also raised
            when the pattern lacks a `{last_four}` field or names any other.
    """
    pattern = pattern or settings.CARD_MASK_PATTERN
    length = length or settings.CARD_NUMBER_LENGTH

    if not isinstance(card_number, str) or len(card_number) != length:
        raise CardFormatError("Invalid card number length")
    if not card_number.isascii() or not card_number.isdigit():
        raise CardFormatError("Invalid card number format")

    _check_mask_pattern(pattern)
    try:
        return pattern.format(last_four=last_four(card_number))
    except ValueError as exc:
        # a bad format spec, e.g. "{last_four:d}"
        raise CardFormatError(f"Invalid card mask pattern: {pattern!r}") from exc


def _check_mask_pattern(pattern: str) -> None:
    """The pattern must reference `{last_four}` and no other field."""
    try:
        fields = {
            field_name
            for _, field_name, _, _ in string.Formatter().parse(pattern)
            if field_name is not None
        }
    except ValueError as exc:
        raise CardFormatError(f"Invalid card mask pattern: {pattern!r}") from exc
    if fields != {"last_four"}:
        raise CardFormatError(f"Card mask pattern must use only {{last_four}}: {pattern!r}")
