"""
Validator — Password strength rules, API key format checks and key masking.

All functions are stateless; the rule set is enumerable through
``get_password_requirements()`` so a UI can display it.
"""
import re
import math

from .models import ApiKeyValidationResult, PasswordValidationResult
from .providers import API_KEY_PATTERNS, Provider

MIN_PASSWORD_LENGTH = 12
MAX_PASSWORD_LENGTH = 128
MIN_CHARACTER_TYPES = 3

MASK_MARKER = "*" * 8
_MASK_PREFIX = 6
_MASK_SUFFIX = 4

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")
_REPEATS = re.compile(r"(.)\1{3,}")

COMMON_PASSWORDS = frozenset({
    "password1234",
    "password12345",
    "123456789012",
    "qwertyuiopas",
    "abcdefghijkl",
    "letmein12345",
    "welcome12345",
    "admin1234567",
    "iloveyou1234",
    "monkey123456",
    "dragon123456",
    "master123456",
    "login1234567",
    "princess1234",
    "qwerty123456",
})

_SEQUENCES = (
    "abcdefghijklmnopqrstuvwxyz",
    "zyxwvutsrqponmlkjihgfedcba",
    "01234567890",
    "09876543210",
    "qwertyuiop",
    "asdfghjkl",
    "zxcvbnm",
)


def _is_common(password: str) -> bool:
    lowered = password.lower()
    normalized = re.sub(r"[^a-z0-9]", "", lowered)
    return normalized in COMMON_PASSWORDS or lowered in COMMON_PASSWORDS


def _has_sequence(password: str) -> bool:
    lowered = password.lower()
    for seq in _SEQUENCES:
        for i in range(len(seq) - 3):
            if seq[i:i + 4] in lowered:
                return True
    return False


def estimate_entropy(password: str) -> int:
    """Estimate password entropy in bits from its character classes."""
    charset = 0
    if _LOWER.search(password):
        charset += 26
    if _UPPER.search(password):
        charset += 26
    if _DIGIT.search(password):
        charset += 10
    if _SYMBOL.search(password):
        charset += 32
    if charset == 0:
        return 0
    return math.floor(len(password) * math.log2(charset))


def _strength(score: int) -> str:
    if score < 30:
        return "weak"
    if score < 50:
        return "fair"
    if score < 70:
        return "good"
    return "strong"


def validate_password(
    password: str,
    require_symbol: bool = False,
) -> PasswordValidationResult:
    """Check a password against every strength rule.

    Args:
        password: Candidate password.
        require_symbol: Also require a non-alphanumeric character.

    Returns:
        PasswordValidationResult listing every violated rule.
    """
    errors: list[str] = []
    score = 0

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    else:
        score += 20
        score += min(20, (len(password) - MIN_PASSWORD_LENGTH) * 2)
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be less than {MAX_PASSWORD_LENGTH} characters")

    has_upper = bool(_UPPER.search(password))
    has_lower = bool(_LOWER.search(password))
    has_digit = bool(_DIGIT.search(password))
    has_symbol = bool(_SYMBOL.search(password))
    type_count = sum((has_upper, has_lower, has_digit, has_symbol))

    if type_count < MIN_CHARACTER_TYPES:
        errors.append(
            f"Password must contain at least {MIN_CHARACTER_TYPES} of: "
            "uppercase letters, lowercase letters, numbers, special characters"
        )
    else:
        score += type_count * 10

    if not has_upper:
        errors.append("Password must contain at least one uppercase letter")
    if not has_lower:
        errors.append("Password must contain at least one lowercase letter")
    if not has_digit:
        errors.append("Password must contain at least one number")
    if require_symbol and not has_symbol:
        errors.append("Password must contain at least one special character")

    if _is_common(password):
        errors.append("Password is too common. Please choose a more unique password.")
        score = max(0, score - 30)
    if _REPEATS.search(password):
        errors.append("Password contains too many repeated characters")
        score = max(0, score - 20)
    if _has_sequence(password):
        score = max(0, score - 10)

    return PasswordValidationResult(
        valid=not errors,
        errors=errors,
        strength=_strength(score),
        score=min(100, score),
        entropy_bits=estimate_entropy(password),
    )


def get_password_requirements(require_symbol: bool = False) -> list[str]:
    requirements = [
        f"At least {MIN_PASSWORD_LENGTH} characters",
        f"At most {MAX_PASSWORD_LENGTH} characters",
        f"At least {MIN_CHARACTER_TYPES} character types "
        "(uppercase, lowercase, numbers, special)",
        "One uppercase letter",
        "One lowercase letter",
        "One number",
    ]
    if require_symbol:
        requirements.append("One special character")
    requirements.append("Not a commonly used password")
    requirements.append("No character repeated 4 or more times in a row")
    return requirements


def validate_api_key(provider: "str | Provider", candidate: str) -> ApiKeyValidationResult:
    """Check an API key against its provider's structural format.

    Unknown providers are rejected.
    """
    try:
        parsed = Provider.parse(provider)
    except ValueError:
        return ApiKeyValidationResult(valid=False, error=f"Unsupported provider: {provider}")
    if not isinstance(candidate, str):
        return ApiKeyValidationResult(valid=False, error="API key must be a string")

    sanitized = candidate.strip()
    if not sanitized:
        return ApiKeyValidationResult(valid=False, error="API key cannot be empty")
    if any(ch.isspace() for ch in sanitized):
        return ApiKeyValidationResult(
            valid=False, error="API key cannot contain spaces or newlines",
        )

    pattern = API_KEY_PATTERNS[parsed]
    if not pattern.regex.match(sanitized):
        return ApiKeyValidationResult(
            valid=False,
            error=(
                f"Invalid {parsed.display_name} API key format. "
                f"Expected: {pattern.format}"
            ),
        )
    return ApiKeyValidationResult(valid=True, sanitized_key=sanitized)


def get_api_key_format_hint(provider: "str | Provider") -> "str | None":
    try:
        pattern = API_KEY_PATTERNS[Provider.parse(provider)]
    except ValueError:
        return None
    return f"{pattern.format} (starts with {pattern.prefix})"


def get_api_key_example(provider: "str | Provider") -> "str | None":
    try:
        return API_KEY_PATTERNS[Provider.parse(provider)].example
    except ValueError:
        return None


def mask_api_key(key: str) -> str:
    """Mask an API key for display, keeping a short prefix and suffix.

    Keys too short to reveal anything safely collapse to the bare marker.
    The result never equals the input.
    """
    if len(key) <= _MASK_PREFIX + _MASK_SUFFIX + 2:
        masked = MASK_MARKER
    else:
        masked = f"{key[:_MASK_PREFIX]}{MASK_MARKER}{key[-_MASK_SUFFIX:]}"
    if masked == key:
        masked += "*"
    return masked
