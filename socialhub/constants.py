"""Global constants for validation limits and defaults."""
import re

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
EMAIL_MAX_LENGTH = 254

POST_TEXT_MAX_LENGTH = 1000
COMMENT_TEXT_MAX_LENGTH = 1000

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_PROFILE_PICTURE = (
    "https://thumbs.dreamstime.com/b/default-profile-picture-icon-high-resolution-"
    "high-resolution-default-profile-picture-icon-symbolizing-no-display-picture-360167031.jpg"
)

ASSETS_URL_PREFIX = "/assets"
IMAGE_OUTPUT_FORMAT = "WEBP"
IMAGE_OUTPUT_EXTENSION = "webp"

PROFILE_RECENT_POSTS_LIMIT = 10
SEARCH_RESULT_LIMIT = 10

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"
MISSING_TOKEN_MESSAGE = "Authentication required"
NOT_AUTHORIZED_MESSAGE = "Not authorized"
INTERNAL_ERROR_MESSAGE = "Something went wrong!"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def normalize_identifier(value: str) -> str:
    """Lower-case and strip a username or email for storage and lookup."""
    return str(value or "").strip().lower()


def is_valid_email(email: str) -> bool:
    """Check the loose `local@domain.tld` shape."""
    if not email or len(email) > EMAIL_MAX_LENGTH:
        return False
    return EMAIL_RE.match(email) is not None


def validate_username(username: str) -> str:
    """Return the normalized username or raise ValueError."""
    u = normalize_identifier(username)
    if len(u) < USERNAME_MIN_LENGTH:
        raise ValueError(f"Username must be at least {USERNAME_MIN_LENGTH} characters long")
    if len(u) > USERNAME_MAX_LENGTH:
        raise ValueError(f"Username must be at most {USERNAME_MAX_LENGTH} characters long")
    if any(c.isspace() for c in u) or "@" in u:
        raise ValueError("Username must not contain spaces or '@'")
    return u


def validate_email(email: str) -> str:
    """Return the normalized email or raise ValueError."""
    e = normalize_identifier(email)
    if not is_valid_email(e):
        raise ValueError("Please provide a valid email address")
    return e


def validate_password(password: str) -> str:
    if password is None or len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters long")
    return password


def validate_text(text: str, max_length: int, what: str = "Text") -> str:
    """Trim and bound a post/comment body."""
    t = str(text or "").strip()
    if not t:
        raise ValueError(f"{what} is required")
    if len(t) > max_length:
        raise ValueError(f"{what} must be at most {max_length} characters")
    return t
