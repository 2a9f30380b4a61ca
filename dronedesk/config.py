import os
from dataclasses import dataclass, field
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SchedulingRules:
    active_statuses: Tuple[str, ...] = ("ASSIGNED", "IN_PROGRESS")
    terminal_statuses: Tuple[str, ...] = ("COMPLETED", "CANCELLED")
    default_status: str = "ASSIGNED"
    strict_transitions: bool = False
    default_page_size: int = 20
    max_page_size: int = 100

    def __post_init__(self):
        self.strict_transitions = _env_flag("STRICT_STATUS_TRANSITIONS", self.strict_transitions)


@dataclass
class AuthConfig:
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_minutes: int = 15
    refresh_token_days: int = 7
    access_cookie: str = "access_token"
    refresh_cookie: str = "refresh_token"
    secure_cookies: bool = False

    def __post_init__(self):
        self.jwt_secret = self.jwt_secret or os.getenv("JWT_SECRET", "dev-secret-change-me")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", self.jwt_algorithm)
        self.access_token_minutes = int(os.getenv("ACCESS_TOKEN_MINUTES", self.access_token_minutes))
        self.refresh_token_days = int(os.getenv("REFRESH_TOKEN_DAYS", self.refresh_token_days))
        self.secure_cookies = _env_flag("SECURE_COOKIES", self.secure_cookies)


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8000"
    prefix: str = "/api"
    request_timeout_seconds: float = 10.0
    list_stale_seconds: int = 120
    detail_stale_seconds: int = 120
    availability_stale_seconds: int = 60
    auth_endpoints: List[str] = field(default_factory=lambda: [
        "/api/auth/login",
        "/api/auth/register",
        "/api/auth/refresh",
        "/api/auth/me",
    ])

    def __post_init__(self):
        self.base_url = os.getenv("DRONEDESK_API_URL", self.base_url).rstrip("/")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dronedesk.db")
ENVIRONMENT = os.getenv("DRONEDESK_ENV", "dev")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
