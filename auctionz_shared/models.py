"""
Core data models for the AuctionZ session client.

This module defines the data structures shared by the credential store,
the session validator, the lifecycle orchestrator and the logout service.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Mapping
from enum import Enum

from auctionz_shared.exceptions import ErrorCode


ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
SESSION_ID_KEY = "session_id"

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SESSION_ID_KEY)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the API; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ValidationPhase(Enum):
    """Phases of a single session validation run."""
    IDLE = "idle"
    CHECKING = "checking"
    REFRESHING = "refreshing"
    RECONCILING = "reconciling"
    DONE = "done"
    INVALID = "invalid"


@dataclass(frozen=True)
class Credential:
    """The three-part credential; all fields present or none."""
    access_token: str
    refresh_token: str
    session_id: str

    def __post_init__(self):
        if not self.access_token or not self.refresh_token or not self.session_id:
            raise ValueError("Credential requires access_token, refresh_token and session_id")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Optional["Credential"]:
        """Build a credential from storage or an API payload, or None when incomplete."""
        values = [data.get(key) for key in CREDENTIAL_KEYS]
        if not all(values):
            return None
        return cls(*[str(value) for value in values])

    def to_dict(self) -> Dict[str, str]:
        return {
            ACCESS_TOKEN_KEY: self.access_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
            SESSION_ID_KEY: self.session_id,
        }


@dataclass
class Session:
    """Server-side session record mirrored locally after validation."""
    id: str
    user_id: Any
    device_info: str
    ip_address: str
    is_active: bool
    expires_at: datetime
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Session ID cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        expires_at = parse_timestamp(data.get("expires_at"))
        if expires_at is None:
            raise ValueError(f"Session {data.get('id')} has no expires_at")
        return cls(
            id=str(data.get("id") or ""),
            user_id=data.get("user_id"),
            device_info=data.get("device_info") or "",
            ip_address=data.get("ip_address") or "",
            is_active=bool(data.get("is_active", False)),
            expires_at=expires_at,
            created_at=parse_timestamp(data.get("created_at")),
            last_used_at=parse_timestamp(data.get("last_used_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "device_info": self.device_info,
            "ip_address": self.ip_address,
            "is_active": self.is_active,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


@dataclass
class User:
    """Authenticated user profile as returned by the API."""
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: str = "buyer"
    status: str = "active"
    email_verified: bool = False
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["id"] = str(values.get("id", ""))
        values.setdefault("email", "")
        return cls(**values)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email


@dataclass
class ValidationResult:
    """
    Outcome of one validation run.

    Exactly one of is_valid, is_expired and is_invalid is set; callers
    pick their remediation from it.
    """
    is_valid: bool
    is_expired: bool = False
    is_invalid: bool = False
    reason: Optional[str] = None
    session: Optional[Session] = None
    error_code: Optional[ErrorCode] = None
    is_expiring_soon: bool = False

    @classmethod
    def valid(cls, session: Session, expiring_soon: bool = False) -> "ValidationResult":
        return cls(is_valid=True, session=session, is_expiring_soon=expiring_soon)

    @classmethod
    def invalid(cls, reason: str, error_code: ErrorCode) -> "ValidationResult":
        return cls(is_valid=False, is_invalid=True, reason=reason, error_code=error_code)

    @classmethod
    def expired(cls, reason: str, error_code: ErrorCode, session: Optional[Session] = None) -> "ValidationResult":
        return cls(is_valid=False, is_expired=True, reason=reason, error_code=error_code, session=session)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "is_expired": self.is_expired,
            "is_invalid": self.is_invalid,
            "reason": self.reason,
            "error_code": self.error_code.value if self.error_code else None,
            "is_expiring_soon": self.is_expiring_soon,
            "session": self.session.to_dict() if self.session else None,
        }


@dataclass(frozen=True)
class LifecycleConfig:
    """
    Policy for the session lifecycle.

    Durations are in seconds. Each auto-logout flag gates remediation for
    one class of validation failure.
    """
    validate_on_route_change: bool = True
    validate_on_page_focus: bool = True
    validate_on_interval: bool = True
    validation_interval: float = 300.0

    auto_logout_on_expiry: bool = True
    auto_logout_on_invalid_session: bool = True
    auto_logout_on_network_error: bool = True

    redirect_to_login_on_logout: bool = True
    redirect_to_home_on_logout: bool = False
    preserve_current_route: bool = True

    show_expiry_warning: bool = True
    warning_time_before_expiry: float = 600.0
    token_refresh_lookahead: float = 300.0

    enable_debug_logging: bool = False

    def __post_init__(self):
        if self.validation_interval <= 0:
            raise ValueError("validation_interval must be positive")
        if self.warning_time_before_expiry < 0:
            raise ValueError("warning_time_before_expiry cannot be negative")
        if self.token_refresh_lookahead < 0:
            raise ValueError("token_refresh_lookahead cannot be negative")

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}


@dataclass(frozen=True)
class LifecycleState:
    """Snapshot of the lifecycle orchestrator state."""
    is_initialized: bool = False
    is_validation_in_progress: bool = False
    last_validation_time: Optional[datetime] = None
    current_session: Optional[Session] = None
    session_expiry_time: Optional[datetime] = None
    is_session_expiring: bool = False
    is_session_expired: bool = False


@dataclass
class LogoutOptions:
    """Options accepted by the logout operations."""
    redirect_to: Optional[str] = None
    show_confirmation: Optional[bool] = None
    clear_all_data: bool = False
    reason: Optional[str] = None


@dataclass
class LogoutResult:
    """Result returned by every logout operation."""
    success: bool
    message: str
    redirected: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "redirected": self.redirected}


@dataclass
class RouteLocation:
    """Current route as reported by a router handle."""
    path: str = "/"
    full_path: str = "/"
    query: Dict[str, str] = field(default_factory=dict)
