from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint, Text, Column, DateTime
from sqlalchemy.types import TypeDecorator
import enum

# === Time ===

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

class UTCDateTime(TypeDecorator):
    """Timestamp column that always hands back aware UTC values.

    SQLite drops the offset on storage, Postgres keeps it; both read back as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


# === Plans ===

class PlanType(str, enum.Enum):
    STARTER = "starter"
    UNLIMITED = "unlimited"

PLAN_LABELS = {
    PlanType.STARTER: "Starter",
    PlanType.UNLIMITED: "Unlimited",
}

class SummaryMode(str, enum.Enum):
    SHORT = "short"
    DETAILED = "detailed"

DEFAULT_CATEGORY_COLOR = "#F97316"

# === Accounts ===

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = ""
    hashed_password: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class PasswordResetCode(SQLModel, table=True):
    __tablename__ = "password_reset_codes"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True)
    code: str = Field(max_length=6)
    expires_at: datetime = Field(sa_type=UTCDateTime)
    used: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class UserSettings(SQLModel, table=True):
    __tablename__ = "user_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, unique=True, foreign_key="user.id")
    email_method: str = "resend"  # resend|smtp|gmail

    gmail_connected: bool = False
    gmail_access_token: Optional[str] = None
    gmail_refresh_token: Optional[str] = None
    gmail_token_expiry: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    sender_name: Optional[str] = None
    signature_text: Optional[str] = None

# === Meetings ===

class MeetingCategory(SQLModel, table=True):
    __tablename__ = "meeting_categories"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_category_user_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    name: str
    color: str = Field(default=DEFAULT_CATEGORY_COLOR, max_length=9)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class Meeting(SQLModel, table=True):
    __tablename__ = "meetings"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    title: str
    duration: int = 0  # seconds

    summary: Optional[str] = Field(default=None, sa_column=Column(Text))
    summary_short: Optional[str] = Field(default=None, sa_column=Column(Text))
    summary_detailed: Optional[str] = Field(default=None, sa_column=Column(Text))
    summary_mode: str = SummaryMode.SHORT.value
    transcript: Optional[str] = Field(default=None, sa_column=Column(Text))
    display_transcript: Optional[str] = Field(default=None, sa_column=Column(Text))

    category_id: Optional[int] = Field(default=None, foreign_key="meeting_categories.id", index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class CustomDictionary(SQLModel, table=True):
    __tablename__ = "custom_dictionary"
    __table_args__ = (UniqueConstraint("user_id", "incorrect_word", name="uq_dictionary_user_word"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    incorrect_word: str
    correct_word: str
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

# === Email ===

class EmailHistory(SQLModel, table=True):
    __tablename__ = "email_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    meeting_id: Optional[int] = Field(default=None, index=True)

    recipients: str
    cc_recipients: Optional[str] = None
    subject: str = ""
    html_body: Optional[str] = Field(default=None, sa_column=Column(Text))
    method: str = "resend"
    attachments_count: int = 0
    total_attachments_size: int = 0

    status: str = "sent"  # sent|failed
    error_message: Optional[str] = None

    tracking_id: Optional[str] = Field(default=None, index=True, max_length=64)
    message_id: Optional[str] = None
    thread_id: Optional[str] = None

    sent_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    first_opened_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    first_opened_recipient: Optional[str] = None
    open_count: int = 0

class EmailOpenEvent(SQLModel, table=True):
    __tablename__ = "email_open_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    email_history_id: int = Field(index=True, foreign_key="email_history.id")
    recipient_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    opened_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class SupportTicket(SQLModel, table=True):
    __tablename__ = "support_tickets"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, index=True)
    name: str
    email: str
    category: str = "question"
    subject: str = ""
    message: str = Field(sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

# === Billing ===

class UserSubscription(SQLModel, table=True):
    __tablename__ = "user_subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, unique=True, foreign_key="user.id")
    plan_type: str = PlanType.STARTER.value
    minutes_quota: Optional[int] = None  # None = unlimited
    minutes_used: int = 0

    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    stripe_price_id: Optional[str] = None
    pending_downgrade_plan: Optional[str] = None

    billing_cycle_start: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    billing_cycle_end: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

class StripeCustomer(SQLModel, table=True):
    __tablename__ = "stripe_customers"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="user.id")
    customer_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

class StripeSubscription(SQLModel, table=True):
    __tablename__ = "stripe_subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: str = Field(index=True)
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    # Unix seconds, as Stripe reports them
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
