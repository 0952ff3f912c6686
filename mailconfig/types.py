from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum

from .transport import mask_dsn

GLOBAL_SCOPE = "global"

# Fields that make up a discrete SMTP configuration.
SMTP_FIELDS = (
    "smtp_server",
    "smtp_user",
    "smtp_password",
    "smtp_port",
    "admin_email",
)


class Completeness(Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    ABSENT = "absent"


@dataclass(frozen=True)
class MailConfiguration:
    """Resolved mail configuration. Immutable once built."""

    smtp_server: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = field(default=None, repr=False)
    admin_email: str | None = None
    admin_name: str | None = None
    custom_dsn: str | None = None

    @classmethod
    def from_dict(cls, data):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self):
        return asdict(self)

    def with_dsn(self, dsn):
        return replace(self, custom_dsn=dsn)

    def is_empty(self):
        return not any(self.to_dict().values())

    def masked(self):
        """Dict form safe for logs and API responses."""
        data = self.to_dict()
        if data["smtp_password"]:
            data["smtp_password"] = "********"
        if data["custom_dsn"]:
            data["custom_dsn"] = mask_dsn(data["custom_dsn"])
        return data


@dataclass(frozen=True)
class ConfigCandidate:
    """A configuration source for one scope: a site id or ``"global"``."""

    scope: int | str
    smtp_server: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_password: str | None = field(default=None, repr=False)
    admin_email: str | None = None
    admin_name: str | None = None
    custom_dsn: str | None = None

    @classmethod
    def from_record(cls, record):
        return cls(
            scope=record.site_id,
            smtp_server=record.smtp_server,
            smtp_port=record.smtp_port,
            smtp_user=record.smtp_user,
            smtp_password=record.smtp_password,
            admin_email=record.admin_email,
            admin_name=record.admin_name,
            custom_dsn=record.custom_dsn,
        )

    @property
    def is_global(self):
        return self.scope == GLOBAL_SCOPE
