from dataclasses import dataclass, replace

from guestgate.core.config import Settings, get_settings

SAFE_GUEST_MONTHLY_LIMIT = 3
SAFE_HOST_CONCURRENT_LIMIT = 3
SAFE_DAILY_CAPACITY = 1000
NO_CUTOFF_HOUR = 24


def _positive_or(value: int | None, fallback: int) -> int:
    if value is None or value <= 0:
        return fallback
    return int(value)


@dataclass(frozen=True)
class AdmissionPolicy:
    """Limits one admission decision is evaluated against.

    Non-positive limits never disable enforcement: every accessor falls back
    to a safe default instead.
    """

    guest_monthly_limit: int = SAFE_GUEST_MONTHLY_LIMIT
    host_concurrent_limit: int = SAFE_HOST_CONCURRENT_LIMIT
    default_daily_capacity: int = SAFE_DAILY_CAPACITY
    cutoff_hour: int = 23
    cutoff_minute: int = 59
    consent_validity_days: int = 365
    rolling_window_days: int = 30
    discount_milestone: int = 3

    @property
    def effective_guest_monthly_limit(self) -> int:
        return _positive_or(self.guest_monthly_limit, SAFE_GUEST_MONTHLY_LIMIT)

    @property
    def effective_host_concurrent_limit(self) -> int:
        return _positive_or(self.host_concurrent_limit, SAFE_HOST_CONCURRENT_LIMIT)

    def daily_capacity_for(self, configured: int | None) -> int:
        return _positive_or(configured, _positive_or(self.default_daily_capacity, SAFE_DAILY_CAPACITY))

    def concurrent_limit_for(self, location_limit: int | None) -> int:
        return _positive_or(location_limit, self.effective_host_concurrent_limit)

    def cutoff_hour_for(self, location_cutoff_hour: int | None) -> int:
        if location_cutoff_hour is None:
            return self.cutoff_hour
        return min(max(int(location_cutoff_hour), 0), NO_CUTOFF_HOUR)

    def with_limits(self, guest_monthly_limit: int | None, host_concurrent_limit: int | None) -> "AdmissionPolicy":
        return replace(
            self,
            guest_monthly_limit=_positive_or(guest_monthly_limit, self.effective_guest_monthly_limit),
            host_concurrent_limit=_positive_or(host_concurrent_limit, self.effective_host_concurrent_limit),
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AdmissionPolicy":
        settings = settings or get_settings()
        return cls(
            guest_monthly_limit=_positive_or(settings.GUEST_MONTHLY_LIMIT, SAFE_GUEST_MONTHLY_LIMIT),
            host_concurrent_limit=_positive_or(settings.HOST_CONCURRENT_LIMIT, SAFE_HOST_CONCURRENT_LIMIT),
            default_daily_capacity=_positive_or(settings.DEFAULT_DAILY_CAPACITY, SAFE_DAILY_CAPACITY),
            cutoff_hour=min(max(settings.CHECKIN_CUTOFF_HOUR, 0), NO_CUTOFF_HOUR),
            cutoff_minute=min(max(settings.CHECKIN_CUTOFF_MINUTE, 0), 59),
            consent_validity_days=_positive_or(settings.CONSENT_VALIDITY_DAYS, 365),
            rolling_window_days=_positive_or(settings.ROLLING_WINDOW_DAYS, 30),
            discount_milestone=_positive_or(settings.DISCOUNT_MILESTONE, 3),
        )
