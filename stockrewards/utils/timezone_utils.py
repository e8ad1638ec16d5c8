"""
타임존 유틸리티

저장/비교는 UTC 기준, '오늘' 판단은 설정 타임존(기본 IST) 기준으로 처리합니다.
SQLite는 tz 정보 없이 datetime을 돌려주므로 읽은 값은 ensure_utc로 정규화합니다.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """tz 정보가 없는 datetime은 UTC로 간주하고, 있는 경우 UTC로 변환합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_zone(dt: datetime, tz_name: str) -> datetime:
    """UTC(또는 다른 타임존) datetime을 지정 타임존으로 변환합니다."""
    return ensure_utc(dt).astimezone(pytz.timezone(tz_name))


def local_today(tz_name: str, now: Optional[datetime] = None) -> date:
    """지정 타임존 기준 오늘 날짜"""
    return to_zone(now or utc_now(), tz_name).date()


def day_bounds_utc(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """지정 타임존의 하루 [00:00, 다음날 00:00)을 UTC 구간으로 반환합니다."""
    zone = pytz.timezone(tz_name)
    start_local = zone.localize(datetime.combine(day, time.min))
    end_local = zone.localize(datetime.combine(day + timedelta(days=1), time.min))
    return (
        start_local.astimezone(timezone.utc),
        end_local.astimezone(timezone.utc),
    )
