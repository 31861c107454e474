"""
Regional proxy table and proxy credentials.

Regional keys are validated and redeemed through a proxy located in the
key's region so the storefront sees the matching market.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from activator.core.region import normalize_region


@dataclass(frozen=True)
class ProxyEndpoint:
    host: str
    port: int
    market: str

    def url(self, credentials: Optional["ProxyCredentials"] = None) -> str:
        if credentials is None:
            return f"http://{self.host}:{self.port}"
        return f"http://{credentials.username}:{credentials.password}@{self.host}:{self.port}"


PROXY_ENDPOINTS: Dict[str, ProxyEndpoint] = {
    "US": ProxyEndpoint("us.decodo.com", 10000, "US"),
    "CA": ProxyEndpoint("ca.decodo.com", 20000, "CA"),
    "AR": ProxyEndpoint("ar.decodo.com", 10000, "AR"),
    "TR": ProxyEndpoint("tr.decodo.com", 40000, "TR"),
    "DE": ProxyEndpoint("de.decodo.com", 20000, "DE"),
    "AU": ProxyEndpoint("au.decodo.com", 30000, "AU"),
    "SG": ProxyEndpoint("sg.decodo.com", 10000, "SG"),
    "IN": ProxyEndpoint("in.decodo.com", 10000, "IN"),
    "UA": ProxyEndpoint("ua.decodo.com", 40000, "UA"),
    "EG": ProxyEndpoint("eg.decodo.com", 20000, "EG"),
    "IL": ProxyEndpoint("il.decodo.com", 30000, "IL"),
    "HK": ProxyEndpoint("hk.decodo.com", 10000, "HK"),
    "JP": ProxyEndpoint("jp.decodo.com", 30000, "JP"),
    "CN": ProxyEndpoint("cn.decodo.com", 30000, "CN"),
    "BR": ProxyEndpoint("br.decodo.com", 10000, "BR"),
    "PK": ProxyEndpoint("pk.decodo.com", 10000, "PK"),
    "CO": ProxyEndpoint("co.decodo.com", 30000, "CO"),
    "MX": ProxyEndpoint("mx.decodo.com", 20000, "MX"),
    "AE": ProxyEndpoint("ae.decodo.com", 20000, "AE"),
    "PH": ProxyEndpoint("ph.decodo.com", 40000, "PH"),
    "TW": ProxyEndpoint("tw.decodo.com", 20000, "TW"),
    "KR": ProxyEndpoint("kr.decodo.com", 10000, "KR"),
    "TH": ProxyEndpoint("th.decodo.com", 30000, "TH"),
    "NZ": ProxyEndpoint("nz.decodo.com", 39000, "NZ"),
    "ZA": ProxyEndpoint("za.decodo.com", 40000, "ZA"),
    "GB": ProxyEndpoint("gb.decodo.com", 30000, "GB"),
    "NG": ProxyEndpoint("ng.decodo.com", 42000, "NG"),
}


def proxy_for_region(region: Optional[str]) -> Optional[ProxyEndpoint]:
    code = normalize_region(region)
    if code is None:
        return None
    return PROXY_ENDPOINTS.get(code)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ProxyCredentials:
    username: str
    password: str
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], default_ttl: float, now: Optional[datetime] = None) -> "ProxyCredentials":
        """
        Decode the credential service payload ({"user", "password", "expires_at"}).

        A missing or unparseable expires_at falls back to now + default_ttl.

        Raises:
            KeyError / TypeError when user or password is missing
        """
        now = now or datetime.now(timezone.utc)
        username = payload["user"]
        password = payload["password"]
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            raise TypeError("proxy credentials must carry non-empty user and password")
        expires_at = _parse_timestamp(payload.get("expires_at")) or now + timedelta(seconds=default_ttl)
        return cls(username=username, password=password, expires_at=expires_at)

    def seconds_left(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.seconds_left(now) <= 0
