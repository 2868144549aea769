from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from vi.core.types import UiMode

DEFAULT_STYLE_DESCRIPTION = "Standard business website"

DESIGN_TOKEN_KEYS = ("primary_color", "font_family", "border_radius", "background_color", "text_color")


def domain_allowed(allowed_domains: Iterable[str], hostname: str | None) -> bool:
    """
    Empty allow-list allows every host. Otherwise a host matches when it
    contains an allowed domain or is contained in one.
    """
    domains = [d.strip().lower() for d in allowed_domains if d and d.strip()]
    if not domains:
        return True
    host = (hostname or "").strip().lower()
    if not host:
        return False
    return any(d in host or host in d for d in domains)


class AccessDenied(ValueError):
    """Unknown site, inactive site, or wrong access key."""


@dataclass(frozen=True)
class SiteSettings:
    """
    Handshake settings. start_up_delay_ms must be positive; collectors fall
    back to the 1 s default for a zero or missing value.
    """

    start_up_delay_ms: int = 1000
    ui_mode: UiMode = UiMode.ON_DEMAND
    style_description: str = DEFAULT_STYLE_DESCRIPTION
    design_tokens: dict[str, str] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return {
            "start_up_delay_ms": self.start_up_delay_ms,
            "ui_mode": self.ui_mode.value,
            "style_description": self.style_description,
            "design_tokens": dict(self.design_tokens),
        }


@dataclass(frozen=True)
class SiteConfig:
    site_id: str
    access_key: str
    name: str | None = None
    is_active: bool = True
    allowed_domains: tuple[str, ...] = ()
    settings: SiteSettings = SiteSettings()

    def allows_domain(self, hostname: str | None) -> bool:
        return domain_allowed(self.allowed_domains, hostname)

    def to_handshake(self) -> dict[str, Any]:
        return {
            "is_active": self.is_active,
            "allowed_domains": list(self.allowed_domains),
            "settings": self.settings.to_wire(),
        }

    @classmethod
    def from_mapping(
        cls, raw: Mapping[str, Any], *, default_ui_mode: str = UiMode.ON_DEMAND.value
    ) -> SiteConfig:
        site_id = str(raw.get("site_id") or "").strip()
        access_key = str(raw.get("access_key") or "").strip()
        if not site_id or not access_key:
            raise ValueError("site entries need site_id and access_key")

        settings_raw = raw.get("settings") or {}
        if not isinstance(settings_raw, Mapping):
            raise ValueError(f"sites[{site_id}].settings must be a mapping")

        tokens = settings_raw.get("design_tokens") or {}
        if not isinstance(tokens, Mapping):
            raise ValueError(f"sites[{site_id}].settings.design_tokens must be a mapping")
        unknown = sorted(set(tokens) - set(DESIGN_TOKEN_KEYS))
        if unknown:
            raise ValueError(f"sites[{site_id}]: unknown design tokens {unknown}")

        delay = int(settings_raw.get("start_up_delay_ms", SiteSettings.start_up_delay_ms))
        if delay <= 0:
            raise ValueError(f"sites[{site_id}].settings.start_up_delay_ms must be > 0")

        domains = raw.get("allowed_domains") or []
        if isinstance(domains, str):
            domains = [domains]

        return cls(
            site_id=site_id,
            access_key=access_key,
            name=raw.get("name"),
            is_active=bool(raw.get("is_active", True)),
            allowed_domains=tuple(str(d).strip().lower() for d in domains if str(d).strip()),
            settings=SiteSettings(
                start_up_delay_ms=delay,
                ui_mode=UiMode.parse(settings_raw.get("ui_mode") or default_ui_mode),
                style_description=str(
                    settings_raw.get("style_description") or DEFAULT_STYLE_DESCRIPTION
                ),
                design_tokens={str(k): str(v) for k, v in tokens.items()},
            ),
        )


class SiteStore(Protocol):
    def get(self, site_id: str) -> SiteConfig | None: ...

    def save(self, site: SiteConfig) -> None: ...
