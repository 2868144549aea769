from __future__ import annotations

import pytest

from vi.core.types import UiMode
from vi.features.sites.service import InMemorySiteStore, SiteRegistry
from vi.features.sites.types import AccessDenied, SiteConfig


def _registry(*sites: SiteConfig) -> SiteRegistry:
    return SiteRegistry(InMemorySiteStore(sites))


def test_from_mapping_defaults_and_settings():
    site = SiteConfig.from_mapping(
        {
            "site_id": "site_demo",
            "access_key": "sk_demo",
            "allowed_domains": ["Shop.Example.com"],
            "settings": {
                "start_up_delay_ms": 2500,
                "ui_mode": "pregenerated",
                "design_tokens": {"primary_color": "#112233"},
            },
        }
    )

    assert site.is_active is True
    assert site.allowed_domains == ("shop.example.com",)
    assert site.settings.start_up_delay_ms == 2500
    assert site.settings.ui_mode is UiMode.PREGENERATED
    assert site.settings.style_description == "Standard business website"
    assert site.settings.design_tokens == {"primary_color": "#112233"}


def test_from_mapping_rejects_bad_entries():
    with pytest.raises(ValueError):
        SiteConfig.from_mapping({"site_id": "x"})
    with pytest.raises(ValueError):
        SiteConfig.from_mapping({"site_id": "x", "access_key": "k", "settings": {"ui_mode": "sometimes"}})
    with pytest.raises(ValueError):
        SiteConfig.from_mapping(
            {"site_id": "x", "access_key": "k", "settings": {"design_tokens": {"shadow": "big"}}}
        )


@pytest.mark.parametrize("delay", [0, -5])
def test_from_mapping_rejects_non_positive_start_up_delay(delay):
    with pytest.raises(ValueError, match="start_up_delay_ms"):
        SiteConfig.from_mapping(
            {"site_id": "x", "access_key": "k", "settings": {"start_up_delay_ms": delay}}
        )


def test_allowed_domains_substring_either_way():
    open_site = SiteConfig(site_id="a", access_key="k")
    assert open_site.allows_domain("anything.test")

    site = SiteConfig(site_id="a", access_key="k", allowed_domains=("example.com",))
    assert site.allows_domain("www.example.com")
    assert site.allows_domain("example.com")
    # host contained in the allowed entry also passes
    assert SiteConfig(site_id="a", access_key="k", allowed_domains=("www.example.com",)).allows_domain(
        "example.com"
    )
    assert not site.allows_domain("evil.test")
    assert not site.allows_domain("")


def test_authorize_checks_site_key_and_active_flag():
    reg = _registry(
        SiteConfig(site_id="live", access_key="sk_live"),
        SiteConfig(site_id="off", access_key="sk_off", is_active=False),
    )

    assert reg.authorize("live", "sk_live").site_id == "live"

    with pytest.raises(AccessDenied):
        reg.authorize("nope", "sk_live")
    with pytest.raises(AccessDenied):
        reg.authorize("live", "sk_wrong")
    with pytest.raises(AccessDenied):
        reg.authorize("live", None)
    with pytest.raises(AccessDenied):
        reg.authorize("off", "sk_off")


def test_access_denied_is_a_value_error():
    assert issubclass(AccessDenied, ValueError)


def test_handshake_shape():
    reg = _registry(SiteConfig(site_id="s", access_key="k", allowed_domains=("a.test",)))

    hs = reg.handshake("s")

    assert hs["is_active"] is True
    assert hs["allowed_domains"] == ["a.test"]
    assert hs["settings"]["start_up_delay_ms"] == 1000
    assert hs["settings"]["ui_mode"] == "on_demand"

    with pytest.raises(AccessDenied):
        reg.handshake("missing")
