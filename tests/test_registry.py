import dataclasses

import pytest
import yaml

from site_manager.errors import SiteExistsError, SiteNotFoundError, ValidationError
from site_manager.registry import (
    PhpSite,
    ProxySite,
    SiteRegistry,
    make_site,
    site_from_dict,
    validate_domain,
)


@pytest.mark.parametrize("domain", ["a.test", "app.local", "my-app.dev.test", "x1.localhost"])
def test_valid_domains(domain):
    assert validate_domain(domain) == domain


def test_domain_is_normalised():
    assert validate_domain("  App.Local ") == "app.local"


@pytest.mark.parametrize("domain", [
    "",
    "localhost",
    "-bad.test",
    "bad-.test",
    "a..test",
    "a.test;rm -rf /",
    "a.test/../etc",
    "$(id).test",
    "a" * 64 + ".test",
])
def test_invalid_domains(domain):
    with pytest.raises(ValidationError):
        validate_domain(domain)


def test_make_site_enforces_kind_fields():
    assert make_site("a.test", "php", php_version="8.2") == PhpSite("a.test", "8.2")
    assert make_site("a.test", "proxy", proxy_port=4000) == ProxySite("a.test", 4000)

    with pytest.raises(ValidationError):
        make_site("a.test", "php", php_version="8.2", proxy_port=4000)
    with pytest.raises(ValidationError):
        make_site("a.test", "proxy", php_version="8.2", proxy_port=4000)
    with pytest.raises(ValidationError):
        make_site("a.test", "php")
    with pytest.raises(ValidationError):
        make_site("a.test", "proxy")
    with pytest.raises(ValidationError):
        make_site("a.test", "static")


@pytest.mark.parametrize("port", [0, 65536, "abc", "80; id", None])
def test_invalid_ports(port):
    with pytest.raises(ValidationError):
        ProxySite("a.test", port)


def test_port_given_as_string_is_converted():
    assert ProxySite("a.test", "4000").proxy_port == 4000


@pytest.mark.parametrize("version", ["8", "eight", "8.2.1", "8.2;id"])
def test_invalid_php_versions(version):
    with pytest.raises(ValidationError):
        PhpSite("a.test", version)


def test_records_are_immutable():
    site = PhpSite("a.test", "8.2")
    with pytest.raises(dataclasses.FrozenInstanceError):
        site.php_version = "8.3"


def test_round_trip_through_file(registry, settings):
    registry.add(PhpSite("a.test", "8.2"))
    registry.add(ProxySite("app.local", 4000))

    with open(settings.registry_file) as f:
        data = yaml.safe_load(f)
    assert data == {"sites": [
        {"domain": "a.test", "type": "php", "php_version": "8.2"},
        {"domain": "app.local", "type": "proxy", "proxy_port": 4000},
    ]}

    reloaded = SiteRegistry(settings.registry_file)
    assert reloaded.list() == [PhpSite("a.test", "8.2"), ProxySite("app.local", 4000)]


def test_add_rejects_duplicates(registry):
    registry.add(PhpSite("a.test", "8.2"))
    with pytest.raises(SiteExistsError):
        registry.add(ProxySite("a.test", 3000))


def test_put_replaces_in_place(registry):
    registry.add(PhpSite("a.test", "8.2"))
    registry.add(PhpSite("b.test", "8.1"))

    registry.put(PhpSite("a.test", "8.3"))

    assert [s.domain for s in registry.list()] == ["a.test", "b.test"]
    assert registry.get("a.test").php_version == "8.3"


def test_list_returns_a_copy(registry):
    registry.add(PhpSite("a.test", "8.2"))
    sites = registry.list()
    sites.clear()
    assert registry.list() == [PhpSite("a.test", "8.2")]


def test_delete_and_require(registry):
    registry.add(PhpSite("a.test", "8.2"))

    assert registry.delete("a.test") is True
    assert registry.delete("a.test") is False
    assert "a.test" not in registry
    with pytest.raises(SiteNotFoundError):
        registry.require("a.test")


def test_unknown_type_in_file_is_rejected():
    with pytest.raises(ValidationError):
        site_from_dict({"domain": "a.test", "type": "static"})


@pytest.mark.parametrize("content", ["", "sites:\n", "sites: []\n"])
def test_empty_registry_file(tmp_path, content):
    path = tmp_path / "sites.yaml"
    path.write_text(content)
    assert SiteRegistry(path).list() == []
