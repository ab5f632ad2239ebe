from hiretrack.core.urls import normalize_link


def test_normalize_link_strips_tracking_params_and_default_port() -> None:
    normalized = normalize_link("https://Example.com:443/careers/role/?utm_source=feed&trk=abc&lang=en")
    assert normalized == "https://example.com/careers/role?lang=en"


def test_normalize_link_resolves_relative_links_against_base() -> None:
    normalized = normalize_link("/jobs/42", base_url="https://acme.example/careers/")
    assert normalized == "https://acme.example/jobs/42"


def test_normalize_link_rejects_non_http_schemes() -> None:
    assert normalize_link("urn:li:organization:1001") is None
    assert normalize_link("mailto:jobs@acme.example") is None
    assert normalize_link("   ") is None
