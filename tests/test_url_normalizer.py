"""
Tests for scan target normalization.
"""

import pytest

from privacy_advisor.services.url_normalizer import normalize_url


@pytest.mark.parametrize('raw, expected', [
    ('example.com', 'http://example.com/'),
    ('  https://Example.COM  ', 'https://example.com/'),
    ('https://example.com:443/path?q=1#section', 'https://example.com/path?q=1'),
    ('http://example.com:8080', 'http://example.com:8080/'),
    ('http://shop.example.co.uk/a/b', 'http://shop.example.co.uk/a/b'),
])
def test_normalizes(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize('raw', [
    '',
    '   ',
    'javascript:alert(1)',
    'ftp://example.com/file',
    '//example.com',
    'http://localhost:3000',
    'http://127.0.0.1/',
    'http://192.168.1.10/',
    'http://exa mple.com/',
    'http://a..b.com/',
    'https://' + 'a' * 2048 + '.com',
])
def test_rejects(raw):
    with pytest.raises(ValueError):
        normalize_url(raw)
