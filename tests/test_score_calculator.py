"""
Tests for the privacy score calculator.
"""

import pytest

from conftest import make_evidence, make_scan
from privacy_advisor.analytics.score_calculator import ScoreCalculator, deduplicate_evidence, root_domain_for
from privacy_advisor.models.report import ScoreLabel


@pytest.fixture
def calculator() -> ScoreCalculator:
    return ScoreCalculator()


def typical_evidence():
    return [
        make_evidence('t1', 'tracker', {'domain': 'google-analytics.com'}),
        make_evidence('t2', 'tracker', {'domain': 'google-analytics.com'}),
        make_evidence('t3', 'tracker', {'domain': 'doubleclick.net'}),
        make_evidence('p1', 'thirdparty', {'domain': 'cdn.example.com'}),
        make_evidence('p2', 'thirdparty', {'domain': 'fonts.example.org'}),
        make_evidence('h1', 'header', {'name': 'Content-Security-Policy'}),
        make_evidence('c1', 'cookie', {'name': 'sid'}),
        make_evidence('tls', 'tls', {'grade': 'A'}),
    ]


def test_typical_scan(calculator):
    result = calculator.compute(make_scan(), typical_evidence())

    assert result.score == 81
    assert result.label == ScoreLabel.SAFE
    assert result.summary == '2 trackers flagged; 1 security header missing; No privacy policy detected'
    assert [issue.key for issue in result.issues] == [
        'tracking.trackers',
        'security.headers',
        'security.cookies',
        'compliance.policy',
    ]
    assert result.issues[0].id == 'scan-1:tracking.trackers'
    assert result.meta['trackerDomains'] == ['google-analytics.com', 'doubleclick.net']
    assert result.meta['thirdPartyDomains'] == ['fonts.example.org']
    assert result.meta['policyFound'] is False


def test_clean_scan_is_capped_at_100(calculator):
    evidence = [
        make_evidence('pol', 'policy', {'url': 'https://www.example.com/privacy'}),
        make_evidence('tls', 'tls', {'grade': 'A+'}),
    ]

    result = calculator.compute(make_scan(), evidence)

    assert result.score == 100
    assert result.label == ScoreLabel.SAFE
    assert result.summary == 'No major privacy risks detected'
    assert result.issues == []


def test_tracker_penalty_is_capped(calculator):
    evidence = [make_evidence(f't{i}', 'tracker', {'domain': f'tracker{i}.net'}) for i in range(12)]
    evidence.append(make_evidence('pol', 'policy', {}))

    result = calculator.compute(make_scan(), evidence)

    # 100 - 40 (tracker cap) + 3 (policy)
    assert result.score == 63
    assert result.label == ScoreLabel.CAUTION


def test_fingerprinting_tracker_adds_penalty(calculator):
    evidence = [
        make_evidence('t1', 'tracker', {'domain': 'fingerprintjs.com', 'fingerprinting': True}),
        make_evidence('pol', 'policy', {}),
    ]

    result = calculator.compute(make_scan(), evidence)

    assert result.score == 100 - 10 + 3


def test_fingerprint_heuristics_need_three_signals(calculator):
    two = [make_evidence(f'f{i}', 'fingerprint', {'api': 'canvas'}) for i in range(2)]
    three = [make_evidence(f'f{i}', 'fingerprint', {'api': 'canvas'}) for i in range(3)]
    policy = make_evidence('pol', 'policy', {})

    assert calculator.compute(make_scan(), two + [policy]).meta['fingerprintDetected'] is False

    result = calculator.compute(make_scan(), three + [policy])
    assert result.meta['fingerprintDetected'] is True
    assert result.score == 100
    assert 'tracking.fingerprinting' in [issue.key for issue in result.issues]


def test_only_http_resources_count_as_insecure(calculator):
    evidence = [
        make_evidence('i1', 'insecure', {'url': 'http://static.example.org/app.js'}),
        make_evidence('i2', 'insecure', {'url': 'https://static.example.org/app.css'}),
        make_evidence('pol', 'policy', {}),
    ]

    result = calculator.compute(make_scan(), evidence)

    assert result.score == 98
    assert result.meta['mixedContent'] is True


def test_weak_tls_grade(calculator):
    evidence = [make_evidence('tls', 'tls', {'grade': 'F'}), make_evidence('pol', 'policy', {})]

    result = calculator.compute(make_scan(), evidence)

    assert result.score == 96
    tls_issue = next(issue for issue in result.issues if issue.key == 'security.tls')
    assert tls_issue.severity == 'high'


def test_high_risk_label(calculator):
    evidence = [make_evidence(f't{i}', 'tracker', {'domain': f'tracker{i}.net'}) for i in range(10)]
    evidence += [make_evidence(f'i{i}', 'insecure', {'url': f'http://cdn{i}.net/x.js'}) for i in range(3)]
    evidence += [make_evidence(f'h{i}', 'header', {'name': f'X-Header-{i}'}) for i in range(4)]

    result = calculator.compute(make_scan(), evidence)

    # 100 - 40 - 20 - 12 - 5 (no policy)
    assert result.score == 23
    assert result.label == ScoreLabel.HIGH_RISK


def test_deduplicate_keeps_first_per_key():
    evidence = [
        make_evidence('h1', 'header', {'name': 'Referrer-Policy'}),
        make_evidence('h2', 'header', {'name': 'Referrer-Policy'}),
        make_evidence('x1', 'other', None),
        make_evidence('x2', 'other', None),
    ]

    assert [entry.id for entry in deduplicate_evidence(evidence)] == ['h1', 'x1', 'x2']


def test_root_domain_for_bare_input():
    assert root_domain_for(make_scan(input='shop.example.co.uk')) == 'example.co.uk'
