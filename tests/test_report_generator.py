"""
Tests for report payload generation.
"""

from conftest import make_evidence, make_scan
from privacy_advisor.analytics.report_generator import (
    build_report_payload,
    data_sharing_index,
    data_sharing_level,
    report_domain,
    select_top_fixes,
)
from privacy_advisor.models.report import DataSharingLevel, Issue


def make_issue(issue_id: str, severity: str, sort_weight=None, key=None, references=None) -> Issue:
    return Issue(
        id=issue_id,
        scan_id='scan-1',
        key=key,
        severity=severity,
        category='security',
        title=f"Issue {issue_id}",
        how_to_fix='Fix it',
        why_it_matters='It matters',
        references=references,
        sort_weight=sort_weight,
    )


class TestTopFixes:

    def test_severity_then_weight(self):
        issues = [
            make_issue('low', 'low', 1),
            make_issue('high', 'high', 2),
            make_issue('crit', 'critical', 5),
            make_issue('med', 'medium', 1),
            make_issue('info', 'info', 0),
        ]

        assert [issue.id for issue in select_top_fixes(issues)] == ['crit', 'high', 'med']

    def test_below_medium_excluded(self):
        issues = [make_issue('low', 'low', 1), make_issue('info', 'info', 0)]

        assert select_top_fixes(issues) == []

    def test_missing_weight_sorts_first_and_ties_keep_order(self):
        issues = [
            make_issue('a', 'high', 10),
            make_issue('b', 'high'),
            make_issue('c', 'high', 10),
        ]

        assert [issue.id for issue in select_top_fixes(issues)] == ['b', 'a', 'c']

    def test_severity_is_case_insensitive(self):
        issues = [make_issue('x', 'HIGH', 1), make_issue('y', 'Critical', 1)]

        assert [issue.id for issue in select_top_fixes(issues)] == ['y', 'x']


class TestDataSharing:

    def test_levels(self):
        assert data_sharing_level(0) == DataSharingLevel.NONE
        assert data_sharing_level(3) == DataSharingLevel.LOW
        assert data_sharing_level(4) == DataSharingLevel.MEDIUM
        assert data_sharing_level(8) == DataSharingLevel.MEDIUM
        assert data_sharing_level(9) == DataSharingLevel.HIGH

    def test_index_counts_distinct_domains(self):
        evidence = [
            make_evidence('t1', 'tracker', {'domain': 'a.com'}),
            make_evidence('t2', 'tracker', {'domain': 'a.com'}),
            make_evidence('t3', 'tracker', {'domain': 'b.com'}),
            make_evidence('p1', 'thirdparty', {'domain': 'c.com'}),
            make_evidence('c1', 'cookie', {'name': 'x'}),
            make_evidence('c2', 'cookie', {'name': 'x'}),
            make_evidence('h1', 'header', {'name': 'CSP'}),
            make_evidence('t4', 'tracker', 'not a mapping'),
        ]

        # 2 * 2 trackers + 1 third party + 2 cookie rows
        assert data_sharing_index(evidence) == 7


def test_report_domain():
    assert report_domain('https://www.example.co.uk/path') == 'example.co.uk'
    assert report_domain('https://api.github.com') == 'github.com'
    assert report_domain('example.com') == 'example.com'
    assert report_domain('not a url') == 'not a url'


def test_build_report_payload():
    scan = make_scan(input='https://shop.example.com/')
    evidence = [
        make_evidence('t1', 'tracker', {'domain': 'a.com'}),
        make_evidence('t2', 'tracker', {'domain': 'b.com'}),
        make_evidence('p1', 'thirdparty', {'domain': 'c.com'}),
        make_evidence('c1', 'cookie', {'name': 'sid'}),
    ]
    issues = [
        make_issue('scan-1:security.tls', 'critical', 5, key='security.tls'),
        make_issue('scan-1:low', 'low', 1),
        make_issue('scan-1:tracking', 'high', 2, key='tracking.trackers'),
    ]

    payload = build_report_payload(scan, evidence, issues)
    body = payload.to_response()

    assert [fix['id'] for fix in body['topFixes']] == ['scan-1:security.tls', 'scan-1:tracking']
    assert body['meta'] == {'dataSharing': 'Medium', 'domain': 'example.com'}
    assert body['scan']['id'] == 'scan-1'
    assert len(body['evidence']) == 4
    assert [issue['key'] for issue in body['issues']] == ['security.tls', 'scan-1:low', 'tracking.trackers']
    assert body['issues'][0]['howToFix'] == 'Fix it'
    assert body['issues'][0]['references'] == []


def test_empty_report():
    payload = build_report_payload(make_scan(), [], [])

    assert payload.top_fixes == []
    assert payload.meta.data_sharing == DataSharingLevel.NONE


def test_inputs_not_modified():
    issues = [make_issue('b', 'medium', 9), make_issue('a', 'critical', 1)]
    evidence = [make_evidence('t1', 'tracker', {'domain': 'a.com'})]

    build_report_payload(make_scan(), evidence, issues)

    assert [issue.id for issue in issues] == ['b', 'a']
    assert len(evidence) == 1


def test_top_fixes_example_ordering():
    issues = [
        make_issue('h', 'high', 2),
        make_issue('c', 'critical', 5),
        make_issue('l', 'low', 0),
    ]

    top = select_top_fixes(issues)

    assert [(issue.severity, issue.sort_weight) for issue in top] == [('critical', 5), ('high', 2)]


def test_empty_domains_not_counted():
    evidence = [
        make_evidence('t1', 'tracker', {'domain': ''}),
        make_evidence('p1', 'thirdparty', {'domain': ''}),
        make_evidence('p2', 'thirdparty', {'domain': 'c.com'}),
    ]

    assert data_sharing_index(evidence) == 1
    assert data_sharing_level(data_sharing_index(evidence)) == DataSharingLevel.LOW
