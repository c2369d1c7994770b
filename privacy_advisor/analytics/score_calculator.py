"""
Privacy score calculator.

Turns the raw evidence of a finished scan into a 0-100 score, a label, the
list of curated issues and a one-line summary.

Implements:
- Evidence deduplication across crawled pages
- Tracker, third-party, mixed-content, header, cookie, policy, TLS and
  fingerprinting penalties
- Bonuses for strong TLS, no trackers and a published privacy policy
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from privacy_advisor.models.report import (
    Evidence,
    Issue,
    IssueSeverity,
    Reference,
    ScanRecord,
    ScoreExplanation,
    ScoreLabel,
    ScoreResult,
    severity_rank,
)
from privacy_advisor.services.first_party import is_first_party, registrable_domain

logger = logging.getLogger(__name__)


def _details(evidence: Evidence) -> Dict[str, Any]:
    return evidence.details if isinstance(evidence.details, dict) else {}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count > 1 else ''}"


def evidence_key(evidence: Evidence) -> str:
    """Identity of the violation an evidence entry reports, independent of page."""
    details = _details(evidence)
    kind = evidence.kind
    if kind == 'header':
        return f"header:{details.get('name')}"
    if kind in ('thirdparty', 'tracker'):
        return f"{kind}:{details.get('domain')}"
    if kind == 'insecure':
        return f"insecure:{details.get('url')}"
    if kind == 'cookie':
        return f"cookie:{details.get('name')}"
    if kind == 'fingerprint':
        return 'fingerprint'
    if kind == 'policy':
        return 'policy:found'
    if kind == 'tls':
        return 'tls:grade'
    return f"{kind}:{evidence.id}"


def deduplicate_evidence(evidence: Iterable[Evidence]) -> List[Evidence]:
    """Keep the first entry per violation key, in original order."""
    unique: Dict[str, Evidence] = {}
    for entry in evidence:
        unique.setdefault(evidence_key(entry), entry)
    return list(unique.values())


def root_domain_for(scan: ScanRecord) -> str:
    """Registrable domain of the scanned target."""
    target = scan.normalized_input or scan.input
    candidate = target if target.startswith('http') else f"https://{target}"
    try:
        hostname = urlsplit(candidate).hostname or ''
    except ValueError:
        hostname = ''
    if not hostname:
        return registrable_domain(target) or target
    return registrable_domain(hostname) or hostname


class ScoreCalculator:
    """Compute the privacy score for a scan from its evidence."""

    TRACKER_POINTS = 5
    TRACKER_CAP = 40
    THIRD_PARTY_POINTS = 2
    THIRD_PARTY_CAP = 20
    INSECURE_POINTS = 10
    INSECURE_CAP = 20
    HEADER_POINTS = 3
    COOKIE_POINTS = 2
    COOKIE_CAP = 10
    MISSING_POLICY_POINTS = 5
    FINGERPRINT_POINTS = 5
    FINGERPRINT_MIN_SIGNALS = 3
    TLS_PENALTIES = {'C': 3, 'D': 7, 'F': 12}
    TLS_BONUSES = {'A+': 5, 'A': 3}
    NO_TRACKERS_BONUS = 5
    POLICY_BONUS = 3

    def compute(self, scan: ScanRecord, evidence: List[Evidence]) -> ScoreResult:
        """
        Score a scan.

        Args:
            scan: Scan record (input decides what counts as first-party)
            evidence: All evidence rows for the scan, possibly repeated per page

        Returns:
            Score result with issues sorted by severity then sort weight
        """
        root_domain = root_domain_for(scan)
        # fingerprint signals are counted before deduplication collapses them
        fingerprint_signals = sum(1 for entry in evidence if entry.kind == 'fingerprint')
        evidence = deduplicate_evidence(evidence)
        by_kind: Dict[str, List[Evidence]] = {}
        for entry in evidence:
            by_kind.setdefault(entry.kind, []).append(entry)

        score = 100
        bonuses = 0
        explanations: List[ScoreExplanation] = []

        def explain(evidence_id: str, points: int, reason: str):
            explanations.append(ScoreExplanation(evidence_id=evidence_id, points=points, reason=reason))

        # Trackers
        trackers = by_kind.get('tracker', [])
        tracker_domains = self._unique_domains(trackers)
        tracker_penalty = min(len(tracker_domains) * self.TRACKER_POINTS, self.TRACKER_CAP)
        tracker_penalty += sum(self.TRACKER_POINTS for entry in trackers if _details(entry).get('fingerprinting'))
        if tracker_penalty:
            for entry in trackers:
                explain(entry.id, -self.TRACKER_POINTS, 'Tracker domain')
        score -= tracker_penalty

        # Third parties, excluding the site's own infrastructure
        third_party = [
            entry for entry in by_kind.get('thirdparty', [])
            if isinstance(_details(entry).get('domain'), str)
            and not is_first_party(_details(entry)['domain'], root_domain)
        ]
        third_party_domains = self._unique_domains(third_party)
        third_party_penalty = min(len(third_party_domains) * self.THIRD_PARTY_POINTS, self.THIRD_PARTY_CAP)
        if third_party_penalty:
            for entry in third_party:
                explain(entry.id, -self.THIRD_PARTY_POINTS, 'Third-party request')
        score -= third_party_penalty

        # Mixed content: only real http:// resources count
        insecure = [
            entry for entry in by_kind.get('insecure', [])
            if isinstance(_details(entry).get('url'), str) and _details(entry)['url'].startswith('http://')
        ]
        insecure_penalty = min(len(insecure) * self.INSECURE_POINTS, self.INSECURE_CAP)
        if insecure_penalty:
            for entry in insecure:
                explain(entry.id, -self.INSECURE_POINTS, 'Insecure/mixed content')
        score -= insecure_penalty

        header_entries = by_kind.get('header', [])
        headers_missing = [
            _details(entry)['name'] for entry in header_entries
            if isinstance(_details(entry).get('name'), str)
        ]
        header_penalty = len(headers_missing) * self.HEADER_POINTS
        if header_penalty:
            for entry in header_entries:
                explain(entry.id, -self.HEADER_POINTS, 'Missing security header')
        score -= header_penalty

        cookie_issues = by_kind.get('cookie', [])
        cookie_penalty = min(len(cookie_issues) * self.COOKIE_POINTS, self.COOKIE_CAP)
        if cookie_penalty:
            for entry in cookie_issues:
                explain(entry.id, -self.COOKIE_POINTS, 'Cookie missing flags')
        score -= cookie_penalty

        policy_entries = by_kind.get('policy', [])
        policy_found = bool(policy_entries)
        if not policy_found:
            score -= self.MISSING_POLICY_POINTS
            explain('missing-policy', -self.MISSING_POLICY_POINTS, 'No privacy policy found')

        tls_record = next(iter(by_kind.get('tls', [])), None)
        tls_grade: Optional[str] = None
        if tls_record is not None:
            tls_grade = _details(tls_record).get('grade') or 'A'
            penalty = self.TLS_PENALTIES.get(tls_grade, 0)
            score -= penalty
            if penalty:
                explain(tls_record.id, -penalty, f"TLS grade {tls_grade}")

        fingerprint_detected = fingerprint_signals >= self.FINGERPRINT_MIN_SIGNALS
        if fingerprint_detected:
            score -= self.FINGERPRINT_POINTS
            first_fingerprint = next(iter(by_kind.get('fingerprint', [])), None)
            if first_fingerprint is not None:
                explain(
                    first_fingerprint.id,
                    -self.FINGERPRINT_POINTS,
                    f"Fingerprinting heuristics ({fingerprint_signals} signals)"
                )

        # Bonuses
        tls_bonus = self.TLS_BONUSES.get(tls_grade or '', 0)
        if tls_bonus:
            bonuses += tls_bonus
            strength = 'excellent' if tls_grade == 'A+' else 'strong'
            explain(tls_record.id, tls_bonus, f"TLS Grade {tls_grade} ({strength})")

        if not tracker_domains:
            bonuses += self.NO_TRACKERS_BONUS
            explain('bonus-no-trackers', self.NO_TRACKERS_BONUS, 'No tracking domains detected')

        if policy_found:
            bonuses += self.POLICY_BONUS
            explain(policy_entries[0].id, self.POLICY_BONUS, 'Privacy policy found')

        score = max(0, min(100, score + bonuses))

        issues = self._build_issues(
            scan,
            tracker_domains=tracker_domains,
            third_party_domains=third_party_domains,
            headers_missing=headers_missing,
            cookie_count=len(cookie_issues),
            tls_grade=tls_grade,
            fingerprint_detected=fingerprint_detected,
            mixed_content=bool(insecure),
            policy_found=policy_found,
        )

        summary_parts = []
        if tracker_domains:
            summary_parts.append(f"{_plural(len(tracker_domains), 'tracker')} flagged")
        if headers_missing:
            summary_parts.append(f"{_plural(len(headers_missing), 'security header')} missing")
        if not policy_found:
            summary_parts.append('No privacy policy detected')
        if fingerprint_detected:
            summary_parts.append('Fingerprinting heuristics present')

        logger.debug(f"Scan {scan.id} scored {score} ({len(issues)} issues)")

        return ScoreResult(
            score=score,
            label=ScoreLabel.for_score(score),
            summary='; '.join(summary_parts) or 'No major privacy risks detected',
            explanations=explanations,
            issues=issues,
            meta={
                'trackerDomains': tracker_domains,
                'thirdPartyDomains': third_party_domains,
                'missingHeaders': headers_missing,
                'cookieIssues': len(cookie_issues),
                'policyFound': policy_found,
                'tlsGrade': tls_grade,
                'fingerprintDetected': fingerprint_detected,
                'mixedContent': bool(insecure),
            },
        )

    @staticmethod
    def _unique_domains(entries: List[Evidence]) -> List[str]:
        domains: List[str] = []
        for entry in entries:
            domain = _details(entry).get('domain')
            if isinstance(domain, str) and domain not in domains:
                domains.append(domain)
        return domains

    def _build_issues(
        self,
        scan: ScanRecord,
        tracker_domains: List[str],
        third_party_domains: List[str],
        headers_missing: List[str],
        cookie_count: int,
        tls_grade: Optional[str],
        fingerprint_detected: bool,
        mixed_content: bool,
        policy_found: bool
    ) -> List[Issue]:
        drafts: List[Dict[str, Any]] = []

        if tracker_domains:
            more = '…' if len(tracker_domains) > 5 else ''
            drafts.append({
                'key': 'tracking.trackers',
                'severity': IssueSeverity.HIGH,
                'category': 'tracking',
                'title': f"{_plural(len(tracker_domains), 'tracker')} observed",
                'summary': f"Trackers detected: {', '.join(tracker_domains[:5])}{more}",
                'how_to_fix': 'Review marketing and analytics tags. Remove unnecessary trackers or load them only after explicit consent via a consent management platform.',
                'why_it_matters': 'Trackers monitor user behaviour and may violate privacy laws if deployed without consent or disclosures.',
                'references': [Reference(label='Mozilla: Managing tracking scripts', url='https://developer.mozilla.org/en-US/docs/Web/Privacy/Tracking_Protection')],
                'sort_weight': 10,
            })

        if len(third_party_domains) > 5:
            drafts.append({
                'key': 'tracking.third-party',
                'severity': IssueSeverity.MEDIUM,
                'category': 'tracking',
                'title': f"{len(third_party_domains)} third-party domains contacted",
                'summary': f"Notable domains: {', '.join(third_party_domains[:5])}…",
                'how_to_fix': 'Audit external requests and remove unused libraries. Where possible, self-host critical assets or route via privacy-preserving CDNs.',
                'why_it_matters': 'Each third-party call shares visitor metadata (IP, user agent) with outside companies, which can be used for profiling.',
                'references': [Reference(label='OWASP: Third-Party Requests', url='https://owasp.org/www-community/Web_Application_Security_Risk')],
                'sort_weight': 30,
            })

        if headers_missing:
            drafts.append({
                'key': 'security.headers',
                'severity': IssueSeverity.MEDIUM,
                'category': 'security',
                'title': 'Missing security headers',
                'summary': f"Add: {', '.join(headers_missing)}",
                'how_to_fix': 'Set the recommended HTTP response headers (CSP, HSTS, Referrer-Policy, Permissions-Policy, X-Content-Type-Options) at the proxy or application layer.',
                'why_it_matters': 'Security headers harden the site against clickjacking, XSS, and data leakage. Without them browsers cannot enforce modern protections.',
                'references': [Reference(label='MDN: HTTP security headers', url='https://developer.mozilla.org/en-US/docs/Web/Security')],
                'sort_weight': 20,
            })

        if cookie_count:
            drafts.append({
                'key': 'security.cookies',
                'severity': IssueSeverity.MEDIUM,
                'category': 'security',
                'title': 'Cookies missing Secure/SameSite flags',
                'summary': f"{_plural(cookie_count, 'cookie')} missing recommended attributes",
                'how_to_fix': 'Mark cookies with Secure and SameSite=strict or lax, and HttpOnly where appropriate, to prevent interception or CSRF.',
                'why_it_matters': 'Without Secure/SameSite, cookies can leak over HTTP or be sent in cross-site requests, enabling session hijacking.',
                'references': [Reference(label='MDN: Set-Cookie', url='https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/Set-Cookie')],
                'sort_weight': 35,
            })

        if tls_grade in self.TLS_PENALTIES:
            drafts.append({
                'key': 'security.tls',
                'severity': IssueSeverity.HIGH if tls_grade == 'F' else IssueSeverity.MEDIUM,
                'category': 'security',
                'title': f"TLS configuration graded {tls_grade}",
                'how_to_fix': 'Update the TLS configuration to disable weak protocols/ciphers and enable HSTS. Use modern suites recommended by Mozilla or SSL Labs.',
                'why_it_matters': 'Weak TLS grades indicate outdated encryption that attackers can exploit to intercept traffic.',
                'references': [Reference(label='Mozilla TLS Guidelines', url='https://wiki.mozilla.org/Security/Server_Side_TLS')],
                'sort_weight': 25,
            })

        if fingerprint_detected:
            drafts.append({
                'key': 'tracking.fingerprinting',
                'severity': IssueSeverity.HIGH,
                'category': 'tracking',
                'title': 'Browser fingerprinting behaviour observed',
                'how_to_fix': 'Remove or gate fingerprinting scripts. Consider alternatives that rely on consent or anonymized analytics.',
                'why_it_matters': 'Fingerprinting scripts combine browser traits to create persistent identifiers that are difficult for users to clear.',
                'references': [Reference(label='EFF: What is fingerprinting?', url='https://panopticlick.eff.org/about')],
                'sort_weight': 15,
            })

        if mixed_content:
            drafts.append({
                'key': 'security.mixed-content',
                'severity': IssueSeverity.HIGH,
                'category': 'security',
                'title': 'Mixed-content detected over HTTPS',
                'how_to_fix': 'Serve all assets over HTTPS. Update hard-coded http:// URLs to https:// or relative paths.',
                'why_it_matters': 'Loading HTTP assets on HTTPS pages lets attackers tamper with scripts or leak data.',
                'references': [Reference(label='MDN: Mixed Content', url='https://developer.mozilla.org/en-US/docs/Web/Security/Mixed_content')],
                'sort_weight': 18,
            })

        if not policy_found:
            drafts.append({
                'key': 'compliance.policy',
                'severity': IssueSeverity.LOW,
                'category': 'compliance',
                'title': 'Privacy policy link not found',
                'how_to_fix': 'Publish a clear privacy policy and link it in the footer or primary navigation.',
                'why_it_matters': 'Most privacy laws require transparent disclosure of data collection practices.',
                'references': [Reference(label='Privacy: policy best practices', url='https://www.ftc.gov/business-guidance/small-businesses/privacy-security')],
                'sort_weight': 60,
            })

        drafts.sort(key=lambda draft: (-severity_rank(draft['severity']), draft.get('sort_weight') or 0))
        return [Issue(id=f"{scan.id}:{draft['key']}", scan_id=scan.id, **draft) for draft in drafts]
