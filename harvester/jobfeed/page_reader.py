"""
Field extraction: one declarative selector table walked by one generic
in-page script, then normalised into a `JobRecord` on the Python side.

The capture strategies depend only on `PageReader.read_fields` /
`PageReader.to_job_record`; swapping the site markup means editing
`FIELD_MAP`, nothing else.

Leaf kinds understood by the walker:
    text        trimmed textContent of the first match (null if absent)
    first_text  first non-empty text over a list of selectors
    texts       list of trimmed texts of every match
    exists      whether the selector matches
    href        href attribute of the first match
    contains    whether the scope's text contains a phrase
    group       nested mapping
    rows        list of nested mappings, one per matched row element
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Protocol, Sequence
import logging
import re

from .errors import IncompleteDetailsError
from .models import (ClientCompany, ClientEngagement, ClientJobStats, ClientLocation, ClientReputation,
                     FeedbackParty, JobRecord, JobReference, PaymentTerms, PriceRange, ScrapeMethod)
from .page_driver import PageDriver

logger = logging.getLogger('page_reader')


def _text(sel: str) -> dict:
    return {'kind': 'text', 'sel': sel}


def _first(*sels: str) -> dict:
    return {'kind': 'first_text', 'sels': list(sels)}


def _group(**fields) -> dict:
    return {'kind': 'group', 'fields': fields}


FIELD_MAP: Dict[str, dict] = {
    'title': _text('.air3-card-sections h4 span.flex-1'),
    'featured': {'kind': 'exists', 'sel': '#featured-job'},
    'description': _text('.break .text-body-sm'),
    'screeningQuestions': {'kind': 'texts', 'sel': '[data-test="Questions"] ol li'},
    'postedDate': _text('[data-test="PostedOn"] span'),
    'location': _text('[data-test="LocationLabel"] span.text-light-on-muted'),
    'projectType': _text('[data-test="Segmentations"] span'),
    'requiredConnects': _first(
        '[data-test="ConnectsDesktop"] span:nth-child(2)',
        '[data-test="ConnectsAuction"] div strong',
        '[data-test="ConnectsMobile"] .flex-sm-1',
    ),
    'experienceLevel': _text('[data-test="Features"] li [data-cy="expertise"] + strong'),
    'payment': _group(
        hourly={'kind': 'exists', 'sel': '[data-cy="clock-hourly"]'},
        fixed={'kind': 'exists', 'sel': '[data-cy="fixed-price"]'},
        budgetAmounts={'kind': 'texts', 'sel': '[data-test="BudgetAmount"] strong'},
        fixedPrice=_text('[data-cy="fixed-price"] + div [data-test="BudgetAmount"] strong'),
        duration=_text('[data-cy="duration1"] + strong, [data-cy="duration2"] + strong'),
    ),
    'skills': {'kind': 'texts', 'sel': '.skills-list .air3-badge'},
    'client': _group(
        paymentVerified={'kind': 'exists', 'sel': '.payment-verified'},
        rating=_text('[data-ev-sublocation="!rating"] .air3-rating-value-text'),
        reviews=_text('.rating .nowrap'),
        location=_group(
            country=_text('[data-qa="client-location"] strong'),
            city=_text('[data-qa="client-location"] .nowrap:first-child'),
            timezone=_text('[data-qa="client-location"] .nowrap:last-child'),
        ),
        jobStats=_group(
            totalSpent=_text('[data-qa="client-spend"] span span'),
            hires=_text('[data-qa="client-hires"]'),
            postedJobs=_text('[data-qa="client-job-posting-stats"] strong'),
            jobDetails=_text('[data-qa="client-job-posting-stats"] div'),
        ),
        companyInfo=_group(
            industry=_text('[data-qa="client-company-profile-industry"]'),
            size=_text('[data-qa="client-company-profile-size"]'),
            memberSince=_text('[data-qa="client-contract-date"] small'),
        ),
    ),
    'clientHistory': {
        'kind': 'rows',
        'sel': '[data-cy="jobs"] [data-cy="job"]',
        'fields': {
            'jobTitle': _first('.js-job-link', '[data-cy="job-title"]'),
            'jobUrl': {'kind': 'href', 'sel': '.js-job-link'},
            'freelancerName': _first('[data-test="FreelancerLink"] a', '[data-test="FreelancerLink"]'),
            'freelancerUrl': {'kind': 'href', 'sel': '[data-test="FreelancerLink"] a'},
            'freelancerRating': _text('[data-test="FeedbackToFreelancer"] .air3-rating-value-text'),
            'freelancerFeedback': _text('[data-test="FeedbackToFreelancer"] span[id^="air3-truncation"]'),
            'clientRating': _text('[data-ev-sublocation="!rating"] .air3-rating-value-text'),
            'clientFeedback': _text('.air3-truncation span[id^="air3-truncation"]'),
            'dates': _text('[data-cy="date"] .text-body-sm'),
            'payment': _text('[data-cy="stats"]'),
            'noFeedback': {'kind': 'contains', 'phrase': 'No feedback given'},
        },
    },
}

READ_FIELDS_JS = """({root, fields}) => {
    const scope = (root && document.querySelector(root)) || document;
    const clean = (el) => el && el.textContent ? el.textContent.trim() : null;
    const walk = (node, spec) => {
        switch (spec.kind) {
            case 'text': return clean(node.querySelector(spec.sel));
            case 'first_text':
                for (const s of spec.sels) {
                    const t = clean(node.querySelector(s));
                    if (t) return t;
                }
                return null;
            case 'texts': return Array.from(node.querySelectorAll(spec.sel)).map(clean).filter(Boolean);
            case 'exists': return node.querySelector(spec.sel) !== null;
            case 'href': { const el = node.querySelector(spec.sel); return el ? el.href || null : null; }
            case 'contains': return (node.textContent || '').includes(spec.phrase);
            case 'group': return mapFields(node, spec.fields);
            case 'rows': return Array.from(node.querySelectorAll(spec.sel)).map(row => mapFields(row, spec.fields));
            default: return null;
        }
    };
    const mapFields = (node, map) => {
        const out = {};
        for (const [key, spec] of Object.entries(map)) out[key] = walk(node, spec);
        return out;
    };
    const data = mapFields(scope, fields);
    data.pageUrl = window.location.href;
    return data;
}"""

_PLACEHOLDERS = {'', 'n/a', 'na', 'none', 'null'}
_WS = re.compile(r'\s+')
_DIGITS = re.compile(r'(\d+)')


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = _WS.sub(' ', str(value)).strip()
    if text.lower() in _PLACEHOLDERS:
        return None
    return text


def parse_connects(value: Any) -> Optional[int]:
    text = clean_text(value)
    if not text:
        return None
    m = _DIGITS.search(text)
    return int(m.group(1)) if m else None


def build_payment(raw: Optional[dict]) -> PaymentTerms:
    raw = raw or {}
    if raw.get('hourly'):
        amounts = [clean_text(a) for a in raw.get('budgetAmounts') or []]
        price = PriceRange(min=amounts[0], max=amounts[1]) if len(amounts) == 2 else PriceRange()
        return PaymentTerms(work_type='Hourly', price=price, duration=clean_text(raw.get('duration')))
    if raw.get('fixed'):
        return PaymentTerms(work_type='Fixed-price', price=clean_text(raw.get('fixedPrice')))
    return PaymentTerms()


def build_client(raw: Optional[dict]) -> ClientReputation:
    raw = raw or {}

    def _sub(key: str) -> dict:
        return {k: clean_text(v) for k, v in (raw.get(key) or {}).items()}

    return ClientReputation(
        payment_verified=bool(raw.get('paymentVerified')),
        rating=clean_text(raw.get('rating')),
        reviews=clean_text(raw.get('reviews')),
        location=ClientLocation(**_sub('location')),
        job_stats=ClientJobStats(**_sub('jobStats')),
        company_info=ClientCompany(**_sub('companyInfo')),
    )


def build_history(rows: Optional[List[dict]]) -> List[ClientEngagement]:
    out: List[ClientEngagement] = []
    for row in rows or []:
        title = clean_text(row.get('jobTitle'))
        if not title:
            # rows without a title are layout fragments, not engagements
            continue
        out.append(ClientEngagement(
            job_title=title,
            job_url=row.get('jobUrl') or None,
            freelancer=FeedbackParty(
                name=clean_text(row.get('freelancerName')),
                url=row.get('freelancerUrl') or None,
                rating=clean_text(row.get('freelancerRating')),
                feedback=clean_text(row.get('freelancerFeedback')),
            ),
            client=FeedbackParty(
                rating=clean_text(row.get('clientRating')),
                feedback=clean_text(row.get('clientFeedback')),
            ),
            dates=clean_text(row.get('dates')),
            payment=clean_text(row.get('payment')),
            has_feedback=not row.get('noFeedback'),
        ))
    return out


def to_job_record(raw: Dict[str, Any], ref: JobReference, method: ScrapeMethod, retried: bool = False) -> JobRecord:
    """Normalise a raw field dict. Raises IncompleteDetailsError if title/description are empty."""
    record = JobRecord(
        job_id=ref.id,
        url=ref.href or raw.get('pageUrl') or '',
        title=clean_text(raw.get('title')),
        description=clean_text(raw.get('description')),
        featured=bool(raw.get('featured')),
        posted_date=clean_text(raw.get('postedDate')),
        location=clean_text(raw.get('location')),
        project_type=clean_text(raw.get('projectType')),
        experience_level=clean_text(raw.get('experienceLevel')),
        required_connects=parse_connects(raw.get('requiredConnects')),
        payment=build_payment(raw.get('payment')),
        skills=[s for s in (clean_text(x) for x in raw.get('skills') or []) if s],
        screening_questions=[q for q in (clean_text(x) for x in raw.get('screeningQuestions') or []) if q],
        client=build_client(raw.get('client')),
        client_history=build_history(raw.get('clientHistory')),
        scrape_method=method,
        scraped_with_retry=retried,
    )
    missing = record.missing_required()
    if missing:
        raise IncompleteDetailsError(missing)
    return record


def validate_record(record: JobRecord) -> bool:
    return record.is_valid()


class PageReader(Protocol):
    def read_fields(self, driver: PageDriver, content_selectors: Sequence[str], root: Optional[str] = None,
                    wait_timeout_ms: int = 10000) -> Optional[Dict[str, Any]]: ...

    def to_job_record(self, raw: Dict[str, Any], ref: JobReference, method: ScrapeMethod,
                      retried: bool = False) -> JobRecord: ...


class SelectorPageReader:
    """Default reader driven by FIELD_MAP."""

    def __init__(self, field_map: Optional[Dict[str, dict]] = None):
        self.field_map = field_map or FIELD_MAP

    def read_fields(self, driver: PageDriver, content_selectors: Sequence[str], root: Optional[str] = None,
                    wait_timeout_ms: int = 10000) -> Optional[Dict[str, Any]]:
        """Wait for detail content, then evaluate the field map. None if content never rendered."""
        matched = driver.wait_for_any(content_selectors, wait_timeout_ms)
        if matched is None:
            logger.debug('Detail content did not render')
            return None
        raw = driver.evaluate(READ_FIELDS_JS, {'root': root, 'fields': self.field_map})
        return raw or None

    def to_job_record(self, raw: Dict[str, Any], ref: JobReference, method: ScrapeMethod,
                      retried: bool = False) -> JobRecord:
        return to_job_record(raw, ref, method, retried)
