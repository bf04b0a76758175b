# services/moderation.py
"""
Inappropriate language detection for user-written review text
"""

import hashlib
import logging
import re
from typing import Any, Dict, List, Optional

import bleach

from config.moderation import (
    INAPPROPRIATE_WORD_HASHES, CHARACTER_SUBSTITUTIONS, MODERATION_PATTERNS,
    SeverityLevel, ModerationContext
)
from core.database_models import RATING_CATEGORIES
from core.errors import InappropriateContentError

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r'[\w@$!]+', re.UNICODE)
_REPEATED = re.compile(r'(.)\1+')
_LONG_REPEAT = re.compile(r'(.)\1{2,}')


def hash_word(word: str) -> str:
    return hashlib.sha256(word.strip().lower().encode('utf-8')).hexdigest()


def normalize_token(token: str) -> str:
    """Lower-case and undo leetspeak substitutions"""
    return ''.join(CHARACTER_SUBSTITUTIONS.get(char, char) for char in token.lower())


def _token_variants(token: str) -> set:
    normalized = normalize_token(token.strip('!'))
    return {
        normalized,
        _REPEATED.sub(r'\1', normalized),
        _LONG_REPEAT.sub(r'\1\1', normalized),
    }


def sanitize_text(text: Optional[str]) -> str:
    """Strip every HTML tag and surrounding whitespace"""
    if not text:
        return ''
    return bleach.clean(str(text), tags=[], attributes={}, strip=True).strip()


def check_text(text: Optional[str], strict: bool = False,
               context: str = ModerationContext.GENERAL) -> Dict[str, Any]:
    """
    Scan ``text`` for inappropriate language.

    Word-list hits are high severity. With ``strict`` the text is also checked
    against the spam-like patterns, reported as medium severity.
    """
    violations: List[Dict[str, Any]] = []
    if not text:
        return {'is_clean': True, 'violations': violations}

    detected = set()
    for token in _TOKEN.findall(text):
        if any(hash_word(variant) in INAPPROPRIATE_WORD_HASHES for variant in _token_variants(token) if variant):
            detected.add(token)
    if detected:
        violations.append({
            'type': 'inappropriate_word',
            'severity': SeverityLevel.HIGH,
            'count': len(detected),
            'detected_words': sorted(detected),
        })

    if strict:
        for pattern_name, pattern in MODERATION_PATTERNS.items():
            if pattern.search(text):
                violations.append({'type': pattern_name, 'severity': SeverityLevel.MEDIUM})

    if violations:
        logger.debug(f"Moderation ({context}) flagged {len(violations)} issues")
    return {'is_clean': not violations, 'violations': violations}


def check_fields(fields: Dict[str, str], strict: bool = False,
                 context: str = ModerationContext.GENERAL) -> List[Dict[str, Any]]:
    """Per-field violations for a mapping of field name to text"""
    flagged = []
    for field, value in fields.items():
        result = check_text(value, strict=strict, context=context)
        if not result['is_clean']:
            flagged.append({'field': field, 'value': value, 'violations': result['violations']})
    return flagged


def _review_fields(review: Dict[str, Any]):
    strict_fields, name_fields = {}, {}
    for key in ('beer_name', 'brewery_name'):
        if review.get(key):
            name_fields[key] = review[key]
    if review.get('notes'):
        strict_fields['notes'] = review['notes']
    detailed = review.get('detailed_ratings') or {}
    if isinstance(detailed, dict):
        for category in RATING_CATEGORIES:
            entry = detailed.get(category)
            if isinstance(entry, dict) and entry.get('notes'):
                strict_fields[f'detailed_ratings.{category}.notes'] = entry['notes']
    return strict_fields, name_fields


def moderate_reviews(reviews: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Check a batch of reviews. Notes are checked in strict mode; beer and
    brewery names only block on word-list hits, since label names often
    look like noise to the pattern checks.

    Raises:
        InappropriateContentError: with per-review details in the payload
    """
    findings = []
    for index, review in enumerate(reviews):
        strict_fields, name_fields = _review_fields(review)
        flagged = check_fields(strict_fields, strict=True, context=ModerationContext.REVIEW)
        for item in check_fields(name_fields, strict=False, context=ModerationContext.REVIEW):
            if any(v['severity'] == SeverityLevel.HIGH for v in item['violations']):
                flagged.append(item)
        if flagged:
            findings.append({'review_index': index, 'fields': flagged})

    if not findings:
        return []

    for finding in findings:
        for item in finding['fields']:
            logger.warning(f"Inappropriate content in review #{finding['review_index'] + 1}, "
                           f"field {item['field']}: {[v['type'] for v in item['violations']]}")

    details = [
        {
            'reviewIndex': finding['review_index'],
            'violatingFields': len(finding['fields']),
            'message': (f"Review {finding['review_index'] + 1}: inappropriate language detected "
                        f"in {len(finding['fields'])} field(s)"),
        }
        for finding in findings
    ]
    raise InappropriateContentError(
        'Inappropriate content detected',
        details=f'{len(findings)} reviews flagged by moderation',
        payload={
            'inappropriateContent': True,
            'message': ('Some reviews contain inappropriate language. Please review the text '
                        'and avoid vulgar or offensive words.'),
            'details': details,
        },
    )
