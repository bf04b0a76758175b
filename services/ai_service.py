# services/ai_service.py
"""
AI label analysis: session quota, brewery matching and the analysis flow
that turns a bottle photo into a pending review draft.
"""

import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, MutableMapping, Optional

from flask import current_app

from core import gemini_client
from core.database_models import db, Brewery, parse_uuid
from core.errors import ImageRejectedError, NotFoundError, ValidationError
from middleware.uploads import is_valid_image_format
from services import web_search
from services.review_service import find_existing_beer, get_or_create_beer
from services.session_cleanup import IMAGE_SESSION_KEY, SESSION_KEY, get_analysis, store_analysis

logger = logging.getLogger(__name__)

REQUEST_COUNT_KEY = 'ai_request_count'
GUEST_MAX_REQUESTS = 10
USER_MAX_REQUESTS = 30

# Words that identify a brand or style on their own
COMMON_KEYWORDS = (
    'viana', 'moretti', 'peroni', 'heineken', 'corona', 'guinness',
    'budweiser', 'pilsner', 'ipa', 'lager', 'stout', 'weizen',
)

_NON_WORD = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')


# Session quota

def _quota_limits() -> Dict[str, Any]:
    config = current_app.config
    return {
        'enabled': config.get('AI_QUOTA_ENABLED', True),
        'guest': config.get('AI_QUOTA_GUEST', GUEST_MAX_REQUESTS),
        'user': config.get('AI_QUOTA_USER', USER_MAX_REQUESTS),
    }


def can_make_request(session: MutableMapping, user_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Check the per-session AI quota.

    Guests get fewer analyses than registered users and are pointed to the
    registration page when they run out.
    """
    limits = _quota_limits()
    request_count = session.get(REQUEST_COUNT_KEY, 0)

    if not limits['enabled']:
        return {
            'can_make_request': True,
            'request_count': request_count,
            'max_requests': None,
            'remaining': None,
            'unlimited': True,
        }

    max_requests = limits['user'] if user_id else limits['guest']
    remaining = max(max_requests - request_count, 0)
    result = {
        'can_make_request': request_count < max_requests,
        'request_count': request_count,
        'max_requests': max_requests,
        'remaining': remaining,
    }

    if not result['can_make_request']:
        if user_id:
            result['message'] = f'You have reached the limit of {max_requests} AI analyses for this session.'
        else:
            result['message'] = (f'You have reached the limit of {max_requests} AI analyses. '
                                 'Register to get more analyses.')
            result['auth_url'] = '/register'
    elif remaining <= 2:
        result['warning'] = f'Only {remaining} AI analyses left for this session.'
        if not user_id:
            result['auth_url'] = '/register'

    return result


def increment_request_count(session: MutableMapping) -> int:
    count = session.get(REQUEST_COUNT_KEY, 0) + 1
    session[REQUEST_COUNT_KEY] = count
    return count


def generate_image_hash(image_bytes: bytes) -> str:
    return hashlib.sha256(image_bytes).hexdigest()


def validate_analysis_data(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Sanity checks on a decoded AI reply. Returns ``{is_valid, errors}``."""
    errors: List[str] = []
    if not data:
        return {'is_valid': False, 'errors': ['Missing analysis data']}

    bottles = data.get('bottles')
    if not isinstance(bottles, list) or not bottles:
        errors.append('No bottles found in the analysis')
        bottles = []

    brewery = data.get('brewery') or {}
    if not brewery.get('name'):
        errors.append('Brewery name is required')

    for index, bottle in enumerate(bottles, start=1):
        name = (bottle.get('name') or '').strip()
        style = (bottle.get('style') or '').strip()
        if len(name) < 2:
            errors.append(f'Bottle {index}: name must be at least 2 characters')
        if len(style) < 2:
            errors.append(f'Bottle {index}: style must be at least 2 characters')

        abv = bottle.get('abv')
        if abv is not None:
            try:
                if not 0 <= float(abv) <= 100:
                    errors.append(f'Bottle {index}: alcohol content must be between 0 and 100')
            except (TypeError, ValueError):
                errors.append(f'Bottle {index}: alcohol content is not a number')

        ibu = bottle.get('ibu')
        if ibu is not None:
            try:
                if not 0 <= float(ibu) <= 300:
                    errors.append(f'Bottle {index}: IBU must be between 0 and 300')
            except (TypeError, ValueError):
                errors.append(f'Bottle {index}: IBU is not a number')

    return {'is_valid': not errors, 'errors': errors}


# Name matching

def _normalize_name(name: str) -> str:
    return _NON_WORD.sub('', name.lower()).strip()


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def calculate_name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    if not name1 or not name2:
        return 0.0
    n1, n2 = _normalize_name(name1), _normalize_name(name2)
    if n1 == n2:
        return 1.0
    longer, shorter = (n1, n2) if len(n1) > len(n2) else (n2, n1)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(longer, shorter)) / len(longer)


def has_common_keywords(name1: Optional[str], name2: Optional[str]) -> bool:
    if not name1 or not name2:
        return False
    n1, n2 = _normalize_name(name1), _normalize_name(name2)

    if any(keyword in n1 and keyword in n2 for keyword in COMMON_KEYWORDS):
        return True

    parts1 = [part for part in n1.split() if len(part) > 3]
    parts2 = [part for part in n2.split() if len(part) > 3]
    common = [p1 for p1 in parts1 if any(calculate_name_similarity(p1, p2) > 0.8 for p2 in parts2)]
    return len(common) >= 2


def clean_url(url: Optional[str]) -> str:
    if not url:
        return ''
    cleaned = re.sub(r'^https?://', '', url.strip().lower())
    cleaned = re.sub(r'^www\.', '', cleaned)
    return cleaned.rstrip('/')


def normalize_address(address: Optional[str]) -> str:
    if not address:
        return ''
    return _WHITESPACE.sub(' ', _NON_WORD.sub('', address.lower())).strip()


def _candidate(brewery: Brewery, similarity: float, keyword_match: bool) -> Dict[str, Any]:
    return {
        'id': str(brewery.id),
        'name': brewery.name,
        'similarity': round(similarity, 3),
        'keyword_match': keyword_match,
        'website': brewery.website,
    }


def find_matching_brewery(name: Optional[str], breweries: Iterable[Brewery],
                          website: Optional[str] = None) -> Dict[str, Any]:
    """
    Match a brewery name read from a label against the catalogue.

    Returns ``{match, ambiguities, needs_disambiguation, disambiguation_reason}``
    where ``match`` carries the brewery, a confidence and the match type.
    """
    result = {'match': None, 'ambiguities': [], 'needs_disambiguation': False,
              'disambiguation_reason': None}
    if not name:
        return result

    breweries = list(breweries)
    lowered = name.strip().lower()

    for brewery in breweries:
        if brewery.name and brewery.name.strip().lower() == lowered:
            result['match'] = {'brewery': brewery, 'confidence': 1.0, 'match_type': 'EXACT_NAME'}
            return result

    # A website printed on the label identifies the brewery regardless of spelling
    label_site = clean_url(website)
    if label_site:
        for brewery in breweries:
            if brewery.website and clean_url(brewery.website) == label_site:
                result['match'] = {'brewery': brewery, 'confidence': 0.95, 'match_type': 'WEBSITE_MATCH'}
                return result

    candidates = []
    for brewery in breweries:
        similarity = calculate_name_similarity(name, brewery.name)
        keyword_match = has_common_keywords(name, brewery.name)
        if similarity > 0.6 or keyword_match:
            candidates.append((brewery, similarity, keyword_match))
    candidates.sort(key=lambda item: item[1], reverse=True)

    if candidates:
        best_brewery, best_similarity, best_keyword = candidates[0]
        high_similarity = [c for c in candidates if c[1] > 0.7]
        keyword_matches = [c for c in candidates if c[2]]
        multiple_similar = len(high_similarity) > 1

        if best_similarity > 0.85 and best_keyword and not multiple_similar:
            result['match'] = {'brewery': best_brewery, 'confidence': best_similarity,
                               'match_type': 'FUZZY_KEYWORD_MATCH'}
            return result

        second_close = len(candidates) > 1 and candidates[1][1] > 0.6
        if multiple_similar or second_close or len(keyword_matches) > 1:
            result['ambiguities'] = [_candidate(*c) for c in candidates[:5]]
            result['needs_disambiguation'] = True
            result['disambiguation_reason'] = ('MULTIPLE_KEYWORD_MATCHES' if len(keyword_matches) > 1
                                               else 'MULTIPLE_SIMILAR_MATCHES')
            logger.info(f"Brewery '{name}' is ambiguous: {len(result['ambiguities'])} candidates "
                        f"({result['disambiguation_reason']})")
            return result

        if best_similarity > 0.7 or best_keyword:
            result['ambiguities'] = [_candidate(best_brewery, best_similarity, best_keyword)]
            result['needs_disambiguation'] = True
            result['disambiguation_reason'] = 'SINGLE_AMBIGUOUS_MATCH'
            return result

    parts = lowered.split()
    partial = []
    for brewery in breweries:
        candidate_name = (brewery.name or '').lower()
        contained = sum(1 for part in parts if len(part) > 2 and part in candidate_name)
        ratio = contained / len(parts) if parts else 0.0
        if ratio >= 0.5:
            partial.append((brewery, ratio))

    if partial:
        best_brewery, best_ratio = max(
            partial, key=lambda item: (item[1], calculate_name_similarity(name, item[0].name)))
        candidate = _candidate(best_brewery, calculate_name_similarity(name, best_brewery.name), False)
        candidate['confidence'] = round(best_ratio * 0.8, 3)
        result['ambiguities'] = [candidate]
        result['needs_disambiguation'] = True
        result['disambiguation_reason'] = 'PARTIAL_NAME_MATCH'
        logger.info(f"Brewery '{name}' partially matches '{best_brewery.name}' ({best_ratio:.2f})")
        return result

    return result


# Analysis flow

def _number(value: Any, minimum: float, maximum: float) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if minimum <= number <= maximum else None


def _compact_bottle(index: int, bottle: Dict[str, Any], brewery_label: str) -> Dict[str, Any]:
    ibu = _number(bottle.get('ibu'), 0, 300)
    return {
        'index': index,
        'name': (bottle.get('name') or '').strip(),
        'brewery_label': (bottle.get('breweryName') or brewery_label or '').strip(),
        'style': bottle.get('style'),
        'abv': _number(bottle.get('abv'), 0, 100),
        'ibu': int(ibu) if ibu is not None else None,
        'volume': bottle.get('volume'),
        'description': bottle.get('description'),
        'ingredients': bottle.get('ingredients'),
        'confidence': _number(bottle.get('confidence'), 0, 1),
        'brewery_id': None,
        'brewery_name': None,
        'beer_id': None,
        'data_source': 'label',
    }


def _enrich_from_web(brewery_info: Dict[str, Any], queries: List[str]) -> Dict[str, Any]:
    """Look up an unknown brewery on the web and merge what was found"""
    if not current_app.config.get('WEB_SEARCH_ENABLED', True):
        return brewery_info

    found = web_search.search_brewery_on_web(brewery_info['name'], variants=queries)
    if not found.get('found'):
        return brewery_info

    web_data = found['brewery']
    for field in ('website', 'email', 'address', 'phone', 'description'):
        if not brewery_info.get(field) and web_data.get(field):
            brewery_info[field] = web_data[field]
    brewery_info['web_confidence'] = found['confidence']
    brewery_info['data_source'] = 'label+web'
    return brewery_info


def process_image_analysis(image_bytes: bytes, mime_type: str, session: MutableMapping,
                           user_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Analyse a bottle photo and keep the draft in the session.

    Raises:
        ImageRejectedError: the image is too large or not JPEG/PNG/WebP
        AIServiceError: the vision call failed
    """
    max_size = current_app.config.get('MAX_IMAGE_SIZE', 10 * 1024 * 1024)
    if len(image_bytes) > max_size:
        raise ImageRejectedError('Image too large', details='image size exceeds limit', status_code=413)
    if not is_valid_image_format(image_bytes):
        raise ImageRejectedError('Unsupported image format',
                                 details='only JPEG, PNG and WebP are supported')

    image_hash = generate_image_hash(image_bytes)
    logger.info(f"Starting AI analysis (user={user_id or 'guest'}, "
                f"{len(image_bytes)} bytes, hash {image_hash[:8]})")

    breweries = Brewery.query.all()
    raw = gemini_client.analyze_label_image(image_bytes, mime_type, [b.name for b in breweries])
    # Only answered calls count against the session quota
    count = increment_request_count(session)
    logger.debug(f"AI analysis #{count} for this session")

    check = validate_analysis_data(raw)
    if not check['is_valid']:
        logger.warning(f"AI analysis {image_hash[:8]} has issues: {'; '.join(check['errors'])}")

    label_brewery = raw.get('brewery') or {}
    brewery_label = (label_brewery.get('name') or '').strip()
    bottles = [
        _compact_bottle(index, bottle, brewery_label)
        for index, bottle in enumerate(raw.get('bottles') or [])
        if isinstance(bottle, dict) and len((bottle.get('name') or '').strip()) >= 2
    ]

    if not raw.get('success', True) or not bottles:
        logger.info(f"No beer recognised in image {image_hash[:8]}")
        return {
            'success': False,
            'message': raw.get('message') or 'No beer recognised in the image. Try a clearer photo.',
            'bottles': [],
        }

    brewery_results: Dict[str, Dict[str, Any]] = {}
    ambiguities: List[Dict[str, Any]] = []
    disambiguation_reason = None
    ambiguous_label = None

    for bottle in bottles:
        label = bottle['brewery_label']
        if label.lower() not in brewery_results:
            website = label_brewery.get('website') if label == brewery_label else None
            matching = find_matching_brewery(label, breweries, website=website)
            info = {
                'label': label,
                'name': label,
                'website': website,
                'email': label_brewery.get('email') if label == brewery_label else None,
                'address': label_brewery.get('address') if label == brewery_label else None,
                'id': None,
                'matched': False,
                'data_source': 'label',
            }
            if matching['match']:
                brewery = matching['match']['brewery']
                info.update({
                    'id': str(brewery.id),
                    'name': brewery.name,
                    'matched': True,
                    'confidence': matching['match']['confidence'],
                    'match_type': matching['match']['match_type'],
                })
            elif matching['needs_disambiguation']:
                if ambiguous_label is None:
                    ambiguous_label = label
                    ambiguities = matching['ambiguities']
                    disambiguation_reason = matching['disambiguation_reason']
            elif label:
                info = _enrich_from_web(info, label_brewery.get('searchQueries') or [])
            brewery_results[label.lower()] = info

        info = brewery_results[label.lower()]
        if info['matched']:
            bottle['brewery_id'] = info['id']
            bottle['brewery_name'] = info['name']
            beer = find_existing_beer(bottle['name'], info['id'])
            if beer is not None:
                bottle['beer_id'] = str(beer.id)
                bottle['name'] = beer.name
        else:
            bottle['brewery_name'] = info['name']
            bottle['data_source'] = info['data_source']

    needs_disambiguation = ambiguous_label is not None
    data = {
        'bottles': bottles,
        'breweries': list(brewery_results.values()),
        'ambiguities': ambiguities,
        'ambiguous_label': ambiguous_label,
        'needs_disambiguation': needs_disambiguation,
        'disambiguation_reason': disambiguation_reason,
        'image_quality': raw.get('imageQuality'),
        'temp_data': True,
        'processed': not needs_disambiguation,
    }
    store_analysis(session, data)
    session[IMAGE_SESSION_KEY] = {'hash': image_hash, 'mime_type': mime_type, 'size': len(image_bytes)}

    logger.info(f"AI analysis {image_hash[:8]} found {len(bottles)} bottles, "
                f"{len(brewery_results)} breweries, disambiguation={needs_disambiguation}")
    return dict(data, success=True, message=raw.get('message') or f'{len(bottles)} beers recognised')


def resolve_disambiguation(session: MutableMapping, selected_brewery_id: Optional[str] = None,
                           create_new: bool = False,
                           new_brewery_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Settle an ambiguous brewery with the user's choice: an existing brewery
    or a new one. The bottles of that brewery are then linked to catalogue
    beers and the session draft stops being temporary.

    Raises:
        ValidationError: nothing to resolve, or neither option given
        NotFoundError: the selected brewery does not exist
    """
    entry = get_analysis(session)
    if entry is None or not entry['data'].get('needs_disambiguation'):
        raise ValidationError('No pending brewery choice for this session')
    data = entry['data']

    if create_new:
        new_brewery_data = new_brewery_data or {}
        name = (new_brewery_data.get('name') or '').strip()
        if len(name) < 2:
            raise ValidationError('The brewery name must be at least 2 characters')
        website = (new_brewery_data.get('website') or '').strip() or None
        email = (new_brewery_data.get('email') or '').strip() or None
        # Contact details make the record verifiable without an administrator
        grounded = bool(website or email)
        brewery = Brewery(
            name=name,
            website=website,
            email=email,
            legal_address=(new_brewery_data.get('address') or '').strip() or None,
            ai_extracted=True,
            data_source='label',
            created_by='ai_disambiguation',
            needs_validation=not grounded,
            validation_reason=None if grounded else 'Created from a label without contact details',
        )
        db.session.add(brewery)
        db.session.flush()
        match_type = 'USER_CREATED'
        logger.info(f"Brewery '{name}' created while resolving '{data.get('ambiguous_label')}'")
    elif selected_brewery_id:
        brewery_uuid = parse_uuid(selected_brewery_id)
        brewery = db.session.get(Brewery, brewery_uuid) if brewery_uuid else None
        if brewery is None:
            raise NotFoundError('Selected brewery not found')
        match_type = 'USER_SELECTED'
    else:
        raise ValidationError('Select a brewery or create a new one')

    label = (data.get('ambiguous_label') or '').lower()
    for info in data.get('breweries', []):
        if (info.get('label') or '').lower() == label:
            info.update({'id': str(brewery.id), 'name': brewery.name, 'matched': True,
                         'confidence': 1.0, 'match_type': match_type})

    for bottle in data.get('bottles', []):
        if bottle.get('brewery_id') or (bottle.get('brewery_label') or '').lower() != label:
            continue
        beer = get_or_create_beer(bottle['name'], brewery, bottle)
        bottle.update({'brewery_id': str(brewery.id), 'brewery_name': brewery.name,
                       'beer_id': str(beer.id), 'name': beer.name})
    db.session.commit()

    data.update({
        'needs_disambiguation': False,
        'disambiguation_reason': None,
        'ambiguities': [],
        'temp_data': False,
        'processed': True,
        'disambiguation_resolved': True,
    })
    entry['data'] = data
    session[SESSION_KEY] = entry

    return {
        'success': True,
        'message': f'Brewery set to {brewery.name}',
        'brewery': brewery.to_dict(),
        'bottles': data['bottles'],
        'resolved_analysis': data,
    }
