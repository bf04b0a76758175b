# services/web_search.py
"""
Web lookup of breweries that are not yet in the catalogue.

Search goes through the Google Custom Search JSON API; the best result is
scraped with BeautifulSoup to pick up contact details and social links.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from flask import current_app

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = 'https://www.googleapis.com/customsearch/v1'
MAX_QUERY_VARIANTS = 3
MIN_CONFIDENCE = 0.5
USER_AGENT = 'Mozilla/5.0 (compatible; BeerReviewBot/1.0)'

# Result hosts that are never a brewery's own site
DIRECTORY_HOSTS = (
    'facebook.com', 'instagram.com', 'twitter.com', 'x.com', 'youtube.com',
    'linkedin.com', 'untappd.com', 'ratebeer.com', 'tripadvisor.', 'wikipedia.org',
)

SOCIAL_HOSTS = {
    'facebook': ('facebook.com', 'fb.com', 'fb.me'),
    'instagram': ('instagram.com',),
    'youtube': ('youtube.com', 'youtu.be'),
    'twitter': ('twitter.com', 'x.com'),
    'linkedin': ('linkedin.com',),
}

# Links that point to the network itself rather than to a profile
_SOCIAL_GENERIC_PATHS = re.compile(r'^/(?:sharer|share|intent|home|login|signup|watch|embed|plugins)?/?$|'
                                   r'^/(?:sharer|share|intent|plugins)/', re.IGNORECASE)

_EMAIL = re.compile(r'[\w.+-]+@[\w-]+\.[\w.-]+')
_PHONE = re.compile(r'(?:\+39\s?)?(?:0\d{1,4}|3\d{2})[\s./-]?\d{3,4}[\s./-]?\d{3,4}')


def _host(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith('www.') else host


def _is_directory_host(url: str) -> bool:
    host = _host(url)
    return any(directory in host for directory in DIRECTORY_HOSTS)


def validate_social_url(network: str, url: Optional[str]) -> Optional[str]:
    """Return ``url`` when it is a profile link on the expected network"""
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https'):
        return None
    host = _host(url)
    allowed = SOCIAL_HOSTS.get(network, ())
    if not any(host == domain or host.endswith('.' + domain) for domain in allowed):
        return None
    if _SOCIAL_GENERIC_PATHS.match(parsed.path or '/'):
        return None
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}".rstrip('/')


def _query_variants(name: str, variants: Iterable[str]) -> List[str]:
    queries = []
    for query in [name, *variants]:
        query = (query or '').strip().lower()
        if query and query not in queries:
            queries.append(query)
    return queries[:MAX_QUERY_VARIANTS]


def search_brewery_on_web(name: str, variants: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Search the web for a brewery and scrape the best result.

    Returns ``{found, confidence, brewery}``; nothing is raised for network
    failures, they only make the lookup come back empty.
    """
    not_found = {'found': False, 'confidence': 0.0, 'brewery': None}
    config = current_app.config
    api_key = config.get('GOOGLE_SEARCH_API_KEY')
    cx = config.get('GOOGLE_SEARCH_CX')
    if not name or not api_key or not cx:
        logger.debug("Web search skipped: missing brewery name or search credentials")
        return not_found

    timeout = config.get('WEB_REQUEST_TIMEOUT', 10)
    for query in _query_variants(name, variants):
        try:
            response = requests.get(
                SEARCH_ENDPOINT,
                params={'key': api_key, 'cx': cx, 'q': f'{query} birrificio', 'num': 5},
                timeout=timeout,
            )
            response.raise_for_status()
            items = response.json().get('items') or []
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Web search failed for query '{query}': {e}")
            continue

        for item in items:
            link = item.get('link')
            if not link or _is_directory_host(link):
                continue
            scraped = scrape_brewery_website(link, name)
            if scraped and scraped['confidence'] >= MIN_CONFIDENCE:
                logger.info(f"Web search found '{name}' at {link} (confidence {scraped['confidence']:.2f})")
                return {'found': True, 'confidence': scraped['confidence'], 'brewery': scraped}
            break

    logger.info(f"Web search found nothing reliable for '{name}'")
    return not_found


def _meta_content(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for meta_name in names:
        tag = soup.find('meta', attrs={'property': meta_name}) or soup.find('meta', attrs={'name': meta_name})
        if tag and tag.get('content'):
            return tag['content'].strip()
    return None


def _extract_social_media(soup: BeautifulSoup) -> Dict[str, str]:
    social = {}
    for link in soup.find_all('a', href=True):
        href = link['href'].strip()
        for network in SOCIAL_HOSTS:
            if network in social:
                continue
            valid = validate_social_url(network, href)
            if valid:
                social[network] = valid
    return social


def _extract_logo(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for img in soup.find_all('img', src=True):
        attributes = ' '.join([img.get('alt', ''), ' '.join(img.get('class', [])), img.get('id', ''), img['src']])
        if 'logo' in attributes.lower():
            return urljoin(base_url, img['src'])
    image = _meta_content(soup, 'og:image')
    return urljoin(base_url, image) if image else None


def scrape_brewery_website(url: str, brewery_name: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Pull public brewery details from its home page.

    Confidence grows with the number of fields extracted and is boosted when
    the expected brewery name appears on the page.
    """
    if not url or urlparse(url).scheme not in ('http', 'https'):
        return None

    try:
        response = requests.get(
            url,
            headers={'User-Agent': USER_AGENT},
            timeout=current_app.config.get('WEB_REQUEST_TIMEOUT', 10),
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.warning(f"Could not fetch {url}: {e}")
        return None

    soup = BeautifulSoup(response.text, 'html.parser')
    text = soup.get_text(' ', strip=True)

    title = _meta_content(soup, 'og:site_name', 'og:title')
    if not title and soup.title and soup.title.string:
        title = soup.title.string.split('|')[0].split(' - ')[0].strip()

    email = None
    mailto = soup.find('a', href=re.compile(r'^mailto:', re.IGNORECASE))
    if mailto:
        email = mailto['href'][7:].split('?')[0].strip()
    else:
        found = _EMAIL.search(text)
        email = found.group(0) if found else None

    phone = None
    tel = soup.find('a', href=re.compile(r'^tel:', re.IGNORECASE))
    if tel:
        phone = tel['href'][4:].strip()
    else:
        found = _PHONE.search(text)
        phone = found.group(0).strip() if found else None

    address_tag = soup.find('address')
    data = {
        'name': title or brewery_name,
        'website': url,
        'description': _meta_content(soup, 'og:description', 'description'),
        'email': email,
        'phone': phone,
        'address': address_tag.get_text(' ', strip=True) if address_tag else None,
        'logo': _extract_logo(soup, url),
        'social_media': _extract_social_media(soup),
    }

    fields_found = sum(1 for key, value in data.items() if value and key != 'website')
    fields_found += len(data['social_media'])
    confidence = min(fields_found / 10, 1.0)
    if brewery_name and brewery_name.lower() in text.lower():
        confidence = min(confidence + 0.3, 1.0)
    data['confidence'] = round(confidence, 2)

    logger.debug(f"Scraped {url}: {fields_found} fields, confidence {data['confidence']}")
    return data
