"""
HubSpot CRM v3 client - property catalogue, search pagination, batch reads and id listings
"""

import time
from typing import Callable, Dict, Iterator, List, Optional

import requests

from hubspot_sync.config import Config
from hubspot_sync.errors import SourceApiError
from hubspot_sync.schema import PropertyDefinition

PAGE_SIZE = 100

# HubSpot batch endpoints accept at most 100 inputs per request
BATCH_READ_SIZE = 100

# Rate limiting configuration
INITIAL_RETRY_DELAY = 2  # seconds
MAX_RETRY_DELAY = 60  # seconds


def next_cursor(data: dict) -> Optional[str]:
    """The paging.next.after cursor of a response, or None on the last page"""
    after = ((data.get('paging') or {}).get('next') or {}).get('after')
    return str(after) if after not in (None, '') else None


class HubSpotClient:
    def __init__(
        self,
        config: Config,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = config.hubspot_api_url
        self.max_retries = config.max_retries
        self.timeout_seconds = config.timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {config.hubspot_api_key}',
            'Content-Type': 'application/json',
        })
        self._sleep = sleep

    def request(self, method: str, path: str, params: Optional[dict] = None, payload: Optional[dict] = None) -> dict:
        """Make HubSpot API request with exponential backoff retry logic

        429 and 5xx responses and transport errors are retried; any other
        4xx fails immediately. Exhausted retries raise SourceApiError.
        """
        url = f'{self.base_url}{path}'
        retry_delay = INITIAL_RETRY_DELAY
        last_error = 'no attempt made'
        last_status: Optional[int] = None

        for attempt in range(self.max_retries):
            try:
                response = self.session.request(
                    method, url, params=params, json=payload, timeout=self.timeout_seconds
                )
            except requests.exceptions.RequestException as e:
                last_error, last_status = f'{type(e).__name__}: {e}', None
                if attempt < self.max_retries - 1:
                    print(f"⚠️  Request failed: {e}. Retrying in {retry_delay} seconds...")
                    self._sleep(retry_delay)
                    retry_delay = min(retry_delay * 2, MAX_RETRY_DELAY)
                continue

            if response.status_code == 429:
                last_error, last_status = 'rate limited', 429
                if attempt < self.max_retries - 1:
                    retry_after = _retry_after(response, retry_delay)
                    print(f"⚠️  Rate limited. Waiting {retry_after} seconds before retry...")
                    self._sleep(retry_after)
                    retry_delay = min(retry_delay * 2, MAX_RETRY_DELAY)
                continue

            if response.status_code >= 500:
                last_error, last_status = f'server error {response.status_code}', response.status_code
                if attempt < self.max_retries - 1:
                    print(f"⚠️  Server error {response.status_code}. Retrying in {retry_delay} seconds...")
                    self._sleep(retry_delay)
                    retry_delay = min(retry_delay * 2, MAX_RETRY_DELAY)
                continue

            if response.status_code >= 400:
                raise SourceApiError(
                    f"HubSpot {method} {path} failed with {response.status_code}: {_error_detail(response)}",
                    status_code=response.status_code,
                    url=url,
                )

            return response.json()

        raise SourceApiError(
            f"HubSpot {method} {path} failed after {self.max_retries} attempts ({last_error})",
            status_code=last_status,
            url=url,
        )

    def fetch_properties(self, entity: str) -> List[PropertyDefinition]:
        """Every non-archived property definition for an object type"""
        props: List[PropertyDefinition] = []
        after = None
        while True:
            params = {'limit': PAGE_SIZE, 'archived': 'false'}
            if after:
                params['after'] = after
            data = self.request('GET', f'/crm/v3/properties/{entity}', params=params)
            for result in data.get('results', []):
                if result.get('archived') or not result.get('name'):
                    continue
                props.append(PropertyDefinition.from_api(result))
            after = next_cursor(data)
            if not after:
                break
        return props

    def search_pages(self, entity: str, properties: List[str], filters: List[Dict[str, str]]) -> Iterator[dict]:
        """Yield every page of a CRM search, following the `after` cursor"""
        payload: Dict[str, object] = {
            'filterGroups': [{'filters': filters}] if filters else [],
            'properties': properties,
            'limit': PAGE_SIZE,
        }
        after = None
        while True:
            if after:
                payload['after'] = after
            else:
                payload.pop('after', None)
            data = self.request('POST', f'/crm/v3/objects/{entity}/search', payload=payload)
            yield data
            after = next_cursor(data)
            if not after:
                break

    def count_modified_since(self, entity: str, modified_property: str, since_ms: int) -> int:
        """Number of records with modified_property > since_ms (search `total`)"""
        payload = {
            'filterGroups': [{'filters': [{
                'propertyName': modified_property,
                'operator': 'GT',
                'value': str(since_ms),
            }]}],
            'properties': ['hs_object_id'],
            'limit': 1,
        }
        data = self.request('POST', f'/crm/v3/objects/{entity}/search', payload=payload)
        return int(data.get('total', 0) or 0)

    def read_batch(self, entity: str, ids: List[str], properties: List[str]) -> List[dict]:
        """Fetch specific records by id, BATCH_READ_SIZE ids per request

        Ids HubSpot can no longer read (archived or merged away) are simply
        absent from the result.
        """
        results: List[dict] = []
        for i in range(0, len(ids), BATCH_READ_SIZE):
            payload = {
                'inputs': [{'id': record_id} for record_id in ids[i:i + BATCH_READ_SIZE]],
                'properties': properties,
            }
            data = self.request('POST', f'/crm/v3/objects/{entity}/batch/read', payload=payload)
            results.extend(data.get('results', []))
        return results

    def list_object_ids(self, entity: str, archived: bool = False) -> List[str]:
        """Every object id, live or archived, from the unfiltered list endpoint"""
        ids: List[str] = []
        after = None
        while True:
            params = {'limit': PAGE_SIZE, 'archived': 'true' if archived else 'false'}
            if after:
                params['after'] = after
            data = self.request('GET', f'/crm/v3/objects/{entity}', params=params)
            ids.extend(str(record['id']) for record in data.get('results', []))
            after = next_cursor(data)
            if not after:
                break
        return ids


def _retry_after(response: requests.Response, default: int) -> int:
    try:
        return int(response.headers.get('Retry-After', default))
    except (TypeError, ValueError):
        return default


def _error_detail(response: requests.Response) -> str:
    try:
        return str(response.json())
    except ValueError:
        return response.text
