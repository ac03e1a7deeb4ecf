"""
Incremental extraction of changed records from the HubSpot search API

Only records whose last-modified property is strictly greater than the
watermark (and not after the run's start) are requested. The range is walked
in time windows that shrink whenever a window holds more results than the
search API will page through. When the catalogue is larger than the
per-request property cap the properties are split into chunks, each chunk
gets its own paginated sweep, and the partial records are merged by id.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from hubspot_sync.config import DEFAULT_SEARCH_WINDOW_MS
from hubspot_sync.hubspot import HubSpotClient
from hubspot_sync.schema import PRIMARY_KEY, PropertyDefinition, Record
from hubspot_sync.sync_state import epoch_millis, utc_now

# HubSpot search refuses to page past this many results for one query
SEARCH_RESULT_CAP = 10000


def modified_since_filter(modified_property: str, since: datetime) -> Dict[str, str]:
    """Strict greater-than filter on the last-modified property (epoch ms string)"""
    return {
        'propertyName': modified_property,
        'operator': 'GT',
        'value': str(epoch_millis(since)),
    }


def window_filters(modified_property: str, start_ms: int, end_ms: int, inclusive_start: bool) -> List[Dict[str, str]]:
    """Filters for one search window: (start, end) or [start, end) in epoch ms"""
    return [
        {'propertyName': modified_property, 'operator': 'GTE' if inclusive_start else 'GT', 'value': str(start_ms)},
        {'propertyName': modified_property, 'operator': 'LT', 'value': str(end_ms)},
    ]


def chunk_properties(names: List[str], chunk_size: int) -> List[List[str]]:
    """Split property names into request-sized chunks; 0 means no chunking"""
    if chunk_size <= 0 or len(names) <= chunk_size:
        return [names]
    return [names[i:i + chunk_size] for i in range(0, len(names), chunk_size)]


def merge_by_id(merged: Dict[str, Record], results: Iterable[dict]) -> Set[str]:
    """Fold API results into `merged` (field union per id); return the ids seen"""
    seen = set()
    for result in results:
        record_id = str(result[PRIMARY_KEY])
        record = merged.setdefault(record_id, {PRIMARY_KEY: record_id})
        for key, value in (result.get('properties') or {}).items():
            if key == PRIMARY_KEY:
                continue
            record[key] = value
        seen.add(record_id)
    return seen


def extract_records(
    client: HubSpotClient,
    entity: str,
    properties: List[PropertyDefinition],
    since: datetime,
    modified_property: str,
    properties_per_request: int = 100,
    until: Optional[datetime] = None,
    window_ms: int = DEFAULT_SEARCH_WINDOW_MS,
    min_window_ms: int = 1000,
) -> List[Record]:
    """Every record modified after `since` and no later than `until`, with all requested properties"""
    names = [p.name for p in properties]
    if modified_property not in names:
        names.append(modified_property)

    chunks = chunk_properties(names, properties_per_request)
    start_ms = epoch_millis(since)
    end_ms = epoch_millis(until or utc_now()) + 1

    merged: Dict[str, Record] = {}
    chunk_ids: Dict[int, Set[str]] = defaultdict(set)

    if len(chunks) > 1:
        print(f"  Requesting {len(names)} properties in {len(chunks)} chunks of up to {properties_per_request}")

    cursor_ms = start_ms
    current_window_ms = window_ms
    window_count = 0
    while cursor_ms < end_ms:
        window_end = min(cursor_ms + current_window_ms, end_ms)
        filters = window_filters(modified_property, cursor_ms, window_end, inclusive_start=cursor_ms != start_ms)
        can_shrink = (window_end - cursor_ms) > min_window_ms

        window = _sweep_window(client, entity, chunks, filters, can_shrink)
        if window is None:
            current_window_ms = max(min_window_ms, (window_end - cursor_ms) // 2)
            continue

        records, seen_per_chunk = window
        for record_id, record in records.items():
            merged.setdefault(record_id, {PRIMARY_KEY: record_id}).update(record)
        for index, seen in enumerate(seen_per_chunk):
            chunk_ids[index] |= seen

        window_count += 1
        cursor_ms = window_end
        current_window_ms = min(window_ms, current_window_ms * 2)

    if window_count > 1:
        print(f"  (Searched {window_count} time windows)")

    # Offset paging is not stable while records change, so a chunk sweep can
    # miss a record another chunk returned. Read those records whole by id.
    drift = _chunk_drift([chunk_ids[i] for i in range(len(chunks))])
    if drift:
        print(f"  ⚠️  Property chunks disagree on {len(drift)} record id(s), re-reading them by id")
        _reread_whole(client, entity, chunks, drift, merged)

    return list(merged.values())


def _sweep_window(client: HubSpotClient, entity: str, chunks: List[List[str]], filters, can_shrink: bool):
    """Run every chunk sweep for one window

    Returns (records by id, ids seen per chunk), or None when the window
    holds too many results and should be narrowed.
    """
    records: Dict[str, Record] = {}
    seen_per_chunk: List[Set[str]] = []

    for index, chunk in enumerate(chunks, start=1):
        seen: Set[str] = set()
        page_count = 0
        fetched = 0
        for page in client.search_pages(entity, chunk, filters):
            if page_count == 0 and int(page.get('total', 0) or 0) >= SEARCH_RESULT_CAP:
                if can_shrink:
                    return None
                print(f"  ⚠️  Minimum search window still holds {page['total']} results; "
                      f"only the first {SEARCH_RESULT_CAP} can be fetched")
            results = page.get('results', [])
            seen |= merge_by_id(records, results)
            page_count += 1
            fetched += len(results)
            if fetched >= SEARCH_RESULT_CAP:
                break
        seen_per_chunk.append(seen)
        if len(chunks) > 1 and seen:
            print(f"  Chunk {index}/{len(chunks)}: {len(seen)} records across {page_count} page(s)")
        elif page_count > 1:
            print(f"  (Fetched {page_count} pages)")

    return records, seen_per_chunk


def _reread_whole(
    client: HubSpotClient,
    entity: str,
    chunks: List[List[str]],
    ids: Set[str],
    merged: Dict[str, Record],
) -> None:
    """Replace partial records for `ids` with a fresh by-id read of every chunk

    A record HubSpot no longer returns is dropped; deletion cleanup removes it.
    """
    ordered = sorted(ids)
    reread: Dict[str, Record] = {}
    seen_per_chunk = [merge_by_id(reread, client.read_batch(entity, ordered, chunk)) for chunk in chunks]
    complete = set.intersection(*seen_per_chunk)

    for record_id in ordered:
        merged.pop(record_id, None)
        if record_id in complete:
            merged[record_id] = reread[record_id]

    gone = ids - complete
    if gone:
        print(f"  ⚠️  {len(gone)} record(s) could not be re-read and were skipped")


def _chunk_drift(chunk_ids: List[Set[str]]) -> Optional[Set[str]]:
    if len(chunk_ids) < 2:
        return None
    union = set().union(*chunk_ids)
    common = set.intersection(*chunk_ids)
    return union - common
