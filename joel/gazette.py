"""JORFSearch client: daily Journal Officiel publications about people."""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .function_tags import FunctionTag
from .models import GazetteRecord, OrganisationRef
from .utils import jorf_to_date

logger = logging.getLogger(__name__)

FUNCTION_FIELDS = tuple(tag.value for tag in FunctionTag)


class GazetteFetchError(Exception):
    """Raised when a day of the lookback window could not be fetched."""


def parse_record(item: Dict[str, Any]) -> Optional[GazetteRecord]:
    """Build a record from one JORFSearch item; None when it is unusable."""
    try:
        source_date = jorf_to_date(item["source_date"])
        source_id = str(item["source_id"]).strip()
    except (AttributeError, KeyError, TypeError, ValueError):
        return None
    if not source_id:
        return None

    organisations = tuple(
        OrganisationRef(name=str(org.get("nom", "")), wikidata_id=org.get("wikidata_id"))
        for org in item.get("organisations") or []
        if isinstance(org, dict)
    )
    functions = {
        field: str(item[field]) for field in FUNCTION_FIELDS if item.get(field)
    }

    return GazetteRecord(
        surname=str(item.get("nom", "")).strip(),
        given_name=str(item.get("prenom", "")).strip(),
        source_date=source_date,
        source_id=source_id,
        source_name=str(item.get("source_name") or "JORF"),
        order_type=item.get("type_ordre"),
        sex=item.get("sexe"),
        organisations=organisations,
        functions=functions,
    )


class GazetteClient:
    """Fetches publications day by day from the JORFSearch API."""

    def __init__(
        self,
        base_url: str = "https://jorfsearch.steinertriples.ch",
        timeout: float = 15.0,
        retries: int = 3,
        backoff: float = 0.5,
        fetch_concurrency: int = 8,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.fetch_concurrency = max(1, fetch_concurrency)

        self.session = requests.Session()
        # Retry strategy for 429, 500, 502, 503, 504
        retry_strategy = Retry(
            total=retries,
            backoff_factor=backoff,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def day_url(self, day: date) -> str:
        return f"{self.base_url}/{day.strftime('%d-%m-%Y')}"

    def fetch_records_for_day_sync(self, day: date) -> Optional[List[GazetteRecord]]:
        """Records published on one day, or None when the source failed."""
        try:
            response = self.session.get(
                self.day_url(day),
                params={"format": "JSON"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch JORFSearch records for {day}: {e}")
            return None

        if payload is None:
            return None
        if not isinstance(payload, list):
            logger.error(f"Unexpected JORFSearch payload for {day}: {type(payload).__name__}")
            return None

        records = []
        for item in payload:
            record = parse_record(item) if isinstance(item, dict) else None
            if record is None:
                logger.debug(f"Skipping malformed JORFSearch item on {day}")
                continue
            records.append(record)
        return records

    async def fetch_records_for_day(self, day: date) -> Optional[List[GazetteRecord]]:
        return await asyncio.to_thread(self.fetch_records_for_day_sync, day)

    async def fetch_records_window(self, start: date, end: date) -> List[GazetteRecord]:
        """All records from start to end inclusive, oldest publication first.

        Days are fetched in concurrent chunks of fetch_concurrency.

        Raises:
            GazetteFetchError: If any day could not be fetched
        """
        day_count = (end - start).days + 1
        days = [end - timedelta(days=offset) for offset in range(max(day_count, 0))]

        results: List[Optional[List[GazetteRecord]]] = []
        for index in range(0, len(days), self.fetch_concurrency):
            chunk = days[index : index + self.fetch_concurrency]
            results.extend(
                await asyncio.gather(*(self.fetch_records_for_day(day) for day in chunk))
            )

        records: List[GazetteRecord] = []
        for day, day_records in zip(days, results):
            if day_records is None:
                raise GazetteFetchError(f"JORFSearch returned a null value for {day}")
            records.extend(day_records)

        records.sort(key=lambda record: record.source_date)
        logger.info(f"Fetched {len(records)} JORFSearch records from {start} to {end}")
        return records
