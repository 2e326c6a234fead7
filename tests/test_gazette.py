"""Tests for the JORFSearch client."""

from datetime import date

import pytest
import requests_mock

from joel.gazette import GazetteClient, GazetteFetchError, parse_record
from joel.models import OrganisationRef

BASE_URL = "https://jorf.example.org"


def item(**overrides):
    data = {
        "nom": "Dupont",
        "prenom": "Jean",
        "source_date": "2024-02-01",
        "source_id": "JORFTEXT000000000001",
        "source_name": "JORF",
        "type_ordre": "nomination",
        "sexe": "M",
        "organisations": [{"nom": "Conseil d'État", "wikidata_id": "Q1"}],
        "prefet": "Préfet de la Somme",
    }
    data.update(overrides)
    return data


class TestParseRecord:
    """Tests for parse_record."""

    def test_full_item(self):
        record = parse_record(item())

        assert record.surname == "Dupont"
        assert record.given_name == "Jean"
        assert record.source_date == date(2024, 2, 1)
        assert record.order_type == "nomination"
        assert record.organisations == (OrganisationRef("Conseil d'État", "Q1"),)
        assert record.functions == {"prefet": "Préfet de la Somme"}

    @pytest.mark.parametrize(
        "overrides",
        [{"source_date": "01/02/2024"}, {"source_id": ""}, {"source_date": None}],
    )
    def test_unusable_items(self, overrides):
        assert parse_record(item(**overrides)) is None

    def test_missing_source_name_defaults_to_jorf(self):
        assert parse_record(item(source_name=None)).source_name == "JORF"


class TestGazetteClient:
    """Tests for GazetteClient."""

    def make_client(self, **kwargs) -> GazetteClient:
        return GazetteClient(base_url=BASE_URL, retries=0, **kwargs)

    def test_day_url(self):
        assert self.make_client().day_url(date(2024, 2, 1)) == f"{BASE_URL}/01-02-2024"

    def test_fetch_day_skips_malformed_items(self):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/01-02-2024", json=[item(), {"nom": "X"}, "junk"])

            records = self.make_client().fetch_records_for_day_sync(date(2024, 2, 1))

            assert [r.surname for r in records] == ["Dupont"]
            assert m.request_history[0].qs == {"format": ["json"]}

    def test_fetch_day_failure_returns_none(self):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/01-02-2024", status_code=404)

            assert self.make_client().fetch_records_for_day_sync(date(2024, 2, 1)) is None

    def test_null_payload_returns_none(self):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/01-02-2024", text="null")

            assert self.make_client().fetch_records_for_day_sync(date(2024, 2, 1)) is None

    @pytest.mark.asyncio
    async def test_fetch_window_oldest_first(self):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/01-02-2024", json=[item(source_id="B")])
            m.get(
                f"{BASE_URL}/31-01-2024",
                json=[item(source_id="A", source_date="2024-01-31")],
            )
            m.get(f"{BASE_URL}/30-01-2024", json=[])

            records = await self.make_client(fetch_concurrency=2).fetch_records_window(
                date(2024, 1, 30), date(2024, 2, 1)
            )

            assert [r.source_id for r in records] == ["A", "B"]
            assert len(m.request_history) == 3

    @pytest.mark.asyncio
    async def test_fetch_window_fails_on_any_missing_day(self):
        with requests_mock.Mocker() as m:
            m.get(f"{BASE_URL}/01-02-2024", json=[item()])
            m.get(f"{BASE_URL}/31-01-2024", status_code=500)

            with pytest.raises(GazetteFetchError, match="null value for 2024-01-31"):
                await self.make_client().fetch_records_window(
                    date(2024, 1, 31), date(2024, 2, 1)
                )
