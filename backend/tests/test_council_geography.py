"""Council lookup over the LAD list, GOV.UK enrichment and payload parsing."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Any

from spendpipe.registries.council_geography import (
    CouncilGeography,
    LocalAuthorityRecord,
    infer_council_type,
    infer_nation,
    infer_tier,
    load_local_authorities,
)
from spendpipe.registries.gov_uk import GovUkClient, GovUkOrganisation
from spendpipe.registries.http import RegistryError

RECORDS = [
    LocalAuthorityRecord(gss_code="E08000035", name="Leeds", latitude=53.8, longitude=-1.55),
    LocalAuthorityRecord(gss_code="E26000002", name="Peak District National Park Authority"),
    LocalAuthorityRecord(gss_code="W06000015", name="Cardiff"),
]


class _FakeGovUk:
    def __init__(self, candidates: list[GovUkOrganisation], *, fail: bool = False) -> None:
        self.candidates = candidates
        self.fail = fail
        self.fetched: list[str] = []

    def search_organisations(self, query: str) -> list[GovUkOrganisation]:
        if self.fail:
            raise RegistryError("GOV.UK unavailable", status=503)
        return self.candidates

    def get_organisation(self, slug: str) -> GovUkOrganisation | None:
        self.fetched.append(slug)
        return GovUkOrganisation(
            title="Leeds City Council",
            slug=slug,
            link=f"/government/organisations/{slug}",
            organisation_type="local_authority",
            web_url="https://www.leeds.gov.uk",
        )


class _FakeHttp:
    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.urls: list[str] = []

    def get_json(self, url: str) -> Any:
        self.urls.append(url)
        for marker, payload in self.responses.items():
            if marker in url:
                return payload
        return None


class CouncilInferenceTests(unittest.TestCase):
    def test_council_type_and_tier(self) -> None:
        self.assertEqual(infer_council_type("Kent County Council"), "county")
        self.assertEqual(infer_tier("county"), "tier1")
        self.assertEqual(infer_council_type("Harrogate District Council"), "district")
        self.assertEqual(infer_tier("district"), "tier2")
        self.assertEqual(infer_council_type("London Borough of Camden"), "london_borough")
        self.assertEqual(infer_council_type("Wigan Metropolitan Borough Council"), "metropolitan")
        self.assertEqual(infer_council_type("City of London"), "city")
        self.assertEqual(infer_council_type("Leeds"), "unitary")
        self.assertEqual(infer_tier("unitary"), "unitary")

    def test_nation_from_gss_prefix(self) -> None:
        self.assertEqual(infer_nation("W06000015"), "Wales")
        self.assertEqual(infer_nation("S12000036"), "Scotland")
        self.assertEqual(infer_nation("N09000003"), "Northern Ireland")
        self.assertEqual(infer_nation("E08000035"), "England")
        self.assertEqual(infer_nation("X1"), "England")


class LocalAuthorityCsvTests(unittest.TestCase):
    def test_reads_rows_and_skips_incomplete(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "lad.csv"
            path.write_text(
                "\ufeffLAD23CD,LAD23NM,LAT,LONG\n"
                "E08000035,Leeds,53.8,-1.55\n"
                ",Nameless,1,1\n"
                "W06000015,Cardiff,,\n",
                encoding="utf-8",
            )

            records = load_local_authorities(path)

        self.assertEqual([record.gss_code for record in records], ["E08000035", "W06000015"])
        self.assertEqual(records[0].latitude, 53.8)
        self.assertIsNone(records[1].longitude)

    def test_missing_file_logs_and_returns_empty(self) -> None:
        with self.assertLogs("spendpipe.registries.council_geography", level="WARNING"):
            self.assertEqual(load_local_authorities("/nonexistent/lad.csv"), [])


class CouncilLookupTests(unittest.TestCase):
    def test_local_match_strips_council_suffix(self) -> None:
        metadata = CouncilGeography(RECORDS).lookup_local("Leeds  City Council")

        self.assertEqual(metadata.name, "Leeds City Council")
        self.assertEqual(metadata.official_name, "Leeds")
        self.assertEqual(metadata.gss_code, "E08000035")
        self.assertEqual(metadata.nation, "England")
        self.assertEqual(metadata.latitude, 53.8)
        self.assertEqual(metadata.similarity, 1.0)

    def test_national_parks_and_weak_matches_are_ignored(self) -> None:
        geography = CouncilGeography(RECORDS)

        self.assertIsNone(geography.lookup_local("Peak District National Park Authority"))
        self.assertIsNone(geography.lookup_local("Zzyzx Council"))
        self.assertIsNone(CouncilGeography([]).lookup_local("Leeds"))

    def test_gov_uk_enrichment_skips_excluded_candidates(self) -> None:
        gov_uk = _FakeGovUk(
            [
                GovUkOrganisation(title="West Yorkshire Fire", slug="wy-fire", link="/x", organisation_type="local_authority"),
                GovUkOrganisation(title="Leeds City Council", slug="leeds-city-council", link="/y"),
            ]
        )

        metadata = CouncilGeography(RECORDS, gov_uk=gov_uk).search_council_metadata("Leeds City Council")

        self.assertEqual(gov_uk.fetched, ["leeds-city-council"])
        self.assertEqual(metadata.homepage_url, "https://www.leeds.gov.uk")
        self.assertEqual(metadata.tier, "unitary")

    def test_gov_uk_failure_keeps_local_metadata(self) -> None:
        geography = CouncilGeography(RECORDS, gov_uk=_FakeGovUk([], fail=True))

        with self.assertLogs("spendpipe.registries.council_geography", level="WARNING"):
            metadata = geography.search_council_metadata("Cardiff Council")

        self.assertEqual(metadata.gss_code, "W06000015")
        self.assertEqual(metadata.nation, "Wales")
        self.assertIsNone(metadata.homepage_url)


class GovUkClientTests(unittest.TestCase):
    def test_search_parses_nested_and_dedupes(self) -> None:
        http = _FakeHttp(
            {
                "/api/search.json": {
                    "results": [
                        {
                            "title": "Leeds City Council",
                            "link": "/government/organisations/leeds-city-council",
                            "organisation_type": "local_authority",
                        },
                        {"title": "Duplicate", "link": "/government/organisations/leeds-city-council"},
                        {"organisations": [{"title": "Cabinet Office", "slug": "cabinet-office", "acronym": "CO"}]},
                        {"title": "No slug"},
                    ]
                }
            }
        )
        client = GovUkClient(base_url="https://www.gov.uk/", http=http)

        results = client.search_organisations("Cabinet Office")

        self.assertEqual([org.slug for org in results], ["leeds-city-council", "cabinet-office"])
        self.assertEqual(results[0].organisation_type, "local_authority")
        self.assertEqual(results[1].acronym, "CO")
        self.assertEqual(results[1].official_website, "https://www.gov.uk/government/organisations/cabinet-office")
        self.assertIn("filter_format=organisation", http.urls[0])
        self.assertIn("q=Cabinet+Office", http.urls[0])

    def test_get_organisation_reads_details_and_parents(self) -> None:
        http = _FakeHttp(
            {
                "/api/organisations/cabinet-office": {
                    "title": "Cabinet Office",
                    "web_url": "https://www.gov.uk/government/organisations/cabinet-office",
                    "details": {
                        "slug": "cabinet-office",
                        "abbreviation": "CO",
                        "organisation_type": "ministerial_department",
                        "govuk_status": "live",
                    },
                    "parent_organisations": [{"id": "https://www.gov.uk/api/organisations/prime-ministers-office/"}],
                }
            }
        )
        client = GovUkClient(base_url="https://www.gov.uk", http=http)

        organisation = client.get_organisation("cabinet-office")

        self.assertEqual(organisation.organisation_type, "ministerial_department")
        self.assertEqual(organisation.organisation_state, "live")
        self.assertEqual(organisation.parent_organisations, ["prime-ministers-office"])
        self.assertIsNone(client.get_organisation("unknown"))


if __name__ == "__main__":
    unittest.main()
