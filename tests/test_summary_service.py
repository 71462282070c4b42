"""
Tests for the filtered case-type summary.
"""

import pytest
from bson import ObjectId

from casetrack.schemas.summary import SummaryFilters
from casetrack.services.summary_service import roll_up

from factories import add_case, add_facility, insert


@pytest.fixture
def summaries(services):
    return services.summaries


@pytest.fixture
async def seeded(db, locations):
    """
    Ashanti: Kumasi Metro (Asokwa Sub -> Asokwa, Bantama) and an empty Central.
    Volta: Central -> Ho.
    """
    ashanti = await locations.find_or_create_region("Ashanti")
    volta = await locations.find_or_create_region("Volta")
    kumasi = await locations.find_or_create_district("Kumasi Metro", ashanti.id)
    await locations.find_or_create_district("Central", ashanti.id)
    volta_central = await locations.find_or_create_district("Central", volta.id)
    asokwa_sub = await locations.find_or_create_sub_district("Asokwa Sub", kumasi.id)
    asokwa = await locations.find_or_create_community(
        "Asokwa", sub_district_id=asokwa_sub.id
    )
    bantama = await locations.find_or_create_community("Bantama", district_id=kumasi.id)
    ho = await locations.find_or_create_community("Ho", district_id=volta_central.id)

    f1 = await add_facility(
        db, "F1", region=ashanti.id, district=kumasi.id,
        sub_district=asokwa_sub.id, community=asokwa.id,
    )
    f2 = await add_facility(
        db, "F2", region=ashanti.id, district=kumasi.id, community=bantama.id
    )
    f3 = await add_facility(
        db, "F3", region=volta.id, district=volta_central.id, community=ho.id
    )

    cholera = await insert(db["casetypes"], name="Cholera", archived=False)
    malaria = await insert(db["casetypes"], name="Malaria", archived=False)

    await add_case(db, cholera, f1, "confirmed", "Recovered", community=asokwa.id)
    await add_case(db, cholera, f1, "suspected", "Ongoing treatment", community=asokwa.id)
    await add_case(db, cholera, f2, "confirmed", "Deceased", community=bantama.id)
    await add_case(db, malaria, f2, "suspected", "Ongoing treatment", community=bantama.id)
    await add_case(db, malaria, f3, "confirmed", "Recovered", community=ho.id)
    await add_case(db, malaria, f3, "confirmed", "Recovered", community=ho.id, archived=True)
    await add_case(db, cholera, f3, "not a case", "Recovered", community=ho.id)
    await add_case(db, malaria, f3, "suspected", None, community=ho.id)
    # legacy document written before the archived flag existed
    await insert(
        db["cases"],
        caseType=cholera,
        healthFacility=f3,
        status="confirmed",
        community=ho.id,
        patient={"status": "Ongoing treatment"},
    )

    return {
        "ashanti": ashanti,
        "volta": volta,
        "kumasi": kumasi,
        "f1": f1,
        "f2": f2,
        "cholera": cholera,
        "malaria": malaria,
    }


def by_name(rows):
    return {row.name: row for row in rows}


class TestUnfiltered:
    async def test_totals(self, summaries, seeded):
        rows = await summaries.summarize()

        assert [row.name for row in rows] == ["Cholera", "Malaria"]
        cholera, malaria = rows
        assert cholera.case_type_id == seeded["cholera"]
        assert cholera.total == 4
        assert cholera.confirmed.model_dump() == {
            "total": 3, "recovered": 1, "ongoing_treatment": 1, "deceased": 1,
        }
        assert cholera.suspected.model_dump() == {
            "total": 1, "recovered": 0, "ongoing_treatment": 1, "deceased": 0,
        }
        assert malaria.total == 3
        assert malaria.confirmed.total == 1
        assert malaria.suspected.total == 2
        assert malaria.suspected.ongoing_treatment == 1

    async def test_total_is_sum_of_statuses(self, summaries, seeded):
        for row in await summaries.summarize():
            assert row.total == row.confirmed.total + row.suspected.total
            for breakdown in (row.confirmed, row.suspected):
                assert breakdown.total >= (
                    breakdown.recovered + breakdown.ongoing_treatment + breakdown.deceased
                )

    async def test_empty_database(self, summaries):
        assert await summaries.summarize() == []

    async def test_camel_case_output(self, summaries, seeded):
        rows = await summaries.summarize()

        dumped = rows[0].model_dump(by_alias=True)
        assert "caseTypeId" in dumped
        assert "ongoingTreatment" in dumped["confirmed"]


class TestGeographyFilters:
    async def test_region_by_name(self, summaries, seeded):
        rows = by_name(await summaries.summarize({"region": "ashanti"}))

        assert rows["Cholera"].total == 3
        assert rows["Malaria"].total == 1

    async def test_region_by_id(self, summaries, seeded):
        rows = by_name(await summaries.summarize({"region": str(seeded["volta"].id)}))

        assert rows["Cholera"].total == 1
        assert rows["Malaria"].total == 2

    async def test_unknown_region_is_empty(self, summaries, seeded):
        assert await summaries.summarize({"region": "Atlantis"}) == []

    async def test_district_scoped_by_region(self, summaries, seeded):
        volta_rows = await summaries.summarize({"region": "Volta", "district": "Central"})
        ashanti_rows = await summaries.summarize({"region": "Ashanti", "district": "Central"})

        assert sum(row.total for row in volta_rows) == 3
        assert ashanti_rows == []

    async def test_sub_district(self, summaries, seeded):
        rows = await summaries.summarize(
            SummaryFilters(region="Ashanti", district="Kumasi Metro", sub_district="Asokwa Sub")
        )

        assert len(rows) == 1
        assert rows[0].name == "Cholera"
        assert rows[0].total == 2

    async def test_community(self, summaries, seeded):
        rows = by_name(await summaries.summarize({"community": "BANTAMA"}))

        assert rows["Cholera"].total == 1
        assert rows["Malaria"].total == 1

    async def test_district_and_community_under_its_sub_district(self, summaries, seeded):
        """Asokwa hangs off Asokwa Sub; naming its district too must not drop it."""
        alone = await summaries.summarize({"community": "Asokwa"})
        with_district = await summaries.summarize(
            {"district": "Kumasi Metro", "community": "Asokwa"}
        )
        with_region = await summaries.summarize({"region": "Ashanti", "community": "asokwa"})

        assert [(row.name, row.total) for row in alone] == [("Cholera", 2)]
        assert [(row.name, row.total) for row in with_district] == [("Cholera", 2)]
        assert [(row.name, row.total) for row in with_region] == [("Cholera", 2)]

    async def test_community_outside_district_is_empty(self, summaries, seeded):
        assert await summaries.summarize(
            {"region": "Volta", "district": "Central", "community": "Asokwa"}
        ) == []

    async def test_blank_filters_are_ignored(self, summaries, seeded):
        rows = await summaries.summarize({"region": "  ", "district": ""})

        assert sum(row.total for row in rows) == 7


class TestCaseTypeAndFacility:
    async def test_case_type_by_name(self, summaries, seeded):
        rows = await summaries.summarize({"caseType": "malaria"})

        assert [row.name for row in rows] == ["Malaria"]
        assert rows[0].total == 3

    async def test_case_type_by_id(self, summaries, seeded):
        rows = await summaries.summarize({"caseType": str(seeded["cholera"])})

        assert [row.name for row in rows] == ["Cholera"]

    async def test_unknown_case_type_is_empty(self, summaries, seeded):
        assert await summaries.summarize({"caseType": "Ebola"}) == []

    async def test_facility_by_name(self, summaries, seeded):
        rows = by_name(await summaries.summarize({"facility": "f2"}))

        assert rows["Cholera"].total == 1
        assert rows["Malaria"].total == 1

    async def test_facility_by_id_within_region(self, summaries, seeded):
        rows = await summaries.summarize(
            {"facility": str(seeded["f1"]), "region": "Ashanti"}
        )

        assert sum(row.total for row in rows) == 2

    async def test_facility_outside_region_is_empty(self, summaries, seeded):
        assert await summaries.summarize({"facility": "F1", "region": "Volta"}) == []

    async def test_unknown_facility_is_empty(self, summaries, seeded):
        assert await summaries.summarize({"facility": str(ObjectId())}) == []


class TestRollUp:
    def test_folds_groups_per_case_type(self):
        malaria, cholera = ObjectId(), ObjectId()
        groups = [
            {"_id": {"caseType": malaria, "status": "confirmed", "patientStatus": "Deceased"}, "count": 2},
            {"_id": {"caseType": cholera, "status": "suspected", "patientStatus": "Recovered"}, "count": 1},
            {"_id": {"caseType": cholera, "status": "suspected", "patientStatus": "Unknown"}, "count": 4},
            {"_id": {"caseType": cholera, "status": "not a case", "patientStatus": "Recovered"}, "count": 9},
        ]

        rows = roll_up(groups, {malaria: "Malaria", cholera: "Cholera"})

        assert [row.name for row in rows] == ["Cholera", "Malaria"]
        assert rows[0].total == 5
        assert rows[0].suspected.total == 5
        assert rows[0].suspected.recovered == 1
        assert rows[1].confirmed.deceased == 2

    def test_unnamed_case_type_sorts_last(self):
        orphan, named = ObjectId(), ObjectId()
        groups = [
            {"_id": {"caseType": orphan, "status": "confirmed"}, "count": 1},
            {"_id": {"caseType": named, "status": "confirmed"}, "count": 1},
        ]

        rows = roll_up(groups, {named: "Typhoid"})

        assert [row.name for row in rows] == ["Typhoid", None]

    def test_only_inactive_statuses_give_no_rows(self):
        groups = [{"_id": {"caseType": ObjectId(), "status": "not a case"}, "count": 3}]

        assert roll_up(groups, {}) == []
