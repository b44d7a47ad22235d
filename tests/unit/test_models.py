"""
Unit tests for Pydantic data models.

Covers record conversion, study grouping, pies and sync results.
"""

from datetime import datetime

import pytest

from multifactor_risk.core.errors import (
    DateParseError,
    IncompleteRecordError,
    InvalidScoreError,
    StudyMismatchError,
)
from multifactor_risk.core.models import (
    AssessmentResult,
    Pie,
    Record,
    Slice,
    Study,
    StudyMap,
    SyncResult,
    normalize_study_id,
    sort_results_by_as_of,
)

PATIENT_URL = "http://fhir.test/Patient/56fd63cdac1c5d77f6f695a1"


def make_record(**overrides) -> Record:
    data = {
        "study_id": "1",
        "redcap_event_name": "enrollment_arm_1",
        "rf_date": "2015-12-07",
        "rf_cmc_risk_cat": "3",
        "rf_func_risk_cat": "2",
        "rf_sb_risk_cat": "1",
        "rf_util_risk_cat": "3",
        "rf_risk_predicted": "3",
    }
    data.update(overrides)
    return Record.model_validate(data)


class TestNormalizeStudyId:
    """Tests for study ID normalization"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("a", "a"),
            ("1", "1"),
            (1, "1"),
            (1.0, "1"),
            (12.5, "12.5"),
            (None, ""),
            (True, "true"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_study_id(raw) == expected

    def test_numeric_and_string_ids_collide(self):
        """A JSON number and its string form name the same study"""
        assert Record.model_validate({"study_id": 1}).study_id == Record.model_validate({"study_id": "1"}).study_id


class TestRecord:
    """Tests for Record model"""

    def test_parse_redcap_export_row(self):
        """Test that REDCap field names map onto record attributes"""
        record = make_record()
        assert record.study_id == "1"
        assert record.event_name == "enrollment_arm_1"
        assert record.risk_factor_date == "2015-12-07"
        assert record.clinical_risk == "3"
        assert record.functional_risk == "2"
        assert record.psychosocial_risk == "1"
        assert record.utilization_risk == "3"
        assert record.perceived_risk == "3"

    def test_null_and_numeric_scores_become_strings(self):
        record = make_record(rf_cmc_risk_cat=None, rf_func_risk_cat=2)
        assert record.clinical_risk == ""
        assert record.functional_risk == "2"

    def test_is_complete(self):
        assert make_record().is_complete() is True

    @pytest.mark.parametrize(
        "field",
        ["rf_date", "rf_cmc_risk_cat", "rf_func_risk_cat", "rf_sb_risk_cat", "rf_util_risk_cat", "rf_risk_predicted"],
    )
    def test_missing_field_is_incomplete(self, field):
        assert make_record(**{field: ""}).is_complete() is False

    def test_to_pie(self):
        """Test that slices come out in category order with fixed weights"""
        pie = make_record(rf_util_risk_cat="4").to_pie(PATIENT_URL)

        assert pie.patient == PATIENT_URL
        assert [s.name for s in pie.slices] == [
            "Clinical Risk",
            "Functional and Environmental Risk",
            "Psychosocial and Mental Health Risk",
            "Utilization Risk",
        ]
        assert [s.value for s in pie.slices] == [3, 2, 1, 4]
        assert all(s.weight == 25 and s.max_value == 4 for s in pie.slices)
        assert len(pie.id) == 32

    def test_perceived_risk_is_not_charted(self):
        pie = make_record(rf_risk_predicted="4").to_pie(PATIENT_URL)
        assert max(s.value for s in pie.slices) == 3

    def test_incomplete_record_cannot_make_pie(self):
        with pytest.raises(IncompleteRecordError, match="incomplete risk factors"):
            make_record(rf_cmc_risk_cat="").to_pie(PATIENT_URL)

    def test_non_integer_score(self):
        with pytest.raises(InvalidScoreError) as exc_info:
            make_record(rf_sb_risk_cat="high").to_pie(PATIENT_URL)
        assert exc_info.value.field_name == "Psychosocial and Mental Health Risk"
        assert exc_info.value.raw_value == "high"

    @pytest.mark.parametrize("raw", ["3\n", " 3", "3 ", "3.0", "0x3"])
    def test_score_must_be_whole_integer(self, raw):
        with pytest.raises(InvalidScoreError):
            make_record(rf_util_risk_cat=raw).to_pie(PATIENT_URL)

    def test_signed_scores_are_accepted(self):
        pie = make_record(rf_cmc_risk_cat="+2", rf_func_risk_cat="-1").to_pie(PATIENT_URL)
        assert [s.value for s in pie.slices[:2]] == [2, -1]

    def test_risk_factor_datetime_is_local_midnight(self):
        as_of = make_record().risk_factor_datetime()
        assert as_of == datetime(2015, 12, 7).astimezone()
        assert as_of.tzinfo is not None
        assert (as_of.hour, as_of.minute, as_of.second) == (0, 0, 0)

    @pytest.mark.parametrize("raw", ["12/07/2015", "2015-13-01", "2015-02-30", "2015-1-7", "2015-12-07\n"])
    def test_bad_dates(self, raw):
        with pytest.raises(DateParseError):
            make_record(rf_date=raw).risk_factor_datetime()

    def test_to_assessment_result(self):
        result = make_record().to_assessment_result(PATIENT_URL)
        assert result.as_of == datetime(2015, 12, 7).astimezone()
        assert result.score == 3
        assert result.pie.patient == PATIENT_URL

    def test_assessment_score_is_highest_slice(self):
        result = make_record(
            rf_cmc_risk_cat="1", rf_func_risk_cat="4", rf_sb_risk_cat="2", rf_util_risk_cat="1"
        ).to_assessment_result(PATIENT_URL)
        assert result.score == 4

    def test_incomplete_record_fails_before_date_parsing(self):
        """An incomplete record with a bad date is reported as incomplete"""
        with pytest.raises(IncompleteRecordError):
            make_record(rf_date="garbage", rf_util_risk_cat="").to_assessment_result(PATIENT_URL)


class TestStudy:
    """Tests for Study model"""

    def test_first_record_sets_id(self):
        study = Study()
        study.add_record(make_record(study_id="a"))
        assert study.id == "a"
        assert len(study.records) == 1

    def test_mismatched_record_is_rejected(self):
        study = Study()
        study.add_record(make_record(study_id="a"))

        with pytest.raises(StudyMismatchError) as exc_info:
            study.add_record(make_record(study_id="b"))

        assert str(exc_info.value) == "Record with study ID b cannot be added to study with ID a"
        assert study.id == "a"
        assert len(study.records) == 1

    def test_to_assessment_results_sorted_by_date(self):
        study = Study()
        study.add_record(make_record(rf_date="2016-04-01"))
        study.add_record(make_record(rf_date="2015-12-07"))
        study.add_record(make_record(rf_date="2016-02-21"))

        results = study.to_assessment_results(PATIENT_URL)

        assert [r.as_of.date().isoformat() for r in results] == ["2015-12-07", "2016-02-21", "2016-04-01"]

    def test_incomplete_and_malformed_records_are_skipped(self):
        study = Study()
        study.add_record(make_record(rf_date="2015-12-07"))
        study.add_record(make_record(rf_date="2016-01-01", rf_cmc_risk_cat=""))
        study.add_record(make_record(rf_date="2016-02-01", rf_sb_risk_cat="x"))
        study.add_record(make_record(rf_date="not-a-date"))

        results = study.to_assessment_results(PATIENT_URL)

        assert len(results) == 1
        assert results[0].as_of == datetime(2015, 12, 7).astimezone()

    def test_empty_study_has_no_results(self):
        assert Study(id="a").to_assessment_results(PATIENT_URL) == []


class TestStudyMap:
    """Tests for StudyMap"""

    def test_groups_records_by_normalized_id(self, records):
        studies = StudyMap()
        studies.add_records(records)

        assert set(studies) == {"1", "a"}
        assert len(studies["1"].records) == 2
        assert len(studies["a"].records) == 1
        assert studies["1"].id == "1"

    def test_preserves_record_order_within_study(self, records):
        studies = StudyMap()
        studies.add_records(records)
        assert [r.risk_factor_date for r in studies["1"].records] == ["2015-12-07", "2016-04-01"]

    def test_mismatch_stops_grouping_without_rollback(self):
        """Earlier records stay grouped when a later one fails"""
        studies = StudyMap()
        studies["x"] = Study(id="y")

        with pytest.raises(StudyMismatchError):
            studies.add_records([make_record(study_id="a"), make_record(study_id="x"), make_record(study_id="b")])

        assert "a" in studies
        assert "b" not in studies


class TestPie:
    """Tests for Pie and Slice"""

    def test_defaults(self):
        pie = Pie(patient=PATIENT_URL)
        assert len(pie.id) == 32
        assert isinstance(pie.created, datetime)
        assert pie.slices == []

    def test_ids_are_unique(self):
        assert Pie(patient=PATIENT_URL).id != Pie(patient=PATIENT_URL).id

    def test_converting_a_record_twice_makes_distinct_pies(self):
        record = make_record()
        first = record.to_pie(PATIENT_URL)
        second = record.to_pie(PATIENT_URL)

        assert first.slices == second.slices
        assert first.id != second.id
        assert first.created != second.created

    def test_json_uses_wire_names(self):
        pie = Pie(patient=PATIENT_URL, slices=[Slice(name="Clinical Risk", value=3)])
        data = pie.to_json_dict()

        assert data["patient"] == PATIENT_URL
        assert data["slices"] == [{"name": "Clinical Risk", "weight": 25, "value": 3, "maxValue": 4}]
        assert isinstance(data["created"], str)

    def test_slice_accepts_wire_name(self):
        assert Slice.model_validate({"name": "Utilization Risk", "value": 2, "maxValue": 5}).max_value == 5

    def test_pie_is_frozen(self):
        pie = Pie(patient=PATIENT_URL)
        with pytest.raises(Exception):
            pie.patient = "elsewhere"


class TestSortResults:
    """Tests for sort_results_by_as_of"""

    def test_equal_dates_keep_input_order(self):
        first = AssessmentResult(as_of=datetime(2016, 1, 1).astimezone(), score=1, pie=Pie(patient=PATIENT_URL))
        second = AssessmentResult(as_of=datetime(2016, 1, 1).astimezone(), score=2, pie=Pie(patient=PATIENT_URL))
        earlier = AssessmentResult(as_of=datetime(2015, 1, 1).astimezone(), score=3, pie=Pie(patient=PATIENT_URL))

        assert [r.score for r in sort_results_by_as_of([first, second, earlier])] == [3, 1, 2]


class TestSyncResult:
    """Tests for SyncResult"""

    def test_success_json(self):
        result = SyncResult(study_id="1", fhir_patient_id="abc", risk_assessment_count=2)
        assert result.succeeded is True
        assert result.to_json_dict() == {"studyID": "1", "fhirPatientID": "abc", "riskAssessmentCount": 2}

    def test_error_json_omits_unresolved_patient(self):
        result = SyncResult(study_id="1", error=ValueError("boom"))
        assert result.succeeded is False
        assert result.to_json_dict() == {"studyID": "1", "riskAssessmentCount": 0, "error": "boom"}

    def test_negative_count_rejected(self):
        with pytest.raises(Exception):
            SyncResult(study_id="1", risk_assessment_count=-1)
