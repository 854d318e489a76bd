# tests/domain/test_run.py
import pytest
from domain.exceptions import ValidationError
from domain.run import RunSpec


class TestRunSpec:
    def test_create_run_spec_defaults(self):
        spec = RunSpec(collection_id="c1", team_id="t1")
        assert spec.iteration_count == 1
        assert spec.delay_between_requests_ms == 0
        assert spec.environment_id is None
        assert spec.has_data_file is False

    def test_has_data_file_requires_name_and_content(self):
        assert RunSpec(collection_id="c1", team_id="t1", data_filename="a.csv", data_content="x\n1").has_data_file
        assert not RunSpec(collection_id="c1", team_id="t1", data_filename="a.csv").has_data_file
        assert not RunSpec(collection_id="c1", team_id="t1", data_content="x\n1").has_data_file

    @pytest.mark.parametrize("collection_id", ["", "   "])
    def test_empty_collection_id(self, collection_id):
        with pytest.raises(ValidationError, match="collection_id"):
            RunSpec(collection_id=collection_id, team_id="t1")

    def test_empty_team_id(self):
        with pytest.raises(ValidationError, match="team_id"):
            RunSpec(collection_id="c1", team_id="")

    def test_negative_delay(self):
        with pytest.raises(ValidationError, match="delay_between_requests_ms"):
            RunSpec(collection_id="c1", team_id="t1", delay_between_requests_ms=-1)

    def test_run_spec_frozen(self):
        spec = RunSpec(collection_id="c1", team_id="t1")
        with pytest.raises(Exception):  # FrozenInstanceError
            spec.iteration_count = 5
