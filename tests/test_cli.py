import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from api_mock_engine.cli import main

FIXTURES = Path(__file__).parent / "fixtures"
PETSTORE = str(FIXTURES / "petstore.yaml")


def _body(output: str):
    """Parse the JSON printed after the status line."""
    return json.loads(output.split("\n", 1)[1])


class TestCliRoutes:
    def test_lists_operations(self):
        result = CliRunner().invoke(main, ["routes", PETSTORE])
        assert result.exit_code == 0
        assert "petstore: 9 operations" in result.output
        assert "GET     /pets/{petId}" in result.output
        assert "Create a pet" in result.output

    def test_not_openapi(self, tmp_path):
        f = tmp_path / "notes.yaml"
        f.write_text("title: just notes\n")
        result = CliRunner().invoke(main, ["routes", str(f)])
        assert result.exit_code != 0
        assert "Not an OpenAPI or Swagger document" in result.output


class TestCliSample:
    def test_sample_item(self):
        result = CliRunner().invoke(main, ["sample", PETSTORE, "GET", "/pets/1", "--seed", "5"])
        assert result.exit_code == 0
        body = json.loads(result.output)
        assert {"id", "name", "price"} <= set(body)

    def test_sample_is_reproducible(self):
        runner = CliRunner()
        first = runner.invoke(main, ["sample", PETSTORE, "GET", "/pets", "--seed", "5"])
        second = runner.invoke(main, ["sample", PETSTORE, "GET", "/pets", "--seed", "5"])
        assert first.output == second.output
        assert isinstance(json.loads(first.output), list)

    def test_unknown_route(self):
        result = CliRunner().invoke(main, ["sample", PETSTORE, "GET", "/owners"])
        assert result.exit_code != 0
        assert "No mock available for GET /owners" in result.output

    def test_no_response_schema(self):
        result = CliRunner().invoke(main, ["sample", PETSTORE, "DELETE", "/pets/1"])
        assert result.exit_code != 0
        assert "declares no success response schema" in result.output


class TestCliScenarios:
    def test_scenarios(self):
        result = CliRunner().invoke(main, ["scenarios", PETSTORE, "GET", "/pets/1", "--count", "4", "--seed", "2"])
        assert result.exit_code == 0
        scenarios = json.loads(result.output)
        assert [s["type"] for s in scenarios] == ["realistic", "edge_case", "minimal", "varied"]


class TestCliCall:
    def test_state_file_keeps_records(self, tmp_path):
        state = tmp_path / "state.json"
        runner = CliRunner()
        created = runner.invoke(main, [
            "call", PETSTORE, "POST", "/pets",
            "-d", '{"name": "Rex", "price": 9.99}',
            "--state", str(state),
        ])
        assert created.exit_code == 0
        assert created.output.startswith("Status: 201")
        pet = _body(created.output)
        assert pet["name"] == "Rex"
        assert state.exists()

        listed = runner.invoke(main, ["call", PETSTORE, "GET", "/pets", "-q", "name=rex", "--state", str(state)])
        assert listed.output.startswith("Status: 200")
        assert _body(listed.output) == [pet]

    def test_without_state_collection_is_empty(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/pets"], env={"MOCK_STATE_FILE": None})
        assert result.exit_code == 0
        assert result.output.startswith("Status: 404")

    def test_validation_error(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "POST", "/pets", "-d", '{"price": 1}'])
        assert result.output.startswith("Status: 400")
        assert _body(result.output)["error"] == "Invalid request body"

    def test_delete_has_no_body(self, tmp_path):
        state = tmp_path / "state.json"
        state.write_text(json.dumps({"/pets/3": {"id": 3}, "/pets": [{"id": 3}]}))
        result = CliRunner().invoke(main, ["call", PETSTORE, "DELETE", "/pets/3", "--state", str(state)])
        assert result.output.strip() == "Status: 204"
        assert json.loads(state.read_text()) == {"/pets": []}

    def test_bad_json(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "POST", "/pets", "-d", "{oops"])
        assert result.exit_code != 0
        assert "not valid JSON" in result.output

    def test_bad_query(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/pets", "-q", "name"])
        assert result.exit_code != 0
        assert "expected key=value" in result.output

    def test_bad_environment(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/status"], env={"MOCK_MODE": "llm"})
        assert result.exit_code != 0
        assert "MOCK_MODE" in result.output

    @patch("api_mock_engine.cli.LlmAugmenter")
    def test_augment_flag(self, MockAugmenter):
        augmenter = MagicMock()
        augmenter.augment.return_value = {"id": 1, "name": "Fido", "price": 3.5}
        MockAugmenter.return_value = augmenter

        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/pets/8", "--augment", "--model", "gpt-4o"])
        assert result.exit_code == 0
        body = _body(result.output)
        assert body["name"] == "Fido"
        assert body["id"] == 8
        assert MockAugmenter.call_args[1]["model"] == "gpt-4o"
