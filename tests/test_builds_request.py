"""Tests for builds/request.py module."""

import json

import pytest

from codebuild_bridge.builds.request import (
    OVERRIDES_FIELD,
    PreconditionError,
    TemplateError,
    build_request,
    dedupe_overrides,
    find_conflicts,
    load_template,
    merge_documents,
    merge_request_document,
    parse_extra_options,
)
from codebuild_bridge.types import EnvOverride

SOURCE = {"source_version": "v1", "source_bucket": "bucket", "source_key": "src.zip"}


def _o(name: str, value: str) -> EnvOverride:
    return EnvOverride(name=name, value=value)


class TestDedupeOverrides:
    """Tests for dedupe_overrides function."""

    def test_identical_pairs_collapse(self):
        """Two identical FOO=bar overrides become one."""
        assert dedupe_overrides([_o("FOO", "bar"), _o("FOO", "bar")]) == [_o("FOO", "bar")]

    @pytest.mark.parametrize(
        "pairs",
        [
            [],
            [("A", "1")],
            [("A", "1"), ("B", "2"), ("A", "1"), ("C", "3"), ("B", "2")],
            [("A", "1"), ("A", "2"), ("A", "1"), ("A", "2")],
            [("Z", ""), ("Z", ""), ("Y", "x=y"), ("Z", "")],
        ],
    )
    def test_count_equals_distinct_pairs_in_first_order(self, pairs):
        """Output is the distinct (name, value) pairs in first-occurrence order."""
        result = dedupe_overrides([_o(n, v) for n, v in pairs])

        expected = list(dict.fromkeys(pairs))
        assert [(o.name, o.value) for o in result] == expected

    def test_keep_preserves_conflicts(self, caplog):
        """With keep, conflicting values are submitted and logged."""
        with caplog.at_level("WARNING"):
            result = dedupe_overrides([_o("A", "1"), _o("A", "2")], on_conflict="keep")

        assert result == [_o("A", "1"), _o("A", "2")]
        assert "A" in caplog.text

    def test_last_wins_keeps_first_position(self):
        overrides = [_o("A", "1"), _o("B", "x"), _o("A", "2"), _o("C", "y")]
        result = dedupe_overrides(overrides, on_conflict="last-wins")
        assert result == [_o("A", "2"), _o("B", "x"), _o("C", "y")]

    def test_type_is_part_of_identity(self):
        """Same name and value with a different type is not a duplicate."""
        plain = EnvOverride("DB_PASSWORD", "/ci/db", "PLAINTEXT")
        stored = EnvOverride("DB_PASSWORD", "/ci/db", "PARAMETER_STORE")

        assert dedupe_overrides([plain, stored, plain]) == [plain, stored]
        assert dedupe_overrides([plain, stored], on_conflict="last-wins") == [stored]
        assert find_conflicts([plain, stored]) == ["DB_PASSWORD"]

    def test_find_conflicts(self):
        overrides = [_o("A", "1"), _o("A", "1"), _o("B", "1"), _o("B", "2")]
        assert find_conflicts(overrides) == ["B"]


class TestMergeDocuments:
    """Tests for merge_documents and merge_request_document."""

    def test_lists_concatenate(self):
        merged = merge_documents({"tags": [1]}, {"tags": [2], "x": "y"})
        assert merged == {"tags": [1, 2], "x": "y"}

    def test_scalar_replaced(self):
        assert merge_documents({"a": 1}, {"a": 2}) == {"a": 2}

    def test_inputs_not_mutated(self):
        base = {"tags": [1]}
        merge_documents(base, {"tags": [2]})
        assert base == {"tags": [1]}

    def test_template_overrides_appended(self):
        """Template overrides follow the collected ones."""
        document = merge_request_document(
            [_o("A", "1")],
            None,
            {OVERRIDES_FIELD: [{"name": "B", "value": "2"}]},
        )
        assert [e["name"] for e in document[OVERRIDES_FIELD]] == ["A", "B"]


class TestBuildRequest:
    """Tests for build_request function."""

    def test_duplicate_overrides_submitted_once(self):
        """A request built from FOO=bar twice carries a single FOO=bar."""
        request = build_request([_o("FOO", "bar"), _o("FOO", "bar")], **SOURCE)

        entries = request.to_api_kwargs()["environmentVariablesOverride"]
        assert entries == [{"name": "FOO", "value": "bar", "type": "PLAINTEXT"}]

    def test_duplicates_across_template_removed(self):
        template = {OVERRIDES_FIELD: [{"name": "FOO", "value": "bar"}]}
        request = build_request([_o("FOO", "bar")], template, **SOURCE)
        assert request.overrides == (_o("FOO", "bar"),)

    def test_source_fields_set(self):
        template = {"sourceVersion": "stale", "buildspecOverride": "ci.yml"}
        request = build_request([], template, **SOURCE)
        kwargs = request.to_api_kwargs()

        assert kwargs["sourceVersion"] == "v1"
        assert kwargs["sourceTypeOverride"] == "S3"
        assert kwargs["sourceLocationOverride"] == "bucket/src.zip"
        assert kwargs["buildspecOverride"] == "ci.yml"

    def test_configured_project_wins_over_template(self):
        request = build_request([], {"projectName": "tpl"}, project_name="cfg", **SOURCE)
        assert request.to_api_kwargs()["projectName"] == "cfg"

    def test_template_project_used_when_unconfigured(self):
        request = build_request([], {"projectName": "tpl"}, **SOURCE)
        assert request.to_api_kwargs()["projectName"] == "tpl"

    def test_missing_source_lists_every_item(self):
        with pytest.raises(PreconditionError) as exc_info:
            build_request([], source_version=None, source_bucket="", source_key="k")

        assert exc_info.value.missing == ["source_version", "source_bucket"]
        assert exc_info.value.code == "precondition_error"
        assert "source_version, source_bucket" in str(exc_info.value)

    def test_malformed_template_overrides(self):
        with pytest.raises(TemplateError):
            build_request([], {OVERRIDES_FIELD: "FOO=bar"}, **SOURCE)
        with pytest.raises(TemplateError):
            build_request([], {OVERRIDES_FIELD: [{"value": "x"}]}, **SOURCE)


class TestParseExtraOptions:
    """Tests for parse_extra_options function."""

    def test_kebab_to_camel_with_json_value(self):
        fields = parse_extra_options(["--timeout-in-minutes-override", "30"])
        assert fields == {"timeoutInMinutesOverride": 30}

    def test_inline_and_string_values(self):
        fields = parse_extra_options(["--image-override=aws/codebuild:7", "--debug-session-enabled"])
        assert fields == {"imageOverride": "aws/codebuild:7", "debugSessionEnabled": True}

    def test_json_structure(self):
        fields = parse_extra_options(["--tags", '[{"key": "a", "value": "b"}]'])
        assert fields == {"tags": [{"key": "a", "value": "b"}]}

    def test_empty(self):
        assert parse_extra_options([]) == {}

    def test_stray_value_rejected(self):
        with pytest.raises(TemplateError):
            parse_extra_options(["value"])


class TestLoadTemplate:
    """Tests for load_template function."""

    def test_json(self, tmp_path):
        path = tmp_path / "request.json"
        path.write_text(json.dumps({"projectName": "demo"}))
        assert load_template(path) == {"projectName": "demo"}

    def test_yaml(self, tmp_path):
        path = tmp_path / "request.yaml"
        path.write_text("projectName: demo\nenvironmentVariablesOverride:\n  - name: A\n    value: '1'\n")
        template = load_template(path)
        assert template["environmentVariablesOverride"] == [{"name": "A", "value": "1"}]

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_template(path) == {}

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(TemplateError, match="mapping"):
            load_template(path)

    def test_unreadable(self, tmp_path):
        with pytest.raises(TemplateError):
            load_template(tmp_path / "missing.json")
