"""tests/test_experts.py

Unit tests for the expert registry (nio_server/experts.py).
Tests built-in loading, custom expert lifecycle and protection rules.
"""

from __future__ import annotations

# Standard Library
import json
from pathlib import Path

# Third-Party Libraries
import pytest

# Local Modules
from nio_server.errors import ExpertNotFoundError, ExpertProtectedError, ValidationError
from nio_server.experts import COORDINATOR_ID, ExpertRegistry, load_builtin_experts
from nio_server.models import ExpertDefinition


def _custom(expert_id: str = "legal-advisor", **overrides: str) -> ExpertDefinition:
    fields = {
        "id": expert_id,
        "display_name": "Legal Advisor",
        "role": "lawyer",
        "system_prompt": "You are a careful lawyer.",
    }
    fields.update(overrides)
    return ExpertDefinition(**fields, expertise_areas=("contracts",))


class TestBuiltinLoading:
    """Tests for load_builtin_experts and ExpertRegistry.from_file."""

    def test_packaged_experts(self) -> None:
        experts = load_builtin_experts()
        ids = [e.id for e in experts]

        assert ids[0] == COORDINATOR_ID
        for expert_id in ("product-manager", "tech-architect", "ux-designer", "data-analyst", "qa-engineer"):
            assert expert_id in ids
        assert all(e.is_built_in for e in experts)
        assert all(e.system_prompt for e in experts)

    def test_keyed_document(self, tmp_path: Path) -> None:
        path = tmp_path / "experts.json"
        path.write_text(
            json.dumps(
                {
                    "a": {"id": "a", "name": "A", "role": "r", "systemPrompt": "p", "expertiseAreas": ["x"]},
                    "broken": "not an object",
                    "b": {"name": "no id"},
                }
            ),
            encoding="utf-8",
        )

        experts = load_builtin_experts(path)

        assert [e.id for e in experts] == ["a"]
        assert experts[0].display_name == "A"
        assert experts[0].expertise_areas == ("x",)

    def test_list_document(self, tmp_path: Path) -> None:
        path = tmp_path / "experts.json"
        path.write_text(json.dumps([{"id": "a", "name": "A"}, {"id": "b", "name": "B"}]), encoding="utf-8")

        assert [e.id for e in load_builtin_experts(path)] == ["a", "b"]

    def test_missing_file_gives_empty_registry(self, tmp_path: Path) -> None:
        registry = ExpertRegistry.from_file(tmp_path / "missing.json")
        assert len(registry) == 0

    def test_corrupt_file_gives_empty_registry(self, tmp_path: Path) -> None:
        path = tmp_path / "experts.json"
        path.write_text("{oops", encoding="utf-8")

        assert len(ExpertRegistry.from_file(path)) == 0


class TestExpertRegistry:
    """Test suite for ExpertRegistry."""

    def test_get_and_contains(self, registry: ExpertRegistry) -> None:
        expert = registry.get("tech-architect")
        assert expert is not None
        assert expert.is_built_in
        assert "tech-architect" in registry
        assert registry.get("ghost") is None
        assert "ghost" not in registry

    def test_add_then_get(self, registry: ExpertRegistry) -> None:
        """Test that a custom expert is retrievable and listed after built-ins."""
        stored = registry.add(_custom())

        assert stored.is_built_in is False
        assert registry.get("legal-advisor") == stored
        assert registry.list()[-1].id == "legal-advisor"
        assert registry.get("legal-advisor").to_dict()["custom"] is True

    def test_add_strips_identifiers(self, registry: ExpertRegistry) -> None:
        stored = registry.add(_custom("  spaced  ", display_name=" Spaced "))

        assert stored.id == "spaced"
        assert stored.display_name == "Spaced"

    def test_built_in_flag_is_ignored_on_add(self, registry: ExpertRegistry) -> None:
        definition = ExpertDefinition(
            id="sneaky", display_name="S", role="r", system_prompt="p", is_built_in=True
        )

        assert registry.add(definition).is_built_in is False

    def test_add_then_remove(self, registry: ExpertRegistry) -> None:
        registry.add(_custom())

        registry.remove("legal-advisor")

        assert registry.get("legal-advisor") is None

    def test_incomplete_definition_rejected(self, registry: ExpertRegistry) -> None:
        before = len(registry)

        with pytest.raises(ValidationError) as excinfo:
            registry.add(_custom(role="  ", system_prompt=""))

        assert excinfo.value.details == [
            "role must not be empty",
            "systemPrompt must not be empty",
        ]
        assert len(registry) == before

    @pytest.mark.parametrize("expert_id", ["tech-architect", " tech-architect "])
    def test_duplicate_id_rejected(self, registry: ExpertRegistry, expert_id: str) -> None:
        with pytest.raises(ValidationError, match="already exists"):
            registry.add(_custom(expert_id))

    def test_built_in_cannot_be_removed(self, registry: ExpertRegistry) -> None:
        with pytest.raises(ExpertProtectedError):
            registry.remove("tech-architect")
        assert "tech-architect" in registry

    def test_remove_unknown(self, registry: ExpertRegistry) -> None:
        with pytest.raises(ExpertNotFoundError):
            registry.remove("ghost")

    def test_coordinator_prompt(self, registry: ExpertRegistry) -> None:
        assert registry.coordinator_prompt("default") == "You are the test coordinator."
        assert ExpertRegistry().coordinator_prompt("default") == "default"


def test_summary_omits_system_prompt() -> None:
    summary = _custom().summary()
    assert "systemPrompt" not in summary
    assert summary["name"] == "Legal Advisor"
    assert summary["expertiseAreas"] == ["contracts"]
