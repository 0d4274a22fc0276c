"""
Expert registry for runtime persona management.

Built-in experts are loaded once from a static JSON document and are
immutable.  Custom experts can be added and removed at runtime; they live in
memory only and disappear on restart.
"""

# Standard Library
import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional

# Local Modules
from .errors import ExpertNotFoundError, ExpertProtectedError, ValidationError
from .models import ExpertDefinition

logger = logging.getLogger("nio-server.experts")

COORDINATOR_ID = "nio"
DEFAULT_COORDINATOR_PROMPT = "You are nio, the core orchestration agent of the Breakthrough Lab."


def load_builtin_experts(path: Optional[Path] = None) -> List[ExpertDefinition]:
    """
    Read built-in expert definitions.

    The document is either an object keyed by expert id (the admin
    format) or a plain list of expert objects.

    Args:
        path: JSON file to read.  Defaults to the packaged ``data/experts.json``.

    Returns:
        Definitions in document order, all marked built-in

    Raises:
        OSError, ValueError: If the document cannot be read or decoded
    """
    if path is None:
        raw = resources.files("nio_server").joinpath("data/experts.json").read_text(
            encoding="utf-8"
        )
    else:
        raw = Path(path).read_text(encoding="utf-8")

    document: Any = json.loads(raw)
    entries = list(document.values()) if isinstance(document, dict) else document
    if not isinstance(entries, list):
        raise ValueError("experts document must be an object or a list")

    experts: List[ExpertDefinition] = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed expert entry: %r", entry)
            continue
        expert = ExpertDefinition.from_dict(entry, built_in=True)
        if not expert.id:
            logger.warning("Skipping expert entry without id: %r", entry)
            continue
        experts.append(expert)
    return experts


class ExpertRegistry:
    """Registry of expert personas keyed by id."""

    def __init__(self, experts: Optional[List[ExpertDefinition]] = None):
        """
        Initialize the registry.

        Args:
            experts: Initial (built-in) definitions, kept in the given order
        """
        self._experts: Dict[str, ExpertDefinition] = {}
        for expert in experts or []:
            self._experts[expert.id] = expert

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "ExpertRegistry":
        """
        Build a registry from the built-in experts document.

        A load failure degrades to an empty registry; routing can then still
        select ids, which resolve to not-found results at dispatch time.

        Args:
            path: Optional override for the experts document

        Returns:
            A populated (or empty) registry
        """
        try:
            experts = load_builtin_experts(path)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load built-in experts: %s; starting empty", exc)
            return cls()

        logger.info(
            "Loaded %d built-in experts: %s",
            len(experts),
            ", ".join(e.id for e in experts),
        )
        return cls(experts)

    def get(self, expert_id: str) -> Optional[ExpertDefinition]:
        """
        Retrieve an expert by id.

        Returns:
            The definition if found, None otherwise
        """
        return self._experts.get(expert_id)

    def list(self) -> List[ExpertDefinition]:
        """
        Get all registered experts.

        Returns:
            Built-ins in load order followed by custom experts in insertion order
        """
        return list(self._experts.values())

    def __len__(self) -> int:
        return len(self._experts)

    def __contains__(self, expert_id: object) -> bool:
        return expert_id in self._experts

    def add(self, definition: ExpertDefinition) -> ExpertDefinition:
        """
        Register a custom expert.

        Args:
            definition: The new expert; ``is_built_in`` is ignored

        Returns:
            The stored definition (always non-built-in)

        Raises:
            ValidationError: If a required field is blank or the id is taken
        """
        missing = [
            label
            for label, value in (
                ("id", definition.id),
                ("name", definition.display_name),
                ("role", definition.role),
                ("systemPrompt", definition.system_prompt),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ValidationError(
                "Custom expert data is incomplete",
                details=[f"{field} must not be empty" for field in missing],
            )
        expert_id = definition.id.strip()
        if expert_id in self._experts:
            raise ValidationError(f"Expert '{expert_id}' already exists")

        stored = ExpertDefinition(
            id=expert_id,
            display_name=definition.display_name.strip(),
            role=definition.role.strip(),
            system_prompt=definition.system_prompt,
            expertise_areas=tuple(definition.expertise_areas),
            trigger_keywords=tuple(definition.trigger_keywords),
            is_built_in=False,
        )
        self._experts[stored.id] = stored
        logger.info("Registered custom expert '%s' (%s)", stored.id, stored.role)
        return stored

    def remove(self, expert_id: str) -> None:
        """
        Remove a custom expert.

        Raises:
            ExpertNotFoundError: If no expert has this id
            ExpertProtectedError: If the expert is built-in
        """
        expert = self._experts.get(expert_id)
        if expert is None:
            raise ExpertNotFoundError(f"Expert '{expert_id}' does not exist")
        if expert.is_built_in:
            raise ExpertProtectedError(f"Built-in expert '{expert_id}' cannot be removed")

        del self._experts[expert_id]
        logger.info("Removed custom expert '%s'", expert_id)

    def coordinator_prompt(self, default: str) -> str:
        """
        System prompt of the coordinator persona, or ``default`` when absent.
        """
        coordinator = self._experts.get(COORDINATOR_ID)
        if coordinator and coordinator.system_prompt.strip():
            return coordinator.system_prompt
        return default
