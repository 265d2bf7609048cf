"""
Static section plans per report type.

A plan is the ordered list of sections a report type is made of, each
flagged as independent (can be written with no other section as context)
or dependent (written after the independent ones, seeing their output).

Plans are loaded once from JSON and never mutated.

Public API
----------
SectionPlanRegistry.get_plan(document_type) -> SectionPlan
load_default_registry()                      -> SectionPlanRegistry (cached)
"""
from __future__ import annotations

import dataclasses
import functools
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.config import settings
from app.services.exceptions import UnknownDocumentType

logger = logging.getLogger(__name__)

DEFAULT_PLANS_PATH = Path(__file__).resolve().parent.parent / "report_sections.json"


@dataclasses.dataclass(frozen=True)
class SectionDescriptor:
    key: str
    display_name: str
    order: int
    independent: bool


@dataclasses.dataclass(frozen=True)
class SectionPlan:
    """Ordered, validated set of sections for one report type."""

    document_type: str
    sections: Tuple[SectionDescriptor, ...]

    def __post_init__(self) -> None:
        if not self.sections:
            raise ValueError(f"Plan {self.document_type!r} has no sections")

        ordered = tuple(sorted(self.sections, key=lambda s: s.order))
        object.__setattr__(self, "sections", ordered)

        keys = [s.key for s in ordered]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Plan {self.document_type!r} has duplicate section keys")

        orders = [s.order for s in ordered]
        if orders != list(range(1, len(ordered) + 1)):
            raise ValueError(
                f"Plan {self.document_type!r} section orders must be 1..{len(ordered)}, "
                f"got {orders}"
            )

    def __len__(self) -> int:
        return len(self.sections)

    def get(self, key: str) -> Optional[SectionDescriptor]:
        for section in self.sections:
            if section.key == key:
                return section
        return None

    def independent_sections(self) -> List[SectionDescriptor]:
        return [s for s in self.sections if s.independent]

    def dependent_sections(self) -> List[SectionDescriptor]:
        """Dependent sections in ascending order (the generation order)."""
        return [s for s in self.sections if not s.independent]

    def structure_outline(self) -> str:
        """Numbered outline of the report, used by the single-prompt strategy."""
        return "\n".join(f"{s.order}. {s.display_name.upper()}" for s in self.sections)

    @classmethod
    def from_config(cls, document_type: str, config: Mapping[str, Any]) -> "SectionPlan":
        """Build a plan from one entry of the JSON configuration."""
        try:
            sections = tuple(
                SectionDescriptor(
                    key=str(raw["key"]),
                    display_name=str(raw.get("name") or raw["key"]),
                    order=int(raw["order"]),
                    independent=bool(raw.get("independent", False)),
                )
                for raw in config["sections"]
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed section plan for {document_type!r}: {exc}") from exc
        return cls(document_type=document_type, sections=sections)


class SectionPlanRegistry:
    """Read-only lookup of SectionPlans by report type."""

    def __init__(self, plans: Mapping[str, SectionPlan]) -> None:
        self._plans: Dict[str, SectionPlan] = dict(plans)

    def get_plan(self, document_type: str) -> SectionPlan:
        plan = self._plans.get(document_type)
        if plan is None:
            raise UnknownDocumentType(document_type)
        return plan

    def document_types(self) -> List[str]:
        return sorted(self._plans)

    def __contains__(self, document_type: object) -> bool:
        return document_type in self._plans

    @classmethod
    def from_json(cls, path: Path) -> "SectionPlanRegistry":
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)

        plans = {
            document_type: SectionPlan.from_config(document_type, config)
            for document_type, config in raw.items()
        }
        logger.info("Loaded %d section plan(s) from %s: %s", len(plans), path, sorted(plans))
        return cls(plans)


@functools.lru_cache(maxsize=1)
def load_default_registry() -> SectionPlanRegistry:
    """Load the configured (or packaged) plan file once per process."""
    path = Path(settings.REPORT_SECTIONS_PATH) if settings.REPORT_SECTIONS_PATH else DEFAULT_PLANS_PATH
    return SectionPlanRegistry.from_json(path)
