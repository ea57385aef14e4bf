"""
Capability Registry — catalog of prohibited or flagged capabilities.

Injected into the extractor and the delta queue so that tests can swap the
catalog without touching module state. Validation errors propagate: an
unknown or mis-graded capability reference means upstream extraction is
producing bad data.
"""

from typing import Dict, Iterable, List, Optional

from lore_pipeline.errors import CapabilityValidationError
from lore_pipeline.models.lexicon import Capability, CapabilityRef


DEFAULT_CAPABILITIES: List[Capability] = [
    Capability(
        capability_id="capability.spectrum-bloom-array",
        label="Spectrum Bloom Flux Array",
        severity="critical",
        rationale=(
            "Legendary device claims simultaneous resonance across every band. "
            "Violates Resonance Charter safeguards."
        ),
    ),
    Capability(
        capability_id="capability.temporal-retcon",
        label="Temporal Retcon Protocol",
        severity="high",
        rationale=(
            "Time rewriting rituals contradict the rules framework and "
            "Tempered Accord governance."
        ),
    ),
    Capability(
        capability_id="capability.mass-mind-control",
        label="Mass Mind Control",
        severity="critical",
        rationale="Explicitly barred by the Prohibited Capabilities List.",
    ),
    Capability(
        capability_id="capability.spectrumless-manifest",
        label="Spectrumless Manifestation",
        severity="critical",
        rationale="Spectrumless claims are moderator escalations under cosmology safety hooks.",
    ),
]


class CapabilityRegistry:
    """Lookup and validation over a fixed capability catalog."""

    def __init__(self, capabilities: Optional[Iterable[Capability]] = None):
        source = DEFAULT_CAPABILITIES if capabilities is None else capabilities
        self._catalog: Dict[str, Capability] = {}
        for capability in source:
            if isinstance(capability, dict):
                capability = Capability.model_validate(capability)
            self._catalog[capability.capability_id] = capability.model_copy()

    def list_capabilities(self) -> List[Capability]:
        return [c.model_copy() for c in self._catalog.values()]

    def get(self, capability_id: str) -> Optional[Capability]:
        capability = self._catalog.get(capability_id)
        return capability.model_copy() if capability else None

    def normalize_ref(self, ref: CapabilityRef) -> CapabilityRef:
        """Resolve a reference against the catalog, filling label and rationale."""
        if isinstance(ref, dict):
            if not isinstance(ref.get("capability_id"), str):
                raise CapabilityValidationError("invalid_capability_reference")
            ref = CapabilityRef.model_validate(ref)

        capability = self._catalog.get(ref.capability_id)
        if capability is None:
            raise CapabilityValidationError(
                "unknown_capability_reference",
                capability_id=ref.capability_id,
            )

        severity = ref.severity or capability.severity
        if severity != capability.severity:
            raise CapabilityValidationError(
                "capability_severity_mismatch",
                capability_id=ref.capability_id,
                expected_severity=capability.severity,
                provided_severity=severity,
            )

        return CapabilityRef(
            capability_id=capability.capability_id,
            severity=capability.severity,
            label=capability.label,
            rationale=capability.rationale,
            source=ref.source,
        )

    def validate_refs(self, refs: Iterable[CapabilityRef]) -> List[CapabilityRef]:
        """Normalize every reference and drop duplicates by capability id."""
        unique: Dict[str, CapabilityRef] = {}
        for ref in refs or []:
            normalized = self.normalize_ref(ref)
            unique[normalized.capability_id] = normalized
        return list(unique.values())
