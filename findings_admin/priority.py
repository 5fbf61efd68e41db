"""
Priority Resolution
===================

Deterministic final priority for a finding. No I/O, never raises.

Rules:
- An already-final priority is returned as-is.
- With a calculated priority, the calculated value wins unless the engineer
  explicitly overrode it: a different selected priority AND a non-blank
  override reason. An override without a reason is ignored.
- Without a calculated priority (legacy findings), use the legacy `priority`
  field, else PLAN_MONITOR. The selected priority is never used as a default.
"""

from typing import Any, Mapping, Optional

from .schemas import EffectiveDimensions, PriorityLabel

DEFAULT_PRIORITY = PriorityLabel.PLAN_MONITOR.value


def _present(value: Any) -> bool:
    return value is not None and str(value) != ""


def _has_reason(override_reason: Any) -> bool:
    return override_reason is not None and str(override_reason).strip() != ""


def resolve_final_priority(
    calculated: Optional[str] = None,
    selected: Optional[str] = None,
    already_final: Optional[str] = None,
    override_reason: Optional[str] = None,
    legacy_priority: Optional[str] = None,
) -> str:
    if _present(already_final):
        return already_final

    if _present(calculated):
        if _present(selected) and selected != calculated and _has_reason(override_reason):
            return selected
        return calculated

    if _present(legacy_priority):
        return legacy_priority
    return DEFAULT_PRIORITY


def is_override_valid(
    calculated: Optional[str] = None,
    selected: Optional[str] = None,
    override_reason: Optional[str] = None,
) -> bool:
    """True when no override is attempted, or the override carries a reason."""
    if not _present(calculated) or not _present(selected) or selected == calculated:
        return True
    return _has_reason(override_reason)


def resolve_priority_final(finding: Mapping[str, Any]) -> str:
    """
    Resolve from a finding record using its stored field names.

    `priority_selected` falls back to `priority` when absent.
    """
    selected = finding.get("priority_selected")
    if selected is None:
        selected = finding.get("priority")
    return resolve_final_priority(
        calculated=finding.get("priority_calculated"),
        selected=selected,
        already_final=finding.get("priority_final"),
        override_reason=finding.get("override_reason"),
        legacy_priority=finding.get("priority"),
    )


def is_finding_override_valid(finding: Mapping[str, Any]) -> bool:
    selected = finding.get("priority_selected")
    if selected is None:
        selected = finding.get("priority")
    return is_override_valid(
        calculated=finding.get("priority_calculated"),
        selected=selected,
        override_reason=finding.get("override_reason"),
    )


def resolve_finding_priority(
    finding: Mapping[str, Any],
    effective: Optional[EffectiveDimensions] = None,
) -> str:
    """
    Final priority for a finding, taking the calculated priority from its
    effective dimensions when the finding itself carries none.
    """
    if effective is not None and not _present(finding.get("priority_calculated")):
        calculated = effective.dimensions.priority
        if _present(calculated):
            finding = dict(finding, priority_calculated=calculated)
    return resolve_priority_final(finding)
