from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bizdb.apps.audit import services as audit_services
from bizdb.errors import InvalidStateError, InvalidTransitionError

from .registry import WORKFLOWS


def allowed_transitions(entity_type: str, from_state: str) -> List[str]:
    workflow = WORKFLOWS.get(entity_type) or {}
    return sorted(workflow.get("transitions", {}).get(from_state, {}).keys())


def apply_transition(
    db: Session,
    *,
    company_id: str,
    actor_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: str,
    to_state: str,
    before_obj: Any,
    after_obj: Any,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise InvalidTransitionError(
            f"No workflow registered for {entity_type}",
            detail={"entity_type": entity_type},
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_state, {})
    guards = allowed.get(to_state)

    if guards is None:
        raise InvalidTransitionError(
            f"Cannot transition from {from_state} to {to_state}",
            detail={
                "from": from_state,
                "to": to_state,
                "allowed": allowed_transitions(entity_type, from_state),
            },
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise InvalidStateError(
            f"Requirements not met for {from_state} -> {to_state}",
            detail={"failures": failures},
        )

    before_payload: Dict[str, Any] = {"status": from_state}
    after_payload: Dict[str, Any] = {"status": to_state}
    if isinstance(before_obj, dict):
        before_payload.update({k: v for k, v in before_obj.items() if k != "company_id"})
    if isinstance(after_obj, dict):
        after_payload.update({k: v for k, v in after_obj.items() if k != "company_id"})

    audit_services.log_event(
        db,
        company_id=company_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action="transition",
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )
