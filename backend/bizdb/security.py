# backend/bizdb/security.py
"""
Actor context for the HTTP surface.

Authentication happens upstream (gateway / auth service). Requests arrive
with an already-verified company and actor id, which the core records on
every document and ledger entry without applying any permission policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status


@dataclass(frozen=True)
class ActorContext:
    company_id: str
    actor_id: str


def get_actor_context(
    company_id: Optional[str] = Header(None, alias="X-Company-Id"),
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> ActorContext:
    if not company_id or not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Company-Id and X-Actor-Id headers are required.",
        )
    return ActorContext(company_id=company_id, actor_id=actor_id)
