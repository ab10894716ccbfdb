"""
Structured call context accepted by the start_call tool.
"""

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional

from models.schemas import CamelModel


class _StrictModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class CallGoal(_StrictModel):
    summary: Optional[str] = None


class CallContact(_StrictModel):
    type: str = Field(..., description="business, person, government, ...")
    name: str
    phone_number: Optional[str] = None
    alt_channels: Optional[List[str]] = None


class CallIssue(_StrictModel):
    category: Optional[str] = None
    summary: Optional[str] = None
    details: Optional[str] = None
    urgency: Optional[str] = None
    desired_outcome: Optional[str] = None


class CallAvailability(_StrictModel):
    timezone: Optional[str] = None
    preferred_windows: Optional[List[str]] = None


class CallCaller(_StrictModel):
    name: str
    callback: Optional[str] = None
    identifiers: Optional[List[str]] = None
    org: Optional[str] = None
    employer: Optional[str] = None


class CallFollowUp(_StrictModel):
    next_steps: Optional[List[str]] = None
    notify: Optional[List[str]] = None


class CallWork(_StrictModel):
    org: Optional[str] = None


class CallOpeners(_StrictModel):
    personal: Optional[str] = None
    work: Optional[str] = None
    general: Optional[str] = None


class StartCallContext(_StrictModel):
    """Everything the voice agent needs to place and steer the call."""
    call_purpose: Optional[str] = None
    call_type: Optional[Literal["customer_service", "personal", "work", "general"]] = None
    goal: Optional[CallGoal] = None
    objective: Optional[str] = None
    contact: CallContact
    issue: Optional[CallIssue] = None
    constraints: Optional[List[str]] = None
    verification: Optional[List[str]] = None
    availability: Optional[CallAvailability] = None
    caller: CallCaller
    follow_up: Optional[CallFollowUp] = None
    notes_for_agent: Optional[str] = None
    work: Optional[CallWork] = None
    openers: Optional[CallOpeners] = None


class StartCallArguments(_StrictModel):
    """Validated payload forwarded to the call service."""
    issue_id: str
    auth_token: str
    context: StartCallContext


class StartCallToolArguments(_StrictModel):
    """Shape advertised to the model; session ids are filled in by the core."""
    issue_id: Optional[str] = None
    auth_token: Optional[str] = None
    context: StartCallContext
