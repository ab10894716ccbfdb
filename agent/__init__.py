"""Agent orchestration module."""

from agent.orchestrator import Orchestrator, StateMachine, EventChannel, END, TOOLS
from agent.router import route, RoutingDecision
from agent.state import ConversationState, build_initial_state

__all__ = [
    "Orchestrator", "StateMachine", "EventChannel", "END", "TOOLS",
    "route", "RoutingDecision",
    "ConversationState", "build_initial_state"
]
