"""
Keyword router choosing which persona owns the turn.

Scores each specialist with weighted regex groups over the latest user
message, then applies continuity rules so an active specialist is not
abandoned on weak or ambiguous signals.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Tuple

from agent.state import ConversationState
from models.schemas import AgentType, SPECIALISTS


RESET_PATTERN = re.compile(
    r"\b(start over|new topic|different issue|change topic|never ?mind|cancel|exit|reset)\b"
)

_BILLING = r"\b(bill|billing|pay|payment|cost|price)\b"

# (pattern, weight) groups per persona; stems end in \w* so inflections match
SCORING_RULES: Dict[AgentType, List[Tuple[Pattern[str], int]]] = {
    AgentType.FINANCIAL: [
        (re.compile(r"\b(bills?|billing|fees?|refunds?|subscriptions?|charges?|charged|payments?|costs?|prices?|expensive|lower|negotiate|cheaper)\b"), 3),
        (re.compile(r"\b(money|dollars?|pay|paid|owe)\b"), 1),
    ],
    AgentType.INSURANCE: [
        (re.compile(r"\b(insurance|claims?|premiums?|coverage|compensat\w*|polic(y|ies)|deductible)\b"), 3),
        (re.compile(r"\b(medical.*bill|flight.*delay\w*|flight.*cancel\w*|denied|appeal)\b"), 2),
    ],
    AgentType.BOOKING: [
        (re.compile(r"\b(appointments?|book\w*|schedul\w*|reserv\w*)\b"), 3),
        (re.compile(r"\b(doctor|dentist|salon|spa|restaurant|hotel|table|visit)\b"), 2),
    ],
    AgentType.ACCOUNT: [
        (re.compile(r"\b(cancel.*service|cancel.*account|close.*account|activat\w*|reactivat\w*|set ?up.*account)\b"), 3),
        (re.compile(r"\b(account|update.*info|change.*address|change.*email|equipment|return.*equipment)\b"), 1),
    ],
    AgentType.SUPPORT: [
        (re.compile(r"\b(wifi|wi-fi|connection|not.*connect\w*|can'?t.*connect\w*|slow.*internet)\b"), 3),
        (re.compile(r"\b(broken|not.*work\w*|isn'?t.*work\w*|won'?t.*work\w*|fix|tech.*issue|tech.*support|outage)\b"), 2),
        (re.compile(_BILLING), -2),
    ],
}


@dataclass
class RoutingDecision:
    agent: AgentType
    confidence: float
    reason: str
    scores: Dict[str, int] = field(default_factory=dict)


def score_message(text: str) -> Dict[AgentType, int]:
    """Weighted keyword score per specialist for one lowercased message."""
    return {
        agent: sum(weight for pattern, weight in rules if pattern.search(text))
        for agent, rules in SCORING_RULES.items()
    }


def route(state: ConversationState) -> RoutingDecision:
    """Pick the persona for this turn. Pure: reads state, never mutates it."""
    user_messages = state.user_messages()
    if not user_messages:
        return RoutingDecision(AgentType.ROUTER, 1.0, "no user messages")

    text = user_messages[-1].content.lower()
    if RESET_PATTERN.search(text):
        return RoutingDecision(AgentType.ROUTER, 1.0, "reset phrase")

    current = state.current_agent
    scores = score_message(text)
    named_scores = {agent.value: score for agent, score in scores.items()}

    best_agent, best_score = current, 0
    for agent in SPECIALISTS:
        score = scores[agent]
        if score > best_score or (score == best_score and score > 0 and agent == current):
            best_agent, best_score = agent, score

    confidence = min(best_score / 3, 1.0)
    is_specialist = current != AgentType.ROUTER

    if is_specialist and best_score == 0:
        return RoutingDecision(current, 0.8, "no signal, continuing", named_scores)
    if is_specialist and best_agent != current and confidence < 0.7:
        return RoutingDecision(current, 0.7, "weak signal for another persona", named_scores)
    if not is_specialist and best_score == 0:
        return RoutingDecision(AgentType.ROUTER, 0.8, "casual conversation", named_scores)
    if confidence < 0.3:
        return RoutingDecision(AgentType.ROUTER, max(confidence, 0.5), "low confidence", named_scores)
    if is_specialist and confidence < 0.5:
        return RoutingDecision(current, 0.7, "low confidence, continuing", named_scores)
    return RoutingDecision(best_agent, confidence, "keyword match", named_scores)
