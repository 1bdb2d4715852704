"""Task text classification used by the planner's shortcut and heuristic paths.

The planner only talks to the IntentClassifier protocol, so the keyword
implementation here can be replaced by a model-backed one.
"""

import re
from enum import Enum
from typing import Protocol


class Intent(str, Enum):
    """Kinds of work the heuristic decomposer knows how to staff."""

    RESEARCH = "research"
    WRITING = "writing"
    IMAGE = "image"
    CODE = "code"


class IntentClassifier(Protocol):
    def is_multi_step(self, text: str) -> bool: ...

    def detect_intents(self, text: str) -> set[Intent]: ...

    def score_roles(self, text: str) -> dict[str, int]: ...


MULTI_STEP_CONNECTIVES = (
    " and ",
    " then ",
    ", then ",
    " after that",
    " followed by",
    " also ",
    " plus ",
    " additionally ",
    " as well as",
)

ACTION_VERBS = re.compile(
    r"\b(create|write|generate|make|build|post|publish|send|research|analyze)\b"
)

# Up to three filler words may sit between the verb and its object ("a hero image")
_FILLER = r"\s+(?:[\w'-]+\s+){0,3}?"

INTENT_PATTERNS: dict[Intent, re.Pattern] = {
    Intent.RESEARCH: re.compile(r"\b(research|investigate|analy[sz]e|find|gather)"),
    Intent.WRITING: re.compile(
        rf"\b(write|create|draft|compose){_FILLER}(blog|article|post|content|copy)"
    ),
    Intent.IMAGE: re.compile(
        rf"\b(create|generate|make|design){_FILLER}(image|graphic|visual|illustration|logo|banner)"
    ),
    Intent.CODE: re.compile(r"\b(code|develop|implement|build|fix)"),
}

ROLE_KEYWORDS: dict[str, list[str]] = {
    "content-writer": ["write", "article", "blog", "content", "copy", "post", "email"],
    "image-generator": ["image", "photo", "picture", "graphic", "design", "visual"],
    "researcher": ["research", "find", "search", "analyze", "investigate", "report"],
    "qa-tester": ["test", "qa", "quality", "bug", "verify"],
    "forge": ["code", "develop", "build", "implement", "fix", "feature", "api"],
}


def task_text(title: str, description: str | None) -> str:
    """Normalized text the classifier works on."""
    return f"{title} {description or ''}".lower()


class KeywordIntentClassifier:
    """Regex and keyword-table classifier."""

    def __init__(
        self,
        role_keywords: dict[str, list[str]] | None = None,
        intent_patterns: dict[Intent, re.Pattern] | None = None,
    ) -> None:
        self.role_keywords = role_keywords if role_keywords is not None else ROLE_KEYWORDS
        self.intent_patterns = intent_patterns if intent_patterns is not None else INTENT_PATTERNS

    def is_multi_step(self, text: str) -> bool:
        """More than one action verb, or any multi-step connective."""
        text = text.lower()
        if len(ACTION_VERBS.findall(text)) > 1:
            return True
        return any(connective in text for connective in MULTI_STEP_CONNECTIVES)

    def detect_intents(self, text: str) -> set[Intent]:
        text = text.lower()
        return {intent for intent, pattern in self.intent_patterns.items() if pattern.search(text)}

    def score_roles(self, text: str) -> dict[str, int]:
        """Count keyword hits per role, in keyword-table order."""
        text = text.lower()
        return {
            role: sum(1 for word in words if word in text)
            for role, words in self.role_keywords.items()
        }
