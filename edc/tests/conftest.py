"""
Shared test fixtures for the clinical EDC test suite.

Provides the bundled example forms and MockLLM, a stand-in chat model
that replays canned replies so extraction can be tested offline.
"""

import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from edc.core.schema import FormSpecification, load_form_file

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"


class MockLLM:
    """Mock chat model returning pre-configured replies in order.

    Dict replies are serialized to JSON; strings are returned as-is;
    exceptions are raised from ``ainvoke``. When the replies run out the
    last one is repeated.
    """

    def __init__(self, replies: list[Any] | None = None):
        self.replies = list(replies or [{}])
        self.calls: list[list] = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(list(messages))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        result = MagicMock()
        result.content = json.dumps(reply) if isinstance(reply, dict) else reply
        return result

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture
def mock_llm_class():
    return MockLLM


@pytest.fixture
def vital_signs_form() -> FormSpecification:
    """Load the vital_signs example form."""
    return load_form_file(SCHEMAS_DIR / "vital_signs.yaml")


@pytest.fixture
def adverse_events_form() -> FormSpecification:
    """Load the adverse_events example form."""
    return load_form_file(SCHEMAS_DIR / "adverse_events.yaml")
