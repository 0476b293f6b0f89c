"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from onboarding_core.config import Settings
from onboarding_core.engine.context import EngineContext
from onboarding_core.engine.event_log import EventLog
from onboarding_core.engine.repository import TaskRepository


class ScriptedDecisionMaker:
    """Returns queued decisions in order and remembers every prompt it saw."""

    def __init__(self, decisions: list[object]) -> None:
        self._decisions = list(decisions)
        self.prompts: list[str] = []

    def decide(self, prompt: str) -> object:
        self.prompts.append(prompt)
        if not self._decisions:
            raise AssertionError("Decision script exhausted")
        decision = self._decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return decision

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture()
def scripted():
    """Factory for scripted decision makers."""

    return ScriptedDecisionMaker


@pytest.fixture()
def engine_context(tmp_path: Path) -> Iterator[EngineContext]:
    db_path = tmp_path / "engine.db"
    event_log = EventLog(db_path)
    tasks = TaskRepository(db_path)
    event_log.init_schema()
    yield EngineContext(event_log=event_log, tasks=tasks, settings=Settings(db_path=db_path))
    event_log.close()
    tasks.close()


_FAKE_AGENT = """
import argparse
import json
import sys
import time
from pathlib import Path

parser = argparse.ArgumentParser()
parser.add_argument("--prompt-file", required=True)
parser.add_argument("--ask-for", default=None)
parser.add_argument("--exit-code", type=int, default=0)
parser.add_argument("--sleep", type=float, default=0.0)
args, _ = parser.parse_known_args()
time.sleep(args.sleep)
prompt = Path(args.prompt_file).read_text("utf-8")
if args.exit_code:
    print("agent crashed", file=sys.stderr)
    sys.exit(args.exit_code)
if args.ask_for and f'"{args.ask_for}":' not in prompt:
    decision = {
        "thought": "A required field is missing",
        "action": "needs_user_input",
        "details": {"needed_fields": [args.ask_for]},
    }
else:
    decision = {
        "thought": "Answering from the prompt",
        "action": "answer",
        "details": {
            "operation": "onboarding_reviewed",
            "data": {"saw_acme": "Acme" in prompt},
            "confidence": 0.7,
        },
    }
print(json.dumps(decision))
""".strip()


@pytest.fixture()
def fake_agent_command(tmp_path: Path) -> Callable[..., str]:
    """Command template for a local agent script that prints one decision."""

    script = tmp_path / "fake_agent.py"
    script.write_text(_FAKE_AGENT, "utf-8")

    def _command(*extra: str) -> str:
        return " ".join([sys.executable, str(script), "--prompt-file", "{prompt_file}", *extra])

    return _command
