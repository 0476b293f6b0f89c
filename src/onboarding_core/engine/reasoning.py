"""Bounded ReAct loop: decide, act, observe, repeat.

Each iteration asks the agent's decision maker for one decision, validates
it, and either runs a tool (feeding the observation back into the next
prompt) or terminates. Every run ends in exactly one of three outcomes:
``completed``, ``needs_input`` or ``error``. The loop is bounded by
``max_iterations`` and cut short by circular-reasoning detection.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

from onboarding_core.engine.context import DecisionMaker, ToolRegistry
from onboarding_core.engine.decisions import (
    Answer,
    Continue,
    Decision,
    Help,
    NeedsUserInput,
    ToolCall,
    parse_decision,
)
from onboarding_core.engine.errors import DecisionFormatError, ToolError
from onboarding_core.engine.failure_classifier import (
    ToolFailureClassification,
    classify_tool_failure,
)
from onboarding_core.engine.loop_detector import DEFAULT_REPEAT_THRESHOLD, LoopDetector
from onboarding_core.engine.models import (
    DEFAULT_REASONING,
    ErrorClass,
    ErrorInfo,
    ReasoningTrace,
    ResultStatus,
    TaskState,
    ToolInvocation,
    clamp_confidence,
)
from onboarding_core.engine.prompts import (
    PromptTemplates,
    render_iteration_prompt,
    render_single_pass_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TOOL_TIMEOUT_SECONDS = 30.0

OPERATION_CIRCULAR_REASONING = "circular_reasoning_detected"
OPERATION_MAX_ITERATIONS = "max_iterations_reached"
OPERATION_NEEDS_USER_INPUT = "needs_user_input"
OPERATION_BLOCKED = "blocked_need_help"
OPERATION_TOOL_UNAUTHORIZED = "tool_authorization_failed"
OPERATION_SINGLE_PASS_UNRESOLVED = "single_pass_unresolved"


@dataclass(slots=True)
class AgentCapabilities:
    """What an agent brings to a reasoning run."""

    agent_id: str
    decision_maker: DecisionMaker
    version: str | None = None
    tools: ToolRegistry | None = None
    prompts: PromptTemplates = field(default_factory=PromptTemplates)

    @property
    def tool_names(self) -> list[str]:
        return self.tools.names() if self.tools is not None else []


@dataclass(slots=True)
class ReasoningRequest:
    """One unit of work for the loop, with the task state it starts from."""

    task_id: str
    operation: str
    parameters: dict[str, Any] = field(default_factory=dict)
    task_state: TaskState = field(default_factory=TaskState)
    tool_timeouts: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class ReasoningResult:
    """Terminal outcome of a reasoning run."""

    status: ResultStatus
    operation: str
    data: dict[str, Any] = field(default_factory=dict)
    reasoning: str = DEFAULT_REASONING
    confidence: float = 0.0
    needed_fields: tuple[str, ...] = ()
    ui_hints: dict[str, str] = field(default_factory=dict)
    error: ErrorInfo | None = None
    trace: ReasoningTrace | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "operation": self.operation,
            "data": self.data,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "needed_fields": list(self.needed_fields),
            "ui_hints": dict(self.ui_hints),
            "error": self.error.to_dict() if self.error is not None else None,
            "reasoning_trace": self.trace.to_dict() if self.trace is not None else None,
        }


@dataclass(slots=True)
class _ToolOutcome:
    invocation: ToolInvocation
    observation: dict[str, Any]
    classification: ToolFailureClassification | None = None
    message: str | None = None


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for one loop run."""

    started: float
    knowledge: dict[str, Any] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    invocations: list[ToolInvocation] = field(default_factory=list)
    iterations: int = 0

    def learn(self, learned: dict[str, Any]) -> None:
        self.knowledge.update(learned)

    def thoughts(self) -> list[str]:
        return [record["thought"] for record in self.history if record.get("thought")]

    def trace(self) -> ReasoningTrace:
        return ReasoningTrace(
            iterations=self.iterations,
            tool_invocations=list(self.invocations),
            knowledge=dict(self.knowledge),
            duration_ms=int((time.monotonic() - self.started) * 1000),
        )

    def partial_results(self) -> dict[str, Any]:
        return {
            "knowledge": dict(self.knowledge),
            "thoughts": self.thoughts(),
            "tools_used": [invocation.label for invocation in self.invocations],
        }


class ReasoningCore:
    """Runs the reasoning loop for one agent."""

    def __init__(
        self,
        capabilities: AgentCapabilities,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        repeat_threshold: int = DEFAULT_REPEAT_THRESHOLD,
        default_tool_timeout_seconds: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        tool_workers: int = 4,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be > 0")
        self.capabilities = capabilities
        self.max_iterations = max_iterations
        self.repeat_threshold = repeat_threshold
        self.default_tool_timeout_seconds = default_tool_timeout_seconds
        self.tool_workers = tool_workers

    def run(self, request: ReasoningRequest) -> ReasoningResult:
        """Run the loop, or a single decision pass when the agent has no tools."""

        tools = self.capabilities.tools
        if tools is None:
            return self._single_pass(request)

        run = _RunState(started=time.monotonic())
        detector = LoopDetector(self.repeat_threshold)
        pool = ThreadPoolExecutor(
            max_workers=self.tool_workers,
            thread_name_prefix=f"tools-{self.capabilities.agent_id}",
        )
        try:
            for iteration in range(1, self.max_iterations + 1):
                run.iterations = iteration
                result = self._iterate(request, run, detector, pool, tools, iteration)
                if result is not None:
                    return result
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        logger.warning(
            "Agent %s hit the iteration bound (%d) on task %s",
            self.capabilities.agent_id,
            self.max_iterations,
            request.task_id,
        )
        return ReasoningResult(
            status=ResultStatus.ERROR,
            operation=OPERATION_MAX_ITERATIONS,
            data={
                "iterations": self.max_iterations,
                "partial_results": run.partial_results(),
            },
            reasoning=f"Reached the maximum of {self.max_iterations} iterations without an answer",
            confidence=0.0,
            error=ErrorInfo(
                error_class=ErrorClass.MAX_ITERATIONS_REACHED,
                message=f"No terminal decision after {self.max_iterations} iterations.",
            ),
            trace=run.trace(),
        )

    def _iterate(  # noqa: PLR0911, PLR0913
        self,
        request: ReasoningRequest,
        run: _RunState,
        detector: LoopDetector,
        pool: ThreadPoolExecutor,
        tools: ToolRegistry,
        iteration: int,
    ) -> ReasoningResult | None:
        prompt = render_iteration_prompt(
            self.capabilities.prompts,
            operation=request.operation,
            parameters=request.parameters,
            task_state=request.task_state.to_dict(),
            knowledge=run.knowledge,
            history=run.history,
            tool_names=self.capabilities.tool_names,
            iteration=iteration,
            max_iterations=self.max_iterations,
        )
        try:
            decision = parse_decision(self.capabilities.decision_maker.decide(prompt))
        except DecisionFormatError as error:
            logger.warning(
                "Invalid decision from agent %s at iteration %d: %s",
                self.capabilities.agent_id,
                iteration,
                error,
            )
            detector.break_tool_streak()
            run.history.append(
                {"iteration": iteration, "action": "invalid", "observation": {"error": str(error)}},
            )
            return None

        run.learn(decision.learned)
        record: dict[str, Any] = {
            "iteration": iteration,
            "thought": decision.thought,
            "action": _action_name(decision),
        }

        if isinstance(decision, Answer):
            return self._answer(decision, run)
        if isinstance(decision, NeedsUserInput):
            return _needs_input(decision, run.knowledge, run.trace())
        if isinstance(decision, Help):
            return _help(decision, run.partial_results(), run.trace())

        pattern = detector.record_thought(decision.thought)
        if pattern is None and isinstance(decision, ToolCall):
            pattern = detector.check_tool_call(decision.tool, decision.params)
        if pattern is not None:
            run.history.append(record)
            return self._circular(request, run, pattern)

        if isinstance(decision, Continue):
            detector.break_tool_streak()
            run.history.append(record)
            return None

        outcome = self._invoke_tool(pool, tools, request, decision, iteration)
        run.invocations.append(outcome.invocation)
        record["tool"] = decision.tool
        record["params"] = decision.params
        record["observation"] = outcome.observation
        run.history.append(record)
        if outcome.invocation.error_class is ErrorClass.AUTHORIZATION:
            return ReasoningResult(
                status=ResultStatus.ERROR,
                operation=OPERATION_TOOL_UNAUTHORIZED,
                data={"tool": decision.tool, "partial_results": run.partial_results()},
                reasoning=f"Tool {decision.tool} was refused: {outcome.message}",
                confidence=0.0,
                error=ErrorInfo(
                    error_class=ErrorClass.AUTHORIZATION,
                    message=outcome.message or "Tool authorization failed.",
                    details=(
                        outcome.classification.to_details(tool=decision.tool)
                        if outcome.classification is not None
                        else {}
                    ),
                ),
                trace=run.trace(),
            )
        return None

    def _invoke_tool(  # noqa: PLR0913
        self,
        pool: ThreadPoolExecutor,
        tools: ToolRegistry,
        request: ReasoningRequest,
        decision: ToolCall,
        iteration: int,
    ) -> _ToolOutcome:
        timeout = request.tool_timeouts.get(decision.tool, self.default_tool_timeout_seconds)
        started = time.monotonic()
        future: Future[object] = pool.submit(tools.invoke, decision.tool, dict(decision.params))
        try:
            value = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            message = f"Tool {decision.tool} timed out after {timeout:g}s"
            classification = classify_tool_failure(
                tool=decision.tool,
                message=message,
                timed_out=True,
            )
        except Exception as error:  # noqa: BLE001
            message = str(error) or type(error).__name__
            classification = classify_tool_failure(
                tool=decision.tool,
                message=message,
                explicit_class=error.error_class if isinstance(error, ToolError) else None,
            )
        else:
            return _ToolOutcome(
                invocation=ToolInvocation(
                    name=decision.tool,
                    iteration=iteration,
                    succeeded=True,
                    duration_ms=_elapsed_ms(started),
                ),
                observation={"tool": decision.tool, "success": True, "result": value},
            )

        logger.info(
            "Tool %s failed for task %s (%s): %s",
            decision.tool,
            request.task_id,
            classification.error_class.value,
            message,
        )
        return _ToolOutcome(
            invocation=ToolInvocation(
                name=decision.tool,
                iteration=iteration,
                succeeded=False,
                duration_ms=_elapsed_ms(started),
                error_class=classification.error_class,
            ),
            observation={
                "tool": decision.tool,
                "success": False,
                "error": message,
                "error_class": classification.error_class.value,
            },
            classification=classification,
            message=message,
        )

    def _answer(self, decision: Answer, run: _RunState) -> ReasoningResult:
        data = dict(run.knowledge)
        data.update(decision.data)
        return ReasoningResult(
            status=ResultStatus.COMPLETED,
            operation=decision.operation,
            data=data,
            reasoning=decision.reasoning or decision.thought or DEFAULT_REASONING,
            confidence=clamp_confidence(decision.confidence),
            trace=run.trace(),
        )

    def _circular(
        self,
        request: ReasoningRequest,
        run: _RunState,
        pattern: str,
    ) -> ReasoningResult:
        logger.warning(
            "Circular reasoning for agent %s on task %s: %s",
            self.capabilities.agent_id,
            request.task_id,
            pattern,
        )
        return ReasoningResult(
            status=ResultStatus.ERROR,
            operation=OPERATION_CIRCULAR_REASONING,
            data={"pattern": pattern, "partial_results": run.partial_results()},
            reasoning=f"Stopped after detecting circular reasoning: {pattern}",
            confidence=0.0,
            error=ErrorInfo(
                error_class=ErrorClass.CIRCULAR_REASONING,
                message="Circular reasoning detected.",
                details={"pattern": pattern},
            ),
            trace=run.trace(),
        )

    def _single_pass(self, request: ReasoningRequest) -> ReasoningResult:
        prompt = render_single_pass_prompt(
            self.capabilities.prompts,
            operation=request.operation,
            parameters=request.parameters,
            task_state=request.task_state.to_dict(),
        )
        try:
            decision = parse_decision(self.capabilities.decision_maker.decide(prompt))
        except DecisionFormatError as error:
            return _unresolved(f"Invalid decision: {error}")

        if isinstance(decision, Answer):
            data = dict(decision.learned)
            data.update(decision.data)
            return ReasoningResult(
                status=ResultStatus.COMPLETED,
                operation=decision.operation,
                data=data,
                reasoning=decision.reasoning or decision.thought or DEFAULT_REASONING,
                confidence=clamp_confidence(decision.confidence),
            )
        if isinstance(decision, NeedsUserInput):
            return _needs_input(decision, dict(decision.learned), None)
        if isinstance(decision, Help):
            return _help(decision, {"knowledge": dict(decision.learned)}, None)
        return _unresolved(
            f"Agent without tools returned a non-terminal '{_action_name(decision)}' decision.",
        )


def _needs_input(
    decision: NeedsUserInput,
    knowledge: dict[str, Any],
    trace: ReasoningTrace | None,
) -> ReasoningResult:
    hints: dict[str, str] = {}
    if decision.title:
        hints["title"] = decision.title
    if decision.instructions:
        hints["instructions"] = decision.instructions
    return ReasoningResult(
        status=ResultStatus.NEEDS_INPUT,
        operation=OPERATION_NEEDS_USER_INPUT,
        data=dict(knowledge),
        reasoning=decision.thought or DEFAULT_REASONING,
        confidence=0.5,
        needed_fields=decision.needed_fields,
        ui_hints=hints,
        trace=trace,
    )


def _help(
    decision: Help,
    partial_results: dict[str, Any],
    trace: ReasoningTrace | None,
) -> ReasoningResult:
    try:
        error_class = ErrorClass(decision.reason)
    except ValueError:
        error_class = ErrorClass.PERMANENT
    return ReasoningResult(
        status=ResultStatus.ERROR,
        operation=OPERATION_BLOCKED,
        data={
            "reason": decision.reason,
            "pattern": decision.pattern,
            "partial_results": partial_results,
        },
        reasoning=decision.thought or f"Agent asked for help: {decision.reason}",
        confidence=0.0,
        error=ErrorInfo(
            error_class=error_class,
            message=f"Agent is blocked: {decision.reason}",
            details={"pattern": decision.pattern} if decision.pattern else {},
        ),
        trace=trace,
    )


def _unresolved(message: str) -> ReasoningResult:
    return ReasoningResult(
        status=ResultStatus.ERROR,
        operation=OPERATION_SINGLE_PASS_UNRESOLVED,
        reasoning=message,
        confidence=0.0,
        error=ErrorInfo(error_class=ErrorClass.PERMANENT, message=message),
    )


def _action_name(decision: Decision) -> str:
    if isinstance(decision, ToolCall):
        return "tool"
    if isinstance(decision, Answer):
        return "answer"
    if isinstance(decision, NeedsUserInput):
        return "needs_user_input"
    if isinstance(decision, Help):
        return "help"
    return "continue"


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
