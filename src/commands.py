"""
Command parsing and dispatch.

Maps textual instructions to command groups and operations:

    "run all"          -> every group in order (C1 .. C5)
    "run C1 C4"        -> the named groups in sequence
    "C2.LIST_CHILDREN" -> one operation
    "C3"               -> the group's default operation

Anything else is passed through verbatim and fails at dispatch.
"""

import inspect
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from src.errors import ChainFailure, IndexerError, ValidationError

logger = logging.getLogger(__name__)

GROUPS = ("C1", "C2", "C3", "C4", "C5")
RUN_ALL_SEQUENCE = GROUPS

_GROUP_RE = re.compile(r"^C\d$", re.IGNORECASE)
_DOTTED_RE = re.compile(r"^(C\d)\.(\w+)$", re.IGNORECASE)
_RUN_RE = re.compile(r"^run\s+(.+)$", re.IGNORECASE)


class CommandKind(Enum):
    RUN_ALL = "RUN_ALL"
    RUN_CHAIN = "RUN_CHAIN"
    SINGLE = "SINGLE"
    UNKNOWN = "UNKNOWN"


class ChainFailurePolicy(Enum):
    ABORT_AND_ROLLBACK = "abort"
    CONTINUE_ON_ERROR = "continue"

    @classmethod
    def from_setting(cls, value: str) -> "ChainFailurePolicy":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValidationError(
                f"Invalid chain failure policy: {value!r} (expected 'abort' or 'continue')"
            )


@dataclass(frozen=True)
class ParsedCommand:
    kind: CommandKind
    raw: str
    group: Optional[str] = None
    operation: Optional[str] = None  # None: the group's default
    chain: Tuple[str, ...] = ()


def parse_command(text: str) -> ParsedCommand:
    """Parse a textual instruction into a typed command."""
    raw = text
    text = text.strip()

    if text.lower() == "run all":
        return ParsedCommand(CommandKind.RUN_ALL, raw, chain=RUN_ALL_SEQUENCE)

    run = _RUN_RE.match(text)
    if run:
        tokens = run.group(1).split()
        if all(_GROUP_RE.match(t) for t in tokens):
            groups = tuple(t.upper() for t in tokens)
            if len(groups) > 1:
                return ParsedCommand(CommandKind.RUN_CHAIN, raw, chain=groups)
            return ParsedCommand(CommandKind.SINGLE, raw, group=groups[0])
        return ParsedCommand(CommandKind.UNKNOWN, raw)

    dotted = _DOTTED_RE.match(text)
    if dotted:
        return ParsedCommand(
            CommandKind.SINGLE,
            raw,
            group=dotted.group(1).upper(),
            operation=dotted.group(2).upper()
        )

    if _GROUP_RE.match(text):
        return ParsedCommand(CommandKind.SINGLE, raw, group=text.upper())

    return ParsedCommand(CommandKind.UNKNOWN, raw)


@dataclass
class CommandOutcome:
    """What a handler returns when its effect can be undone."""
    result: Any = None
    undo: Optional[Callable[[], Any]] = None


@dataclass
class StepResult:
    command: str
    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "success": self.success,
            "result": self.result,
            "error": self.error
        }


@dataclass
class CommandContext:
    group: str
    operation: str
    params: dict
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    execution_id: str = ""

    def __post_init__(self):
        if not self.execution_id:
            self.execution_id = f"{self.group}-{self.operation}-{uuid.uuid4().hex[:8]}"


Handler = Callable[[dict], Awaitable[Any]]


class CommandDispatcher:
    """
    Routes parsed commands to handlers and runs chains under a failure policy.
    """

    def __init__(
        self,
        handlers: Dict[str, Dict[str, Handler]],
        defaults: Dict[str, str],
        policy: ChainFailurePolicy = ChainFailurePolicy.CONTINUE_ON_ERROR
    ):
        """
        Args:
            handlers: group -> operation -> async handler(params)
            defaults: group -> default operation
            policy: What a failing chain step does to the rest of the chain
        """
        self.handlers = handlers
        self.defaults = defaults
        self.policy = policy
        self.history: List[CommandContext] = []

    async def execute(self, text: str, params: Optional[dict] = None) -> Any:
        """
        Execute a textual command.

        Returns:
            Handler result for single operations, list of StepResult for chains

        Raises:
            ValidationError: Unknown command or operation
            ChainFailure: A chain step failed under the abort policy
        """
        parsed = parse_command(text)

        if parsed.kind in (CommandKind.RUN_ALL, CommandKind.RUN_CHAIN):
            return await self.run_chain(parsed.chain)

        if parsed.kind == CommandKind.SINGLE:
            outcome = await self._run(parsed.group, parsed.operation, params or {})
            return outcome.result

        raise ValidationError(f"Unknown command: {parsed.raw}", operation=parsed.raw)

    async def _run(self, group: str, operation: Optional[str], params: dict) -> CommandOutcome:
        group_handlers = self.handlers.get(group)
        if group_handlers is None:
            raise ValidationError(f"Unknown command: {group}", operation=group)

        operation = operation or self.defaults[group]
        handler = group_handlers.get(operation)
        if handler is None:
            raise ValidationError(f"Unknown {group} operation: {operation}", operation=f"{group}.{operation}")

        context = CommandContext(group, operation, dict(params))
        self.history.append(context)
        logger.info(f"Executing {group}.{operation} ({context.execution_id})")

        result = await handler(params)
        if isinstance(result, CommandOutcome):
            return result
        return CommandOutcome(result=result)

    async def run_chain(self, groups) -> List[StepResult]:
        """
        Run each group's default operation in order.

        CONTINUE_ON_ERROR: every step runs; failures are reported per step.
        ABORT_AND_ROLLBACK: the first failure stops the chain, completed steps
        are undone in reverse order and ChainFailure is raised.
        """
        results: List[StepResult] = []
        completed: List[Tuple[str, Optional[Callable[[], Any]]]] = []

        for group in groups:
            try:
                outcome = await self._run(group, None, {})
            except IndexerError as e:
                results.append(StepResult(group, False, error=str(e)))

                if self.policy == ChainFailurePolicy.ABORT_AND_ROLLBACK:
                    logger.error(f"Chain step {group} failed, rolling back: {e}")
                    await self._rollback(completed)
                    raise ChainFailure(
                        f"Chain aborted at {group}: {e}",
                        step=group,
                        results=results,
                        cause=e
                    ) from e

                logger.warning(f"Chain step {group} failed, continuing: {e}")
                continue

            results.append(StepResult(group, True, result=outcome.result))
            completed.append((group, outcome.undo))

        return results

    async def _rollback(self, completed) -> List[str]:
        """Undo completed steps, most recent first."""
        rolled_back = []
        for group, undo in reversed(completed):
            if undo is None:
                logger.info(f"No rollback needed for {group}")
                continue
            try:
                result = undo()
                if inspect.isawaitable(result):
                    await result
                rolled_back.append(group)
                logger.info(f"Rolled back {group}")
            except IndexerError as e:
                logger.error(f"Rollback of {group} failed: {e}")
        return rolled_back
