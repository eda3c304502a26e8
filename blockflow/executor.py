"""FlowExecutor - interprets an extracted flow.

The executor walks the node tree in order, threading two values through every
step: the current data (a single string) and the variable store. Branch arms
and loop bodies run as sub-sequences on a copy of the store; the copy is
merged back once the arm/body finishes.

Runtime failures are node-local. When a node raises, its result becomes a
formatted error message and the sequence continues with the data and
variables it had before that node ran. This applies at the top level and at
every nested branch/loop boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .conditions import SentimentClassifierProtocol, evaluate_boolean_expression, evaluate_condition
from .core.nodes import (
    BranchNode,
    ExtractedFlow,
    ForEachLineNode,
    GetVariableNode,
    ModelNode,
    OperatorNode,
    OutputNode,
    SetVariableNode,
    StartNode,
    TextInputNode,
    VariableInputNode,
    VariableReporterNode,
)
from .core.results import ExecutionResult, FlowRunResult
from .errors import FlowExecutionError, MissingVariableError, ProviderConfigError, ValidationError
from .operators import evaluate, evaluate_expression
from .providers import HttpModelCaller, ModelCaller, ModelOptions, SentimentClassifier
from .templates import is_valid_variable_name, substitute

logger = logging.getLogger(__name__)

NOT_EXECUTED = "Not executed"


@dataclass
class _Step:
    """What one node hands to the next: its result plus the new data/store."""

    result: ExecutionResult
    data: str
    variables: Dict[str, str]


@dataclass
class _RunState:
    results: Dict[str, ExecutionResult] = field(default_factory=dict)
    # Every (node, result) in the order it was written, repeats included.
    written: List[Tuple[Any, ExecutionResult]] = field(default_factory=list)
    # Data seen by the last Output node that ran.
    output: Optional[str] = None

    def record(self, node: Any, result: ExecutionResult) -> None:
        self.results[node.id] = result
        self.written.append((node, result))


def format_error(node: Any, error: BaseException) -> str:
    return f"Error in {node.display_name} block: {error}"


class FlowExecutor:
    """Runs extracted flows.

    One executor can run any number of flows, sequentially or concurrently:
    all per-run state lives in the `run()` call.

    Example:
        >>> executor = FlowExecutor(model_caller=my_caller)
        >>> result = asyncio.run(executor.run(extract_flow(visual_flow)))
        >>> result.results["output-1"].output
    """

    def __init__(
        self,
        model_caller: Optional[ModelCaller] = None,
        classifier: Optional[SentimentClassifierProtocol] = None,
    ):
        """Initialize a FlowExecutor.

        Args:
            model_caller: Model Caller used by LLM blocks. Defaults to an
                `HttpModelCaller` configured from the environment.
            classifier: Sentiment classifier used by `ai_sentiment`
                conditions. Defaults to a `SentimentClassifier` sharing the
                default HTTP caller.
        """
        if model_caller is None:
            model_caller = HttpModelCaller()
        if classifier is None and isinstance(model_caller, HttpModelCaller):
            classifier = SentimentClassifier(model_caller)
        self.model_caller = model_caller
        self.classifier = classifier

        self._handlers: Dict[type, Callable[..., Awaitable[_Step]]] = {
            StartNode: self._start,
            TextInputNode: self._text_input,
            VariableInputNode: self._variable_input,
            ModelNode: self._model,
            OutputNode: self._output,
            BranchNode: self._branch,
            ForEachLineNode: self._for_each_line,
            SetVariableNode: self._set_variable,
            GetVariableNode: self._get_variable,
            VariableReporterNode: self._get_variable,
            OperatorNode: self._operator,
        }

    async def run(
        self,
        flow: Union[ExtractedFlow, Sequence[Any]],
        *,
        variables: Optional[Dict[str, str]] = None,
    ) -> FlowRunResult:
        """Execute `flow` to completion.

        Args:
            flow: The extracted flow (or a plain list of top-level nodes)
            variables: Optional initial variable store

        Returns:
            A `FlowRunResult` with one `ExecutionResult` per extracted node.
            Nodes that never ran (untaken branch, empty loop input) report
            "Not executed".
        """
        if not isinstance(flow, ExtractedFlow):
            flow = ExtractedFlow(nodes=list(flow))

        state = _RunState()
        _, store = await self._run_sequence(flow.nodes, "", dict(variables or {}), None, state)

        results = {nid: state.results.get(nid, ExecutionResult(output=NOT_EXECUTED)) for nid in flow.node_ids()}
        return FlowRunResult(
            success=True,
            results=results,
            output=state.output,
            variables=store,
            flow_id=flow.flow_id,
        )

    async def _run_sequence(
        self,
        nodes: Sequence[Any],
        data: str,
        variables: Dict[str, str],
        line: Optional[str],
        state: _RunState,
    ) -> Tuple[str, Dict[str, str]]:
        for node in nodes:
            try:
                step = await self._execute(node, data, variables, line, state)
            except FlowExecutionError as e:
                logger.warning(f"Block {node.id} ({node.display_name}) failed: {e}")
                state.record(node, ExecutionResult(output=format_error(node, e)))
                continue
            except Exception as e:
                logger.exception(f"Unexpected error in block {node.id} ({node.display_name})")
                state.record(node, ExecutionResult(output=format_error(node, e)))
                continue
            state.record(node, step.result)
            data = step.data
            variables = step.variables
        return data, variables

    async def _execute(
        self,
        node: Any,
        data: str,
        variables: Dict[str, str],
        line: Optional[str],
        state: _RunState,
    ) -> _Step:
        handler = self._handlers.get(type(node))
        if handler is None:
            raise ValidationError(f"Unsupported block kind: {getattr(node, 'kind', type(node).__name__)}")
        return await handler(node, data, variables, line, state)

    # Node handlers -------------------------------------------------------

    async def _start(self, node: StartNode, data, variables, line, state) -> _Step:
        return _Step(ExecutionResult(output="Start flow"), data, variables)

    async def _text_input(self, node: TextInputNode, data, variables, line, state) -> _Step:
        return _Step(ExecutionResult(output=node.value), node.value, variables)

    async def _variable_input(self, node: VariableInputNode, data, variables, line, state) -> _Step:
        value = evaluate_expression(node.expression, data, variables, line).as_text()
        return _Step(ExecutionResult(output=value), value, variables)

    async def _model(self, node: ModelNode, data, variables, line, state) -> _Step:
        if not node.prompt_template.strip():
            raise ValidationError(
                "LLM Processing block has no prompt. Enter a prompt in the block and use {{input}} "
                "to reference data from previous blocks."
            )
        if not node.provider:
            raise ValidationError("LLM Processing block has no model selected. Select a model in the block.")
        if self.model_caller is None:
            raise ProviderConfigError("No model caller configured")

        prompt = substitute(node.prompt_template, data, variables, line)
        options = ModelOptions(temperature=node.temperature, max_tokens=node.max_tokens, top_p=node.top_p)
        started = time.perf_counter()
        response = await self.model_caller.call(prompt, node.provider, options)
        latency_ms = int(round((time.perf_counter() - started) * 1000))
        logger.info(f"LLM block {node.id}: {node.provider} answered in {latency_ms}ms ({response.token_count} tokens)")
        result = ExecutionResult(
            output=response.text,
            model=node.provider,
            tokens=response.token_count,
            latency_ms=latency_ms,
        )
        return _Step(result, response.text, variables)

    async def _output(self, node: OutputNode, data, variables, line, state) -> _Step:
        state.output = data
        return _Step(ExecutionResult(output=data), data, variables)

    async def _condition(self, node: BranchNode, data: str, variables: Dict[str, str], line: Optional[str]) -> bool:
        if node.uses_expression:
            return evaluate_boolean_expression(node.condition_expression, data, variables, line)
        return await evaluate_condition(node.condition_kind, node.condition_value, data, variables, self.classifier)

    async def _branch(self, node: BranchNode, data, variables, line, state) -> _Step:
        taken = await self._condition(node, data, variables, line)
        arm = node.then_branch if taken else node.else_branch
        verdict = "TRUE" if taken else "FALSE"
        label = "THEN" if taken else "ELSE"

        if not arm:
            return _Step(ExecutionResult(output=f"Condition: {verdict} -> {label} branch (empty)"), data, variables)

        mark = len(state.written)
        arm_data, arm_variables = await self._run_sequence(arm, data, dict(variables), line, state)
        merged = {**variables, **arm_variables}

        # Metrics of the first model call made by this run of the arm.
        metrics: Dict[str, Any] = {}
        for child, child_result in state.written[mark:]:
            if isinstance(child, ModelNode) and child_result.has_metrics:
                metrics = {
                    "model": child_result.model,
                    "tokens": child_result.tokens,
                    "latency_ms": child_result.latency_ms,
                }
                break

        result = ExecutionResult(
            output=f"Condition: {verdict} -> Executed {label} branch\nResult: {arm_data}",
            **metrics,
        )
        return _Step(result, arm_data, merged)

    async def _for_each_line(self, node: ForEachLineNode, data, variables, line, state) -> _Step:
        if not data or not data.strip():
            return _Step(ExecutionResult(output="No data to process (empty input)"), data, variables)

        lines = [ln for ln in data.split("\n") if ln.strip()]
        outputs: List[str] = []
        loop_variables = dict(variables)
        for current in lines:
            if not node.body:
                outputs.append(current)
                continue
            # Each iteration starts from the loop's input; the store carries over.
            iteration_data, loop_variables = await self._run_sequence(
                node.body, data, dict(loop_variables), current, state
            )
            outputs.append(iteration_data)

        joined = "\n".join(outputs)
        result = ExecutionResult(output=f"Processed {len(lines)} lines:\n{joined}")
        return _Step(result, joined, {**variables, **loop_variables})

    async def _set_variable(self, node: SetVariableNode, data, variables, line, state) -> _Step:
        name = node.name.strip()
        if not name:
            raise ValidationError("Set Variable block has no variable name. Enter a variable name.")
        if not is_valid_variable_name(name):
            raise ValidationError(
                f'Invalid variable name "{name}". Use letters, numbers, and underscores only, '
                "starting with a letter or underscore."
            )
        if node.value_expression is not None:
            value = evaluate_expression(node.value_expression, data, variables, line).as_text()
        else:
            value = substitute(node.value_template, data, variables, line)
        return _Step(ExecutionResult(output=f'Set variable "{name}" = "{value}"'), data, {**variables, name: value})

    async def _get_variable(self, node: Any, data, variables, line, state) -> _Step:
        name = node.name.strip()
        if not name:
            raise ValidationError(f"{node.display_name} block has no variable name. Pick a variable that was set before.")
        value = variables.get(name)
        if value is None:
            raise MissingVariableError(name)
        return _Step(ExecutionResult(output=f'Retrieved variable "{name}" = "{value}"'), value, variables)

    async def _operator(self, node: OperatorNode, data, variables, line, state) -> _Step:
        operands = [substitute(i, data, variables, line) for i in node.inputs]
        value = evaluate(node.operator_kind, operands, variables, resolve_templates=False).as_text()
        return _Step(ExecutionResult(output=value), value, variables)
