"""Schema-enforcing tool execution gateway with timeout/retry telemetry."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from agent_conductor.tools.registry import ToolSpec


class ToolRunResult(BaseModel):
    tool: str
    status: Literal["ok", "failed"]
    output: str = ""
    error: str | None = None
    attempts: int
    duration_ms: float

    @property
    def succeeded(self) -> bool:
        return self.status == "ok"

    def summary(self) -> str:
        """Text handed back to the model for this run."""
        return self.output if self.succeeded else f"Error: {self.error}"


class ToolExecutor:
    """Run registered tools with argument validation, a per-call timeout and retries.

    Failures never raise; they come back as a ``failed`` result so the agent
    loop can report them and keep going.
    """

    def __init__(
        self,
        *,
        registry: dict[str, ToolSpec] | None = None,
        tool_timeout_s: float = 30.0,
        max_retries: int = 0,
        backoff_s: float = 0.0,
    ) -> None:
        self.registry = registry if registry is not None else {}
        self.tool_timeout_s = tool_timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    def execute(self, tool_name: str, args: dict[str, Any]) -> ToolRunResult:
        started_at = time.perf_counter()
        attempts = 0
        last_error = "unknown error"

        while attempts <= self.max_retries:
            attempts += 1
            try:
                output = self._call(tool_name, args)
            except (ValueError, ValidationError) as exc:
                # bad arguments and unknown tools are not retried
                last_error = str(exc)
                break
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or type(exc).__name__
                if attempts <= self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
                continue
            return ToolRunResult(
                tool=tool_name,
                status="ok",
                output=output,
                attempts=attempts,
                duration_ms=_elapsed_ms(started_at),
            )

        return ToolRunResult(
            tool=tool_name,
            status="failed",
            error=last_error,
            attempts=attempts,
            duration_ms=_elapsed_ms(started_at),
        )

    def _call(self, tool_name: str, args: dict[str, Any]) -> str:
        spec = self.registry.get(tool_name)
        if spec is None:
            raise ValueError(f"Unknown tool: {tool_name}")

        payload = spec.input_model.model_validate(args)
        # a timed-out tool keeps its worker thread; do not block on it
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"tool-{tool_name}")
        try:
            future = pool.submit(spec.fn, payload)
            try:
                raw_output = future.result(timeout=self.tool_timeout_s)
            except TimeoutError as exc:
                raise TimeoutError(f"Tool '{tool_name}' timed out after {self.tool_timeout_s:.2f}s") from exc
        finally:
            pool.shutdown(wait=False)
        return raw_output if isinstance(raw_output, str) else str(raw_output)


def _elapsed_ms(started_at: float) -> float:
    return round((time.perf_counter() - started_at) * 1000.0, 2)
