"""
Stage runner for pipeline execution.

Runs an ordered list of stages, classifies failures by policy and
guarantees post-run hooks are invoked once per run.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from domain.errors import ConfigurationError, StageFailure, StageTimeoutError
from domain.stage import (
    ArtifactArchiveRequest,
    FailurePolicy,
    Stage,
    StageRecord,
    StageResult,
    StageStatus,
)
from .context import RunContext
from .outcome import Outcome

ALWAYS = "always"

Hook = Callable[[RunContext], Any]
HookKey = Union[Outcome, str]
ArchiveSink = Callable[[tuple[ArtifactArchiveRequest, ...]], Any]
AbortHandler = Callable[[threading.Thread], Any]

_HOOK_KEYS = (ALWAYS, Outcome.SUCCESS, Outcome.UNSTABLE, Outcome.FAILURE)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, StageFailure):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


class StageRunner:
    """
    Sequential stage executor.

    Stages run one at a time in the given order. A FATAL failure stops the
    run, a LOGGED failure degrades it to UNSTABLE. Exceptions raised by
    stage actions never propagate past the runner.
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        archive_sink: Optional[ArchiveSink] = None,
        clock: Callable[[], float] = time.monotonic,
        abort_handler: Optional[AbortHandler] = None,
    ):
        """
        Initialize stage runner.

        Args:
            timeout_sec: Wall-clock budget for all stages, None for no limit
            archive_sink: Called once with the collected archive requests
            clock: Monotonic clock, injectable for tests
            abort_handler: Called with the worker thread of a stage that
                exceeded the budget, to stop the work it started
        """
        if timeout_sec is not None and timeout_sec <= 0:
            raise ConfigurationError(f"timeout_sec must be positive, got {timeout_sec}")
        self.timeout_sec = timeout_sec
        self.archive_sink = archive_sink
        self.clock = clock
        self.abort_handler = abort_handler
        self.logger = logging.getLogger(self.__class__.__name__)

    def run(
        self,
        stages: Iterable[Stage],
        post_hooks: Optional[Mapping[HookKey, Hook]] = None,
        environment: Optional[Mapping[str, str]] = None,
    ) -> RunContext:
        """
        Run all stages and the post-run hooks.

        Args:
            stages: Ordered, non-empty stages with unique names
            post_hooks: Outcome to hook mapping, plus the ALWAYS key
            environment: Snapshot exposed to stages as ``context.environment``

        Returns:
            Finalized RunContext

        Raises:
            ConfigurationError: If stages or hooks are malformed; no hook runs
        """
        stages = tuple(stages)
        hooks = dict(post_hooks or {})
        self._validate(stages, hooks)

        context = RunContext.create(environment)

        self.logger.info("=" * 60)
        self.logger.info(f"Starting pipeline with {len(stages)} stages")
        self.logger.info("=" * 60)

        context, verdict = self._run_stages(stages, context)
        context = self._finalize(context, verdict)
        self._run_hooks(context, hooks)
        self._log_final_state(context)
        return context

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, stages: tuple, hooks: dict):
        if not stages:
            raise ConfigurationError("Pipeline must define at least one stage")

        seen = set()
        for stage in stages:
            if not isinstance(stage, Stage):
                raise ConfigurationError(f"Expected Stage, got {type(stage).__name__}")
            if not stage.name:
                raise ConfigurationError("Stage name cannot be empty")
            if stage.name in seen:
                raise ConfigurationError(f"Duplicate stage name: '{stage.name}'")
            if not callable(stage.action):
                raise ConfigurationError(f"Stage '{stage.name}' action is not callable")
            if not callable(stage.condition):
                raise ConfigurationError(f"Stage '{stage.name}' condition is not callable")
            if not isinstance(stage.failure_policy, FailurePolicy):
                raise ConfigurationError(
                    f"Stage '{stage.name}' has invalid failure policy: {stage.failure_policy!r}"
                )
            seen.add(stage.name)

        for key, hook in hooks.items():
            if key not in _HOOK_KEYS:
                raise ConfigurationError(f"Invalid post hook key: {key!r}")
            if not callable(hook):
                raise ConfigurationError(f"Post hook for {key} is not callable")

    # ------------------------------------------------------------------
    # Stage loop
    # ------------------------------------------------------------------

    def _run_stages(self, stages: tuple, context: RunContext) -> tuple[RunContext, Outcome]:
        deadline = self.clock() + self.timeout_sec if self.timeout_sec else None
        verdict = Outcome.PENDING
        pool = None

        try:
            for stage in stages:
                started = self.clock()

                if deadline is not None and started >= deadline:
                    context = self._record_timeout(context, stage, started)
                    verdict = Outcome.FAILURE
                    break

                try:
                    should_run = bool(stage.condition(context))
                except Exception as e:
                    self.logger.error(f"Condition of stage '{stage.name}' raised: {e}", exc_info=True)
                    context, verdict, stop = self._record_failure(
                        context, stage, f"condition raised {_describe(e)}", started, verdict
                    )
                    if stop:
                        break
                    continue

                if not should_run:
                    self.logger.info(f"Stage '{stage.name}': skipped (condition not met)")
                    context = context.with_record(StageRecord(stage.name, StageStatus.SKIPPED))
                    continue

                self.logger.info(f"Stage '{stage.name}': running")
                context = context.with_archives(stage.archives)

                try:
                    if deadline is not None:
                        if pool is None:
                            pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stage")
                        result = self._invoke_with_deadline(pool, stage, context, deadline)
                    else:
                        result = stage.action(context)
                except StageTimeoutError:
                    context = self._record_timeout(context, stage, started)
                    verdict = Outcome.FAILURE
                    break
                except Exception as e:
                    self.logger.error(f"Stage '{stage.name}' raised: {e}", exc_info=True)
                    result = StageResult.failed(_describe(e))

                if not isinstance(result, StageResult):
                    result = StageResult.ok()
                context = context.with_archives(result.archives)

                if result.succeeded:
                    elapsed = self.clock() - started
                    self.logger.info(f"Stage '{stage.name}': succeeded in {elapsed:.1f}s")
                    context = context.with_record(
                        StageRecord(stage.name, StageStatus.SUCCEEDED, duration_sec=max(elapsed, 0.0))
                    )
                    continue

                context, verdict, stop = self._record_failure(
                    context, stage, result.error or "stage reported failure", started, verdict
                )
                if stop:
                    break
        finally:
            if pool is not None:
                # A timed-out action was handed to abort_handler; its thread is not joined
                pool.shutdown(wait=False, cancel_futures=True)

        return context, verdict

    def _invoke_with_deadline(
        self,
        pool: ThreadPoolExecutor,
        stage: Stage,
        context: RunContext,
        deadline: float,
    ) -> Optional[StageResult]:
        workers = []

        def call():
            workers.append(threading.current_thread())
            return stage.action(context)

        remaining = max(deadline - self.clock(), 0.0)
        future = pool.submit(call)
        try:
            return future.result(timeout=remaining)
        except FutureTimeout:
            if future.done():
                # Finished as the wait expired, or raised TimeoutError itself
                error = future.exception()
                if error is not None:
                    raise error
                return future.result()
            if workers:
                self._abort(stage, workers[0])
            raise StageTimeoutError(stage.name, self.timeout_sec)

    def _abort(self, stage: Stage, worker: threading.Thread):
        if self.abort_handler is None:
            return
        self.logger.warning(f"Aborting stage '{stage.name}'")
        try:
            self.abort_handler(worker)
        except Exception as e:
            self.logger.warning(f"Aborting stage '{stage.name}' failed: {e}")

    def _record_failure(
        self,
        context: RunContext,
        stage: Stage,
        message: str,
        started: float,
        verdict: Outcome,
    ) -> tuple[RunContext, Outcome, bool]:
        """
        Record a failed stage according to its policy.

        Returns:
            Tuple of (updated_context, updated_verdict, stop_iterating)
        """
        elapsed = max(self.clock() - started, 0.0)

        if stage.failure_policy is FailurePolicy.FATAL:
            self.logger.error(f"Stage '{stage.name}': failed (fatal): {message}")
            record = StageRecord(stage.name, StageStatus.FAILED, message, elapsed)
            return context.with_record(record), Outcome.FAILURE, True

        self.logger.warning(f"Stage '{stage.name}': failed (logged, continuing): {message}")
        record = StageRecord(stage.name, StageStatus.FAILED_NONFATAL, message, elapsed)
        return context.with_record(record), verdict.worst(Outcome.UNSTABLE), False

    def _record_timeout(self, context: RunContext, stage: Stage, started: float) -> RunContext:
        error = StageTimeoutError(stage.name, self.timeout_sec)
        self.logger.error(f"Stage '{stage.name}': {error.message}")
        elapsed = max(self.clock() - started, 0.0)
        record = StageRecord(stage.name, StageStatus.FAILED, error.message, elapsed)
        return context.with_record(record).with_timeout()

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(self, context: RunContext, verdict: Outcome) -> RunContext:
        if verdict is Outcome.PENDING:
            verdict = Outcome.FAILURE if context.has_failures else Outcome.SUCCESS
        context = context.finalized(verdict)

        if self.archive_sink is not None and context.archive_requests:
            try:
                self.archive_sink(context.archive_requests)
            except Exception as e:
                self.logger.warning(f"Archiving artifacts failed: {e}")

        return context

    def _run_hooks(self, context: RunContext, hooks: dict):
        self._call_hook(ALWAYS, hooks.get(ALWAYS), context)
        self._call_hook(context.outcome, hooks.get(context.outcome), context)

    def _call_hook(self, key: HookKey, hook: Optional[Hook], context: RunContext):
        if hook is None:
            return
        self.logger.info(f"Running post hook: {key}")
        try:
            hook(context)
        except Exception as e:
            self.logger.error(f"Post hook '{key}' raised: {e}", exc_info=True)

    def _log_final_state(self, context: RunContext):
        """Log final pipeline state."""
        self.logger.info("=" * 60)

        if context.outcome is Outcome.SUCCESS:
            self.logger.info("✓ Pipeline completed successfully")
        elif context.outcome is Outcome.UNSTABLE:
            self.logger.warning("~ Pipeline completed with non-fatal failures (UNSTABLE)")
        else:
            self.logger.error("✗ Pipeline failed")

        self.logger.info(f"Elapsed time: {context.elapsed_time:.1f}s")
        for record in context.executed_stages:
            suffix = f" ({record.error_message})" if record.error_message else ""
            self.logger.info(f"  {record.name:30s}: {record.status}{suffix}")

        self.logger.info("=" * 60)


def run(
    stages: Iterable[Stage],
    post_hooks: Optional[Mapping[HookKey, Hook]] = None,
    environment: Optional[Mapping[str, str]] = None,
    timeout_sec: Optional[float] = None,
    archive_sink: Optional[ArchiveSink] = None,
    abort_handler: Optional[AbortHandler] = None,
) -> RunContext:
    """Run stages with a one-off StageRunner."""
    runner = StageRunner(timeout_sec=timeout_sec, archive_sink=archive_sink, abort_handler=abort_handler)
    return runner.run(stages, post_hooks, environment)
