# executor.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from .config import Settings
from .credentials import (
    ChainCredentialStore,
    CredentialStore,
    EnvCredentialStore,
    FileCredentialStore,
    ServiceRegistry,
    bind,
)
from .errors import MissingToolError, PipelineError
from .lock import FileRunLock, RedisRunLock, RunLock
from .model import (
    Checkout,
    Dir,
    Echo,
    PipelineDescriptor,
    Sh,
    Stage,
    Step,
    WithCredentials,
    WithEnv,
    WithServiceEnv,
)
from .reporter import FAILED, FAILURE, PASSED, SKIPPED, SUCCESS, PipelineResult, Reporter, StageResult
from .scope import Scope, ScopeStack, expand
from .step_workflows import checkout as checkout_workflow
from .step_workflows import shell as shell_workflow
from .ui.console import Console, get_console

# local run ---> stages in order ---> one terminal outcome


@dataclass(frozen=True)
class RunContext:
    """
    Everything a run needs, fixed before the first stage starts.

    `environment` is the pipeline-level environment; `base_env` is the
    runner's own process environment captured at start. Neither changes
    during the run.
    """
    pipeline: str
    workspace: Path
    environment: Mapping[str, str]
    base_env: Mapping[str, str]
    shell: str
    credentials: CredentialStore
    services: ServiceRegistry
    console: Console


class StepRunner:
    """Runs the steps of one stage inside its scope stack."""

    def __init__(self, ctx: RunContext, stage: Stage, scopes: ScopeStack):
        self.ctx = ctx
        self.stage_name = stage.name
        self.scopes = scopes
        self.steps_run = 0

    @property
    def console(self) -> Console:
        return self.ctx.console

    def process_env(self) -> Dict[str, str]:
        return self.scopes.process_env(self.ctx.base_env)

    def run(self, steps) -> None:
        for step in steps:
            self.run_step(step)

    def run_step(self, step: Step) -> None:
        handler = BLOCK_HANDLERS.get(type(step))
        if handler is not None:
            self.console.print_debug(f"[{self.stage_name}] enter {step.display_name}")
            handler(self, step)
            return

        action = STEP_WORKFLOWS.get(type(step))
        if action is None:
            raise PipelineError(f"[{self.stage_name}] unsupported step type: {type(step).__name__}")
        self.console.print_step(step.display_name)
        self.steps_run += 1
        action(self, step)


# ---------------------------------------------------------------------
# Leaf steps
# ---------------------------------------------------------------------

def _run_echo(runner: StepRunner, step: Echo) -> None:
    runner.console.print_output(step.message)


STEP_WORKFLOWS: Dict[type, Callable] = {
    Sh: shell_workflow.run_step,
    Echo: _run_echo,
    Checkout: checkout_workflow.run_step,
}


# ---------------------------------------------------------------------
# Scoped blocks
# ---------------------------------------------------------------------

def _enter_dir(runner: StepRunner, step: Dir) -> None:
    path = expand(step.path, runner.process_env(), where="dir")
    cwd = (runner.scopes.current.cwd / path).resolve()
    cwd.mkdir(parents=True, exist_ok=True)
    with runner.scopes.push(cwd=cwd):
        runner.run(step.steps)


def _enter_credentials(runner: StepRunner, step: WithCredentials) -> None:
    variables = runner.process_env()
    env: Dict[str, str] = {}
    secrets: list[str] = []
    for binding in step.bindings:
        cid = expand(binding.credentials_id, variables, where="credentials id")
        bound_env, bound_secrets = bind(_with_id(binding, cid), runner.ctx.credentials)
        env.update(bound_env)
        secrets.extend(bound_secrets)

    # masked for the rest of the run, not only inside the block
    runner.console.redactor.add(*secrets)
    with runner.scopes.push(env=env):
        runner.run(step.steps)


def _with_id(binding, credentials_id: str):
    if binding.credentials_id == credentials_id:
        return binding
    return replace(binding, credentials_id=credentials_id)


def _enter_service_env(runner: StepRunner, step: WithServiceEnv) -> None:
    name = expand(step.name, runner.process_env(), where="with_service_env")
    service = runner.ctx.services.resolve(name)
    runner.console.redactor.add(*service.secrets())
    runner.console.print_output(f"Injecting service context '{service.name}' ({service.url})")
    with runner.scopes.push(env=service.variables()):
        runner.run(step.steps)


def _enter_env(runner: StepRunner, step: WithEnv) -> None:
    with runner.scopes.push(env=step.variables):
        runner.run(step.steps)


BLOCK_HANDLERS: Dict[type, Callable] = {
    Dir: _enter_dir,
    WithCredentials: _enter_credentials,
    WithServiceEnv: _enter_service_env,
    WithEnv: _enter_env,
}


# ---------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------

def run_stage(ctx: RunContext, stage: Stage) -> StageResult:
    """
    Run one stage's steps in order. A PipelineError stops the stage and is
    recorded on the result; anything else propagates.
    """
    ctx.console.print_stage_start(stage.name)
    root = Scope(cwd=ctx.workspace, env=ctx.environment)
    scopes = ScopeStack(root)
    runner = StepRunner(ctx, stage, scopes)

    try:
        with scopes.push(env=stage.environment):
            if stage.dir is not None:
                _enter_dir(runner, Dir(path=stage.dir, steps=stage.steps))
            else:
                runner.run(stage.steps)
    except PipelineError as e:
        hint = e.hint if isinstance(e, MissingToolError) else None
        result = StageResult(stage.name, FAILED, steps_run=runner.steps_run, error=e)
        ctx.console.print_failure(stage.name, str(e), exit_code=result.exit_code, hint=hint)
        if getattr(e, "output", "") and ctx.console.debug:
            ctx.console.print_info(e.output)
        return result

    ctx.console.print_success(stage.name)
    return StageResult(stage.name, PASSED, steps_run=runner.steps_run)


def run_stages(ctx: RunContext, descriptor: PipelineDescriptor) -> PipelineResult:
    """Stages strictly in declaration order; halt at the first failure."""
    result = PipelineResult(pipeline=descriptor.name, status=SUCCESS)
    halted = False

    for stage in descriptor.stages:
        if halted:
            ctx.console.print_stage_skipped(stage.name, "earlier failure")
            result.stages.append(StageResult(stage.name, SKIPPED))
            continue

        stage_result = run_stage(ctx, stage)
        result.stages.append(stage_result)
        if stage_result.status == FAILED:
            result.status = FAILURE
            if result.error is None:
                result.error = stage_result.error
            if not stage.continue_on_error:
                halted = True

    return result


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def default_credentials(settings: Settings, environ: Mapping[str, str] | None = None) -> CredentialStore:
    stores: list[CredentialStore] = [EnvCredentialStore(environ)]
    if settings.credentials_file is not None:
        stores.append(FileCredentialStore(settings.credentials_file))
    return ChainCredentialStore(*stores)


def default_services(settings: Settings) -> ServiceRegistry:
    if settings.services_file is not None:
        return ServiceRegistry.from_file(settings.services_file)
    return ServiceRegistry()


def make_lock(descriptor: PipelineDescriptor, settings: Settings, workspace: Path, console: Console) -> RunLock:
    kwargs = dict(policy=settings.lock_policy, poll_interval=settings.lock_poll_interval, on_wait=console.print_info)
    if settings.redis_url:
        return RedisRunLock.from_url(descriptor.name, settings.redis_url, **kwargs)
    lock_dir = settings.lock_dir if settings.lock_dir.is_absolute() else workspace / settings.lock_dir
    return FileRunLock(descriptor.name, lock_dir, **kwargs)


def run_pipeline(
    descriptor: PipelineDescriptor,
    *,
    workspace: str | Path = ".",
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialStore] = None,
    services: Optional[ServiceRegistry] = None,
    console: Optional[Console] = None,
    lock: Optional[RunLock] = None,
    source: str = "<descriptor>",
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineResult:
    """
    Run a pipeline and report exactly one outcome.

    With `disable_concurrent_builds` the whole run holds the pipeline's run
    lock (`lock`, or one built from `settings`).
    """
    console = console or get_console()
    workspace_p = Path(workspace).resolve()
    workspace_p.mkdir(parents=True, exist_ok=True)
    base_env = dict(os.environ if environ is None else environ)
    reporter = Reporter(console, descriptor.post)

    previous_timestamps = console.timestamps
    if descriptor.options.timestamps:
        console.timestamps = True

    environment = dict(descriptor.environment)
    environment.setdefault("WORKSPACE", str(workspace_p))
    environment.setdefault("PIPELINE_NAME", descriptor.name)

    try:
        try:
            if settings is None:
                settings = Settings.from_env(environ)
            if credentials is None:
                credentials = default_credentials(settings, environ)
            if services is None:
                services = default_services(settings)

            ctx = RunContext(
                pipeline=descriptor.name,
                workspace=workspace_p,
                environment=MappingProxyType(environment),
                base_env=MappingProxyType(base_env),
                shell=settings.shell,
                credentials=credentials,
                services=services,
                console=console,
            )

            if descriptor.options.disable_concurrent_builds:
                if lock is None:
                    lock = make_lock(descriptor, settings, workspace_p, console)
                with lock:
                    result = _started(ctx, descriptor, source)
            else:
                result = _started(ctx, descriptor, source)
        except PipelineError as e:
            console.print_exception(e)
            result = PipelineResult(
                pipeline=descriptor.name,
                status=FAILURE,
                stages=[StageResult(s.name, SKIPPED) for s in descriptor.stages],
                error=e,
            )
        except Exception as e:
            reporter.report(PipelineResult(pipeline=descriptor.name, status=FAILURE, error=e))
            raise

        return reporter.report(result)
    finally:
        console.timestamps = previous_timestamps


def _started(ctx: RunContext, descriptor: PipelineDescriptor, source: str) -> PipelineResult:
    ctx.console.print_run_started(
        pipeline=descriptor.name,
        source=source,
        stage_count=len(descriptor.stages),
        agent=descriptor.agent,
    )
    return run_stages(ctx, descriptor)
