# codec.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional

import yaml

from .errors import DescriptorError
from .model import (
    Checkout,
    CredentialBinding,
    Dir,
    Echo,
    Options,
    PipelineDescriptor,
    Post,
    SecretText,
    Sh,
    Stage,
    Step,
    UsernamePassword,
    WithCredentials,
    WithEnv,
    WithServiceEnv,
    validate_descriptor,
)

FORMATS = ("yaml", "json")


# ---------------------------------------------------------------------
# Descriptor -> plain data
# ---------------------------------------------------------------------

def binding_to_dict(binding: CredentialBinding) -> dict:
    if isinstance(binding, UsernamePassword):
        return {
            "username_password": {
                "credentials_id": binding.credentials_id,
                "username_variable": binding.username_variable,
                "password_variable": binding.password_variable,
            }
        }
    if isinstance(binding, SecretText):
        return {"secret_text": {"credentials_id": binding.credentials_id, "variable": binding.variable}}
    raise TypeError(f"Unknown credential binding: {binding!r}")


def step_to_dict(step: Step) -> dict:
    """Each step becomes a single-key mapping: {kind: payload}."""
    if isinstance(step, Sh):
        if step.label is None:
            return {"sh": step.script}
        return {"sh": {"script": step.script, "label": step.label}}
    if isinstance(step, Echo):
        return {"echo": step.message}
    if isinstance(step, Checkout):
        return {"git": {"url": step.url, "branch": step.branch}}
    if isinstance(step, Dir):
        return {"dir": {"path": step.path, "steps": [step_to_dict(s) for s in step.steps]}}
    if isinstance(step, WithCredentials):
        return {
            "with_credentials": {
                "bindings": [binding_to_dict(b) for b in step.bindings],
                "steps": [step_to_dict(s) for s in step.steps],
            }
        }
    if isinstance(step, WithServiceEnv):
        return {"with_service_env": {"name": step.name, "steps": [step_to_dict(s) for s in step.steps]}}
    if isinstance(step, WithEnv):
        return {"with_env": {"variables": dict(step.variables), "steps": [step_to_dict(s) for s in step.steps]}}
    raise TypeError(f"Unknown step type: {step!r}")


def stage_to_dict(stage: Stage) -> dict:
    stage_dict: Dict[str, Any] = {
        "name": stage.name,
        "steps": [step_to_dict(s) for s in stage.steps],
    }
    # optional fields only when set, keeps documents close to hand-written ones
    if stage.dir is not None:
        stage_dict["dir"] = stage.dir
    if stage.environment:
        stage_dict["environment"] = dict(stage.environment)
    if stage.continue_on_error:
        stage_dict["continue_on_error"] = True
    return stage_dict


def descriptor_to_dict(descriptor: PipelineDescriptor) -> dict:
    data: Dict[str, Any] = {"name": descriptor.name}
    if descriptor.agent is not None:
        data["agent"] = descriptor.agent
    data["environment"] = dict(descriptor.environment)
    data["options"] = {
        "timestamps": descriptor.options.timestamps,
        "disable_concurrent_builds": descriptor.options.disable_concurrent_builds,
    }
    data["stages"] = [stage_to_dict(s) for s in descriptor.stages]

    post = {k: v for k, v in (
        ("success", descriptor.post.success),
        ("failure", descriptor.post.failure),
        ("always", descriptor.post.always),
    ) if v is not None}
    if post:
        data["post"] = post
    return data


# ---------------------------------------------------------------------
# Plain data -> descriptor
# ---------------------------------------------------------------------

def _require(mapping: dict, key: str, where: str) -> Any:
    if not isinstance(mapping, dict):
        raise DescriptorError(f"{where}: expected a mapping, got {type(mapping).__name__}")
    if key not in mapping:
        raise DescriptorError(f"{where}: missing required field '{key}'")
    return mapping[key]


def _flag(mapping: dict, key: str, where: str) -> bool:
    value = mapping.get(key, False)
    if not isinstance(value, bool):
        raise DescriptorError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


def _opt_text(mapping: dict, key: str, where: str) -> Optional[str]:
    value = mapping.get(key)
    if value is not None and not isinstance(value, str):
        raise DescriptorError(f"{where}: '{key}' must be a string, got {value!r}")
    return value


def _str_map(value: Any, where: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DescriptorError(f"{where}: expected a mapping of names to values")
    return {str(k): str(v) for k, v in value.items()}


def _single_key(entry: Any, where: str) -> tuple[str, Any]:
    if not isinstance(entry, dict) or len(entry) != 1:
        raise DescriptorError(f"{where}: expected a single-key mapping like {{sh: '...'}}, got {entry!r}")
    return next(iter(entry.items()))


def binding_from_dict(entry: Any, where: str) -> CredentialBinding:
    kind, payload = _single_key(entry, where)
    if kind == "username_password":
        return UsernamePassword(
            credentials_id=str(_require(payload, "credentials_id", where)),
            username_variable=str(_require(payload, "username_variable", where)),
            password_variable=str(_require(payload, "password_variable", where)),
        )
    if kind == "secret_text":
        return SecretText(
            credentials_id=str(_require(payload, "credentials_id", where)),
            variable=str(_require(payload, "variable", where)),
        )
    raise DescriptorError(f"{where}: unknown credential binding kind '{kind}'")


def _steps_from_list(items: Any, where: str) -> tuple:
    if not isinstance(items, list) or not items:
        raise DescriptorError(f"{where}: 'steps' must be a non-empty list")
    return tuple(step_from_dict(item, f"{where} step {i + 1}") for i, item in enumerate(items))


def step_from_dict(entry: Any, where: str = "step") -> Step:
    kind, payload = _single_key(entry, where)

    if kind == "sh":
        if isinstance(payload, str):
            return Sh(script=payload)
        return Sh(script=str(_require(payload, "script", where)), label=payload.get("label"))
    if kind == "echo":
        return Echo(message=str(payload))
    if kind == "git":
        return Checkout(url=str(_require(payload, "url", where)), branch=str(payload.get("branch", "main")))
    if kind == "dir":
        return Dir(
            path=str(_require(payload, "path", where)),
            steps=_steps_from_list(_require(payload, "steps", where), where),
        )
    if kind == "with_credentials":
        bindings = _require(payload, "bindings", where)
        if not isinstance(bindings, list) or not bindings:
            raise DescriptorError(f"{where}: 'bindings' must be a non-empty list")
        return WithCredentials(
            bindings=tuple(binding_from_dict(b, where) for b in bindings),
            steps=_steps_from_list(_require(payload, "steps", where), where),
        )
    if kind == "with_service_env":
        return WithServiceEnv(
            name=str(_require(payload, "name", where)),
            steps=_steps_from_list(_require(payload, "steps", where), where),
        )
    if kind == "with_env":
        return WithEnv(
            variables=_str_map(_require(payload, "variables", where), where),
            steps=_steps_from_list(_require(payload, "steps", where), where),
        )
    raise DescriptorError(f"{where}: unknown step kind '{kind}'")


def stage_from_dict(stage_dict: Any, index: int) -> Stage:
    where = f"stage {index + 1}"
    name = _require(stage_dict, "name", where)
    where = f"stage '{name}'"
    return Stage(
        name=str(name),
        steps=_steps_from_list(_require(stage_dict, "steps", where), where),
        dir=_opt_text(stage_dict, "dir", where),
        environment=_str_map(stage_dict.get("environment"), where),
        continue_on_error=_flag(stage_dict, "continue_on_error", where),
    )


def descriptor_from_dict(data: Any) -> PipelineDescriptor:
    """
    Build a PipelineDescriptor from its plain-data form.
    This is the reverse of descriptor_to_dict().
    """
    stages = _require(data, "stages", "pipeline")
    if not isinstance(stages, list):
        raise DescriptorError("pipeline: 'stages' must be a list")

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise DescriptorError("pipeline: 'options' must be a mapping")
    unknown = set(options) - {"timestamps", "disable_concurrent_builds"}
    if unknown:
        raise DescriptorError(f"pipeline: unknown options {sorted(unknown)}")

    post = data.get("post") or {}
    if not isinstance(post, dict):
        raise DescriptorError("pipeline: 'post' must be a mapping")

    descriptor = PipelineDescriptor(
        name=str(_require(data, "name", "pipeline")),
        stages=tuple(stage_from_dict(s, i) for i, s in enumerate(stages)),
        environment=_str_map(data.get("environment"), "pipeline environment"),
        options=Options(
            timestamps=_flag(options, "timestamps", "pipeline options"),
            disable_concurrent_builds=_flag(options, "disable_concurrent_builds", "pipeline options"),
        ),
        agent=_opt_text(data, "agent", "pipeline"),
        post=Post(
            success=_opt_text(post, "success", "pipeline post"),
            failure=_opt_text(post, "failure", "pipeline post"),
            always=_opt_text(post, "always", "pipeline post"),
        ),
    )
    return validate_descriptor(descriptor)


# ---------------------------------------------------------------------
# Text formats
# ---------------------------------------------------------------------

def dump_descriptor(descriptor: PipelineDescriptor, format: str = "yaml") -> str:
    data = descriptor_to_dict(descriptor)
    if format == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if format == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    raise ValueError(f"Unknown format {format!r}, expected one of {FORMATS}")


def parse_descriptor(text: str) -> PipelineDescriptor:
    """Parse a YAML or JSON descriptor document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DescriptorError(f"Invalid descriptor document: {e}") from e
    if not isinstance(data, dict):
        raise DescriptorError("Descriptor document must be a mapping at the top level")
    return descriptor_from_dict(data)
