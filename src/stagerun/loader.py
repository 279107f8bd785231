# loader.py
from __future__ import annotations

import runpy
from pathlib import Path

from .codec import parse_descriptor
from .errors import DescriptorError
from .model import PipelineDescriptor, validate_descriptor

DESCRIPTOR_SUFFIXES = (".yaml", ".yml", ".json")


def load_pipeline(path: str | Path) -> PipelineDescriptor:
    """
    Load a pipeline descriptor from a file.

    - .yaml / .yml / .json: parsed as a descriptor document
    - .py: executed; the file must define either
        - build_pipeline() -> PipelineDescriptor
        - PIPELINE = PipelineDescriptor(...)
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")

    if p.suffix in DESCRIPTOR_SUFFIXES:
        return parse_descriptor(p.read_text(encoding="utf-8"))
    if p.suffix != ".py":
        raise DescriptorError(
            f"Unsupported pipeline file type: {p.name} "
            f"(expected .py or one of {', '.join(DESCRIPTOR_SUFFIXES)})"
        )
    return _load_python_pipeline(p)


def _load_python_pipeline(p: Path) -> PipelineDescriptor:
    module_name = f"stagerun_pipeline_{p.stem}"
    globals_dict = runpy.run_path(str(p), run_name=module_name)

    descriptor = None
    if callable(globals_dict.get("build_pipeline")):
        descriptor = globals_dict["build_pipeline"]()
    elif "PIPELINE" in globals_dict:
        descriptor = globals_dict["PIPELINE"]

    if not isinstance(descriptor, PipelineDescriptor):
        raise DescriptorError(
            f"{p.name} must define build_pipeline() -> PipelineDescriptor "
            "or PIPELINE = pipeline(...)."
        )
    return validate_descriptor(descriptor)
