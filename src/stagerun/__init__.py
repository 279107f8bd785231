from .dsl import pipeline, stage, sh, echo, git, dir_, with_credentials, with_service_env, with_env, username_password, secret_text
from .executor import run_pipeline
from .loader import load_pipeline
from .model import PipelineDescriptor, Stage

__all__ = [
    "pipeline", "stage", "sh", "echo", "git", "dir_", "with_credentials", "with_service_env", "with_env",
    "username_password", "secret_text", "run_pipeline", "load_pipeline", "PipelineDescriptor", "Stage",
]
