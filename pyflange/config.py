from __future__ import annotations

import logging
import os
from typing import TypedDict

from ._internal.value_codec import CodecConfig, ScalarCodec

logger = logging.getLogger(__name__)

DEFAULT_ENV = "dev"
FUNCTION_NAME_PREFIX = "flange"

__all__ = [
    "CodecConfig",
    "LambdaConfig",
    "ScalarCodec",
    "StubConfig",
    "function_name_for",
    "get_aws_profile",
    "get_env",
    "is_debug_marshalling",
]


class StubConfig(TypedDict, total=False):
    """Configuration for a :class:`~pyflange.ServiceStub` built with ``for_api``."""

    env: str
    """Deployment environment used in the function name (defaults to :func:`get_env`)."""

    function_name: str
    """Explicit function name, overriding the ``flange-<env>-<ApiName>`` convention."""

    max_workers: int
    """Size of a dedicated thread pool for ``invoke_async``; the shared pool is used when omitted."""


class LambdaConfig(TypedDict, total=False):
    """Configuration for :class:`~pyflange.LambdaTransport`."""

    profile_name: str
    """AWS credentials profile (defaults to :func:`get_aws_profile`)."""

    region_name: str
    """AWS region of the deployed functions."""


def get_env() -> str:
    """Deployment environment name from ``FLANGE_ENV``."""
    return os.environ.get("FLANGE_ENV") or DEFAULT_ENV


def get_aws_profile() -> str | None:
    """AWS credentials profile from ``FLANGE_AWS_PROFILE``, if set."""
    return os.environ.get("FLANGE_AWS_PROFILE") or None


def is_debug_marshalling() -> bool:
    return bool(os.environ.get("FLANGE_DEBUG_MARSHALLING"))


def function_name_for(api: type, env: str | None = None) -> str:
    """Name of the deployed function serving *api*: ``flange-<env>-<ApiName>``."""
    return f"{FUNCTION_NAME_PREFIX}-{env or get_env()}-{api.__name__}"
