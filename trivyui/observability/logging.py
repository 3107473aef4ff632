"""Structured logging configuration using structlog.

JSON lines are the default (in-cluster deployments ship stderr to a log
pipeline); ``console`` renders coloured key/value output for local runs
against a developer kubeconfig.
"""

from __future__ import annotations

import logging
import sys

import structlog

_RENDERERS = ("json", "console")


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog output on stderr at *level* using renderer *fmt*."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: structlog.types.Processor
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str, **context: object) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name and optional extra context.

    Per-cluster components pass ``cluster=<name>`` so every line they emit
    carries the cluster identity.
    """
    return structlog.get_logger(component=component, **context)  # type: ignore[return-value]
