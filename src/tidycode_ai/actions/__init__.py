"""Built-in actions and their registration."""

from functools import partial

from .convert import convert_action
from .explain import explain_action, explain_stream_action
from .fix_syntax import fix_syntax_action
from .generate_tests import generate_tests_action, generate_tests_stream_action
from .infer_schema import infer_schema_action
from .manager import (
    ACTION_METADATA,
    ActionContext,
    ActionManager,
    ActionMetadata,
    ActionResult,
)
from .refactor import refactor_action, refactor_stream_action
from .summarize_logs import summarize_logs_action, summarize_logs_stream_action
from .transform_text import transform_text_action, transform_text_stream_action

DEFAULT_ACTIONS = {
    "explain": explain_action,
    "refactor": refactor_action,
    "convert": convert_action,
    "infer-schema": infer_schema_action,
    "summarize-logs": summarize_logs_action,
    "generate-tests": generate_tests_action,
    "fix-syntax": fix_syntax_action,
    "transform-text": transform_text_action,
}

DEFAULT_STREAM_ACTIONS = {
    "explain": explain_stream_action,
    "refactor": refactor_stream_action,
    "summarize-logs": summarize_logs_stream_action,
    "generate-tests": generate_tests_stream_action,
    "transform-text": transform_text_stream_action,
}


def register_default_actions(action_manager: ActionManager) -> ActionManager:
    """Bind the built-in handlers to ``action_manager``'s provider manager."""
    provider_manager = action_manager.provider_manager
    for action_id, handler in DEFAULT_ACTIONS.items():
        action_manager.register_action(action_id, partial(handler, provider_manager))
    for action_id, handler in DEFAULT_STREAM_ACTIONS.items():
        action_manager.register_stream_action(action_id, partial(handler, provider_manager))
    return action_manager


__all__ = [
    "ACTION_METADATA",
    "ActionContext",
    "ActionManager",
    "ActionMetadata",
    "ActionResult",
    "DEFAULT_ACTIONS",
    "DEFAULT_STREAM_ACTIONS",
    "register_default_actions",
]
