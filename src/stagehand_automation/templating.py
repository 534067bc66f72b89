"""Jinja2 rendering of task parameters and guard expressions.

Every lookup is strict: a name that resolves to nothing raises
``UnresolvedReferenceError`` instead of rendering as an empty string.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional
import re

import jinja2

from .errors import UnresolvedReferenceError
from .facts import FactRef, FactStore

_SINGLE_EXPR = re.compile(r"\{\{\s*(.+?)\s*\}\}", re.DOTALL)


def _search(value: Any, pattern: str) -> bool:
    return re.search(pattern, str(value)) is not None


def _match(value: Any, pattern: str) -> bool:
    return re.match(pattern, str(value)) is not None


def _regex_search(value: Any, pattern: str) -> Optional[str]:
    found = re.search(pattern, str(value))
    if not found:
        return None
    return found.group(1) if found.groups() else found.group(0)


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "on", "1"}
    return bool(value)


class TemplateEngine:
    def __init__(self, store: Optional[FactStore] = None):
        self.store = store
        self.env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.tests["search"] = _search
        self.env.tests["match"] = _match
        self.env.filters["regex_search"] = _regex_search
        self.env.filters["bool"] = _bool

    def render(self, value: Any, context: Mapping[str, Any]) -> Any:
        if isinstance(value, FactRef):
            if self.store is None:
                raise UnresolvedReferenceError(str(value), "no fact store available")
            return self.store.resolve_ref(value)
        if isinstance(value, str):
            return self.render_string(value, context)
        if isinstance(value, dict):
            return {k: self.render(v, context) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.render(v, context) for v in value]
        return value

    def render_string(self, text: str, context: Mapping[str, Any]) -> Any:
        if "{{" not in text and "{%" not in text:
            return text
        single = _SINGLE_EXPR.fullmatch(text)
        if single and "}}" not in single.group(1):
            return self.evaluate(single.group(1), context)
        try:
            return self.env.from_string(text).render(dict(context))
        except jinja2.UndefinedError as exc:
            raise UnresolvedReferenceError(_undefined_name(exc), str(exc)) from None

    def evaluate(self, expression: str, context: Mapping[str, Any]) -> Any:
        try:
            compiled = self.env.compile_expression(expression, undefined_to_none=False)
            result = compiled(**dict(context))
        except jinja2.UndefinedError as exc:
            raise UnresolvedReferenceError(_undefined_name(exc), str(exc)) from None
        if isinstance(result, jinja2.Undefined):
            # Forces StrictUndefined to raise with the missing name.
            try:
                str(result)
            except jinja2.UndefinedError as exc:
                raise UnresolvedReferenceError(_undefined_name(exc), str(exc)) from None
        return result

    def condition(self, expression: Any, context: Mapping[str, Any]) -> bool:
        """Evaluate a guard; lists are treated as an AND of their items."""

        if expression is None:
            return True
        if isinstance(expression, bool):
            return expression
        if isinstance(expression, (list, tuple)):
            return all(self.condition(item, context) for item in expression)
        text = str(expression).strip()
        single = _SINGLE_EXPR.fullmatch(text)
        if single and "}}" not in single.group(1):
            text = single.group(1)
        elif "{{" in text:
            return _bool(self.render_string(text, context))
        return _bool(self.evaluate(text, context))

    def check_syntax(self, expression: Any) -> None:
        """Raise ``ValueError`` if a guard or template does not parse."""

        if expression is None or isinstance(expression, (bool, int, float)):
            return
        if isinstance(expression, (list, tuple)):
            for item in expression:
                self.check_syntax(item)
            return
        text = str(expression).strip()
        if "{{" not in text and "{%" not in text:
            text = "{{ " + text + " }}"
        try:
            self.env.parse(text)
        except jinja2.TemplateSyntaxError as exc:
            raise ValueError(f"invalid expression {expression!r}: {exc.message}") from None


def _undefined_name(exc: jinja2.UndefinedError) -> str:
    found = re.search(r"'([^']+)' is undefined", str(exc))
    if found:
        return found.group(1)
    found = re.search(r"has no attribute '([^']+)'", str(exc))
    if found:
        return found.group(1)
    return str(exc)
