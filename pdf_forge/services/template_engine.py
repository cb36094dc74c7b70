"""
Document templates rendered to HTML with Jinja2.

Built-in templates (invoice, receipt, certificate, report, contract) live in
``pdf_forge/templates``. Client-supplied templates are rendered in a
sandboxed environment so they cannot reach Python internals.
"""

import logging
import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from pdf_forge.utils.error_handler import InvalidRequestError, TemplateRenderError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")
BUILTIN_TEMPLATES = ("invoice", "receipt", "certificate", "report", "contract")
DEFAULT_CURRENCY = "$"


def _number(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def format_money(amount: Any, currency: Optional[str] = None) -> str:
    """``1234.5`` -> ``$1234.50``"""
    return f"{currency or DEFAULT_CURRENCY}{_number(amount):.2f}"


def format_date(value: Any, fmt: Optional[str] = None) -> str:
    """
    Format a datetime (or ISO date string) for display.

    Without ``fmt`` the long form is used, e.g. ``January 2, 2026``.
    Strings that are not ISO dates are returned unchanged.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if not isinstance(value, (date, datetime)):
        return "" if value is None else str(value)
    if fmt:
        return value.strftime(fmt)
    return f"{value:%B} {value.day}, {value.year}"


def percentage(amount: Any, total: Any) -> str:
    total = _number(total)
    if total == 0:
        return "0%"
    return f"{_number(amount) / total * 100:.1f}%"


def divide(a: Any, b: Any) -> float:
    b = _number(b)
    if b == 0:
        return 0.0
    return _number(a) / b


def seq(start: int, end: int) -> List[int]:
    """Inclusive integer range."""
    return list(range(int(start), int(end) + 1))


def _install_helpers(env: Environment) -> None:
    env.filters["format_money"] = format_money
    env.filters["format_date"] = format_date
    env.filters["percentage"] = percentage
    env.globals.update(
        now=datetime.now,
        format_money=format_money,
        format_date=format_date,
        percentage=percentage,
        add=lambda a, b: _number(a) + _number(b),
        subtract=lambda a, b: _number(a) - _number(b),
        multiply=lambda a, b: _number(a) * _number(b),
        divide=divide,
        seq=seq,
    )


class TemplateEngine:
    """Renders built-in and custom templates to HTML strings."""

    def __init__(self, template_dir: str = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _install_helpers(self.env)

        self.sandbox = SandboxedEnvironment(autoescape=True)
        _install_helpers(self.sandbox)

    def available(self) -> List[str]:
        return list(BUILTIN_TEMPLATES)

    def render(self, name: str, data: Optional[Dict[str, Any]] = None) -> str:
        """
        Render a built-in template.

        Raises:
            InvalidRequestError: If the template name is unknown
            TemplateRenderError: If rendering fails
        """
        name = (name or "").strip().lower()
        if name not in BUILTIN_TEMPLATES:
            raise InvalidRequestError(
                f"Unknown template: {name or '(none)'}. Available: {', '.join(BUILTIN_TEMPLATES)}",
                error_code="template_not_found"
            )

        try:
            html = self.env.get_template(f"{name}.html").render(data or {})
        except Exception as e:
            logger.error(f"Template '{name}' failed to render: {str(e)}")
            raise TemplateRenderError(f"Template execution failed: {str(e)}")

        logger.debug(f"Rendered template '{name}' ({len(html)} chars)")
        return html

    def render_custom(self, source: str, data: Optional[Dict[str, Any]] = None) -> str:
        """
        Render client-supplied template source in the sandbox.

        Raises:
            InvalidRequestError: If the source is empty
            TemplateRenderError: On syntax errors, sandbox violations or render failures
        """
        if not source or not source.strip():
            raise InvalidRequestError("Custom template HTML is required", error_code="empty_content")

        try:
            template = self.sandbox.from_string(source)
        except TemplateError as e:
            raise TemplateRenderError(f"Template parse error: {str(e)}")

        try:
            return template.render(data or {})
        except Exception as e:
            # Includes sandbox SecurityError and errors raised by template expressions
            logger.warning(f"Custom template failed to render: {str(e)}")
            raise TemplateRenderError(f"Template execution failed: {str(e)}")
