"""
Identity template rendering for role secret_data.

Role ``secret_data`` is a nested mapping whose string leaves may be identity
templates such as ``{{identity.entity.name}}``. Rendering walks the tree and
substitutes only leaves that consist of a single template marker.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from approved_secrets.constants import TEMPLATE_MARKER_PATTERN

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(TEMPLATE_MARKER_PATTERN)

Renderer = Callable[[str], Awaitable[str]]


def is_template(value: Any) -> bool:
    return isinstance(value, str) and _TEMPLATE_RE.match(value) is not None


async def render_secret_data(
    data: dict[str, Any] | None, render: Renderer
) -> dict[str, Any]:
    """
    Render identity templates in a nested secret_data mapping.

    A leaf whose template fails to render keeps its original value.

    Args:
        data: Role secret_data (may be None)
        render: Coroutine function rendering one template string

    Returns:
        A new mapping with rendered leaves; the input is not modified
    """
    rendered: dict[str, Any] = {}
    for key, value in (data or {}).items():
        if isinstance(value, dict):
            rendered[key] = await render_secret_data(value, render)
        elif is_template(value):
            try:
                rendered[key] = await render(value)
            except Exception as e:
                logger.warning(
                    f"Could not render template for secret_data key {key!r}: {e}"
                )
                rendered[key] = value
        else:
            rendered[key] = value
    return rendered
