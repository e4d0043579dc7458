"""
Message template rendering.

Templates use single-brace placeholders such as ``{streamer}``. Older saved
settings used ``{{streamer}}``; those are collapsed one level before
substitution. Unknown placeholders are left as written.
"""
import re
from typing import Mapping

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def normalize_placeholders(template: str) -> str:
    """
    Collapse ``{{x}}`` to ``{x}``, exactly one nesting level.

    An opening ``{{`` without a closing ``}}`` is left verbatim.
    """
    out = []
    i = 0
    while i < len(template):
        if template.startswith("{{", i):
            end = template.find("}}", i + 2)
            if end == -1:
                out.append(template[i:])
                break
            out.append("{" + template[i + 2:end] + "}")
            i = end + 2
        else:
            out.append(template[i])
            i += 1
    return "".join(out)


def render_template(template: str, values: Mapping[str, str]) -> str:
    """
    Normalize the template, then substitute known placeholders.

    Substitution is a single pass, so a value that itself contains
    ``{title}`` is inserted literally.
    """
    normalized = normalize_placeholders(template)
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), normalized)
