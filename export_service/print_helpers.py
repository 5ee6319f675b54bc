"""
Helper functions for the printable document views.

These functions turn stored document bodies into complete HTML pages for the
headless browser to print. All stored text is HTML-escaped.

Every page carries its render status in a <meta name="render-status"> marker
so the orchestrator can tell a document from an error page without reading
the page text.
"""

import json
import re
from html import escape
from typing import Any, Dict, List, Optional

from .models import Document, DocumentKind

RENDER_STATUS_META = "render-status"

_ERROR_PAGES = {
    "unauthorized": ("Unauthorized", "Invalid or expired link."),
    "not-found": ("Not found", "Document not found."),
    "forbidden": ("Forbidden", "This document cannot be displayed."),
}

_NUMBERED_RE = re.compile(r"^[0-9]+\.")
_BULLET_RE = re.compile(r"^[-•]\s+")


def _text(value: Any) -> str:
    """Escape a scalar for HTML; non-strings become compact JSON."""
    if value is None:
        return ""
    if isinstance(value, str):
        return escape(value.strip())
    return escape(json.dumps(value, ensure_ascii=False))


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _bullets(items: List[str]) -> str:
    if not items:
        return ""
    return "<ul>" + "".join(f"<li>{_text(item)}</li>" for item in items) + "</ul>"


def _section(title: str, inner_html: str) -> str:
    if not inner_html:
        return ""
    return f"<h2>{escape(title)}</h2>{inner_html}"


def build_print_html(
    title: str,
    content_html: str,
    watermark_text: Optional[str] = None,
    render_status: str = "ok",
) -> str:
    """
    Build the complete printable HTML page.

    The watermark, when given, is a fixed full-page layer rotated -28deg
    behind the content layer and ignores pointer events. Geometry is the
    same for every document kind.

    Args:
        title: Page title
        content_html: Body HTML (already escaped)
        watermark_text: Watermark text, or None for no watermark
        render_status: Value of the render-status marker

    Returns:
        Complete HTML document string
    """
    watermark_html = ""
    if watermark_text:
        watermark_html = f'<div class="wm" aria-hidden="true"><span>{escape(watermark_text)}</span></div>'

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <meta name="{RENDER_STATUS_META}" content="{escape(render_status)}">
    <title>{escape(title)}</title>
    <style>
        :root {{
            --fg: #0b0f19;
            --muted: #4b5563;
            --border: #e5e7eb;
        }}
        * {{ box-sizing: border-box; }}
        body {{
            margin: 0;
            font-family: ui-sans-serif, system-ui, -apple-system, "Segoe UI", Roboto, Helvetica, Arial;
            color: var(--fg);
            background: #fff;
        }}
        .page {{
            position: relative;
            z-index: 1;
            padding: 32px 36px;
        }}
        h1, h2, h3 {{ margin: 0 0 10px 0; }}
        h1 {{ font-size: 22px; }}
        h2 {{
            font-size: 14px;
            margin-top: 18px;
            text-transform: uppercase;
            letter-spacing: .08em;
            color: var(--muted);
        }}
        p {{ margin: 0 0 10px 0; line-height: 1.45; }}
        ul {{ margin: 6px 0 0 18px; padding: 0; }}
        li {{ margin: 0 0 6px 0; line-height: 1.45; }}
        .hr {{ height: 1px; background: var(--border); margin: 14px 0; }}
        .small {{ font-size: 12px; color: var(--muted); }}
        .row {{ display: flex; justify-content: space-between; gap: 12px; }}
        .spacer {{ height: 8px; }}
        .block-title {{ margin-top: 14px; font-weight: 700; }}
        .question {{ margin-top: 10px; }}
        .wm {{
            position: fixed;
            inset: 0;
            z-index: 0;
            pointer-events: none;
            user-select: none;
        }}
        .wm span {{
            position: absolute;
            top: 45%;
            left: 50%;
            transform: translate(-50%, -50%) rotate(-28deg);
            font-size: 54px;
            color: rgba(0, 0, 0, 0.07);
            white-space: nowrap;
            font-weight: 700;
            letter-spacing: 0.08em;
        }}
    </style>
</head>
<body>
    {watermark_html}
    <div class="page">{content_html}</div>
</body>
</html>
"""


def build_error_html(render_status: str) -> str:
    """Error page for a non-ok render status. Never includes request data."""
    heading, detail = _ERROR_PAGES.get(render_status, _ERROR_PAGES["forbidden"])
    return build_print_html(
        heading,
        f'<h1>{heading}</h1><p class="small">{detail}</p>',
        watermark_text=None,
        render_status=render_status,
    )


# === Resume ===

def resume_to_html(body: Dict[str, Any]) -> str:
    """Render a résumé builder result."""
    result = body.get("result") if isinstance(body.get("result"), dict) else body

    parts = [f"<h1>{_text(result.get('headline')) or 'Resume'}</h1>", '<div class="hr"></div>']
    parts.append(_section("Professional Summary", _bullets(_string_list(result.get("professionalSummary")))))
    parts.append(_section("Core Skills", _bullets(_string_list(result.get("coreSkills")))))
    parts.append(_section("Tools & Technologies", _bullets(_string_list(result.get("toolsAndTech")))))

    experience_html = []
    for job in _dict_list(result.get("experience")):
        heading = " · ".join(_text(job.get(k)) for k in ("role", "company") if job.get(k))
        meta = " · ".join(_text(job.get(k)) for k in ("location", "dates") if job.get(k))
        experience_html.append(
            f'<div class="row"><h3>{heading}</h3><span class="small">{meta}</span></div>'
            + _bullets(_string_list(job.get("bullets")))
        )
    parts.append(_section("Experience", "".join(experience_html)))

    education_html = []
    for edu in _dict_list(result.get("education")):
        line = ", ".join(_text(edu.get(k)) for k in ("degree", "institution", "year") if edu.get(k))
        if line:
            education_html.append(f"<p>{line}</p>")
    parts.append(_section("Education", "".join(education_html)))

    parts.append(_section("Certifications", _bullets(_string_list(result.get("certifications")))))

    project_html = []
    for project in _dict_list(result.get("projects")):
        project_html.append(
            f"<h3>{_text(project.get('title'))}</h3>" + _bullets(_string_list(project.get("bullets")))
        )
    parts.append(_section("Projects", "".join(project_html)))
    parts.append(_section("Achievements", _bullets(_string_list(result.get("achievements")))))

    return "".join(parts)


# === Cover letter ===

def text_to_paragraphs(content: str) -> str:
    """One paragraph per non-empty line; blank lines become spacers."""
    html_parts = []
    for line in content.replace("\r\n", "\n").split("\n"):
        if line.strip():
            html_parts.append(f"<p>{_text(line)}</p>")
        else:
            html_parts.append('<div class="spacer"></div>')
    return "".join(html_parts)


def cover_letter_to_html(body: Dict[str, Any]) -> str:
    """Render a cover letter stored as plain text."""
    content = body.get("content") or body.get("coverLetter") or body.get("text") or ""
    if not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False, indent=2)
    return '<h1>Cover Letter</h1><div class="hr"></div>' + text_to_paragraphs(content)


# === Interview guide ===

def guide_text_to_html(content: str) -> str:
    """
    Render free-form guide text.

    Short lines ending with ':' or mentioning 'section', and numbered lines,
    become block titles; '- ' / '• ' lines become bullets.
    """
    html_parts = []
    for line in content.replace("\r\n", "\n").split("\n"):
        t = line.strip()
        if not t:
            html_parts.append('<div class="spacer"></div>')
            continue

        is_heading = len(t) < 70 and (
            t.endswith(":") or "section" in t.lower() or _NUMBERED_RE.match(t)
        )
        if is_heading:
            html_parts.append(f'<div class="block-title">{_text(t.rstrip(":"))}</div>')
        elif _BULLET_RE.match(t):
            html_parts.append(f"<ul><li>{_text(_BULLET_RE.sub('', t))}</li></ul>")
        else:
            html_parts.append(f"<p>{_text(t)}</p>")
    return "".join(html_parts)


def _questions_to_html(questions: List[Any]) -> str:
    html_parts = []
    for index, q in enumerate(questions):
        if isinstance(q, dict) and isinstance(q.get("q"), str):
            q_text, a_text = q["q"], q.get("a") if isinstance(q.get("a"), str) else ""
        elif isinstance(q, str):
            q_text, a_text = q, ""
        else:
            q_text, a_text = f"Question {index + 1}", ""
        html_parts.append(f'<div class="question"><b>Q:</b> {_text(q_text)}</div>')
        if a_text:
            html_parts.append(f"<p><b>A:</b> {_text(a_text)}</p>")
    return "".join(html_parts)


def structured_guide_to_html(guide: Dict[str, Any]) -> str:
    """Render a guide with `sections` or flat `questions`."""
    if isinstance(guide.get("sections"), list):
        html_parts = []
        for index, section in enumerate(guide["sections"]):
            section = section if isinstance(section, dict) else {}
            title = section.get("title") if isinstance(section.get("title"), str) else f"Section {index + 1}"
            html_parts.append(f'<div class="block-title">{_text(title)}</div>')
            if isinstance(section.get("intro"), str) and section["intro"].strip():
                html_parts.append(f"<p>{_text(section['intro'])}</p>")
            if isinstance(section.get("bullets"), list) and section["bullets"]:
                html_parts.append(
                    "<ul>" + "".join(f"<li>{_text(b)}</li>" for b in section["bullets"]) + "</ul>"
                )
            if isinstance(section.get("questions"), list):
                html_parts.append(_questions_to_html(section["questions"]))
        return "".join(html_parts)

    if isinstance(guide.get("questions"), list):
        return _questions_to_html(guide["questions"])

    return guide_text_to_html(json.dumps(guide, ensure_ascii=False, indent=2))


def interview_guide_to_html(body: Dict[str, Any]) -> str:
    """Render an interview guide stored as text, a list of lines or a structure."""
    candidate = body.get("content")
    for key in ("guide", "text", "result"):
        if candidate is None:
            candidate = body.get(key)
    if candidate is None:
        candidate = ""

    if isinstance(candidate, list):
        inner = guide_text_to_html("\n".join(x for x in candidate if isinstance(x, str)))
    elif isinstance(candidate, dict):
        if isinstance(candidate.get("text"), str):
            inner = guide_text_to_html(candidate["text"])
        elif isinstance(candidate.get("sections"), list) or isinstance(candidate.get("questions"), list):
            inner = structured_guide_to_html(candidate)
        else:
            inner = guide_text_to_html(json.dumps(candidate, ensure_ascii=False, indent=2))
    else:
        inner = guide_text_to_html(str(candidate))

    return '<h1>Interview Preparation Guide</h1><div class="hr"></div>' + inner


_RENDERERS = {
    DocumentKind.RESUME: resume_to_html,
    DocumentKind.COVER_LETTER: cover_letter_to_html,
    DocumentKind.INTERVIEW_GUIDE: interview_guide_to_html,
}


def document_to_html(document: Document, watermark_text: Optional[str] = None) -> str:
    """Complete printable page for a document."""
    content_html = _RENDERERS[document.kind](document.body or {})
    return build_print_html(document.kind.display_title, content_html, watermark_text)
