"""
Template engine for single-brace .docx report templates.

Tag syntax (the convention the CRU report templates are authored in):

    {name}     scalar placeholder, dotted paths allowed ({insured.name})
    {#name}    section: repeats for a list of rows, enters a dict, shows when truthy
    {^name}    inverted section: shows when the value is falsy or empty
    {/name}    end of section

Binding translates these tags into Jinja2 statements and hands the package to
docxtpl, which takes care of run cleanup, line breaks, headers and footers.
"""

import logging
import re
import zipfile
from bisect import bisect_right
from collections import ChainMap
from dataclasses import dataclass
from io import BytesIO
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Set, Tuple

from docxtpl import DocxTemplate
from jinja2 import Environment, TemplateError

from errors import MissingValueAtRender, PlaceholderMismatch, StructuralDefect

logger = logging.getLogger(__name__)

NAME_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*"

SCALAR_RE = re.compile(r"\{(" + NAME_PATTERN + r")\}")
SECTION_OPEN_RE = re.compile(r"\{([#^])(" + NAME_PATTERN + r")\}")
TAG_RE = re.compile(r"\{([#^/]?)(" + NAME_PATTERN + r")\}")

# body, headers and footers carry the tags
MARKUP_PART_RE = re.compile(r"^word/(document|header\d*|footer\d*)\.xml$")

# '{' ... '}' with only name characters and XML tags in between, never crossing a paragraph
_SPLIT_TAG_RE = re.compile(r"\{(?:[#^/\w. ]|<(?!/?w:p[ >])[^>]*>)*?\}")
_RUN_BREAK_RE = re.compile(r"</w:t>.*?(?:<w:t>|<w:t [^>]*>)", re.DOTALL)
_XML_TAG_RE = re.compile(r"<[^>]*>")

_PARAGRAPH_RE = re.compile(r"<w:p[ >].*?</w:p>", re.DOTALL)
_ROW_RE = re.compile(r"<w:tr[ >].*?</w:tr>", re.DOTALL)
_CELL_RE = re.compile(r"<w:tc[ >].*?</w:tc>", re.DOTALL)


# =============================================================================
# Template loading
# =============================================================================
@dataclass(frozen=True, eq=False)
class Template:
    """A loaded .docx template. Read-only; safe to share between concurrent renders."""

    key: str
    raw: bytes
    parts: Mapping[str, str]

    @property
    def markup(self) -> str:
        return "".join(self.parts.values())


def _part_order(name: str) -> Tuple[int, str]:
    if name == "word/document.xml":
        return 0, name
    return (1 if "/header" in name else 2), name


def collapse_split_tags(xml: str) -> str:
    """Join tags that Word split over several runs, e.g. '{</w:t>...<w:t>claimNumber}'."""

    def _join(match: "re.Match[str]") -> str:
        raw = match.group(0)
        if "<" not in raw:
            return raw
        if not TAG_RE.fullmatch(_XML_TAG_RE.sub("", raw)):
            return raw
        joined = _RUN_BREAK_RE.sub("", raw)
        return joined if "<" not in joined else raw

    return _SPLIT_TAG_RE.sub(_join, xml)


def load_template(data: bytes, key: str = "template") -> Template:
    try:
        archive = zipfile.ZipFile(BytesIO(data))
    except zipfile.BadZipFile as e:
        raise StructuralDefect([f"{key} is not a valid .docx archive: {e}"]) from e

    with archive:
        names = sorted((n for n in archive.namelist() if MARKUP_PART_RE.match(n)), key=_part_order)
        if "word/document.xml" not in names:
            raise StructuralDefect([f"{key} has no word/document.xml part"])
        parts = {name: collapse_split_tags(archive.read(name).decode("utf-8")) for name in names}

    logger.debug("Loaded template %s with parts %s", key, names)
    return Template(key=key, raw=bytes(data), parts=MappingProxyType(parts))


# =============================================================================
# Extraction & validation
# =============================================================================
@dataclass(frozen=True)
class TemplateTags:
    placeholders: frozenset
    sections: frozenset

    @property
    def names(self) -> frozenset:
        return self.placeholders | self.sections


def extract_tags(markup: str) -> TemplateTags:
    return TemplateTags(
        placeholders=frozenset(SCALAR_RE.findall(markup)),
        sections=frozenset(name for _, name in SECTION_OPEN_RE.findall(markup)),
    )


def find_section_defects(markup: str) -> List[str]:
    """Every nesting defect in the markup, in document order."""
    open_sections: List[Tuple[str, str, int]] = []
    errors: List[str] = []
    for match in TAG_RE.finditer(markup):
        kind, name = match.group(1), match.group(2)
        if kind in ("#", "^"):
            open_sections.append((kind, name, match.start()))
        elif kind == "/":
            if not open_sections:
                errors.append(f"Closing tag {{/{name}}} without matching opening tag at position {match.start()}")
                continue
            open_kind, open_name, _ = open_sections.pop()
            if open_name != name:
                errors.append(f"Mismatched section tags: opened {{{open_kind}{open_name}}} but closed {{/{name}}}")
    for kind, name, position in open_sections:
        errors.append(f"Unclosed section tag {{{kind}{name}}} at position {position}")
    return errors


def validate_sections(markup: str) -> None:
    errors = find_section_defects(markup)
    if errors:
        raise StructuralDefect(errors)


def flatten_data_keys(data: Mapping[str, Any]) -> Set[str]:
    """Top-level keys, one level of nested dict keys (bare and dotted) and the keys of the first row of object lists."""
    keys: Set[str] = set()
    for key, value in data.items():
        keys.add(key)
        if isinstance(value, Mapping):
            for child in value:
                keys.add(child)
                keys.add(f"{key}.{child}")
        elif isinstance(value, list) and value and isinstance(value[0], Mapping):
            keys.update(value[0].keys())
    return keys


def compare_placeholders(tags: TemplateTags, data: Mapping[str, Any]) -> Tuple[List[str], List[str]]:
    """Return (placeholders missing in data, data keys no placeholder uses)."""
    names = tags.names
    available = flatten_data_keys(data)
    missing = sorted(name for name in names if name not in available)
    unused = sorted(
        key for key in data
        if key not in names and not any(name.startswith(key + ".") for name in names)
    )
    return missing, unused


# =============================================================================
# Binding
# =============================================================================
_MISSING = object()


def _lookup(scope: Mapping[str, Any], name: str) -> Any:
    if name in scope:
        return scope[name]
    head, _, rest = name.partition(".")
    value = scope.get(head, _MISSING)
    for part in rest.split(".") if rest else ():
        if not isinstance(value, Mapping):
            return _MISSING
        value = value.get(part, _MISSING)
    return value


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_scalar(item) for item in value)
    return str(value)


class _Binder:
    """Value and section resolution exposed to the Jinja templates as globals."""

    def __init__(self, strict: bool):
        self.strict = strict

    def value(self, scope: ChainMap, name: str) -> str:
        value = _lookup(scope, name)
        if value is _MISSING or value is None:
            if self.strict:
                raise MissingValueAtRender(name)
            return ""
        return _format_scalar(value)

    def section(self, scope: ChainMap, name: str, inverted: bool = False) -> List[ChainMap]:
        value = _lookup(scope, name)
        if value is _MISSING:
            value = None
        if inverted:
            return [scope] if not value else []
        if isinstance(value, (list, tuple)):
            return [scope.new_child(dict(row) if isinstance(row, Mapping) else {}) for row in value]
        if isinstance(value, Mapping):
            return [scope.new_child(dict(value))]
        return [scope] if value else []


@dataclass
class _Token:
    kind: str
    name: str
    start: int
    end: int


class _SpanIndex:
    def __init__(self, pattern: "re.Pattern[str]", xml: str):
        self.spans = [(m.start(), m.end()) for m in pattern.finditer(xml)]
        self._starts = [start for start, _ in self.spans]

    def enclosing(self, position: int) -> Optional[Tuple[int, int]]:
        index = bisect_right(self._starts, position) - 1
        if index >= 0 and position < self.spans[index][1]:
            return self.spans[index]
        return None


def _pair_sections(tokens: List[_Token]) -> Tuple[List[Tuple[_Token, _Token]], List[_Token]]:
    """Pair open/close tokens by name. Tokens that cannot be paired are returned as orphans."""
    stack: List[_Token] = []
    pairs: List[Tuple[_Token, _Token]] = []
    orphans: List[_Token] = []
    for token in tokens:
        if token.kind in ("#", "^"):
            stack.append(token)
        elif token.kind == "/":
            if not any(opened.name == token.name for opened in stack):
                orphans.append(token)
                continue
            while stack[-1].name != token.name:
                orphans.append(stack.pop())
            pairs.append((stack.pop(), token))
    orphans.extend(stack)
    return pairs, orphans


def _standalone_paragraph(xml: str, paragraphs: _SpanIndex, token: _Token) -> Optional[Tuple[int, int]]:
    span = paragraphs.enclosing(token.start)
    if span is None:
        return None
    text = _XML_TAG_RE.sub("", xml[span[0]:span[1]]).strip()
    return span if text == xml[token.start:token.end] else None


def _escape_jinja(xml: str) -> str:
    # docxtpl turns these back after rendering
    return xml.replace("{{", "{_{").replace("}}", "}_}").replace("{%", "{_%").replace("%}", "%_}")


def translate_part(xml: str) -> str:
    """Rewrite one markup part from single-brace tags to Jinja2 statements."""
    xml = _escape_jinja(xml)
    tokens = [_Token(m.group(1), m.group(2), m.start(), m.end()) for m in TAG_RE.finditer(xml)]
    pairs, orphans = _pair_sections(tokens)
    paragraphs = _SpanIndex(_PARAGRAPH_RE, xml)
    rows = _SpanIndex(_ROW_RE, xml)
    cells = _SpanIndex(_CELL_RE, xml)

    edits: List[Tuple[int, int, str]] = []
    for token in tokens:
        if not token.kind:
            edits.append((token.start, token.end, '{{ value(_scope, "%s") }}' % token.name))
    for token in orphans:
        logger.debug("Dropping unbalanced section tag {%s%s}", token.kind, token.name)
        edits.append((token.start, token.end, ""))

    for opened, closed in pairs:
        inverted = "true" if opened.kind == "^" else "false"
        open_stmt = '{%% for _scope in section(_scope, "%s", %s) %%}' % (opened.name, inverted)
        close_stmt = "{% endfor %}"

        # markers in different cells of one row repeat the row, even when each sits alone in its paragraph
        row = rows.enclosing(opened.start)
        if row and row == rows.enclosing(closed.start) and cells.enclosing(opened.start) != cells.enclosing(closed.start):
            edits.append((row[0], row[0], open_stmt))
            edits.append((opened.start, opened.end, ""))
            edits.append((closed.start, closed.end, ""))
            edits.append((row[1], row[1], close_stmt))
            continue

        open_para = _standalone_paragraph(xml, paragraphs, opened)
        close_para = _standalone_paragraph(xml, paragraphs, closed)
        if open_para and close_para and open_para != close_para:
            edits.append((open_para[0], open_para[1], open_stmt))
            edits.append((close_para[0], close_para[1], close_stmt))
            continue

        edits.append((opened.start, opened.end, open_stmt))
        edits.append((closed.start, closed.end, close_stmt))

    edits.sort(key=lambda edit: (edit[0], edit[1]))
    out: List[str] = []
    cursor = 0
    for start, end, text in edits:
        out.append(xml[cursor:start])
        out.append(text)
        cursor = end
    out.append(xml[cursor:])
    # a literal '{#' left in the text would open a comment for docxtpl's tag cleanup
    return "".join(out).replace("{#", "{&#35;")


def _build_jinja_package(template: Template) -> bytes:
    output = BytesIO()
    with zipfile.ZipFile(BytesIO(template.raw)) as source, zipfile.ZipFile(output, "w", zipfile.ZIP_DEFLATED) as target:
        for item in source.infolist():
            if item.filename in template.parts:
                target.writestr(item, translate_part(template.parts[item.filename]).encode("utf-8"))
            else:
                target.writestr(item, source.read(item.filename))
    return output.getvalue()


def render_template(template: Template, data: Mapping[str, Any], strict: bool = False) -> bytes:
    """
    Bind `data` into the template and return the filled .docx bytes.

    strict=True validates section nesting and placeholder/data agreement first
    and raises on any placeholder that resolves to nothing while binding.
    strict=False renders missing values as empty strings.
    """
    if strict:
        validate_sections(template.markup)
        missing, unused = compare_placeholders(extract_tags(template.markup), data)
        if missing or unused:
            raise PlaceholderMismatch(missing, unused)

    binder = _Binder(strict)
    env = Environment(autoescape=True, comment_start_string="<#", comment_end_string="#>")
    env.globals.update(value=binder.value, section=binder.section)

    doc = DocxTemplate(BytesIO(_build_jinja_package(template)))
    try:
        doc.render({"_scope": ChainMap(dict(data))}, jinja_env=env, autoescape=True)
    except TemplateError as e:
        raise StructuralDefect([f"Template rendering failed: {e}"]) from e

    output = BytesIO()
    doc.save(output)
    output.seek(0)
    return output.getvalue()
