"""Style sheets attached to content documents.

Parses CSS with tinycss2 into flat rule lists and collects @font-face
declarations. Cascade and selector matching belong to the rendering layer;
this module only gathers, per content document, the ordered sheets that
apply to it:

1. External sheets from <link type="text/css">, in document order,
   shared through the StyleCache of the open file
2. Inline <style> blocks from the document head, local to the document
"""

from __future__ import annotations

from dataclasses import dataclass, field

import tinycss2

from folio.services.fonts import FaceStyle, combine_face_style


@dataclass(frozen=True)
class StyleRule:
    selector: str
    declarations: tuple[tuple[str, str], ...]

    def get_property(self, name: str) -> str | None:
        """Value of the last declaration of name in this rule."""
        value = None
        for prop, val in self.declarations:
            if prop == name:
                value = val
        return value


@dataclass(frozen=True)
class FontFace:
    """One @font-face rule. src is the first url() of the src descriptor."""

    family: str
    style: FaceStyle
    src: str | None


@dataclass
class StyleSheet:
    """A parsed sheet. folder is relative to the package folder."""

    sheet_id: str
    folder: str
    rules: list[StyleRule] = field(default_factory=list)
    font_faces: list[FontFace] = field(default_factory=list)

    @classmethod
    def parse(cls, data: bytes | str, sheet_id: str, folder: str) -> StyleSheet:
        if isinstance(data, bytes):
            nodes, _encoding = tinycss2.parse_stylesheet_bytes(
                data, skip_comments=True, skip_whitespace=True
            )
        else:
            nodes = tinycss2.parse_stylesheet(data, skip_comments=True, skip_whitespace=True)

        sheet = cls(sheet_id=sheet_id, folder=folder)
        for node in nodes:
            if node.type == "qualified-rule":
                selector = tinycss2.serialize(node.prelude).strip()
                sheet.rules.append(StyleRule(selector, _declarations(node.content)))
            elif node.type == "at-rule" and node.lower_at_keyword == "font-face":
                face = _font_face(node.content or [])
                if face is not None:
                    sheet.font_faces.append(face)
        return sheet


def _declarations(content) -> tuple[tuple[str, str], ...]:
    result = []
    for decl in tinycss2.parse_declaration_list(content or [], skip_comments=True, skip_whitespace=True):
        if decl.type == "declaration":
            result.append((decl.lower_name, tinycss2.serialize(decl.value).strip()))
    return tuple(result)


def _first_value(tokens) -> str | None:
    """First string or identifier sequence of a descriptor value."""
    idents = []
    for token in tokens:
        if token.type == "string":
            return token.value
        if token.type == "ident":
            idents.append(token.value)
        elif token.type == "number":
            return str(token.int_value if token.is_integer else token.value)
        elif token.type == "literal" and token.value == ",":
            break
    return " ".join(idents) if idents else None


def _first_url(tokens) -> str | None:
    for token in tokens:
        if token.type == "whitespace":
            continue
        if token.type == "url":
            return token.value
        if token.type == "function" and token.lower_name == "url":
            for arg in token.arguments:
                if arg.type == "string":
                    return arg.value
        # src must start with url(); local() or anything else disqualifies it
        return None
    return None


def _font_face(content) -> FontFace | None:
    descriptors = {}
    for decl in tinycss2.parse_declaration_list(content, skip_comments=True, skip_whitespace=True):
        if decl.type == "declaration":
            descriptors[decl.lower_name] = decl.value

    family_tokens = descriptors.get("font-family")
    family = _first_value(family_tokens) if family_tokens else None
    if not family:
        return None

    weight = _first_value(descriptors.get("font-weight", []))
    style = _first_value(descriptors.get("font-style", []))
    src_tokens = descriptors.get("src")

    return FontFace(
        family=family,
        style=combine_face_style(weight, style),
        src=_first_url(src_tokens) if src_tokens else None,
    )


class StyleCache:
    """Append-only cache of external sheets keyed by resolved path."""

    def __init__(self):
        self._sheets: dict[str, StyleSheet] = {}

    def __len__(self) -> int:
        return len(self._sheets)

    def __contains__(self, key: str) -> bool:
        return key in self._sheets

    def get(self, key: str) -> StyleSheet | None:
        return self._sheets.get(key)

    def add(self, key: str, sheet: StyleSheet) -> None:
        self._sheets.setdefault(key, sheet)

    def sheets(self) -> list[StyleSheet]:
        return list(self._sheets.values())

    def clear(self) -> None:
        self._sheets.clear()


@dataclass
class StyleSet:
    """Effective sheets of one content document: external then inline."""

    external: list[StyleSheet] = field(default_factory=list)
    inline: list[StyleSheet] = field(default_factory=list)

    @property
    def sheets(self) -> list[StyleSheet]:
        return self.external + self.inline

    @property
    def rules(self) -> list[StyleRule]:
        merged: list[StyleRule] = []
        for sheet in self.sheets:
            merged.extend(sheet.rules)
        return merged
