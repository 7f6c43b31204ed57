"""Resource path resolution inside the EPUB container.

Hrefs found in the package, content documents and style sheets are
relative to the referring document. They are turned into archive entry
paths with a single left-to-right pass:

- %XX escapes are decoded (invalid escapes are kept literally)
- each "/../" backs the output up to the previous "/" written so far
- a "../" at the very start of the accumulated output has no "/" before
  it and is kept as a literal segment

The pass never consults the archive and never raises.
"""

_SLASH = 0x2F
_PERCENT = 0x25
_PARENT = b"/../"
_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


def extract_folder(path: str) -> str:
    """Folder part of path, with trailing slash.

    A path without a slash after its first character has no folder:
    "text/ch1.xhtml" -> "text/", "ch1.xhtml" -> "", "/ch1.xhtml" -> "".
    """
    idx = path.rfind("/")
    if idx <= 0:
        return ""
    return path[: idx + 1]


def locate(path: str, base: str = "") -> str:
    """Decode and collapse path, then prefix it with base.

    Args:
        path: Folder-qualified relative path, e.g. "text/../images/a.png".
        base: Prefix applied after collapsing (the package folder).

    Returns:
        The archive entry path.
    """
    src = path.encode("utf-8")
    out = bytearray()
    i = 0
    n = len(src)

    while i < n:
        if src[i] == _PERCENT and _is_hex_pair(src, i + 1):
            out.append(int(src[i + 1 : i + 3], 16))
            i += 3
        elif src.startswith(_PARENT, i):
            idx = len(out)
            while idx > 0:
                idx -= 1
                if out[idx] == _SLASH:
                    break
            del out[idx:]
            # keep the slash of "/../" unless the whole output was consumed
            i += 3 if idx > 0 else 4
        else:
            out.append(src[i])
            i += 1

    return base + out.decode("utf-8", errors="replace")


def _is_hex_pair(src: bytes, pos: int) -> bool:
    return pos + 1 < len(src) and src[pos] in _HEX_DIGITS and src[pos + 1] in _HEX_DIGITS


def resolve_href(relative_path: str, folder: str = "", base: str = "") -> str:
    """Resolve an href relative to a referring document's folder.

    Example:
        resolve_href("../images/a.png", "OEBPS/text/") == "OEBPS/images/a.png"
    """
    return locate(folder + relative_path, base)


def split_fragment(href: str) -> tuple[str, str | None]:
    """Split at the first '#'.

    Returns:
        (document path, fragment id) where fragment id is None when absent.
    """
    path, sep, fragment = href.partition("#")
    return (path, fragment) if sep else (href, None)
