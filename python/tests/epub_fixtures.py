"""In-memory EPUB fixture builders.

All fixtures are built in memory (no files on disk unless a test writes
the bytes itself). The default book is:

    mimetype
    META-INF/container.xml
    OEBPS/content.opf
    OEBPS/toc.ncx
    OEBPS/text/ch1.xhtml   links ../styles/main.css, has #sec1 and #sec2
    OEBPS/text/ch2.xhtml   inline <style>, script with CDATA markers
    OEBPS/styles/main.css  @font-face -> ../fonts/serif.ttf
    OEBPS/fonts/serif.ttf
    OEBPS/images/cover.png
"""

import io
import struct
import zipfile

from folio.storage.archive import FakeArchive

BOOK_UUID = "12345678-1234-1234-1234-1234567890ab"
BOOK_IDENTIFIER = f"urn:uuid:{BOOK_UUID}"

OPF_PATH = "OEBPS/content.opf"

_CONTAINER_XML = """\
<?xml version="1.0" encoding="UTF-8"?>
<container xmlns="urn:oasis:names:tc:opendocument:xmlns:container" version="{version}">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""


def build_container(opf_path: str = OPF_PATH, version: str = "1.0") -> str:
    return _CONTAINER_XML.format(opf_path=opf_path, version=version)


def build_opf(
    spine_items: list[tuple[str, str, str]] | None = None,
    extra_manifest: list[tuple[str, str, str]] | None = None,
    *,
    title: str = "Test Book",
    identifier: str = BOOK_IDENTIFIER,
    ncx_id: str | None = "ncx",
    cover_meta: str | None = None,
    prefixed: bool = False,
    version: str = "2.0",
) -> str:
    """Build an OPF package document.

    spine_items: [(manifest_id, href, media_type), ...] in reading order
    extra_manifest: manifest-only items, same shape
    prefixed: write every OPF element as opf:name
    """
    if spine_items is None:
        spine_items = [("ch1", "text/ch1.xhtml", "application/xhtml+xml")]
    extra_manifest = list(extra_manifest or [])

    p = "opf:" if prefixed else ""
    ns_decl = (
        'xmlns:opf="http://www.idpf.org/2007/opf"'
        if prefixed
        else 'xmlns="http://www.idpf.org/2007/opf"'
    )

    manifest_lines = [
        f'    <{p}item id="{mid}" href="{href}" media-type="{mtype}"/>'
        for mid, href, mtype in spine_items + extra_manifest
    ]
    if ncx_id:
        manifest_lines.append(
            f'    <{p}item id="{ncx_id}" href="toc.ncx" media-type="application/x-dtbncx+xml"/>'
        )
    spine_refs = "\n".join(f'    <{p}itemref idref="{mid}"/>' for mid, _href, _mtype in spine_items)
    toc_attr = f' toc="{ncx_id}"' if ncx_id else ""
    cover_el = f'    <{p}meta name="cover" content="{cover_meta}"/>' if cover_meta else ""

    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<{p}package {ns_decl}
         xmlns:dc="http://purl.org/dc/elements/1.1/"
         version="{version}" unique-identifier="bookid">
  <{p}metadata>
    <dc:title>{title}</dc:title>
    <dc:creator>Test Author</dc:creator>
    <dc:identifier id="isbn">978-0-00-000000-0</dc:identifier>
    <dc:identifier id="bookid">{identifier}</dc:identifier>
{cover_el}
  </{p}metadata>
  <{p}manifest>
{chr(10).join(manifest_lines)}
  </{p}manifest>
  <{p}spine{toc_attr}>
{spine_refs}
  </{p}spine>
</{p}package>"""


def build_chapter_xhtml(body_content: str, head_content: str = "") -> str:
    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Chapter</title>
{head_content}
</head>
<body>
{body_content}
</body>
</html>"""


def _nav_point(point: tuple, counter: list[int], indent: str) -> str:
    label, src = point[0], point[1]
    nested = point[2] if len(point) > 2 else []
    counter[0] += 1
    inner = "\n".join(_nav_point(sub, counter, indent + "  ") for sub in nested)
    return f"""\
{indent}<navPoint id="np{counter[0]}" playOrder="{counter[0]}">
{indent}  <navLabel><text>{label}</text></navLabel>
{indent}  <content src="{src}"/>
{inner}
{indent}</navPoint>"""


def build_ncx(points: list[tuple]) -> str:
    """points: [(label, src) | (label, src, [nested points]), ...]"""
    counter = [0]
    body = "\n".join(_nav_point(point, counter, "    ") for point in points)
    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="{BOOK_IDENTIFIER}"/></head>
  <docTitle><text>Test Book</text></docTitle>
  <navMap>
{body}
  </navMap>
</ncx>"""


def build_encryption_xml(entries: list[tuple[str, str]]) -> str:
    """entries: [(archive path, algorithm URI), ...]"""
    data = "\n".join(
        f"""\
  <enc:EncryptedData>
    <enc:EncryptionMethod Algorithm="{algorithm}"/>
    <enc:CipherData><enc:CipherReference URI="{uri}"/></enc:CipherData>
  </enc:EncryptedData>"""
        for uri, algorithm in entries
    )
    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<encryption xmlns="urn:oasis:names:tc:opendocument:xmlns:container"
            xmlns:enc="http://www.w3.org/2001/04/xmlenc#">
{data}
</encryption>"""


def create_png(width: int = 4, height: int = 2, color: str = "white") -> bytes:
    from PIL import Image

    img = Image.new("RGB", (width, height), color=color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


FONT_BYTES = bytes(range(256)) * 8

MAIN_CSS = """\
@font-face {
  font-family: "Book Serif";
  font-weight: bold;
  src: url("../fonts/serif.ttf") format("truetype");
}
p { text-indent: 1em; margin: 0 }
h1 { font-weight: bold }
"""

CH1_XHTML = build_chapter_xhtml(
    '<h1 id="top">One</h1>\n<p id="sec1">First section</p>\n<p id="sec2">Second section</p>',
    head_content='<link rel="stylesheet" type="text/css" href="../styles/main.css"/>',
)

CH2_XHTML = build_chapter_xhtml(
    "<h1>Two</h1>\n<p>Body</p>\n"
    '<script type="text/javascript">/*<![CDATA[*/ var a = 1 < 2; /*]]>*/</script>',
    head_content=(
        '<link rel="stylesheet" type="text/css" href="../styles/main.css"/>\n'
        "<style>h1 { color: black }</style>"
    ),
)

DEFAULT_SPINE = [
    ("ch1", "text/ch1.xhtml", "application/xhtml+xml"),
    ("ch2", "text/ch2.xhtml", "application/xhtml+xml"),
]

DEFAULT_EXTRA_MANIFEST = [
    ("css", "styles/main.css", "text/css"),
    ("cover-image", "images/cover.png", "image/png"),
    ("font1", "fonts/serif.ttf", "application/x-font-ttf"),
]

DEFAULT_NCX_POINTS = [
    (
        "Chapter One",
        "text/ch1.xhtml",
        [
            ("Section 1", "text/ch1.xhtml#sec1"),
            ("Section 2", "text/ch1.xhtml#sec2"),
        ],
    ),
    ("Chapter Two", "text/ch2.xhtml"),
]


def default_book_files(**opf_overrides) -> dict[str, str | bytes]:
    """Archive entries of the default book, keyed by full archive path."""
    opf_kwargs = {"spine_items": DEFAULT_SPINE, "extra_manifest": DEFAULT_EXTRA_MANIFEST}
    opf_kwargs.update(opf_overrides)
    return {
        OPF_PATH: build_opf(**opf_kwargs),
        "OEBPS/toc.ncx": build_ncx(DEFAULT_NCX_POINTS),
        "OEBPS/text/ch1.xhtml": CH1_XHTML,
        "OEBPS/text/ch2.xhtml": CH2_XHTML,
        "OEBPS/styles/main.css": MAIN_CSS,
        "OEBPS/fonts/serif.ttf": FONT_BYTES,
        "OEBPS/images/cover.png": create_png(),
    }


def make_archive(
    files: dict[str, str | bytes] | None = None,
    *,
    opf_path: str = OPF_PATH,
    mimetype: str | None = "application/epub+zip",
    container: str | None = None,
    include_container: bool = True,
) -> FakeArchive:
    """FakeArchive holding mimetype, container.xml and files."""
    entries: dict[str, str | bytes] = {}
    if mimetype is not None:
        entries["mimetype"] = mimetype
    if include_container:
        entries["META-INF/container.xml"] = container if container is not None else build_container(opf_path)
    entries.update(default_book_files() if files is None else files)
    return FakeArchive(entries)


def make_epub(
    files: dict[str, str | bytes] | None = None,
    *,
    opf_path: str = OPF_PATH,
    mimetype: str | None = "application/epub+zip",
    include_container: bool = True,
) -> bytes:
    """Build an EPUB ZIP in memory."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        if mimetype is not None:
            zf.writestr("mimetype", mimetype)
        if include_container:
            zf.writestr("META-INF/container.xml", build_container(opf_path))
        for path, content in (default_book_files() if files is None else files).items():
            zf.writestr(path, content)
    return buf.getvalue()


def corrupt_entry(epub: bytes, name: str) -> bytes:
    """Flip bytes inside the compressed payload of one ZIP entry.

    The central directory is left intact, so the entry is still listed but
    fails to decompress or fails its CRC check when read.
    """
    with zipfile.ZipFile(io.BytesIO(epub)) as zf:
        info = zf.getinfo(name)
    data = bytearray(epub)
    name_len, extra_len = struct.unpack_from("<HH", data, info.header_offset + 26)
    start = info.header_offset + 30 + name_len + extra_len
    for pos in range(start, start + min(8, info.compress_size)):
        data[pos] ^= 0xFF
    return bytes(data)
