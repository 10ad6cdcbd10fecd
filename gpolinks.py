from __future__ import annotations

import argparse
import codecs
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union
from xml.etree import ElementTree as ET

from colorama import init, Fore, Style


init(autoreset=True)

PROLOG_MARKER = '<?xml version="1.0" encoding="utf-16"?>'
REPORT_PREFIX = "GPOLinkReport"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
UNKNOWN_DISPLAY_TYPE = "Unknown Display Type"
UNKNOWN_LABEL = "unknown"
LINE_BREAK = re.compile(r"\r\n|\r|\n")

# Evaluated in order; the first non-empty element wins.
DISPLAY_VALUE_FIELDS: tuple[tuple[str, str], ...] = (
    ("DisplayBoolean", "boolean"),
    ("DisplayString", "string"),
    ("DisplayNumber", "number"),
)

SECURITY_OPTIONS_PATH: tuple[str, ...] = ("Computer", "ExtensionData", "Extension", "SecurityOptions")


class MalformedDocumentError(ET.ParseError):
    """A recovered document block is not well-formed XML."""

    def __init__(self, index: int, cause: ET.ParseError):
        super().__init__(f"document #{index} is not well-formed XML: {cause}")
        self.index = index
        self.code = getattr(cause, "code", None)
        self.position = getattr(cause, "position", None)


@dataclass(frozen=True)
class SecuritySetting:
    name: str
    value: str
    display_type: str = field(default=UNKNOWN_LABEL, compare=False)


@dataclass(frozen=True)
class OULink:
    organizational_unit_name: str
    organizational_unit_path: str
    enabled: bool

    @property
    def state(self) -> str:
        return "E" if self.enabled else "D"


@dataclass
class PolicyRecord:
    name: str
    settings: list[SecuritySetting] = field(default_factory=list)
    links: list[OULink] = field(default_factory=list)


@dataclass(frozen=True)
class UnlinkedPolicy:
    name: str


@dataclass
class RunSummary:
    output_file: Path
    documents: int = 0
    linked: int = 0
    unlinked: int = 0
    settings: int = 0
    links: int = 0
    dropped_trailing: bool = False


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _children_by_localname(elem: ET.Element, localname: str) -> list[ET.Element]:
    return [child for child in list(elem) if _local_name(child.tag) == localname]


def _child_text(elem: ET.Element, localname: str) -> str:
    for child in _children_by_localname(elem, localname):
        return (child.text or "").strip()
    return ""


class DocumentSplitter:
    """Recover individual XML documents from a naive concatenation.

    A line that is exactly the prolog marker starts a new document. Every other
    line is stripped and appended to the current one. Content after the last
    marker is never emitted; it is kept in ``trailing`` after a split.
    """

    def __init__(self, marker: str = PROLOG_MARKER):
        self.marker = marker
        self.trailing = ""

    def split(self, lines: Iterable[str]) -> list[str]:
        blocks: list[str] = []
        buffer = ""
        for raw in lines:
            line = raw.rstrip("\r\n")
            if line == self.marker:
                if buffer:
                    blocks.append(buffer)
                buffer = self.marker
            else:
                buffer += line.strip()
        self.trailing = buffer
        return blocks

    def has_unprocessed_trailing(self) -> bool:
        return bool(self.trailing) and self.trailing != self.marker


def split_lines(text: str) -> list[str]:
    # Only CR, LF and CRLF end a line; U+2028 and friends are XML text.
    return LINE_BREAK.split(text)


def split_documents(text: str, marker: str = PROLOG_MARKER) -> list[str]:
    return DocumentSplitter(marker).split(split_lines(text))


def _resolve_display_value(display: Optional[ET.Element]) -> tuple[str, str]:
    if display is None:
        return UNKNOWN_DISPLAY_TYPE, UNKNOWN_LABEL
    for element_name, label in DISPLAY_VALUE_FIELDS:
        value = _child_text(display, element_name)
        if value:
            return value, label
    return UNKNOWN_DISPLAY_TYPE, UNKNOWN_LABEL


def _iter_path(root: ET.Element, path: tuple[str, ...]) -> list[ET.Element]:
    current = [root]
    for step in path:
        current = [child for elem in current for child in _children_by_localname(elem, step)]
        if not current:
            break
    return current


def _extract_security_settings(root: ET.Element) -> list[SecuritySetting]:
    settings: list[SecuritySetting] = []
    for option in _iter_path(root, SECURITY_OPTIONS_PATH):
        displays = _children_by_localname(option, "Display")
        display = displays[0] if displays else None
        name = _child_text(display, "Name") if display is not None else ""
        if not name:
            continue
        value, display_type = _resolve_display_value(display)
        settings.append(SecuritySetting(name=name, value=value, display_type=display_type))
    return settings


def _extract_links(link_elements: list[ET.Element]) -> list[OULink]:
    links: list[OULink] = []
    for elem in link_elements:
        links.append(
            OULink(
                organizational_unit_name=_child_text(elem, "SOMName"),
                organizational_unit_path=_child_text(elem, "SOMPath"),
                enabled=_child_text(elem, "Enabled").lower() == "true",
            )
        )
    return links


def parse_document(document: str, index: int = 1) -> ET.Element:
    # The block carries a utf-16 declaration, so hand expat matching bytes.
    try:
        return ET.fromstring(document.encode("utf-16"))
    except ET.ParseError as exc:
        raise MalformedDocumentError(index, exc) from exc


def extract_policy(document: str, index: int = 1) -> Union[PolicyRecord, UnlinkedPolicy]:
    root = parse_document(document, index)
    name = _child_text(root, "Name")

    link_elements = _children_by_localname(root, "LinksTo")
    if not link_elements:
        return UnlinkedPolicy(name=name)

    return PolicyRecord(
        name=name,
        settings=_extract_security_settings(root),
        links=_extract_links(link_elements),
    )


def render_policy(record: PolicyRecord) -> str:
    lines = [f"GPO Name: {record.name}"]
    for setting in record.settings:
        lines.append(f"[SETTING]---> {setting.name} -- {setting.value}")
    for link in record.links:
        lines.append(f"[LINK]-----{link.state}> {link.organizational_unit_path}")
    lines.append("")
    return "\n".join(lines) + "\n"


def render_unlinked(names: Iterable[str]) -> str:
    ordered = sorted(names)
    if not ordered:
        return ""
    lines = ["UNLINKED GPOs"] + [f"[!] {name}" for name in ordered]
    return "\n".join(lines) + "\n"


class ReportWriter:
    def __init__(self, output_file: Path):
        self.output_file = output_file

    def create(self) -> None:
        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        self.output_file.write_text("", encoding="utf-8")

    def _append(self, text: str) -> None:
        if not text:
            return
        with self.output_file.open("a", encoding="utf-8", newline="\n") as f:
            f.write(text)

    def write_policy(self, record: PolicyRecord) -> None:
        self._append(render_policy(record))

    def write_unlinked(self, names: Iterable[str]) -> None:
        self._append(render_unlinked(names))


def report_filename(started: datetime, prefix: str = REPORT_PREFIX) -> str:
    return f"{prefix}-{started.strftime(TIMESTAMP_FORMAT)}.txt"


def _candidate_encodings(raw: bytes) -> tuple[str, ...]:
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return ("utf-16", "utf-8-sig")
    # No BOM: '<' next to a NUL byte gives away the utf-16 byte order.
    head = raw[:2]
    if head == b"<\x00":
        return ("utf-16-le", "utf-8-sig")
    if head == b"\x00<":
        return ("utf-16-be", "utf-8-sig")
    return ("utf-8-sig", "utf-16")


def _read_text_file(file_path: Path, encodings: Optional[Iterable[str]] = None) -> str:
    raw = file_path.read_bytes()
    encodings_list = list(encodings) if encodings is not None else list(_candidate_encodings(raw))
    if not encodings_list:
        raise ValueError("encodings must not be empty")

    for encoding in encodings_list:
        try:
            return raw.decode(encoding, errors="strict")
        except UnicodeError:
            continue
    return raw.decode(encodings_list[0], errors="ignore")


def _validate_input_path(input_path: Union[str, Path]) -> Path:
    p = Path(input_path)
    if not p.exists():
        raise FileNotFoundError(str(p))
    if not p.is_file():
        raise IsADirectoryError(str(p))
    return p


def print_banner(title: str) -> None:
    print(f"\n{Fore.CYAN}{'='*60}")
    print(f"{Fore.CYAN} {title}")
    print(f"{Fore.CYAN}{'='*60}")


def run(
    input_path: Union[str, Path],
    output_dir: Union[str, Path] = ".",
    started: Optional[datetime] = None,
) -> RunSummary:
    started = started or datetime.now()
    input_file = _validate_input_path(input_path)
    print(f"{Fore.GREEN}[+] Input file found: {input_file}")
    text = _read_text_file(input_file)

    output_file = Path(output_dir) / report_filename(started)
    writer = ReportWriter(output_file)
    writer.create()
    summary = RunSummary(output_file=output_file)
    unlinked: list[str] = []

    splitter = DocumentSplitter()
    blocks = splitter.split(split_lines(text))
    summary.documents = len(blocks)
    summary.dropped_trailing = splitter.has_unprocessed_trailing()

    print_banner(f"PROCESSING {len(blocks)} GPO DOCUMENT(S)")
    for index, block in enumerate(blocks, start=1):
        result = extract_policy(block, index)
        if isinstance(result, UnlinkedPolicy):
            print(f"{Fore.YELLOW}[!] {result.name}: no links")
            unlinked.append(result.name)
            continue

        print(f"{Fore.GREEN}[+] {result.name}: {len(result.settings)} setting(s), {len(result.links)} link(s)")
        writer.write_policy(result)
        summary.linked += 1
        summary.settings += len(result.settings)
        summary.links += len(result.links)

    writer.write_unlinked(unlinked)
    summary.unlinked = len(unlinked)

    if summary.dropped_trailing:
        print(f"{Fore.YELLOW}[!] Content after the last XML prolog was not processed.")
    return summary


def print_summary(summary: RunSummary) -> None:
    print(f"\n{Style.BRIGHT}[Summary]")
    print(f"  Documents: {summary.documents}")
    print(f"  Linked:    {summary.linked}")
    print(f"  Unlinked:  {summary.unlinked}")
    print(f"  Settings:  {summary.settings}")
    print(f"  Links:     {summary.links}")


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpolinks",
        description=(
            "GPO Link Reporter\n\n"
            "Summarizes security options and OU links from a bulk Get-GPOReport XML export."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "What this tool does:\n"
            "  - Splits the export into one XML document per GPO (each starts with a utf-16 prolog line).\n"
            "  - Lists every security option with its display value.\n"
            "  - Lists every OU link, marked E (enabled) or D (disabled).\n"
            "  - Lists GPOs without any link at the end of the report.\n"
            "  - Writes GPOLinkReport-<YYYYMMDDhhmmss>.txt to the current directory.\n\n"
            "Note: the last document must be followed by a prolog line or it is skipped.\n\n"
            "Examples:\n"
            "  Get-GPOReport -All -ReportType Xml -Path gpos.xml\n"
            "  gpolinks gpos.xml\n"
        ),
    )
    parser.add_argument("input", help="Get-GPOReport XML export (all GPOs)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_argument_parser().parse_args(argv)

    try:
        summary = run(args.input)
    except (FileNotFoundError, IsADirectoryError) as exc:
        print(f"{Fore.RED}[!] Input error: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        print(f"{Fore.RED}[!] File error: {exc}", file=sys.stderr)
        return 2
    except MalformedDocumentError as exc:
        print(f"{Fore.RED}[!] Error parsing XML: {exc}", file=sys.stderr)
        return 1

    print_summary(summary)
    print(f"{Fore.GREEN}[+] Wrote report: {summary.output_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
