"""Builders for Get-GPOReport style XML used across the tests."""

from pathlib import Path
from typing import Optional

import pytest

PROLOG = '<?xml version="1.0" encoding="utf-16"?>'


def security_option(name: Optional[str], **display_values: str) -> str:
    parts = []
    if name is not None:
        parts.append(f"      <q1:Name>{name}</q1:Name>")
    for tag, value in display_values.items():
        parts.append(f"      <q1:{tag}>{value}</q1:{tag}>")
    inner = "\n".join(parts)
    return (
        "    <q1:SecurityOptions>\n"
        "     <q1:KeyName>MACHINE\\Software\\Example</q1:KeyName>\n"
        "     <q1:Display>\n"
        f"{inner}\n"
        "     </q1:Display>\n"
        "    </q1:SecurityOptions>"
    )


def link(path: str, enabled: str = "true", name: str = "OU") -> str:
    return (
        "  <LinksTo>\n"
        f"    <SOMName>{name}</SOMName>\n"
        f"    <SOMPath>{path}</SOMPath>\n"
        f"    <Enabled>{enabled}</Enabled>\n"
        "    <NoOverride>false</NoOverride>\n"
        "  </LinksTo>"
    )


def gpo_document(name: str, options=(), links=(), computer: bool = True) -> str:
    lines = [
        PROLOG,
        '<GPO xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
        'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xmlns="http://www.microsoft.com/GroupPolicy/Settings">',
        f"  <Name>{name}</Name>",
    ]
    if computer:
        lines += [
            "  <Computer>",
            "    <VersionDirectory>1</VersionDirectory>",
            "    <Enabled>true</Enabled>",
            "    <ExtensionData>",
            '      <Extension xmlns:q1="http://www.microsoft.com/GroupPolicy/Settings/Security" '
            'xsi:type="q1:SecuritySettings">',
            *options,
            "      </Extension>",
            "      <Name>Security</Name>",
            "    </ExtensionData>",
            "  </Computer>",
        ]
    lines += list(links)
    lines.append("</GPO>")
    return "\n".join(lines)


def export_text(*documents: str, trailing_marker: bool = True) -> str:
    text = "\n".join(documents)
    if trailing_marker:
        text += "\n" + PROLOG
    return text + "\n"


@pytest.fixture
def write_export(tmp_path: Path):
    def _write(text: str, encoding: str = "utf-16") -> Path:
        path = tmp_path / "gpos.xml"
        path.write_text(text, encoding=encoding)
        return path

    return _write
