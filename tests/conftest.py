from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


XLIFF_NS = "urn:oasis:names:tc:xliff:document:1.2"

SAMPLE_XLIFF = """\
<?xml version="1.0" encoding="UTF-8"?>
<?xml-stylesheet type="text/xsl" href="review.xsl"?>
<xliff version="1.2" xmlns="urn:oasis:names:tc:xliff:document:1.2">
  <file source-language="en" target-language="fr" datatype="plaintext" original="messages">
    <header>
      <tool tool-id="editor" tool-name="Editor"/>
    </header>
    <body>
      <!-- landing page -->
      <trans-unit id="intro" datatype="html">
        <source>Welcome</source>
        <target state="translated">Bienvenue</target>
      </trans-unit>
      <group id="buttons">
        <trans-unit id="save">
          <source>Click <x id="1"/> to save</source>
        </trans-unit>
        <group id="nested">
          <trans-unit id="bold" approved="yes">
            <source>Press <g id="2">Save</g> now</source>
            <target>Appuyez</target>
            <note>Toolbar</note>
          </trans-unit>
        </group>
      </group>
    </body>
  </file>
</xliff>
"""

SAMPLE_VTT = """\
WEBVTT

1
00:00:01.000 --> 00:00:02.000
Hello
world

2
00:00:03.000 --> 00:00:04.000
Second cue
"""


@pytest.fixture
def xliff_bytes() -> bytes:
    return SAMPLE_XLIFF.encode("utf-8")


@pytest.fixture
def vtt_bytes() -> bytes:
    return SAMPLE_VTT.encode("utf-8")


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point configuration discovery at an empty temporary directory."""

    from bitext.configuration import BitextConfig, clear_settings_cache

    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    for name in BitextConfig.model_fields:
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield tmp_path
    clear_settings_cache()
