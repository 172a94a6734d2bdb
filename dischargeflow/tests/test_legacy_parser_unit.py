from dischargeflow.document.legacy_parser import ParagraphSection, TableSection, parse_legacy_text


def test_heading_with_pipe_table() -> None:
    sections = parse_legacy_text("## Diagnosis\n\n| Label | Value |\n|---|---|\n| Final | MI |")
    assert sections == [TableSection(title="Diagnosis", headers=["Label", "Value"], rows=[["Final", "MI"]])]


def test_leading_text_and_paragraph_sections() -> None:
    raw = "Discharge Summary - Ravi\n\n## Course in Hospital\nThrombolysed.\nStable.\n\n---\n\n## Advice\nRest."
    sections = parse_legacy_text(raw)
    assert sections[0] == ParagraphSection(title=None, content="Discharge Summary - Ravi")
    assert sections[1] == ParagraphSection(title="Course in Hospital", content="Thrombolysed.\nStable.\n\n---")
    assert sections[2] == ParagraphSection(title="Advice", content="Rest.")


def test_unheaded_table_is_parsed() -> None:
    sections = parse_legacy_text("| UHID | IPID |\n|:--|--:|\n| U1 | I1 |\n| U2 | I2 |")
    assert sections == [TableSection(title=None, headers=["UHID", "IPID"], rows=[["U1", "I1"], ["U2", "I2"]])]


def test_separator_without_header_row_is_prose() -> None:
    sections = parse_legacy_text("## Notes\n|---|---|\nno header")
    assert sections == [ParagraphSection(title="Notes", content="|---|---|\nno header")]


def test_empty_and_blank_input() -> None:
    assert parse_legacy_text("") == []
    assert parse_legacy_text("   \n\n") == []
    assert parse_legacy_text(None) == []


def test_parse_is_restartable() -> None:
    raw = "## A\nx\n## B\n| h |\n|---|\n| v |"
    assert parse_legacy_text(raw) == parse_legacy_text(raw)
    assert [s.type for s in parse_legacy_text(raw)] == ["paragraph", "table"]


def test_heading_without_body_is_kept() -> None:
    assert parse_legacy_text("## Diagnosis\n## Course\nStable.") == [
        ParagraphSection(title="Diagnosis", content=""),
        ParagraphSection(title="Course", content="Stable."),
    ]
    assert parse_legacy_text("Intro\n\n## Advice\n   \n") == [
        ParagraphSection(title=None, content="Intro"),
        ParagraphSection(title="Advice", content=""),
    ]
