import pytest

import wikipdf.core as core


PAGE_BREAK = "<div style='page-break-before: always;'></div>"


def test_scenario_title_caption_and_table():
    md_text = "#Title\nSome text\n|a|b|\n|-|-|\n|1|2|"

    normalized = core.normalize_markdown(md_text)

    assert normalized == (
        "# Title<br>\n"
        '<span class="table-caption">Some text</span>\n'
        "\n"
        "|a|b|\n"
        "|-|-|\n"
        "|1|2|"
    )


def test_headline_spacing_is_idempotent():
    md_text = "#Title\n##Sub\n### Already spaced"

    once = core.fix_headline_spacing(md_text)
    twice = core.fix_headline_spacing(once)

    assert once == "# Title\n## Sub\n### Already spaced"
    assert twice == once


def test_headline_spacing_ignores_code_blocks():
    md_text = "```c\n#include <stdio.h>\n```\n#Title"

    assert core.fix_headline_spacing(md_text) == "```c\n#include <stdio.h>\n```\n# Title"


def test_work_items_are_not_headlines():
    assert core.fix_headline_spacing("#1234 fixed") == "#1234 fixed"
    assert core.classify_line("#1234 fixed") is core.LineKind.TEXT
    assert core.get_headline_level("#1234") == 0

    normalized = core.normalize_markdown("# A\n#123 closed\n# B")

    assert "#123 closed<br>" in normalized
    assert PAGE_BREAK not in normalized


def test_work_item_line_above_table_becomes_caption():
    normalized = core.normalize_markdown("#42 tracked\n|a|\n|-|")

    assert normalized == '<span class="table-caption">#42 tracked</span>\n\n|a|\n|-|'


def test_code_block_lines_never_get_line_breaks():
    md_text = "Intro\n```python\nx = 1\n\ny = 2\n```\nOutro"

    normalized = core.normalize_markdown(md_text)

    assert normalized == "Intro<br>\n```python\nx = 1\n\ny = 2\n```\nOutro<br>"


def test_pipe_lines_inside_code_block_are_not_tables():
    md_text = "Caption\n```\n|a|b|\n```"

    normalized = core.normalize_markdown(md_text)

    assert "table-caption" not in normalized
    assert normalized == "Caption<br>\n```\n|a|b|\n```"


def test_consecutive_subheadings_get_no_page_break():
    normalized = core.normalize_markdown("## Sub\ntext\n## Sub")

    assert PAGE_BREAK not in normalized


def test_page_break_before_top_level_heading_after_subsection():
    normalized = core.normalize_markdown("# One\n## Two\n# Three")

    assert normalized == f"# One<br>\n## Two<br>\n{PAGE_BREAK}\n\n# Three<br>"


def test_consecutive_top_level_headings_get_no_page_break():
    normalized = core.normalize_markdown("# One\ntext\n# Two")

    assert PAGE_BREAK not in normalized


def test_toc_marker_suppresses_breaks_and_page_breaks():
    normalized = core.normalize_markdown("[TOC]\n# One\n## Two\n# Three")

    assert normalized.startswith("[TOC]\n")
    assert PAGE_BREAK not in normalized
    assert "# Three<br>" in normalized

    assert core.normalize_markdown("[[_TOC_]]") == "[[_TOC_]]"


def test_text_directly_above_table_is_wrapped():
    normalized = core.normalize_markdown("Results\n|a|b|\n|-|-|")

    assert normalized == '<span class="table-caption">Results</span>\n\n|a|b|\n|-|-|'


def test_text_separated_by_blank_line_is_not_wrapped():
    normalized = core.normalize_markdown("Results\n\n|a|b|\n|-|-|")

    assert normalized == "Results<br>\n\n|a|b|\n|-|-|"


def test_existing_caption_is_not_wrapped_twice():
    md_text = '<span class="table-caption">Results</span>\n|a|\n|-|'

    normalized = core.normalize_markdown(md_text)

    assert normalized.count('<span class="table-caption">') == 1
    assert normalized == '<span class="table-caption">Results</span>\n\n|a|\n|-|'


def test_table_after_headline_gets_separator_without_caption():
    normalized = core.normalize_markdown("# Title\n|a|\n|-|")

    assert normalized == "# Title\n\n|a|\n|-|"


def test_table_at_document_start_is_unchanged():
    assert core.normalize_markdown("|a|\n|-|\n|1|") == "|a|\n|-|\n|1|"


def test_table_exit_restores_line_breaks():
    normalized = core.normalize_markdown("|a|\n|-|\nAfter\nMore")

    assert normalized == "|a|\n|-|\nAfter<br>\nMore<br>"


def test_blank_line_inside_table_keeps_table_open():
    md_text = "|a|\n\n|b|"

    assert core.normalize_markdown(md_text) == md_text


def test_trailing_whitespace_is_stripped_and_final_newline_kept():
    assert core.normalize_markdown("text  \r\nmore\n") == "text<br>\nmore<br>\n"


def test_next_state_transitions():
    state = core.NormalizerState()

    state = core.next_state(state, "```")
    assert state.in_code_block
    assert core.next_state(state, "|a|") == state

    state = core.next_state(state, "```")
    assert not state.in_code_block

    state = core.next_state(state, "|a|")
    assert state.in_table
    state = core.replace(state, table_has_caption=True)
    state = core.next_state(state, "")
    assert state.in_table and state.table_has_caption

    state = core.next_state(state, "After")
    assert not state.in_table
    assert not state.table_has_caption

    state = core.next_state(state, "## Sub")
    assert state.top_level_open
    state = core.next_state(state, "# Top")
    assert not state.top_level_open

    state = core.next_state(state, "[TOC]")
    assert state.toc_seen
    assert core.next_state(state, "## Sub").top_level_open is False


def test_classify_line():
    assert core.classify_line("  ```js") is core.LineKind.CODE_FENCE
    assert core.classify_line("| a | b |") is core.LineKind.TABLE_ROW
    assert core.classify_line("   ") is core.LineKind.BLANK
    assert core.classify_line("### Three") is core.LineKind.HEADLINE
    assert core.classify_line("[TOC]") is core.LineKind.TOC_MARKER
    assert core.classify_line("plain | text") is core.LineKind.TEXT


def test_headline_level_is_capped():
    assert core.get_headline_level("####### deep") == 6
    assert core.get_headline_level("  ## indented") == 2


def test_page_flag_is_threaded_across_pages():
    pages, open_flag = core.normalize_markdown_pages(["# A\n## B", "# C\ntext"])

    assert pages[0] == "# A<br>\n## B<br>"
    assert pages[1].startswith(f"{PAGE_BREAK}\n\n# C<br>")
    assert open_flag is False

    text, open_flag = core.normalize_markdown_with_state("## Only sub")
    assert open_flag is True


def test_none_input_is_rejected():
    with pytest.raises(TypeError):
        core.normalize_markdown(None)


def test_unterminated_code_fence_leaves_rest_undecorated():
    md_text = "Intro\n```\ncode\n|a|\n# Not a heading\nmore"

    assert core.normalize_markdown(md_text) == "Intro<br>\n```\ncode\n|a|\n# Not a heading\nmore"


def test_unbalanced_table_rows_are_left_as_text():
    normalized = core.normalize_markdown("Caption\n|a|b|\n|-|\nno closing pipe|\n# Next")

    assert normalized == (
        '<span class="table-caption">Caption</span>\n'
        "\n"
        "|a|b|\n"
        "|-|\n"
        "no closing pipe|<br>\n"
        "# Next<br>"
    )

    assert core.normalize_markdown("Text\n|a|b\nmore") == "Text<br>\n|a|b<br>\nmore<br>"
