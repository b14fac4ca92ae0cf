from folio.renderers import Heading, MarkdownConverter


def test_headings_get_unique_ids_and_toc():
    rendered = MarkdownConverter().to_html("# Intro\n\ntext\n\n## Intro\n\n## Next Steps\n")
    assert '<h1 id="intro">Intro</h1>' in rendered.html
    assert '<h2 id="intro-1">Intro</h2>' in rendered.html
    assert rendered.toc == (
        Heading("intro", "Intro", 1),
        Heading("intro-1", "Intro", 2),
        Heading("next-steps", "Next Steps", 2),
    )


def test_code_blocks_are_highlighted_when_language_known():
    rendered = MarkdownConverter().to_html("```python\nprint('hi')\n```\n")
    assert 'class="highlight"' in rendered.html


def test_unknown_language_falls_back_to_escaped_pre():
    rendered = MarkdownConverter().to_html("```nosuchlang\n<b>x</b>\n```\n")
    assert '<pre><code class="language-nosuchlang">&lt;b&gt;x&lt;/b&gt;' in rendered.html


def test_tables_and_strikethrough_plugins():
    rendered = MarkdownConverter().to_html("| a | b |\n|---|---|\n| 1 | 2 |\n\n~~gone~~\n")
    assert "<table>" in rendered.html
    assert "<del>gone</del>" in rendered.html


def test_conversion_is_pure():
    converter = MarkdownConverter()
    first = converter.to_html("# Same\n")
    second = converter.to_html("# Same\n")
    assert first == second
