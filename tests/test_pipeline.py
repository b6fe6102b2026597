import pytest

from lessontrack.models import Caption
from lessontrack.pipeline import (
    captions_to_drafts,
    clean_caption_text,
    infer_lesson_type,
    ingest_lesson,
    normalize_katakana,
    parse_txt_content,
    process_lesson_file,
    split_into_sentences,
)


def test_split_western_sentences():
    assert split_into_sentences("Hello there. How are you? Fine!") == ["Hello there.", "How are you?", "Fine!"]


def test_split_drops_short_fragments():
    # "Ok" is under three characters once the ender is removed
    assert split_into_sentences("Ok. This one stays.") == ["This one stays."]


def test_split_cjk_keeps_single_character_sentences():
    assert split_into_sentences("はい。 元気ですか？") == ["はい。", "元気ですか？"]
    assert split_into_sentences("え。") == ["え。"]


def test_split_text_without_enders():
    assert split_into_sentences("no ending punctuation here") == ["no ending punctuation here"]
    assert split_into_sentences("") == []


def test_normalize_katakana_half_width():
    assert normalize_katakana("ｶﾀｶﾅ") == "カタカナ"
    assert normalize_katakana("ｶﾞｷﾞ") == "ガギ"
    # full-width ASCII elsewhere is not touched
    assert normalize_katakana("ＡＢＣ ｱ") == "ＡＢＣ ア"


def test_clean_caption_text():
    assert clean_caption_text("<i>Hello</i>\nthere") == "Hello there"


def test_caption_split_into_timed_sentences_proportionally():
    drafts = captions_to_drafts([Caption("Hello there. How are you?", 0, 2500)])
    assert [d.text for d in drafts] == ["Hello there.", "How are you?"]
    # 12 of 25 characters each
    assert [(d.start_ms, d.end_ms) for d in drafts] == [(0, 1200), (1200, 2400)]


def test_cjk_enders_split_only_before_whitespace():
    assert split_into_sentences("いい天気ですね。散歩しよう。") == ["いい天気ですね。散歩しよう。"]


def test_caption_with_single_sentence_keeps_full_range():
    drafts = captions_to_drafts([Caption("Just one line", 500, 1500)])
    assert [(d.text, d.start_ms, d.end_ms) for d in drafts] == [("Just one line", 500, 1500)]


def test_caption_with_only_markup_is_dropped():
    assert captions_to_drafts([Caption("<b></b>", 0, 1000)]) == []


def test_parse_txt_content():
    drafts = parse_txt_content("First sentence. Second sentence.\r\nThird one!")
    assert [d.text for d in drafts] == ["First sentence.", "Second sentence.", "Third one!"]
    assert all(d.start_ms is None for d in drafts)
    with pytest.raises(ValueError):
        parse_txt_content("   \n ")


def test_process_lesson_file_dispatch():
    srt = "1\n00:00:01,000 --> 00:00:02,000\nHello there.\n\n2\n00:00:01,900 --> 00:00:03,000\nHello there.\n"
    drafts = process_lesson_file(srt, "a.srt")
    # duplicate adjacent captions merge before splitting
    assert [(d.text, d.start_ms, d.end_ms) for d in drafts] == [("Hello there.", 1000, 3000)]
    assert [d.text for d in process_lesson_file("One more time.", "a.txt")] == ["One more time."]


def test_infer_lesson_type(tmp_path):
    a = tmp_path / "a.srt"
    b = tmp_path / "b.txt"
    assert infer_lesson_type([a], ["1\n00:00:01,000 --> 00:00:02,000\nx\n"]) == "subtitle"
    assert infer_lesson_type([b], ["plain"]) == "text"
    assert infer_lesson_type([a, b], ["", ""]) == "manga"


def test_ingest_subtitle_lesson(tmp_path, store):
    src = tmp_path / "episode1.srt"
    src.write_text(
        "1\n00:00:01,000 --> 00:00:02,000\nおはよう。\n\n"
        "2\n00:00:03,000 --> 00:00:05,000\nいい天気ですね。 散歩しよう。\n",
        encoding="utf-8",
    )
    seen = []
    progress = []
    out = ingest_lesson(
        store,
        [src],
        progress_cb=lambda stage, cur, total, msg: progress.append((stage, cur, total)),
        info_cb=seen.append,
    )
    assert out["lesson_type"] == "subtitle"
    assert out["title"] == "episode1"
    assert out["sentences"] == 3
    assert progress[-1] == ("ingest", 2, 2)
    assert any("sentences=3" in m for m in seen)

    rows = store.fetch_sentence_page(out["lesson_id"], 1, 10)
    assert [s.ordinal for s in rows] == [0, 1, 2]
    assert rows[0].start_time == 1.0 and rows[0].end_time == 2.0
    assert rows[1].start_time == 3.0
    assert rows[1].end_time == pytest.approx(4.067)
    assert rows[2].end_time == pytest.approx(4.867)
    assert all(s.lesson_file_id == out["files"][0]["lesson_file_id"] for s in rows)


def test_ingest_manga_pages_keep_file_ids(tmp_path, store):
    pages = []
    for i in range(2):
        p = tmp_path / f"page{i}.txt"
        p.write_text(f"ページ{i}です。 次へ。", encoding="utf-8")
        pages.append(p)
    out = ingest_lesson(store, pages, title="comic")
    assert out["lesson_type"] == "manga"
    assert [f["sentences"] for f in out["files"]] == [2, 2]
    second = out["files"][1]["lesson_file_id"]
    assert store.count_sentences(out["lesson_id"], lesson_file_id=second) == 2
    rows = store.fetch_sentence_page(out["lesson_id"], 1, 10, lesson_file_id=second)
    assert [s.ordinal for s in rows] == [2, 3]


def test_ingest_rejects_missing_and_empty_files(tmp_path, store):
    with pytest.raises(FileNotFoundError):
        ingest_lesson(store, [tmp_path / "missing.srt"])
    empty = tmp_path / "empty.srt"
    empty.write_text("1\n00:00:01,000 --> 00:00:02,000\n<i></i>\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ingest_lesson(store, [empty])
    assert store.list_lessons() == []
