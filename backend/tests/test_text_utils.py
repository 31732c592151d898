"""
Tests for narration text and media descriptor utilities.
"""

import pytest

from narrator.utils.media_utils import (
    estimate_duration_from_size,
    format_timestamp,
    get_extension,
    is_image_location,
    is_video_location,
)
from narrator.utils.text_utils import (
    clean_description,
    compile_clean_text,
    prepare_for_speech,
    split_for_speech,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("a person walks past marker 20", "A person walks past marker 20."),
        ("  the scene shows **a dog** running ", "A dog running."),
        ("We can see a cat!", "A cat!"),
        ("   ", ""),
    ],
)
def test_clean_description(raw, expected):
    assert clean_description(raw) == expected


def test_clean_text_uses_connectors():
    text = compile_clean_text(["A dog runs.", "A cat sleeps.", "A bird sings."])
    assert text == "A dog runs. Midway through, a cat sleeps. Finally, a bird sings."
    assert compile_clean_text(["A dog runs."]) == "A dog runs."


@pytest.mark.parametrize(
    "second, expected",
    [
        ("A cat sleeps.", "Finally, a cat sleeps."),
        ("The cat sleeps.", "Finally, the cat sleeps."),
        ("NASA footage plays.", "Finally, NASA footage plays."),
        ("TV static fills the screen.", "Finally, TV static fills the screen."),
        ("I see a cat.", "Finally, I see a cat."),
    ],
)
def test_connector_lowercases_first_word(second, expected):
    assert compile_clean_text(["A dog runs.", second]) == f"A dog runs. {expected}"


def test_prepare_for_speech():
    text = prepare_for_speech("Made in the U.S.A. e.g. [loud]\n\n noise")
    assert text == "Made in the United States for example loud noise"


def test_split_short_text_is_one_chunk():
    assert split_for_speech("Short text.", 100) == ["Short text."]
    assert split_for_speech("   ", 100) == []


def test_split_respects_limit():
    text = "One two. Three four. Five six."
    chunks = split_for_speech(text, 10)
    assert all(len(chunk) <= 10 for chunk in chunks)
    assert " ".join(chunks) == text


def test_split_hard_cuts_long_words():
    chunks = split_for_speech("abcdefghijklmnop", 5)
    assert chunks == ["abcde", "fghij", "klmno", "p"]


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "00:00.00"), (75.5, "01:15.50"), (3725.25, "62:05.25")],
)
def test_format_timestamp(seconds, expected):
    assert format_timestamp(seconds) == expected


def test_format_detection():
    assert get_extension("https://cdn.example.com/a/Clip.MP4?sig=1") == ".mp4"
    assert is_video_location("uploads/clip.mov")
    assert is_video_location("uploads/clip.mp4", "video/mp4")
    assert not is_video_location("uploads/clip.mp4", "image/png")
    assert is_image_location("uploads/photo.JPG")
    assert not is_image_location("uploads/notes.txt")


def test_duration_estimate_from_size():
    assert estimate_duration_from_size(83333 * 60) == pytest.approx(60.0)
