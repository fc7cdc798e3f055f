import pytest

from learnchat.core.i18n import get_error_message, resolve_locale
from learnchat.features.conversations.service import titles_similar


@pytest.mark.parametrize(
    "existing,generated",
    [
        ("React hooks intro", "React Hooks Intro!"),
        ("Python basics", "Python basics for beginners"),
        ("非同期処理の基本", "非同期処理の基本。"),
    ],
)
def test_similar_titles_are_detected(existing, generated):
    assert titles_similar(existing, generated)


def test_different_titles_are_not_similar():
    assert not titles_similar("SQL joins", "Async in Rust")


def test_missing_title_is_never_similar():
    assert not titles_similar(None, "Anything")
    assert not titles_similar("", "Anything")


def test_error_message_locales_and_fallbacks():
    assert get_error_message("NOT_FOUND", "en") == "Resource not found"
    assert get_error_message("NOT_FOUND", "ja") == "指定されたリソースが見つかりません"
    # Unsupported locale falls back to English
    assert get_error_message("NOT_FOUND", "fr") == "Resource not found"
    assert get_error_message("NO_SUCH_CODE", "en") == "An error occurred"


def test_resolve_locale_from_accept_language():
    assert resolve_locale("en-US,en;q=0.9") == "en"
    assert resolve_locale("fr-FR, ja;q=0.5") == "ja"
    assert resolve_locale("de") == "ja"
    assert resolve_locale(None, default="en") == "en"
