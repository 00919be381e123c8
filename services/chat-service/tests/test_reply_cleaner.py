from app.core.metrics import metrics
from app.core.reply_cleaner import clean_reply, strip_leading_id

SID = "3f1c2a9e-7b4d-4c1e-9a2b-5d6e7f8a9b0c"
OTHER_UUID = "123e4567-e89b-12d3-a456-426614174000"


def test_clean_reply_none_is_empty():
    assert clean_reply(None, SID) == ""
    assert strip_leading_id(None, SID) == ""


def test_clean_reply_strips_leading_session_id_and_whitespace():
    assert clean_reply(f"  {SID}  \n Hello there.", SID) == "Hello there."


def test_clean_reply_strips_leading_foreign_uuid():
    assert clean_reply(f"{OTHER_UUID} The book is available.", SID) == "The book is available."


def test_clean_reply_removes_embedded_ids_anywhere():
    text = f"Your ticket {OTHER_UUID} is ready; session {SID} closed."

    assert clean_reply(text, SID) == "Your ticket  is ready; session  closed."


def test_clean_reply_removes_non_uuid_session_id():
    assert clean_reply("session-abc Hello, session-abc!", "session-abc") == "Hello, !"


def test_clean_reply_strips_malformed_leading_hex_run():
    text = "0123456789abcdef0123456789abcdef01234567   The due date is Friday."

    assert clean_reply(text, SID) == "The due date is Friday."


def test_clean_reply_keeps_plain_text_trimmed():
    text = "  Plain answer without identifiers.\n"

    assert clean_reply(text, SID) == text.strip()


def test_clean_reply_is_idempotent():
    samples = [
        f"{SID} {SID} hello",
        f"{OTHER_UUID}{OTHER_UUID}",
        "0123456789abcdef0123456789abcdef01234567 aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa tail",
        f"mixed {SID} text {OTHER_UUID} end.",
        "nothing to clean",
        "",
    ]
    for sample in samples:
        once = clean_reply(sample, SID)
        assert clean_reply(once, SID) == once


def test_clean_reply_counts_cleaned_replies():
    clean_reply(f"{SID} hi", SID)

    assert metrics.get("chat_reply_cleaned_total") == 1
