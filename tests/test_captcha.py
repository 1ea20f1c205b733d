from datetime import datetime, timedelta, timezone

from src.reportwizard.security import captcha


def test_issue_and_verify_once():
    captcha_id, svg = captcha.issue_captcha()
    assert svg.startswith("<svg")
    answer = captcha.CAPTCHA_STORE[captcha_id].answer
    assert captcha.verify_captcha(captcha_id, answer.swapcase())
    assert not captcha.verify_captcha(captcha_id, answer)


def test_expired_or_missing_captcha_fails():
    captcha_id, _ = captcha.issue_captcha()
    entry = captcha.CAPTCHA_STORE[captcha_id]
    entry.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    assert not captcha.verify_captcha(captcha_id, entry.answer)
    assert not captcha.verify_captcha(None, "abc")
    assert not captcha.verify_captcha("unknown", "abc")


def test_expired_entries_are_purged_on_issue():
    old_id, _ = captcha.issue_captcha()
    captcha.CAPTCHA_STORE[old_id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    captcha.issue_captcha()
    assert old_id not in captcha.CAPTCHA_STORE
