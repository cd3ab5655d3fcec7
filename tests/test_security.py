import runpy
import string
from datetime import timedelta
from pathlib import Path

import pytest
from jose import jwt

from crowdstack import config
from crowdstack.errors import Expired, Malformed, SignatureMismatch
from crowdstack.security import generate_pass_token, verify_pass_token

B64URL = string.ascii_letters + string.digits + "-_"


def test_round_trip_returns_same_triple():
    token = generate_pass_token("reg_1", "evt_1", "att_1")
    claims = verify_pass_token(token)
    assert (claims.registration_id, claims.event_id, claims.attendee_id) == ("reg_1", "evt_1", "att_1")


def test_regenerated_passes_differ_but_both_verify():
    t1 = generate_pass_token("reg_1", "evt_1", "att_1")
    t2 = generate_pass_token("reg_1", "evt_1", "att_1")
    assert t1 != t2
    assert verify_pass_token(t1).registration_id == verify_pass_token(t2).registration_id == "reg_1"


def test_any_single_character_change_is_signature_mismatch():
    token = generate_pass_token("reg_42", "evt_7", "att_9")
    for i, ch in enumerate(token):
        replacement = "A" if ch != "A" else "B"
        tampered = token[:i] + replacement + token[i + 1:]
        with pytest.raises(SignatureMismatch):
            verify_pass_token(tampered)


def test_single_bit_flip_anywhere_is_signature_mismatch():
    token = generate_pass_token("reg_42", "evt_7", "att_9")
    misclassified = []
    for i, ch in enumerate(token):
        tampered = token[:i] + chr(ord(ch) ^ 0x01) + token[i + 1:]
        try:
            verify_pass_token(tampered)
        except SignatureMismatch:
            continue
        except Exception as e:
            misclassified.append((i, ch, type(e).__name__))
        else:
            misclassified.append((i, ch, "accepted"))
    assert misclassified == []


@pytest.mark.parametrize("edited", ["a.b", "a..c", "a.b.c.d", ".b.c"])
def test_wrong_segment_count_is_signature_mismatch(edited):
    with pytest.raises(SignatureMismatch):
        verify_pass_token(edited)


def test_wrong_secret_is_signature_mismatch():
    token = generate_pass_token("reg_1", "evt_1", "att_1", secret="another-secret")
    with pytest.raises(SignatureMismatch):
        verify_pass_token(token)


@pytest.mark.parametrize("garbage", ["", "definitely-not-a-token", "é.b.c"])
def test_structural_garbage_is_malformed(garbage):
    with pytest.raises(Malformed):
        verify_pass_token(garbage)


def test_signed_token_missing_claims_is_malformed():
    token = jwt.encode({"registration_id": "reg_1", "exp": 4102444800}, config.QR_PASS_SECRET, algorithm="HS256")
    with pytest.raises(Malformed):
        verify_pass_token(token)


def test_stale_pass_is_expired():
    token = generate_pass_token("reg_1", "evt_1", "att_1", ttl=timedelta(seconds=-30))
    with pytest.raises(Expired):
        verify_pass_token(token)


def test_mint_token_script_prints_verifiable_pass(capsys):
    script = Path(__file__).resolve().parent.parent / "scripts" / "mint_token.py"
    mod = runpy.run_path(str(script), run_name="mint_token")
    mod["main"](["--registration-id", "reg_5", "--event-id", "evt_5", "--attendee-id", "att_5"])

    token = capsys.readouterr().out.strip()
    assert verify_pass_token(token).event_id == "evt_5"
