from app.services.signatures import sign, verify

SECRET = "whsec_test"
BODY = b'{"type":"image.completed","payload":{"id":"mh_1"}}'


def test_valid_signature_accepted():
    assert verify(BODY, sign(BODY, SECRET), SECRET)


def test_prefixed_and_uppercase_signature_accepted():
    signature = "sha256=" + sign(BODY, SECRET).upper()
    assert verify(BODY, signature, SECRET)


def test_tampered_body_rejected():
    signature = sign(BODY, SECRET)
    tampered = BODY.replace(b"mh_1", b"mh_2")
    assert not verify(tampered, signature, SECRET)


def test_wrong_secret_rejected():
    assert not verify(BODY, sign(BODY, "other-secret"), SECRET)


def test_whitespace_change_rejected():
    # Signature covers the exact bytes, not the parsed JSON
    reformatted = b'{"type": "image.completed", "payload": {"id": "mh_1"}}'
    assert not verify(reformatted, sign(BODY, SECRET), SECRET)


def test_missing_header_or_secret_fails_closed():
    signature = sign(BODY, SECRET)
    assert not verify(BODY, None, SECRET)
    assert not verify(BODY, "", SECRET)
    assert not verify(BODY, signature, "")


def test_garbage_header_does_not_raise():
    assert not verify(BODY, "not-hex-é", SECRET)
    assert not verify(BODY, "sha256=", SECRET)
