"""Tests for masking helpers."""
from app.utils.masking import mask_email, masked_secret_status, secret_fingerprint


def test_mask_email_keeps_domain_only():
    assert mask_email("jane.doe@example.com") == "***@example.com"
    assert mask_email("no-at-sign") == "***@***"
    assert mask_email(None) is None


def test_secret_fingerprint_is_stable_and_short():
    fp = secret_fingerprint("whsec_abc")

    assert fp == secret_fingerprint("whsec_abc")
    assert fp.startswith("sha256:") and len(fp) == 15
    assert "whsec_abc" not in fp
    assert secret_fingerprint("") is None


def test_masked_secret_status_maps_every_name():
    status = masked_secret_status({"primary": "s1", "next": None})

    assert status["next"] is None
    assert status["primary"] == secret_fingerprint("s1")
