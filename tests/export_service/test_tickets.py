"""
Unit tests for capability ticket minting and verification.
"""

from dataclasses import replace
from urllib.parse import parse_qsl, urlencode

import pytest

from export_service.errors import InvalidSignature, MalformedTicket, TicketExpired
from export_service.models import DocumentKind
from export_service.tickets import TICKET_TTL_SECONDS, TicketCodec


class TestMint:
    """Tests for TicketCodec.mint."""

    def test_mint_sets_expiry_from_clock(self, codec, clock):
        ticket = codec.mint(DocumentKind.RESUME, "res-1")
        assert ticket.expires_at == int(clock.now) + TICKET_TTL_SECONDS

    def test_mint_is_deterministic_for_same_time(self, codec):
        first = codec.mint(DocumentKind.COVER_LETTER, "cl-1", watermark=True)
        second = codec.mint(DocumentKind.COVER_LETTER, "cl-1", watermark=True)
        assert first == second

    def test_mint_rejects_empty_id(self, codec):
        with pytest.raises(ValueError):
            codec.mint(DocumentKind.RESUME, "")

    def test_mint_rejects_non_positive_ttl(self, codec):
        with pytest.raises(ValueError):
            codec.mint(DocumentKind.RESUME, "res-1", ttl_seconds=0)

    def test_codec_requires_secret(self):
        with pytest.raises(ValueError, match="secret"):
            TicketCodec("")

    def test_different_secrets_produce_different_signatures(self, clock):
        a = TicketCodec("a" * 40 + "bcdefghij", clock=clock).mint(DocumentKind.RESUME, "x")
        b = TicketCodec("z" * 40 + "bcdefghij", clock=clock).mint(DocumentKind.RESUME, "x")
        assert a.signature != b.signature


class TestVerify:
    """Tests for TicketCodec.verify."""

    @pytest.mark.parametrize("kind", list(DocumentKind))
    @pytest.mark.parametrize("ttl", [1, 60, TICKET_TTL_SECONDS])
    def test_fresh_ticket_verifies_and_expires(self, codec, clock, kind, ttl):
        ticket = codec.mint(kind, "doc-42", ttl_seconds=ttl)
        codec.verify_ticket(ticket)

        clock.now += ttl
        codec.verify_ticket(ticket)  # now == expires_at is still valid

        clock.now += 1
        with pytest.raises(TicketExpired):
            codec.verify_ticket(ticket)

    def test_expired_at_301_seconds(self, codec, clock):
        ticket = codec.mint(DocumentKind.RESUME, "res-1", ttl_seconds=300)
        clock.now += 301
        with pytest.raises(TicketExpired):
            codec.verify_ticket(ticket)

    @pytest.mark.parametrize("mutation", [
        {"document_id": "res-2"},
        {"document_kind": DocumentKind.COVER_LETTER},
        {"expires_at": 10**10},
        {"watermark": False},
    ])
    def test_mutated_field_fails_signature(self, codec, mutation):
        ticket = codec.mint(DocumentKind.RESUME, "res-1", watermark=True)
        with pytest.raises(InvalidSignature):
            codec.verify_ticket(replace(ticket, **mutation))

    def test_extending_expiry_is_detected_before_expiry(self, codec, clock):
        ticket = codec.mint(DocumentKind.RESUME, "res-1")
        clock.now += 1000
        with pytest.raises(InvalidSignature):
            codec.verify_ticket(replace(ticket, expires_at=ticket.expires_at + 1000))

    def test_well_formed_foreign_signature_is_invalid(self, codec):
        ticket = codec.mint(DocumentKind.RESUME, "res-1")
        forged = replace(ticket, signature="A" * 43)
        with pytest.raises(InvalidSignature):
            codec.verify_ticket(forged)

    def test_id_boundaries_cannot_be_shifted(self, codec):
        """Moving characters between fields never yields the same signature."""
        a = codec.sign(DocumentKind.RESUME, "12", 3, False)
        b = codec.sign(DocumentKind.RESUME, "1", 23, False)
        assert a != b

    @pytest.mark.parametrize("kwargs", [
        {"document_kind": "poem"},
        {"document_id": ""},
        {"expires_at": "soon"},
        {"expires_at": "-5"},
        {"signature": ""},
        {"signature": "not a signature!"},
        {"watermark": "yes"},
    ])
    def test_malformed_fields(self, codec, kwargs):
        ticket = codec.mint(DocumentKind.RESUME, "res-1")
        fields = {
            "document_kind": ticket.document_kind,
            "document_id": ticket.document_id,
            "expires_at": ticket.expires_at,
            "signature": ticket.signature,
            "watermark": ticket.watermark,
        }
        fields.update(kwargs)
        with pytest.raises(MalformedTicket):
            codec.verify(**fields)

    def test_verify_accepts_string_fields_from_query(self, codec):
        ticket = codec.mint(DocumentKind.INTERVIEW_GUIDE, "ig-1", watermark=True)
        codec.verify("interviewGuide", "ig-1", str(ticket.expires_at), ticket.signature, "1")


class TestQueryRoundTrip:
    """Tests for to_query / parse_query."""

    def test_url_encoded_query_reproduces_ticket(self, codec):
        ticket = codec.mint(DocumentKind.COVER_LETTER, "cl/with spaces&odd=chars", watermark=True)
        query_string = urlencode(TicketCodec.to_query(ticket))

        parsed = TicketCodec.parse_query("coverLetter", dict(parse_qsl(query_string)))

        assert parsed == ticket
        codec.verify_ticket(parsed)

    def test_missing_watermark_parses_as_false(self, codec):
        ticket = codec.mint(DocumentKind.RESUME, "res-1")
        params = TicketCodec.to_query(ticket)
        del params["wm"]
        assert TicketCodec.parse_query("resume", params).watermark is False

    def test_missing_signature_is_malformed(self, codec):
        params = TicketCodec.to_query(codec.mint(DocumentKind.RESUME, "res-1"))
        del params["sig"]
        with pytest.raises(MalformedTicket):
            TicketCodec.parse_query("resume", params)
