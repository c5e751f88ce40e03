# -*- coding: utf-8 -*-

import base64
import json
import zlib

import pytest

from card_repository.card_utils import (
    CardRecord,
    decode_card_payload,
    read_card_data,
    write_card_data,
)
from card_repository.errors import DecodeError, FormatError
from card_repository.png_chunks import read_text_chunks

from conftest import encode_card, make_png, text_chunk, ztxt_chunk

ALICE = {"spec": "chara_card_v2", "spec_version": "2.0", "data": {"name": "Alice"}}


class TestDecodeCardPayload:
    def test_plain_json(self):
        record = decode_card_payload("  " + json.dumps(ALICE) + "\n")
        assert record.data.name == "Alice"
        assert record.spec == "chara_card_v2"

    def test_base64_json(self):
        record = decode_card_payload(encode_card(ALICE))
        assert record.data.name == "Alice"
        assert record.spec_version == "2.0"

    def test_base64_without_padding(self):
        payload = encode_card(ALICE).rstrip("=")
        assert decode_card_payload(payload).data.name == "Alice"

    def test_base64_deflate_json(self):
        blob = zlib.compress(json.dumps(ALICE).encode("utf-8"))
        record = decode_card_payload(base64.b64encode(blob).decode("ascii"))
        assert record.to_dict() == ALICE

    def test_base64_raw_deflate_json(self):
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        blob = compressor.compress(json.dumps(ALICE).encode("utf-8")) + compressor.flush()
        record = decode_card_payload(base64.b64encode(blob).decode("ascii"))
        assert record.data.name == "Alice"

    @pytest.mark.parametrize(
        "payload",
        [
            "",
            "not a card!!",
            "{broken json",
            base64.b64encode(b"\xff\xfe\x00garbage").decode("ascii"),
            base64.b64encode(b"plain words, not json").decode("ascii"),
        ],
    )
    def test_undecodable_payload(self, payload):
        with pytest.raises(DecodeError, match="cannot decode character payload"):
            decode_card_payload(payload)

    def test_json_array_is_not_a_card(self):
        with pytest.raises(DecodeError):
            decode_card_payload("[1, 2, 3]")

    def test_deeply_nested_json(self):
        with pytest.raises(DecodeError, match="cannot decode character payload"):
            decode_card_payload("[" * 100000)

    def test_no_defaults_are_applied(self):
        record = decode_card_payload(json.dumps({"spec": "chara_card_v2", "data": {}}))
        assert record.data.name is None
        assert record.data.description is None
        assert record.data.character_version is None

    def test_v1_card_fields_at_top_level(self):
        record = decode_card_payload(json.dumps({"name": "Old", "first_mes": "Hi"}))
        assert record.data.name == "Old"
        assert record.data.first_mes == "Hi"

    def test_unknown_fields_are_preserved(self):
        card = {
            "spec": "chara_card_v2",
            "spec_version": "2.0",
            "data": {"name": "Bo", "character_book": {"entries": []}, "tags": ["x"]},
        }
        record = decode_card_payload(json.dumps(card))
        assert record.data.extra == {"character_book": {"entries": []}, "tags": ["x"]}
        assert record.to_dict() == card


class TestReadCardData:
    def test_reads_chara_keyword(self, card_png):
        record = read_card_data(card_png)
        assert record.data.name == "Rin"
        assert record.data.creator == "someone"
        assert record.data.character_version == "2.1"

    def test_falls_back_to_chara_card_v2(self):
        png = make_png(text_chunk("chara_card_v2", encode_card(ALICE)))
        assert read_card_data(png).data.name == "Alice"

    def test_prefers_chara(self):
        other = {"data": {"name": "Other"}}
        png = make_png(
            text_chunk("chara_card_v2", encode_card(other)),
            text_chunk("chara", encode_card(ALICE)),
        )
        assert read_card_data(png).data.name == "Alice"

    def test_reads_compressed_chunk(self):
        png = make_png(ztxt_chunk("chara", json.dumps(ALICE)))
        assert read_card_data(png).data.name == "Alice"

    def test_missing_card_data(self):
        with pytest.raises(DecodeError, match="not found"):
            read_card_data(make_png(text_chunk("Comment", "just a picture")))

    def test_invalid_png(self):
        with pytest.raises(FormatError):
            read_card_data(b"definitely not a png")


class TestWriteCardData:
    def test_embeds_base64_chara(self, image_bytes, card_dict):
        png = write_card_data(image_bytes, card_dict)
        payload = read_text_chunks(png)["chara"]
        assert json.loads(base64.b64decode(payload)) == card_dict

    def test_accepts_card_record(self, image_bytes):
        record = CardRecord.from_dict(ALICE)
        png = write_card_data(image_bytes, record, keyword="chara_card_v2")
        assert read_card_data(png).to_dict() == ALICE

    def test_non_ascii_content(self, image_bytes):
        card = {"spec": "chara_card_v2", "spec_version": "2.0", "data": {"name": "凛"}}
        assert read_card_data(write_card_data(image_bytes, card)).data.name == "凛"
