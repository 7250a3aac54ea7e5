import io
import json
import zipfile

import pytest

from donation_core.errors import ResultFormatError
from donation_core.fetcher import ResultFetcher, decode_result


def test_fetch_validates_and_normalizes(scripted_marketplace):
    payload = json.dumps({
        "recommendations": [
            {"nftId": 1, "reason": "Good", "confidence": 120},
            {"nftId": "2", "reason": "Fine", "confidence": 30},
            {"nftId": "3", "reason": "Ok", "confidence": 20},
            {"nftId": "4", "reason": "Extra", "confidence": 10},
        ]
    }).encode()
    marketplace = scripted_marketplace(result=payload)

    result = ResultFetcher(marketplace).fetch("0xtask")

    assert marketplace.fetches == 1
    assert [r.item_id for r in result.recommendations] == ["1", "2", "3"]
    assert result.recommendations[0].confidence == 100


def test_malformed_json_is_a_result_format_error(scripted_marketplace):
    marketplace = scripted_marketplace(result=b"{not json")

    with pytest.raises(ResultFormatError, match="not valid JSON"):
        ResultFetcher(marketplace).fetch("0xtask")


def test_non_utf8_payload_is_a_result_format_error():
    with pytest.raises(ResultFormatError, match="UTF-8"):
        decode_result(b"\xff\xfe\x00garbage")


def test_wrong_shape_is_a_result_format_error():
    with pytest.raises(ResultFormatError, match="missing recommendations"):
        decode_result(b'{"ok": true}')


def test_error_document_is_returned_as_failed_result():
    result = decode_result(b'{"error": true, "message": "OPENAI key missing", "recommendations": []}')

    assert result.error is True
    assert result.message == "OPENAI key missing"


def test_zipped_result_is_unpacked():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("iexec_out/computed.json", '{"recommendations": [{"nftId": "5", "reason": "Yes", "confidence": 55}]}')
        archive.writestr("iexec_out/stdout.txt", "log")

    result = decode_result(buffer.getvalue())

    assert result.recommendations[0].item_id == "5"


def test_zip_without_result_file_is_rejected():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("stdout.txt", "log")

    with pytest.raises(ResultFormatError, match="no computed.json"):
        decode_result(buffer.getvalue())
