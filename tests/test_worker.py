"""Tests for the donation recommender worker app."""

import io
import json

import pytest

from donation_core.config import CREDENTIAL_ENV
from donation_core.errors import ModelError
from donation_core.runtime import RunContext, TaskRequest
from workloads.donation_recommender import NEW_USER_LINE, build_prompt, recommend


MODEL_ANSWER = {
    "recommendations": [
        {"nftId": 4, "reason": "Matches your interest in health.", "confidence": 150},
        {"nftId": "99", "reason": "Not in the catalog.", "confidence": 90},
        {"nftId": "1", "reason": "High impact for children.", "confidence": 72.6},
        {"nftId": "3", "reason": "Has received nothing yet.", "confidence": -5},
        {"nftId": "2", "reason": "You already support it.", "confidence": 40},
    ]
}


def make_context(tmp_path, document=None, secrets=None, stdin=None, name="run"):
    input_dir = tmp_path / name / "iexec_in"
    output_dir = tmp_path / name / "iexec_out"
    input_dir.mkdir(parents=True)
    if document is not None:
        (input_dir / "iexec_in.txt").write_text(json.dumps(document))
    return RunContext(
        task_id=name,
        input_dir=input_dir,
        output_dir=output_dir,
        secrets={CREDENTIAL_ENV: "sk-test"} if secrets is None else secrets,
        stdin=stdin,
    )


def read_output(context):
    return json.loads((context.output_dir / "computed.json").read_text())


def test_recommend_writes_validated_recommendations(tmp_path, request_document, fake_model):
    context = make_context(tmp_path, request_document)

    exit_code = recommend(context, model=fake_model(MODEL_ANSWER))

    assert exit_code == 0
    output = read_output(context)
    assert "error" not in output
    assert output["recommendations"] == [
        {"nftId": "4", "reason": "Matches your interest in health.", "confidence": 100},
        {"nftId": "1", "reason": "High impact for children.", "confidence": 73},
        {"nftId": "3", "reason": "Has received nothing yet.", "confidence": 0},
    ]


def test_recommend_output_is_byte_identical_across_runs(tmp_path, request_document, fake_model):
    first = make_context(tmp_path, request_document, name="first")
    second = make_context(tmp_path, request_document, name="second")

    assert recommend(first, model=fake_model(MODEL_ANSWER)) == 0
    assert recommend(second, model=fake_model(MODEL_ANSWER)) == 0

    assert (first.output_dir / "computed.json").read_bytes() == (second.output_dir / "computed.json").read_bytes()


def test_missing_credential_fails_with_error_document(tmp_path, request_document, fake_model):
    context = make_context(tmp_path, request_document, secrets={})
    model = fake_model(MODEL_ANSWER)

    exit_code = recommend(context, model=model)

    assert exit_code != 0
    output = read_output(context)
    assert output["error"] is True
    assert CREDENTIAL_ENV in output["message"]
    assert output["recommendations"] == []
    assert model.prompts == []


def test_input_falls_back_to_stdin(tmp_path, request_document, fake_model):
    context = make_context(tmp_path, stdin=io.StringIO(json.dumps(request_document)))

    assert recommend(context, model=fake_model(MODEL_ANSWER)) == 0
    assert len(read_output(context)["recommendations"]) == 3


def test_missing_input_everywhere_is_an_input_error(tmp_path, fake_model):
    context = make_context(tmp_path)

    assert recommend(context, model=fake_model(MODEL_ANSWER)) == 1
    output = read_output(context)
    assert output["error"] is True
    assert "Failed to read input" in output["message"]


def test_unparseable_input_is_an_input_error(tmp_path, fake_model):
    context = make_context(tmp_path, stdin=io.StringIO("not json"))

    assert recommend(context, model=fake_model(MODEL_ANSWER)) == 1
    assert "Failed to read input" in read_output(context)["message"]


@pytest.mark.parametrize(
    "field, message",
    [
        ("userAddress", "userAddress is required"),
        ("allNFTs", "allNFTs array is required"),
    ],
)
def test_required_fields(tmp_path, request_document, fake_model, field, message):
    del request_document[field]
    context = make_context(tmp_path, request_document)

    assert recommend(context, model=fake_model(MODEL_ANSWER)) == 1
    assert message in read_output(context)["message"]


def test_empty_catalog_is_rejected(tmp_path, request_document, fake_model):
    request_document["allNFTs"] = []
    context = make_context(tmp_path, request_document)

    assert recommend(context, model=fake_model(MODEL_ANSWER)) == 1
    assert "must not be empty" in read_output(context)["message"]


def test_model_answer_without_recommendations_fails(tmp_path, request_document, fake_model):
    context = make_context(tmp_path, request_document)

    assert recommend(context, model=fake_model({"picks": []})) == 1
    assert "Invalid response format" in read_output(context)["message"]


def test_model_answer_that_is_not_json_fails(tmp_path, request_document, fake_model):
    context = make_context(tmp_path, request_document)

    assert recommend(context, model=fake_model("Sure! Here are some ideas")) == 1
    assert read_output(context)["message"] == "Model returned invalid JSON"


def test_model_answer_with_malformed_entry_fails(tmp_path, request_document, fake_model):
    answer = {"recommendations": [{"nftId": "1", "reason": "Good", "confidence": "high"}]}
    context = make_context(tmp_path, request_document)

    assert recommend(context, model=fake_model(answer)) == 1
    assert "confidence must be a number" in read_output(context)["message"]


def test_model_transport_failure_is_reported(tmp_path, request_document):
    class FailingModel:
        def complete_json(self, system, prompt):
            raise ModelError("Model request failed with status 429: rate limited")

    context = make_context(tmp_path, request_document)

    assert recommend(context, model=FailingModel()) == 1
    assert "429" in read_output(context)["message"]


def test_unexpected_exception_still_writes_output(tmp_path, request_document):
    class BrokenModel:
        def complete_json(self, system, prompt):
            raise RuntimeError("boom")

    context = make_context(tmp_path, request_document)

    assert recommend(context, model=BrokenModel()) == 1
    output = read_output(context)
    assert output["error"] is True
    assert "boom" in output["message"]


def test_new_user_with_single_item_catalog(tmp_path, fake_model):
    document = {
        "userAddress": "0xabc",
        "donationHistory": [],
        "allNFTs": [{"tokenId": "1", "name": "A", "totalDonations": "0"}],
    }
    answer = {
        "recommendations": [
            {"nftId": "1", "reason": "The only option.", "confidence": 80},
            {"nftId": "2", "reason": "Invented.", "confidence": 70},
        ]
    }
    model = fake_model(answer)
    context = make_context(tmp_path, document)

    assert recommend(context, model=model) == 0

    assert "no donation history" in model.prompts[0]
    assert len(read_output(context)["recommendations"]) <= 1


def test_build_prompt_renders_history_and_defaults(task_request):
    prompt = build_prompt(task_request)

    assert f"User Wallet: {task_request.requester_address}" in prompt
    assert '- "River Cleanup" (ID: 2): 0.05 ETH - Category: Environment' in prompt
    assert NEW_USER_LINE not in prompt
    assert (
        '- ID: 3, Name: "Animal Shelter", Category: General, '
        "Description: No description, Total Received: 0 ETH"
    ) in prompt
    assert "the user's donation history and interests" in prompt
    assert '"nftId": "string"' in prompt


def test_build_prompt_is_deterministic(request_document):
    first = build_prompt(TaskRequest.model_validate(request_document))
    second = build_prompt(TaskRequest.model_validate(request_document))

    assert first == second


def test_worker_parses_the_submitted_serialization(tmp_path, task_request, fake_model):
    context = make_context(tmp_path)
    (context.input_dir / "iexec_in.txt").write_text(task_request.to_args())
    model = fake_model(MODEL_ANSWER)

    assert recommend(context, model=model) == 0
    assert model.prompts[0] == build_prompt(task_request)
