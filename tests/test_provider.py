import json

import httpx
import pytest

from backend.errors import AuthError, NetworkError, QuotaError, RemoteTaskError
from backend.model import GenerationRequest, JobHandle, JobStatus, Resolution
from backend.provider import build_payload, parse_task_state

from conftest import Recorder


def make_request(**overrides) -> GenerationRequest:
    fields = dict(prompt="cream cashmere sweater", resolution=Resolution.PORTRAIT_3_4, seed=7)
    fields.update(overrides)
    return GenerationRequest(**fields)


def test_build_payload_matches_provider_schema():
    payload = build_payload(make_request())
    assert payload == {
        "model": "Tongyi-MAI/Z-Image-Turbo",
        "prompt": "cream cashmere sweater",
        "n": 1,
        "size": "864x1152",
        "seed": 7,
        "steps": 8,
        "time_shift": 3.0,
        "guidance_scale": 7.5,
        "sampler": "euler_a",
        "scheduler": "karras",
    }


def test_generation_request_is_immutable():
    request = make_request()
    with pytest.raises(Exception):
        request.prompt = "changed"


@pytest.mark.asyncio
async def test_submit_returns_handle_and_sends_async_header(make_provider):
    recorder = Recorder([(200, {"task_id": "t1"})])
    provider = make_provider(recorder)

    handle = await provider.submit(make_request(), "tok")

    assert handle == JobHandle(task_id="t1")
    sent = recorder.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == "https://provider.test/v1/images/generations"
    assert sent.headers["X-ModelScope-Async-Mode"] == "true"
    assert sent.headers["Authorization"] == "Bearer tok"
    assert json.loads(sent.content)["size"] == "864x1152"


@pytest.mark.asyncio
async def test_submit_goes_through_relay_when_enabled(make_provider):
    recorder = Recorder([(200, {"task_id": "t1"})])
    provider = make_provider(recorder, relay_mode=True)

    await provider.submit(make_request(), "tok")
    assert str(recorder.requests[0].url) == "http://relay.test/api/v1/images/generations"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_submit_auth_failures(make_provider, status):
    provider = make_provider(Recorder([(status, {"error": "invalid token"})]))
    with pytest.raises(AuthError):
        await provider.submit(make_request(), "bad")


@pytest.mark.asyncio
async def test_submit_401_is_never_a_network_error(make_provider):
    provider = make_provider(Recorder([(401, "Unauthorized")]))
    with pytest.raises(AuthError) as exc_info:
        await provider.submit(make_request(), "bad")
    assert not isinstance(exc_info.value, NetworkError)


@pytest.mark.asyncio
async def test_submit_rate_limited(make_provider):
    provider = make_provider(Recorder([(429, "slow down")]))
    with pytest.raises(QuotaError):
        await provider.submit(make_request(), "tok")


@pytest.mark.asyncio
async def test_submit_resource_exhausted_marker(make_provider):
    provider = make_provider(Recorder([(500, {"code": "RESOURCE_EXHAUSTED"})]))
    with pytest.raises(QuotaError):
        await provider.submit(make_request(), "tok")


@pytest.mark.asyncio
async def test_task_id_wins_over_quota_marker(make_provider):
    provider = make_provider(Recorder([(200, {"task_id": "t1", "note": "RESOURCE_EXHAUSTED"})]))
    handle = await provider.submit(make_request(), "tok")
    assert handle.task_id == "t1"


@pytest.mark.asyncio
async def test_success_without_task_id_but_quota_marker(make_provider):
    provider = make_provider(Recorder([(200, {"error": "RESOURCE_EXHAUSTED"})]))
    with pytest.raises(QuotaError):
        await provider.submit(make_request(), "tok")


@pytest.mark.asyncio
async def test_submit_success_without_task_id(make_provider):
    provider = make_provider(Recorder([(200, {"request_id": "r"})]))
    with pytest.raises(RemoteTaskError, match="no task id returned"):
        await provider.submit(make_request(), "tok")


@pytest.mark.asyncio
async def test_submit_other_failure_truncates_body(make_provider):
    provider = make_provider(Recorder([(500, "E" * 2000)]))
    with pytest.raises(RemoteTaskError) as exc_info:
        await provider.submit(make_request(), "tok")
    assert exc_info.value.message.startswith("500: ")
    assert len(exc_info.value.message) <= 300


@pytest.mark.asyncio
async def test_submit_transport_failure(make_provider):
    provider = make_provider(Recorder([httpx.ConnectError("dns failure")]))
    with pytest.raises(NetworkError):
        await provider.submit(make_request(), "tok")


@pytest.mark.asyncio
async def test_poll_status_sends_task_type_header(make_provider):
    recorder = Recorder([(200, {"task_status": "RUNNING"})])
    provider = make_provider(recorder)

    state = await provider.poll_status(JobHandle(task_id="t9"), "tok")

    assert state.status is JobStatus.RUNNING
    sent = recorder.requests[0]
    assert sent.method == "GET"
    assert str(sent.url) == "https://provider.test/v1/tasks/t9"
    assert sent.headers["X-ModelScope-Task-Type"] == "image_generation"


@pytest.mark.asyncio
async def test_poll_status_non_2xx_raises(make_provider):
    provider = make_provider(Recorder([(502, "bad gateway")]))
    with pytest.raises(RemoteTaskError):
        await provider.poll_status(JobHandle(task_id="t9"), "tok")


def test_parse_task_state_maps_provider_spelling():
    state = parse_task_state(
        {"task_status": "SUCCEED", "output_images": ["https://x/a.jpg", "https://x/b.jpg"], "seed": "42"}
    )
    assert state.status is JobStatus.SUCCEEDED
    assert state.output_images == ["https://x/a.jpg", "https://x/b.jpg"]
    assert state.seed == 42


def test_parse_task_state_unknown_status():
    state = parse_task_state({"task_status": "QUEUED"})
    assert state.status is None
    assert state.raw_status == "QUEUED"


@pytest.mark.asyncio
async def test_verify_accepts_200_and_400(make_provider):
    recorder = Recorder([(400, {"error": "bad prompt"})])
    provider = make_provider(recorder)
    result = await provider.verify("tok")
    assert result.success is True
    # synchronous test call, no async header
    assert "X-ModelScope-Async-Mode" not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_verify_rejects_bad_token(make_provider):
    provider = make_provider(Recorder([(401, "no")]))
    result = await provider.verify("tok")
    assert result.success is False
    assert "invalid" in result.message


@pytest.mark.asyncio
async def test_verify_rejects_non_latin1_key_without_request(make_provider):
    recorder = Recorder([(200, {})])
    provider = make_provider(recorder)
    result = await provider.verify("密钥")
    assert result.success is False
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_verify_network_error(make_provider):
    provider = make_provider(Recorder([httpx.ConnectError("down")]))
    result = await provider.verify("tok")
    assert result.success is False
    assert "Network error" in result.message


def test_parse_task_state_ignores_non_list_images():
    state = parse_task_state({"task_status": "SUCCEED", "output_images": "https://x/a.jpg"})
    assert state.output_images == []


def test_parse_task_state_non_string_fields():
    state = parse_task_state({"task_status": 7, "message": {"code": 1}, "output_images": ["u", None, 3]})
    assert state.status is None
    assert state.raw_status == "7"
    assert state.message == '{"code": 1}'
    assert state.output_images == ["u"]


def test_job_status_parse_rejects_non_strings():
    assert JobStatus.parse(1) is None
    assert JobStatus.parse(" succeed ") is JobStatus.SUCCEEDED
