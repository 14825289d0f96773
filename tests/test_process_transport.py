from __future__ import annotations

from pathlib import Path

import allure
import pytest
from conftest import ECHO_AGENT_COMMAND, RecordingListener, make_profile

from docpilot.agent.models import TaskKind, Tier
from docpilot.agent.routing import TierProfile
from docpilot.agent.transport.base import TransportError, TransportRequest
from docpilot.agent.transport.process import DirectProcessTransport, build_run_args

pytestmark = [
    allure.epic("Agent Dispatch"),
    allure.feature("Direct Process Transport"),
]


def _request(tmp_path: Path, prompt: str, kind: TaskKind = TaskKind.EDIT) -> TransportRequest:
    target = tmp_path / "doc.md"
    target.write_text("# T\nOld", "utf-8")
    return TransportRequest(
        task_id="task-1",
        kind=kind,
        prompt=prompt,
        target=target,
        profile=make_profile(max_turns=2),
    )


def test_output_is_streamed_cumulatively(tmp_path: Path, echo_agent_env: Path) -> None:
    transport = DirectProcessTransport(
        command_template=f"{ECHO_AGENT_COMMAND} --chunks 4 --delay 0.05",
        stream_dir=echo_agent_env,
    )
    listener = RecordingListener()

    transport.send(_request(tmp_path, "Apply the requested changes"), listener)

    assert listener.wait()
    assert listener.errors == []
    (result,) = listener.completed
    assert result.output == "Apply the requested changes"
    assert listener.data
    for earlier, later in zip(listener.data, listener.data[1:]):
        assert later.startswith(earlier)
    assert listener.data[-1] == result.output
    assert transport.read_last_output(TaskKind.EDIT) == result.output
    mirrored = echo_agent_env / "docpilot-edit-stream.log"
    assert mirrored.read_text("utf-8") == result.output


def test_stream_log_is_readable_from_a_fresh_transport(
    tmp_path: Path,
    echo_agent_env: Path,
) -> None:
    first = DirectProcessTransport(command_template=ECHO_AGENT_COMMAND, stream_dir=echo_agent_env)
    listener = RecordingListener()
    first.send(_request(tmp_path, "chat reply", TaskKind.CHAT), listener)
    assert listener.wait()

    second = DirectProcessTransport(command_template=ECHO_AGENT_COMMAND, stream_dir=echo_agent_env)

    assert second.read_last_output(TaskKind.CHAT) == "chat reply"
    assert second.read_last_output(TaskKind.EDIT) == ""


def test_without_stream_dir_output_stays_in_memory(tmp_path: Path, echo_agent_env: Path) -> None:
    transport = DirectProcessTransport(command_template=ECHO_AGENT_COMMAND)
    listener = RecordingListener()

    assert transport.read_last_output(TaskKind.EDIT) == ""
    transport.send(_request(tmp_path, "kept in memory"), listener)

    assert listener.wait()
    assert listener.errors == []
    assert transport.read_last_output(TaskKind.EDIT) == "kept in memory"
    assert transport.read_last_output(TaskKind.CHAT) == ""
    assert not echo_agent_env.exists()


def test_agent_can_edit_the_target_file(tmp_path: Path, echo_agent_env: Path) -> None:
    transport = DirectProcessTransport(command_template=f"{ECHO_AGENT_COMMAND} --replace Old New")
    listener = RecordingListener()
    request = _request(tmp_path, "rewrite")

    transport.send(request, listener)

    assert listener.wait()
    assert listener.completed
    assert request.target.read_text("utf-8") == "# T\nNew"


def test_non_zero_exit_reports_stderr_tail(tmp_path: Path, echo_agent_env: Path) -> None:
    transport = DirectProcessTransport(
        command_template=f"{ECHO_AGENT_COMMAND} --exit-code 2 --error-message 'rate limited'",
    )
    listener = RecordingListener()

    transport.send(_request(tmp_path, "prompt"), listener)

    assert listener.wait()
    assert listener.completed == []
    assert listener.errors == ["rate limited"]


def test_non_zero_exit_without_stderr_reports_exit_code(
    tmp_path: Path,
    echo_agent_env: Path,
) -> None:
    transport = DirectProcessTransport(command_template=f"{ECHO_AGENT_COMMAND} --exit-code 3")
    listener = RecordingListener()

    transport.send(_request(tmp_path, "prompt"), listener)

    assert listener.wait()
    assert listener.errors == ["Assistant exited with code 3"]


def test_missing_executable_is_a_permanent_transport_error(tmp_path: Path) -> None:
    transport = DirectProcessTransport(command_template="docpilot-no-such-agent --model {model}")

    with pytest.raises(TransportError) as error:
        transport.send(_request(tmp_path, "prompt"), RecordingListener())

    assert error.value.transient is False


def test_killed_task_reports_nothing(tmp_path: Path, echo_agent_env: Path) -> None:
    transport = DirectProcessTransport(
        command_template=f"{ECHO_AGENT_COMMAND} --chunks 50 --delay 0.1",
        kill_grace_seconds=0.5,
    )
    listener = RecordingListener()

    handle = transport.send(_request(tmp_path, "x" * 50), listener)
    handle.kill()
    handle.kill()

    assert handle.killed
    handle.process.wait(timeout=10)
    assert not listener.wait(timeout=0.5)
    assert listener.completed == []
    assert listener.errors == []


def test_build_run_args_renders_placeholders_and_tier_flags(tmp_path: Path) -> None:
    profile = TierProfile(
        tier=Tier.FAST,
        model="haiku",
        max_turns=3,
        allowed_tools=("Read", "Edit"),
    )

    args = build_run_args(
        command_template="claude -p --model {model} --add-dir {target}",
        profile=profile,
        target=tmp_path / "my doc.md",
    )

    assert args == [
        "claude",
        "-p",
        "--model",
        "haiku",
        "--add-dir",
        str(tmp_path / "my doc.md"),
        "--max-turns",
        "3",
        "--allowedTools",
        "Read,Edit",
    ]


@pytest.mark.parametrize(
    ("template", "match"),
    [
        ("   ", "empty"),
        ("claude --model {unknown}", "placeholder"),
    ],
)
def test_build_run_args_rejects_bad_templates(tmp_path: Path, template: str, match: str) -> None:
    with pytest.raises(TransportError, match=match):
        build_run_args(command_template=template, profile=make_profile(), target=tmp_path)
