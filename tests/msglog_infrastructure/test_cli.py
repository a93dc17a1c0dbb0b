import json
from unittest import mock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from msglog_infrastructure import cli
from msglog_infrastructure.lib.aws.events_helper import EventPublishError


@pytest.fixture(autouse=True)
def engine_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MSGLOG_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setenv("MSGLOG_REMOTE_PATH", str(tmp_path / "remote.json"))
    return tmp_path


def test_graph_prints_generations(capsys):
    cli.graph()

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "1:"
    assert lines.index("  vpc (aws:ec2/vpc:Vpc)") < lines.index("2:")
    assert lines[-1].startswith("  event-target")


def test_plan_shows_full_create(capsys):
    cli.plan()

    out = capsys.readouterr().out
    assert "+   vpc (aws:ec2/vpc:Vpc)" in out
    assert "Plan: 18 to add, 0 to change, 0 to replace, 0 to destroy." in out


def test_apply_then_plan_is_empty(capsys, engine_env):
    cli.apply(auto_approve=True)

    out = capsys.readouterr().out
    assert "Apply complete: 18 succeeded, 0 failed, 0 skipped." in out
    assert (engine_env / "state.json").exists()
    assert (engine_env / "remote.json").exists()

    cli.plan()
    assert "No changes." in capsys.readouterr().out


def test_apply_needs_confirmation(capsys, engine_env):
    with mock.patch("builtins.input", return_value="y"):
        cli.apply()

    assert "Apply cancelled." in capsys.readouterr().out
    assert not (engine_env / "state.json").exists()


def test_changed_config_is_planned_as_update(capsys, engine_env):
    cli.apply(auto_approve=True)
    capsys.readouterr()
    config_file = engine_env / "config.yaml"
    config_file.write_text("log_retention_days: 30\n")

    cli.plan(config=config_file)

    out = capsys.readouterr().out
    assert "~   log-group (aws:cloudwatch/logGroup:LogGroup)" in out
    assert "retention_in_days: 14 -> 30" in out


def test_invalid_config_exits(engine_env):
    config_file = engine_env / "config.yaml"
    config_file.write_text("vpc_cidr: 10.0.0.0/8\n")

    with pytest.raises(SystemExit) as exc:
        cli.plan(config=config_file)
    assert exc.value.code == 1


def test_audit(capsys):
    cli.audit()
    assert capsys.readouterr().out.strip() == "No findings."

    cli.apply(auto_approve=True)
    capsys.readouterr()
    cli.audit()
    assert capsys.readouterr().out.strip() == "No findings."


def test_publish_event(capsys):
    with mock.patch.object(cli, "publish_event", return_value="event-1") as publish:
        cli.publish_event_command(json.dumps({"x": 1}))

    assert capsys.readouterr().out.strip() == "event-1"
    publish.assert_called_once_with(
        {"x": 1},
        source="custom.my-application",
        detail_type="myDetailType",
        region="eu-north-1",
    )


@pytest.mark.parametrize(
    "side_effect",
    [None, EventPublishError([{"ErrorCode": "X", "ErrorMessage": "no"}])],
)
def test_publish_event_failures_exit(side_effect):
    detail = "{not json" if side_effect is None else "{}"
    with (
        mock.patch.object(cli, "publish_event", side_effect=side_effect),
        pytest.raises(SystemExit) as exc,
    ):
        cli.publish_event_command(detail)
    assert exc.value.code == 1


@pytest.mark.parametrize(
    "error",
    [
        NoCredentialsError(),
        ClientError(
            {"Error": {"Code": "AuthFailure", "Message": "denied"}}, "DescribeRegions"
        ),
    ],
)
def test_region_lookup_failure_exits(engine_env, caplog, error):
    config_file = engine_env / "config.yaml"
    config_file.write_text("region: eu-north-1\n")

    with (
        mock.patch(
            "msglog_infrastructure.lib.msglog_types.aws_regions", side_effect=error
        ),
        pytest.raises(SystemExit) as exc,
    ):
        cli.plan(config=config_file)

    assert exc.value.code == 1
    assert "Unable to load configuration" in caplog.text
