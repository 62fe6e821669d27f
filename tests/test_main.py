import argparse

import pytest

from rundeploy.errors import PollTimeoutError
from rundeploy.main import build_parser, main, options_from_args, parse_key_values, validate_args
from rundeploy.schemas.deploy import DeploymentSummary, Ingress

BASE = ["--project-id", "proj", "--region", "us-west1", "deploy", "--service", "app"]


def _parse(argv):
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)
    return args


def test_parse_key_values():
    assert parse_key_values("A=1, B=x=y,") == {"A": "1", "B": "x=y"}

    with pytest.raises(argparse.ArgumentTypeError):
        parse_key_values("NOVALUE")


def test_options_from_args():
    args = _parse(
        BASE
        + [
            "--image", "img",
            "--update-env-vars", "A=1",
            "--remove-env-vars", "B,C",
            "--set-secrets", "TOKEN=token:2,/etc/key=key",
            "--ingress", "internal",
            "--allow-unauthenticated",
            "--no-default-url",
        ]
    )

    options = options_from_args(args, args.image)

    assert options.update_env_vars == {"A": "1"}
    assert options.remove_env_vars == ["B", "C"]
    assert options.secrets == {"TOKEN": "token:2", "/etc/key": "key"}
    assert options.ingress is Ingress.INTERNAL
    assert options.allow_unauthenticated is True
    assert options.default_url is False


@pytest.mark.parametrize(
    "flags",
    [
        ["--set-env-vars", "A=1", "--update-env-vars", "B=2"],
        ["--clear-env-vars", "--remove-env-vars", "A"],
        ["--set-secrets", "A=a", "--clear-secrets"],
    ],
)
def test_exclusive_flags_rejected(flags):
    with pytest.raises(SystemExit) as excinfo:
        _parse(BASE + ["--image", "img"] + flags)
    assert excinfo.value.code == 2


def test_image_and_source_are_exclusive():
    with pytest.raises(SystemExit):
        _parse(BASE + ["--image", "img", "--source", "."])


def test_project_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "env-proj")
    monkeypatch.setenv("GOOGLE_CLOUD_REGION", "europe-west1")

    args = _parse(["deploy", "--service", "app", "--image", "img"])

    assert args.project_id == "env-proj"
    assert args.region == "europe-west1"


def test_main_deploys_and_prints_summary(mocker, capsys):
    mock_deploy = mocker.patch("rundeploy.main.create_or_update_service")
    mock_wait = mocker.patch("rundeploy.main.wait_for_service_ready")
    mock_wait.return_value = DeploymentSummary(
        service="app", revision="app-00001-abc", traffic_percent=100, url="https://app.a.run.app"
    )

    main(BASE + ["--image", "img"])

    mock_deploy.assert_called_once()
    assert mock_deploy.call_args.args[2].image == "img"
    out = capsys.readouterr().out
    assert "app-00001-abc" in out
    assert "https://app.a.run.app" in out


def test_main_no_wait_skips_polling(mocker):
    mocker.patch("rundeploy.main.create_or_update_service")
    mock_wait = mocker.patch("rundeploy.main.wait_for_service_ready")

    main(BASE + ["--image", "img", "--no-wait"])

    mock_wait.assert_not_called()


def test_main_builds_from_source(mocker):
    mock_build = mocker.patch("rundeploy.main.build_from_source", return_value="built-image")
    mock_deploy = mocker.patch("rundeploy.main.create_or_update_service")

    main(BASE + ["--source", ".", "--no-wait"])

    mock_build.assert_called_once_with("proj", "us-west1", "app", ".")
    assert mock_deploy.call_args.args[2].image == "built-image"


def test_main_exits_non_zero_on_failure(mocker):
    mocker.patch("rundeploy.main.create_or_update_service")
    mocker.patch(
        "rundeploy.main.wait_for_service_ready",
        side_effect=PollTimeoutError("Timed out after 120s"),
    )

    with pytest.raises(SystemExit) as excinfo:
        main(BASE + ["--image", "img"])

    assert excinfo.value.code == 1


def test_main_exits_non_zero_on_credential_error(mocker):
    from google.auth.exceptions import DefaultCredentialsError

    mocker.patch(
        "rundeploy.main.create_or_update_service",
        side_effect=DefaultCredentialsError("Could not automatically determine credentials"),
    )

    with pytest.raises(SystemExit) as excinfo:
        main(BASE + ["--image", "img"])

    assert excinfo.value.code == 1


def test_main_exits_non_zero_on_api_retry_error(mocker):
    from google.api_core.exceptions import RetryError

    mocker.patch("rundeploy.main.create_or_update_service")
    mocker.patch(
        "rundeploy.main.wait_for_service_ready",
        side_effect=RetryError("Deadline of 60.0s exceeded", cause=None),
    )

    with pytest.raises(SystemExit) as excinfo:
        main(BASE + ["--image", "img"])

    assert excinfo.value.code == 1
