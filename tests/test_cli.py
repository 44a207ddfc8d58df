import json

from typer.testing import CliRunner

from provision_like_user import cli
from provision_like_user.models import ProvisionResult
from provision_like_user.provisioning import ProvisionReport
from provision_like_user.validation import SecurityKeyMismatchError


runner = CliRunner()

ARGS = [
    "provision",
    "--new-user-email",
    "john.doe@contoso.com",
    "--existing-user-email",
    "jane.smith@contoso.com",
    "--first-name",
    "John",
    "--last-name",
    "Doe",
]


class StubProvisioner:
    result_code = 200
    raise_mismatch = False
    requests = []

    def __init__(self, config):
        self.config = config

    def run(self, request):
        StubProvisioner.requests.append(request)
        if self.raise_mismatch:
            raise SecurityKeyMismatchError("mismatch")
        return ProvisionReport(result=ProvisionResult("done", request.ticket_id, self.result_code))


def _patch(monkeypatch, tmp_path, **attrs):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PROVISION_CONFIG", raising=False)
    StubProvisioner.requests = []
    for key, value in attrs.items():
        monkeypatch.setattr(StubProvisioner, key, value)
    monkeypatch.setattr(cli, "ProvisionLikeUser", StubProvisioner)


def test_provision_prints_result(monkeypatch, tmp_path):
    _patch(monkeypatch, tmp_path)

    result = runner.invoke(cli.app, [*ARGS, "--ticket-id", "T-9"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["TicketId"] == "T-9"
    request = StubProvisioner.requests[0]
    assert request.new_user_first_name == "John"
    assert request.new_user_display_name is None


def test_provision_failure_exit_code(monkeypatch, tmp_path):
    _patch(monkeypatch, tmp_path, result_code=500)

    result = runner.invoke(cli.app, ARGS)

    assert result.exit_code == 1
    assert json.loads(result.stdout)["ResultStatus"] == "Failure"


def test_security_key_mismatch_exit_code(monkeypatch, tmp_path):
    _patch(monkeypatch, tmp_path, raise_mismatch=True)

    result = runner.invoke(cli.app, ARGS)

    assert result.exit_code == 2


def test_check_config_masks_secret(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PROVISION_CONFIG", raising=False)
    monkeypatch.setenv("PROVISION_GRAPH__CLIENT_SECRET", "hunter2")

    result = runner.invoke(cli.app, ["check-config"])

    assert result.exit_code == 0
    assert "hunter2" not in result.stdout
    assert json.loads(result.stdout)["graph"]["client_secret"] == "********"
