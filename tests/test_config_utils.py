import sys

from devlaunch.local.ecosystem import Ecosystem, LaunchSpec
from devlaunch.local.supervisor.config_utils import check_configuration


def _eco(**fields):
    data = {"name": "app", "script": sys.executable, "args": "-c pass"}
    data.update(fields)
    return Ecosystem(apps=[LaunchSpec.from_dict(data)])


def test_valid_configuration(tmp_path):
    assert check_configuration(_eco(env={"PORT": 3000}, args="-c pass --port 3000"), tmp_path)


def test_missing_command(tmp_path):
    assert not check_configuration(_eco(script="definitely-not-a-real-command-xyz"), tmp_path)


def test_missing_working_directory(tmp_path):
    assert not check_configuration(_eco(cwd="nowhere"), tmp_path)


def test_port_mismatch(tmp_path):
    assert not check_configuration(_eco(env={"PORT": 3000}, args="-c pass --port 3001"), tmp_path)


def test_missing_watch_path_only_warns(tmp_path):
    assert check_configuration(_eco(watch=["missing"]), tmp_path)
