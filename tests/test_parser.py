import shlex

import pytest

from devlaunch.local.ecosystem import (
    EcosystemError, EcosystemSyntaxError, LaunchSpecError, UPSEND,
    dump_ecosystem, load_ecosystem, loads_ecosystem,
)
from devlaunch.local.ecosystem.parser import format_for_path, parse_js


def test_shipped_file_has_single_upsend_app(shipped_ecosystem):
    eco = load_ecosystem(shipped_ecosystem)
    assert eco.names == ["upsend"]
    assert eco.fmt == "js"
    assert eco.source == shipped_ecosystem


def test_shipped_file_fields(shipped_ecosystem):
    spec = load_ecosystem(shipped_ecosystem).get("upsend")
    assert spec.command == "npx"
    assert spec.arguments == (
        "wrangler pages dev dist --d1=upsend-production --r2=IMAGES --local --ip 0.0.0.0 --port 3000"
    )
    assert spec.environment == {"NODE_ENV": "development", "PORT": "3000"}
    assert spec.watch is False
    assert spec.instances == 1
    assert spec.exec_mode == "fork"
    assert spec == UPSEND


def test_shipped_flags_in_order(shipped_ecosystem):
    spec = load_ecosystem(shipped_ecosystem).get("upsend")
    tokens = shlex.split(spec.arguments)
    expected = ["--d1=upsend-production", "--r2=IMAGES", "--local", "--ip", "0.0.0.0", "--port", "3000"]
    positions = [tokens.index(t) for t in expected]
    assert positions == sorted(positions)
    assert tokens[tokens.index("--ip") + 1] == "0.0.0.0"
    assert tokens[tokens.index("--port") + 1] == "3000"


def test_shipped_port_matches_env(shipped_ecosystem):
    spec = load_ecosystem(shipped_ecosystem).get("upsend")
    assert spec.environment["PORT"] == "3000"
    assert int(spec.flag("--port")) == int(spec.environment["PORT"])
    assert spec.port == 3000
    spec.check_port_consistency()


def test_round_trip_is_byte_identical(shipped_ecosystem):
    original = shipped_ecosystem.read_text(encoding="utf-8")
    eco = loads_ecosystem(original, "js")
    assert dump_ecosystem(eco) == original
    assert dump_ecosystem(loads_ecosystem(dump_ecosystem(eco))) == original


def test_comments_trailing_commas_and_quoted_keys():
    text = """
    // pm2 config
    module.exports = {
      /* the apps */
      "apps": [
        {
          name: "api",
          script: 'node',
          args: "server.js",
          instances: 0x2,
          exec_mode: 'cluster',
        },
      ],
    };
    """
    eco = loads_ecosystem(text)
    spec = eco.get("api")
    assert spec.instances == 2
    assert spec.exec_mode == "cluster"


def test_export_default_and_escapes():
    data = parse_js("export default { a: 'it\\'s', b: \"\\u0041\\x42\\n\", c: -1.5e2, d: null, e: true }")
    assert data == {"a": "it's", "b": "AB\n", "c": -150.0, "d": None, "e": True}


def test_syntax_error_reports_position():
    with pytest.raises(EcosystemSyntaxError) as excinfo:
        loads_ecosystem("module.exports = {\n  apps: [\n    { name: 'x' script: 'y' }\n  ]\n}\n")
    assert excinfo.value.line == 3
    assert excinfo.value.column is not None


@pytest.mark.parametrize("text", [
    "module.exports = { apps: [], apps: [] }",
    "module.exports = { apps: require('./apps') }",
    "module.exports = { apps: [`tpl`] }",
    "const x = { apps: [] }",
    "module.exports = { apps: [] } extra",
    "module.exports = { apps: [ /* open",
    "module.exports = { apps: [], ratio: 1e999 }",
    "module.exports = { apps: [], ratio: -1e999 }",
])
def test_rejects_non_literal_content(text):
    with pytest.raises(EcosystemSyntaxError):
        loads_ecosystem(text)


def test_duplicate_app_names_rejected():
    text = "module.exports = { apps: [ { name: 'a', script: 'x' }, { name: 'a', script: 'y' } ] }"
    with pytest.raises(LaunchSpecError, match="Duplicate app name"):
        loads_ecosystem(text)


def test_missing_apps_rejected():
    with pytest.raises(LaunchSpecError):
        loads_ecosystem("module.exports = { services: [] }")


def test_json_and_yaml_sources():
    json_eco = loads_ecosystem('{"apps": [{"name": "a", "script": "node", "env": {"PORT": 80}}]}', "json")
    yaml_eco = loads_ecosystem("apps:\n  - name: a\n    script: node\n    env:\n      PORT: 80\n", "yaml")
    assert json_eco.get("a") == yaml_eco.get("a")
    assert yaml_eco.get("a").environment == {"PORT": "80"}


def test_invalid_json_and_yaml():
    with pytest.raises(EcosystemSyntaxError):
        loads_ecosystem('{"apps": [}', "json")
    with pytest.raises(EcosystemSyntaxError):
        loads_ecosystem("apps: [unclosed\n", "yaml")


def test_json_rejects_non_finite_numbers():
    for text in ('{"apps": [], "ratio": 1e999}', '{"apps": [], "ratio": NaN}', '{"apps": [], "ratio": -Infinity}'):
        with pytest.raises(EcosystemSyntaxError):
            loads_ecosystem(text, "json")


def test_format_for_path(tmp_path):
    assert format_for_path(tmp_path / "ecosystem.config.cjs") == "js"
    assert format_for_path(tmp_path / "ecosystem.config.js") == "js"
    assert format_for_path(tmp_path / "ecosystem.json") == "json"
    assert format_for_path(tmp_path / "ecosystem.yml") == "yaml"
    with pytest.raises(EcosystemError):
        format_for_path(tmp_path / "ecosystem.toml")


def test_missing_file(tmp_path):
    with pytest.raises(EcosystemError):
        load_ecosystem(tmp_path / "missing.config.cjs")
