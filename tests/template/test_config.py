"""Tests for the scrape configuration builder."""

import random
import re
from pathlib import Path

import pytest

from vmetrics_deploy.errors import TemplateExecError, TemplateLoadError, TemplateParseError
from vmetrics_deploy.template.config import ConfigBuilder, ConfigData

QUOTED_TARGET = re.compile(r"'[^'\s]+:\d+'")

LIST_ACCUMULATORS = {
    "add_kafka": "KafkaAddrs",
    "add_node_exporter": "NodeExporterAddrs",
    "add_tidb": "TiDBStatusAddrs",
    "add_tikv": "TiKVStatusAddrs",
    "add_pd": "PDAddrs",
    "add_tiflash": "TiFlashStatusAddrs",
    "add_tiflash_learner": "TiFlashLearnerStatusAddrs",
    "add_pump": "PumpAddrs",
    "add_drainer": "DrainerAddrs",
    "add_cdc": "CDCAddrs",
    "add_zookeeper": "ZookeeperAddrs",
    "add_blackbox_exporter": "BlackboxExporterAddrs",
    "add_lightning": "LightningAddrs",
    "add_alertmanager": "AlertmanagerAddrs",
    "add_dm_master": "DMMasterAddrs",
    "add_dm_worker": "DMWorkerAddrs",
}

SLOT_SETTERS = {
    "add_pushgateway": "PushgatewayAddr",
    "add_blackbox": "BlackboxAddr",
    "add_kafka_exporter": "KafkaExporterAddr",
    "add_grafana": "GrafanaAddr",
}


def _list_template(field: str) -> str:
    return f"{{{{range .{field}}}}}[{{{{.}}}}]{{{{end}}}}"


def test_empty_config_render() -> None:
    rendered = ConfigBuilder("c1", False).render().decode()

    assert "cluster: 'c1'" in rendered
    assert not QUOTED_TARGET.search(rendered)
    assert "scheme: https" not in rendered
    assert "alerting:" not in rendered
    assert "job_name: 'overwritten-cluster'" not in rendered


def test_pd_addresses_keep_insertion_order() -> None:
    builder = ConfigBuilder("c1", False)
    builder.add_pd("10.0.0.1", 2379).add_pd("10.0.0.2", 2379)

    rendered = builder.render().decode()

    assert "'10.0.0.1:2379'" in rendered
    assert rendered.index("10.0.0.1:2379") < rendered.index("10.0.0.2:2379")


def test_grafana_slot_last_assignment_wins() -> None:
    builder = ConfigBuilder("c1", False)
    builder.add_grafana("a", 3000)
    builder.add_grafana("b", 3001)

    rendered = builder.render().decode()

    assert "b:3001" in rendered
    assert "a:3000" not in rendered


def test_tls_enabled_adds_https_scheme() -> None:
    builder = ConfigBuilder("c1", True).add_tidb("10.0.0.3", 10080)

    rendered = builder.render().decode()

    assert "scheme: https" in rendered
    assert "ca_file: ../tls/ca.crt" in rendered


def test_tls_flag_is_kept_from_constructor() -> None:
    builder = ConfigBuilder("c1", True)

    assert builder.data.tls_enabled is True
    assert builder.render_with_template("{{.TLSEnabled}}") == b"true"


def test_alertmanager_section() -> None:
    builder = ConfigBuilder("c1", False).add_alertmanager("10.0.0.5", 9093)

    rendered = builder.render().decode()

    assert "alerting:" in rendered
    assert "'10.0.0.5:9093'" in rendered
    assert rendered.index("alerting:") < rendered.index("scrape_configs:")


def test_blackbox_probes_monitored_servers() -> None:
    builder = ConfigBuilder("c1", False)
    builder.add_blackbox_exporter("10.0.0.7", 9115)
    builder.add_monitored_server("10.0.0.1").add_monitored_server("10.0.0.2")

    rendered = builder.render().decode()

    assert 'job_name: "blackbox_exporter_10.0.0.7:9115_icmp"' in rendered
    assert "replacement: 10.0.0.7:9115" in rendered
    assert rendered.index("- '10.0.0.1'") < rendered.index("- '10.0.0.2'")


def test_every_list_accumulator_is_exposed() -> None:
    for method, field in LIST_ACCUMULATORS.items():
        builder = ConfigBuilder("c1", False)
        getattr(builder, method)("h1", 1)
        getattr(builder, method)("h2", 2)

        assert builder.render_with_template(_list_template(field)) == b"[h1:1][h2:2]", method


def test_every_slot_setter_overwrites() -> None:
    for method, field in SLOT_SETTERS.items():
        builder = ConfigBuilder("c1", False)
        getattr(builder, method)("first", 1)
        getattr(builder, method)("second", 2)

        assert builder.render_with_template(f"{{{{.{field}}}}}") == b"second:2", method


def test_random_addresses_render_in_order() -> None:
    rng = random.Random(1234)
    for _ in range(25):
        method, field = rng.choice(list(LIST_ACCUMULATORS.items()))
        builder = ConfigBuilder("c1", False)
        expected = []
        for _ in range(rng.randint(1, 8)):
            host = ".".join(str(rng.randint(0, 255)) for _ in range(4))
            port = rng.randint(0, 65535)
            getattr(builder, method)(host, port)
            expected.append(f"{host}:{port}")

        rendered = builder.render_with_template(_list_template(field)).decode()

        assert rendered == "".join(f"[{addr}]" for addr in expected)


def test_host_is_passed_verbatim() -> None:
    builder = ConfigBuilder("c1", False).add_tikv("tikv-0.tikv-peer.svc", 20180)
    assert builder.data.tikv_status_addrs == ["tikv-0.tikv-peer.svc:20180"]


def test_negative_port_rejected() -> None:
    with pytest.raises(ValueError, match="must not be negative"):
        ConfigBuilder("c1", False).add_pd("10.0.0.1", -1)


def test_render_is_deterministic() -> None:
    builder = ConfigBuilder("c1", True)
    builder.add_pd("10.0.0.1", 2379).add_tidb("10.0.0.2", 10080).add_pushgateway("10.0.0.3", 9091)

    assert builder.render() == builder.render()


def test_data_dump_uses_template_names() -> None:
    dumped = ConfigData(cluster_name="c1", tls_enabled=False).model_dump(by_alias=True)

    assert dumped["ClusterName"] == "c1"
    assert dumped["TLSEnabled"] is False
    assert dumped["PDAddrs"] == []
    assert dumped["GrafanaAddr"] == ""
    assert set(LIST_ACCUMULATORS.values()) | set(SLOT_SETTERS.values()) <= set(dumped)


def test_render_reads_bundled_template_path(fake_assets) -> None:
    assets = fake_assets({"templates/config/VictoriaMetrics.yml.tpl": "name={{.ClusterName}}"})
    builder = ConfigBuilder("c1", False, assets=assets)

    assert builder.render() == b"name=c1"
    assert assets.reads == ["templates/config/VictoriaMetrics.yml.tpl"]


def test_missing_asset(fake_assets) -> None:
    builder = ConfigBuilder("c1", False, assets=fake_assets({}))

    with pytest.raises(TemplateLoadError, match="VictoriaMetrics.yml.tpl"):
        builder.render()


def test_empty_injected_reader_is_used(fake_assets) -> None:
    assets = fake_assets({})

    with pytest.raises(TemplateLoadError):
        ConfigBuilder("c1", False, assets=assets).render()

    assert assets.reads == ["templates/config/VictoriaMetrics.yml.tpl"]


def test_non_utf8_template_bytes_are_copied(fake_assets) -> None:
    path = "templates/config/VictoriaMetrics.yml.tpl"
    assets = fake_assets({path: b"# \xff\xfe {{.ClusterName}}"})

    assert ConfigBuilder("c\xe9", False, assets=assets).render() == b"# \xff\xfe c\xc3\xa9"


def test_invalid_template_syntax() -> None:
    with pytest.raises(TemplateParseError):
        ConfigBuilder("c1", False).render_with_template("{{range .PDAddrs}}")


def test_undefined_field() -> None:
    with pytest.raises(TemplateExecError, match="can't evaluate field NoSuchAddrs"):
        ConfigBuilder("c1", False).render_with_template("{{.NoSuchAddrs}}")


def test_render_to(tmp_path: Path) -> None:
    target = tmp_path / "victoriametrics.yml"
    builder = ConfigBuilder("c1", False).add_pd("10.0.0.1", 2379)

    builder.render_to(target)

    assert target.read_bytes() == builder.render()
    assert target.stat().st_mode & 0o100


def test_render_to_writes_nothing_on_failure(tmp_path: Path, fake_assets) -> None:
    target = tmp_path / "victoriametrics.yml"
    builder = ConfigBuilder("c1", False, assets=fake_assets({}))

    with pytest.raises(TemplateLoadError):
        builder.render_to(target)

    assert not target.exists()


def test_render_to_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ConfigBuilder("c1", False).render_to(tmp_path / "missing" / "victoriametrics.yml")
